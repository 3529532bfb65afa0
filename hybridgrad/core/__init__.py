"""Graph nodes and the Var handle."""

from .node import (
    ARITY,
    Node,
    NodeKind,
    OpKind,
    as_matrix,
    infer_shape,
    post_order,
)
from .var import (
    Var,
    as_var,
    constant,
    cross_entropy,
    dot,
    dropout,
    exp,
    inverse,
    leaf,
    log,
    make_operator,
    mean,
    poly,
    sigmoid,
    softmax,
    stack,
    subscript,
    sum,
    transpose,
)

__all__ = [
    'ARITY',
    'Node',
    'NodeKind',
    'OpKind',
    'as_matrix',
    'post_order',
    'infer_shape',
    'Var',
    'as_var',
    'constant',
    'leaf',
    'make_operator',
    'exp',
    'log',
    'sigmoid',
    'poly',
    'dot',
    'inverse',
    'transpose',
    'sum',
    'mean',
    'softmax',
    'cross_entropy',
    'dropout',
    'stack',
    'subscript',
]
