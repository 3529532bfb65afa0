"""
HybridGrad Core: Var
====================

The public handle over a graph Node.

Expressions are built lazily: every operator on a Var allocates a new
operator node, registers it as a consumer of its operands and returns a new
Var. Nothing is computed until ``evaluate`` is called.

Example:
    >>> from hybridgrad import Var, leaf, evaluate, backward
    >>> a = leaf(3.0)
    >>> b = Var(4.0)                 # constant
    >>> c = a * a + b
    >>> evaluate(c)
    array([[13.]])
    >>> backward(c)[a]
    array([[6.]])
"""

from __future__ import annotations
from typing import Any, Dict, List, Optional, Sequence, Union
import numpy as np

from ..errors import ConstructionError
from .node import Node, NodeKind, OpKind, as_matrix, infer_shape


Operand = Union['Var', float, int, Sequence, np.ndarray]


class Var:
    """
    Value-semantics handle to a graph node.

    Copying a Var copies the handle, not the node: both handles refer to the
    same vertex. Equality is node identity, except that two scalar constants
    with the same numeric value compare (and hash) equal, so constants can be
    used interchangeably as dictionary keys.

    Parameters
    ----------
    value : numeric, optional
        Initial value (scalar, 1-D row or 2-D matrix).
    trainable : bool
        True for a leaf, False for a constant.
    """

    __array_priority__ = 1000  # numpy defers binary operators to Var
    __slots__ = ('_node',)

    def __init__(self, value: Any = None, trainable: bool = False, *, node: Optional[Node] = None):
        if node is not None:
            self._node = node
            return
        if value is None:
            raise ConstructionError("Var needs a value or a node")
        data = as_matrix(value)
        kind = NodeKind.LEAF if trainable else NodeKind.CONSTANT
        self._node = Node(kind, value=data, trainable=trainable)

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    @property
    def node(self) -> Node:
        return self._node

    @property
    def kind(self) -> NodeKind:
        return self._node.kind

    @property
    def op(self) -> Optional[OpKind]:
        return self._node.op

    @property
    def shape(self):
        return self._node.shape

    @property
    def trainable(self) -> bool:
        return self._node.trainable

    @property
    def requires_grad(self) -> bool:
        return self._node.requires_grad

    @property
    def value(self) -> Optional[np.ndarray]:
        """Stored (constant/leaf) or last evaluated (operator) value."""
        return self._node.value

    @property
    def grad(self) -> Optional[np.ndarray]:
        """Gradient accumulated by backward passes since the last ``zero_grad``."""
        return self._node.grad

    @property
    def operands(self) -> List['Var']:
        return [Var(node=n) for n in self._node.operands]

    @property
    def consumers(self) -> List['Var']:
        return [Var(node=n) for n in self._node.consumers]

    @property
    def use_count(self) -> int:
        return len(self._node.consumers)

    @property
    def variance(self) -> Optional[np.ndarray]:
        """Statistical variance of the last shot-based quantum estimate."""
        return self._node.attrs.get('variance')

    def numpy(self) -> Optional[np.ndarray]:
        return self._node.value

    def item(self) -> float:
        if self._node.value is None:
            raise ValueError("Var has not been evaluated yet")
        return float(self._node.value.reshape(-1)[0])

    # -------------------------------------------------------------------------
    # Mutation (optimizer side)
    # -------------------------------------------------------------------------

    def set_value(self, value: Any):
        """
        Overwrite the value of a leaf in place.

        Cached values of downstream operators are not invalidated; they are
        refreshed by the next evaluation pass. Constants are immutable since a
        scalar constant hashes by value.
        """
        if self._node.kind is not NodeKind.LEAF:
            raise ConstructionError(f"Only leaves can be assigned a value, got {self._node.kind.value}")
        data = as_matrix(value)
        if data.shape != self._node.shape:
            raise ConstructionError(f"set_value: shape {data.shape} does not match {self._node.shape}")
        self._node.value = data

    def zero_grad(self):
        self._node.grad = None

    def clone(self) -> 'Var':
        """A new detached constant/leaf holding a copy of the current value."""
        if self._node.value is None:
            raise ValueError("Cannot clone an operator that has not been evaluated")
        return Var(self._node.value.copy(), trainable=self._node.trainable)

    # -------------------------------------------------------------------------
    # Equality / hashing
    # -------------------------------------------------------------------------

    def _scalar_constant(self) -> Optional[float]:
        node = self._node
        if node.kind is NodeKind.CONSTANT and node.shape == (1, 1):
            return float(node.value[0, 0])
        return None

    def __eq__(self, other) -> bool:
        if not isinstance(other, Var):
            return NotImplemented
        if self._node is other._node:
            return True
        mine = self._scalar_constant()
        return mine is not None and mine == other._scalar_constant()

    def __ne__(self, other) -> bool:
        result = self.__eq__(other)
        if result is NotImplemented:
            return result
        return not result

    def __hash__(self) -> int:
        scalar = self._scalar_constant()
        if scalar is not None:
            return hash(scalar)
        return hash(id(self._node))

    def __repr__(self) -> str:
        node = self._node
        if node.is_operator:
            return f"Var(<{node.op.value}>, shape={node.shape})"
        data_str = np.array2string(node.value, precision=4, suppress_small=True)
        return f"Var({data_str}, {node.kind.value})"

    # -------------------------------------------------------------------------
    # Operator overloads
    # -------------------------------------------------------------------------

    def __add__(self, other: Operand) -> 'Var':
        return make_operator(OpKind.PLUS, [self, other])

    def __radd__(self, other: Operand) -> 'Var':
        return make_operator(OpKind.PLUS, [other, self])

    def __sub__(self, other: Operand) -> 'Var':
        return make_operator(OpKind.MINUS, [self, other])

    def __rsub__(self, other: Operand) -> 'Var':
        return make_operator(OpKind.MINUS, [other, self])

    def __mul__(self, other: Operand) -> 'Var':
        return make_operator(OpKind.MULTIPLY, [self, other])

    def __rmul__(self, other: Operand) -> 'Var':
        return make_operator(OpKind.MULTIPLY, [other, self])

    def __truediv__(self, other: Operand) -> 'Var':
        return make_operator(OpKind.DIVIDE, [self, other])

    def __rtruediv__(self, other: Operand) -> 'Var':
        return make_operator(OpKind.DIVIDE, [other, self])

    def __neg__(self) -> 'Var':
        return make_operator(OpKind.MINUS, [0.0, self])

    def __pow__(self, power: Operand) -> 'Var':
        return make_operator(OpKind.POLYNOMIAL, [self, power])

    def __matmul__(self, other: Operand) -> 'Var':
        return make_operator(OpKind.DOT, [self, other])

    def __rmatmul__(self, other: Operand) -> 'Var':
        return make_operator(OpKind.DOT, [other, self])

    def __getitem__(self, index: int) -> 'Var':
        return subscript(self, index)

    @property
    def T(self) -> 'Var':
        return transpose(self)


# =============================================================================
# Constructors
# =============================================================================

def as_var(value: Operand) -> Var:
    """Wrap plain numeric input as a constant; pass Vars through."""
    if isinstance(value, Var):
        return value
    return Var(value, trainable=False)


def constant(value: Any, trainable: bool = False) -> Var:
    return Var(value, trainable=trainable)


def leaf(value: Any, trainable: bool = True) -> Var:
    return Var(value, trainable=trainable)


def make_operator(op: OpKind, operands: Sequence[Operand], attrs: Optional[Dict[str, Any]] = None) -> Var:
    """
    Allocate an operator node over ``operands``.

    Validates arity and shapes, then registers the new node as a consumer of
    each operand.
    """
    attrs = dict(attrs) if attrs else {}
    handles = [as_var(o) for o in operands]
    shape = infer_shape(op, [h.shape for h in handles], attrs)
    node = Node(
        NodeKind.OPERATOR,
        op=op,
        operands=[h.node for h in handles],
        attrs=attrs,
        shape=shape,
    )
    for h in handles:
        h.node.add_consumer(node)
    return Var(node=node)


# =============================================================================
# Functional operators
# =============================================================================

def exp(v: Operand) -> Var:
    return make_operator(OpKind.EXPONENT, [v])


def log(v: Operand) -> Var:
    return make_operator(OpKind.LOG, [v])


def sigmoid(v: Operand) -> Var:
    return make_operator(OpKind.SIGMOID, [v])


def poly(v: Operand, power: Operand) -> Var:
    """Elementwise power ``v ** power``."""
    return make_operator(OpKind.POLYNOMIAL, [v, power])


def dot(lhs: Operand, rhs: Operand) -> Var:
    """Matrix product."""
    return make_operator(OpKind.DOT, [lhs, rhs])


def inverse(v: Operand) -> Var:
    return make_operator(OpKind.INVERSE, [v])


def transpose(v: Operand) -> Var:
    return make_operator(OpKind.TRANSPOSE, [v])


def sum(v: Operand) -> Var:
    """Sum of all elements as a 1x1 scalar."""
    return make_operator(OpKind.SUM, [v])


def softmax(v: Operand, axis: Optional[int] = None) -> Var:
    """
    Normalized exponential.

    With ``axis=None`` a column vector is normalized along axis 0 and
    everything else along axis 1 (each row is one distribution), which is the
    layout ``cross_entropy`` expects for its prediction argument.
    """
    v = as_var(v)
    if axis is None:
        rows, cols = v.shape
        axis = 0 if cols == 1 and rows > 1 else 1
    return make_operator(OpKind.SOFTMAX, [v], {'axis': axis})


def cross_entropy(prediction: Operand, label: Operand) -> Var:
    """Scalar ``-sum(label * log(prediction))``."""
    return make_operator(OpKind.CROSS_ENTROPY, [prediction, label])


def dropout(v: Operand, rate: Operand) -> Var:
    """
    Zero each element with probability ``rate`` and scale survivors by
    ``1 / (1 - rate)``. The mask is drawn from the shared random source on
    every evaluation and reused by the following backward pass.
    """
    return make_operator(OpKind.DROPOUT, [v, rate])


def stack(axis: int, *operands: Operand) -> Var:
    """
    Concatenate operands along rows (axis 0) or columns (axis 1).

    A single list argument is accepted as well: ``stack(0, [a, b, c])``.
    """
    if len(operands) == 1 and isinstance(operands[0], (list, tuple)):
        operands = tuple(operands[0])
    return make_operator(OpKind.STACK, list(operands), {'axis': axis})


def subscript(v: Operand, index: int) -> Var:
    """The 1x1 element at position ``index`` of a row or column vector."""
    return make_operator(OpKind.SUBSCRIPT, [v], {'index': index})


def mean(v: Operand) -> Var:
    v = as_var(v)
    rows, cols = v.shape
    return sum(v) / float(rows * cols)


__all__ = [
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

