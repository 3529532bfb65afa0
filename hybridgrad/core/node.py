"""
HybridGrad Core: Node
=====================

One vertex of the computation graph.

Ownership runs top-down: an operator node holds strong references to its
operands. The reverse edge (operand -> consumer) is a weak reference, so a
graph never forms a reference cycle and an expression is freed as soon as
the last handle to its root goes away.
"""

from __future__ import annotations
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple
import weakref
import numpy as np

from ..config import get_config
from ..errors import BoundsError, ConstructionError


Shape = Tuple[int, int]


class NodeKind(Enum):
    """What kind of vertex is this?"""
    CONSTANT = "constant"
    LEAF = "leaf"
    OPERATOR = "operator"


class OpKind(Enum):
    """Closed set of operators understood by the evaluator and differentiator."""
    PLUS = "plus"
    MINUS = "minus"
    MULTIPLY = "multiply"
    DIVIDE = "divide"
    EXPONENT = "exponent"
    LOG = "log"
    POLYNOMIAL = "polynomial"
    DOT = "dot"
    INVERSE = "inverse"
    TRANSPOSE = "transpose"
    SUM = "sum"
    STACK = "stack"
    SUBSCRIPT = "subscript"
    SIGMOID = "sigmoid"
    SOFTMAX = "softmax"
    CROSS_ENTROPY = "cross_entropy"
    DROPOUT = "dropout"
    QOP = "qop"
    QOP_PMEASURE = "qop_pmeasure"


# None = variadic (stack takes N operands, quantum nodes take one operand per
# distinct rotation source / coefficient Var).
ARITY: Dict[OpKind, Optional[int]] = {
    OpKind.PLUS: 2,
    OpKind.MINUS: 2,
    OpKind.MULTIPLY: 2,
    OpKind.DIVIDE: 2,
    OpKind.EXPONENT: 1,
    OpKind.LOG: 1,
    OpKind.POLYNOMIAL: 2,
    OpKind.DOT: 2,
    OpKind.INVERSE: 1,
    OpKind.TRANSPOSE: 1,
    OpKind.SUM: 1,
    OpKind.STACK: None,
    OpKind.SUBSCRIPT: 1,
    OpKind.SIGMOID: 1,
    OpKind.SOFTMAX: 1,
    OpKind.CROSS_ENTROPY: 2,
    OpKind.DROPOUT: 2,
    OpKind.QOP: None,
    OpKind.QOP_PMEASURE: None,
}


def as_matrix(data: Any) -> np.ndarray:
    """
    Coerce numeric input to a 2-D array of the configured dtype.

    Scalars become 1x1, 1-D sequences become row vectors.
    """
    arr = np.array(data, dtype=get_config().dtype)
    if arr.ndim == 0:
        return arr.reshape(1, 1)
    if arr.ndim == 1:
        return arr.reshape(1, -1)
    if arr.ndim == 2:
        return arr
    raise ConstructionError(f"Node values must be at most 2-D, got shape {arr.shape}")


class Node:
    """
    Graph vertex.

    Attributes
    ----------
    kind : NodeKind
        Constant, leaf or operator.
    op : Optional[OpKind]
        Operator tag (operators only).
    value : Optional[np.ndarray]
        Stored value for constants/leaves; for operators, the value cached by
        the most recent evaluation pass that visited this node (None before
        the first pass). Never invalidated automatically.
    shape : Tuple[int, int]
        Static shape, known at construction.
    trainable : bool
        Leaf participates in differentiation.
    requires_grad : bool
        A trainable leaf is reachable through the operands.
    operands : List[Node]
        Owned children, in operator argument order.
    attrs : Dict[str, Any]
        Per-operator metadata (stack axis, subscript index, dropout mask,
        quantum evaluator, ...).
    grad : Optional[np.ndarray]
        Gradient accumulated by backward passes until ``zero_grad``.
    """

    __slots__ = (
        'kind', 'op', 'value', 'shape', 'trainable', 'requires_grad',
        'operands', 'attrs', 'grad', '_consumers', '__weakref__',
    )

    def __init__(
        self,
        kind: NodeKind,
        value: Optional[np.ndarray] = None,
        op: Optional[OpKind] = None,
        operands: Sequence['Node'] = (),
        trainable: bool = False,
        attrs: Optional[Dict[str, Any]] = None,
        shape: Optional[Shape] = None,
    ):
        self.kind = kind
        self.op = op
        self.value = value
        self.shape = tuple(shape) if shape is not None else tuple(value.shape)
        self.trainable = trainable
        self.operands: List[Node] = list(operands)
        self.attrs: Dict[str, Any] = attrs if attrs is not None else {}
        self.grad: Optional[np.ndarray] = None
        self._consumers: List[weakref.ref] = []
        if kind is NodeKind.OPERATOR:
            self.requires_grad = any(o.requires_grad for o in self.operands)
        else:
            self.requires_grad = trainable

    @property
    def is_operator(self) -> bool:
        return self.kind is NodeKind.OPERATOR

    @property
    def consumers(self) -> List['Node']:
        """Live nodes that use this one as an operand (one entry per use)."""
        live = []
        for ref in self._consumers:
            node = ref()
            if node is not None:
                live.append(node)
        return live

    def add_consumer(self, node: 'Node'):
        self._consumers = [ref for ref in self._consumers if ref() is not None]
        self._consumers.append(weakref.ref(node))

    def __repr__(self) -> str:
        if self.is_operator:
            return f"Node({self.op.value}, shape={self.shape})"
        return f"Node({self.kind.value}, shape={self.shape})"


def post_order(root: Node) -> List[Node]:
    """
    Every node reachable from ``root``, each after all of its operands.

    Iterative, so arbitrarily deep chains (a loss accumulated in a loop)
    do not hit the interpreter's recursion limit.
    """
    visited = {id(root)}
    order: List[Node] = []
    stack = [(root, iter(root.operands))]

    while stack:
        node, operands = stack[-1]
        for operand in operands:
            if id(operand) not in visited:
                visited.add(id(operand))
                stack.append((operand, iter(operand.operands)))
                break
        else:
            stack.pop()
            order.append(node)

    return order


# =============================================================================
# Shape inference
# =============================================================================

def _broadcast_shape(op: OpKind, a: Shape, b: Shape) -> Shape:
    if a == b or b == (1, 1):
        return a
    if a == (1, 1):
        return b
    raise ConstructionError(f"{op.value}: incompatible shapes {a} and {b}")


def _is_vector(shape: Shape) -> bool:
    return shape[0] == 1 or shape[1] == 1


def infer_shape(op: OpKind, shapes: Sequence[Shape], attrs: Dict[str, Any]) -> Shape:
    """
    Validate operand count and shapes for ``op`` and return the result shape.

    Raises ConstructionError (BoundsError for subscripts) on mismatch.
    """
    arity = ARITY[op]
    if arity is not None and len(shapes) != arity:
        raise ConstructionError(f"{op.value} takes {arity} operand(s), got {len(shapes)}")

    if op in (OpKind.PLUS, OpKind.MINUS, OpKind.MULTIPLY, OpKind.DIVIDE):
        return _broadcast_shape(op, shapes[0], shapes[1])

    if op in (OpKind.EXPONENT, OpKind.LOG, OpKind.SIGMOID):
        return shapes[0]

    if op is OpKind.POLYNOMIAL:
        if shapes[1] not in ((1, 1), shapes[0]):
            raise ConstructionError(f"polynomial: power shape {shapes[1]} does not match {shapes[0]}")
        return shapes[0]

    if op is OpKind.DOT:
        (r, k), (k2, c) = shapes
        if k != k2:
            raise ConstructionError(f"dot: inner dimensions differ ({r}x{k} . {k2}x{c})")
        return (r, c)

    if op is OpKind.INVERSE:
        r, c = shapes[0]
        if r != c:
            raise ConstructionError(f"inverse: operand must be square, got {r}x{c}")
        return (r, c)

    if op is OpKind.TRANSPOSE:
        r, c = shapes[0]
        return (c, r)

    if op in (OpKind.SUM, OpKind.QOP):
        return (1, 1)

    if op is OpKind.SOFTMAX:
        axis = attrs.get('axis')
        if axis not in (0, 1):
            raise ConstructionError(f"softmax: axis must be 0 or 1, got {axis!r}")
        return shapes[0]

    if op is OpKind.CROSS_ENTROPY:
        if shapes[0] != shapes[1]:
            raise ConstructionError(f"cross_entropy: prediction {shapes[0]} and label {shapes[1]} differ")
        return (1, 1)

    if op is OpKind.DROPOUT:
        if shapes[1] != (1, 1):
            raise ConstructionError(f"dropout: rate must be a scalar, got {shapes[1]}")
        return shapes[0]

    if op is OpKind.STACK:
        axis = attrs.get('axis')
        if axis not in (0, 1):
            raise ConstructionError(f"stack: axis must be 0 or 1, got {axis!r}")
        if not shapes:
            raise ConstructionError("stack: needs at least one operand")
        other = 1 - axis
        for s in shapes[1:]:
            if s[other] != shapes[0][other]:
                raise ConstructionError(
                    f"stack: dimension {other} must agree along axis {axis}, got {shapes[0]} and {s}"
                )
        total = 0
        for s in shapes:
            total += s[axis]
        return (total, shapes[0][1]) if axis == 0 else (shapes[0][0], total)

    if op is OpKind.SUBSCRIPT:
        shape = shapes[0]
        if not _is_vector(shape):
            raise ConstructionError(f"subscript: operand must be a vector, got {shape}")
        index = attrs.get('index')
        length = shape[0] * shape[1]
        if not isinstance(index, (int, np.integer)) or not 0 <= index < length:
            raise BoundsError(f"subscript: index {index!r} out of range for length {length}")
        return (1, 1)

    if op is OpKind.QOP_PMEASURE:
        return (1, len(attrs['components']))

    raise ConstructionError(f"Unknown operator {op!r}")
