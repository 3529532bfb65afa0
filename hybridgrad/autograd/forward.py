"""
HybridGrad Autograd - Forward Evaluator
=======================================

Dependency-ordered evaluation with per-call memoization.

Every call to ``evaluate`` is a fresh pass: each node reachable from the root
is computed at most once during the call and its result is cached on the
node for the following backward pass. Nothing is reused across calls, so a
leaf mutated between passes is always picked up. The exception is
``evaluate(root, reuse_cached=True)``, which ``backward`` uses to compute only
the operators that have no value yet.
"""

from __future__ import annotations
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, List
import numpy as np

from ..config import get_config, get_rng
from ..core.node import Node, OpKind, post_order
from ..core.var import Var
from ..errors import DomainError


ForwardRule = Callable[[Node, List[np.ndarray]], np.ndarray]


@contextmanager
def _numeric_guard() -> Iterator[bool]:
    """Yield the strict flag; silence numpy FP warnings when not strict."""
    strict = get_config().strict
    if strict:
        with np.errstate(over='ignore', under='ignore'):
            yield True
    else:
        with np.errstate(all='ignore'):
            yield False


# =============================================================================
# Classical rules
# =============================================================================

def _plus(node: Node, values: List[np.ndarray]) -> np.ndarray:
    return values[0] + values[1]


def _minus(node: Node, values: List[np.ndarray]) -> np.ndarray:
    return values[0] - values[1]


def _multiply(node: Node, values: List[np.ndarray]) -> np.ndarray:
    return values[0] * values[1]


def _divide(node: Node, values: List[np.ndarray]) -> np.ndarray:
    x, y = values
    with _numeric_guard() as strict:
        if strict and np.any(y == 0):
            raise DomainError("divide: zero divisor")
        return x / y


def _exponent(node: Node, values: List[np.ndarray]) -> np.ndarray:
    with _numeric_guard():
        return np.exp(values[0])


def _log(node: Node, values: List[np.ndarray]) -> np.ndarray:
    x = values[0]
    with _numeric_guard() as strict:
        if strict and np.any(x <= 0):
            raise DomainError("log: argument must be positive")
        return np.log(x)


def _sigmoid(node: Node, values: List[np.ndarray]) -> np.ndarray:
    with np.errstate(over='ignore'):
        return 1.0 / (1.0 + np.exp(-values[0]))


def _polynomial(node: Node, values: List[np.ndarray]) -> np.ndarray:
    x, p = values
    with _numeric_guard() as strict:
        out = np.power(x, p)
        if strict and np.all(np.isfinite(x)) and not np.all(np.isfinite(out)):
            raise DomainError("polynomial: power is undefined for the given base")
        return out


def _dot(node: Node, values: List[np.ndarray]) -> np.ndarray:
    return values[0] @ values[1]


def _inverse(node: Node, values: List[np.ndarray]) -> np.ndarray:
    try:
        return np.linalg.inv(values[0])
    except np.linalg.LinAlgError as exc:
        raise DomainError(f"inverse: {exc}") from exc


def _transpose(node: Node, values: List[np.ndarray]) -> np.ndarray:
    return values[0].T.copy()


def _sum(node: Node, values: List[np.ndarray]) -> np.ndarray:
    return np.sum(values[0]).reshape(1, 1)


def _softmax(node: Node, values: List[np.ndarray]) -> np.ndarray:
    axis = node.attrs['axis']
    x = values[0]
    shifted = np.exp(x - np.max(x, axis=axis, keepdims=True))
    return shifted / np.sum(shifted, axis=axis, keepdims=True)


def _cross_entropy(node: Node, values: List[np.ndarray]) -> np.ndarray:
    prediction, label = values
    with _numeric_guard() as strict:
        if strict and np.any(prediction <= 0):
            raise DomainError("cross_entropy: predictions must be positive")
        return (-np.sum(label * np.log(prediction))).reshape(1, 1)


def _dropout(node: Node, values: List[np.ndarray]) -> np.ndarray:
    x, rate = values
    r = float(rate[0, 0])
    if not 0.0 <= r < 1.0:
        raise DomainError(f"dropout: rate must be in [0, 1), got {r}")
    keep = get_rng().random(x.shape) >= r
    mask = keep.astype(x.dtype) / (1.0 - r)
    node.attrs['mask'] = mask
    return x * mask


def _stack(node: Node, values: List[np.ndarray]) -> np.ndarray:
    return np.concatenate(values, axis=node.attrs['axis'])


def _subscript(node: Node, values: List[np.ndarray]) -> np.ndarray:
    return values[0].reshape(-1)[node.attrs['index']].reshape(1, 1)


# =============================================================================
# Quantum rules
# =============================================================================

def quantum_weights(node: Node, values: List[np.ndarray]) -> np.ndarray:
    """Numeric observable coefficients; entries are floats or operand indices."""
    return np.array([
        float(values[w][0, 0]) if isinstance(w, int) else w
        for w in node.attrs['weights']
    ])


def _quantum(node: Node, values: List[np.ndarray]) -> np.ndarray:
    attrs = node.attrs
    bindings = np.array([float(values[i][0, 0]) for i in attrs['slot_operands']])
    result = attrs['evaluator'].evaluate(bindings)
    attrs['bindings'] = bindings
    attrs['expectations'] = result.expectations

    if node.op is OpKind.QOP_PMEASURE:
        attrs['variance'] = None if result.variances is None else result.variances.reshape(1, -1)
        return result.expectations.reshape(1, -1).astype(get_config().dtype)

    weights = quantum_weights(node, values)
    value = float(weights @ result.expectations)
    if result.variances is not None:
        attrs['variance'] = np.array([[float(weights ** 2 @ result.variances)]])
    else:
        attrs['variance'] = None
    return np.array([[value]], dtype=get_config().dtype)


FORWARD_RULES: Dict[OpKind, ForwardRule] = {
    OpKind.PLUS: _plus,
    OpKind.MINUS: _minus,
    OpKind.MULTIPLY: _multiply,
    OpKind.DIVIDE: _divide,
    OpKind.EXPONENT: _exponent,
    OpKind.LOG: _log,
    OpKind.POLYNOMIAL: _polynomial,
    OpKind.DOT: _dot,
    OpKind.INVERSE: _inverse,
    OpKind.TRANSPOSE: _transpose,
    OpKind.SUM: _sum,
    OpKind.STACK: _stack,
    OpKind.SUBSCRIPT: _subscript,
    OpKind.SIGMOID: _sigmoid,
    OpKind.SOFTMAX: _softmax,
    OpKind.CROSS_ENTROPY: _cross_entropy,
    OpKind.DROPOUT: _dropout,
    OpKind.QOP: _quantum,
    OpKind.QOP_PMEASURE: _quantum,
}


# =============================================================================
# Evaluation
# =============================================================================

def evaluate(root: Var, reuse_cached: bool = False) -> np.ndarray:
    """
    Compute the value of ``root``.

    Operands are evaluated before their consumers and each shared
    subexpression exactly once per call. The result (and every intermediate
    value) is cached on the nodes for a subsequent ``backward``.

    With ``reuse_cached=True`` only operators without a cached value are
    computed, so dropout masks and shot samples already drawn are kept.
    """
    for node in post_order(root.node):
        if not node.is_operator:
            continue
        if reuse_cached and node.value is not None:
            continue
        values = [o.value for o in node.operands]
        node.value = FORWARD_RULES[node.op](node, values)
    return root.node.value
