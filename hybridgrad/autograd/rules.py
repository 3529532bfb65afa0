"""
HybridGrad Autograd - Local Backward Rules
==========================================

One rule per OpKind. A rule receives the operator node, the operand values
cached by the last forward pass, the fully accumulated incoming gradient
``dx`` and a per-operand ``needs`` mask, and returns one gradient (or None)
per operand.

Quantum operators are not differentiated analytically: their rule asks the
node's evaluator for circuit expectations at shifted rotation angles
(parameter-shift rule).
"""

from __future__ import annotations
from typing import Callable, Dict, List, Optional, Protocol, Sequence, Tuple, runtime_checkable
import numpy as np

from ..core.node import Node, OpKind, Shape
from .forward import quantum_weights


Grads = List[Optional[np.ndarray]]
BackwardRule = Callable[[Node, List[np.ndarray], np.ndarray, List[bool]], Grads]


@runtime_checkable
class ShiftEvaluator(Protocol):
    """
    Capability injected into quantum nodes.

    ``evaluate`` runs the circuit at the given rotation bindings and returns
    an ExecutionResult-like object (``expectations``, ``variances``).
    ``evaluate_shifted`` returns the component expectations with binding
    ``slot`` offset by ``shift``. ``shift_rule`` lists the (coefficient,
    shift) pairs whose weighted sum is the derivative for ``slot``.
    """

    def evaluate(self, bindings: np.ndarray):
        ...

    def evaluate_shifted(self, bindings: np.ndarray, slot: int, shift: float) -> np.ndarray:
        ...

    def shift_rule(self, slot: int) -> Sequence[Tuple[float, float]]:
        ...


def unbroadcast(grad: np.ndarray, shape: Shape) -> np.ndarray:
    """Reduce a gradient back to an operand that was broadcast from 1x1."""
    if grad.shape == tuple(shape):
        return grad
    return np.sum(grad).reshape(1, 1)


# =============================================================================
# Classical rules
# =============================================================================

def _plus(node, values, dx, needs) -> Grads:
    return [unbroadcast(dx, values[0].shape), unbroadcast(dx, values[1].shape)]


def _minus(node, values, dx, needs) -> Grads:
    return [unbroadcast(dx, values[0].shape), unbroadcast(-dx, values[1].shape)]


def _multiply(node, values, dx, needs) -> Grads:
    x, y = values
    return [unbroadcast(dx * y, x.shape), unbroadcast(dx * x, y.shape)]


def _divide(node, values, dx, needs) -> Grads:
    x, y = values
    with np.errstate(all='ignore'):
        grad_x = unbroadcast(dx / y, x.shape)
        grad_y = unbroadcast(-dx * x / (y ** 2), y.shape) if needs[1] else None
    return [grad_x, grad_y]


def _exponent(node, values, dx, needs) -> Grads:
    # node.value is exp(operand) from the forward pass
    return [dx * node.value]


def _log(node, values, dx, needs) -> Grads:
    with np.errstate(all='ignore'):
        return [dx / values[0]]


def _sigmoid(node, values, dx, needs) -> Grads:
    s = node.value
    return [dx * s * (1.0 - s)]


def _polynomial(node, values, dx, needs) -> Grads:
    x, p = values
    grad_x = grad_p = None
    with np.errstate(all='ignore'):
        if needs[0]:
            grad_x = dx * p * np.power(x, p - 1)
        if needs[1]:
            safe_log = np.where(x > 0, np.log(np.where(x > 0, x, 1.0)), 0.0)
            grad_p = unbroadcast(dx * node.value * safe_log, p.shape)
    return [grad_x, grad_p]


def _dot(node, values, dx, needs) -> Grads:
    lhs, rhs = values
    return [dx @ rhs.T, lhs.T @ dx]


def _inverse(node, values, dx, needs) -> Grads:
    inv_t = node.value.T
    return [-inv_t @ dx @ inv_t]


def _transpose(node, values, dx, needs) -> Grads:
    return [dx.T.copy()]


def _sum(node, values, dx, needs) -> Grads:
    return [np.ones(values[0].shape) * dx]


def _softmax(node, values, dx, needs) -> Grads:
    axis = node.attrs['axis']
    s = node.value
    return [s * (dx - np.sum(dx * s, axis=axis, keepdims=True))]


def _cross_entropy(node, values, dx, needs) -> Grads:
    prediction, label = values
    with np.errstate(all='ignore'):
        grad_pred = -label / prediction * dx if needs[0] else None
        grad_label = -np.log(prediction) * dx if needs[1] else None
    return [grad_pred, grad_label]


def _dropout(node, values, dx, needs) -> Grads:
    # the rate is a hyperparameter, not differentiable
    return [dx * node.attrs['mask'], None]


def _stack(node, values, dx, needs) -> Grads:
    axis = node.attrs['axis']
    grads: Grads = []
    start = 0
    for v in values:
        stop = start + v.shape[axis]
        grads.append(dx[start:stop, :].copy() if axis == 0 else dx[:, start:stop].copy())
        start = stop
    return grads


def _subscript(node, values, dx, needs) -> Grads:
    grad = np.zeros(values[0].shape)
    grad.reshape(-1)[node.attrs['index']] = dx[0, 0]
    return [grad]


# =============================================================================
# Quantum rule (parameter shift)
# =============================================================================

def shifted_derivative(evaluator: ShiftEvaluator, bindings: np.ndarray, slot: int) -> np.ndarray:
    """d(components)/d(binding[slot]) from the evaluator's shift rule."""
    total = None
    for coefficient, shift in evaluator.shift_rule(slot):
        term = coefficient * np.asarray(evaluator.evaluate_shifted(bindings, slot, shift))
        total = term if total is None else total + term
    return total


def _quantum(node, values, dx, needs) -> Grads:
    attrs = node.attrs
    evaluator: ShiftEvaluator = attrs['evaluator']
    bindings = attrs['bindings']
    grads: Grads = [None] * len(values)

    if node.op is OpKind.QOP_PMEASURE:
        upstream = dx.reshape(-1)
    else:
        weights = quantum_weights(node, values)
        upstream = weights * dx[0, 0]
        # product rule: d(w_t * <P_t>)/d(w_t) = <P_t>
        expectations = attrs['expectations']
        for t, w in enumerate(attrs['weights']):
            if isinstance(w, int) and needs[w]:
                g = np.array([[expectations[t] * dx[0, 0]]])
                grads[w] = g if grads[w] is None else grads[w] + g

    for slot, operand in enumerate(attrs['slot_operands']):
        if not needs[operand]:
            continue
        derivative = shifted_derivative(evaluator, bindings, slot)
        g = np.array([[float(upstream @ derivative)]])
        grads[operand] = g if grads[operand] is None else grads[operand] + g

    return grads


BACKWARD_RULES: Dict[OpKind, BackwardRule] = {
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
