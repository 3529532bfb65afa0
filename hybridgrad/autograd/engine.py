"""
HybridGrad Autograd - Engine
============================

Reverse-mode sweep over the expression graph.

Usage:
    loss = (a * a) + b
    evaluate(loss)
    grads = backward(loss)
    grads[a]          # d loss / d a
    a.grad            # same, accumulated across passes until a.zero_grad()

Partial backpropagation:
    grads = backward(loss, restrict_to=[theta])   # only theta is recorded
"""

from __future__ import annotations
import logging
from typing import Dict, Iterable, Iterator, Optional
import numpy as np

from ..core.node import Node, post_order
from ..core.var import Var
from ..errors import ConstructionError
from .forward import evaluate
from .rules import BACKWARD_RULES


logger = logging.getLogger(__name__)


class GradientMap:
    """
    Leaf -> accumulated gradient.

    Looking up a Var that received no gradient (unreachable from the root,
    or excluded by ``restrict_to``) returns zeros of its shape rather than
    raising.
    """

    def __init__(self):
        self._grads: Dict[Var, np.ndarray] = {}

    def accumulate(self, var: Var, grad: np.ndarray):
        if var in self._grads:
            self._grads[var] = self._grads[var] + grad
        else:
            self._grads[var] = grad.copy()

    def __getitem__(self, var: Var) -> np.ndarray:
        grad = self._grads.get(var)
        if grad is None:
            return np.zeros(var.shape)
        return grad

    def __contains__(self, var) -> bool:
        return var in self._grads

    def __iter__(self) -> Iterator[Var]:
        return iter(self._grads)

    def __len__(self) -> int:
        return len(self._grads)

    def keys(self):
        return self._grads.keys()

    def items(self):
        return self._grads.items()

    def values(self):
        return self._grads.values()

    def clear(self):
        self._grads.clear()

    def __repr__(self) -> str:
        return f"GradientMap({len(self._grads)} entries)"


def _seed_gradient(root: Node, seed) -> np.ndarray:
    if seed is None:
        return np.ones(root.shape)
    grad = np.array(seed, dtype=np.float64)
    if grad.ndim == 0:
        grad = np.full(root.shape, float(grad))
    if grad.shape != root.shape:
        raise ConstructionError(f"backward: seed shape {grad.shape} does not match root {root.shape}")
    return grad


def backward(
    root: Var,
    seed=None,
    restrict_to: Optional[Iterable[Var]] = None,
    grads: Optional[GradientMap] = None,
) -> GradientMap:
    """
    Reverse-mode gradients of ``root``.

    Parameters
    ----------
    root : Var
        Output to differentiate (usually a scalar loss).
    seed : array-like, optional
        Gradient of the final objective w.r.t. ``root``; ones by default.
    restrict_to : Iterable[Var], optional
        If given and non-empty, only these nodes are recorded and the sweep
        does not descend below them. Every other leaf gets zero gradient.
        Otherwise every constant and leaf reached from ``root`` is recorded.
    grads : GradientMap, optional
        Map to accumulate into. A fresh map is returned otherwise.

    Returns
    -------
    GradientMap with one entry per recorded node. The same gradients are
    also added to each recorded node's ``.grad``.

    Values cached by the most recent ``evaluate`` are used, so a dropout mask
    or shot sample drawn in the forward pass is the one differentiated. Operators
    with no cached value yet (say, a loss built after the forward pass) are
    computed first. Values that are already cached are kept.
    """
    result = grads if grads is not None else GradientMap()
    order = post_order(root.node)

    if any(n.is_operator and n.value is None for n in order):
        evaluate(root, reuse_cached=True)

    restrict: Dict[int, Node] = {}
    if restrict_to is not None:
        for v in restrict_to:
            restrict[id(v.node)] = v.node

    # which nodes can still hand gradient to something that gets recorded;
    # without a restriction every constant and leaf is recorded
    relevant: Dict[int, bool] = {}
    for node in order:
        if restrict:
            relevant[id(node)] = id(node) in restrict or any(relevant[id(o)] for o in node.operands)
        else:
            relevant[id(node)] = True

    adjoints: Dict[int, np.ndarray] = {id(root.node): _seed_gradient(root.node, seed)}
    recorded = 0

    for node in reversed(order):
        dx = adjoints.pop(id(node), None)
        if dx is None:
            continue

        if restrict:
            if id(node) in restrict:
                _record(result, node, dx)
                recorded += 1
                continue
        elif not node.is_operator:
            _record(result, node, dx)
            recorded += 1
            continue

        if not node.is_operator:
            continue

        needs = [relevant[id(o)] for o in node.operands]
        if not any(needs):
            continue

        values = [o.value for o in node.operands]
        local = BACKWARD_RULES[node.op](node, values, dx, needs)

        for operand, need, g in zip(node.operands, needs, local):
            if not need or g is None:
                continue
            key = id(operand)
            if key in adjoints:
                adjoints[key] = adjoints[key] + g
            else:
                adjoints[key] = g

    logger.debug("backward: %d nodes visited, %d gradients recorded", len(order), recorded)
    return result


def _record(result: GradientMap, node: Node, dx: np.ndarray):
    result.accumulate(Var(node=node), dx)
    node.grad = dx.copy() if node.grad is None else node.grad + dx


def zero_grad(*vars: Var):
    """
    Reset accumulated ``.grad`` on the given Vars.

    Passing an operator resets every node reachable from it.
    """
    for v in vars:
        for node in post_order(v.node):
            node.grad = None
