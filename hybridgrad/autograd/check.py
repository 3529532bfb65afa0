"""
HybridGrad Autograd - Gradient Checking
=======================================

Compare backward() against central finite differences.
"""

from __future__ import annotations
from typing import List, Sequence
import numpy as np

from ..core.var import Var
from .engine import backward
from .forward import evaluate


def numerical_gradient(root: Var, leaf: Var, eps: float = 1e-6) -> np.ndarray:
    """
    Central-difference gradient of a scalar ``root`` w.r.t. ``leaf``.

    The leaf is perturbed in place and restored afterwards; downstream
    cached values reflect the restored leaf when this returns.
    """
    original = leaf.value.copy()
    grad = np.zeros_like(original)
    try:
        for idx in np.ndindex(original.shape):
            bumped = original.copy()
            bumped[idx] += eps
            leaf.set_value(bumped)
            f_plus = float(np.sum(evaluate(root)))

            bumped[idx] -= 2 * eps
            leaf.set_value(bumped)
            f_minus = float(np.sum(evaluate(root)))

            grad[idx] = (f_plus - f_minus) / (2 * eps)
    finally:
        leaf.set_value(original)
        evaluate(root)
    return grad


def check_gradients(
    root: Var,
    leaves: Sequence[Var],
    eps: float = 1e-6,
    atol: float = 1e-5,
    rtol: float = 1e-4,
) -> bool:
    """
    Verify gradients numerically.

    Parameters
    ----------
    root : Var
        Scalar expression to differentiate.
    leaves : Sequence[Var]
        Leaves to check.
    eps : float
        Finite difference step size.
    atol, rtol : float
        Absolute and relative tolerance.

    Returns
    -------
    True if gradients match, raises AssertionError otherwise.
    """
    evaluate(root)
    saved = [leaf.node.grad for leaf in leaves]
    analytical: List[np.ndarray] = [backward(root, restrict_to=[leaf])[leaf] for leaf in leaves]
    # leave accumulated .grad untouched
    for leaf, grad in zip(leaves, saved):
        leaf.node.grad = grad

    for leaf, expected in zip(leaves, analytical):
        numerical = numerical_gradient(root, leaf, eps)
        if not np.allclose(expected, numerical, atol=atol, rtol=rtol):
            raise AssertionError(
                f"Gradient mismatch for {leaf!r}:\n"
                f"  analytical: {expected}\n"
                f"  numerical:  {numerical}"
            )
    return True
