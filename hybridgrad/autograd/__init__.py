"""
HybridGrad Autograd Module
==========================

Forward evaluation and reverse-mode differentiation over Var graphs.

Classical operators are differentiated with closed-form local rules.
Quantum expectation nodes are opaque: their gradient comes from the
parameter-shift rule, evaluated through the node's injected ShiftEvaluator.
"""

from .forward import FORWARD_RULES, evaluate
from .rules import BACKWARD_RULES, ShiftEvaluator, shifted_derivative, unbroadcast
from .engine import GradientMap, backward, zero_grad
from .check import check_gradients, numerical_gradient

__all__ = [
    # Forward
    'evaluate',
    'FORWARD_RULES',

    # Backward
    'backward',
    'zero_grad',
    'GradientMap',
    'BACKWARD_RULES',
    'ShiftEvaluator',
    'shifted_derivative',
    'unbroadcast',

    # Checking
    'check_gradients',
    'numerical_gradient',
]
