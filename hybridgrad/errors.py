"""
HybridGrad Errors
=================

Every failure inside the engine surfaces as one of these. Nothing is
recovered locally: retries belong to the backend or the optimizer loop.
"""


class HybridGradError(Exception):
    """Base class for all engine errors."""


class ConstructionError(HybridGradError, ValueError):
    """Arity or shape mismatch while building an expression."""


class BoundsError(ConstructionError, IndexError):
    """Subscript outside the operand vector."""


class DomainError(HybridGradError, ArithmeticError):
    """Invalid numeric input (log of a non-positive value, singular inverse, ...)."""


class BackendError(HybridGradError, RuntimeError):
    """Circuit execution failed in the backend."""


__all__ = [
    'HybridGradError',
    'ConstructionError',
    'BoundsError',
    'DomainError',
    'BackendError',
]
