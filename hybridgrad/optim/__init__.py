"""Optimizer integration for HybridGrad graphs."""

from .torch_bridge import LeafParameter, TorchLeafBridge, optimization_step

__all__ = [
    'LeafParameter',
    'TorchLeafBridge',
    'optimization_step',
]
