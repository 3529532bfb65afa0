"""Bridge between graph leaves and torch.optim optimizers."""

import numpy as np
import torch
from torch import nn
from torch.optim import Optimizer
from typing import Iterable, Iterator, List

from ..autograd import GradientMap, backward, evaluate
from ..core.node import NodeKind
from ..core.var import Var


class LeafParameter(nn.Parameter):
    """
    nn.Parameter mirroring the value of a graph leaf.

    Args:
        leaf: Trainable leaf Var whose value seeds the parameter.
        requires_grad: Whether the optimizer should update it (default: True)

    Notes:
        - The tensor is a float64 copy; the leaf is only updated by
          ``TorchLeafBridge.write_back``.
        - The originating Var is attached as ``param.leaf``.
    """

    def __new__(cls, leaf: Var, requires_grad: bool = True):
        data = torch.from_numpy(np.array(leaf.value, dtype=np.float64, copy=True))
        instance = super().__new__(cls, data, requires_grad=requires_grad)
        # nn.Parameter subclasses cannot use __init__
        instance.leaf = leaf
        return instance

    def __repr__(self):
        return f"LeafParameter(shape={tuple(self.shape)})"


class TorchLeafBridge:
    """
    Exposes graph leaves to a torch optimizer.

    Args:
        leaves (iterable): Leaf Vars to optimize. Constants and operators are
            rejected.

    Example:
        >>> w = leaf(np.zeros((1, 3)), trainable=True)
        >>> bridge = TorchLeafBridge([w])
        >>> optimizer = torch.optim.Adam(bridge.parameters(), lr=0.01)
        >>> for _ in range(100):
        ...     loss_value = optimization_step(loss, bridge, optimizer)
    """

    def __init__(self, leaves: Iterable[Var]):
        self.leaves: List[Var] = list(leaves)
        if not self.leaves:
            raise ValueError("TorchLeafBridge needs at least one leaf")
        for v in self.leaves:
            if v.node.kind is not NodeKind.LEAF:
                raise ValueError(f"Cannot optimize {v.node.kind.value} node {v!r}")
            if v.value is None:
                raise ValueError(f"Leaf {v!r} has no value")
        self.params: List[LeafParameter] = [LeafParameter(v) for v in self.leaves]

    def parameters(self) -> List[LeafParameter]:
        return list(self.params)

    def __iter__(self) -> Iterator[LeafParameter]:
        return iter(self.params)

    def __len__(self) -> int:
        return len(self.params)

    def load_gradients(self, grads: GradientMap):
        """Copy graph gradients into ``param.grad``."""
        for v, p in zip(self.leaves, self.params):
            g = torch.from_numpy(np.array(grads[v], dtype=np.float64, copy=True))
            if p.grad is None:
                p.grad = g
            else:
                p.grad.add_(g)

    @torch.no_grad()
    def write_back(self):
        """Push parameter values back into the leaves."""
        for v, p in zip(self.leaves, self.params):
            v.set_value(p.detach().cpu().numpy().copy())

    @torch.no_grad()
    def sync_from_leaves(self):
        """Overwrite parameters with the current leaf values."""
        for v, p in zip(self.leaves, self.params):
            p.copy_(torch.from_numpy(np.array(v.value, dtype=np.float64)))

    def zero_grad(self):
        for p in self.params:
            p.grad = None
        for v in self.leaves:
            v.zero_grad()


def optimization_step(root: Var, bridge: TorchLeafBridge, optimizer: Optimizer) -> float:
    """
    One forward/backward/update cycle.

    Args:
        root: Scalar loss Var.
        bridge: Leaves being optimized.
        optimizer: torch optimizer built over ``bridge.parameters()``.

    Returns:
        Loss value before the update.
    """
    value = float(np.sum(evaluate(root)))
    optimizer.zero_grad()
    bridge.zero_grad()
    grads = backward(root, restrict_to=bridge.leaves)
    bridge.load_gradients(grads)
    optimizer.step()
    bridge.write_back()
    return value
