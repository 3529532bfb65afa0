"""
HybridGrad Configuration
========================

Module-level engine defaults, in the same spirit as a global array module:
one configuration object shared by every graph in the process.

Usage:
    from hybridgrad.config import set_config, config_context, seed

    set_config(strict=False)        # let inf/NaN propagate
    seed(1234)                      # reproducible dropout masks and shots

    with config_context(default_shots=2000):
        loss_value = evaluate(loss)
"""

from __future__ import annotations
from contextlib import contextmanager
from dataclasses import dataclass, fields, replace
from typing import Any, Iterator, Optional
import numpy as np


@dataclass(frozen=True)
class EngineConfig:
    """
    Engine-wide settings.

    Attributes
    ----------
    strict : bool
        Raise DomainError on invalid transcendental or matrix input instead
        of letting IEEE-754 inf/NaN propagate.
    seed : Optional[int]
        Seed of the shared random source (dropout masks, shot sampling).
    default_shots : Optional[int]
        Shot budget for quantum nodes built without an explicit one.
        None means exact simulation.
    dtype : numpy dtype
        Floating point type of every node value.
    """
    strict: bool = True
    seed: Optional[int] = None
    default_shots: Optional[int] = None
    dtype: Any = np.float64


_config = EngineConfig()
_rng = np.random.default_rng(_config.seed)


def get_config() -> EngineConfig:
    """Return the active configuration."""
    return _config


def set_config(**kwargs) -> EngineConfig:
    """
    Replace fields of the active configuration.

    Changing ``seed`` also reseeds the shared random source.
    """
    global _config, _rng

    known = {f.name for f in fields(EngineConfig)}
    unknown = set(kwargs) - known
    if unknown:
        raise ValueError(f"Unknown config field(s): {sorted(unknown)}")
    shots = kwargs.get('default_shots')
    if shots is not None and shots <= 0:
        raise ValueError(f"Invalid default_shots: {shots}")

    _config = replace(_config, **kwargs)
    if 'seed' in kwargs:
        _rng = np.random.default_rng(_config.seed)
    return _config


@contextmanager
def config_context(**kwargs) -> Iterator[EngineConfig]:
    """Temporarily override configuration fields."""
    global _config, _rng

    previous, previous_rng = _config, _rng
    try:
        yield set_config(**kwargs)
    finally:
        _config, _rng = previous, previous_rng


def seed(value: Optional[int]) -> np.random.Generator:
    """Reseed the shared random source and return it."""
    set_config(seed=value)
    return _rng


def get_rng() -> np.random.Generator:
    """The shared random source used for dropout masks and shot sampling."""
    return _rng
