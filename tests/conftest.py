"""Pytest configuration and fixtures."""

import pytest
import numpy as np
import hybridgrad as hg


@pytest.fixture(autouse=True)
def default_config():
    """Run every test against the default engine configuration."""
    with hg.config_context(strict=True, seed=None, default_shots=None):
        yield hg.get_config()


@pytest.fixture
def random_seed():
    """Seed the shared random source for reproducibility."""
    hg.seed(42)
    return 42


@pytest.fixture
def rng():
    """Local generator for random test inputs."""
    return np.random.default_rng(1234)


@pytest.fixture
def backend():
    """Exact statevector backend."""
    return hg.StatevectorBackend()
