"""
HybridGrad: Reverse-Mode Autodiff for Hybrid Classical/Quantum Graphs
=====================================================================

Build an expression graph of matrix-valued operators, evaluate it, and
differentiate it in one reverse sweep. Quantum circuit measurements are
first-class operators whose gradients come from the parameter-shift rule.

Example:
    >>> import hybridgrad as hg
    >>> theta = hg.leaf(0.4, trainable=True)
    >>> circuit = hg.HybridCircuit(1).rx(0, theta)
    >>> energy = hg.qop(circuit, {"Z0": 1.0})
    >>> hg.evaluate(energy)             # cos(0.4)
    >>> grads = hg.backward(energy)
    >>> grads[theta]                    # -sin(0.4)

Torch optimizers are available through ``hybridgrad.optim``.
"""

__version__ = "0.1.0"

# Graph construction
from .core import (
    Node,
    NodeKind,
    OpKind,
    Var,
    as_var,
    constant,
    leaf,
    make_operator,
    exp,
    log,
    sigmoid,
    poly,
    dot,
    inverse,
    transpose,
    sum,
    mean,
    softmax,
    cross_entropy,
    dropout,
    stack,
    subscript,
)

# Evaluation and differentiation
from .autograd import (
    evaluate,
    backward,
    zero_grad,
    GradientMap,
    ShiftEvaluator,
    check_gradients,
    numerical_gradient,
)

# Quantum
from .quantum import (
    HybridCircuit,
    GateOp,
    GateKind,
    BoundCircuit,
    MeasurableQuantity,
    PauliTerm,
    ExecutionBackend,
    ExecutionResult,
    StatevectorBackend,
    HybridCircuitAdapter,
    AdapterState,
    qop,
    qop_pmeasure,
)

# Configuration and errors
from .config import EngineConfig, get_config, set_config, config_context, seed, get_rng
from .errors import HybridGradError, ConstructionError, DomainError, BackendError, BoundsError


__all__ = [
    # Graph
    'Node', 'NodeKind', 'OpKind', 'Var',
    'as_var', 'constant', 'leaf', 'make_operator',
    'exp', 'log', 'sigmoid', 'poly', 'dot', 'inverse', 'transpose',
    'sum', 'mean', 'softmax', 'cross_entropy', 'dropout', 'stack', 'subscript',

    # Autograd
    'evaluate', 'backward', 'zero_grad', 'GradientMap', 'ShiftEvaluator',
    'check_gradients', 'numerical_gradient',

    # Quantum
    'HybridCircuit', 'GateOp', 'GateKind', 'BoundCircuit',
    'MeasurableQuantity', 'PauliTerm',
    'ExecutionBackend', 'ExecutionResult', 'StatevectorBackend',
    'HybridCircuitAdapter', 'AdapterState',
    'qop', 'qop_pmeasure',

    # Config / errors
    'EngineConfig', 'get_config', 'set_config', 'config_context', 'seed', 'get_rng',
    'HybridGradError', 'ConstructionError', 'DomainError', 'BackendError', 'BoundsError',
]
