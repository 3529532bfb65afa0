"""
HybridGrad Quantum Module
=========================

Parameterized circuits whose rotation angles are graph Vars, the
backends that run them, and the graph operators that embed their
measurements in a differentiable expression.
"""

from .circuit import GateKind, GateOp, Instruction, BoundCircuit, HybridCircuit, gate_matrix
from .observable import PauliTerm, MeasurableQuantity, parse_label
from .backend import (
    ExecutionResult,
    ExecutionBackend,
    StatevectorBackend,
    apply_gate,
    pauli_expectation,
    marginal_probabilities,
)
from .adapter import AdapterState, HybridCircuitAdapter, TWO_TERM_RULE, FOUR_TERM_RULE
from .ops import qop, qop_pmeasure

__all__ = [
    # Circuits
    'GateKind',
    'GateOp',
    'Instruction',
    'BoundCircuit',
    'HybridCircuit',
    'gate_matrix',

    # Observables
    'PauliTerm',
    'MeasurableQuantity',
    'parse_label',

    # Backends
    'ExecutionResult',
    'ExecutionBackend',
    'StatevectorBackend',
    'apply_gate',
    'pauli_expectation',
    'marginal_probabilities',

    # Adapter
    'AdapterState',
    'HybridCircuitAdapter',
    'TWO_TERM_RULE',
    'FOUR_TERM_RULE',

    # Graph operators
    'qop',
    'qop_pmeasure',
]
