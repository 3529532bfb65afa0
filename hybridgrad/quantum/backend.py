"""
Execution backends.

A backend runs a BoundCircuit and reports expectation values of Pauli
terms (or basis-state probabilities), either exactly or estimated from a
finite number of shots.

StatevectorBackend is a dense numpy simulator:
    - State: complex128 array of shape (2**n,)
    - Qubit ordering: qubit 0 is the most significant bit
    - Gate application: reshape to [2]*n, contract the target axis,
      restricted to the |1...1> subspace of any control qubits
"""

from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Optional, Protocol, Sequence, Tuple, runtime_checkable
import numpy as np

from ..config import get_rng
from .circuit import BoundCircuit
from .gates import H, S, PAULI
from .observable import MeasurableQuantity


logger = logging.getLogger(__name__)


@dataclass
class ExecutionResult:
    """
    expectations: one value per observable term (or per requested component).
    variances:    variance of each estimate, None for exact simulation.
    """
    expectations: np.ndarray
    variances: Optional[np.ndarray] = None

    @property
    def shots_based(self) -> bool:
        return self.variances is not None


@runtime_checkable
class ExecutionBackend(Protocol):
    """Anything that can run a bound circuit."""

    def execute(self, bound: BoundCircuit, observable: MeasurableQuantity,
                shots: Optional[int] = None) -> ExecutionResult:
        ...

    def probabilities(self, bound: BoundCircuit, qubits: Sequence[int],
                      components: Sequence[int], shots: Optional[int] = None) -> ExecutionResult:
        ...

    def supports_shift(self, param_index: int) -> bool:
        ...


# =============================================================================
# Statevector kernels
# =============================================================================

def zero_state(n_qubits: int) -> np.ndarray:
    state = np.zeros(2 ** n_qubits, dtype=np.complex128)
    state[0] = 1.0
    return state


def apply_gate(state: np.ndarray, matrix: np.ndarray, target: int,
               controls: Tuple[int, ...] = ()) -> np.ndarray:
    """Apply a (2, 2) unitary to ``target``, conditioned on all ``controls`` being |1>."""
    n = int(np.log2(state.size))
    psi = state.reshape([2] * n)

    if not controls:
        out = np.tensordot(matrix, psi, axes=([1], [target]))
        return np.moveaxis(out, 0, target).reshape(-1)

    index = [slice(None)] * n
    for c in controls:
        index[c] = 1
    index = tuple(index)

    # controlled axes disappear from the sub-block
    axis = target - sum(1 for c in controls if c < target)
    block = np.tensordot(matrix, psi[index], axes=([1], [axis]))
    out = psi.copy()
    out[index] = np.moveaxis(block, 0, axis)
    return out.reshape(-1)


def run_statevector(bound: BoundCircuit) -> np.ndarray:
    state = zero_state(bound.n_qubits)
    for inst in bound.instructions:
        state = apply_gate(state, inst.matrix(), inst.target, inst.controls)
    return state


def pauli_expectation(state: np.ndarray, paulis: Sequence[Tuple[int, str]]) -> float:
    """<psi| P |psi> for a Pauli string given as (qubit, letter) pairs."""
    phi = state
    for qubit, letter in paulis:
        phi = apply_gate(phi, PAULI[letter](), qubit)
    return float(np.real(np.vdot(state, phi)))


def basis_probabilities(state: np.ndarray) -> np.ndarray:
    probs = np.abs(state) ** 2
    return probs / probs.sum()


def marginal_probabilities(state: np.ndarray, qubits: Sequence[int]) -> np.ndarray:
    """Probabilities over ``qubits``; ``qubits[0]`` is the most significant bit of the index."""
    n = int(np.log2(state.size))
    probs = basis_probabilities(state).reshape([2] * n)
    others = tuple(q for q in range(n) if q not in qubits)
    if others:
        probs = probs.sum(axis=others)
    # remaining axes are in ascending qubit order
    remaining = sorted(qubits)
    probs = np.transpose(probs, [remaining.index(q) for q in qubits])
    return probs.reshape(-1)


def _rotate_to_z(state: np.ndarray, paulis: Sequence[Tuple[int, str]]) -> np.ndarray:
    s_dagger = S().conj().T
    for qubit, letter in paulis:
        if letter == 'X':
            state = apply_gate(state, H(), qubit)
        elif letter == 'Y':
            state = apply_gate(state, s_dagger, qubit)
            state = apply_gate(state, H(), qubit)
    return state


def _parity_signs(n_qubits: int, qubits: Sequence[int]) -> np.ndarray:
    indices = np.arange(2 ** n_qubits)
    parity = np.zeros_like(indices)
    for q in qubits:
        parity ^= (indices >> (n_qubits - 1 - q)) & 1
    return 1.0 - 2.0 * parity


# =============================================================================
# Backend
# =============================================================================

class StatevectorBackend:
    """
    Dense statevector simulator.

    Parameters
    ----------
    rng : np.random.Generator, optional
        Source for shot sampling. Defaults to the engine's shared generator,
        looked up at call time so ``seed()`` takes effect.
    """

    def __init__(self, rng: Optional[np.random.Generator] = None):
        self._rng = rng

    @property
    def rng(self) -> np.random.Generator:
        return self._rng if self._rng is not None else get_rng()

    def statevector(self, bound: BoundCircuit) -> np.ndarray:
        return run_statevector(bound)

    def execute(self, bound: BoundCircuit, observable: MeasurableQuantity,
                shots: Optional[int] = None) -> ExecutionResult:
        logger.debug("execute: %d qubits, %d gates, %d terms, shots=%s",
                     bound.n_qubits, len(bound.instructions), len(observable), shots)
        state = run_statevector(bound)

        if shots is None:
            expectations = np.array([
                1.0 if term.is_identity else pauli_expectation(state, term.paulis)
                for term in observable
            ])
            return ExecutionResult(expectations)

        means = np.empty(len(observable))
        variances = np.empty(len(observable))
        for t, term in enumerate(observable):
            if term.is_identity:
                means[t], variances[t] = 1.0, 0.0
                continue
            probs = basis_probabilities(_rotate_to_z(state, term.paulis))
            counts = self.rng.multinomial(shots, probs)
            signs = _parity_signs(bound.n_qubits, [q for q, _ in term.paulis])
            mean = float(counts @ signs) / shots
            means[t] = mean
            variances[t] = (1.0 - mean ** 2) / shots
        return ExecutionResult(means, variances)

    def probabilities(self, bound: BoundCircuit, qubits: Sequence[int],
                      components: Sequence[int], shots: Optional[int] = None) -> ExecutionResult:
        logger.debug("probabilities: qubits=%s, components=%s, shots=%s", list(qubits), list(components), shots)
        probs = marginal_probabilities(run_statevector(bound), qubits)

        if shots is None:
            return ExecutionResult(probs[list(components)])

        counts = self.rng.multinomial(shots, probs)
        estimate = counts[list(components)] / shots
        return ExecutionResult(estimate, estimate * (1.0 - estimate) / shots)

    def supports_shift(self, param_index: int) -> bool:
        return True

    def __repr__(self) -> str:
        return "StatevectorBackend()"
