"""
Hybrid circuit adapter.

Bridges a HybridCircuit to an ExecutionBackend and exposes the
ShiftEvaluator capability that quantum graph nodes differentiate through.

Lifecycle:
    IDLE --bind--> BOUND --execute--> EXECUTED --release--> IDLE

``bind`` is pure with respect to the graph: it substitutes numbers into a
copy of the circuit and never touches node values.
"""

from __future__ import annotations
import logging
import math
from enum import Enum
from typing import List, Optional, Sequence, Tuple
import numpy as np

from ..errors import BackendError, ConstructionError, HybridGradError
from .backend import ExecutionBackend, ExecutionResult, StatevectorBackend
from .circuit import BoundCircuit, HybridCircuit
from .observable import MeasurableQuantity


logger = logging.getLogger(__name__)


# Two-term rule for rotations exp(-i theta/2 P): eigenvalue gap 1
TWO_TERM_RULE: Tuple[Tuple[float, float], ...] = (
    (0.5, math.pi / 2),
    (-0.5, -math.pi / 2),
)

# Four-term rule for controlled rotations: generator eigenvalues {0, +-1/2}
_D_PLUS = (math.sqrt(2) + 1) / (4 * math.sqrt(2))
_D_MINUS = (math.sqrt(2) - 1) / (4 * math.sqrt(2))

FOUR_TERM_RULE: Tuple[Tuple[float, float], ...] = (
    (_D_PLUS, math.pi / 2),
    (-_D_PLUS, -math.pi / 2),
    (-_D_MINUS, 3 * math.pi / 2),
    (_D_MINUS, -3 * math.pi / 2),
)


class AdapterState(Enum):
    IDLE = "idle"
    BOUND = "bound"
    EXECUTED = "executed"


class HybridCircuitAdapter:
    """
    Runs one circuit against one measurement on a backend.

    Parameters
    ----------
    circuit : HybridCircuit
        Snapshot is taken at construction; later edits to ``circuit`` do
        not affect the adapter.
    backend : ExecutionBackend, optional
        Defaults to a StatevectorBackend.
    observable : MeasurableQuantity, optional
        Measure expectation values of its terms.
    measure_qubits, components : Sequence[int], optional
        Measure basis-state probabilities instead (exactly one of
        ``observable`` and ``components`` must be given).
    shots : int, optional
        None means exact simulation.
    """

    def __init__(
        self,
        circuit: HybridCircuit,
        backend: Optional[ExecutionBackend] = None,
        observable: Optional[MeasurableQuantity] = None,
        measure_qubits: Optional[Sequence[int]] = None,
        components: Optional[Sequence[int]] = None,
        shots: Optional[int] = None,
    ):
        if (observable is None) == (components is None):
            raise ConstructionError("Adapter needs exactly one of observable or components")
        if shots is not None and shots <= 0:
            raise ConstructionError(f"Invalid shots: {shots}")

        self.circuit = circuit.copy()
        self.backend = backend if backend is not None else StatevectorBackend()
        self.observable = observable
        self.measure_qubits = None if measure_qubits is None else tuple(measure_qubits)
        self.components = None if components is None else tuple(components)
        self.shots = shots

        self._controlled: List[bool] = [bool(op.controls) for _, op in self._slot_gates()]
        self._state = AdapterState.IDLE
        self._bound: Optional[BoundCircuit] = None
        self._result: Optional[ExecutionResult] = None

    def _slot_gates(self):
        gates = self.circuit.gates
        return [(pos, gates[pos]) for pos, _ in self.circuit.parameter_slots()]

    @property
    def state(self) -> AdapterState:
        return self._state

    @property
    def n_slots(self) -> int:
        return len(self._controlled)

    # --- Lifecycle -----------------------------------------------------------

    def bind(self, values: Sequence[float]) -> BoundCircuit:
        self._bound = self.circuit.bind(values)
        self._result = None
        self._state = AdapterState.BOUND
        logger.debug("bind: %d slot value(s)", len(self._bound.slot_positions))
        return self._bound

    def execute(self) -> ExecutionResult:
        """Run the bound circuit; the result is cached until the next bind."""
        if self._bound is None:
            raise BackendError("execute() called before bind()")
        if self._result is None:
            self._result = self._run(self._bound)
        self._state = AdapterState.EXECUTED
        return self._result

    def execute_shifted(self, param_index: int, shift: float) -> np.ndarray:
        """Component expectations with parameter slot ``param_index`` offset by ``shift``."""
        if self._bound is None:
            raise BackendError("execute_shifted() called before bind()")
        self._check_slot(param_index)
        return self._run(self._bound.shifted(param_index, shift)).expectations

    def release(self):
        logger.debug("release: %s -> idle", self._state.value)
        self._bound = None
        self._result = None
        self._state = AdapterState.IDLE

    def _run(self, bound: BoundCircuit) -> ExecutionResult:
        try:
            if self.observable is not None:
                return self.backend.execute(bound, self.observable, self.shots)
            qubits = self.measure_qubits
            if qubits is None:
                qubits = tuple(range(bound.n_qubits))
            return self.backend.probabilities(bound, qubits, self.components, self.shots)
        except HybridGradError:
            raise
        except Exception as exc:
            raise BackendError(f"Backend {self.backend!r} failed: {exc}") from exc

    def _check_slot(self, slot: int):
        if not 0 <= slot < self.n_slots:
            raise BackendError(f"Parameter slot {slot} out of range ({self.n_slots} slots)")
        if not self.backend.supports_shift(slot):
            raise BackendError(f"Backend {self.backend!r} cannot shift parameter {slot}")

    # --- ShiftEvaluator ------------------------------------------------------

    def evaluate(self, bindings: np.ndarray) -> ExecutionResult:
        self.bind(bindings)
        return self.execute()

    def evaluate_shifted(self, bindings: np.ndarray, slot: int, shift: float) -> np.ndarray:
        self._check_slot(slot)
        return self._run(self.circuit.bind(bindings).shifted(slot, shift)).expectations

    def shift_rule(self, slot: int) -> Tuple[Tuple[float, float], ...]:
        self._check_slot(slot)
        return FOUR_TERM_RULE if self._controlled[slot] else TWO_TERM_RULE

    def __repr__(self) -> str:
        target = "observable" if self.observable is not None else f"components={list(self.components)}"
        return (f"HybridCircuitAdapter({self.circuit!r}, {target}, shots={self.shots}, "
                f"state={self._state.value})")
