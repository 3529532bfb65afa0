"""
Quantum graph operators.

    qop(circuit, observable)          -> 1x1 Var, sum_t w_t <P_t>
    qop_pmeasure(circuit, components) -> 1xk Var of basis-state probabilities

Operands are the distinct rotation-source Vars of the circuit followed by
the distinct coefficient Vars of the observable. A Var used by several
gates (or as both angle and coefficient) is a single operand whose
gradient sums every use.
"""

from __future__ import annotations
from typing import Dict, List, Optional, Sequence, Union

from ..config import get_config
from ..core.node import OpKind
from ..core.var import Var, make_operator
from ..errors import ConstructionError
from .adapter import HybridCircuitAdapter
from .backend import ExecutionBackend
from .circuit import HybridCircuit
from .observable import MeasurableQuantity


def _resolve_shots(shots: Optional[int]) -> Optional[int]:
    if shots is None:
        shots = get_config().default_shots
    if shots is not None and shots <= 0:
        raise ConstructionError(f"Invalid shots: {shots}")
    return shots


def _collect(vars_: Sequence[Var], operands: List[Var], index: Dict[int, int]):
    for v in vars_:
        if id(v.node) not in index:
            index[id(v.node)] = len(operands)
            operands.append(v)


def qop(
    circuit: HybridCircuit,
    observable: Union[MeasurableQuantity, dict],
    backend: Optional[ExecutionBackend] = None,
    shots: Optional[int] = None,
) -> Var:
    """
    Expectation value of ``observable`` after ``circuit``.

    Parameters
    ----------
    circuit : HybridCircuit
        Rotation angles may be scalar Vars.
    observable : MeasurableQuantity or dict
        Pauli terms, e.g. ``{"Z0": 1.0, "X0 X1": w}``.
    backend : ExecutionBackend, optional
        Defaults to a StatevectorBackend.
    shots : int, optional
        Shot budget; falls back to ``default_shots`` of the engine config,
        exact simulation when both are None.

    Returns
    -------
    1x1 Var differentiable w.r.t. every rotation source and coefficient Var.
    """
    if isinstance(observable, dict):
        observable = MeasurableQuantity(observable)
    if len(observable) == 0:
        raise ConstructionError("qop: observable has no terms")
    for q in observable.qubits():
        if q >= circuit.n_qubits:
            raise ConstructionError(f"qop: observable acts on qubit {q} of a {circuit.n_qubits}-qubit circuit")

    operands: List[Var] = []
    index: Dict[int, int] = {}
    _collect(circuit.variables(), operands, index)
    _collect(observable.variables(), operands, index)

    slot_operands = [index[id(v.node)] for _, v in circuit.parameter_slots()]
    weights = [
        index[id(term.coefficient.node)] if isinstance(term.coefficient, Var) else float(term.coefficient)
        for term in observable
    ]

    adapter = HybridCircuitAdapter(circuit, backend, observable=observable, shots=_resolve_shots(shots))
    return make_operator(OpKind.QOP, operands, {
        'evaluator': adapter,
        'slot_operands': slot_operands,
        'weights': weights,
    })


def qop_pmeasure(
    circuit: HybridCircuit,
    components: Sequence[int],
    backend: Optional[ExecutionBackend] = None,
    measure_qubits: Optional[Sequence[int]] = None,
    shots: Optional[int] = None,
) -> Var:
    """
    Probabilities of selected basis states of ``measure_qubits``.

    Component k of the result is the probability of the bitstring whose
    integer value (``measure_qubits[0]`` most significant) is
    ``components[k]``. ``measure_qubits`` defaults to every qubit.
    """
    if measure_qubits is None:
        measure_qubits = list(range(circuit.n_qubits))
    measure_qubits = [int(q) for q in measure_qubits]
    if not measure_qubits:
        raise ConstructionError("qop_pmeasure: no qubits to measure")
    if len(set(measure_qubits)) != len(measure_qubits):
        raise ConstructionError(f"qop_pmeasure: repeated qubit in {measure_qubits}")
    for q in measure_qubits:
        if not 0 <= q < circuit.n_qubits:
            raise ConstructionError(f"qop_pmeasure: qubit {q} out of range")

    components = [int(c) for c in components]
    if not components:
        raise ConstructionError("qop_pmeasure: no components requested")
    limit = 2 ** len(measure_qubits)
    for c in components:
        if not 0 <= c < limit:
            raise ConstructionError(f"qop_pmeasure: component {c} out of range [0, {limit})")

    operands: List[Var] = []
    index: Dict[int, int] = {}
    _collect(circuit.variables(), operands, index)
    slot_operands = [index[id(v.node)] for _, v in circuit.parameter_slots()]

    adapter = HybridCircuitAdapter(
        circuit, backend,
        measure_qubits=measure_qubits,
        components=components,
        shots=_resolve_shots(shots),
    )
    return make_operator(OpKind.QOP_PMEASURE, operands, {
        'evaluator': adapter,
        'slot_operands': slot_operands,
        'components': components,
    })
