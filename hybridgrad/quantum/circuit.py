"""
Hybrid circuit builder.

A HybridCircuit is a fixed gate sequence whose rotation angles are either
plain floats or scalar Vars from the computation graph. The gate order is
frozen at construction; only rotation magnitudes are symbolic.

Binding replaces every Var angle with a number and yields a BoundCircuit,
an immutable list of numeric instructions that a backend can execute.

Usage:
    theta = leaf(0.3)
    c = HybridCircuit(n_qubits=2)
    c.h(0)
    c.cnot(0, 1)
    c.ry(0, theta)
    c.crz(0, 1, 2 * theta)

    c.parameter_slots()     # [(2, theta), (3, <2*theta>)]
    bound = c.bind([0.3, 0.6])
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, Iterator, List, Optional, Sequence, Tuple, Union
import numpy as np

from ..core.var import Var
from ..errors import ConstructionError
from . import gates as G


class GateKind(Enum):
    H = "H"
    X = "X"
    Y = "Y"
    Z = "Z"
    S = "S"
    T = "T"
    RX = "RX"
    RY = "RY"
    RZ = "RZ"


ROTATIONS = frozenset({GateKind.RX, GateKind.RY, GateKind.RZ})

_FIXED = {
    GateKind.H: G.H,
    GateKind.X: G.X,
    GateKind.Y: G.Y,
    GateKind.Z: G.Z,
    GateKind.S: G.S,
    GateKind.T: G.T,
}

_ROTATION = {
    GateKind.RX: G.RX,
    GateKind.RY: G.RY,
    GateKind.RZ: G.RZ,
}


def gate_matrix(kind: GateKind, angle: Optional[float] = None, dagger: bool = False) -> np.ndarray:
    """(2, 2) unitary of a gate, conjugate-transposed when ``dagger``."""
    if kind in ROTATIONS:
        matrix = _ROTATION[kind](float(angle))
    else:
        matrix = _FIXED[kind]()
    return matrix.conj().T if dagger else matrix


@dataclass(frozen=True, eq=False)
class GateOp:
    """
    A single gate in a hybrid circuit.

    kind:     gate type.
    target:   target qubit index.
    angle:    rotation source for RX/RY/RZ: a float or a 1x1 Var.
    controls: control qubits; the gate acts only where all are |1>.
    dagger:   apply the conjugate transpose.
    """
    kind: GateKind
    target: int
    angle: Union[float, Var, None] = None
    controls: Tuple[int, ...] = ()
    dagger: bool = False

    @property
    def is_parameterized(self) -> bool:
        return isinstance(self.angle, Var)

    @property
    def qubits(self) -> Tuple[int, ...]:
        return self.controls + (self.target,)

    def daggered(self) -> 'GateOp':
        return replace(self, dagger=not self.dagger)

    def controlled(self, qubits: Sequence[int]) -> 'GateOp':
        return replace(self, controls=self.controls + tuple(qubits))

    def __repr__(self) -> str:
        parts = [self.kind.value]
        if self.controls:
            parts.append(f"controls={list(self.controls)}")
        parts.append(f"target={self.target}")
        if self.angle is not None:
            parts.append(f"angle={self.angle!r}")
        if self.dagger:
            parts.append("dagger")
        return f"GateOp({', '.join(parts)})"


@dataclass(frozen=True)
class Instruction:
    """Numeric gate ready for execution."""
    kind: GateKind
    target: int
    controls: Tuple[int, ...] = ()
    dagger: bool = False
    angle: Optional[float] = None

    def matrix(self) -> np.ndarray:
        return gate_matrix(self.kind, self.angle, self.dagger)


@dataclass(frozen=True)
class BoundCircuit:
    """
    Circuit with every angle substituted.

    slot_positions[k] is the instruction index that parameter slot k feeds.
    """
    n_qubits: int
    instructions: Tuple[Instruction, ...]
    slot_positions: Tuple[int, ...] = ()

    def shifted(self, slot: int, shift: float) -> 'BoundCircuit':
        """Copy with the angle of parameter slot ``slot`` offset by ``shift``."""
        position = self.slot_positions[slot]
        instructions = list(self.instructions)
        target = instructions[position]
        instructions[position] = replace(target, angle=target.angle + shift)
        return replace(self, instructions=tuple(instructions))


class HybridCircuit:
    """
    Parameterized quantum circuit whose angles may be graph Vars.

    Qubit convention: qubit 0 is the most significant bit.
    """

    def __init__(self, n_qubits: int):
        if n_qubits <= 0:
            raise ConstructionError(f"Invalid n_qubits: {n_qubits}")
        self.n_qubits = n_qubits
        self._ops: List[GateOp] = []
        self._dagger = False
        self._controls: Tuple[int, ...] = ()

    # --- Gate builder methods ------------------------------------------------

    def add(self, op: GateOp) -> 'HybridCircuit':
        qubits = op.qubits + self._controls
        for q in qubits:
            if not 0 <= q < self.n_qubits:
                raise ConstructionError(f"Qubit {q} out of range for {self.n_qubits}-qubit circuit")
        if len(set(qubits)) != len(qubits):
            raise ConstructionError(f"Gate {op!r} uses a qubit more than once")

        if op.kind in ROTATIONS:
            if op.angle is None:
                raise ConstructionError(f"{op.kind.value} needs an angle")
            if isinstance(op.angle, Var):
                if op.angle.shape != (1, 1):
                    raise ConstructionError(f"Rotation angle must be a scalar Var, got shape {op.angle.shape}")
            else:
                op = replace(op, angle=float(op.angle))
        elif op.angle is not None:
            raise ConstructionError(f"{op.kind.value} takes no angle")

        self._ops.append(op)
        return self

    def h(self, qubit: int) -> 'HybridCircuit':
        return self.add(GateOp(GateKind.H, qubit))

    def x(self, qubit: int) -> 'HybridCircuit':
        return self.add(GateOp(GateKind.X, qubit))

    def y(self, qubit: int) -> 'HybridCircuit':
        return self.add(GateOp(GateKind.Y, qubit))

    def z(self, qubit: int) -> 'HybridCircuit':
        return self.add(GateOp(GateKind.Z, qubit))

    def s(self, qubit: int) -> 'HybridCircuit':
        return self.add(GateOp(GateKind.S, qubit))

    def t(self, qubit: int) -> 'HybridCircuit':
        return self.add(GateOp(GateKind.T, qubit))

    def cnot(self, control: int, target: int) -> 'HybridCircuit':
        return self.add(GateOp(GateKind.X, target, controls=(control,)))

    def cz(self, control: int, target: int) -> 'HybridCircuit':
        return self.add(GateOp(GateKind.Z, target, controls=(control,)))

    def rx(self, qubit: int, angle: Union[float, Var]) -> 'HybridCircuit':
        return self.add(GateOp(GateKind.RX, qubit, angle))

    def ry(self, qubit: int, angle: Union[float, Var]) -> 'HybridCircuit':
        return self.add(GateOp(GateKind.RY, qubit, angle))

    def rz(self, qubit: int, angle: Union[float, Var]) -> 'HybridCircuit':
        return self.add(GateOp(GateKind.RZ, qubit, angle))

    def crx(self, control: Union[int, Sequence[int]], target: int, angle: Union[float, Var]) -> 'HybridCircuit':
        return self.add(GateOp(GateKind.RX, target, angle, controls=_as_tuple(control)))

    def cry(self, control: Union[int, Sequence[int]], target: int, angle: Union[float, Var]) -> 'HybridCircuit':
        return self.add(GateOp(GateKind.RY, target, angle, controls=_as_tuple(control)))

    def crz(self, control: Union[int, Sequence[int]], target: int, angle: Union[float, Var]) -> 'HybridCircuit':
        return self.add(GateOp(GateKind.RZ, target, angle, controls=_as_tuple(control)))

    def insert(self, item: Union[GateOp, 'HybridCircuit']) -> 'HybridCircuit':
        """Append a gate, or every gate of another circuit (with its dagger/controls applied)."""
        if isinstance(item, HybridCircuit):
            if item.n_qubits > self.n_qubits:
                raise ConstructionError(
                    f"Cannot insert a {item.n_qubits}-qubit circuit into a {self.n_qubits}-qubit one"
                )
            for op in item.gates:
                self.add(op)
            return self
        return self.add(item)

    # --- Dagger / control ----------------------------------------------------

    def copy(self) -> 'HybridCircuit':
        other = HybridCircuit(self.n_qubits)
        other._ops = list(self._ops)
        other._dagger = self._dagger
        other._controls = self._controls
        return other

    @property
    def is_dagger(self) -> bool:
        return self._dagger

    @property
    def controls(self) -> Tuple[int, ...]:
        return self._controls

    def dagger(self) -> 'HybridCircuit':
        """Adjoint circuit: gate order reversed, every gate conjugated."""
        other = self.copy()
        other._dagger = not self._dagger
        return other

    def control(self, qubits: Union[int, Sequence[int]]) -> 'HybridCircuit':
        """Circuit with extra control qubits on every gate."""
        qubits = _as_tuple(qubits)
        used = {q for op in self._ops for q in op.qubits}
        for q in qubits:
            if not 0 <= q < self.n_qubits:
                raise ConstructionError(f"Qubit {q} out of range for {self.n_qubits}-qubit circuit")
            if q in used or q in self._controls:
                raise ConstructionError(f"Control qubit {q} is already used by the circuit")
        other = self.copy()
        other._controls = self._controls + qubits
        return other

    # --- Introspection -------------------------------------------------------

    @property
    def gates(self) -> List[GateOp]:
        """Gate sequence in execution order, with circuit dagger/controls applied."""
        ops = self._ops
        if self._dagger:
            ops = [op.daggered() for op in reversed(ops)]
        if self._controls:
            ops = [op.controlled(self._controls) for op in ops]
        return list(ops)

    def __len__(self) -> int:
        return len(self._ops)

    def __iter__(self) -> Iterator[GateOp]:
        return iter(self.gates)

    def parameter_slots(self) -> List[Tuple[int, Var]]:
        """(gate position, rotation Var) for every symbolic angle, in gate order."""
        return [(pos, op.angle) for pos, op in enumerate(self.gates) if op.is_parameterized]

    def variables(self) -> List[Var]:
        """Distinct rotation Vars in order of first use."""
        seen: Dict[int, Var] = {}
        for _, var in self.parameter_slots():
            seen.setdefault(id(var.node), var)
        return list(seen.values())

    def slots_for(self, var: Var) -> List[int]:
        """Parameter slot indices fed by ``var``."""
        return [k for k, (_, v) in enumerate(self.parameter_slots()) if v.node is var.node]

    def current_bindings(self) -> np.ndarray:
        """Angles from the values currently held by the rotation Vars."""
        values = []
        for _, var in self.parameter_slots():
            if var.value is None:
                raise ConstructionError(f"Rotation source {var!r} has not been evaluated")
            values.append(float(var.value[0, 0]))
        return np.array(values)

    def bind(self, values: Sequence[float]) -> BoundCircuit:
        """Substitute one number per parameter slot."""
        values = np.asarray(values, dtype=np.float64).reshape(-1)
        ops = self.gates
        positions = [pos for pos, op in enumerate(ops) if op.is_parameterized]
        if len(values) != len(positions):
            raise ConstructionError(f"bind: expected {len(positions)} value(s), got {len(values)}")

        slot_of = {pos: k for k, pos in enumerate(positions)}
        instructions = []
        for pos, op in enumerate(ops):
            if op.is_parameterized:
                angle = float(values[slot_of[pos]])
            else:
                angle = op.angle
            instructions.append(Instruction(op.kind, op.target, op.controls, op.dagger, angle))
        return BoundCircuit(self.n_qubits, tuple(instructions), tuple(positions))

    def __repr__(self) -> str:
        flags = []
        if self._dagger:
            flags.append("dagger")
        if self._controls:
            flags.append(f"controls={list(self._controls)}")
        suffix = f", {', '.join(flags)}" if flags else ""
        return f"HybridCircuit(n_qubits={self.n_qubits}, gates={len(self._ops)}{suffix})"


def _as_tuple(qubits: Union[int, Sequence[int]]) -> Tuple[int, ...]:
    if isinstance(qubits, (int, np.integer)):
        return (int(qubits),)
    return tuple(int(q) for q in qubits)
