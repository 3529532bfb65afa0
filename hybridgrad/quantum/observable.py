"""
Pauli observables with numeric or symbolic coefficients.

A MeasurableQuantity is a weighted sum of Pauli strings:

    H = sum_t w_t * P_t

Coefficients may be floats or scalar Vars; a Var coefficient makes the
expectation differentiable with respect to it as well.

Usage:
    obs = MeasurableQuantity({"Z0": 1.0, "X0 X1": 0.5})
    obs = obs + MeasurableQuantity({"Y1": weight_var})
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Optional, Tuple, Union

from ..core.var import Var
from ..errors import ConstructionError


Coefficient = Union[float, Var]

_LETTERS = frozenset("IXYZ")


def parse_label(label: str) -> Tuple[Tuple[int, str], ...]:
    """
    Parse "Z0 X2" into ((0, 'Z'), (2, 'X')).

    An empty label (or one made of identities only) is the identity term.
    """
    paulis: List[Tuple[int, str]] = []
    seen = set()
    for token in label.split():
        letter, index = token[:1].upper(), token[1:]
        if letter not in _LETTERS or not index.isdigit():
            raise ConstructionError(f"Invalid Pauli token {token!r} in {label!r}")
        qubit = int(index)
        if qubit in seen:
            raise ConstructionError(f"Qubit {qubit} appears twice in {label!r}")
        seen.add(qubit)
        if letter != "I":
            paulis.append((qubit, letter))
    return tuple(sorted(paulis))


@dataclass(frozen=True, eq=False)
class PauliTerm:
    """One weighted Pauli string; ``paulis`` holds (qubit, letter) pairs."""
    paulis: Tuple[Tuple[int, str], ...]
    coefficient: Coefficient = 1.0

    @property
    def is_identity(self) -> bool:
        return not self.paulis

    @property
    def label(self) -> str:
        return " ".join(f"{p}{q}" for q, p in self.paulis)

    def __repr__(self) -> str:
        return f"PauliTerm({self.label or 'I'!r}, {self.coefficient!r})"


class MeasurableQuantity:
    """Weighted sum of Pauli strings."""

    def __init__(self, terms: Optional[Union[Dict[str, Coefficient], Iterable[PauliTerm]]] = None):
        self._terms: List[PauliTerm] = []
        if terms is None:
            return
        if isinstance(terms, dict):
            for label, coefficient in terms.items():
                self.add_term(label, coefficient)
        else:
            for term in terms:
                self._append(term)

    def add_term(self, label: str, coefficient: Coefficient = 1.0) -> 'MeasurableQuantity':
        return self._append(PauliTerm(parse_label(label), coefficient))

    def _append(self, term: PauliTerm) -> 'MeasurableQuantity':
        coefficient = term.coefficient
        if isinstance(coefficient, Var):
            if coefficient.shape != (1, 1):
                raise ConstructionError(f"Observable coefficient must be a scalar Var, got shape {coefficient.shape}")
        else:
            term = PauliTerm(term.paulis, float(coefficient))
        self._terms.append(term)
        return self

    @property
    def terms(self) -> List[PauliTerm]:
        return list(self._terms)

    def __len__(self) -> int:
        return len(self._terms)

    def __iter__(self) -> Iterator[PauliTerm]:
        return iter(self._terms)

    def qubits(self) -> List[int]:
        return sorted({q for term in self._terms for q, _ in term.paulis})

    def variables(self) -> List[Var]:
        """Distinct coefficient Vars in order of first use."""
        seen: Dict[int, Var] = {}
        for term in self._terms:
            if isinstance(term.coefficient, Var):
                seen.setdefault(id(term.coefficient.node), term.coefficient)
        return list(seen.values())

    def __add__(self, other: 'MeasurableQuantity') -> 'MeasurableQuantity':
        if not isinstance(other, MeasurableQuantity):
            return NotImplemented
        return MeasurableQuantity(self._terms + other._terms)

    def __mul__(self, scale) -> 'MeasurableQuantity':
        if isinstance(scale, (Var, MeasurableQuantity)):
            return NotImplemented
        scale = float(scale)
        # Var coefficients become graph nodes (coefficient * scale)
        return MeasurableQuantity(PauliTerm(t.paulis, t.coefficient * scale) for t in self._terms)

    __rmul__ = __mul__

    def __repr__(self) -> str:
        body = " + ".join(f"{t.coefficient!r}*{t.label or 'I'}" for t in self._terms)
        return f"MeasurableQuantity({body or '0'})"
