"""
Unitary gate matrices as numpy arrays (complex128).

All gates here act on one target qubit and return (2, 2) arrays.
Multi-qubit gates (CNOT, CZ, CRX, ...) are single-qubit gates with control
qubits; the simulator applies them on the controlled subspace.
Parameterized gates are functions: float -> np.ndarray.
"""

import math
import numpy as np


# Fixed single-qubit gates

def I() -> np.ndarray:
    return np.array([[1, 0], [0, 1]], dtype=np.complex128)

def X() -> np.ndarray:
    return np.array([[0, 1], [1, 0]], dtype=np.complex128)

def Y() -> np.ndarray:
    return np.array([[0, -1j], [1j, 0]], dtype=np.complex128)

def Z() -> np.ndarray:
    return np.array([[1, 0], [0, -1]], dtype=np.complex128)

def H() -> np.ndarray:
    s = 1.0 / math.sqrt(2)
    return np.array([[s, s], [s, -s]], dtype=np.complex128)

def S() -> np.ndarray:
    return np.array([[1, 0], [0, 1j]], dtype=np.complex128)

def T() -> np.ndarray:
    return np.array([[1, 0], [0, complex(math.cos(math.pi / 4), math.sin(math.pi / 4))]], dtype=np.complex128)


# Parameterized single-qubit rotations, R(theta) = exp(-i theta/2 P)

def RX(theta: float) -> np.ndarray:
    c = math.cos(theta / 2)
    s = math.sin(theta / 2)
    return np.array([[c, -1j * s], [-1j * s, c]], dtype=np.complex128)

def RY(theta: float) -> np.ndarray:
    c = math.cos(theta / 2)
    s = math.sin(theta / 2)
    return np.array([[c, -s], [s, c]], dtype=np.complex128)

def RZ(theta: float) -> np.ndarray:
    e_neg = complex(math.cos(theta / 2), -math.sin(theta / 2))
    e_pos = complex(math.cos(theta / 2), math.sin(theta / 2))
    return np.array([[e_neg, 0], [0, e_pos]], dtype=np.complex128)


PAULI = {
    'I': I,
    'X': X,
    'Y': Y,
    'Z': Z,
}
