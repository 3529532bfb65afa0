#!/usr/bin/env python
"""Demo: Hybrid Classical/Quantum Optimization with HybridGrad

This script builds two small hybrid graphs, differentiates them in reverse
mode (parameter-shift for the quantum nodes) and trains them with torch
optimizers through the leaf bridge.

Example:
    python examples/hybrid_demo.py
"""

import numpy as np
import torch
import hybridgrad as hg
from hybridgrad.optim import TorchLeafBridge, optimization_step
from hybridgrad.quantum import parse_label


def hamiltonian_matrix(terms, n_qubits):
    """Dense matrix of a Pauli sum, for reference energies."""
    paulis = {
        'I': np.eye(2),
        'X': np.array([[0, 1], [1, 0]]),
        'Y': np.array([[0, -1j], [1j, 0]]),
        'Z': np.diag([1, -1]),
    }
    total = np.zeros((2 ** n_qubits, 2 ** n_qubits), dtype=np.complex128)
    for label, coefficient in terms.items():
        letters = ['I'] * n_qubits
        for qubit, letter in parse_label(label):
            letters[qubit] = letter
        term = np.array([[1.0]])
        for letter in letters:
            term = np.kron(term, paulis[letter])
        total += coefficient * term
    return total


def demo_vqe():
    """Variational ground state of a two-qubit transverse-field Ising model."""
    print("=" * 80)
    print("Demo 1: Variational Quantum Eigensolver")
    print("=" * 80)

    terms = {"Z0 Z1": 1.0, "X0": 0.5, "X1": 0.5}
    exact = np.linalg.eigvalsh(hamiltonian_matrix(terms, 2))[0]

    a = hg.leaf(0.1)
    b = hg.leaf(-0.2)
    c = hg.leaf(0.3)
    circuit = hg.HybridCircuit(2).ry(0, a).ry(1, b).cnot(0, 1).ry(1, c)
    energy = hg.qop(circuit, terms)

    bridge = TorchLeafBridge([a, b, c])
    optimizer = torch.optim.Adam(bridge.parameters(), lr=0.1)

    for i in range(200):
        value = optimization_step(energy, bridge, optimizer)
        if i % 40 == 0:
            print(f"Step {i:3d}: energy = {value:.6f}")

    final = hg.evaluate(energy)[0, 0]
    print(f"Final energy:  {final:.6f}")
    print(f"Exact ground:  {exact:.6f}")
    print()


def demo_classifier(shots=None):
    """One-qubit classifier: angle = w * x + b, class = measured bit."""
    print("=" * 80)
    print(f"Demo 2: Hybrid Classifier (shots={shots})")
    print("=" * 80)

    rng = np.random.default_rng(0)
    xs = np.concatenate([rng.normal(-1.0, 0.3, 6), rng.normal(1.0, 0.3, 6)])
    ys = np.array([0] * 6 + [1] * 6)

    w = hg.leaf(0.2)
    b = hg.leaf(0.0)
    losses = []
    for x, y in zip(xs, ys):
        circuit = hg.HybridCircuit(1).ry(0, w * float(x) + b)
        probs = hg.qop_pmeasure(circuit, [0, 1], shots=shots)
        label = hg.constant(np.eye(2)[y])
        losses.append(hg.cross_entropy(probs + 1e-6, label))
    loss = hg.mean(hg.stack(1, losses))

    if shots is None:
        hg.check_gradients(loss, [w, b])
        print("Gradient check passed")

    bridge = TorchLeafBridge([w, b])
    optimizer = torch.optim.SGD(bridge.parameters(), lr=0.5)
    for i in range(60):
        value = optimization_step(loss, bridge, optimizer)
        if i % 15 == 0:
            print(f"Step {i:3d}: loss = {value:.6f}")

    hg.evaluate(loss)
    print(f"Final loss: {loss.item():.6f}  (w = {w.item():.3f}, b = {b.item():.3f})")
    print()


if __name__ == '__main__':
    print()
    print("HybridGrad Demo")
    print()

    hg.seed(1234)
    demo_vqe()
    demo_classifier()
    demo_classifier(shots=2000)

    print("=" * 80)
    print("Demo completed successfully!")
    print("=" * 80)
