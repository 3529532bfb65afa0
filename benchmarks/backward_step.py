#!/usr/bin/env python
"""Benchmark forward/backward pass time.

Measures one evaluate + backward cycle on:
- a classical two-layer network graph of growing width
- a layered hybrid circuit of growing qubit count (parameter-shift cost
  grows with the number of rotation slots)

Example:
    python -m benchmarks.backward_step
"""

import time
import numpy as np
import hybridgrad as hg


def time_cycle(root, n_iters=20):
    """
    Average evaluate + backward time.

    Args:
        root: Scalar Var to differentiate
        n_iters: Number of timed cycles

    Returns:
        Average cycle time in milliseconds
    """
    hg.evaluate(root)
    hg.backward(root)

    start = time.perf_counter()
    for _ in range(n_iters):
        hg.evaluate(root)
        hg.backward(root)
    return (time.perf_counter() - start) / n_iters * 1000


def classical_graph(width, rng):
    x = hg.constant(rng.normal(size=(8, width)))
    w1 = hg.leaf(rng.normal(size=(width, width)) * 0.1)
    w2 = hg.leaf(rng.normal(size=(width, 4)) * 0.1)
    label = hg.constant(np.eye(4)[rng.integers(0, 4, size=8)])
    hidden = hg.sigmoid(x @ w1)
    return hg.cross_entropy(hg.softmax(hidden @ w2), label)


def hybrid_graph(n_qubits, n_layers, rng):
    circuit = hg.HybridCircuit(n_qubits)
    for _ in range(n_layers):
        for q in range(n_qubits):
            circuit.ry(q, hg.leaf(rng.uniform(-np.pi, np.pi)))
        for q in range(n_qubits - 1):
            circuit.cnot(q, q + 1)
    terms = {f"Z{q}": 1.0 for q in range(n_qubits)}
    return hg.qop(circuit, terms)


def run_benchmark():
    rng = np.random.default_rng(0)

    print("Classical graph (evaluate + backward)")
    print("-" * 50)
    for width in (16, 64, 256):
        ms = time_cycle(classical_graph(width, rng))
        print(f"  width {width:4d}: {ms:8.3f} ms")
    print()

    print("Hybrid circuit (evaluate + parameter-shift backward)")
    print("-" * 50)
    for n_qubits in (2, 4, 6, 8):
        root = hybrid_graph(n_qubits, n_layers=2, rng=rng)
        slots = 2 * n_qubits
        ms = time_cycle(root, n_iters=5)
        print(f"  {n_qubits} qubits, {slots:2d} slots: {ms:8.3f} ms")
    print()


if __name__ == '__main__':
    run_benchmark()
