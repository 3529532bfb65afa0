"""Benchmark suite for HybridGrad.

Benchmarks include:
- Forward/backward cycle time on classical graphs
- Parameter-shift backward cost versus circuit size

Usage:
    python -m benchmarks.backward_step
"""
