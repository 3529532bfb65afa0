"""Tests for hybrid circuits, backends, the adapter and quantum graph nodes."""

import math
import pytest
import numpy as np
import hybridgrad as hg
from hybridgrad.quantum import (
    FOUR_TERM_RULE,
    TWO_TERM_RULE,
    apply_gate,
    gate_matrix,
    parse_label,
)
from hybridgrad.quantum.gates import H, X


class TestCircuit:
    """Tests for HybridCircuit construction and binding."""

    def test_builders_chain(self):
        """Test fluent gate builders."""
        c = hg.HybridCircuit(2).h(0).cnot(0, 1).rz(1, 0.3)
        assert len(c) == 3
        assert [g.kind for g in c.gates] == [hg.GateKind.H, hg.GateKind.X, hg.GateKind.RZ]
        assert c.gates[1].controls == (0,)

    def test_qubit_range(self):
        """Test out-of-range and repeated qubits."""
        c = hg.HybridCircuit(2)
        with pytest.raises(hg.ConstructionError):
            c.x(2)
        with pytest.raises(hg.ConstructionError):
            c.cnot(1, 1)
        with pytest.raises(hg.ConstructionError):
            hg.HybridCircuit(0)

    def test_rotation_source_must_be_scalar(self):
        """Test non-scalar Var angles are rejected."""
        with pytest.raises(hg.ConstructionError):
            hg.HybridCircuit(1).rx(0, hg.leaf([0.1, 0.2]))

    def test_parameter_slots(self):
        """Test rotation sources and their gate positions."""
        a = hg.leaf(0.1)
        b = hg.leaf(0.2)
        c = hg.HybridCircuit(2).h(0).rx(0, a).ry(1, 0.5).rz(1, b).rx(1, a)
        slots = c.parameter_slots()
        assert [pos for pos, _ in slots] == [1, 3, 4]
        assert slots[0][1] == a
        assert c.variables() == [a, b]
        assert c.slots_for(a) == [0, 2]
        np.testing.assert_allclose(c.current_bindings(), [0.1, 0.2, 0.1])

    def test_bind(self):
        """Test binding produces numeric instructions."""
        a = hg.leaf(0.1)
        c = hg.HybridCircuit(1).rx(0, a).ry(0, 0.5)
        bound = c.bind([0.7])
        assert bound.instructions[0].angle == 0.7
        assert bound.instructions[1].angle == 0.5
        assert bound.slot_positions == (0,)
        shifted = bound.shifted(0, 0.1)
        assert shifted.instructions[0].angle == pytest.approx(0.8)
        assert bound.instructions[0].angle == 0.7
        with pytest.raises(hg.ConstructionError):
            c.bind([0.1, 0.2])

    def test_dagger_reverses_and_conjugates(self):
        """Test circuit adjoint."""
        c = hg.HybridCircuit(1).h(0).s(0)
        d = c.dagger()
        assert [g.kind for g in d.gates] == [hg.GateKind.S, hg.GateKind.H]
        assert all(g.dagger for g in d.gates)
        assert not c.is_dagger
        np.testing.assert_allclose(gate_matrix(hg.GateKind.S, dagger=True), np.diag([1, -1j]))

    def test_control(self):
        """Test adding control qubits to a whole circuit."""
        theta = hg.leaf(0.4)
        c = hg.HybridCircuit(2).rx(1, theta)
        cc = c.control(0)
        assert cc.gates[0].controls == (0,)
        assert c.gates[0].controls == ()
        with pytest.raises(hg.ConstructionError):
            c.control(1)

    def test_insert(self):
        """Test inserting gates and circuits."""
        inner = hg.HybridCircuit(1).h(0)
        outer = hg.HybridCircuit(2).x(1).insert(inner).insert(hg.GateOp(hg.GateKind.Z, 1))
        assert len(outer) == 3
        with pytest.raises(hg.ConstructionError):
            inner.insert(outer)


class TestObservable:
    """Tests for Pauli observables."""

    def test_parse_label(self):
        """Test label parsing."""
        assert parse_label("Z0 X2") == ((0, 'Z'), (2, 'X'))
        assert parse_label("x1 z0") == ((0, 'Z'), (1, 'X'))
        assert parse_label("") == ()
        assert parse_label("I0 I1") == ()
        with pytest.raises(hg.ConstructionError):
            parse_label("Z0 Y0")
        with pytest.raises(hg.ConstructionError):
            parse_label("Q1")

    def test_terms_and_qubits(self):
        """Test term bookkeeping."""
        w = hg.leaf(0.5)
        obs = hg.MeasurableQuantity({"Z0": 1.0, "X1 Y2": w})
        assert len(obs) == 2
        assert obs.qubits() == [0, 1, 2]
        assert obs.variables() == [w]
        assert obs.terms[0].coefficient == 1.0

    def test_algebra(self):
        """Test sum and scaling."""
        a = hg.MeasurableQuantity({"Z0": 1.0})
        b = hg.MeasurableQuantity({"X0": 2.0})
        total = 3 * (a + b)
        assert [t.coefficient for t in total] == [3.0, 6.0]

    def test_vector_coefficient_rejected(self):
        """Test coefficient Vars must be scalar."""
        with pytest.raises(hg.ConstructionError):
            hg.MeasurableQuantity({"Z0": hg.leaf([1.0, 2.0])})


class TestStatevectorBackend:
    """Tests for the numpy simulator."""

    def test_qubit_zero_is_most_significant(self, backend):
        """Test basis ordering."""
        state = backend.statevector(hg.HybridCircuit(2).x(0).bind([]))
        np.testing.assert_allclose(np.abs(state), [0, 0, 1, 0])

    def test_controlled_gate(self):
        """Test CNOT acts only on the |1> control subspace."""
        state = np.zeros(4, dtype=np.complex128)
        state[2] = 1.0
        out = apply_gate(state, X(), 1, controls=(0,))
        np.testing.assert_allclose(out, [0, 0, 0, 1])
        state = np.zeros(4, dtype=np.complex128)
        state[0] = 1.0
        np.testing.assert_allclose(apply_gate(state, X(), 1, controls=(0,)), [1, 0, 0, 0])

    def test_controlled_lower_target(self):
        """Test control qubit after the target."""
        state = np.zeros(4, dtype=np.complex128)
        state[1] = 1.0
        np.testing.assert_allclose(apply_gate(state, X(), 0, controls=(1,)), [0, 0, 0, 1])

    def test_bell_state(self, backend):
        """Test entangled expectations."""
        bound = hg.HybridCircuit(2).h(0).cnot(0, 1).bind([])
        obs = hg.MeasurableQuantity({"Z0 Z1": 1.0, "Z0": 1.0, "X0 X1": 1.0, "": 1.0})
        result = backend.execute(bound, obs)
        np.testing.assert_allclose(result.expectations, [1.0, 0.0, 1.0, 1.0], atol=1e-12)
        assert result.variances is None

    def test_y_expectation(self, backend):
        """Test <Y> after RX."""
        bound = hg.HybridCircuit(1).rx(0, 0.9).bind([])
        result = backend.execute(bound, hg.MeasurableQuantity({"Y0": 1.0}))
        assert result.expectations[0] == pytest.approx(-math.sin(0.9))

    def test_shot_estimates(self, random_seed):
        """Test sampled X/Y/Z expectations and their variance."""
        backend = hg.StatevectorBackend()
        bound = hg.HybridCircuit(1).rx(0, 0.9).bind([])
        obs = hg.MeasurableQuantity({"Z0": 1.0, "Y0": 1.0, "X0": 1.0})
        result = backend.execute(bound, obs, shots=20000)
        np.testing.assert_allclose(result.expectations, [math.cos(0.9), -math.sin(0.9), 0.0], atol=0.04)
        np.testing.assert_allclose(result.variances, (1.0 - result.expectations ** 2) / 20000)
        assert result.shots_based

    def test_marginal_probabilities(self, backend):
        """Test probabilities ordered by the measured qubits."""
        bound = hg.HybridCircuit(2).x(0).bind([])
        result = backend.probabilities(bound, [0, 1], [0, 1, 2, 3])
        np.testing.assert_allclose(result.expectations, [0, 0, 1, 0])
        result = backend.probabilities(bound, [1, 0], [0, 1, 2, 3])
        np.testing.assert_allclose(result.expectations, [0, 1, 0, 0])
        result = backend.probabilities(bound, [0], [1])
        np.testing.assert_allclose(result.expectations, [1.0])

    def test_is_execution_backend(self, backend):
        """Test protocol conformance."""
        assert isinstance(backend, hg.ExecutionBackend)
        assert backend.supports_shift(0)

    def test_gate_matrices_are_unitary(self):
        """Test every gate kind is unitary."""
        for kind in hg.GateKind:
            m = gate_matrix(kind, 0.37)
            np.testing.assert_allclose(m @ m.conj().T, np.eye(2), atol=1e-12)
        np.testing.assert_allclose(H() @ H(), np.eye(2), atol=1e-12)


class TestAdapter:
    """Tests for the bind/execute/release lifecycle."""

    def make_adapter(self, theta):
        c = hg.HybridCircuit(1).rx(0, theta)
        return hg.HybridCircuitAdapter(c, observable=hg.MeasurableQuantity({"Z0": 1.0}))

    def test_lifecycle(self):
        """Test state transitions."""
        theta = hg.leaf(0.3)
        adapter = self.make_adapter(theta)
        assert adapter.state is hg.AdapterState.IDLE
        with pytest.raises(hg.BackendError):
            adapter.execute()

        adapter.bind([0.3])
        assert adapter.state is hg.AdapterState.BOUND
        result = adapter.execute()
        assert adapter.state is hg.AdapterState.EXECUTED
        assert adapter.execute() is result
        assert result.expectations[0] == pytest.approx(math.cos(0.3))

        shifted = adapter.execute_shifted(0, math.pi / 2)
        assert shifted[0] == pytest.approx(math.cos(0.3 + math.pi / 2))

        adapter.release()
        assert adapter.state is hg.AdapterState.IDLE

    def test_bind_is_pure(self):
        """Test binding does not touch graph values."""
        theta = hg.leaf(0.3)
        adapter = self.make_adapter(theta)
        adapter.bind([1.2])
        assert theta.value[0, 0] == 0.3

    def test_circuit_is_snapshotted(self):
        """Test later edits to the circuit do not reach the adapter."""
        theta = hg.leaf(0.3)
        c = hg.HybridCircuit(1).rx(0, theta)
        adapter = hg.HybridCircuitAdapter(c, observable=hg.MeasurableQuantity({"Z0": 1.0}))
        c.ry(0, theta)
        assert adapter.n_slots == 1

    def test_shift_rules(self):
        """Test two-term for plain and four-term for controlled rotations."""
        theta = hg.leaf(0.3)
        c = hg.HybridCircuit(2).rx(0, theta).crx(0, 1, theta)
        adapter = hg.HybridCircuitAdapter(c, observable=hg.MeasurableQuantity({"Z1": 1.0}))
        assert adapter.shift_rule(0) == TWO_TERM_RULE
        assert adapter.shift_rule(1) == FOUR_TERM_RULE
        assert sum(coef for coef, _ in FOUR_TERM_RULE) == pytest.approx(0.0, abs=1e-15)
        with pytest.raises(hg.BackendError):
            adapter.shift_rule(2)

    def test_needs_one_measurement(self):
        """Test observable and components are exclusive."""
        c = hg.HybridCircuit(1)
        with pytest.raises(hg.ConstructionError):
            hg.HybridCircuitAdapter(c)
        with pytest.raises(hg.ConstructionError):
            hg.HybridCircuitAdapter(c, observable=hg.MeasurableQuantity({"Z0": 1.0}), components=[0])


class TestQuantumNodes:
    """Tests for qop / qop_pmeasure in the graph."""

    @pytest.mark.parametrize("theta", [0.0, 0.4, 1.3, -2.2, math.pi])
    def test_rx_expectation_and_gradient(self, theta):
        """Test <Z> after RX is cos and its shift gradient is -sin."""
        t = hg.leaf(theta)
        e = hg.qop(hg.HybridCircuit(1).rx(0, t), {"Z0": 1.0})
        assert hg.evaluate(e)[0, 0] == pytest.approx(math.cos(theta))
        grads = hg.backward(e)
        assert grads[t][0, 0] == pytest.approx(-math.sin(theta), abs=1e-12)

    def test_shift_estimate_is_exact(self):
        """Test the two-term estimate equals the analytic derivative."""
        theta = 0.77
        t = hg.leaf(theta)
        e = hg.qop(hg.HybridCircuit(1).rx(0, t), {"Z0": 1.0})
        hg.evaluate(e)
        adapter = e.node.attrs['evaluator']
        estimate = 0.5 * (adapter.execute_shifted(0, math.pi / 2) - adapter.execute_shifted(0, -math.pi / 2))
        assert estimate[0] == pytest.approx(-math.sin(theta), abs=1e-12)

    def test_coefficient_product_rule(self):
        """Test gradient w.r.t. an observable coefficient."""
        t = hg.leaf(0.6)
        w = hg.leaf(1.7)
        e = hg.qop(hg.HybridCircuit(1).rx(0, t), hg.MeasurableQuantity({"Z0": w, "": 0.5}))
        assert hg.evaluate(e)[0, 0] == pytest.approx(1.7 * math.cos(0.6) + 0.5)
        grads = hg.backward(e)
        assert grads[w][0, 0] == pytest.approx(math.cos(0.6))
        assert grads[t][0, 0] == pytest.approx(-1.7 * math.sin(0.6))

    def test_scaled_coefficient(self):
        """Test a scaled Var coefficient stays differentiable."""
        t = hg.leaf(0.6)
        w = hg.leaf(1.5)
        obs = hg.MeasurableQuantity({"Z0": w}) * 2.0
        e = hg.qop(hg.HybridCircuit(1).rx(0, t), obs)
        grads = hg.backward(e)
        assert grads[w][0, 0] == pytest.approx(2.0 * math.cos(0.6))

    def test_multiple_occurrences(self):
        """Test a Var used at two gates receives both shift derivatives."""
        t = hg.leaf(0.35)
        e = hg.qop(hg.HybridCircuit(1).rx(0, t).rx(0, t), {"Z0": 1.0})
        assert hg.evaluate(e)[0, 0] == pytest.approx(math.cos(0.7))
        assert hg.backward(e)[t][0, 0] == pytest.approx(-2 * math.sin(0.7))
        assert len(e.operands) == 1

    def test_non_leaf_rotation_source(self):
        """Test an expression as rotation angle chains into the graph."""
        a = hg.leaf(0.25)
        e = hg.qop(hg.HybridCircuit(1).ry(0, 2.0 * a), {"Z0": 1.0})
        assert hg.evaluate(e)[0, 0] == pytest.approx(math.cos(0.5))
        assert hg.backward(e)[a][0, 0] == pytest.approx(-2 * math.sin(0.5))

    def test_controlled_rotation_gradient(self):
        """Test the four-term rule on a controlled rotation."""
        theta = 0.9
        t = hg.leaf(theta)
        c = hg.HybridCircuit(2).h(0).crx(0, 1, t)
        e = hg.qop(c, {"Z1": 1.0})
        assert hg.evaluate(e)[0, 0] == pytest.approx(0.5 * (1 + math.cos(theta)))
        assert hg.backward(e)[t][0, 0] == pytest.approx(-0.5 * math.sin(theta))
        assert hg.check_gradients(e, [t])

    def test_controlled_circuit_gradient(self):
        """Test circuit-level control uses the four-term rule."""
        t = hg.leaf(0.5)
        inner = hg.HybridCircuit(2).ry(1, t)
        c = hg.HybridCircuit(2).h(0).insert(inner.control(0))
        e = hg.qop(c, {"X1": 1.0})
        assert hg.evaluate(e)[0, 0] == pytest.approx(0.5 * math.sin(0.5))
        assert hg.backward(e)[t][0, 0] == pytest.approx(0.5 * math.cos(0.5))

    def test_dagger_gradient(self):
        """Test differentiation through an adjoint circuit."""
        t = hg.leaf(0.8)
        c = hg.HybridCircuit(1).ry(0, t).dagger()
        e = hg.qop(c, {"X0": 1.0})
        assert hg.evaluate(e)[0, 0] == pytest.approx(-math.sin(0.8))
        assert hg.backward(e)[t][0, 0] == pytest.approx(-math.cos(0.8))

    def test_dagger_undoes_circuit(self):
        """Test U followed by U-dagger is the identity."""
        t = hg.leaf(1.1)
        u = hg.HybridCircuit(2).h(0).cnot(0, 1).ry(1, t).s(1)
        full = hg.HybridCircuit(2).insert(u).insert(u.dagger())
        e = hg.qop(full, {"Z0": 1.0, "Z1": 1.0})
        assert hg.evaluate(e)[0, 0] == pytest.approx(2.0)
        assert hg.backward(e)[t][0, 0] == pytest.approx(0.0, abs=1e-12)

    def test_hybrid_loss(self):
        """Test a classical loss around a quantum node."""
        t = hg.leaf(0.3)
        b = hg.leaf(0.2)
        e = hg.qop(hg.HybridCircuit(2).ry(0, t).cnot(0, 1), {"Z1": 1.0})
        loss = (e - b) ** 2 + hg.exp(b * t)
        assert hg.check_gradients(loss, [t, b])

    def test_constant_circuit(self):
        """Test a node with no symbolic parameters."""
        e = hg.qop(hg.HybridCircuit(1).x(0), {"Z0": 1.0, "": 0.25})
        assert hg.evaluate(e)[0, 0] == pytest.approx(-0.75)
        assert len(e.operands) == 0
        hg.backward(e)

    def test_construction_errors(self):
        """Test invalid observables, shots and components."""
        c = hg.HybridCircuit(1).rx(0, hg.leaf(0.1))
        with pytest.raises(hg.ConstructionError):
            hg.qop(c, {"Z1": 1.0})
        with pytest.raises(hg.ConstructionError):
            hg.qop(c, {})
        with pytest.raises(hg.ConstructionError):
            hg.qop(c, {"Z0": 1.0}, shots=0)
        with pytest.raises(hg.ConstructionError):
            hg.qop_pmeasure(c, [2])
        with pytest.raises(hg.ConstructionError):
            hg.qop_pmeasure(c, [0], measure_qubits=[0, 0])


class TestProbabilityNodes:
    """Tests for qop_pmeasure."""

    def test_values_and_gradient(self):
        """Test basis probabilities after RY and their gradient."""
        theta = 0.9
        t = hg.leaf(theta)
        p = hg.qop_pmeasure(hg.HybridCircuit(2).ry(0, t), [0, 2])
        assert p.shape == (1, 2)
        np.testing.assert_allclose(hg.evaluate(p), [[math.cos(theta / 2) ** 2, math.sin(theta / 2) ** 2]])
        g0 = hg.backward(p, seed=[[1.0, 0.0]])[t][0, 0]
        g1 = hg.backward(p, seed=[[0.0, 1.0]])[t][0, 0]
        assert g0 == pytest.approx(-0.5 * math.sin(theta))
        assert g1 == pytest.approx(0.5 * math.sin(theta))

    def test_measure_qubit_order(self):
        """Test measure_qubits[0] is the most significant bit."""
        t = hg.leaf(0.9)
        p = hg.qop_pmeasure(hg.HybridCircuit(2).ry(0, t), [1], measure_qubits=[1, 0])
        assert hg.evaluate(p)[0, 0] == pytest.approx(math.sin(0.45) ** 2)

    def test_subscript_into_probabilities(self):
        """Test a probability component feeding a classical loss."""
        t = hg.leaf(0.4)
        p = hg.qop_pmeasure(hg.HybridCircuit(1).rx(0, t), [0, 1])
        loss = hg.log(p[1] + 1.0) * 3.0
        assert hg.check_gradients(loss, [t])


class TestShots:
    """Tests for shot-based estimation."""

    def test_estimate_and_variance(self, random_seed):
        """Test the estimate is noisy with variance ~ 1/shots."""
        t = hg.leaf(0.7)
        e = hg.qop(hg.HybridCircuit(1).rx(0, t), {"Z0": 1.0}, shots=20000)
        value = hg.evaluate(e)[0, 0]
        assert value == pytest.approx(math.cos(0.7), abs=0.03)
        assert e.variance[0, 0] == pytest.approx((1 - value ** 2) / 20000)
        assert hg.backward(e)[t][0, 0] == pytest.approx(-math.sin(0.7), abs=0.05)

    def test_exact_has_no_variance(self):
        """Test exact simulation reports no variance."""
        e = hg.qop(hg.HybridCircuit(1).rx(0, hg.leaf(0.7)), {"Z0": 1.0})
        hg.evaluate(e)
        assert e.variance is None

    def test_seed_reproduces(self):
        """Test the shared random source drives sampling."""
        e = hg.qop(hg.HybridCircuit(1).rx(0, hg.leaf(1.0)), {"Z0": 1.0}, shots=100)
        hg.seed(11)
        first = hg.evaluate(e).copy()
        hg.seed(11)
        np.testing.assert_array_equal(hg.evaluate(e), first)

    def test_default_shots_from_config(self):
        """Test default_shots applies to nodes built without shots."""
        with hg.config_context(default_shots=500):
            e = hg.qop(hg.HybridCircuit(1).rx(0, hg.leaf(1.0)), {"Z0": 1.0})
        assert e.node.attrs['evaluator'].shots == 500

    def test_backward_keeps_sampled_value(self, random_seed):
        """Test backward differentiates the sample the forward pass drew."""
        t = hg.leaf(0.7)
        w = hg.leaf(1.0)
        e = hg.qop(hg.HybridCircuit(1).rx(0, t), hg.MeasurableQuantity({"Z0": w}), shots=50)
        sampled = hg.evaluate(e).copy()
        grads = hg.backward(e * 2.0)
        np.testing.assert_array_equal(e.value, sampled)
        assert grads[w][0, 0] == pytest.approx(2.0 * sampled[0, 0])

    def test_probability_variance(self, random_seed):
        """Test binomial variance of sampled probabilities."""
        p = hg.qop_pmeasure(hg.HybridCircuit(1).ry(0, hg.leaf(1.2)), [0, 1], shots=4000)
        values = hg.evaluate(p)
        np.testing.assert_allclose(values.sum(), 1.0)
        np.testing.assert_allclose(p.variance, values * (1 - values) / 4000)


class FailingBackend(hg.StatevectorBackend):
    """Backend whose device is unreachable."""

    def execute(self, bound, observable, shots=None):
        raise RuntimeError("device offline")


class NoShiftBackend(hg.StatevectorBackend):
    """Backend that cannot evaluate shifted circuits."""

    def supports_shift(self, param_index):
        return False


class TestBackendErrors:
    """Tests for backend failure propagation."""

    def test_failure_is_wrapped(self):
        """Test backend exceptions surface as BackendError."""
        e = hg.qop(hg.HybridCircuit(1).rx(0, hg.leaf(0.1)), {"Z0": 1.0}, backend=FailingBackend())
        with pytest.raises(hg.BackendError) as info:
            hg.evaluate(e)
        assert isinstance(info.value.__cause__, RuntimeError)

    def test_shift_not_supported(self):
        """Test backward fails when the backend cannot shift."""
        t = hg.leaf(0.1)
        e = hg.qop(hg.HybridCircuit(1).rx(0, t), {"Z0": 1.0}, backend=NoShiftBackend())
        hg.evaluate(e)
        with pytest.raises(hg.BackendError):
            hg.backward(e)
