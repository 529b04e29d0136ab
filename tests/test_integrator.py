"""Tests for the integrator lifecycle shared by all steppers."""

import copy
import io

import casadi as ca
import pytest

from daesens import RKIntegrator, aug_offsets, dae_function, rdae_function
from daesens.schemes import IntegratorInput as In
from daesens.schemes import IntegratorOutput as Out

from .common import StubIntegrator, decay_dae, decay_rdae, two_state_dae


def stub(f, g=None, **options):
    integ = StubIntegrator(f, g)
    integ.set_option(options)
    integ.init()
    return integ


class TestValidation:
    def test_use_before_init(self):
        integ = StubIntegrator(decay_dae())
        assert not integ.is_init
        with pytest.raises(RuntimeError, match="not initialized"):
            integ.input(In.X0)
        with pytest.raises(RuntimeError):
            integ.evaluate()

    def test_wrong_signature(self):
        x = ca.SX.sym("x")
        with pytest.raises(ValueError, match="number of inputs"):
            StubIntegrator(ca.Function("f", [x], [x])).init()
        t, p = ca.SX.sym("t"), ca.SX.sym("p")
        z = ca.SX.sym("z", 0, 1)
        with pytest.raises(ValueError, match="number of outputs"):
            StubIntegrator(ca.Function("f", [t, x, z, p], [x])).init()

    def test_ode_shape_mismatch(self):
        x = ca.SX.sym("x")
        f = dae_function("f", x=x, ode=ca.vertcat(x, x))
        with pytest.raises(ValueError, match="Inconsistent dimensions"):
            StubIntegrator(f).init()

    def test_ode_sparsity_mismatch(self):
        x = ca.SX.sym("x", 2)
        f = dae_function("f", x=x, ode=ca.vertcat(x[0], ca.SX(1, 1)))
        with pytest.raises(ValueError, match="does not match"):
            StubIntegrator(f).init()

    def test_matrix_state_rejected(self):
        x = ca.SX.sym("x", 2, 2)
        with pytest.raises(ValueError, match="DAE X input has shape"):
            StubIntegrator(dae_function("f", x=x, ode=-x)).init()
        p = ca.SX.sym("p", 1, 3)
        with pytest.raises(ValueError, match="DAE P input"):
            StubIntegrator(dae_function("f", x=ca.SX.sym("x"), p=p, ode=-ca.sum2(p))).init()

    def test_matrix_backward_state_rejected(self):
        rx = ca.SX.sym("rx", 1, 2)
        g = rdae_function("g", rx=rx, x=ca.SX.sym("x"), p=ca.SX.sym("p"), ode=-rx)
        with pytest.raises(ValueError, match="RDAE RX input"):
            StubIntegrator(decay_dae(), g).init()

    def test_backward_problem_mismatch(self):
        rx = ca.SX.sym("rx")
        x2 = ca.SX.sym("x", 2)
        g = rdae_function("g", rx=rx, x=x2, p=ca.SX.sym("p"), ode=-rx)
        with pytest.raises(ValueError, match="RDAE X input"):
            StubIntegrator(decay_dae(), g).init()

    def test_backward_parameter_mismatch(self):
        rx = ca.SX.sym("rx")
        x = ca.SX.sym("x")
        g = rdae_function("g", rx=rx, x=x, ode=-rx)
        with pytest.raises(ValueError, match="RDAE P input"):
            StubIntegrator(decay_dae(), g).init()

    def test_sparse_state_warns(self):
        x = ca.SX.sym("x", ca.Sparsity.triplet(2, 1, [0], [0]))
        f = dae_function("f", x=x, ode=-x)
        with pytest.warns(UserWarning, match="Sparse states"):
            StubIntegrator(f).init()


class TestDimensions:
    def test_forward_only(self):
        integ = stub(decay_dae(quad=True))
        assert (integ.nx, integ.nz, integ.nq, integ.np) == (1, 0, 1, 1)
        assert (integ.nrx, integ.nrz, integ.nrq, integ.nrp) == (0, 0, 0, 0)
        assert integ.rx0.shape == (0, 1)
        assert integ.rqf.shape == (0, 1)
        assert integ.linsol_g is None

    def test_with_backward_problem(self):
        integ = stub(decay_dae(), decay_rdae())
        assert (integ.nrx, integ.nrq, integ.nrp) == (1, 1, 0)
        assert integ.linsol_g is not None
        assert integ.aug_offset(1, 1) == aug_offsets(1, 1, integ.dims)


class TestLifecycle:
    def test_evaluate_forward_only(self):
        integ = stub(decay_dae(), t0=1, tf=3)
        integ.evaluate()
        assert integ.calls == [("integrate", 3.0)]
        assert integ.t0 == 1.0

    def test_evaluate_with_backward_problem(self):
        integ = stub(decay_dae(), decay_rdae())
        integ.evaluate()
        assert integ.calls == [("integrate", 1.0), ("integrate_b", 0.0)]

    def test_reset_copies_initial_values(self):
        integ = stub(decay_dae(quad=True))
        integ.set_input(In.X0, 4.0)
        integ.reset()
        assert float(integ.xf) == 4.0
        assert float(integ.qf) == 0.0
        assert integ.t == integ.t0

    def test_reset_b(self):
        integ = stub(decay_dae(), decay_rdae())
        integ.set_input(In.RX0, 2.0)
        integ.reset_b()
        assert float(integ.rxf) == 2.0
        assert integ.t == integ.tf

    def test_call_sets_inputs_and_returns_outputs(self):
        integ = stub(decay_dae())
        res = integ(x0=3.0)
        assert float(res["xf"]) == 3.0
        assert set(res) == {"xf", "qf", "zf", "rxf", "rqf", "rzf"}
        with pytest.raises(KeyError):
            integ(y0=1.0)

    def test_print_stats_option(self):
        integ = stub(decay_dae(), print_stats=True, name="demo")
        stream = io.StringIO()
        integ.print_stats(stream)
        assert "'demo'" in stream.getvalue()
        assert "nx=1" in stream.getvalue()


class TestPorts:
    def test_reshape_vectors(self):
        integ = stub(two_state_dae())
        integ.set_input(In.X0, ca.DM([[1.0, 2.0]]))
        assert integ.x0.shape == (2, 1)
        assert float(integ.x0[1]) == 2.0

    def test_wrong_shape(self):
        integ = stub(two_state_dae())
        with pytest.raises(ValueError, match="x0"):
            integ.set_input(In.X0, [1.0, 2.0, 3.0])


class TestDerivative:
    def test_cached(self):
        integ = RKIntegrator(decay_dae())
        integ.init()
        der = integ.derivative(1, 0)
        assert integ.derivative(1, 0) is der
        assert der.integrator is not integ
        assert isinstance(der.integrator, RKIntegrator)

    def test_options_passed_down(self):
        integ = RKIntegrator(decay_dae())
        integ.set_option("name", "base")
        integ.set_option("tf", 2.0)
        integ.set_option("augmented_options", {"number_of_finite_elements": 7})
        integ.init()
        aug = integ.derivative(0, 1).integrator
        assert aug.get_option("name") == "base"
        assert aug.tf == 2.0
        assert aug.get_option("number_of_finite_elements") == 7

    def test_seed_count_checked(self):
        integ = RKIntegrator(decay_dae())
        integ.init()
        with pytest.raises(ValueError):
            integ.derivative(1, 0)(fwd_seeds=[])

    def test_create(self):
        integ = stub(decay_dae())
        other = integ.create(two_state_dae())
        assert type(other) is StubIntegrator
        assert not other.is_init


class TestCloning:
    def test_clone_owns_its_state(self):
        integ = stub(decay_dae(), decay_rdae())
        c = integ.clone()
        assert c.f is not integ.f
        assert c.g is not integ.g
        assert c.linsol_f is not integ.linsol_f
        c.set_input(In.X0, 5.0)
        c.set_option("tf", 4.0)
        assert float(integ.x0) == 0.0
        assert integ.get_option("tf") == 1.0

    def test_deepcopy(self):
        integ = stub(decay_dae())
        c = copy.deepcopy(integ)
        assert isinstance(c, StubIntegrator)
        assert c.is_init
        c.evaluate()
        assert c.output(Out.XF).shape == (1, 1)
