"""Tests for the augmented sensitivity problems."""

import casadi as ca
import pytest

from daesens.augmented import build_augmented, problem_dimensions
from daesens.callback import MXCallback, SXCallback
from daesens.offsets import Dimensions
from daesens.schemes import DAEInput, DAEOutput, RDAEInput, RDAEOutput

from .common import decay_dae, decay_rdae, index1_dae


def call_f(cb, x, p, z=ca.DM(0, 1)):
    return cb.call([ca.DM(0), ca.DM(x), ca.DM(z), ca.DM(p)])


def test_problem_dimensions():
    assert problem_dimensions(decay_dae(quad=True)) == Dimensions(nx=1, nq=1, np=1)
    dims = problem_dimensions(decay_dae(), decay_rdae())
    assert dims.nrx == 1
    assert dims.nrq == 1
    assert dims.nrp == 0


def test_nominal_problem_is_unchanged():
    f = decay_dae()
    aug = build_augmented(f, None, 0, 0)
    assert aug.f is f
    assert aug.g is None
    assert aug.offset.x == (0, 1)


def test_plain_functions_are_wrapped():
    aug = build_augmented(decay_dae().function, decay_rdae().function, 1, 1, expand=True)
    assert isinstance(aug.f, SXCallback)
    assert isinstance(aug.g, SXCallback)
    assert aug.offset.x == (0, 1, 2, 3)
    ode = call_f(build_augmented(decay_dae().function, None, 1, 0).f, [2.0, 1.0], [3.0, 1.0])[DAEOutput.ODE]
    assert float(ode[1]) == pytest.approx(-5.0)


def test_forward_sensitivity_equations():
    aug = build_augmented(decay_dae(), None, 1, 0)
    assert aug.g is None
    assert aug.offset.x == (0, 1, 2)
    assert aug.offset.p == (0, 1, 2)
    assert aug.f.name == "decay_aug"
    assert aug.f.sparsity_in(DAEInput.X).size1() == 2
    # d/dt [x, xdot] = [-p x, -p xdot - pdot x]
    ode = call_f(aug.f, [2.0, 1.0], [3.0, 1.0])[DAEOutput.ODE]
    assert float(ode[0]) == pytest.approx(-6.0)
    assert float(ode[1]) == pytest.approx(-5.0)


def test_expand_flag():
    assert isinstance(build_augmented(decay_dae(), None, 1, 0, expand=True).f, SXCallback)
    assert isinstance(build_augmented(decay_dae(), None, 1, 0, expand=False).f, MXCallback)
    # MX based problems are never expanded
    assert isinstance(build_augmented(decay_dae(ca.MX), None, 1, 0, expand=True).f, MXCallback)


def test_adjoint_problem():
    aug = build_augmented(decay_dae(), None, 0, 1, expand=True)
    g = aug.g
    assert g is not None
    assert g.name == "decay_adj"
    assert aug.offset.rx == (0, 1)
    assert aug.offset.rq == (0, 1)
    assert aug.offset.rp == (0,)
    # rx' = -p rx, rq' = -x rx
    res = g.call([ca.DM(0), ca.DM(2.0), ca.DM(0, 1), ca.DM(3.0), ca.DM(1.0), ca.DM(0, 1), ca.DM(0, 1)])
    assert float(res[RDAEOutput.ODE]) == pytest.approx(-3.0)
    assert float(res[RDAEOutput.QUAD]) == pytest.approx(-2.0)


def test_with_backward_problem():
    f, g = decay_dae(quad=True), decay_rdae()
    aug = build_augmented(f, g, 1, 1)
    off = aug.offset
    assert aug.g.name == "decay_b_aug"
    for cat, cb, slot in [
        ("x", aug.f, DAEInput.X),
        ("z", aug.f, DAEInput.Z),
        ("p", aug.f, DAEInput.P),
        ("rx", aug.g, RDAEInput.RX),
        ("rz", aug.g, RDAEInput.RZ),
        ("rp", aug.g, RDAEInput.RP),
    ]:
        assert cb.sparsity_in(slot).size1() == off.total(cat)
    assert aug.f.sparsity_out(DAEOutput.QUAD).size1() == off.total("q")
    assert aug.g.sparsity_out(RDAEOutput.QUAD).size1() == off.total("rq")
    # nominal, forward and the adjoint of rx
    assert off.x == (0, 1, 2, 3)


def test_algebraic_states():
    aug = build_augmented(index1_dae(), None, 1, 1)
    assert aug.offset.z == (0, 1, 2)
    assert aug.offset.rz == (0, 1)
    assert aug.f.sparsity_out(DAEOutput.ALG).size1() == 2
    assert aug.g.sparsity_out(RDAEOutput.ALG).size1() == 1
