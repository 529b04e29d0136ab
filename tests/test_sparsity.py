"""Tests for structural dependency propagation through integrators."""

import casadi as ca
import numpy as np
import pytest

from daesens import dae_function
from daesens.bvec import bvec_zeros
from daesens.linsol import LinearSolver
from daesens.schemes import IntegratorInput as In
from daesens.schemes import IntegratorOutput as Out
from daesens.sparsity import sp_jac_dae, sp_jac_rdae, sp_propagate

from .common import decay_dae, decay_rdae, index1_dae, rk, two_state_dae


def triplet(sp):
    rows, cols = sp.get_triplet()
    return sorted(zip(rows, cols))


class TestImplicitPattern:
    def test_ode_only(self):
        sp = sp_jac_dae(two_state_dae())
        assert sp.size1() == 2
        assert triplet(sp) == [(0, 0), (1, 1)]

    def test_with_algebraic_states(self):
        sp = sp_jac_dae(index1_dae())
        assert sp.size1() == 2
        assert sp.nnz() == 4

    def test_backward(self):
        sp = sp_jac_rdae(decay_rdae())
        assert triplet(sp) == [(0, 0)]


class TestFineSparsity:
    def test_decoupled_states(self):
        integ = rk(two_state_dae(), n=5, coarse_sparsity=False)
        assert triplet(integ.jac_sparsity(In.X0, Out.XF)) == [(0, 0), (1, 1)]
        assert triplet(integ.jac_sparsity(In.P, Out.XF)) == [(1, 0)]

    def test_quadrature(self):
        integ = rk(two_state_dae(), n=5, coarse_sparsity=False)
        assert triplet(integ.jac_sparsity(In.X0, Out.QF)) == [(0, 0)]
        assert integ.jac_sparsity(In.P, Out.QF).nnz() == 0

    def test_reverse_matches_forward(self):
        integ = rk(two_state_dae(), n=5, coarse_sparsity=False)
        for iind, oind in [(In.X0, Out.XF), (In.P, Out.XF), (In.X0, Out.QF)]:
            fwd = integ.jac_sparsity(iind, oind, fwd=True)
            rev = integ.jac_sparsity(iind, oind, fwd=False)
            assert triplet(fwd) == triplet(rev)

    def test_algebraic_coupling(self):
        integ = rk(index1_dae(), n=5, coarse_sparsity=False)
        assert integ.jac_sparsity(In.P, Out.XF).nnz() == 1
        assert integ.jac_sparsity(In.P, Out.ZF).nnz() == 1
        assert integ.jac_sparsity(In.Z0, Out.XF).nnz() == 0

    def test_backward_problem(self):
        integ = rk(decay_dae(), decay_rdae(), n=5, coarse_sparsity=False)
        assert integ.jac_sparsity(In.RX0, Out.RXF).nnz() == 1
        assert integ.jac_sparsity(In.RX0, Out.XF).nnz() == 0
        assert integ.jac_sparsity(In.X0, Out.RXF).nnz() == 0
        assert integ.jac_sparsity(In.RX0, Out.RQF, fwd=False).nnz() == 1


class TestCoarseSparsity:
    def test_worst_case_blocks(self):
        integ = rk(two_state_dae(), n=5)
        assert integ.jac_sparsity(In.X0, Out.XF).nnz() == 4
        assert integ.jac_sparsity(In.P, Out.QF).nnz() == 1
        assert integ.jac_sparsity(In.P, Out.QF, fwd=False).nnz() == 1

    def test_forward_never_depends_on_backward_inputs(self):
        integ = rk(decay_dae(), decay_rdae(), n=5)
        assert integ.jac_sparsity(In.RX0, Out.XF).nnz() == 0
        assert integ.jac_sparsity(In.RX0, Out.XF, fwd=False).nnz() == 0
        assert integ.jac_sparsity(In.X0, Out.RXF).nnz() == 1


@pytest.mark.parametrize("coarse", [True, False])
def test_pattern_covers_numeric_jacobian(coarse):
    integ = rk(two_state_dae(), n=20, coarse_sparsity=coarse)
    integ.set_input(In.X0, [1.0, 2.0])
    integ.set_input(In.P, 0.5)
    for iind in (In.X0, In.P):
        for oind in (Out.XF, Out.QF):
            jac = np.array(integ.jacobian(iind, oind))
            sp = integ.jac_sparsity(iind, oind)
            pattern = np.array(ca.DM(sp, 1))
            assert np.all((np.abs(jac) > 1e-12) <= (pattern != 0))


def test_reverse_clears_algebraic_guesses():
    integ = rk(index1_dae(), n=5)
    arg = [bvec_zeros(integ.input(i).nnz()) for i in In]
    res = [bvec_zeros(integ.output(o).nnz()) for o in Out]
    arg[In.Z0][:] = 1
    res[Out.ZF][:] = 2
    integ.sp_evaluate(False, arg, res)
    assert int(arg[In.Z0][0]) == 0
    assert int(arg[In.P][0]) == 2


def test_buffers_are_validated():
    integ = rk(decay_dae(), n=5)
    arg = [bvec_zeros(2) for _ in In]
    res = [bvec_zeros(integ.output(o).nnz()) for o in Out]
    with pytest.raises(ValueError):
        integ.sp_evaluate(True, arg, res)


def test_backward_requires_linear_solver():
    integ = rk(decay_dae(), decay_rdae(), n=5)
    arg = [bvec_zeros(integ.input(i).nnz()) for i in In]
    res = [bvec_zeros(integ.output(o).nnz()) for o in Out]
    with pytest.raises(ValueError):
        sp_propagate(integ.f, integ.g, integ.linsol_f, None, True, arg, res)


def test_uninitialized_linear_solver_is_rejected():
    integ = rk(decay_dae(), decay_rdae(), n=5)
    arg = [bvec_zeros(integ.input(i).nnz()) for i in In]
    res = [bvec_zeros(integ.output(o).nnz()) for o in Out]
    arg[In.X0][:] = 1
    fresh = LinearSolver(integ.linsol_g.sparsity)
    with pytest.raises(RuntimeError, match="must be initialized"):
        sp_propagate(integ.f, integ.g, integ.linsol_f, fresh, True, arg, res)
    # Nothing was propagated before the check
    assert not res[Out.XF].any()


def test_many_seeds_use_several_passes():
    n = 70
    x = ca.SX.sym("x", n)
    integ = rk(dae_function("many", x=x, ode=-x), n=2, coarse_sparsity=False)
    sp = integ.jac_sparsity(In.X0, Out.XF)
    assert triplet(sp) == [(k, k) for k in range(n)]
