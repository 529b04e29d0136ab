"""
Structural dependency propagation through an integrator.

Given bit-vector tagged integrator inputs (x0, p, z0, rx0, rp, rz0), find
which terminal outputs (xf, qf, zf, rxf, rqf, rzf) may depend on them, or the
other way around in reverse mode. Nothing is integrated: the DAE callbacks
propagate bits through their own structural Jacobians, and the implicit
coupling between differential and algebraic states is resolved with a
sparsity-only linear solve over

    [ J_ode_x + I   J_ode_z ]
    [ J_alg_x       J_alg_z ]

The result is an over-approximation of the true dependency: a bit that is not
set is guaranteed to correspond to a zero derivative.
"""

from __future__ import annotations

import logging
from typing import Optional

import casadi as ca
import numpy as np

from .bvec import bvec_or, bvec_zeros
from .callback import DAECallback
from .linsol import LinearSolver
from .schemes import (
    DAEInput,
    DAEOutput,
    IntegratorInput,
    IntegratorOutput,
    RDAEInput,
    RDAEOutput,
)

logger = logging.getLogger(__name__)


def _implicit_pattern(cb: DAECallback, x: int, z: int, ode: int, alg: int) -> ca.Sparsity:
    ret = cb.jac_sparsity(x, ode)
    # Diagonal: every state depends on itself
    ret = ret.unite(ca.Sparsity.diag(ret.size1()))
    if cb.sparsity_in(z).nnz() == 0:
        return ret
    jac_ode_z = cb.jac_sparsity(z, ode)
    jac_alg_x = cb.jac_sparsity(x, alg)
    jac_alg_z = cb.jac_sparsity(z, alg)
    return ca.vertcat(ca.horzcat(ret, jac_ode_z), ca.horzcat(jac_alg_x, jac_alg_z))


def sp_jac_dae(f: DAECallback) -> ca.Sparsity:
    """Pattern of the implicit forward system in (X, Z)."""
    return _implicit_pattern(f, DAEInput.X, DAEInput.Z, DAEOutput.ODE, DAEOutput.ALG)


def sp_jac_rdae(g: DAECallback) -> ca.Sparsity:
    """Pattern of the implicit backward system in (RX, RZ)."""
    return _implicit_pattern(g, RDAEInput.RX, RDAEInput.RZ, RDAEOutput.ODE, RDAEOutput.ALG)


def _zeros_like_in(cb: DAECallback, i: int) -> np.ndarray:
    return bvec_zeros(cb.sparsity_in(i).nnz())


def _zeros_like_out(cb: DAECallback, i: int) -> np.ndarray:
    return bvec_zeros(cb.sparsity_out(i).nnz())


def _forward(
    f: DAECallback,
    g: Optional[DAECallback],
    linsol_f: LinearSolver,
    linsol_g: Optional[LinearSolver],
    arg: list[np.ndarray],
    res: list[np.ndarray],
) -> None:
    nx = f.sparsity_in(DAEInput.X).nnz()
    nq = f.sparsity_out(DAEOutput.QUAD).nnz()

    # Propagate through the DAE
    f_in = [
        _zeros_like_in(f, DAEInput.T),
        arg[IntegratorInput.X0],
        _zeros_like_in(f, DAEInput.Z),
        arg[IntegratorInput.P],
    ]
    f_out = f.sp_forward(f_in)

    # Resolve the implicit interdependencies, the initial state feeds its own row
    b, x = linsol_f.b, linsol_f.x
    b[:nx] = f_out[DAEOutput.ODE] | arg[IntegratorInput.X0]
    b[nx:] = f_out[DAEOutput.ALG]
    x[:] = 0
    linsol_f.sp_solve(x, b)
    res[IntegratorOutput.XF][:] = x[:nx]
    res[IntegratorOutput.ZF][:] = x[nx:]

    # Influence on the quadratures
    if nq > 0:
        f_in[DAEInput.X] = x[:nx].copy()
        f_in[DAEInput.Z] = x[nx:].copy()
        res[IntegratorOutput.QF][:] = f.sp_forward(f_in)[DAEOutput.QUAD]
    else:
        res[IntegratorOutput.QF][:] = 0

    if g is None:
        return

    nrx = g.sparsity_in(RDAEInput.RX).nnz()
    nrq = g.sparsity_out(RDAEOutput.QUAD).nnz()

    # Propagate through the backward DAE
    g_in = [
        _zeros_like_in(g, RDAEInput.T),
        res[IntegratorOutput.XF],
        res[IntegratorOutput.ZF],
        arg[IntegratorInput.P],
        arg[IntegratorInput.RX0],
        _zeros_like_in(g, RDAEInput.RZ),
        arg[IntegratorInput.RP],
    ]
    g_out = g.sp_forward(g_in)

    b, x = linsol_g.b, linsol_g.x
    b[:nrx] = g_out[RDAEOutput.ODE] | arg[IntegratorInput.RX0]
    b[nrx:] = g_out[RDAEOutput.ALG]
    x[:] = 0
    linsol_g.sp_solve(x, b)
    res[IntegratorOutput.RXF][:] = x[:nrx]
    res[IntegratorOutput.RZF][:] = x[nrx:]

    # Influence on the backward quadratures
    if nrq > 0:
        g_in[RDAEInput.RX] = x[:nrx].copy()
        g_in[RDAEInput.RZ] = x[nrx:].copy()
        res[IntegratorOutput.RQF][:] = g.sp_forward(g_in)[RDAEOutput.QUAD]
    else:
        res[IntegratorOutput.RQF][:] = 0


def _reverse(
    f: DAECallback,
    g: Optional[DAECallback],
    linsol_f: LinearSolver,
    linsol_g: Optional[LinearSolver],
    arg: list[np.ndarray],
    res: list[np.ndarray],
) -> None:
    nx = f.sparsity_in(DAEInput.X).nnz()
    nq = f.sparsity_out(DAEOutput.QUAD).nnz()

    x0_bar = bvec_zeros(arg[IntegratorInput.X0].size)
    p_bar = bvec_zeros(arg[IntegratorInput.P].size)
    xf_bar = res[IntegratorOutput.XF].copy()
    zf_bar = res[IntegratorOutput.ZF].copy()

    # The backward problem was propagated last, so it is reversed first
    if g is not None:
        nrx = g.sparsity_in(RDAEInput.RX).nnz()
        nrq = g.sparsity_out(RDAEOutput.QUAD).nnz()
        rx0_bar = bvec_zeros(arg[IntegratorInput.RX0].size)
        rp_bar = bvec_zeros(arg[IntegratorInput.RP].size)
        rxf_bar = res[IntegratorOutput.RXF].copy()
        rzf_bar = res[IntegratorOutput.RZF].copy()

        if nrq > 0:
            g_out = [
                _zeros_like_out(g, RDAEOutput.ODE),
                _zeros_like_out(g, RDAEOutput.ALG),
                res[IntegratorOutput.RQF],
            ]
            g_bar = g.sp_reverse(g_out)
            xf_bar |= g_bar[RDAEInput.X]
            zf_bar |= g_bar[RDAEInput.Z]
            p_bar |= g_bar[RDAEInput.P]
            rxf_bar |= g_bar[RDAEInput.RX]
            rzf_bar |= g_bar[RDAEInput.RZ]
            rp_bar |= g_bar[RDAEInput.RP]

        b, x = linsol_g.b, linsol_g.x
        x[:nrx] = rxf_bar
        x[nrx:] = rzf_bar
        b[:] = 0
        linsol_g.sp_solve(b, x, transpose=True)
        rx0_bar |= b[:nrx]
        g_bar = g.sp_reverse([b[:nrx].copy(), b[nrx:].copy(), _zeros_like_out(g, RDAEOutput.QUAD)])
        xf_bar |= g_bar[RDAEInput.X]
        zf_bar |= g_bar[RDAEInput.Z]
        p_bar |= g_bar[RDAEInput.P]
        rx0_bar |= g_bar[RDAEInput.RX]
        rp_bar |= g_bar[RDAEInput.RP]

        arg[IntegratorInput.RX0][:] = rx0_bar
        arg[IntegratorInput.RP][:] = rp_bar

    if nq > 0:
        f_out = [
            _zeros_like_out(f, DAEOutput.ODE),
            _zeros_like_out(f, DAEOutput.ALG),
            res[IntegratorOutput.QF],
        ]
        f_bar = f.sp_reverse(f_out)
        xf_bar |= f_bar[DAEInput.X]
        zf_bar |= f_bar[DAEInput.Z]
        p_bar |= f_bar[DAEInput.P]

    b, x = linsol_f.b, linsol_f.x
    x[:nx] = xf_bar
    x[nx:] = zf_bar
    b[:] = 0
    linsol_f.sp_solve(b, x, transpose=True)
    x0_bar |= b[:nx]
    f_bar = f.sp_reverse([b[:nx].copy(), b[nx:].copy(), _zeros_like_out(f, DAEOutput.QUAD)])
    x0_bar |= f_bar[DAEInput.X]
    p_bar |= f_bar[DAEInput.P]

    arg[IntegratorInput.X0][:] = x0_bar
    arg[IntegratorInput.P][:] = p_bar


def _coarse(fwd: bool, arg: list[np.ndarray], res: list[np.ndarray]) -> None:
    """
    Worst-case block structure of the integrator Jacobian.

    xf and qf never depend on rx0 and rp::

              x0  p  rx0 rp
        xf  |  x  x         |
        qf  |  x  x         |
        rxf |  x  x  x   x  |
        rqf |  x  x  x   x  |
    """
    if fwd:
        all_depend = bvec_or(arg[IntegratorInput.X0]) | bvec_or(arg[IntegratorInput.P])
        res[IntegratorOutput.XF] |= all_depend
        res[IntegratorOutput.QF] |= all_depend
        all_depend |= bvec_or(arg[IntegratorInput.RX0]) | bvec_or(arg[IntegratorInput.RP])
        res[IntegratorOutput.RXF] |= all_depend
        res[IntegratorOutput.RQF] |= all_depend
    else:
        all_depend = bvec_or(res[IntegratorOutput.RXF]) | bvec_or(res[IntegratorOutput.RQF])
        arg[IntegratorInput.RX0] |= all_depend
        arg[IntegratorInput.RP] |= all_depend
        all_depend |= bvec_or(res[IntegratorOutput.XF]) | bvec_or(res[IntegratorOutput.QF])
        arg[IntegratorInput.X0] |= all_depend
        arg[IntegratorInput.P] |= all_depend


def sp_propagate(
    f: DAECallback,
    g: Optional[DAECallback],
    linsol_f: LinearSolver,
    linsol_g: Optional[LinearSolver],
    fwd: bool,
    arg: list[np.ndarray],
    res: list[np.ndarray],
    coarse: bool = True,
) -> None:
    """
    Propagate dependency bits through an integrator.

    Parameters
    ----------
    f, g : DAECallback
        Forward and (optional) backward DAE callbacks
    linsol_f, linsol_g : LinearSolver
        Initialized solvers over ``sp_jac_dae(f)`` and ``sp_jac_rdae(g)``
    fwd : bool
        Forward mode reads ``arg`` and writes ``res``; reverse mode reads
        ``res`` and writes ``arg``
    arg : list of np.ndarray
        One bit-vector buffer per ``IntegratorInput``
    res : list of np.ndarray
        One bit-vector buffer per ``IntegratorOutput``
    coarse : bool
        Also apply the block-level worst case (see ``_coarse``)
    """
    logger.debug("sp_propagate(fwd=%s): begin", fwd)
    if g is not None and linsol_g is None:
        raise ValueError("A backward problem requires a backward linear solver")
    for linsol in (linsol_f, linsol_g):
        if linsol is not None and not linsol.is_init:
            raise RuntimeError("Linear solvers must be initialized before propagating dependencies")
    if fwd:
        _forward(f, g, linsol_f, linsol_g, arg, res)
    else:
        _reverse(f, g, linsol_f, linsol_g, arg, res)
        # Initial guesses of algebraic states carry no dependency
        arg[IntegratorInput.Z0][:] = 0
        arg[IntegratorInput.RZ0][:] = 0
    if coarse:
        _coarse(fwd, arg, res)
    logger.debug("sp_propagate(fwd=%s): end", fwd)
