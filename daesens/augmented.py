"""Augmented DAE problems for forward and adjoint sensitivities.

The augmented forward problem integrates the nominal DAE together with its
forward sensitivity equations; the augmented backward problem integrates the
nominal RDAE (if any) together with the adjoint sensitivity equations. Both
are ordinary DAE/RDAE callbacks again, so any integrator can solve them.

Layout of every stacked vector (see :mod:`daesens.offsets`)::

    [ nominal | fwd 0 | ... | fwd nfwd-1 | adj 0 | ... | adj nadj-1 ]
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import casadi as ca

from .callback import DAECallback, MXCallback, SXCallback, as_callback
from .cursor import BlockCursor
from .offsets import AugOffset, Dimensions, aug_offsets
from .schemes import (
    DAE_IN_NAMES,
    DAE_OUT_NAMES,
    RDAE_IN_NAMES,
    RDAE_OUT_NAMES,
    DAEInput,
    DAEOutput,
    RDAEInput,
    RDAEOutput,
)

logger = logging.getLogger(__name__)


@dataclass
class AugmentedProblem:
    """Forward/backward DAE pair with stacked sensitivity directions."""

    f: DAECallback
    g: Optional[DAECallback]
    offset: AugOffset


def problem_dimensions(f: DAECallback, g: Optional[DAECallback] = None) -> Dimensions:
    """Block sizes (rows) of the quantities of a DAE/RDAE pair."""
    rows_in = lambda cb, i: cb.sparsity_in(i).size1()
    rows_out = lambda cb, i: cb.sparsity_out(i).size1()
    dims = dict(
        nx=rows_in(f, DAEInput.X),
        nz=rows_in(f, DAEInput.Z),
        nq=rows_out(f, DAEOutput.QUAD),
        np=rows_in(f, DAEInput.P),
    )
    if g is not None:
        dims.update(
            nrx=rows_in(g, RDAEInput.RX),
            nrz=rows_in(g, RDAEInput.RZ),
            nrq=rows_out(g, RDAEOutput.QUAD),
            nrp=rows_in(g, RDAEInput.RP),
        )
    return Dimensions(**dims)


class _Accumulator:
    """Adds contributions to already collected right-hand sides, in order."""

    def __init__(self, target: list, start: int, name: str) -> None:
        self.target = target
        self.index = start
        self.name = name

    def add(self, expr: ca.MX) -> None:
        if self.index >= len(self.target):
            raise RuntimeError(f"Accumulator '{self.name}' ran past the collected right-hand sides")
        self.target[self.index] = self.target[self.index] + expr
        self.index += 1

    def assert_consumed(self) -> None:
        if self.index != len(self.target):
            raise RuntimeError(
                f"Accumulator '{self.name}' stopped at {self.index} of {len(self.target)} right-hand sides"
            )


def _stack(exprs: list, rows: int) -> ca.MX:
    if not exprs:
        return ca.MX(rows, 1)
    return ca.densify(ca.vertcat(*exprs))


def build_augmented(
    f: DAECallback | ca.Function,
    g: DAECallback | ca.Function | None,
    nfwd: int,
    nadj: int,
    expand: bool = False,
) -> AugmentedProblem:
    """
    Build the augmented DAE/RDAE pair for ``nfwd`` forward and ``nadj`` adjoint directions.

    Parameters
    ----------
    f : DAECallback or casadi.Function
        Forward DAE (t, x, z, p) -> (ode, alg, quad)
    g : DAECallback, casadi.Function or None
        Backward DAE (t, x, z, p, rx, rz, rp) -> (ode, alg, quad)
    nfwd, nadj : int
        Number of forward and adjoint sensitivity directions
    expand : bool
        Lower the augmented functions to SX when f and g are both SX based

    Returns
    -------
    AugmentedProblem
        The augmented forward problem, the augmented backward problem (None
        if there is nothing to integrate backwards) and the block offsets
    """
    logger.debug("build_augmented(nfwd=%d, nadj=%d): begin", nfwd, nadj)
    f = as_callback(f)
    g = None if g is None else as_callback(g)
    dims = problem_dimensions(f, g)
    nx, nz, nq, np_ = dims.nx, dims.nz, dims.nq, dims.np
    nrx, nrz, nrq, nrp = dims.nrx, dims.nrz, dims.nrq, dims.nrp

    # Calculate offsets
    offset = aug_offsets(nfwd, nadj, dims)

    # Augmented symbolic inputs
    aug_t = ca.MX.sym("aug_t", f.sparsity_in(DAEInput.T))
    aug_x = ca.MX.sym("aug_x", offset.total("x"), 1)
    aug_z = ca.MX.sym("aug_z", offset.total("z"), 1)
    aug_p = ca.MX.sym("aug_p", offset.total("p"), 1)
    aug_rx = ca.MX.sym("aug_rx", offset.total("rx"), 1)
    aug_rz = ca.MX.sym("aug_rz", offset.total("rz"), 1)
    aug_rp = ca.MX.sym("aug_rp", offset.total("rp"), 1)

    # Split up the augmented vectors
    x_it = BlockCursor(ca.vertsplit(aug_x, list(offset.x)), "x")
    z_it = BlockCursor(ca.vertsplit(aug_z, list(offset.z)), "z")
    p_it = BlockCursor(ca.vertsplit(aug_p, list(offset.p)), "p")
    rx_it = BlockCursor(ca.vertsplit(aug_rx, list(offset.rx)), "rx")
    rz_it = BlockCursor(ca.vertsplit(aug_rz, list(offset.rz)), "rz")
    rp_it = BlockCursor(ca.vertsplit(aug_rp, list(offset.rp)), "rp")

    # Zero with the dimension of t
    zero_t = ca.MX.zeros(aug_t.sparsity())

    # The DAE being constructed
    f_ode, f_alg, f_quad = [], [], []
    g_ode, g_alg, g_quad = [], [], []

    def zeros_in(cb: DAECallback) -> list:
        return [ca.MX.zeros(cb.sparsity_in(i)) for i in range(cb.n_in)]

    def zeros_out(cb: DAECallback) -> list:
        return [ca.MX.zeros(cb.sparsity_out(i)) for i in range(cb.n_out)]

    # Forward derivatives of f
    d = f.derivative(nfwd, 0)
    f_arg = []
    for direction in range(-1, nfwd):
        tmp = zeros_in(f)
        tmp[DAEInput.T] = aug_t if direction < 0 else zero_t
        if nx > 0:
            tmp[DAEInput.X] = x_it.take()
        if nz > 0:
            tmp[DAEInput.Z] = z_it.take()
        if np_ > 0:
            tmp[DAEInput.P] = p_it.take()
        f_arg.extend(tmp)

    res = BlockCursor(d.call(f_arg), "f_res")
    for _ in range(-1, nfwd):
        tmp = [res.take() for _ in range(f.n_out)]
        if nx > 0:
            f_ode.append(tmp[DAEOutput.ODE])
        if nz > 0:
            f_alg.append(tmp[DAEOutput.ALG])
        if nq > 0:
            f_quad.append(tmp[DAEOutput.QUAD])
    res.assert_consumed()

    g_arg = []
    if g is not None:
        # Forward derivatives of g
        d = g.derivative(nfwd, 0)
        x_it.rewind()
        z_it.rewind()
        p_it.rewind()
        for direction in range(-1, nfwd):
            tmp = zeros_in(g)
            tmp[RDAEInput.T] = aug_t if direction < 0 else zero_t
            if nx > 0:
                tmp[RDAEInput.X] = x_it.take()
            if nz > 0:
                tmp[RDAEInput.Z] = z_it.take()
            if np_ > 0:
                tmp[RDAEInput.P] = p_it.take()
            if nrx > 0:
                tmp[RDAEInput.RX] = rx_it.take()
            if nrz > 0:
                tmp[RDAEInput.RZ] = rz_it.take()
            if nrp > 0:
                tmp[RDAEInput.RP] = rp_it.take()
            g_arg.extend(tmp)

        res = BlockCursor(d.call(g_arg), "g_res")
        for _ in range(-1, nfwd):
            tmp = [res.take() for _ in range(g.n_out)]
            if nrx > 0:
                g_ode.append(tmp[RDAEOutput.ODE])
            if nrz > 0:
                g_alg.append(tmp[RDAEOutput.ALG])
            if nrq > 0:
                g_quad.append(tmp[RDAEOutput.QUAD])
        res.assert_consumed()

    if nadj > 0:
        # Adjoint derivatives of f, seeded where the outputs were
        d = f.derivative(0, nadj)
        f_arg = f_arg[: f.n_in]
        for _ in range(nadj):
            tmp = zeros_out(f)
            if nx > 0:
                tmp[DAEOutput.ODE] = rx_it.take()
            if nz > 0:
                tmp[DAEOutput.ALG] = rz_it.take()
            if nq > 0:
                tmp[DAEOutput.QUAD] = rp_it.take()
            f_arg.extend(tmp)

        res = BlockCursor(d.call(f_arg)[f.n_out :], "f_adj_res")

        # Record where the adjoint right-hand sides start
        g_ode_acc = _Accumulator(g_ode, len(g_ode), "g_ode")
        g_alg_acc = _Accumulator(g_alg, len(g_alg), "g_alg")
        g_quad_acc = _Accumulator(g_quad, len(g_quad), "g_quad")

        for _ in range(nadj):
            tmp = [res.take() for _ in range(f.n_in)]
            if nx > 0:
                g_ode.append(tmp[DAEInput.X])
            if nz > 0:
                g_alg.append(tmp[DAEInput.Z])
            if np_ > 0:
                g_quad.append(tmp[DAEInput.P])
        res.assert_consumed()

        if g is not None:
            # Adjoint derivatives of g
            d = g.derivative(0, nadj)
            g_arg = g_arg[: g.n_in]
            for _ in range(nadj):
                tmp = zeros_out(g)
                if nrx > 0:
                    tmp[RDAEOutput.ODE] = x_it.take()
                if nrz > 0:
                    tmp[RDAEOutput.ALG] = z_it.take()
                if nrq > 0:
                    tmp[RDAEOutput.QUAD] = p_it.take()
                g_arg.extend(tmp)

            res = BlockCursor(d.call(g_arg)[g.n_out :], "g_adj_res")
            for _ in range(nadj):
                tmp = [res.take() for _ in range(g.n_in)]
                if nx > 0:
                    g_ode_acc.add(tmp[RDAEInput.X])
                if nz > 0:
                    g_alg_acc.add(tmp[RDAEInput.Z])
                if np_ > 0:
                    g_quad_acc.add(tmp[RDAEInput.P])
            res.assert_consumed()
            g_ode_acc.assert_consumed()
            g_alg_acc.assert_consumed()
            g_quad_acc.assert_consumed()

            # Remove the dependency on rx, rz, rp from the forward integration
            if nrx > 0:
                g_arg[RDAEInput.RX] = ca.MX.zeros(g_arg[RDAEInput.RX].sparsity())
            if nrz > 0:
                g_arg[RDAEInput.RZ] = ca.MX.zeros(g_arg[RDAEInput.RZ].sparsity())
            if nrp > 0:
                g_arg[RDAEInput.RP] = ca.MX.zeros(g_arg[RDAEInput.RP].sparsity())

            # The contribution to the forward integration
            res = BlockCursor(d.call(g_arg)[g.n_out :], "g_adj_fwd_res")
            for _ in range(nadj):
                tmp = [res.take() for _ in range(g.n_in)]
                if nrx > 0:
                    f_ode.append(tmp[RDAEInput.RX])
                if nrz > 0:
                    f_alg.append(tmp[RDAEInput.RZ])
                if nrp > 0:
                    f_quad.append(tmp[RDAEInput.RP])
            res.assert_consumed()

    # Lower to SX only if both callbacks already are SX
    expand = expand and isinstance(f, SXCallback) and (g is None or isinstance(g, SXCallback))

    def finish(name: str, fcn: ca.Function) -> DAECallback:
        if expand:
            return SXCallback(fcn.expand(name))
        return MXCallback(fcn)

    # Form the augmented forward problem
    if g is None and nfwd == 0:
        aug_f = f
    else:
        f_in = [aug_t, aug_x, aug_z, aug_p]
        f_out = [
            _stack(f_ode, offset.total("x")),
            _stack(f_alg, offset.total("z")),
            _stack(f_quad, offset.total("q")),
        ]
        aug_f = finish(
            f"{f.name}_aug",
            ca.Function(f"{f.name}_aug", f_in, f_out, list(DAE_IN_NAMES), list(DAE_OUT_NAMES)),
        )

    # Form the augmented backward problem
    aug_g = None
    if g_ode:
        g_in = [aug_t, aug_x, aug_z, aug_p, aug_rx, aug_rz, aug_rp]
        g_out = [
            _stack(g_ode, offset.total("rx")),
            _stack(g_alg, offset.total("rz")),
            _stack(g_quad, offset.total("rq")),
        ]
        name = f"{g.name}_aug" if g is not None else f"{f.name}_adj"
        aug_g = finish(
            name,
            ca.Function(name, g_in, g_out, list(RDAE_IN_NAMES), list(RDAE_OUT_NAMES)),
        )

    # Every block must have been used exactly once
    for cursor in (x_it, z_it, p_it, rx_it, rz_it, rp_it):
        cursor.assert_consumed()

    logger.debug("build_augmented(nfwd=%d, nadj=%d): end", nfwd, nadj)
    return AugmentedProblem(aug_f, aug_g, offset)
