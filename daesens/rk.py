"""
Fixed-step Runge-Kutta integrator.

Classic RK4 on an equidistant grid with ``number_of_finite_elements``
steps over [t0, tf]. Algebraic states are eliminated at every stage with a
Newton rootfinder, so semi-explicit index-1 DAEs are supported.

The forward sweep stores the state at the grid points and at the step
midpoints (third order dense output of RK4, weights 5/24, 1/6, 1/6, -1/24).
The backward problem is integrated with the same method in reversed time,
interpolating the forward trajectory from the stored values::

        0   |
        1/2 | 1/2
        1/2 | 0     1/2
        1   | 0     0     1
        ----------------------
              1/6   1/3   1/3   1/6
"""

from __future__ import annotations

import copy
import io
import logging
import sys
from dataclasses import dataclass
from typing import Optional

import casadi as ca

from .callback import DAECallback
from .integrator import Integrator
from .options import OptionType
from .schemes import DAEInput, DAEOutput, IntegratorInput, IntegratorOutput, RDAEInput, RDAEOutput

logger = logging.getLogger(__name__)

__all__ = ["RKIntegrator"]

# Dense output of RK4 at the step midpoint
MIDPOINT_WEIGHTS = (5.0 / 24.0, 1.0 / 6.0, 1.0 / 6.0, -1.0 / 24.0)


@dataclass(frozen=True)
class _Segment:
    """Forward step record replayed by the backward sweep."""

    t: float
    h: float
    x: ca.DM
    z: ca.DM
    x_mid: ca.DM
    z_mid: ca.DM
    x_next: ca.DM
    z_next: ca.DM


def _alg_solver(name: str, residual: ca.Function) -> ca.Function:
    """Newton rootfinder for the first input of ``residual``."""
    return ca.rootfinder(name, "newton", residual)


class RKIntegrator(Integrator):
    """
    Fixed step RK4 integrator for the forward and the backward problem.

    Example:
        >>> x = ca.SX.sym("x")  # doctest: +SKIP
        >>> integ = RKIntegrator(dae_function("f", x=x, ode=-x))  # doctest: +SKIP
        >>> integ.set_option("number_of_finite_elements", 50)  # doctest: +SKIP
        >>> integ.init()  # doctest: +SKIP
    """

    def __init__(self, f: DAECallback | ca.Function, g: DAECallback | ca.Function | None = None) -> None:
        super().__init__(f, g)
        self.add_option(
            "number_of_finite_elements",
            OptionType.INTEGER,
            20,
            "Number of RK4 steps over the time horizon",
        )
        self.h = 0.0
        self._step: Optional[ca.Function] = None
        self._step_b: Optional[ca.Function] = None
        self._trajectory: list[_Segment] = []
        self.stats = {"n_steps": 0, "n_steps_b": 0}

    def init(self) -> None:
        super().init()
        self._is_init = False
        n = self.get_option("number_of_finite_elements")
        if n < 1:
            raise ValueError(f"number_of_finite_elements must be positive, got {n}")
        self.h = (self.tf - self.t0) / n
        self._step = self._build_step()
        self._step_b = None if self.g is None else self._build_step_b()
        self._trajectory = []
        self.stats = {"n_steps": 0, "n_steps_b": 0}
        self._is_init = True

    def _build_step(self) -> ca.Function:
        f = self.f
        t = ca.MX.sym("t", f.sparsity_in(DAEInput.T))
        h = ca.MX.sym("h")
        x = ca.MX.sym("x", f.sparsity_in(DAEInput.X))
        z_guess = ca.MX.sym("z", f.sparsity_in(DAEInput.Z))
        p = ca.MX.sym("p", f.sparsity_in(DAEInput.P))

        solve = None
        if self.nz > 0:
            zz = ca.MX.sym("z", z_guess.sparsity())
            tt = ca.MX.sym("t", t.sparsity())
            xx = ca.MX.sym("x", x.sparsity())
            pp = ca.MX.sym("p", p.sparsity())
            alg = f.call([tt, xx, zz, pp])[DAEOutput.ALG]
            solve = _alg_solver(f"{f.name}_alg", ca.Function(f"{f.name}_alg_res", [zz, tt, xx, pp], [alg]))

        def algebraic(tk, xk):
            if solve is None:
                return z_guess
            return solve.call([z_guess, tk, xk, p])[0]

        def stage(tk, xk):
            ode, _, quad = f.call([tk, xk, algebraic(tk, xk), p])
            return ode, quad

        k1, q1 = stage(t, x)
        k2, q2 = stage(t + h / 2, x + h / 2 * k1)
        k3, q3 = stage(t + h / 2, x + h / 2 * k2)
        k4, q4 = stage(t + h, x + h * k3)
        x_next = x + h / 6 * (k1 + 2 * k2 + 2 * k3 + k4)
        q_inc = h / 6 * (q1 + 2 * q2 + 2 * q3 + q4)
        b1, b2, b3, b4 = MIDPOINT_WEIGHTS
        x_mid = x + h * (b1 * k1 + b2 * k2 + b3 * k3 + b4 * k4)

        return ca.Function(
            "rk_step",
            [t, h, x, z_guess, p],
            [x_next, q_inc, algebraic(t + h, x_next), x_mid, algebraic(t + h / 2, x_mid), algebraic(t, x)],
            ["t", "h", "x", "z", "p"],
            ["xf", "qf", "zf", "x_mid", "z_mid", "z0"],
        )

    def _build_step_b(self) -> ca.Function:
        g = self.g
        t = ca.MX.sym("t", g.sparsity_in(RDAEInput.T))
        h = ca.MX.sym("h")
        x_sp, z_sp = g.sparsity_in(RDAEInput.X), g.sparsity_in(RDAEInput.Z)
        # Forward trajectory at the start, middle and end of the backward step
        x_hi, x_mid, x_lo = (ca.MX.sym(n, x_sp) for n in ("x_hi", "x_mid", "x_lo"))
        z_hi, z_mid, z_lo = (ca.MX.sym(n, z_sp) for n in ("z_hi", "z_mid", "z_lo"))
        p = ca.MX.sym("p", g.sparsity_in(RDAEInput.P))
        rx = ca.MX.sym("rx", g.sparsity_in(RDAEInput.RX))
        rz_guess = ca.MX.sym("rz", g.sparsity_in(RDAEInput.RZ))
        rp = ca.MX.sym("rp", g.sparsity_in(RDAEInput.RP))

        solve = None
        if self.nrz > 0:
            rzz = ca.MX.sym("rz", rz_guess.sparsity())
            tt = ca.MX.sym("t", t.sparsity())
            xx = ca.MX.sym("x", x_sp)
            zz = ca.MX.sym("z", z_sp)
            pp = ca.MX.sym("p", p.sparsity())
            rxx = ca.MX.sym("rx", rx.sparsity())
            rpp = ca.MX.sym("rp", rp.sparsity())
            alg = g.call([tt, xx, zz, pp, rxx, rzz, rpp])[RDAEOutput.ALG]
            solve = _alg_solver(
                f"{g.name}_alg",
                ca.Function(f"{g.name}_alg_res", [rzz, tt, xx, zz, pp, rxx, rpp], [alg]),
            )

        def algebraic(tk, xk, zk, rxk):
            if solve is None:
                return rz_guess
            return solve.call([rz_guess, tk, xk, zk, p, rxk, rp])[0]

        def stage(tk, xk, zk, rxk):
            ode, _, quad = g.call([tk, xk, zk, p, rxk, algebraic(tk, xk, zk, rxk), rp])
            return ode, quad

        k1, q1 = stage(t, x_hi, z_hi, rx)
        k2, q2 = stage(t - h / 2, x_mid, z_mid, rx + h / 2 * k1)
        k3, q3 = stage(t - h / 2, x_mid, z_mid, rx + h / 2 * k2)
        k4, q4 = stage(t - h, x_lo, z_lo, rx + h * k3)
        rx_next = rx + h / 6 * (k1 + 2 * k2 + 2 * k3 + k4)
        rq_inc = h / 6 * (q1 + 2 * q2 + 2 * q3 + q4)

        return ca.Function(
            "rk_step_b",
            [t, h, x_hi, z_hi, x_mid, z_mid, x_lo, z_lo, p, rx, rz_guess, rp],
            [rx_next, rq_inc, algebraic(t - h, x_lo, z_lo, rx_next)],
        )

    def reset(self) -> None:
        super().reset()
        self._trajectory = []
        self.stats["n_steps"] = 0

    def reset_b(self) -> None:
        super().reset_b()
        self.stats["n_steps_b"] = 0

    def _eps(self, t: float) -> float:
        return 1e-12 * max(1.0, abs(t), abs(self.tf - self.t0))

    def integrate(self, t: float) -> None:
        self._require_init()
        x = self.output(IntegratorOutput.XF)
        z = self.output(IntegratorOutput.ZF)
        q = self.output(IntegratorOutput.QF)
        p = self.input(IntegratorInput.P)
        eps = self._eps(t)
        while self.t < t - eps:
            h = min(self.h, t - self.t)
            x_next, q_inc, z_next, x_mid, z_mid, z_cur = self._step.call(
                [ca.DM(self.t), ca.DM(h), x, z, p]
            )
            self._trajectory.append(_Segment(self.t, h, x, z_cur, x_mid, z_mid, x_next, z_next))
            x, z, q = x_next, z_next, q + q_inc
            self.t += h
            self.stats["n_steps"] += 1
        self.set_output(IntegratorOutput.XF, x)
        self.set_output(IntegratorOutput.ZF, z)
        self.set_output(IntegratorOutput.QF, q)
        logger.debug("integrate: reached t=%g after %d steps", self.t, self.stats["n_steps"])

    def integrate_b(self, t: float) -> None:
        self._require_init()
        if self._step_b is None:
            raise RuntimeError("No backward problem to integrate")
        eps = self._eps(t)
        if self.t > t + eps and not self._trajectory:
            raise RuntimeError("Backward integration requires a preceding forward integration")
        rx = self.output(IntegratorOutput.RXF)
        rz = self.output(IntegratorOutput.RZF)
        rq = self.output(IntegratorOutput.RQF)
        p = self.input(IntegratorInput.P)
        rp = self.input(IntegratorInput.RP)
        for seg in reversed(self._trajectory):
            t_hi = seg.t + seg.h
            if t_hi > self.t + eps:
                continue
            if seg.t < t - eps:
                break
            rx, rq_inc, rz = self._step_b.call(
                [
                    ca.DM(t_hi),
                    ca.DM(seg.h),
                    seg.x_next,
                    seg.z_next,
                    seg.x_mid,
                    seg.z_mid,
                    seg.x,
                    seg.z,
                    p,
                    rx,
                    rz,
                    rp,
                ]
            )
            rq = rq + rq_inc
            self.t = seg.t
            self.stats["n_steps_b"] += 1
        self.set_output(IntegratorOutput.RXF, rx)
        self.set_output(IntegratorOutput.RZF, rz)
        self.set_output(IntegratorOutput.RQF, rq)
        logger.debug("integrate_b: reached t=%g after %d steps", self.t, self.stats["n_steps_b"])

    def print_stats(self, stream: Optional[io.TextIOBase] = None) -> None:
        stream = sys.stdout if stream is None else stream
        super().print_stats(stream)
        print(f"  forward steps: {self.stats['n_steps']}, backward steps: {self.stats['n_steps_b']}", file=stream)

    def clone(self, already_cloned: Optional[dict] = None) -> RKIntegrator:
        if already_cloned is not None and id(self) in already_cloned:
            return already_cloned[id(self)]
        ret = super().clone(already_cloned)
        ret._trajectory = list(self._trajectory)
        ret.stats = copy.copy(self.stats)
        return ret
