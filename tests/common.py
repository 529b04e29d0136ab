"""Shared problem builders for the tests."""

import casadi as ca

from daesens import Integrator, RKIntegrator, dae_function, rdae_function


def decay_dae(sym=ca.SX, quad=False):
    """dx/dt = -p x, optionally with the quadrature integrand x."""
    x = sym.sym("x")
    p = sym.sym("p")
    return dae_function("decay", x=x, p=p, ode=-p * x, quad=x if quad else None)


def decay_rdae(sym=ca.SX):
    """Backward problem d rx/d tau = -rx with quadrature integrand rx."""
    rx = sym.sym("rx")
    x = sym.sym("x")
    p = sym.sym("p")
    return rdae_function("decay_b", rx=rx, x=x, p=p, ode=-rx, quad=rx)


def two_state_dae():
    """Two decoupled states, only the second one depends on p; q integrates x1."""
    x = ca.SX.sym("x", 2)
    p = ca.SX.sym("p")
    return dae_function("two_state", x=x, p=p, ode=ca.vertcat(-x[0], -p * x[1]), quad=x[0])


def index1_dae():
    """dx/dt = -z, 0 = z - p x, i.e. dx/dt = -p x with z = p x."""
    x = ca.SX.sym("x")
    z = ca.SX.sym("z")
    p = ca.SX.sym("p")
    return dae_function("index1", x=x, z=z, p=p, ode=-z, alg=z - p * x)


def coupled_problem():
    """
    Time-varying index-1 DAE with a quadrature, and a backward problem with rp.

    Forward:  x0' = -p0 z + sin(t) / 2,  x1' = x0 - p1 x1,  0 = z + z^3 / 10 - x0,
              q' = x0^2 + p1 z
    Backward: rx' = -p0 rx + rp z + rz,  0 = rz - x0 rx / 2,  rq' = rx x1 + t rp

    The backward problem is linear in (rx, rz, rp).
    """
    t = ca.SX.sym("t")
    x = ca.SX.sym("x", 2)
    z = ca.SX.sym("z")
    p = ca.SX.sym("p", 2)
    rx = ca.SX.sym("rx")
    rz = ca.SX.sym("rz")
    rp = ca.SX.sym("rp")
    f = dae_function(
        "coupled",
        t=t,
        x=x,
        z=z,
        p=p,
        ode=ca.vertcat(-p[0] * z + 0.5 * ca.sin(t), x[0] - p[1] * x[1]),
        alg=z + 0.1 * z**3 - x[0],
        quad=x[0] ** 2 + p[1] * z,
    )
    g = rdae_function(
        "coupled_b",
        rx=rx,
        t=t,
        x=x,
        z=z,
        p=p,
        rz=rz,
        rp=rp,
        ode=-p[0] * rx + rp * z + rz,
        alg=rz - 0.5 * x[0] * rx,
        quad=rx * x[1] + t * rp,
    )
    return f, g


def rk(f, g=None, n=100, **options):
    integ = RKIntegrator(f, g)
    integ.set_option("number_of_finite_elements", n)
    integ.set_option(options)
    integ.init()
    return integ


class StubIntegrator(Integrator):
    """Records the stepping calls instead of integrating."""

    def __init__(self, f, g=None):
        super().__init__(f, g)
        self.calls = []

    def integrate(self, t: float) -> None:
        self.calls.append(("integrate", t))
        self.t = t

    def integrate_b(self, t: float) -> None:
        self.calls.append(("integrate_b", t))
        self.t = t
