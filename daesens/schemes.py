"""
Input/output slot schemes for DAE callbacks and integrators.
"""

from enum import IntEnum


class DAEInput(IntEnum):
    """Input slots of a forward DAE callback."""

    T = 0  # Time
    X = 1  # Differential state
    Z = 2  # Algebraic state
    P = 3  # Parameter


class DAEOutput(IntEnum):
    """Output slots of a forward DAE callback."""

    ODE = 0  # Right-hand side of the differential equations
    ALG = 1  # Algebraic residual
    QUAD = 2  # Quadrature integrand


class RDAEInput(IntEnum):
    """Input slots of a backward (adjoint) DAE callback."""

    T = 0
    X = 1
    Z = 2
    P = 3
    RX = 4  # Backward differential state
    RZ = 5  # Backward algebraic state
    RP = 6  # Backward parameter


class RDAEOutput(IntEnum):
    """Output slots of a backward (adjoint) DAE callback."""

    ODE = 0
    ALG = 1
    QUAD = 2


class IntegratorInput(IntEnum):
    """Input ports of an integrator (initial values)."""

    X0 = 0
    P = 1
    Z0 = 2
    RX0 = 3
    RP = 4
    RZ0 = 5


class IntegratorOutput(IntEnum):
    """Output ports of an integrator (terminal values)."""

    XF = 0
    QF = 1
    ZF = 2
    RXF = 3
    RQF = 4
    RZF = 5


DAE_IN_NAMES = ("t", "x", "z", "p")
DAE_OUT_NAMES = ("ode", "alg", "quad")
RDAE_IN_NAMES = ("t", "x", "z", "p", "rx", "rz", "rp")
RDAE_OUT_NAMES = ("ode", "alg", "quad")
INTEGRATOR_IN_NAMES = ("x0", "p", "z0", "rx0", "rp", "rz0")
INTEGRATOR_OUT_NAMES = ("xf", "qf", "zf", "rxf", "rqf", "rzf")
