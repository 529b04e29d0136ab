"""
daesens - DAE integrators with forward and adjoint sensitivities

Wraps CasADi DAE/RDAE functions in an integrator object with a fixed
input/output contract, derives augmented problems for any number of forward
and adjoint sensitivity directions, and propagates structural dependencies
through the integration with bit vectors.
"""

from beartype.claw import beartype_package

beartype_package(__name__)

__version__ = "0.1.0"

from .augmented import AugmentedProblem, build_augmented
from .callback import DAECallback, MXCallback, SXCallback, as_callback, dae_function, expand_callback, rdae_function
from .integrator import DerivativeResult, Integrator, IntegratorDerivative
from .linsol import LinearSolver
from .offsets import AugOffset, Dimensions, aug_offsets
from .options import OptionsFunctionality, OptionType
from .rk import RKIntegrator
from .schemes import (
    DAEInput,
    DAEOutput,
    IntegratorInput,
    IntegratorOutput,
    RDAEInput,
    RDAEOutput,
)
from .sparsity import sp_jac_dae, sp_jac_rdae, sp_propagate

__all__ = [
    "AugOffset",
    "AugmentedProblem",
    "DAECallback",
    "DAEInput",
    "DAEOutput",
    "DerivativeResult",
    "Dimensions",
    "Integrator",
    "IntegratorDerivative",
    "IntegratorInput",
    "IntegratorOutput",
    "LinearSolver",
    "MXCallback",
    "OptionType",
    "OptionsFunctionality",
    "RDAEInput",
    "RDAEOutput",
    "RKIntegrator",
    "SXCallback",
    "__version__",
    "as_callback",
    "aug_offsets",
    "build_augmented",
    "dae_function",
    "expand_callback",
    "rdae_function",
    "sp_jac_dae",
    "sp_jac_rdae",
    "sp_propagate",
]
