"""Integrator lifecycle and state container.

:class:`Integrator` owns a forward DAE callback ``f`` and an optional
backward DAE callback ``g``, validates them, allocates the integrator ports
and orchestrates evaluation::

    reset() -> integrate(tf) -> [reset_b() -> integrate_b(t0)] -> print_stats()

The stepping itself (``integrate`` / ``integrate_b``) is left to concrete
subclasses. Sensitivities are obtained by building an augmented problem and
solving it with a new integrator of the same class (:meth:`derivative`).

Example
-------
>>> x = ca.SX.sym("x")  # doctest: +SKIP
>>> p = ca.SX.sym("p")  # doctest: +SKIP
>>> f = dae_function("decay", x=x, p=p, ode=-p * x)  # doctest: +SKIP
>>> integ = RKIntegrator(f)  # doctest: +SKIP
>>> integ.init()  # doctest: +SKIP
>>> integ(x0=1.0, p=1.0)["xf"]  # doctest: +SKIP
DM(0.367879)
"""

from __future__ import annotations

import copy
import io
import logging
import sys
import warnings
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

import casadi as ca
import numpy as np

from .augmented import AugmentedProblem, build_augmented, problem_dimensions
from .bvec import BVEC, BVEC_SIZE, bvec_zeros
from .callback import DAECallback, as_callback
from .cursor import BlockCursor
from .linsol import LinearSolver
from .offsets import AugOffset, Dimensions, aug_offsets
from .options import OptionsFunctionality, OptionType
from .schemes import (
    INTEGRATOR_IN_NAMES,
    INTEGRATOR_OUT_NAMES,
    DAEInput,
    DAEOutput,
    IntegratorInput,
    IntegratorOutput,
    RDAEInput,
    RDAEOutput,
)
from .sparsity import sp_jac_dae, sp_jac_rdae, sp_propagate

logger = logging.getLogger(__name__)

__all__ = ["Integrator", "IntegratorDerivative", "DerivativeResult"]


def _shape(sp: ca.Sparsity) -> tuple[int, int]:
    return (sp.size1(), sp.size2())


def _to_port(value: Any, template: ca.DM, name: str) -> ca.DM:
    """Convert ``value`` to a DM with the shape and sparsity of ``template``."""
    val = value if isinstance(value, ca.DM) else ca.DM(value)
    if val.shape != template.shape:
        if val.numel() == template.numel() and min(val.shape) <= 1 and min(template.shape) <= 1:
            val = ca.reshape(val, template.size1(), template.size2())
        else:
            raise ValueError(f"Port '{name}' expects shape {template.shape}, got {val.shape}")
    if val.sparsity() == template.sparsity():
        return ca.DM(val)
    return ca.project(val, template.sparsity())


def _port_values(values: Any, templates: Sequence[ca.DM], names: Sequence[str]) -> list[ca.DM]:
    """Ports given as a sequence, a name -> value dict, or None (all zero)."""
    if values is None:
        return [ca.DM.zeros(tpl.sparsity()) for tpl in templates]
    if isinstance(values, dict):
        unknown = set(values) - set(names)
        if unknown:
            raise KeyError(f"Unknown ports {sorted(unknown)}, expected a subset of {list(names)}")
        values = [values.get(name) for name in names]
    if len(values) != len(templates):
        raise ValueError(f"Expected {len(templates)} port values, got {len(values)}")
    return [
        ca.DM.zeros(tpl.sparsity()) if val is None else _to_port(val, tpl, name)
        for val, tpl, name in zip(values, templates, names)
    ]


class Integrator(OptionsFunctionality, ABC):
    """
    Base class of DAE integrators with forward/adjoint sensitivity support.

    Args:
        f: Forward DAE callback (t, x, z, p) -> (ode, alg, quad)
        g: Optional backward DAE callback (t, x, z, p, rx, rz, rp) -> (ode, alg, quad)
    """

    def __init__(self, f: DAECallback | ca.Function, g: DAECallback | ca.Function | None = None) -> None:
        super().__init__()
        self.f = as_callback(f)
        self.g = None if g is None else as_callback(g)

        self.set_option("name", "unnamed_integrator")
        self.add_option("print_stats", OptionType.BOOLEAN, False, "Print out statistics after integration")
        self.add_option("t0", OptionType.REAL, 0.0, "Beginning of the time horizon")
        self.add_option("tf", OptionType.REAL, 1.0, "End of the time horizon")
        self.add_option(
            "augmented_options",
            OptionType.DICTIONARY,
            None,
            "Options to be passed down to the augmented integrator, if one is constructed",
        )
        self.add_option(
            "expand_augmented",
            OptionType.BOOLEAN,
            True,
            "If the DAE callbacks are SX functions, have the augmented DAE callbacks also be SX functions",
        )
        self.add_option(
            "coarse_sparsity",
            OptionType.BOOLEAN,
            True,
            "Add the block-level worst case to the propagated dependency pattern",
        )

        self.dims = Dimensions()
        self.nx = self.nz = self.nq = self.np = 0
        self.nrx = self.nrz = self.nrq = self.nrp = 0
        self.t0 = self.tf = self.t = 0.0
        self.linsol_f: Optional[LinearSolver] = None
        self.linsol_g: Optional[LinearSolver] = None
        self._inputs: list[ca.DM] = []
        self._outputs: list[ca.DM] = []
        self._derivatives: dict[tuple[int, int], IntegratorDerivative] = {}
        self._is_init = False

    # ========== Lifecycle ==========

    def init(self) -> None:
        """Validate the callbacks, derive dimensions and allocate the ports."""
        self._is_init = False
        f, g = self.f, self.g

        # Dimensions of the forward integration
        if not f.is_init:
            f.init()
        if f.n_in != len(DAEInput):
            raise ValueError("Wrong number of inputs for the DAE callback function")
        if f.n_out != len(DAEOutput):
            raise ValueError("Wrong number of outputs for the DAE callback function")
        self.nx = f.sparsity_in(DAEInput.X).nnz()
        self.nz = f.sparsity_in(DAEInput.Z).nnz()
        self.nq = f.sparsity_out(DAEOutput.QUAD).nnz()
        self.np = f.sparsity_in(DAEInput.P).nnz()

        # Dimensions of the backward integration
        if g is None:
            self.nrx = self.nrz = self.nrq = self.nrp = 0
        else:
            if not g.is_init:
                g.init()
            if g.n_in != len(RDAEInput):
                raise ValueError("Wrong number of inputs for the backwards DAE callback function")
            if g.n_out != len(RDAEOutput):
                raise ValueError("Wrong number of outputs for the backwards DAE callback function")
            self.nrx = g.sparsity_in(RDAEInput.RX).nnz()
            self.nrz = g.sparsity_in(RDAEInput.RZ).nnz()
            self.nrp = g.sparsity_in(RDAEInput.RP).nnz()
            self.nrq = g.sparsity_out(RDAEOutput.QUAD).nnz()

        # Inputs
        empty = ca.DM(0, 1)
        inputs = [empty] * len(IntegratorInput)
        inputs[IntegratorInput.X0] = ca.DM.zeros(f.sparsity_in(DAEInput.X))
        inputs[IntegratorInput.P] = ca.DM.zeros(f.sparsity_in(DAEInput.P))
        inputs[IntegratorInput.Z0] = ca.DM.zeros(f.sparsity_in(DAEInput.Z))
        if g is not None:
            inputs[IntegratorInput.RX0] = ca.DM.zeros(g.sparsity_in(RDAEInput.RX))
            inputs[IntegratorInput.RP] = ca.DM.zeros(g.sparsity_in(RDAEInput.RP))
            inputs[IntegratorInput.RZ0] = ca.DM.zeros(g.sparsity_in(RDAEInput.RZ))

        # Outputs
        outputs = [empty] * len(IntegratorOutput)
        outputs[IntegratorOutput.XF] = ca.DM(inputs[IntegratorInput.X0])
        outputs[IntegratorOutput.QF] = ca.DM.zeros(f.sparsity_out(DAEOutput.QUAD))
        outputs[IntegratorOutput.ZF] = ca.DM(inputs[IntegratorInput.Z0])
        if g is not None:
            outputs[IntegratorOutput.RXF] = ca.DM(inputs[IntegratorInput.RX0])
            outputs[IntegratorOutput.RQF] = ca.DM.zeros(g.sparsity_out(RDAEOutput.QUAD))
            outputs[IntegratorOutput.RZF] = ca.DM(inputs[IntegratorInput.RZ0])

        # Augmented problems stack every quantity into a single column
        columns = [
            (f.sparsity_in(DAEInput.X), "DAE X input"),
            (f.sparsity_in(DAEInput.Z), "DAE Z input"),
            (f.sparsity_in(DAEInput.P), "DAE P input"),
            (f.sparsity_out(DAEOutput.QUAD), "DAE QUAD output"),
        ]
        if g is not None:
            columns += [
                (g.sparsity_in(RDAEInput.RX), "RDAE RX input"),
                (g.sparsity_in(RDAEInput.RZ), "RDAE RZ input"),
                (g.sparsity_in(RDAEInput.RP), "RDAE RP input"),
                (g.sparsity_out(RDAEOutput.QUAD), "RDAE QUAD output"),
            ]
        for sp, what in columns:
            if sp.size2() != 1 and sp.numel() > 0:
                raise ValueError(f"Only column vectors are supported, but the {what} has shape {_shape(sp)}")

        # Was previously an error
        if not f.sparsity_in(DAEInput.X).is_dense():
            warnings.warn("Sparse states in integrators are experimental", stacklevel=2)

        # Consistency checks
        x0_sp = inputs[IntegratorInput.X0].sparsity()
        z0_sp = inputs[IntegratorInput.Z0].sparsity()
        self._check_output(f, DAEOutput.ODE, "DAE ODE", x0_sp)
        self._check_output(f, DAEOutput.ALG, "DAE ALG", z0_sp)
        if g is not None:
            checks = [
                (g.sparsity_in(RDAEInput.P), inputs[IntegratorInput.P].sparsity(), "RDAE P input", "p"),
                (g.sparsity_in(RDAEInput.X), x0_sp, "RDAE X input", "x0"),
                (g.sparsity_in(RDAEInput.Z), z0_sp, "RDAE Z input", "z0"),
                (g.sparsity_out(RDAEOutput.ODE), inputs[IntegratorInput.RX0].sparsity(), "RDAE ODE output", "rx0"),
                (g.sparsity_out(RDAEOutput.ALG), inputs[IntegratorInput.RZ0].sparsity(), "RDAE ALG output", "rz0"),
            ]
            for sp, expected, what, port in checks:
                if not sp == expected:
                    raise ValueError(
                        f"Sparsity of the {what} ({sp.dim()}) does not match {port} ({expected.dim()})"
                    )

        self._inputs = inputs
        self._outputs = outputs
        self.dims = problem_dimensions(f, g)
        logger.debug(
            "Integrator dimensions: nx=%d, nz=%d, nq=%d, np=%d", self.nx, self.nz, self.nq, self.np
        )

        # Read options
        self.t0 = float(self.get_option("t0"))
        self.tf = float(self.get_option("tf"))
        self.t = self.t0

        # Linear solvers for the sparsity propagation
        self.linsol_f = LinearSolver(self.sp_jac_f())
        self.linsol_f.init()
        self.linsol_g = None
        if g is not None:
            self.linsol_g = LinearSolver(self.sp_jac_g())
            self.linsol_g.init()

        self._derivatives = {}
        self._is_init = True

    @staticmethod
    def _check_output(cb: DAECallback, oind: int, what: str, expected: ca.Sparsity) -> None:
        sp = cb.sparsity_out(oind)
        if _shape(sp) != _shape(expected):
            raise ValueError(
                f"Inconsistent dimensions. Expecting {what} output of shape {_shape(expected)}, "
                f"but got {_shape(sp)} instead."
            )
        if not sp == expected:
            raise ValueError(f"Sparsity of the {what} output does not match the sparsity of the state")

    @property
    def is_init(self) -> bool:
        return self._is_init

    def _require_init(self) -> None:
        if not self._is_init:
            raise RuntimeError("Integrator not initialized. Call init() first.")

    def evaluate(self) -> None:
        """Integrate forward to tf and, if there is a backward problem, back to t0."""
        self._require_init()
        self.reset()
        self.integrate(self.tf)
        if self.nrx > 0:
            self.reset_b()
            self.integrate_b(self.t0)
        if self.get_option("print_stats"):
            self.print_stats()

    def reset(self) -> None:
        """Go to the start time and initialize the forward outputs."""
        logger.debug("reset: begin")
        self._require_init()
        self.t = self.t0
        self._outputs[IntegratorOutput.XF] = ca.DM(self._inputs[IntegratorInput.X0])
        self._outputs[IntegratorOutput.ZF] = ca.DM(self._inputs[IntegratorInput.Z0])
        self._outputs[IntegratorOutput.QF] = ca.DM.zeros(self._outputs[IntegratorOutput.QF].sparsity())
        logger.debug("reset: end")

    def reset_b(self) -> None:
        """Go to the end time and initialize the backward outputs."""
        logger.debug("reset_b: begin")
        self._require_init()
        self.t = self.tf
        self._outputs[IntegratorOutput.RXF] = ca.DM(self._inputs[IntegratorInput.RX0])
        self._outputs[IntegratorOutput.RZF] = ca.DM(self._inputs[IntegratorInput.RZ0])
        self._outputs[IntegratorOutput.RQF] = ca.DM.zeros(self._outputs[IntegratorOutput.RQF].sparsity())
        logger.debug("reset_b: end")

    @abstractmethod
    def integrate(self, t: float) -> None:
        """Integrate the forward problem until time ``t``."""

    @abstractmethod
    def integrate_b(self, t: float) -> None:
        """Integrate the backward problem until time ``t``."""

    def print_stats(self, stream: Optional[io.TextIOBase] = None) -> None:
        stream = sys.stdout if stream is None else stream
        print(f"Integrator '{self.get_option('name')}' ({type(self).__name__})", file=stream)
        print(f"  time horizon: [{self.t0}, {self.tf}]", file=stream)
        print(
            f"  nx={self.nx}, nz={self.nz}, nq={self.nq}, np={self.np}, "
            f"nrx={self.nrx}, nrz={self.nrz}, nrq={self.nrq}, nrp={self.nrp}",
            file=stream,
        )

    # ========== Ports ==========

    def input(self, iind: int) -> ca.DM:
        self._require_init()
        return self._inputs[iind]

    def output(self, oind: int) -> ca.DM:
        self._require_init()
        return self._outputs[oind]

    def set_input(self, iind: int, value: Any) -> None:
        self._require_init()
        self._inputs[iind] = _to_port(value, self._inputs[iind], INTEGRATOR_IN_NAMES[iind])

    def set_output(self, oind: int, value: Any) -> None:
        """Store a terminal value; used by the stepping routines."""
        self._require_init()
        self._outputs[oind] = _to_port(value, self._outputs[oind], INTEGRATOR_OUT_NAMES[oind])

    @property
    def x0(self) -> ca.DM:
        return self.input(IntegratorInput.X0)

    @property
    def p(self) -> ca.DM:
        return self.input(IntegratorInput.P)

    @property
    def z0(self) -> ca.DM:
        return self.input(IntegratorInput.Z0)

    @property
    def rx0(self) -> ca.DM:
        return self.input(IntegratorInput.RX0)

    @property
    def rp(self) -> ca.DM:
        return self.input(IntegratorInput.RP)

    @property
    def rz0(self) -> ca.DM:
        return self.input(IntegratorInput.RZ0)

    @property
    def xf(self) -> ca.DM:
        return self.output(IntegratorOutput.XF)

    @property
    def qf(self) -> ca.DM:
        return self.output(IntegratorOutput.QF)

    @property
    def zf(self) -> ca.DM:
        return self.output(IntegratorOutput.ZF)

    @property
    def rxf(self) -> ca.DM:
        return self.output(IntegratorOutput.RXF)

    @property
    def rqf(self) -> ca.DM:
        return self.output(IntegratorOutput.RQF)

    @property
    def rzf(self) -> ca.DM:
        return self.output(IntegratorOutput.RZF)

    def __call__(self, **kwargs: Any) -> dict[str, ca.DM]:
        """
        Set the given input ports, evaluate, and return all output ports.

        Example:
            >>> res = integ(x0=1.0, p=0.5)  # doctest: +SKIP
            >>> res["xf"]  # doctest: +SKIP
        """
        self._require_init()
        for name, value in kwargs.items():
            if name not in INTEGRATOR_IN_NAMES:
                raise KeyError(f"Unknown input '{name}', expected one of {list(INTEGRATOR_IN_NAMES)}")
            self.set_input(INTEGRATOR_IN_NAMES.index(name), value)
        self.evaluate()
        return {name: ca.DM(self._outputs[i]) for i, name in enumerate(INTEGRATOR_OUT_NAMES)}

    # ========== Augmented problems and derivatives ==========

    def create(self, f: DAECallback, g: Optional[DAECallback] = None) -> Integrator:
        """New integrator of the same kind for another DAE/RDAE pair."""
        return type(self)(f, g)

    def aug_offset(self, nfwd: int, nadj: int) -> AugOffset:
        self._require_init()
        return aug_offsets(nfwd, nadj, self.dims)

    def get_augmented(self, nfwd: int, nadj: int) -> AugmentedProblem:
        """Augmented DAE/RDAE pair for ``nfwd`` forward and ``nadj`` adjoint directions."""
        self._require_init()
        logger.debug("get_augmented(nfwd=%d, nadj=%d)", nfwd, nadj)
        return build_augmented(self.f, self.g, nfwd, nadj, expand=self.get_option("expand_augmented"))

    def set_derivative_options(self, integrator: Integrator, offset: AugOffset) -> None:
        """Pass options down to an integrator of an augmented problem."""
        integrator.set_option(self.dictionary())

    def derivative(self, nfwd: int, nadj: int) -> IntegratorDerivative:
        """
        Sensitivity evaluator for ``nfwd`` forward and ``nadj`` adjoint directions.

        The augmented problem and its integrator are built on first request
        and reused afterwards.
        """
        self._require_init()
        key = (nfwd, nadj)
        if key in self._derivatives:
            return self._derivatives[key]
        logger.debug("derivative(nfwd=%d, nadj=%d): begin", nfwd, nadj)

        # Integrator for the augmented DAE
        aug = self.get_augmented(nfwd, nadj)
        integrator = self.create(aug.f, aug.g)
        self.set_derivative_options(integrator, aug.offset)
        if self.has_set_option("augmented_options"):
            integrator.set_option(self.get_option("augmented_options"))
        integrator.init()

        ret = IntegratorDerivative(self, integrator, aug.offset, nfwd, nadj)
        self._derivatives[key] = ret
        logger.debug("derivative(nfwd=%d, nadj=%d): end", nfwd, nadj)
        return ret

    def jacobian(self, iind: int, oind: int) -> ca.DM:
        """Jacobian of output ``oind`` w.r.t. input ``iind`` (nonzero indexed), by forward sensitivities."""
        self._require_init()
        sp_in = self._inputs[iind].sparsity()
        sp_out = self._outputs[oind].sparsity()
        n = sp_in.nnz()
        if n == 0:
            return ca.DM(sp_out.nnz(), 0)
        seeds = []
        for k in range(n):
            seed = [ca.DM.zeros(v.sparsity()) for v in self._inputs]
            seed[iind].nz[k] = 1.0
            seeds.append(seed)
        res = self.derivative(n, 0)(self._inputs, fwd_seeds=seeds)
        jac = np.zeros((sp_out.nnz(), n))
        for k, sens in enumerate(res.fwd_sens):
            block = _to_port(sens[oind], self._outputs[oind], INTEGRATOR_OUT_NAMES[oind])
            jac[:, k] = np.array(block.nonzeros())
        return ca.DM(jac)

    # ========== Sparsity ==========

    def sp_jac_f(self) -> ca.Sparsity:
        return sp_jac_dae(self.f)

    def sp_jac_g(self) -> ca.Sparsity:
        if self.g is None:
            raise ValueError("No backward problem")
        return sp_jac_rdae(self.g)

    def sp_init(self, fwd: bool) -> None:
        self._require_init()
        self.f.sp_init(fwd)
        if self.g is not None:
            self.g.sp_init(fwd)

    def sp_evaluate(self, fwd: bool, arg: list[np.ndarray], res: list[np.ndarray]) -> None:
        """
        Propagate dependency bits between the ports.

        ``arg`` holds one buffer per input port and ``res`` one per output
        port, each with one word per structural nonzero of the port.
        """
        self._require_init()
        for bits, ports, what in ((arg, self._inputs, "input"), (res, self._outputs, "output")):
            if len(bits) != len(ports):
                raise ValueError(f"Expected {len(ports)} {what} bit buffers, got {len(bits)}")
            for k, (b, v) in enumerate(zip(bits, ports)):
                if b.shape != (v.nnz(),):
                    raise ValueError(f"{what} bit buffer {k} has shape {b.shape}, expected ({v.nnz()},)")
        sp_propagate(
            self.f,
            self.g,
            self.linsol_f,
            self.linsol_g,
            fwd,
            arg,
            res,
            coarse=self.get_option("coarse_sparsity"),
        )

    def jac_sparsity(self, iind: int, oind: int, fwd: bool = True) -> ca.Sparsity:
        """
        Structural Jacobian of output ``oind`` w.r.t. input ``iind``.

        Seeds up to 64 directions per pass and propagates them with
        :meth:`sp_evaluate`, forward from the input or in reverse from the
        output.
        """
        self._require_init()
        self.sp_init(fwd)
        n_in = self._inputs[iind].nnz()
        n_out = self._outputs[oind].nnz()
        n_seed = n_in if fwd else n_out
        rows, cols = [], []
        for offset in range(0, n_seed, BVEC_SIZE):
            arg = [bvec_zeros(v.nnz()) for v in self._inputs]
            res = [bvec_zeros(v.nnz()) for v in self._outputs]
            seeded, read = (arg[iind], res[oind]) if fwd else (res[oind], arg[iind])
            n_bits = min(BVEC_SIZE, n_seed - offset)
            for k in range(n_bits):
                seeded[offset + k] = BVEC(1) << BVEC(k)
            self.sp_evaluate(fwd, arg, res)
            for i, word in enumerate(read):
                word = int(word)
                for k in range(n_bits):
                    if (word >> k) & 1:
                        if fwd:
                            rows.append(i)
                            cols.append(offset + k)
                        else:
                            rows.append(offset + k)
                            cols.append(i)
        return ca.Sparsity.triplet(n_out, n_in, rows, cols)

    # ========== Copying ==========

    def clone(self, already_cloned: Optional[dict] = None) -> Integrator:
        """Deep copy sharing no mutable state with the original."""
        if already_cloned is None:
            already_cloned = {}
        key = id(self)
        if key in already_cloned:
            return already_cloned[key]
        ret = copy.copy(self)
        already_cloned[key] = ret
        ret._allowed_options = dict(self._allowed_options)
        ret._options = copy.deepcopy(self._options)
        ret.f = self.f.clone(already_cloned)
        ret.g = None if self.g is None else self.g.clone(already_cloned)
        ret.linsol_f = None if self.linsol_f is None else self.linsol_f.clone(already_cloned)
        ret.linsol_g = None if self.linsol_g is None else self.linsol_g.clone(already_cloned)
        ret._inputs = [ca.DM(v) for v in self._inputs]
        ret._outputs = [ca.DM(v) for v in self._outputs]
        ret._derivatives = {}
        return ret

    def __deepcopy__(self, memo: dict) -> Integrator:
        return self.clone(memo)


@dataclass
class DerivativeResult:
    """Nominal outputs with forward and adjoint sensitivities."""

    outputs: list = field(default_factory=list)
    fwd_sens: list = field(default_factory=list)
    adj_sens: list = field(default_factory=list)


class IntegratorDerivative:
    """
    Evaluates an integrator together with forward and adjoint sensitivities.

    Forward seeds are shaped like the integrator inputs and give forward
    sensitivities shaped like the outputs; adjoint seeds are shaped like the
    outputs and give adjoint sensitivities shaped like the inputs. Adjoint
    seeds of the forward outputs become initial values of the backward
    problem and the other way around.
    """

    def __init__(
        self,
        base: Integrator,
        integrator: Integrator,
        offset: AugOffset,
        nfwd: int,
        nadj: int,
    ) -> None:
        self.integrator = integrator
        self.offset = offset
        self.nfwd = nfwd
        self.nadj = nadj
        self.dims = base.dims
        self._in_templates = [ca.DM.zeros(base.input(i).sparsity()) for i in IntegratorInput]
        self._out_templates = [ca.DM.zeros(base.output(o).sparsity()) for o in IntegratorOutput]

    def __call__(
        self,
        inputs: Any = None,
        fwd_seeds: Sequence[Any] = (),
        adj_seeds: Sequence[Any] = (),
    ) -> DerivativeResult:
        """
        Args:
            inputs: Nominal inputs, a sequence or a name -> value dict
            fwd_seeds: One set of input-shaped seeds per forward direction
            adj_seeds: One set of output-shaped seeds per adjoint direction

        Returns:
            DerivativeResult with lists indexed by IntegratorOutput (outputs,
            each forward direction) and IntegratorInput (each adjoint direction)
        """
        if len(fwd_seeds) != self.nfwd:
            raise ValueError(f"Expected {self.nfwd} forward seed sets, got {len(fwd_seeds)}")
        if len(adj_seeds) != self.nadj:
            raise ValueError(f"Expected {self.nadj} adjoint seed sets, got {len(adj_seeds)}")
        nominal = _port_values(inputs, self._in_templates, INTEGRATOR_IN_NAMES)
        fwd = [_port_values(s, self._in_templates, INTEGRATOR_IN_NAMES) for s in fwd_seeds]
        adj = [_port_values(s, self._out_templates, INTEGRATOR_OUT_NAMES) for s in adj_seeds]

        # Stack nondifferentiated inputs and forward seeds
        stacked = {i: [] for i in IntegratorInput}
        for dd in [nominal] + fwd:
            for i in IntegratorInput:
                stacked[i].append(dd[i])

        # Adjoint seeds swap roles between the forward and backward problem
        for dd in adj:
            stacked[IntegratorInput.RX0].append(dd[IntegratorOutput.XF])
            stacked[IntegratorInput.RP].append(dd[IntegratorOutput.QF])
            stacked[IntegratorInput.RZ0].append(dd[IntegratorOutput.ZF])
            stacked[IntegratorInput.X0].append(dd[IntegratorOutput.RXF])
            stacked[IntegratorInput.P].append(dd[IntegratorOutput.RQF])
            stacked[IntegratorInput.Z0].append(dd[IntegratorOutput.RZF])

        integ = self.integrator
        for i in IntegratorInput:
            integ.set_input(i, ca.vertcat(*[ca.densify(v) for v in stacked[i]]))
        integ.evaluate()

        # Split up the augmented results
        off = self.offset
        xf = BlockCursor(ca.vertsplit(integ.output(IntegratorOutput.XF), list(off.x)), "xf")
        qf = BlockCursor(ca.vertsplit(integ.output(IntegratorOutput.QF), list(off.q)), "qf")
        zf = BlockCursor(ca.vertsplit(integ.output(IntegratorOutput.ZF), list(off.z)), "zf")
        rxf = BlockCursor(ca.vertsplit(integ.output(IntegratorOutput.RXF), list(off.rx)), "rxf")
        rqf = BlockCursor(ca.vertsplit(integ.output(IntegratorOutput.RQF), list(off.rq)), "rqf")
        rzf = BlockCursor(ca.vertsplit(integ.output(IntegratorOutput.RZF), list(off.rz)), "rzf")
        dims = self.dims

        # Nondifferentiated results and forward sensitivities
        collected = []
        for _ in range(-1, self.nfwd):
            dd = [ca.DM(v) for v in self._out_templates]
            if dims.nx > 0:
                dd[IntegratorOutput.XF] = xf.take()
            if dims.nq > 0:
                dd[IntegratorOutput.QF] = qf.take()
            if dims.nz > 0:
                dd[IntegratorOutput.ZF] = zf.take()
            if dims.nrx > 0:
                dd[IntegratorOutput.RXF] = rxf.take()
            if dims.nrq > 0:
                dd[IntegratorOutput.RQF] = rqf.take()
            if dims.nrz > 0:
                dd[IntegratorOutput.RZF] = rzf.take()
            collected.append(dd)

        # Adjoint sensitivities
        adj_sens = []
        for _ in range(self.nadj):
            dd = [ca.DM(v) for v in self._in_templates]
            if dims.nx > 0:
                dd[IntegratorInput.X0] = rxf.take()
            if dims.np > 0:
                dd[IntegratorInput.P] = rqf.take()
            if dims.nz > 0:
                dd[IntegratorInput.Z0] = rzf.take()
            if dims.nrx > 0:
                dd[IntegratorInput.RX0] = xf.take()
            if dims.nrp > 0:
                dd[IntegratorInput.RP] = qf.take()
            if dims.nrz > 0:
                dd[IntegratorInput.RZ0] = zf.take()
            adj_sens.append(dd)

        for cursor in (xf, qf, zf, rxf, rqf, rzf):
            cursor.assert_consumed()
        return DerivativeResult(collected[0], collected[1:], adj_sens)
