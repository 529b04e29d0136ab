"""DAE/RDAE callback capability.

A callback wraps a CasADi ``Function`` with the DAE slot layout
(t, x, z, p) -> (ode, alg, quad), or the RDAE layout
(t, x, z, p, rx, rz, rp) -> (ode, alg, quad), and exposes everything the
integrator core needs from it:

- evaluation (``call``)
- derivative generation for any number of forward/adjoint directions
- structural Jacobian queries
- bit-vector dependency propagation in both directions
- deep copies that preserve aliasing

Two variants exist, matching the two CasADi expression graphs:
:class:`SXCallback` (scalar graph, cheap to evaluate) and
:class:`MXCallback` (general graph). An MX callback can be lowered to an SX
callback with :func:`expand_callback`.
"""

from __future__ import annotations

import copy
import logging
from typing import Any, Optional, Sequence

import casadi as ca
import numpy as np

from .bvec import bvec_zeros
from .schemes import DAE_IN_NAMES, DAE_OUT_NAMES, RDAE_IN_NAMES, RDAE_OUT_NAMES

logger = logging.getLogger(__name__)

__all__ = [
    "DAECallback",
    "SXCallback",
    "MXCallback",
    "as_callback",
    "expand_callback",
    "dae_function",
    "rdae_function",
]


def _split_columns(m: Any, width: int, n: int) -> list:
    """Split ``m`` into ``n`` blocks of ``width`` columns each."""
    if width == 0:
        return [type(m)(m.size1(), 0) for _ in range(n)]
    return ca.horzsplit(m, list(range(0, width * n + 1, width)))


class DAECallback:
    """
    Unified evaluation object around a CasADi function.

    Subclasses fix the symbolic type used when new expressions are generated
    from the wrapped function (derivatives, symbolic inputs).
    """

    sym_type: type = ca.MX

    def __init__(self, function: ca.Function) -> None:
        self.function = function
        self._is_init = False
        self._derivatives: dict[tuple[int, int], ca.Function] = {}
        self._jac: dict[tuple[int, int], tuple[np.ndarray, np.ndarray]] = {}

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.function.name()!r})"

    # ========== Lifecycle / introspection ==========

    def init(self) -> None:
        self._is_init = True

    @property
    def is_init(self) -> bool:
        return self._is_init

    @property
    def name(self) -> str:
        return self.function.name()

    @property
    def n_in(self) -> int:
        return self.function.n_in()

    @property
    def n_out(self) -> int:
        return self.function.n_out()

    def sparsity_in(self, i: int) -> ca.Sparsity:
        return self.function.sparsity_in(i)

    def sparsity_out(self, i: int) -> ca.Sparsity:
        return self.function.sparsity_out(i)

    def name_in(self, i: int) -> str:
        return self.function.name_in(i)

    def name_out(self, i: int) -> str:
        return self.function.name_out(i)

    def symbolic_input(self) -> list:
        return [self.sym_type.sym(self.name_in(i), self.sparsity_in(i)) for i in range(self.n_in)]

    # ========== Evaluation ==========

    def call(self, args: Sequence[Any]) -> list:
        """Evaluate numerically or symbolically, one argument per input slot."""
        if len(args) != self.n_in:
            raise ValueError(f"{self.name}: expected {self.n_in} arguments, got {len(args)}")
        return self.function.call(list(args))

    def __call__(self, *args: Any) -> list:
        return self.call(args)

    def derivative(self, nfwd: int, nadj: int) -> ca.Function:
        """
        Function evaluating the nominal outputs together with directional derivatives.

        Inputs are the nominal inputs, then one block of input-shaped seeds per
        forward direction, then one block of output-shaped seeds per adjoint
        direction. Outputs are the nominal outputs, then one block of
        output-shaped sensitivities per forward direction, then one block of
        input-shaped sensitivities per adjoint direction.

        Args:
            nfwd: Number of forward directions
            nadj: Number of adjoint directions

        Returns:
            The derivative function, cached per (nfwd, nadj)
        """
        if nfwd < 0 or nadj < 0:
            raise ValueError(f"Number of directions must be non-negative, got nfwd={nfwd}, nadj={nadj}")
        key = (nfwd, nadj)
        if key not in self._derivatives:
            self._derivatives[key] = self._generate_derivative(nfwd, nadj)
        return self._derivatives[key]

    def _generate_derivative(self, nfwd: int, nadj: int) -> ca.Function:
        f = self.function
        sym = self.sym_type
        n_in, n_out = self.n_in, self.n_out
        logger.debug("Generating derivative of %s for nfwd=%d, nadj=%d", self.name, nfwd, nadj)

        arg = self.symbolic_input()
        res = f.call(arg)

        fseed = [
            [sym.sym(f"fwd{d}_{self.name_in(i)}", self.sparsity_in(i)) for i in range(n_in)]
            for d in range(nfwd)
        ]
        aseed = [
            [sym.sym(f"adj{d}_{self.name_out(i)}", self.sparsity_out(i)) for i in range(n_out)]
            for d in range(nadj)
        ]

        fsens = [[] for _ in range(nfwd)]
        if nfwd > 0:
            seeds = [ca.horzcat(*[fseed[d][i] for d in range(nfwd)]) for i in range(n_in)]
            out = f.forward(nfwd).call(arg + res + seeds)
            for i in range(n_out):
                blocks = _split_columns(out[i], f.size2_out(i), nfwd)
                for d in range(nfwd):
                    fsens[d].append(blocks[d])

        asens = [[] for _ in range(nadj)]
        if nadj > 0:
            seeds = [ca.horzcat(*[aseed[d][i] for d in range(nadj)]) for i in range(n_out)]
            out = f.reverse(nadj).call(arg + res + seeds)
            for i in range(n_in):
                blocks = _split_columns(out[i], f.size2_in(i), nadj)
                for d in range(nadj):
                    asens[d].append(blocks[d])

        ret_in = list(arg)
        for block in fseed + aseed:
            ret_in.extend(block)
        ret_out = list(res)
        for block in fsens + asens:
            ret_out.extend(block)
        return ca.Function(f"{self.name}_der_{nfwd}_{nadj}", ret_in, ret_out)

    # ========== Structure ==========

    def jac_sparsity(self, iind: int, oind: int) -> ca.Sparsity:
        """Structural Jacobian of output ``oind`` w.r.t. input ``iind``, indexed by nonzeros."""
        return self.function.jac_sparsity(oind, iind, True)

    def _jac_pattern(self, oind: int, iind: int) -> tuple[np.ndarray, np.ndarray]:
        key = (oind, iind)
        if key not in self._jac:
            rows, cols = self.jac_sparsity(iind, oind).get_triplet()
            self._jac[key] = (np.asarray(rows, dtype=int), np.asarray(cols, dtype=int))
        return self._jac[key]

    def sp_init(self, fwd: bool) -> None:
        """Prepare the structural patterns used by bit-vector propagation."""
        for oind in range(self.n_out):
            for iind in range(self.n_in):
                self._jac_pattern(oind, iind)

    def _check_bits(self, bits: Sequence[np.ndarray], nnz: list[int], what: str) -> None:
        if len(bits) != len(nnz):
            raise ValueError(f"{self.name}: expected {len(nnz)} {what} buffers, got {len(bits)}")
        for k, (b, n) in enumerate(zip(bits, nnz)):
            if b.shape != (n,):
                raise ValueError(f"{self.name}: {what} buffer {k} has shape {b.shape}, expected ({n},)")

    def sp_forward(self, arg: Sequence[np.ndarray]) -> list[np.ndarray]:
        """Propagate dependency bits from the inputs to the outputs."""
        self._check_bits(arg, [self.sparsity_in(i).nnz() for i in range(self.n_in)], "input")
        res = [bvec_zeros(self.sparsity_out(o).nnz()) for o in range(self.n_out)]
        for oind in range(self.n_out):
            for iind in range(self.n_in):
                rows, cols = self._jac_pattern(oind, iind)
                if rows.size:
                    np.bitwise_or.at(res[oind], rows, arg[iind][cols])
        return res

    def sp_reverse(self, res: Sequence[np.ndarray]) -> list[np.ndarray]:
        """Propagate dependency bits from the outputs back to the inputs."""
        self._check_bits(res, [self.sparsity_out(o).nnz() for o in range(self.n_out)], "output")
        arg = [bvec_zeros(self.sparsity_in(i).nnz()) for i in range(self.n_in)]
        for oind in range(self.n_out):
            for iind in range(self.n_in):
                rows, cols = self._jac_pattern(oind, iind)
                if rows.size:
                    np.bitwise_or.at(arg[iind], cols, res[oind][rows])
        return arg

    # ========== Copying ==========

    def clone(self, already_cloned: Optional[dict] = None) -> DAECallback:
        """Deep copy; objects already present in ``already_cloned`` are reused."""
        if already_cloned is None:
            already_cloned = {}
        key = id(self)
        if key in already_cloned:
            return already_cloned[key]
        ret = copy.copy(self)
        already_cloned[key] = ret
        # CasADi functions are immutable, only the caches are duplicated
        ret._derivatives = dict(self._derivatives)
        ret._jac = dict(self._jac)
        return ret

    def __deepcopy__(self, memo: dict) -> DAECallback:
        return self.clone(memo)


class SXCallback(DAECallback):
    """Callback around a function built from scalar (SX) expressions."""

    sym_type = ca.SX

    def __init__(self, function: ca.Function) -> None:
        if not function.is_a("SXFunction"):
            raise TypeError(f"SXCallback requires an SXFunction, got '{function.class_name()}'")
        super().__init__(function)


class MXCallback(DAECallback):
    """Callback around a general (MX) function."""

    sym_type = ca.MX


def as_callback(function: ca.Function | DAECallback) -> DAECallback:
    """Wrap a CasADi function in the matching callback variant."""
    if isinstance(function, DAECallback):
        return function
    if function.is_a("SXFunction"):
        return SXCallback(function)
    return MXCallback(function)


def expand_callback(callback: DAECallback) -> SXCallback:
    """Lower an MX callback to the equivalent SX callback."""
    if isinstance(callback, SXCallback):
        return callback
    if not isinstance(callback, MXCallback) or not callback.function.is_a("MXFunction"):
        raise TypeError(f"Cannot expand {callback!r}: only MXFunction based callbacks can be expanded")
    ret = SXCallback(callback.function.expand())
    if callback.is_init:
        ret.init()
    return ret


def _expr(sym: type, value: Any) -> Any:
    if isinstance(value, (ca.SX, ca.MX)):
        return value
    return sym(value)


def _build(
    name: str,
    sym: type,
    slots: dict[str, Any],
    outputs: dict[str, Any],
    in_names: tuple,
    out_names: tuple,
) -> DAECallback:
    args = []
    for slot in in_names:
        val = slots.get(slot)
        if val is None:
            val = sym.sym(slot) if slot == "t" else sym.sym(slot, 0, 1)
        args.append(val)
    res = []
    for slot in out_names:
        val = outputs.get(slot)
        res.append(sym(0, 1) if val is None else _expr(sym, val))
    return as_callback(ca.Function(name, args, res, list(in_names), list(out_names)))


def dae_function(
    name: str,
    x: ca.SX | ca.MX,
    ode: Any,
    t: ca.SX | ca.MX | None = None,
    z: ca.SX | ca.MX | None = None,
    p: ca.SX | ca.MX | None = None,
    alg: Any = None,
    quad: Any = None,
) -> DAECallback:
    """
    Build a forward DAE callback from expressions.

    Slots that are not given are filled with empty symbols/expressions, so
    only the parts of the DAE that exist need to be passed.

    Example:
        >>> x = ca.SX.sym("x")
        >>> p = ca.SX.sym("p")
        >>> f = dae_function("decay", x=x, p=p, ode=-p * x)
    """
    sym = type(x)
    return _build(
        name,
        sym,
        {"t": t, "x": x, "z": z, "p": p},
        {"ode": ode, "alg": alg, "quad": quad},
        DAE_IN_NAMES,
        DAE_OUT_NAMES,
    )


def rdae_function(
    name: str,
    rx: ca.SX | ca.MX,
    ode: Any,
    t: ca.SX | ca.MX | None = None,
    x: ca.SX | ca.MX | None = None,
    z: ca.SX | ca.MX | None = None,
    p: ca.SX | ca.MX | None = None,
    rz: ca.SX | ca.MX | None = None,
    rp: ca.SX | ca.MX | None = None,
    alg: Any = None,
    quad: Any = None,
) -> DAECallback:
    """Build a backward DAE callback from expressions (see :func:`dae_function`)."""
    sym = type(rx)
    return _build(
        name,
        sym,
        {"t": t, "x": x, "z": z, "p": p, "rx": rx, "rz": rz, "rp": rp},
        {"ode": ode, "alg": alg, "quad": quad},
        RDAE_IN_NAMES,
        RDAE_OUT_NAMES,
    )
