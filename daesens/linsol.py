"""Sparsity-only linear solver.

Propagates dependency bits through a linear system ``A x = b`` (or
``A^T x = b``) without ever forming numbers. The structural pattern of ``A``
is permuted to block triangular form; every variable of a diagonal block may
depend on every right-hand side of that block and on every variable its
rows reference.
"""

from __future__ import annotations

import copy
from typing import Optional

import casadi as ca
import numpy as np

from .bvec import bvec_or, bvec_zeros


class LinearSolver:
    """
    Structural stand-in for a linear solver.

    Exposes the right-hand side port ``b`` and the solution port ``x`` as raw
    bit-vector buffers, sized like the rows and columns of the pattern.

    Example:
        >>> sp = ca.Sparsity.diag(3)
        >>> linsol = LinearSolver(sp)
        >>> linsol.init()
        >>> linsol.sp_solve(linsol.x, linsol.b)
    """

    def __init__(self, sparsity: ca.Sparsity) -> None:
        if sparsity.size1() != sparsity.size2():
            raise ValueError(
                f"Linear solver requires a square pattern, got {sparsity.size1()}x{sparsity.size2()}"
            )
        self.sparsity = sparsity
        self.b = bvec_zeros(sparsity.size1())
        self.x = bvec_zeros(sparsity.size2())
        self._blocks: Optional[list[tuple[np.ndarray, np.ndarray]]] = None
        self._row_refs: list[np.ndarray] = []
        self._col_refs: list[np.ndarray] = []

    @property
    def n(self) -> int:
        return self.sparsity.size1()

    @property
    def is_init(self) -> bool:
        return self._blocks is not None

    def init(self) -> None:
        """Compute the block triangular form of the pattern."""
        n = self.n
        rows, cols = self.sparsity.get_triplet()
        rows = np.asarray(rows, dtype=int)
        cols = np.asarray(cols, dtype=int)
        if n == 0:
            self._blocks = []
            return
        _, rowperm, colperm, rowblock, colblock, _, _ = self.sparsity.btf()
        rowperm = np.asarray(rowperm, dtype=int)
        colperm = np.asarray(colperm, dtype=int)
        self._blocks = []
        self._row_refs = []
        self._col_refs = []
        for k in range(len(rowblock) - 1):
            brows = rowperm[rowblock[k] : rowblock[k + 1]]
            bcols = colperm[colblock[k] : colblock[k + 1]]
            self._blocks.append((brows, bcols))
            # Variables referenced by the equations of the block
            self._row_refs.append(np.unique(cols[np.isin(rows, brows)]))
            # Equations referencing the variables of the block
            self._col_refs.append(np.unique(rows[np.isin(cols, bcols)]))

    def sp_solve(self, x: np.ndarray, b: np.ndarray, transpose: bool = False) -> None:
        """
        Propagate dependencies of ``b`` into ``x`` in place.

        Bits already present in ``x`` are kept and propagated as well. With
        ``transpose`` the system ``A^T x = b`` is used, which is the reverse
        mode counterpart of the plain solve: ``b`` is then indexed by the
        columns of ``A`` and ``x`` by its rows.

        Args:
            x: Solution buffer, updated in place
            b: Right-hand side buffer
            transpose: Solve with the transposed pattern
        """
        if not self.is_init:
            raise RuntimeError("LinearSolver not initialized. Call init() first.")
        if x.shape != (self.n,) or b.shape != (self.n,):
            raise ValueError(f"Buffers must have shape ({self.n},), got {x.shape} and {b.shape}")
        if transpose:
            blocks = [(bcols, brows) for brows, bcols in self._blocks]
            refs = self._col_refs
        else:
            blocks = self._blocks
            refs = self._row_refs

        # Iterate to a fixed point, independent of the block ordering
        changed = True
        while changed:
            changed = False
            for (eqs, variables), ref in zip(blocks, refs):
                dep = bvec_or(b[eqs]) | bvec_or(x[ref]) | bvec_or(x[variables])
                new = x[variables] | dep
                if np.any(new != x[variables]):
                    x[variables] = new
                    changed = True

    def clone(self, already_cloned: Optional[dict] = None) -> LinearSolver:
        if already_cloned is None:
            already_cloned = {}
        key = id(self)
        if key in already_cloned:
            return already_cloned[key]
        ret = copy.copy(self)
        already_cloned[key] = ret
        ret.b = self.b.copy()
        ret.x = self.x.copy()
        return ret

    def __deepcopy__(self, memo: dict) -> LinearSolver:
        return self.clone(memo)
