"""Block offsets of augmented (sensitivity-stacked) DAE problems.

An augmented problem stacks the nominal quantities with one block per
forward direction and one block per adjoint direction. For every category
(x, z, q, p, rx, rz, rq, rp) this module computes where each block starts.

Adjoint directions swap roles: an adjoint seed on a forward quantity enters
the augmented problem as a backward quantity and vice versa, which keeps the
whole augmented system a single forward/backward pair.
"""

from __future__ import annotations

from dataclasses import dataclass
from itertools import accumulate

CATEGORIES = ("x", "z", "q", "p", "rx", "rz", "rq", "rp")


@dataclass(frozen=True)
class Dimensions:
    """Block size of every category of a DAE/RDAE pair."""

    nx: int = 0
    nz: int = 0
    nq: int = 0
    np: int = 0
    nrx: int = 0
    nrz: int = 0
    nrq: int = 0
    nrp: int = 0

    def __post_init__(self) -> None:
        for cat in CATEGORIES:
            if getattr(self, "n" + cat) < 0:
                raise ValueError(f"Dimension n{cat} must be non-negative")


@dataclass(frozen=True)
class AugOffset:
    """Cumulative block offsets, one sequence per category.

    Each sequence starts at 0 and is non-decreasing; consecutive differences
    are the sizes of the blocks contributed by each direction, the last entry
    is the total size of the stacked vector.
    """

    x: tuple[int, ...] = (0,)
    z: tuple[int, ...] = (0,)
    q: tuple[int, ...] = (0,)
    p: tuple[int, ...] = (0,)
    rx: tuple[int, ...] = (0,)
    rz: tuple[int, ...] = (0,)
    rq: tuple[int, ...] = (0,)
    rp: tuple[int, ...] = (0,)

    def total(self, category: str) -> int:
        return getattr(self, category)[-1]

    def sizes(self, category: str) -> list[int]:
        seq = getattr(self, category)
        return [b - a for a, b in zip(seq[:-1], seq[1:])]


def aug_offsets(nfwd: int, nadj: int, dims: Dimensions) -> AugOffset:
    """
    Compute the block offsets for ``nfwd`` forward and ``nadj`` adjoint directions.

    Parameters
    ----------
    nfwd : int
        Number of forward (tangent) directions
    nadj : int
        Number of adjoint (cotangent) directions
    dims : Dimensions
        Sizes of the original problem

    Returns
    -------
    AugOffset
        Offsets for x, z, q, p, rx, rz, rq, rp
    """
    if nfwd < 0 or nadj < 0:
        raise ValueError(f"Number of directions must be non-negative, got nfwd={nfwd}, nadj={nadj}")

    sizes: dict[str, list[int]] = {cat: [] for cat in CATEGORIES}

    def push(cat: str, n: int) -> None:
        if n > 0:
            sizes[cat].append(n)

    # Nondifferentiated quantities and forward sensitivities
    for _ in range(-1, nfwd):
        for cat in CATEGORIES:
            push(cat, getattr(dims, "n" + cat))

    # Adjoint sensitivities
    for _ in range(nadj):
        push("rx", dims.nx)
        push("rz", dims.nz)
        push("rq", dims.np)
        push("rp", dims.nq)
        push("x", dims.nrx)
        push("z", dims.nrz)
        push("q", dims.nrp)
        push("p", dims.nrq)

    return AugOffset(**{cat: tuple(accumulate(sizes[cat], initial=0)) for cat in CATEGORIES})
