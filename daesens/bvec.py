"""Bit-vector buffers for structural dependency propagation.

Every structural nonzero of a matrix is tagged with one 64-bit word; bit k
set means "may depend on seed k". Propagation only ever ORs words together.
"""

import numpy as np

BVEC = np.uint64
BVEC_SIZE = 64


def bvec_zeros(n: int) -> np.ndarray:
    return np.zeros(n, dtype=BVEC)


def bvec_or(v: np.ndarray) -> np.uint64:
    """OR of all words of ``v`` (zero for an empty buffer)."""
    return np.bitwise_or.reduce(v, initial=BVEC(0))
