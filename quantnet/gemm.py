"""Dense matrix multiplication kernels for float, quantized and binary data.

All kernels follow the BLAS convention ``C = alpha * op(A) @ op(B) + beta * C``
and write the result into ``c`` in place, returning it for convenience.
"""

from __future__ import annotations

import time

import numpy as np

R_MULT = 32
"""Divisor applied to int8 accumulators before they are added to the output."""

INT16_LIMIT = 256 * 128 - 1
"""Magnitude limit for rescaled int8 accumulators."""


def _check_output(c: np.ndarray, rows: int, cols: int, kinds: str) -> None:
    if not isinstance(c, np.ndarray):
        raise TypeError("output must be a numpy array updated in place")
    if c.shape != (rows, cols):
        raise ValueError(f"output has shape {c.shape}, expected {(rows, cols)}")
    if c.dtype.kind not in kinds:
        raise TypeError(f"output dtype {c.dtype} is not supported here")


def _as_matrix(x, dtype) -> np.ndarray:
    m = np.asarray(x, dtype=dtype)
    if m.ndim != 2:
        raise ValueError(f"expected a 2-D matrix, got {m.ndim} dimension(s)")
    return m


def gemm(a, b, c, alpha=1.0, beta=1.0, trans_a=False, trans_b=False):
    """Compute ``c = alpha * op(a) @ op(b) + beta * c`` in float32."""
    op_a = _as_matrix(a, np.float32)
    op_b = _as_matrix(b, np.float32)
    if trans_a:
        op_a = op_a.T
    if trans_b:
        op_b = op_b.T
    m, k = op_a.shape
    k_b, n = op_b.shape
    if k != k_b:
        raise ValueError(f"inner dimensions differ: {k} and {k_b}")
    _check_output(c, m, n, "f")
    c *= np.float32(beta)
    c += np.float32(alpha) * (op_a @ op_b)
    return c


def gemm_uint8_int32(a, b, c, alpha=1, beta=1):
    """Multiply uint8 matrices into an int32 accumulator.

    ``c`` is first scaled by the integer ``beta``; the product scaled by
    ``alpha`` is then added.  A fractional ``alpha`` is applied term by term,
    truncating the running sum toward zero after each addition.
    """
    a64 = _as_matrix(a, np.uint8).astype(np.int64)
    b64 = _as_matrix(b, np.uint8).astype(np.int64)
    m, k = a64.shape
    k_b, n = b64.shape
    if k != k_b:
        raise ValueError(f"inner dimensions differ: {k} and {k_b}")
    _check_output(c, m, n, "i")

    base = c.astype(np.int64) * int(beta)
    if float(alpha).is_integer():
        total = base + int(alpha) * (a64 @ b64)
    else:
        acc = base.astype(np.float64)
        for column, row in zip(a64.T, b64):
            acc = np.trunc(acc + alpha * np.outer(column, row))
        total = acc.astype(np.int64)
    c[...] = total.astype(np.int32)
    return c


def gemm_int8_int32(a, b, c, alpha=1):
    """Multiply int8 matrices, rescale by ``R_MULT`` and add into ``c``.

    ``a`` is stored transposed, with shape ``(K, M)``; ``b`` has shape
    ``(K, N)``.  Each accumulated sum is divided by ``R_MULT`` (rounding toward
    zero) and clamped to ``±INT16_LIMIT`` before it is added.
    """
    a_t = _as_matrix(a, np.int8).astype(np.int64)
    b64 = _as_matrix(b, np.int8).astype(np.int64)
    k, m = a_t.shape
    k_b, n = b64.shape
    if k != k_b:
        raise ValueError(f"inner dimensions differ: {k} and {k_b}")
    _check_output(c, m, n, "i")

    sums = (int(alpha) * (a_t.T @ b64)).astype(np.int32).astype(np.int64)
    scaled = np.sign(sums) * (np.abs(sums) // R_MULT)
    clamped = np.clip(scaled, -INT16_LIMIT, INT16_LIMIT)
    c[...] = (c.astype(np.int64) + clamped).astype(np.int32)
    return c


def gemm_bin(a, b, c):
    """Add rows of ``b`` into ``c`` where ``a`` is set and subtract them elsewhere."""
    mask = _as_matrix(a, np.int64)
    op_b = _as_matrix(b, np.float32)
    m, k = mask.shape
    k_b, n = op_b.shape
    if k != k_b:
        raise ValueError(f"inner dimensions differ: {k} and {k_b}")
    _check_output(c, m, n, "f")
    signs = np.where(mask != 0, 1.0, -1.0).astype(np.float32)
    c += signs @ op_b
    return c


def random_matrix(rows, cols, rng=None):
    """Return a ``rows`` x ``cols`` float32 matrix of uniform values in [0, 1)."""
    if rows < 0 or cols < 0:
        raise ValueError("matrix dimensions must be non-negative")
    generator = rng if rng is not None else np.random.default_rng()
    return generator.random((rows, cols), dtype=np.float32)


def time_random_matrix(trans_a, trans_b, m, k, n):
    """Time ten float multiplications of random matrices; print and return seconds."""
    rng = np.random.default_rng()
    a = random_matrix(k, m, rng) if trans_a else random_matrix(m, k, rng)
    b = random_matrix(n, k, rng) if trans_b else random_matrix(k, n, rng)
    c = random_matrix(m, n, rng)
    start = time.process_time()
    for _ in range(10):
        gemm(a, b, c, 1.0, 1.0, trans_a, trans_b)
    elapsed = time.process_time() - start
    print(
        f"Matrix Multiplication {m}x{k} * {k}x{n}, "
        f"TA={int(bool(trans_a))}, TB={int(bool(trans_b))}: {elapsed:f} ms"
    )
    return elapsed