"""
Numeric operations on ``Tensor``.

Elementwise ops require identical shapes (no broadcasting). Every op returns a
new tensor; operands are never written. Elementwise kernels and activations can
split their output into contiguous chunks computed on worker threads
(``workers > 1``); each worker writes a disjoint slice and the call joins before
returning.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from typing import Callable

import numpy as np

from .errors import InvalidArgument, NotSupported, ShapeMismatch
from .tensor import Number, Tensor

# Divisors with a smaller magnitude produce 0 instead of inf/nan.
DIVISION_EPSILON = float(np.finfo(np.float32).eps)

# Below this many elements per worker the thread pool is not worth it.
MIN_CHUNK = 1024

BinaryKernel = Callable[[np.ndarray, np.ndarray, np.ndarray], None]
UnaryKernel = Callable[[np.ndarray, np.ndarray], None]


def _run_chunked(n: int, work: Callable[[slice], None], workers: int) -> None:
    if workers < 1:
        raise InvalidArgument(f"workers must be >= 1, got {workers}")
    if workers == 1 or n < 2 * MIN_CHUNK:
        work(slice(0, n))
        return

    workers = min(workers, n // MIN_CHUNK)
    bounds = np.linspace(0, n, workers + 1).astype(int)
    chunks = [slice(int(lo), int(hi)) for lo, hi in zip(bounds[:-1], bounds[1:]) if hi > lo]
    with ThreadPoolExecutor(max_workers=workers) as executor:
        # list() re-raises the first worker exception here
        list(executor.map(work, chunks))


def _binary(op: str, a: Tensor, b: Tensor, kernel: BinaryKernel, workers: int) -> Tensor:
    if a.shape != b.shape:
        raise ShapeMismatch.between(op, a.shape, b.shape)
    x = a.flat_view()
    y = b.flat_view()
    out = np.empty_like(x)

    def work(s: slice) -> None:
        kernel(x[s], y[s], out[s])

    _run_chunked(out.size, work, workers)
    return Tensor._wrap(a.shape, out, a.layout)


def _unary(t: Tensor, kernel: UnaryKernel, workers: int) -> Tensor:
    x = t.flat_view()
    out = np.empty_like(x)

    def work(s: slice) -> None:
        kernel(x[s], out[s])

    _run_chunked(out.size, work, workers)
    return Tensor._wrap(t.shape, out, t.layout)


# ---------------------------------------------------------------------- #
# Elementwise arithmetic
# ---------------------------------------------------------------------- #
def _add(x: np.ndarray, y: np.ndarray, out: np.ndarray) -> None:
    np.add(x, y, out=out)


def _subtract(x: np.ndarray, y: np.ndarray, out: np.ndarray) -> None:
    np.subtract(x, y, out=out)


def _multiply(x: np.ndarray, y: np.ndarray, out: np.ndarray) -> None:
    np.multiply(x, y, out=out)


def _safe_divide(x: np.ndarray, y: np.ndarray, out: np.ndarray) -> None:
    out.fill(0.0)
    np.divide(x, y, out=out, where=np.abs(y) >= DIVISION_EPSILON)


def add(a: Tensor, b: Tensor, *, workers: int = 1) -> Tensor:
    return _binary("add", a, b, _add, workers)


def subtract(a: Tensor, b: Tensor, *, workers: int = 1) -> Tensor:
    return _binary("subtract", a, b, _subtract, workers)


def multiply(a: Tensor, b: Tensor, *, workers: int = 1) -> Tensor:
    return _binary("multiply", a, b, _multiply, workers)


def divide(a: Tensor, b: Tensor, *, workers: int = 1) -> Tensor:
    """Elementwise ``a / b``; elements whose divisor is below ``DIVISION_EPSILON`` in magnitude are 0."""

    return _binary("divide", a, b, _safe_divide, workers)


def scale(t: Tensor, factor: Number, *, workers: int = 1) -> Tensor:
    k = np.float32(factor)

    def kernel(x: np.ndarray, out: np.ndarray) -> None:
        np.multiply(x, k, out=out)

    return _unary(t, kernel, workers)


# ---------------------------------------------------------------------- #
# Linear algebra
# ---------------------------------------------------------------------- #
def matmul(a: Tensor, b: Tensor) -> Tensor:
    """
    Matrix product over the trailing two axes.

    Supports rank-2 operands and rank-3 operands with a single leading batch axis
    (a rank-2 operand counts as batch 1). Batch sizes must match or one must be 1;
    the output batch is the larger of the two.
    """

    if not (2 <= a.rank <= 3 and 2 <= b.rank <= 3):
        raise NotSupported(f"matmul supports rank 2 or 3 operands, got {a.shape} and {b.shape}")

    rows, inner = a.shape[-2:]
    inner_b, cols = b.shape[-2:]
    if inner != inner_b:
        raise ShapeMismatch(
            f"matmul: {a.shape} @ {b.shape}: left has {inner} columns but right has {inner_b} rows",
            a.shape,
            b.shape,
        )

    if a.rank == 2 and b.rank == 2:
        out = np.matmul(a.view(), b.view())
        return Tensor._wrap((rows, cols), out.astype(np.float32), a.layout)

    batch_a = a.shape[0] if a.rank == 3 else 1
    batch_b = b.shape[0] if b.rank == 3 else 1
    if batch_a != batch_b and 1 not in (batch_a, batch_b):
        raise NotSupported(f"matmul cannot combine batch sizes {batch_a} and {batch_b}")

    batch = max(batch_a, batch_b)
    x = a.view().reshape(batch_a, rows, inner)
    y = b.view().reshape(batch_b, inner, cols)
    out = np.matmul(x, y)
    return Tensor._wrap((batch, rows, cols), out.astype(np.float32), a.layout)


def transpose(t: Tensor) -> Tensor:
    if t.rank != 2:
        raise NotSupported(f"transpose is only defined for rank-2 tensors, got shape {t.shape}")
    rows, cols = t.shape
    return Tensor._wrap((cols, rows), np.ascontiguousarray(t.view().T).reshape(-1).copy(), t.layout)


# ---------------------------------------------------------------------- #
# Activations
# ---------------------------------------------------------------------- #
def _relu(x: np.ndarray, out: np.ndarray) -> None:
    np.maximum(x, 0.0, out=out)


def _sigmoid(x: np.ndarray, out: np.ndarray) -> None:
    # exp() only ever sees non-positive arguments, so it cannot overflow
    z = np.exp(-np.abs(x))
    np.divide(np.where(x >= 0, 1.0, z), 1.0 + z, out=out)


def relu(t: Tensor, *, workers: int = 1) -> Tensor:
    return _unary(t, _relu, workers)


def sigmoid(t: Tensor, *, workers: int = 1) -> Tensor:
    return _unary(t, _sigmoid, workers)


def sigmoid_array(x: np.ndarray) -> np.ndarray:
    """Sigmoid on a plain array, used by the decoders."""

    x = np.asarray(x, dtype=np.float32)
    out = np.empty_like(x)
    _sigmoid(x, out)
    return out


def softmax(t: Tensor, axis: int = -1, *, workers: int = 1) -> Tensor:
    """Softmax over the last axis, with the per-vector maximum subtracted before ``exp``."""

    ax = axis + t.rank if axis < 0 else axis
    if not 0 <= ax < t.rank:
        raise InvalidArgument(f"axis {axis} is out of range for shape {t.shape}")
    if ax != t.rank - 1:
        raise NotSupported(f"softmax is only supported over the last axis (got axis {axis} for rank {t.rank})")

    width = t.shape[-1]
    if width == 0 or t.size == 0:
        return t.copy()

    x = t.flat_view().reshape(-1, width)
    out = np.empty_like(x)

    def work(rows: slice) -> None:
        block = x[rows]
        e = np.exp(block - block.max(axis=1, keepdims=True))
        np.divide(e, e.sum(axis=1, keepdims=True), out=out[rows])

    # chunk by whole vectors so no row is split across workers
    _run_chunked(x.shape[0], work, workers)
    return Tensor._wrap(t.shape, out.reshape(-1), t.layout)
