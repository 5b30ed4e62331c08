"""
Triangular zero-masking kernels for GPU matrices.

`triangular_zero(matrix, k, mode)` zeroes, in place, every element on the
excluded side of the k-th diagonal of a row-major matrix:

- `LOWER_EXCLUDING_ABOVE` (`tril_`): zero where `j - i > k`
- `UPPER_EXCLUDING_BELOW` (`triu_`): zero where `j - i < k`

with 0-based row `i` and column `j`. `k = 0` is the main diagonal, `k > 0`
diagonals above it, `k < 0` diagonals below it. The result matches
`numpy.tril` / `numpy.triu` on the downloaded matrix.
"""

from __future__ import annotations

from enum import Enum

from ...domain._errors import ShapeMismatchError
from ..array._gpu_array import GPUArray
from .kernels import TRIL_ZERO, TRIU_ZERO, TriangularParams, variant_for_itemsize
from .launch import launch_elementwise


class TriangularMode(Enum):
    """Which side of the diagonal is kept."""

    LOWER_EXCLUDING_ABOVE = "tril"
    UPPER_EXCLUDING_BELOW = "triu"


_KERNELS = {
    TriangularMode.LOWER_EXCLUDING_ABOVE: TRIL_ZERO,
    TriangularMode.UPPER_EXCLUDING_BELOW: TRIU_ZERO,
}


def triangular_zero(
    matrix: GPUArray, k: int = 0, mode: TriangularMode = TriangularMode.LOWER_EXCLUDING_ABOVE
) -> GPUArray:
    """
    Zero one triangle of `matrix` in place (blocking).

    Parameters
    ----------
    matrix : GPUArray
        Two-dimensional array.
    k : int
        Diagonal offset.
    mode : TriangularMode or {"tril", "triu"}
        Side of the diagonal to keep.

    Returns
    -------
    GPUArray
        `matrix`.

    Raises
    ------
    ShapeMismatchError
        If `matrix` is not two-dimensional.
    """
    mode = TriangularMode(mode)
    if matrix.ndim != 2:
        raise ShapeMismatchError(
            f"triangular_zero requires a 2-D array, got shape {matrix.shape}",
            matrix.shape,
        )
    rows, cols = matrix.shape
    n = rows * cols
    if n == 0:
        return matrix

    ptr = matrix.buffer()
    params = TriangularParams(data=ptr.ptr, rows=rows, cols=cols, k=int(k))
    launch_elementwise(
        ptr.driver,
        _KERNELS[mode],
        variant_for_itemsize(matrix.itemsize),
        n,
        params,
    )
    return matrix


def tril_(matrix: GPUArray, k: int = 0) -> GPUArray:
    """Keep the lower triangle (and diagonal k); zero everything above."""
    return triangular_zero(matrix, k, TriangularMode.LOWER_EXCLUDING_ABOVE)


def triu_(matrix: GPUArray, k: int = 0) -> GPUArray:
    """Keep the upper triangle (and diagonal k); zero everything below."""
    return triangular_zero(matrix, k, TriangularMode.UPPER_EXCLUDING_BELOW)
