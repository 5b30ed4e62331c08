"""
Shape helpers shared by array construction and reshape.
"""

from __future__ import annotations

import numbers
from typing import Iterable, Tuple, Union

from ...domain._errors import ShapeMismatchError

ShapeLike = Union[int, Iterable[int]]


def numel(shape: Tuple[int, ...]) -> int:
    """Product of all extents (1 for the 0-d shape `()`)."""
    n = 1
    for d in shape:
        n *= int(d)
    return int(n)


def normalize_shape(shape: ShapeLike, *, allow_infer: bool = False) -> Tuple[int, ...]:
    """
    Normalize a shape specification to a tuple of ints.

    Parameters
    ----------
    shape : int | iterable of int
        A single extent or a sequence of extents.
    allow_infer : bool
        Accept `-1` entries (reshape inference).

    Raises
    ------
    TypeError
        If an extent is not an integer.
    ValueError
        If an extent is negative (other than an allowed `-1`).
    """
    if isinstance(shape, numbers.Integral):
        dims: Tuple = (shape,)
    else:
        dims = tuple(shape)

    out = []
    for d in dims:
        if isinstance(d, bool) or not isinstance(d, numbers.Integral):
            raise TypeError(f"Shape extents must be integers, got {d!r} in {dims!r}")
        d = int(d)
        if d < 0 and not (allow_infer and d == -1):
            raise ValueError(f"Shape extents must be non-negative, got {dims!r}")
        out.append(d)
    return tuple(out)


def resolve_reshape(new_shape: ShapeLike, count: int, old_shape: Tuple[int, ...]) -> Tuple[int, ...]:
    """
    Resolve a reshape request against an element count.

    At most one `-1` extent is inferred from the remaining ones.

    Raises
    ------
    ShapeMismatchError
        If the resolved shape does not hold exactly `count` elements.
    """
    dims = normalize_shape(new_shape, allow_infer=True)
    unknown = [i for i, d in enumerate(dims) if d == -1]
    if len(unknown) > 1:
        raise ShapeMismatchError(f"Can only infer one dimension, got {dims}", dims)

    if unknown:
        known = numel(tuple(d for d in dims if d != -1))
        if known == 0 or count % known != 0:
            raise ShapeMismatchError(
                f"array of shape {old_shape} ({count} elements) cannot be reshaped to {dims}",
                dims,
            )
        dims = tuple(count // known if d == -1 else d for d in dims)

    if numel(dims) != count:
        raise ShapeMismatchError(
            f"parent has {count} elements, which is incompatible with size {dims}",
            dims,
        )
    return dims
