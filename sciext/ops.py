"""Tensor factories built on the array backend."""

from __future__ import annotations

from typing import Any

from .backend import is_global_grad_mode_enabled, xp
from .tensor import Tensor


def _as_tensor(array: xp.ndarray, *, requires_grad: bool) -> Tensor:
    result: Tensor = array.view(Tensor)
    result.requires_grad = is_global_grad_mode_enabled() and requires_grad
    return result


def ones_like(
    other: Any,
    *,
    dtype: Any = None,
    requires_grad: bool = False,
) -> Tensor:
    """Create a Tensor of ones with the shape (and dtype) of `other`.

    Args:
        other (Any): The array or Tensor to match.
        dtype (Any): Override dtype. Defaults to None (use other's dtype).
        requires_grad (bool): Whether to track gradients. Defaults to False.

    Returns:
        Tensor: A tensor of ones.
    """
    # xp.ones(shape) instead of xp.ones_like(other) keeps __array_function__ out of it
    return _as_tensor(
        xp.ones(other.shape, dtype=dtype or other.dtype),
        requires_grad=requires_grad,
    )


def zeros_like(
    other: Any,
    *,
    dtype: Any = None,
    requires_grad: bool = False,
) -> Tensor:
    """Create a Tensor of zeros with the shape (and dtype) of `other`."""
    return _as_tensor(
        xp.zeros(other.shape, dtype=dtype or other.dtype),
        requires_grad=requires_grad,
    )


def randn(
    *shape: int,
    dtype: Any = xp.float64,
    requires_grad: bool = False,
    rng: Any = None,
) -> Tensor:
    """Create a Tensor of standard normal samples.

    Args:
        *shape (int): The shape of the Tensor.
        dtype (Any): The data type. Defaults to float64.
        requires_grad (bool): Whether to track gradients. Defaults to False.
        rng (Any): A `Generator` of the array backend. Defaults to a fresh,
            unseeded one.

    Returns:
        Tensor: The sampled Tensor.
    """
    rng = rng if rng is not None else xp.random.default_rng()
    return _as_tensor(
        rng.standard_normal(shape).astype(dtype),
        requires_grad=requires_grad,
    )


__all__ = [
    "ones_like",
    "randn",
    "zeros_like",
]
