"""Magnitude of the real two dimensional FFT, a parameter-free custom op.

The backward pass does not compute the true derivative of ``|rfft2(x)|``.
It pushes the upstream gradient through the inverse transform instead,
``grad_x = irfft2(grad_out, s=x.shape)``, which keeps the op cheap and
shape-consistent. Use it where a spectral feature extractor only needs a
plausible learning signal, not an exact one.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from .backend import OpInputs, OpType, register_grad_op, xp
from .errors import ShapeError

if TYPE_CHECKING:
    from .tensor import Tensor

_MATRIX_N_DIM = 2


def spectrum_shape(input_shape: tuple[int, ...]) -> tuple[int, int]:
    """Shape `(H, W // 2 + 1)` of `rfft2` applied to a `(H, W)` matrix.

    Raises:
        ShapeError: If `input_shape` is not two dimensional.
    """
    if len(input_shape) != _MATRIX_N_DIM:
        raise ShapeError(f"Input must be a 2D matrix, found shape {input_shape}.")
    height, width = input_shape
    return height, width // 2 + 1


def forward(x: Any) -> xp.ndarray:
    """Computes `abs(rfft2(x))`.

    Args:
        x (Any): Real matrix of shape `(H, W)`.

    Returns:
        xp.ndarray: Real matrix of shape `(H, W // 2 + 1)`.
    """
    x = xp.asarray(x)
    spectrum_shape(x.shape)
    return xp.abs(xp.fft.rfft2(x))


def backward(grad_out: Any, shape: tuple[int, ...]) -> xp.ndarray:
    """Surrogate gradient of `forward`: the inverse real FFT of `grad_out`.

    Args:
        grad_out (Any): Upstream gradient of shape `(H, W // 2 + 1)`.
        shape (tuple[int, ...]): Shape `(H, W)` of the forward input.

    Raises:
        ShapeError: If `grad_out` does not match the spectrum of `shape`.

    Returns:
        xp.ndarray: Real matrix of shape `shape`.
    """
    grad_out = xp.asarray(grad_out)
    expected = spectrum_shape(tuple(shape))
    if grad_out.shape != expected:
        raise ShapeError(
            f"Output gradient has shape {grad_out.shape}, expected {expected} "
            f"for an input of shape {tuple(shape)}."
        )
    return xp.fft.irfft2(grad_out, s=tuple(shape))


@register_grad_op(
    op_type=OpType.SPECTRAL,
    op_inputs=OpInputs.UNARY,
    reference_fn=forward,
    skip_test=True,
    skip_reason="backward is the inverse transform, not the exact derivative",
)
def magnitude_rfft2_backward(
    *inputs: Tensor,
    compute_grad: tuple[bool],
    grad_out: xp.ndarray,
) -> tuple[xp.ndarray | None]:
    """Computes the surrogate gradient for `abs(rfft2(x)) = z`."""
    x = inputs[0]
    grad_x = backward(grad_out, x.shape).astype(x.dtype) if compute_grad[0] else None
    return (grad_x,)


__all__ = [
    "backward",
    "forward",
    "magnitude_rfft2_backward",
    "spectrum_shape",
]
