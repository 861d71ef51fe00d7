"""Two dimensional "valid" cross-correlation with a hand-written gradient.

The forward and backward passes are pure functions on plain arrays and
delegate the sliding-window work to `scipy.signal` (or `cupyx.scipy.signal`
on the cupy backend):

- forward: ``out = correlate2d(x, kernel, "valid") + bias``
- backward: ``grad_x = convolve2d(grad_out, kernel, "full")``,
  ``grad_kernel = correlate2d(x, grad_out, "valid")``,
  ``grad_bias = sum(grad_out)``

`correlate2d_backward` registers the backward pass with the autograd
engine under the op name "correlate2d".
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from .backend import OpInputs, OpType, register_grad_op, signal, xp
from .errors import ShapeError

if TYPE_CHECKING:
    from .tensor import Tensor

_MATRIX_N_DIM = 2


def output_shape(
    input_shape: tuple[int, ...],
    kernel_shape: tuple[int, ...],
) -> tuple[int, int]:
    """Shape of the valid cross-correlation of `input_shape` and `kernel_shape`.

    Args:
        input_shape (tuple[int, ...]): Shape `(H, W)` of the input.
        kernel_shape (tuple[int, ...]): Shape `(kH, kW)` of the kernel.

    Raises:
        ShapeError: If either shape is not two dimensional or empty, or the
            kernel is larger than the input along any axis.

    Returns:
        tuple[int, int]: `(H - kH + 1, W - kW + 1)`.
    """
    if len(input_shape) != _MATRIX_N_DIM:
        raise ShapeError(f"Input must be a 2D matrix, found shape {input_shape}.")
    if len(kernel_shape) != _MATRIX_N_DIM:
        raise ShapeError(f"Kernel must be a 2D matrix, found shape {kernel_shape}.")

    height, width = input_shape
    k_height, k_width = kernel_shape
    if height < 1 or width < 1:
        raise ShapeError(f"Input must not be empty, found shape {input_shape}.")
    if k_height < 1 or k_width < 1:
        raise ShapeError(f"Kernel must not be empty, found shape {kernel_shape}.")
    if k_height > height or k_width > width:
        raise ShapeError(
            f"Kernel of shape {kernel_shape} does not fit into input of shape "
            f"{input_shape}, kernel dimensions must not exceed input dimensions."
        )
    return height - k_height + 1, width - k_width + 1


def _validate_grad_out(grad_out: xp.ndarray, x: xp.ndarray, kernel: xp.ndarray) -> None:
    expected = output_shape(x.shape, kernel.shape)
    if grad_out.shape != expected:
        raise ShapeError(
            f"Output gradient has shape {grad_out.shape}, but the forward pass "
            f"of input {x.shape} and kernel {kernel.shape} produces {expected}."
        )


def _as_float(*arrays: Any) -> tuple[xp.ndarray, ...]:
    """Cast `arrays` to their common floating point dtype, at least float32."""
    arrays = tuple(xp.asarray(a) for a in arrays)
    dtype = xp.result_type(*arrays, xp.float32)
    return tuple(a.astype(dtype, copy=False) for a in arrays)


def _grad_input(grad_out: xp.ndarray, kernel: xp.ndarray) -> xp.ndarray:
    return signal.convolve2d(grad_out, kernel, mode="full")


def _grad_kernel(grad_out: xp.ndarray, x: xp.ndarray) -> xp.ndarray:
    return signal.correlate2d(x, grad_out, mode="valid")


def forward(x: Any, kernel: Any, bias: Any) -> xp.ndarray:
    """Valid cross-correlation of `x` with `kernel`, plus a scalar `bias`.

    ``out[i, j] = bias + sum_{u, v} x[i + u, j + v] * kernel[u, v]``

    Args:
        x (Any): Input matrix of shape `(H, W)`.
        kernel (Any): Filter matrix of shape `(kH, kW)` with `kH <= H`, `kW <= W`.
        bias (Any): Scalar bias, any array-like with exactly one element.

    Raises:
        ShapeError: If the operands are not 2D or empty, the kernel exceeds the input,
            or `bias` has more than one element.

    Returns:
        xp.ndarray: A new array of shape `(H - kH + 1, W - kW + 1)`, in floating
            point even for integer operands.
    """
    x, kernel = _as_float(x, kernel)
    bias = xp.asarray(bias)

    output_shape(x.shape, kernel.shape)
    if bias.size != 1:
        raise ShapeError(f"Bias must hold exactly one element, found shape {bias.shape}.")

    out = signal.correlate2d(x, kernel, mode="valid")
    return out + bias.reshape(()).astype(out.dtype)


def backward(
    grad_out: Any,
    x: Any,
    kernel: Any,
) -> tuple[xp.ndarray, xp.ndarray, xp.ndarray]:
    """Gradients of `forward` with respect to input, kernel and bias.

    Args:
        grad_out (Any): Upstream gradient, same shape as the forward output.
        x (Any): The input matrix the forward pass was computed on.
        kernel (Any): The kernel the forward pass was computed with.

    Raises:
        ShapeError: If `grad_out` does not have the forward output shape,
            or `x`/`kernel` are invalid forward operands.

    Returns:
        tuple[xp.ndarray, xp.ndarray, xp.ndarray]: `(grad_x, grad_kernel, grad_bias)`
            shaped like `x`, like `kernel` and as a 0-d array respectively.
    """
    grad_out, x, kernel = _as_float(grad_out, x, kernel)
    _validate_grad_out(grad_out, x, kernel)

    grad_bias = xp.asarray(xp.sum(grad_out))
    return _grad_input(grad_out, kernel), _grad_kernel(grad_out, x), grad_bias


@register_grad_op(
    op_type=OpType.CORRELATION,
    op_inputs=OpInputs.TERNARY,
    reference_fn=forward,
    input_shapes=((5, 6), (3, 2), (1, 1)),
)
def correlate2d_backward(
    *inputs: Tensor,
    compute_grad: tuple[bool, bool, bool],
    grad_out: xp.ndarray,
) -> tuple[xp.ndarray | None, xp.ndarray | None, xp.ndarray | None]:
    """Computes gradients for `correlate2d(x, kernel) + bias = z`.

    Args:
        *inputs (Tensor): The inputs `(x, kernel, bias)`.
        compute_grad (tuple[bool, bool, bool]): Flags indicating which input
            gradients to compute, aligned with `inputs`.
        grad_out (xp.ndarray): Upstream gradient.

    Returns:
        tuple[xp.ndarray | None, xp.ndarray | None, xp.ndarray | None]:
            Gradients for `(x, kernel, bias)`, with `None` where
            `compute_grad[i]` is False. The bias gradient has the shape of `bias`.
    """
    bias = xp.asarray(inputs[2])
    grad_out, x, kernel = _as_float(grad_out, inputs[0], inputs[1])
    _validate_grad_out(grad_out, x, kernel)

    grad_x = _grad_input(grad_out, kernel) if compute_grad[0] else None
    grad_kernel = _grad_kernel(grad_out, x) if compute_grad[1] else None
    grad_bias = xp.sum(grad_out).reshape(bias.shape) if compute_grad[2] else None
    return grad_x, grad_kernel, grad_bias


__all__ = [
    "backward",
    "correlate2d_backward",
    "forward",
    "output_shape",
]
