"""Registry of backward (gradient) functions, keyed by forward op name.

Builtin array operations (add, multiply, sum, ...) are registered here.
Custom operations backed by scipy register themselves the same way from
their own modules (see `sciext.correlation` and `sciext.spectral`).
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from .backend import xp

if TYPE_CHECKING:
    from ..tensor import Tensor


logger = logging.getLogger(__name__)


# Gradients are plain arrays, never graph-tracking Tensors
GradOp = Callable[..., tuple["xp.ndarray | None", ...]]


class OpType(Enum):
    """Operation category by computational behavior."""

    ELEMENTWISE = "elementwise"  # add, mul, square, ...
    REDUCTION = "reduction"  # sum, mean
    CORRELATION = "correlation"  # sliding-window correlation/convolution
    SPECTRAL = "spectral"  # fft based


class OpInputs(Enum):
    """Number of tensor inputs to an operation.

    The enum value equals the input count, e.g. `OpInputs.TERNARY.value == 3`.
    """

    UNARY = 1
    BINARY = 2
    TERNARY = 3


@dataclass(frozen=True)
class GradOpSpec:
    """Specification for a gradient operation.

    Attributes:
        backward_fn (GradOp): The gradient computation function.
        op_type (OpType): Operation category.
        op_inputs (OpInputs): Number of inputs.
        forward_names (tuple[str, ...]): Forward op names mapping to this backward.
            First name is canonical, others are aliases.
        reference_fn (Callable[..., Any] | None): Forward implementation on plain
            arrays used to verify the gradient. `None` means the array module
            function named `forward_names[0]`.
        input_shapes (tuple[tuple[int, ...], ...] | None): Shapes to test the op
            with. `None` means `(3, 4)` for every input.
        constraints (dict[str, str] | None): Input constraints for testing.
            Maps input name (`x`, `y`, `z`) to a constraint, e.g. ``{"y": "positive"}``.
        skip_test (bool): Whether to skip automated finite difference testing.
        skip_reason (str | None): Reason for skipping. Required if skip_test=True.
    """

    backward_fn: GradOp
    op_type: OpType
    op_inputs: OpInputs
    forward_names: tuple[str, ...]
    reference_fn: Callable[..., Any] | None = None
    input_shapes: tuple[tuple[int, ...], ...] | None = None
    constraints: dict[str, str] | None = None
    skip_test: bool = False
    skip_reason: str | None = None

    def __post_init__(self) -> None:
        """Validate the testing metadata.

        Raises:
            ValueError: If skip_test is True but skip_reason is None or empty.
            ValueError: If input_shapes does not list one shape per input.
        """
        if self.skip_test and not self.skip_reason:
            raise ValueError("skip_reason is required when skip_test=True")
        if self.input_shapes is not None and len(self.input_shapes) != self.op_inputs.value:
            raise ValueError(
                f"input_shapes must list {self.op_inputs.value} shapes, "
                f"found {len(self.input_shapes)}"
            )


_GRAD_OPS_REGISTRY: dict[str, GradOpSpec] = {}


def register_grad_op(  # noqa: PLR0913
    *,
    op_type: OpType,
    op_inputs: OpInputs,
    forward_names: tuple[str, ...] | None = None,
    reference_fn: Callable[..., Any] | None = None,
    input_shapes: tuple[tuple[int, ...], ...] | None = None,
    constraints: dict[str, str] | None = None,
    skip_test: bool = False,
    skip_reason: str | None = None,
) -> Callable[[GradOp], GradOp]:
    """Decorator factory to register a gradient operation with metadata.

    The decorated function should be named ``<operation>_backward``.
    It is registered under all `forward_names`, or under the operation
    name taken from the function name if `forward_names` is None.

    Args:
        op_type (OpType): Operation category.
        op_inputs (OpInputs): Number of tensor inputs.
        forward_names (tuple[str, ...] | None): Forward op names to register under.
            If None, extracted from the function name.
        reference_fn (Callable[..., Any] | None): Forward implementation used
            by the finite difference tests for ops that are not array module
            functions.
        input_shapes (tuple[tuple[int, ...], ...] | None): Input shapes for testing.
        constraints (dict[str, str] | None): Input constraints for testing.
        skip_test (bool): Whether to skip automated finite difference testing.
        skip_reason (str | None): Reason for skipping. Required if skip_test=True.

    Returns:
        Callable[[GradOp], GradOp]: Decorator that registers the grad op.
    """

    def decorator(func: GradOp) -> GradOp:
        canonical_name = func.__name__.removesuffix("_backward")
        names = forward_names if forward_names is not None else (canonical_name,)

        spec = GradOpSpec(
            backward_fn=func,
            op_type=op_type,
            op_inputs=op_inputs,
            forward_names=names,
            reference_fn=reference_fn,
            input_shapes=input_shapes,
            constraints=constraints,
            skip_test=skip_test,
            skip_reason=skip_reason,
        )

        for name in names:
            if name in _GRAD_OPS_REGISTRY:
                logger.warning(f'Overriding registered grad op "{name}"')
            _GRAD_OPS_REGISTRY[name] = spec
        logger.debug(f'Registered grad op "{func.__name__}" for {names}')

        return func

    return decorator


def normalize_grad_op_name(*, name: str, is_reduce: bool = False) -> str:
    """Map a ufunc name to its registry key.

    `add.reduce` is how ndarray.sum is executed, so it is looked up as "sum".

    Examples:
        >>> normalize_grad_op_name(name="add", is_reduce=True)
        'sum'
        >>> normalize_grad_op_name(name="multiply")
        'multiply'
    """
    if name == "add" and is_reduce:
        return "sum"
    return name


def get_grad_op(name: str) -> GradOp | None:
    """Get the backward function for a forward operation.

    Args:
        name (str): Forward operation name (e.g. "add", "correlate2d").

    Returns:
        GradOp | None: The gradient function, or None if not found.
    """
    spec = _GRAD_OPS_REGISTRY.get(normalize_grad_op_name(name=name))
    return spec.backward_fn if spec is not None else None


def get_grad_op_spec(name: str) -> GradOpSpec | None:
    """Get the full specification for a gradient operation, or None."""
    return _GRAD_OPS_REGISTRY.get(normalize_grad_op_name(name=name))


def _broadcast_backward(
    x: Tensor,
    grad_out: xp.ndarray,
) -> xp.ndarray:
    """Sum `grad_out` over every dimension that was broadcast to match `x`.

    Args:
        x (Tensor): The operand that was (possibly) broadcast.
        grad_out (xp.ndarray): Upstream gradient, shaped like the op result.

    Returns:
        xp.ndarray: Gradient with the shape of `x`.
    """
    if x.shape == grad_out.shape:
        return grad_out

    collapse_dim: list[int] = []
    for i in range(grad_out.ndim):
        idx_x = x.ndim - i - 1
        idx_grad_out = grad_out.ndim - i - 1
        if idx_x < 0 or x.shape[idx_x] < grad_out.shape[idx_grad_out]:
            collapse_dim.append(idx_grad_out)

    return xp.sum(grad_out, axis=tuple(collapse_dim), keepdims=True).reshape(x.shape)


def broadcastable(
    elem_wise_backward_fn: Callable[..., Any],
) -> Callable[..., Any]:
    """Extend a binary element-wise backward function with broadcasting support."""

    def wrapper(
        *inputs: Tensor,
        compute_grad: tuple[bool, bool],
        grad_out: xp.ndarray,
        **kwargs: Any,  # noqa: ARG001
    ) -> tuple[xp.ndarray | None, xp.ndarray | None]:
        x, y = inputs
        # ufunc kwargs such as `out` or `casting` do not change the derivative
        grad_x, grad_y = elem_wise_backward_fn(
            *inputs,
            compute_grad=compute_grad,
            grad_out=grad_out,
        )
        grad_x = _broadcast_backward(x, grad_x) if grad_x is not None else None
        grad_y = _broadcast_backward(y, grad_y) if grad_y is not None else None
        return grad_x, grad_y

    # register_grad_op derives the op name from __name__
    wrapper.__name__ = elem_wise_backward_fn.__name__

    return wrapper


def make_axis(ndim: int, kwargs_dict: dict[str, Any]) -> tuple[int, ...]:
    """Normalize the `axis` argument of a reduction to a tuple of positive ints.

    Args:
        ndim (int): Number of dimensions of the reduced array.
        kwargs_dict (dict[str, Any]): The kwargs of the reduction, possibly
            holding `axis`.

    Raises:
        ValueError: If `axis` has an unsupported type.

    Returns:
        tuple[int, ...]: The reduced axes. All axes if `axis` was absent or None.
    """
    axis_candidate = kwargs_dict.get("axis")
    if axis_candidate is None:
        return tuple(range(ndim))

    if isinstance(axis_candidate, int):
        axis: tuple[int, ...] = (axis_candidate,)
    elif isinstance(axis_candidate, list | tuple) and all(
        isinstance(a, int) for a in axis_candidate
    ):
        axis = tuple(axis_candidate)
    else:
        raise ValueError(
            '"axis" must be in [int, list[int], tuple[int]], '
            f'found: "{type(axis_candidate).__name__}".'
        )

    return tuple(a + ndim if a < 0 else a for a in axis)


@register_grad_op(
    op_type=OpType.ELEMENTWISE,
    op_inputs=OpInputs.BINARY,
)
@broadcastable
def add_backward(
    *inputs: Tensor,  # noqa: ARG001
    compute_grad: tuple[bool, bool],
    grad_out: xp.ndarray,
) -> tuple[xp.ndarray | None, xp.ndarray | None]:
    """Computes gradients for `x + y = z`.

    Args:
        *inputs (Tensor): Two inputs `(x, y)`.
        compute_grad (tuple[bool, bool]): Flags indicating which input gradients
            to compute, aligned with `inputs`.
        grad_out (xp.ndarray): Upstream gradient.

    Returns:
        tuple[xp.ndarray | None, xp.ndarray | None]: Gradients for `(x, y)`, with
            `None` where `compute_grad[i]` is False.
    """
    x_grad = grad_out if compute_grad[0] else None
    y_grad = grad_out if compute_grad[1] else None
    return x_grad, y_grad


@register_grad_op(
    op_type=OpType.ELEMENTWISE,
    op_inputs=OpInputs.BINARY,
)
@broadcastable
def subtract_backward(
    *inputs: Tensor,  # noqa: ARG001
    compute_grad: tuple[bool, bool],
    grad_out: xp.ndarray,
) -> tuple[xp.ndarray | None, xp.ndarray | None]:
    """Computes gradients for `x - y = z`."""
    x_grad = grad_out if compute_grad[0] else None
    y_grad = -grad_out if compute_grad[1] else None
    return x_grad, y_grad


@register_grad_op(
    op_type=OpType.ELEMENTWISE,
    op_inputs=OpInputs.BINARY,
    forward_names=("multiply", "mul"),
)
@broadcastable
def multiply_backward(
    *inputs: Tensor,
    compute_grad: tuple[bool, bool],
    grad_out: xp.ndarray,
) -> tuple[xp.ndarray | None, xp.ndarray | None]:
    """Computes gradients for `x * y = z`.

    Args:
        *inputs (Tensor): Two inputs `(x, y)`.
        compute_grad (tuple[bool, bool]): Flags indicating which input gradients
            to compute, aligned with `inputs`.
        grad_out (xp.ndarray): Upstream gradient.

    Returns:
        tuple[xp.ndarray | None, xp.ndarray | None]: Gradients for `(x, y)`, with
            `None` where `compute_grad[i]` is False.
    """
    x, y = inputs
    grad_x = y * grad_out if compute_grad[0] else None
    grad_y = x * grad_out if compute_grad[1] else None
    return grad_x, grad_y


@register_grad_op(
    op_type=OpType.ELEMENTWISE,
    op_inputs=OpInputs.UNARY,
)
def square_backward(
    *inputs: Tensor,
    compute_grad: tuple[bool],
    grad_out: xp.ndarray,
    **kwargs: Any,  # noqa: ARG001
) -> tuple[xp.ndarray | None]:
    """Computes gradients for `x^2 = z`."""
    x = inputs[0]
    grad_x = 2 * x * grad_out if compute_grad[0] else None
    return (grad_x,)


@register_grad_op(
    op_type=OpType.REDUCTION,
    op_inputs=OpInputs.UNARY,
)
def sum_backward(
    *inputs: Tensor,
    compute_grad: tuple[bool],
    grad_out: xp.ndarray,
    **kwargs: Any,
) -> tuple[xp.ndarray | None]:
    """Computes gradients for `sum(x) = z`.

    Args:
        *inputs (Tensor): The summed tensor `x`.
        compute_grad (tuple[bool]): Whether to compute the gradient of `x`.
        grad_out (xp.ndarray): Upstream gradient.
        **kwargs (Any): The reduction kwargs, `axis` and `keepdims` are used.

    Returns:
        tuple[xp.ndarray | None]: Gradient for `x`, or `None` if skipped.
    """
    x = inputs[0]
    if not compute_grad[0]:
        return (None,)

    axis = make_axis(ndim=x.ndim, kwargs_dict=kwargs)
    if not kwargs.get("keepdims", False):
        grad_out = xp.expand_dims(grad_out, axis=axis)

    return (xp.broadcast_to(grad_out, x.shape),)


@register_grad_op(
    op_type=OpType.REDUCTION,
    op_inputs=OpInputs.UNARY,
)
def mean_backward(
    *inputs: Tensor,
    compute_grad: tuple[bool],
    grad_out: xp.ndarray,
    **kwargs: Any,
) -> tuple[xp.ndarray | None]:
    """Computes gradients for `mean(x) = z`, spreading `grad_out` evenly."""
    x = inputs[0]
    if not compute_grad[0]:
        return (None,)

    axis = make_axis(ndim=x.ndim, kwargs_dict=kwargs)
    if not kwargs.get("keepdims", False):
        grad_out = xp.expand_dims(grad_out, axis=axis)

    n_reduced_elem = 1
    for a in axis:
        n_reduced_elem *= x.shape[a]

    return (xp.broadcast_to(grad_out, x.shape) / n_reduced_elem,)


__all__ = [
    "GradOp",
    "GradOpSpec",
    "OpInputs",
    "OpType",
    "broadcastable",
    "get_grad_op",
    "get_grad_op_spec",
    "make_axis",
    "normalize_grad_op_name",
    "register_grad_op",
]
