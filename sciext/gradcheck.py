"""Finite difference verification of hand-written gradients.

Every custom op ships a manual backward pass, and this module is how such a
backward pass is trusted: the analytic gradient obtained through
`backward` is compared against centered differences

    (f(x + eps) - f(x - eps)) / (2 * eps)

of the scalar ``sum(fn(*inputs) * grad_out)``, one input element at a time.
Use float64 inputs, float32 rounding errors exceed the default tolerances.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from .autograd import backward
from .backend import is_global_grad_mode_enabled, no_grad, xp
from .errors import GradcheckError
from .tensor import Tensor, tensor

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence


logger = logging.getLogger(__name__)


def _weighted_sum(out: Any, weights: xp.ndarray | None) -> float:
    out = xp.asarray(out)
    if weights is None:
        return float(xp.sum(out))
    return float(xp.sum(out * weights))


def numerical_grad(
    fn: Callable[..., Any],
    inputs: Sequence[Any],
    index: int,
    *,
    grad_out: Any = None,
    eps: float = 1e-6,
) -> xp.ndarray:
    """Centered finite difference gradient of `fn` with respect to `inputs[index]`.

    Args:
        fn (Callable[..., Any]): Function of Tensors returning an array or Tensor.
        inputs (Sequence[Any]): Positional arguments of `fn`. Not modified.
        index (int): Which input to differentiate.
        grad_out (Any): Weights of the output elements, i.e. the upstream
            gradient. Defaults to all ones.
        eps (float): Perturbation size. Defaults to 1e-6.

    Raises:
        TypeError: If the differentiated input is not a float array.

    Returns:
        xp.ndarray: Gradient with the shape of `inputs[index]`.
    """
    values = [xp.array(xp.asarray(i), copy=True, order="C") for i in inputs]
    target = values[index]
    if not xp.issubdtype(target.dtype, xp.floating):
        raise TypeError(f"Can only differentiate float inputs, found {target.dtype}.")

    weights = xp.asarray(grad_out) if grad_out is not None else None
    flat_target = target.reshape(-1)
    flat_grad = xp.zeros(target.size, dtype=xp.float64)

    def evaluate() -> float:
        with no_grad():
            return _weighted_sum(fn(*(v.view(Tensor) for v in values)), weights)

    for i in range(target.size):
        original = flat_target[i].item()
        flat_target[i] = original + eps
        f_plus = evaluate()
        flat_target[i] = original - eps
        f_minus = evaluate()
        flat_target[i] = original
        flat_grad[i] = (f_plus - f_minus) / (2 * eps)

    return flat_grad.reshape(target.shape)


def gradcheck(  # noqa: PLR0913
    fn: Callable[..., Any],
    inputs: Sequence[Any],
    *,
    grad_out: Any = None,
    eps: float = 1e-6,
    atol: float = 1e-4,
    rtol: float = 1e-3,
    raise_exception: bool = True,
) -> bool:
    """Compare the autograd gradients of `fn` with finite differences.

    Every input that is a Tensor with `requires_grad=True` is checked. The
    inputs themselves are never touched, the check runs on copies.

    Args:
        fn (Callable[..., Any]): Function of Tensors returning a Tensor.
        inputs (Sequence[Any]): Positional arguments of `fn`.
        grad_out (Any): Upstream gradient for the backward pass and the weights
            of the finite difference objective. Defaults to all ones.
        eps (float): Finite difference perturbation size. Defaults to 1e-6.
        atol (float): Absolute tolerance. Defaults to 1e-4.
        rtol (float): Relative tolerance. Defaults to 1e-3.
        raise_exception (bool): Raise on mismatch instead of returning `False`.
            Defaults to True.

    Raises:
        RuntimeError: If gradient tracking is globally disabled.
        ValueError: If no input requires a gradient, or the output of `fn`
            does not depend on any input that does.
        GradcheckError: On a gradient mismatch, if `raise_exception` is set.

    Returns:
        bool: `True` if all gradients match.
    """
    if not is_global_grad_mode_enabled():
        raise RuntimeError("gradcheck needs gradient tracking, but grad mode is disabled.")

    checked = [i for i, t in enumerate(inputs) if isinstance(t, Tensor) and t.requires_grad]
    if not checked:
        raise ValueError("gradcheck needs at least one input Tensor with requires_grad=True.")

    for i in checked:
        if inputs[i].dtype != xp.float64:
            logger.warning(
                f"Input {i} of gradcheck has dtype {inputs[i].dtype}, the check "
                "is only reliable for float64 inputs."
            )

    leaves = [
        tensor(t, requires_grad=isinstance(t, Tensor) and t.requires_grad) for t in inputs
    ]
    out = fn(*leaves)
    if not isinstance(out, Tensor) or not out.requires_grad:
        raise ValueError("Output of fn does not depend on any input that requires a gradient.")

    seed = xp.ones(out.shape, dtype=out.dtype) if grad_out is None else xp.asarray(grad_out)
    backward(out, seed)

    for i in checked:
        analytic = leaves[i].grad
        analytic = xp.zeros(leaves[i].shape) if analytic is None else xp.asarray(analytic)
        numeric = numerical_grad(fn, inputs, i, grad_out=seed, eps=eps)

        if not xp.allclose(analytic, numeric, rtol=rtol, atol=atol):
            message = (
                f"Gradient mismatch for input {i}:\n"
                f"Analytical:\n{analytic}\n"
                f"Numerical:\n{numeric}\n"
                f"Max diff: {float(xp.max(xp.abs(analytic - numeric)))}"
            )
            if raise_exception:
                raise GradcheckError(message)
            logger.info(message)
            return False

        logger.debug(f"Gradient of input {i} matches finite differences")

    return True


__all__ = [
    "gradcheck",
    "numerical_grad",
]
