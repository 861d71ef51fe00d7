"""Array subclass that records the operations applied to it."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Self

from .autograd import backward as _run_backward
from .backend import (
    GradOp,
    get_grad_op,
    is_global_grad_mode_enabled,
    normalize_grad_op_name,
    xp,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Mapping


logger = logging.getLogger(__name__)


def _to_array(x: Any) -> Any:
    """Recursively convert Tensors to plain ndarrays (handles nested lists/tuples)."""
    if isinstance(x, Tensor):
        return xp.asarray(x)
    if isinstance(x, list | tuple):
        return type(x)(_to_array(i) for i in x)
    return x


def _to_tensor(x: Any) -> Tensor:
    """Convert input to Tensor. Non-Tensors become constants (no gradient)."""
    if isinstance(x, Tensor):
        return x
    return Tensor(x, requires_grad=False)


class Tensor(xp.ndarray):  # type: ignore[misc]
    """An ndarray that remembers how it was computed.

    Every array function or ufunc applied to a Tensor returns a new Tensor
    whose `src` holds the operands and whose `backward_fn` is the grad op
    registered for that function. Calling `backward` walks this graph.
    """

    def __init__(  # noqa: PLR0913
        self,
        data: Any = None,  # noqa: ARG002 -> consumed by __new__
        *,
        src: tuple[Tensor, ...] | None = None,
        creator_op: str | None = None,
        op_ctx: dict[str, Any] | None = None,
        requires_grad: bool = False,
        keep_grad: bool = False,
    ) -> None:
        self.src: tuple[Tensor, ...] = src or ()

        backward_fn = get_grad_op(creator_op) if creator_op else None

        if not self.is_leaf() and backward_fn is None:
            raise ValueError(f'Gradient propagation not supported for op "{creator_op}"')

        self.backward_fn: GradOp | None = backward_fn
        self.op_ctx: dict[str, Any] = op_ctx or {}
        self.requires_grad = is_global_grad_mode_enabled() and requires_grad
        self.grad: xp.ndarray | None = None
        self.keep_grad = keep_grad

    def __new__(cls, data: Iterable[Any], **kwargs: Any) -> Self:
        # graph kwargs (src, creator_op, ...) are handled by __init__
        result: Self = xp.asarray(data, dtype=kwargs.get("dtype")).view(cls)
        return result

    def __array_finalize__(self, obj: Any) -> None:
        """Give views and slices the attributes of a fresh, untracked leaf."""
        if obj is None:
            return
        self.src: tuple[Tensor, ...] = ()  # type: ignore[no-redef]
        self.backward_fn: GradOp | None = None  # type: ignore[no-redef]
        self.op_ctx: dict[str, Any] = {}  # type: ignore[no-redef]
        self.requires_grad: bool = False  # type: ignore[no-redef]
        self.grad: xp.ndarray | None = None  # type: ignore[no-redef]
        self.keep_grad: bool = getattr(obj, "keep_grad", False)  # type: ignore[no-redef]

    def __hash__(self) -> int:
        """Identity-based hash, graph nodes are tracked in sets."""
        return id(self)

    def is_leaf(self) -> bool:
        """Whether this Tensor was created directly rather than computed from others."""
        return len(self.src) == 0

    def detach(self, *, in_place: bool = False) -> Tensor:
        """Cut this Tensor out of its computation graph.

        Args:
            in_place (bool): If `True`, drop the graph references of this very
                Tensor (its gradient is dropped too unless `keep_grad` is set).
                If `False`, return an untracked copy and leave the graph intact.
                Defaults to False.

        Returns:
            Tensor: `self` when `in_place`, otherwise the detached copy.
        """
        if in_place:
            self.src = ()
            self.backward_fn = None
            self.op_ctx = {}
            if not self.keep_grad:
                self.grad = None
            return self
        return Tensor(xp.array(self, copy=True), requires_grad=False)

    def backward(self, grad_out: Any = None) -> None:
        """Backpropagate from this Tensor through its computation graph.

        Args:
            grad_out (Any): Gradient of some downstream quantity with respect
                to this Tensor. May be omitted for single-element Tensors,
                in which case it defaults to one.
        """
        _run_backward(self, grad_out)

    def __array_ufunc__(
        self,
        ufunc: xp.ufunc,
        method: str,
        *inputs: Any,
        **kwargs: Any,
    ) -> Any:
        logger.debug(
            '__array_ufunc__: ufunc="%s" method="%s" kwargs="%s"',
            ufunc.__name__,
            method,
            kwargs,
        )

        arrays = tuple(_to_array(x) for x in inputs)
        kwargs = {k: _to_array(v) for k, v in kwargs.items()}

        result = getattr(ufunc, method)(*arrays, **kwargs)

        src = tuple(_to_tensor(i) for i in inputs)
        if not is_global_grad_mode_enabled() or not any(s.requires_grad for s in src):
            return Tensor(result, requires_grad=False)

        creator_op = normalize_grad_op_name(name=ufunc.__name__, is_reduce=method == "reduce")

        return Tensor(
            result,
            src=src,
            creator_op=creator_op,
            op_ctx=kwargs,
            requires_grad=any(elem.requires_grad for elem in src),
        )

    def __array_function__(
        self,
        func: Any,
        types: Iterable[type],
        args: Iterable[Any],
        kwargs: Mapping[str, Any],
    ) -> Any:
        logger.debug(
            '__array_function__: func="%s" kwargs="%s"',
            func.__name__,
            kwargs,
        )

        arrays = tuple(_to_array(x) for x in args)
        plain_kwargs = {k: _to_array(v) for k, v in kwargs.items()}

        result = func(*arrays, **plain_kwargs)

        src = tuple(_to_tensor(a) for a in args)
        if not is_global_grad_mode_enabled() or not any(s.requires_grad for s in src):
            return Tensor(result, requires_grad=False)

        return Tensor(
            result,
            src=src,
            creator_op=func.__name__,
            op_ctx=plain_kwargs,
            requires_grad=True,
        )


class Parameter(Tensor):
    """A float Tensor owned by a Function and updated by an optimizer.

    Parameters always require a gradient and keep it after `backward`,
    so gradients can be inspected or accumulated before an optimizer step.
    """

    def __init__(
        self,
        data: Any = None,  # noqa: ARG002 -> consumed by __new__
        **kwargs: Any,  # noqa: ARG002 -> consumed by __new__
    ) -> None:
        super().__init__(
            src=None,
            creator_op=None,
            op_ctx=None,
            requires_grad=True,
            keep_grad=True,
        )
        # parameters stay trainable even when created under no_grad
        self.requires_grad = True

    def __new__(cls, data: Iterable[Any], **kwargs: Any) -> Self:
        result: Self = Tensor.__new__(cls, data=data, **kwargs)
        # integer parameters have no infinitesimal steps, so no gradient
        if not xp.issubdtype(result.dtype, xp.floating):
            raise ValueError(f"Parameter must have float type, found {result.dtype}.")
        return result


def tensor(
    data: Any,
    *,
    dtype: Any = None,
    requires_grad: bool = False,
    keep_grad: bool = False,
) -> Tensor:
    """Factory function to create a Tensor.

    Args:
        data (Any): The array data (scalar, nested list, array, ...). Always copied.
        dtype (Any): The data type. Defaults to None, meaning it is
            inferred from `data`.
        requires_grad (bool): Whether to track gradients. Defaults to False.
        keep_grad (bool): Whether to retain the gradient after backward even
            if the Tensor is not a leaf. Defaults to False.

    Returns:
        Tensor: The created Tensor.
    """
    result: Tensor = xp.array(_to_array(data), dtype=dtype).view(Tensor)
    result.requires_grad = is_global_grad_mode_enabled() and requires_grad
    result.keep_grad = keep_grad
    return result


def apply_op(
    name: str,
    forward: Callable[..., Any],
    *inputs: Any,
    **op_ctx: Any,
) -> Tensor:
    """Run a custom forward function and record it in the computation graph.

    This is the extension point for operations the array module cannot
    dispatch itself, e.g. anything computed by scipy. `forward` works on plain
    arrays; the backward pass is the grad op registered under `name`, called
    with `op_ctx` as keyword arguments.

    Args:
        name (str): Name the backward function is registered under.
        forward (Callable[..., Any]): Forward implementation on plain arrays.
        *inputs (Any): Operands, Tensors or array-likes (treated as constants).
        **op_ctx (Any): Extra keyword arguments for `forward`, saved for backward.

    Raises:
        ValueError: If no grad op is registered under `name` and a graph is
            being recorded.

    Returns:
        Tensor: The result, connected to `inputs` when grad mode is enabled.
    """
    result = forward(*(_to_array(x) for x in inputs), **op_ctx)

    if not is_global_grad_mode_enabled():
        return Tensor(result, requires_grad=False)

    src = tuple(_to_tensor(x) for x in inputs)
    logger.debug(f'Recording custom op "{name}" on {len(src)} inputs')

    return Tensor(
        result,
        src=src,
        creator_op=name,
        op_ctx=op_ctx,
        requires_grad=any(elem.requires_grad for elem in src),
    )


__all__ = [
    "Parameter",
    "Tensor",
    "apply_op",
    "tensor",
]
