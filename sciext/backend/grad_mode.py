"""Global switch deciding whether operations record a computation graph."""

import logging
from collections.abc import Callable
from functools import wraps
from types import TracebackType
from typing import ParamSpec, Self, TypeVar

P = ParamSpec("P")
T = TypeVar("T")

logger = logging.getLogger(__name__)


_GRAD_MODE_ENABLED: bool = True


class no_grad:  # noqa: N801
    """Context manager that stops graph recording inside its block.

    The previous mode is restored on exit, so blocks can be nested.
    """

    def __enter__(self) -> Self:
        global _GRAD_MODE_ENABLED
        self.prev = _GRAD_MODE_ENABLED
        _GRAD_MODE_ENABLED = False
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        global _GRAD_MODE_ENABLED
        _GRAD_MODE_ENABLED = self.prev


def set_global_grad_mode(enabled: bool) -> None:
    """Turn graph recording on or off for everything that follows.

    Args:
        enabled (bool): `True` to record operations, `False` to
            compute plain values only.
    """
    global _GRAD_MODE_ENABLED
    _GRAD_MODE_ENABLED = enabled
    logger.debug(f"Gradient tracking {'enabled' if enabled else 'disabled'}")


def is_global_grad_mode_enabled() -> bool:
    """Whether operations currently record a computation graph."""
    return _GRAD_MODE_ENABLED


def no_grad_fn(fn: Callable[P, T]) -> Callable[P, T]:
    """Decorator running `fn` inside a `no_grad` block.

    Args:
        fn (Callable[P, T]): The function that should never record a graph.

    Returns:
        Callable[P, T]: The wrapped function, same signature as `fn`.

    Example:
        >>> @no_grad_fn
        ... def predict(layer: Correlate2d, x: Tensor) -> Tensor:
        ...     return layer(x)
    """

    @wraps(fn)
    def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
        with no_grad():
            return fn(*args, **kwargs)

    return wrapper


__all__ = [
    "is_global_grad_mode_enabled",
    "no_grad",
    "no_grad_fn",
    "set_global_grad_mode",
]
