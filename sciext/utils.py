from __future__ import annotations

from typing import TYPE_CHECKING, Any, TypeVar

if TYPE_CHECKING:
    from collections.abc import Callable

T = TypeVar("T")


def traverse_attrs(
    root: object,
    target_type: type[T],
    on_target: Callable[[str, T], None],
    *,
    recurse_into: type | tuple[type, ...] = (),
) -> None:
    """Visit every instance of **target_type** reachable from the attributes of **root**.

    Walks `vars(root)` and descends into lists, tuples, dicts and objects
    whose type is listed in **recurse_into**. Paths are reported in a
    dotted notation, e.g. "layers[0].filter" or "blocks{conv}.bias".

    Args:
        root: The object whose attributes to traverse.
        target_type: The type to search for.
        on_target: Callback invoked for every match as `on_target(path, item)`.
        recurse_into: Type(s) whose `vars()` should be traversed as well.

    Raises:
        TypeError: If a target or recurse-into instance is stored in a `set`,
            which has no stable iteration order.
    """
    _recurse_into: tuple[type, ...] = (
        (recurse_into,) if isinstance(recurse_into, type) else recurse_into
    )
    _forbidden: tuple[type, ...] = (target_type, *_recurse_into)

    def _handle(item: Any, path: str) -> None:
        if isinstance(item, target_type):
            on_target(path, item)
        elif isinstance(item, _recurse_into):
            traverse_attrs(
                item,
                target_type,
                lambda p, t: on_target(f"{path}.{p}", t),
                recurse_into=_recurse_into,
            )
        elif isinstance(item, set | frozenset):
            if any(isinstance(elem, _forbidden) for elem in item):
                raise TypeError(
                    f'Found "{target_type.__name__}" inside a set at "{path}". '
                    "Sets have no stable ordering, use a list instead."
                )
        elif isinstance(item, list | tuple):
            for i, elem in enumerate(item):
                _handle(elem, f"{path}[{i}]")
        elif isinstance(item, dict):
            for k, v in item.items():
                _handle(v, f"{path}{{{k}}}")

    for attr_name, attr_value in vars(root).items():
        _handle(attr_value, attr_name)
