"""Reverse-mode traversal of a recorded computation graph."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from .backend import no_grad, xp
from .errors import ShapeError

if TYPE_CHECKING:
    from .tensor import Tensor


logger = logging.getLogger(__name__)


def toposort(root: Tensor) -> list[Tensor]:
    """Order the graph below `root` so every node comes after its sources.

    Args:
        root (Tensor): The starting point of the graph. Its neighbors are
            found through the `src` attribute.

    Raises:
        ValueError: If the graph, with the starting point
            given by `root`, is not a DAG.

    Returns:
        list[Tensor]: The ordered nodes, `root` last.
    """
    ordered_nodes: list[Tensor] = []
    currently_visiting: set[Tensor] = set()
    done: set[Tensor] = set()

    stack: list[tuple[Tensor, bool]] = [(root, False)]
    while stack:
        node, children_done = stack.pop()
        if node in done:
            continue

        if children_done:
            ordered_nodes.append(node)
            currently_visiting.discard(node)
            done.add(node)
            continue

        stack.append((node, True))
        currently_visiting.add(node)
        for neighbor in reversed(node.src):
            if neighbor in done:
                continue
            if neighbor in currently_visiting:
                raise ValueError("Cycle in computation graph detected, but only DAG allowed!")
            stack.append((neighbor, False))

    return ordered_nodes


def _seed_gradient(root: Tensor, grad_out: Any) -> xp.ndarray:
    if grad_out is None:
        if root.size != 1:
            raise ValueError(
                "grad_out can only be omitted for single-element Tensors, "
                f"found shape {root.shape}."
            )
        return xp.ones(root.shape, dtype=root.dtype)

    seed = xp.asarray(grad_out)
    if seed.shape != root.shape:
        raise ShapeError(
            f"Gradient seed of shape {seed.shape} does not match the "
            f"shape {root.shape} of the Tensor it is propagated from."
        )
    return seed


def backward(root: Tensor, grad_out: Any = None) -> None:
    """Accumulate gradients of `root` into every Tensor it was computed from.

    Leaves (and Tensors with `keep_grad=True`) keep their accumulated `grad`
    afterwards. Intermediate results lose it, and the graph below `root` is
    cut, so each recorded graph can be backpropagated once.

    Args:
        root (Tensor): The Tensor to differentiate.
        grad_out (Any): Gradient of a downstream quantity with respect to
            `root`. Defaults to one, which is only allowed for single-element
            Tensors.

    Raises:
        ValueError: If `grad_out` is omitted for a multi-element `root`, or
            a node in the graph has no backward function.
        ShapeError: If `grad_out` does not have the shape of `root`.
    """
    seed = _seed_gradient(root, grad_out)

    node_order = toposort(root)
    retains_grad = {node: node.is_leaf() or node.keep_grad for node in node_order}

    # intermediate results start from zero, so "grad is None" means unreached
    for node in node_order:
        if not retains_grad[node]:
            node.grad = None

    root.grad = seed if root.grad is None else root.grad + seed

    with no_grad():
        for node in reversed(node_order):
            compute_grad = tuple(src.requires_grad for src in node.src)
            if node.grad is None or node.is_leaf() or not any(compute_grad):
                continue

            if node.backward_fn is None:
                raise ValueError(
                    f'"backward_fn" for node "{id(node)}" in computation graph is "None"!'
                )

            logger.debug(f'Calling backward function: "{node.backward_fn.__name__}"')

            src_grads = node.backward_fn(
                *node.src,
                compute_grad=compute_grad,
                grad_out=node.grad,
                **node.op_ctx,
            )

            for src, src_grad in zip(node.src, src_grads, strict=True):
                if src_grad is None:
                    continue
                src_grad = xp.asarray(src_grad)
                assert src.shape == src_grad.shape, (
                    f'"{node.backward_fn.__name__}" returned a gradient of shape '
                    f"{src_grad.shape} for an input of shape {src.shape}"
                )
                src.grad = src_grad if src.grad is None else src.grad + src_grad

    for node in node_order:
        grad = node.grad if retains_grad[node] else None
        node.detach(in_place=True)
        node.grad = grad


__all__ = [
    "backward",
    "toposort",
]
