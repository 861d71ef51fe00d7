"""Registry-driven finite difference checks for every registered grad op.

Test configuration lives in the registry itself (GradOpSpec), so a new op,
builtin or custom, is covered as soon as it is registered with a reference
forward implementation (or is an array module function of the same name).

Note: Usually we should follow strict coding guidelines through ruff, but since this
is just testing code, we can make some exceptions. Hence the "noqa: ..." directives.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from typing import Any, cast

import numpy as np
import pytest
from sciext import no_grad, numerical_grad, tensor, xp
from sciext.backend.grad_ops import (
    _GRAD_OPS_REGISTRY,
    GradOpSpec,
    OpInputs,
    OpType,
    make_axis,
    register_grad_op,
)

INPUT_NAMES = ("x", "y", "z")


@pytest.fixture(autouse=True)
def _disable_grad_tracking() -> Iterator[None]:
    # backward functions use array ops that would otherwise record a graph
    with no_grad():
        yield


def generate_input(
    shape: tuple[int, ...],
    constraint: str | None = None,
    rng: np.random.Generator | None = None,
) -> np.ndarray:
    """Generate random input data respecting constraints.

    Args:
        shape (tuple[int, ...]): Shape of the array to generate.
        constraint (str | None): None for uniform(-2, 2), "positive" for
            uniform(0.1, 2).
        rng (np.random.Generator | None): Random number generator.

    Returns:
        np.ndarray: Random float64 array of the specified shape.
    """
    if rng is None:
        rng = np.random.default_rng()
    if constraint == "positive":
        return rng.uniform(0.1, 2.0, shape)
    return rng.uniform(-2.0, 2.0, shape)


def get_forward(spec: GradOpSpec) -> Callable[..., Any]:
    """The forward implementation to differentiate numerically."""
    if spec.reference_fn is not None:
        return spec.reference_fn
    for name in spec.forward_names:
        if hasattr(xp, name):
            return cast(Callable[..., Any], getattr(xp, name))
    raise ValueError(f"No forward implementation found for {spec.forward_names}")


def _get_unique_op_names() -> list[str]:
    """One registry key per GradOpSpec, aliases (e.g. "mul") are dropped."""
    seen_specs: set[int] = set()
    unique_names: list[str] = []
    for name, spec in _GRAD_OPS_REGISTRY.items():
        if id(spec) not in seen_specs:
            seen_specs.add(id(spec))
            unique_names.append(name)
    return unique_names


@pytest.mark.parametrize("op_name", _get_unique_op_names())
def test_grad_op(op_name: str) -> None:
    """Analytic gradients of every input match centered finite differences."""
    spec = _GRAD_OPS_REGISTRY[op_name]
    if spec.skip_test:
        pytest.skip(f"Skipped: {spec.skip_reason}")

    n_inputs = spec.op_inputs.value
    shapes = spec.input_shapes or ((3, 4),) * n_inputs
    constraints = spec.constraints or {}
    forward = get_forward(spec)

    rng = np.random.default_rng(seed=42)
    arrays = [
        generate_input(shape, constraints.get(name), rng)
        for name, shape in zip(INPUT_NAMES, shapes, strict=False)
    ]
    inputs = [tensor(a, dtype=xp.float64) for a in arrays]

    output = np.asarray(forward(*arrays))
    grad_out = rng.uniform(-1.0, 1.0, output.shape)

    analytical = spec.backward_fn(
        *inputs,
        compute_grad=(True,) * n_inputs,
        grad_out=grad_out,
    )
    assert len(analytical) == n_inputs

    for idx in range(n_inputs):
        fd_grad = numerical_grad(forward, arrays, idx, grad_out=grad_out, eps=1e-6)
        analytical_np = np.asarray(analytical[idx])
        assert analytical_np.shape == arrays[idx].shape
        assert np.allclose(analytical_np, fd_grad, rtol=1e-4, atol=1e-6), (
            f"Gradient mismatch for {op_name} w.r.t. {INPUT_NAMES[idx]}:\n"
            f"Analytical:\n{analytical_np}\n"
            f"FD:\n{fd_grad}\n"
            f"Max diff: {np.max(np.abs(analytical_np - fd_grad))}"
        )


@pytest.mark.parametrize("op_name", _get_unique_op_names())
def test_grad_op_skips_inputs_without_grad(op_name: str) -> None:
    """No gradient is computed for inputs flagged with compute_grad=False."""
    spec = _GRAD_OPS_REGISTRY[op_name]
    n_inputs = spec.op_inputs.value
    shapes = spec.input_shapes or ((3, 4),) * n_inputs
    constraints = spec.constraints or {}

    rng = np.random.default_rng(seed=0)
    inputs = [
        tensor(generate_input(shape, constraints.get(name), rng))
        for name, shape in zip(INPUT_NAMES, shapes, strict=False)
    ]
    grad_out = np.asarray(get_forward(spec)(*(np.asarray(i) for i in inputs)))

    grads = spec.backward_fn(*inputs, compute_grad=(False,) * n_inputs, grad_out=grad_out)
    assert all(g is None for g in grads)


def test_all_custom_ops_are_registered() -> None:
    assert "correlate2d" in _GRAD_OPS_REGISTRY
    assert "magnitude_rfft2" in _GRAD_OPS_REGISTRY
    assert _GRAD_OPS_REGISTRY["mul"] is _GRAD_OPS_REGISTRY["multiply"]


def test_only_ops_used_by_layers_and_losses_are_registered() -> None:
    assert set(_get_unique_op_names()) == {
        "add",
        "subtract",
        "multiply",
        "square",
        "sum",
        "mean",
        "correlate2d",
        "magnitude_rfft2",
    }


def test_skip_test_requires_reason() -> None:
    with pytest.raises(ValueError, match="skip_reason"):
        register_grad_op(op_type=OpType.ELEMENTWISE, op_inputs=OpInputs.UNARY, skip_test=True)(
            lambda *inputs, compute_grad, grad_out: (None,)  # noqa: ARG005
        )


def test_input_shapes_must_match_input_count() -> None:
    with pytest.raises(ValueError, match="input_shapes"):
        GradOpSpec(
            backward_fn=lambda *inputs, compute_grad, grad_out: (None,),  # noqa: ARG005
            op_type=OpType.ELEMENTWISE,
            op_inputs=OpInputs.BINARY,
            forward_names=("dummy",),
            input_shapes=((3, 4),),
        )


@pytest.mark.parametrize(
    ("kwargs", "expected"),
    [
        ({}, (0, 1, 2)),
        ({"axis": None}, (0, 1, 2)),
        ({"axis": 1}, (1,)),
        ({"axis": -1}, (2,)),
        ({"axis": [0, -1]}, (0, 2)),
    ],
)
def test_make_axis(kwargs: dict[str, Any], expected: tuple[int, ...]) -> None:
    assert make_axis(3, kwargs) == expected


def test_make_axis_rejects_invalid_type() -> None:
    with pytest.raises(ValueError, match="axis"):
        make_axis(2, {"axis": "rows"})
