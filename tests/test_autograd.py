"""Tests for graph recording and reverse traversal."""

from __future__ import annotations

import numpy as np
import pytest
from sciext import ShapeError, Tensor, apply_op, correlation, no_grad, tensor, xp
from sciext.autograd import toposort


def test_toposort_puts_sources_first() -> None:
    x = tensor([1.0, 2.0], requires_grad=True)
    y = x * 2.0
    z = y + x
    order = toposort(z)
    assert order[-1] is z
    # list.index would compare tracked Tensors elementwise
    ids = [id(node) for node in order]
    assert ids.index(id(x)) < ids.index(id(y)) < ids.index(id(z))


def test_toposort_detects_cycles() -> None:
    a = tensor([1.0], requires_grad=True)
    b = tensor([2.0], requires_grad=True)
    a.src = (b,)
    b.src = (a,)
    with pytest.raises(ValueError, match="Cycle"):
        toposort(a)


def test_operations_record_graph() -> None:
    x = tensor([[1.0, 2.0]], requires_grad=True)
    y = x * 3.0
    assert isinstance(y, Tensor)
    assert y.requires_grad
    assert y.src[0] is x
    assert y.backward_fn is not None


def test_constants_do_not_record_graph() -> None:
    x = tensor([1.0, 2.0])
    y = x * 3.0
    assert not y.requires_grad
    assert y.is_leaf()


def test_no_grad_disables_recording() -> None:
    x = tensor([1.0, 2.0], requires_grad=True)
    with no_grad():
        y = x * 3.0
    assert not y.requires_grad
    assert y.is_leaf()


def test_scalar_backward_defaults_to_unit_seed() -> None:
    x = tensor([1.0, -2.0, 3.0], requires_grad=True)
    loss = xp.sum(xp.square(x))
    loss.backward()
    assert np.allclose(np.asarray(x.grad), [2.0, -4.0, 6.0])


def test_reused_input_accumulates_gradients() -> None:
    x = tensor([1.5, -0.5], requires_grad=True)
    y = x * x + x
    y.backward(np.ones(2))
    assert np.allclose(np.asarray(x.grad), 2 * np.array([1.5, -0.5]) + 1)


def test_leaf_gradients_accumulate_across_calls() -> None:
    x = tensor([1.0, 2.0], requires_grad=True)
    (x * 2.0).backward(np.ones(2))
    (x * 3.0).backward(np.ones(2))
    assert np.allclose(np.asarray(x.grad), [5.0, 5.0])


def test_broadcast_gradients_are_reduced() -> None:
    x = tensor(np.ones((3, 4)), requires_grad=True)
    b = tensor(np.zeros((1, 4)), requires_grad=True)
    xp.sum(x + b).backward()
    assert np.asarray(b.grad).shape == (1, 4)
    assert np.allclose(np.asarray(b.grad), 3.0)


def test_mean_gradient() -> None:
    x = tensor(np.arange(6, dtype=np.float64).reshape(2, 3), requires_grad=True)
    xp.mean(x).backward()
    assert np.allclose(np.asarray(x.grad), 1 / 6)


def test_intermediate_gradients_are_dropped_and_graph_is_cut() -> None:
    x = tensor([1.0, 2.0], requires_grad=True)
    y = x * 2.0
    z = xp.sum(y)
    z.backward()
    assert y.grad is None
    assert y.is_leaf()
    assert z.is_leaf()
    assert x.grad is not None


def test_keep_grad_retains_intermediate_gradient() -> None:
    x = tensor([1.0, 2.0], requires_grad=True)
    y = x * 2.0
    y.keep_grad = True
    xp.sum(y).backward()
    assert np.allclose(np.asarray(y.grad), [1.0, 1.0])


def test_non_scalar_backward_needs_seed() -> None:
    y = tensor([1.0, 2.0], requires_grad=True) * 2.0
    with pytest.raises(ValueError, match="grad_out"):
        y.backward()


def test_seed_shape_must_match() -> None:
    y = tensor([1.0, 2.0], requires_grad=True) * 2.0
    with pytest.raises(ShapeError, match="Gradient seed"):
        y.backward(np.ones(3))


def test_unregistered_op_cannot_be_recorded() -> None:
    x = tensor([1.0, 2.0], requires_grad=True)
    with pytest.raises(ValueError, match="not supported"):
        apply_op("not_a_registered_op", lambda a: a * 2, x)


def test_unregistered_op_runs_without_graph() -> None:
    x = tensor([1.0, 2.0], requires_grad=True)
    with no_grad():
        y = apply_op("not_a_registered_op", lambda a: a * 2, x)
    assert np.allclose(np.asarray(y), [2.0, 4.0])
    assert not y.requires_grad


def test_apply_op_connects_custom_backward() -> None:
    rng = np.random.default_rng(11)
    x = tensor(rng.standard_normal((4, 4)), requires_grad=True)
    kernel = tensor(rng.standard_normal((2, 2)), requires_grad=True)
    bias = tensor([0.5], requires_grad=True)

    out = apply_op("correlate2d", correlation.forward, x, kernel, bias)
    assert out.shape == (3, 3)
    assert all(s is t for s, t in zip(out.src, (x, kernel, bias), strict=True))

    seed = rng.standard_normal((3, 3))
    out.backward(seed)

    grad_x, grad_kernel, grad_bias = correlation.backward(seed, np.asarray(x), np.asarray(kernel))
    assert np.allclose(np.asarray(x.grad), grad_x)
    assert np.allclose(np.asarray(kernel.grad), grad_kernel)
    assert np.asarray(bias.grad).shape == (1,)
    assert np.allclose(np.asarray(bias.grad), grad_bias)


def test_detach_copy_leaves_graph_intact() -> None:
    x = tensor([1.0, 2.0], requires_grad=True)
    y = x * 2.0
    detached = y.detach()
    assert detached.is_leaf()
    assert not detached.requires_grad
    assert not y.is_leaf()
