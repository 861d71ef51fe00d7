"""Tests for the magnitude FFT forward and its surrogate backward."""

from __future__ import annotations

import numpy as np
import pytest
from sciext import ShapeError, spectral


@pytest.mark.parametrize("shape", [(8, 8), (4, 5), (1, 3), (6, 1)])
def test_forward_shape_and_values(shape: tuple[int, int]) -> None:
    x = np.random.default_rng(0).standard_normal(shape)
    out = spectral.forward(x)
    assert out.shape == (shape[0], shape[1] // 2 + 1)
    assert out.shape == spectral.spectrum_shape(shape)
    assert np.allclose(out, np.abs(np.fft.rfft2(x)))
    assert np.all(out >= 0)


@pytest.mark.parametrize("shape", [(8, 8), (4, 5), (3, 7)])
def test_backward_restores_input_shape(shape: tuple[int, int]) -> None:
    grad_out = np.random.default_rng(1).standard_normal(spectral.spectrum_shape(shape))
    grad_x = spectral.backward(grad_out, shape)
    assert grad_x.shape == shape
    assert np.allclose(grad_x, np.fft.irfft2(grad_out, s=shape))
    assert np.isrealobj(grad_x)


def test_forward_rejects_non_matrix() -> None:
    with pytest.raises(ShapeError, match="2D"):
        spectral.forward(np.ones(8))


def test_backward_rejects_mismatched_grad_out() -> None:
    with pytest.raises(ShapeError, match="Output gradient"):
        spectral.backward(np.ones((8, 8)), (8, 8))
