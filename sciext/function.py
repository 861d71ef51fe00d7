"""Custom operations exposed as differentiable functions and layers.

`magnitude_rfft2` and `correlate2d` wrap the scipy-backed forward passes
with `apply_op`, so the grad ops registered in `sciext.spectral` and
`sciext.correlation` run during `backward`. `MagnitudeFFT` and
`Correlate2d` are the same operations packaged as callable Functions.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import TYPE_CHECKING, Any

from . import correlation, spectral
from .backend import xp
from .tensor import Parameter, Tensor, apply_op
from .utils import traverse_attrs

if TYPE_CHECKING:
    from collections.abc import ValuesView


logger = logging.getLogger(__name__)


def magnitude_rfft2(x: Any) -> Tensor:
    """Differentiable `abs(rfft2(x))` of a 2D matrix, see `sciext.spectral`."""
    return apply_op("magnitude_rfft2", spectral.forward, x)


def correlate2d(x: Any, kernel: Any, bias: Any) -> Tensor:
    """Differentiable valid cross-correlation plus bias, see `sciext.correlation`.

    Args:
        x (Any): Input matrix of shape `(H, W)`.
        kernel (Any): Filter of shape `(kH, kW)`.
        bias (Any): Single-element bias.

    Returns:
        Tensor: Output of shape `(H - kH + 1, W - kW + 1)`.
    """
    return apply_op("correlate2d", correlation.forward, x, kernel, bias)


class Function(ABC):
    """Abstract Base Class (ABC) for all differentiable functions and layers.

    Parameters and nested Functions are discovered through instance
    attributes, including those stored in lists, tuples and dicts.
    """

    @abstractmethod
    def __call__(self, x: Tensor, **kwargs: Any) -> Any:
        """Forward pass.

        Args:
            x (Tensor): Input
            **kwargs (Any): Additional input.

        Returns:
            Any: Some transformed output.
        """

    def get_parameters(self) -> OrderedDict[str, Parameter]:
        """Recursively collect all Parameters from this Function and nested children.

        Returns:
            OrderedDict[str, Parameter]: Parameters keyed by their path,
                e.g. "filter", "layers[1].bias".
        """
        result: OrderedDict[str, Parameter] = OrderedDict()

        def collect_param(path: str, param: Parameter) -> None:
            result[path] = param

        traverse_attrs(
            self,
            target_type=Parameter,
            on_target=collect_param,
            recurse_into=Function,
        )
        return result

    @property
    def parameters(self) -> ValuesView[Parameter]:
        """A view over the parameters of the function."""
        return self.get_parameters().values()

    @property
    def requires_grad(self) -> bool:
        """`True` if **all** parameters of the function require a gradient."""
        return all(param.requires_grad for param in self.parameters)

    @requires_grad.setter
    def requires_grad(self, value: bool) -> None:
        """Freeze (`False`) or unfreeze (`True`) all parameters of the function."""
        for param in self.parameters:
            param.requires_grad = value


class MagnitudeFFT(Function):
    """Parameter-free layer computing `abs(rfft2(x))`.

    Its gradient is the inverse FFT of the upstream gradient rather than
    the exact derivative, see `sciext.spectral`.
    """

    def __call__(self, x: Tensor) -> Tensor:  # type: ignore[override]
        """Forward pass.

        Args:
            x (Tensor): Real input of shape `(H, W)`.

        Returns:
            Tensor: Spectrum magnitude of shape `(H, W // 2 + 1)`.
        """
        return magnitude_rfft2(x)


class Correlate2d(Function):
    """Cross-correlation layer with a learnable filter and a scalar bias.

    Args:
        filter_height (int): Number of filter rows.
        filter_width (int): Number of filter columns.
        dtype (Any): Data type of the parameters. Defaults to float32.
        rng (Any): A `Generator` of the array backend used to initialize the
            parameters. Defaults to a fresh, unseeded one.
    """

    def __init__(
        self,
        filter_height: int,
        filter_width: int,
        *,
        dtype: Any = xp.float32,
        rng: Any = None,
    ) -> None:
        if filter_height < 1 or filter_width < 1:
            raise ValueError(
                f"Filter dimensions must be positive, found ({filter_height}, {filter_width})."
            )
        rng = rng if rng is not None else xp.random.default_rng()
        self.filter = Parameter(rng.standard_normal((filter_height, filter_width)).astype(dtype))
        self.bias = Parameter(rng.standard_normal((1, 1)).astype(dtype))
        logger.debug(f"Created Correlate2d layer with filter shape {self.filter.shape}")

    def __call__(self, x: Tensor) -> Tensor:  # type: ignore[override]
        """Forward pass.

        Args:
            x (Tensor): Input of shape `(H, W)`, at least as large as the filter.

        Returns:
            Tensor: Output of shape `(H - kH + 1, W - kW + 1)`.
        """
        return correlate2d(x, self.filter, self.bias)


__all__ = [
    "Correlate2d",
    "Function",
    "MagnitudeFFT",
    "correlate2d",
    "magnitude_rfft2",
]
