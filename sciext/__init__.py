"""SciExt: custom autograd operations backed by NumPy and SciPy.

A small reverse-mode autodiff engine plus two extension examples: a
parameter-free spectral function and a cross-correlation layer with a
hand-written gradient.
"""

from importlib.metadata import PackageNotFoundError, version

from . import correlation, spectral
from .backend import (
    BACKEND,
    is_global_grad_mode_enabled,
    no_grad,
    no_grad_fn,
    register_grad_op,
    set_global_grad_mode,
    signal,
    xp,
)
from .errors import GradcheckError, ShapeError
from .function import (
    Correlate2d,
    Function,
    MagnitudeFFT,
    correlate2d,
    magnitude_rfft2,
)
from .gradcheck import gradcheck, numerical_grad
from .ops import ones_like, randn, zeros_like
from .optimizer import SGD, Optimizer
from .tensor import Parameter, Tensor, apply_op, tensor

try:
    __version__ = version("sciext")
except PackageNotFoundError:
    __version__ = "0.0.0.dev0"  # Fallback for uninstalled package

__all__ = [
    "BACKEND",
    "SGD",
    "Correlate2d",
    "Function",
    "GradcheckError",
    "MagnitudeFFT",
    "Optimizer",
    "Parameter",
    "ShapeError",
    "Tensor",
    "__version__",
    "apply_op",
    "correlate2d",
    "correlation",
    "gradcheck",
    "is_global_grad_mode_enabled",
    "magnitude_rfft2",
    "no_grad",
    "no_grad_fn",
    "numerical_grad",
    "ones_like",
    "randn",
    "register_grad_op",
    "set_global_grad_mode",
    "signal",
    "spectral",
    "tensor",
    "xp",
    "zeros_like",
]
