"""Backend for all ops in SciExt."""

from .backend import (
    BACKEND,
    BackendName,
    signal,
    xp,
)
from .grad_mode import (
    is_global_grad_mode_enabled,
    no_grad,
    no_grad_fn,
    set_global_grad_mode,
)
from .grad_ops import (
    GradOp,
    GradOpSpec,
    OpInputs,
    OpType,
    get_grad_op,
    get_grad_op_spec,
    normalize_grad_op_name,
    register_grad_op,
)

__all__ = [
    "BACKEND",
    "BackendName",
    "GradOp",
    "GradOpSpec",
    "OpInputs",
    "OpType",
    "get_grad_op",
    "get_grad_op_spec",
    "is_global_grad_mode_enabled",
    "no_grad",
    "no_grad_fn",
    "normalize_grad_op_name",
    "register_grad_op",
    "set_global_grad_mode",
    "signal",
    "xp",
]
