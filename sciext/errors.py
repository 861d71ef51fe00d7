"""Exceptions raised by SciExt."""


class ShapeError(ValueError):
    """An array does not have the shape an operation requires."""


class GradcheckError(AssertionError):
    """Analytic and finite difference gradients disagree."""


__all__ = [
    "GradcheckError",
    "ShapeError",
]
