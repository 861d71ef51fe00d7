import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable
from itertools import chain

from .autograd import backward
from .backend import no_grad_fn
from .ops import zeros_like
from .tensor import Parameter, Tensor

logger = logging.getLogger(__name__)


class Optimizer(ABC):
    """Abstract base class for all optimizers."""

    def __init__(self, params: Iterable[Parameter], *, lr: float = 1e-3):
        params = list(params)
        if len(params) == 0:
            raise ValueError("Must pass at least one parameter to optimize.")
        for param in params:
            if not isinstance(param, Parameter):
                raise TypeError("All parameters passed to the optimizer must be of type Parameter.")
            if not param.keep_grad:
                raise ValueError(
                    "Attribute keep_grad must always be True for all parameters "
                    "to avoid clearing gradients during the backward pass."
                )
            if len(param.src) > 0:
                raise ValueError(
                    "Parameters should always be leaves and therefore "
                    "should not have any parents/src from which they were created."
                )

        self.params = params
        self.lr = lr

    def backward(self, loss: Tensor) -> None:
        """Backpropagate a scalar `loss` into the parameters.

        Args:
            loss (Tensor): The loss with respect to which gradients are computed.

        Raises:
            ValueError: If the loss is not a single-element Tensor.
        """
        if not isinstance(loss, Tensor) or loss.size != 1:
            raise ValueError("Expected 'loss' argument to be a scalar Tensor.")
        backward(loss)

    def zero_grad(self, additional_tensors: Iterable[Tensor] | None = None) -> None:
        """Clear the gradients of all optimized parameters (and `additional_tensors`)."""
        for param in chain(self.params, additional_tensors or []):
            param.grad = None

    @abstractmethod
    def step(self) -> None:
        """Update the parameters from their gradients.

        Must be implemented by the specific optimizer.
        """


class SGD(Optimizer):
    """Stochastic gradient descent optimizer."""

    def __init__(
        self,
        params: Iterable[Parameter],
        *,
        lr: float = 1e-3,
        friction: float = 1,
        weight_decay: float = 0,
    ):
        """The stochastic gradient descent optimizer.

        **Standard SGD:** `friction=1, weight_decay=0`
        **SGD w/ momentum:** `friction<1, weight_decay=0`
        **SGDW:** `friction<1, weight_decay>0`

        Args:
            params (Iterable[Parameter]): Parameters to optimize.
            lr (float, optional): The learning rate. Defaults to 1e-3.
            friction (float, optional): Share of the momentum lost every step.
                `1` disables momentum. Defaults to 1.
            weight_decay (float, optional): Decoupled L2 weight decay rate.
                Defaults to `0`.
        """
        super().__init__(params=params, lr=lr)

        if not 0 <= friction <= 1:
            raise ValueError(f"friction must be in [0, 1], got {friction}")

        self.m: list[Tensor] | None = (
            [zeros_like(p, requires_grad=False) for p in self.params] if friction < 1 else None
        )
        self.friction = friction
        self.weight_decay = weight_decay

    @no_grad_fn
    def step(self) -> None:
        """Performs a single gradient descent step.

        Raises:
            ValueError: If a parameter has no gradient.
        """
        for idx, param in enumerate(self.params):
            if param.grad is None:
                raise ValueError("Gradient of parameter must not be None in step function")

            if self.m is not None:
                self.m[idx] = (1 - self.friction) * self.m[idx] + param.grad
                grad = self.m[idx]
            else:
                grad = param.grad

            # [...] keeps the Parameter object, only its buffer changes
            param[...] = (1 - self.lr * self.weight_decay) * param - self.lr * grad

        logger.debug(f"SGD step on {len(self.params)} parameters")


__all__ = [
    "SGD",
    "Optimizer",
]
