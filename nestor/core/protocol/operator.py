from typing import Any, Protocol, runtime_checkable

import torch


@runtime_checkable
class OperatorProtocol(Protocol):
    """
    Protocol defining an interface for a unary, differentiable leaf computation.

    Implementations may keep internal state, such as accumulated parameter gradients,
    which persists across calls until the owner resets it.
    """

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        """
        Computes the output for a single input tensor.

        Args:
            x: The input tensor.

        Returns:
            The output tensor.
        """

    def backward(self, x: torch.Tensor, grad_output: torch.Tensor) -> torch.Tensor:
        """
        Computes the gradient with respect to the input.

        Args:
            x: The input tensor the matching forward call received.
            grad_output: Gradient with respect to the forward output.

        Returns:
            Gradient with respect to ``x``.
        """

    def accumulate_parameters(self, x: torch.Tensor, grad_output: torch.Tensor, scale: float):
        """
        Accumulates parameter gradients for one input.

        Args:
            x: The input tensor the matching forward call received.
            grad_output: Gradient with respect to the forward output.
            scale: Factor applied to the gradients before accumulation.
        """


@runtime_checkable
class CriterionProtocol(Protocol):
    """
    Protocol defining an interface for a binary loss computation.
    """

    def forward(self, input: torch.Tensor, target: torch.Tensor) -> torch.Tensor | float:  # noqa: A002
        """
        Computes a scalar loss.

        Args:
            input: The prediction.
            target: The expected value.

        Returns:
            A scalar: a Python number or a 0-dim tensor.
        """

    def backward(self, input: torch.Tensor, target: torch.Tensor) -> torch.Tensor:  # noqa: A002
        """
        Computes the gradient of the loss with respect to the prediction.

        Args:
            input: The prediction.
            target: The expected value.

        Returns:
            A tensor shaped like ``input``.
        """


@runtime_checkable
class ResettableProtocol(Protocol):
    """Optional hook for computations that can re-initialize their parameters."""

    def reset(self, seed: int | None = None):
        ...


@runtime_checkable
class MovableProtocol(Protocol):
    """Optional hook for computations that can be cast to another dtype or device."""

    def to(self, *args: Any, **kwargs: Any) -> Any:
        ...


@runtime_checkable
class ClearableProtocol(Protocol):
    """Optional hook for computations that hold intermediate buffers or accumulated state."""

    def clear_state(self) -> Any:
        ...
