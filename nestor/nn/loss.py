import torch
from torch import nn


class LossCriterion:
    """
    Exposes a torch loss module as a leaf-level criterion.

    The loss module must reduce to a scalar (the default ``reduction="mean"`` of the
    torch losses does).
    """

    def __init__(self, loss: nn.Module):
        """
        Constructs a LossCriterion object.

        Args:
            loss: A module called as ``loss(input, target)`` that returns a scalar tensor.
        """

        self._loss = loss

    @property
    def loss(self) -> nn.Module:
        return self._loss

    def forward(self, input: torch.Tensor, target: torch.Tensor) -> torch.Tensor:  # noqa: A002
        with torch.no_grad():
            value = self._loss(input, target)

        if value.ndim != 0:
            raise ValueError(f"Loss must reduce to a scalar, got a tensor of shape {tuple(value.shape)}")
        return value

    def backward(self, input: torch.Tensor, target: torch.Tensor) -> torch.Tensor:  # noqa: A002
        x = input.detach().requires_grad_(True)

        with torch.enable_grad():
            value = self._loss(x, target)
            (grad_input,) = torch.autograd.grad(value, x)

        return grad_input

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._loss!r})"
