import torch
from nestor.core.types import Branch, Leaf, Tree


class IdentityOperator:
    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return x

    def backward(self, x: torch.Tensor, grad_output: torch.Tensor) -> torch.Tensor:
        return grad_output

    def accumulate_parameters(self, x: torch.Tensor, grad_output: torch.Tensor, scale: float):
        pass


class ScaleOperator:
    """Computes ``x * factor`` and records every call it receives."""

    def __init__(self, factor: float):
        self.factor = factor
        self.forward_calls: list[torch.Tensor] = []
        self.backward_calls: list[tuple[torch.Tensor, torch.Tensor]] = []
        self.accumulate_calls: list[tuple[torch.Tensor, torch.Tensor, float]] = []

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        self.forward_calls.append(x)
        return x * self.factor

    def backward(self, x: torch.Tensor, grad_output: torch.Tensor) -> torch.Tensor:
        self.backward_calls.append((x, grad_output))
        return grad_output * self.factor

    def accumulate_parameters(self, x: torch.Tensor, grad_output: torch.Tensor, scale: float):
        self.accumulate_calls.append((x, grad_output, scale))


class HookedOperator(IdentityOperator):
    """Identity operator that also implements every optional hook."""

    def __init__(self):
        self.reset_seeds: list[int | None] = []
        self.to_calls: list[tuple] = []
        self.clear_count = 0

    def reset(self, seed: int | None = None):
        self.reset_seeds.append(seed)

    def to(self, *args, **kwargs):
        self.to_calls.append((args, kwargs))
        return self

    def clear_state(self):
        self.clear_count += 1
        return self


class ConstantGradCriterion:
    """Squared error loss whose backward pass always returns the same value."""

    def __init__(self, grad_value: float):
        self.grad_value = grad_value
        self.forward_calls = 0

    def forward(self, input: torch.Tensor, target: torch.Tensor) -> torch.Tensor:  # noqa: A002
        self.forward_calls += 1
        return ((input - target) ** 2).mean()

    def backward(self, input: torch.Tensor, target: torch.Tensor) -> torch.Tensor:  # noqa: A002
        return torch.full_like(input, self.grad_value)


def chain(depth: int, value: torch.Tensor) -> Tree:
    """Builds a single leaf nested under ``depth`` branches."""

    tree: Tree = Leaf(value)
    for _ in range(depth):
        tree = Branch({"child": tree})
    return tree


def grid(*sizes: int, fill: float | None = None, width: int = 2) -> Tree:
    """Builds a tree whose branch levels have the given sizes, with integer keys."""

    if not sizes:
        if fill is None:
            return Leaf(torch.randn(width))
        return Leaf(torch.full((width,), fill))

    return Branch({i: grid(*sizes[1:], fill=fill, width=width) for i in range(sizes[0])})
