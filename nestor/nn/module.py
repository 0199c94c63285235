import dataclasses

import torch
from torch import nn
from torch.utils.weak import WeakIdKeyDictionary


@dataclasses.dataclass(frozen=True, slots=True)
class _RecordedForward:
    input: torch.Tensor
    output: torch.Tensor


class ModuleOperator:
    """
    Exposes a torch module as a leaf-level operator.

    ``forward`` records the autograd graph of every call, keyed by the identity of the
    input tensor. ``backward`` and ``accumulate_parameters`` differentiate that
    recorded graph instead of running the module again, so stochastic layers such as
    Dropout see one mask per leaf and stateful layers such as BatchNorm update their
    running statistics once per forward.

    Recorded graphs are released when their input tensor is garbage collected, or by
    ``clear_state``, ``reset`` and ``to``. Forwarding the same tensor object twice keeps
    only the latest graph.
    """

    def __init__(self, module: nn.Module):
        """
        Constructs a ModuleOperator object.

        Args:
            module: The module to expose.
        """

        self._module = module
        self._recorded = WeakIdKeyDictionary()

    @property
    def module(self) -> nn.Module:
        return self._module

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        x_graph = x.detach().requires_grad_(x.is_floating_point() or x.is_complex())

        with torch.enable_grad():
            output = self._module(x_graph)

        self._recorded[x] = _RecordedForward(input=x_graph, output=output)
        return output.detach()

    def _recorded_forward(self, x: torch.Tensor) -> _RecordedForward:
        recorded = self._recorded.get(x)
        if recorded is None:
            raise RuntimeError(
                "No recorded forward pass for this input; call forward on the same tensor before backward"
            )
        return recorded

    def backward(self, x: torch.Tensor, grad_output: torch.Tensor) -> torch.Tensor:
        recorded = self._recorded_forward(x)
        if not recorded.input.requires_grad or not recorded.output.requires_grad:
            return torch.zeros_like(x)

        (grad_input,) = torch.autograd.grad(
            recorded.output, recorded.input, grad_output, retain_graph=True, allow_unused=True
        )

        if grad_input is None:
            return torch.zeros_like(x)
        return grad_input

    def accumulate_parameters(self, x: torch.Tensor, grad_output: torch.Tensor, scale: float = 1.0):
        recorded = self._recorded_forward(x)
        params = [p for p in self._module.parameters() if p.requires_grad]
        if not params or not recorded.output.requires_grad:
            return

        grads = torch.autograd.grad(
            recorded.output, params, grad_output * scale, retain_graph=True, allow_unused=True
        )

        for param, grad in zip(params, grads, strict=True):
            if grad is None:
                continue
            if param.grad is None:
                param.grad = grad.detach().clone()
            else:
                param.grad.add_(grad)

    def reset(self, seed: int | None = None):
        """
        Re-initializes every submodule that defines ``reset_parameters`` and drops recorded forward passes.

        Args:
            seed: If given, the torch random generator is seeded with it first.
        """

        if seed is not None:
            torch.manual_seed(seed)

        self._recorded.clear()
        for submodule in self._module.modules():
            reset_parameters = getattr(submodule, "reset_parameters", None)
            if callable(reset_parameters):
                reset_parameters()

    def to(self, *args, **kwargs) -> "ModuleOperator":
        self._recorded.clear()
        self._module.to(*args, **kwargs)
        return self

    def clear_state(self) -> "ModuleOperator":
        """Drops recorded forward passes and accumulated parameter gradients."""

        self._recorded.clear()
        self._module.zero_grad(set_to_none=True)
        return self

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._module!r})"
