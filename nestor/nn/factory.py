from typing import Any

from torch import nn

from nestor.nested import (
    NestedCriterionAdapter,
    NestedCriterionConfig,
    NestedOperatorAdapter,
    NestedOperatorConfig,
)

from .loss import LossCriterion
from .module import ModuleOperator


def _resolve_torch_module(name: str) -> type[nn.Module]:
    module_type = getattr(nn, name, None)
    if not isinstance(module_type, type) or not issubclass(module_type, nn.Module):
        raise ValueError(f"torch.nn.{name} does not exist or is not a module class")
    return module_type


def wrap_module(module: nn.Module, config: NestedOperatorConfig | None = None) -> NestedOperatorAdapter:
    """
    Lifts a torch module to nested inputs.

    Args:
        module: The module applied at every leaf. Its parameters are shared by all leaves.
        config: Adapter configuration.

    Returns:
        The nested operator adapter.
    """

    return NestedOperatorAdapter(ModuleOperator(module), config)


def module_from_torch(
        name: str,
        *args: Any,
        config: NestedOperatorConfig | None = None,
        **kwargs: Any
) -> NestedOperatorAdapter:
    """
    Instantiates ``torch.nn.<name>`` and lifts it to nested inputs.

    Args:
        name: Class name inside ``torch.nn``, such as ``"Linear"`` or ``"Tanh"``.
        *args: Positional arguments for the module constructor.
        config: Adapter configuration.
        **kwargs: Keyword arguments for the module constructor.

    Returns:
        The nested operator adapter.

    Raises:
        ValueError: If ``torch.nn`` has no module class with that name.
    """

    return wrap_module(_resolve_torch_module(name)(*args, **kwargs), config)


def wrap_loss(loss: nn.Module, config: NestedCriterionConfig | None = None) -> NestedCriterionAdapter:
    """
    Lifts a torch loss module to nested inputs and targets.

    Args:
        loss: The loss applied at every leaf pair.
        config: Adapter configuration.

    Returns:
        The nested criterion adapter.
    """

    return NestedCriterionAdapter(LossCriterion(loss), config)


def loss_from_torch(
        name: str,
        *args: Any,
        config: NestedCriterionConfig | None = None,
        **kwargs: Any
) -> NestedCriterionAdapter:
    """
    Instantiates the loss ``torch.nn.<name>`` and lifts it to nested inputs and targets.

    Args:
        name: Class name inside ``torch.nn``, such as ``"MSELoss"`` or ``"CrossEntropyLoss"``.
        *args: Positional arguments for the loss constructor.
        config: Adapter configuration.
        **kwargs: Keyword arguments for the loss constructor.

    Returns:
        The nested criterion adapter.

    Raises:
        ValueError: If ``torch.nn`` has no module class with that name.
    """

    return wrap_loss(_resolve_torch_module(name)(*args, **kwargs), config)
