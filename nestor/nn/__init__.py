"""
Bridges between torch modules and the nested adapters.
"""

from .factory import loss_from_torch, module_from_torch, wrap_loss, wrap_module
from .loss import LossCriterion
from .module import ModuleOperator

__all__ = [
    "LossCriterion",
    "ModuleOperator",
    "loss_from_torch",
    "module_from_torch",
    "wrap_loss",
    "wrap_module",
]
