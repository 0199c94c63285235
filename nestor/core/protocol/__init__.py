"""Package providing protocol definitions for the leaf-level computations wrapped by nested adapters."""

from .operator import (
    ClearableProtocol,
    CriterionProtocol,
    MovableProtocol,
    OperatorProtocol,
    ResettableProtocol,
)

__all__ = [
    "ClearableProtocol",
    "CriterionProtocol",
    "MovableProtocol",
    "OperatorProtocol",
    "ResettableProtocol",
]
