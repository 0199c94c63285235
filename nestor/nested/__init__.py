"""
Adapters that lift leaf-level operators and criteria to nested tensor trees.
"""

from .aggregation import AggregationMode
from .config import DEFAULT_MAX_DEPTH, NestedCriterionConfig, NestedOperatorConfig
from .criterion import NestedCriterionAdapter
from .operator import NestedOperatorAdapter

__all__ = [
    "DEFAULT_MAX_DEPTH",
    "AggregationMode",
    "NestedCriterionAdapter",
    "NestedCriterionConfig",
    "NestedOperatorAdapter",
    "NestedOperatorConfig",
]
