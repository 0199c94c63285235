from pydantic import BaseModel, ConfigDict, Field

from nestor.core.tree import DEFAULT_MAX_DEPTH

from .aggregation import AggregationMode


class NestedOperatorConfig(BaseModel):
    """
    Configuration for a nested operator adapter.

    Attributes:
        max_depth: The deepest Branch level a node may sit at. The root is at depth 0.
        aggregation: How outputs are assembled from the per-leaf results.
    """

    model_config = ConfigDict(frozen=True)

    max_depth: int = Field(default=DEFAULT_MAX_DEPTH, ge=0)
    aggregation: AggregationMode = AggregationMode.preserve


class NestedCriterionConfig(BaseModel):
    """
    Configuration for a nested criterion adapter.

    Attributes:
        max_depth: The deepest Branch level a node may sit at. The root is at depth 0.
    """

    model_config = ConfigDict(frozen=True)

    max_depth: int = Field(default=DEFAULT_MAX_DEPTH, ge=0)
