from enum import StrEnum


class AggregationMode(StrEnum):
    """Enumeration of output aggregation strategies for nested operators.

    Attributes:
        preserve: The output tree keeps the exact shape of the input tree.
        flatten: Reserved. Collapsing the output into a flat sequence has no defined
            gradient redistribution rule yet.
        mean: Reserved. Averaging outputs across branches has no defined
            gradient redistribution rule yet.
    """

    preserve = "preserve"
    flatten = "flatten"
    mean = "mean"


def check_aggregation_supported(mode: AggregationMode):
    """Ensures that an aggregation mode has defined forward and backward semantics.

    Args:
        mode: The requested aggregation mode.

    Raises:
        NotImplementedError: If the mode is one of the reserved modes.
        ValueError: If the mode is unknown.
    """

    match mode:
        case AggregationMode.preserve:
            return
        case AggregationMode.flatten | AggregationMode.mean:
            raise NotImplementedError(
                f"Aggregation mode '{mode}' is reserved and not implemented - use '{AggregationMode.preserve}'"
            )
        case _:
            raise ValueError("Unknown aggregation mode")
