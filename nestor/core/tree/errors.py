from typing import Any

from nestor.core.types import TreePath


def format_path(path: TreePath) -> str:
    """
    Renders a tree path for use in error messages.

    Args:
        path: Keys leading from the root to a node.

    Returns:
        ``<root>`` for the empty path, otherwise the keys joined with dots.
    """

    if not path:
        return "<root>"
    return ".".join(str(key) for key in path)


class TreeError(ValueError):
    """Base class for all structural errors raised while walking trees."""


class DepthExceededError(TreeError):
    """
    Raised when a traversal goes deeper than the configured maximum depth.

    Attributes:
        configured: The maximum depth the traversal was configured with.
        reached: The depth of the offending node.
        path: Path to the offending node.
    """

    def __init__(self, configured: int, reached: int, path: TreePath):
        super().__init__(
            f"Nesting depth {reached} exceeds maximum depth {configured} at {format_path(path)}"
        )
        self.configured = configured
        self.reached = reached
        self.path = path


class InvalidShapeError(TreeError, TypeError):
    """
    Raised when a tree node is neither a tensor Leaf nor a Branch.

    Attributes:
        node: The offending object.
        path: Path to the offending object.
    """

    def __init__(self, node: Any, path: TreePath, reason: str | None = None):
        message = reason or f"Expected a Leaf holding a tensor or a Branch, got {type(node).__name__}"
        super().__init__(f"{message} at {format_path(path)}")
        self.node = node
        self.path = path


class ShapeMismatchError(TreeError):
    """
    Raised when two trees walked in lockstep disagree in structure.

    Attributes:
        path: Path to the first node at which the trees disagree.
        detail: Description of the disagreement.
    """

    def __init__(self, path: TreePath, detail: str):
        super().__init__(f"Tree structures do not match at {format_path(path)}: {detail}")
        self.path = path
        self.detail = detail
