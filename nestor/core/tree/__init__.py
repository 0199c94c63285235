"""
Traversal primitives and structural helpers for nested tensor trees.
"""

from .errors import DepthExceededError, InvalidShapeError, ShapeMismatchError, TreeError, format_path
from .ops import (
    TreeSpec,
    from_pytree,
    is_nested,
    to_pytree,
    tree_clone,
    tree_depth,
    tree_flatten,
    tree_from_paths,
    tree_leaves,
    tree_leaves_with_path,
    tree_map,
    tree_structure_equal,
    tree_unflatten,
)
from .traverse import (
    DEFAULT_MAX_DEPTH,
    fold_tree,
    fold_tree_pair,
    map_tree,
    map_tree_pair,
    validate_tree,
    validate_tree_pair,
    visit_tree_pair,
)

__all__ = [
    "DEFAULT_MAX_DEPTH",
    "DepthExceededError",
    "InvalidShapeError",
    "ShapeMismatchError",
    "TreeError",
    "TreeSpec",
    "fold_tree",
    "fold_tree_pair",
    "format_path",
    "from_pytree",
    "is_nested",
    "map_tree",
    "map_tree_pair",
    "to_pytree",
    "tree_clone",
    "tree_depth",
    "tree_flatten",
    "tree_from_paths",
    "tree_leaves",
    "tree_leaves_with_path",
    "tree_map",
    "tree_structure_equal",
    "tree_unflatten",
    "validate_tree",
    "validate_tree_pair",
    "visit_tree_pair",
]
