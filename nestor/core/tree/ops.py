from collections import OrderedDict, defaultdict
from collections.abc import Callable, Iterable, Iterator, Sequence
from typing import Any

import torch
import torch.utils._pytree as pytree  # noqa: PLC2701
from torch.utils._pytree import TreeSpec

from nestor.core.types import Branch, Leaf, Tree, TreeKey, TreePath

from .errors import InvalidShapeError, ShapeMismatchError
from .traverse import DEFAULT_MAX_DEPTH, fold_tree, validate_tree


def _is_tree_node(x: Any) -> bool:
    return isinstance(x, (Leaf, Branch))


def tree_depth(tree: Tree, max_depth: int = DEFAULT_MAX_DEPTH) -> int:
    """
    Computes how many Branch levels a tree has.

    Args:
        tree: The tree to measure.
        max_depth: The largest depth any node may have.

    Returns:
        0 for a Leaf, otherwise 1 plus the depth of the deepest child (1 for an empty Branch).
    """

    return fold_tree(
        lambda path, value: 0,
        lambda path, children: 1 + max(children.values(), default=0),
        tree,
        max_depth
    )


def tree_leaves_with_path(tree: Tree, max_depth: int = DEFAULT_MAX_DEPTH) -> list[tuple[TreePath, torch.Tensor]]:
    """
    Lists every leaf tensor together with its path, depth-first in key order.
    """

    validate_tree(tree, max_depth)
    flat, _ = pytree.tree_flatten_with_path(tree)
    return [
        (tuple(entry.key for entry in key_path if isinstance(entry, pytree.MappingKey)), value)
        for key_path, value in flat
    ]


def tree_leaves(tree: Tree, max_depth: int = DEFAULT_MAX_DEPTH) -> list[torch.Tensor]:
    """
    Flattens a tree into the list of its leaf tensors, depth-first in key order.
    """

    validate_tree(tree, max_depth)
    return pytree.tree_leaves(tree)


def tree_flatten(tree: Tree, max_depth: int = DEFAULT_MAX_DEPTH) -> tuple[list[torch.Tensor], TreeSpec]:
    """
    Splits a tree into its leaf tensors and its shape.

    Args:
        tree: The tree to split.
        max_depth: The largest depth any node may have.

    Returns:
        A tuple of the leaf tensors in traversal order and a TreeSpec that
        ``tree_unflatten`` accepts to rebuild the same tree, empty branches included.
    """

    validate_tree(tree, max_depth)
    return pytree.tree_flatten(tree)


def tree_unflatten(leaves: Sequence[torch.Tensor], spec: TreeSpec) -> Tree:
    """
    Rebuilds a tree from leaf tensors and a shape produced by ``tree_flatten``.

    Args:
        leaves: Leaf tensors in traversal order.
        spec: The shape to rebuild.

    Returns:
        The reconstructed tree.

    Raises:
        ValueError: If the number of leaves does not match the spec.
    """

    if len(leaves) != spec.num_leaves:
        raise ValueError(f"Tree spec expects {spec.num_leaves} leaves, got {len(leaves)}")

    return pytree.tree_unflatten(list(leaves), spec)


def tree_from_paths(
        items: Iterable[tuple[TreePath, torch.Tensor]],
        max_depth: int = DEFAULT_MAX_DEPTH
) -> Tree:
    """
    Rebuilds a tree from ``(path, tensor)`` pairs, such as those produced by ``tree_leaves_with_path``.

    Branches are created in the order their first descendant appears. Empty branches
    cannot be expressed as paths and are therefore never produced.

    Args:
        items: Pairs of leaf path and leaf tensor.
        max_depth: The largest depth any node of the result may have.

    Returns:
        The reconstructed tree.

    Raises:
        ShapeMismatchError: If one path is used twice, or is both a leaf and a prefix of another path.
        ValueError: If no items are given.
    """

    root: dict[TreeKey, Any] | None = None
    root_leaf: torch.Tensor | None = None
    seen_any = False

    for path, value in items:
        if root_leaf is not None or (seen_any and path == ()):
            raise ShapeMismatchError(path, "root is both a leaf and a branch")
        seen_any = True

        if path == ():
            root_leaf = value
            continue

        if root is None:
            root = {}

        node = root
        for i, key in enumerate(path[:-1]):
            child = node.setdefault(key, {})
            if not isinstance(child, dict):
                raise ShapeMismatchError(path[:i + 1], "path is both a leaf and a branch")
            node = child

        last = path[-1]
        if last in node:
            raise ShapeMismatchError(path, "path is given more than once or is also a branch")
        node[last] = Leaf(value)

    if not seen_any:
        raise ValueError("Cannot build a tree from an empty sequence of leaves")

    if root_leaf is not None:
        return Leaf(root_leaf)

    # nested dicts holding Leaf nodes
    return from_pytree(root, max_depth)


def tree_map(fn: Callable[[torch.Tensor], torch.Tensor], tree: Tree, max_depth: int = DEFAULT_MAX_DEPTH) -> Tree:
    """
    Applies a unary function to every leaf tensor and rebuilds the tree.

    Args:
        fn: The function to apply.
        tree: The input tree.
        max_depth: The largest depth any node may have.

    Returns:
        A new tree of the same shape holding ``fn(leaf)`` at each leaf.
    """

    validate_tree(tree, max_depth)
    return pytree.tree_map(fn, tree)


def tree_clone(tree: Tree, max_depth: int = DEFAULT_MAX_DEPTH) -> Tree:
    """
    Makes a structural copy of a tree with every leaf tensor cloned.
    """

    return tree_map(torch.Tensor.clone, tree, max_depth)


def tree_structure_equal(first: Tree, second: Tree, max_depth: int = DEFAULT_MAX_DEPTH) -> bool:
    """
    Checks whether two trees have the same shape, ignoring leaf contents.
    """

    return tree_flatten(first, max_depth)[1] == tree_flatten(second, max_depth)[1]


def is_nested(value: Any) -> bool:
    """
    Checks whether a value is a nested collection rather than a single tensor.

    Args:
        value: A Tree node or a plain Python structure.

    Returns:
        True for a Branch and for dicts, lists and tuples.
    """

    return isinstance(value, (Branch, dict, list, tuple))


def _container_keys(spec: TreeSpec) -> list[TreeKey] | None:
    if issubclass(spec.type, defaultdict):
        return list(spec.context[1])
    if issubclass(spec.type, (dict, OrderedDict)):
        return list(spec.context)
    if issubclass(spec.type, (list, tuple)):
        return list(range(spec.num_children))
    return None


def from_pytree(obj: Any, max_depth: int = DEFAULT_MAX_DEPTH) -> Tree:
    """
    Converts a nest of dicts, lists and tuples with tensor leaves into a Tree.

    Lists and tuples become Branches keyed by integer position. Existing Tree nodes
    are accepted as they are.

    Args:
        obj: The structure to convert.
        max_depth: The largest depth any node of the result may have.

    Returns:
        The equivalent Tree.

    Raises:
        InvalidShapeError: If some element is neither a container nor a tensor,
            or if the structure contains itself.
        DepthExceededError: If the result is nested deeper than ``max_depth``.
    """

    try:
        leaves, spec = pytree.tree_flatten(obj, is_leaf=_is_tree_node)
    except RecursionError as e:
        raise InvalidShapeError(obj, (), reason="Structure is nested without bound or contains a cycle") from e

    values: Iterator[Any] = iter(leaves)

    def _build(node_spec: TreeSpec, path: TreePath) -> Tree:
        if node_spec.is_leaf():
            value = next(values)
            if isinstance(value, torch.Tensor):
                return Leaf(value)
            if _is_tree_node(value):
                return value
            raise InvalidShapeError(value, path)

        keys = _container_keys(node_spec)
        if keys is None:
            raise InvalidShapeError(node_spec.type, path, reason=f"Unsupported container {node_spec.type.__name__}")

        return Branch({
            key: _build(child_spec, (*path, key))
            for key, child_spec in zip(keys, node_spec.children_specs, strict=True)
        })

    tree = _build(spec, ())
    validate_tree(tree, max_depth)
    return tree


def to_pytree(tree: Tree, max_depth: int = DEFAULT_MAX_DEPTH) -> Any:
    """
    Converts a Tree back into plain Python containers.

    Args:
        tree: The tree to convert.
        max_depth: The largest depth any node may have.

    Returns:
        A tensor for a Leaf; for a Branch, a list if its keys are exactly ``0..n-1``
        in order, otherwise a dict.
    """

    leaves, spec = tree_flatten(tree, max_depth)
    values = iter(leaves)

    def _build(node_spec: TreeSpec) -> Any:
        if node_spec.type is Leaf:
            return next(values)

        keys = node_spec.context
        children = [_build(child_spec) for child_spec in node_spec.children_specs]
        if children and keys == list(range(len(children))):
            return children
        return dict(zip(keys, children, strict=True))

    return _build(spec)
