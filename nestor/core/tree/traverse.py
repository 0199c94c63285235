from collections.abc import Callable, Mapping
from typing import Any, TypeVar

import torch

from nestor.core.types import Branch, Leaf, Tree, TreeKey, TreePath

from .errors import DepthExceededError, InvalidShapeError, ShapeMismatchError, format_path

DEFAULT_MAX_DEPTH = 10

TResult = TypeVar("TResult")

LeafFn = Callable[..., TResult]
BranchFn = Callable[[TreePath, dict[TreeKey, TResult]], TResult]


def _check_node(node: Any, path: TreePath, depth: int, max_depth: int):
    if depth > max_depth:
        raise DepthExceededError(configured=max_depth, reached=depth, path=path)

    if isinstance(node, Leaf):
        if not isinstance(node.value, torch.Tensor):
            raise InvalidShapeError(
                node.value, path,
                reason=f"Leaf must hold a tensor, got {type(node.value).__name__}"
            )
    elif not isinstance(node, Branch):
        raise InvalidShapeError(node, path)


def _validate(node: Any, path: TreePath, depth: int, max_depth: int):
    _check_node(node, path, depth, max_depth)

    if isinstance(node, Branch):
        for key, child in node.items():
            _validate(child, (*path, key), depth + 1, max_depth)


def _validate_pair(first: Any, second: Any, path: TreePath, depth: int, max_depth: int):
    _check_node(first, path, depth, max_depth)
    _check_node(second, path, depth, max_depth)

    if isinstance(first, Leaf):
        if not isinstance(second, Leaf):
            raise ShapeMismatchError(path, "first tree has a leaf where second tree has a branch")
        return

    if not isinstance(second, Branch):
        raise ShapeMismatchError(path, "first tree has a branch where second tree has a leaf")

    for key in first:
        if key not in second:
            raise ShapeMismatchError(path, f"key {key!r} is missing from the second tree")
    for key in second:
        if key not in first:
            raise ShapeMismatchError(path, f"key {key!r} is missing from the first tree")

    for key, child in first.items():
        _validate_pair(child, second[key], (*path, key), depth + 1, max_depth)


def validate_tree(tree: Tree, max_depth: int):
    """
    Checks that a tree is well-formed and no deeper than allowed.

    Depth is 0 at the root and grows by one per Branch level.

    Args:
        tree: The tree to check.
        max_depth: The largest depth any node may have.

    Raises:
        DepthExceededError: If some node lies deeper than ``max_depth``.
        InvalidShapeError: If some node is neither a tensor Leaf nor a Branch.
    """

    _validate(tree, (), 0, max_depth)


def validate_tree_pair(first: Tree, second: Tree, max_depth: int):
    """
    Checks that two trees are well-formed, no deeper than allowed, and of identical shape.

    Args:
        first: The tree whose key order drives the walk.
        second: The tree that must match ``first`` key for key.
        max_depth: The largest depth any node may have.

    Raises:
        DepthExceededError: If some node lies deeper than ``max_depth``.
        InvalidShapeError: If some node is neither a tensor Leaf nor a Branch.
        ShapeMismatchError: If the trees disagree in keys or nesting.
    """

    _validate_pair(first, second, (), 0, max_depth)


def _call_leaf(fn: LeafFn, path: TreePath, *values: torch.Tensor) -> Any:
    try:
        return fn(path, *values)
    except Exception as e:
        e.add_note(f"Raised while processing tree leaf at {format_path(path)}")
        raise


def _fold(
        leaf_fn: LeafFn,
        branch_fn: BranchFn,
        nodes: tuple[Tree, ...],
        path: TreePath
) -> Any:
    head = nodes[0]

    if isinstance(head, Leaf):
        return _call_leaf(leaf_fn, path, *(node.value for node in nodes))

    results = {
        key: _fold(
            leaf_fn,
            branch_fn,
            tuple(node[key] for node in nodes),
            (*path, key)
        )
        for key in head
    }
    return branch_fn(path, results)


def fold_tree(leaf_fn: LeafFn, branch_fn: BranchFn, tree: Tree, max_depth: int) -> Any:
    """
    Reduces a tree bottom-up.

    The whole tree is validated before ``leaf_fn`` is called for the first time, so a
    malformed tree never causes partial work.

    Args:
        leaf_fn: Called as ``leaf_fn(path, value)`` for every Leaf.
        branch_fn: Called as ``branch_fn(path, child_results)`` for every Branch, where
            ``child_results`` maps each key to the already reduced child, in key order.
        tree: The tree to reduce.
        max_depth: The largest depth any node may have.

    Returns:
        The result of the reduction at the root.
    """

    validate_tree(tree, max_depth)
    return _fold(leaf_fn, branch_fn, (tree,), ())


def fold_tree_pair(
        leaf_fn: LeafFn,
        branch_fn: BranchFn,
        first: Tree,
        second: Tree,
        max_depth: int
) -> Any:
    """
    Reduces two identically shaped trees bottom-up, in lockstep.

    The walk follows the key order of ``first``. Both trees are validated against each
    other before ``leaf_fn`` is called for the first time.

    Args:
        leaf_fn: Called as ``leaf_fn(path, first_value, second_value)`` for every Leaf pair.
        branch_fn: Called as ``branch_fn(path, child_results)`` for every Branch pair.
        first: The tree whose key order drives the walk.
        second: The tree that must match ``first`` key for key.
        max_depth: The largest depth any node may have.

    Returns:
        The result of the reduction at the root.
    """

    validate_tree_pair(first, second, max_depth)
    return _fold(leaf_fn, branch_fn, (first, second), ())


def _rebuild_branch(path: TreePath, children: Mapping[TreeKey, Tree]) -> Tree:
    return Branch(children)


def map_tree(fn: Callable[[TreePath, torch.Tensor], torch.Tensor], tree: Tree, max_depth: int) -> Tree:
    """
    Applies a function to every leaf tensor and rebuilds the tree with the same keys and order.

    Args:
        fn: Called as ``fn(path, value)``; returns the new leaf tensor.
        tree: The input tree.
        max_depth: The largest depth any node may have.

    Returns:
        A new tree of the same shape.
    """

    return fold_tree(
        lambda path, value: Leaf(fn(path, value)),
        _rebuild_branch,
        tree,
        max_depth
    )


def map_tree_pair(
        fn: Callable[[TreePath, torch.Tensor, torch.Tensor], torch.Tensor],
        first: Tree,
        second: Tree,
        max_depth: int
) -> Tree:
    """
    Applies a function to every leaf pair of two identically shaped trees.

    Args:
        fn: Called as ``fn(path, first_value, second_value)``; returns the new leaf tensor.
        first: The tree whose key order drives the walk and whose shape the result takes.
        second: The tree that must match ``first`` key for key.
        max_depth: The largest depth any node may have.

    Returns:
        A new tree of the same shape as ``first``.
    """

    return fold_tree_pair(
        lambda path, a, b: Leaf(fn(path, a, b)),
        _rebuild_branch,
        first,
        second,
        max_depth
    )


def visit_tree_pair(
        fn: Callable[[TreePath, torch.Tensor, torch.Tensor], None],
        first: Tree,
        second: Tree,
        max_depth: int
):
    """
    Calls a function once for every leaf pair of two identically shaped trees.

    Args:
        fn: Called as ``fn(path, first_value, second_value)``; its result is discarded.
        first: The tree whose key order drives the walk.
        second: The tree that must match ``first`` key for key.
        max_depth: The largest depth any node may have.
    """

    fold_tree_pair(
        fn,
        lambda path, children: None,
        first,
        second,
        max_depth
    )
