import dataclasses
import types
from collections.abc import Hashable, Iterable, Iterator, Mapping
from typing import Any, TypeAlias

import torch
import torch.utils._pytree as pytree  # noqa: PLC2701

TreeKey: TypeAlias = Hashable
"""
Identifier of a child inside a Branch. In practice an integer index or a string name.
"""

TreePath: TypeAlias = tuple[TreeKey, ...]
"""
Sequence of keys leading from the root of a tree to one of its nodes. The root itself is ``()``.
"""


@dataclasses.dataclass(frozen=True, slots=True, eq=False)
class Leaf:
    """
    A tree node holding one opaque tensor value.

    Attributes:
        value: The tensor stored at this position of the tree.
    """

    value: torch.Tensor


@dataclasses.dataclass(frozen=True, slots=True, init=False, eq=False)
class Branch:
    """
    A tree node holding an ordered, read-only mapping from key to child tree.

    Children are iterated in insertion order. This order is the only order used
    by traversals, so two trees built with the same keys in the same order are
    always walked identically.

    Attributes:
        children: The child nodes keyed by their identifiers.
    """

    children: Mapping[TreeKey, "Tree"]

    def __init__(self, children: Mapping[TreeKey, "Tree"] | None = None):
        """
        Constructs a Branch object.

        Args:
            children: Mapping from key to child node. It is copied, so later changes
                to the passed mapping do not affect the branch.
        """

        object.__setattr__(self, "children", types.MappingProxyType(dict(children or {})))

    def __len__(self) -> int:
        return len(self.children)

    def __iter__(self) -> Iterator[TreeKey]:
        return iter(self.children)

    def __getitem__(self, key: TreeKey) -> "Tree":
        return self.children[key]

    def __contains__(self, key: object) -> bool:
        return key in self.children

    def keys(self):
        return self.children.keys()

    def items(self):
        return self.children.items()


Tree: TypeAlias = Leaf | Branch
"""
A recursive structure of tensors: either a single Leaf or a Branch of further trees.
"""


def _leaf_flatten(leaf: Leaf) -> tuple[list[Any], None]:
    return [leaf.value], None


def _leaf_flatten_with_keys(leaf: Leaf) -> tuple[list[tuple[pytree.KeyEntry, Any]], None]:
    return [(pytree.GetAttrKey("value"), leaf.value)], None


def _leaf_unflatten(values: Iterable[Any], context: None) -> Leaf:
    (value,) = values
    return Leaf(value)


def _branch_flatten(branch: Branch) -> tuple[list[Any], list[TreeKey]]:
    return list(branch.children.values()), list(branch.children.keys())


def _branch_flatten_with_keys(branch: Branch) -> tuple[list[tuple[pytree.KeyEntry, Any]], list[TreeKey]]:
    return (
        [(pytree.MappingKey(key), child) for key, child in branch.children.items()],
        list(branch.children.keys())
    )


def _branch_unflatten(values: Iterable[Any], context: list[TreeKey]) -> Branch:
    return Branch(dict(zip(context, values, strict=True)))


# tensors are the pytree leaves; Leaf and Branch are container nodes
pytree.register_pytree_node(
    Leaf,
    _leaf_flatten,
    _leaf_unflatten,
    serialized_type_name="nestor.Leaf",
    flatten_with_keys_fn=_leaf_flatten_with_keys
)
pytree.register_pytree_node(
    Branch,
    _branch_flatten,
    _branch_unflatten,
    serialized_type_name="nestor.Branch",
    flatten_with_keys_fn=_branch_flatten_with_keys
)
