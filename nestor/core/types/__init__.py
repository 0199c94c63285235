"""
Common type definitions used throughout the framework.
"""
from .tree import Branch, Leaf, Tree, TreeKey, TreePath

__all__ = [
    "Branch",
    "Leaf",
    "Tree",
    "TreeKey",
    "TreePath"
]
