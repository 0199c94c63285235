from typing import Any

import torch

from nestor.core.log import get_logger, log_traversal
from nestor.core.protocol import ClearableProtocol, MovableProtocol, OperatorProtocol, ResettableProtocol
from nestor.core.tree import map_tree, map_tree_pair, visit_tree_pair
from nestor.core.types import Tree, TreePath

from .aggregation import AggregationMode, check_aggregation_supported
from .config import NestedOperatorConfig


class NestedOperatorAdapter:
    """
    Applies a leaf-level operator to every tensor of a nested tree.

    The adapter owns exactly one operator and reuses it for every leaf, so parameters
    are shared across the whole tree and parameter gradients from all leaves accumulate
    into the same operator state.

    Every pass walks the tree depth-first in key order. Each call validates the
    complete structure first: a tree that is too deep or malformed is rejected
    before the operator is invoked at all.
    """

    def __init__(self, operator: OperatorProtocol, config: NestedOperatorConfig | None = None):
        """
        Constructs a NestedOperatorAdapter object.

        Args:
            operator: The leaf-level computation to wrap.
            config: Depth bound and aggregation settings. Defaults are used when omitted.

        Raises:
            TypeError: If ``operator`` does not implement the operator interface.
            NotImplementedError: If the configured aggregation mode is reserved.
        """

        if not isinstance(operator, OperatorProtocol):
            raise TypeError(
                f"Expected an object with forward, backward and accumulate_parameters, got {type(operator).__name__}"
            )

        if config is None:
            config = NestedOperatorConfig()

        check_aggregation_supported(config.aggregation)

        self._operator = operator
        self._config = config

        self.output: Tree | None = None
        self.grad_input: Tree | None = None

        get_logger().debug(
            f"Wrapped {type(operator).__name__} for nested inputs "
            f"(max_depth={config.max_depth}, aggregation={config.aggregation})"
        )

    @property
    def operator(self) -> OperatorProtocol:
        return self._operator

    @property
    def config(self) -> NestedOperatorConfig:
        return self._config

    @property
    def max_depth(self) -> int:
        return self._config.max_depth

    @property
    def aggregation(self) -> AggregationMode:
        return self._config.aggregation

    def forward(self, tree: Tree) -> Tree:
        """
        Runs the operator's forward pass on every leaf.

        Args:
            tree: The nested input.

        Returns:
            A tree of the same shape holding the transformed tensors.

        Raises:
            DepthExceededError: If the input is nested deeper than ``max_depth``.
            InvalidShapeError: If the input contains something other than Leaf and Branch nodes.
        """

        def _forward(path: TreePath, x: torch.Tensor) -> torch.Tensor:
            return self._operator.forward(x)

        self.output = map_tree(_forward, tree, self.max_depth)
        log_traversal("forward", tree, self.max_depth)
        return self.output

    __call__ = forward

    def backward(self, tree: Tree, grad_output: Tree) -> Tree:
        """
        Runs the operator's backward pass on every leaf pair.

        The caller is responsible for having run the matching forward pass when
        the wrapped operator requires it.

        Args:
            tree: The nested input the forward pass received.
            grad_output: Gradients with respect to the forward output. Must have the
                same shape as ``tree``.

        Returns:
            Gradients with respect to the input, shaped like ``tree``.

        Raises:
            DepthExceededError: If the trees are nested deeper than ``max_depth``.
            InvalidShapeError: If either tree is malformed.
            ShapeMismatchError: If the gradient tree does not match the input tree.
        """

        def _backward(path: TreePath, x: torch.Tensor, grad: torch.Tensor) -> torch.Tensor:
            return self._operator.backward(x, grad)

        self.grad_input = map_tree_pair(_backward, tree, grad_output, self.max_depth)
        log_traversal("backward", tree, self.max_depth)
        return self.grad_input

    def accumulate_parameters(self, tree: Tree, grad_output: Tree, scale: float = 1.0):
        """
        Accumulates the operator's parameter gradients once for every leaf pair.

        Args:
            tree: The nested input the forward pass received.
            grad_output: Gradients with respect to the forward output, shaped like ``tree``.
            scale: Factor passed unchanged to every leaf-level accumulation.

        Raises:
            DepthExceededError: If the trees are nested deeper than ``max_depth``.
            InvalidShapeError: If either tree is malformed.
            ShapeMismatchError: If the gradient tree does not match the input tree.
        """

        def _accumulate(path: TreePath, x: torch.Tensor, grad: torch.Tensor):
            self._operator.accumulate_parameters(x, grad, scale)

        visit_tree_pair(_accumulate, tree, grad_output, self.max_depth)
        log_traversal("accumulate_parameters", tree, self.max_depth)

    def reset(self, seed: int | None = None):
        """
        Re-initializes the wrapped operator if it supports it.

        Args:
            seed: Passed unchanged to the operator's ``reset``.
        """

        if isinstance(self._operator, ResettableProtocol):
            self._operator.reset(seed)

    def to(self, *args: Any, **kwargs: Any) -> "NestedOperatorAdapter":
        """
        Casts the wrapped operator to another dtype or device if it supports it.

        Returns:
            This adapter.
        """

        if isinstance(self._operator, MovableProtocol):
            self._operator.to(*args, **kwargs)
        return self

    def clear_state(self) -> "NestedOperatorAdapter":
        """
        Drops the stored output and input gradient and clears the wrapped operator's state if it supports it.

        Returns:
            This adapter.
        """

        if isinstance(self._operator, ClearableProtocol):
            self._operator.clear_state()
        self.output = None
        self.grad_input = None
        return self

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}({self._operator!r}, "
            f"max_depth={self.max_depth}, aggregation={self.aggregation})"
        )
