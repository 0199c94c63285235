import torch

from nestor.core.log import get_logger, log_traversal
from nestor.core.protocol import CriterionProtocol
from nestor.core.tree import InvalidShapeError, fold_tree, fold_tree_pair, map_tree_pair
from nestor.core.types import Branch, Tree, TreeKey, TreePath

from .config import NestedCriterionConfig

ScalarLoss = torch.Tensor | float


def _reject_empty_branch(path: TreePath, children: dict[TreeKey, None]):
    if not children:
        raise InvalidShapeError(Branch(), path, reason="Cannot average a loss over an empty branch")


def _mean_loss(path: TreePath, children: dict[TreeKey, ScalarLoss]) -> ScalarLoss:
    return sum(children.values()) / len(children)


def _mean_divisor(tree: Tree, path: TreePath) -> int:
    # product of the child counts of every Branch above the leaf at ``path``
    divisor = 1
    node = tree
    for key in path:
        divisor *= len(node)
        node = node[key]
    return divisor


class NestedCriterionAdapter:
    """
    Evaluates a leaf-level loss over two identically shaped nested trees.

    Every Branch averages the losses of its immediate children with equal weight, so
    the loss magnitude does not depend on the branching factor at any level. A child
    that is itself a Branch contributes its own average, independent of how many
    leaves lie below it.

    The backward pass mirrors this: a leaf below Branches of sizes ``n1, ..., nk``
    receives the criterion gradient divided by ``n1 * ... * nk``, which is exactly
    the gradient of the nested mean. Each leaf gradient is divided once.
    """
    def __init__(self, criterion: CriterionProtocol, config: NestedCriterionConfig | None = None):
        """
        Constructs a NestedCriterionAdapter object.

        Args:
            criterion: The leaf-level loss to wrap.
            config: Depth bound settings. Defaults are used when omitted.

        Raises:
            TypeError: If ``criterion`` does not implement the criterion interface.
        """

        if not isinstance(criterion, CriterionProtocol):
            raise TypeError(f"Expected an object with forward and backward, got {type(criterion).__name__}")

        if config is None:
            config = NestedCriterionConfig()

        self._criterion = criterion
        self._config = config

        self.output: ScalarLoss | None = None
        self.grad_input: Tree | None = None

        get_logger().debug(f"Wrapped {type(criterion).__name__} for nested inputs (max_depth={config.max_depth})")

    @property
    def criterion(self) -> CriterionProtocol:
        return self._criterion

    @property
    def config(self) -> NestedCriterionConfig:
        return self._config

    @property
    def max_depth(self) -> int:
        return self._config.max_depth

    def _check_no_empty_branches(self, input_tree: Tree):
        fold_tree(lambda path, value: None, _reject_empty_branch, input_tree, self.max_depth)

    def forward(self, input_tree: Tree, target_tree: Tree) -> ScalarLoss:
        """
        Computes the nested mean loss.

        Args:
            input_tree: The predictions.
            target_tree: The expected values, shaped like ``input_tree``.

        Returns:
            The loss at the root: the criterion's own loss for a single Leaf, otherwise
            the unweighted mean over the root's children.

        Raises:
            DepthExceededError: If the trees are nested deeper than ``max_depth``.
            InvalidShapeError: If either tree is malformed or contains an empty Branch.
            ShapeMismatchError: If the trees do not match key for key.
        """

        def _leaf_loss(path: TreePath, x: torch.Tensor, target: torch.Tensor) -> ScalarLoss:
            return self._criterion.forward(x, target)

        self._check_no_empty_branches(input_tree)
        self.output = fold_tree_pair(_leaf_loss, _mean_loss, input_tree, target_tree, self.max_depth)
        log_traversal("forward", input_tree, self.max_depth)
        return self.output

    __call__ = forward

    def backward(self, input_tree: Tree, target_tree: Tree) -> Tree:
        """
        Computes the gradient of the nested mean loss with respect to the predictions.

        Args:
            input_tree: The predictions.
            target_tree: The expected values, shaped like ``input_tree``.

        Returns:
            A gradient tree shaped like ``input_tree``.

        Raises:
            DepthExceededError: If the trees are nested deeper than ``max_depth``.
            InvalidShapeError: If either tree is malformed or contains an empty Branch.
            ShapeMismatchError: If the trees do not match key for key.
        """

        def _leaf_grad(path: TreePath, x: torch.Tensor, target: torch.Tensor) -> torch.Tensor:
            grad = self._criterion.backward(x, target)
            divisor = _mean_divisor(input_tree, path)
            return grad if divisor == 1 else grad / divisor

        self._check_no_empty_branches(input_tree)
        self.grad_input = map_tree_pair(_leaf_grad, input_tree, target_tree, self.max_depth)
        log_traversal("backward", input_tree, self.max_depth)
        return self.grad_input

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._criterion!r}, max_depth={self.max_depth})"
