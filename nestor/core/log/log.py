import logging
import sys
from typing import TextIO

from nestor.core.tree import tree_depth, tree_leaves
from nestor.core.types import Tree

LOGGER_NAME = "nestor"

_HANDLER_MARKER = "_nestor_handler"


def get_logger() -> logging.Logger:
    """
    Returns the logger library code writes to. Handlers are left to the application.
    """

    return logging.getLogger(LOGGER_NAME)


def build_logger(qualifier: str, level: int = logging.INFO, stream: TextIO | None = None) -> logging.Logger:
    """
    Attaches a qualified console handler to the nestor logger.

    Every line is prefixed with the qualifier, so that output of several models or
    processes sharing one console can be told apart. Calling this again swaps the
    handler it installed before; handlers added by the application are kept.

    Args:
        qualifier: A string identifying the component or run that is logging.
        level: The logging level for both the logger and its handler.
        stream: Where to write. Defaults to the current ``sys.stdout``.

    Returns:
        The configured nestor logger.
    """

    logger = get_logger()
    logger.setLevel(level)

    for previous in [h for h in logger.handlers if getattr(h, _HANDLER_MARKER, False)]:
        logger.removeHandler(previous)

    handler = logging.StreamHandler(stream if stream is not None else sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(
        f"[{LOGGER_NAME}] [{qualifier}] %(asctime)s - %(levelname)s - %(message)s"
    ))
    setattr(handler, _HANDLER_MARKER, True)
    logger.addHandler(handler)
    return logger


def log_traversal(operation: str, tree: Tree, max_depth: int):
    """
    Writes a DEBUG summary of one adapter pass: the leaf count and depth of the tree it walked.

    The summary is only computed when DEBUG output is enabled.

    Args:
        operation: Name of the pass, such as ``"forward"``.
        tree: The tree the pass walked.
        max_depth: The depth bound the pass ran with.
    """

    logger = get_logger()
    if not logger.isEnabledFor(logging.DEBUG):
        return

    logger.debug(
        f"{operation}: {len(tree_leaves(tree, max_depth))} leaves, "
        f"depth {tree_depth(tree, max_depth)} (max_depth={max_depth})"
    )
