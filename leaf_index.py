from __future__ import annotations

import numpy as np

from errors import DimensionMismatchError
from tree_builder import InternalNode, LeafNode, TreeNode


def index_leaves(root: TreeNode) -> list[LeafNode]:
    """Assign pre-order (left first) indices to the leaves under ``root``.

    The returned list is the canonical leaf order: ``leaves[i].index == i``.
    """
    leaves: list[LeafNode] = []
    stack = [root]
    while stack:
        node = stack.pop()
        if isinstance(node, InternalNode):
            stack.append(node.right)
            stack.append(node.left)
            continue

        node.index = len(leaves)
        leaves.append(node)
    return leaves


def leaf_descriptor_matrix(leaves: list[LeafNode], descriptor_dim: int) -> np.ndarray:
    """Row ``i`` is the descriptor of leaf ``i``."""
    data = np.zeros((len(leaves), descriptor_dim), dtype=np.float64)
    for i, leaf in enumerate(leaves):
        data[i] = leaf.descriptor
    return data


def assign_leaf_descriptors(
    leaves: list[LeafNode],
    data: np.ndarray,
    descriptor_dim: int,
) -> None:
    data = np.asarray(data, dtype=np.float64)
    if data.ndim != 2:
        raise DimensionMismatchError("leaf descriptors must be a 2D matrix")
    if data.shape[0] != len(leaves):
        raise DimensionMismatchError(
            f"got {data.shape[0]} descriptor rows for {len(leaves)} leaves"
        )
    if data.shape[1] != descriptor_dim:
        raise DimensionMismatchError(
            f"got descriptors of length {data.shape[1]}, expected {descriptor_dim}"
        )

    for i, leaf in enumerate(leaves):
        leaf.descriptor = data[i].copy()
