from __future__ import annotations

from dataclasses import dataclass, field
from heapq import heappop, heappush
import itertools

import numpy as np

from errors import InvalidInputError
from pixel_feature import PixelSample, compute_feature
from tree_builder import InternalNode, LeafNode, TreeNode


@dataclass(order=True)
class BacktrackBranch:
    """Deferred subtree with a lower bound on its feature-margin distance.

    ``order`` breaks ties between equal bounds so heap order stays deterministic.
    """

    bound: float
    order: int
    node: TreeNode = field(compare=False)


@dataclass
class SearchResult:
    label: np.ndarray
    distance: float
    leaf_index: int
    check_count: int


def descriptor_distance(a: np.ndarray, b: np.ndarray) -> float:
    """Squared Euclidean distance, the FLANN L2 convention."""
    diff = a - b
    return float(np.dot(diff, diff))


def backtracking_search(
    root: TreeNode,
    query: PixelSample,
    image: np.ndarray,
    max_check: int,
    depth_adaptation: str = "inverse_depth",
    out_of_bounds: str = "clamp",
) -> SearchResult:
    """Best-first search for the leaf whose descriptor is closest to ``query``.

    Each popped branch is followed to a single leaf; at every internal node
    the branch not taken is deferred with its accumulated squared margin.
    At most ``max_check`` leaves are compared.
    """
    if max_check < 1:
        raise InvalidInputError("max_check must be >= 1")
    if query.descriptor is None:
        raise InvalidInputError("query sample has no descriptor")
    vec = np.asarray(query.descriptor, dtype=np.float64).ravel()

    first_leaf = root
    while isinstance(first_leaf, InternalNode):
        first_leaf = first_leaf.left
    if vec.size != first_leaf.descriptor.size:
        raise InvalidInputError(
            f"query descriptor has length {vec.size}, "
            f"leaves store {first_leaf.descriptor.size}"
        )

    counter = itertools.count()
    heap: list[BacktrackBranch] = [BacktrackBranch(0.0, next(counter), root)]

    best_leaf: LeafNode | None = None
    best_dist = float("inf")
    check_count = 0

    while heap and check_count < max_check:
        branch = heappop(heap)
        node = branch.node
        bound = branch.bound

        while isinstance(node, InternalNode):
            value = compute_feature(
                image,
                query,
                node.split,
                depth_adaptation=depth_adaptation,
                out_of_bounds=out_of_bounds,
            )
            margin = value - node.split.threshold
            if margin < 0.0:
                taken, other = node.left, node.right
            else:
                taken, other = node.right, node.left
            heappush(heap, BacktrackBranch(bound + margin * margin, next(counter), other))
            node = taken

        check_count += 1
        dist = descriptor_distance(node.descriptor, vec)
        if best_leaf is None or dist < best_dist:
            best_leaf = node
            best_dist = dist

    assert best_leaf is not None
    return SearchResult(
        label=best_leaf.label.copy(),
        distance=best_dist,
        leaf_index=best_leaf.index,
        check_count=check_count,
    )
