from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Union

import numpy as np

from errors import InvalidInputError
from pixel_feature import DEPTH_ADAPTATIONS, OUT_OF_BOUNDS_POLICIES, SampleSet, SplitDescriptor
from split_search import RandomSplitSearch, SplitSearchParams, SplitSearchResult


logger = logging.getLogger(__name__)


@dataclass
class TreeParameter:
    max_depth: int = 15
    min_leaf_samples: int = 50
    candidate_feature_count: int = 20
    candidate_threshold_count: int = 10
    descriptor_dim: int = 64

    max_pixel_offset: float = 131.0
    n_channels: int = 3
    depth_adaptation: str = "inverse_depth"  # one of: inverse_depth, none
    out_of_bounds: str = "clamp"  # one of: clamp, raise
    min_score: float = 1e-12

    random_state: int = 0

    def __post_init__(self) -> None:
        if self.max_depth < 0:
            raise InvalidInputError("max_depth must be >= 0")
        if self.min_leaf_samples <= 0:
            raise InvalidInputError("min_leaf_samples must be positive")
        if self.candidate_feature_count <= 0:
            raise InvalidInputError("candidate_feature_count must be positive")
        if self.candidate_threshold_count <= 0:
            raise InvalidInputError("candidate_threshold_count must be positive")
        if self.descriptor_dim <= 0:
            raise InvalidInputError("descriptor_dim must be positive")
        if self.depth_adaptation not in DEPTH_ADAPTATIONS:
            raise InvalidInputError("depth_adaptation must be one of: inverse_depth, none")
        if self.out_of_bounds not in OUT_OF_BOUNDS_POLICIES:
            raise InvalidInputError("out_of_bounds must be one of: clamp, raise")

    def split_search_params(self) -> SplitSearchParams:
        return SplitSearchParams(
            candidate_feature_count=self.candidate_feature_count,
            candidate_threshold_count=self.candidate_threshold_count,
            max_pixel_offset=self.max_pixel_offset,
            n_channels=self.n_channels,
            min_samples=self.min_leaf_samples,
            min_score=self.min_score,
            out_of_bounds=self.out_of_bounds,
        )


@dataclass(eq=False)
class LeafNode:
    label: np.ndarray
    descriptor: np.ndarray
    n_samples: int
    depth: int
    label_std: np.ndarray | None = None
    rows: np.ndarray | None = field(default=None, repr=False)
    index: int = -1


@dataclass(eq=False)
class InternalNode:
    split: SplitDescriptor
    left: TreeNode
    right: TreeNode
    n_samples: int
    depth: int
    score: float = 0.0
    rows: np.ndarray | None = field(default=None, repr=False)


TreeNode = Union[InternalNode, LeafNode]


@dataclass
class TreeBuildMetrics:
    nodes_visited: int = 0
    nodes_split: int = 0
    leaves: int = 0
    max_depth_seen: int = 0
    split_search_time_sec: float = 0.0
    node_metrics: list[dict] = field(default_factory=list)


def make_leaf(
    sample_set: SampleSet,
    labels: np.ndarray,
    rows: np.ndarray,
    depth: int = 0,
) -> LeafNode:
    """Leaf summarising the samples at ``rows``.

    The label is the mean 3D coordinate; the descriptor is the mean local
    descriptor, used only to rank leaves during backtracking.
    """
    rows = np.asarray(rows, dtype=np.int64)
    if rows.size == 0:
        raise InvalidInputError("cannot make a leaf from an empty index set")

    leaf_labels = labels[rows]
    return LeafNode(
        label=leaf_labels.mean(axis=0),
        descriptor=sample_set.descriptors[rows].mean(axis=0),
        n_samples=int(rows.size),
        depth=depth,
        label_std=leaf_labels.std(axis=0),
        rows=rows,
    )


class TreeBuilder:
    def __init__(
        self,
        sample_set: SampleSet,
        labels: np.ndarray,
        params: TreeParameter,
        rng: np.random.Generator | None = None,
    ) -> None:
        self.sample_set = sample_set
        self.labels = labels
        self.params = params
        self.rng = rng if rng is not None else np.random.default_rng(params.random_state)

        self.split_params = params.split_search_params()
        self.metrics = TreeBuildMetrics()

    def _is_splittable(self, rows: np.ndarray, depth: int) -> bool:
        # max_depth counts tree levels; the root is level 0
        if depth + 1 >= self.params.max_depth:
            return False
        if rows.size < self.params.min_leaf_samples:
            return False
        return True

    def _find_best_split(self, rows: np.ndarray, depth: int) -> SplitSearchResult:
        search = RandomSplitSearch(
            sample_set=self.sample_set,
            labels=self.labels,
            node_rows=rows,
            params=self.split_params,
            rng=self.rng,
            depth=depth,
        )
        result = search.search()

        self.metrics.split_search_time_sec += result.metrics.time_spent_sec
        self.metrics.node_metrics.append(
            {
                "depth": depth,
                "node_size": int(rows.size),
                "candidates": result.metrics.candidates_drawn,
                "valid_partitions": result.metrics.valid_partitions,
                "score": result.score,
            }
        )
        return result

    def _leaf(self, rows: np.ndarray, depth: int) -> LeafNode:
        self.metrics.leaves += 1
        logger.debug(f"Leaf at depth {depth} with {rows.size} samples")
        return make_leaf(self.sample_set, self.labels, rows, depth)

    def _grow(self, rows: np.ndarray, depth: int) -> TreeNode:
        self.metrics.nodes_visited += 1
        self.metrics.max_depth_seen = max(self.metrics.max_depth_seen, depth)

        if not self._is_splittable(rows, depth):
            return self._leaf(rows, depth)

        split_result = self._find_best_split(rows, depth)
        if split_result.split is None:
            return self._leaf(rows, depth)

        self.metrics.nodes_split += 1
        logger.debug(
            f"Split at depth {depth}: {rows.size} -> "
            f"{split_result.left_rows.size}/{split_result.right_rows.size}, "
            f"score {split_result.score:.6g}"
        )

        left = self._grow(split_result.left_rows, depth + 1)
        right = self._grow(split_result.right_rows, depth + 1)
        return InternalNode(
            split=split_result.split,
            left=left,
            right=right,
            n_samples=int(rows.size),
            depth=depth,
            score=split_result.score,
            rows=rows,
        )

    def build_tree(self, rows: np.ndarray | None = None) -> TreeNode:
        if rows is None:
            rows = np.arange(len(self.sample_set), dtype=np.int64)
        else:
            rows = np.asarray(rows, dtype=np.int64)

        if rows.size == 0:
            raise InvalidInputError("indices must not be empty")
        return self._grow(rows, 0)
