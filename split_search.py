from __future__ import annotations

from dataclasses import dataclass, field, replace
import time

import numpy as np

from errors import InvalidInputError
from pixel_feature import OUT_OF_BOUNDS_POLICIES, SampleSet, SplitDescriptor, compute_features


@dataclass
class SplitSearchMetrics:
    candidates_drawn: int = 0
    thresholds_evaluated: int = 0
    valid_partitions: int = 0
    time_spent_sec: float = 0.0


@dataclass
class SplitSearchResult:
    split: SplitDescriptor | None
    score: float
    left_rows: np.ndarray
    right_rows: np.ndarray
    metrics: SplitSearchMetrics = field(default_factory=SplitSearchMetrics)


@dataclass
class SplitSearchParams:
    candidate_feature_count: int = 20
    candidate_threshold_count: int = 10
    max_pixel_offset: float = 131.0
    n_channels: int = 3
    min_samples: int = 2
    min_score: float = 1e-12
    out_of_bounds: str = "clamp"

    def __post_init__(self) -> None:
        if self.candidate_feature_count <= 0:
            raise InvalidInputError("candidate_feature_count must be positive")
        if self.candidate_threshold_count <= 0:
            raise InvalidInputError("candidate_threshold_count must be positive")
        if self.max_pixel_offset <= 0.0:
            raise InvalidInputError("max_pixel_offset must be > 0")
        if self.n_channels <= 0:
            raise InvalidInputError("n_channels must be positive")
        if self.out_of_bounds not in OUT_OF_BOUNDS_POLICIES:
            raise InvalidInputError("out_of_bounds must be one of: clamp, raise")


def label_variance(labels: np.ndarray) -> float:
    """Total variance of a set of 3D labels (trace of the covariance)."""
    if labels.shape[0] == 0:
        return 0.0
    return float(np.var(labels, axis=0).sum())


class RandomSplitSearch:
    """Randomized feature and threshold search for one node.

    Every candidate draws two offsets and two channels from ``rng``, then
    ``candidate_threshold_count`` thresholds uniformly within the observed
    feature range. Partitions are scored by label variance reduction and the
    first best-scoring candidate wins.
    """

    def __init__(
        self,
        sample_set: SampleSet,
        labels: np.ndarray,
        node_rows: np.ndarray,
        params: SplitSearchParams,
        rng: np.random.Generator,
        depth: int = 0,
    ) -> None:
        self.sample_set = sample_set
        self.labels = labels
        self.node_rows = np.asarray(node_rows, dtype=np.int64)
        self.params = params
        self.rng = rng
        self.depth = depth

        self.n_node = int(self.node_rows.size)
        self.node_labels = self.labels[self.node_rows]

    def _draw_split(self) -> SplitDescriptor:
        offsets = self.rng.uniform(
            -self.params.max_pixel_offset, self.params.max_pixel_offset, size=4
        )
        channels = self.rng.integers(0, self.params.n_channels, size=2)
        return SplitDescriptor(
            offset1=(float(offsets[0]), float(offsets[1])),
            offset2=(float(offsets[2]), float(offsets[3])),
            channels=(int(channels[0]), int(channels[1])),
        )

    def _score(self, left_mask: np.ndarray, parent_variance: float) -> float:
        n_left = int(left_mask.sum())
        n_right = self.n_node - n_left

        left_var = label_variance(self.node_labels[left_mask])
        right_var = label_variance(self.node_labels[~left_mask])
        return parent_variance - (
            n_left * left_var + n_right * right_var
        ) / float(self.n_node)

    def _no_split(self, metrics: SplitSearchMetrics, start: float) -> SplitSearchResult:
        metrics.time_spent_sec = time.perf_counter() - start
        empty = np.empty(0, dtype=np.int64)
        return SplitSearchResult(None, 0.0, empty, empty, metrics)

    def search(self) -> SplitSearchResult:
        start = time.perf_counter()
        metrics = SplitSearchMetrics()

        if self.n_node < max(self.params.min_samples, 2):
            return self._no_split(metrics, start)

        parent_variance = label_variance(self.node_labels)

        best_split = None
        best_score = -float("inf")
        best_mask = None

        for _ in range(self.params.candidate_feature_count):
            candidate = self._draw_split()
            metrics.candidates_drawn += 1

            values = compute_features(
                self.sample_set,
                self.node_rows,
                candidate,
                out_of_bounds=self.params.out_of_bounds,
            )
            thresholds = self.rng.uniform(
                values.min(), values.max(), size=self.params.candidate_threshold_count
            )

            for threshold in thresholds:
                metrics.thresholds_evaluated += 1
                left_mask = values < threshold
                n_left = int(left_mask.sum())
                if n_left == 0 or n_left == self.n_node:
                    continue

                metrics.valid_partitions += 1
                score = self._score(left_mask, parent_variance)
                if score > best_score:
                    best_score = score
                    best_split = replace(candidate, threshold=float(threshold))
                    best_mask = left_mask

        if best_split is None or best_score <= self.params.min_score:
            return self._no_split(metrics, start)

        metrics.time_spent_sec = time.perf_counter() - start
        return SplitSearchResult(
            split=best_split,
            score=float(best_score),
            left_rows=self.node_rows[best_mask],
            right_rows=self.node_rows[~best_mask],
            metrics=metrics,
        )
