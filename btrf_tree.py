from __future__ import annotations

from dataclasses import asdict
import logging
import time

import numpy as np

from backtracking_search import SearchResult, backtracking_search
from errors import InvalidInputError, NotBuiltError
from leaf_index import assign_leaf_descriptors, index_leaves, leaf_descriptor_matrix
from pixel_feature import PixelSample, SampleSet, as_image
from tree_builder import InternalNode, LeafNode, TreeBuilder, TreeBuildMetrics, TreeNode, TreeParameter
from tree_io import export_nodes, import_nodes


logger = logging.getLogger(__name__)


class BacktrackingTree:
    """Regression tree from image pixels to 3D world coordinates.

    ``build`` grows the tree by recursive randomized splitting of
    (sample, label) pairs under a :class:`TreeParameter`. ``predict`` routes a
    query pixel with the same pixel comparison features and backtracks over
    deferred branches, comparing local descriptors against leaf descriptors,
    until ``max_check`` leaves have been checked.

    A built tree is read-only during prediction, so concurrent ``predict``
    calls on one tree are safe. ``build`` must not run concurrently with any
    other call on the same tree.
    """

    def __init__(
        self,
        params: TreeParameter | None = None,
        rng: np.random.Generator | None = None,
    ) -> None:
        self.params = params or TreeParameter()
        self.rng = rng

        self.root: TreeNode | None = None
        self.leaf_nodes: list[LeafNode] = []
        self.metrics = TreeBuildMetrics()

    @property
    def is_built(self) -> bool:
        return self.root is not None

    @property
    def leaf_count(self) -> int:
        return len(self.leaf_nodes)

    @property
    def node_count(self) -> int:
        self._check_built()
        count = 0
        stack = [self.root]
        while stack:
            node = stack.pop()
            count += 1
            if isinstance(node, InternalNode):
                stack.extend((node.left, node.right))
        return count

    @property
    def depth(self) -> int:
        self._check_built()
        return max(leaf.depth for leaf in self.leaf_nodes)

    def _check_built(self) -> None:
        if self.root is None:
            raise NotBuiltError("Tree must be built before use")

    def _reset(self) -> None:
        self.root = None
        self.leaf_nodes = []
        self.metrics = TreeBuildMetrics()

    def get_parameter(self) -> TreeParameter:
        return self.params

    def set_parameter(self, param: TreeParameter) -> None:
        if self.is_built and param.descriptor_dim != self.params.descriptor_dim:
            raise InvalidInputError(
                f"cannot change descriptor_dim from {self.params.descriptor_dim} to "
                f"{param.descriptor_dim} on a built tree with {self.leaf_count} leaves"
            )
        self.params = param

    def build(
        self,
        samples: list[PixelSample],
        labels: np.ndarray,
        indices: np.ndarray,
        images: list[np.ndarray],
        param: TreeParameter | None = None,
    ) -> "BacktrackingTree":
        """Build the tree from ``samples[indices]`` and their 3D ``labels``.

        Raises InvalidInputError on inconsistent inputs and OutOfBoundsError
        from feature evaluation under the ``raise`` policy; in both cases the
        tree is left unbuilt.
        """
        self._reset()
        if param is not None:
            self.params = param
        params = self.params

        labels = np.asarray(labels, dtype=np.float64)
        if labels.ndim != 2 or labels.shape[1] != 3:
            raise InvalidInputError("labels must have shape (n_samples, 3)")
        if len(samples) != labels.shape[0]:
            raise InvalidInputError(
                f"{len(samples)} samples but {labels.shape[0]} labels"
            )
        if not np.all(np.isfinite(labels)):
            raise InvalidInputError("labels must be finite")

        indices = np.asarray(indices)
        if indices.ndim != 1 or indices.size == 0:
            raise InvalidInputError("indices must be a non-empty 1D array")
        if not np.issubdtype(indices.dtype, np.integer):
            raise InvalidInputError("indices must be integers")
        if indices.min() < 0 or indices.max() >= len(samples):
            raise InvalidInputError("indices reference positions outside samples")
        indices = indices.astype(np.int64)

        sample_set = SampleSet(
            samples,
            images,
            descriptor_dim=params.descriptor_dim,
            depth_adaptation=params.depth_adaptation,
        )
        if params.n_channels > min(image.shape[2] for image in sample_set.images):
            raise InvalidInputError(
                f"n_channels={params.n_channels} exceeds the channels of the given images"
            )

        if self.rng is None:
            self.rng = np.random.default_rng(params.random_state)

        start = time.perf_counter()
        builder = TreeBuilder(sample_set, labels, params, rng=self.rng)
        root = builder.build_tree(indices)
        leaves = index_leaves(root)

        self.root = root
        self.leaf_nodes = leaves
        self.metrics = builder.metrics

        logger.info(
            f"Built tree with {builder.metrics.nodes_visited} nodes, "
            f"{len(leaves)} leaves, depth {builder.metrics.max_depth_seen} "
            f"from {indices.size} samples in {time.perf_counter() - start:.3f}s"
        )
        return self

    def search(
        self,
        feature: PixelSample,
        image: np.ndarray,
        max_check: int,
    ) -> SearchResult:
        self._check_built()
        return backtracking_search(
            self.root,
            feature,
            as_image(image),
            max_check,
            depth_adaptation=self.params.depth_adaptation,
            out_of_bounds=self.params.out_of_bounds,
        )

    def predict(
        self,
        feature: PixelSample,
        image: np.ndarray,
        max_check: int,
    ) -> tuple[np.ndarray, float]:
        """Predicted 3D location of ``feature`` and its descriptor distance."""
        result = self.search(feature, image, max_check)
        return result.label, result.distance

    def predict_batch(
        self,
        features: list[PixelSample],
        image: np.ndarray,
        max_check: int,
    ) -> tuple[np.ndarray, np.ndarray]:
        self._check_built()
        image = as_image(image)
        preds = np.zeros((len(features), 3), dtype=np.float64)
        dists = np.zeros(len(features), dtype=np.float64)
        for i, feature in enumerate(features):
            preds[i], dists[i] = self.predict(feature, image, max_check)
        return preds, dists

    def get_leaf_descriptors(self) -> np.ndarray:
        self._check_built()
        return leaf_descriptor_matrix(self.leaf_nodes, self.params.descriptor_dim)

    def set_leaf_descriptors(self, data: np.ndarray) -> None:
        self._check_built()
        assign_leaf_descriptors(self.leaf_nodes, data, self.params.descriptor_dim)

    def to_state(self) -> dict:
        """Parameter, pre-order node records and the leaf descriptor matrix."""
        self._check_built()
        return {
            "parameter": asdict(self.params),
            "nodes": export_nodes(self.root),
            "leaf_descriptors": self.get_leaf_descriptors(),
        }

    @classmethod
    def from_state(cls, state: dict) -> "BacktrackingTree":
        params = state["parameter"]
        if isinstance(params, dict):
            params = TreeParameter(**params)

        tree = cls(params)
        root = import_nodes(state["nodes"], params.descriptor_dim)
        leaves = index_leaves(root)
        assign_leaf_descriptors(leaves, state["leaf_descriptors"], params.descriptor_dim)

        tree.root = root
        tree.leaf_nodes = leaves
        return tree
