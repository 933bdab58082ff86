from dataclasses import dataclass

import numpy as np
import pytest

from btrf_tree import BacktrackingTree
from pixel_feature import PixelSample
from tree_builder import TreeParameter


DESCRIPTOR_DIM = 8


@dataclass
class Scene:
    images: list
    samples: list
    labels: np.ndarray
    params: TreeParameter


def make_scene(seed=0, n_images=2, height=40, width=50, n_samples=300):
    rng = np.random.default_rng(seed)
    images = [
        rng.integers(0, 256, size=(height, width, 3), dtype=np.uint8)
        for _ in range(n_images)
    ]

    samples = []
    labels = np.zeros((n_samples, 3), dtype=np.float64)
    for i in range(n_samples):
        image_index = int(rng.integers(0, n_images))
        x = int(rng.integers(0, width))
        y = int(rng.integers(0, height))
        depth = float(rng.uniform(1.0, 4.0))
        color = images[image_index][y, x].astype(np.float64)
        descriptor = np.concatenate([color / 255.0, rng.normal(size=DESCRIPTOR_DIM - 3)])
        samples.append(
            PixelSample(
                x=x,
                y=y,
                image_index=image_index,
                depth=depth,
                descriptor=descriptor,
            )
        )
        labels[i] = (x / 10.0, y / 10.0, depth + 5.0 * image_index)

    params = TreeParameter(
        max_depth=6,
        min_leaf_samples=5,
        candidate_feature_count=10,
        candidate_threshold_count=5,
        descriptor_dim=DESCRIPTOR_DIM,
        max_pixel_offset=20.0,
        random_state=seed,
    )
    return Scene(images=images, samples=samples, labels=labels, params=params)


@pytest.fixture
def scene():
    return make_scene()


@pytest.fixture
def built_tree(scene):
    tree = BacktrackingTree()
    tree.build(
        scene.samples,
        scene.labels,
        np.arange(len(scene.samples)),
        scene.images,
        scene.params,
    )
    return tree
