import argparse
import time
import sys
from pathlib import Path

import numpy as np

# Allow running as: python experiments/quick_btrf_tree_eval.py
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from btrf_tree import BacktrackingTree
from pixel_feature import PixelSample
from tree_builder import TreeParameter


def _smooth_texture(rng, height, width, scale):
    coarse = rng.integers(0, 256, size=(height // scale + 2, width // scale + 2, 3))
    ys = np.arange(height) // scale
    xs = np.arange(width) // scale
    return coarse[ys][:, xs].astype(np.uint8)


def _patch_descriptor(image, x, y, dim):
    # mean colour of growing square rings around the pixel
    height, width = image.shape[:2]
    values = []
    radius = 1
    while len(values) < dim:
        x0, x1 = max(x - radius, 0), min(x + radius + 1, width)
        y0, y1 = max(y - radius, 0), min(y + radius + 1, height)
        values.extend(image[y0:y1, x0:x1].reshape(-1, 3).mean(axis=0) / 255.0)
        radius *= 2
    return np.asarray(values[:dim], dtype=np.float64)


def make_synthetic_scene(n_images, height, width, n_samples, descriptor_dim, rng):
    """Textured fronto-parallel planes; the 3D label is the back-projected pixel."""
    focal = 0.8 * width
    images = []
    depths = []
    for image_index in range(n_images):
        images.append(_smooth_texture(rng, height, width, scale=4))
        depths.append(1.0 + 0.5 * image_index)

    samples = []
    labels = np.zeros((n_samples, 3), dtype=np.float64)
    for i in range(n_samples):
        image_index = int(rng.integers(0, n_images))
        x = int(rng.integers(0, width))
        y = int(rng.integers(0, height))
        depth = depths[image_index]
        samples.append(
            PixelSample(
                x=x,
                y=y,
                image_index=image_index,
                depth=depth,
                descriptor=_patch_descriptor(images[image_index], x, y, descriptor_dim),
            )
        )
        labels[i] = (
            (x - width / 2.0) * depth / focal,
            (y - height / 2.0) * depth / focal,
            depth,
        )
    return images, samples, labels


def main():
    parser = argparse.ArgumentParser(description="Check budget sweep for a single backtracking tree")
    parser.add_argument("--n-images", type=int, default=4)
    parser.add_argument("--height", type=int, default=60)
    parser.add_argument("--width", type=int, default=80)
    parser.add_argument("--n-samples", type=int, default=4000)
    parser.add_argument("--max-depth", type=int, default=12)
    parser.add_argument("--min-leaf-samples", type=int, default=10)
    parser.add_argument("--candidate-features", type=int, default=20)
    parser.add_argument("--candidate-thresholds", type=int, default=10)
    parser.add_argument("--descriptor-dim", type=int, default=12)
    parser.add_argument("--max-pixel-offset", type=float, default=30.0)
    parser.add_argument(
        "--max-checks",
        type=str,
        default="1,2,4,8,16",
        help="Comma-separated backtracking budgets",
    )
    parser.add_argument("--random-state", type=int, default=42)

    args = parser.parse_args()

    max_checks = [int(v) for v in args.max_checks.split(",") if v.strip()]
    if not max_checks:
        raise ValueError("No max_check values provided")

    rng = np.random.default_rng(args.random_state)
    images, samples, labels = make_synthetic_scene(
        args.n_images, args.height, args.width, args.n_samples, args.descriptor_dim, rng
    )

    order = rng.permutation(len(samples))
    n_test = max(1, len(samples) // 5)
    test_idx = order[:n_test]
    train_idx = order[n_test:]

    params = TreeParameter(
        max_depth=args.max_depth,
        min_leaf_samples=args.min_leaf_samples,
        candidate_feature_count=args.candidate_features,
        candidate_threshold_count=args.candidate_thresholds,
        descriptor_dim=args.descriptor_dim,
        max_pixel_offset=args.max_pixel_offset,
        random_state=args.random_state,
    )

    tree = BacktrackingTree()
    t0 = time.perf_counter()
    tree.build(samples, labels, train_idx, images, params)
    fit_time = time.perf_counter() - t0

    print(
        f"Built tree: time={fit_time:.3f}s"
        f" split_search_time={tree.metrics.split_search_time_sec:.3f}s"
        f" nodes={tree.node_count} leaves={tree.leaf_count} depth={tree.depth}"
    )

    for max_check in max_checks:
        t0 = time.perf_counter()
        errors = []
        dists = []
        for i in test_idx:
            sample = samples[i]
            pred, dist = tree.predict(sample, images[sample.image_index], max_check)
            errors.append(float(np.linalg.norm(pred - labels[i])))
            dists.append(dist)
        pred_time = time.perf_counter() - t0
        print(
            f"max_check={max_check:>3d}"
            f" median_error={np.median(errors):.4f}"
            f" mean_error={np.mean(errors):.4f}"
            f" mean_dist={np.mean(dists):.4f}"
            f" time={pred_time:.3f}s"
        )


if __name__ == "__main__":
    main()
