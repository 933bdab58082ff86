import numpy as np
import pytest

from errors import InvalidInputError
from pixel_feature import PixelSample, SampleSet, compute_features
from split_search import RandomSplitSearch, SplitSearchParams, label_variance


def _two_cluster_set():
    # image 0 is pure red, image 1 is black: a red/other channel comparison separates them
    red = np.zeros((10, 10, 3), dtype=np.uint8)
    red[:, :, 0] = 200
    black = np.zeros((10, 10, 3), dtype=np.uint8)

    samples = [
        PixelSample(x=2, y=2, image_index=0, descriptor=np.array([0.0, 0.0])),
        PixelSample(x=7, y=3, image_index=0, descriptor=np.array([0.0, 1.0])),
        PixelSample(x=4, y=6, image_index=1, descriptor=np.array([1.0, 0.0])),
        PixelSample(x=8, y=8, image_index=1, descriptor=np.array([1.0, 1.0])),
    ]
    labels = np.array(
        [
            [0.0, 0.0, 0.0],
            [0.2, 0.0, 0.0],
            [10.0, 10.0, 10.0],
            [10.0, 10.2, 10.0],
        ]
    )
    return SampleSet(samples, [red, black], descriptor_dim=2), labels


def test_label_variance_is_trace_of_covariance():
    labels = np.array([[0.0, 0.0, 0.0], [2.0, 4.0, 0.0]])
    assert label_variance(labels) == pytest.approx(1.0 + 4.0)
    assert label_variance(np.zeros((0, 3))) == 0.0


def test_search_separates_clusters():
    sample_set, labels = _two_cluster_set()
    rows = np.arange(4)
    search = RandomSplitSearch(
        sample_set=sample_set,
        labels=labels,
        node_rows=rows,
        params=SplitSearchParams(max_pixel_offset=3.0, min_samples=1),
        rng=np.random.default_rng(0),
    )
    result = search.search()

    assert result.split is not None
    assert sorted(map(sorted, [result.left_rows.tolist(), result.right_rows.tolist()])) == [
        [0, 1],
        [2, 3],
    ]
    assert result.score == pytest.approx(label_variance(labels) - 0.01 * 2 / 4 * 2)

    values = compute_features(sample_set, rows, result.split)
    left_mask = values < result.split.threshold
    np.testing.assert_array_equal(rows[left_mask], result.left_rows)
    np.testing.assert_array_equal(rows[~left_mask], result.right_rows)


def test_partitions_are_disjoint_and_cover_node(scene):
    sample_set = SampleSet(scene.samples, scene.images, descriptor_dim=8)
    rows = np.arange(0, len(scene.samples), 2)
    result = RandomSplitSearch(
        sample_set=sample_set,
        labels=scene.labels,
        node_rows=rows,
        params=SplitSearchParams(max_pixel_offset=20.0),
        rng=np.random.default_rng(5),
    ).search()

    assert result.split is not None
    assert result.score > 0.0
    assert np.intersect1d(result.left_rows, result.right_rows).size == 0
    np.testing.assert_array_equal(
        np.sort(np.concatenate([result.left_rows, result.right_rows])), rows
    )


def test_identical_labels_give_no_split(scene):
    sample_set = SampleSet(scene.samples, scene.images, descriptor_dim=8)
    labels = np.tile([1.0, 2.0, 3.0], (len(scene.samples), 1))
    result = RandomSplitSearch(
        sample_set=sample_set,
        labels=labels,
        node_rows=np.arange(len(scene.samples)),
        params=SplitSearchParams(),
        rng=np.random.default_rng(1),
    ).search()

    assert result.split is None
    assert result.left_rows.size == 0
    assert result.right_rows.size == 0
    assert result.metrics.valid_partitions > 0


def test_small_node_gives_no_split():
    sample_set, labels = _two_cluster_set()
    rng = np.random.default_rng(0)
    result = RandomSplitSearch(
        sample_set=sample_set,
        labels=labels,
        node_rows=np.arange(4),
        params=SplitSearchParams(min_samples=5),
        rng=rng,
    ).search()

    assert result.split is None
    assert result.metrics.candidates_drawn == 0


def test_constant_features_give_no_split():
    sample_set, labels = _two_cluster_set()
    # both samples of the black image produce the same feature value for every candidate
    result = RandomSplitSearch(
        sample_set=sample_set,
        labels=labels,
        node_rows=np.array([2, 3]),
        params=SplitSearchParams(min_samples=1),
        rng=np.random.default_rng(0),
    ).search()

    assert result.split is None
    assert result.metrics.valid_partitions == 0
    assert result.metrics.thresholds_evaluated == 20 * 10


def test_same_seed_gives_same_split(scene):
    sample_set = SampleSet(scene.samples, scene.images, descriptor_dim=8)
    rows = np.arange(len(scene.samples))
    results = [
        RandomSplitSearch(
            sample_set=sample_set,
            labels=scene.labels,
            node_rows=rows,
            params=SplitSearchParams(),
            rng=np.random.default_rng(42),
        ).search()
        for _ in range(2)
    ]

    assert results[0].split == results[1].split
    assert results[0].score == results[1].score


def test_params_are_validated():
    with pytest.raises(InvalidInputError):
        SplitSearchParams(candidate_feature_count=0)
    with pytest.raises(InvalidInputError):
        SplitSearchParams(candidate_threshold_count=0)
    with pytest.raises(InvalidInputError):
        SplitSearchParams(max_pixel_offset=0.0)
    with pytest.raises(InvalidInputError):
        SplitSearchParams(out_of_bounds="wrap")
