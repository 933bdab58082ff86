from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np

from errors import InvalidInputError, OutOfBoundsError


DEPTH_ADAPTATIONS = ("inverse_depth", "none")
OUT_OF_BOUNDS_POLICIES = ("clamp", "raise")


@dataclass(frozen=True, eq=False)
class PixelSample:
    """A pixel location in one image, with its depth and local descriptor."""

    x: int
    y: int
    image_index: int = 0
    depth: float | None = None
    descriptor: np.ndarray | None = field(default=None, repr=False)


@dataclass(frozen=True)
class SplitDescriptor:
    offset1: tuple[float, float]
    offset2: tuple[float, float]
    channels: tuple[int, int]
    threshold: float = 0.0


def depth_scale(depth: float | None, depth_adaptation: str = "inverse_depth") -> float:
    """Offset scale for a sample; invalid or missing depth leaves offsets unscaled."""
    if depth_adaptation == "none":
        return 1.0
    if depth_adaptation != "inverse_depth":
        raise InvalidInputError(f"Unsupported depth adaptation: {depth_adaptation}")
    if depth is None or not np.isfinite(depth) or depth <= 0.0:
        return 1.0
    return 1.0 / float(depth)


def as_image(image: np.ndarray) -> np.ndarray:
    image = np.asarray(image)
    if image.ndim == 2:
        image = image[:, :, np.newaxis]
    if image.ndim != 3 or image.shape[0] == 0 or image.shape[1] == 0:
        raise InvalidInputError("image must be a non-empty HxW or HxWxC array")
    return image


def _read_channel(
    image: np.ndarray,
    coords: np.ndarray,
    channel: int,
    out_of_bounds: str,
) -> np.ndarray:
    height, width = image.shape[:2]
    if channel < 0 or channel >= image.shape[2]:
        raise OutOfBoundsError(
            f"channel {channel} outside image with {image.shape[2]} channels"
        )

    x = coords[:, 0]
    y = coords[:, 1]
    inside = (x >= 0) & (x < width) & (y >= 0) & (y < height)
    if not np.all(inside):
        if out_of_bounds == "raise":
            bad = coords[~inside][0]
            raise OutOfBoundsError(
                f"pixel ({int(bad[0])}, {int(bad[1])}) outside {width}x{height} image"
            )
        x = np.clip(x, 0, width - 1)
        y = np.clip(y, 0, height - 1)

    return image[y, x, channel].astype(np.float64)


def _pixel_difference(
    image: np.ndarray,
    locations: np.ndarray,
    scales: np.ndarray,
    split: SplitDescriptor,
    out_of_bounds: str,
) -> np.ndarray:
    offset1 = np.asarray(split.offset1, dtype=np.float64)
    offset2 = np.asarray(split.offset2, dtype=np.float64)

    coords1 = np.rint(locations + scales[:, np.newaxis] * offset1).astype(np.int64)
    coords2 = np.rint(locations + scales[:, np.newaxis] * offset2).astype(np.int64)

    c1, c2 = split.channels
    return _read_channel(image, coords1, c1, out_of_bounds) - _read_channel(
        image, coords2, c2, out_of_bounds
    )


def compute_feature(
    image: np.ndarray,
    sample: PixelSample,
    split: SplitDescriptor,
    depth_adaptation: str = "inverse_depth",
    out_of_bounds: str = "clamp",
) -> float:
    """Depth-adapted pixel comparison feature of one sample.

    Reads ``image`` at ``p + s * offset1`` on the first channel and at
    ``p + s * offset2`` on the second, where ``s`` is the depth scale of the
    sample, and returns the first intensity minus the second.
    """
    if out_of_bounds not in OUT_OF_BOUNDS_POLICIES:
        raise InvalidInputError(f"Unsupported out_of_bounds policy: {out_of_bounds}")

    image = as_image(image)
    location = np.array([[sample.x, sample.y]], dtype=np.float64)
    scale = np.array([depth_scale(sample.depth, depth_adaptation)], dtype=np.float64)
    return float(_pixel_difference(image, location, scale, split, out_of_bounds)[0])


class SampleSet:
    """Columnar view of training samples used by the split search."""

    def __init__(
        self,
        samples: list[PixelSample],
        images: list[np.ndarray],
        descriptor_dim: int,
        depth_adaptation: str = "inverse_depth",
    ) -> None:
        if len(images) == 0:
            raise InvalidInputError("at least one image is required")
        self.images = [as_image(image) for image in images]

        n_samples = len(samples)
        self.locations = np.zeros((n_samples, 2), dtype=np.float64)
        self.image_indices = np.zeros(n_samples, dtype=np.int64)
        self.scales = np.ones(n_samples, dtype=np.float64)
        self.descriptors = np.zeros((n_samples, descriptor_dim), dtype=np.float64)

        for i, sample in enumerate(samples):
            if not (0 <= sample.image_index < len(self.images)):
                raise InvalidInputError(
                    f"sample {i} references image {sample.image_index}, "
                    f"only {len(self.images)} images given"
                )
            if sample.descriptor is None:
                raise InvalidInputError(f"sample {i} has no descriptor")
            descriptor = np.asarray(sample.descriptor, dtype=np.float64).ravel()
            if descriptor.size != descriptor_dim:
                raise InvalidInputError(
                    f"sample {i} descriptor has length {descriptor.size}, "
                    f"expected {descriptor_dim}"
                )

            self.locations[i] = (sample.x, sample.y)
            self.image_indices[i] = sample.image_index
            self.scales[i] = depth_scale(sample.depth, depth_adaptation)
            self.descriptors[i] = descriptor

    def __len__(self) -> int:
        return int(self.locations.shape[0])


def compute_features(
    sample_set: SampleSet,
    rows: np.ndarray,
    split: SplitDescriptor,
    out_of_bounds: str = "clamp",
) -> np.ndarray:
    """Feature values for ``rows`` of ``sample_set``, grouped per image."""
    rows = np.asarray(rows, dtype=np.int64)
    values = np.empty(rows.size, dtype=np.float64)
    row_images = sample_set.image_indices[rows]

    for image_index in np.unique(row_images):
        mask = row_images == image_index
        selected = rows[mask]
        values[mask] = _pixel_difference(
            sample_set.images[int(image_index)],
            sample_set.locations[selected],
            sample_set.scales[selected],
            split,
            out_of_bounds,
        )
    return values
