"""
Blob detection for the ball.

Labels 4-connected regions of ball-colored pixels, then walks the frame on a
coarse grid and claims each region the first time a grid sample lands on it.
The largest claimed region wins. Claimed sizes are bounded per region and per
frame, so a frame full of near-ball colors stops the scan early.
"""

import cv2
import numpy as np
from typing import Dict, NamedTuple, Optional, Tuple
from dataclasses import dataclass

from color_model import ColorModel


class Position(NamedTuple):
    """(x, y) in buffer coordinates, origin top-left."""
    x: float
    y: float


@dataclass(frozen=True)
class StridePolicy:
    """
    Scan stride keyed by the largest region found so far.

    schedule holds (min_region_size, stride) pairs in ascending size order;
    the last pair whose size the largest region has reached wins.
    """
    schedule: Tuple[Tuple[int, int], ...] = ((0, 2), (50, 4))

    def __post_init__(self):
        if not self.schedule or self.schedule[0][0] != 0:
            raise ValueError(f"Invalid stride schedule: {self.schedule}. Must start at size 0.")

        sizes = [size for size, _ in self.schedule]
        if sizes != sorted(sizes):
            raise ValueError(f"Invalid stride schedule: {self.schedule}. Sizes must ascend.")

        if any(stride < 1 for _, stride in self.schedule):
            raise ValueError(f"Invalid stride schedule: {self.schedule}. Strides must be >= 1.")

    def stride_for(self, largest_size: int) -> int:
        stride = self.schedule[0][1]
        for size, step in self.schedule:
            if largest_size >= size:
                stride = step
        return stride


@dataclass
class Blob:
    """A connected region of matching pixels."""
    seed_x: int
    seed_y: int
    size: int
    centroid_x: float
    centroid_y: float

    @property
    def position(self) -> Position:
        return Position(self.centroid_x, self.centroid_y)

    @property
    def seed(self) -> Position:
        return Position(float(self.seed_x), float(self.seed_y))


class FrameSegmenter:
    """Finds the largest ball-colored blob in a frame."""

    def __init__(self,
                 color_model: ColorModel,
                 min_blob_pixels: int = 4,
                 max_region_pixels: int = 4096,
                 max_visited_pixels: int = 200_000,
                 stride_policy: Optional[StridePolicy] = None):
        """
        Initialize segmenter.

        Args:
            color_model: Classifier for ball pixels
            min_blob_pixels: Smallest region reported as the ball
            max_region_pixels: Size credited to a single region at most
            max_visited_pixels: Total size claimed per frame before the scan stops
            stride_policy: Scan stride schedule (default: 2, then 4 after 50 px)

        Raises:
            ValueError: If limits are invalid
        """
        if min_blob_pixels < 1:
            raise ValueError(f"Invalid min_blob_pixels: {min_blob_pixels}. Must be >= 1.")

        if max_region_pixels < min_blob_pixels:
            raise ValueError(f"Invalid max_region_pixels: {max_region_pixels}. "
                             f"Must be >= min_blob_pixels ({min_blob_pixels}).")

        if max_visited_pixels < max_region_pixels:
            raise ValueError(f"Invalid max_visited_pixels: {max_visited_pixels}. "
                             f"Must be >= max_region_pixels ({max_region_pixels}).")

        self.color_model = color_model
        self.min_blob_pixels = min_blob_pixels
        self.max_region_pixels = max_region_pixels
        self.max_visited_pixels = max_visited_pixels
        self.stride_policy = stride_policy if stride_policy is not None else StridePolicy()
        self.last_stats: Dict = {}

    def classify(self, pixels: np.ndarray) -> np.ndarray:
        """Boolean mask of ball-colored pixels."""
        return self.color_model.mask(pixels)

    def detect(self, pixels: np.ndarray,
               width: Optional[int] = None,
               height: Optional[int] = None,
               mask: Optional[np.ndarray] = None) -> Optional[Blob]:
        """
        Find the largest ball-colored region.

        The reported size of a region is capped at max_region_pixels, but its
        centroid is always taken over the whole region.

        Args:
            pixels: RGB(A) uint8 buffer of shape (height, width, 3 or 4)
            width: Expected frame width (checked against the buffer if given)
            height: Expected frame height (checked against the buffer if given)
            mask: Precomputed classification of pixels

        Returns:
            Largest Blob, or None if no region reaches min_blob_pixels

        Raises:
            ValueError: If the buffer shape is not a color frame of the given size
        """
        if pixels.ndim != 3 or pixels.shape[2] not in (3, 4):
            raise ValueError(f"Invalid frame shape: {pixels.shape}. Expected (h, w, 3|4).")

        frame_height, frame_width = pixels.shape[:2]
        if (width is not None and width != frame_width) or \
                (height is not None and height != frame_height):
            raise ValueError(f"Frame is {frame_width}x{frame_height}, expected {width}x{height}")

        if mask is None:
            mask = self.classify(pixels)

        n_labels, labels, stats, centroids = cv2.connectedComponentsWithStats(
            mask.astype(np.uint8), connectivity=4)

        claimed = np.zeros(n_labels, dtype=bool)
        budget = self.max_visited_pixels
        best: Optional[Blob] = None
        stride = self.stride_policy.stride_for(0)
        matching_samples = 0
        regions = 0

        y = 0
        while y < frame_height and budget > 0:
            row = labels[y, ::stride]
            hits = np.flatnonzero(row)
            matching_samples += len(hits)
            if len(hits) == 0:
                y += stride
                continue

            # First sample of each region on this row, left to right
            row_labels, first = np.unique(row[hits], return_index=True)
            order = np.argsort(first)
            row_labels, columns = row_labels[order], hits[first[order]]
            fresh = ~claimed[row_labels]

            for label, x in zip(row_labels[fresh], columns[fresh]):
                claimed[label] = True

                size = min(int(stats[label, cv2.CC_STAT_AREA]), self.max_region_pixels, budget)
                budget -= size
                regions += 1
                # Strictly larger only, so ties keep the earlier region
                if best is None or size > best.size:
                    cx, cy = centroids[label]
                    best = Blob(seed_x=int(x) * stride, seed_y=y, size=size,
                                centroid_x=float(cx), centroid_y=float(cy))
                if budget <= 0:
                    break

            if best is not None:
                stride = self.stride_policy.stride_for(best.size)
            y += stride

        self.last_stats = {
            "matching_samples": matching_samples,
            "regions": regions,
            "largest_size": best.size if best else 0,
            "stride": stride,
            "visited_pixels": self.max_visited_pixels - budget,
        }

        if best is None or best.size < self.min_blob_pixels:
            return None
        return best
