"""
Centroid refinement around a detected blob.
"""

import numpy as np
from typing import Optional

from color_model import ColorModel
from frame_segmenter import Position


class PositionRefiner:
    """Re-centers a candidate on the matching pixels in a window around it."""

    def __init__(self, color_model: ColorModel, radius: int = 10):
        """
        Initialize refiner.

        Args:
            color_model: Classifier for ball pixels
            radius: Half-size of the square search window in pixels

        Raises:
            ValueError: If radius is negative
        """
        if radius < 0:
            raise ValueError(f"Invalid radius: {radius}. Must be non-negative.")

        self.color_model = color_model
        self.radius = radius

    def refine(self, pixels: np.ndarray, candidate: Position,
               radius: Optional[int] = None,
               mask: Optional[np.ndarray] = None) -> Position:
        """
        Mean position of matching pixels within radius of the candidate.

        Args:
            pixels: RGB(A) frame
            candidate: Position to refine
            radius: Window half-size (defaults to the refiner's radius)
            mask: Precomputed classification of pixels

        Returns:
            Refined position, or the candidate unchanged if nothing in the
            window matches
        """
        radius = self.radius if radius is None else radius
        height, width = pixels.shape[:2]

        cx, cy = int(round(candidate[0])), int(round(candidate[1]))
        x0, x1 = max(0, cx - radius), min(width, cx + radius + 1)
        y0, y1 = max(0, cy - radius), min(height, cy + radius + 1)

        if x0 >= x1 or y0 >= y1:
            return Position(*candidate)

        if mask is None:
            window = self.color_model.mask(pixels[y0:y1, x0:x1])
        else:
            window = mask[y0:y1, x0:x1]

        ys, xs = np.nonzero(window)
        if len(xs) == 0:
            return Position(*candidate)

        return Position(float(xs.mean() + x0), float(ys.mean() + y0))
