"""
Pixel-to-distance calibration from a known table length.
"""

import numpy as np
from typing import Dict, Optional, Tuple

from color_model import CalibrationError


TABLE_LENGTH_FEET = 9.0
DEFAULT_PIXELS_PER_FOOT = 100.0


class SpatialCalibration:
    """Holds the pixels-per-unit scale used to convert pixel motion to speed."""

    def __init__(self,
                 reference_length: float = TABLE_LENGTH_FEET,
                 default_scale: float = DEFAULT_PIXELS_PER_FOOT):
        """
        Initialize calibration.

        Args:
            reference_length: Real length of the reference object (standard table: 9 feet)
            default_scale: Pixels per unit used until calibrated

        Raises:
            ValueError: If parameters are invalid
        """
        if reference_length <= 0:
            raise ValueError(f"Invalid reference_length: {reference_length}. Must be positive.")

        if default_scale <= 0:
            raise ValueError(f"Invalid default_scale: {default_scale}. Must be positive.")

        self.reference_length = reference_length
        self.pixels_per_unit = default_scale
        self.is_calibrated = False
        self.method: Optional[str] = None

    def from_two_points(self,
                        p1: Tuple[float, float],
                        p2: Tuple[float, float],
                        real_length: Optional[float] = None) -> float:
        """
        Calibrate from two picked points spanning a known length.

        Args:
            p1: (x, y) of one end of the reference
            p2: (x, y) of the other end
            real_length: Real distance between the points (default: reference_length)

        Returns:
            Pixels per unit

        Raises:
            CalibrationError: If the points coincide or the length is not positive
        """
        real_length = self.reference_length if real_length is None else real_length
        if real_length <= 0:
            raise CalibrationError(f"Invalid real_length: {real_length}. Must be positive.")

        pixel_distance = float(np.hypot(p2[0] - p1[0], p2[1] - p1[1]))
        if pixel_distance == 0:
            raise CalibrationError(f"Calibration points coincide at {tuple(p1)}")

        return self._apply(pixel_distance / real_length, "two_points")

    def from_fraction(self,
                      total_width: float,
                      fraction: float = 0.8,
                      real_length: Optional[float] = None) -> float:
        """
        Calibrate assuming the reference spans a fraction of the frame width.

        Args:
            total_width: Frame width in pixels
            fraction: Share of the width covered by the reference (0, 1]
            real_length: Real length of the reference (default: reference_length)

        Returns:
            Pixels per unit

        Raises:
            CalibrationError: If any input is out of range
        """
        real_length = self.reference_length if real_length is None else real_length
        if total_width <= 0:
            raise CalibrationError(f"Invalid total_width: {total_width}. Must be positive.")

        if not 0.0 < fraction <= 1.0:
            raise CalibrationError(f"Invalid fraction: {fraction}. Must be in (0, 1].")

        if real_length <= 0:
            raise CalibrationError(f"Invalid real_length: {real_length}. Must be positive.")

        return self._apply(total_width * fraction / real_length, "fraction")

    def _apply(self, scale: float, method: str) -> float:
        self.pixels_per_unit = scale
        self.is_calibrated = True
        self.method = method
        print(f"Calibrated: {scale:.2f} pixels/unit ({method})")
        return scale

    def pixels_to_units(self, distance_pixels: float) -> float:
        return distance_pixels / self.pixels_per_unit

    def get_calibration_status(self) -> Dict:
        """
        Get current calibration status.

        Returns:
            Dictionary with calibration information
        """
        return {
            "is_calibrated": self.is_calibrated,
            "pixels_per_unit": self.pixels_per_unit,
            "reference_length": self.reference_length,
            "method": self.method,
        }
