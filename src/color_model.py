"""
Color model for ball detection.

Holds the accepted hue/saturation/value range for the ball and classifies
pixels against it. Hue is expressed in degrees (0-360), saturation and value
on a 0-255 scale, so ranges picked from camera pixels can be compared directly.
"""

import cv2
import numpy as np
from typing import Optional, Sequence, Tuple
from dataclasses import dataclass


HUE_MAX = 360
CHANNEL_MAX = 255


class CalibrationError(ValueError):
    """Raised when calibration input cannot produce a usable result."""


@dataclass(frozen=True)
class ColorSample:
    """A single HSV color measurement."""
    h: float
    s: float
    v: float


@dataclass(frozen=True)
class ColorRange:
    """Closed HSV intervals. The hue interval is matched circularly."""
    h_min: float = 0
    h_max: float = 60
    s_min: float = 20
    s_max: float = 255
    v_min: float = 20
    v_max: float = 255

    @property
    def lower(self) -> Tuple[float, float, float]:
        return (self.h_min, self.s_min, self.v_min)

    @property
    def upper(self) -> Tuple[float, float, float]:
        return (self.h_max, self.s_max, self.v_max)


def rgb_to_hsv(r: float, g: float, b: float) -> ColorSample:
    """
    Convert an RGB triple (0-255) to a ColorSample.

    Hue is rounded to whole degrees; grey pixels (r == g == b) get hue 0.
    """
    r, g, b = r / 255.0, g / 255.0, b / 255.0
    c_max = max(r, g, b)
    c_min = min(r, g, b)
    delta = c_max - c_min

    h = 0
    if delta != 0:
        if c_max == r:
            h = ((g - b) / delta) % 6
        elif c_max == g:
            h = (b - r) / delta + 2
        else:
            h = (r - g) / delta + 4
        h = round(h * 60) % HUE_MAX

    s = 0.0 if c_max == 0 else delta / c_max
    return ColorSample(h=h, s=s * CHANNEL_MAX, v=c_max * CHANNEL_MAX)


def rgb_image_to_hsv(pixels: np.ndarray) -> np.ndarray:
    """
    Convert an RGB or RGBA buffer to HSV with the same scaling as rgb_to_hsv.

    Args:
        pixels: uint8 array of shape (height, width, 3 or 4)

    Returns:
        float32 array of shape (height, width, 3) holding (h, s, v)
    """
    rgb = np.ascontiguousarray(pixels[..., :3], dtype=np.float32) / 255.0
    hsv = cv2.cvtColor(rgb, cv2.COLOR_RGB2HSV)
    hsv[..., 0] = np.round(hsv[..., 0]) % HUE_MAX
    hsv[..., 1:] *= CHANNEL_MAX
    return hsv


def average_color(window: np.ndarray) -> Optional[Tuple[int, int, int]]:
    """
    Average the color of a pixel window, skipping transparent pixels.

    Args:
        window: uint8 array of shape (h, w, 3 or 4)

    Returns:
        Rounded (r, g, b) tuple, or None if the window has no valid pixels
    """
    pixels = window.reshape(-1, window.shape[-1])
    if window.shape[-1] == 4:
        pixels = pixels[pixels[:, 3] > 0]

    if len(pixels) == 0:
        return None

    mean = pixels[:, :3].astype(np.float64).mean(axis=0)
    return tuple(int(round(c)) for c in mean)


class ColorModel:
    """Acceptance range for the ball color, built by calibration."""

    def __init__(self,
                 color_range: Optional[ColorRange] = None,
                 hue_margin: float = 20,
                 saturation_margin: float = 30,
                 value_margin: float = 30):
        """
        Initialize color model.

        Args:
            color_range: Initial range (defaults to a wide orange/red range)
            hue_margin: Degrees added around sampled hues on calibration
            saturation_margin: Added around sampled saturations on calibration
            value_margin: Added around sampled values on calibration

        Raises:
            ValueError: If a margin is negative
        """
        for name, margin in (("hue_margin", hue_margin),
                             ("saturation_margin", saturation_margin),
                             ("value_margin", value_margin)):
            if margin < 0:
                raise ValueError(f"Invalid {name}: {margin}. Must be non-negative.")

        self.color_range = color_range if color_range is not None else ColorRange()
        self.hue_margin = hue_margin
        self.saturation_margin = saturation_margin
        self.value_margin = value_margin

    def calibrate(self, samples: Sequence[ColorSample]) -> ColorRange:
        """
        Set the range to the sampled min/max widened by the margins.

        Args:
            samples: One or more colors picked from the ball

        Returns:
            The new color range

        Raises:
            CalibrationError: If no samples were given (range is left unchanged)
        """
        samples = [s for s in samples if s is not None]
        if not samples:
            raise CalibrationError("No valid color samples for calibration")

        hues = [s.h for s in samples]
        sats = [s.s for s in samples]
        vals = [s.v for s in samples]

        self.color_range = ColorRange(
            h_min=max(0, min(hues) - self.hue_margin),
            h_max=min(HUE_MAX, max(hues) + self.hue_margin),
            s_min=max(0, min(sats) - self.saturation_margin),
            s_max=min(CHANNEL_MAX, max(sats) + self.saturation_margin),
            v_min=max(0, min(vals) - self.value_margin),
            v_max=min(CHANNEL_MAX, max(vals) + self.value_margin),
        )
        return self.color_range

    def set_color_range(self, lower: Tuple[float, float, float],
                        upper: Tuple[float, float, float]):
        """
        Replace the range directly.

        Args:
            lower: (h, s, v) lower bounds
            upper: (h, s, v) upper bounds
        """
        if any(lo > hi for lo, hi in zip(lower, upper)):
            raise ValueError(f"Invalid color range: {lower} > {upper}")

        self.color_range = ColorRange(
            h_min=lower[0], h_max=upper[0],
            s_min=lower[1], s_max=upper[1],
            v_min=lower[2], v_max=upper[2],
        )

    def matches(self, sample: ColorSample) -> bool:
        """Check a single HSV sample against the range."""
        rng = self.color_range
        # Red/orange hues sit near both ends of the wheel
        hue_ok = (rng.h_min <= sample.h <= rng.h_max or
                  HUE_MAX - rng.h_max <= sample.h <= HUE_MAX - rng.h_min)
        return (hue_ok and
                rng.s_min <= sample.s <= rng.s_max and
                rng.v_min <= sample.v <= rng.v_max)

    def mask(self, pixels: np.ndarray) -> np.ndarray:
        """
        Classify every pixel of an RGB(A) buffer.

        Args:
            pixels: uint8 array of shape (height, width, 3 or 4)

        Returns:
            Boolean array of shape (height, width)
        """
        hsv = rgb_image_to_hsv(pixels)
        h, s, v = hsv[..., 0], hsv[..., 1], hsv[..., 2]
        rng = self.color_range

        hue_ok = (((h >= rng.h_min) & (h <= rng.h_max)) |
                  ((h >= HUE_MAX - rng.h_max) & (h <= HUE_MAX - rng.h_min)))
        result = (hue_ok &
                  (s >= rng.s_min) & (s <= rng.s_max) &
                  (v >= rng.v_min) & (v <= rng.v_max))

        if pixels.shape[-1] == 4:
            result &= pixels[..., 3] > 0
        return result

    def sample_at(self, pixels: np.ndarray, x: float, y: float,
                  window: int = 20) -> Optional[ColorSample]:
        """
        Average a square window around (x, y) and convert it to HSV.

        The window is clipped to the buffer.

        Returns:
            ColorSample, or None if the window holds no valid pixels
        """
        height, width = pixels.shape[:2]
        x0 = max(0, int(round(x - window / 2)))
        y0 = max(0, int(round(y - window / 2)))
        x1 = min(width, x0 + window)
        y1 = min(height, y0 + window)

        if x0 >= x1 or y0 >= y1:
            return None

        rgb = average_color(pixels[y0:y1, x0:x1])
        if rgb is None:
            return None
        return rgb_to_hsv(*rgb)
