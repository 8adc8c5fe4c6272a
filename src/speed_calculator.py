"""
Speed calculation module for table-tennis ball tracking.

Converts per-frame pixel displacement to a physical speed, smooths it with a
single-pole recursive filter and keeps the rolling statistics used for hit
detection.
"""

import numpy as np
from collections import deque
from typing import Dict, List, Optional, Tuple
from dataclasses import dataclass

from spatial_calibration import SpatialCalibration


@dataclass
class SpeedSample:
    """A filtered speed measurement."""
    speed: float
    timestamp: float


class SpeedCalculator:
    """Calculates filtered ball speed from frame-to-frame velocity."""

    def __init__(self,
                 calibration: Optional[SpatialCalibration] = None,
                 filter_gain: float = 0.2,
                 history_size: int = 10,
                 frame_time_window: int = 10):
        """
        Initialize speed calculator.

        Args:
            calibration: Pixel scale source (creates default if None)
            filter_gain: Weight of each new raw speed, in (0, 1)
            history_size: Filtered speeds kept for the rolling average (5 to 10)
            frame_time_window: Inter-frame intervals averaged for the frame rate

        Raises:
            ValueError: If parameters are invalid
        """
        if not 0.0 < filter_gain < 1.0:
            raise ValueError(f"Invalid filter_gain: {filter_gain}. Must be between 0 and 1.")

        if history_size < 5 or history_size > 10:
            raise ValueError(f"Invalid history_size: {history_size}. Must be between 5 and 10.")

        if frame_time_window < 1:
            raise ValueError(f"Invalid frame_time_window: {frame_time_window}. Must be positive.")

        self.calibration = calibration if calibration is not None else SpatialCalibration()
        self.filter_gain = filter_gain
        self.speed_history = deque(maxlen=history_size)
        self.frame_times = deque(maxlen=frame_time_window)
        self.frame_rate: Optional[float] = None
        self.last_frame_time: Optional[float] = None
        self.filtered_speed = 0.0
        self.max_speed = 0.0

    def reset(self):
        """Clear all speed and timing state for a new session."""
        self.speed_history.clear()
        self.frame_times.clear()
        self.frame_rate = None
        self.last_frame_time = None
        self.filtered_speed = 0.0
        self.max_speed = 0.0

    def update_frame_rate(self, timestamp: float) -> bool:
        """
        Record a frame arrival and re-estimate the frame rate.

        Args:
            timestamp: Frame time in seconds

        Returns:
            True if a valid interval was recorded; zero or negative intervals
            are skipped
        """
        previous = self.last_frame_time
        if previous is not None and timestamp <= previous:
            return False

        self.last_frame_time = timestamp
        if previous is None:
            return False

        self.frame_times.append(timestamp - previous)
        self.frame_rate = 1.0 / float(np.mean(self.frame_times))
        return True

    def raw_speed(self, velocity: Tuple[float, float]) -> Optional[float]:
        """Unfiltered speed in units per second, or None before the frame rate is known."""
        if self.frame_rate is None:
            return None
        distance = float(np.hypot(velocity[0], velocity[1]))
        return self.calibration.pixels_to_units(distance) * self.frame_rate

    def calculate_speed(self,
                        velocity: Optional[Tuple[float, float]],
                        timestamp: Optional[float] = None) -> float:
        """
        Update the filtered speed from the latest displacement.

        Args:
            velocity: (dx, dy) in pixels per frame, or None
            timestamp: Sample time in seconds (defaults to the last frame time)

        Returns:
            Filtered speed; unchanged when velocity or the frame rate is missing
        """
        if velocity is None:
            return self.filtered_speed

        raw = self.raw_speed(velocity)
        if raw is None:
            return self.filtered_speed

        self.filtered_speed = self.apply_filter(raw)

        if timestamp is None:
            timestamp = self.last_frame_time if self.last_frame_time is not None else 0.0
        self.speed_history.append(SpeedSample(speed=self.filtered_speed, timestamp=timestamp))

        if self.filtered_speed > self.max_speed:
            self.max_speed = self.filtered_speed

        return self.filtered_speed

    def apply_filter(self, speed: float) -> float:
        """One step of the recursive filter: f += gain * (raw - f)."""
        return self.filtered_speed + self.filter_gain * (speed - self.filtered_speed)

    def average_speed(self) -> float:
        """Mean of the filtered speeds in the rolling window (0 when empty)."""
        if not self.speed_history:
            return 0.0
        return float(np.mean([s.speed for s in self.speed_history]))

    def get_max_speed(self) -> float:
        return self.max_speed

    def get_statistics(self, speeds: List[float]) -> Dict:
        """
        Calculate aggregate statistics from multiple shots.

        Args:
            speeds: Shot speeds

        Returns:
            Dictionary with aggregate statistics
        """
        if not speeds:
            return {"error": "No valid speed data"}

        return {
            "average_speed": round(float(np.mean(speeds)), 2),
            "median_speed": round(float(np.median(speeds)), 2),
            "std_dev": round(float(np.std(speeds)), 2),
            "min_speed": round(float(min(speeds)), 2),
            "max_speed": round(float(max(speeds)), 2),
            "total_shots": len(speeds),
        }
