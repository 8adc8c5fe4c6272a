"""
Ball tracking session.

Ties the per-frame pipeline together and exposes the calibration and tracking
controls used by a UI or a video driver:

- Color calibration (multi-point, wide margins)
- Table calibration (two picks spanning the table length)
- Per-frame pipeline: segment -> refine -> track -> speed -> hit

A driver calls process_frame() once per frame; the session never schedules
itself.
"""

import numpy as np
from typing import Callable, List, Optional, Tuple
from dataclasses import dataclass

from color_model import ColorModel, ColorSample
from frame_segmenter import FrameSegmenter, Position
from position_refiner import PositionRefiner
from motion_tracker import MotionTracker, PlayerAttributor
from spatial_calibration import SpatialCalibration
from speed_calculator import SpeedCalculator
from hit_detector import HitDetector, ShotLog, ShotRecord


@dataclass
class TrackerState:
    """Session flags and headline numbers."""
    is_calibrating_color: bool = False
    is_calibrating_table: bool = False
    is_tracking: bool = False
    last_player: Optional[int] = None
    current_speed: float = 0.0
    max_speed: float = 0.0
    color_calibrated: bool = False
    table_calibrated: bool = False


@dataclass
class FrameResult:
    """Outcome of one pipeline pass."""
    timestamp: float
    position: Optional[Position] = None
    blob_size: int = 0
    moving: bool = False
    velocity: Optional[Tuple[float, float]] = None
    speed: Optional[float] = None
    player_change: Optional[int] = None
    hit: Optional[ShotRecord] = None

    @property
    def detected(self) -> bool:
        return self.position is not None


class BallTracker:
    """Single-ball tracking session for one table."""

    def __init__(self,
                 color_model: Optional[ColorModel] = None,
                 segmenter: Optional[FrameSegmenter] = None,
                 refiner: Optional[PositionRefiner] = None,
                 motion: Optional[MotionTracker] = None,
                 calibration: Optional[SpatialCalibration] = None,
                 speed_calc: Optional[SpeedCalculator] = None,
                 hit_detector: Optional[HitDetector] = None,
                 required_color_points: int = 5,
                 sample_window: int = 20,
                 midline: Optional[float] = None):
        """
        Initialize tracking session with dependency injection.

        Args:
            color_model: Ball color classifier (creates default if None)
            segmenter: Blob finder (creates default on color_model if None)
            refiner: Centroid refiner (creates default on color_model if None)
            motion: Jitter-gated position history (creates default if None)
            calibration: Pixel scale (creates default if None)
            speed_calc: Speed filter (creates default on calibration if None)
            hit_detector: Hit state machine (creates default if None)
            required_color_points: Picks that complete color calibration
            sample_window: Side of the square averaged at each color pick
            midline: x-coordinate splitting the table (default: half the frame width)

        Raises:
            ValueError: If parameters are invalid
        """
        if required_color_points < 1:
            raise ValueError(f"Invalid required_color_points: {required_color_points}. "
                             "Must be positive.")

        if sample_window < 1:
            raise ValueError(f"Invalid sample_window: {sample_window}. Must be positive.")

        self.color_model = color_model if color_model is not None else ColorModel()
        self.segmenter = segmenter if segmenter is not None else FrameSegmenter(self.color_model)
        self.refiner = refiner if refiner is not None else PositionRefiner(self.color_model)
        self.motion = motion if motion is not None else MotionTracker()
        self.calibration = calibration if calibration is not None else SpatialCalibration()
        self.speed_calc = speed_calc if speed_calc is not None else SpeedCalculator(self.calibration)
        self.hit_detector = hit_detector if hit_detector is not None else HitDetector()
        self.attributor = PlayerAttributor(midline)

        self.required_color_points = required_color_points
        self.sample_window = sample_window
        self.state = TrackerState()

        self._color_samples: List[ColorSample] = []
        self._table_points: List[Tuple[float, float]] = []
        self._subscribers: List[Callable[[ShotRecord], None]] = []

    @property
    def shot_log(self) -> ShotLog:
        return self.hit_detector.shot_log

    # ------------------------------------------------------------------
    # Calibration
    # ------------------------------------------------------------------

    def start_color_calibration(self) -> bool:
        """Enter color calibration mode. Ignored while tracking."""
        if self.state.is_tracking:
            return False
        self.state.is_calibrating_table = False
        self._table_points = []
        self.state.is_calibrating_color = True
        self._color_samples = []
        return True

    def add_color_calibration_sample(self, pixels: np.ndarray,
                                     x: float, y: float) -> Optional[ColorSample]:
        """
        Sample the ball color around a picked point.

        Calibration finishes automatically once required_color_points picks
        have been collected.

        Args:
            pixels: Current RGB(A) frame
            x, y: Picked point in frame coordinates

        Returns:
            The averaged sample, or None if the pick was ignored or held no
            valid pixels
        """
        if not self.state.is_calibrating_color:
            return None

        sample = self.color_model.sample_at(pixels, x, y, window=self.sample_window)
        if sample is None:
            return None

        self._color_samples.append(sample)
        if len(self._color_samples) >= self.required_color_points:
            self.finish_color_calibration()
        return sample

    @property
    def color_calibration_progress(self) -> Tuple[int, int]:
        return len(self._color_samples), self.required_color_points

    def finish_color_calibration(self):
        """
        Build the color range from the collected picks.

        Raises:
            CalibrationError: If no picks were collected; calibration mode and
                the previous range are kept so the caller can retry
        """
        if not self.state.is_calibrating_color:
            return self.color_model.color_range

        color_range = self.color_model.calibrate(self._color_samples)
        self.state.is_calibrating_color = False
        self.state.color_calibrated = True
        self._color_samples = []
        print(f"Color calibrated: H {color_range.h_min:.0f}-{color_range.h_max:.0f}, "
              f"S {color_range.s_min:.0f}-{color_range.s_max:.0f}, "
              f"V {color_range.v_min:.0f}-{color_range.v_max:.0f}")
        return color_range

    def start_table_calibration(self) -> bool:
        """Enter table calibration mode. Ignored while tracking."""
        if self.state.is_tracking:
            return False
        self.state.is_calibrating_color = False
        self._color_samples = []
        self.state.is_calibrating_table = True
        self._table_points = []
        return True

    def add_table_calibration_point(self, x: float, y: float) -> Optional[float]:
        """
        Record one end of the table; the second pick completes calibration.

        Returns:
            Pixels per unit once calibrated, otherwise None

        Raises:
            CalibrationError: If the two picks coincide; the picks are discarded
                and calibration mode is kept
        """
        if not self.state.is_calibrating_table:
            return None

        self._table_points.append((float(x), float(y)))
        if len(self._table_points) < 2:
            return None

        p1, p2 = self._table_points
        self._table_points = []
        scale = self.calibration.from_two_points(p1, p2)
        self.state.is_calibrating_table = False
        self.state.table_calibrated = True
        return scale

    def calibrate_table_fraction(self, frame_width: int, fraction: float = 0.8) -> Optional[float]:
        """Calibrate assuming the table spans a fraction of the frame width."""
        if self.state.is_tracking:
            return None
        scale = self.calibration.from_fraction(frame_width, fraction)
        self.state.is_calibrating_table = False
        self._table_points = []
        self.state.table_calibrated = True
        return scale

    # ------------------------------------------------------------------
    # Tracking
    # ------------------------------------------------------------------

    def start_tracking(self):
        """
        Start a tracking session.

        Raises:
            RuntimeError: If color or table calibration has not completed
        """
        if not (self.state.color_calibrated and self.state.table_calibrated):
            raise RuntimeError("Calibrate ball color and table before tracking")

        self.reset()
        self.state.is_calibrating_color = False
        self.state.is_calibrating_table = False
        self.state.is_tracking = True

    def stop_tracking(self):
        self.state.is_tracking = False

    def reset(self):
        """Reset session values; calibration is kept."""
        self.motion.reset()
        self.attributor.reset()
        self.speed_calc.reset()
        self.hit_detector.reset()
        self.shot_log.clear()
        self.state.last_player = None
        self.state.current_speed = 0.0
        self.state.max_speed = 0.0

    def subscribe(self, callback: Callable[[ShotRecord], None]):
        """Register a callback receiving every confirmed ShotRecord."""
        self._subscribers.append(callback)

    def unsubscribe(self, callback: Callable[[ShotRecord], None]):
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def process_frame(self, pixels: np.ndarray, timestamp: float) -> FrameResult:
        """
        Run one pipeline pass over a frame.

        Args:
            pixels: RGB(A) uint8 frame, already mirrored if needed
            timestamp: Frame time in seconds

        Returns:
            FrameResult; empty when not tracking or nothing was detected
        """
        result = FrameResult(timestamp=timestamp)
        if not self.state.is_tracking:
            return result

        self.speed_calc.update_frame_rate(timestamp)

        mask = self.segmenter.classify(pixels)
        blob = self.segmenter.detect(pixels, mask=mask)
        if blob is None:
            return result

        position = self.refiner.refine(pixels, blob.position, mask=mask)
        result.position = position
        result.blob_size = blob.size

        result.moving = self.motion.observe(position)
        if not result.moving:
            return result

        velocity = self.motion.velocity()
        result.velocity = velocity

        midline = self.attributor.midline
        if midline is None:
            midline = pixels.shape[1] / 2
        result.player_change = self.attributor.update(position, velocity, midline)

        # Average is taken before the new sample joins the window
        average = self.speed_calc.average_speed()
        speed = self.speed_calc.calculate_speed(velocity, timestamp)
        result.speed = speed
        self.state.current_speed = speed
        self.state.max_speed = self.speed_calc.get_max_speed()

        hit = self.hit_detector.update(speed, average, timestamp, self.attributor.last_player)
        if hit is not None:
            result.hit = hit
            self.state.last_player = hit.player
            for callback in list(self._subscribers):
                callback(hit)

        return result

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_current_position(self) -> Optional[Position]:
        return self.motion.current_position

    def get_velocity(self) -> Optional[Tuple[float, float]]:
        return self.motion.velocity()

    def get_current_speed(self) -> float:
        return self.state.current_speed

    def get_max_speed(self) -> float:
        return self.state.max_speed

    def get_last_hit_player(self) -> Optional[int]:
        return self.state.last_player

    def get_calibration_status(self):
        """Color range and pixel scale currently in use."""
        return {
            "color_calibrated": self.state.color_calibrated,
            "color_range": self.color_model.color_range,
            **self.calibration.get_calibration_status(),
            "table_calibrated": self.state.table_calibrated,
        }
