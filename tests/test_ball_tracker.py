"""
Unit tests for ball_tracker module.
"""

import pytest
import numpy as np
import cv2
from unittest.mock import Mock
import sys
import os

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from ball_tracker import BallTracker
from color_model import CalibrationError
from hit_detector import HitDetector


ORANGE = (255, 128, 0)
WIDTH, HEIGHT = 640, 240


def ball_frame(x, y=120, radius=15):
    """RGB frame with a filled orange ball on black."""
    frame = np.zeros((HEIGHT, WIDTH, 3), dtype=np.uint8)
    cv2.circle(frame, (int(x), int(y)), radius, ORANGE, -1)
    return frame


def calibrated_tracker(**kwargs):
    tracker = BallTracker(**kwargs)
    frame = ball_frame(100)

    tracker.start_color_calibration()
    for _ in range(tracker.required_color_points):
        tracker.add_color_calibration_sample(frame, 100, 120)

    tracker.start_table_calibration()
    tracker.add_table_calibration_point(0, 0)
    tracker.add_table_calibration_point(900, 0)
    return tracker


class TestBallTracker:
    """Test cases for BallTracker class."""

    def test_initialization(self):
        """Test tracker initialization with default parameters."""
        tracker = BallTracker()

        assert tracker.required_color_points == 5
        assert not tracker.state.is_tracking
        assert tracker.get_current_position() is None
        assert tracker.get_last_hit_player() is None
        assert tracker.speed_calc.calibration is tracker.calibration

    def test_invalid_params(self):
        with pytest.raises(ValueError):
            BallTracker(required_color_points=0)

        with pytest.raises(ValueError):
            BallTracker(sample_window=0)

    def test_color_calibration_finishes_automatically(self):
        """Test the last required pick completes color calibration."""
        tracker = BallTracker()
        frame = ball_frame(100)

        assert tracker.start_color_calibration()
        for _ in range(4):
            tracker.add_color_calibration_sample(frame, 100, 120)

        assert tracker.color_calibration_progress == (4, 5)
        assert tracker.state.is_calibrating_color

        tracker.add_color_calibration_sample(frame, 100, 120)

        assert not tracker.state.is_calibrating_color
        assert tracker.state.color_calibrated
        assert tracker.color_model.color_range.h_min == 10
        assert tracker.color_model.color_range.h_max == 50

    def test_color_sample_ignored_outside_mode(self):
        tracker = BallTracker()

        assert tracker.add_color_calibration_sample(ball_frame(100), 100, 120) is None
        assert tracker.color_calibration_progress == (0, 5)

    def test_finish_without_samples(self):
        """Test finishing with no picks fails and keeps calibration mode."""
        tracker = BallTracker()
        previous = tracker.color_model.color_range
        tracker.start_color_calibration()

        with pytest.raises(CalibrationError):
            tracker.finish_color_calibration()

        assert tracker.state.is_calibrating_color
        assert not tracker.state.color_calibrated
        assert tracker.color_model.color_range == previous

    def test_table_calibration(self):
        tracker = BallTracker()

        tracker.start_table_calibration()
        assert tracker.add_table_calibration_point(0, 0) is None
        scale = tracker.add_table_calibration_point(300, 0)

        assert scale == pytest.approx(300 / 9)
        assert tracker.state.table_calibrated
        assert not tracker.state.is_calibrating_table

    def test_table_calibration_identical_points(self):
        """Test coincident picks fail and leave the mode open for a retry."""
        tracker = BallTracker()
        tracker.start_table_calibration()
        tracker.add_table_calibration_point(50, 50)

        with pytest.raises(CalibrationError):
            tracker.add_table_calibration_point(50, 50)

        assert tracker.state.is_calibrating_table
        assert not tracker.state.table_calibrated
        assert tracker.calibration.pixels_per_unit == 100.0

        tracker.add_table_calibration_point(0, 0)
        assert tracker.add_table_calibration_point(450, 0) == pytest.approx(50.0)

    def test_modes_are_exclusive(self):
        tracker = BallTracker()
        tracker.start_color_calibration()

        tracker.start_table_calibration()

        assert tracker.state.is_calibrating_table
        assert not tracker.state.is_calibrating_color

    def test_start_tracking_requires_calibration(self):
        tracker = BallTracker()

        with pytest.raises(RuntimeError):
            tracker.start_tracking()

        tracker.calibrate_table_fraction(WIDTH)
        with pytest.raises(RuntimeError):
            tracker.start_tracking()

    def test_calibration_ignored_while_tracking(self):
        """Test calibration inputs have no effect during tracking."""
        tracker = calibrated_tracker()
        tracker.start_tracking()
        scale = tracker.calibration.pixels_per_unit

        assert tracker.start_color_calibration() is False
        assert tracker.start_table_calibration() is False
        assert tracker.calibrate_table_fraction(WIDTH) is None
        assert tracker.add_table_calibration_point(0, 0) is None

        assert tracker.state.is_tracking
        assert tracker.calibration.pixels_per_unit == scale

    def test_process_frame_when_not_tracking(self):
        tracker = calibrated_tracker()

        result = tracker.process_frame(ball_frame(100), 0.0)

        assert not result.detected
        assert tracker.get_current_position() is None

    def test_no_ball_in_frame(self):
        tracker = calibrated_tracker()
        tracker.start_tracking()

        result = tracker.process_frame(np.zeros((HEIGHT, WIDTH, 3), dtype=np.uint8), 0.0)

        assert not result.detected
        assert result.speed is None

    def test_stationary_ball_has_no_speed(self):
        tracker = calibrated_tracker()
        tracker.start_tracking()

        results = [tracker.process_frame(ball_frame(200), i / 30) for i in range(5)]

        assert all(r.detected for r in results)
        assert not any(r.moving for r in results)
        assert tracker.get_current_speed() == 0.0

    def test_large_ball_is_centered(self):
        """Test a ball bigger than the segmenter's region cap is tracked at its center."""
        tracker = calibrated_tracker()
        tracker.start_tracking()
        frame = np.zeros((480, 640, 3), dtype=np.uint8)
        cv2.circle(frame, (320, 240), 60, ORANGE, -1)

        result = tracker.process_frame(frame, 0.0)

        assert result.blob_size == tracker.segmenter.max_region_pixels
        assert result.position.x == pytest.approx(320, abs=1)
        assert result.position.y == pytest.approx(240, abs=1)

    def test_reset_keeps_calibration(self):
        tracker = calibrated_tracker()
        tracker.start_tracking()
        tracker.process_frame(ball_frame(100), 0.0)
        tracker.process_frame(ball_frame(130), 1 / 30)

        tracker.reset()

        assert tracker.get_current_position() is None
        assert tracker.get_max_speed() == 0.0
        status = tracker.get_calibration_status()
        assert status["color_calibrated"]
        assert status["table_calibrated"]
        assert status["pixels_per_unit"] == pytest.approx(100.0)

    def test_unsubscribe(self):
        tracker = calibrated_tracker(hit_detector=HitDetector(speed_change_threshold=1.0))
        callback = Mock()
        tracker.subscribe(callback)
        tracker.unsubscribe(callback)
        tracker.start_tracking()

        for i in range(3):
            tracker.process_frame(ball_frame(100 + 30 * i), i / 30)

        callback.assert_not_called()
        assert len(tracker.shot_log) == 1


class TestBallTrackerIntegration:
    """End-to-end tests on synthetic rallies."""

    def test_rally_toward_far_side(self):
        """Test a ball moving right from the near half is one hit by player 1."""
        tracker = calibrated_tracker(hit_detector=HitDetector(speed_change_threshold=1.0))
        hits = []
        tracker.subscribe(hits.append)
        tracker.start_tracking()

        results = [tracker.process_frame(ball_frame(100 + 30 * i), i / 30)
                   for i in range(8)]

        assert all(r.detected for r in results)
        assert results[0].position.x == pytest.approx(100.0)
        assert not results[0].moving
        assert results[1].velocity == pytest.approx((30.0, 0.0))

        # 30 px/frame at 30 fps and 100 px/unit is 9 units/s
        assert tracker.speed_calc.frame_rate == pytest.approx(30.0)
        assert results[1].speed == pytest.approx(1.8)
        speeds = [r.speed for r in results[1:]]
        assert all(b > a for a, b in zip(speeds, speeds[1:]))
        assert tracker.get_max_speed() == pytest.approx(speeds[-1])

        changes = [r.player_change for r in results if r.player_change is not None]
        assert changes == [1]

        assert len(hits) == 1
        assert hits[0].player == 1
        assert hits[0].timestamp == pytest.approx(1 / 30)
        assert tracker.get_last_hit_player() == 1
        assert tracker.shot_log.recent(1) == hits

    def test_linear_pass_across_midline(self):
        """Test 100 to 400 px over 10 frames gives one attribution change and one hit."""
        tracker = calibrated_tracker(hit_detector=HitDetector(speed_change_threshold=1.0),
                                     midline=320)
        tracker.start_tracking()

        xs = [round(100 + i * 300 / 9) for i in range(10)]
        results = [tracker.process_frame(ball_frame(x), i / 30) for i, x in enumerate(xs)]

        assert xs[-1] == 400
        changes = [i for i, r in enumerate(results) if r.player_change is not None]
        hits = [i for i, r in enumerate(results) if r.hit]
        # First moving frame, while the ball is still left of the midline
        assert changes == [1]
        assert hits == [1]
        assert results[1].position.x < 320
        assert results[1].player_change == 1
        assert results[1].hit.player == 1
        assert results[-1].speed == pytest.approx(10.0 * (1 - 0.8 ** 9), rel=0.05)

    def test_rally_toward_near_side(self):
        """Test a ball moving left from the far half is attributed to player 2."""
        tracker = calibrated_tracker(hit_detector=HitDetector(speed_change_threshold=1.0))
        tracker.start_tracking()

        for i in range(6):
            tracker.process_frame(ball_frame(560 - 30 * i), i / 30)

        assert tracker.get_last_hit_player() == 2
        assert len(tracker.shot_log.shots(2)) == 1
        assert tracker.shot_log.shots(1) == []

    def test_default_threshold_ignores_slow_start(self):
        """Test a gentle acceleration stays under the default change threshold."""
        tracker = calibrated_tracker()
        tracker.start_tracking()

        for i in range(8):
            tracker.process_frame(ball_frame(100 + 30 * i), i / 30)

        assert len(tracker.shot_log) == 0
        assert tracker.get_last_hit_player() is None
        assert tracker.get_current_speed() > 0

    def test_restart_clears_session(self):
        tracker = calibrated_tracker(hit_detector=HitDetector(speed_change_threshold=1.0))
        tracker.start_tracking()
        for i in range(3):
            tracker.process_frame(ball_frame(100 + 30 * i), i / 30)
        tracker.stop_tracking()

        tracker.start_tracking()

        assert len(tracker.shot_log) == 0
        assert tracker.get_last_hit_player() is None
        assert tracker.speed_calc.frame_rate is None


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
