"""
Video driver that feeds frames to a tracking session, calibrates it from
command-line picks and reports hits and per-player speeds.
"""

import os
import argparse
from typing import Dict, List, Optional, Sequence, Tuple, Union

import cv2
import numpy as np

from ball_tracker import BallTracker
from color_model import CalibrationError
from hit_detector import ShotRecord
from spatial_calibration import SpatialCalibration, TABLE_LENGTH_FEET


Point = Tuple[float, float]


class VideoProcessor:
    """Runs a BallTracker over a video file or camera stream."""

    def __init__(self,
                 tracker: Optional[BallTracker] = None,
                 mirror: bool = False,
                 table_length: float = TABLE_LENGTH_FEET,
                 default_fps: float = 30.0):
        """
        Initialize video processor with dependency injection.

        Args:
            tracker: BallTracker instance (creates default if None)
            mirror: Flip frames horizontally before tracking (selfie cameras)
            table_length: Real table length used for two-point calibration
            default_fps: Frame rate assumed when the source does not report one

        Raises:
            ValueError: If table_length or default_fps are invalid
        """
        if table_length <= 0:
            raise ValueError(f"Invalid table_length: {table_length}. Must be positive.")

        if default_fps <= 0 or default_fps > 240:
            raise ValueError(f"Invalid default_fps: {default_fps}. Must be between 0 and 240.")

        if tracker is None:
            tracker = BallTracker(calibration=SpatialCalibration(reference_length=table_length))
        self.tracker = tracker
        self.mirror = mirror
        self.default_fps = default_fps
        self.tracker.subscribe(self._on_hit)

    def _on_hit(self, shot: ShotRecord):
        print(f"  Hit: Player {shot.player} at {shot.speed:.1f} ft/s (t={shot.timestamp:.2f}s)")

    def _to_rgb(self, frame: np.ndarray) -> np.ndarray:
        rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        if self.mirror:
            rgb = cv2.flip(rgb, 1)
        return rgb

    def calibrate(self,
                  frame: np.ndarray,
                  ball_points: Sequence[Point],
                  table_points: Optional[Sequence[Point]] = None,
                  table_fraction: Optional[float] = None) -> Dict:
        """
        Calibrate ball color and table scale on one RGB frame.

        Args:
            frame: RGB frame showing the ball
            ball_points: Picks on the ball
            table_points: Two picks at the ends of the table
            table_fraction: Share of the frame width covered by the table,
                used when table_points is not given

        Returns:
            Calibration status dictionary

        Raises:
            CalibrationError: If either calibration fails
        """
        if not ball_points:
            raise CalibrationError("At least one ball point is required")

        tracker = self.tracker
        required = tracker.required_color_points
        tracker.required_color_points = len(ball_points)
        try:
            tracker.start_color_calibration()
            for x, y in ball_points:
                tracker.add_color_calibration_sample(frame, x, y)
            tracker.finish_color_calibration()
        finally:
            tracker.required_color_points = required

        if table_points:
            if len(table_points) != 2:
                raise CalibrationError(f"Table calibration needs 2 points, got {len(table_points)}")
            tracker.start_table_calibration()
            for x, y in table_points:
                tracker.add_table_calibration_point(x, y)
        else:
            tracker.calibrate_table_fraction(frame.shape[1],
                                             table_fraction if table_fraction else 0.8)

        return tracker.get_calibration_status()

    def process_video(self,
                      source: Union[str, int],
                      ball_points: Sequence[Point],
                      table_points: Optional[Sequence[Point]] = None,
                      table_fraction: Optional[float] = None,
                      max_frames: Optional[int] = None) -> Dict:
        """
        Calibrate on the first frame, then track every frame of the source.

        Args:
            source: Video file path or camera index
            ball_points: Picks on the ball in the first frame
            table_points: Two picks at the table ends in the first frame
            table_fraction: Fallback table calibration (share of frame width)
            max_frames: Stop after this many frames

        Returns:
            Dictionary with processing results

        Raises:
            FileNotFoundError: If a video file doesn't exist
            ValueError: If the source cannot be opened
        """
        if isinstance(source, str):
            if not source.strip():
                raise ValueError(f"Invalid video path: {source}")
            if not os.path.exists(source):
                raise FileNotFoundError(f"Video file not found: {source}")

        cap = cv2.VideoCapture(source)
        if not cap.isOpened():
            raise ValueError(f"Could not open video source: {source}")

        fps = cap.get(cv2.CAP_PROP_FPS)
        if not fps or fps <= 0 or fps > 240:
            fps = self.default_fps

        print(f"\n{'='*60}")
        print(f"Tracking video: {source} at {fps:.1f} FPS")
        print(f"{'='*60}\n")

        frame_number = 0
        frames_detected = 0
        try:
            ret, frame = cap.read()
            if not ret:
                return {"success": False, "error": "Video has no frames"}

            print("Step 1: Calibrating...")
            try:
                self.calibrate(self._to_rgb(frame), ball_points, table_points, table_fraction)
            except CalibrationError as e:
                print(f"ERROR: Calibration failed: {e}")
                return {"success": False, "error": f"Calibration failed: {e}"}

            print("\nStep 2: Tracking ball...")
            self.tracker.start_tracking()
            while ret:
                timestamp = frame_number / fps
                result = self.tracker.process_frame(self._to_rgb(frame), timestamp)
                if result.detected:
                    frames_detected += 1

                frame_number += 1
                if max_frames is not None and frame_number >= max_frames:
                    break

                if frame_number % 300 == 0:
                    print(f"  Progress: {frame_number} frames - detected in {frames_detected}")

                ret, frame = cap.read()
        finally:
            cap.release()
            self.tracker.stop_tracking()

        return self._summarize(frame_number, frames_detected)

    def _summarize(self, frames_processed: int, frames_detected: int) -> Dict:
        tracker = self.tracker
        shots = tracker.shot_log.to_dataframe()

        per_player = {}
        for player in (1, 2):
            speeds: List[float] = [s.speed for s in tracker.shot_log.shots(player)]
            per_player[player] = tracker.speed_calc.get_statistics(speeds)

        detection_rate = (frames_detected / frames_processed * 100) if frames_processed else 0
        print(f"\nTracking complete: Ball detected in {frames_detected}/{frames_processed} "
              f"frames ({detection_rate:.1f}%)")
        print(f"Max speed: {tracker.get_max_speed():.1f} ft/s")

        if not shots.empty:
            summary = shots.groupby("player")["speed"].agg(["count", "mean", "max"]).round(2)
            print("\nShots by player:")
            print(summary.to_string())

        return {
            "success": True,
            "frames_processed": frames_processed,
            "frames_detected": frames_detected,
            "max_speed": tracker.get_max_speed(),
            "last_player": tracker.get_last_hit_player(),
            "total_hits": len(shots),
            "players": per_player,
        }


def _parse_point(text: str) -> Point:
    try:
        x, y = (float(v) for v in text.split(","))
    except ValueError:
        raise argparse.ArgumentTypeError(f"Expected X,Y but got '{text}'")
    return (x, y)


def main(argv: Optional[Sequence[str]] = None):
    """Command-line interface for video processing."""
    parser = argparse.ArgumentParser(
        description="Track a table-tennis ball, estimate its speed and attribute hits"
    )
    parser.add_argument(
        "--video", "-v",
        help="Path to video file"
    )
    parser.add_argument(
        "--camera", "-c",
        type=int,
        help="Camera index to read from instead of a file"
    )
    parser.add_argument(
        "--ball-point", "-p",
        type=_parse_point,
        action="append",
        required=True,
        help="X,Y of the ball in the first frame (repeat for more picks)"
    )
    parser.add_argument(
        "--table-point", "-t",
        type=_parse_point,
        action="append",
        help="X,Y of a table end in the first frame (give exactly two)"
    )
    parser.add_argument(
        "--table-fraction",
        type=float,
        default=0.8,
        help="Share of frame width covered by the table when no table points are given"
    )
    parser.add_argument(
        "--table-length",
        type=float,
        default=TABLE_LENGTH_FEET,
        help="Table length in feet"
    )
    parser.add_argument(
        "--mirror",
        action="store_true",
        help="Mirror frames horizontally (front-facing cameras)"
    )
    parser.add_argument(
        "--max-frames",
        type=int,
        help="Stop after this many frames"
    )

    args = parser.parse_args(argv)

    if args.video is None and args.camera is None:
        parser.error("Either --video or --camera must be specified")

    if args.video is not None and args.camera is not None:
        parser.error("Cannot use both --video and --camera at the same time")

    if args.table_point and len(args.table_point) != 2:
        parser.error("--table-point must be given exactly twice")

    processor = VideoProcessor(mirror=args.mirror, table_length=args.table_length)
    source = args.video if args.video is not None else args.camera

    try:
        result = processor.process_video(
            source,
            ball_points=args.ball_point,
            table_points=args.table_point,
            table_fraction=args.table_fraction,
            max_frames=args.max_frames,
        )
    except (FileNotFoundError, ValueError) as e:
        print(f"\nERROR: {e}")
        return 1

    if not result["success"]:
        print(f"\nProcessing failed: {result.get('error', 'Unknown error')}")
        return 1

    print("\nResults:")
    print(f"  Hits: {result['total_hits']}")
    print(f"  Max speed: {result['max_speed']:.1f} ft/s")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
