"""
Motion tracking and player attribution.

Keeps a short history of ball positions, suppresses jitter from a stationary
ball and reports the frame-to-frame displacement used for speed.
"""

import numpy as np
from collections import deque
from typing import Optional, Tuple

from frame_segmenter import Position


PLAYER_1 = 1
PLAYER_2 = 2


def attribute_player(x: float, dx: float, midline: float) -> Optional[int]:
    """
    Decide which player sent the ball.

    A ball moving right while left of the midline was hit by player 1; a ball
    moving left while right of the midline was hit by player 2.

    Args:
        x: Current ball x-coordinate
        dx: Horizontal displacement since the previous accepted position
        midline: x-coordinate splitting the two halves of the table

    Returns:
        1, 2, or None when the motion does not identify a player
    """
    if dx > 0 and x < midline:
        return PLAYER_1
    if dx < 0 and x > midline:
        return PLAYER_2
    return None


class MotionTracker:
    """Bounded position history with a jitter gate."""

    def __init__(self, jitter_threshold: float = 5.0, history_size: int = 10):
        """
        Initialize motion tracker.

        Args:
            jitter_threshold: Minimum step in pixels treated as real motion
            history_size: Positions kept in each ring buffer (2 to 10)

        Raises:
            ValueError: If parameters are invalid
        """
        if jitter_threshold < 0:
            raise ValueError(f"Invalid jitter_threshold: {jitter_threshold}. Must be non-negative.")

        if history_size < 2 or history_size > 10:
            raise ValueError(f"Invalid history_size: {history_size}. Must be between 2 and 10.")

        self.jitter_threshold = jitter_threshold
        self.history = deque(maxlen=history_size)
        self.accepted = deque(maxlen=history_size)

    def observe(self, position: Position) -> bool:
        """
        Record a detected position.

        When the step from the previous observation clears the jitter gate,
        both ends of the step become accepted positions.

        Returns:
            True if the step was significant motion
        """
        position = Position(float(position[0]), float(position[1]))
        self.history.append(position)

        if not self.has_significant_motion():
            return False

        previous = self.history[-2]
        if not self.accepted or self.accepted[-1] != previous:
            self.accepted.append(previous)
        self.accepted.append(position)
        return True

    def has_significant_motion(self) -> bool:
        """True when the latest two observations are farther apart than the threshold."""
        if len(self.history) < 2:
            return False
        (x1, y1), (x2, y2) = self.history[-2], self.history[-1]
        return float(np.hypot(x2 - x1, y2 - y1)) > self.jitter_threshold

    def velocity(self) -> Optional[Tuple[float, float]]:
        """Displacement between the two most recent accepted positions."""
        if len(self.accepted) < 2:
            return None
        (x1, y1), (x2, y2) = self.accepted[-2], self.accepted[-1]
        return (x2 - x1, y2 - y1)

    @property
    def current_position(self) -> Optional[Position]:
        return self.history[-1] if self.history else None

    @property
    def previous_position(self) -> Optional[Position]:
        return self.history[-2] if len(self.history) >= 2 else None

    def reset(self):
        """Forget all positions."""
        self.history.clear()
        self.accepted.clear()


class PlayerAttributor:
    """Tracks the last player to send the ball and reports changes only."""

    def __init__(self, midline: Optional[float] = None):
        self.midline = midline
        self.last_player: Optional[int] = None

    def update(self, position: Position,
               velocity: Optional[Tuple[float, float]],
               midline: Optional[float] = None) -> Optional[int]:
        """
        Apply the attribution rule to the latest motion.

        Args:
            position: Current ball position
            velocity: Latest (dx, dy), or None
            midline: Overrides the attributor's midline for this call

        Returns:
            The newly attributed player if it differs from the last one,
            otherwise None

        Raises:
            ValueError: If no midline is known
        """
        midline = self.midline if midline is None else midline
        if midline is None:
            raise ValueError("Midline is not set")

        if velocity is None:
            return None

        player = attribute_player(position[0], velocity[0], midline)
        if player is None or player == self.last_player:
            return None

        self.last_player = player
        return player

    def reset(self):
        self.last_player = None
