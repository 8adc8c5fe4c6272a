"""
Paddle hit detection.

A hit is a step change of the filtered speed away from its rolling average,
within a plausible speed band, outside the cooldown after the previous hit.
"""

import pandas as pd
from enum import Enum
from typing import Dict, List, Optional
from dataclasses import dataclass, asdict


class HitState(Enum):
    IDLE = "idle"
    ARMED = "armed"


@dataclass(frozen=True)
class ShotRecord:
    """A confirmed hit attributed to a player."""
    player: int
    speed: float
    timestamp: float


HitEvent = ShotRecord


class ShotLog:
    """Append-only shot lists per player."""

    def __init__(self, players=(1, 2)):
        self._shots: Dict[int, List[ShotRecord]] = {p: [] for p in players}

    def append(self, shot: ShotRecord):
        if shot.player not in self._shots:
            raise ValueError(f"Unknown player: {shot.player}")
        self._shots[shot.player].append(shot)

    def shots(self, player: int) -> List[ShotRecord]:
        return list(self._shots[player])

    def recent(self, player: int, count: int = 3) -> List[ShotRecord]:
        """Last count shots of a player, newest first."""
        return self._shots[player][-count:][::-1] if count > 0 else []

    def all_shots(self) -> List[ShotRecord]:
        shots = [s for player_shots in self._shots.values() for s in player_shots]
        return sorted(shots, key=lambda s: s.timestamp)

    def to_dataframe(self) -> pd.DataFrame:
        """Shots as a table ordered by time (columns: player, speed, timestamp)."""
        return pd.DataFrame([asdict(s) for s in self.all_shots()],
                            columns=["player", "speed", "timestamp"])

    def clear(self):
        for player_shots in self._shots.values():
            player_shots.clear()

    def __len__(self):
        return sum(len(s) for s in self._shots.values())


class HitDetector:
    """IDLE/ARMED state machine turning the speed stream into hit events."""

    def __init__(self,
                 cooldown: float = 0.5,
                 speed_change_threshold: float = 5.0,
                 min_speed: float = 0.5,
                 max_speed: float = 50.0,
                 shot_log: Optional[ShotLog] = None):
        """
        Initialize hit detector.

        Args:
            cooldown: Seconds after a hit during which no hit is confirmed
            speed_change_threshold: Minimum |speed - average| for a hit
            min_speed: Speeds at or below this are treated as noise
            max_speed: Speeds at or above this are treated as detection glitches
            shot_log: Log receiving confirmed shots (creates one if None)

        Raises:
            ValueError: If parameters are invalid
        """
        if cooldown < 0:
            raise ValueError(f"Invalid cooldown: {cooldown}. Must be non-negative.")

        if speed_change_threshold < 0:
            raise ValueError(f"Invalid speed_change_threshold: {speed_change_threshold}. "
                             "Must be non-negative.")

        if min_speed < 0 or max_speed <= min_speed:
            raise ValueError(f"Invalid speed band: ({min_speed}, {max_speed})")

        self.cooldown = cooldown
        self.speed_change_threshold = speed_change_threshold
        self.min_speed = min_speed
        self.max_speed = max_speed
        self.shot_log = shot_log if shot_log is not None else ShotLog()
        self.last_hit_time: Optional[float] = None
        self.state = HitState.IDLE

    def reset(self):
        self.last_hit_time = None
        self.state = HitState.IDLE

    def in_cooldown(self, timestamp: float) -> bool:
        return (self.last_hit_time is not None and
                timestamp - self.last_hit_time < self.cooldown)

    def update(self, speed: float, average_speed: float,
               timestamp: float, player: Optional[int]) -> Optional[HitEvent]:
        """
        Feed one filtered speed sample.

        Args:
            speed: Current filtered speed
            average_speed: Rolling average the change is measured against
            timestamp: Sample time in seconds
            player: Player the current motion is attributed to, if known

        Returns:
            HitEvent when a hit is confirmed, otherwise None
        """
        if self.in_cooldown(timestamp):
            self.state = HitState.ARMED
            return None
        self.state = HitState.IDLE

        if abs(speed - average_speed) <= self.speed_change_threshold:
            return None

        if not self.min_speed < speed < self.max_speed:
            return None

        if player is None:
            return None

        event = HitEvent(player=player, speed=speed, timestamp=timestamp)
        self.shot_log.append(event)
        self.last_hit_time = timestamp
        self.state = HitState.ARMED
        return event
