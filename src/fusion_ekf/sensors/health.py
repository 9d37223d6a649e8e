"""
Per-sensor update health tracking for the fusion controller.

Every measurement that reaches the filter either produces an applied update
or is skipped (degenerate radar geometry, singular innovation covariance).
SensorHealth keeps the running tally for one sensor type so that callers can
tell a sensor that is occasionally skipped from one that is persistently
unusable.

Reliability Model:
    reliability = max(0.0, 1.0 - decay * consecutive_skips)    on skip
    reliability = min(1.0, reliability + recovery_rate)        on applied update

Health is reporting only: it never changes how measurements are dispatched.
"""

from typing import Optional


class SensorHealth:
    """
    Tracks applied and skipped updates for one sensor type.

    Attributes:
        is_operational: False once consecutive skips reach the threshold
        reliability: Float [0.0, 1.0] trust score
        applied_count: Total number of applied updates
        skipped_count: Total number of skipped updates
        consecutive_skips: Current streak of skipped updates
        last_applied_timestamp: Timestamp (µs) of the last applied update
    """

    def __init__(self, skip_threshold: int = 5, reliability_decay: float = 0.15,
                 recovery_rate: float = 0.05):
        """
        Initialize sensor health tracker.

        Args:
            skip_threshold: Consecutive skips before marking non-operational
            reliability_decay: Reliability penalty per consecutive skip
            recovery_rate: Reliability gain per applied update
        """
        if skip_threshold <= 0:
            raise ValueError(f"Skip threshold must be positive, got {skip_threshold}")
        if not 0.0 <= reliability_decay <= 1.0:
            raise ValueError(f"Reliability decay must be in [0, 1], got {reliability_decay}")

        self._skip_threshold = skip_threshold
        self._reliability_decay = reliability_decay
        self._recovery_rate = recovery_rate
        self.reset_health()

    def record_skip(self) -> None:
        """Record an update that was not applied to the filter."""
        self.skipped_count += 1
        self.consecutive_skips += 1

        penalty = min(0.9, self._reliability_decay * self.consecutive_skips)
        self.reliability = max(0.0, 1.0 - penalty)

        if self.consecutive_skips >= self._skip_threshold:
            self.is_operational = False

    def record_applied(self, timestamp: Optional[int] = None) -> None:
        """Record an update that was applied to the filter."""
        self.applied_count += 1
        self.consecutive_skips = 0
        if timestamp is not None:
            self.last_applied_timestamp = timestamp

        self.reliability = min(1.0, self.reliability + self._recovery_rate)

        if not self.is_operational and self.reliability > 0.5:
            self.is_operational = True

    def get_skip_rate(self) -> float:
        """Fraction of updates that were skipped, 0.0 before any update."""
        total = self.applied_count + self.skipped_count
        if total == 0:
            return 0.0
        return self.skipped_count / total

    def reset_health(self) -> None:
        """Reset all counters to the initial state."""
        self.is_operational = True
        self.reliability = 1.0
        self.applied_count = 0
        self.skipped_count = 0
        self.consecutive_skips = 0
        self.last_applied_timestamp = None

    def get_health_summary(self) -> dict:
        return {
            'operational': self.is_operational,
            'reliability': self.reliability,
            'applied_count': self.applied_count,
            'skipped_count': self.skipped_count,
            'consecutive_skips': self.consecutive_skips,
            'skip_rate': self.get_skip_rate(),
            'last_applied_timestamp': self.last_applied_timestamp,
        }
