"""Replication lag tracking with warning and error thresholds."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LagMonitor:
    """Tracks commit-to-processing lag as two independent flags.

    Each flag is raised when lag reaches its threshold and cleared when lag
    drops below it again.  Transitions are logged once; repeated evaluations on
    the same side of a threshold are silent.
    """

    def __init__(
        self,
        warning_threshold_seconds: float,
        error_threshold_seconds: float,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if warning_threshold_seconds <= 0:
            raise ValueError("warning_threshold_seconds must be positive")
        if error_threshold_seconds <= 0:
            raise ValueError("error_threshold_seconds must be positive")
        self.warning_threshold_seconds = warning_threshold_seconds
        self.error_threshold_seconds = error_threshold_seconds
        self._clock = clock
        self._warning_exceeded = False
        self._error_exceeded = False
        self._last_lag: Optional[float] = None

    @property
    def warning_exceeded(self) -> bool:
        return self._warning_exceeded

    @property
    def error_exceeded(self) -> bool:
        return self._error_exceeded

    @property
    def last_lag_seconds(self) -> Optional[float]:
        return self._last_lag

    def observe(self, commit_timestamp: datetime) -> float:
        """Evaluate both thresholds against the lag of a transaction."""
        if commit_timestamp.tzinfo is None:
            commit_timestamp = commit_timestamp.replace(tzinfo=timezone.utc)
        lag = (self._clock() - commit_timestamp).total_seconds()
        self._last_lag = lag
        self._check_warning(lag)
        self._check_error(lag)
        return lag

    def _check_warning(self, lag: float) -> None:
        if not self._warning_exceeded and lag >= self.warning_threshold_seconds:
            self._warning_exceeded = True
            logger.warning(
                "processing lag exceeds warning threshold (lag_ms=%d)", lag * 1000
            )
        elif self._warning_exceeded and lag < self.warning_threshold_seconds:
            self._warning_exceeded = False
            logger.info(
                "processing lag is back below warning threshold (lag_ms=%d)",
                lag * 1000,
            )

    def _check_error(self, lag: float) -> None:
        if not self._error_exceeded and lag >= self.error_threshold_seconds:
            self._error_exceeded = True
            logger.error(
                "processing lag exceeds error threshold; skipping side effects "
                "(lag_ms=%d)",
                lag * 1000,
            )
        elif self._error_exceeded and lag < self.error_threshold_seconds:
            self._error_exceeded = False
            logger.info(
                "processing lag is back below error threshold (lag_ms=%d)",
                lag * 1000,
            )


__all__ = ["LagMonitor"]
