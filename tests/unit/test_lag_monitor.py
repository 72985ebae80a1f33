import logging
from datetime import datetime, timedelta, timezone

import pytest

from wal_subscriber.cdc.lag import LagMonitor

NOW = datetime(2025, 9, 1, 12, 0, tzinfo=timezone.utc)


def _monitor(warning: float = 30.0, error: float = 60.0) -> LagMonitor:
    return LagMonitor(warning, error, clock=lambda: NOW)


def _committed(seconds_ago: float) -> datetime:
    return NOW - timedelta(seconds=seconds_ago)


@pytest.mark.unit
def test_warning_flag_transitions_once_each_way(caplog):
    monitor = _monitor()
    caplog.set_level(logging.INFO, logger="wal_subscriber.cdc.lag")

    for lag in (1, 29.9, 30, 45, 59, 31):
        monitor.observe(_committed(lag))
    assert monitor.warning_exceeded
    for lag in (29, 5, 0):
        monitor.observe(_committed(lag))
    assert not monitor.warning_exceeded

    raised = [r for r in caplog.records if "exceeds warning" in r.getMessage()]
    cleared = [r for r in caplog.records if "below warning" in r.getMessage()]
    assert len(raised) == 1
    assert raised[0].levelno == logging.WARNING
    assert len(cleared) == 1
    assert cleared[0].levelno == logging.INFO


@pytest.mark.unit
def test_error_flag_is_independent_of_warning(caplog):
    monitor = _monitor()
    caplog.set_level(logging.INFO, logger="wal_subscriber.cdc.lag")

    monitor.observe(_committed(61))
    assert monitor.warning_exceeded
    assert monitor.error_exceeded

    monitor.observe(_committed(40))
    assert monitor.warning_exceeded
    assert not monitor.error_exceeded

    errors = [r for r in caplog.records if r.levelno == logging.ERROR]
    assert len(errors) == 1
    assert "skipping side effects" in errors[0].getMessage()


@pytest.mark.unit
def test_observe_returns_lag_and_accepts_naive_timestamps():
    monitor = _monitor()

    lag = monitor.observe(_committed(12.5).replace(tzinfo=None))

    assert lag == pytest.approx(12.5)
    assert monitor.last_lag_seconds == pytest.approx(12.5)
    assert not monitor.warning_exceeded


@pytest.mark.unit
def test_thresholds_must_be_positive():
    with pytest.raises(ValueError):
        LagMonitor(0, 10)
    with pytest.raises(ValueError):
        LagMonitor(10, -1)
