"""Prometheus counters describing a replication session."""

from __future__ import annotations

from typing import Dict, Optional

from prometheus_client import CollectorRegistry, Counter, Gauge


class SessionMetrics:
    """Counters and gauges registered on a per-session registry."""

    def __init__(
        self,
        namespace: str = "wal_subscriber",
        registry: Optional[CollectorRegistry] = None,
    ) -> None:
        self.registry = registry or CollectorRegistry()
        self._namespace = namespace
        self._writes = Counter(
            "write_messages",
            "Write frames received from the WAL stream",
            namespace=namespace,
            registry=self.registry,
        )
        self._dispatched = Counter(
            "changes_dispatched",
            "Row changes passed to downstream hooks",
            ["operation"],
            namespace=namespace,
            registry=self.registry,
        )
        self._skipped = Counter(
            "changes_skipped",
            "Row changes acknowledged without dispatch while lagging",
            namespace=namespace,
            registry=self.registry,
        )
        self._acks = Counter(
            "acknowledgments",
            "Standby status updates sent to the server",
            namespace=namespace,
            registry=self.registry,
        )
        self._unsupported = Counter(
            "unsupported_messages",
            "Logical messages that could not be decoded",
            namespace=namespace,
            registry=self.registry,
        )
        self._acked_lsn = Gauge(
            "acknowledged_lsn",
            "Last WAL position reported as flushed",
            namespace=namespace,
            registry=self.registry,
        )
        self._lag = Gauge(
            "lag_seconds",
            "Lag between commit time and processing of the last transaction",
            namespace=namespace,
            registry=self.registry,
        )

    def inc_writes(self) -> None:
        self._writes.inc()

    def inc_dispatched(self, operation: str) -> None:
        self._dispatched.labels(operation=operation).inc()

    def inc_skipped(self) -> None:
        self._skipped.inc()

    def inc_unsupported(self) -> None:
        self._unsupported.inc()

    def record_ack(self, lsn: int) -> None:
        self._acks.inc()
        self._acked_lsn.set(lsn)

    def set_lag(self, seconds: float) -> None:
        self._lag.set(seconds)

    def _value(self, name: str, labels: Optional[Dict[str, str]] = None) -> float:
        value = self.registry.get_sample_value(f"{self._namespace}_{name}", labels)
        return value or 0.0

    def snapshot(self) -> Dict[str, float]:
        dispatched = {
            operation: self._value("changes_dispatched_total", {"operation": operation})
            for operation in ("insert", "update", "delete")
        }
        return {
            "write_messages_total": self._value("write_messages_total"),
            "changes_dispatched_total": sum(dispatched.values()),
            "inserts_dispatched_total": dispatched["insert"],
            "updates_dispatched_total": dispatched["update"],
            "deletes_dispatched_total": dispatched["delete"],
            "changes_skipped_total": self._value("changes_skipped_total"),
            "acknowledgments_total": self._value("acknowledgments_total"),
            "unsupported_messages_total": self._value("unsupported_messages_total"),
            "acknowledged_lsn": self._value("acknowledged_lsn"),
            "lag_seconds": self._value("lag_seconds"),
        }


__all__ = ["SessionMetrics"]
