"""CORS alert system - severity-tiered alerts for origin abuse.

Violation counts are kept per (origin, client address) pair and cleared
wholesale once per reset interval (hourly by default). Within one window a
key's count only grows, so its alerts can escalate but never de-escalate.
Alerts live in a bounded in-memory buffer, newest first.

State is per process: several instances behind a load balancer each count
only the violations they saw themselves.
"""

import asyncio
import logging
import secrets
import threading
from collections import Counter, deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

MAX_USER_AGENT_LENGTH = 200


class AlertKind(str, Enum):
    VIOLATION = "VIOLATION"
    SUSPICIOUS = "SUSPICIOUS"
    BLOCKED = "BLOCKED"


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


# Checked highest first against the number of prior events for the key
SEVERITY_THRESHOLDS: tuple[tuple[int, Severity], ...] = (
    (50, Severity.CRITICAL),
    (20, Severity.HIGH),
    (10, Severity.MEDIUM),
)


def severity_for(prior_count: int) -> Severity:
    """Map the number of earlier events in the window to a severity."""
    for threshold, severity in SEVERITY_THRESHOLDS:
        if prior_count >= threshold:
            return severity
    return Severity.LOW


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class Alert:
    """An immutable security alert."""

    id: str
    timestamp: datetime
    kind: AlertKind
    severity: Severity
    origin: str
    client_addr: str
    user_agent: str
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "kind": self.kind.value,
            "severity": self.severity.value,
            "origin": self.origin,
            "client_addr": self.client_addr,
            "user_agent": self.user_agent,
            "details": dict(self.details),
        }


@dataclass(frozen=True)
class ViolationRecord:
    origin: str
    client_addr: str
    count: int
    window_started_at: datetime


class ViolationCounter:
    """Per-(origin, client) event counter with a coarse periodic reset.

    Not synchronised; AlertSystem serialises access under its own lock.
    """

    def __init__(
        self,
        reset_interval: timedelta = timedelta(hours=1),
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._reset_interval = reset_interval
        self._clock = clock
        self._counts: dict[tuple[str, str], int] = {}
        self._window_started_at = clock()

    @property
    def window_started_at(self) -> datetime:
        return self._window_started_at

    def rollover_if_due(self) -> bool:
        """Clear every count once the current window has elapsed."""
        now = self._clock()
        if now - self._window_started_at < self._reset_interval:
            return False
        self.reset(now)
        return True

    def reset(self, now: datetime | None = None) -> None:
        self._counts.clear()
        self._window_started_at = now or self._clock()

    def increment(self, origin: str, client_addr: str) -> int:
        """Count one event and return how many preceded it in this window."""
        self.rollover_if_due()
        key = (origin, client_addr)
        prior = self._counts.get(key, 0)
        self._counts[key] = prior + 1
        return prior

    def count(self, origin: str, client_addr: str) -> int:
        return self._counts.get((origin, client_addr), 0)

    def records(self) -> list[ViolationRecord]:
        return [
            ViolationRecord(origin, client_addr, count, self._window_started_at)
            for (origin, client_addr), count in self._counts.items()
        ]

    def __len__(self) -> int:
        return len(self._counts)


AlertNotifier = Callable[[Alert], None]


class AlertSystem:
    """Records alerts, assigns severity and keeps a bounded history."""

    def __init__(
        self,
        capacity: int = 1000,
        reset_interval_seconds: int = 3600,
        clock: Callable[[], datetime] = _utcnow,
        notifier: AlertNotifier | None = None,
    ) -> None:
        self._capacity = capacity
        self._clock = clock
        self._notifier = notifier
        self._counter = ViolationCounter(timedelta(seconds=reset_interval_seconds), clock)
        # appendleft + maxlen: newest at index 0, oldest evicted from the right
        self._alerts: deque[Alert] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    def record(
        self,
        kind: AlertKind,
        origin: str,
        client_addr: str,
        user_agent: str | None,
        details: dict[str, Any] | None = None,
    ) -> Alert:
        """Create an alert for an origin event and store it."""
        with self._lock:
            prior = self._counter.increment(origin, client_addr)
            alert = Alert(
                id=f"{int(self._clock().timestamp() * 1000)}-{secrets.token_hex(5)}",
                timestamp=self._clock(),
                kind=kind,
                severity=severity_for(prior),
                origin=origin,
                client_addr=client_addr,
                user_agent=(user_agent or "")[:MAX_USER_AGENT_LENGTH],
                details={**(details or {}), "violation_count": prior + 1},
            )
            self._alerts.appendleft(alert)

        self._log_alert(alert)
        if self._notifier is not None:
            try:
                self._notifier(alert)
            except Exception:
                logger.exception("Alert notifier failed")
        return alert

    def _log_alert(self, alert: Alert) -> None:
        level = (
            logging.ERROR
            if alert.severity in (Severity.HIGH, Severity.CRITICAL)
            else logging.WARNING
        )
        logger.log(
            level,
            f"CORS alert [{alert.severity.value}] {alert.kind.value} from {alert.origin} "
            f"({alert.client_addr}), count={alert.details['violation_count']}",
            extra={
                "alert_id": alert.id,
                "severity": alert.severity.value,
                "origin": alert.origin,
                "client_ip": alert.client_addr,
            },
        )

    def recent(self, limit: int = 50) -> list[Alert]:
        """Return up to ``limit`` alerts, newest first."""
        with self._lock:
            return list(self._alerts)[: max(0, limit)]

    def stats(self) -> dict[str, Any]:
        """Aggregate counts over the buffer and the last hour."""
        cutoff = self._clock() - timedelta(hours=1)
        with self._lock:
            total = len(self._alerts)
            recent = [a for a in self._alerts if a.timestamp > cutoff]

        by_severity = {severity.value: 0 for severity in reversed(Severity)}
        for alert in recent:
            by_severity[alert.severity.value] += 1
        top_origins = Counter(alert.origin for alert in recent).most_common(10)

        return {
            "total": total,
            "last_hour": len(recent),
            "by_severity": by_severity,
            "top_origins": [{"origin": o, "count": c} for o, c in top_origins],
        }

    def violation_count(self, origin: str, client_addr: str) -> int:
        with self._lock:
            self._counter.rollover_if_due()
            return self._counter.count(origin, client_addr)

    def violation_records(self) -> list[ViolationRecord]:
        with self._lock:
            return self._counter.records()

    def rollover_if_due(self) -> bool:
        with self._lock:
            return self._counter.rollover_if_due()

    def reset_violation_counts(self) -> None:
        with self._lock:
            self._counter.reset()
        logger.debug("Violation counters reset")

    def __len__(self) -> int:
        with self._lock:
            return len(self._alerts)


async def violation_reset_loop(alerts: AlertSystem, interval: int = 60) -> None:
    """Roll violation counters over once their window has elapsed.

    Counters also roll over lazily on access; this keeps idle processes
    from holding a stale window indefinitely.
    """
    while True:
        try:
            await asyncio.sleep(interval)
            if alerts.rollover_if_due():
                logger.info("Violation counters reset for new window")
        except asyncio.CancelledError:
            break
        except Exception as e:
            logger.warning(f"Violation counter reset error: {e}")
