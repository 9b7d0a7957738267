"""Admission gate - accept, throttle or reject a request before routing.

Order of checks:

1. Origin validation. A request whose origin is not allow-listed is
   rejected with CORS_POLICY_VIOLATION.
2. Suspicion threshold. A request with too many origin warnings is rejected
   with SUSPICIOUS_ORIGIN even when its origin is allow-listed.
3. Adaptive rate limiting on the tier chosen from the request shape.

Alerts are recorded here, never inside the validator. ``admit`` resolves
every outcome into a Decision; it does not raise.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from app.services.alert_system import AlertKind, AlertSystem
from app.services.origin_registry import OriginRegistry
from app.services.origin_validator import OriginCheck, OriginValidator

if TYPE_CHECKING:
    # Type-only: app.middleware imports this module
    from app.middleware.rate_limit import AdaptiveRateLimiter, RateLimitResult

logger = logging.getLogger(__name__)

# Usage writes beyond this many in flight are dropped
MAX_PENDING_USAGE_UPDATES = 100


class RejectReason(str, Enum):
    CORS_POLICY_VIOLATION = "CORS_POLICY_VIOLATION"
    SUSPICIOUS_ORIGIN = "SUSPICIOUS_ORIGIN"


@dataclass(frozen=True)
class AdmissionRequest:
    method: str
    path: str
    client_addr: str
    origin: str | None = None
    referer: str | None = None
    user_agent: str | None = None


@dataclass(frozen=True)
class Accept:
    check: OriginCheck
    rate_limit: "RateLimitResult | None" = None


@dataclass(frozen=True)
class Throttle:
    retry_after: int
    check: OriginCheck
    rate_limit: "RateLimitResult"


@dataclass(frozen=True)
class Reject:
    reason: RejectReason
    message: str
    check: OriginCheck


Decision = Accept | Throttle | Reject


class AdmissionGate:
    """Composes origin validation, alerting and rate limiting."""

    def __init__(
        self,
        validator: OriginValidator,
        alerts: AlertSystem,
        rate_limiter: "AdaptiveRateLimiter",
        registry: OriginRegistry | None = None,
        suspicion_threshold: int = 3,
        rate_limit_enabled: bool = True,
    ) -> None:
        self.validator = validator
        self.alerts = alerts
        self.rate_limiter = rate_limiter
        self.registry = registry
        self.suspicion_threshold = suspicion_threshold
        self.rate_limit_enabled = rate_limit_enabled
        self._usage_tasks: set[asyncio.Task[None]] = set()

    async def admit(self, request: AdmissionRequest) -> Decision:
        check = self.validator.validate(
            request.origin, request.referer, request.client_addr, request.user_agent
        )
        origin = request.origin or ""

        if check.warnings:
            self._alert(AlertKind.SUSPICIOUS, request, {"warnings": list(check.warnings)})

        if not check.allowed:
            self._alert(
                AlertKind.VIOLATION,
                request,
                {
                    "method": request.method,
                    "path": request.path,
                    "referer": request.referer,
                    "invalid_format": check.invalid_format,
                },
            )
            logger.warning(
                f"Blocked origin {origin!r} for {request.method} {request.path}",
                extra={
                    "reason_code": RejectReason.CORS_POLICY_VIOLATION.value,
                    "client_ip": request.client_addr,
                    "origin": origin,
                },
            )
            return Reject(
                RejectReason.CORS_POLICY_VIOLATION,
                f"Origin '{origin}' is not allowed",
                check,
            )

        if len(check.warnings) >= self.suspicion_threshold:
            self._alert(
                AlertKind.BLOCKED,
                request,
                {"warnings": list(check.warnings), "threshold": self.suspicion_threshold},
            )
            logger.error(
                f"Blocking suspicious origin {origin!r} ({len(check.warnings)} warnings)",
                extra={
                    "reason_code": RejectReason.SUSPICIOUS_ORIGIN.value,
                    "client_ip": request.client_addr,
                    "origin": origin,
                },
            )
            return Reject(
                RejectReason.SUSPICIOUS_ORIGIN,
                "Request blocked due to suspicious origin patterns",
                check,
            )

        rate_limit = None
        if self.rate_limit_enabled:
            rate_limit = await self.rate_limiter.check(
                request.client_addr, request.method, check.warnings
            )
            if not rate_limit.allowed:
                logger.warning(
                    f"Rate limit exceeded for {request.client_addr} "
                    f"({rate_limit.tier.value} tier) on {request.path}",
                    extra={"reason_code": "RATE_LIMIT_EXCEEDED", "client_ip": request.client_addr},
                )
                return Throttle(rate_limit.retry_after or 1, check, rate_limit)

        if request.origin and self.registry is not None:
            self._schedule_usage(request.origin)
        return Accept(check, rate_limit)

    def _alert(self, kind: AlertKind, request: AdmissionRequest, details: dict) -> None:
        try:
            self.alerts.record(
                kind, request.origin or "", request.client_addr, request.user_agent, details
            )
        except Exception:
            logger.exception(f"Failed to record {kind.value} alert")

    def _schedule_usage(self, origin: str) -> None:
        assert self.registry is not None
        if len(self._usage_tasks) >= MAX_PENDING_USAGE_UPDATES:
            logger.debug(f"Dropping usage update for {origin}: {len(self._usage_tasks)} pending")
            return
        task = asyncio.get_running_loop().create_task(self.registry.record_usage(origin))
        self._usage_tasks.add(task)
        task.add_done_callback(self._usage_tasks.discard)

    async def drain(self) -> None:
        """Wait for pending usage updates (used on shutdown and in tests)."""
        if self._usage_tasks:
            await asyncio.gather(*self._usage_tasks, return_exceptions=True)
