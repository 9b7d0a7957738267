"""Explicitly wired security services for one application instance."""

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import Settings
from app.middleware.rate_limit import AdaptiveRateLimiter, Tier, TierPolicy
from app.middleware.warming import WarmingTracker
from app.services.admission import AdmissionGate
from app.services.alert_system import AlertNotifier, AlertSystem
from app.services.auth import AuthGate, SqlUserDirectory, UserDirectory
from app.services.origin_registry import OriginRegistry, OriginStore, SqlOriginStore
from app.services.origin_validator import OriginValidator
from app.services.session_revocation import (
    RevocationBackend,
    SessionRevocationStore,
    SqlRevocationBackend,
)
from app.services.webhook_alerting import notify_security_alert


def rate_limit_policies(settings: Settings) -> dict[Tier, TierPolicy]:
    return {
        Tier.PREFLIGHT: TierPolicy(
            settings.rate_limit_preflight_max, settings.rate_limit_preflight_window_seconds
        ),
        Tier.SUSPICIOUS: TierPolicy(
            settings.rate_limit_suspicious_max, settings.rate_limit_suspicious_window_seconds
        ),
        Tier.GENERAL: TierPolicy(
            settings.rate_limit_general_max, settings.rate_limit_general_window_seconds
        ),
    }


@dataclass
class SecurityContainer:
    """Holds the admission and session-security services.

    The app factory builds one and attaches it to ``app.state.security``;
    tests build their own with in-memory stores.
    """

    settings: Settings
    registry: OriginRegistry
    validator: OriginValidator
    alerts: AlertSystem
    rate_limiter: AdaptiveRateLimiter
    gate: AdmissionGate
    revocations: SessionRevocationStore
    auth: AuthGate
    warming: WarmingTracker

    @classmethod
    def build(
        cls,
        settings: Settings,
        origin_store: OriginStore,
        revocation_backend: RevocationBackend,
        users: UserDirectory,
        notifier: AlertNotifier | None = notify_security_alert,
    ) -> "SecurityContainer":
        timeout = settings.security_io_timeout_seconds
        registry = OriginRegistry(origin_store, io_timeout=timeout)
        validator = OriginValidator(
            registry.active_origins,
            localhost_standard_ports=settings.localhost_standard_port_set,
        )
        alerts = AlertSystem(
            capacity=settings.alert_buffer_capacity,
            reset_interval_seconds=settings.violation_reset_interval_seconds,
            notifier=notifier,
        )
        rate_limiter = AdaptiveRateLimiter(rate_limit_policies(settings))
        gate = AdmissionGate(
            validator,
            alerts,
            rate_limiter,
            registry=registry,
            suspicion_threshold=settings.suspicion_warning_threshold,
            rate_limit_enabled=settings.rate_limit_enabled,
        )
        revocations = SessionRevocationStore(revocation_backend, io_timeout=timeout)
        return cls(
            settings=settings,
            registry=registry,
            validator=validator,
            alerts=alerts,
            rate_limiter=rate_limiter,
            gate=gate,
            revocations=revocations,
            auth=AuthGate(revocations, users, io_timeout=timeout),
            warming=WarmingTracker(),
        )

    @classmethod
    def from_database(
        cls, settings: Settings, session_factory: async_sessionmaker[AsyncSession]
    ) -> "SecurityContainer":
        return cls.build(
            settings,
            origin_store=SqlOriginStore(session_factory),
            revocation_backend=SqlRevocationBackend(session_factory),
            users=SqlUserDirectory(session_factory),
        )
