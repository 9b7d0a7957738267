"""Middleware module for SecurityX backend."""

from app.middleware.origin_admission import OriginAdmissionMiddleware
from app.middleware.rate_limit import AdaptiveRateLimiter, rate_limit_cleanup_loop
from app.middleware.security_headers import SecurityHeadersMiddleware
from app.middleware.warming import WarmingMiddleware

__all__ = [
    "AdaptiveRateLimiter",
    "OriginAdmissionMiddleware",
    "SecurityHeadersMiddleware",
    "WarmingMiddleware",
    "rate_limit_cleanup_loop",
]
