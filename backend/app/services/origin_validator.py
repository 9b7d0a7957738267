"""Origin validation - allow-list decision plus shape heuristics.

``validate`` is a pure function of its inputs and the registry snapshot; it
never records alerts or touches counters. The admission gate decides which
side effects a result triggers.

Requests without an Origin header are always allowed: same-origin and
non-browser clients do not send one, and only browser CORS needs the check.
"""

import re
from collections.abc import Callable
from dataclasses import dataclass, field

from app.services.origin_url import parse_url

INVALID_ORIGIN_FORMAT = "invalid origin format"
INVALID_REFERER_FORMAT = "invalid referer format"

_IPV4_LITERAL = re.compile(r"^(\d{1,3}\.){3}\d{1,3}$")
_UNEXPECTED_HOST_CHARS = re.compile(r"[^A-Za-z0-9_.\-]")


@dataclass(frozen=True)
class OriginCheck:
    """Outcome of validating one request's origin."""

    allowed: bool
    warnings: tuple[str, ...] = field(default_factory=tuple)
    origin: str | None = None
    hostname: str | None = None
    invalid_format: bool = False


DEFAULT_LOCALHOST_PORTS = frozenset({80, 443, 3000})


class OriginValidator:
    """Checks an Origin/Referer pair against the allow-list.

    Args:
        allowed_origins: Returns the active allow-list (re-read per call)
        localhost_standard_ports: Explicit localhost ports that are not
            treated as suspicious; an empty set flags every explicit port
    """

    def __init__(
        self,
        allowed_origins: Callable[[], list[str]],
        localhost_standard_ports: set[int] | None = None,
    ) -> None:
        self._allowed_origins = allowed_origins
        if localhost_standard_ports is None:
            localhost_standard_ports = set(DEFAULT_LOCALHOST_PORTS)
        self._localhost_ports = localhost_standard_ports

    def validate(
        self,
        origin: str | None,
        referer: str | None = None,
        client_addr: str | None = None,
        user_agent: str | None = None,
    ) -> OriginCheck:
        if not origin:
            return OriginCheck(allowed=True)

        parsed = parse_url(origin)
        if parsed is None:
            return OriginCheck(
                allowed=False,
                warnings=(INVALID_ORIGIN_FORMAT,),
                origin=origin,
                invalid_format=True,
            )

        warnings = self._hostname_warnings(parsed.hostname, parsed.port)

        if referer:
            referer_url = parse_url(referer)
            if referer_url is None:
                warnings.append(INVALID_REFERER_FORMAT)
            else:
                if referer_url.hostname != parsed.hostname:
                    warnings.append(
                        f"Origin domain ({parsed.hostname}) doesn't match "
                        f"referer domain ({referer_url.hostname})"
                    )
                if referer_url.scheme != parsed.scheme:
                    warnings.append(
                        f"Protocol mismatch: Origin ({parsed.scheme}) vs "
                        f"Referer ({referer_url.scheme})"
                    )

        return OriginCheck(
            allowed=origin in self._allowed_origins(),
            warnings=tuple(warnings),
            origin=origin,
            hostname=parsed.hostname,
        )

    def _hostname_warnings(self, hostname: str, port: int | None) -> list[str]:
        warnings = []
        if _IPV4_LITERAL.match(hostname):
            warnings.append("Suspicious origin pattern: IP address instead of domain")
        if hostname == "localhost" and port is not None and port not in self._localhost_ports:
            warnings.append("Suspicious origin pattern: Localhost with non-standard port")
        if _UNEXPECTED_HOST_CHARS.search(hostname):
            warnings.append("Suspicious origin pattern: Suspicious characters in domain")
        return warnings
