"""Origin URL parsing shared by the registry and the validator."""

from dataclasses import dataclass
from urllib.parse import urlsplit

ALLOWED_SCHEMES = ("http", "https")
DEFAULT_PORTS = {"http": 80, "https": 443}


class InvalidOriginURLError(ValueError):
    """Raised when a value is not a usable absolute http(s) origin."""


@dataclass(frozen=True)
class ParsedOrigin:
    """Components of an absolute http(s) URL.

    Attributes:
        scheme: http or https (lowercase)
        hostname: Host without brackets or port (lowercase)
        port: Explicit port, or None when the URL relies on the default
        path: Path component, kept so callers can reject non-origin URLs
    """

    scheme: str
    hostname: str
    port: int | None
    path: str
    has_query: bool

    @property
    def origin(self) -> str:
        host = f"[{self.hostname}]" if ":" in self.hostname else self.hostname
        if self.port is None or self.port == DEFAULT_PORTS[self.scheme]:
            return f"{self.scheme}://{host}"
        return f"{self.scheme}://{host}:{self.port}"


def parse_url(value: str | None) -> ParsedOrigin | None:
    """Parse an absolute http(s) URL, returning None when it is unusable."""
    if not value:
        return None
    try:
        parts = urlsplit(value.strip())
        port = parts.port
    except ValueError:
        return None
    if parts.scheme.lower() not in ALLOWED_SCHEMES or not parts.hostname:
        return None
    return ParsedOrigin(
        scheme=parts.scheme.lower(),
        hostname=parts.hostname.lower(),
        port=port,
        path=parts.path,
        has_query=bool(parts.query or parts.fragment),
    )


def canonicalize_origin(value: str) -> str:
    """Return the canonical ``scheme://host[:port]`` form of an origin.

    Browsers send Origin without a path, so anything beyond a single
    trailing slash could never match and is rejected.

    Raises:
        InvalidOriginURLError: If the value is not an absolute http(s) origin
    """
    parsed = parse_url(value)
    if parsed is None:
        raise InvalidOriginURLError(f"Invalid URL format: {value!r}")
    if parsed.path not in ("", "/") or parsed.has_query:
        raise InvalidOriginURLError(
            f"Origin must not contain a path, query or fragment: {value!r}"
        )
    return parsed.origin
