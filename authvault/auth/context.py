"""Per-request context passed into the authentication core.

The transport layer builds one :class:`RequestContext` per request; the core
never reads the HTTP request directly.
"""

import re
from collections.abc import Mapping
from dataclasses import dataclass, field

ACCESS_COOKIE = "auth-token"
REFRESH_COOKIE = "refresh-token"
SESSION_COOKIE = "session-token"
CSRF_COOKIE = "csrf-token"
CSRF_HEADER = "x-csrf-token"

FORWARDED_HEADERS = ("x-forwarded-for", "x-real-ip", "x-client-ip")
SAFE_METHODS = {"GET", "HEAD", "OPTIONS"}

_BEARER = re.compile(r"^\s*bearer\s+(\S+)\s*$", re.IGNORECASE)


@dataclass(frozen=True)
class DeviceInfo:
    """Client-supplied or derived description of the calling device."""

    user_agent: str | None = None
    platform: str | None = None
    device_id: str | None = None

    def label(self) -> str:
        """Coarse device label, e.g. ``"Mobile - Safari"``."""
        return describe_user_agent(self.user_agent, self.platform)


@dataclass(frozen=True)
class RequestContext:
    """Everything the core needs to know about the caller.

    Attributes:
        ip_address: Client IP (forwarded headers only honoured from trusted proxies)
        user_agent: The User-Agent header
        method: HTTP method, used for CSRF decisions
        bearer_token: Token from the Authorization header
        cookies: Request cookies
        csrf_header: Value of the X-CSRF-Token header
        device: Device description supplied in the request body
    """

    ip_address: str = "unknown"
    user_agent: str | None = None
    method: str = "GET"
    bearer_token: str | None = None
    cookies: Mapping[str, str] = field(default_factory=dict)
    csrf_header: str | None = None
    device: DeviceInfo | None = None

    @property
    def access_token(self) -> str | None:
        return self.bearer_token or self.cookies.get(ACCESS_COOKIE) or None

    @property
    def session_token(self) -> str | None:
        return self.cookies.get(SESSION_COOKIE) or None

    @property
    def refresh_token(self) -> str | None:
        return self.cookies.get(REFRESH_COOKIE) or None

    @property
    def csrf_cookie(self) -> str | None:
        return self.cookies.get(CSRF_COOKIE) or None

    @property
    def uses_cookie_auth(self) -> bool:
        return self.bearer_token is None

    def device_info(self) -> DeviceInfo:
        """The request's device, falling back to the User-Agent header."""
        if self.device is None:
            return DeviceInfo(user_agent=self.user_agent)
        if self.device.user_agent is None:
            return DeviceInfo(
                user_agent=self.user_agent,
                platform=self.device.platform,
                device_id=self.device.device_id,
            )
        return self.device

    def with_device(self, device: DeviceInfo | None) -> "RequestContext":
        if device is None:
            return self
        return RequestContext(
            ip_address=self.ip_address,
            user_agent=self.user_agent,
            method=self.method,
            bearer_token=self.bearer_token,
            cookies=self.cookies,
            csrf_header=self.csrf_header,
            device=device,
        )


def extract_bearer(authorization: str | None) -> str | None:
    """Pull the token out of an ``Authorization: Bearer`` header.

    The scheme is matched case-insensitively; anything else yields None.
    """
    if not authorization:
        return None
    match = _BEARER.match(authorization)
    return match.group(1) if match else None


def resolve_client_ip(
    headers: Mapping[str, str],
    direct_ip: str | None,
    trust_forwarded: bool = False,
    trusted_proxies: set[str] | frozenset[str] = frozenset(),
) -> str:
    """Determine the client IP for rate limiting and auditing.

    Forwarded headers are only trusted when explicitly enabled or when the
    direct peer is a trusted proxy; otherwise clients could spoof their IP.

    Args:
        headers: Request headers (case-insensitive mapping)
        direct_ip: The peer address of the connection
        trust_forwarded: Always trust forwarded headers
        trusted_proxies: Peers allowed to set forwarded headers

    Returns:
        The client IP, or ``"unknown"``
    """
    client_ip = direct_ip or "unknown"

    if trust_forwarded or client_ip in trusted_proxies:
        for header in FORWARDED_HEADERS:
            value = headers.get(header)
            if value:
                # Leftmost entry is the original client
                return value.split(",")[0].strip()

    return client_ip


def describe_user_agent(user_agent: str | None, platform: str | None = None) -> str:
    """Reduce a User-Agent string to ``"<kind> - <browser>"``."""
    if not user_agent:
        return "Unknown device"

    ua = user_agent.lower()
    if "ipad" in ua or "tablet" in ua:
        kind = "Tablet"
    elif "mobile" in ua or "iphone" in ua or "android" in ua:
        kind = "Mobile"
    else:
        kind = "Desktop"

    if "edg/" in ua:
        browser = "Edge"
    elif "chrome" in ua and "chromium" not in ua:
        browser = "Chrome"
    elif "firefox" in ua:
        browser = "Firefox"
    elif "safari" in ua:
        browser = "Safari"
    else:
        browser = platform or "Unknown"

    return f"{kind} - {browser}"
