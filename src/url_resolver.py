"""URL Resolver: turns an operator-typed URL into a relay path."""

import logging
from typing import Optional
from urllib.parse import quote, urlsplit, urlunsplit

from config import settings
from errors import InvalidUrlError
from models import ResolvedTarget, StreamRequest

logger = logging.getLogger(__name__)

DEFAULT_PORTS = {"http": 80, "https": 443, "ws": 80, "wss": 443, "ftp": 21}

# Characters encodeURIComponent leaves alone, besides alphanumerics and "_.-~"
_COMPONENT_SAFE = "!*'()"

# What a browser leaves unescaped when it serializes each part of a URL.
# Anything else, spaces and non-ASCII text included, is percent-encoded as
# UTF-8. "%" is kept so existing escapes are not encoded twice.
_PATH_SAFE = "/%:@!$&'()*+,;=[]|^"
_QUERY_SAFE = "/?%:@!$&()*+,;=[]|^{}`"
_FRAGMENT_SAFE = "/?%:@!$&'()*+,;=[]|^{}#"


def canonicalize_url(raw_url: str) -> str:
    """
    Parse raw_url as an absolute URL and return its canonical string form.

    Scheme and host are lowercased, a default port is dropped and an empty
    path on a hierarchical URL becomes "/". Path, query and fragment keep
    their characters but spaces, quotes and non-ASCII text are
    percent-encoded, so an already canonical URL comes back unchanged.

    Raises InvalidUrlError when the input has no scheme or no host.
    """
    candidate = (raw_url or "").strip()
    if not candidate:
        raise InvalidUrlError("URL cannot be empty")

    try:
        parts = urlsplit(candidate)
        port = parts.port
    except ValueError as e:
        raise InvalidUrlError("Invalid URL format", str(e))

    if not parts.scheme:
        raise InvalidUrlError("URL must include a scheme")
    if not parts.hostname:
        raise InvalidUrlError("URL must have a valid host")

    scheme = parts.scheme.lower()
    host = parts.hostname.lower()
    if ":" in host:
        host = f"[{host}]"

    userinfo = ""
    if parts.username is not None:
        userinfo = parts.username
        if parts.password is not None:
            userinfo += f":{parts.password}"
        userinfo += "@"

    netloc = f"{userinfo}{host}"
    if port is not None and DEFAULT_PORTS.get(scheme) != port:
        netloc += f":{port}"

    return urlunsplit((
        scheme,
        netloc,
        quote(parts.path, safe=_PATH_SAFE) or "/",
        quote(parts.query, safe=_QUERY_SAFE),
        quote(parts.fragment, safe=_FRAGMENT_SAFE),
    ))


def build_relay_url(canonical_url: str, prefix: str) -> str:
    return f"{prefix}{quote(canonical_url, safe=_COMPONENT_SAFE)}"


def resolve(raw_url: str, prefix: Optional[str] = None) -> Optional[ResolvedTarget]:
    """Resolve a raw URL to a relay target, or None when it cannot be parsed"""
    if prefix is None:
        prefix = settings.RELAY_PATH_PREFIX

    request = StreamRequest(raw_url=raw_url)
    try:
        canonical = canonicalize_url(request.raw_url)
    except InvalidUrlError as e:
        logger.debug(f"Rejected stream URL {raw_url!r}: {e.message}")
        return None

    return ResolvedTarget(
        relay_url=build_relay_url(canonical, prefix),
        upstream_url=canonical,
    )
