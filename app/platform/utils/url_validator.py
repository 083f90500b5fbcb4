import ipaddress
import re
from typing import Optional, Tuple
from urllib.parse import urlsplit

from app.platform.config import settings
from app.platform.exceptions import InvalidUrl

_SCHEME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.\-]*://")
_LABEL_RE = re.compile(r"^[a-z0-9]([a-z0-9\-]{0,61}[a-z0-9])?$")
ALLOWED_SCHEMES = ("http", "https")


def _is_ip(host: str) -> bool:
    try:
        ipaddress.ip_address(host)
        return True
    except ValueError:
        return False


def _is_private_host(host: str) -> bool:
    if host == "localhost" or host.endswith(".localhost"):
        return True
    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        return False
    return ip.is_private or ip.is_loopback or ip.is_unspecified or ip.is_link_local


def _is_resolvable_host(host: str) -> bool:
    """A host is usable when it is an IP literal or a dotted DNS name."""
    if _is_ip(host):
        return True
    if len(host) > 253 or "." not in host:
        return False
    labels = host.rstrip(".").split(".")
    if not all(_LABEL_RE.match(label) for label in labels):
        return False
    # "1.2.3" is neither an IP nor a real domain
    return any(ch.isalpha() for ch in labels[-1])


def normalize_url(url: str, block_private: Optional[bool] = None) -> str:
    """
    Canonicalize a user-supplied site identifier into an absolute http(s) URL.

    - ``example.com`` / ``www.example.com`` get an ``https://`` prefix
    - an explicit scheme is kept
    - path and query are kept verbatim, the fragment is dropped
    - scheme and host are lower-cased

    Normalizing an already-normalized URL returns it unchanged.

    Raises:
        InvalidUrl: empty input, unsupported scheme or no resolvable host
    """
    if url is None or not str(url).strip():
        raise InvalidUrl("URL cannot be empty")

    url = str(url).strip()
    if not _SCHEME_RE.match(url):
        url = f"https://{url}"

    try:
        parsed = urlsplit(url)
        port = parsed.port
    except ValueError as e:
        raise InvalidUrl(f"Invalid URL format: {e}")

    scheme = parsed.scheme.lower()
    if scheme not in ALLOWED_SCHEMES:
        raise InvalidUrl(f"Invalid URL scheme: {scheme} (must be http or https)")

    host = (parsed.hostname or "").lower()
    if not host:
        raise InvalidUrl("Invalid URL format: missing domain")
    if block_private is None:
        block_private = settings.BLOCK_PRIVATE_HOSTS
    if block_private and _is_private_host(host):
        raise InvalidUrl("Private or local addresses are not allowed")

    if not _is_resolvable_host(host):
        raise InvalidUrl(f"Invalid domain: {host}")

    netloc = f"[{host}]" if ":" in host else host
    if port is not None:
        netloc = f"{netloc}:{port}"

    normalized = f"{scheme}://{netloc}{parsed.path}"
    if parsed.query:
        normalized = f"{normalized}?{parsed.query}"
    return normalized


def validate_url(url: str) -> Tuple[bool, str, str]:
    """Non-raising form of :func:`normalize_url`: ``(is_valid, normalized, error)``."""
    try:
        return True, normalize_url(url), ""
    except InvalidUrl as e:
        return False, "", e.message
