"""URL canonicalization helpers shared by dedupe and verification."""

from __future__ import annotations

from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

_TRACKING_PREFIXES = ("utm_", "fbclid", "gclid", "mc_")
_SENSITIVE_TOKENS = ("key", "token", "signature")
_FEED_MARKERS = ("/rss", "/feed", ".rss", ".xml", "feeds.", "category/")


def canonicalize_url(url: str | None) -> str | None:
    """Normalize URLs for deduplication: https scheme, bare host, no tracking params."""
    if not url:
        return None
    candidate = url.strip()
    if not candidate:
        return None
    parsed = urlparse(candidate if "://" in candidate else f"https://{candidate}")
    if not parsed.netloc:
        return None
    scheme = "https" if parsed.scheme in ("http", "https", "") else parsed.scheme.lower()
    host = parsed.netloc.lower()
    if host.startswith("www."):
        host = host[4:]
    filtered_query = [
        (key, value)
        for key, value in parse_qsl(parsed.query, keep_blank_values=True)
        if not key.lower().startswith(_TRACKING_PREFIXES)
        and not any(token in key.lower() for token in _SENSITIVE_TOKENS)
    ]
    path = parsed.path.rstrip("/")
    sanitized = parsed._replace(
        scheme=scheme,
        netloc=host,
        path=path,
        query=urlencode(filtered_query, doseq=True),
        fragment="",
    )
    return urlunparse(sanitized)


def host_of(url: str | None) -> str:
    """Lowercase hostname without port or leading ``www.``."""
    if not url:
        return ""
    parsed = urlparse(url if "://" in url else f"https://{url}")
    host = (parsed.hostname or "").lower()
    if host.startswith("www."):
        host = host[4:]
    return host


def domain_matches(host: str, allowed: str) -> bool:
    """Exact or subdomain-suffix match against an allow-list entry."""
    host = host.lower()
    allowed = allowed.lower()
    return host == allowed or host.endswith(f".{allowed}")


def is_article_permalink(url: str | None) -> bool:
    """False for feed/index endpoints such as ``/rss``, ``/feed`` or ``/category/`` pages."""
    if not url or not url.lower().startswith("http"):
        return False
    lowered = url.lower()
    return not any(marker in lowered for marker in _FEED_MARKERS)
