"""Classify navigation targets as live channel pages or other pages."""

from __future__ import annotations

from typing import Optional
from urllib.parse import urlparse

from ..config.schemas import PageRules


def _split(url: Optional[str]):
    if not url or not isinstance(url, str):
        return None
    try:
        parsed = urlparse(url)
    except ValueError:
        return None
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        return None
    return parsed


def is_channel_like_page(url: Optional[str], rules: Optional[PageRules] = None) -> bool:
    """Return True when ``url`` looks like a live channel page.

    Anything that cannot be parsed, sits on another host, or matches one of the
    deny lists classifies as a non-channel page.
    """
    rules = rules or PageRules()
    parsed = _split(url)
    if parsed is None:
        return False

    host = parsed.hostname.lower()
    suffix = rules.host_suffix.lower()
    if host != suffix and not host.endswith("." + suffix):
        return False

    subdomain = host.split(".")[0]
    if subdomain in rules.denied_subdomains:
        return False

    path = parsed.path.lower()
    if path in ("", "/"):
        return False

    for prefix in rules.denied_prefixes:
        if path == prefix or path.startswith(prefix + "/"):
            return False

    for fragment in rules.denied_fragments:
        if fragment in path:
            return False

    return True


def channel_from_url(url: Optional[str], rules: Optional[PageRules] = None) -> str:
    """Return the channel name from the first path segment, or an empty string."""
    rules = rules or PageRules()
    parsed = _split(url)
    if parsed is None:
        return ""
    segments = [segment for segment in parsed.path.split("/") if segment]
    if not segments:
        return ""
    candidate = segments[0].lower()
    if "/" + candidate in rules.denied_prefixes:
        return ""
    return candidate
