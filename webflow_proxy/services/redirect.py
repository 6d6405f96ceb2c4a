"""Canonical-host redirects.

Decides, from the inbound ``Host`` header alone, whether a request must be
bounced to the ``www.`` or bare-root form of the public hostname before it is
proxied. Redirect targets always use https and keep path and query untouched.
"""
from __future__ import annotations

from typing import Optional

from webflow_proxy.models.schemas import RedirectMode

WWW_PREFIX = "www."


def strip_port(host: str) -> str:
    """Drop a trailing ``:port`` from a Host header value."""
    if host.startswith("["):
        # IPv6 literal: [::1]:8080
        end = host.find("]")
        return host[: end + 1] if end != -1 else host
    name, sep, port = host.rpartition(":")
    if sep and (port.isdigit() or not port):
        return name
    return host


def canonical_host(host: str, mode: RedirectMode) -> Optional[str]:
    """Return the canonical hostname if ``host`` is not already canonical."""
    host = strip_port(host)
    if not host:
        return None
    is_www = host.lower().startswith(WWW_PREFIX)
    if mode is RedirectMode.WWW and not is_www:
        return WWW_PREFIX + host
    if mode is RedirectMode.ROOT and is_www:
        return host[len(WWW_PREFIX):]
    return None


def resolve_redirect(host: str, path: str, query: str, mode: RedirectMode) -> Optional[str]:
    """Build the redirect URL for this request, or None to proxy it normally."""
    target_host = canonical_host(host, mode)
    if target_host is None:
        return None
    url = f"https://{target_host}{path}"
    if query:
        url = f"{url}?{query}"
    return url
