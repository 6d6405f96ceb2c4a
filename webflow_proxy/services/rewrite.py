"""HTML body rewriting: swap the staging domain marker for the production one."""
from __future__ import annotations

import re
from typing import Optional

HTML_MEDIA_MARKER = "text/html"
WF_DOMAIN_RE = re.compile(r'data-wf-domain="[^"]*"')


def is_html(content_type: Optional[str]) -> bool:
    # Substring match so "text/html; charset=utf-8" qualifies.
    return bool(content_type) and HTML_MEDIA_MARKER in content_type


def replace_wf_domain(html: str, prod_domain: str) -> str:
    """Point every ``data-wf-domain`` attribute at ``prod_domain``."""
    replacement = f'data-wf-domain="{prod_domain}"'
    return WF_DOMAIN_RE.sub(lambda _m: replacement, html)


def rewrite_body(body: bytes, content_type: Optional[str], prod_domain: str) -> tuple[bytes, bool]:
    """Rewrite ``body`` if it is HTML.

    Returns the (possibly new) body and whether a rewrite was attempted.
    Non-HTML bodies are returned as the same bytes object without decoding.
    Invalid UTF-8 is replaced rather than raised.
    """
    if not is_html(content_type):
        return body, False
    html = body.decode("utf-8", errors="replace")
    return replace_wf_domain(html, prod_domain).encode("utf-8"), True
