#!filepath: src/canopticon_app/utils/url.py
from __future__ import annotations

import re
from typing import FrozenSet, List, Optional, Tuple
from urllib.parse import parse_qsl, urlencode, urljoin, urlsplit, urlunsplit

# query keys news sites append for campaign and referral tracking
TRACKING_PARAMS: FrozenSet[str] = frozenset(
    {
        "cmp",
        "cmpid",
        "fbclid",
        "gclid",
        "igshid",
        "mc_cid",
        "mc_eid",
        "ocid",
        "ref",
        "s",
        "smid",
        "taid",
        "xtor",
    }
)
TRACKING_PREFIXES: Tuple[str, ...] = ("utm_", "at_", "__twitter")

_DEFAULT_PORTS = {"http": 80, "https": 443}
_AMP_SUFFIX_RE = re.compile(r"/amp/?$", re.IGNORECASE)


def _is_tracking(key: str) -> bool:
    k = key.lower()
    return k in TRACKING_PARAMS or k.startswith(TRACKING_PREFIXES)


def canonicalize_url(url: str) -> str:
    """Stable form of an article url.

    Lower cases scheme and host, drops default ports, fragments, tracking
    parameters and AMP suffixes, collapses slashes and sorts the query.
    Returns the input unchanged when it has no host.
    """
    raw = (url or "").strip()
    if not raw:
        return ""

    try:
        parts = urlsplit(raw)
        port = parts.port
    except ValueError:
        return raw

    host = (parts.hostname or "").lower()
    if not host:
        return raw
    scheme = (parts.scheme or "https").lower()
    netloc = host if port in (None, _DEFAULT_PORTS.get(scheme)) else f"{host}:{port}"

    path = _AMP_SUFFIX_RE.sub("", re.sub(r"/{2,}", "/", parts.path or ""))
    if len(path) > 1:
        path = path.rstrip("/")

    query: List[Tuple[str, str]] = sorted(
        (k.strip(), v.strip())
        for k, v in parse_qsl(parts.query or "", keep_blank_values=True)
        if k.strip() and not _is_tracking(k.strip())
    )
    return urlunsplit((scheme, netloc, path, urlencode(query), ""))


def absolute_url(url: str, base: Optional[str] = None) -> str:
    """Join a relative item link onto its source base url."""
    u = (url or "").strip()
    if not u or not base or urlsplit(u).netloc:
        return u
    return urljoin(base, u)
