"""
summary_pipeline.normalize — Canonical fetch URLs and rate-limit host keys.
"""

import re
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

UNKNOWN_HOST = "unknown"

DEFAULT_PORTS = {"http": 80, "https": 443}

# feed and share links carry these; the page behind them is the same
TRACKING_PARAMS = frozenset({"fbclid", "gclid", "mc_cid", "mc_eid", "ref"})
TRACKING_PREFIXES = ("utm_",)


def _is_tracking(key: str) -> bool:
    key = key.lower()
    return key in TRACKING_PARAMS or key.startswith(TRACKING_PREFIXES)


def canonical_url(url: str) -> str:
    """
    URL a crawled link is fetched as, so feed and share variants of one post
    hit the network once: scheme and host lowercased, default port dropped,
    duplicate and trailing slashes removed, tracking parameters dropped, the
    remaining query sorted, fragment discarded.
    """
    url = url.strip()
    if not url:
        return url

    parts = urlsplit(url)
    scheme = parts.scheme.lower()
    host = (parts.hostname or "").lower()
    port = parts.port
    netloc = host if port is None or DEFAULT_PORTS.get(scheme) == port else f"{host}:{port}"

    path = re.sub(r"/{2,}", "/", parts.path)
    if len(path) > 1:
        path = path.rstrip("/")

    params = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if not _is_tracking(k)]
    query = urlencode(sorted(params))

    return urlunsplit((scheme, netloc, path, query, ""))


def extract_host(url: str) -> str:
    """
    Host used to key rate limiters: scheme, path, port and a leading
    ``www.`` are dropped, e.g. ``https://www.Toss.tech:443/a`` -> ``toss.tech``.
    """
    url = (url or "").strip()
    if not url:
        return UNKNOWN_HOST

    rest = url.split("://", 1)[1] if "://" in url else url
    host = rest.split("/", 1)[0].split("?", 1)[0].split("#", 1)[0]
    host = host.rsplit("@", 1)[-1].split(":", 1)[0].lower()
    if host.startswith("www."):
        host = host[len("www."):]
    return host or UNKNOWN_HOST
