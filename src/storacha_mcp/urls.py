"""Gateway URL helpers.

Gateway paths are absolute: `/ipfs/...` always replaces whatever path the
configured gateway URL carries, so both of these behave the same:

- https://storacha.link
- https://storacha.link/some/prefix
"""

from __future__ import annotations

from urllib.parse import urlparse

DEFAULT_GATEWAY_URL = "https://storacha.link"


def _ensure_scheme(url: str) -> str:
    url = (url or "").strip()
    if not url:
        return url
    # Allow "storacha.link" style inputs.
    if "://" not in url:
        return "https://" + url
    return url


def root_url(base_url: str) -> str:
    """Return scheme://host:port of `base_url`."""
    u = urlparse(_ensure_scheme(base_url))
    scheme = u.scheme or "https"
    netloc = u.netloc or u.path
    return f"{scheme}://{netloc}".rstrip("/")


def is_valid_url(url: str) -> bool:
    u = urlparse(_ensure_scheme(url))
    return u.scheme in ("http", "https") and bool(u.netloc)


def gateway_url(base_url: str, cid: str, pathname: str = "") -> str:
    """Public URL of `cid` (plus an optional path) on the gateway."""
    return f"{root_url(base_url)}/ipfs/{cid}{pathname}"


def car_request_url(base_url: str, cid: str, pathname: str) -> str:
    """URL that asks the gateway for the verifiable CAR of an entry."""
    return f"{gateway_url(base_url, cid, pathname)}?format=car"
