"""Thin HTTP helpers shared by every provider adapter.

Each helper performs exactly one ``session.get`` with the caller's timeout and
turns every failure mode (transport error, timeout, non-2xx, undecodable body)
into :class:`ProviderUnavailable` so adapters have a single thing to catch.
"""

from typing import Any, Mapping, Optional

import requests

from market_movers.core.errors import ProviderUnavailable

# Providers without a public API reject the default python-requests agent.
BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept": "application/json",
    "Accept-Language": "en-US,en;q=0.9",
}

RSS_HEADERS = {
    **BROWSER_HEADERS,
    "Accept": "application/rss+xml, text/xml",
}


def _get(
    session: requests.Session,
    url: str,
    provider: str,
    params: Optional[Mapping[str, Any]],
    headers: Optional[Mapping[str, str]],
    timeout: float,
) -> requests.Response:
    try:
        resp = session.get(url, params=params, headers=headers, timeout=timeout)
    except requests.RequestException as exc:
        raise ProviderUnavailable(provider, f"request failed: {exc}") from exc

    if not 200 <= resp.status_code < 300:
        raise ProviderUnavailable(provider, f"HTTP {resp.status_code}: {resp.text[:200]}")
    return resp


def get_json(
    session: requests.Session,
    url: str,
    *,
    provider: str,
    params: Optional[Mapping[str, Any]] = None,
    headers: Optional[Mapping[str, str]] = None,
    timeout: float = 10.0,
) -> Any:
    """GET ``url`` and decode the JSON body.

    Raises:
        ProviderUnavailable: on transport failure, non-2xx status or bad JSON.
    """
    resp = _get(session, url, provider, params, headers, timeout)
    try:
        return resp.json()
    except ValueError as exc:
        raise ProviderUnavailable(provider, f"invalid JSON: {exc}") from exc


def get_text(
    session: requests.Session,
    url: str,
    *,
    provider: str,
    params: Optional[Mapping[str, Any]] = None,
    headers: Optional[Mapping[str, str]] = None,
    timeout: float = 10.0,
) -> str:
    """GET ``url`` and return the body as text (RSS/XML feeds)."""
    return _get(session, url, provider, params, headers, timeout).text
