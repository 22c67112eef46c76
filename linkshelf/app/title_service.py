"""Title resolution client used to enrich extracted links."""

from __future__ import annotations

import html
import logging
import os
import re
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx

LOGGER = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 2.0
USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/115.0 Safari/537.36"
)
ACCEPT_HTML = "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,image/apng,*/*;q=0.8"

YOUTUBE_OEMBED_URL = "https://www.youtube.com/oembed?url={url}&format=json"
MICROLINK_URL = "https://api.microlink.io/?url={url}"

_SCHEME_RE = re.compile(r"^[a-zA-Z]+://")
_YOUTUBE_RE = re.compile(r"youtube\.com|youtu\.be", re.IGNORECASE)
_TITLE_RE = re.compile(r"<title[^>]*>([^<]+)</title>", re.IGNORECASE)
_META_PATTERNS = (
    re.compile(r"""<meta\s+property=["']og:title["']\s+content=["']([^"']+)["'][^>]*>""", re.IGNORECASE),
    re.compile(r"""<meta\s+name=["']twitter:title["']\s+content=["']([^"']+)["'][^>]*>""", re.IGNORECASE),
    re.compile(r"""<meta\s+property=["']og:site_name["']\s+content=["']([^"']+)["'][^>]*>""", re.IGNORECASE),
    re.compile(r"""<meta\s+property=["']og:description["']\s+content=["']([^"']+)["'][^>]*>""", re.IGNORECASE),
)


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in {"1", "true", "yes", "on"}


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def ensure_url(raw: str) -> Optional[str]:
    value = (raw or "").strip()
    if not value:
        return None
    if not _SCHEME_RE.match(value):
        return "https://" + value
    return value


def _clean_title(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    cleaned = re.sub(r"\s+", " ", html.unescape(value)).strip()
    return cleaned or None


def title_from_html(document: str) -> Optional[str]:
    """Pick a title from ``<title>`` or the usual meta tags, in that order."""

    match = _TITLE_RE.search(document)
    if match:
        title = _clean_title(match.group(1))
        if title:
            return title
    for pattern in _META_PATTERNS:
        match = pattern.search(document)
        if match:
            title = _clean_title(match.group(1))
            if title:
                return title
    return None


class TitleResolver:
    """Resolve a human-readable page title for a URL.

    With ``LINKSHELF_TITLE_SERVICE_URL`` set, lookups are delegated to that
    remote service (``POST {"url": ...}`` returning ``{"title": ...}``).
    Otherwise pages are fetched directly. Every failure resolves to ``None``.
    """

    def __init__(
        self,
        service_url: Optional[str] = None,
        timeout: Optional[float] = None,
        microlink_enabled: Optional[bool] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if service_url is None:
            service_url = os.getenv("LINKSHELF_TITLE_SERVICE_URL", "")
        self.service_url = service_url.strip()
        self.timeout = timeout if timeout is not None else _env_float("LINKSHELF_TITLE_TIMEOUT", DEFAULT_TIMEOUT_SECONDS)
        if microlink_enabled is None:
            microlink_enabled = _env_flag("LINKSHELF_MICROLINK_ENABLED")
        self.microlink_enabled = microlink_enabled
        self._transport = transport

    @property
    def mode(self) -> str:
        return "remote" if self.service_url else "direct"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT},
            transport=self._transport,
        )

    async def __call__(self, url: str) -> Optional[str]:
        return await self.resolve(url)

    async def resolve(self, url: str) -> Optional[str]:
        target = ensure_url(url)
        if target is None:
            return None
        async with self._client() as client:
            if self.service_url:
                return await self._resolve_remote(client, target)
            return await self._resolve_direct(client, target)

    async def _resolve_remote(self, client: httpx.AsyncClient, url: str) -> Optional[str]:
        payload = await self._request_json(client, "POST", self.service_url, json={"url": url})
        if not isinstance(payload, dict):
            return None
        return _clean_title(payload.get("title"))

    async def _resolve_direct(self, client: httpx.AsyncClient, url: str) -> Optional[str]:
        if _YOUTUBE_RE.search(url):
            payload = await self._request_json(client, "GET", YOUTUBE_OEMBED_URL.format(url=quote(url, safe="")))
            return _clean_title(payload.get("title")) if isinstance(payload, dict) else None

        if self.microlink_enabled:
            payload = await self._request_json(client, "GET", MICROLINK_URL.format(url=quote(url, safe="")))
            data = payload.get("data") if isinstance(payload, dict) else None
            title = _clean_title(data.get("title")) if isinstance(data, dict) else None
            if title:
                return title

        document = await self._fetch_html(client, url)
        if document is None:
            return None
        return title_from_html(document)

    async def _fetch_html(self, client: httpx.AsyncClient, url: str) -> Optional[str]:
        try:
            response = await client.get(url, headers={"Accept": ACCEPT_HTML})
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            LOGGER.info("Title fetch failed for %s: %s", url, exc)
            return None
        if response.status_code != 200:
            LOGGER.info("Title fetch for %s returned status %s", url, response.status_code)
            return None
        return response.text

    async def _request_json(self, client: httpx.AsyncClient, method: str, url: str, **kwargs: Any) -> Optional[Any]:
        try:
            response = await client.request(method, url, **kwargs)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            LOGGER.info("Title request %s %s failed: %s", method, url, exc)
            return None
        if not response.is_success:
            LOGGER.info("Title request %s %s returned status %s", method, url, response.status_code)
            return None
        try:
            return response.json()
        except ValueError:
            return None


def load_title_resolver() -> TitleResolver:
    return TitleResolver()


def describe_resolver(resolver: TitleResolver) -> Dict[str, Any]:
    return {
        "mode": resolver.mode,
        "timeout_seconds": resolver.timeout,
        "microlink_enabled": resolver.microlink_enabled,
    }
