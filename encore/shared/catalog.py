"""Track lookup against the YouTube Data API.

Used when a guest submits a link or a search phrase instead of explicit
track fields. The result is copied into the request once and never
re-fetched.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Protocol

import aiohttp

from .errors import TrackLookupUnavailableError
from .models.request import TrackRef

logger = logging.getLogger(__name__)

_YT_RE = re.compile(
    r"(?:https?://)?(?:www\.|m\.|music\.)?(?:"
    r"youtube\.com/watch\?(?:.*&)?v=|"
    r"youtu\.be/|"
    r"youtube\.com/shorts/"
    r")([A-Za-z0-9_-]{11})"
)

_API_BASE = "https://www.googleapis.com/youtube/v3"


def extract_youtube_id(text: str) -> str | None:
    """Extract the 11-char YouTube video id from a URL. None if not found."""
    m = _YT_RE.search(text)
    return m.group(1) if m else None


def _thumbnail(snippet: dict[str, Any]) -> str | None:
    thumbnails = snippet.get("thumbnails", {})
    for size in ("high", "medium", "default"):
        url = thumbnails.get(size, {}).get("url")
        if url:
            return url
    return None


class TrackCatalog(Protocol):
    async def lookup(self, query: str) -> TrackRef | None: ...

    async def close(self) -> None: ...


class YouTubeCatalog:
    """Resolves a video link or search phrase to a TrackRef.

    Returns None on a miss or a missing API key. An unreachable or failing
    API raises TrackLookupUnavailableError so an outage is not reported as
    an unknown track.
    """

    def __init__(self, api_key: str, *, timeout: float = 5.0) -> None:
        self.api_key = api_key
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: aiohttp.ClientSession | None = None

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self._session

    async def _get(self, path: str, params: dict[str, Any]) -> dict[str, Any]:
        session = self._get_session()
        async with session.get(f"{_API_BASE}/{path}", params={**params, "key": self.api_key}) as resp:
            if resp.status != 200:
                logger.error(f"[YouTube API] Unexpected status {resp.status} for /{path}")
                raise TrackLookupUnavailableError()
            return await resp.json()

    async def lookup(self, query: str) -> TrackRef | None:
        if not self.enabled or not query.strip():
            return None
        video_id = extract_youtube_id(query)
        try:
            if video_id:
                data = await self._get("videos", {"part": "snippet", "id": video_id})
            else:
                data = await self._get(
                    "search",
                    {"part": "snippet", "type": "video", "maxResults": 1, "q": query},
                )
        except (aiohttp.ClientError, TimeoutError) as exc:
            logger.error(f"[YouTube API] lookup failed for {query!r}: {type(exc).__name__}: {exc}")
            raise TrackLookupUnavailableError() from exc

        items = (data or {}).get("items", [])
        if not items:
            return None  # not found / private
        item = items[0]
        snippet = item.get("snippet", {})
        if not video_id:
            video_id = item.get("id", {}).get("videoId")
        title = snippet.get("title")
        if not title:
            return None
        return TrackRef(
            title=title[:200],
            artist=(snippet.get("channelTitle") or None),
            artwork_url=_thumbnail(snippet),
            catalog_id=video_id,
        )

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
