"""Last.fm REST client for the history side of the pipeline.

Talks to the JSON API directly with httpx so paging and Last.fm error codes
are visible to the caller. Every call goes through the retry policy; errors
come out as taxonomy exceptions (ServiceError, TransientServiceError, RateLimited).
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable

import httpx

from discoverfm.data.errors import RateLimited, ServiceError, TransientServiceError
from discoverfm.data.retry import RetryPolicy, call_with_retry

logger = logging.getLogger(__name__)

BASE_URL = "https://ws.audioscrobbler.com/2.0/"

# Last.fm error codes: https://www.last.fm/api/errorcodes
ERROR_INVALID_PARAMETERS = 6
ERROR_RATE_LIMIT = 29
_TRANSIENT_ERRORS = {8, 11, 16}


@dataclass(frozen=True)
class AlbumEntry:
    artist: str
    title: str


@dataclass(frozen=True)
class AlbumPage:
    albums: list[AlbumEntry]
    page: int
    total_pages: int


def _as_list(value: Any) -> list:
    """Last.fm returns a bare object instead of a one-element list."""
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _retry_after(headers: httpx.Headers) -> float | None:
    try:
        return float(headers["Retry-After"])
    except (KeyError, ValueError):
        return None


def _artist_name(entry: dict) -> str:
    artist = entry.get("artist", "")
    if isinstance(artist, dict):
        return artist.get("name") or artist.get("#text") or ""
    return str(artist)


class LastfmClient:
    """History service capability: top albums, similar artists, artist albums, album tracks."""

    def __init__(
        self,
        api_key: str,
        retry_policy: RetryPolicy | None = None,
        timeout: float = 15.0,
        http: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.api_key = api_key
        self.retry_policy = retry_policy or RetryPolicy()
        self._http = http or httpx.Client(base_url=BASE_URL, timeout=timeout)
        self._sleep = sleep

    def close(self) -> None:
        self._http.close()

    def _request_once(self, method: str, params: dict[str, Any]) -> dict:
        request_params = {"method": method, "api_key": self.api_key, "format": "json", **params}
        logger.debug("Last.fm %s %s", method, params)
        try:
            resp = self._http.get("", params=request_params)
        except httpx.TransportError as e:
            raise TransientServiceError(f"Last.fm {method}: {e}") from e

        if resp.status_code == 429:
            raise RateLimited(_retry_after(resp.headers), f"Last.fm {method} rate limited")
        if resp.status_code >= 500:
            raise TransientServiceError(f"Last.fm {method} returned {resp.status_code}")

        try:
            data = resp.json()
        except ValueError as e:
            if resp.is_success:
                raise TransientServiceError(f"Last.fm {method} returned malformed JSON") from e
            raise ServiceError(f"Last.fm {method} returned {resp.status_code}") from e

        if isinstance(data, dict) and "error" in data:
            code = int(data["error"])
            message = data.get("message", "unknown error")
            if code == ERROR_RATE_LIMIT:
                raise RateLimited(None, f"Last.fm {method}: {message}")
            if code in _TRANSIENT_ERRORS:
                raise TransientServiceError(f"Last.fm {method}: {message} (error {code})")
            raise ServiceError(f"Last.fm {method}: {message}", code=code)

        if not resp.is_success:
            raise ServiceError(f"Last.fm {method} returned {resp.status_code}", code=resp.status_code)
        return data

    def _request(self, method: str, **params: Any) -> dict:
        return call_with_retry(
            lambda: self._request_once(method, params),
            self.retry_policy,
            description=f"Last.fm {method}",
            sleep=self._sleep,
        )

    def top_albums(self, user: str, period: str, page: int = 1, limit: int = 50) -> AlbumPage:
        """One page of the user's top albums for a Last.fm period (e.g. '6month')."""
        data = self._request("user.gettopalbums", user=user, period=period, page=page, limit=limit)
        top = data.get("topalbums", {}) or {}
        attrs = top.get("@attr", {}) or {}
        albums = [
            AlbumEntry(artist=_artist_name(a), title=a.get("name", ""))
            for a in _as_list(top.get("album"))
        ]
        return AlbumPage(
            albums=albums,
            page=int(attrs.get("page", page)),
            total_pages=int(attrs.get("totalPages", page)),
        )

    def similar_artists(self, artist: str, limit: int = 10) -> list[str]:
        """Similar artist names, in Last.fm's own similarity order."""
        data = self._request("artist.getsimilar", artist=artist, limit=limit, autocorrect=1)
        similar = data.get("similarartists", {}) or {}
        return [a["name"] for a in _as_list(similar.get("artist")) if a.get("name")]

    def artist_top_albums(self, artist: str, limit: int = 3) -> list[str]:
        data = self._request("artist.gettopalbums", artist=artist, limit=limit, autocorrect=1)
        top = data.get("topalbums", {}) or {}
        return [a["name"] for a in _as_list(top.get("album")) if a.get("name")][:limit]

    def album_tracks(self, artist: str, album: str) -> list[str]:
        """Track titles of an album. Albums without a track listing give []."""
        data = self._request("album.getinfo", artist=artist, album=album, autocorrect=1)
        tracks = (data.get("album", {}) or {}).get("tracks", {}) or {}
        return [t["name"] for t in _as_list(tracks.get("track")) if t.get("name")]
