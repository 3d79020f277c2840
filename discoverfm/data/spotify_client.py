"""Spotify API wrapper using spotipy.

Every call fetches the current token from the auth manager first, and every
spotipy/requests error is translated into the discoverfm error taxonomy.
spotipy's own urllib3 retries are bypassed (a plain requests Session and
retries=0) so 429 responses reach us with their Retry-After header intact.
"""

import logging
import threading
from typing import Any, Callable, Iterator

import requests
import spotipy
from spotipy.cache_handler import MemoryCacheHandler
from spotipy.oauth2 import SpotifyOAuth

from discoverfm.data.errors import RateLimited, ServiceError, TransientServiceError
from discoverfm.data.models import CatalogTrack

logger = logging.getLogger(__name__)

SCOPES = "playlist-modify-private playlist-modify-public"
MAX_ADD_BATCH = 100


def build_oauth(client_id: str, client_secret: str, redirect_uri: str) -> SpotifyOAuth:
    """Authorization Code Flow manager whose tokens never leave process memory."""
    return SpotifyOAuth(
        client_id=client_id,
        client_secret=client_secret,
        redirect_uri=redirect_uri,
        scope=SCOPES,
        cache_handler=MemoryCacheHandler(),
        open_browser=False,
    )


def chunked(lst: list, size: int) -> Iterator[list]:
    """Yield successive chunks of `size` from `lst`."""
    for i in range(0, len(lst), size):
        yield lst[i : i + size]


def _retry_after(headers: Any) -> float | None:
    if not headers:
        return None
    value = headers.get("Retry-After") or headers.get("retry-after")
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def translate_spotify_error(error: spotipy.SpotifyException, operation: str) -> Exception:
    """Map a SpotifyException onto RateLimited / TransientServiceError / ServiceError."""
    status = error.http_status
    message = f"Spotify {operation} failed ({status}): {error.msg}"
    if status == 429:
        return RateLimited(_retry_after(getattr(error, "headers", None)), message)
    if status == 401 or status is None or status >= 500:
        return TransientServiceError(message)
    return ServiceError(message, code=status)


class SpotifyCatalog:
    """Destination catalog and playlist capability backed by spotipy."""

    def __init__(
        self,
        auth,
        user_id: str | None = None,
        market: str | None = None,
        search_limit: int = 10,
        requests_timeout: float = 15.0,
        client_factory: Callable[..., spotipy.Spotify] = spotipy.Spotify,
    ):
        self.auth = auth
        self.user_id = user_id
        self.market = market
        self.search_limit = search_limit
        self.requests_timeout = requests_timeout
        self._client_factory = client_factory
        self._session = requests.Session()
        self._lock = threading.Lock()
        self._sp: spotipy.Spotify | None = None
        self._sp_token: str | None = None

    def _client(self, token) -> spotipy.Spotify:
        with self._lock:
            if self._sp is None or self._sp_token != token.access_token:
                self._sp = self._client_factory(
                    auth=token.access_token,
                    requests_session=self._session,
                    requests_timeout=self.requests_timeout,
                    retries=0,
                    status_retries=0,
                )
                self._sp_token = token.access_token
            return self._sp

    def _call(self, operation: str, fn: Callable[[spotipy.Spotify], Any]) -> Any:
        token = self.auth.current_token()
        sp = self._client(token)
        try:
            return fn(sp)
        except spotipy.SpotifyException as e:
            if e.http_status == 401:
                # token revoked or clock skew: force a refresh before the retry
                self.auth.invalidate(token.access_token)
            raise translate_spotify_error(e, operation) from e
        except requests.exceptions.RequestException as e:
            raise TransientServiceError(f"Spotify {operation} failed: {e}") from e

    def search_tracks(self, query: str) -> list[CatalogTrack]:
        """Ranked track hits for a free-text query."""
        results = self._call(
            "search",
            lambda sp: sp.search(q=query, type="track", limit=self.search_limit, market=self.market),
        )
        items = ((results or {}).get("tracks") or {}).get("items") or []
        return [
            CatalogTrack(
                id=item["id"],
                name=item.get("name", ""),
                artists=tuple(a.get("name", "") for a in item.get("artists", [])),
            )
            for item in items
            if item and item.get("id")
        ]

    def current_user_id(self) -> str:
        if self.user_id is None:
            self.user_id = self._call("current_user", lambda sp: sp.current_user())["id"]
        return self.user_id

    def create_playlist(self, name: str, description: str, public: bool = False) -> dict[str, str]:
        """Create a playlist and return its id and shareable url."""
        user_id = self.current_user_id()
        result = self._call(
            "create_playlist",
            lambda sp: sp.user_playlist_create(user_id, name, public=public, description=description),
        )
        url = (result.get("external_urls") or {}).get("spotify") or f"https://open.spotify.com/playlist/{result['id']}"
        logger.debug("Created playlist %s (%s)", result["id"], url)
        return {"id": result["id"], "url": url}

    def add_items(self, playlist_id: str, track_ids: list[str]) -> None:
        if len(track_ids) > MAX_ADD_BATCH:
            raise ValueError(f"Spotify accepts at most {MAX_ADD_BATCH} items per call")
        self._call("add_items", lambda sp: sp.playlist_add_items(playlist_id, track_ids))
