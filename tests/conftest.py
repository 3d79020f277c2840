"""Shared test fixtures for discoverfm tests.

FakeLastfm and FakeCatalog stand in for the two external services. They are
safe to call from the pipeline's worker threads.
"""

import math
import threading

import pytest

from discoverfm.data.config import Settings
from discoverfm.data.errors import AuthDenied, TransientServiceError
from discoverfm.data.lastfm_client import AlbumEntry, AlbumPage
from discoverfm.data.models import AuthToken, CatalogTrack


class FakeLastfm:
    """In-memory history service.

    history: artist names of the user's top albums, in ranking order.
    similar: artist -> similar artist names, or an exception to raise.
    discography: artist -> {album: [track titles] or an exception to raise}.
    """

    def __init__(self, history=None, similar=None, discography=None, history_error=None):
        self.history = history or []
        self.similar = similar or {}
        self.discography = discography or {}
        self.history_error = history_error
        self.calls = []
        self._lock = threading.Lock()

    def _log(self, *call):
        with self._lock:
            self.calls.append(call)

    def top_albums(self, user, period, page=1, limit=50):
        self._log("top_albums", user, period, page)
        if self.history_error is not None:
            raise self.history_error
        total_pages = math.ceil(len(self.history) / limit)
        chunk = self.history[(page - 1) * limit : page * limit]
        albums = [AlbumEntry(artist=name, title=f"{name} LP") for name in chunk]
        return AlbumPage(albums=albums, page=page, total_pages=total_pages)

    def similar_artists(self, artist, limit=10):
        self._log("similar_artists", artist, limit)
        result = self.similar.get(artist, [])
        if isinstance(result, Exception):
            raise result
        return list(result)[:limit]

    def artist_top_albums(self, artist, limit=3):
        self._log("artist_top_albums", artist)
        albums = self.discography.get(artist, {})
        if isinstance(albums, Exception):
            raise albums
        return list(albums)[:limit]

    def album_tracks(self, artist, album):
        self._log("album_tracks", artist, album)
        tracks = self.discography[artist][album]
        if isinstance(tracks, Exception):
            raise tracks
        return list(tracks)

    def close(self):
        pass


class FakeCatalog:
    """In-memory Spotify catalog and playlist store.

    hits: search query -> ranked CatalogTrack list (missing queries give []).
    add_errors: exceptions raised by successive add_items calls, in order.
    """

    def __init__(self, hits=None, add_errors=None, create_error=None):
        self.hits = hits or {}
        self.add_errors = list(add_errors or [])
        self.create_error = create_error
        self.searches = []
        self.created = []
        self.add_calls = []
        self.playlists = {}
        self._lock = threading.Lock()

    def search_tracks(self, query):
        with self._lock:
            self.searches.append(query)
        result = self.hits.get(query, [])
        if isinstance(result, Exception):
            raise result
        return list(result)

    def create_playlist(self, name, description, public=False):
        if self.create_error is not None:
            raise self.create_error
        with self._lock:
            playlist_id = f"pl{len(self.created) + 1}"
            self.created.append((name, description, public))
            self.playlists[playlist_id] = []
        return {"id": playlist_id, "url": f"https://open.spotify.com/playlist/{playlist_id}"}

    def add_items(self, playlist_id, track_ids):
        with self._lock:
            self.add_calls.append((playlist_id, list(track_ids)))
            if self.add_errors:
                error = self.add_errors.pop(0)
                if error is not None:
                    raise error
            self.playlists[playlist_id].extend(track_ids)


class FakeAuth:
    """Auth manager double: authenticate() succeeds unless `deny` is set."""

    def __init__(self, deny=False):
        self.deny = deny
        self.authenticated = False
        self.opened = []

    def authenticate(self, open_url=None):
        url = "https://accounts.spotify.com/authorize?fake=1"
        if open_url is not None:
            open_url(url)
        self.opened.append(url)
        if self.deny:
            raise AuthDenied("No authorization callback received within 0s")
        self.authenticated = True
        return self.current_token()

    def current_token(self):
        if not self.authenticated:
            raise AuthDenied("Spotify authorization has not completed")
        return AuthToken(access_token="token", expires_at=float("inf"))


def no_sleep(seconds):
    pass


def flaky(times, result, error=None):
    """Callable that raises `error` `times` times, then returns result."""
    state = {"left": times}

    def call():
        if state["left"] > 0:
            state["left"] -= 1
            raise error or TransientServiceError("temporary failure")
        return result

    return call


@pytest.fixture
def settings():
    return Settings(
        lastfm_api_key="lastfm-key",
        lastfm_username="listener",
        spotify_client_id="client-id",
        spotify_client_secret="client-secret",
        candidate_limit=5,
        per_artist_cap=3,
        random_seed=1234,
        base_delay=0.0,
        max_delay=0.0,
    )


@pytest.fixture
def env():
    return {
        "LASTFM_API_KEY": "lastfm-key-123456",
        "LASTFM_USERNAME": "listener",
        "SPOTIFY_CLIENT_ID": "client-id",
        "SPOTIFY_CLIENT_SECRET": "client-secret-abcdef",
    }


@pytest.fixture
def catalog():
    return FakeCatalog()


def track(track_id, name, *artists):
    return CatalogTrack(id=track_id, name=name, artists=tuple(artists))
