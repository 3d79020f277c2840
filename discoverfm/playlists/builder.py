"""Create the destination playlist and fill it in batches.

The Spotify add-items endpoint silently accepts duplicates, so this builder
keeps its own ledger: an id is submitted at most once per run. A chunk that
still fails after retries is reported and skipped; later chunks still run.
"""

import logging
import threading
import time
from typing import Callable, Iterable

from discoverfm.data.errors import AddBatchFailed, DiscoveryError, FatalRunError, PlaylistCreateFailed
from discoverfm.data.models import AddReport, Failure, PlaylistState
from discoverfm.data.retry import RetryPolicy, call_with_retry
from discoverfm.data.spotify_client import MAX_ADD_BATCH, chunked

logger = logging.getLogger(__name__)


class PlaylistBuilder:
    def __init__(
        self,
        catalog,
        retry_policy: RetryPolicy | None = None,
        batch_size: int = MAX_ADD_BATCH,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.catalog = catalog
        self.retry_policy = retry_policy or RetryPolicy()
        self.batch_size = min(batch_size, MAX_ADD_BATCH)
        self.sleep = sleep
        self.states: dict[str, PlaylistState] = {}
        self.urls: dict[str, str] = {}
        self._lock = threading.Lock()

    def create_playlist(self, name: str, description: str, private: bool = True) -> str:
        """Create a new playlist for this run and return its id."""
        try:
            created = call_with_retry(
                lambda: self.catalog.create_playlist(name, description, public=not private),
                self.retry_policy,
                sleep=self.sleep,
                description="create playlist",
            )
        except FatalRunError:
            raise
        except DiscoveryError as e:
            raise PlaylistCreateFailed(f"Could not create playlist {name!r}: {e}") from e
        playlist_id = created["id"]
        with self._lock:
            self.states[playlist_id] = PlaylistState(playlist_id=playlist_id)
            self.urls[playlist_id] = created["url"]
        logger.info("Created playlist %r (%s)", name, playlist_id)
        return playlist_id

    def _state(self, playlist_id: str) -> PlaylistState:
        with self._lock:
            return self.states.setdefault(playlist_id, PlaylistState(playlist_id=playlist_id))

    def _reserve(self, state: PlaylistState, ids: Iterable[str]) -> tuple[list[str], list[str]]:
        """Split ids into (fresh, duplicate) and mark the fresh ones as submitted."""
        fresh: list[str] = []
        duplicates: list[str] = []
        with self._lock:
            for track_id in ids:
                if track_id in state.added_ids or track_id in state.failed_ids:
                    duplicates.append(track_id)
                    continue
                state.added_ids.add(track_id)
                fresh.append(track_id)
        return fresh, duplicates

    def _release_failed(self, state: PlaylistState, ids: list[str]) -> None:
        with self._lock:
            state.added_ids.difference_update(ids)
            state.failed_ids.update(ids)

    def add_tracks(self, playlist_id: str, ids: Iterable[str]) -> AddReport:
        """Add ids in chunks of at most batch_size, skipping ids already submitted this run."""
        state = self._state(playlist_id)
        added: list[str] = []
        failed: list[str] = []
        duplicates: list[str] = []
        failures: list[Failure] = []

        for chunk in chunked(list(ids), self.batch_size):
            fresh, dupes = self._reserve(state, chunk)
            duplicates.extend(dupes)
            if not fresh:
                continue
            try:
                call_with_retry(
                    lambda: self.catalog.add_items(playlist_id, fresh),
                    self.retry_policy,
                    sleep=self.sleep,
                    description=f"add {len(fresh)} tracks",
                )
            except FatalRunError:
                raise
            except DiscoveryError as e:
                logger.warning("Giving up on a chunk of %d tracks: %s", len(fresh), e)
                self._release_failed(state, fresh)
                failed.extend(fresh)
                failures.append(Failure.from_error(
                    "add", f"{len(fresh)} tracks starting at {fresh[0]}", AddBatchFailed(str(e)),
                ))
                continue
            added.extend(fresh)

        if duplicates:
            logger.debug("Skipped %d ids already submitted this run", len(duplicates))
        return AddReport(
            added=tuple(added),
            failed=tuple(failed),
            duplicates=tuple(duplicates),
            failures=tuple(failures),
        )

    def playlist_url(self, playlist_id: str) -> str:
        return self.urls.get(playlist_id) or f"https://open.spotify.com/playlist/{playlist_id}"
