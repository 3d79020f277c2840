"""Tests for playlist creation and batched, de-duplicated adds."""

import pytest

from conftest import FakeCatalog, no_sleep
from discoverfm.data.errors import AuthExpired, PlaylistCreateFailed, RateLimited, ServiceError
from discoverfm.data.retry import RetryPolicy
from discoverfm.playlists.builder import PlaylistBuilder


def submitted_ids(catalog):
    return [track_id for _, ids in catalog.add_calls for track_id in ids]


class TestCreatePlaylist:
    def test_creates_private_by_default(self):
        catalog = FakeCatalog()
        builder = PlaylistBuilder(catalog, sleep=no_sleep)
        playlist_id = builder.create_playlist("Discoveries", "desc")
        assert playlist_id == "pl1"
        assert catalog.created == [("Discoveries", "desc", False)]
        assert builder.playlist_url(playlist_id) == "https://open.spotify.com/playlist/pl1"

    def test_always_creates_new(self):
        catalog = FakeCatalog()
        builder = PlaylistBuilder(catalog, sleep=no_sleep)
        assert builder.create_playlist("Same", "d") != builder.create_playlist("Same", "d")

    def test_failure_raises_create_failed(self):
        catalog = FakeCatalog(create_error=ServiceError("forbidden", code=403))
        with pytest.raises(PlaylistCreateFailed):
            PlaylistBuilder(catalog, sleep=no_sleep).create_playlist("X", "d")

    def test_auth_expiry_is_not_wrapped(self):
        catalog = FakeCatalog(create_error=AuthExpired("refresh failed"))
        with pytest.raises(AuthExpired):
            PlaylistBuilder(catalog, sleep=no_sleep).create_playlist("X", "d")


class TestAddTracks:
    def test_chunks_to_batch_size(self):
        catalog = FakeCatalog()
        builder = PlaylistBuilder(catalog, batch_size=2, sleep=no_sleep)
        playlist_id = builder.create_playlist("P", "d")
        report = builder.add_tracks(playlist_id, ["a", "b", "c", "d", "e"])
        assert [ids for _, ids in catalog.add_calls] == [["a", "b"], ["c", "d"], ["e"]]
        assert report.added == ("a", "b", "c", "d", "e")

    def test_batch_size_capped_at_spotify_limit(self):
        assert PlaylistBuilder(FakeCatalog(), batch_size=500).batch_size == 100

    def test_overlapping_calls_never_resubmit(self):
        catalog = FakeCatalog()
        builder = PlaylistBuilder(catalog, sleep=no_sleep)
        playlist_id = builder.create_playlist("P", "d")
        builder.add_tracks(playlist_id, ["a", "b", "c"])
        report = builder.add_tracks(playlist_id, ["b", "c", "d"])
        assert report.added == ("d",)
        assert report.duplicates == ("b", "c")
        ids = submitted_ids(catalog)
        assert len(ids) == len(set(ids)) == 4

    def test_repeats_within_one_call(self):
        catalog = FakeCatalog()
        builder = PlaylistBuilder(catalog, sleep=no_sleep)
        playlist_id = builder.create_playlist("P", "d")
        report = builder.add_tracks(playlist_id, ["a", "a", "b"])
        assert report.added == ("a", "b")
        assert report.duplicates == ("a",)
        assert submitted_ids(catalog) == ["a", "b"]

    def test_rate_limited_chunk_retried(self):
        catalog = FakeCatalog(add_errors=[RateLimited(2)])
        sleeps = []
        builder = PlaylistBuilder(catalog, sleep=sleeps.append)
        playlist_id = builder.create_playlist("P", "d")
        report = builder.add_tracks(playlist_id, ["a", "b"])
        assert report.added == ("a", "b")
        assert len(sleeps) == 1 and sleeps[0] >= 2
        assert catalog.playlists[playlist_id] == ["a", "b"]

    def test_failed_chunk_recorded_and_next_chunk_runs(self):
        catalog = FakeCatalog(add_errors=[ServiceError("bad id", code=400), None])
        builder = PlaylistBuilder(catalog, batch_size=2, sleep=no_sleep)
        playlist_id = builder.create_playlist("P", "d")
        report = builder.add_tracks(playlist_id, ["a", "b", "c", "d"])
        assert report.failed == ("a", "b")
        assert report.added == ("c", "d")
        assert len(report.failures) == 1
        assert report.failures[0].kind == "AddBatchFailed"
        assert catalog.playlists[playlist_id] == ["c", "d"]

    def test_failed_ids_not_resubmitted(self):
        catalog = FakeCatalog(add_errors=[ServiceError("bad id", code=400)])
        builder = PlaylistBuilder(catalog, RetryPolicy(max_retries=0), sleep=no_sleep)
        playlist_id = builder.create_playlist("P", "d")
        builder.add_tracks(playlist_id, ["a"])
        report = builder.add_tracks(playlist_id, ["a"])
        assert report.duplicates == ("a",)
        assert len(catalog.add_calls) == 1

    def test_auth_expiry_aborts(self):
        catalog = FakeCatalog(add_errors=[AuthExpired("refresh failed")])
        builder = PlaylistBuilder(catalog, sleep=no_sleep)
        playlist_id = builder.create_playlist("P", "d")
        with pytest.raises(AuthExpired):
            builder.add_tracks(playlist_id, ["a"])
