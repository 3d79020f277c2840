"""Tests for per-artist track sampling."""

import pytest

from conftest import FakeLastfm
from discoverfm.data.errors import SampleFetchFailed, ServiceError, TransientServiceError
from discoverfm.data.models import Artist
from discoverfm.data.normalize import normalize_name
from discoverfm.models.sampling import TrackSampler

DISCOGRAPHY = {
    "Múm": {
        "Finally We Are No One": ["Green Grass of Tunnel", "We Have a Map of the Piano", "Behind Two Hills"],
        "Yesterday Was Dramatic": ["Green grass of tunnel", "The Ballad of the Broken Birdie Records", "Smell Memory"],
        "Summer Make Good": ["Weeping Rock, Rock", "Nightly Cares"],
    },
    "Tiny": {"Single": ["Only Song"]},
}


@pytest.fixture
def client():
    return FakeLastfm(discography=DISCOGRAPHY)


class TestSampleTracks:
    @pytest.mark.parametrize("cap", [1, 2, 3, 7])
    def test_size_and_distinctness(self, client, cap):
        sampler = TrackSampler(client)
        tracks = sampler.sample_tracks(Artist("Múm"), cap)
        catalog_size = len(sampler.catalog(Artist("Múm")))
        assert len(tracks) == min(cap, catalog_size)
        keys = [normalize_name(t.title) for t in tracks]
        assert len(keys) == len(set(keys))

    def test_never_more_than_catalog(self, client):
        tracks = TrackSampler(client).sample_tracks(Artist("Tiny"), 3)
        assert [t.title for t in tracks] == ["Only Song"]

    def test_catalog_dedupes_by_normalized_title(self, client):
        titles = TrackSampler(client).catalog(Artist("Múm"))
        assert len(titles) == 7
        assert "Green Grass of Tunnel" in titles
        assert "Green grass of tunnel" not in titles

    def test_zero_cap(self, client):
        assert TrackSampler(client).sample_tracks(Artist("Múm"), 0) == []

    def test_same_seed_same_draw(self, client):
        first = TrackSampler(client, seed=42).sample_tracks(Artist("Múm"), 3)
        second = TrackSampler(client, seed=42).sample_tracks(Artist("Múm"), 3)
        assert first == second

    def test_tracks_carry_artist(self, client):
        tracks = TrackSampler(client).sample_tracks(Artist("Múm"), 2)
        assert all(t.artist == Artist("Múm") for t in tracks)

    def test_unknown_artist_gives_empty(self, client):
        assert TrackSampler(client).sample_tracks(Artist("Nobody"), 3) == []

    def test_fetch_failure_is_wrapped(self):
        client = FakeLastfm(discography={"Broken": TransientServiceError("timeout")})
        with pytest.raises(SampleFetchFailed):
            TrackSampler(client).sample_tracks(Artist("Broken"), 3)

    def test_unreadable_album_is_skipped(self):
        client = FakeLastfm(discography={
            "A": {
                "Good": ["One", "Two", "Three", "Four"],
                "Broken": ServiceError("Album not found", code=6),
            },
        })
        tracks = TrackSampler(client, seed=7).sample_tracks(Artist("A"), 3)
        assert len(tracks) == 3
        assert {t.title for t in tracks} <= {"One", "Two", "Three", "Four"}

    def test_every_album_unreadable_fails_artist(self):
        client = FakeLastfm(discography={
            "A": {
                "First": ServiceError("Album not found", code=6),
                "Second": TransientServiceError("timeout"),
            },
        })
        with pytest.raises(SampleFetchFailed):
            TrackSampler(client).sample_tracks(Artist("A"), 3)
