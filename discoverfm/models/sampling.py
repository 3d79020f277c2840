"""Per-artist track sampling.

Capping the number of tracks per artist keeps one prolific artist from
dominating the playlist. The draw is uniform without replacement and the
generator is reseeded every run unless a seed is configured.
"""

import logging
import random

from discoverfm.data.errors import DiscoveryError, SampleFetchFailed
from discoverfm.data.models import Artist, SampledTrack
from discoverfm.data.normalize import normalize_name

logger = logging.getLogger(__name__)


class TrackSampler:
    def __init__(self, client, albums_per_artist: int = 3, seed: int | None = None):
        self.client = client
        self.albums_per_artist = albums_per_artist
        self.run_seed = seed if seed is not None else random.randrange(2**63)

    def _rng(self, artist: Artist) -> random.Random:
        # one generator per artist so thread scheduling cannot change the draw
        return random.Random(f"{self.run_seed}:{artist.key}")

    def catalog(self, artist: Artist) -> list[str]:
        """Distinct track titles across the artist's top albums, first spelling wins.

        An album whose track list cannot be read is skipped; the artist only
        fails when its album list is unavailable or every album fails.
        """
        try:
            albums = self.client.artist_top_albums(artist.name, limit=self.albums_per_artist)
        except DiscoveryError as e:
            raise SampleFetchFailed(f"Tracks for {artist.name!r}: {e}") from e

        titles: dict[str, str] = {}
        failed = 0
        last_error = None
        for album in albums:
            try:
                tracks = self.client.album_tracks(artist.name, album)
            except DiscoveryError as e:
                logger.warning("Skipping album %r by %s: %s", album, artist.name, e)
                failed += 1
                last_error = e
                continue
            for title in tracks:
                key = normalize_name(title)
                if key:
                    titles.setdefault(key, title.strip())
        if albums and failed == len(albums):
            raise SampleFetchFailed(f"Tracks for {artist.name!r}: {last_error}") from last_error
        return list(titles.values())

    def sample_tracks(self, artist: Artist, per_artist_cap: int) -> list[SampledTrack]:
        """At most `per_artist_cap` distinct tracks, drawn uniformly at random."""
        if per_artist_cap < 1:
            return []
        titles = self.catalog(artist)
        drawn = self._rng(artist).sample(titles, min(per_artist_cap, len(titles)))
        logger.debug("%s: sampled %d of %d tracks", artist.name, len(drawn), len(titles))
        return [SampledTrack(artist=artist, title=title) for title in drawn]
