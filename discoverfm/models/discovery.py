"""Similarity expansion: seed artists -> candidate artists via Last.fm.

A seed never discovers itself or any other seed. A failed lookup costs that
seed its candidates, never the run.
"""

import logging
from typing import Iterable

from discoverfm.data.errors import DiscoveryError, SimilarityLookupFailed
from discoverfm.data.models import Artist, Candidate

logger = logging.getLogger(__name__)


class SimilarityExpander:
    def __init__(self, client, known_seeds: Iterable[Artist] = ()):
        self.client = client
        self.known_seeds = {seed.key for seed in known_seeds}

    def expand(self, seed: Artist, limit: int) -> list[Artist]:
        """Up to `limit` similar artists in Last.fm's ranking, seeds excluded.

        Over-fetches by the number of known seeds so excluded names do not
        shrink the result below `limit` when Last.fm has enough data.
        """
        if limit < 1:
            return []
        excluded = self.known_seeds | {seed.key}
        try:
            names = self.client.similar_artists(seed.name, limit=limit + len(excluded))
        except DiscoveryError as e:
            raise SimilarityLookupFailed(f"Similar artists for {seed.name!r}: {e}") from e

        candidates: list[Artist] = []
        seen: set[str] = set()
        for name in names:
            artist = Artist(name)
            if not artist.key or artist.key in excluded or artist.key in seen:
                continue
            seen.add(artist.key)
            candidates.append(artist)
            if len(candidates) >= limit:
                break
        logger.debug("%s -> %d candidates", seed.name, len(candidates))
        return candidates


def merge_candidates(seeds: list[Artist], expansions: list[list[Artist]]) -> list[Candidate]:
    """Flatten per-seed expansions into one deduplicated candidate list.

    `expansions[i]` belongs to `seeds[i]`; the first seed to reach an artist
    owns it, so the result order is stable for a given seed order.
    """
    seed_keys = {seed.key for seed in seeds}
    merged: list[Candidate] = []
    seen: set[str] = set()
    for seed, artists in zip(seeds, expansions):
        for artist in artists:
            if artist.key in seed_keys or artist.key in seen:
                continue
            seen.add(artist.key)
            merged.append(Candidate(artist=artist, source_seed=seed))
    return merged
