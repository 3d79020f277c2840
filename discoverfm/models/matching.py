"""Resolve Last.fm (artist, title) pairs to Spotify track ids.

Two-tier matching, artist-gated:
1. Exact: any hit whose credited artist and title both normalize-equal the query.
2. Fuzzy: the top-ranked hit credits the query artist; the title may differ
   (remaster suffixes, punctuation).
Anything else is unmatched. The artist gate accepts some false negatives to
avoid cross-artist false positives.
"""

import logging
import time
from typing import Callable, Sequence

from thefuzz import fuzz

from discoverfm.data.errors import NoMatchFound
from discoverfm.data.models import CatalogTrack, MatchConfidence, ResolvedTrack, SampledTrack
from discoverfm.data.normalize import normalize_name
from discoverfm.data.retry import RetryPolicy, call_with_retry

logger = logging.getLogger(__name__)


def _credits(hit: CatalogTrack, artist_key: str) -> bool:
    return any(normalize_name(name) == artist_key for name in hit.artists)


def classify_match(
    track: SampledTrack, hits: Sequence[CatalogTrack]
) -> tuple[CatalogTrack, MatchConfidence] | None:
    """Apply the matching policy to ranked search hits."""
    if not hits:
        return None
    artist_key = track.artist.key
    title_key = normalize_name(track.title)

    for hit in hits:
        if _credits(hit, artist_key) and normalize_name(hit.name) == title_key:
            return hit, MatchConfidence.EXACT

    top = hits[0]
    if _credits(top, artist_key):
        return top, MatchConfidence.FUZZY
    return None


class CatalogResolver:
    def __init__(
        self,
        catalog,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.catalog = catalog
        self.retry_policy = retry_policy or RetryPolicy()
        self.sleep = sleep

    def search(self, track: SampledTrack) -> list[CatalogTrack]:
        """Ranked hits for the track, retrying transient failures and rate limits."""
        return call_with_retry(
            lambda: self.catalog.search_tracks(track.query),
            self.retry_policy,
            sleep=self.sleep,
            description=f"search {track}",
        )

    def resolve(self, track: SampledTrack) -> ResolvedTrack | None:
        """ResolvedTrack, or None when nothing matches confidently."""
        match = classify_match(track, self.search(track))
        if match is None:
            logger.info("No match for %s", track)
            return None
        hit, confidence = match
        similarity = fuzz.token_set_ratio(normalize_name(track.title), normalize_name(hit.name))
        if confidence is MatchConfidence.FUZZY:
            logger.debug("Fuzzy match %s -> %r (%d)", track, hit.name, similarity)
        return ResolvedTrack(
            sampled=track,
            destination_id=hit.id,
            match_confidence=confidence,
            title_similarity=similarity,
        )

    def resolve_or_raise(self, track: SampledTrack) -> ResolvedTrack:
        """Like resolve(), but an unmatched track raises NoMatchFound.

        Retry exhaustion surfaces as the last TransientServiceError so callers
        can tell 'not in catalog' apart from 'could not ask'.
        """
        resolved = self.resolve(track)
        if resolved is None:
            raise NoMatchFound(f"No confident match for {track}")
        return resolved

