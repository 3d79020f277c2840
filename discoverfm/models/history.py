"""Seed artists from the listener's recent Last.fm top albums."""

import logging

from discoverfm.data.errors import DiscoveryError, HistoryUnavailable, ServiceError
from discoverfm.data.lastfm_client import ERROR_INVALID_PARAMETERS
from discoverfm.data.models import Artist

logger = logging.getLogger(__name__)

# (max months covered, Last.fm period name), smallest first
_PERIODS = [(1, "1month"), (3, "3month"), (6, "6month"), (12, "12month")]


def period_for_window(window_months: int) -> str:
    """Smallest Last.fm period that covers the trailing window."""
    if window_months < 1:
        raise ValueError("window_months must be at least 1")
    for months, period in _PERIODS:
        if window_months <= months:
            return period
    return "overall"


class HistoryReader:
    def __init__(self, client, username: str, max_pages: int = 5, page_size: int = 50):
        self.client = client
        self.username = username
        self.max_pages = max_pages
        self.page_size = page_size

    def fetch_seed_artists(self, window_months: int) -> list[Artist]:
        """Distinct primary artists of the user's top albums, in ranking order.

        Pages until Last.fm reports no further pages or max_pages is reached.
        An empty history gives []; an unknown user or a service failure raises
        HistoryUnavailable.
        """
        period = period_for_window(window_months)
        seeds: dict[Artist, None] = {}
        page = 1
        while page <= self.max_pages:
            try:
                result = self.client.top_albums(self.username, period, page=page, limit=self.page_size)
            except ServiceError as e:
                if e.code == ERROR_INVALID_PARAMETERS:
                    raise HistoryUnavailable(f"Unknown Last.fm user {self.username!r}") from e
                raise HistoryUnavailable(f"Could not read listening history: {e}") from e
            except DiscoveryError as e:
                raise HistoryUnavailable(f"Could not read listening history: {e}") from e

            for album in result.albums:
                name = album.artist.strip()
                if name:
                    seeds.setdefault(Artist(name), None)

            if not result.albums or result.page >= result.total_pages:
                break
            page += 1

        logger.info("Read %d seed artists over %d page(s) of %s history", len(seeds), min(page, self.max_pages), period)
        return list(seeds)
