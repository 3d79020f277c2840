"""Discovery run orchestration.

Last.fm history -> similar artists -> sampled tracks -> Spotify matches ->
a fresh playlist. Each fan-out stage runs on a small thread pool; results are
reassembled in input order. Per-item failures are collected into the run
summary; only FatalRunError ends a run early.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional, Sequence, TypeVar

from rich.console import Console

from discoverfm.data.auth import AuthManager
from discoverfm.data.config import Settings
from discoverfm.data.errors import DiscoveryError, FatalRunError
from discoverfm.data.lastfm_client import LastfmClient
from discoverfm.data.models import (
    Artist,
    Candidate,
    Failure,
    MatchConfidence,
    Outcome,
    ResolvedTrack,
    RunSummary,
    SampledTrack,
)
from discoverfm.data.spotify_client import SpotifyCatalog
from discoverfm.models.discovery import SimilarityExpander, merge_candidates
from discoverfm.models.history import HistoryReader
from discoverfm.models.matching import CatalogResolver
from discoverfm.models.sampling import TrackSampler
from discoverfm.playlists.builder import PlaylistBuilder

logger = logging.getLogger(__name__)
console = Console()

X = TypeVar("X")
Y = TypeVar("Y")


class DiscoveryPipeline:
    def __init__(
        self,
        settings: Settings,
        lastfm,
        auth,
        catalog,
        open_url: Optional[Callable[[str], object]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.settings = settings
        self.lastfm = lastfm
        self.auth = auth
        self.catalog = catalog
        self.open_url = open_url

        self.history = HistoryReader(
            lastfm, settings.lastfm_username, max_pages=settings.max_pages, page_size=settings.page_size
        )
        self.sampler = TrackSampler(lastfm, albums_per_artist=settings.albums_per_artist, seed=settings.random_seed)
        self.resolver = CatalogResolver(catalog, settings.retry_policy, sleep=sleep)
        self.builder = PlaylistBuilder(
            catalog, settings.retry_policy, batch_size=settings.batch_size, sleep=sleep
        )

        self.failures: list[Failure] = []
        self._failures_lock = threading.Lock()

    def _record(self, failure: Failure) -> None:
        with self._failures_lock:
            self.failures.append(failure)

    def _fan_out(self, stage: str, fn: Callable[[X], Y], items: Sequence[X]) -> list[Outcome[Y]]:
        """Run fn over items on the stage pool; one Outcome per item, in input order.

        Non-fatal errors become recorded failures, appended in input order
        once the stage completes. A FatalRunError from any worker propagates
        out of executor.map and ends the run.
        """

        def unit(item: X) -> Outcome[Y]:
            try:
                return Outcome(value=fn(item))
            except FatalRunError:
                raise
            except DiscoveryError as e:
                return Outcome(failure=Failure.from_error(stage, item, e))

        if not items:
            return []
        with ThreadPoolExecutor(
            max_workers=self.settings.concurrency, thread_name_prefix=f"discoverfm-{stage}"
        ) as executor:
            outcomes = list(executor.map(unit, items))
        for outcome in outcomes:
            if not outcome.ok:
                self._record(outcome.failure)
        return outcomes

    def expand(self, seeds: list[Artist]) -> list[Candidate]:
        expander = SimilarityExpander(self.lastfm, known_seeds=seeds)
        limit = self.settings.candidate_limit
        outcomes = self._fan_out("expand", lambda seed: expander.expand(seed, limit), seeds)
        return merge_candidates(seeds, [outcome.value or [] for outcome in outcomes])

    def sample(self, candidates: list[Candidate]) -> list[SampledTrack]:
        cap = self.settings.per_artist_cap
        outcomes = self._fan_out(
            "sample", lambda candidate: self.sampler.sample_tracks(candidate.artist, cap), candidates
        )
        return [track for outcome in outcomes if outcome.ok for track in outcome.value]

    def resolve(self, tracks: list[SampledTrack]) -> list[ResolvedTrack]:
        outcomes = self._fan_out("resolve", self.resolver.resolve_or_raise, tracks)
        return [outcome.value for outcome in outcomes if outcome.ok]

    def run(self) -> RunSummary:
        s = self.settings

        console.print(f"[bold]Reading Last.fm history for {s.lastfm_username}...[/bold]")
        seeds = self.history.fetch_seed_artists(s.window_months)
        console.print(f"Found [green]{len(seeds)}[/green] seed artists")

        console.print("[bold]Finding similar artists...[/bold]")
        candidates = self.expand(seeds)
        console.print(f"Found [green]{len(candidates)}[/green] new artists")

        console.print("[bold]Sampling tracks...[/bold]")
        sampled = self.sample(candidates)
        console.print(f"Sampled [green]{len(sampled)}[/green] tracks")

        if not sampled:
            console.print("[yellow]Nothing to look up on Spotify.[/yellow]")
            return self._summary(seeds, candidates, sampled, [])

        console.print("[bold]Connecting to Spotify...[/bold]")
        self.auth.authenticate(open_url=self.open_url)

        console.print("[bold]Searching Spotify...[/bold]")
        resolved = self.resolve(sampled)
        console.print(f"Matched [green]{len(resolved)}[/green] / {len(sampled)} tracks")

        if not resolved:
            console.print("[yellow]No tracks matched; skipping playlist creation.[/yellow]")
            return self._summary(seeds, candidates, sampled, resolved)

        return self._publish(seeds, candidates, sampled, resolved)

    def _publish(
        self,
        seeds: list[Artist],
        candidates: list[Candidate],
        sampled: list[SampledTrack],
        resolved: list[ResolvedTrack],
    ) -> RunSummary:
        s = self.settings
        ids = [track.destination_id for track in resolved]
        name = s.playlist_title()
        try:
            playlist_id = self.builder.create_playlist(
                name, s.playlist_description, private=not s.playlist_public
            )
        except FatalRunError:
            raise
        except DiscoveryError as e:
            self._record(Failure.from_error("create", name, e))
            return self._summary(seeds, candidates, sampled, resolved, add_failed=len(ids))

        console.print(f"Adding [green]{len(ids)}[/green] tracks to the playlist...")
        report = self.builder.add_tracks(playlist_id, ids)
        for failure in report.failures:
            self._record(failure)

        return self._summary(
            seeds,
            candidates,
            sampled,
            resolved,
            added=len(report.added),
            add_failed=len(report.failed),
            duplicates=len(report.duplicates),
            playlist_id=playlist_id,
            playlist_url=self.builder.playlist_url(playlist_id),
        )

    def _summary(
        self,
        seeds: list[Artist],
        candidates: list[Candidate],
        sampled: list[SampledTrack],
        resolved: list[ResolvedTrack],
        added: int = 0,
        add_failed: int = 0,
        duplicates: int = 0,
        playlist_id: Optional[str] = None,
        playlist_url: Optional[str] = None,
    ) -> RunSummary:
        exact = sum(1 for track in resolved if track.match_confidence is MatchConfidence.EXACT)
        fuzzy = [track.title_similarity for track in resolved if track.match_confidence is MatchConfidence.FUZZY]
        summary = RunSummary(
            seeds=len(seeds),
            candidates=len(candidates),
            sampled=len(sampled),
            matched=len(resolved),
            exact_matches=exact,
            fuzzy_matches=len(resolved) - exact,
            unmatched=len(sampled) - len(resolved),
            added=added,
            add_failed=add_failed,
            duplicates=duplicates,
            failures=tuple(self.failures),
            weakest_fuzzy_similarity=min(fuzzy, default=None),
            playlist_id=playlist_id,
            playlist_url=playlist_url,
        )
        if not summary.is_conserved:
            logger.error("Run summary counts do not add up: %s", summary)
        return summary


def build_pipeline(
    settings: Settings,
    open_url: Optional[Callable[[str], object]] = None,
) -> DiscoveryPipeline:
    """Wire real Last.fm and Spotify clients into a pipeline."""
    lastfm = LastfmClient(settings.lastfm_api_key, retry_policy=settings.retry_policy)
    auth = AuthManager.from_settings(settings)
    catalog = SpotifyCatalog(
        auth,
        user_id=settings.spotify_user_id,
        market=settings.market,
        search_limit=settings.search_limit,
        requests_timeout=settings.requests_timeout,
    )
    return DiscoveryPipeline(settings, lastfm, auth, catalog, open_url=open_url)

