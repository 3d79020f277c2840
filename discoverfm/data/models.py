"""Run-scoped data model for the discovery pipeline.

Nothing here is persisted; every object lives for a single run.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, Optional, TypeVar

from discoverfm.data.normalize import normalize_name

T = TypeVar("T")


@dataclass(frozen=True, eq=False)
class Artist:
    """An artist identified by normalized name (Last.fm exposes no stable ID here)."""

    name: str

    @property
    def key(self) -> str:
        return normalize_name(self.name)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Artist):
            return NotImplemented
        return self.key == other.key

    def __hash__(self) -> int:
        return hash(self.key)

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class Candidate:
    artist: Artist
    source_seed: Artist


@dataclass(frozen=True)
class SampledTrack:
    artist: Artist
    title: str

    @property
    def query(self) -> str:
        return f"{self.artist.name} {self.title}"

    def __str__(self) -> str:
        return f"{self.artist.name} - {self.title}"


class MatchConfidence(str, Enum):
    EXACT = "exact"
    FUZZY = "fuzzy"


@dataclass(frozen=True)
class ResolvedTrack:
    sampled: SampledTrack
    destination_id: str
    match_confidence: MatchConfidence
    # thefuzz token-set ratio of queried vs matched title
    title_similarity: int = 100


@dataclass(frozen=True)
class CatalogTrack:
    """One search hit from the destination catalog."""

    id: str
    name: str
    artists: tuple[str, ...]


@dataclass
class AuthToken:
    """Destination access token. Refreshed in place by the auth manager."""

    access_token: str
    expires_at: float
    refresh_token: Optional[str] = None

    @classmethod
    def from_token_info(cls, token_info: dict[str, Any]) -> "AuthToken":
        return cls(
            access_token=token_info["access_token"],
            expires_at=float(token_info["expires_at"]),
            refresh_token=token_info.get("refresh_token"),
        )

    def update(self, token_info: dict[str, Any]) -> None:
        self.access_token = token_info["access_token"]
        self.expires_at = float(token_info["expires_at"])
        # Spotify only sometimes rotates the refresh token
        if token_info.get("refresh_token"):
            self.refresh_token = token_info["refresh_token"]


@dataclass
class PlaylistState:
    playlist_id: str
    added_ids: set[str] = field(default_factory=set)
    failed_ids: set[str] = field(default_factory=set)


@dataclass(frozen=True)
class Failure:
    """A non-fatal failure recorded in the run summary."""

    stage: str
    subject: str
    kind: str
    reason: str

    @classmethod
    def from_error(cls, stage: str, subject: object, error: Exception) -> "Failure":
        return cls(stage=stage, subject=str(subject), kind=type(error).__name__, reason=str(error))


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Tagged result of one fan-out unit: a value or a failure, never both."""

    value: Optional[T] = None
    failure: Optional[Failure] = None

    @property
    def ok(self) -> bool:
        return self.failure is None


@dataclass(frozen=True)
class AddReport:
    added: tuple[str, ...] = ()
    failed: tuple[str, ...] = ()
    duplicates: tuple[str, ...] = ()
    failures: tuple[Failure, ...] = ()


@dataclass(frozen=True)
class RunSummary:
    seeds: int
    candidates: int
    sampled: int
    matched: int
    exact_matches: int
    fuzzy_matches: int
    unmatched: int
    added: int
    add_failed: int
    duplicates: int
    failures: tuple[Failure, ...] = ()
    # lowest title_similarity among fuzzy matches, None without any
    weakest_fuzzy_similarity: Optional[int] = None
    playlist_id: Optional[str] = None
    playlist_url: Optional[str] = None

    @property
    def is_conserved(self) -> bool:
        """Every sampled track ends up unmatched, added, add-failed or duplicate."""
        return self.unmatched + self.added + self.add_failed + self.duplicates == self.sampled

    def failures_by_kind(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for failure in self.failures:
            counts[failure.kind] = counts.get(failure.kind, 0) + 1
        return counts
