"""Error taxonomy for a discovery run.

Only FatalRunError subclasses abort a run. Everything else is captured as a
Failure in the run summary and the pipeline keeps going.
"""


class DiscoveryError(Exception):
    """Base class for every error raised by discoverfm."""


class ConfigError(DiscoveryError):
    """Configuration is missing or invalid."""


class FatalRunError(DiscoveryError):
    """The run cannot continue."""


class HistoryUnavailable(FatalRunError):
    """Listening history could not be read (unknown user or service failure)."""


class AuthDenied(FatalRunError):
    """The user rejected consent, the callback timed out, or the code exchange failed."""


class AuthExpired(FatalRunError):
    """The destination token could not be refreshed."""


class SimilarityLookupFailed(DiscoveryError):
    """Similar-artist lookup failed for one seed."""


class SampleFetchFailed(DiscoveryError):
    """Album or track listing failed for one candidate artist."""


class NoMatchFound(DiscoveryError):
    """A sampled track has no confident match in the destination catalog."""


class TransientServiceError(DiscoveryError):
    """Network error or 5xx response. Retrying may succeed."""


class RateLimited(TransientServiceError):
    """The service asked us to slow down. retry_after is in seconds."""

    def __init__(self, retry_after: float | None = None, message: str = "Rate limited") -> None:
        super().__init__(message)
        self.retry_after = retry_after


class ServiceError(DiscoveryError):
    """Non-retryable service error (bad request, unknown entity, bad key)."""

    def __init__(self, message: str, code: int | None = None) -> None:
        super().__init__(message)
        self.code = code


class AddBatchFailed(DiscoveryError):
    """A chunk of playlist additions failed after all retries."""


class PlaylistCreateFailed(DiscoveryError):
    """The destination playlist could not be created."""
