"""Config loading: config.yaml for tunables, .env / environment for secrets."""

import os
from dataclasses import asdict, dataclass, fields
from datetime import date
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml
from dotenv import load_dotenv

from discoverfm.data.errors import ConfigError
from discoverfm.data.retry import RetryPolicy

DEFAULT_PLAYLIST_NAME = "Last.fm Discoveries - {date}"
DEFAULT_PLAYLIST_DESCRIPTION = "Fresh music recommendations based on your Last.fm history"
MAX_CONCURRENCY = 8

_REQUIRED_ENV = ("LASTFM_API_KEY", "LASTFM_USERNAME", "SPOTIFY_CLIENT_ID", "SPOTIFY_CLIENT_SECRET")
_SECRET_FIELDS = {"lastfm_api_key", "spotify_client_secret"}


def get_project_root() -> Path:
    """Find project root by walking up to pyproject.toml."""
    current = Path(__file__).resolve()
    for parent in [current, *current.parents]:
        if (parent / "pyproject.toml").exists():
            return parent
    raise FileNotFoundError("Could not find project root (no pyproject.toml found)")


def load_config(path: str | Path | None = None) -> dict[str, Any]:
    """Load config.yaml from an explicit path or the project root."""
    config_path = Path(path) if path else get_project_root() / "config.yaml"
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")
    with open(config_path) as f:
        return yaml.safe_load(f) or {}


def load_env(path: str | Path | None = None) -> None:
    """Load .env from an explicit path or the project root. Existing vars win."""
    if path is None:
        try:
            path = get_project_root() / ".env"
        except FileNotFoundError:
            return
    load_dotenv(path)


@dataclass(frozen=True)
class Settings:
    lastfm_api_key: str
    lastfm_username: str
    spotify_client_id: str
    spotify_client_secret: str
    spotify_user_id: Optional[str] = None
    redirect_uri: Optional[str] = None

    window_months: int = 6
    max_pages: int = 5
    page_size: int = 50
    candidate_limit: int = 5
    per_artist_cap: int = 3
    albums_per_artist: int = 3
    random_seed: Optional[int] = None
    concurrency: int = 4

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0

    callback_port: int = 8888
    consent_timeout: float = 120.0
    refresh_margin: float = 60.0
    batch_size: int = 100
    search_limit: int = 10
    market: Optional[str] = None
    requests_timeout: float = 15.0

    playlist_name: str = DEFAULT_PLAYLIST_NAME
    playlist_description: str = DEFAULT_PLAYLIST_DESCRIPTION
    playlist_public: bool = False

    @classmethod
    def from_sources(
        cls,
        config: Mapping[str, Any] | None = None,
        env: Mapping[str, str] | None = None,
        **overrides: Any,
    ) -> "Settings":
        """Merge config.yaml sections, environment secrets and CLI overrides.

        Overrides that are None are ignored so click options can pass straight through.
        """
        config = config or {}
        env = os.environ if env is None else env

        missing = [name for name in _REQUIRED_ENV if not env.get(name)]
        username = env.get("LASTFM_USERNAME") or config.get("lastfm", {}).get("username")
        if username and "LASTFM_USERNAME" in missing:
            missing.remove("LASTFM_USERNAME")
        if missing:
            raise ConfigError(
                f"Missing credentials: {', '.join(missing)}. "
                "Set them in environment variables or the local .env file."
            )

        lastfm = config.get("lastfm", {}) or {}
        discovery = config.get("discovery", {}) or {}
        retry = config.get("retry", {}) or {}
        spotify = config.get("spotify", {}) or {}
        playlist = config.get("playlist", {}) or {}

        values: dict[str, Any] = {
            "lastfm_api_key": env["LASTFM_API_KEY"],
            "lastfm_username": username,
            "spotify_client_id": env["SPOTIFY_CLIENT_ID"],
            "spotify_client_secret": env["SPOTIFY_CLIENT_SECRET"],
            "spotify_user_id": env.get("SPOTIFY_USER_ID") or spotify.get("user_id"),
            "redirect_uri": env.get("SPOTIFY_REDIRECT_URI") or spotify.get("redirect_uri"),
            "window_months": lastfm.get("window_months"),
            "max_pages": lastfm.get("max_pages"),
            "page_size": lastfm.get("page_size"),
            "candidate_limit": discovery.get("candidate_limit"),
            "per_artist_cap": discovery.get("per_artist_cap"),
            "albums_per_artist": discovery.get("albums_per_artist"),
            "random_seed": discovery.get("random_seed"),
            "concurrency": (config.get("concurrency", {}) or {}).get("workers"),
            "max_retries": retry.get("max_retries"),
            "base_delay": retry.get("base_delay"),
            "max_delay": retry.get("max_delay"),
            "callback_port": spotify.get("callback_port"),
            "consent_timeout": spotify.get("consent_timeout"),
            "refresh_margin": spotify.get("refresh_margin"),
            "batch_size": spotify.get("batch_size"),
            "search_limit": spotify.get("search_limit"),
            "market": spotify.get("market"),
            "requests_timeout": spotify.get("requests_timeout"),
            "playlist_name": playlist.get("name"),
            "playlist_description": playlist.get("description"),
            "playlist_public": playlist.get("public"),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})

        known = {f.name for f in fields(cls)}
        unknown = set(values) - known
        if unknown:
            raise ConfigError(f"Unknown settings: {', '.join(sorted(unknown))}")

        settings = cls(**{k: v for k, v in values.items() if v is not None})
        settings.validate()
        return settings

    def validate(self) -> None:
        if not 1 <= self.concurrency <= MAX_CONCURRENCY:
            raise ConfigError(f"concurrency must be between 1 and {MAX_CONCURRENCY}, got {self.concurrency}")
        for name in ("window_months", "max_pages", "page_size", "candidate_limit",
                     "per_artist_cap", "albums_per_artist", "batch_size", "search_limit"):
            if getattr(self, name) < 1:
                raise ConfigError(f"{name} must be a positive integer")
        if not 1 <= self.batch_size <= 100:
            raise ConfigError("batch_size must be between 1 and 100 (Spotify limit)")
        if self.consent_timeout <= 0:
            raise ConfigError("consent_timeout must be positive")
        if self.max_retries < 0:
            raise ConfigError("max_retries cannot be negative")

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.max_retries,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
        )

    @property
    def resolved_redirect_uri(self) -> str:
        return self.redirect_uri or f"http://127.0.0.1:{self.callback_port}/callback"

    def playlist_title(self, today: date | None = None) -> str:
        today = today or date.today()
        return self.playlist_name.replace("{date}", today.strftime("%Y-%m-%d"))

    def masked(self) -> dict[str, Any]:
        """Settings as a dict with secrets masked, for display."""
        data = asdict(self)
        for name in _SECRET_FIELDS:
            secret = data.get(name) or ""
            data[name] = secret[:4] + "*" * max(0, len(secret) - 4) if len(secret) > 8 else "*" * len(secret)
        return data
