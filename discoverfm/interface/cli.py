"""Click CLI for discoverfm."""

import logging

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from discoverfm.data.config import Settings, load_config, load_env
from discoverfm.data.errors import ConfigError, FatalRunError

console = Console()


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
        force=True,
    )
    # spotipy and httpx are chatty at DEBUG
    for name in ("urllib3", "httpx", "httpcore", "spotipy"):
        logging.getLogger(name).setLevel(logging.WARNING)


def _load_settings(config_path, **overrides) -> Settings:
    load_env()
    try:
        config = load_config(config_path)
    except FileNotFoundError:
        if config_path:
            raise ConfigError(f"Config file not found: {config_path}") from None
        config = {}
    return Settings.from_sources(config, **overrides)


def _print_summary(summary) -> None:
    table = Table(title="Discovery Run")
    table.add_column("Stage", style="bold")
    table.add_column("Count", justify="right")

    table.add_row("Seed artists", str(summary.seeds))
    table.add_row("New artists", str(summary.candidates))
    table.add_row("Sampled tracks", str(summary.sampled))
    table.add_row("Matched (exact / fuzzy)", f"{summary.matched} ({summary.exact_matches} / {summary.fuzzy_matches})")
    if summary.weakest_fuzzy_similarity is not None:
        table.add_row("Weakest fuzzy title match", f"{summary.weakest_fuzzy_similarity}%")
    table.add_row("Unmatched", str(summary.unmatched))
    table.add_row("Added", str(summary.added))
    table.add_row("Failed to add", str(summary.add_failed))
    if summary.duplicates:
        table.add_row("Duplicates skipped", str(summary.duplicates))
    console.print(table)

    if summary.failures:
        console.print()
        failures = Table(title=f"Failures ({len(summary.failures)})")
        failures.add_column("Stage")
        failures.add_column("Subject")
        failures.add_column("Kind")
        failures.add_column("Reason")
        for failure in summary.failures[:30]:
            failures.add_row(failure.stage, failure.subject[:40], failure.kind, failure.reason[:60])
        console.print(failures)
        if len(summary.failures) > 30:
            console.print(f"...and {len(summary.failures) - 30} more")


@click.group()
def cli():
    """discoverfm: Last.fm-driven Spotify discovery playlists."""
    pass


@cli.command()
@click.option("--config", "config_path", type=click.Path(dir_okay=False), default=None,
              help="Path to config.yaml (default: project root).")
@click.option("--window-months", type=int, default=None, help="Listening history window in months.")
@click.option("--per-artist-cap", type=int, default=None, help="Max tracks sampled per new artist.")
@click.option("--candidate-limit", type=int, default=None, help="Similar artists taken per seed.")
@click.option("--concurrency", type=int, default=None, help="Worker threads per stage (1-8).")
@click.option("--playlist-name", default=None, help="Playlist name; {date} is replaced with today's date.")
@click.option("--seed", "random_seed", type=int, default=None, help="Random seed for reproducible sampling.")
@click.option("--no-browser", is_flag=True, help="Print URLs instead of opening a browser.")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging.")
def run(config_path, window_months, per_artist_cap, candidate_limit, concurrency,
        playlist_name, random_seed, no_browser, verbose):
    """Build a playlist of new artists similar to what you have been listening to."""
    from discoverfm.playlists.pipeline import build_pipeline

    _setup_logging(verbose)

    def open_url(url):
        console.print(f"\nAuthorize Spotify access:\n[link={url}]{url}[/link]\n")
        if not no_browser:
            click.launch(url)

    try:
        settings = _load_settings(
            config_path,
            window_months=window_months,
            per_artist_cap=per_artist_cap,
            candidate_limit=candidate_limit,
            concurrency=concurrency,
            playlist_name=playlist_name,
            random_seed=random_seed,
        )
        pipeline = build_pipeline(settings, open_url=open_url)
        try:
            summary = pipeline.run()
        finally:
            pipeline.lastfm.close()
    except (ConfigError, FatalRunError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise SystemExit(1)

    console.print()
    _print_summary(summary)

    if summary.playlist_url and summary.added:
        console.print(f"\n[bold green]Done![/bold green] {summary.playlist_url}")
        if not no_browser:
            click.launch(summary.playlist_url)
    elif summary.playlist_url:
        console.print(f"\n[yellow]Playlist created but no tracks were added:[/yellow] {summary.playlist_url}")
    else:
        console.print("\n[yellow]No playlist was created.[/yellow]")


@cli.command()
@click.option("--config", "config_path", type=click.Path(dir_okay=False), default=None,
              help="Path to config.yaml (default: project root).")
def check(config_path):
    """Validate configuration and show the resolved settings."""
    try:
        settings = _load_settings(config_path)
    except ConfigError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise SystemExit(1)

    table = Table(title="discoverfm Settings")
    table.add_column("Setting", style="bold")
    table.add_column("Value")
    for name, value in settings.masked().items():
        table.add_row(name, "" if value is None else str(value))
    table.add_row("redirect_uri (resolved)", settings.resolved_redirect_uri)
    console.print(table)
    console.print("[green]Configuration OK.[/green]")


if __name__ == "__main__":
    cli()
