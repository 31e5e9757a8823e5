"""kaw CLI — the main entry point for the Kyverno Artifact Watcher."""

import os
import sys

import click
import structlog
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from kaw import __version__
from kaw.config import WatchConfig, get_env_or_default, load_config
from kaw.errors import ConfigError, WatcherError
from kaw.log import setup_logging

console = Console()
logger = structlog.get_logger(__name__)


def _load_or_exit() -> WatchConfig:
    """Load configuration from the environment; exit non-zero if it is unusable.

    Logging is configured from LOG_LEVEL and LOG_FORMAT before the rest of
    the configuration is loaded.
    """
    setup_logging(
        get_env_or_default(os.environ, "LOG_LEVEL", "INFO"),
        get_env_or_default(os.environ, "LOG_FORMAT", "json").lower(),
    )
    try:
        return load_config()
    except ConfigError as e:
        logger.critical("invalid_configuration", error=str(e))
        sys.exit(1)


@click.group()
@click.version_option(version=__version__)
def main():
    """kaw — Kyverno Artifact Watcher.

    Polls a registry artifact for new versions, labels the manifests it
    carries, and applies them with kubectl. Configuration is read from the
    environment (PROVIDER, IMAGE_BASE, GITHUB_TOKEN, ...).
    """


# ── Run ──────────────────────────────────────────────────────────────


@main.command()
def run():
    """Watch the artifact and reconcile forever."""
    from kaw.config import Provider
    from kaw.sync.loop import build_loop

    config = _load_or_exit()
    logger.info("kyverno_artifact_watcher", version=__version__)

    try:
        config.state_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.critical("state_dir_create_failed", state_dir=str(config.state_dir), error=str(e))
        sys.exit(1)

    if config.provider == Provider.GITHUB:
        logger.info(
            "starting_ghcr_watcher",
            image_base=config.image_base,
            owner=config.owner,
            package=config.package,
        )
    else:
        logger.info("starting_artifactory_watcher", image_base=config.image_base)

    build_loop(config).run_forever()


@main.command()
def once():
    """Run a single reconciliation cycle and exit."""
    from kaw.sync.loop import build_loop

    config = _load_or_exit()

    try:
        config.state_dir.mkdir(parents=True, exist_ok=True)
        result = build_loop(config).run_once()
    except (WatcherError, OSError) as e:
        logger.error("cycle_failed", error=str(e))
        sys.exit(1)

    console.print(
        Panel(
            f"Outcome:  {result.outcome.value}\n"
            f"Previous: {result.previous or '(none)'}\n"
            f"Latest:   {result.latest or '(none)'}",
            title="Reconciliation Cycle",
        )
    )
    if result.apply and result.apply.results:
        table = Table(title="Applied Manifests")
        table.add_column("File", style="cyan")
        table.add_column("Exit", justify="right")
        for path, code in result.apply.results.items():
            status = "[green]0[/]" if code == 0 else f"[red]{code}[/]"
            table.add_row(path, status)
        console.print(table)


# ── Inspect ──────────────────────────────────────────────────────────


@main.command()
def resolve():
    """Print the version currently published in the registry."""
    from kaw.sync.resolver import build_resolver

    config = _load_or_exit()
    try:
        resolved = build_resolver(config).resolve()
    except WatcherError as e:
        console.print(f"[red]Could not resolve version:[/] {e}")
        sys.exit(1)

    if resolved is None:
        console.print("[yellow]No versions found for package.[/]")
        return

    console.print(f"[cyan]{resolved.identifier}[/]")
    if resolved.digest:
        console.print(f"  digest: {resolved.digest}")


@main.command()
def state():
    """Print the last version that was pulled and applied."""
    from kaw.sync.state import StateStore

    config = _load_or_exit()
    last_seen = StateStore(config.last_file).read()
    if not last_seen:
        console.print(f"[yellow]No version applied yet[/] ({config.last_file})")
        return
    console.print(f"[cyan]{last_seen}[/] ({config.last_file})")


# ── Annotate ─────────────────────────────────────────────────────────


@main.command()
@click.argument("path", type=click.Path(exists=True))
@click.option("--version", "-v", "version", required=True, help="Value for the policy-version label")
def annotate(path: str, version: str):
    """Add provenance labels to a manifest file or directory.

    PATH can be a single YAML file or a directory searched recursively.
    """
    from pathlib import Path

    from kaw.errors import ParseError
    from kaw.manifests.annotator import ManifestAnnotator, annotate_file

    target = Path(path)
    if target.is_file():
        try:
            annotate_file(target, version)
        except (ParseError, OSError, UnicodeDecodeError) as e:
            console.print(f"  [red]x[/] {target}: {e}")
            sys.exit(1)
        console.print(f"  [green]v[/] {target}")
        return

    report = ManifestAnnotator().annotate(target, version)
    for annotated in report.annotated:
        console.print(f"  [green]v[/] {annotated}")
    for skipped, reason in report.skipped.items():
        console.print(f"  [red]x[/] {skipped}: {reason}")
    console.print(f"\n{len(report.annotated)} of {report.total} file(s) labelled.")


if __name__ == "__main__":
    main()
