"""
Main CLI entry point for repomirror.

This module provides the Click-based command-line interface for repomirror.
"""

import logging
from pathlib import Path
from typing import Optional, Tuple

import click
from rich.logging import RichHandler

from repomirror import __version__
from repomirror.core.config import GlobalConfig, RepositoryConfig, create_example_config, load_config
from repomirror.core.errors import ConfigError, MirrorError
from repomirror.core.output import OutputLevel, SyncOutputter
from repomirror.core.storage import FileStorage
from repomirror.plugins.rpm.sync import RpmSyncer

# Click context settings to enable -h as alias for --help
CONTEXT_SETTINGS = dict(help_option_names=["-h", "--help"])


def _setup_logging(level: OutputLevel) -> None:
    """Attach a rich log handler to the root logger."""
    log_level = {
        OutputLevel.QUIET: logging.ERROR,
        OutputLevel.NORMAL: logging.WARNING,
        OutputLevel.VERBOSE: logging.DEBUG,
    }[level]
    logging.basicConfig(
        level=log_level,
        format="%(message)s",
        handlers=[RichHandler(show_path=False)],
        force=True,
    )
    # urllib3 connection chatter is not useful even in verbose mode
    logging.getLogger("urllib3").setLevel(logging.WARNING)


@click.group(context_settings=CONTEXT_SETTINGS)
@click.version_option(version=__version__)
@click.option(
    "--config",
    type=click.Path(exists=True, path_type=Path),
    default=None,
    help="Path to configuration file (default: /etc/repomirror/config.yaml, or $REPOMIRROR_CONFIG)",
)
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
@click.option("--quiet", "-q", is_flag=True, help="Only show errors")
@click.pass_context
def cli(ctx: click.Context, config: Optional[Path], verbose: bool, quiet: bool) -> None:
    """repomirror - Incremental RPM repository mirroring.

    Downloads only what changed upstream since the last sync.
    """
    ctx.ensure_object(dict)

    if quiet:
        level = OutputLevel.QUIET
    elif verbose:
        level = OutputLevel.VERBOSE
    else:
        level = OutputLevel.NORMAL
    ctx.obj["output_level"] = level
    _setup_logging(level)

    try:
        ctx.obj["config"] = load_config(config)
    except FileNotFoundError as e:
        click.echo(f"Error: {e}", err=True)
        ctx.exit(1)
    except ValueError as e:
        # YAML syntax error or validation error
        click.echo(f"Error: {e}", err=True)
        ctx.exit(1)

    if verbose:
        click.echo(f"Loaded configuration: {len(ctx.obj['config'].repositories)} repositories")


def _select_repositories(config: GlobalConfig, repo_ids: Tuple[str, ...]) -> list[RepositoryConfig]:
    """Resolve --repo-id options, defaulting to all enabled repositories."""
    if not repo_ids:
        return config.get_enabled_repositories()

    repos = []
    for repo_id in repo_ids:
        repo = config.get_repository(repo_id)
        if repo is None:
            raise ConfigError(f"Repository not found: {repo_id}")
        repos.append(repo)
    return repos


@cli.command()
@click.option(
    "--repo-id",
    "repo_ids",
    multiple=True,
    help="Repository to sync (repeatable, default: all enabled repositories)",
)
@click.pass_context
def sync(ctx: click.Context, repo_ids: Tuple[str, ...]) -> None:
    """Sync repositories from upstream."""
    config: GlobalConfig = ctx.obj["config"]
    output = SyncOutputter(ctx.obj["output_level"])

    try:
        repos = _select_repositories(config, repo_ids)
    except ConfigError as e:
        raise click.ClickException(str(e)) from e
    if not repos:
        click.echo("No repositories to sync.")
        return

    failed = []
    for repo in repos:
        storage = FileStorage(config.storage.get_repository_path(repo))
        syncer = RpmSyncer(
            storage,
            repo,
            output=output,
            download_config=config.download,
            proxy_config=config.proxy,
            ssl_config=config.ssl,
        )
        try:
            with syncer:
                syncer.sync()
        except MirrorError as e:
            output.error(f"Sync of {repo.id} failed: {e}")
            failed.append(repo.id)
            continue
        output.success(f"Repository {repo.id} synced to {storage.directory}")

    if failed:
        output.error(f"{len(failed)} of {len(repos)} repositories failed: {', '.join(failed)}")
        ctx.exit(1)


@cli.group(context_settings=CONTEXT_SETTINGS)
def repo() -> None:
    """Repository management commands."""
    pass


@repo.command("list")
@click.pass_context
def repo_list(ctx: click.Context) -> None:
    """List configured repositories."""
    config: GlobalConfig = ctx.obj["config"]

    if not config.repositories:
        click.echo("No repositories configured.")
        return

    click.echo("Configured Repositories:\n")
    click.echo(f"{'ID':<25} {'Enabled':<8} {'Architectures':<20} {'Path'}")
    click.echo("-" * 90)
    for repo_config in config.repositories:
        enabled = "yes" if repo_config.enabled else "no"
        archs = ",".join(repo_config.architectures) or "all"
        path = config.storage.get_repository_path(repo_config)
        click.echo(f"{repo_config.id:<25} {enabled:<8} {archs:<20} {path}")
        click.echo(f"  Name: {repo_config.display_name}")
        click.echo(f"  Feed: {repo_config.feed}")


@cli.group("config", context_settings=CONTEXT_SETTINGS)
def config_group() -> None:
    """Configuration commands."""
    pass


@config_group.command("example")
@click.argument("output_path", type=click.Path(dir_okay=False, path_type=Path))
@click.option("--force", is_flag=True, help="Overwrite an existing file")
def config_example(output_path: Path, force: bool) -> None:
    """Write an example configuration file."""
    if output_path.exists() and not force:
        raise click.ClickException(f"{output_path} already exists (use --force to overwrite)")
    create_example_config(output_path)
    click.echo(f"✓ Example configuration written to {output_path}")


if __name__ == "__main__":
    cli()
