"""
Command-line interface for music-catalog.

This module implements the CLI using Click, a thin shell over the
Dispatcher. rich-click is used for the help output colors.

Commands:
    catalog identify <input>...     Show provider and canonical URI of each input
    catalog resolve <input>...      Resolve inputs and print entities as JSON
    catalog tracks <input>          Print the member tracks of an input as JSON

Options:
    --config <path>                 Configuration file (default: ./config.yaml)
    --verbose                       Show DEBUG messages on the console
    --log-dir <dir>                 Also write full and error-only log files

Usage:
    # Which provider owns a link?
    catalog identify "https://link.deezer.com/s/30Bqd0WA8jnxB2PIMumVG"

    # Normalized metadata for several inputs (progress bar on stderr)
    catalog resolve spotify:track:4uLU6hMCjMI75M1A2tKUQC deezer:album:302127

    # Every track of an Apple Music playlist
    catalog tracks "https://music.apple.com/us/playlist/todays-hits/pl.f4d106fed2bd41149aaacabb233eb5eb"

Exit Codes:
    0    success
    1    configuration error, unresolved input or unexpected error
    2    unrecognized input
    3    provider error (transport, remote API, authentication)
    4    other catalog error
    130  interrupted
"""

import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

import rich_click as click
from tqdm import tqdm

# Configure rich-click for better help formatting
click.rich_click.USE_RICH_MARKUP = True
click.rich_click.SHOW_ARGUMENTS = True
click.rich_click.GROUP_ARGUMENTS_OPTIONS = True
click.rich_click.MAX_WIDTH = 100

from music_catalog.core import (
    AuthenticationError,
    CatalogError,
    Config,
    ConfigError,
    ParseError,
    ProviderError,
    get_logger,
    load_config,
    setup_logging,
    shutdown_logging,
)
from music_catalog.dispatcher import Dispatcher, build_dispatcher

logger = get_logger(__name__)


__version__ = "0.3.0"


@click.group()
@click.option(
    "--config", "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    metavar="<config.yaml>",
    help="Configuration file (default: ./config.yaml)"
)
@click.option(
    "--verbose", "-v",
    is_flag=True,
    help="Show DEBUG messages on the console"
)
@click.option(
    "--log-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    metavar="<dir>",
    help="Write full and error-only log files to this directory"
)
@click.version_option(__version__, prog_name="music-catalog")
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[Path], verbose: bool, log_dir: Optional[Path]) -> None:
    """
    music-catalog: Resolve Spotify, Deezer and Apple Music links to metadata.

    Accepts web URLs, provider URIs (spotify:track:...) and short links
    (spotify.link, link.deezer.com) and prints normalized entities.

    \b
    EXAMPLES:
        catalog identify "https://open.spotify.com/track/..."
        catalog resolve deezer:album:302127 spotify:artist:...
        catalog tracks "https://music.apple.com/us/album/...?i=..."
    """
    ctx.obj = {
        "config_path": config_path,
        "verbose": verbose,
        "log_dir": log_dir,
    }


@cli.command()
@click.argument("inputs", nargs=-1, required=True)
@click.pass_obj
def identify(options: dict, inputs: tuple[str, ...]) -> None:
    """Show which provider owns each input and its canonical URI."""
    _run(options, _identify, inputs)


@cli.command()
@click.argument("inputs", nargs=-1, required=True)
@click.pass_obj
def resolve(options: dict, inputs: tuple[str, ...]) -> None:
    """Resolve inputs to tracks, albums, artists or playlists (JSON)."""
    _run(options, _resolve, inputs)


@cli.command()
@click.argument("value", metavar="INPUT")
@click.pass_obj
def tracks(options: dict, value: str) -> None:
    """Print the tracks of a track, album, playlist or artist (JSON)."""
    _run(options, _tracks, value)


def _run(options: dict, command: Callable[..., Awaitable[int]], *args: Any) -> None:
    """
    Execute a command coroutine with logging, configuration and error handling.

    Args:
        options: Global CLI options from the click context.
        command: Coroutine function taking (dispatcher, *args) and
                 returning the exit code.
        *args: Command arguments.

    Raises:
        SystemExit: On failure (with appropriate exit code).
    """
    exit_code = 0

    try:
        setup_logging(options["log_dir"], "DEBUG" if options["verbose"] else "INFO")
        config = _load_configuration(options["config_path"])
        exit_code = asyncio.run(_with_dispatcher(config, command, *args))

    except ConfigError as e:
        click.echo(f"Configuration error: {e.message}", err=True)
        sys.exit(1)

    except ParseError as e:
        click.echo(f"Error: {e.message}", err=True)
        sys.exit(2)

    except AuthenticationError as e:
        click.echo(f"Authentication error: {e.message}", err=True)
        click.echo("Check the credentials in config.yaml or the environment", err=True)
        logger.error(f"Authentication error: {e.message}", exc_info=True)
        sys.exit(3)

    except ProviderError as e:
        click.echo(f"{e.provider} error: {e.message}", err=True)
        logger.error(f"{e.provider} error: {e.message}", exc_info=True)
        sys.exit(3)

    except CatalogError as e:
        click.echo(f"Error: {e.message}", err=True)
        logger.error(f"Error: {e.message}", exc_info=True)
        sys.exit(4)

    except KeyboardInterrupt:
        click.echo("\nInterrupted by user", err=True)
        logger.info("Interrupted by user")
        sys.exit(130)

    except Exception as e:
        click.echo(f"Unexpected error: {e}", err=True)
        logger.exception("Unexpected error")
        sys.exit(1)

    finally:
        shutdown_logging()

    if exit_code:
        sys.exit(exit_code)


def _load_configuration(config_path: Path | None) -> Config:
    """
    Load configuration; an explicitly named file must exist.

    Raises:
        ConfigError: If configuration is invalid or the named file is missing.
    """
    return load_config(config_path, required=config_path is not None)


async def _with_dispatcher(config: Config, command: Callable[..., Awaitable[int]], *args: Any) -> int:
    async with build_dispatcher(config) as dispatcher:
        return await command(dispatcher, *args)


def _echo_json(payload: Any) -> None:
    click.echo(json.dumps(payload, indent=2, ensure_ascii=False))


# =============================================================================
# COMMANDS
# =============================================================================

async def _identify(dispatcher: Dispatcher, inputs: tuple[str, ...]) -> int:
    unrecognized = 0
    for value in inputs:
        parsed = dispatcher.parse(value)
        if parsed is None:
            click.echo(f"{value}\tunrecognized")
            unrecognized += 1
        else:
            click.echo(f"{value}\t{parsed[1]}")
    return 1 if unrecognized else 0


async def _resolve(dispatcher: Dispatcher, inputs: tuple[str, ...]) -> int:
    """
    Resolve every input concurrently and print the entities.

    Behavior:
        1. Reject unrecognized input before any network call
        2. Resolve all inputs concurrently (tqdm bar when more than one)
        3. Print one JSON object, or a JSON array for several inputs
        4. Exit code 1 when any input resolved to nothing
    """
    for value in inputs:
        dispatcher.require(value)

    with tqdm(total=len(inputs), desc="Resolving", unit="uri", disable=len(inputs) < 2) as progress:
        async def resolve_one(value: str) -> Any:
            try:
                return await dispatcher.resolve(value)
            finally:
                progress.update(1)

        entities = await asyncio.gather(*(resolve_one(value) for value in inputs))

    missing = [value for value, entity in zip(inputs, entities) if entity is None]
    for value in missing:
        logger.warning(f"Could not resolve {value}")

    payload = [entity.to_dict() if entity is not None else None for entity in entities]
    _echo_json(payload if len(inputs) > 1 else payload[0])
    return 1 if missing else 0


async def _tracks(dispatcher: Dispatcher, value: str) -> int:
    dispatcher.require(value)
    resolved = await dispatcher.resolve_tracks(value)

    failed = sum(1 for track in resolved if track is None)
    if failed:
        logger.warning(f"{failed} of {len(resolved)} tracks could not be resolved")
    logger.info(f"Resolved {len(resolved) - failed} tracks")

    _echo_json([track.to_dict() if track is not None else None for track in resolved])
    return 0 if resolved else 1


def main() -> None:
    """
    Entry point for the CLI.

    This function is called when running `catalog` from the command line.
    It invokes the Click CLI group.
    """
    cli()


if __name__ == "__main__":
    main()
