"""pijul-fetch CLI - fetch and lock pijul repositories into a content store."""
import json
import logging
import sys
from pathlib import Path

import click

from pijul_fetch import __version__
from pijul_fetch.config import FetchSettings
from pijul_fetch.core.errors import (
    ExecError,
    PijulFetchError,
    ProbeError,
    RevisionMismatchError,
    SchemeValidationError,
    UnsupportedInputError,
)
from pijul_fetch.fetcher import Resolver
from pijul_fetch.inputs import PijulInputScheme, SchemeRegistry
from pijul_fetch.store import SqliteFetchCache

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(name)s: %(message)s",
)
logger = logging.getLogger("pijul_fetch")

EXIT_FAILURE = 1
EXIT_MISMATCH = 3
EXIT_INVALID_INPUT = 4
EXIT_PROBE_FAILURE = 5


def _build(settings: FetchSettings):
    """Construct the resolver and a registry holding its scheme."""
    resolver = Resolver.from_settings(settings)
    registry = SchemeRegistry([resolver.scheme])
    return registry, resolver


def _exit_code(error: Exception) -> int:
    if isinstance(error, RevisionMismatchError):
        return EXIT_MISMATCH
    if isinstance(error, (SchemeValidationError, UnsupportedInputError)):
        return EXIT_INVALID_INPUT
    if isinstance(error, (ProbeError, ExecError)):
        return EXIT_PROBE_FAILURE
    return EXIT_FAILURE


@click.group()
@click.version_option(__version__, prog_name="pijul-fetch")
@click.option(
    "--cache-path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="SQLite fetch cache (default: $PIJUL_FETCH_CACHE_PATH or ~/.cache/pijul-fetch)",
)
@click.option(
    "--store-path",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Content store directory",
)
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def main(ctx, cache_path, store_path, verbose):
    """pijul-fetch - resolve pijul repositories to content-addressed trees."""
    settings = FetchSettings()
    overrides = {}
    if cache_path is not None:
        overrides["cache_path"] = cache_path
    if store_path is not None:
        overrides["store_path"] = store_path
    if overrides:
        settings = settings.model_copy(update=overrides)

    logger.setLevel(logging.DEBUG if verbose else settings.log_level.upper())
    ctx.obj = settings


@main.command()
@click.argument("url")
@click.option("--name", default=None, help="Store name (default: last URL path segment)")
@click.option("--refresh", is_flag=True, help="Ignore the cached latest state and clone")
@click.option("--lenient", is_flag=True, help="Treat unreadable repository status as unresolved")
@click.option("--json", "as_json", is_flag=True, help="Print the result as JSON")
@click.pass_obj
def fetch(settings: FetchSettings, url: str, name: str, refresh: bool, lenient: bool, as_json: bool):
    """Fetch URL into the content store.

    Examples:
        pijul-fetch fetch 'pijul+https://nest.pijul.com/pijul/pijul'
        pijul-fetch fetch 'pijul+https://example.org/repo?channel=main&state=MXV...'

    Exit codes:
        0: Success
        1: Generic runtime failure
        2: Invalid CLI usage
        3: Requested channel/state not obtained
        4: Invalid or unsupported input URL
        5: pijul failed or repository status unreadable
    """
    if lenient:
        settings = settings.model_copy(update={"probe_policy": "lenient"})

    try:
        registry, resolver = _build(settings)
        descriptor = registry.input_from_url(url)
        result = resolver.fetch(descriptor, name=name, refresh=refresh)
    except PijulFetchError as e:
        logger.error(f"Fetch failed: {e}")
        sys.exit(_exit_code(e))

    scheme = registry.scheme_for(result.descriptor)
    locked_url = scheme.to_url(result.descriptor)
    real_path = resolver.store.to_real_path(result.store_path)

    if as_json:
        click.echo(json.dumps({
            "storePath": str(result.store_path),
            "path": str(real_path),
            "url": locked_url,
            "locked": result.descriptor.locked,
            "attrs": result.descriptor.to_attrs(),
        }, indent=2))
    else:
        click.echo(f"[OK] Fetched: {url}")
        click.echo(f"  Store path: {result.store_path}")
        click.echo(f"  Path: {real_path}")
        if result.descriptor.channel is not None:
            click.echo(f"  Channel: {result.descriptor.channel}")
        if result.descriptor.state is not None:
            click.echo(f"  State: {result.descriptor.state}")
        click.echo(f"  Locked URL: {locked_url}")


@main.command()
@click.argument("url")
@click.option("--name", default=None, help="Store name (default: last URL path segment)")
@click.option("--refresh", is_flag=True, help="Ignore the cached latest state and clone")
@click.pass_obj
def lock(settings: FetchSettings, url: str, name: str, refresh: bool):
    """Resolve URL and print a URL pinned to the obtained channel and state."""
    try:
        registry, resolver = _build(settings)
        descriptor = registry.input_from_url(url)
        result = resolver.fetch(descriptor, name=name, refresh=refresh)
    except PijulFetchError as e:
        logger.error(f"Lock failed: {e}")
        sys.exit(_exit_code(e))

    click.echo(registry.scheme_for(result.descriptor).to_url(result.descriptor))


@main.command()
@click.argument("url")
@click.pass_obj
def show(settings: FetchSettings, url: str):
    """Validate URL and print its attributes without fetching."""
    try:
        registry = SchemeRegistry([PijulInputScheme(settings.schema_version)])
        descriptor = registry.input_from_url(url)
    except PijulFetchError as e:
        logger.error(f"Invalid input: {e}")
        sys.exit(_exit_code(e))

    scheme = registry.scheme_for(descriptor)
    for key, value in sorted(descriptor.to_attrs().items()):
        click.echo(f"{key}: {value}")
    click.echo(f"locked: {str(descriptor.locked).lower()}")
    click.echo(f"complete: {str(scheme.has_complete_info(descriptor)).lower()}")


@main.group()
def cache():
    """Inspect or clear the fetch cache."""
    pass


@cache.command("stats")
@click.pass_obj
def cache_stats(settings: FetchSettings):
    """Show the number of final and provisional cache entries."""
    try:
        counts = SqliteFetchCache(settings.cache_path, ttl=settings.impure_ttl).stats()
    except PijulFetchError as e:
        logger.error(f"Cache unavailable: {e}")
        sys.exit(EXIT_FAILURE)

    click.echo(f"Final entries: {counts['final']}")
    click.echo(f"Provisional entries: {counts['provisional']}")


@cache.command("clear")
@click.pass_obj
def cache_clear(settings: FetchSettings):
    """Remove every cache entry (stored trees are kept)."""
    try:
        removed = SqliteFetchCache(settings.cache_path, ttl=settings.impure_ttl).clear()
    except PijulFetchError as e:
        logger.error(f"Cache unavailable: {e}")
        sys.exit(EXIT_FAILURE)

    click.echo(f"[OK] Removed {removed} cache entries")


if __name__ == "__main__":
    main()
