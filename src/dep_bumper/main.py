import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

import click
from rich.console import Console
from rich.panel import Panel

from .cache_manager import get_cache_manager
from .cli_config import (
    build_config,
    create_sample_config,
    get_config,
    load_config,
    load_config_file,
    validate_config_values,
)
from .dependency import DependencyUpdate
from .error_handling import get_error_handler, setup_error_handling
from .graph import InvalidSpecifierError
from .patcher import exec_dependency_update_grouped, write_file_update_results
from .reporting import UpdateReporter, create_pull_request_body, updates_to_json
from .structured_logging import configure_logging
from .updater import get_dependency_updater

__version__ = "1.0.0"

console = Console()
err_console = Console(stderr=True)


async def async_collect_updates(root_module: str, load_remote: bool) -> List[DependencyUpdate]:
    """Collect updates for the graph rooted at `root_module`."""
    async with get_dependency_updater() as updater:
        return await updater.collect_dependency_update_all(root_module, load_remote)


async def async_update_dependencies(
    root_module: str, load_remote: bool, dry_run: bool, summary_file: Optional[str]
) -> int:
    """Collect, patch and (unless dry_run) write updates. Returns files touched."""
    updates = await async_collect_updates(root_module, load_remote)
    reporter = UpdateReporter(console)
    reporter.print_updates(updates, root_module)
    if not updates:
        return 0

    results = await exec_dependency_update_grouped(updates)
    reporter.print_patch_results(results, dry_run)

    written = 0
    if not dry_run:
        written = await write_file_update_results(results)

    if summary_file:
        applied = [update for result in results for update in result.updates]
        Path(summary_file).write_text(create_pull_request_body(applied), encoding="utf-8")
        console.print(f"✅ Summary saved to {summary_file}", style="green")

    return written


def _root_module_argument(func):
    return click.argument(
        "root_module", type=click.Path(exists=True, readable=True, dir_okay=False)
    )(func)


def _load_remote_option(func):
    return click.option(
        "--load-remote/--no-load-remote",
        default=None,
        help="Walk into http(s) modules instead of treating them as leaves",
    )(func)


def _resolve_load_remote(load_remote: Optional[bool]) -> bool:
    if load_remote is None:
        return load_config().update.load_remote
    return load_remote


@click.group(invoke_without_command=True)
@click.option("--version", is_flag=True, help="Show version information")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Log level for structured logs on stderr",
)
@click.pass_context
def cli(ctx, version, log_level):
    """
    📦 dep-bumper: keep versioned imports up to date

    Finds import specifiers pinned to registry versions and rewrites them
    to the latest release, changing nothing else in the file.
    """
    if version:
        console.print(f"dep-bumper version {__version__}", style="bold blue")
        ctx.exit()

    level = (log_level or get_config().logging.log_level).upper()
    configure_logging(level)
    setup_error_handling(
        getattr(logging, level, logging.WARNING), get_config().logging.log_format
    )

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


@cli.command()
@_root_module_argument
@_load_remote_option
@click.option(
    "--output-format",
    type=click.Choice(["console", "json"], case_sensitive=False),
    default="console",
    help="Output format",
    show_default=True,
)
@click.option("--output-file", "-o", type=click.Path(), help="Write JSON results to a file")
def check(
    root_module: str,
    load_remote: Optional[bool],
    output_format: str,
    output_file: Optional[str],
) -> None:
    """
    List available updates without touching any file.

    Examples:

      dep-bumper check src/mod.ts

      dep-bumper check src/mod.ts --output-format json -o updates.json
    """
    if output_file and output_format != "json":
        raise click.ClickException("Output file can only be used with JSON format")

    try:
        updates = asyncio.run(
            async_collect_updates(root_module, _resolve_load_remote(load_remote))
        )
    except InvalidSpecifierError as e:
        err_console.print(f"❌ {e}", style="red")
        sys.exit(1)
    except KeyboardInterrupt:
        err_console.print("\n⚠️  Interrupted by user", style="yellow")
        sys.exit(130)

    if output_format == "json":
        json_output = updates_to_json(updates, root_module)
        if output_file:
            Path(output_file).write_text(json_output, encoding="utf-8")
            err_console.print(f"✅ Results saved to {output_file}", style="green")
        else:
            click.echo(json_output)
    else:
        UpdateReporter(console).print_updates(updates, root_module)


@cli.command()
@_root_module_argument
@_load_remote_option
@click.option("--dry-run", is_flag=True, help="Compute patches but do not write files")
@click.option(
    "--summary",
    "summary_file",
    type=click.Path(),
    help="Write a Markdown summary of applied updates to a file",
)
def update(
    root_module: str, load_remote: Optional[bool], dry_run: bool, summary_file: Optional[str]
) -> None:
    """
    Rewrite outdated specifiers in place.

    Examples:

      dep-bumper update src/mod.ts

      dep-bumper update src/mod.ts --dry-run --summary CHANGES.md
    """
    try:
        written = asyncio.run(
            async_update_dependencies(
                root_module, _resolve_load_remote(load_remote), dry_run, summary_file
            )
        )
    except InvalidSpecifierError as e:
        err_console.print(f"❌ {e}", style="red")
        sys.exit(1)
    except KeyboardInterrupt:
        err_console.print("\n⚠️  Interrupted by user", style="yellow")
        sys.exit(130)

    if not dry_run:
        console.print(f"📝 {written} file(s) written", style="bold")

    # Unreadable or unwritable files fail the run; skipped updates do not
    error_stats = get_error_handler().get_error_stats()
    if error_stats.get("FILESYSTEM_ERROR", 0):
        sys.exit(1)


@cli.group()
def config():
    """Configuration management commands."""
    pass


@config.command("init")
@click.option(
    "--path",
    type=click.Path(),
    default=".dep-bumper.json",
    help="Path where to create the config file",
    show_default=True,
)
@click.option("--force", is_flag=True, help="Overwrite existing config file")
def config_init(path: str, force: bool):
    """Create a sample configuration file."""
    config_path = Path(path)

    if config_path.exists() and not force:
        console.print(f"⚠️  Config file already exists at {config_path}", style="yellow")
        console.print("Use --force to overwrite", style="dim")
        return

    try:
        config_path.write_text(create_sample_config(), encoding="utf-8")
        console.print(f"✅ Created configuration file at {config_path}", style="green")
        console.print("Edit this file to customize your settings", style="dim")
    except OSError as e:
        console.print(f"❌ Failed to create config file: {e}", style="red")
        sys.exit(1)


@config.command("show")
def config_show():
    """Show current configuration settings."""
    current_config = get_config()

    console.print(Panel("[bold blue]🔧 Configuration[/bold blue]", border_style="blue"))

    console.print("\n[bold cyan]📦 Update Settings:[/bold cyan]")
    console.print(f"  Rate Limit: {current_config.update.rate_limit} req/s")
    console.print(f"  Max Concurrent: {current_config.update.max_concurrent}")
    console.print(f"  Timeout: {current_config.update.timeout_seconds}s")
    console.print(f"  Load Remote: {current_config.update.load_remote}")
    console.print(f"  Include Pre-releases: {current_config.update.include_prereleases}")

    console.print("\n[bold cyan]🌐 Network Settings:[/bold cyan]")
    for registry, url in current_config.network.registry_urls.items():
        console.print(f"  {registry}: {url}")
    console.print(f"  Connect Timeout: {current_config.network.connect_timeout}s")
    console.print(f"  Read Timeout: {current_config.network.read_timeout}s")
    console.print(f"  User Agent: {current_config.network.user_agent}")

    console.print("\n[bold cyan]📝 Logging Settings:[/bold cyan]")
    console.print(f"  Log Level: {current_config.logging.log_level}")

    console.print("\n[bold cyan]⚡ Performance Settings:[/bold cyan]")
    cache_stats = get_cache_manager().get_stats()
    console.print(f"  Caching Enabled: {current_config.performance.enable_caching}")
    console.print(f"  Cache TTL: {current_config.performance.cache_ttl_seconds}s")
    console.print(f"  Max Cache Size: {current_config.performance.max_cache_size}")
    console.print(f"  Cached Entries: {cache_stats['size']}")


@config.command("validate")
@click.argument("config_file", type=click.Path(exists=True))
def config_validate(config_file: str):
    """Validate a configuration file."""
    config_data = load_config_file(Path(config_file))

    if not isinstance(config_data, dict):
        console.print(f"❌ Could not load config from {config_file}", style="red")
        sys.exit(1)

    try:
        errors = validate_config_values(build_config(config_data))
    except (TypeError, ValueError) as e:
        errors = [str(e)]

    if errors:
        console.print("❌ Configuration validation failed:", style="red")
        for error in errors:
            console.print(f"  • {error}", style="red")
        sys.exit(1)

    console.print(f"✅ Configuration file {config_file} is valid", style="green")


def main():
    cli()


if __name__ == "__main__":
    main()
