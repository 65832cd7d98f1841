"""Main CLI entry point."""

import click
from rich.console import Console

from . import __version__
from .adapters import SystemTools
from .commands import certs, install, purge, render_config, stats, status, test_cache, uninstall, verify
from .utils.config import load_config
from .utils.logging import setup_logging

console = Console()


@click.group()
@click.version_option(version=__version__)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """
    Varnish Manager - Varnish cache and Hitch TLS in front of Apache on cPanel/WHM.

    Install and verify the stack, manage certificates, inspect statistics
    and purge cached content.
    """
    ctx.ensure_object(dict)
    if "config" not in ctx.obj:
        ctx.obj["config"] = load_config()
    config = ctx.obj["config"]
    if "tools" not in ctx.obj:
        ctx.obj["tools"] = SystemTools(config)

    setup_logging("DEBUG" if verbose else config.log_level)


cli.add_command(install)
cli.add_command(uninstall)
cli.add_command(status)
cli.add_command(verify)
cli.add_command(stats)
cli.add_command(purge)
cli.add_command(certs)
cli.add_command(render_config)
cli.add_command(test_cache)


def main() -> None:
    """Main entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
