"""Cache commands."""

from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from ..adapters import SystemTools
from ..exceptions import VarnishManagerError
from ..services import CertificateDiscoverer, HitchService, VarnishService
from ..services import generator
from ..utils.config import Config

console = Console()


@click.command()
@click.option("--hitch", "show_hitch", is_flag=True, help="Also show Hitch TLS statistics")
@click.pass_context
def stats(ctx: click.Context, show_hitch: bool) -> None:
    """Show Varnish statistics."""
    config: Config = ctx.obj["config"]
    tools: SystemTools = ctx.obj["tools"]

    try:
        data = VarnishService(config, tools).stats()
    except (VarnishManagerError, RuntimeError) as e:
        console.print(f"[red]✗ {e}[/red]")
        raise SystemExit(1)

    table = Table(title="Varnish statistics")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")

    table.add_row("Cache hits", f"{data.cache_hits:,}")
    table.add_row("Cache misses", f"{data.cache_misses:,}")
    table.add_row("Hit rate", f"{data.hit_rate:.1f}%")
    table.add_row("Client requests", f"{data.client_requests:,}")
    table.add_row("Requests/s", f"{data.requests_per_second:.2f}")
    table.add_row("Objects", f"{data.objects_in_cache:,}")
    table.add_row("Backend connections", f"{data.backend_connections:,}")
    table.add_row("Backend failures", f"{data.backend_failures:,}")
    table.add_row("Memory used", f"{data.memory_usage_percent:.1f}%")
    table.add_row("Uptime", f"{data.uptime_seconds:,}s")

    console.print(table)

    if show_hitch:
        hitch = HitchService(config, tools).stats()
        tls = Table(title="Hitch statistics")
        tls.add_column("Metric", style="cyan")
        tls.add_column("Value", justify="right")
        tls.add_row("Active connections", f"{hitch.active_connections:,}")
        tls.add_row("Connections (1h)", f"{hitch.total_connections:,}")
        tls.add_row("TLS handshakes (1h)", f"{hitch.ssl_handshakes:,}")
        tls.add_row("Certificate errors (24h)", f"{hitch.certificate_errors:,}")
        tls.add_row("Backend failures (24h)", f"{hitch.backend_failures:,}")
        reachable = "[green]yes[/green]" if hitch.backend_reachable else "[red]no[/red]"
        tls.add_row("Backend reachable", reachable)
        console.print(tls)


@click.command()
@click.argument("domain", required=False)
@click.option("--path", "-p", default="/", help="URL path prefix to purge")
@click.option("--all", "purge_everything", is_flag=True, help="Purge the entire cache")
@click.pass_context
def purge(ctx: click.Context, domain: Optional[str], path: str, purge_everything: bool) -> None:
    """Purge cached objects of DOMAIN, or everything with --all."""
    config: Config = ctx.obj["config"]
    tools: SystemTools = ctx.obj["tools"]
    service = VarnishService(config, tools)

    if not domain and not purge_everything:
        raise click.UsageError("Specify a DOMAIN or --all")

    try:
        message = service.purge_all() if purge_everything else service.purge(domain, path)
    except (VarnishManagerError, RuntimeError) as e:
        console.print(f"[red]✗ {e}[/red]")
        raise SystemExit(1)

    console.print(f"[green]✓ {message}[/green]")


@click.command("render-config")
@click.argument("kind", type=click.Choice(["vcl", "hitch", "service"]))
@click.pass_context
def render_config(ctx: click.Context, kind: str) -> None:
    """Print generated configuration without writing it."""
    config: Config = ctx.obj["config"]
    tools: SystemTools = ctx.obj["tools"]

    if kind == "vcl":
        text = generator.render_cache_config(generator.varnish_params(config))
    elif kind == "service":
        text = generator.render_varnish_service(generator.varnish_params(config))
    else:
        pairs = CertificateDiscoverer(config, tools).find_pairs()
        text = generator.render_tls_config(
            generator.tls_params(config, [pair.combined_pem_path for pair in pairs])
        )

    click.echo(text, nl=False)


@click.command("test-cache")
@click.argument("url")
@click.option("--host", help="Host header to send")
@click.pass_context
def test_cache(ctx: click.Context, url: str, host: Optional[str]) -> None:
    """Request URL twice and show cache headers (expect MISS then HIT)."""
    config: Config = ctx.obj["config"]
    tools: SystemTools = ctx.obj["tools"]

    try:
        results = VarnishService(config, tools).test_cache(url, host)
    except Exception as e:
        console.print(f"[red]✗ Request failed: {e}[/red]")
        raise SystemExit(1)

    table = Table(title=f"Cache test: {url}")
    table.add_column("Request", style="cyan")
    table.add_column("Status", justify="right")
    table.add_column("Time", justify="right")
    table.add_column("X-Cache")
    table.add_column("Headers")

    for result in results:
        headers = result["headers"]
        x_cache = next((v for k, v in headers.items() if k.lower() == "x-cache"), "-")
        table.add_row(
            result["request"],
            str(result["status"]),
            f"{result['elapsed']:.3f}s",
            x_cache,
            " | ".join(f"{k}: {v}" for k, v in headers.items() if k.lower() != "x-cache"),
        )
    console.print(table)
