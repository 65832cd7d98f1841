"""Certificate commands."""

from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from ..adapters import SystemTools
from ..exceptions import VarnishManagerError
from ..services import BackupManager, CertificateDiscoverer, HitchService
from ..utils.config import Config

console = Console()


@click.group()
def certs() -> None:
    """Manage Hitch certificates."""
    pass


@certs.command("list")
@click.pass_context
def list_certs(ctx: click.Context) -> None:
    """List combined PEM files used by Hitch."""
    config: Config = ctx.obj["config"]
    tools: SystemTools = ctx.obj["tools"]

    certificates = HitchService(config, tools).list_certificates()
    if not certificates:
        console.print(f"[yellow]No certificates in {config.cert_output_dir}[/yellow]")
        return

    table = Table(title=f"Certificates ({len(certificates)})")
    table.add_column("File", style="cyan")
    table.add_column("Subject")
    table.add_column("Issuer")
    table.add_column("Valid until")
    table.add_column("Status")

    for info in certificates:
        table.add_row(
            Path(info.path).name,
            info.subject,
            info.issuer,
            info.valid_to,
            "[red]expired[/red]" if info.expired else "[green]valid[/green]",
        )
    console.print(table)


@certs.command("bundle")
@click.option("--dry-run", is_flag=True, help="Show pairs without writing bundles")
@click.pass_context
def bundle(ctx: click.Context, dry_run: bool) -> None:
    """Discover certificate/key pairs and write Hitch bundles."""
    config: Config = ctx.obj["config"]
    tools: SystemTools = ctx.obj["tools"]
    discoverer = CertificateDiscoverer(config, tools)

    if dry_run:
        bundles = discoverer.find_pairs()
    else:
        bundles = discoverer.discover(BackupManager(config.backup_root))

    table = Table(title=f"{'Would bundle' if dry_run else 'Bundled'} {len(bundles)} certificate(s)")
    table.add_column("Domain", style="cyan")
    table.add_column("Certificate")
    table.add_column("Key")
    table.add_column("Bundle")
    for item in bundles:
        table.add_row(item.owning_domain or "-", item.source_cert_path, item.source_key_path, item.combined_pem_path)
    console.print(table)


@certs.command("add")
@click.argument("cert", type=click.Path(exists=True, dir_okay=False))
@click.argument("key", type=click.Path(exists=True, dir_okay=False))
@click.option("--name", help="Bundle name (default: certificate file stem)")
@click.pass_context
def add(ctx: click.Context, cert: str, key: str, name: Optional[str]) -> None:
    """Bundle CERT and KEY and add them to hitch.conf."""
    config: Config = ctx.obj["config"]
    tools: SystemTools = ctx.obj["tools"]

    try:
        result = HitchService(config, tools).add_certificate(cert, key, name)
    except (VarnishManagerError, OSError) as e:
        console.print(f"[red]✗ {e}[/red]")
        raise SystemExit(1)
    console.print(f"[green]✓ Created {result.combined_pem_path}[/green]")


@certs.command("remove")
@click.argument("name")
@click.pass_context
def remove(ctx: click.Context, name: str) -> None:
    """Remove bundle NAME and its hitch.conf entry."""
    config: Config = ctx.obj["config"]
    tools: SystemTools = ctx.obj["tools"]

    try:
        message = HitchService(config, tools).remove_certificate(name)
    except (VarnishManagerError, OSError) as e:
        console.print(f"[red]✗ {e}[/red]")
        raise SystemExit(1)
    console.print(f"[green]✓ {message}[/green]")
