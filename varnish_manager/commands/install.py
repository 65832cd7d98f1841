"""Installation and health commands."""

from pathlib import Path
from typing import Optional, Tuple

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..adapters import SystemTools
from ..models import InstallReport, StepOutcome, Target, VerificationReport
from ..services import InstallationOrchestrator, ServiceProbe, Uninstaller, Verifier
from ..services.descriptors import build_descriptors
from ..utils.config import Config, load_plan

console = Console()

OUTCOME_STYLES = {
    StepOutcome.SUCCESS: "[green]success[/green]",
    StepOutcome.FAILED: "[red]failed[/red]",
    StepOutcome.SKIPPED: "[yellow]skipped[/yellow]",
}


def print_verification(report: VerificationReport) -> None:
    """Print service and port tables plus remediation hints."""
    table = Table(title="Services")
    table.add_column("Service", style="cyan")
    table.add_column("Running")
    table.add_column("Config")
    table.add_column("Uptime", justify="right")
    table.add_column("Ports")

    for status in report.services:
        ports = ", ".join(
            f"{port}{'' if listening else ' (down)'}" for port, listening in sorted(status.listening.items())
        )
        config_valid = {True: "valid", False: "[red]invalid[/red]", None: "-"}[status.config_valid]
        uptime = f"{int(status.uptime_seconds)}s" if status.uptime_seconds is not None else "-"
        table.add_row(
            status.name,
            "[green]yes[/green]" if status.running else "[red]no[/red]",
            config_valid,
            uptime,
            ports or "-",
        )
    console.print(table)

    if report.issues:
        hints = "\n".join(f"[bold]{issue.service}[/bold] ({issue.signature.value}): {issue.hint}" for issue in report.issues)
        console.print(Panel(hints, title="Remediation", border_style="red"))
    else:
        console.print("[green]✓ All services healthy[/green]")


def print_report(report: InstallReport) -> None:
    """Print the step audit trail of an installation run."""
    table = Table(title="Installation steps")
    table.add_column("Step", style="cyan")
    table.add_column("Tier")
    table.add_column("Outcome")
    table.add_column("Detail")

    for step in report.steps:
        detail = step.detail.splitlines()[0] if step.detail else ""
        table.add_row(step.step_name, step.tier or "-", OUTCOME_STYLES[step.outcome], detail)
    console.print(table)

    if report.verification is not None:
        print_verification(report.verification)

    console.print(f"\nLog file: {report.log_file}")
    console.print(f"Backups: {report.backup_dir}")


@click.command()
@click.option(
    "--target",
    "-t",
    "targets",
    multiple=True,
    type=click.Choice([t.value for t in Target]),
    help="Component to install (repeatable, default: all)",
)
@click.option(
    "--plan",
    "plan_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="YAML file with targets and ports",
)
@click.pass_context
def install(ctx: click.Context, targets: Tuple[str, ...], plan_file: Optional[Path]) -> None:
    """Install Varnish and Hitch in front of Apache."""
    config: Config = ctx.obj["config"]
    tools: SystemTools = ctx.obj["tools"]

    if plan_file:
        plan = load_plan(plan_file)
    else:
        plan = config.default_plan([Target(t) for t in targets] if targets else None)

    console.print(f"\n[bold cyan]Installing:[/bold cyan] {', '.join(sorted(t.value for t in plan.targets))}")

    with console.status("[cyan]Running installation...[/cyan]"):
        report = InstallationOrchestrator(config, tools).run(plan)

    print_report(report)

    if report.fatal_error:
        console.print(f"\n[red]✗ {report.fatal_error}[/red]")
        raise SystemExit(1)
    if not report.success:
        console.print("\n[red]✗ Installation finished with errors[/red]")
        raise SystemExit(1)

    tier = f" (via {report.tier_used} tier)" if report.tier_used else ""
    console.print(f"\n[green]✓ Installation complete{tier}[/green]")


@click.command()
@click.option("--remove-packages", is_flag=True, help="Also remove the varnish and hitch packages")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def uninstall(ctx: click.Context, remove_packages: bool, yes: bool) -> None:
    """Stop Varnish and Hitch and give ports 80/443 back to Apache."""
    config: Config = ctx.obj["config"]
    tools: SystemTools = ctx.obj["tools"]

    if not yes and not click.confirm("Remove the Varnish/Hitch setup?"):
        console.print("[yellow]Aborted[/yellow]")
        return

    uninstaller = Uninstaller(config, tools)
    steps = uninstaller.run(remove_packages=remove_packages)

    table = Table(title="Uninstall steps")
    table.add_column("Step", style="cyan")
    table.add_column("Outcome")
    table.add_column("Detail")
    for step in steps:
        table.add_row(step.step_name, OUTCOME_STYLES[step.outcome], step.detail)
    console.print(table)
    console.print(f"Backups: {uninstaller.backups.backup_dir}")

    if any(step.outcome == StepOutcome.FAILED for step in steps):
        raise SystemExit(1)


@click.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show the status of Varnish, Hitch and Apache."""
    config: Config = ctx.obj["config"]
    tools: SystemTools = ctx.obj["tools"]

    probe = ServiceProbe(tools, diagnostic_lines=config.diagnostic_lines)
    report = VerificationReport()
    for descriptor in build_descriptors(config, config.default_plan().ports).values():
        report.services.append(probe.probe(descriptor))
    print_verification(report)


@click.command()
@click.pass_context
def verify(ctx: click.Context) -> None:
    """Verify services and ports; exit 1 if anything is wrong."""
    config: Config = ctx.obj["config"]
    tools: SystemTools = ctx.obj["tools"]

    probe = ServiceProbe(tools, diagnostic_lines=config.diagnostic_lines)
    report = Verifier(config, probe).verify(config.default_plan())

    print_verification(report)

    ports = Table(title="Expected ports")
    ports.add_column("Port", justify="right")
    ports.add_column("Listening")
    for port, listening in sorted(report.ports.items()):
        ports.add_row(str(port), "[green]yes[/green]" if listening else "[red]no[/red]")
    console.print(ports)

    if not report.healthy:
        raise SystemExit(1)
