"""Installation orchestrator."""

import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Sequence, Type

from ..adapters import SystemTools
from ..exceptions import PreconditionError
from ..models import InstallPlan, InstallReport, InstallState, StepOutcome, StepResult
from ..utils.config import Config
from ..utils.logging import attach_run_log, detach_run_log, install_log_path
from .backup import BackupManager
from .descriptors import build_descriptors
from .probe import ServiceProbe
from .strategies import DEFAULT_STRATEGIES, InstallContext, InstallStrategy
from .verifier import Verifier

logger = logging.getLogger(__name__)


class InstallationOrchestrator:
    """Runs an InstallPlan through the install tiers and verifies the result."""

    def __init__(
        self,
        config: Config,
        tools: SystemTools,
        probe: Optional[ServiceProbe] = None,
        strategies: Sequence[Type[InstallStrategy]] = DEFAULT_STRATEGIES,
        started_at: Optional[datetime] = None,
    ):
        """
        Initialize orchestrator.

        Args:
            config: Application configuration
            tools: External tool adapter
            probe: Service probe (built from tools if omitted)
            strategies: Tier classes in the order they are attempted
            started_at: Run start time for log and backup names
        """
        self.config = config
        self.tools = tools
        self.probe = probe or ServiceProbe(tools, diagnostic_lines=config.diagnostic_lines)
        self.strategies = list(strategies)
        self.started_at = started_at or datetime.now()
        self.backups = BackupManager(config.backup_root, self.started_at)
        self.verifier = Verifier(config, self.probe)

    def check_preconditions(self) -> None:
        """
        Check fatal preconditions.

        Raises:
            PreconditionError: Not root, cPanel missing or unsupported OS
        """
        if not self.tools.is_root():
            raise PreconditionError("This installer must be run as root")
        if not self.config.cpanel_root.exists():
            raise PreconditionError(f"cPanel not found at {self.config.cpanel_root}")
        if not any(marker.exists() for marker in self.config.os_release_markers):
            raise PreconditionError("Unsupported operating system: a RHEL-family release is required")

    def _files_to_protect(self) -> List[Path]:
        return [
            self.config.cpanel_config_path,
            self.config.vcl_path,
            self.config.varnish_service_override,
            self.config.hitch_config_path,
        ]

    def prepare(self, ctx: InstallContext) -> bool:
        """Run the Prepared step. Returns False if the run must stop."""
        try:
            self.check_preconditions()
            saved = [str(path) for path in self._files_to_protect() if self.backups.backup(path)]
        except PreconditionError as e:
            logger.error(f"Precondition failed: {e}")
            ctx.record(
                StepResult(step_name=InstallState.PREPARED.value, outcome=StepOutcome.FAILED, detail=str(e))
            )
            ctx.report.state = InstallState.FAILED
            ctx.report.fatal_error = str(e)
            return False

        detail = f"backed up {len(saved)} file(s)" if saved else "nothing to back up"
        ctx.record(
            StepResult(step_name=InstallState.PREPARED.value, outcome=StepOutcome.SUCCESS, detail=detail),
            InstallState.PREPARED,
        )
        return True

    def run(self, plan: InstallPlan) -> InstallReport:
        """
        Execute an installation plan.

        Args:
            plan: Targets and ports

        Returns:
            Report with the ordered step audit trail and verification
        """
        log_file = install_log_path(self.config.log_dir, self.started_at)
        handler = attach_run_log(log_file)
        report = InstallReport(
            plan=plan,
            log_file=str(log_file),
            backup_dir=str(self.backups.backup_dir),
        )
        ctx = InstallContext(
            config=self.config,
            tools=self.tools,
            plan=plan,
            probe=self.probe,
            backups=self.backups,
            report=report,
            descriptors=build_descriptors(self.config, plan.ports),
        )

        try:
            logger.info(f"Installation started: targets={sorted(t.value for t in plan.targets)}")
            if not self.prepare(ctx):
                return report

            self._run_tiers(ctx)
            self._verify(ctx)
            logger.info(f"Installation finished: {report.state.value}")
            return report
        finally:
            detach_run_log(handler)

    def _run_tiers(self, ctx: InstallContext) -> None:
        for strategy_class in self.strategies:
            strategy = strategy_class(ctx)
            try:
                strategy.run()
            except Exception as e:
                logger.warning(f"Tier '{strategy.name}' failed at {ctx.current_step.value}: {e}")
                ctx.record(
                    StepResult(
                        step_name=ctx.current_step.value,
                        outcome=StepOutcome.FAILED,
                        detail=f"{type(e).__name__}: {e}",
                        tier=strategy.name,
                    )
                )
                continue

            ctx.report.tier_used = strategy.name
            return

        logger.error("All install tiers failed")
        ctx.report.state = InstallState.FAILED

    def _verify(self, ctx: InstallContext) -> None:
        report = ctx.report
        verification = self.verifier.verify(ctx.plan)
        report.verification = verification

        if verification.healthy:
            detail = "all services running and listening"
        else:
            detail = "; ".join(
                f"{issue.service}: {issue.signature.value}"
                + (f" (port {issue.port})" if issue.port else "")
                for issue in verification.issues
            )

        last_start = next(
            (step for step in reversed(report.steps) if step.step_name == InstallState.SERVICES_STARTED.value),
            None,
        )
        services_ok = last_start is not None and last_start.outcome != StepOutcome.FAILED
        outcome = StepOutcome.SUCCESS if verification.healthy else StepOutcome.FAILED
        ctx.record(StepResult(step_name=InstallState.VERIFIED.value, outcome=outcome, detail=detail))

        if verification.healthy and services_ok and report.tier_used:
            report.state = InstallState.VERIFIED
        else:
            report.state = InstallState.FAILED
