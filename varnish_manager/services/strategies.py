"""Install tiers: enhanced (WHM API), scripted and minimal.

Each tier carries a run from PackagesInstalled to ServicesStarted on its own.
A tier signals failure by raising; the orchestrator records the failure and
moves on to the next tier.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from ..adapters import SystemTools
from ..exceptions import (
    AutomationUnavailable,
    ConfigValidationFailed,
    PortConflict,
    ServiceStartFailed,
    VarnishManagerError,
)
from ..models import (
    InstallPlan,
    InstallReport,
    InstallState,
    ServiceDescriptor,
    StepOutcome,
    StepResult,
    Target,
)
from ..utils.config import Config
from . import generator
from .backup import BackupManager
from .certificates import CertificateDiscoverer
from .descriptors import HITCH, HTTPD, VARNISH
from .kvconfig import APACHE_PORT_KEYS, KeyValueFile
from .plugins import PluginInstaller
from .probe import ServiceProbe

logger = logging.getLogger(__name__)


@dataclass
class InstallContext:
    """Collaborators and mutable state shared by the tiers of one run."""

    config: Config
    tools: SystemTools
    plan: InstallPlan
    probe: ServiceProbe
    backups: BackupManager
    report: InstallReport
    current_step: InstallState = InstallState.PACKAGES_INSTALLED
    descriptors: Dict[str, ServiceDescriptor] = field(default_factory=dict)

    def record(self, step: StepResult, state: Optional[InstallState] = None) -> None:
        """Append a step to the audit trail and advance the state."""
        self.report.steps.append(step)
        logger.info(step.summary())
        if state is not None and step.outcome != StepOutcome.FAILED:
            self.report.state = state


class InstallStrategy:
    """Base tier: the shared step sequence with tier-specific hooks."""

    name = "base"

    def __init__(self, ctx: InstallContext):
        self.ctx = ctx
        self.config = ctx.config
        self.tools = ctx.tools
        self.plan = ctx.plan

    def run(self) -> None:
        """Execute PackagesInstalled through ServicesStarted."""
        steps: List[tuple] = [
            (InstallState.PACKAGES_INSTALLED, self.install_packages),
            (InstallState.CONFIGS_WRITTEN, self.write_configs),
            (InstallState.CERTIFICATES_BUNDLED, self.bundle_certificates),
            (InstallState.SERVICES_STARTED, self.start_services),
        ]
        for state, action in steps:
            self._step(state, action)

    def _step(self, state: InstallState, action: Callable[[], StepResult]) -> None:
        self.ctx.current_step = state
        logger.info(f"[{self.name}] {state.value}")
        result = action()
        result.step_name = state.value
        result.tier = self.name
        self.ctx.record(result, state)

    def _skipped(self, detail: str) -> StepResult:
        return StepResult(step_name="", outcome=StepOutcome.SKIPPED, detail=detail)

    def _success(self, detail: str) -> StepResult:
        return StepResult(step_name="", outcome=StepOutcome.SUCCESS, detail=detail)

    # =========================================================================
    # PACKAGES
    # =========================================================================
    def packages(self) -> List[str]:
        """Distribution packages for the requested targets."""
        packages = []
        if self.plan.wants(Target.HITCH):
            packages.append("epel-release")
        if self.plan.wants(Target.VARNISH):
            packages.append("varnish")
        if self.plan.wants(Target.HITCH):
            packages.append("hitch")
        return packages

    def prepare_repositories(self) -> None:
        """Hook for tiers that add package repositories."""

    def install_packages(self) -> StepResult:
        packages = self.packages()
        if not packages:
            return self._skipped("no package targets requested")

        self.prepare_repositories()
        self.tools.install_packages(packages)
        if self.plan.wants(Target.HITCH):
            self.tools.ensure_system_account(
                self.config.hitch_user, self.config.hitch_group, self.config.hitch_home
            )
        return self._success(f"installed {', '.join(packages)}")

    # =========================================================================
    # CONFIGURATION
    # =========================================================================
    def configure_apache_ports(self) -> str:
        """Move Apache to the backend ports. Returns a short description."""
        raise NotImplementedError

    def write_configs(self) -> StepResult:
        written: List[str] = []
        ports = self.plan.ports
        backups = self.ctx.backups

        if self.plan.wants(Target.VARNISH):
            params = generator.varnish_params(self.config, ports)
            backups.write_with_backup(self.config.vcl_path, generator.render_cache_config(params))
            backups.write_with_backup(
                self.config.varnish_service_override, generator.render_varnish_service(params)
            )
            self.tools.daemon_reload()
            written.extend([str(self.config.vcl_path), str(self.config.varnish_service_override)])
            written.append(self.configure_apache_ports())

        if self.plan.wants(Target.HITCH):
            pairs = CertificateDiscoverer(self.config, self.tools).find_pairs()
            params = generator.tls_params(self.config, [pair.combined_pem_path for pair in pairs], ports)
            backups.write_with_backup(self.config.hitch_config_path, generator.render_tls_config(params))
            written.append(str(self.config.hitch_config_path))

        if self.plan.wants(Target.PLUGINS):
            written.extend(PluginInstaller(self.config, self.tools).install(backups))

        if not written:
            return self._skipped("no configuration targets requested")
        return self._success("; ".join(written))

    # =========================================================================
    # CERTIFICATES
    # =========================================================================
    def bundle_certificates(self) -> StepResult:
        if not self.plan.wants(Target.HITCH):
            return self._skipped("hitch not requested")
        bundles = CertificateDiscoverer(self.config, self.tools).discover(self.ctx.backups)
        return self._success(f"{len(bundles)} certificate bundle(s) written")

    # =========================================================================
    # SERVICES
    # =========================================================================
    def restart_backend(self) -> None:
        """Restart Apache on its new ports."""
        result = self.tools.restart("httpd")
        if not result.ok:
            raise ServiceStartFailed(f"httpd restart failed: {result.output}")

    def services_to_start(self) -> List[ServiceDescriptor]:
        descriptors = self.ctx.descriptors
        selected = []
        if self.plan.wants(Target.VARNISH):
            selected.append(descriptors[VARNISH])
        if self.plan.wants(Target.HITCH):
            selected.append(descriptors[HITCH])
        return selected

    def _check_config(self, descriptor: ServiceDescriptor) -> None:
        if not descriptor.validate_command:
            return
        result = self.tools.run_validation(descriptor.validation_argv())
        if not result.ok:
            raise ConfigValidationFailed(descriptor.name, result.output)

    def _check_ports(self, descriptor: ServiceDescriptor) -> None:
        for port in sorted(descriptor.listen_ports):
            owner = self.ctx.probe.foreign_owner(descriptor, port)
            if owner:
                raise PortConflict(port, owner)

    def _start(self, descriptor: ServiceDescriptor) -> None:
        self._check_config(descriptor)
        self._check_ports(descriptor)
        result = self.ctx.probe.start_with_retry(
            descriptor,
            max_attempts=self.config.start_attempts,
            backoff=self.config.start_backoff,
        )
        if not result.succeeded:
            raise ServiceStartFailed(f"{descriptor.name} {result.detail}")
        self.tools.enable(descriptor.unit_name)

    def start_services(self) -> StepResult:
        services = self.services_to_start()
        if not services:
            return self._skipped("no services requested")

        failures: List[str] = []
        started: List[str] = []

        if self.plan.wants(Target.VARNISH):
            try:
                self.restart_backend()
                started.append(HTTPD)
            except VarnishManagerError as e:
                logger.error(str(e))
                failures.append(f"{HTTPD}: {e}")

        for descriptor in services:
            try:
                self._start(descriptor)
                started.append(descriptor.name)
            except VarnishManagerError as e:
                logger.error(f"{descriptor.name}: {e}")
                failures.append(f"{descriptor.name}: {e}")

        if failures:
            return StepResult(step_name="", outcome=StepOutcome.FAILED, detail="\n".join(failures))
        return self._success(f"started {', '.join(started)}")


class EnhancedStrategy(InstallStrategy):
    """Uses the WHM API and the upstream Varnish repository."""

    name = "enhanced"

    def install_packages(self) -> StepResult:
        if not self.tools.has_command("whmapi1"):
            raise AutomationUnavailable("whmapi1 is not available")
        return super().install_packages()

    def prepare_repositories(self) -> None:
        if self.plan.wants(Target.VARNISH):
            self.tools.add_varnish_repository(self.config.varnish_repo_script_url)

    def configure_apache_ports(self) -> str:
        ports = self.plan.ports
        self.tools.whmapi1("set_tweaksetting", key="apache_port", value=f"0.0.0.0:{ports.backend_http_port}")
        self.tools.whmapi1(
            "set_tweaksetting", key="apache_ssl_port", value=f"0.0.0.0:{ports.backend_https_port}"
        )
        result = self.tools.run_cpanel_script("rebuildhttpdconf")
        if not result.ok:
            raise RuntimeError(f"rebuildhttpdconf failed: {result.output}")
        return f"apache ports {ports.backend_http_port}/{ports.backend_https_port} (WHM API)"

    def restart_backend(self) -> None:
        result = self.tools.run_cpanel_script("restartsrv_httpd")
        if not result.ok:
            raise ServiceStartFailed(f"restartsrv_httpd failed: {result.output}")


class ScriptedStrategy(InstallStrategy):
    """Same steps without the WHM API: distro packages and direct file edits."""

    name = "scripted"

    def configure_apache_ports(self) -> str:
        ports = self.plan.ports
        cpanel_config = KeyValueFile.load(self.config.cpanel_config_path, APACHE_PORT_KEYS)
        cpanel_config.set("apache_port", f"0.0.0.0:{ports.backend_http_port}")
        cpanel_config.set("apache_ssl_port", f"0.0.0.0:{ports.backend_https_port}")
        cpanel_config.save(self.ctx.backups)

        rebuild = self.config.cpanel_scripts_dir / "rebuildhttpdconf"
        if rebuild.exists():
            result = self.tools.run_cpanel_script("rebuildhttpdconf")
            if not result.ok:
                raise RuntimeError(f"rebuildhttpdconf failed: {result.output}")
        return str(self.config.cpanel_config_path)


class MinimalStrategy(InstallStrategy):
    """Packages, daemon-reload, enable and a bare start. Keeps packaged configs."""

    name = "minimal"

    def write_configs(self) -> StepResult:
        return self._skipped("minimal tier keeps packaged configuration")

    def bundle_certificates(self) -> StepResult:
        return self._skipped("minimal tier does not bundle certificates")

    def start_services(self) -> StepResult:
        services = self.services_to_start()
        if not services:
            return self._skipped("no services requested")

        self.tools.daemon_reload()
        failures: List[str] = []
        for descriptor in services:
            self.tools.enable(descriptor.unit_name)
            result = self.ctx.probe.start_with_retry(
                descriptor,
                max_attempts=self.config.start_attempts,
                backoff=self.config.start_backoff,
            )
            if not result.succeeded:
                failures.append(f"{descriptor.name}: {result.detail}")

        if failures:
            return StepResult(step_name="", outcome=StepOutcome.FAILED, detail="\n".join(failures))
        return self._success(f"started {', '.join(d.name for d in services)}")


DEFAULT_STRATEGIES = (EnhancedStrategy, ScriptedStrategy, MinimalStrategy)

