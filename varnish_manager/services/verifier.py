"""Post-install verification with remediation hints."""

import logging
from typing import List

from ..models import (
    FailureSignature,
    InstallPlan,
    ServiceDescriptor,
    ServiceStatus,
    Target,
    VerificationIssue,
    VerificationReport,
)
from ..utils.config import Config
from .descriptors import HITCH, HTTPD, VARNISH, build_descriptors
from .probe import ServiceProbe

logger = logging.getLogger(__name__)

REMEDIATION_HINTS = {
    FailureSignature.TOOL_MISSING: (
        "A required binary for {service} is missing. Install it with "
        "'dnf install {service}' and re-run the installer."
    ),
    FailureSignature.CONFIG_INVALID: (
        "{service} rejected its configuration. Run the self-check shown in the log, "
        "fix {config} and restart the service."
    ),
    FailureSignature.NOT_RUNNING: (
        "{service} is not running. Check 'journalctl -u {unit} -n 50' and start it with "
        "'systemctl start {unit}'."
    ),
    FailureSignature.PORT_CONFLICT: (
        "Port {port} is already bound by another process. Stop that process or move it "
        "to a different port, then restart {service}."
    ),
    FailureSignature.PORT_NOT_LISTENING: (
        "{service} is running but not listening on port {port}. Check the listen "
        "address in {config}."
    ),
}


class Verifier:
    """Builds the final picture of the managed services. Read-only."""

    def __init__(self, config: Config, probe: ServiceProbe):
        """
        Initialize verifier.

        Args:
            config: Application configuration
            probe: Service probe
        """
        self.config = config
        self.probe = probe

    def _descriptors(self, plan: InstallPlan) -> List[ServiceDescriptor]:
        descriptors = build_descriptors(self.config, plan.ports)
        selected = []
        if plan.wants(Target.VARNISH):
            selected.append(descriptors[VARNISH])
        if plan.wants(Target.HITCH):
            selected.append(descriptors[HITCH])

        httpd = descriptors[HTTPD]
        if not plan.wants(Target.VARNISH):
            # Apache keeps the public ports it is not handing over
            public = {plan.ports.http_port}
            if not plan.wants(Target.HITCH):
                public.add(plan.ports.https_port)
            httpd = httpd.model_copy(update={"listen_ports": frozenset(public)})
        selected.append(httpd)
        return selected

    def verify(self, plan: InstallPlan) -> VerificationReport:
        """
        Probe every service of the plan and check its expected ports.

        Args:
            plan: Installation plan

        Returns:
            Verification report with issues and hints
        """
        report = VerificationReport()

        for descriptor in self._descriptors(plan):
            status = self.probe.probe(descriptor)
            report.services.append(status)
            for port in sorted(descriptor.listen_ports):
                report.ports[port] = status.listening.get(port, False)
            report.issues.extend(self._classify(descriptor, status))

        for issue in report.issues:
            logger.warning(f"{issue.service}: {issue.signature.value} - {issue.hint}")
        return report

    def _classify(self, descriptor: ServiceDescriptor, status: ServiceStatus) -> List[VerificationIssue]:
        issues: List[VerificationIssue] = []

        if status.last_error and status.last_error.startswith("tool-not-found"):
            issues.append(self._issue(descriptor, FailureSignature.TOOL_MISSING))
        elif status.config_valid is False:
            issues.append(self._issue(descriptor, FailureSignature.CONFIG_INVALID))
        elif not status.running:
            issues.append(self._issue(descriptor, FailureSignature.NOT_RUNNING))

        for port in sorted(descriptor.listen_ports):
            if port in status.port_conflicts:
                issues.append(self._issue(descriptor, FailureSignature.PORT_CONFLICT, port))
            elif status.running and not status.listening.get(port, False):
                issues.append(self._issue(descriptor, FailureSignature.PORT_NOT_LISTENING, port))

        return issues

    def _issue(
        self, descriptor: ServiceDescriptor, signature: FailureSignature, port: int = 0
    ) -> VerificationIssue:
        hint = REMEDIATION_HINTS[signature].format(
            service=descriptor.name,
            unit=descriptor.unit_name,
            config=descriptor.config_path,
            port=port,
        )
        return VerificationIssue(service=descriptor.name, signature=signature, hint=hint, port=port)
