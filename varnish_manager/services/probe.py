"""Service probe: read-only status checks and start with retry."""

import logging
import time
from datetime import datetime
from typing import Callable, List, Optional

from ..adapters import SystemTools
from ..exceptions import ToolNotFoundError, VarnishManagerError
from ..models import ServiceDescriptor, ServiceStatus, SocketListener, StepOutcome, StepResult

logger = logging.getLogger(__name__)


class ServiceProbe:
    """Queries systemd, the config self-check and the socket table for a service."""

    def __init__(
        self,
        tools: SystemTools,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = datetime.now,
        diagnostic_lines: int = 20,
    ):
        """
        Initialize the probe.

        Args:
            tools: External tool adapter
            sleep: Sleep function used between start attempts
            clock: Wall clock used for uptime
            diagnostic_lines: Journal lines attached to a failed start
        """
        self.tools = tools
        self.sleep = sleep
        self.clock = clock
        self.diagnostic_lines = diagnostic_lines

    def probe(self, descriptor: ServiceDescriptor) -> ServiceStatus:
        """
        Compute the current status of a service. Never raises.

        Args:
            descriptor: Service to probe

        Returns:
            Fresh ServiceStatus
        """
        status = ServiceStatus(name=descriptor.name)
        try:
            status.state = self.tools.unit_state(descriptor.unit_name)
            status.running = status.state == "active"
            if status.running:
                since = self.tools.active_since(descriptor.unit_name)
                if since is not None:
                    status.uptime_seconds = max((self.clock() - since).total_seconds(), 0.0)
        except ToolNotFoundError as e:
            logger.warning(f"Cannot query {descriptor.name}: {e}")
            status.running = False
            status.last_error = str(e)
            return status
        except (VarnishManagerError, OSError, ValueError) as e:
            logger.warning(f"Probe of {descriptor.name} failed: {e}")
            status.last_error = str(e)
            return status

        if descriptor.validate_command:
            try:
                result = self.tools.run_validation(descriptor.validation_argv())
                status.config_valid = result.ok
                if not result.ok:
                    status.last_error = result.output or f"validation exited {result.returncode}"
            except ToolNotFoundError as e:
                status.config_valid = None
                status.last_error = str(e)

        try:
            sockets = self.tools.listening_sockets()
        except (VarnishManagerError, OSError) as e:
            status.last_error = status.last_error or str(e)
            sockets = []

        self._fill_listening(status, descriptor, sockets)
        return status

    def _fill_listening(
        self, status: ServiceStatus, descriptor: ServiceDescriptor, sockets: List[SocketListener]
    ) -> None:
        for port in sorted(descriptor.listen_ports):
            owners = [listener.process for listener in sockets if listener.port == port]
            ours = any(descriptor.owns_process(owner) for owner in owners)
            status.listening[port] = ours
            if not ours:
                foreign = [owner for owner in owners if owner]
                if foreign:
                    status.port_conflicts[port] = foreign[0]

    def foreign_owner(self, descriptor: ServiceDescriptor, port: int) -> Optional[str]:
        """Return the process holding a port if it is not this service."""
        for listener in self.tools.listening_sockets():
            if listener.port == port and not descriptor.owns_process(listener.process):
                return listener.process
        return None

    def start_with_retry(
        self,
        descriptor: ServiceDescriptor,
        max_attempts: int = 3,
        backoff: float = 5.0,
    ) -> StepResult:
        """
        Start a service, retrying with a fixed delay.

        Args:
            descriptor: Service to start
            max_attempts: Number of start invocations before giving up
            backoff: Seconds to wait between attempts

        Returns:
            Success, or Failed with recent journal lines in the detail
        """
        step_name = f"start:{descriptor.name}"
        last_output = ""

        for attempt in range(1, max_attempts + 1):
            try:
                result = self.tools.start(descriptor.unit_name)
            except ToolNotFoundError as e:
                logger.error(f"Cannot start {descriptor.name}: {e}")
                return StepResult(step_name=step_name, outcome=StepOutcome.FAILED, detail=str(e))

            if result.ok:
                logger.info(f"{descriptor.name} started (attempt {attempt}/{max_attempts})")
                return StepResult(
                    step_name=step_name,
                    outcome=StepOutcome.SUCCESS,
                    detail=f"started on attempt {attempt}",
                )

            last_output = result.output
            logger.warning(
                f"{descriptor.name} failed to start (attempt {attempt}/{max_attempts}): {last_output}"
            )
            if attempt < max_attempts:
                self.sleep(backoff)

        diagnostics = self._diagnostics(descriptor)
        detail = f"failed after {max_attempts} attempts"
        if last_output:
            detail = f"{detail}: {last_output}"
        if diagnostics:
            detail = f"{detail}\n{diagnostics}"
        logger.error(f"{descriptor.name} did not start after {max_attempts} attempts")
        return StepResult(step_name=step_name, outcome=StepOutcome.FAILED, detail=detail)

    def _diagnostics(self, descriptor: ServiceDescriptor) -> str:
        try:
            return self.tools.journal_tail(descriptor.unit_name, self.diagnostic_lines)
        except ToolNotFoundError as e:
            return str(e)
