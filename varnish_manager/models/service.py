"""Managed service models."""

from datetime import datetime
from typing import Dict, FrozenSet, List, Optional, Tuple

from pydantic import BaseModel, Field


class CommandResult(BaseModel):
    """Exit code and captured output of an external command."""

    command: List[str] = Field(default_factory=list, description="Executed argv")
    returncode: int = Field(description="Process exit code")
    stdout: str = Field(default="", description="Captured standard output")
    stderr: str = Field(default="", description="Captured standard error")

    @property
    def ok(self) -> bool:
        """Whether the command exited with status 0."""
        return self.returncode == 0

    @property
    def output(self) -> str:
        """Combined stdout and stderr, for diagnostics."""
        return "\n".join(part for part in (self.stdout, self.stderr) if part)


class ServiceDescriptor(BaseModel):
    """Static description of a managed systemd service."""

    name: str = Field(min_length=1, description="Display name")
    unit_name: str = Field(min_length=1, description="systemd unit name")
    listen_ports: FrozenSet[int] = Field(default_factory=frozenset, description="Ports the service binds")
    config_path: str = Field(description="Primary configuration file")
    validate_command: Tuple[str, ...] = Field(
        default=(), description="Self-check argv; '{config}' is replaced by config_path"
    )
    process_names: Tuple[str, ...] = Field(default=(), description="Process names seen in the socket table")

    def validation_argv(self) -> List[str]:
        """Return the self-check command with the config path substituted."""
        return [part.replace("{config}", self.config_path) for part in self.validate_command]

    def owns_process(self, process: Optional[str]) -> bool:
        """Check whether a socket owner process belongs to this service."""
        if process is None or not self.process_names:
            return True
        return process in self.process_names

    class Config:
        """Pydantic configuration."""

        frozen = True


class ServiceStatus(BaseModel):
    """Point-in-time status of a service; recomputed on every probe."""

    name: str
    running: bool = False
    state: str = Field(default="unknown", description="systemd ActiveState")
    listening: Dict[int, bool] = Field(default_factory=dict, description="Port -> bound by this service")
    port_conflicts: Dict[int, str] = Field(
        default_factory=dict, description="Port -> foreign process holding it"
    )
    uptime_seconds: Optional[float] = None
    config_valid: Optional[bool] = None
    last_error: Optional[str] = None

    def all_ports_listening(self) -> bool:
        """Check that every expected port is bound by this service."""
        return all(self.listening.values())


class SocketListener(BaseModel):
    """One listening TCP socket from the socket table."""

    address: str
    port: int
    process: Optional[str] = None


class LogEntry(BaseModel):
    """Single journal entry."""

    timestamp: datetime
    priority: int = 6
    message: str = ""
    source: str = ""
