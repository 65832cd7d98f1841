"""Post-install verification models."""

from enum import Enum
from typing import Dict, List

from pydantic import BaseModel, Field

from .service import ServiceStatus


class FailureSignature(str, Enum):
    """Classified failure used to select a remediation hint."""

    TOOL_MISSING = "tool_missing"
    CONFIG_INVALID = "config_invalid"
    NOT_RUNNING = "not_running"
    PORT_CONFLICT = "port_conflict"
    PORT_NOT_LISTENING = "port_not_listening"


class VerificationIssue(BaseModel):
    """A detected problem and how to fix it."""

    service: str
    signature: FailureSignature
    hint: str
    port: int = 0


class VerificationReport(BaseModel):
    """Final picture of the managed services."""

    services: List[ServiceStatus] = Field(default_factory=list)
    ports: Dict[int, bool] = Field(default_factory=dict, description="Expected port -> listening")
    issues: List[VerificationIssue] = Field(default_factory=list)

    @property
    def healthy(self) -> bool:
        """Whether no issues were found."""
        return not self.issues

    def status_for(self, name: str) -> ServiceStatus:
        """Return the status of a service by name."""
        for status in self.services:
            if status.name == name:
                return status
        raise KeyError(name)
