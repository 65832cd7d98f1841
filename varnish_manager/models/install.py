"""Installation plan and audit trail models."""

from datetime import datetime
from enum import Enum
from typing import FrozenSet, List, Optional, Set

from pydantic import BaseModel, Field, model_validator

from .verification import VerificationReport


class Target(str, Enum):
    """Installable component."""

    VARNISH = "varnish"
    HITCH = "hitch"
    PLUGINS = "plugins"


class InstallState(str, Enum):
    """Orchestrator states, in transition order."""

    PREPARED = "Prepared"
    PACKAGES_INSTALLED = "PackagesInstalled"
    CONFIGS_WRITTEN = "ConfigsWritten"
    CERTIFICATES_BUNDLED = "CertificatesBundled"
    SERVICES_STARTED = "ServicesStarted"
    VERIFIED = "Verified"
    FAILED = "Failed"


class StepOutcome(str, Enum):
    """Outcome of one orchestration step."""

    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class PortPlan(BaseModel):
    """Port assignments for one installation."""

    http_port: int = Field(80, ge=1, le=65535, description="Varnish public HTTP port")
    https_port: int = Field(443, ge=1, le=65535, description="Hitch public HTTPS port")
    backend_http_port: int = Field(8080, ge=1, le=65535, description="Apache HTTP port")
    backend_https_port: int = Field(8443, ge=1, le=65535, description="Apache HTTPS port")
    internal_proxy_port: int = Field(4443, ge=1, le=65535, description="Hitch -> Varnish PROXY port")

    @model_validator(mode="after")
    def check_distinct(self) -> "PortPlan":
        """Reject plans that assign the same port twice."""
        ports = [
            self.http_port,
            self.https_port,
            self.backend_http_port,
            self.backend_https_port,
            self.internal_proxy_port,
        ]
        if len(set(ports)) != len(ports):
            raise ValueError("Port assignments must be distinct")
        return self

    class Config:
        """Pydantic configuration."""

        frozen = True


class InstallPlan(BaseModel):
    """Targets and ports for one installation run."""

    targets: FrozenSet[Target] = Field(
        default_factory=lambda: frozenset({Target.VARNISH, Target.HITCH, Target.PLUGINS})
    )
    ports: PortPlan = Field(default_factory=PortPlan)

    def wants(self, target: Target) -> bool:
        """Check whether a target is part of this plan."""
        return target in self.targets

    class Config:
        """Pydantic configuration."""

        frozen = True


class StepResult(BaseModel):
    """Audit record of one orchestration step."""

    step_name: str = Field(description="State reached or attempted")
    outcome: StepOutcome
    detail: str = ""
    tier: Optional[str] = Field(None, description="Install tier that produced this step")
    recorded_at: datetime = Field(default_factory=datetime.now)

    @property
    def succeeded(self) -> bool:
        """Whether the step completed successfully."""
        return self.outcome == StepOutcome.SUCCESS

    def summary(self) -> str:
        """One-line representation for the run log."""
        tier = f"[{self.tier}] " if self.tier else ""
        line = f"{tier}{self.step_name}: {self.outcome.value.upper()}"
        if self.detail:
            line = f"{line} - {self.detail.splitlines()[0]}"
        return line

    class Config:
        """Pydantic configuration."""

        json_encoders = {datetime: lambda v: v.isoformat()}
        use_enum_values = False


class InstallReport(BaseModel):
    """Result of an orchestrator run returned to the CLI or CGI layer."""

    plan: InstallPlan
    steps: List[StepResult] = Field(default_factory=list)
    state: InstallState = InstallState.PREPARED
    tier_used: Optional[str] = None
    verification: Optional[VerificationReport] = None
    log_file: Optional[str] = None
    backup_dir: Optional[str] = None
    fatal_error: Optional[str] = None

    @property
    def success(self) -> bool:
        """Whether the run reached Verified, possibly after falling back a tier."""
        return self.state == InstallState.VERIFIED

    @property
    def degraded(self) -> bool:
        """Whether any step failed along the way."""
        return any(step.outcome == StepOutcome.FAILED for step in self.steps)

    def step_names(self) -> List[str]:
        """Return step names in recorded order."""
        return [step.step_name for step in self.steps]

    def failed_steps(self) -> List[StepResult]:
        """Return all failed steps."""
        return [step for step in self.steps if step.outcome == StepOutcome.FAILED]

    def tiers_attempted(self) -> Set[str]:
        """Return the names of all tiers that recorded a step."""
        return {step.tier for step in self.steps if step.tier}
