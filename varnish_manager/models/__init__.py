"""Models package."""

from .certificate import CertificateBundle, CertificateInfo
from .install import (
    InstallPlan,
    InstallReport,
    InstallState,
    PortPlan,
    StepOutcome,
    StepResult,
    Target,
)
from .response import ActionResponse
from .service import CommandResult, LogEntry, ServiceDescriptor, ServiceStatus, SocketListener
from .stats import AnalyticsSummary, DomainStats, HitchStats, RequestRecord, UrlStats, VarnishStats
from .verification import FailureSignature, VerificationIssue, VerificationReport

__all__ = [
    "ActionResponse",
    "AnalyticsSummary",
    "CertificateBundle",
    "CertificateInfo",
    "CommandResult",
    "DomainStats",
    "FailureSignature",
    "HitchStats",
    "InstallPlan",
    "InstallReport",
    "InstallState",
    "LogEntry",
    "PortPlan",
    "RequestRecord",
    "ServiceDescriptor",
    "ServiceStatus",
    "SocketListener",
    "StepOutcome",
    "StepResult",
    "Target",
    "UrlStats",
    "VarnishStats",
    "VerificationIssue",
    "VerificationReport",
]
