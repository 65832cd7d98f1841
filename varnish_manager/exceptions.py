"""Exception hierarchy."""

from typing import Optional


class VarnishManagerError(Exception):
    """Base class for all errors raised by varnish_manager."""


class PreconditionError(VarnishManagerError):
    """Fatal precondition failure (not root, cPanel missing, unsupported OS)."""


class ToolNotFoundError(VarnishManagerError):
    """An external binary could not be executed."""

    def __init__(self, tool: str) -> None:
        super().__init__(f"tool-not-found: {tool}")
        self.tool = tool


class PackageManagerUnavailable(VarnishManagerError):
    """Neither dnf nor yum is available."""


class PackageInstallError(VarnishManagerError):
    """The package manager returned a non-zero exit code."""


class AutomationUnavailable(VarnishManagerError):
    """The richer automation layer required by an install tier is missing."""


class ConfigValidationFailed(VarnishManagerError):
    """Generated configuration failed the target binary's self-check."""

    def __init__(self, service: str, output: str = "") -> None:
        message = f"{service} configuration failed validation"
        if output:
            message = f"{message}: {output}"
        super().__init__(message)
        self.service = service
        self.output = output


class ServiceStartFailed(VarnishManagerError):
    """A service did not start after all retry attempts."""


class PortConflict(VarnishManagerError):
    """A required port is already bound by a different process."""

    def __init__(self, port: int, owner: Optional[str]) -> None:
        super().__init__(f"port {port} already bound by {owner or 'another process'}")
        self.port = port
        self.owner = owner


class InvalidInput(VarnishManagerError, ValueError):
    """User supplied input failed validation."""


class AuthorizationError(VarnishManagerError):
    """Missing or invalid security token."""


class DomainAccessDenied(VarnishManagerError):
    """The caller does not own the requested domain."""
