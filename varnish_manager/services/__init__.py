"""Services package."""

from .backup import BackupManager
from .certificates import CertificateDiscoverer
from .hitch import HitchService
from .orchestrator import InstallationOrchestrator
from .plugins import PluginInstaller
from .probe import ServiceProbe
from .uninstall import Uninstaller
from .user import UserCacheService
from .varnish import VarnishService
from .verifier import Verifier

__all__ = [
    "BackupManager",
    "CertificateDiscoverer",
    "HitchService",
    "InstallationOrchestrator",
    "PluginInstaller",
    "ServiceProbe",
    "Uninstaller",
    "UserCacheService",
    "VarnishService",
    "Verifier",
]
