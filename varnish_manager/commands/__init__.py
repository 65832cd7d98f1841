"""Commands package."""

from .cache import purge, render_config, stats, test_cache
from .certs import certs
from .install import install, status, uninstall, verify

__all__ = [
    "certs",
    "install",
    "purge",
    "render_config",
    "stats",
    "status",
    "test_cache",
    "uninstall",
    "verify",
]
