"""Removal of the Varnish/Hitch setup and restoration of Apache's ports."""

import logging
from datetime import datetime
from typing import List, Optional

from ..adapters import SystemTools
from ..exceptions import VarnishManagerError
from ..models import StepOutcome, StepResult
from ..utils.config import Config
from .backup import BackupManager
from .kvconfig import APACHE_PORT_KEYS, KeyValueFile
from .plugins import PluginInstaller

logger = logging.getLogger(__name__)


class Uninstaller:
    """Stops services, gives ports 80/443 back to Apache and removes plugins."""

    def __init__(self, config: Config, tools: SystemTools, started_at: Optional[datetime] = None):
        """
        Initialize uninstaller.

        Args:
            config: Application configuration
            tools: External tool adapter
            started_at: Run start time for the backup directory name
        """
        self.config = config
        self.tools = tools
        self.backups = BackupManager(config.backup_root, started_at)

    def run(self, remove_packages: bool = False) -> List[StepResult]:
        """
        Uninstall.

        Args:
            remove_packages: Also remove the varnish and hitch packages

        Returns:
            Step audit trail
        """
        steps = [
            self._step("StopServices", self.stop_services),
            self._step("RestoreApache", self.restore_apache),
            self._step("RemovePlugins", self.remove_plugins),
        ]
        if remove_packages:
            steps.append(self._step("RemovePackages", self.remove_packages))
        return steps

    def _step(self, name: str, action) -> StepResult:
        try:
            detail = action()
            result = StepResult(step_name=name, outcome=StepOutcome.SUCCESS, detail=detail)
        except (VarnishManagerError, OSError, RuntimeError) as e:
            logger.error(f"{name} failed: {e}")
            result = StepResult(step_name=name, outcome=StepOutcome.FAILED, detail=str(e))
        logger.info(result.summary())
        return result

    def stop_services(self) -> str:
        for unit in ("hitch", "varnish"):
            stop = self.tools.stop(unit)
            if not stop.ok:
                logger.warning(f"Could not stop {unit}: {stop.output}")
            self.tools.disable(unit)

        override = self.config.varnish_service_override
        if override.exists():
            self.backups.backup(override)
            override.unlink()
            self.tools.daemon_reload()
        return "varnish and hitch stopped and disabled"

    def restore_apache(self) -> str:
        cpanel_config = KeyValueFile.load(self.config.cpanel_config_path, APACHE_PORT_KEYS)
        cpanel_config.set("apache_port", "0.0.0.0:80")
        cpanel_config.set("apache_ssl_port", "0.0.0.0:443")
        cpanel_config.save(self.backups)

        rebuild = self.config.cpanel_scripts_dir / "rebuildhttpdconf"
        if rebuild.exists():
            result = self.tools.run_cpanel_script("rebuildhttpdconf")
            if not result.ok:
                raise RuntimeError(f"rebuildhttpdconf failed: {result.output}")

        result = self.tools.restart("httpd")
        if not result.ok:
            raise RuntimeError(f"httpd restart failed: {result.output}")
        return "Apache restored to ports 80/443"

    def remove_plugins(self) -> str:
        removed = PluginInstaller(self.config, self.tools).uninstall(self.backups)
        return f"removed {len(removed)} plugin file(s)"

    def remove_packages(self) -> str:
        self.tools.remove_packages(["varnish", "hitch"])
        return "varnish and hitch packages removed"
