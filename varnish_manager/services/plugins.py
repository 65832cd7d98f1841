"""Registration of the WHM and cPanel front-ends."""

import logging
import os
from pathlib import Path
from typing import List, Optional

import yaml

from ..adapters import SystemTools
from ..utils.config import Config
from .backup import BackupManager
from .kvconfig import FEATURE_KEYS, KeyValueFile

logger = logging.getLogger(__name__)

WHM_CGI_NAME = "addon_varnish_manager.cgi"
USER_CGI_NAME = "varnish_user.cgi"
APPCONFIG_NAME = "varnish_cache_manager.conf"
FEATURE_FLAG = "allow_cache_management"

CGI_WRAPPER = """#!{python}
from varnish_manager.web.cgi import {entry}

{entry}()
"""


class PluginInstaller:
    """Writes CGI wrappers and registers the cPanel AppConfig entry."""

    def __init__(self, config: Config, tools: SystemTools):
        """
        Initialize plugin installer.

        Args:
            config: Application configuration
            tools: External tool adapter
        """
        self.config = config
        self.tools = tools

    @property
    def whm_cgi_path(self) -> Path:
        return self.config.whm_cgi_dir / WHM_CGI_NAME

    @property
    def user_cgi_path(self) -> Path:
        return self.config.cpanel_plugin_dir / "cgi" / USER_CGI_NAME

    @property
    def appconfig_path(self) -> Path:
        return self.config.cpanel_apps_dir / APPCONFIG_NAME

    def appconfig(self) -> dict:
        """Return the cPanel AppConfig document."""
        return {
            "group": "Software",
            "name": "Varnish Cache Manager",
            "version": "1.0",
            "description": "Manage Varnish cache for improved website performance",
            "url": f"{self.config.cpanel_plugin_dir.name}/cgi/{USER_CGI_NAME}",
            "feature_requires": [FEATURE_FLAG],
        }

    def _write_wrapper(self, path: Path, entry: str, backups: Optional[BackupManager]) -> None:
        content = CGI_WRAPPER.format(python=self.config.python_executable, entry=entry)
        if backups is not None:
            backups.write_with_backup(path, content, mode=0o755)
        else:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content)
            os.chmod(path, 0o755)

    def install(self, backups: Optional[BackupManager] = None) -> List[str]:
        """
        Install both front-ends.

        Args:
            backups: Backup manager used before overwriting existing files

        Returns:
            Paths written
        """
        written = []

        self._write_wrapper(self.whm_cgi_path, "admin_main", backups)
        written.append(str(self.whm_cgi_path))

        self._write_wrapper(self.user_cgi_path, "user_main", backups)
        written.append(str(self.user_cgi_path))

        content = yaml.safe_dump(self.appconfig(), default_flow_style=False, sort_keys=False)
        if backups is not None:
            backups.write_with_backup(self.appconfig_path, content)
        else:
            self.appconfig_path.parent.mkdir(parents=True, exist_ok=True)
            self.appconfig_path.write_text(content)
        written.append(str(self.appconfig_path))

        if self.enable_feature(backups):
            written.append(str(self.config.cpanel_features_file))

        result = self.tools.register_appconfig(self.appconfig_path)
        if not result.ok:
            raise RuntimeError(f"register_appconfig failed: {result.output}")

        logger.info("WHM and cPanel plugins installed")
        return written

    def enable_feature(self, backups: Optional[BackupManager] = None) -> bool:
        """Add the cache management feature to the default feature list if missing."""
        features_file = self.config.cpanel_features_file
        if not features_file.exists():
            logger.warning(f"Could not find cPanel features file: {features_file}")
            return False

        features = KeyValueFile.load(features_file, FEATURE_KEYS)
        if features.get(FEATURE_FLAG) is not None:
            return False
        features.set(FEATURE_FLAG, "1")
        features.save(backups)
        logger.info("Added cache management feature to default feature list")
        return True

    def uninstall(self, backups: Optional[BackupManager] = None) -> List[str]:
        """
        Remove both front-ends.

        Args:
            backups: Backup manager receiving a copy of every file before removal

        Returns:
            Paths removed
        """
        backups = backups or BackupManager(self.config.backup_root)
        removed = []
        if self.appconfig_path.exists():
            result = self.tools.unregister_appconfig(self.appconfig_path)
            if not result.ok:
                logger.warning(f"unregister_appconfig failed: {result.output}")

        for path in (self.whm_cgi_path, self.user_cgi_path, self.appconfig_path):
            if path.exists():
                backups.backup(path)
                path.unlink()
                removed.append(str(path))
                logger.info(f"Removed {path}")
        return removed
