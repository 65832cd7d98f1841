"""Adapter around the host's external tools.

One method per fact the rest of the package needs: unit state, socket table,
package installation, varnishadm/varnishstat/varnishlog, openssl and the
cPanel command line. Tests substitute a fake with the same interface.
"""

import json
import logging
import os
import shutil
import socket
import time
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

import requests

from ..exceptions import PackageInstallError, PackageManagerUnavailable, ToolNotFoundError
from ..models import CertificateInfo, CommandResult, LogEntry, RequestRecord, SocketListener, VarnishStats
from ..utils.config import Config
from ..utils.shell import COMMAND_NOT_FOUND, run_command
from . import parsers

logger = logging.getLogger(__name__)

CACHE_HEADERS = ("x-cache", "cache-control", "age", "x-varnish", "via")


class SystemTools:
    """Runs external binaries and returns typed results."""

    def __init__(self, config: Config):
        """
        Initialize the adapter.

        Args:
            config: Application configuration
        """
        self.config = config

    def _run(
        self, cmd: List[str], timeout: Optional[int] = 30, input_text: Optional[str] = None
    ) -> CommandResult:
        code, stdout, stderr = run_command(cmd, timeout=timeout, input_text=input_text)
        if code == COMMAND_NOT_FOUND and stderr.startswith("command not found"):
            raise ToolNotFoundError(cmd[0])
        return CommandResult(command=cmd, returncode=code, stdout=stdout, stderr=stderr)

    def _instance_args(self) -> List[str]:
        if self.config.varnish_instance:
            return ["-n", self.config.varnish_instance]
        return []

    # Host

    def has_command(self, name: str) -> bool:
        """Check whether an executable is on PATH or an absolute path exists."""
        if os.path.isabs(name):
            return os.access(name, os.X_OK)
        return shutil.which(name) is not None

    def is_root(self) -> bool:
        """Check whether the process runs with root privileges."""
        return os.geteuid() == 0

    def chown(self, path: Path, user: str, group: str) -> None:
        """Change ownership of a file."""
        shutil.chown(str(path), user=user, group=group)

    def ensure_system_account(self, user: str, group: str, home: Path) -> None:
        """Create a system group and user if they do not exist."""
        if not self._run(["getent", "group", group]).ok:
            result = self._run(["groupadd", "-r", group])
            if not result.ok:
                raise PackageInstallError(f"groupadd {group} failed: {result.output}")
        if not self._run(["getent", "passwd", user]).ok:
            result = self._run(
                ["useradd", "-r", "-g", group, "-d", str(home), "-s", "/sbin/nologin", user]
            )
            if not result.ok:
                raise PackageInstallError(f"useradd {user} failed: {result.output}")
        home.mkdir(parents=True, exist_ok=True)
        self.chown(home, user, group)

    # systemd

    def unit_state(self, unit: str) -> str:
        """Return systemd's ActiveState for a unit (active, inactive, failed, ...)."""
        result = self._run(["systemctl", "is-active", unit])
        return result.stdout.strip() or "unknown"

    def active_since(self, unit: str) -> Optional[datetime]:
        """Return when the unit last entered the active state."""
        result = self._run(
            ["systemctl", "show", "--property=ActiveEnterTimestamp", "--value", unit]
        )
        if not result.ok:
            return None
        return parsers.parse_active_timestamp(result.stdout)

    def start(self, unit: str) -> CommandResult:
        """Start a unit."""
        return self._run(["systemctl", "start", unit], timeout=120)

    def stop(self, unit: str) -> CommandResult:
        """Stop a unit."""
        return self._run(["systemctl", "stop", unit], timeout=120)

    def restart(self, unit: str) -> CommandResult:
        """Restart a unit."""
        return self._run(["systemctl", "restart", unit], timeout=120)

    def reload(self, unit: str) -> CommandResult:
        """Reload a unit's configuration."""
        return self._run(["systemctl", "reload", unit], timeout=120)

    def enable(self, unit: str) -> CommandResult:
        """Enable a unit at boot."""
        return self._run(["systemctl", "enable", unit])

    def disable(self, unit: str) -> CommandResult:
        """Disable a unit at boot."""
        return self._run(["systemctl", "disable", unit])

    def daemon_reload(self) -> CommandResult:
        """Reload systemd unit files."""
        return self._run(["systemctl", "daemon-reload"])

    def journal_tail(self, unit: str, lines: int = 20) -> str:
        """Return the last journal lines of a unit as plain text."""
        result = self._run(["journalctl", "-u", unit, "-n", str(lines), "--no-pager"])
        return result.stdout

    def journal_entries(self, unit: str, since_hours: int = 24, lines: int = 100) -> List[LogEntry]:
        """Return structured journal entries of a unit."""
        result = self._run(
            [
                "journalctl",
                "-u",
                unit,
                "--since",
                f"{since_hours} hours ago",
                "-n",
                str(lines),
                "--output=json",
                "--no-pager",
            ]
        )
        if not result.ok:
            return []
        return parsers.parse_journal_json(result.stdout, source=unit)

    # Validation and sockets

    def run_validation(self, argv: List[str]) -> CommandResult:
        """Run a configuration self-check command."""
        return self._run(argv, timeout=60)

    def listening_sockets(self) -> List[SocketListener]:
        """Return all listening TCP sockets with their owning process."""
        result = self._run(["ss", "-Htlnp"])
        return parsers.parse_socket_table(result.stdout)

    def established_connections(self, port: int) -> int:
        """Count established TCP connections on a local port."""
        result = self._run(["ss", "-Htn", "state", "established", f"( sport = :{port} )"])
        return len([line for line in result.stdout.splitlines() if line.strip()])

    def tcp_connect(self, host: str, port: int, timeout: float = 3.0) -> bool:
        """Check whether a TCP connection to host:port can be opened."""
        try:
            with socket.create_connection((host, port), timeout=timeout):
                return True
        except OSError as e:
            logger.debug(f"Connection to {host}:{port} failed: {e}")
            return False

    # Packages

    def package_manager(self) -> str:
        """Return the available package manager binary."""
        for candidate in ("dnf", "yum"):
            if self.has_command(candidate):
                return candidate
        raise PackageManagerUnavailable("Neither dnf nor yum is available")

    def install_packages(self, packages: List[str]) -> CommandResult:
        """Install packages with the system package manager."""
        manager = self.package_manager()
        result = self._run([manager, "install", "-y", *packages], timeout=900)
        if not result.ok:
            raise PackageInstallError(
                f"{manager} install {' '.join(packages)} failed ({result.returncode}): {result.output}"
            )
        return result

    def remove_packages(self, packages: List[str]) -> CommandResult:
        """Remove packages with the system package manager."""
        manager = self.package_manager()
        result = self._run([manager, "remove", "-y", *packages], timeout=900)
        if not result.ok:
            raise PackageInstallError(
                f"{manager} remove {' '.join(packages)} failed ({result.returncode}): {result.output}"
            )
        return result

    def add_varnish_repository(self, url: str) -> CommandResult:
        """Download and run the upstream repository setup script."""
        try:
            response = requests.get(url, timeout=60)
            response.raise_for_status()
        except requests.RequestException as e:
            raise PackageInstallError(f"Could not download repository script: {e}") from e

        result = self._run(["bash", "-s"], timeout=600, input_text=response.text)
        if not result.ok:
            raise PackageInstallError(f"Repository setup failed: {result.output}")
        return result

    # Varnish

    def varnishadm(self, args: List[str]) -> CommandResult:
        """Run a varnishadm CLI command."""
        return self._run(["varnishadm", *self._instance_args(), *args])

    def varnishstat(self) -> VarnishStats:
        """Return current varnishstat counters."""
        result = self._run(["varnishstat", *self._instance_args(), "-1", "-j"])
        if not result.ok:
            raise RuntimeError(f"varnishstat failed: {result.output}")
        try:
            return parsers.parse_varnishstat(result.stdout)
        except ValueError as e:
            raise RuntimeError(f"varnishstat returned unreadable output: {e}")

    def varnishlog_requests(self, query: str, limit: int) -> List[RequestRecord]:
        """Read logged client requests matching a VSL query."""
        result = self._run(
            [
                "varnishlog",
                *self._instance_args(),
                "-d",
                "-g",
                "request",
                "-q",
                query,
                "-k",
                str(limit),
            ],
            timeout=60,
        )
        if not result.ok:
            logger.warning(f"varnishlog query failed: {result.output}")
            return []
        return parsers.parse_varnishlog(result.stdout)

    def varnish_version(self) -> str:
        """Return the installed varnishd version."""
        result = self._run([str(self.config.varnishd_path), "-V"])
        return parsers.parse_version(result.output)

    def hitch_version(self) -> str:
        """Return the installed hitch version."""
        result = self._run(["hitch", "--version"])
        return parsers.parse_version(result.output)

    def fetch_headers(self, url: str, host: Optional[str] = None) -> Dict[str, object]:
        """Fetch a URL and return status, elapsed time and cache headers."""
        headers = {"Host": host} if host else {}
        started = time.time()
        response = requests.get(url, headers=headers, timeout=20, verify=False)
        elapsed = time.time() - started
        return {
            "status": response.status_code,
            "elapsed": round(elapsed, 3),
            "headers": {
                key: value for key, value in response.headers.items() if key.lower() in CACHE_HEADERS
            },
        }

    # Certificates

    def certificate_info(self, path: Path) -> CertificateInfo:
        """Read subject, issuer and validity of a PEM file."""
        result = self._run(
            [
                "openssl",
                "x509",
                "-in",
                str(path),
                "-noout",
                "-subject",
                "-issuer",
                "-startdate",
                "-enddate",
            ]
        )
        if not result.ok:
            return CertificateInfo(path=str(path))
        info = parsers.parse_openssl_x509(result.stdout, str(path))
        check = self._run(["openssl", "x509", "-in", str(path), "-noout", "-checkend", "0"])
        info.expired = not check.ok
        return info

    # cPanel

    def whmapi1(self, function: str, **params: str) -> dict:
        """Call a WHM API 1 function and return the decoded response."""
        argv = ["whmapi1", "--output=json", function]
        argv.extend(f"{key}={value}" for key, value in params.items())
        result = self._run(argv, timeout=300)
        if not result.ok:
            raise RuntimeError(f"whmapi1 {function} failed: {result.output}")
        data = json.loads(result.stdout or "{}")
        metadata = data.get("metadata", {})
        if metadata and not metadata.get("result", 0):
            raise RuntimeError(f"whmapi1 {function}: {metadata.get('reason', 'unknown error')}")
        return data

    def run_cpanel_script(self, name: str, *args: str) -> CommandResult:
        """Run a script from the cPanel scripts directory."""
        script = self.config.cpanel_scripts_dir / name
        return self._run([str(script), *args], timeout=600)

    def register_appconfig(self, path: Path) -> CommandResult:
        """Register a cPanel AppConfig file."""
        tool = self.config.cpanel_root / "bin" / "register_appconfig"
        return self._run([str(tool), str(path)])

    def unregister_appconfig(self, path: Path) -> CommandResult:
        """Unregister a cPanel AppConfig file."""
        tool = self.config.cpanel_root / "bin" / "unregister_appconfig"
        return self._run([str(tool), str(path)])
