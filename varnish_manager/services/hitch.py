"""Hitch administration: configuration, certificates and service control."""

import logging
import re
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, List, Optional

from ..adapters import SystemTools
from ..adapters.parsers import parse_hitch_config
from ..exceptions import ConfigValidationFailed, InvalidInput, ServiceStartFailed
from ..models import CertificateBundle, CertificateInfo, HitchStats, LogEntry
from ..utils.config import Config
from .backup import BackupManager
from .certificates import CertificateDiscoverer
from .descriptors import HITCH, build_descriptors
from .probe import ServiceProbe

logger = logging.getLogger(__name__)

BUNDLE_NAME = re.compile(r"^[A-Za-z0-9_.-]+$")
PROXY_HOST = "127.0.0.1"

CONNECTION_EVENT = re.compile(r"connection", re.IGNORECASE)
HANDSHAKE_EVENT = re.compile(r"handshake", re.IGNORECASE)
CERTIFICATE_ERROR = re.compile(r"certificate.*error", re.IGNORECASE)
BACKEND_FAILURE = re.compile(r"backend.*fail", re.IGNORECASE)

# journal lookback windows in hours
RECENT_HOURS = 1
ERROR_HOURS = 24


class HitchService:
    """Administrative operations on the Hitch TLS terminator."""

    def __init__(self, config: Config, tools: SystemTools, probe: Optional[ServiceProbe] = None):
        """
        Initialize Hitch service.

        Args:
            config: Application configuration
            tools: External tool adapter
            probe: Service probe (built from tools if omitted)
        """
        self.config = config
        self.tools = tools
        self.probe = probe or ServiceProbe(tools, diagnostic_lines=config.diagnostic_lines)
        self.descriptor = build_descriptors(config, config.default_plan().ports)[HITCH]
        self.discoverer = CertificateDiscoverer(config, tools)

    def _read_config(self) -> str:
        path = self.config.hitch_config_path
        return path.read_text() if path.exists() else ""

    def status(self) -> Dict:
        """Return running state, version, uptime, config validity and certificate count."""
        status = self.probe.probe(self.descriptor)
        parsed = parse_hitch_config(self._read_config())
        return {
            "running": status.running,
            "state": status.state,
            "version": self.tools.hitch_version() if status.running else "unknown",
            "uptime_seconds": status.uptime_seconds,
            "config_valid": status.config_valid,
            "listening": status.listening,
            "certificates": len(parsed["certificates"]),
            "connections": self.tools.established_connections(self.config.hitch_port)
            if status.running
            else 0,
            "last_error": status.last_error,
        }

    def get_config(self) -> Dict:
        """Return hitch.conf content and its parsed settings."""
        content = self._read_config()
        return {
            "config_path": str(self.config.hitch_config_path),
            "content": content,
            "settings": parse_hitch_config(content),
        }

    def _validate_or_restore(self, backups: BackupManager) -> None:
        result = self.tools.run_validation(self.descriptor.validation_argv())
        if not result.ok:
            if not backups.restore(self.config.hitch_config_path):
                self.config.hitch_config_path.unlink()
            raise ConfigValidationFailed(HITCH, result.output)

    def save_config(self, content: str) -> str:
        """
        Replace hitch.conf, validate it with 'hitch --test' and restore on failure.

        Args:
            content: New configuration text

        Returns:
            Human readable result
        """
        if not content or not content.strip():
            raise InvalidInput("Hitch configuration must not be empty")
        if "\x00" in content:
            raise InvalidInput("Hitch configuration contains NUL bytes")

        backups = BackupManager(self.config.backup_root)
        backups.write_with_backup(self.config.hitch_config_path, content)
        self._validate_or_restore(backups)
        return "Hitch configuration saved. Restart Hitch to apply"

    def list_certificates(self) -> List[CertificateInfo]:
        """Return metadata for every combined PEM in the certificate directory."""
        directory = self.config.cert_output_dir
        if not directory.is_dir():
            return []
        return [self.tools.certificate_info(path) for path in sorted(directory.glob("*.pem"))]

    def add_certificate(self, cert_path: str, key_path: str, name: Optional[str] = None) -> CertificateBundle:
        """
        Bundle a certificate/key pair and reference it from hitch.conf.

        Args:
            cert_path: Certificate file
            key_path: Private key file
            name: Bundle name (defaults to the certificate stem)

        Returns:
            The written bundle
        """
        cert, key = Path(cert_path), Path(key_path)
        for path in (cert, key):
            if not path.is_file():
                raise InvalidInput(f"File not found: {path}")
        stem = name or cert.stem
        if not BUNDLE_NAME.match(stem):
            raise InvalidInput(f"Invalid certificate name: {stem!r}")

        bundle = CertificateBundle(
            source_cert_path=str(cert),
            source_key_path=str(key),
            combined_pem_path=str(self.config.cert_output_dir / f"{stem}.pem"),
        )
        backups = BackupManager(self.config.backup_root)
        self.config.cert_output_dir.mkdir(parents=True, exist_ok=True)
        self.discoverer.write_bundle(bundle, backups)

        content = self._read_config()
        line = f'pem-file = "{bundle.combined_pem_path}"'
        if line not in content.splitlines():
            if content and not content.endswith("\n"):
                content += "\n"
            backups.write_with_backup(self.config.hitch_config_path, content + line + "\n")
            self._validate_or_restore(backups)
        return bundle

    def remove_certificate(self, name: str) -> str:
        """Remove a combined PEM and its pem-file reference."""
        filename = Path(name).name
        if not BUNDLE_NAME.match(filename):
            raise InvalidInput(f"Invalid certificate name: {name!r}")
        if not filename.endswith(".pem"):
            filename = f"{filename}.pem"
        path = self.config.cert_output_dir / filename
        if not path.is_file():
            raise InvalidInput(f"Certificate not found: {filename}")

        backups = BackupManager(self.config.backup_root)
        backups.backup(path)
        content = self._read_config()
        kept = [
            line
            for line in content.splitlines(keepends=True)
            if not (line.strip().startswith("pem-file") and str(path) in line)
        ]
        if len(kept) != len(content.splitlines(keepends=True)):
            backups.write_with_backup(self.config.hitch_config_path, "".join(kept))
            self._validate_or_restore(backups)

        self.discoverer.remove_bundle(filename)
        return f"Removed certificate {filename}"

    def restart(self) -> str:
        """Restart the TLS terminator."""
        result = self.tools.restart(self.descriptor.unit_name)
        if not result.ok:
            raise ServiceStartFailed(f"hitch restart failed: {result.output}")
        return "Hitch restarted"

    def logs(self, lines: int = 100) -> List[LogEntry]:
        """Return recent journal entries."""
        return self.tools.journal_entries(self.descriptor.unit_name, since_hours=24, lines=lines)

    def test_backend_connection(self) -> bool:
        """Check that the Varnish PROXY listener accepts connections from Hitch."""
        port = self.config.hitch_backend_port
        reachable = self.tools.tcp_connect(PROXY_HOST, port)
        if not reachable:
            logger.warning(f"Hitch backend {PROXY_HOST}:{port} is not reachable")
        return reachable

    def stats(self) -> HitchStats:
        """
        Collect connection and TLS counters.

        Connection and handshake counts cover the last hour of the journal,
        certificate errors and backend failures the last day.

        Returns:
            Hitch statistics
        """
        entries = self.tools.journal_entries(
            self.descriptor.unit_name, since_hours=ERROR_HOURS, lines=self.config.journal_scan_lines
        )
        recent_since = datetime.now() - timedelta(hours=RECENT_HOURS)
        recent = [entry for entry in entries if entry.timestamp >= recent_since]

        def count(pattern: re.Pattern, source: List[LogEntry]) -> int:
            return len([entry for entry in source if pattern.search(entry.message)])

        return HitchStats(
            active_connections=self.tools.established_connections(self.config.hitch_port),
            total_connections=count(CONNECTION_EVENT, recent),
            ssl_handshakes=count(HANDSHAKE_EVENT, recent),
            certificate_errors=count(CERTIFICATE_ERROR, entries),
            backend_failures=count(BACKEND_FAILURE, entries),
            backend_reachable=self.test_backend_connection(),
        )
