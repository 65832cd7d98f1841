"""Varnish administration: status, statistics, purges and configuration."""

import logging
import re
from typing import Dict, List, Optional

from pydantic import ValidationError

from ..adapters import SystemTools
from ..adapters.parsers import parse_varnish_service
from ..exceptions import ConfigValidationFailed, InvalidInput, ServiceStartFailed
from ..models import AnalyticsSummary, CommandResult, LogEntry, VarnishStats
from ..utils.config import Config
from . import generator
from .backup import BackupManager
from .descriptors import VARNISH, build_descriptors
from .probe import ServiceProbe

logger = logging.getLogger(__name__)

DOMAIN_PATTERN = re.compile(r"^(?=.{1,253}$)([a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?\.)+[a-z]{2,63}$")
PATH_PATTERN = re.compile(r"^/[A-Za-z0-9_\-./~%?=&+:@!$,;*()]*$")
TIMEFRAME_PATTERN = re.compile(r"^(\d{1,4})([hd])$")
REGEX_SPECIAL = frozenset(".^$*+?()[]{}|\\")

# journald priorities: 0 emerg .. 3 err
ERROR_PRIORITY = 3


def validate_domain(domain: str) -> str:
    """Normalize and validate a domain name."""
    domain = (domain or "").strip().lower().rstrip(".")
    if not DOMAIN_PATTERN.match(domain):
        raise InvalidInput(f"Invalid domain: {domain!r}")
    return domain


def validate_path(path: str) -> str:
    """Validate a URL path used in a ban expression."""
    path = path or "/"
    if not PATH_PATTERN.match(path):
        raise InvalidInput(f"Invalid path: {path!r}")
    return path


def path_prefix_regex(path: str) -> str:
    """Build an anchored regex matching URLs that start with a literal path."""
    return "^" + "".join(f"\\{char}" if char in REGEX_SPECIAL else char for char in path)


def parse_timeframe(timeframe: str) -> int:
    """Convert '<n>h' or '<n>d' into hours."""
    match = TIMEFRAME_PATTERN.match((timeframe or "").strip())
    if not match:
        raise InvalidInput(f"Invalid timeframe: {timeframe!r} (expected e.g. 24h or 7d)")
    value, unit = int(match.group(1)), match.group(2)
    hours = value * 24 if unit == "d" else value
    if hours <= 0:
        raise InvalidInput("Timeframe must be positive")
    return hours


class VarnishService:
    """Administrative operations on the Varnish cache daemon."""

    def __init__(self, config: Config, tools: SystemTools, probe: Optional[ServiceProbe] = None):
        """
        Initialize Varnish service.

        Args:
            config: Application configuration
            tools: External tool adapter
            probe: Service probe (built from tools if omitted)
        """
        self.config = config
        self.tools = tools
        self.probe = probe or ServiceProbe(tools, diagnostic_lines=config.diagnostic_lines)
        self.descriptor = build_descriptors(config, config.default_plan().ports)[VARNISH]

    def status(self) -> Dict:
        """Return running state, version, uptime and config validity."""
        status = self.probe.probe(self.descriptor)
        version = self.tools.varnish_version() if status.running else "unknown"
        return {
            "running": status.running,
            "state": status.state,
            "version": version,
            "uptime_seconds": status.uptime_seconds,
            "config_valid": status.config_valid,
            "listening": status.listening,
            "last_error": status.last_error,
        }

    def stats(self) -> VarnishStats:
        """Return current cache counters."""
        return self.tools.varnishstat()

    def analytics(self, timeframe: str = "24h") -> AnalyticsSummary:
        """
        Summarize cache behaviour for a timeframe.

        Counters come from varnishstat (cumulative since start); event counts
        come from the journal within the timeframe.

        Args:
            timeframe: '<n>h' or '<n>d'

        Returns:
            Analytics summary
        """
        hours = parse_timeframe(timeframe)
        entries = self.tools.journal_entries(
            self.descriptor.unit_name, since_hours=hours, lines=self.config.varnishlog_limit
        )
        return AnalyticsSummary(
            timeframe=timeframe,
            hours=hours,
            stats=self.stats(),
            error_events=len([e for e in entries if e.priority <= ERROR_PRIORITY]),
            log_events=len(entries),
        )

    def _ban(self, expression: List[str]) -> CommandResult:
        result = self.tools.varnishadm(["ban", *expression])
        if not result.ok:
            raise RuntimeError(f"varnishadm ban failed: {result.output}")
        logger.info(f"Ban added: {' '.join(expression)}")
        return result

    def purge(self, domain: str, path: str = "/") -> str:
        """
        Ban cached objects of a domain, optionally below a path prefix.

        Args:
            domain: Host header value
            path: URL path prefix; '/' bans the whole domain

        Returns:
            Human readable result
        """
        domain = validate_domain(domain)
        path = validate_path(path)
        if path == "/":
            self._ban(["req.http.host", "==", domain])
            return f"Cache purged for {domain}"
        self._ban(["req.http.host", "==", domain, "&&", "req.url", "~", path_prefix_regex(path)])
        return f"Cache purged for {domain}{path}"

    def purge_all(self) -> str:
        """Ban every cached object."""
        self._ban(["req.url", "~", "."])
        return "All cache purged"

    def restart(self) -> str:
        """Restart the cache daemon."""
        result = self.tools.restart(self.descriptor.unit_name)
        if not result.ok:
            raise ServiceStartFailed(f"varnish restart failed: {result.output}")
        return "Varnish restarted"

    def get_config(self) -> Dict:
        """Return VCL content plus listen port and memory from the systemd drop-in."""
        vcl_path = self.config.vcl_path
        override = self.config.varnish_service_override
        settings = parse_varnish_service(override.read_text()) if override.exists() else {}
        return {
            "vcl_path": str(vcl_path),
            "vcl_content": vcl_path.read_text() if vcl_path.exists() else "",
            "port": int(settings.get("port", self.config.varnish_port)),
            "memory": settings.get("memory", self.config.varnish_memory),
        }

    def save_config(
        self, vcl_content: str, port: Optional[int] = None, memory: Optional[str] = None
    ) -> str:
        """
        Replace the VCL, validate it and optionally change port and memory.

        The previous VCL is restored if the new one fails validation.

        Args:
            vcl_content: New VCL text
            port: New listen port
            memory: New malloc size

        Returns:
            Human readable result

        Raises:
            InvalidInput: Port or memory rejected
            ConfigValidationFailed: varnishd -C rejected the VCL
        """
        if not vcl_content or not vcl_content.strip():
            raise InvalidInput("VCL content must not be empty")
        if "\x00" in vcl_content:
            raise InvalidInput("VCL content contains NUL bytes")

        params = None
        if port is not None or memory is not None:
            current = generator.varnish_params(self.config)
            try:
                params = generator.VarnishParams(
                    **{
                        **current.model_dump(),
                        "listen_port": port if port is not None else current.listen_port,
                        "memory": memory if memory is not None else current.memory,
                    }
                )
            except ValidationError as e:
                raise InvalidInput(f"Invalid Varnish settings: {e.errors()[0]['msg']}") from e

        backups = BackupManager(self.config.backup_root)
        backups.write_with_backup(self.config.vcl_path, vcl_content)

        result = self.tools.run_validation(self.descriptor.validation_argv())
        if not result.ok:
            if not backups.restore(self.config.vcl_path):
                self.config.vcl_path.unlink()
            raise ConfigValidationFailed(VARNISH, result.output)

        if params is not None:
            backups.write_with_backup(
                self.config.varnish_service_override, generator.render_varnish_service(params)
            )
            self.tools.daemon_reload()
            return "Configuration saved. Restart Varnish to apply the new port or memory size"

        if self.tools.unit_state(self.descriptor.unit_name) == "active":
            self.tools.reload(self.descriptor.unit_name)
        return "Configuration saved and reloaded"

    def logs(self, lines: int = 100) -> List[LogEntry]:
        """Return recent journal entries."""
        return self.tools.journal_entries(self.descriptor.unit_name, since_hours=24, lines=lines)

    def test_cache(self, url: str, host: Optional[str] = None) -> List[Dict]:
        """Request a URL twice and report cache headers (expect MISS then HIT)."""
        results = []
        for label in ("first", "second"):
            response = self.tools.fetch_headers(url, host)
            response["request"] = label
            results.append(response)
        return results
