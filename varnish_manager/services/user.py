"""Cache operations scoped to the domains of one cPanel user."""

import logging
import re
import time
from typing import Callable, Dict, List
from urllib.parse import urlsplit

from ..adapters import SystemTools
from ..exceptions import DomainAccessDenied, InvalidInput
from ..models import DomainStats, RequestRecord, UrlStats
from ..utils.config import Config
from .varnish import validate_domain, validate_path

logger = logging.getLogger(__name__)

USERNAME = re.compile(r"^[a-z][a-z0-9_-]{0,31}$")
DOMAIN_LINE = re.compile(r"^(?:DNS\d*|ADDON|SUB|PARK)=(.+)$", re.MULTILINE)
PURGE_PATTERN = re.compile(r"^[A-Za-z0-9_\-./*?]+$")


def glob_to_regex(pattern: str) -> str:
    """Translate a '*'/'?' pattern into an anchored VCL regex."""
    parts = []
    for char in pattern:
        if char == "*":
            parts.append(".*")
        elif char == "?":
            parts.append(".")
        elif char == ".":
            parts.append("\\.")
        else:
            parts.append(char)
    return "^" + "".join(parts)


def cache_efficiency(hit_rate: float, avg_response_time: float) -> float:
    """Hit rate adjusted by response time: +10 under 50ms, -10 over 200ms, clamped 0-100."""
    efficiency = hit_rate
    if avg_response_time < 50:
        efficiency += 10
    elif avg_response_time > 200:
        efficiency -= 10
    return max(0.0, min(100.0, efficiency))


class UserCacheService:
    """Purges and statistics restricted to domains the caller owns."""

    def __init__(self, config: Config, tools: SystemTools, clock: Callable[[], float] = time.time):
        """
        Initialize user cache service.

        Args:
            config: Application configuration
            tools: External tool adapter
            clock: Epoch-seconds clock used for real-time windows
        """
        self.config = config
        self.tools = tools
        self.clock = clock

    # Ownership

    def user_domains(self, user: str) -> List[str]:
        """
        Return the domains of a cPanel account.

        Args:
            user: cPanel username

        Returns:
            Main, addon, sub and parked domains, in file order without duplicates
        """
        if not USERNAME.match(user or ""):
            raise InvalidInput(f"Invalid username: {user!r}")
        user_file = self.config.cpanel_users_dir / user
        if not user_file.is_file():
            logger.warning(f"No cPanel user file for {user}")
            return []

        domains: List[str] = []
        for value in DOMAIN_LINE.findall(user_file.read_text(errors="replace")):
            domain = value.strip().lower()
            if domain and domain not in domains:
                domains.append(domain)
        return domains

    def require_domain(self, user: str, domain: str) -> str:
        """Validate a domain and check the user owns it."""
        domain = validate_domain(domain)
        if domain not in self.user_domains(user):
            raise DomainAccessDenied(f"Access denied: {user} does not own {domain}")
        return domain

    # Purges

    def _ban(self, expression: List[str]) -> None:
        result = self.tools.varnishadm(["ban", *expression])
        if not result.ok:
            raise RuntimeError(f"varnishadm ban failed: {result.output}")
        logger.info(f"Ban added: {' '.join(expression)}")

    def purge_url(self, user: str, url: str) -> str:
        """
        Purge exactly one URL.

        Args:
            user: cPanel username
            url: Absolute http(s) URL on a domain the user owns

        Returns:
            Human readable result
        """
        try:
            parts = urlsplit((url or "").strip())
            hostname = parts.hostname
        except ValueError:
            raise InvalidInput(f"Invalid URL: {url!r}")
        if parts.scheme not in ("http", "https") or not hostname:
            raise InvalidInput(f"Invalid URL: {url!r}")
        domain = self.require_domain(user, hostname)

        path = parts.path or "/"
        if parts.query:
            path = f"{path}?{parts.query}"
        path = validate_path(path)

        self._ban(["req.http.host", "==", domain, "&&", "req.url", "==", path])
        return f"Purged {domain}{path}"

    def purge_domain(self, user: str, domain: str) -> str:
        """Purge every cached object of one domain."""
        domain = self.require_domain(user, domain)
        self._ban(["req.http.host", "==", domain])
        return f"Purged all cache for {domain}"

    def purge_pattern(self, user: str, domain: str, pattern: str) -> str:
        """
        Purge URLs of a domain matching a '*'/'?' pattern.

        Characters outside letters, digits, '_', '-', '.', '/', '*' and '?'
        are rejected rather than stripped.
        """
        domain = self.require_domain(user, domain)
        if not PURGE_PATTERN.match(pattern or ""):
            raise InvalidInput(f"Invalid pattern: {pattern!r}")
        self._ban(["req.http.host", "==", domain, "&&", "req.url", "~", glob_to_regex(pattern)])
        return f"Purged URLs matching {pattern} on {domain}"

    # Statistics

    def _requests(self, domain: str) -> List[RequestRecord]:
        query = f'ReqHeader:Host eq "{domain}"'
        return self.tools.varnishlog_requests(query, self.config.varnishlog_limit)

    def domain_stats(self, user: str, domain: str) -> DomainStats:
        """Aggregate logged requests of one domain."""
        domain = self.require_domain(user, domain)
        return self._aggregate(domain, self._requests(domain))

    def _aggregate(self, domain: str, records: List[RequestRecord]) -> DomainStats:
        stats = DomainStats(domain=domain)
        times = []
        for record in records:
            stats.total_requests += 1
            if record.result == "hit":
                stats.cache_hits += 1
            elif record.result == "miss":
                stats.cache_misses += 1
            stats.bytes_sent += record.content_length
            if record.response_time_ms is not None:
                times.append(record.response_time_ms)
        if times:
            stats.avg_response_time = sum(times) / len(times)
        return stats

    def url_stats(self, user: str, domain: str) -> List[UrlStats]:
        """Per-URL statistics of one domain, busiest first."""
        domain = self.require_domain(user, domain)
        by_url: Dict[str, UrlStats] = {}
        times: Dict[str, List[float]] = {}

        for record in self._requests(domain):
            if not record.url:
                continue
            entry = by_url.setdefault(record.url, UrlStats(url=record.url))
            entry.total_requests += 1
            if record.result == "hit":
                entry.hits += 1
            elif record.result == "miss":
                entry.misses += 1
            entry.bytes_sent += record.content_length
            if record.response_time_ms is not None:
                times.setdefault(record.url, []).append(record.response_time_ms)

        for url, entry in by_url.items():
            samples = times.get(url)
            if samples:
                entry.avg_response_time = sum(samples) / len(samples)
            if entry.hits and entry.hits >= entry.misses:
                entry.status = "cached"
            elif entry.misses:
                entry.status = "miss"
            else:
                entry.status = "pass"

        return sorted(by_url.values(), key=lambda s: (-s.total_requests, s.url))

    def top_urls(self, user: str, domain: str, limit: int = 20) -> List[UrlStats]:
        """The busiest URLs of one domain."""
        if limit <= 0:
            raise InvalidInput("limit must be positive")
        return self.url_stats(user, domain)[:limit]

    def real_time_stats(self, user: str, domain: str) -> Dict:
        """Domain statistics plus requests in the last minute and an efficiency score."""
        domain = self.require_domain(user, domain)
        records = self._requests(domain)
        stats = self._aggregate(domain, records)

        cutoff = self.clock() - 60
        recent = [r for r in records if r.started_at is not None and r.started_at >= cutoff]

        data = stats.model_dump()
        data["hit_rate"] = round(stats.hit_rate, 2)
        data["requests_per_minute"] = len(recent)
        data["cache_efficiency"] = round(cache_efficiency(stats.hit_rate, stats.avg_response_time), 2)
        return data
