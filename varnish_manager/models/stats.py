"""Cache statistics models."""

from typing import Optional

from pydantic import BaseModel, Field


class VarnishStats(BaseModel):
    """Counters from varnishstat plus derived ratios."""

    cache_hits: int = 0
    cache_misses: int = 0
    client_requests: int = 0
    client_connections: int = 0
    backend_connections: int = 0
    backend_failures: int = 0
    objects_in_cache: int = 0
    bytes_allocated: int = 0
    bytes_free: int = 0
    sessions_dropped: int = 0
    threads_created: int = 0
    threads_destroyed: int = 0
    uptime_seconds: int = 0

    @property
    def total_requests(self) -> int:
        """Hits plus misses."""
        return self.cache_hits + self.cache_misses

    @property
    def hit_rate(self) -> float:
        """Hit percentage (0-100)."""
        if self.total_requests == 0:
            return 0.0
        return (self.cache_hits / self.total_requests) * 100.0

    @property
    def memory_usage_percent(self) -> float:
        """Share of the storage arena in use (0-100)."""
        total = self.bytes_allocated + self.bytes_free
        if total == 0:
            return 0.0
        return (self.bytes_allocated / total) * 100.0

    @property
    def requests_per_second(self) -> float:
        """Average request rate since the cache daemon started."""
        if self.uptime_seconds <= 0:
            return 0.0
        return self.total_requests / self.uptime_seconds

    def to_dict(self) -> dict:
        """Serialize counters together with derived values."""
        data = self.model_dump()
        data.update(
            total_requests=self.total_requests,
            hit_rate=round(self.hit_rate, 2),
            memory_usage_percent=round(self.memory_usage_percent, 2),
            requests_per_second=round(self.requests_per_second, 3),
        )
        return data


class AnalyticsSummary(BaseModel):
    """Cache behaviour over a requested timeframe."""

    timeframe: str
    hours: int = Field(gt=0)
    stats: VarnishStats
    error_events: int = Field(0, description="Journal entries at error priority or worse")
    log_events: int = Field(0, description="Journal entries within the timeframe")


class RequestRecord(BaseModel):
    """One client request reconstructed from varnishlog output."""

    host: Optional[str] = None
    url: Optional[str] = None
    method: Optional[str] = None
    result: Optional[str] = Field(None, description="hit, miss, pass or pipe")
    content_length: int = 0
    started_at: Optional[float] = Field(None, description="Epoch seconds of Timestamp Start")
    response_time_ms: Optional[float] = None


class DomainStats(BaseModel):
    """Per-domain cache statistics."""

    domain: str
    total_requests: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    bytes_sent: int = 0
    avg_response_time: float = 0.0

    @property
    def hit_rate(self) -> float:
        """Hit percentage over all requests (0-100)."""
        if self.total_requests == 0:
            return 0.0
        return (self.cache_hits / self.total_requests) * 100.0


class UrlStats(BaseModel):
    """Per-URL cache statistics within one domain."""

    url: str
    total_requests: int = 0
    hits: int = 0
    misses: int = 0
    bytes_sent: int = 0
    avg_response_time: float = 0.0
    status: str = "unknown"

    @property
    def hit_rate(self) -> float:
        """Hit percentage (0-100)."""
        if self.total_requests == 0:
            return 0.0
        return (self.hits / self.total_requests) * 100.0


class HitchStats(BaseModel):
    """Connection and TLS counters of the Hitch terminator."""

    active_connections: int = 0
    total_connections: int = Field(0, description="Connection events logged in the last hour")
    ssl_handshakes: int = Field(0, description="Handshake events logged in the last hour")
    certificate_errors: int = Field(0, description="Certificate errors logged in the last day")
    backend_failures: int = Field(0, description="Backend connection failures logged in the last day")
    backend_reachable: bool = False
