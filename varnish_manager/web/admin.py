"""WHM administrator actions."""

from typing import Dict, Optional

from ..adapters import SystemTools
from ..exceptions import InvalidInput
from ..models import ActionResponse
from ..services import HitchService, VarnishService
from ..utils.config import Config
from .dispatcher import ActionDispatcher
from .tokens import TokenStore

LOG_SERVICES = ("varnish", "hitch")


def _int_param(params: Dict[str, str], name: str, default: Optional[int] = None) -> Optional[int]:
    value = (params.get(name) or "").strip()
    if not value:
        return default
    if not value.isdigit():
        raise InvalidInput(f"{name} must be a number")
    return int(value)


class AdminActions:
    """Handlers for the WHM front-end."""

    def __init__(self, config: Config, tools: SystemTools):
        self.varnish = VarnishService(config, tools)
        self.hitch = HitchService(config, tools, self.varnish.probe)

    def get_stats(self, params: Dict[str, str]) -> ActionResponse:
        varnish = self.varnish.status()
        stats = self.varnish.stats().to_dict() if varnish["running"] else {}
        hitch = self.hitch.status()
        hitch_stats = self.hitch.stats().model_dump() if hitch["running"] else {}
        return ActionResponse.ok(
            "Statistics loaded", varnish=varnish, hitch=hitch, stats=stats, hitch_stats=hitch_stats
        )

    def get_hitch_stats(self, params: Dict[str, str]) -> ActionResponse:
        return ActionResponse.ok("Hitch statistics loaded", **self.hitch.stats().model_dump())

    def test_hitch_backend(self, params: Dict[str, str]) -> ActionResponse:
        if not self.hitch.test_backend_connection():
            return ActionResponse.fail("Hitch cannot reach the Varnish PROXY port")
        return ActionResponse.ok("Hitch backend reachable")

    def get_analytics(self, params: Dict[str, str]) -> ActionResponse:
        summary = self.varnish.analytics(params.get("timeframe") or "24h")
        data = summary.model_dump(exclude={"stats"})
        data["stats"] = summary.stats.to_dict()
        return ActionResponse.ok("Analytics loaded", **data)

    def purge_cache(self, params: Dict[str, str]) -> ActionResponse:
        domain = params.get("domain", "")
        if not domain:
            raise InvalidInput("domain is required")
        return ActionResponse.ok(self.varnish.purge(domain, params.get("path") or "/"))

    def purge_all(self, params: Dict[str, str]) -> ActionResponse:
        return ActionResponse.ok(self.varnish.purge_all())

    def restart_varnish(self, params: Dict[str, str]) -> ActionResponse:
        return ActionResponse.ok(self.varnish.restart())

    def restart_hitch(self, params: Dict[str, str]) -> ActionResponse:
        return ActionResponse.ok(self.hitch.restart())

    def get_config(self, params: Dict[str, str]) -> ActionResponse:
        return ActionResponse.ok("Configuration loaded", **self.varnish.get_config())

    def save_config(self, params: Dict[str, str]) -> ActionResponse:
        message = self.varnish.save_config(
            params.get("vcl_content", ""),
            port=_int_param(params, "port"),
            memory=(params.get("memory") or "").strip() or None,
        )
        return ActionResponse.ok(message)

    def get_hitch_config(self, params: Dict[str, str]) -> ActionResponse:
        return ActionResponse.ok("Configuration loaded", **self.hitch.get_config())

    def save_hitch_config(self, params: Dict[str, str]) -> ActionResponse:
        return ActionResponse.ok(self.hitch.save_config(params.get("content", "")))

    def list_certificates(self, params: Dict[str, str]) -> ActionResponse:
        certificates = [info.model_dump() for info in self.hitch.list_certificates()]
        return ActionResponse.ok(f"{len(certificates)} certificate(s)", certificates=certificates)

    def get_logs(self, params: Dict[str, str]) -> ActionResponse:
        service = params.get("service") or "varnish"
        if service not in LOG_SERVICES:
            raise InvalidInput(f"Unknown service: {service}")
        lines = _int_param(params, "lines", 100)
        source = self.varnish if service == "varnish" else self.hitch
        entries = [entry.model_dump(mode="json") for entry in source.logs(lines)]
        return ActionResponse.ok(f"{len(entries)} log entries", logs=entries)


def build_admin_dispatcher(
    config: Config, tools: SystemTools, tokens: TokenStore, session_key: str
) -> ActionDispatcher:
    """Create the dispatcher for the WHM front-end."""
    actions = AdminActions(config, tools)
    dispatcher = ActionDispatcher(tokens, session_key)

    dispatcher.register("get_stats", actions.get_stats)
    dispatcher.register("get_analytics", actions.get_analytics)
    dispatcher.register("get_config", actions.get_config)
    dispatcher.register("get_hitch_config", actions.get_hitch_config)
    dispatcher.register("get_hitch_stats", actions.get_hitch_stats)
    dispatcher.register("test_hitch_backend", actions.test_hitch_backend)
    dispatcher.register("list_certificates", actions.list_certificates)
    dispatcher.register("get_logs", actions.get_logs)

    dispatcher.register("purge_cache", actions.purge_cache, mutating=True)
    dispatcher.register("purge_all", actions.purge_all, mutating=True)
    dispatcher.register("restart_varnish", actions.restart_varnish, mutating=True)
    dispatcher.register("restart_hitch", actions.restart_hitch, mutating=True)
    dispatcher.register("save_config", actions.save_config, mutating=True)
    dispatcher.register("save_hitch_config", actions.save_hitch_config, mutating=True)

    return dispatcher
