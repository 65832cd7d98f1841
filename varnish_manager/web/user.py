"""cPanel end-user actions, restricted to the caller's domains."""

from typing import Dict

from ..adapters import SystemTools
from ..exceptions import InvalidInput
from ..models import ActionResponse
from ..services import UserCacheService
from ..utils.config import Config
from .dispatcher import ActionDispatcher
from .tokens import TokenStore


class UserActions:
    """Handlers for the cPanel front-end of one user."""

    def __init__(self, config: Config, tools: SystemTools, user: str):
        self.service = UserCacheService(config, tools)
        self.user = user

    def _domain(self, params: Dict[str, str]) -> str:
        domain = params.get("domain", "")
        if not domain:
            raise InvalidInput("domain is required")
        return domain

    def get_domains(self, params: Dict[str, str]) -> ActionResponse:
        domains = self.service.user_domains(self.user)
        return ActionResponse.ok(f"{len(domains)} domain(s)", domains=domains)

    def purge_url(self, params: Dict[str, str]) -> ActionResponse:
        return ActionResponse.ok(self.service.purge_url(self.user, params.get("url", "")))

    def purge_domain(self, params: Dict[str, str]) -> ActionResponse:
        return ActionResponse.ok(self.service.purge_domain(self.user, self._domain(params)))

    def purge_pattern(self, params: Dict[str, str]) -> ActionResponse:
        message = self.service.purge_pattern(self.user, self._domain(params), params.get("pattern", ""))
        return ActionResponse.ok(message)

    def get_domain_stats(self, params: Dict[str, str]) -> ActionResponse:
        stats = self.service.domain_stats(self.user, self._domain(params))
        data = stats.model_dump()
        data["hit_rate"] = round(stats.hit_rate, 2)
        return ActionResponse.ok("Domain statistics loaded", **data)

    def get_url_stats(self, params: Dict[str, str]) -> ActionResponse:
        urls = self._url_rows(self.service.url_stats(self.user, self._domain(params)))
        return ActionResponse.ok(f"{len(urls)} URL(s)", urls=urls)

    def get_real_time_stats(self, params: Dict[str, str]) -> ActionResponse:
        data = self.service.real_time_stats(self.user, self._domain(params))
        return ActionResponse.ok("Real-time statistics loaded", **data)

    def get_top_urls(self, params: Dict[str, str]) -> ActionResponse:
        limit = (params.get("limit") or "20").strip()
        if not limit.isdigit():
            raise InvalidInput("limit must be a number")
        urls = self._url_rows(self.service.top_urls(self.user, self._domain(params), int(limit)))
        return ActionResponse.ok(f"{len(urls)} URL(s)", urls=urls)

    def _url_rows(self, stats) -> list:
        rows = []
        for entry in stats:
            row = entry.model_dump()
            row["hit_rate"] = round(entry.hit_rate, 2)
            rows.append(row)
        return rows


def build_user_dispatcher(
    config: Config, tools: SystemTools, tokens: TokenStore, session_key: str, user: str
) -> ActionDispatcher:
    """Create the dispatcher for the cPanel front-end."""
    actions = UserActions(config, tools, user)
    dispatcher = ActionDispatcher(tokens, session_key)

    dispatcher.register("get_domains", actions.get_domains)
    dispatcher.register("get_domain_stats", actions.get_domain_stats)
    dispatcher.register("get_url_stats", actions.get_url_stats)
    dispatcher.register("get_real_time_stats", actions.get_real_time_stats)
    dispatcher.register("get_top_urls", actions.get_top_urls)

    dispatcher.register("purge_url", actions.purge_url, mutating=True)
    dispatcher.register("purge_domain", actions.purge_domain, mutating=True)
    dispatcher.register("purge_pattern", actions.purge_pattern, mutating=True)

    return dispatcher
