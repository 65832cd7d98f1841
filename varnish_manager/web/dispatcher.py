"""Named-action dispatch with token checks."""

import logging
from dataclasses import dataclass
from typing import Callable, Dict

from ..exceptions import AuthorizationError, VarnishManagerError
from ..models import ActionResponse
from .tokens import TokenStore

logger = logging.getLogger(__name__)

Handler = Callable[[Dict[str, str]], ActionResponse]


@dataclass
class Action:
    """A registered action."""

    handler: Handler
    mutating: bool = False


class ActionDispatcher:
    """Maps action names to handlers; state-changing actions need a valid token."""

    def __init__(self, tokens: TokenStore, session_key: str):
        """
        Initialize dispatcher.

        Args:
            tokens: Token store
            session_key: Server-side identity of the calling session
        """
        self.tokens = tokens
        self.session_key = session_key
        self.actions: Dict[str, Action] = {}

    def register(self, name: str, handler: Handler, mutating: bool = False) -> None:
        """Register a handler under an action name."""
        self.actions[name] = Action(handler=handler, mutating=mutating)

    def dispatch(self, name: str, params: Dict[str, str]) -> ActionResponse:
        """
        Run an action.

        The token is checked before the handler runs, so a rejected request
        never reaches the filesystem or the service manager.

        Args:
            name: Action name
            params: Request parameters

        Returns:
            Structured response
        """
        action = self.actions.get(name)
        if action is None:
            return ActionResponse.fail(f"Unknown action: {name}")

        if action.mutating:
            try:
                self.tokens.require(self.session_key, params.get("token"))
            except AuthorizationError as e:
                return ActionResponse.fail(str(e))

        try:
            return action.handler(params)
        except VarnishManagerError as e:
            logger.warning(f"Action {name} failed: {e}")
            return ActionResponse.fail(str(e))
        except (RuntimeError, OSError, ValueError) as e:
            logger.error(f"Action {name} failed: {e}")
            return ActionResponse.fail(str(e))
