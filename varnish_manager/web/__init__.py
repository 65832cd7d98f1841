"""CGI front-ends."""

from .dispatcher import ActionDispatcher
from .tokens import TokenStore

__all__ = ["ActionDispatcher", "TokenStore"]
