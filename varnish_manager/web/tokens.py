"""Session-bound security tokens for state-changing actions."""

import hashlib
import hmac
import logging
import os
import re
import secrets
from pathlib import Path
from typing import Optional

from ..exceptions import AuthorizationError

logger = logging.getLogger(__name__)

TOKEN_PATTERN = re.compile(r"^[0-9a-f]{32}$")


class TokenStore:
    """Issues one random token per session and checks presented tokens against it.

    Tokens live in 0600 files under the state directory, named by a hash of the
    session key, so a token is only valid for the session it was issued to.
    """

    def __init__(self, state_dir: Path):
        """
        Initialize token store.

        Args:
            state_dir: Directory holding the token files
        """
        self.directory = Path(state_dir) / "tokens"

    def _path(self, session_key: str) -> Path:
        if not session_key:
            raise AuthorizationError("No session")
        digest = hashlib.sha256(session_key.encode("utf-8")).hexdigest()
        return self.directory / digest

    def issue(self, session_key: str) -> str:
        """
        Create a fresh token for a session, replacing any previous one.

        Args:
            session_key: Server-side session identity

        Returns:
            32 lowercase hex characters
        """
        path = self._path(session_key)
        self.directory.mkdir(parents=True, exist_ok=True, mode=0o700)
        token = secrets.token_hex(16)

        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w") as f:
            f.write(token)
        os.chmod(path, 0o600)
        return token

    def issued(self, session_key: str) -> Optional[str]:
        """Return the token issued to a session, if any."""
        path = self._path(session_key)
        if not path.is_file():
            return None
        return path.read_text().strip()

    def validate(self, session_key: str, token: Optional[str]) -> bool:
        """
        Check a presented token.

        Args:
            session_key: Server-side session identity
            token: Token sent by the browser

        Returns:
            True only for a well-formed token equal to the one issued to this session
        """
        if not token or not TOKEN_PATTERN.match(token):
            return False
        try:
            expected = self.issued(session_key)
        except AuthorizationError:
            return False
        if not expected:
            return False
        return hmac.compare_digest(expected, token)

    def require(self, session_key: str, token: Optional[str]) -> None:
        """Raise AuthorizationError unless the token is valid for the session."""
        if not self.validate(session_key, token):
            logger.warning("Rejected request with invalid security token")
            raise AuthorizationError("Invalid security token")
