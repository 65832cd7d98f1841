"""CGI entry points for the WHM and cPanel front-ends.

Without an ``action`` parameter the dashboard page is rendered with a freshly
issued token; with one, the action runs and a JSON response is returned.
"""

import logging
import os
import re
import sys
from typing import Dict, IO, Mapping, Optional, Tuple
from urllib.parse import parse_qs

from jinja2 import Environment, PackageLoader

from .. import __version__
from ..adapters import SystemTools
from ..models import ActionResponse
from ..utils.config import Config, load_config
from ..utils.logging import setup_logging
from .admin import build_admin_dispatcher
from .tokens import TokenStore
from .user import build_user_dispatcher

logger = logging.getLogger(__name__)

MAX_BODY = 1024 * 1024
SESSION_TOKEN = re.compile(r"/cpsess\d+")

Response = Tuple[str, str, str]


def parse_request(environ: Mapping[str, str], stdin: Optional[IO] = None) -> Dict[str, str]:
    """Merge query string and urlencoded POST body; first value wins per name."""
    raw = environ.get("QUERY_STRING", "")
    if environ.get("REQUEST_METHOD", "GET").upper() == "POST" and stdin is not None:
        length = environ.get("CONTENT_LENGTH", "") or "0"
        size = min(int(length), MAX_BODY) if length.isdigit() else 0
        body = stdin.read(size) if size else ""
        if isinstance(body, bytes):
            body = body.decode("utf-8", errors="replace")
        raw = f"{raw}&{body}" if raw else body

    params: Dict[str, str] = {}
    for key, values in parse_qs(raw, keep_blank_values=True).items():
        params[key] = values[0]
    return params


def session_key(environ: Mapping[str, str]) -> str:
    """Server-side identity of the calling cPanel/WHM session."""
    user = environ.get("REMOTE_USER", "")
    match = SESSION_TOKEN.search(environ.get("cp_security_token", "") or environ.get("SCRIPT_NAME", ""))
    session = match.group(0) if match else environ.get("REMOTE_ADDR", "")
    return f"{user}:{session}" if user else ""


def template_environment() -> Environment:
    """Jinja2 environment for the bundled dashboard templates."""
    return Environment(loader=PackageLoader("varnish_manager.web", "templates"), autoescape=True)


def _json(response: ActionResponse, status: str = "200 OK") -> Response:
    return status, "application/json", response.model_dump_json()


def handle_admin(config: Config, tools: SystemTools, environ: Mapping[str, str], stdin=None) -> Response:
    """Handle one WHM request."""
    if environ.get("REMOTE_USER") != "root":
        return _json(ActionResponse.fail("Access denied"), "403 Forbidden")

    tokens = TokenStore(config.state_dir)
    key = session_key(environ)
    params = parse_request(environ, stdin)
    action = params.get("action")

    if not action:
        page = template_environment().get_template("admin.html.j2").render(
            token=tokens.issue(key), version=__version__
        )
        return "200 OK", "text/html; charset=utf-8", page

    dispatcher = build_admin_dispatcher(config, tools, tokens, key)
    return _json(dispatcher.dispatch(action, params))


def handle_user(config: Config, tools: SystemTools, environ: Mapping[str, str], stdin=None) -> Response:
    """Handle one cPanel request."""
    user = environ.get("REMOTE_USER", "")
    if not user:
        return _json(ActionResponse.fail("Access denied"), "403 Forbidden")

    tokens = TokenStore(config.state_dir)
    key = session_key(environ)
    params = parse_request(environ, stdin)
    action = params.get("action")

    if not action:
        page = template_environment().get_template("user.html.j2").render(
            token=tokens.issue(key), user=user, version=__version__
        )
        return "200 OK", "text/html; charset=utf-8", page

    dispatcher = build_user_dispatcher(config, tools, tokens, key, user)
    return _json(dispatcher.dispatch(action, params))


def _emit(response: Response) -> None:
    status, content_type, body = response
    sys.stdout.write(f"Status: {status}\r\nContent-Type: {content_type}\r\n\r\n")
    sys.stdout.write(body)
    sys.stdout.flush()


def _main(handler) -> None:
    config = load_config()
    setup_logging(config.log_level)
    stdin = sys.stdin.buffer if hasattr(sys.stdin, "buffer") else sys.stdin
    _emit(handler(config, SystemTools(config), os.environ, stdin))


def admin_main() -> None:
    """CGI entry point for WHM (addon_varnish_manager.cgi)."""
    _main(handle_admin)


def user_main() -> None:
    """CGI entry point for cPanel (varnish_user.cgi)."""
    _main(handle_user)
