"""Configuration generator for Varnish, Hitch and the varnishd systemd drop-in.

Rendering is a pure function of a validated parameter model: no I/O, no
timestamps. Every value that ends up in the output passes a strict pattern
first, so a rejected value never reaches the rendered text.
"""

import re
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from ..models import PortPlan
from ..utils.config import Config

SAFE_PATH = r"^/[A-Za-z0-9_./-]+$"
HOSTNAME = r"^[A-Za-z0-9]([A-Za-z0-9.-]{0,251}[A-Za-z0-9])?$"
ACL_ENTRY = r"^(localhost|\d{1,3}(\.\d{1,3}){3}(/\d{1,2})?|[0-9A-Fa-f:]{2,39}(/\d{1,3})?)$"
MEMORY = r"^\d+[kKmMgG]$"
DURATION = r"^\d+[smhdw]$"
CIPHERS = r"^[A-Za-z0-9_:+!@.=-]+$"
PROTOCOLS = r"^TLSv1\.[0-3]( TLSv1\.[0-3])*$"
ACCOUNT = r"^[a-z_][a-z0-9_-]{0,31}$"


def _port(value):
    """Accept ints or digit-only strings."""
    if isinstance(value, bool):
        raise ValueError("port must be a number")
    if isinstance(value, str):
        if not value.isdigit():
            raise ValueError(f"port must contain digits only: {value!r}")
        return int(value)
    if not isinstance(value, int):
        raise ValueError(f"port must be an integer: {value!r}")
    return value


class VarnishParams(BaseModel):
    """Parameters of the VCL and the varnishd command line."""

    backend_host: str = Field("127.0.0.1", pattern=HOSTNAME)
    backend_port: int = Field(8080, ge=1, le=65535)
    listen_port: int = Field(80, ge=1, le=65535)
    proxy_port: int = Field(4443, ge=1, le=65535)
    memory: str = Field("256m", pattern=MEMORY)
    purge_acl: List[str] = Field(default_factory=lambda: ["localhost", "127.0.0.1"])
    static_ttl: str = Field("7d", pattern=DURATION)
    default_ttl: str = Field("1h", pattern=DURATION)
    vcl_path: str = Field("/etc/varnish/default.vcl", pattern=SAFE_PATH)
    varnishd_path: str = Field("/usr/sbin/varnishd", pattern=SAFE_PATH)

    @field_validator("backend_port", "listen_port", "proxy_port", mode="before")
    @classmethod
    def validate_port(cls, v):
        """Reject anything but digits."""
        return _port(v)

    @field_validator("purge_acl")
    @classmethod
    def validate_acl(cls, v: List[str]) -> List[str]:
        """Every ACL source must be localhost, an IP or a CIDR."""
        if not v:
            raise ValueError("purge ACL must not be empty")
        for entry in v:
            if not re.match(ACL_ENTRY, entry):
                raise ValueError(f"Invalid ACL source: {entry!r}")
        return v

    class Config:
        """Pydantic configuration."""

        frozen = True


class TlsParams(BaseModel):
    """Parameters of hitch.conf."""

    frontend_port: int = Field(443, ge=1, le=65535)
    backend_port: int = Field(4443, ge=1, le=65535)
    ciphers: str = Field(pattern=CIPHERS)
    protocols: str = Field("TLSv1.2 TLSv1.3", pattern=PROTOCOLS)
    pem_files: List[str] = Field(default_factory=list)
    workers: int = Field(4, ge=1, le=256)
    user: str = Field("hitch", pattern=ACCOUNT)
    group: str = Field("hitch", pattern=ACCOUNT)

    @field_validator("frontend_port", "backend_port", mode="before")
    @classmethod
    def validate_port(cls, v):
        """Reject anything but digits."""
        return _port(v)

    @field_validator("pem_files")
    @classmethod
    def validate_pem_files(cls, v: List[str]) -> List[str]:
        """PEM paths must be absolute and use the safe character set."""
        for path in v:
            if not re.match(SAFE_PATH, path):
                raise ValueError(f"Invalid PEM path: {path!r}")
        return v

    class Config:
        """Pydantic configuration."""

        frozen = True


def varnish_params(config: Config, ports: Optional[PortPlan] = None) -> VarnishParams:
    """Build VarnishParams from configuration and a port plan."""
    ports = ports or config.default_plan().ports
    return VarnishParams(
        backend_host=config.backend_host,
        backend_port=ports.backend_http_port,
        listen_port=ports.http_port,
        proxy_port=ports.internal_proxy_port,
        memory=config.varnish_memory,
        purge_acl=list(config.purge_acl),
        vcl_path=str(config.vcl_path),
        varnishd_path=str(config.varnishd_path),
    )


def tls_params(config: Config, pem_files: List[str], ports: Optional[PortPlan] = None) -> TlsParams:
    """Build TlsParams from configuration, a port plan and the PEM list."""
    ports = ports or config.default_plan().ports
    return TlsParams(
        frontend_port=ports.https_port,
        backend_port=ports.internal_proxy_port,
        ciphers=config.ciphers,
        protocols=config.tls_protocols,
        pem_files=list(pem_files),
        workers=config.hitch_workers,
        user=config.hitch_user,
        group=config.hitch_group,
    )


def _acl_line(entry: str) -> str:
    if "/" in entry:
        address, bits = entry.split("/", 1)
        return f'    "{address}"/{bits};'
    return f'    "{entry}";'


# =============================================================================
# TEMPLATE GENERATORS
# =============================================================================
def render_cache_config(params: VarnishParams) -> str:
    """Render the VCL 4.1 configuration."""
    acl = "\n".join(_acl_line(entry) for entry in params.purge_acl)

    return f'''vcl 4.1;

import std;
import proxy;

# =============================================================================
# BACKEND DEFINITIONS
# =============================================================================
backend default {{
    .host = "{params.backend_host}";
    .port = "{params.backend_port}";
    .connect_timeout = 5s;
    .first_byte_timeout = 60s;
    .between_bytes_timeout = 10s;
}}

# ACL for purge requests
acl purge {{
{acl}
}}

# =============================================================================
# REQUEST HANDLING
# =============================================================================
sub vcl_recv {{
    # Hitch forwards TLS connections over the PROXY protocol
    if (proxy.is_ssl()) {{
        set req.http.X-Forwarded-Proto = "https";
    }} else {{
        set req.http.X-Forwarded-Proto = "http";
    }}

    # Handle purge requests
    if (req.method == "PURGE") {{
        if (!client.ip ~ purge) {{
            return (synth(405, "Method not allowed"));
        }}
        return (purge);
    }}

    # Only cache GET and HEAD
    if (req.method != "GET" && req.method != "HEAD") {{
        return (pass);
    }}

    # cPanel, WHM and webmail interfaces
    if (req.url ~ "^/(cpanel|whm|webmail)" || req.http.host ~ "^(cpanel|whm|webmail)\\.") {{
        return (pass);
    }}

    # WordPress: never cache admin, login, cron
    if (req.url ~ "wp-admin|wp-login|wp-cron|xmlrpc\\.php|preview=true") {{
        return (pass);
    }}

    # Never cache if logged in
    if (req.http.Cookie ~ "wordpress_logged_in|wordpress_sec_|wp-postpass_|comment_author_") {{
        return (pass);
    }}

    # Don't cache cart/checkout (WooCommerce)
    if (req.url ~ "cart|checkout|my-account|add-to-cart|logout") {{
        return (pass);
    }}

    # Static files - always cache
    if (req.url ~ "\\.(css|js|jpg|jpeg|png|gif|ico|svg|woff|woff2|ttf|eot|webp|avif|pdf)(\\?.*)?$") {{
        unset req.http.Cookie;
        return (hash);
    }}

    # Remove tracking cookies
    if (req.http.Cookie) {{
        set req.http.Cookie = regsuball(req.http.Cookie, "(utm[a-z_]+|_ga[^=]*|_gid|_fbp)=[^;]+(; )?", "");
        if (req.http.Cookie ~ "^\\s*$") {{
            unset req.http.Cookie;
        }}
    }}

    return (hash);
}}

# =============================================================================
# BACKEND RESPONSE HANDLING
# =============================================================================
sub vcl_backend_response {{
    # Don't cache 5xx errors
    if (beresp.status >= 500) {{
        set beresp.ttl = 0s;
        set beresp.uncacheable = true;
        return (deliver);
    }}

    # Static files: cache longer
    if (bereq.url ~ "\\.(css|js|jpg|jpeg|png|gif|ico|svg|woff|woff2|ttf|eot|webp|avif|pdf)(\\?.*)?$") {{
        unset beresp.http.Set-Cookie;
        set beresp.ttl = {params.static_ttl};
    }} else if (beresp.ttl <= 0s) {{
        set beresp.ttl = {params.default_ttl};
    }}

    set beresp.grace = 6h;

    return (deliver);
}}

# =============================================================================
# RESPONSE DELIVERY
# =============================================================================
sub vcl_deliver {{
    if (obj.hits > 0) {{
        set resp.http.X-Cache = "HIT";
        set resp.http.X-Cache-Hits = obj.hits;
    }} else {{
        set resp.http.X-Cache = "MISS";
    }}

    unset resp.http.X-Powered-By;

    return (deliver);
}}
'''


def render_tls_config(params: TlsParams) -> str:
    """Render hitch.conf."""
    if params.pem_files:
        pem_lines = "\n".join(f'pem-file = "{path}"' for path in params.pem_files)
    else:
        pem_lines = '# pem-file = "/etc/hitch/certs/example.com.pem"'

    return f'''# Hitch TLS terminator configuration
frontend = "[*]:{params.frontend_port}"
backend = "[127.0.0.1]:{params.backend_port}"
workers = {params.workers}
daemon = on
user = "{params.user}"
group = "{params.group}"

# PROXY protocol towards Varnish
write-proxy-v2 = on

ciphers = "{params.ciphers}"
tls-protos = {params.protocols}
prefer-server-ciphers = on

{pem_lines}

# Timeouts and logging
backend-connect-timeout = 25
ssl-handshake-timeout = 25
syslog = on
log-level = 1
backlog = 100
keepalive = 3600
'''


def render_varnish_service(params: VarnishParams) -> str:
    """Render the systemd drop-in carrying the varnishd command line."""
    return f'''[Service]
ExecStart=
ExecStart={params.varnishd_path} -F -a :{params.listen_port} -a 127.0.0.1:{params.proxy_port},proxy -f {params.vcl_path} -s malloc,{params.memory}
'''
