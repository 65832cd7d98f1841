"""Configuration management."""

import os
from pathlib import Path
from typing import List, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field

from ..models import InstallPlan, PortPlan, Target

DEFAULT_CIPHERS = (
    "ECDHE-ECDSA-AES256-GCM-SHA384:ECDHE-RSA-AES256-GCM-SHA384:"
    "ECDHE-ECDSA-CHACHA20-POLY1305:ECDHE-RSA-CHACHA20-POLY1305:"
    "ECDHE-ECDSA-AES128-GCM-SHA256:ECDHE-RSA-AES128-GCM-SHA256"
)


class Config(BaseModel):
    """Application configuration."""

    # Ports
    varnish_port: int = Field(80, ge=1, le=65535, description="Varnish public HTTP port")
    hitch_port: int = Field(443, ge=1, le=65535, description="Hitch public HTTPS port")
    apache_port: int = Field(8080, ge=1, le=65535, description="Apache backend HTTP port")
    apache_ssl_port: int = Field(8443, ge=1, le=65535, description="Apache backend HTTPS port")
    hitch_backend_port: int = Field(4443, ge=1, le=65535, description="Varnish PROXY port used by Hitch")

    # Varnish
    backend_host: str = Field("127.0.0.1", description="Address Varnish forwards to")
    varnish_memory: str = Field("256m", pattern=r"^\d+[kKmMgG]$", description="malloc storage size")
    purge_acl: List[str] = Field(
        default_factory=lambda: ["localhost", "127.0.0.1"], description="Addresses allowed to PURGE"
    )
    vcl_path: Path = Field(Path("/etc/varnish/default.vcl"), description="VCL file")
    varnish_service_override: Path = Field(
        Path("/etc/systemd/system/varnish.service.d/varnish-manager.conf"),
        description="systemd drop-in carrying the varnishd command line",
    )
    varnishd_path: Path = Field(Path("/usr/sbin/varnishd"), description="varnishd binary")
    varnish_instance: Optional[str] = Field(None, description="varnishlog/varnishstat -n instance")
    varnish_repo_script_url: str = Field(
        "https://packagecloud.io/install/repositories/varnishcache/varnish75/script.rpm.sh",
        description="Repository setup script for Varnish 7.5",
    )
    varnishlog_limit: int = Field(1000, gt=0, description="Transactions read per varnishlog query")

    # Hitch
    hitch_config_path: Path = Field(Path("/etc/hitch/hitch.conf"), description="hitch.conf")
    cert_output_dir: Path = Field(Path("/etc/hitch/certs"), description="Combined PEM directory")
    hitch_user: str = Field("hitch", description="Hitch service account")
    hitch_group: str = Field("hitch", description="Hitch service group")
    hitch_home: Path = Field(Path("/var/lib/hitch"), description="Hitch account home")
    hitch_workers: int = Field(4, gt=0, description="Hitch worker processes")
    ciphers: str = Field(DEFAULT_CIPHERS, description="Hitch cipher list")
    tls_protocols: str = Field("TLSv1.2 TLSv1.3", description="Hitch ssl-protocols")
    cert_search_dirs: List[Path] = Field(
        default_factory=lambda: [
            Path("/var/cpanel/ssl/installed/certs"),
            Path("/etc/ssl/certs"),
            Path("/etc/pki/tls/certs"),
        ],
        description="Well-known certificate directories",
    )
    key_search_dirs: List[Path] = Field(
        default_factory=lambda: [
            Path("/var/cpanel/ssl/installed/keys"),
            Path("/etc/ssl/private"),
            Path("/etc/pki/tls/private"),
        ],
        description="Directories searched for matching private keys",
    )

    # cPanel / Apache
    cpanel_root: Path = Field(Path("/usr/local/cpanel"), description="cPanel installation root")
    cpanel_config_path: Path = Field(Path("/var/cpanel/cpanel.config"), description="cpanel.config")
    cpanel_users_dir: Path = Field(Path("/var/cpanel/users"), description="cPanel user files")
    cpanel_features_file: Path = Field(Path("/var/cpanel/features/default"), description="Default feature list")
    cpanel_apps_dir: Path = Field(Path("/var/cpanel/apps"), description="AppConfig directory")
    cpanel_scripts_dir: Path = Field(Path("/scripts"), description="cPanel maintenance scripts")
    whm_cgi_dir: Path = Field(
        Path("/usr/local/cpanel/whostmgr/docroot/cgi"), description="WHM add-on CGI directory"
    )
    cpanel_plugin_dir: Path = Field(
        Path("/usr/local/cpanel/base/frontend/jupiter/varnish_user"),
        description="cPanel plugin directory",
    )
    httpd_conf_path: Path = Field(Path("/etc/apache2/conf/httpd.conf"), description="Apache config")
    os_release_markers: List[Path] = Field(
        default_factory=lambda: [Path("/etc/redhat-release"), Path("/etc/centos-release")],
        description="Files identifying a supported RHEL-family OS",
    )

    # Service start policy
    start_attempts: int = Field(3, gt=0, description="Start attempts per service")
    start_backoff: float = Field(5.0, ge=0, description="Seconds between start attempts")
    diagnostic_lines: int = Field(20, gt=0, description="Journal lines attached to failures")
    journal_scan_lines: int = Field(5000, gt=0, description="Journal entries scanned for Hitch statistics")

    # Paths
    state_dir: Path = Field(Path("/var/lib/varnish-manager"), description="Session tokens and state")
    log_dir: Path = Field(Path("/var/log"), description="Installation log directory")
    backup_root: Path = Field(Path("/root"), description="Parent of per-run backup directories")
    python_executable: str = Field("/usr/bin/python3", description="Interpreter used by CGI wrappers")

    # Logging
    log_level: str = Field("INFO", description="Logging level")

    class Config:
        """Pydantic configuration."""

        validate_assignment = True

    def default_plan(self, targets: Optional[List[Target]] = None) -> InstallPlan:
        """Build an install plan from the configured ports."""
        ports = PortPlan(
            http_port=self.varnish_port,
            https_port=self.hitch_port,
            backend_http_port=self.apache_port,
            backend_https_port=self.apache_ssl_port,
            internal_proxy_port=self.hitch_backend_port,
        )
        if targets is None:
            return InstallPlan(ports=ports)
        return InstallPlan(targets=frozenset(targets), ports=ports)


def load_config() -> Config:
    """Load configuration from environment variables."""
    # Load .env file if it exists
    env_file = Path(".env")
    if env_file.exists():
        load_dotenv(env_file)

    config_dict = {
        "varnish_port": int(os.getenv("VARNISH_PORT", "80")),
        "hitch_port": int(os.getenv("HITCH_PORT", "443")),
        "apache_port": int(os.getenv("APACHE_PORT", "8080")),
        "apache_ssl_port": int(os.getenv("APACHE_SSL_PORT", "8443")),
        "hitch_backend_port": int(os.getenv("HITCH_BACKEND_PORT", "4443")),
        "backend_host": os.getenv("BACKEND_HOST", "127.0.0.1"),
        "varnish_memory": os.getenv("VARNISH_MEMORY", "256m"),
        "purge_acl": _get_list_env("PURGE_ACL", ["localhost", "127.0.0.1"]),
        "vcl_path": Path(os.getenv("VCL_PATH", "/etc/varnish/default.vcl")),
        "varnish_instance": os.getenv("VARNISH_INSTANCE") or None,
        "hitch_config_path": Path(os.getenv("HITCH_CONFIG", "/etc/hitch/hitch.conf")),
        "cert_output_dir": Path(os.getenv("HITCH_CERT_DIR", "/etc/hitch/certs")),
        "hitch_user": os.getenv("HITCH_USER", "hitch"),
        "hitch_group": os.getenv("HITCH_GROUP", "hitch"),
        "ciphers": os.getenv("HITCH_CIPHERS", DEFAULT_CIPHERS),
        "httpd_conf_path": Path(os.getenv("HTTPD_CONF", "/etc/apache2/conf/httpd.conf")),
        "cpanel_config_path": Path(os.getenv("CPANEL_CONFIG", "/var/cpanel/cpanel.config")),
        "start_attempts": int(os.getenv("START_ATTEMPTS", "3")),
        "start_backoff": float(os.getenv("START_BACKOFF", "5")),
        "state_dir": Path(os.getenv("STATE_DIR", "/var/lib/varnish-manager")),
        "log_dir": Path(os.getenv("INSTALL_LOG_DIR", "/var/log")),
        "backup_root": Path(os.getenv("BACKUP_ROOT", "/root")),
        "log_level": os.getenv("LOG_LEVEL", "INFO"),
    }

    return Config(**config_dict)


def _get_list_env(key: str, default: List[str]) -> List[str]:
    """Get a comma-separated list from an environment variable."""
    value = os.getenv(key)
    if not value:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]


def load_plan(path: Path) -> InstallPlan:
    """Load an install plan (targets and ports) from a YAML file."""
    with open(path, "r") as f:
        data = yaml.safe_load(f) or {}
    return InstallPlan.model_validate(data)
