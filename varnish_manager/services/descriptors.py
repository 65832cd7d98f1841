"""Managed service descriptors."""

from typing import Dict

from ..models import PortPlan, ServiceDescriptor
from ..utils.config import Config

VARNISH = "varnish"
HITCH = "hitch"
HTTPD = "httpd"


def build_descriptors(config: Config, ports: PortPlan) -> Dict[str, ServiceDescriptor]:
    """Build the descriptors of the three managed services.

    Args:
        config: Application configuration
        ports: Port assignments of the current plan

    Returns:
        Mapping of service name to descriptor, in start order
    """
    return {
        VARNISH: ServiceDescriptor(
            name=VARNISH,
            unit_name="varnish",
            listen_ports=frozenset({ports.http_port, ports.internal_proxy_port}),
            config_path=str(config.vcl_path),
            validate_command=(str(config.varnishd_path), "-C", "-f", "{config}"),
            process_names=("varnishd", "cache-main"),
        ),
        HITCH: ServiceDescriptor(
            name=HITCH,
            unit_name="hitch",
            listen_ports=frozenset({ports.https_port}),
            config_path=str(config.hitch_config_path),
            validate_command=("hitch", "--config={config}", "--test"),
            process_names=("hitch",),
        ),
        HTTPD: ServiceDescriptor(
            name=HTTPD,
            unit_name="httpd",
            listen_ports=frozenset({ports.backend_http_port, ports.backend_https_port}),
            config_path=str(config.httpd_conf_path),
            validate_command=("httpd", "-t"),
            process_names=("httpd",),
        ),
    }
