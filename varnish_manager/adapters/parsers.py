"""Parsers for external tool output and third-party configuration text.

Every regular expression that interprets free text from systemctl, ss,
varnishstat, varnishlog, journalctl, openssl or Apache lives here; the rest
of the package only sees typed models.
"""

import json
import logging
import re
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from ..models import CertificateInfo, LogEntry, RequestRecord, SocketListener, VarnishStats

logger = logging.getLogger(__name__)

_SYSTEMD_TIMESTAMP = re.compile(r"(\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2})")
_SS_PROCESS = re.compile(r'users:\(\("([^"]+)"')
_VARNISHLOG_BEGIN = re.compile(r"^\*\s+<<\s+Request\s+>>")
_VARNISHLOG_RECORD = re.compile(r"^(-+)\s+(\w+)\s*(.*)$")
_TIMESTAMP_FIELDS = re.compile(r"^(\w+):\s+([\d.]+)\s+([\d.]+)\s+([\d.]+)")
_VERSION = re.compile(r"(\d+\.\d+\.\d+)")
_OPENSSL_CN = re.compile(r"CN\s*=\s*([^,/\n]+)")
_HITCH_SETTING = re.compile(r'^\s*([a-z][a-z0-9-]*)\s*=\s*"?([^"\n]*)"?\s*$', re.MULTILINE)
_EXEC_PORT = re.compile(r"-a\s+:(\d+)")
_EXEC_MEMORY = re.compile(r"-s\s+malloc,(\d+[kKmMgG])")
_VHOST_BLOCK = re.compile(r"<VirtualHost\b[^>]*>(.*?)</VirtualHost>", re.IGNORECASE | re.DOTALL)
_APACHE_DIRECTIVE = r"^\s*{name}\s+\"?([^\s\"]+)\"?"

VARNISHSTAT_FIELDS = {
    "cache_hits": "MAIN.cache_hit",
    "cache_misses": "MAIN.cache_miss",
    "client_requests": "MAIN.client_req",
    "client_connections": "MAIN.sess_conn",
    "backend_connections": "MAIN.backend_conn",
    "backend_failures": "MAIN.backend_fail",
    "objects_in_cache": "MAIN.n_object",
    "bytes_allocated": "SMA.s0.g_bytes",
    "bytes_free": "SMA.s0.g_space",
    "sessions_dropped": "MAIN.sess_drop",
    "threads_created": "MAIN.threads_created",
    "threads_destroyed": "MAIN.threads_destroyed",
    "uptime_seconds": "MAIN.uptime",
}


def parse_active_timestamp(value: str) -> Optional[datetime]:
    """Parse systemctl's ActiveEnterTimestamp (``@epoch`` or human form)."""
    value = value.strip()
    if not value or value == "n/a":
        return None
    if value.startswith("@"):
        try:
            return datetime.fromtimestamp(float(value[1:]))
        except ValueError:
            return None
    match = _SYSTEMD_TIMESTAMP.search(value)
    if not match:
        return None
    return datetime.strptime(match.group(1), "%Y-%m-%d %H:%M:%S")


def parse_socket_table(text: str) -> List[SocketListener]:
    """Parse ``ss -Htlnp`` output into listening sockets."""
    listeners: List[SocketListener] = []
    for line in text.splitlines():
        fields = line.split()
        if len(fields) < 4 or fields[0] != "LISTEN":
            continue
        local = fields[3]
        address, _, port = local.rpartition(":")
        if not port.isdigit():
            continue
        match = _SS_PROCESS.search(line)
        listeners.append(
            SocketListener(
                address=address or "*",
                port=int(port),
                process=match.group(1) if match else None,
            )
        )
    return listeners


def parse_varnishstat(text: str) -> VarnishStats:
    """Parse ``varnishstat -1 -j`` output.

    Varnish 6.5+ nests counters under a ``counters`` key; older releases put
    them at the top level. Both layouts are accepted.
    """
    data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError("varnishstat output is not a JSON object")
    counters = data.get("counters", data)
    values: Dict[str, int] = {}
    for field, counter in VARNISHSTAT_FIELDS.items():
        entry = counters.get(counter)
        if isinstance(entry, dict):
            values[field] = int(entry.get("value", 0) or 0)
    return VarnishStats(**values)


def parse_varnishlog(text: str) -> List[RequestRecord]:
    """Reconstruct client requests from ``varnishlog -g request`` output.

    Only top-level records (single ``-`` prefix) are read, so nested backend
    transactions do not leak into the client request they belong to.
    """
    records: List[RequestRecord] = []
    current: Optional[RequestRecord] = None

    for line in text.splitlines():
        if _VARNISHLOG_BEGIN.match(line):
            current = RequestRecord()
            continue
        if current is None:
            continue

        match = _VARNISHLOG_RECORD.match(line)
        if not match or len(match.group(1)) != 1:
            continue
        tag, value = match.group(2), match.group(3).strip()

        if tag == "ReqMethod":
            current.method = value
        elif tag == "ReqURL":
            current.url = value
        elif tag == "ReqHeader" and value.lower().startswith("host:"):
            current.host = value.split(":", 1)[1].strip().lower()
        elif tag == "VCL_call" and value in ("HIT", "MISS", "PASS", "PIPE"):
            current.result = value.lower()
        elif tag == "RespHeader" and value.lower().startswith("content-length:"):
            length = value.split(":", 1)[1].strip()
            if length.isdigit():
                current.content_length = int(length)
        elif tag == "Timestamp":
            fields = _TIMESTAMP_FIELDS.match(value)
            if fields:
                event = fields.group(1)
                if event == "Start":
                    current.started_at = float(fields.group(2))
                elif event == "Resp":
                    current.response_time_ms = float(fields.group(3)) * 1000.0
        elif tag == "End":
            records.append(current)
            current = None

    return records


def parse_journal_json(text: str, source: str) -> List[LogEntry]:
    """Parse ``journalctl --output=json`` lines."""
    entries: List[LogEntry] = []
    for line in text.splitlines():
        if not line.strip():
            continue
        try:
            data = json.loads(line)
        except json.JSONDecodeError:
            logger.debug(f"Skipping unparsable journal line: {line[:80]}")
            continue
        micros = int(data.get("__REALTIME_TIMESTAMP", 0) or 0)
        message = data.get("MESSAGE", "")
        if isinstance(message, list):
            message = bytes(message).decode("utf-8", errors="replace")
        entries.append(
            LogEntry(
                timestamp=datetime.fromtimestamp(micros / 1_000_000),
                priority=int(data.get("PRIORITY", 6) or 6),
                message=message,
                source=source,
            )
        )
    return entries


def parse_version(text: str) -> str:
    """Extract the first x.y.z version number."""
    match = _VERSION.search(text)
    return match.group(1) if match else "unknown"


def parse_openssl_x509(text: str, path: str) -> CertificateInfo:
    """Parse ``openssl x509 -noout -subject -issuer -startdate -enddate`` output."""
    info = CertificateInfo(path=path)
    for line in text.splitlines():
        key, _, value = line.partition("=")
        key = key.strip().lower()
        value = value.strip()
        if key == "subject":
            match = _OPENSSL_CN.search(value)
            info.subject = match.group(1).strip() if match else value
        elif key == "issuer":
            match = _OPENSSL_CN.search(value)
            info.issuer = match.group(1).strip() if match else value
        elif key == "notbefore":
            info.valid_from = value
        elif key == "notafter":
            info.valid_to = value
    return info


def parse_hitch_config(text: str) -> Dict[str, object]:
    """Extract the interesting settings from hitch.conf."""
    config: Dict[str, object] = {"certificates": []}
    for key, value in _HITCH_SETTING.findall(text):
        if key == "pem-file":
            config["certificates"].append(value)
        elif key in ("frontend", "backend", "ciphers", "tls-protos", "user", "group"):
            config[key] = value
        elif key == "workers" and value.isdigit():
            config["workers"] = int(value)
    return config


def parse_varnish_service(text: str) -> Dict[str, str]:
    """Extract listen port and storage size from a varnishd ExecStart line."""
    settings: Dict[str, str] = {}
    for line in text.splitlines():
        if not line.startswith("ExecStart=") or line.strip() == "ExecStart=":
            continue
        port = _EXEC_PORT.search(line)
        if port:
            settings["port"] = port.group(1)
        memory = _EXEC_MEMORY.search(line)
        if memory:
            settings["memory"] = memory.group(1)
    return settings


def parse_apache_ssl_vhosts(text: str) -> List[Tuple[Optional[str], str, Optional[str]]]:
    """Return (ServerName, SSLCertificateFile, SSLCertificateKeyFile) per SSL vhost.

    Directives outside a VirtualHost block are reported with no server name.
    """
    results: List[Tuple[Optional[str], str, Optional[str]]] = []

    def directive(block: str, name: str) -> Optional[str]:
        match = re.search(_APACHE_DIRECTIVE.format(name=name), block, re.IGNORECASE | re.MULTILINE)
        return match.group(1) if match else None

    for block in _VHOST_BLOCK.findall(text):
        cert = directive(block, "SSLCertificateFile")
        if cert:
            results.append((directive(block, "ServerName"), cert, directive(block, "SSLCertificateKeyFile")))

    outside = _VHOST_BLOCK.sub("", text)
    for match in re.finditer(
        _APACHE_DIRECTIVE.format(name="SSLCertificateFile"), outside, re.IGNORECASE | re.MULTILINE
    ):
        results.append((None, match.group(1), None))

    return results
