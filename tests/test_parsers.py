"""Test tool output parsers."""

import json
from datetime import datetime

import pytest

from varnish_manager.adapters import parsers
from varnish_manager.adapters import system as system_module
from varnish_manager.adapters.system import SystemTools

SS_OUTPUT = """\
LISTEN 0      1024         0.0.0.0:80        0.0.0.0:*    users:(("varnishd",pid=812,fd=7))
LISTEN 0      1024       127.0.0.1:4443      0.0.0.0:*    users:(("cache-main",pid=813,fd=9))
LISTEN 0      511             [::]:8080         [::]:*    users:(("httpd",pid=700,fd=4),("httpd",pid=701,fd=4))
LISTEN 0      128          0.0.0.0:22        0.0.0.0:*
"""

VARNISHLOG_OUTPUT = """\
*   << Request  >> 32770
-   Begin          req 32769 rxreq
-   Timestamp      Start: 1700000000.000000 0.000000 0.000000
-   ReqMethod      GET
-   ReqURL         /index.html
-   ReqHeader      Host: Example.com
-   VCL_call       RECV
-   VCL_call       HASH
-   VCL_call       HIT
-   RespHeader     Content-Length: 512
-   Timestamp      Resp: 1700000000.002000 0.002000 0.000100
-   End
*   << Request  >> 32772
-   Begin          req 32771 rxreq
-   Timestamp      Start: 1700000005.000000 0.000000 0.000000
-   ReqMethod      GET
-   ReqURL         /about/
-   ReqHeader      Host: example.com
-   VCL_call       MISS
-   Link           bereq 32773 fetch
-   RespHeader     Content-Length: 2048
-   Timestamp      Resp: 1700000005.150000 0.150000 0.000200
-   End
**  << BeReq    >> 32773
--  Begin          bereq 32772 fetch
--  BereqURL       /about/
--  VCL_call       BACKEND_FETCH
--  End
"""


def test_parse_socket_table() -> None:
    """Test listening sockets and their owners are extracted."""
    listeners = parsers.parse_socket_table(SS_OUTPUT)

    assert [(s.port, s.process) for s in listeners] == [
        (80, "varnishd"),
        (4443, "cache-main"),
        (8080, "httpd"),
        (22, None),
    ]
    assert listeners[2].address == "[::]"


def test_parse_varnishlog() -> None:
    """Test client requests are rebuilt from grouped varnishlog output."""
    records = parsers.parse_varnishlog(VARNISHLOG_OUTPUT)

    assert len(records) == 2
    first, second = records
    assert (first.host, first.url, first.method, first.result) == ("example.com", "/index.html", "GET", "hit")
    assert first.content_length == 512
    assert first.started_at == 1700000000.0
    assert round(first.response_time_ms, 3) == 2.0
    assert second.result == "miss"
    assert round(second.response_time_ms, 3) == 150.0


def test_parse_varnishstat_nested_counters() -> None:
    """Test the Varnish 6.5+ layout with a counters key."""
    data = {
        "version": 1,
        "counters": {
            "MAIN.cache_hit": {"value": 75},
            "MAIN.cache_miss": {"value": 25},
            "MAIN.uptime": {"value": 50},
            "SMA.s0.g_bytes": {"value": 256},
            "SMA.s0.g_space": {"value": 768},
        },
    }
    stats = parsers.parse_varnishstat(json.dumps(data))

    assert stats.cache_hits == 75
    assert stats.hit_rate == 75.0
    assert stats.memory_usage_percent == 25.0
    assert stats.requests_per_second == 2.0


def test_parse_varnishstat_flat_layout() -> None:
    """Test the pre-6.5 flat layout."""
    data = {"timestamp": "2024-01-01T00:00:00", "MAIN.cache_hit": {"value": 3}, "MAIN.n_object": {"value": 9}}
    stats = parsers.parse_varnishstat(json.dumps(data))

    assert stats.cache_hits == 3
    assert stats.objects_in_cache == 9
    assert stats.hit_rate == 100.0


def test_parse_active_timestamp() -> None:
    """Test systemd timestamps in human and epoch form."""
    assert parsers.parse_active_timestamp("Mon 2024-05-06 10:11:12 UTC") == datetime(2024, 5, 6, 10, 11, 12)
    assert parsers.parse_active_timestamp("n/a") is None
    assert parsers.parse_active_timestamp("") is None


def test_parse_journal_json() -> None:
    """Test journal entries keep priority and message."""
    line = json.dumps({"__REALTIME_TIMESTAMP": "1700000000000000", "PRIORITY": "3", "MESSAGE": "boom"})
    entries = parsers.parse_journal_json(line + "\nnot json\n", source="varnish")

    assert len(entries) == 1
    assert entries[0].priority == 3
    assert entries[0].message == "boom"
    assert entries[0].source == "varnish"


def test_parse_openssl_x509() -> None:
    """Test subject and issuer common names are extracted."""
    text = (
        "subject=CN = example.com\n"
        "issuer=C = US, O = Let's Encrypt, CN = R3\n"
        "notBefore=Jan  1 00:00:00 2024 GMT\n"
        "notAfter=Apr  1 00:00:00 2024 GMT\n"
    )
    info = parsers.parse_openssl_x509(text, "/etc/hitch/certs/example.com.pem")

    assert info.subject == "example.com"
    assert info.issuer == "R3"
    assert info.valid_to == "Apr  1 00:00:00 2024 GMT"


def test_parse_version() -> None:
    """Test version extraction."""
    assert parsers.parse_version("varnishd (varnish-7.5.0 revision abc)") == "7.5.0"
    assert parsers.parse_version("nothing here") == "unknown"


def test_parse_apache_ssl_vhosts() -> None:
    """Test SSL vhosts and top-level certificate directives."""
    text = """
SSLCertificateFile /etc/pki/tls/certs/localhost.crt
<VirtualHost 1.2.3.4:443>
    ServerName example.com
    SSLCertificateFile /var/cpanel/ssl/apache_tls/example.com/combined
    SSLCertificateKeyFile "/var/cpanel/ssl/apache_tls/example.com/key"
</VirtualHost>
<VirtualHost 1.2.3.4:80>
    ServerName plain.example.com
</VirtualHost>
"""
    assert parsers.parse_apache_ssl_vhosts(text) == [
        (
            "example.com",
            "/var/cpanel/ssl/apache_tls/example.com/combined",
            "/var/cpanel/ssl/apache_tls/example.com/key",
        ),
        (None, "/etc/pki/tls/certs/localhost.crt", None),
    ]


@pytest.mark.parametrize("stdout", ["", "not json", "[1, 2]"])
def test_varnishstat_unreadable_output(config, monkeypatch, stdout) -> None:
    """Test garbage from varnishstat is reported as a runtime error."""
    monkeypatch.setattr(system_module, "run_command", lambda cmd, **kwargs: (0, stdout, ""))

    with pytest.raises(RuntimeError, match="unreadable output"):
        SystemTools(config).varnishstat()
