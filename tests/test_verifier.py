"""Test verification reporter."""

from varnish_manager.models import FailureSignature, SocketListener, Target
from varnish_manager.services import Verifier


def signatures(report):
    return {(issue.service, issue.signature, issue.port) for issue in report.issues}


def test_verify_healthy(config, tools, probe) -> None:
    """Test all services running on their ports give a healthy report."""
    tools.active.update({"varnish", "hitch", "httpd"})

    report = Verifier(config, probe).verify(config.default_plan())

    assert report.healthy
    assert [s.name for s in report.services] == ["varnish", "hitch", "httpd"]
    assert all(report.ports.values())


def test_verify_nothing_running(config, tools, probe) -> None:
    """Test every stopped service is reported with a start hint."""
    report = Verifier(config, probe).verify(config.default_plan())

    assert not report.healthy
    assert signatures(report) == {
        ("varnish", FailureSignature.NOT_RUNNING, 0),
        ("hitch", FailureSignature.NOT_RUNNING, 0),
        ("httpd", FailureSignature.NOT_RUNNING, 0),
    }
    hint = next(issue.hint for issue in report.issues if issue.service == "varnish")
    assert "journalctl -u varnish" in hint
    assert report.ports == {80: False, 443: False, 4443: False, 8080: False, 8443: False}


def test_verify_only_requested_targets(config, tools, probe) -> None:
    """Test Hitch is not checked when only Varnish was installed."""
    tools.active.update({"varnish", "httpd"})

    report = Verifier(config, probe).verify(config.default_plan([Target.VARNISH]))

    assert report.healthy
    assert [s.name for s in report.services] == ["varnish", "httpd"]


def test_verify_port_conflict(config, tools, probe) -> None:
    """Test a foreign process on port 80 is reported as a conflict."""
    tools.active.update({"hitch", "httpd"})
    tools.foreign_sockets.append(SocketListener(address="0.0.0.0", port=80, process="nginx"))

    report = Verifier(config, probe).verify(config.default_plan())

    assert ("varnish", FailureSignature.PORT_CONFLICT, 80) in signatures(report)
    hint = next(i.hint for i in report.issues if i.signature == FailureSignature.PORT_CONFLICT)
    assert "Port 80" in hint


def test_verify_config_invalid_takes_priority(config, tools, probe) -> None:
    """Test an invalid config is reported instead of not-running."""
    tools.active.update({"varnish", "httpd"})
    tools.invalid_configs.add("hitch")

    report = Verifier(config, probe).verify(config.default_plan())

    assert signatures(report) == {("hitch", FailureSignature.CONFIG_INVALID, 0)}


def test_verify_tool_missing(config, tools, probe) -> None:
    """Test a missing binary is reported with an install hint."""
    tools.active.update({"varnish", "hitch", "httpd"})
    tools.missing_tools.add("hitch")

    report = Verifier(config, probe).verify(config.default_plan())

    assert signatures(report) == {("hitch", FailureSignature.TOOL_MISSING, 0)}
    assert "dnf install hitch" in report.issues[0].hint


def test_verify_running_but_not_listening(config, tools, probe, monkeypatch) -> None:
    """Test a running service without its socket is flagged per port."""
    tools.active.update({"varnish", "hitch", "httpd"})
    real = tools.listening_sockets
    monkeypatch.setattr(tools, "listening_sockets", lambda: [s for s in real() if s.port != 4443])

    report = Verifier(config, probe).verify(config.default_plan())

    assert signatures(report) == {("varnish", FailureSignature.PORT_NOT_LISTENING, 4443)}


def test_verify_plugins_only_keeps_apache_on_public_ports(config, tools, probe) -> None:
    """Test Apache is expected on 80/443 when Varnish is not in front of it."""
    tools.active.add("httpd")
    tools.unit_sockets["httpd"] = [(80, "httpd"), (443, "httpd")]

    report = Verifier(config, probe).verify(config.default_plan([Target.PLUGINS]))

    assert report.healthy
    assert [s.name for s in report.services] == ["httpd"]
    assert report.ports == {80: True, 443: True}
