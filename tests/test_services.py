"""Test Varnish, Hitch, plugin and uninstall services."""

import stat

import pytest
import yaml

from varnish_manager.exceptions import ConfigValidationFailed, InvalidInput
from varnish_manager.models import HitchStats, LogEntry, StepOutcome
from varnish_manager.services import HitchService, PluginInstaller, Uninstaller, VarnishService
from varnish_manager.services.varnish import parse_timeframe, path_prefix_regex


def test_purge_whole_domain(config, tools) -> None:
    """Test purging '/' bans every object of the host."""
    VarnishService(config, tools).purge("example.com", "/")
    assert tools.bans == [["req.http.host", "==", "example.com"]]


def test_purge_path_prefix(config, tools) -> None:
    """Test purging a path bans URLs below it."""
    message = VarnishService(config, tools).purge("example.com", "/blog")
    assert message == "Cache purged for example.com/blog"
    assert tools.bans == [["req.http.host", "==", "example.com", "&&", "req.url", "~", "^/blog"]]


def test_purge_rejects_bad_input(config, tools) -> None:
    """Test domain and path are validated before varnishadm runs."""
    service = VarnishService(config, tools)
    with pytest.raises(InvalidInput):
        service.purge("exa mple.com")
    with pytest.raises(InvalidInput):
        service.purge("example.com", "blog")
    assert tools.bans == []


def test_purge_all(config, tools) -> None:
    """Test purging everything."""
    assert VarnishService(config, tools).purge_all() == "All cache purged"
    assert tools.bans == [["req.url", "~", "."]]


def test_parse_timeframe() -> None:
    """Test timeframe parsing."""
    assert parse_timeframe("24h") == 24
    assert parse_timeframe("7d") == 168
    with pytest.raises(InvalidInput):
        parse_timeframe("1w")
    with pytest.raises(InvalidInput):
        parse_timeframe("0h")


def test_analytics_counts_errors(config, tools) -> None:
    """Test analytics combine counters with journal events."""
    from datetime import datetime

    tools.journal = [
        LogEntry(timestamp=datetime.now(), priority=3, message="Backend fetch failed"),
        LogEntry(timestamp=datetime.now(), priority=6, message="Child starts"),
    ]

    summary = VarnishService(config, tools).analytics("7d")

    assert summary.hours == 168
    assert summary.error_events == 1
    assert summary.log_events == 2
    assert summary.stats.hit_rate == 75.0


def test_save_config_valid(config, tools) -> None:
    """Test a valid VCL is written and reloaded into a running Varnish."""
    tools.active.add("varnish")

    message = VarnishService(config, tools).save_config("vcl 4.1;\nbackend default { .host = \"127.0.0.1\"; }\n")

    assert message == "Configuration saved and reloaded"
    assert config.vcl_path.read_text().startswith("vcl 4.1;")
    assert ("reload", "varnish") in tools.calls


def test_save_config_invalid_restores_previous(config, tools) -> None:
    """Test a rejected VCL leaves the previous file in place."""
    config.vcl_path.parent.mkdir(parents=True)
    config.vcl_path.write_text("vcl 4.1; # working\n")
    tools.invalid_configs.add("varnishd")

    with pytest.raises(ConfigValidationFailed):
        VarnishService(config, tools).save_config("vcl 4.1; this is broken")

    assert config.vcl_path.read_text() == "vcl 4.1; # working\n"


def test_save_config_invalid_without_previous(config, tools) -> None:
    """Test a rejected VCL is removed when there was nothing before."""
    tools.invalid_configs.add("varnishd")

    with pytest.raises(ConfigValidationFailed):
        VarnishService(config, tools).save_config("broken")

    assert not config.vcl_path.exists()


def test_save_config_port_and_memory(config, tools) -> None:
    """Test changing port and memory rewrites the systemd drop-in."""
    service = VarnishService(config, tools)

    service.save_config("vcl 4.1;\n", port=8081, memory="1g")

    assert "-a :8081" in config.varnish_service_override.read_text()
    assert ("daemon-reload",) in tools.calls
    current = service.get_config()
    assert current["port"] == 8081
    assert current["memory"] == "1g"


def test_save_config_rejects_bad_memory(config, tools) -> None:
    """Test an invalid memory size is refused before anything is written."""
    with pytest.raises(InvalidInput):
        VarnishService(config, tools).save_config("vcl 4.1;\n", memory="lots")
    assert not config.vcl_path.exists()


def test_test_cache(config, tools) -> None:
    """Test the cache test reports MISS then HIT."""
    results = VarnishService(config, tools).test_cache("http://127.0.0.1/", host="example.com")
    assert [r["headers"]["X-Cache"] for r in results] == ["MISS", "HIT"]
    assert [r["request"] for r in results] == ["first", "second"]


def test_hitch_add_and_remove_certificate(config, tools, write_pair) -> None:
    """Test adding a certificate bundles it and references it in hitch.conf."""
    config.hitch_config_path.parent.mkdir(parents=True)
    config.hitch_config_path.write_text('frontend = "[*]:443"\n')
    cert = write_pair("shop.example.com")
    key = config.key_search_dirs[0] / "shop.example.com.key"
    service = HitchService(config, tools)

    bundle = service.add_certificate(str(cert), str(key))

    pem = config.cert_output_dir / "shop.example.com.pem"
    assert bundle.combined_pem_path == str(pem)
    assert stat.S_IMODE(pem.stat().st_mode) == 0o600
    assert f'pem-file = "{pem}"' in config.hitch_config_path.read_text()
    assert service.status()["certificates"] == 1
    assert [info.subject for info in service.list_certificates()] == ["shop.example.com"]

    assert service.remove_certificate("shop.example.com") == "Removed certificate shop.example.com.pem"
    assert "pem-file" not in config.hitch_config_path.read_text()
    assert not pem.exists()


def test_hitch_add_certificate_rejects_bad_name(config, tools, write_pair) -> None:
    """Test bundle names are restricted."""
    cert = write_pair("a")
    key = config.key_search_dirs[0] / "a.key"
    with pytest.raises(InvalidInput):
        HitchService(config, tools).add_certificate(str(cert), str(key), name="../../etc/passwd")


def test_hitch_save_config_invalid(config, tools) -> None:
    """Test a rejected hitch.conf is rolled back."""
    config.hitch_config_path.parent.mkdir(parents=True)
    config.hitch_config_path.write_text('frontend = "[*]:443"\n')
    tools.invalid_configs.add("hitch")

    with pytest.raises(ConfigValidationFailed):
        HitchService(config, tools).save_config("frontend = nonsense\n")

    assert config.hitch_config_path.read_text() == 'frontend = "[*]:443"\n'


def test_plugin_install_enables_feature(config, tools) -> None:
    """Test plugin installation writes wrappers and enables the feature flag."""
    config.cpanel_features_file.parent.mkdir(parents=True)
    config.cpanel_features_file.write_text("bandwidth=1\n")
    installer = PluginInstaller(config, tools)

    written = installer.install()

    assert str(config.cpanel_features_file) in written
    assert "allow_cache_management=1\n" in config.cpanel_features_file.read_text()
    assert stat.S_IMODE(installer.whm_cgi_path.stat().st_mode) == 0o755
    assert "admin_main()" in installer.whm_cgi_path.read_text()
    assert "user_main()" in installer.user_cgi_path.read_text()
    appconfig = yaml.safe_load(installer.appconfig_path.read_text())
    assert appconfig["url"] == "varnish_user/cgi/varnish_user.cgi"
    assert appconfig["group"] == "Software"


def test_plugin_uninstall(config, tools) -> None:
    """Test plugin removal deletes every installed file."""
    installer = PluginInstaller(config, tools)
    installer.install()

    removed = installer.uninstall()

    assert len(removed) == 3
    assert not installer.appconfig_path.exists()
    assert any(call[0] == "unregister_appconfig" for call in tools.calls)


def test_uninstall_restores_apache(config, tools) -> None:
    """Test uninstall stops services and moves Apache back to 80/443."""
    config.cpanel_config_path.parent.mkdir(parents=True)
    config.cpanel_config_path.write_text("apache_port=0.0.0.0:8080\napache_ssl_port=0.0.0.0:8443\n")
    config.varnish_service_override.parent.mkdir(parents=True)
    config.varnish_service_override.write_text("[Service]\n")
    tools.active.update({"varnish", "hitch"})

    steps = Uninstaller(config, tools).run(remove_packages=True)

    assert [s.step_name for s in steps] == ["StopServices", "RestoreApache", "RemovePlugins", "RemovePackages"]
    assert all(s.outcome == StepOutcome.SUCCESS for s in steps)
    assert config.cpanel_config_path.read_text() == "apache_port=0.0.0.0:80\napache_ssl_port=0.0.0.0:443\n"
    assert not config.varnish_service_override.exists()
    assert tools.active == {"httpd"}
    assert ("remove", ("varnish", "hitch")) in tools.calls


def test_hitch_remove_missing_certificate_leaves_config(config, tools) -> None:
    """Test removing an unknown bundle fails before hitch.conf is touched."""
    pem = config.cert_output_dir / "gone.example.com.pem"
    original = f'frontend = "[*]:443"\npem-file = "{pem}"\n'
    config.hitch_config_path.parent.mkdir(parents=True)
    config.hitch_config_path.write_text(original)

    with pytest.raises(InvalidInput):
        HitchService(config, tools).remove_certificate("gone.example.com")

    assert config.hitch_config_path.read_text() == original
    assert not config.backup_root.exists()


def test_hitch_remove_certificate_backs_up_pem(config, tools, write_pair) -> None:
    """Test the removed bundle is copied into the backup directory first."""
    config.hitch_config_path.parent.mkdir(parents=True)
    config.hitch_config_path.write_text('frontend = "[*]:443"\n')
    cert = write_pair("shop.example.com")
    key = config.key_search_dirs[0] / "shop.example.com.key"
    service = HitchService(config, tools)
    service.add_certificate(str(cert), str(key))

    service.remove_certificate("shop.example.com")

    backups = list(config.backup_root.rglob("shop.example.com.pem"))
    assert len(backups) == 1
    assert "BEGIN" in backups[0].read_text()
    assert ("validate", "hitch") in tools.calls


def test_hitch_remove_certificate_invalid_config_restores(config, tools, write_pair) -> None:
    """Test a hitch.conf rejected after removal is restored and the PEM kept."""
    config.hitch_config_path.parent.mkdir(parents=True)
    config.hitch_config_path.write_text('frontend = "[*]:443"\n')
    cert = write_pair("shop.example.com")
    key = config.key_search_dirs[0] / "shop.example.com.key"
    service = HitchService(config, tools)
    service.add_certificate(str(cert), str(key))
    before = config.hitch_config_path.read_text()
    tools.invalid_configs.add("hitch")

    with pytest.raises(ConfigValidationFailed):
        service.remove_certificate("shop.example.com")

    assert config.hitch_config_path.read_text() == before
    assert (config.cert_output_dir / "shop.example.com.pem").exists()


def test_plugin_uninstall_backs_up_files(config, tools) -> None:
    """Test every plugin file is backed up before it is deleted."""
    installer = PluginInstaller(config, tools)
    installer.install()

    installer.uninstall()

    backed_up = {path.name for path in config.backup_root.rglob("*") if path.is_file()}
    assert {
        installer.whm_cgi_path.name,
        installer.user_cgi_path.name,
        installer.appconfig_path.name,
    } <= backed_up


def test_purge_path_with_query_is_literal(config, tools) -> None:
    """Test regex characters in a purged path match literally."""
    VarnishService(config, tools).purge("example.com", "/page.php?x=1")
    assert tools.bans == [["req.http.host", "==", "example.com", "&&", "req.url", "~", "^/page\\.php\\?x=1"]]


def test_path_prefix_regex() -> None:
    """Test only regex metacharacters are escaped."""
    assert path_prefix_regex("/blog") == "^/blog"
    assert path_prefix_regex("/a+(b)*") == "^/a\\+\\(b\\)\\*"
    assert path_prefix_regex("/~user/$x") == "^/~user/\\$x"


def test_hitch_backend_connection(config, tools) -> None:
    """Test the PROXY port check follows the Varnish listener."""
    service = HitchService(config, tools)

    assert service.test_backend_connection() is False
    tools.active.add("varnish")
    assert service.test_backend_connection() is True
    assert ("connect", "127.0.0.1", 4443) in tools.calls


def test_hitch_stats_counts_journal_events(config, tools) -> None:
    """Test recent events count for the last hour and errors for the last day."""
    from datetime import datetime, timedelta

    now = datetime.now()
    earlier = now - timedelta(hours=5)
    tools.active.add("varnish")
    tools.journal = [
        LogEntry(timestamp=now, message="New connection from 203.0.113.7"),
        LogEntry(timestamp=now, message="SSL handshake completed"),
        LogEntry(timestamp=now, message="handshake failure: certificate verify error"),
        LogEntry(timestamp=earlier, message="New connection from 198.51.100.2"),
        LogEntry(timestamp=earlier, message="Backend connection failed: Connection refused"),
    ]

    stats = HitchService(config, tools).stats()

    assert stats == HitchStats(
        active_connections=3,
        total_connections=1,
        ssl_handshakes=2,
        certificate_errors=1,
        backend_failures=1,
        backend_reachable=True,
    )
