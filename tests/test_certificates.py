"""Test certificate discovery."""

import logging
import stat
from pathlib import Path

from varnish_manager.services import BackupManager, CertificateDiscoverer


def test_find_pairs_skips_certificate_without_key(config, tools, write_pair, caplog) -> None:
    """Test only certificates with a readable key are bundled."""
    write_pair("a")
    write_pair("b", with_key=False)

    with caplog.at_level(logging.WARNING):
        pairs = CertificateDiscoverer(config, tools).find_pairs()

    assert [Path(p.combined_pem_path).name for p in pairs] == ["a.pem"]
    assert pairs[0].source_key_path.endswith("a.key")
    assert any("b.crt" in record.getMessage() for record in caplog.records)


def test_find_pairs_key_beside_certificate(config, tools) -> None:
    """Test a same-stem key next to the certificate is preferred."""
    cert_dir = config.cert_search_dirs[0]
    (cert_dir / "site.crt").write_text("CERT\n")
    (cert_dir / "site.key").write_text("KEY\n")

    pairs = CertificateDiscoverer(config, tools).find_pairs()

    assert len(pairs) == 1
    assert pairs[0].source_key_path == str(cert_dir / "site.key")


def test_find_pairs_from_apache_vhosts(config, tools, tmp_path) -> None:
    """Test SSL vhosts in httpd.conf are discovered with their domain."""
    vhost_dir = tmp_path / "vhost"
    vhost_dir.mkdir()
    (vhost_dir / "example.com.crt").write_text("CERT\n")
    (vhost_dir / "example.com.private").write_text("KEY\n")

    config.httpd_conf_path.parent.mkdir(parents=True)
    config.httpd_conf_path.write_text(
        "<VirtualHost 127.0.0.1:8443>\n"
        "    ServerName example.com\n"
        f"    SSLCertificateFile {vhost_dir / 'example.com.crt'}\n"
        f"    SSLCertificateKeyFile {vhost_dir / 'example.com.private'}\n"
        "</VirtualHost>\n"
    )

    pairs = CertificateDiscoverer(config, tools).find_pairs()

    assert len(pairs) == 1
    assert pairs[0].owning_domain == "example.com"
    assert pairs[0].source_key_path.endswith("example.com.private")


def test_find_pairs_first_match_wins(config, tools, write_pair) -> None:
    """Test two certificates with the same stem produce one bundle."""
    write_pair("dup")
    second_dir = config.cert_search_dirs[0].parent / "more"
    second_dir.mkdir()
    (second_dir / "dup.pem").write_text("OTHER\n")
    config.cert_search_dirs = [config.cert_search_dirs[0], second_dir]

    pairs = CertificateDiscoverer(config, tools).find_pairs()

    assert len(pairs) == 1
    assert pairs[0].source_cert_path.endswith("dup.crt")


def test_discover_writes_key_then_certificate(config, tools, write_pair) -> None:
    """Test bundles contain the key first and are mode 0600."""
    write_pair("a")

    bundles = CertificateDiscoverer(config, tools).discover(BackupManager(config.backup_root))

    assert len(bundles) == 1
    combined = Path(bundles[0].combined_pem_path)
    text = combined.read_text()
    assert text.index("PRIVATE KEY") < text.index("CERTIFICATE")
    assert stat.S_IMODE(combined.stat().st_mode) == 0o600
    assert ("chown", str(combined)) in tools.calls


def test_discover_ignores_output_directory(config, tools, write_pair) -> None:
    """Test bundles in the output directory are not rediscovered."""
    write_pair("a")
    config.cert_search_dirs = [config.cert_search_dirs[0], config.cert_output_dir]
    discoverer = CertificateDiscoverer(config, tools)

    discoverer.discover()
    pairs = discoverer.find_pairs()

    assert [Path(p.combined_pem_path).name for p in pairs] == ["a.pem"]


def test_remove_bundle(config, tools, write_pair) -> None:
    """Test removing a bundle by name."""
    write_pair("a")
    discoverer = CertificateDiscoverer(config, tools)
    discoverer.discover()

    assert discoverer.remove_bundle("a.pem") is True
    assert discoverer.remove_bundle("a.pem") is False
