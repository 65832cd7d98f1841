"""Certificate discovery and Hitch PEM bundling."""

import logging
import os
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple

from ..adapters import SystemTools
from ..adapters.parsers import parse_apache_ssl_vhosts
from ..models import CertificateBundle
from ..utils.config import Config
from .backup import BackupManager

logger = logging.getLogger(__name__)

CERT_SUFFIXES = (".crt", ".pem")


def _usable(path: Path) -> bool:
    return path.is_file() and os.access(path, os.R_OK)


class CertificateDiscoverer:
    """Finds certificate/key pairs and writes combined PEM files for Hitch."""

    def __init__(self, config: Config, tools: SystemTools):
        """
        Initialize certificate discoverer.

        Args:
            config: Application configuration
            tools: External tool adapter
        """
        self.config = config
        self.tools = tools

    def _candidates(self) -> Iterator[Tuple[Path, Optional[str], Optional[Path]]]:
        """Yield (certificate, owning domain, key hint) in search order."""
        httpd_conf = self.config.httpd_conf_path
        if _usable(httpd_conf):
            for server_name, cert, key in parse_apache_ssl_vhosts(httpd_conf.read_text(errors="replace")):
                yield Path(cert), server_name, Path(key) if key else None

        output_dir = self.config.cert_output_dir.resolve()
        for directory in self.config.cert_search_dirs:
            if not directory.is_dir():
                continue
            for entry in sorted(directory.iterdir()):
                if entry.suffix in CERT_SUFFIXES and entry.parent.resolve() != output_dir:
                    yield entry, None, None

    def _find_key(self, cert: Path, hint: Optional[Path]) -> Optional[Path]:
        candidates: List[Path] = []
        if hint is not None:
            candidates.append(hint)
        candidates.append(cert.with_suffix(".key"))
        candidates.extend(directory / f"{cert.stem}.key" for directory in self.config.key_search_dirs)

        for candidate in candidates:
            if _usable(candidate):
                return candidate
        return None

    def find_pairs(self) -> List[CertificateBundle]:
        """
        Pair certificates with keys without writing anything.

        Returns:
            Bundles in discovery order; the first pair for a combined path wins
        """
        bundles: Dict[Path, CertificateBundle] = {}

        for cert, domain, hint in self._candidates():
            if not _usable(cert):
                logger.debug(f"Skipping unreadable certificate: {cert}")
                continue

            combined = self.config.cert_output_dir / f"{cert.stem}.pem"
            if combined in bundles:
                continue

            key = self._find_key(cert, hint)
            if key is None:
                logger.warning(f"Skipping certificate {cert}: no matching private key found")
                continue

            bundles[combined] = CertificateBundle(
                source_cert_path=str(cert),
                source_key_path=str(key),
                combined_pem_path=str(combined),
                owning_domain=domain,
            )

        return list(bundles.values())

    def discover(self, backups: Optional[BackupManager] = None) -> List[CertificateBundle]:
        """
        Pair certificates with keys and write the combined PEM files.

        Args:
            backups: Backup manager used before an existing bundle is replaced

        Returns:
            Bundles whose combined file was written
        """
        written: List[CertificateBundle] = []
        self.config.cert_output_dir.mkdir(parents=True, exist_ok=True)

        for bundle in self.find_pairs():
            try:
                self.write_bundle(bundle, backups)
            except (OSError, LookupError) as e:
                logger.error(f"Could not write {bundle.combined_pem_path}: {e}")
                continue
            written.append(bundle)

        logger.info(f"Bundled {len(written)} certificate(s) into {self.config.cert_output_dir}")
        return written

    def write_bundle(self, bundle: CertificateBundle, backups: Optional[BackupManager] = None) -> None:
        """Write key then certificate into the combined file, mode 0600, owned by Hitch."""
        key_text = Path(bundle.source_key_path).read_text()
        cert_text = Path(bundle.source_cert_path).read_text()
        combined = Path(bundle.combined_pem_path)

        if backups is not None:
            backups.backup(combined)

        fd = os.open(combined, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w") as f:
            f.write(key_text.rstrip("\n") + "\n" + cert_text)
        os.chmod(combined, 0o600)
        self.tools.chown(combined, self.config.hitch_user, self.config.hitch_group)
        logger.info(f"Created certificate bundle: {combined}")

    def remove_bundle(self, name: str) -> bool:
        """Delete a combined PEM by file name. Returns False if it did not exist."""
        path = self.config.cert_output_dir / Path(name).name
        if not path.exists():
            return False
        path.unlink()
        logger.info(f"Removed certificate bundle: {path}")
        return True
