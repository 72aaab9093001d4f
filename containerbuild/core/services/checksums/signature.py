"""
GPG signature verification (Tier 1).

Keys live under ``<gpg_keys_dir>/<language>/`` in one of two layouts:

    keyring/pubring.kbx       a ready GNUPGHOME
    keys/*.asc, *.gpg         loose key files imported into a scratch home

Verification passes only when gpg reports "Good signature".
"""

from __future__ import annotations

import logging
import tempfile
from pathlib import Path

from containerbuild.core.errors import CommandError, DownloadError
from containerbuild.core.services import net
from containerbuild.core.services.command import CommandRunner

logger = logging.getLogger(__name__)

_ALIASES = {"node": "nodejs", "go": "golang"}


def normalize_language(language: str) -> str:
    return _ALIASES.get(language, language)


def signature_url(language: str, version: str, file: Path) -> str | None:
    """Where the detached signature for a language tarball is published."""
    if normalize_language(language) == "python":
        return f"https://www.python.org/ftp/python/{version}/{file.name}.asc"
    return None


def _key_files(keyring_path: Path) -> list[Path]:
    keys_dir = keyring_path / "keys" if (keyring_path / "keys").is_dir() else keyring_path
    return sorted(p for p in keys_dir.iterdir() if p.suffix in (".asc", ".gpg") and p.is_file())


def prepare_gnupg_home(
    gpg_keys_dir: Path,
    language: str,
    runner: CommandRunner,
    scratch: Path,
) -> Path | None:
    """Return a GNUPGHOME holding the language's keys, or None."""
    keyring_path = gpg_keys_dir / normalize_language(language)
    if not keyring_path.is_dir():
        logger.info("No GPG keyring found for %s at %s", language, keyring_path)
        return None

    prebuilt = keyring_path / "keyring"
    if (prebuilt / "pubring.kbx").is_file():
        logger.info("Using GPG keyring directory for %s", language)
        return prebuilt

    keys = _key_files(keyring_path)
    if not keys:
        logger.warning("No GPG key files found for %s in %s", language, keyring_path)
        return None

    home = scratch / "gnupg"
    home.mkdir(mode=0o700, parents=True, exist_ok=True)
    imported = 0
    for key in keys:
        result = runner.run(
            ["gpg", "--batch", "--homedir", str(home), "--import", str(key)],
            description=f"Importing GPG key {key.name}",
            check=False,
        )
        if result.ok:
            imported += 1
        else:
            logger.warning("Failed to import GPG key %s", key.name)
    if imported == 0:
        return None
    logger.info("Imported %d GPG keys for %s", imported, language)
    return home


def verify_gpg_signature(
    file: Path,
    signature: Path,
    language: str,
    gpg_keys_dir: Path,
    runner: CommandRunner,
) -> bool:
    """Check ``signature`` over ``file`` with the language's release keys."""
    if not file.is_file():
        logger.error("File not found for GPG verification: %s", file)
        return False
    if not signature.is_file():
        logger.error("Signature file not found: %s", signature)
        return False

    with tempfile.TemporaryDirectory(prefix="cb-gpg-") as scratch:
        home = prepare_gnupg_home(gpg_keys_dir, language, runner, Path(scratch))
        if home is None:
            logger.warning("Could not import GPG keys for %s", language)
            return False

        logger.info("Verifying GPG signature for %s...", file.name)
        try:
            result = runner.run(
                ["gpg", "--batch", "--homedir", str(home), "--verify", str(signature), str(file)],
                description=f"Verifying GPG signature for {file.name}",
            )
        except CommandError as e:
            logger.error("GPG signature verification failed: %s", e.stderr.strip() or e)
            return False

    output = result.output
    if "Good signature" not in output:
        logger.error("GPG signature verification failed")
        return False

    for line in output.splitlines():
        if "Good signature from" in line:
            logger.info("Signer: %s", line.split("Good signature from", 1)[1].strip())
            break
    logger.info("✓ GPG signature verified successfully")
    return True


def verify_signature(
    file: Path,
    language: str,
    version: str,
    gpg_keys_dir: Path,
    runner: CommandRunner,
    url: str | None = None,
) -> bool:
    """Download the detached signature and verify it. False if unavailable."""
    url = url or signature_url(language, version, file)
    if not url:
        logger.info("No signature source known for %s", language)
        return False
    if not runner.has("gpg"):
        logger.info("gpg not available, skipping signature verification")
        return False

    sig = file.with_name(file.name + ".asc")
    try:
        net.download_file(url, sig, timeout=60)
    except DownloadError as e:
        logger.warning("Failed to download GPG signature: %s", e)
        return False
    try:
        return verify_gpg_signature(file, sig, language, gpg_keys_dir, runner)
    finally:
        sig.unlink(missing_ok=True)
