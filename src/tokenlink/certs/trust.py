"""Install the local CA into (and remove it from) the operating system trust store.

Three platform strategies share the :class:`TrustStore` interface:

* :class:`DarwinTrustStore` -- the user's login keychain via ``security``.
* :class:`LinuxTrustStore` -- the system CA bundle via ``sudo cp`` plus
  ``update-ca-certificates`` (Debian/Ubuntu), falling back to the
  ``update-ca-trust`` layout (RHEL/Fedora).
* :class:`WindowsTrustStore` -- the per-user ``Root`` store via ``certutil``.

:func:`get_trust_store` picks the right one for the running platform.
Installation needs elevated privileges on Linux, so failures are expected in
normal use: every failed command raises :class:`TrustInstallError` carrying
the command's combined output, and :meth:`TrustStore.manual_instructions`
gives the user the commands to run by hand.
"""

from __future__ import annotations

import logging
import platform
import subprocess
from pathlib import Path
from typing import Optional

from tokenlink.certs.authority import CA_COMMON_NAME
from tokenlink.exceptions import TrustInstallError

logger = logging.getLogger(__name__)

TRUSTED_CERT_NAME = "tokenlink-ca.crt"


def _run(args: list[str], action: str) -> str:
    """Run a trust-store command and return its output.

    Raises:
        TrustInstallError: If the command is missing or exits non-zero. The
            error carries the combined stdout/stderr.
    """
    logger.debug("Running: %s", " ".join(args))
    try:
        result = subprocess.run(
            args,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            check=False,
        )
    except OSError as exc:
        raise TrustInstallError(f"Failed to {action}: cannot run {args[0]}: {exc}") from exc
    if result.returncode != 0:
        raise TrustInstallError(
            f"Failed to {action} (exit status {result.returncode})",
            output=result.stdout or "",
        )
    return result.stdout or ""


def _succeeds(args: list[str]) -> bool:
    """Return True if *args* runs and exits zero."""
    try:
        return (
            subprocess.run(
                args,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                check=False,
            ).returncode
            == 0
        )
    except OSError:
        return False


class TrustStore:
    """Base class for a platform trust store.

    Subclasses implement :meth:`is_trusted`, :meth:`install`,
    :meth:`uninstall`, and :meth:`manual_instructions`. The base class
    itself represents an unsupported platform.
    """

    name = "unsupported"

    def is_trusted(self) -> bool:
        """Return ``True`` if the tokenlink CA is present in this trust store."""
        return False

    def install(self, cert_path: Path) -> None:
        """Add the CA certificate at *cert_path* as a trusted root.

        Raises:
            TrustInstallError: If the platform command fails.
        """
        raise TrustInstallError(
            f"Installing certificates is not supported on {platform.system() or 'this platform'}"
        )

    def uninstall(self) -> None:
        """Remove the tokenlink CA from this trust store.

        Raises:
            TrustInstallError: If the platform command fails.
        """
        raise TrustInstallError(
            f"Removing certificates is not supported on {platform.system() or 'this platform'}"
        )

    def manual_instructions(self, cert_path: Path) -> list[str]:
        """Return the shell commands a user can run to trust *cert_path* by hand."""
        return [f"Add {cert_path} to your system's trusted root certificates."]

    @property
    def needs_sudo(self) -> bool:
        """Whether installation prompts for an administrator password."""
        return False


class DarwinTrustStore(TrustStore):
    """macOS login keychain."""

    name = "macOS login keychain"
    keychain = "login.keychain"

    def is_trusted(self) -> bool:
        return _succeeds(["security", "find-certificate", "-c", CA_COMMON_NAME, self.keychain])

    def install(self, cert_path: Path) -> None:
        _run(
            ["security", "add-trusted-cert", "-r", "trustRoot", "-k", self.keychain, str(cert_path)],
            "install CA on macOS",
        )

    def uninstall(self) -> None:
        _run(
            ["security", "delete-certificate", "-c", CA_COMMON_NAME, self.keychain],
            "uninstall CA on macOS",
        )

    def manual_instructions(self, cert_path: Path) -> list[str]:
        return [f"security add-trusted-cert -r trustRoot -k {self.keychain} {cert_path}"]


class LinuxTrustStore(TrustStore):
    """System CA bundle on Debian-family or RHEL-family distributions."""

    name = "system CA certificates"
    layouts: tuple[tuple[str, str], ...] = (
        ("/usr/local/share/ca-certificates", "update-ca-certificates"),
        ("/etc/pki/ca-trust/source/anchors", "update-ca-trust"),
    )

    def _anchor(self, directory: str) -> Path:
        return Path(directory) / TRUSTED_CERT_NAME

    def is_trusted(self) -> bool:
        return any(self._anchor(directory).is_file() for directory, _ in self.layouts)

    def install(self, cert_path: Path) -> None:
        first_error: Optional[TrustInstallError] = None
        for directory, refresh in self.layouts:
            try:
                _run(
                    ["sudo", "cp", str(cert_path), str(self._anchor(directory))],
                    f"copy CA certificate into {directory}",
                )
            except TrustInstallError as exc:
                logger.debug("CA copy into %s failed: %s", directory, exc)
                first_error = first_error or exc
                continue
            _run(["sudo", refresh], f"refresh CA trust with {refresh}")
            return
        raise first_error or TrustInstallError("No CA trust directory is configured")

    def uninstall(self) -> None:
        # Either layout may hold a copy; remove and refresh both.
        for directory, refresh in self.layouts:
            for args in (["sudo", "rm", "-f", str(self._anchor(directory))], ["sudo", refresh]):
                try:
                    _run(args, f"run {' '.join(args)}")
                except TrustInstallError as exc:
                    logger.warning("%s", exc)

    def manual_instructions(self, cert_path: Path) -> list[str]:
        return [
            "# Ubuntu/Debian:",
            f"sudo cp {cert_path} {self._anchor(self.layouts[0][0])}",
            f"sudo {self.layouts[0][1]}",
            "# RHEL/Fedora:",
            f"sudo cp {cert_path} {self._anchor(self.layouts[1][0])}",
            f"sudo {self.layouts[1][1]}",
        ]

    @property
    def needs_sudo(self) -> bool:
        return True


class WindowsTrustStore(TrustStore):
    """Per-user Windows certificate store."""

    name = "Windows user certificate store"

    def is_trusted(self) -> bool:
        return _succeeds(["certutil", "-verifystore", "-user", "Root", CA_COMMON_NAME])

    def install(self, cert_path: Path) -> None:
        _run(["certutil", "-addstore", "-user", "Root", str(cert_path)], "install CA on Windows")

    def uninstall(self) -> None:
        _run(["certutil", "-delstore", "-user", "Root", CA_COMMON_NAME], "uninstall CA on Windows")

    def manual_instructions(self, cert_path: Path) -> list[str]:
        return [f"certutil -addstore -user Root {cert_path}"]


def get_trust_store(system: Optional[str] = None) -> TrustStore:
    """Return the trust store strategy for *system* (default: the running platform)."""
    system = system if system is not None else platform.system()
    if system == "Darwin":
        return DarwinTrustStore()
    if system == "Linux":
        return LinuxTrustStore()
    if system == "Windows":
        return WindowsTrustStore()
    return TrustStore()
