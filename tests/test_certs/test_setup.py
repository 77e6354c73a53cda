"""Tests for ensure_trusted_authority."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from tokenlink.certs.authority import CertificateAuthorityManager
from tokenlink.certs.setup import TrustStatus, ensure_trusted_authority
from tokenlink.certs.trust import TrustStore
from tokenlink.exceptions import CertificateError, TrustInstallError
from tokenlink.output import OutputFormat, OutputManager, set_output


@pytest.fixture()
def manager(tmp_path: Path) -> CertificateAuthorityManager:
    return CertificateAuthorityManager(certs_dir=tmp_path / "certs")


@pytest.fixture()
def trust_store() -> MagicMock:
    store = MagicMock(spec=TrustStore)
    store.name = "test trust store"
    store.needs_sudo = False
    store.is_trusted.return_value = False
    store.manual_instructions.return_value = ["run this by hand"]
    return store


@pytest.fixture()
def plain_output() -> None:
    """Uncoloured diagnostics so messages are never wrapped or styled."""
    set_output(OutputManager(format=OutputFormat.PLAIN, no_color=True))


def _yes(question: str) -> bool:
    return True


class TestEnsureTrustedAuthority:
    def test_already_trusted_asks_nothing(
        self, manager: CertificateAuthorityManager, trust_store: MagicMock
    ) -> None:
        manager.generate_authority()
        trust_store.is_trusted.return_value = True
        confirm = MagicMock()

        assert ensure_trusted_authority(manager, trust_store, confirm) == TrustStatus.TRUSTED
        confirm.assert_not_called()
        trust_store.install.assert_not_called()

    def test_creates_and_installs(
        self, manager: CertificateAuthorityManager, trust_store: MagicMock, quiet_output
    ) -> None:
        status = ensure_trusted_authority(manager, trust_store, _yes)

        assert status == TrustStatus.TRUSTED
        assert manager.authority_exists()
        trust_store.install.assert_called_once_with(manager.cert_path)

    def test_existing_untrusted_authority_is_installed_not_regenerated(
        self, manager: CertificateAuthorityManager, trust_store: MagicMock, quiet_output
    ) -> None:
        manager.generate_authority()
        before = manager.cert_path.read_bytes()

        assert ensure_trusted_authority(manager, trust_store, _yes) == TrustStatus.TRUSTED
        assert manager.cert_path.read_bytes() == before

    def test_force_regenerates(
        self, manager: CertificateAuthorityManager, trust_store: MagicMock, quiet_output
    ) -> None:
        manager.generate_authority()
        trust_store.is_trusted.return_value = True
        before = manager.cert_path.read_bytes()

        status = ensure_trusted_authority(manager, trust_store, _yes, force=True)
        assert status == TrustStatus.TRUSTED
        assert manager.cert_path.read_bytes() != before
        trust_store.install.assert_called_once()

    def test_declined(
        self, manager: CertificateAuthorityManager, trust_store: MagicMock, quiet_output
    ) -> None:
        status = ensure_trusted_authority(manager, trust_store, lambda q: False)

        assert status == TrustStatus.DECLINED
        assert not manager.authority_exists()
        trust_store.install.assert_not_called()

    def test_install_failure_shows_manual_steps(
        self, manager: CertificateAuthorityManager, trust_store: MagicMock, plain_output, capfd
    ) -> None:
        trust_store.install.side_effect = TrustInstallError("sudo failed", output="denied")

        status = ensure_trusted_authority(manager, trust_store, _yes)

        assert status == TrustStatus.UNTRUSTED
        err = capfd.readouterr().err
        assert "sudo failed" in err
        assert "run this by hand" in err

    def test_generation_failure(
        self, manager: CertificateAuthorityManager, trust_store: MagicMock, quiet_output
    ) -> None:
        broken = MagicMock(wraps=manager)
        broken.authority_exists.return_value = False
        broken.generate_authority.side_effect = CertificateError("disk full")

        assert ensure_trusted_authority(broken, trust_store, _yes) == TrustStatus.UNTRUSTED
        trust_store.install.assert_not_called()

    def test_sudo_notice(
        self, manager: CertificateAuthorityManager, trust_store: MagicMock, plain_output, capfd
    ) -> None:
        trust_store.needs_sudo = True
        ensure_trusted_authority(manager, trust_store, lambda q: False)
        assert "sudo" in capfd.readouterr().err
