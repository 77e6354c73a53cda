"""Generate-and-trust workflow for the local certificate authority.

``tokenlink init`` and the first HTTPS ``tokenlink login`` both need the same
thing: a CA on disk that the OS trusts. :func:`ensure_trusted_authority` is
the one implementation of that workflow. It is idempotent, so running it
when everything is already in place does nothing and asks nothing.
"""

from __future__ import annotations

import enum
import logging
from typing import Callable

from tokenlink import output
from tokenlink.certs.authority import CertificateAuthorityManager
from tokenlink.certs.trust import TrustStore
from tokenlink.exceptions import CertificateError, TrustInstallError

logger = logging.getLogger(__name__)


class TrustStatus(str, enum.Enum):
    """Result of :func:`ensure_trusted_authority`."""

    TRUSTED = "trusted"
    DECLINED = "declined"
    UNTRUSTED = "untrusted"


def ensure_trusted_authority(
    manager: CertificateAuthorityManager,
    trust_store: TrustStore,
    confirm: Callable[[str], bool],
    force: bool = False,
) -> TrustStatus:
    """Make sure a local CA exists and is installed in *trust_store*.

    Args:
        manager: The certificate authority manager.
        trust_store: The platform trust store strategy.
        confirm: Asks the user a yes/no question. Called at most once.
        force: Regenerate and reinstall even if a trusted CA exists.

    Returns:
        ``TRUSTED`` if the CA is (now) trusted, ``DECLINED`` if the user said
        no, or ``UNTRUSTED`` if generation or installation failed. Neither
        failure raises: a login can still continue with a certificate the
        browser warns about.
    """
    exists = manager.authority_exists()
    if exists and not force and trust_store.is_trusted():
        logger.debug("Local CA at %s is already trusted", manager.cert_path)
        return TrustStatus.TRUSTED

    output.rule("HTTPS certificate setup")
    output.info(
        "tokenlink serves the OAuth callback over HTTPS for providers that require it.\n"
        "A local certificate authority lets your browser trust https://localhost.\n"
        f"It will be added to your {trust_store.name}."
    )
    if trust_store.needs_sudo:
        output.info("You may be prompted for your password (sudo).")

    if not confirm("Create and install the tokenlink certificate authority?"):
        output.warning(
            "Skipped. Your browser will show a certificate warning during HTTPS logins."
        )
        output.suggest("Run 'tokenlink init' later to set it up.")
        return TrustStatus.DECLINED

    if force or not exists:
        try:
            manager.generate_authority()
        except CertificateError as exc:
            output.error(str(exc))
            return TrustStatus.UNTRUSTED
        output.success(f"Certificate authority created at {manager.certs_dir}")

    try:
        trust_store.install(manager.cert_path)
    except TrustInstallError as exc:
        output.warning(f"Could not add the certificate authority to the trust store: {exc}")
        output.info("To install it manually, run:")
        for line in trust_store.manual_instructions(manager.cert_path):
            output.info(f"  {line}")
        return TrustStatus.UNTRUSTED

    output.success(f"Certificate authority added to your {trust_store.name}")
    return TrustStatus.TRUSTED
