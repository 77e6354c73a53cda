"""Local certificate authority for the HTTPS callback listener.

Some providers (Slack) refuse ``http://`` redirect URIs even for
``localhost``, so the callback listener must serve TLS. To do that without a
browser warning, tokenlink keeps a long-lived certificate authority under
``<data_dir>/certs`` and, once it is installed in the OS trust store (see
:mod:`tokenlink.certs.trust`), issues a short-lived ``localhost`` leaf
certificate from it for each flow.

Files on disk::

    <data_dir>/certs/           0700
        tokenlink-ca-key.pem    0600  EC private key (SEC1, unencrypted)
        tokenlink-ca.pem        0644  self-signed CA certificate

Leaf certificates never touch the certificate directory; they are held as
PEM bytes in a :class:`LeafCertificate` for the lifetime of the listener.

See Also:
    :func:`tokenlink.certs.setup.ensure_trusted_authority` for the
    generate-and-install workflow shared by ``init`` and ``login``.
"""

from __future__ import annotations

import ipaddress
import logging
import os
import ssl
import tempfile
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from tokenlink.config import get_certs_dir
from tokenlink.exceptions import CertificateError

logger = logging.getLogger(__name__)

CA_KEY_FILE = "tokenlink-ca-key.pem"
CA_CERT_FILE = "tokenlink-ca.pem"
CA_COMMON_NAME = "tokenlink Local CA"
LOOPBACK_HOSTNAME = "localhost"

_CA_LIFETIME = timedelta(days=3650)
_LEAF_LIFETIME = timedelta(days=365)
_SELF_SIGNED_LIFETIME = timedelta(hours=24)
# Tolerate small clock differences between the CLI and the browser.
_BACKDATE = timedelta(minutes=5)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class LeafCertificate:
    """A server certificate and its private key, held in memory as PEM.

    Attributes:
        cert_pem: PEM-encoded certificate.
        key_pem: PEM-encoded private key.
        trusted: ``True`` when issued by the local CA, ``False`` for the
            self-signed fallback the browser will warn about.
    """

    cert_pem: bytes
    key_pem: bytes
    trusted: bool = True

    @property
    def certificate(self) -> x509.Certificate:
        """The parsed certificate."""
        return x509.load_pem_x509_certificate(self.cert_pem)

    def create_ssl_context(self) -> ssl.SSLContext:
        """Build a server-side :class:`ssl.SSLContext` for this certificate.

        :meth:`ssl.SSLContext.load_cert_chain` only accepts file paths, so
        the PEM material is written into a private temporary directory that
        is removed as soon as the chain is loaded.

        Raises:
            CertificateError: If the key material cannot be loaded.
        """
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        context.minimum_version = ssl.TLSVersion.TLSv1_2
        with tempfile.TemporaryDirectory(prefix="tokenlink-tls-") as tmp:
            cert_path = Path(tmp) / "cert.pem"
            key_path = Path(tmp) / "key.pem"
            cert_path.write_bytes(self.cert_pem)
            key_path.touch(mode=0o600)
            key_path.write_bytes(self.key_pem)
            try:
                context.load_cert_chain(certfile=str(cert_path), keyfile=str(key_path))
            except (ssl.SSLError, OSError) as exc:
                raise CertificateError(f"Failed to load TLS certificate: {exc}") from exc
        return context


def _serialize_key(key: ec.EllipticCurvePrivateKey) -> bytes:
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )


def _loopback_san() -> x509.SubjectAlternativeName:
    return x509.SubjectAlternativeName(
        [
            x509.DNSName(LOOPBACK_HOSTNAME),
            x509.IPAddress(ipaddress.ip_address("127.0.0.1")),
        ]
    )


def _leaf_builder(
    key: ec.EllipticCurvePrivateKey,
    issuer: x509.Name,
    lifetime: timedelta,
) -> x509.CertificateBuilder:
    """Common template for localhost server certificates."""
    now = _utcnow()
    subject = x509.Name(
        [
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, "tokenlink"),
            x509.NameAttribute(NameOID.COMMON_NAME, LOOPBACK_HOSTNAME),
        ]
    )
    return (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - _BACKDATE)
        .not_valid_after(now + lifetime)
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                content_commitment=False,
                key_encipherment=True,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=False,
                crl_sign=False,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(
            x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]), critical=False
        )
        .add_extension(_loopback_san(), critical=False)
    )


class CertificateAuthorityManager:
    """Create, load, and issue from the persisted local certificate authority.

    The manager holds no key material between calls; every operation reads
    the files it needs. Writing (:meth:`generate_authority`) is expected to
    happen only from an explicit user action, one process at a time.

    Args:
        certs_dir: Directory for the CA files. Defaults to
            :func:`~tokenlink.config.get_certs_dir`.

    Example::

        manager = CertificateAuthorityManager()
        if not manager.authority_exists():
            manager.generate_authority()
        leaf = manager.issue_leaf_certificate()
        context = leaf.create_ssl_context()
    """

    def __init__(self, certs_dir: Optional[Path] = None) -> None:
        self._certs_dir = certs_dir

    @property
    def certs_dir(self) -> Path:
        """Directory holding the CA files."""
        return self._certs_dir if self._certs_dir is not None else get_certs_dir()

    @property
    def key_path(self) -> Path:
        """Path of the CA private key file."""
        return self.certs_dir / CA_KEY_FILE

    @property
    def cert_path(self) -> Path:
        """Path of the CA certificate file (the one installed into trust stores)."""
        return self.certs_dir / CA_CERT_FILE

    def authority_exists(self) -> bool:
        """Return ``True`` iff both CA files exist and parse correctly."""
        if not (self.key_path.is_file() and self.cert_path.is_file()):
            return False
        try:
            self.load_authority()
        except CertificateError as exc:
            logger.debug("Local CA present but unusable: %s", exc)
            return False
        return True

    def generate_authority(self) -> None:
        """Generate a new CA key pair and self-signed certificate.

        Overwrites any existing authority; callers must confirm with the user
        first, because certificates issued by the old CA stop being trusted.

        Raises:
            CertificateError: If key generation, signing, or writing fails.
        """
        try:
            self.certs_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
            os.chmod(self.certs_dir, 0o700)

            key = ec.generate_private_key(ec.SECP256R1())
            name = x509.Name(
                [
                    x509.NameAttribute(NameOID.ORGANIZATION_NAME, "tokenlink"),
                    x509.NameAttribute(NameOID.ORGANIZATIONAL_UNIT_NAME, "Development CA"),
                    x509.NameAttribute(NameOID.COMMON_NAME, CA_COMMON_NAME),
                ]
            )
            now = _utcnow()
            cert = (
                x509.CertificateBuilder()
                .subject_name(name)
                .issuer_name(name)
                .public_key(key.public_key())
                .serial_number(x509.random_serial_number())
                .not_valid_before(now - _BACKDATE)
                .not_valid_after(now + _CA_LIFETIME)
                .add_extension(x509.BasicConstraints(ca=True, path_length=0), critical=True)
                .add_extension(
                    x509.KeyUsage(
                        digital_signature=False,
                        content_commitment=False,
                        key_encipherment=False,
                        data_encipherment=False,
                        key_agreement=False,
                        key_cert_sign=True,
                        crl_sign=True,
                        encipher_only=False,
                        decipher_only=False,
                    ),
                    critical=True,
                )
                .add_extension(
                    x509.SubjectKeyIdentifier.from_public_key(key.public_key()),
                    critical=False,
                )
                .sign(private_key=key, algorithm=hashes.SHA256())
            )

            self._write_file(self.key_path, _serialize_key(key), 0o600)
            self._write_file(
                self.cert_path, cert.public_bytes(serialization.Encoding.PEM), 0o644
            )
        except (OSError, ValueError, TypeError) as exc:
            raise CertificateError(f"Failed to generate local CA: {exc}") from exc

        logger.debug("Generated local CA at %s", self.certs_dir)

    def load_authority(self) -> tuple[x509.Certificate, ec.EllipticCurvePrivateKey]:
        """Load the CA certificate and private key from disk.

        Raises:
            CertificateError: If either file is missing or malformed.
        """
        try:
            key_pem = self.key_path.read_bytes()
            cert_pem = self.cert_path.read_bytes()
        except OSError as exc:
            raise CertificateError(f"Failed to read local CA: {exc}") from exc

        try:
            key = serialization.load_pem_private_key(key_pem, password=None)
            cert = x509.load_pem_x509_certificate(cert_pem)
        except (ValueError, TypeError) as exc:
            raise CertificateError(f"Failed to parse local CA: {exc}") from exc

        if not isinstance(key, ec.EllipticCurvePrivateKey):
            raise CertificateError("Local CA key is not an elliptic-curve key")
        return cert, key

    def issue_leaf_certificate(self) -> LeafCertificate:
        """Issue a fresh ``localhost`` server certificate signed by the CA.

        Raises:
            CertificateError: If the CA does not exist or signing fails.
        """
        if not (self.key_path.is_file() and self.cert_path.is_file()):
            raise CertificateError(
                "Local CA does not exist. Run 'tokenlink init' to create it."
            )
        ca_cert, ca_key = self.load_authority()

        try:
            key = ec.generate_private_key(ec.SECP256R1())
            cert = (
                _leaf_builder(key, ca_cert.subject, _LEAF_LIFETIME)
                .add_extension(
                    x509.AuthorityKeyIdentifier.from_issuer_public_key(ca_key.public_key()),
                    critical=False,
                )
                .sign(private_key=ca_key, algorithm=hashes.SHA256())
            )
        except (ValueError, TypeError) as exc:
            raise CertificateError(f"Failed to issue localhost certificate: {exc}") from exc

        return LeafCertificate(
            cert_pem=cert.public_bytes(serialization.Encoding.PEM),
            key_pem=_serialize_key(key),
            trusted=True,
        )

    def self_signed_certificate(self) -> LeafCertificate:
        """Create a throwaway self-signed ``localhost`` certificate.

        Used when no CA exists. Browsers will show a certificate warning for
        it, but the callback still works once the user clicks through.
        """
        try:
            key = ec.generate_private_key(ec.SECP256R1())
            issuer = x509.Name(
                [
                    x509.NameAttribute(NameOID.ORGANIZATION_NAME, "tokenlink"),
                    x509.NameAttribute(NameOID.COMMON_NAME, LOOPBACK_HOSTNAME),
                ]
            )
            cert = _leaf_builder(key, issuer, _SELF_SIGNED_LIFETIME).sign(
                private_key=key, algorithm=hashes.SHA256()
            )
        except (ValueError, TypeError) as exc:
            raise CertificateError(f"Failed to create self-signed certificate: {exc}") from exc

        return LeafCertificate(
            cert_pem=cert.public_bytes(serialization.Encoding.PEM),
            key_pem=_serialize_key(key),
            trusted=False,
        )

    @staticmethod
    def _write_file(path: Path, data: bytes, mode: int) -> None:
        """Write *data* to *path*, creating it with *mode* and enforcing it on overwrite."""
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.chmod(path, mode)


def verify_leaf_certificate(leaf_pem: bytes, authority_pem: bytes) -> bool:
    """Return ``True`` iff *leaf_pem* was issued and signed by *authority_pem*.

    Args:
        leaf_pem: PEM-encoded leaf certificate.
        authority_pem: PEM-encoded CA certificate.
    """
    leaf = x509.load_pem_x509_certificate(leaf_pem)
    authority = x509.load_pem_x509_certificate(authority_pem)
    try:
        leaf.verify_directly_issued_by(authority)
    except (ValueError, TypeError, InvalidSignature):
        return False
    return True
