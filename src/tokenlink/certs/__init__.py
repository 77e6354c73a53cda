"""Local certificate authority and OS trust-store integration."""

from tokenlink.certs.authority import (
    CertificateAuthorityManager,
    LeafCertificate,
    verify_leaf_certificate,
)
from tokenlink.certs.setup import TrustStatus, ensure_trusted_authority
from tokenlink.certs.trust import TrustStore, get_trust_store

__all__ = [
    "CertificateAuthorityManager",
    "LeafCertificate",
    "TrustStatus",
    "TrustStore",
    "ensure_trusted_authority",
    "get_trust_store",
    "verify_leaf_certificate",
]
