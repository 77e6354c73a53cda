"""Exception hierarchy for tokenlink.

All exceptions inherit from :class:`TokenlinkError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`tokenlink.exit_codes`.
The top-level error handler in :func:`tokenlink.app.main` catches
``TokenlinkError`` and exits with the appropriate code, while unexpected
exceptions produce a crash log and exit with :data:`EXIT_GENERIC_FAILURE`.

Subclass hierarchy::

    TokenlinkError (exit 1)
    +-- InvalidUsageError                (exit 2)
    +-- ConfigError                      (exit 1)
    +-- AuthError                        (exit 3)
    |   +-- BindError
    |   +-- CSRFMismatchError
    |   +-- ProviderDeniedError
    |   +-- MissingCodeError
    |   +-- AuthTimeoutError
    |   +-- AuthCancelledError
    |   +-- ExchangeError
    +-- CertificateError                 (exit 7)
    +-- TrustInstallError                (exit 7)
    +-- CredentialStoreUnavailableError  (exit 8)
    +-- CorruptCredentialError           (exit 8)

None of these are retried. An authorization attempt is interactive, so a
failure is surfaced immediately and the user retries by hand.
"""

from __future__ import annotations

from typing import Optional

from tokenlink.exit_codes import (
    EXIT_AUTH_FAILURE,
    EXIT_CERTIFICATE_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_INVALID_USAGE,
    EXIT_STORE_UNAVAILABLE,
)


class TokenlinkError(Exception):
    """Base exception for all tokenlink errors.

    Every subclass sets a class-level ``exit_code`` corresponding to one of
    the constants in :mod:`tokenlink.exit_codes`. The entry point catches
    this exception type and calls ``sys.exit(exc.exit_code)``.

    Args:
        message: Human-readable error description printed to stderr.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class InvalidUsageError(TokenlinkError):
    """Raised for invalid CLI arguments or an unknown service identifier."""

    exit_code = EXIT_INVALID_USAGE


class ConfigError(TokenlinkError):
    """Raised for configuration problems (invalid JSON, bad values, missing credentials)."""

    exit_code = EXIT_GENERIC_FAILURE


# --- Authorization flow ---


class AuthError(TokenlinkError):
    """Base class for every failure of the authorization round-trip."""

    exit_code = EXIT_AUTH_FAILURE


class BindError(AuthError):
    """Raised when the callback listener cannot bind its port or set up TLS."""


class CSRFMismatchError(AuthError):
    """Raised when the callback's ``state`` does not match the active flow.

    The callback may have been forged, so nothing it carried is trusted.
    """


class ProviderDeniedError(AuthError):
    """Raised when the provider redirects back with an ``error`` parameter.

    Args:
        error: The provider's error code (e.g. ``access_denied``).
        description: The provider's ``error_description``, verbatim.
    """

    def __init__(self, error: str, description: str = ""):
        self.error = error
        self.description = description
        message = f"Authorization denied by provider: {error}"
        if description:
            message += f": {description}"
        super().__init__(message)


class MissingCodeError(AuthError):
    """Raised when the callback carries a valid state but no ``code``."""


class AuthTimeoutError(AuthError):
    """Raised when no callback arrives before the flow's deadline."""


class AuthCancelledError(AuthError):
    """Raised when a waiting flow is cancelled from another thread."""


class ExchangeError(AuthError):
    """Raised when the code-for-token exchange fails.

    The raw response body is kept on the exception and included in the
    message so the provider's explanation reaches the user unchanged.

    Args:
        message: Human-readable description.
        status_code: HTTP status of the token endpoint response, if any.
        body: Raw response body, if any.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
    ):
        self.status_code = status_code
        self.body = body
        super().__init__(message)


# --- Certificates and storage ---


class CertificateError(TokenlinkError):
    """Raised when the local CA or a leaf certificate cannot be generated or loaded."""

    exit_code = EXIT_CERTIFICATE_ERROR


class TrustInstallError(TokenlinkError):
    """Raised when adding or removing the CA in the OS trust store fails.

    Flows treat this as non-fatal: the certificate is used untrusted and the
    user is shown manual installation steps.

    Args:
        message: Human-readable description.
        output: Combined stdout/stderr of the failed platform command.
    """

    exit_code = EXIT_CERTIFICATE_ERROR

    def __init__(self, message: str, output: str = ""):
        self.output = output
        if output:
            message = f"{message}\nOutput: {output.strip()}"
        super().__init__(message)


class CredentialStoreUnavailableError(TokenlinkError):
    """Raised when the secret store exists but cannot be read or written.

    This is distinct from "not found": callers use it to offer the
    environment-variable fallback instead of the interactive setup.
    """

    exit_code = EXIT_STORE_UNAVAILABLE


class CorruptCredentialError(TokenlinkError):
    """Raised when a stored token or client entry no longer parses.

    The store itself works, so the fix is to replace the entry (``logout``
    then ``login``, or ``setup`` again), not to fall back to environment
    variables.
    """

    exit_code = EXIT_STORE_UNAVAILABLE
