"""Domain errors raised by the certificate and signing services.

Rendering and signing errors are caught where they happen and never
reach callers; they exist so the fallback paths can be tested.  The rest
propagate to the API layer, which maps them to HTTP status codes.
"""

from __future__ import annotations


class CertificateServiceError(Exception):
    pass


class CertificateNotFound(CertificateServiceError):
    pass


class InvalidCredential(CertificateServiceError, ValueError):
    """Upload is not a usable PKCS#12 container (user-correctable)."""


class WrongSecret(InvalidCredential):
    """Container is well-formed but the unlock secret does not open it."""


class CredentialDecryptError(CertificateServiceError):
    """Stored credential could not be decrypted with the master key."""


class RenderFailure(CertificateServiceError):
    pass


class SignFailure(CertificateServiceError):
    pass


class StoreUnavailable(CertificateServiceError):
    """Artifact store not configured, unreachable, or returned an error."""


class ArtifactUnavailable(CertificateServiceError):
    """Artifact missing even after a regeneration attempt (retryable)."""


class ImmutableCertificateError(CertificateServiceError, ValueError):
    pass


class DuplicateIdentifier(CertificateServiceError):
    """Certificate number or verification code already taken."""


class UnknownUser(CertificateServiceError, ValueError):
    """Referenced user is not in the user directory."""
