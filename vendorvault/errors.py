"""
Error taxonomy for the credential vault, handler registry, and test queue.

Every error carries an ``http_status`` so the API layer can map caller faults
to 4xx and system faults to 5xx without string matching.
"""

from __future__ import annotations


class VendorVaultError(Exception):
    """Base class for all vendorvault errors."""

    http_status = 500


class ConfigurationError(VendorVaultError):
    """Deployment is missing something it needs (e.g. the master secret)."""


class ValidationError(VendorVaultError):
    """Caller input failed validation. Never retried."""

    http_status = 400

    def __init__(self, message: str, problems: list[str] | None = None):
        super().__init__(message)
        self.problems = problems or [message]


class UnknownVendorError(ValidationError):
    """No credential schema exists for the vendor id."""

    http_status = 404


class UnknownFieldError(ValidationError):
    """One or more input field names match nothing in the vendor schema."""


class MissingRequiredFieldError(ValidationError):
    """A required field is absent from the merged record."""


class PersistenceVerificationFailed(VendorVaultError):
    """The post-write read-back did not match what was written."""


class DecryptError(VendorVaultError):
    """A stored envelope could not be decrypted under any supported version.

    Distinct from "not configured": the credential is present but unreadable.
    """

    http_status = 422


class VendorNotRegistered(VendorVaultError):
    """No handler is registered for the vendor id. A deployment error."""

    http_status = 404


class CapabilityNotSupported(VendorVaultError):
    """The vendor's handler does not implement the requested operation."""

    http_status = 501

    def __init__(self, vendor_id: str, capability: str):
        super().__init__(f"Operation '{capability}' not supported for vendor {vendor_id}")
        self.vendor_id = vendor_id
        self.capability = capability


class ConnectionTestFailed(VendorVaultError):
    """The vendor reported a failed connectivity check.

    An expected, user-visible outcome. Raised only by callers that opt into
    exceptions via ``ConnectionResult.raise_for_failure()``.
    """

    http_status = 400

    def __init__(self, vendor_id: str, message: str):
        super().__init__(message)
        self.vendor_id = vendor_id


class QueueClosedError(VendorVaultError):
    """The connection test queue was shut down or cleared."""

    http_status = 503
