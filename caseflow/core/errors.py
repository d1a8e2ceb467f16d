from __future__ import annotations

from typing import Any


class CaseflowError(Exception):
    """Base error for caseflow; carries a stable code and HTTP status."""

    code = "INTERNAL_ERROR"
    status_code = 500
    default_message = "Request failed"

    def __init__(self, message: str | None = None, *, details: dict[str, Any] | None = None) -> None:
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)


class ValidationFailedError(CaseflowError):
    """Input failed business validation."""

    code = "VALIDATION_ERROR"
    status_code = 422
    default_message = "Validation error"


class UnauthorizedError(CaseflowError):
    """No tenant context could be established for the caller."""

    code = "UNAUTHORIZED"
    status_code = 401
    default_message = "Authentication required"


class UnauthorizedRoleError(CaseflowError):
    """Caller lacks the role required for the operation."""

    code = "UNAUTHORIZED_ROLE"
    status_code = 403
    default_message = "Insufficient role for this operation"


class TenantMismatchError(CaseflowError):
    """Referenced entity belongs to another firm."""

    code = "TENANT_MISMATCH"
    status_code = 403
    default_message = "Entity belongs to another firm"


class NotFoundError(CaseflowError):
    """Entity missing or not visible in the caller's firm."""

    code = "NOT_FOUND"
    status_code = 404
    default_message = "Not found"


class InvalidTransitionError(CaseflowError):
    """Requested status is not a direct successor of the current status."""

    code = "INVALID_TRANSITION"
    status_code = 409
    default_message = "Invalid status transition"


class ConcurrentModificationError(CaseflowError):
    """Expected version did not match; caller must re-read and retry."""

    code = "CONCURRENT_MODIFICATION"
    status_code = 409
    default_message = "Case was modified concurrently; reload and retry"


class VaultInvalidPinError(CaseflowError):
    """Vault PIN did not match the case credential."""

    code = "VAULT_INVALID_PIN"
    status_code = 403
    default_message = "Invalid vault PIN"


class VaultSessionActiveError(CaseflowError):
    """Another vault session currently holds the case lease."""

    code = "VAULT_SESSION_ACTIVE"
    status_code = 409
    default_message = "Vault is already unlocked by another session"


class VaultSessionExpiredError(CaseflowError):
    """Vault session is no longer unlocked."""

    code = "VAULT_SESSION_EXPIRED"
    status_code = 410
    default_message = "Vault session expired"


class StorageUnavailableError(CaseflowError):
    """Business state and audit entry could not be committed together."""

    code = "STORAGE_UNAVAILABLE"
    status_code = 503
    default_message = "Storage unavailable"
