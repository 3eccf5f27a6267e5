"""IAM error taxonomy. Typed, no HTTP."""

from enum import Enum


class ErrorCode(str, Enum):
    VALIDATION = "VALIDATION"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    TENANT_ACCESS_DENIED = "TENANT_ACCESS_DENIED"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    INTERNAL = "INTERNAL"


class IamError(Exception):
    """Base for all IAM core errors."""

    code: ErrorCode = ErrorCode.INTERNAL

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    @property
    def external_code(self) -> ErrorCode:
        """Code reported to callers outside the core."""
        return self.code


class IamValidationError(IamError):
    """Raised when input is malformed. Caller's fault, recoverable by the caller."""

    code = ErrorCode.VALIDATION


class PermissionDeniedError(IamError):
    """Raised when the principal lacks the required permission(s)."""

    code = ErrorCode.PERMISSION_DENIED


class TenantAccessDeniedError(IamError):
    """
    Raised when the principal may not act within the target tenant.
    Reported externally as NOT_FOUND so cross-tenant existence is never confirmed.
    """

    code = ErrorCode.TENANT_ACCESS_DENIED

    @property
    def external_code(self) -> ErrorCode:
        return ErrorCode.NOT_FOUND


class NotFoundError(IamError):
    """Raised when the referenced entity does not exist."""

    code = ErrorCode.NOT_FOUND


class ConflictError(IamError):
    """Raised on uniqueness or terminal-state violations."""

    code = ErrorCode.CONFLICT


class InternalError(IamError):
    """Raised for storage or unexpected failures. Message is opaque to callers."""

    code = ErrorCode.INTERNAL
