"""
Error taxonomy for domain mapping operations.

Each error carries the HTTP status and machine-readable code the API layer
returns, so services raise them without knowing about FastAPI.
"""

from typing import List, Optional


class DomainMappingError(Exception):
    """Base class for all domain mapping failures."""

    status_code = 500
    code = "DOMAIN_MAPPING_ERROR"

    def __init__(self, message: str, code: Optional[str] = None, **details):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.details = details

    def to_dict(self) -> dict:
        body = {"error": self.message, "code": self.code}
        body.update({k: v for k, v in self.details.items() if v is not None})
        return body


class DomainValidationError(DomainMappingError):
    status_code = 400
    code = "DOMAIN_VALIDATION_FAILED"

    def __init__(
        self,
        message: str,
        issues: Optional[List[str]] = None,
        suggestions: Optional[List[str]] = None,
        **details,
    ):
        super().__init__(message, issues=issues or [], suggestions=suggestions or [], **details)
        self.issues = issues or []
        self.suggestions = suggestions or []


class CertificateValidationError(DomainValidationError):
    code = "CERTIFICATE_VALIDATION_FAILED"


class PlanLimitError(DomainMappingError):
    status_code = 403
    code = "PLAN_UPGRADE_REQUIRED"


class DomainConflictError(DomainMappingError):
    status_code = 409
    code = "DOMAIN_ALREADY_MAPPED"


class MappingNotFoundError(DomainMappingError):
    status_code = 404
    code = "DOMAIN_NOT_FOUND"


class InvalidTransitionError(DomainMappingError):
    """Operation not permitted in the mapping's current status."""

    status_code = 400
    code = "INVALID_STATUS"


class StaleMappingError(DomainMappingError):
    """A status-guarded update found the mapping in a different status."""

    status_code = 409
    code = "MAPPING_STATE_CHANGED"


class CertificateAuthorityError(DomainMappingError):
    """Transient failure talking to the certificate authority."""

    status_code = 503
    code = "CERTIFICATE_AUTHORITY_UNAVAILABLE"

    def __init__(self, message: str, retry_after: int = 300, **details):
        super().__init__(message, retry_after=retry_after, **details)
        self.retry_after = retry_after
