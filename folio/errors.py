"""
Error taxonomy for the section API
Each error knows the HTTP status and audit outcome it maps to
"""

from typing import Any, Dict, List, Optional


class FolioError(Exception):
    status_code = 500
    outcome = 'ERROR'

    def __init__(self, message: str = None):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': False,
            'error': self.message,
            'code': self.__class__.__name__
        }


class Unauthorized(FolioError):
    status_code = 401
    outcome = 'UNAUTHORIZED'


class CSRFInvalid(FolioError):
    status_code = 403
    outcome = 'CSRF_INVALID'


class RateLimited(FolioError):
    status_code = 429
    outcome = 'RATE_LIMITED'

    def __init__(self, message: str = None, retry_after: int = 0):
        super().__init__(message or 'Too many requests')
        self.retry_after = retry_after

    def to_dict(self):
        body = super().to_dict()
        body['retryAfter'] = self.retry_after
        return body


class ValidationFailed(FolioError):
    status_code = 400
    outcome = 'VALIDATION_FAILED'

    def __init__(self, violations: List[Dict[str, str]], message: str = None):
        super().__init__(message or 'Validation failed')
        self.violations = violations

    def to_dict(self):
        body = super().to_dict()
        body['violations'] = self.violations
        return body


class InvalidSection(FolioError):
    status_code = 400
    outcome = 'INVALID_SECTION'


class NotFound(FolioError):
    status_code = 404
    outcome = 'NOT_FOUND'


class PersistenceUnavailable(FolioError):
    """Remote store not configured; fixed by the operator, not by retrying"""
    status_code = 501
    outcome = 'PERSISTENCE_UNAVAILABLE'


class VersionConflict(FolioError):
    status_code = 409
    outcome = 'VERSION_CONFLICT'

    def __init__(self, message: str = None, expected: Optional[str] = None):
        super().__init__(message or 'Section was modified by another writer')
        self.expected = expected


class BackendUnavailable(FolioError):
    status_code = 502
    outcome = 'BACKEND_UNAVAILABLE'

    def __init__(self, message: str = None, backend_status: Optional[int] = None,
                 backend_message: Optional[str] = None):
        super().__init__(message or 'Remote store unavailable')
        self.backend_status = backend_status
        self.backend_message = backend_message

    def to_dict(self):
        body = super().to_dict()
        if self.backend_status is not None:
            body['backendStatus'] = self.backend_status
        if self.backend_message:
            body['backendMessage'] = self.backend_message
        return body


class ConfigurationError(FolioError):
    """Server-side setting missing, e.g. no admin password hash"""
    status_code = 500
    outcome = 'MISCONFIGURED'
