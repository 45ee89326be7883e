"""
Write pipeline for section edits

    START -> AUTHENTICATED -> CSRF_OK -> RATE_OK -> VALIDATED -> COMMITTED

Each gate is a hard stop: the first failure ends the request in REJECTED
and nothing after it runs. Validation always happens before the store is
touched. Every transition is written to the audit log.

The bearer secret is a single shared placeholder, not an identity system.
The CSRF gate checks token format only.
"""

import hmac
import logging
import re
from enum import Enum
from typing import Any, NamedTuple, Optional

from .audit import AuditLog
from .errors import (ConfigurationError, CSRFInvalid, FolioError, RateLimited,
                     Unauthorized, ValidationFailed)
from .ratelimit import RateLimiter, RateLimitStatus
from .store import SectionStore, check_section_id
from .validation import MAX_PAYLOAD_BYTES, size_violation, validate_document

logger = logging.getLogger(__name__)

CSRF_TOKEN_RE = re.compile(r'^[0-9a-fA-F]{64}$')


class GateState(Enum):
    START = 'START'
    AUTHENTICATED = 'AUTHENTICATED'
    CSRF_OK = 'CSRF_OK'
    RATE_OK = 'RATE_OK'
    VALIDATED = 'VALIDATED'
    COMMITTED = 'COMMITTED'
    REJECTED = 'REJECTED'


class WriteRequest(NamedTuple):
    client_key: str
    section: str
    authorization: Optional[str]
    csrf_token: Optional[str]
    body: Any
    method: str = 'POST'
    # set when the body was refused for size before it could be parsed
    oversize: bool = False


class GateResult(NamedTuple):
    state: GateState
    version: Optional[str] = None
    rate: Optional[RateLimitStatus] = None
    error: Optional[FolioError] = None

    @property
    def ok(self) -> bool:
        return self.state is GateState.COMMITTED


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(' ')
    if scheme.lower() != 'bearer' or not token.strip():
        return None
    return token.strip()


def secrets_match(presented: str, expected: str) -> bool:
    return hmac.compare_digest(presented.encode('utf-8'), expected.encode('utf-8'))


class WriteGatekeeper:
    def __init__(self, secret: str, store: SectionStore, rate_limiter: RateLimiter,
                 audit_log: AuditLog, max_bytes: int = MAX_PAYLOAD_BYTES,
                 password_hash: str = ''):
        self.secret = secret
        self.password_hash = password_hash
        self.store = store
        self.rate_limiter = rate_limiter
        self.audit_log = audit_log
        self.max_bytes = max_bytes

    def _audit(self, request, action, outcome, detail=''):
        self.audit_log.record(request.client_key, request.method, request.section, action, outcome, detail)

    def _reject(self, request, action, error, rate=None):
        detail = error.message
        if isinstance(error, ValidationFailed):
            detail = f'{len(error.violations)} violation(s)'
        self._audit(request, action, error.outcome, detail)
        return GateResult(GateState.REJECTED, rate=rate, error=error)

    def authenticate(self, request) -> Optional[Unauthorized]:
        """Compare the bearer credential to the server secret; returns the error on failure"""
        if not self.secret:
            logger.warning('ADMIN_SECRET is not set; every write will be rejected')
            return Unauthorized('Server has no admin secret configured')
        token = bearer_token(request.authorization)
        if token is None:
            return Unauthorized('Missing bearer credential')
        if not secrets_match(token, self.secret):
            return Unauthorized('Invalid credential')
        return None

    def process(self, request: WriteRequest) -> GateResult:
        try:
            check_section_id(request.section)
        except FolioError as e:
            return self._reject(request, 'check-section', e)

        error = self.authenticate(request)
        if error:
            return self._reject(request, 'authenticate', error)
        self._audit(request, 'authenticate', GateState.AUTHENTICATED.value)

        if not request.csrf_token or not CSRF_TOKEN_RE.match(request.csrf_token):
            return self._reject(request, 'csrf', CSRFInvalid('Missing or malformed CSRF token'))
        self._audit(request, 'csrf', GateState.CSRF_OK.value)

        rate = self.rate_limiter.check(request.client_key)
        if not rate.allowed:
            retry_after = self.rate_limiter.retry_after(rate)
            return self._reject(request, 'rate-limit',
                                RateLimited(f'Rate limit exceeded, retry in {retry_after}s', retry_after),
                                rate)
        self._audit(request, 'rate-limit', GateState.RATE_OK.value, f'remaining={rate.remaining}')

        body = request.body
        if request.oversize:
            violations = [size_violation(self.max_bytes)]
        elif not isinstance(body, dict) or 'data' not in body:
            violations = [{'path': '$', 'rule': 'body', 'message': 'Request body must be {"data": <object>}'}]
        else:
            violations = validate_document(body['data'], self.max_bytes, request.section)
        if violations:
            return self._reject(request, 'validate', ValidationFailed(violations), rate)
        self._audit(request, 'validate', GateState.VALIDATED.value)

        try:
            version = self.store.write(request.section, body['data'], actor=request.client_key)
        except FolioError as e:
            return self._reject(request, 'commit', e, rate)

        self._audit(request, 'commit', GateState.COMMITTED.value, f'version={version}')
        return GateResult(GateState.COMMITTED, version=version, rate=rate)

    def confirm_password_hash(self, client_key: str, password_hash: str) -> bool:
        """Compare a client-computed password hash to the configured one"""
        if not self.password_hash:
            logger.error('ADMIN_PASSWORD_HASH environment variable not set')
            raise ConfigurationError('Server configuration error')

        valid = secrets_match(password_hash, self.password_hash)
        self.audit_log.record(client_key, 'POST', '', 'validate-password', 'SUCCESS' if valid else 'FAILURE')
        return valid
