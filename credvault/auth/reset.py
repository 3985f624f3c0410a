"""
Password Reset Module

Forgotten-password flow: a single-use reset token is handed to a delivery
callback (usually an email queue) and later exchanged for a new password.

Security considerations:
- The same reply whether or not the account exists
- Only the SHA-256 hash of a token is stored, for one hour by default
- A new request invalidates the user's earlier unused tokens
- A completed reset revokes every session of the account
"""

import hashlib
import logging
import re
import secrets
import time
from typing import Callable, Optional

from ..config import LoginConfig
from ..errors import ExpiredError, ValidationError
from ..integration.event_logger import AuditTrail, EventType
from .credentials import normalize_email, require_strong_password
from .models import ResetTokenStatus
from .passwords import PasswordHasher
from .stores import CredentialStore, ResetTokenStore, SessionStore

logger = logging.getLogger("credvault.auth.reset")


RESET_TOKEN_BYTES = 32  # 64 hex characters
RESET_REQUESTED_MESSAGE = "If the account exists, a password reset link has been sent"
_TOKEN_PATTERN = re.compile(r'[0-9a-f]{%d}' % (RESET_TOKEN_BYTES * 2))

Deliver = Callable[[str, str], None]


def hash_reset_token(token: str) -> str:
    """SHA-256 hex digest under which a reset token is stored."""
    return hashlib.sha256(token.encode('ascii')).hexdigest()


class PasswordResetManager:
    """
    Issue and redeem password reset tokens.

    deliver(email, token) receives the raw token; it should enqueue the
    message rather than send it inline, so that request_reset takes the
    same time for known and unknown addresses.

    Example:
        >>> resets = PasswordResetManager(hasher, store, InMemoryResetTokenStore(), mailer.enqueue)
        >>> resets.request_reset("alice@example.com")
        'If the account exists, a password reset link has been sent'
        >>> resets.reset_password(token_from_email, "New-Correct-Horse-7")
    """

    def __init__(self, hasher: PasswordHasher,
                 store: CredentialStore,
                 resets: ResetTokenStore,
                 deliver: Deliver,
                 sessions: Optional[SessionStore] = None,
                 config: Optional[LoginConfig] = None,
                 audit: Optional[AuditTrail] = None,
                 clock: Callable[[], float] = time.time):
        self._hasher = hasher
        self._store = store
        self._resets = resets
        self._deliver = deliver
        self._sessions = sessions
        self._config = config or LoginConfig()
        self._audit = audit or AuditTrail(clock)
        self._clock = clock

    def request_reset(self, email: str) -> str:
        """
        Start a reset for email.

        Returns:
            RESET_REQUESTED_MESSAGE, whether or not the account exists

        Raises:
            ValidationError: email is not a plausible address
        """
        email = normalize_email(email)
        record = self._store.get_by_email(email)

        if record is not None and record.is_active:
            token = secrets.token_hex(RESET_TOKEN_BYTES)
            self._resets.put(
                hash_reset_token(token),
                record.user_id,
                self._clock() + self._config.reset_token_ttl,
            )
            self._audit.record(EventType.PASSWORD_RESET_REQUESTED, record.user_id)
            self._deliver(record.email, token)

        return RESET_REQUESTED_MESSAGE

    def validate_reset_token(self, token: str) -> ResetTokenStatus:
        """Check a token without using it (e.g. before showing the reset form)."""
        if not isinstance(token, str) or not _TOKEN_PATTERN.fullmatch(token):
            return ResetTokenStatus.INVALID
        entry = self._resets.get(hash_reset_token(token))
        if entry is None:
            return ResetTokenStatus.INVALID
        if self._clock() >= entry[1]:
            return ResetTokenStatus.EXPIRED
        return ResetTokenStatus.VALID

    def reset_password(self, token: str, new_password: str) -> None:
        """
        Set a new password with a reset token.

        Raises:
            ValidationError: Malformed, unknown or used token; weak password
                or the current password reused
            ExpiredError: Token past its expiry (it is discarded)
        """
        if not isinstance(token, str) or not _TOKEN_PATTERN.fullmatch(token):
            raise ValidationError("Invalid reset token")

        token_hash = hash_reset_token(token)
        entry = self._resets.get(token_hash)
        if entry is None:
            raise ValidationError("Invalid or already used reset token")

        user_id, expires_at = entry
        if self._clock() >= expires_at:
            self._resets.consume(token_hash)
            raise ExpiredError("Reset token expired")

        record = self._store.get_by_id(user_id)
        if record is None or not record.is_active:
            raise ValidationError("Invalid or already used reset token")

        require_strong_password(new_password)
        if self._hasher.verify(record.password_hash, new_password):
            raise ValidationError("New password must differ from the current password")

        # Racing redemptions of one token get a single winner
        if self._resets.consume(token_hash) is None:
            raise ValidationError("Invalid or already used reset token")

        record.password_hash = self._hasher.hash(new_password)
        self._store.save(record)

        revoked = self._sessions.revoke_all(user_id) if self._sessions is not None else 0
        self._audit.record(EventType.PASSWORD_RESET_COMPLETED, user_id,
                           sessions_revoked=revoked)
        logger.info("Password reset completed for %s", user_id)
