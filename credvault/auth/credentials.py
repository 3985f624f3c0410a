"""
Credential Lifecycle Module

Registration, password change and lazy rehash on top of PasswordHasher
and a CredentialStore.

Features:
- Password strength policy enforced before hashing
- Case-insensitive, unique email addresses
- Current-password re-check before any change
- Transparent upgrade of hashes made with weaker Argon2 parameters

Security considerations:
- Only the Argon2id PHC string is ever stored
- Events carry hashed user ids only
"""

import logging
import re
import secrets
from typing import Iterable, Optional

from ..errors import AuthenticationFailure, ValidationError
from ..integration.event_logger import AuditTrail, EventType
from .models import CredentialRecord
from .passwords import PasswordHasher, validate_password_strength
from .stores import CredentialStore

logger = logging.getLogger("credvault.auth.credentials")


USER_ID_BYTES = 16  # 128-bit random ids
EMAIL_MAX_LENGTH = 254
_EMAIL_PATTERN = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')


def normalize_email(email: str) -> str:
    """
    Trim and lower-case an email address.

    Raises:
        ValidationError: If the result is not a plausible address
    """
    if not isinstance(email, str):
        raise ValidationError("Email must be a string")
    email = email.strip().lower()
    if len(email) > EMAIL_MAX_LENGTH or not _EMAIL_PATTERN.match(email):
        raise ValidationError("Invalid email address")
    return email


class CredentialManager:
    """
    Account registration and password maintenance.

    Example:
        >>> manager = CredentialManager(PasswordHasher(), InMemoryCredentialStore())
        >>> record = manager.register("alice@example.com", "Correct-Horse-42")
        >>> record.email
        'alice@example.com'
    """

    def __init__(self, hasher: PasswordHasher, store: CredentialStore,
                 audit: Optional[AuditTrail] = None):
        self._hasher = hasher
        self._store = store
        self._audit = audit or AuditTrail()

    def register(self, email: str, password: str,
                 roles: Iterable[str] = (),
                 organization_id: str = "") -> CredentialRecord:
        """
        Register a new account.

        Args:
            email: Login email (normalized to lower case)
            password: Plaintext password, checked against the policy
            roles: Initial roles
            organization_id: Owning organization

        Returns:
            The stored CredentialRecord

        Raises:
            ValidationError: Invalid email, weak password or duplicate email
        """
        email = normalize_email(email)
        require_strong_password(password)

        if self._store.get_by_email(email) is not None:
            raise ValidationError("Account already exists")

        record = CredentialRecord(
            user_id=secrets.token_hex(USER_ID_BYTES),
            email=email,
            password_hash=self._hasher.hash(password),
            roles=list(roles),
            organization_id=organization_id,
        )
        # add() re-checks uniqueness under the store's own lock
        self._store.add(record)

        self._audit.record(EventType.USER_REGISTERED, record.user_id)
        logger.info("Registered account %s", record.user_id)
        return record

    def get(self, user_id: str) -> Optional[CredentialRecord]:
        return self._store.get_by_id(user_id)

    def change_password(self, user_id: str, current_password: str,
                        new_password: str) -> None:
        """
        Replace a password after verifying the current one.

        Raises:
            AuthenticationFailure: Unknown account or wrong current password
            ValidationError: New password is weak or equal to the current one
        """
        record = self._store.get_by_id(user_id)
        if record is None or not self._hasher.verify(record.password_hash, current_password):
            raise AuthenticationFailure()

        if new_password == current_password:
            raise ValidationError("New password must differ from the current password")
        require_strong_password(new_password)

        record.password_hash = self._hasher.hash(new_password)
        self._store.save(record)

        self._audit.record(EventType.PASSWORD_CHANGED, user_id)

    def rehash_if_needed(self, record: CredentialRecord, password: str) -> bool:
        """
        Upgrade a stored hash after a successful password check.

        Only call this with a password that has just been verified.

        Returns:
            True if the hash was replaced
        """
        if not self._hasher.needs_rehash(record.password_hash):
            return False

        record.password_hash = self._hasher.hash(password)
        self._store.save(record)

        self._audit.record(EventType.PASSWORD_REHASHED, record.user_id)
        logger.info("Upgraded password hash parameters for %s", record.user_id)
        return True


def require_strong_password(password: str) -> None:
    """Raise ValidationError unless password meets the strength policy."""
    if not isinstance(password, str):
        raise ValidationError("Password must be a string")
    result = validate_password_strength(password)
    if not result['valid']:
        raise ValidationError(f"Password too weak: {', '.join(result['errors'])}")
