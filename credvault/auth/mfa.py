"""
MFA Enrollment Module

Second-factor lifecycle for one account: enrollment, confirmation,
disabling, backup code regeneration and status.

Flow:
1. begin_setup: password re-check, fresh TOTP secret held as pending
2. confirm_setup: user proves the authenticator works; secret is stored
   encrypted and backup codes are issued (shown exactly once)
3. disable / regenerate_backup_codes: password + current TOTP code

Security considerations:
- The TOTP secret is stored encrypted (AES-256-GCM, bound to the user id)
- Backup codes are stored as Argon2id hashes only
- Backup code consumption is a single atomic store operation
"""

import logging
import secrets
import time
from typing import Callable, List, Optional

from ..config import LoginConfig
from ..core_crypto.secret_box import SecretBox
from ..errors import AuthenticationFailure, ExpiredError, ValidationError
from ..integration.event_logger import AuditTrail, EventType
from .models import BackupCodeRecord, CredentialRecord, MfaSetup, MfaStatus
from .passwords import PasswordHasher
from .stores import CredentialStore, SetupStore
from .totp import TotpEngine

logger = logging.getLogger("credvault.auth.mfa")


SETUP_TOKEN_BYTES = 32


class MfaManager:
    """
    TOTP enrollment and recovery codes on top of the stores.

    Example:
        >>> setup = mfa.begin_setup(user_id, password)
        >>> codes = mfa.confirm_setup(setup.setup_token, code_from_app)
        >>> mfa.status(user_id).enabled
        True
    """

    def __init__(self, hasher: PasswordHasher, engine: TotpEngine,
                 store: CredentialStore, setup_store: SetupStore,
                 secret_box: SecretBox,
                 config: Optional[LoginConfig] = None,
                 audit: Optional[AuditTrail] = None,
                 clock: Callable[[], float] = time.time):
        self._hasher = hasher
        self._engine = engine
        self._store = store
        self._setup_store = setup_store
        self._box = secret_box
        self._config = config or LoginConfig()
        self._audit = audit or AuditTrail(clock)
        self._clock = clock

    # ==================== ENROLLMENT ====================

    def begin_setup(self, user_id: str, password: str) -> MfaSetup:
        """
        Start enrollment: generate a secret and hold it pending confirmation.

        Raises:
            AuthenticationFailure: Unknown account or wrong password
            ValidationError: MFA already enabled
        """
        record = self._store.get_by_id(user_id)
        if record is None or not self._hasher.verify(record.password_hash, password):
            raise AuthenticationFailure()
        if record.mfa_enabled:
            raise ValidationError("MFA is already enabled")

        generated = self._engine.generate_secret(record.email)
        setup_token = secrets.token_hex(SETUP_TOKEN_BYTES)
        expires_at = self._clock() + self._config.setup_ttl

        self._setup_store.put(setup_token, user_id, generated.secret, expires_at)
        logger.debug("MFA setup started for %s", user_id)

        return MfaSetup(
            setup_token=setup_token,
            secret=generated.secret,
            provisioning_uri=generated.provisioning_uri,
            expires_at=expires_at,
            qr_image=generated.qr_image,
        )

    def confirm_setup(self, setup_token: str, code: str) -> List[str]:
        """
        Finish enrollment with a code from the authenticator app.

        A wrong code leaves the pending setup in place so the user can
        retry until it expires.

        Returns:
            Plaintext backup codes (never retrievable again)

        Raises:
            ExpiredError: Unknown, used or expired setup token
            AuthenticationFailure: Wrong code
            ValidationError: MFA was enabled meanwhile
        """
        pending = self._setup_store.get(setup_token)
        if pending is None:
            raise ExpiredError("MFA setup expired or not found")
        user_id, secret = pending

        record = self._store.get_by_id(user_id)
        if record is None:
            raise AuthenticationFailure()
        if record.mfa_enabled:
            raise ValidationError("MFA is already enabled")

        if not self._engine.verify_token(secret, code, at=self._clock()):
            self._audit.record(EventType.TOTP_FAILED, user_id, stage="setup")
            raise AuthenticationFailure()

        # Single use: a concurrent confirmation loses here
        if self._setup_store.pop(setup_token) is None:
            raise ExpiredError("MFA setup expired or not found")

        codes = self._engine.generate_backup_codes()
        record.mfa_secret_encrypted = self._box.encrypt(secret, associated_data=user_id)
        record.backup_codes = self._hash_codes(codes)
        self._store.save(record)

        self._audit.record(EventType.MFA_ENABLED, user_id)
        logger.info("MFA enabled for %s", user_id)
        return codes

    # ==================== MAINTENANCE ====================

    def disable(self, user_id: str, password: str, code: str) -> None:
        """
        Turn MFA off after password and TOTP re-check.

        Raises:
            AuthenticationFailure: Wrong password or code
            ValidationError: MFA is not enabled
        """
        record = self._reverify(user_id, password, code)

        record.mfa_secret_encrypted = None
        record.backup_codes = []
        self._store.save(record)

        self._audit.record(EventType.MFA_DISABLED, user_id)
        logger.info("MFA disabled for %s", user_id)

    def regenerate_backup_codes(self, user_id: str, password: str,
                                code: str) -> List[str]:
        """
        Replace all backup codes, used or not.

        Returns:
            The new plaintext codes

        Raises:
            AuthenticationFailure: Wrong password or code
            ValidationError: MFA is not enabled
        """
        record = self._reverify(user_id, password, code)

        codes = self._engine.generate_backup_codes()
        record.backup_codes = self._hash_codes(codes)
        self._store.save(record)

        self._audit.record(EventType.BACKUP_CODES_REGENERATED, user_id, count=len(codes))
        return codes

    def status(self, user_id: str) -> MfaStatus:
        record = self._store.get_by_id(user_id)
        if record is None:
            raise ValidationError("Unknown account")
        return MfaStatus(
            enabled=record.mfa_enabled,
            backup_codes_remaining=record.backup_codes_remaining,
        )

    # ==================== SECOND-FACTOR CHECKS ====================

    def verify_totp(self, record: CredentialRecord, code: str) -> bool:
        """Check a TOTP code against the account's stored secret."""
        if not record.mfa_enabled:
            return False
        secret = self._box.decrypt(record.mfa_secret_encrypted,
                                   associated_data=record.user_id)
        return self._engine.verify_token(secret, code, at=self._clock())

    def consume_backup_code(self, user_id: str, code: str) -> bool:
        """
        Use up one backup code.

        Matching and marking used happen in one store call, so a code can
        never be redeemed twice.
        """
        if not isinstance(code, str) or not code.strip():
            return False
        candidate = code.strip()
        return self._store.consume_backup_code(
            user_id,
            lambda code_hash: self._engine.verify_backup_code(code_hash, candidate),
        )

    def _reverify(self, user_id: str, password: str, code: str) -> CredentialRecord:
        record = self._store.get_by_id(user_id)
        if record is None or not self._hasher.verify(record.password_hash, password):
            raise AuthenticationFailure()
        if not record.mfa_enabled:
            raise ValidationError("MFA is not enabled")
        if not self.verify_totp(record, code):
            self._audit.record(EventType.TOTP_FAILED, user_id, stage="reverify")
            raise AuthenticationFailure()
        return record

    def _hash_codes(self, codes: List[str]) -> List[BackupCodeRecord]:
        return [BackupCodeRecord(code_hash=self._engine.hash_backup_code(c)) for c in codes]
