"""
User Login Module

Drives the login state machine:

    credentials_pending -> password_verified -> authenticated         (no MFA)
    credentials_pending -> password_verified -> mfa_pending -> authenticated
    mfa_pending -> backup_code_pending -> authenticated

Implements:
- Password check with one generic failure message
- Failed-login counting and account lockout
- Short-lived MFA challenges with an attempt limit
- Single-use backup codes
- Session token issuance, refresh rotation and logout
- Session revocation, one session or all of a user's sessions

Security considerations:
- Unknown users still cost one Argon2 verification (dummy hash), so
  response time does not reveal whether an account exists
- Tokens are only issued in the authenticated state
- Revoked tokens are tracked by SHA-256 hash, never stored raw
- Presenting a rotated refresh token again revokes its whole session
- Never log sensitive data (passwords, codes, tokens)
"""

import logging
import secrets
import time
import uuid
from typing import Any, Callable, Dict, Optional

from ..config import LoginConfig
from ..errors import (
    AccountLockedError,
    AuthenticationFailure,
    ExpiredError,
    InvalidTokenError,
    MFAMaxAttemptsError,
    ValidationError,
)
from ..integration.event_logger import AuditTrail, EventType
from .credentials import CredentialManager
from .mfa import MfaManager
from .models import (
    ChallengeMethod,
    CredentialRecord,
    LoginResult,
    LoginState,
    MfaChallenge,
    TokenClaims,
    TokenPair,
)
from .passwords import PasswordHasher
from .stores import (
    ChallengeStore,
    CredentialStore,
    FailureCounter,
    InMemorySessionStore,
    SessionStore,
    TokenBlacklist,
)
from .tokens import TokenService

logger = logging.getLogger("credvault.auth.login")


CHALLENGE_ID_BYTES = 32


class LoginOrchestrator:
    """
    Complete login flow over the credential primitives and stores.

    Example:
        >>> result = orchestrator.login("alice@example.com", password)
        >>> if result.mfa_required:
        ...     result = orchestrator.verify_mfa(result.challenge_id, code)
        >>> result.tokens.access_token
    """

    def __init__(self, hasher: PasswordHasher,
                 credentials: CredentialManager,
                 mfa: MfaManager,
                 tokens: TokenService,
                 store: CredentialStore,
                 challenges: ChallengeStore,
                 failures: FailureCounter,
                 blacklist: TokenBlacklist,
                 config: Optional[LoginConfig] = None,
                 audit: Optional[AuditTrail] = None,
                 clock: Callable[[], float] = time.time,
                 sessions: Optional[SessionStore] = None):
        self._hasher = hasher
        self._credentials = credentials
        self._mfa = mfa
        self._tokens = tokens
        self._store = store
        self._challenges = challenges
        self._failures = failures
        self._blacklist = blacklist
        self._config = config or LoginConfig()
        self._audit = audit or AuditTrail(clock)
        self._clock = clock
        self._sessions = sessions if sessions is not None else InMemorySessionStore(clock)
        # Verified against when the account does not exist
        self._dummy_hash = hasher.hash(secrets.token_urlsafe(32))

    # ==================== FIRST FACTOR ====================

    def login(self, email: str, password: str) -> LoginResult:
        """
        Check email and password.

        Returns:
            LoginResult in MFA_PENDING (challenge_id only) or AUTHENTICATED
            (tokens) state

        Raises:
            AccountLockedError: Too many recent failures for this email
            AuthenticationFailure: Unknown email or wrong password (same message)
        """
        key = email.strip().lower() if isinstance(email, str) else ""

        retry_after = self._failures.locked_for(key)
        if retry_after > 0:
            self._audit.record(EventType.ACCOUNT_LOCKED, key, retry_after=retry_after)
            raise AccountLockedError(retry_after)

        record = self._store.get_by_email(key) if key else None
        if record is None:
            # Equalize timing with the real verification below
            self._hasher.verify(self._dummy_hash, password)
            raise self._failure(key, reason="unknown_user")

        if not self._hasher.verify(record.password_hash, password):
            raise self._failure(key, record.user_id, reason="bad_password")
        if not record.is_active:
            raise self._failure(key, record.user_id, reason="inactive")

        now = self._clock()
        if record.locked_until is not None and record.locked_until > now:
            raise AccountLockedError(int(record.locked_until - now) or 1)

        # State: password_verified
        self._failures.reset(key)
        self._credentials.rehash_if_needed(record, password)

        if record.mfa_enabled:
            challenge = MfaChallenge(
                challenge_id=secrets.token_urlsafe(CHALLENGE_ID_BYTES),
                user_id=record.user_id,
                expires_at=now + self._config.challenge_ttl,
            )
            self._challenges.create(challenge)
            self._audit.record(EventType.MFA_CHALLENGE_ISSUED, record.user_id)
            return LoginResult(
                state=LoginState.MFA_PENDING,
                user_id=record.user_id,
                challenge_id=challenge.challenge_id,
            )

        pair = self._issue(record)
        self._audit.record(EventType.LOGIN_SUCCESS, record.user_id, mfa=False)
        return LoginResult(state=LoginState.AUTHENTICATED, user_id=record.user_id, tokens=pair)

    def _failure(self, key: str, user_id: Optional[str] = None,
                 reason: str = "") -> AuthenticationFailure:
        attempts = self._failures.increment(key)
        self._audit.record(EventType.LOGIN_FAILED, user_id or key,
                           reason=reason, attempts=attempts)
        if self._failures.locked_for(key) > 0:
            self._audit.record(EventType.ACCOUNT_LOCKED, user_id or key)
            logger.warning("Login locked out after %d failed attempts", attempts)
        return AuthenticationFailure()

    # ==================== SECOND FACTOR ====================

    def request_backup_code(self, challenge_id: str) -> LoginResult:
        """
        Switch a pending challenge to backup-code entry.

        The choice is stored on the challenge; verify_mfa uses it unless
        the caller names a method explicitly.
        """
        challenge = self._live_challenge(challenge_id)
        if not self._challenges.set_method(challenge_id, ChallengeMethod.BACKUP_CODE):
            raise AuthenticationFailure()
        return LoginResult(
            state=LoginState.BACKUP_CODE_PENDING,
            user_id=challenge.user_id,
            challenge_id=challenge.challenge_id,
        )

    def verify_mfa(self, challenge_id: str, code: str,
                   method: Optional[ChallengeMethod] = None) -> LoginResult:
        """
        Answer an MFA challenge.

        Args:
            challenge_id: From the MFA_PENDING login result
            code: TOTP code or backup code
            method: Second factor; defaults to the one stored on the
                challenge (TOTP unless request_backup_code was called)

        Raises:
            AuthenticationFailure: Unknown challenge or wrong code
            ExpiredError: Challenge expired (it is destroyed)
            MFAMaxAttemptsError: Attempt limit reached (challenge destroyed)
        """
        challenge = self._live_challenge(challenge_id)
        if method is None:
            method = challenge.method

        record = self._store.get_by_id(challenge.user_id)
        if record is None or not record.is_active:
            self._challenges.delete(challenge_id)
            raise AuthenticationFailure()

        if method is ChallengeMethod.BACKUP_CODE:
            # Matching and marking used is a single store operation
            valid = self._mfa.consume_backup_code(record.user_id, code)
        else:
            valid = self._mfa.verify_totp(record, code)

        if not valid:
            attempts = self._challenges.record_failure(challenge_id)
            self._audit.record(EventType.TOTP_FAILED, record.user_id,
                               method=method.value, attempts=attempts)
            if attempts >= self._config.max_challenge_attempts:
                self._challenges.delete(challenge_id)
                self._audit.record(EventType.MFA_MAX_ATTEMPTS, record.user_id)
                raise MFAMaxAttemptsError(attempts)
            raise AuthenticationFailure()

        # Only one caller can consume the challenge
        if self._challenges.consume(challenge_id) is None:
            raise AuthenticationFailure()

        if method is ChallengeMethod.BACKUP_CODE:
            self._audit.record(EventType.BACKUP_CODE_USED, record.user_id)
        else:
            self._audit.record(EventType.TOTP_VERIFIED, record.user_id)

        pair = self._issue(record)
        self._audit.record(EventType.LOGIN_SUCCESS, record.user_id, mfa=True)
        return LoginResult(state=LoginState.AUTHENTICATED, user_id=record.user_id, tokens=pair)

    def _live_challenge(self, challenge_id: str) -> MfaChallenge:
        challenge = self._challenges.get(challenge_id) if challenge_id else None
        if challenge is None:
            raise AuthenticationFailure()
        if challenge.is_expired(self._clock()):
            self._challenges.delete(challenge_id)
            raise ExpiredError("MFA challenge expired")
        return challenge

    # ==================== SESSIONS ====================

    def authenticate(self, access_token: str) -> Dict[str, Any]:
        """
        Verify an access token presented with a request.

        Returns:
            The token claims

        Raises:
            ExpiredError: Token expired
            InvalidTokenError: Invalid or revoked token, or revoked session
        """
        payload = self._tokens.verify_access_token(access_token)
        if self._blacklist.contains(TokenService.get_token_hash(access_token)):
            raise InvalidTokenError("Token revoked")
        if self._sessions.is_revoked(payload['sessionId']):
            raise InvalidTokenError("Session revoked")
        return payload

    def refresh(self, refresh_token: str) -> TokenPair:
        """
        Rotate a refresh token into a new token pair.

        Identity claims are reloaded from the credential store, so role or
        email changes apply from the next refresh. The presented token is
        revoked. Presenting it again is treated as theft and revokes the
        whole session, including the pair it was rotated into.

        Raises:
            ExpiredError: Refresh token expired
            InvalidTokenError: Invalid, revoked or orphaned refresh token,
                or revoked session
        """
        token_hash = TokenService.get_token_hash(refresh_token)
        if self._blacklist.contains(token_hash):
            self._revoke_on_reuse(refresh_token)
            raise InvalidTokenError("Token revoked")

        payload = self._tokens.verify_refresh_token(refresh_token)
        session_id = payload['sessionId']
        if self._sessions.is_revoked(session_id):
            self._audit.record(EventType.TOKEN_REJECTED, payload['userId'],
                               reason="session_revoked")
            raise InvalidTokenError("Session revoked")

        record = self._store.get_by_id(payload['userId'])
        if record is None or not record.is_active:
            raise InvalidTokenError("Invalid token")

        # Revoke first: concurrent refreshes with the same token get one winner
        if not self._blacklist.add(token_hash, payload['exp']):
            self._revoke_on_reuse(refresh_token)
            raise InvalidTokenError("Token revoked")

        pair = self._tokens.refresh_tokens(refresh_token, self._claims_for(record, session_id))
        self._sessions.open(session_id, record.user_id, pair.refresh_expires_at / 1000)
        self._audit.record(EventType.TOKEN_REFRESHED, record.user_id)
        return pair

    def _revoke_on_reuse(self, refresh_token: str) -> None:
        try:
            payload = self._tokens.verify_refresh_token(refresh_token)
        except (ExpiredError, InvalidTokenError):
            self._audit.record(EventType.TOKEN_REJECTED, None, reason="revoked")
            return
        if self._sessions.revoke(payload['sessionId']):
            logger.warning("Refresh token reuse detected; session revoked")
        self._audit.record(EventType.TOKEN_REUSE_DETECTED, payload['userId'])

    def logout(self, access_token: str, refresh_token: Optional[str] = None) -> None:
        """
        End the session and revoke its tokens until they would expire anyway.

        Both tokens are checked before anything is revoked.

        Raises:
            InvalidTokenError: Invalid access token, or a refresh token
                belonging to another user
        """
        payload = self._tokens.verify_access_token(access_token)

        refresh_payload = None
        if refresh_token is not None:
            try:
                refresh_payload = self._tokens.verify_refresh_token(refresh_token)
            except ExpiredError:
                refresh_payload = None
            if refresh_payload is not None and refresh_payload['userId'] != payload['userId']:
                raise InvalidTokenError("Refresh token does not belong to this user")

        self._blacklist.add(TokenService.get_token_hash(access_token), payload['exp'])
        if refresh_payload is not None:
            self._blacklist.add(TokenService.get_token_hash(refresh_token),
                                refresh_payload['exp'])
        self._sessions.revoke(payload['sessionId'])

        self._audit.record(EventType.LOGOUT, payload['userId'])

    def revoke_session(self, user_id: str, session_id: str) -> None:
        """
        Revoke one of the user's sessions (e.g. a lost device).

        Raises:
            ValidationError: No live session with that id belongs to user_id
        """
        if self._sessions.owner(session_id) != user_id:
            raise ValidationError("Session not found")
        self._sessions.revoke(session_id)
        self._audit.record(EventType.SESSION_REVOKED, user_id)

    def revoke_all_sessions(self, user_id: str, current_session_id: Optional[str],
                            password: str) -> int:
        """
        Revoke every other session of the user after a password re-check.

        Returns:
            Number of sessions revoked

        Raises:
            AuthenticationFailure: Unknown user or wrong password
        """
        record = self._store.get_by_id(user_id)
        if record is None:
            self._hasher.verify(self._dummy_hash, password)
            raise AuthenticationFailure()
        if not self._hasher.verify(record.password_hash, password):
            raise AuthenticationFailure()

        count = self._sessions.revoke_all(user_id, keep=current_session_id)
        self._audit.record(EventType.ALL_SESSIONS_REVOKED, user_id, count=count)
        return count

    def _issue(self, record: CredentialRecord) -> TokenPair:
        session_id = str(uuid.uuid4())
        pair = self._tokens.generate_token_pair(self._claims_for(record, session_id))
        self._sessions.open(session_id, record.user_id, pair.refresh_expires_at / 1000)
        return pair

    @staticmethod
    def _claims_for(record: CredentialRecord, session_id: str) -> TokenClaims:
        return TokenClaims(
            user_id=record.user_id,
            email=record.email,
            session_id=session_id,
            roles=list(record.roles),
            organization_id=record.organization_id,
        )
