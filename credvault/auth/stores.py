"""
Store ports and in-memory implementations.

The core never persists anything itself. Whatever backs these ports
(SQL, Redis, ...) must make the verify-and-consume operations atomic:
consume_backup_code marks the matching code used only if it is still
unused, ChallengeStore.consume and ResetTokenStore.consume remove the
entry so a second caller gets None. There is no separate mark_used call.

The in-memory stores guard their state with a lock; they serve tests and
single-process deployments. No lock is held while a matcher runs: a
matcher is an Argon2 verification.
"""

import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Protocol, Tuple

from ..errors import ValidationError
from .models import ChallengeMethod, CredentialRecord, MfaChallenge


Clock = Callable[[], float]


class CredentialStore(Protocol):
    def get_by_email(self, email: str) -> Optional[CredentialRecord]:
        """Look up a record by (case-insensitive) email."""

    def get_by_id(self, user_id: str) -> Optional[CredentialRecord]:
        """Look up a record by user id."""

    def add(self, record: CredentialRecord) -> None:
        """Insert a new record; duplicate email or id raises ValidationError."""

    def save(self, record: CredentialRecord) -> None:
        """Replace an existing record."""

    def consume_backup_code(self, user_id: str,
                            matcher: Callable[[str], bool]) -> bool:
        """
        Find an unused code whose hash satisfies matcher and mark it used.

        Marking is a compare-and-set: if another caller used the code
        while matcher was running, this call returns False.
        """


class ChallengeStore(Protocol):
    def create(self, challenge: MfaChallenge) -> None:
        """Store a new challenge until its expires_at."""

    def get(self, challenge_id: str) -> Optional[MfaChallenge]:
        """Return a snapshot of the challenge, or None."""

    def record_failure(self, challenge_id: str) -> int:
        """Atomically increment attempts and return the new count (0 if gone)."""

    def set_method(self, challenge_id: str, method: ChallengeMethod) -> bool:
        """Record the second factor the user chose; False if the challenge is gone."""

    def consume(self, challenge_id: str) -> Optional[MfaChallenge]:
        """Atomically remove and return the challenge; None if already consumed."""

    def delete(self, challenge_id: str) -> None:
        """Remove the challenge if present."""


class SetupStore(Protocol):
    def put(self, setup_token: str, user_id: str, secret: str,
            expires_at: float) -> None:
        """Hold a pending TOTP secret until confirmed or expired."""

    def get(self, setup_token: str) -> Optional[Tuple[str, str]]:
        """Return (user_id, secret) if present and unexpired, leaving it in place."""

    def pop(self, setup_token: str) -> Optional[Tuple[str, str]]:
        """Remove and return (user_id, secret) if present and unexpired."""


class FailureCounter(Protocol):
    def increment(self, key: str) -> int:
        """Record one failure and return the count within the window."""

    def reset(self, key: str) -> None:
        """Forget failures for key (successful login)."""

    def locked_for(self, key: str) -> int:
        """Seconds of lockout remaining for key (0 if not locked)."""


class TokenBlacklist(Protocol):
    def add(self, token_hash: str, expires_at: float) -> bool:
        """
        Revoke a token hash until expires_at (Unix seconds).

        Returns False if the hash was already revoked, so revoking doubles
        as an atomic check-and-consume for refresh token rotation.
        """

    def contains(self, token_hash: str) -> bool:
        """True if the hash is revoked and not yet past its expiry."""


class SessionStore(Protocol):
    def open(self, session_id: str, user_id: str, expires_at: float) -> None:
        """Register a session, or extend it after a refresh (a revoked session stays revoked)."""

    def owner(self, session_id: str) -> Optional[str]:
        """User id of a known, unexpired session, revoked or not."""

    def revoke(self, session_id: str) -> bool:
        """Revoke one session; False if unknown, expired or already revoked."""

    def revoke_all(self, user_id: str, keep: Optional[str] = None) -> int:
        """Revoke every live session of user_id except keep; returns the count."""

    def is_revoked(self, session_id: str) -> bool:
        """True if the session was revoked and has not yet expired."""


class ResetTokenStore(Protocol):
    def put(self, token_hash: str, user_id: str, expires_at: float) -> None:
        """Store a reset token hash, invalidating earlier tokens of the same user."""

    def get(self, token_hash: str) -> Optional[Tuple[str, float]]:
        """Return (user_id, expires_at) without using the token, expired or not."""

    def consume(self, token_hash: str) -> Optional[Tuple[str, float]]:
        """Atomically remove and return (user_id, expires_at); None if already used."""


# ==================== IN-MEMORY IMPLEMENTATIONS ====================


class InMemoryCredentialStore:
    """Dict-backed credential store."""

    def __init__(self, clock: Clock = time.time):
        self._clock = clock
        self._lock = threading.Lock()
        self._records: Dict[str, CredentialRecord] = {}
        self._by_email: Dict[str, str] = {}  # email -> user_id

    def get_by_email(self, email: str) -> Optional[CredentialRecord]:
        with self._lock:
            user_id = self._by_email.get(email.strip().lower())
            return self._records.get(user_id) if user_id else None

    def get_by_id(self, user_id: str) -> Optional[CredentialRecord]:
        with self._lock:
            return self._records.get(user_id)

    def add(self, record: CredentialRecord) -> None:
        email = record.email.strip().lower()
        with self._lock:
            if email in self._by_email or record.user_id in self._records:
                raise ValidationError("Account already exists")
            self._records[record.user_id] = record
            self._by_email[email] = record.user_id

    def save(self, record: CredentialRecord) -> None:
        with self._lock:
            if record.user_id not in self._records:
                raise ValidationError("Unknown account")
            self._records[record.user_id] = record

    def consume_backup_code(self, user_id: str,
                            matcher: Callable[[str], bool]) -> bool:
        with self._lock:
            record = self._records.get(user_id)
            if record is None:
                return False
            candidates = [code for code in record.backup_codes if not code.used]

        match = next((code for code in candidates if matcher(code.code_hash)), None)
        if match is None:
            return False

        with self._lock:
            current = self._records.get(user_id)
            # Used by a concurrent caller, or the codes were regenerated
            if (current is None or match.used
                    or not any(code is match for code in current.backup_codes)):
                return False
            match.used = True
            match.used_at = self._clock()
            return True

    def __len__(self) -> int:
        return len(self._records)


class InMemoryChallengeStore:
    """Dict-backed MFA challenge store with expiry."""

    def __init__(self, clock: Clock = time.time):
        self._clock = clock
        self._lock = threading.Lock()
        self._challenges: Dict[str, MfaChallenge] = {}

    def create(self, challenge: MfaChallenge) -> None:
        with self._lock:
            self._purge_expired()
            self._challenges[challenge.challenge_id] = challenge

    def get(self, challenge_id: str) -> Optional[MfaChallenge]:
        with self._lock:
            challenge = self._challenges.get(challenge_id)
            if challenge is None:
                return None
            # Snapshot so callers cannot mutate shared state
            return MfaChallenge(
                challenge_id=challenge.challenge_id,
                user_id=challenge.user_id,
                expires_at=challenge.expires_at,
                method=challenge.method,
                attempts=challenge.attempts,
            )

    def record_failure(self, challenge_id: str) -> int:
        with self._lock:
            challenge = self._challenges.get(challenge_id)
            if challenge is None:
                return 0
            challenge.attempts += 1
            return challenge.attempts

    def set_method(self, challenge_id: str, method: ChallengeMethod) -> bool:
        with self._lock:
            challenge = self._challenges.get(challenge_id)
            if challenge is None:
                return False
            challenge.method = method
            return True

    def consume(self, challenge_id: str) -> Optional[MfaChallenge]:
        with self._lock:
            return self._challenges.pop(challenge_id, None)

    def delete(self, challenge_id: str) -> None:
        with self._lock:
            self._challenges.pop(challenge_id, None)

    def _purge_expired(self) -> None:
        now = self._clock()
        expired = [cid for cid, c in self._challenges.items()
                   if c.is_expired(now)]
        for cid in expired:
            del self._challenges[cid]

    def __len__(self) -> int:
        return len(self._challenges)


class InMemorySetupStore:
    """Pending MFA enrollments keyed by setup token."""

    def __init__(self, clock: Clock = time.time):
        self._clock = clock
        self._lock = threading.Lock()
        self._pending: Dict[str, Tuple[str, str, float]] = {}

    def put(self, setup_token: str, user_id: str, secret: str,
            expires_at: float) -> None:
        now = self._clock()
        with self._lock:
            # One pending enrollment per user; abandoned ones are swept
            stale = [t for t, (uid, _, exp) in self._pending.items()
                     if uid == user_id or exp <= now]
            for token in stale:
                del self._pending[token]
            self._pending[setup_token] = (user_id, secret, expires_at)

    def get(self, setup_token: str) -> Optional[Tuple[str, str]]:
        with self._lock:
            entry = self._pending.get(setup_token)
        return self._unexpired(entry)

    def pop(self, setup_token: str) -> Optional[Tuple[str, str]]:
        with self._lock:
            entry = self._pending.pop(setup_token, None)
        return self._unexpired(entry)

    def _unexpired(self, entry: Optional[Tuple[str, str, float]]) -> Optional[Tuple[str, str]]:
        if entry is None:
            return None
        user_id, secret, expires_at = entry
        if self._clock() >= expires_at:
            return None
        return user_id, secret

    def __len__(self) -> int:
        return len(self._pending)


@dataclass
class _FailureWindow:
    """Track failed attempts for one key."""
    attempts: int = 0
    first_attempt_time: float = 0.0
    lockout_until: float = 0.0


class InMemoryFailureCounter:
    """
    Failed-login counter with lockout.

    Counts failures per key inside a sliding window and reports a
    lockout once max_attempts is reached.
    """

    def __init__(self, max_attempts: int = 10,
                 lockout_duration: int = 3600,
                 window_seconds: int = 3600,
                 clock: Clock = time.time):
        self._max_attempts = max_attempts
        self._lockout_duration = lockout_duration
        self._window_seconds = window_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._windows: Dict[str, _FailureWindow] = {}

    def increment(self, key: str) -> int:
        now = self._clock()
        with self._lock:
            self._purge_stale(now)
            window = self._windows.get(key)

            # Reset if window has passed
            if window is None or now - window.first_attempt_time > self._window_seconds:
                window = _FailureWindow(first_attempt_time=now)
                self._windows[key] = window

            window.attempts += 1

            # Lock out if too many attempts
            if window.attempts >= self._max_attempts:
                window.lockout_until = now + self._lockout_duration
            return window.attempts

    def reset(self, key: str) -> None:
        with self._lock:
            self._windows.pop(key, None)

    def locked_for(self, key: str) -> int:
        now = self._clock()
        with self._lock:
            window = self._windows.get(key)
            if window is None or window.lockout_until <= now:
                return 0
            return int(window.lockout_until - now) or 1

    def _purge_stale(self, now: float) -> None:
        # Windows that are over and not holding a lockout carry no state
        stale = [key for key, w in self._windows.items()
                 if now - w.first_attempt_time > self._window_seconds
                 and w.lockout_until <= now]
        for key in stale:
            del self._windows[key]

    def __len__(self) -> int:
        return len(self._windows)


class InMemoryTokenBlacklist:
    """Revoked token hashes, each kept until the token would expire anyway."""

    def __init__(self, clock: Clock = time.time):
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[str, float] = {}

    def add(self, token_hash: str, expires_at: float) -> bool:
        now = self._clock()
        with self._lock:
            current = self._entries.get(token_hash)
            if current is not None and current > now:
                return False
            self._entries[token_hash] = expires_at
            return True

    def contains(self, token_hash: str) -> bool:
        now = self._clock()
        with self._lock:
            expires_at = self._entries.get(token_hash)
            if expires_at is None:
                return False
            if expires_at <= now:
                del self._entries[token_hash]
                return False
            return True

    def cleanup_expired(self) -> int:
        """
        Remove expired entries.

        Returns:
            Number of entries removed
        """
        now = self._clock()
        with self._lock:
            expired = [h for h, exp in self._entries.items() if exp <= now]
            for token_hash in expired:
                del self._entries[token_hash]
        return len(expired)


@dataclass
class _Session:
    user_id: str
    expires_at: float
    revoked: bool = False


class InMemorySessionStore:
    """
    Issued sessions and their revocation state.

    An entry lives until the session's last refresh token would expire;
    after that no token of the session verifies anyway.
    """

    def __init__(self, clock: Clock = time.time):
        self._clock = clock
        self._lock = threading.Lock()
        self._sessions: Dict[str, _Session] = {}

    def open(self, session_id: str, user_id: str, expires_at: float) -> None:
        now = self._clock()
        with self._lock:
            self._purge_expired(now)
            session = self._sessions.get(session_id)
            if session is None:
                self._sessions[session_id] = _Session(user_id, expires_at)
            else:
                session.expires_at = max(session.expires_at, expires_at)

    def owner(self, session_id: str) -> Optional[str]:
        with self._lock:
            session = self._live(session_id)
            return session.user_id if session else None

    def revoke(self, session_id: str) -> bool:
        with self._lock:
            session = self._live(session_id)
            if session is None or session.revoked:
                return False
            session.revoked = True
            return True

    def revoke_all(self, user_id: str, keep: Optional[str] = None) -> int:
        now = self._clock()
        count = 0
        with self._lock:
            for session_id, session in self._sessions.items():
                if (session.user_id == user_id and session_id != keep
                        and not session.revoked and session.expires_at > now):
                    session.revoked = True
                    count += 1
        return count

    def is_revoked(self, session_id: str) -> bool:
        with self._lock:
            session = self._live(session_id)
            return session is not None and session.revoked

    def _live(self, session_id: str) -> Optional[_Session]:
        session = self._sessions.get(session_id)
        if session is None or session.expires_at <= self._clock():
            return None
        return session

    def _purge_expired(self, now: float) -> None:
        expired = [sid for sid, s in self._sessions.items() if s.expires_at <= now]
        for session_id in expired:
            del self._sessions[session_id]

    def __len__(self) -> int:
        return len(self._sessions)


class InMemoryResetTokenStore:
    """Password reset token hashes, at most one outstanding per user."""

    def __init__(self, clock: Clock = time.time):
        self._clock = clock
        self._lock = threading.Lock()
        self._tokens: Dict[str, Tuple[str, float]] = {}

    def put(self, token_hash: str, user_id: str, expires_at: float) -> None:
        now = self._clock()
        with self._lock:
            stale = [h for h, (uid, exp) in self._tokens.items()
                     if uid == user_id or exp <= now]
            for old_hash in stale:
                del self._tokens[old_hash]
            self._tokens[token_hash] = (user_id, expires_at)

    def get(self, token_hash: str) -> Optional[Tuple[str, float]]:
        with self._lock:
            return self._tokens.get(token_hash)

    def consume(self, token_hash: str) -> Optional[Tuple[str, float]]:
        with self._lock:
            return self._tokens.pop(token_hash, None)

    def __len__(self) -> int:
        return len(self._tokens)
