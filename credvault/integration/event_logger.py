"""
Audit Trail Module

Records security-relevant actions of the credential core.

Features:
- Login, MFA, token and password events
- Privacy-preserving user hashes (SHA-256)
- Events written to the "credvault.audit" logger
- Pluggable sinks for external persistence (database, SIEM, ...)

Secrets never appear in events: no passwords, codes, TOTP secrets or
raw tokens, only hashes and counters.
"""

import hashlib
import json
import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger("credvault.audit")


EVENT_VERSION = "1.0"


def get_user_hash(user_id: str) -> str:
    """
    Compute privacy-preserving hash of a user identifier.

    Events for the same user can still be correlated without the
    identifier itself ever being written out.

    Returns:
        Hex-encoded SHA-256 hash
    """
    return hashlib.sha256(user_id.encode('utf-8')).hexdigest()


class EventType(Enum):
    """Types of security events that can be recorded."""

    # Authentication events
    LOGIN_SUCCESS = "login_success"
    LOGIN_FAILED = "login_failed"
    ACCOUNT_LOCKED = "account_locked"
    LOGOUT = "logout"

    # Second factor
    MFA_CHALLENGE_ISSUED = "mfa_challenge_issued"
    TOTP_VERIFIED = "totp_verified"
    TOTP_FAILED = "totp_failed"
    BACKUP_CODE_USED = "backup_code_used"
    MFA_MAX_ATTEMPTS = "mfa_max_attempts"
    MFA_ENABLED = "mfa_enabled"
    MFA_DISABLED = "mfa_disabled"
    BACKUP_CODES_REGENERATED = "backup_codes_regenerated"

    # Credentials
    USER_REGISTERED = "user_registered"
    PASSWORD_CHANGED = "password_changed"
    PASSWORD_REHASHED = "password_rehashed"
    PASSWORD_RESET_REQUESTED = "password_reset_requested"
    PASSWORD_RESET_COMPLETED = "password_reset_completed"

    # Tokens
    TOKEN_REFRESHED = "token_refreshed"
    TOKEN_REJECTED = "token_rejected"
    TOKEN_REUSE_DETECTED = "token_reuse_detected"

    # Sessions
    SESSION_REVOKED = "session_revoked"
    ALL_SESSIONS_REVOKED = "all_sessions_revoked"


@dataclass
class SecurityEvent:
    """
    A security event.

    All user-identifying information is hashed for privacy.
    """
    event_type: EventType
    user_hash: str  # SHA-256 hash of the user id
    timestamp: int  # Unix timestamp
    details: Dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> str:
        """Compact JSON form handed to the log and to sinks."""
        return json.dumps({
            'version': EVENT_VERSION,
            'type': self.event_type.value,
            'user': self.user_hash[:16],
            'time': self.timestamp,
            'iso_time': datetime.fromtimestamp(self.timestamp, tz=timezone.utc).isoformat(),
            'details': self.details,
        }, separators=(',', ':'), sort_keys=True)

    @classmethod
    def from_json(cls, data: str) -> 'SecurityEvent':
        parsed = json.loads(data)
        return cls(
            event_type=EventType(parsed['type']),
            user_hash=parsed['user'],
            timestamp=parsed['time'],
            details=parsed.get('details', {}),
        )

    def __str__(self) -> str:
        dt = datetime.fromtimestamp(self.timestamp, tz=timezone.utc)
        return (
            f"[{dt.strftime('%Y-%m-%d %H:%M:%S')}] "
            f"{self.event_type.value} | "
            f"user:{self.user_hash[:8]}..."
        )


Sink = Callable[[SecurityEvent], None]


class AuditTrail:
    """
    Fan-out recorder for security events.

    Example:
        >>> trail = AuditTrail()
        >>> trail.add_sink(events.append)
        >>> trail.record(EventType.LOGIN_SUCCESS, "user-1")
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._lock = threading.Lock()
        self._sinks: List[Sink] = []

    def add_sink(self, sink: Sink) -> None:
        """Register a callable notified of every new event."""
        with self._lock:
            self._sinks.append(sink)

    def remove_sink(self, sink: Sink) -> None:
        with self._lock:
            if sink in self._sinks:
                self._sinks.remove(sink)

    def record(self, event_type: EventType, user_id: Optional[str],
               **details: Any) -> SecurityEvent:
        """
        Record one event.

        Args:
            event_type: What happened
            user_id: Plain user id or email (hashed before use), None if unknown
            **details: Extra non-secret context

        Returns:
            The recorded event
        """
        event = SecurityEvent(
            event_type=event_type,
            user_hash=get_user_hash(user_id) if user_id else "anonymous",
            timestamp=int(self._clock()),
            details=details,
        )
        logger.info("%s", event.to_json())

        with self._lock:
            sinks = list(self._sinks)
        for sink in sinks:
            try:
                sink(event)
            except Exception:
                # A broken sink must not break authentication
                logger.exception("Audit sink %r failed", sink)
        return event
