"""
Domain dataclasses for the credential core.

Pure data containers; services and stores do the work. Timestamps are
Unix seconds (float) except TokenPair expiries, which are epoch
milliseconds on the wire.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class ChallengeMethod(Enum):
    """Second factor used to answer an MFA challenge."""
    TOTP = "totp"
    BACKUP_CODE = "backup_code"


class ResetTokenStatus(Enum):
    """Outcome of checking a password reset token without using it."""
    VALID = "valid"
    INVALID = "invalid"
    EXPIRED = "expired"


class LoginState(Enum):
    """States of the login state machine."""
    CREDENTIALS_PENDING = "credentials_pending"
    PASSWORD_VERIFIED = "password_verified"
    MFA_PENDING = "mfa_pending"
    BACKUP_CODE_PENDING = "backup_code_pending"
    AUTHENTICATED = "authenticated"


@dataclass
class BackupCodeRecord:
    """One hashed single-use recovery code."""
    code_hash: str
    used: bool = False
    used_at: Optional[float] = None


@dataclass
class CredentialRecord:
    """
    Everything the core needs to know about one account.

    password_hash is a self-describing Argon2 PHC string, so parameter
    drift can be detected from the hash alone. mfa_secret_encrypted is
    the SecretBox token of the base32 TOTP secret; None means MFA is off.
    """
    user_id: str
    email: str
    password_hash: str
    roles: List[str] = field(default_factory=list)
    organization_id: str = ""
    mfa_secret_encrypted: Optional[str] = None
    backup_codes: List[BackupCodeRecord] = field(default_factory=list)
    locked_until: Optional[float] = None
    is_active: bool = True

    @property
    def mfa_enabled(self) -> bool:
        return self.mfa_secret_encrypted is not None

    @property
    def backup_codes_remaining(self) -> int:
        return sum(1 for code in self.backup_codes if not code.used)


@dataclass
class MfaChallenge:
    """Transient second-factor challenge issued after a password check."""
    challenge_id: str
    user_id: str
    expires_at: float
    method: ChallengeMethod = ChallengeMethod.TOTP
    attempts: int = 0

    def is_expired(self, now: Optional[float] = None) -> bool:
        """Check if the challenge has expired."""
        if now is None:
            now = time.time()
        return now >= self.expires_at


@dataclass(frozen=True)
class TokenClaims:
    """Identity claims carried by an access token."""
    user_id: str
    email: str
    session_id: str
    roles: List[str] = field(default_factory=list)
    organization_id: str = ""

    def to_payload(self) -> Dict[str, Any]:
        """Claim names as they appear inside the JWT."""
        return {
            'userId': self.user_id,
            'email': self.email,
            'roles': list(self.roles),
            'organizationId': self.organization_id,
            'sessionId': self.session_id,
        }


@dataclass(frozen=True)
class TokenPair:
    """Access + refresh token minted together for one session."""
    access_token: str
    refresh_token: str
    access_expires_at: int   # epoch ms
    refresh_expires_at: int  # epoch ms


@dataclass(frozen=True)
class TotpSecret:
    """Freshly generated TOTP secret ready for enrollment."""
    secret: str
    provisioning_uri: str
    qr_image: Optional[bytes] = None


@dataclass(frozen=True)
class MfaSetup:
    """Pending MFA enrollment handed back to the user."""
    setup_token: str
    secret: str
    provisioning_uri: str
    expires_at: float
    qr_image: Optional[bytes] = None


@dataclass(frozen=True)
class MfaStatus:
    enabled: bool
    backup_codes_remaining: int


@dataclass
class LoginResult:
    """
    Outcome of one login step.

    While MFA is pending only challenge_id is set; tokens are issued
    exclusively in the AUTHENTICATED state.
    """
    state: LoginState
    user_id: str
    challenge_id: Optional[str] = None
    tokens: Optional[TokenPair] = None

    @property
    def mfa_required(self) -> bool:
        return self.state in (LoginState.MFA_PENDING, LoginState.BACKUP_CODE_PENDING)
