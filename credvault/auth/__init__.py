# Authentication Module
"""
Credential and session-token core:
- Password hashing (Argon2id) - passwords.py
- TOTP/HOTP (2FA, RFC 6238) and backup codes - totp.py
- RS256 session tokens - tokens.py
- Login state machine, lockout, refresh and logout - login.py
- Registration and password changes - credentials.py
- Password reset tokens - reset.py
- MFA enrollment - mfa.py
- Store ports and in-memory stores - stores.py

Security features:
- Argon2id with enforced minimum parameters and lazy rehash
- Constant-time TOTP verification without early exit
- Single-use backup codes and MFA challenges
- One generic message for every credential failure
"""

from .passwords import (
    PasswordHasher,
    validate_password_strength,
    calculate_password_score,
)

from .totp import (
    TotpEngine,
    totp,
    hotp,
    generate_secret,
    secret_to_base32,
    base32_to_secret,
)

from .tokens import (
    TokenService,
    parse_duration,
)

from .models import (
    BackupCodeRecord,
    ChallengeMethod,
    CredentialRecord,
    LoginResult,
    LoginState,
    MfaChallenge,
    MfaSetup,
    MfaStatus,
    ResetTokenStatus,
    TokenClaims,
    TokenPair,
    TotpSecret,
)

from .stores import (
    InMemoryChallengeStore,
    InMemoryCredentialStore,
    InMemoryFailureCounter,
    InMemoryResetTokenStore,
    InMemorySessionStore,
    InMemorySetupStore,
    InMemoryTokenBlacklist,
)

from .credentials import CredentialManager
from .mfa import MfaManager
from .login import LoginOrchestrator
from .reset import PasswordResetManager

__all__ = [
    # Passwords
    'PasswordHasher',
    'validate_password_strength',
    'calculate_password_score',
    # TOTP
    'TotpEngine',
    'totp',
    'hotp',
    'generate_secret',
    'secret_to_base32',
    'base32_to_secret',
    # Tokens
    'TokenService',
    'parse_duration',
    # Models
    'BackupCodeRecord',
    'ChallengeMethod',
    'CredentialRecord',
    'LoginResult',
    'LoginState',
    'MfaChallenge',
    'MfaSetup',
    'MfaStatus',
    'ResetTokenStatus',
    'TokenClaims',
    'TokenPair',
    'TotpSecret',
    # Stores
    'InMemoryChallengeStore',
    'InMemoryCredentialStore',
    'InMemoryFailureCounter',
    'InMemoryResetTokenStore',
    'InMemorySessionStore',
    'InMemorySetupStore',
    'InMemoryTokenBlacklist',
    # Orchestration
    'CredentialManager',
    'MfaManager',
    'LoginOrchestrator',
    'PasswordResetManager',
]
