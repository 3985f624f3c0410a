"""
credvault - credential and session-token core.

Password hashing (Argon2id), TOTP second factor with backup codes, RS256
access/refresh tokens and the login state machine that ties them together.
Every service is built from an explicit config object; see credvault.config.
"""

from .config import CoreConfig, HashConfig, LoginConfig, TokenConfig, TotpConfig
from .errors import (
    AccountLockedError,
    AuthenticationFailure,
    ConfigurationError,
    CredentialError,
    ExpiredError,
    InvalidTokenError,
    MFAMaxAttemptsError,
    ValidationError,
)

__version__ = "0.1.0"

__all__ = [
    'CoreConfig',
    'HashConfig',
    'LoginConfig',
    'TokenConfig',
    'TotpConfig',
    'AccountLockedError',
    'AuthenticationFailure',
    'ConfigurationError',
    'CredentialError',
    'ExpiredError',
    'InvalidTokenError',
    'MFAMaxAttemptsError',
    'ValidationError',
]
