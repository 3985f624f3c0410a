"""
Error kinds raised across the credential core.

Library exceptions (argon2, PyJWT, cryptography) never leave a component;
they are caught at the boundary and re-raised as one of these.

Wrong-but-well-formed credentials are not errors at the primitive level:
PasswordHasher.verify, TotpEngine.verify_token and verify_backup_code
return False. Only the login orchestration raises AuthenticationFailure,
always with the same generic message.
"""

from typing import Optional


GENERIC_AUTH_MESSAGE = "Invalid email or password"


class CredentialError(Exception):
    """Base class for every error raised by credvault."""


class ValidationError(CredentialError, ValueError):
    """Malformed input: empty password, unparseable hash, bad code format."""


class ConfigurationError(CredentialError):
    """Unusable configuration: weak parameters, bad durations, missing keys."""


class AuthenticationFailure(CredentialError):
    """
    Credentials were rejected.

    The message is deliberately the same for unknown users, wrong
    passwords and wrong MFA codes.
    """

    def __init__(self, message: str = GENERIC_AUTH_MESSAGE):
        super().__init__(message)


class AccountLockedError(AuthenticationFailure):
    """Too many failed logins; retry after `retry_after` seconds."""

    def __init__(self, retry_after: int):
        super().__init__("Account temporarily locked")
        self.retry_after = retry_after


class ExpiredError(CredentialError):
    """A token or MFA challenge is past its expiry."""


class InvalidTokenError(CredentialError):
    """Bad signature, wrong issuer/audience, wrong type claim or revoked token."""


class MFAMaxAttemptsError(CredentialError):
    """The MFA challenge was exhausted and destroyed; restart from login."""

    def __init__(self, attempts: Optional[int] = None):
        super().__init__("Too many failed verification attempts")
        self.attempts = attempts
