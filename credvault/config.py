"""
Configuration structs for the credential core.

Every service takes one of these explicitly; nothing here reads the
environment. Binding env vars or CLI flags to these structs is the job
of the hosting application (see CoreConfig.from_mapping).

Argon2id minimums:
- memory_cost: KiB of memory, at least 64 MiB
- time_cost: iterations, at least 3
- salt_length / hash_length: bytes, at least 16 / 32
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from .errors import ConfigurationError


MIN_MEMORY_COST = 65536   # 64 MiB
MIN_TIME_COST = 3
MIN_SALT_LENGTH = 16      # 128-bit salt
MIN_HASH_LENGTH = 32      # 256-bit digest

TOTP_ALGORITHMS = ('SHA1', 'SHA256', 'SHA512')


@dataclass(frozen=True)
class HashConfig:
    """Argon2id parameters."""
    memory_cost: int = 65536
    time_cost: int = 3
    parallelism: int = 4
    salt_length: int = 16
    hash_length: int = 32

    def __post_init__(self):
        if self.memory_cost < MIN_MEMORY_COST:
            raise ConfigurationError(
                f"memory_cost must be at least {MIN_MEMORY_COST} KiB"
            )
        if self.time_cost < MIN_TIME_COST:
            raise ConfigurationError(f"time_cost must be at least {MIN_TIME_COST}")
        if self.parallelism < 1:
            raise ConfigurationError("parallelism must be at least 1")
        if self.salt_length < MIN_SALT_LENGTH:
            raise ConfigurationError(
                f"salt_length must be at least {MIN_SALT_LENGTH} bytes"
            )
        if self.hash_length < MIN_HASH_LENGTH:
            raise ConfigurationError(
                f"hash_length must be at least {MIN_HASH_LENGTH} bytes"
            )


@dataclass(frozen=True)
class TotpConfig:
    """
    TOTP parameters (RFC 6238 defaults).

    SHA1 / 6 digits / 30 s is what common authenticator apps expect.
    """
    issuer: str = "credvault"
    algorithm: str = 'SHA1'
    digits: int = 6
    period: int = 30
    secret_bytes: int = 20        # 160 bits
    backup_code_count: int = 10
    backup_code_length: int = 8

    def __post_init__(self):
        if not self.issuer:
            raise ConfigurationError("issuer must not be empty")
        if self.algorithm.upper() not in TOTP_ALGORITHMS:
            raise ConfigurationError(f"Unsupported TOTP algorithm: {self.algorithm}")
        if not 6 <= self.digits <= 10:
            raise ConfigurationError("digits must be between 6 and 10")
        if self.period < 1:
            raise ConfigurationError("period must be positive")
        if self.secret_bytes < 20:
            raise ConfigurationError("secret_bytes must be at least 20")
        if self.backup_code_count < 1 or self.backup_code_length < 1:
            raise ConfigurationError("backup code count and length must be positive")


@dataclass(frozen=True)
class TokenConfig:
    """
    Session token parameters.

    Keys are PEM strings: PKCS#8 (or traditional RSA) private key for
    signing, SubjectPublicKeyInfo public key for verification. A
    verify-only service may omit the private key.
    """
    public_key: Optional[str] = None
    private_key: Optional[str] = None
    access_token_expiry: str = "15m"
    refresh_token_expiry: str = "7d"
    issuer: str = "credvault"
    audience: str = "credvault-api"

    def __post_init__(self):
        if not self.issuer or not self.audience:
            raise ConfigurationError("issuer and audience must not be empty")


@dataclass(frozen=True)
class LoginConfig:
    """Login state machine limits (seconds unless noted)."""
    challenge_ttl: int = 300
    max_challenge_attempts: int = 3
    setup_ttl: int = 600
    lockout_threshold: int = 10
    lockout_duration: int = 3600
    attempt_window: int = 3600
    reset_token_ttl: int = 3600

    def __post_init__(self):
        if self.max_challenge_attempts < 1:
            raise ConfigurationError("max_challenge_attempts must be at least 1")
        if min(self.challenge_ttl, self.setup_ttl, self.lockout_duration,
               self.reset_token_ttl) < 1:
            raise ConfigurationError("TTLs must be positive")
        if self.lockout_threshold < 1:
            raise ConfigurationError("lockout_threshold must be at least 1")


# camelCase option names accepted by from_mapping -> (section, field)
_OPTION_MAP = {
    'memoryCost': ('hashing', 'memory_cost'),
    'timeCost': ('hashing', 'time_cost'),
    'parallelism': ('hashing', 'parallelism'),
    'saltLength': ('hashing', 'salt_length'),
    'hashLength': ('hashing', 'hash_length'),
    'totpIssuer': ('totp', 'issuer'),
    'algorithm': ('totp', 'algorithm'),
    'digits': ('totp', 'digits'),
    'period': ('totp', 'period'),
    'accessTokenExpiry': ('tokens', 'access_token_expiry'),
    'refreshTokenExpiry': ('tokens', 'refresh_token_expiry'),
    'issuer': ('tokens', 'issuer'),
    'audience': ('tokens', 'audience'),
    'privateKey': ('tokens', 'private_key'),
    'publicKey': ('tokens', 'public_key'),
}


@dataclass(frozen=True)
class CoreConfig:
    """All sections together, as handed over by the hosting application."""
    hashing: HashConfig = field(default_factory=HashConfig)
    totp: TotpConfig = field(default_factory=TotpConfig)
    tokens: TokenConfig = field(default_factory=TokenConfig)
    login: LoginConfig = field(default_factory=LoginConfig)

    @classmethod
    def from_mapping(cls, options: Mapping[str, Any]) -> 'CoreConfig':
        """
        Build a config from the flat camelCase option names.

        Unknown keys raise ConfigurationError so typos do not silently
        fall back to defaults.
        """
        sections: Dict[str, Dict[str, Any]] = {
            'hashing': {}, 'totp': {}, 'tokens': {},
        }
        for key, value in options.items():
            if key not in _OPTION_MAP:
                raise ConfigurationError(f"Unknown option: {key}")
            section, field_name = _OPTION_MAP[key]
            sections[section][field_name] = value

        return cls(
            hashing=HashConfig(**sections['hashing']),
            totp=TotpConfig(**sections['totp']),
            tokens=TokenConfig(**sections['tokens']),
        )
