"""
Password Hashing Module

Implements password storage using the Argon2id algorithm.

Features:
- Argon2id password hashing (winner of Password Hashing Competition)
- Enforced minimum parameters (64 MiB, 3 iterations, 16-byte salt, 32-byte hash)
- Self-describing PHC hash strings (parameters + salt embedded)
- Parameter drift detection for lazy rehash on next login
- Password strength validation

Security considerations:
- Never store plaintext passwords
- argon2-cffi compares digests in constant time
- Salt is generated fresh by argon2-cffi on every call
"""

import logging
import re
from typing import Dict, Optional

from argon2 import PasswordHasher as Argon2Hasher, Type, extract_parameters
from argon2.exceptions import (
    HashingError,
    InvalidHashError,
    VerificationError,
    VerifyMismatchError,
)
from argon2.low_level import ARGON2_VERSION

from ..config import HashConfig
from ..errors import ConfigurationError, ValidationError

logger = logging.getLogger("credvault.auth.passwords")


# Password strength requirements
PASSWORD_MIN_LENGTH = 12
PASSWORD_MAX_LENGTH = 128
SPECIAL_CHARACTERS = r'[!@#$%^&*(),.?":{}|<>\[\]\\/_+=~`;\'-]'


class PasswordHasher:
    """
    Argon2id password hasher.

    Argon2id is the hybrid variant: data-independent memory access in
    the first pass resists side-channel timing attacks, data-dependent
    access afterwards resists GPU cracking.

    Example:
        >>> hasher = PasswordHasher()
        >>> hash_str = hasher.hash("correct horse battery staple")
        >>> hasher.verify(hash_str, "correct horse battery staple")
        True
    """

    def __init__(self, config: Optional[HashConfig] = None):
        """
        Args:
            config: Argon2 parameters; defaults meet the enforced minimums
        """
        self._config = config or HashConfig()
        self._hasher = Argon2Hasher(
            time_cost=self._config.time_cost,
            memory_cost=self._config.memory_cost,
            parallelism=self._config.parallelism,
            hash_len=self._config.hash_length,
            salt_len=self._config.salt_length,
            type=Type.ID,
        )

    @property
    def config(self) -> HashConfig:
        return self._config

    def hash(self, password: str) -> str:
        """
        Hash a password using Argon2id.

        The resulting hash contains the algorithm parameters and salt,
        so two hashes of the same password never match byte-for-byte.

        Raises:
            ValidationError: If password is empty
        """
        if not password:
            raise ValidationError("Password cannot be empty")

        try:
            return self._hasher.hash(password)
        except HashingError as e:
            logger.error("Argon2 hashing failed with configured cost: %s", e)
            raise ConfigurationError(f"Argon2 hashing failed: {e}") from e

    def verify(self, hash_str: str, password: str) -> bool:
        """
        Verify a password against an Argon2 hash.

        Returns False for an empty or wrong password.

        Raises:
            ValidationError: If hash_str is not an Argon2 PHC string
        """
        if not isinstance(hash_str, str):
            raise ValidationError("Invalid hash format")
        if not password:
            return False

        try:
            return self._hasher.verify(hash_str, password)
        except VerifyMismatchError:
            return False
        except (InvalidHashError, UnicodeEncodeError) as e:
            raise ValidationError("Invalid hash format") from e
        except VerificationError as e:
            # Corrupted digest or unsupported variant parameters
            logger.warning("Argon2 verification error: %s", e)
            return False

    def needs_rehash(self, hash_str: str) -> bool:
        """
        Check whether a hash was made with weaker parameters than configured.

        Only upgrades count: a hash made with stronger parameters than the
        current configuration does not need rehashing.

        Raises:
            ValidationError: If hash_str is not an Argon2 PHC string
        """
        if not isinstance(hash_str, str):
            raise ValidationError("Invalid hash format")
        try:
            params = extract_parameters(hash_str)
        except (InvalidHashError, ValueError) as e:
            raise ValidationError("Invalid hash format") from e

        if params.type is not Type.ID or params.version < ARGON2_VERSION:
            return True

        return (
            params.memory_cost < self._config.memory_cost
            or params.time_cost < self._config.time_cost
            or params.parallelism < self._config.parallelism
            or params.hash_len < self._config.hash_length
            or params.salt_len < self._config.salt_length
        )


def validate_password_strength(password: str) -> Dict:
    """
    Validate password against strength requirements.

    Args:
        password: Password to validate

    Returns:
        Dict with 'valid' bool, 'errors' list and 'score'
    """
    errors = []

    # Length checks
    if len(password) < PASSWORD_MIN_LENGTH:
        errors.append(f"Must be at least {PASSWORD_MIN_LENGTH} characters")
    if len(password) > PASSWORD_MAX_LENGTH:
        errors.append(f"Must be at most {PASSWORD_MAX_LENGTH} characters")

    # Character class checks
    if not re.search(r'[A-Z]', password):
        errors.append("Must contain at least one uppercase letter")
    if not re.search(r'[a-z]', password):
        errors.append("Must contain at least one lowercase letter")
    if not re.search(r'\d', password):
        errors.append("Must contain at least one digit")
    if not re.search(SPECIAL_CHARACTERS, password):
        errors.append("Must contain at least one special character")

    return {
        'valid': len(errors) == 0,
        'errors': errors,
        'score': calculate_password_score(password),
    }


def calculate_password_score(password: str) -> int:
    """
    Calculate a password strength score (0-100).

    Args:
        password: Password to score

    Returns:
        Score from 0 (weak) to 100 (strong)
    """
    score = 0

    # Length scoring (up to 30 points)
    score += min(len(password) * 2, 30)

    # Character variety (up to 40 points)
    if re.search(r'[a-z]', password):
        score += 10
    if re.search(r'[A-Z]', password):
        score += 10
    if re.search(r'\d', password):
        score += 10
    if re.search(SPECIAL_CHARACTERS, password):
        score += 10

    # Bonus for length (up to 20 points)
    if len(password) >= 16:
        score += 10
    if len(password) >= 20:
        score += 10

    # Penalty for common patterns
    if re.search(r'(.)\1{2,}', password):  # Repeated characters
        score -= 10
    if re.search(r'(012|123|234|345|456|567|678|789)', password):
        score -= 10
    if re.search(r'(abc|bcd|cde|def|efg|qwe|wer|ert|asd)', password.lower()):
        score -= 10

    return max(0, min(100, score))
