"""
TOTP (Time-based One-Time Password) Implementation

Implements RFC 6238 TOTP on top of RFC 4226 HOTP for two-factor
authentication, plus single-use backup codes.

Features:
- TOTP code generation and verification
- Configurable time step and digits
- Secret key generation and otpauth:// provisioning URIs
- Time drift tolerance without leaking the matched offset
- Backup codes hashed with Argon2id

Used with:
- Google Authenticator
- Authy
- Microsoft Authenticator
- Any RFC 6238 compliant authenticator
"""

import base64
import binascii
import hashlib
import hmac
import logging
import re
import secrets
import struct
import time
from typing import Callable, List, Optional
from urllib.parse import quote

from ..config import TotpConfig
from ..errors import ValidationError
from .models import TotpSecret
from .passwords import PasswordHasher

logger = logging.getLogger("credvault.auth.totp")


# TOTP configuration (RFC 6238 defaults)
TOTP_DIGITS = 6           # Number of digits in OTP
TOTP_TIME_STEP = 30       # Time step in seconds
TOTP_SECRET_BYTES = 20    # Secret key length (160 bits for SHA-1)
TOTP_ALGORITHM = 'SHA1'   # Hash algorithm
TOTP_DRIFT_TOLERANCE = 1  # Accept codes from +/- this many time steps

# Backup codes
BACKUP_CODE_ALPHABET = 'ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789'
BACKUP_CODE_LENGTH = 8
BACKUP_CODE_COUNT = 10
# Largest multiple of 36 below 256; bytes above it are redrawn
_BACKUP_BYTE_LIMIT = 256 - (256 % len(BACKUP_CODE_ALPHABET))

_HASH_ALGORITHMS = {
    'SHA1': hashlib.sha1,
    'SHA256': hashlib.sha256,
    'SHA512': hashlib.sha512,
}


def generate_secret(length: int = TOTP_SECRET_BYTES) -> bytes:
    """
    Generate a cryptographically secure random secret.

    Args:
        length: Secret length in bytes (default 20 for SHA-1)

    Returns:
        Random bytes for use as TOTP secret
    """
    return secrets.token_bytes(length)


def secret_to_base32(secret: bytes) -> str:
    """
    Encode secret as base32 string (for authenticator apps).

    Returns:
        Base32-encoded string (no padding)
    """
    return base64.b32encode(secret).decode('ascii').rstrip('=')


def base32_to_secret(encoded: str) -> bytes:
    """
    Decode base32 secret string to bytes.

    Raises:
        ValidationError: If the string is not valid base32
    """
    if not isinstance(encoded, str) or not encoded:
        raise ValidationError("TOTP secret must be a non-empty base32 string")

    encoded = encoded.replace(' ', '').upper()
    # Add padding if needed
    padding = 8 - (len(encoded) % 8)
    if padding != 8:
        encoded += '=' * padding
    try:
        return base64.b32decode(encoded)
    except (binascii.Error, ValueError) as e:
        raise ValidationError("TOTP secret is not valid base32") from e


def get_time_counter(timestamp: Optional[float] = None,
                     time_step: int = TOTP_TIME_STEP) -> int:
    """
    Get the time counter value for TOTP.

    Returns:
        Time counter (T = floor(time / time_step))
    """
    if timestamp is None:
        timestamp = time.time()
    return int(timestamp // time_step)


def hotp(secret: bytes, counter: int, digits: int = TOTP_DIGITS,
         algorithm: str = TOTP_ALGORITHM) -> str:
    """
    Generate HOTP (HMAC-based OTP) value.

    Implements RFC 4226.

    Args:
        secret: Shared secret key
        counter: Counter value (8-byte integer)
        digits: Number of digits in OTP (default 6)
        algorithm: Hash algorithm (SHA1, SHA256, SHA512)

    Returns:
        OTP string with specified number of digits
    """
    # Pack counter as 8-byte big-endian integer
    counter_bytes = struct.pack('>Q', counter)

    hash_algo = _HASH_ALGORITHMS[algorithm.upper()]
    hmac_hash = hmac.new(secret, counter_bytes, hash_algo).digest()

    # Dynamic truncation (RFC 4226)
    # Get offset from last 4 bits of hash
    offset = hmac_hash[-1] & 0x0F

    # Extract 4 bytes starting at offset
    truncated = struct.unpack('>I', hmac_hash[offset:offset + 4])[0]

    # Clear the most significant bit (ensure positive number)
    truncated &= 0x7FFFFFFF

    otp = truncated % (10 ** digits)

    # Pad with leading zeros if needed
    return str(otp).zfill(digits)


def totp(secret: bytes, timestamp: Optional[float] = None,
         digits: int = TOTP_DIGITS,
         time_step: int = TOTP_TIME_STEP,
         algorithm: str = TOTP_ALGORITHM) -> str:
    """
    Generate TOTP (Time-based OTP) value.

    Implements RFC 6238.
    """
    counter = get_time_counter(timestamp, time_step)
    return hotp(secret, counter, digits, algorithm)


def get_remaining_seconds(time_step: int = TOTP_TIME_STEP,
                          timestamp: Optional[float] = None) -> int:
    """Get seconds remaining until next TOTP code."""
    if timestamp is None:
        timestamp = time.time()
    return time_step - (int(timestamp) % time_step)


class TotpEngine:
    """
    TOTP lifecycle and recovery codes for all users.

    Holds only immutable configuration; secrets are passed in per call,
    so one engine is safe to share between threads.

    Example:
        >>> engine = TotpEngine(hasher)
        >>> setup = engine.generate_secret("alice@example.com")
        >>> engine.verify_token(setup.secret, engine.generate_token(setup.secret))
        True
    """

    def __init__(self, hasher: PasswordHasher,
                 config: Optional[TotpConfig] = None,
                 qr_renderer: Optional[Callable[[str], bytes]] = None):
        """
        Args:
            hasher: Argon2id hasher used for backup codes
            config: TOTP parameters
            qr_renderer: Optional callable turning a provisioning URI into
                image bytes
        """
        self._hasher = hasher
        self._config = config or TotpConfig()
        self._qr_renderer = qr_renderer
        self._algorithm = self._config.algorithm.upper()
        self._code_pattern = re.compile(r'[0-9]{%d}' % self._config.digits)

    @property
    def config(self) -> TotpConfig:
        return self._config

    def generate_secret(self, label: str) -> TotpSecret:
        """
        Create a new TOTP secret for enrollment.

        Args:
            label: Account label shown in the authenticator (usually email)

        Returns:
            TotpSecret with base32 secret, otpauth:// URI and optional QR image
        """
        if not label:
            raise ValidationError("Account label cannot be empty")

        secret = secret_to_base32(generate_secret(self._config.secret_bytes))
        uri = self.provisioning_uri(secret, label)

        qr_image = None
        if self._qr_renderer is not None:
            qr_image = self._qr_renderer(uri)

        return TotpSecret(secret=secret, provisioning_uri=uri, qr_image=qr_image)

    def provisioning_uri(self, secret: str, label: str) -> str:
        """
        Build the otpauth:// URI that authenticator apps scan.

        Format:
            otpauth://totp/<issuer>:<label>?secret=..&issuer=..&algorithm=..&digits=..&period=..
        """
        issuer = quote(self._config.issuer, safe='')
        account = quote(label, safe='@')
        return (
            f"otpauth://totp/{issuer}:{account}"
            f"?secret={secret}"
            f"&issuer={issuer}"
            f"&algorithm={self._algorithm}"
            f"&digits={self._config.digits}"
            f"&period={self._config.period}"
        )

    def generate_token(self, secret: str, at: Optional[float] = None) -> str:
        """
        Generate the TOTP code for the current or a given time.

        Args:
            secret: Base32 shared secret
            at: Unix timestamp (uses current time if None)
        """
        return totp(
            base32_to_secret(secret),
            at,
            self._config.digits,
            self._config.period,
            self._algorithm,
        )

    def verify_token(self, secret: str, candidate: str,
                     window: int = TOTP_DRIFT_TOLERANCE,
                     at: Optional[float] = None) -> bool:
        """
        Verify a TOTP code with drift tolerance.

        Structurally invalid candidates are rejected before any HMAC is
        computed. Otherwise every step in [-window, +window] is evaluated
        and the results OR-ed together, so timing does not reveal which
        offset matched.

        Args:
            secret: Base32 shared secret
            candidate: Code entered by the user
            window: Number of time steps to check in each direction
            at: Unix timestamp (uses current time if None)

        Raises:
            ValidationError: For a malformed secret or negative window
        """
        if not isinstance(candidate, str) or not self._code_pattern.fullmatch(candidate):
            return False
        if window < 0:
            raise ValidationError("window must not be negative")

        key = base32_to_secret(secret)
        current_counter = get_time_counter(at, self._config.period)

        matched = False
        for offset in range(-window, window + 1):
            counter = current_counter + offset
            if counter < 0:
                continue
            expected = hotp(key, counter, self._config.digits, self._algorithm)
            # Constant-time comparison, no early exit
            matched |= hmac.compare_digest(candidate, expected)

        return matched

    def generate_backup_codes(self, count: Optional[int] = None) -> List[str]:
        """
        Generate unique single-use recovery codes.

        Random bytes are mapped into the 36-symbol alphabet; bytes that
        would bias the mapping are redrawn.

        Args:
            count: Number of codes (default from config, 10)
        """
        if count is None:
            count = self._config.backup_code_count
        if count < 1:
            raise ValidationError("count must be at least 1")

        length = self._config.backup_code_length
        codes: List[str] = []
        seen = set()
        while len(codes) < count:
            code = _random_code(length)
            if code not in seen:
                seen.add(code)
                codes.append(code)
        return codes

    def hash_backup_code(self, code: str) -> str:
        """Hash a backup code (case-insensitive) with Argon2id."""
        if not code:
            raise ValidationError("Backup code cannot be empty")
        return self._hasher.hash(code.upper())

    def verify_backup_code(self, hash_str: str, code: str) -> bool:
        """
        Verify a backup code against its hash.

        Never raises: a malformed hash or code simply does not match.
        """
        if not isinstance(code, str) or not code:
            return False
        try:
            return self._hasher.verify(hash_str, code.upper())
        except ValidationError:
            logger.warning("Malformed backup code hash encountered")
            return False

    def remaining_seconds(self, at: Optional[float] = None) -> int:
        """Get seconds until next code."""
        return get_remaining_seconds(self._config.period, at)

    def __repr__(self) -> str:
        return f"TotpEngine(issuer='{self._config.issuer}', algorithm='{self._algorithm}')"


def _random_code(length: int) -> str:
    chars = []
    while len(chars) < length:
        for byte in secrets.token_bytes(length):
            if byte < _BACKUP_BYTE_LIMIT and len(chars) < length:
                chars.append(BACKUP_CODE_ALPHABET[byte % len(BACKUP_CODE_ALPHABET)])
    return ''.join(chars)
