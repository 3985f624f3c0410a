"""
Session Token Module

Issues, verifies and rotates signed session tokens (JWT, RS256).

Token pair:
- access token: short-lived, full identity claims
  (userId, email, roles, organizationId, sessionId, type="access")
- refresh token: long-lived, minimal claims (userId, sessionId, type="refresh")
- both: unique jti, shared iss/aud, iat, exp

Security considerations:
- Asymmetric signing: verifiers only ever need the public key
- The type claim is checked, so an access token can never be replayed
  as a refresh token or vice versa
- Raw tokens are never persisted; callers store get_token_hash() digests
  for revocation lookups
- Key import happens once per service behind a lock
"""

import hashlib
import logging
import re
import threading
import time
import uuid
from dataclasses import replace
from typing import Any, Callable, Dict, Optional

import jwt
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from ..config import TokenConfig
from ..errors import ConfigurationError, ExpiredError, InvalidTokenError
from .models import TokenClaims, TokenPair

logger = logging.getLogger("credvault.auth.tokens")


ALGORITHM = 'RS256'
MIN_RSA_KEY_BITS = 2048

TOKEN_TYPE_ACCESS = 'access'
TOKEN_TYPE_REFRESH = 'refresh'

_DURATION_PATTERN = re.compile(r'^(\d+)([smhd])$')
_UNIT_MS = {
    's': 1000,
    'm': 60 * 1000,
    'h': 60 * 60 * 1000,
    'd': 24 * 60 * 60 * 1000,
}

_REQUIRED_CLAIMS = ['exp', 'iat', 'iss', 'aud', 'jti', 'type', 'userId', 'sessionId']


def parse_duration(expiry: str) -> int:
    """
    Parse a duration string like "15m" or "7d".

    Grammar: <integer><unit>, unit one of s, m, h, d.

    Returns:
        Duration in milliseconds

    Raises:
        ConfigurationError: If the string does not match the grammar
    """
    match = _DURATION_PATTERN.match(expiry) if isinstance(expiry, str) else None
    if not match:
        raise ConfigurationError(f"Invalid expiry format: {expiry!r}")

    value, unit = match.groups()
    duration = int(value) * _UNIT_MS[unit]
    if duration <= 0:
        raise ConfigurationError(f"Expiry must be positive: {expiry!r}")
    return duration


class TokenService:
    """
    RS256 access/refresh token issuance and verification.

    Example:
        >>> service = TokenService(TokenConfig(private_key=pem, public_key=pub))
        >>> pair = service.generate_token_pair(claims)
        >>> service.verify_access_token(pair.access_token)['userId']
        'user-1'
    """

    def __init__(self, config: TokenConfig,
                 clock: Callable[[], float] = time.time):
        """
        Args:
            config: Keys, expiries, issuer and audience
            clock: Source of the current Unix time
        """
        self._config = config
        self._clock = clock
        # Fail fast on bad durations rather than on first login
        self._access_ttl_ms = parse_duration(config.access_token_expiry)
        self._refresh_ttl_ms = parse_duration(config.refresh_token_expiry)

        self._key_lock = threading.Lock()
        self._private_key: Optional[rsa.RSAPrivateKey] = None
        self._public_key: Optional[rsa.RSAPublicKey] = None

    @property
    def config(self) -> TokenConfig:
        return self._config

    # ==================== KEY MATERIAL ====================

    def _get_private_key(self) -> rsa.RSAPrivateKey:
        if self._private_key is None:
            with self._key_lock:
                if self._private_key is None:
                    self._private_key = _load_private_key(self._config.private_key)
        return self._private_key

    def _get_public_key(self) -> rsa.RSAPublicKey:
        if self._public_key is None:
            with self._key_lock:
                if self._public_key is None:
                    self._public_key = _load_public_key(self._config.public_key)
        return self._public_key

    # ==================== TOKEN GENERATION ====================

    def generate_token_pair(self, claims: TokenClaims) -> TokenPair:
        """
        Sign a fresh access + refresh token pair for one session.

        Returns:
            TokenPair with expiries in epoch milliseconds
        """
        private_key = self._get_private_key()
        now = self._clock()
        now_ms = int(now * 1000)

        access_expires_at = now_ms + self._access_ttl_ms
        refresh_expires_at = now_ms + self._refresh_ttl_ms

        access_payload = dict(claims.to_payload(), type=TOKEN_TYPE_ACCESS)
        refresh_payload = {
            'userId': claims.user_id,
            'sessionId': claims.session_id,
            'type': TOKEN_TYPE_REFRESH,
        }

        access_token = self._sign(access_payload, now, access_expires_at, private_key)
        refresh_token = self._sign(refresh_payload, now, refresh_expires_at, private_key)

        logger.info("Issued token pair for session %s", claims.session_id)

        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            access_expires_at=access_expires_at,
            refresh_expires_at=refresh_expires_at,
        )

    def _sign(self, payload: Dict[str, Any], now: float, expires_at_ms: int,
              private_key: rsa.RSAPrivateKey) -> str:
        payload = dict(
            payload,
            jti=str(uuid.uuid4()),
            iat=int(now),
            exp=expires_at_ms // 1000,
            iss=self._config.issuer,
            aud=self._config.audience,
        )
        try:
            return jwt.encode(payload, private_key, algorithm=ALGORITHM)
        except (jwt.PyJWTError, TypeError, ValueError) as e:
            raise ConfigurationError(f"Token signing failed: {e}") from e

    # ==================== TOKEN VALIDATION ====================

    def verify_access_token(self, token: str) -> Dict[str, Any]:
        """
        Verify an access token and return its claims.

        Raises:
            ExpiredError: If exp has passed
            InvalidTokenError: Bad signature, issuer, audience or type
        """
        return self._verify(token, TOKEN_TYPE_ACCESS)

    def verify_refresh_token(self, token: str) -> Dict[str, Any]:
        """
        Verify a refresh token and return its claims.

        Raises:
            ExpiredError: If exp has passed
            InvalidTokenError: Bad signature, issuer, audience or type
        """
        return self._verify(token, TOKEN_TYPE_REFRESH)

    def _verify(self, token: str, expected_type: str) -> Dict[str, Any]:
        public_key = self._get_public_key()

        try:
            # Expiry is checked below against the service clock
            payload = jwt.decode(
                token,
                public_key,
                algorithms=[ALGORITHM],
                audience=self._config.audience,
                issuer=self._config.issuer,
                options={
                    'verify_exp': False,
                    'verify_iat': False,
                    'verify_nbf': False,
                    'require': _REQUIRED_CLAIMS,
                },
            )
        except jwt.PyJWTError as e:
            logger.debug("Token rejected: %s", e)
            raise InvalidTokenError("Invalid token") from e

        exp = payload['exp']
        if not isinstance(exp, int) or isinstance(exp, bool):
            raise InvalidTokenError("Invalid token")
        if exp <= self._clock():
            raise ExpiredError("Token expired")

        if payload['type'] != expected_type:
            logger.debug("Token type %r presented where %r expected",
                         payload['type'], expected_type)
            raise InvalidTokenError("Invalid token type")

        return payload

    # ==================== TOKEN REFRESH ====================

    def refresh_tokens(self, refresh_token: str, identity: TokenClaims) -> TokenPair:
        """
        Rotate: verify a refresh token and mint a brand-new pair.

        The caller supplies fresh identity claims (email, roles,
        organization) loaded from its user store; the session id is taken
        from the refresh token. The presented token is NOT revoked here;
        the caller blacklists get_token_hash(refresh_token).

        Raises:
            ExpiredError: If the refresh token has expired
            InvalidTokenError: If it is invalid or belongs to another user
        """
        payload = self.verify_refresh_token(refresh_token)

        if payload['userId'] != identity.user_id:
            raise InvalidTokenError("Refresh token does not belong to this user")

        return self.generate_token_pair(replace(identity, session_id=payload['sessionId']))

    # ==================== REVOCATION SUPPORT ====================

    @staticmethod
    def get_token_hash(token: str) -> str:
        """SHA-256 hex digest of the raw token, used as a blacklist key."""
        return hashlib.sha256(token.encode('utf-8')).hexdigest()


def _load_private_key(pem: Optional[str]) -> rsa.RSAPrivateKey:
    if not pem:
        raise ConfigurationError("Private key is required to sign tokens")
    try:
        key = serialization.load_pem_private_key(_to_bytes(pem), password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise ConfigurationError("Private key is not a valid PEM key") from e

    if not isinstance(key, rsa.RSAPrivateKey):
        raise ConfigurationError("Private key must be an RSA key")
    if key.key_size < MIN_RSA_KEY_BITS:
        raise ConfigurationError(f"RSA key must be at least {MIN_RSA_KEY_BITS} bits")
    return key


def _load_public_key(pem: Optional[str]) -> rsa.RSAPublicKey:
    if not pem:
        raise ConfigurationError("Public key is required to verify tokens")
    try:
        key = serialization.load_pem_public_key(_to_bytes(pem))
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise ConfigurationError("Public key is not a valid PEM key") from e

    if not isinstance(key, rsa.RSAPublicKey):
        raise ConfigurationError("Public key must be an RSA key")
    return key


def _to_bytes(pem) -> bytes:
    return pem.encode('ascii') if isinstance(pem, str) else pem
