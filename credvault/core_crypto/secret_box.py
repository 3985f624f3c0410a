"""
Secret Box Module

Encrypts small secrets (TOTP shared secrets) for storage at rest with
AES-256-GCM.

Token format (ASCII):
    <nonce hex (12 bytes)>:<ciphertext || GCM tag hex>

Security features:
- Random 96-bit nonce per encryption, never reused
- Authenticated encryption: any tampering fails decryption
- Optional associated data binds a ciphertext to its owner (e.g. user id)
"""

import secrets
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..errors import ConfigurationError, ValidationError


KEY_SIZE = 32      # 256 bits
NONCE_SIZE = 12    # 96 bits for GCM
TAG_SIZE = 16      # 128-bit GCM tag


class SecretBox:
    """
    AES-256-GCM wrapper for short secrets.

    Example:
        >>> box = SecretBox(SecretBox.generate_key())
        >>> box.decrypt(box.encrypt("JBSWY3DPEHPK3PXP"))
        'JBSWY3DPEHPK3PXP'
    """

    def __init__(self, key: bytes):
        if not isinstance(key, (bytes, bytearray)) or len(key) != KEY_SIZE:
            raise ConfigurationError(f"SecretBox key must be {KEY_SIZE} bytes")
        self._aead = AESGCM(bytes(key))

    @staticmethod
    def generate_key() -> bytes:
        """Generate a random 256-bit key."""
        return secrets.token_bytes(KEY_SIZE)

    def encrypt(self, plaintext: str, associated_data: Optional[str] = None) -> str:
        """
        Encrypt a string.

        Args:
            plaintext: Secret to protect
            associated_data: Context that must match on decryption

        Returns:
            "<nonce hex>:<ciphertext hex>" token
        """
        nonce = secrets.token_bytes(NONCE_SIZE)
        ciphertext = self._aead.encrypt(
            nonce, plaintext.encode('utf-8'), _aad(associated_data)
        )
        return f"{nonce.hex()}:{ciphertext.hex()}"

    def decrypt(self, token: str, associated_data: Optional[str] = None) -> str:
        """
        Decrypt a token produced by encrypt().

        Raises:
            ValidationError: Malformed token, wrong key, wrong associated
                data or tampered ciphertext
        """
        try:
            nonce_hex, ciphertext_hex = token.split(':')
            nonce = bytes.fromhex(nonce_hex)
            ciphertext = bytes.fromhex(ciphertext_hex)
        except (AttributeError, ValueError) as e:
            raise ValidationError("Invalid encrypted secret format") from e

        if len(nonce) != NONCE_SIZE or len(ciphertext) < TAG_SIZE:
            raise ValidationError("Invalid encrypted secret format")

        try:
            plaintext = self._aead.decrypt(nonce, ciphertext, _aad(associated_data))
        except InvalidTag as e:
            raise ValidationError("Encrypted secret failed authentication") from e
        return plaintext.decode('utf-8')


def _aad(associated_data: Optional[str]) -> Optional[bytes]:
    return associated_data.encode('utf-8') if associated_data is not None else None
