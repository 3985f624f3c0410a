# Core Cryptography Module
"""
Encryption of secrets at rest (AES-256-GCM) - secret_box.py
"""

from .secret_box import SecretBox

__all__ = ['SecretBox']
