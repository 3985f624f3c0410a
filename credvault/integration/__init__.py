# Integration Module
"""
Audit trail and QR rendering used around the credential core.

All audit events carry privacy-preserving user hashes.
"""

from .event_logger import AuditTrail, EventType, SecurityEvent, get_user_hash
from .qr_renderer import render_qr_ascii, render_qr_png

__all__ = [
    'AuditTrail',
    'EventType',
    'SecurityEvent',
    'get_user_hash',
    'render_qr_ascii',
    'render_qr_png',
]
