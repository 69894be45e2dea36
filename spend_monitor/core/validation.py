"""
Input validation for device tokens and platform identifiers.
"""

import re

from .errors import ValidationError

DEVICE_TOKEN_LENGTH = 64
_DEVICE_TOKEN_PATTERN = re.compile(r"^[0-9a-fA-F]{64}$")


def is_valid_device_token(token) -> bool:
    """Exactly 64 hexadecimal characters, case-insensitive."""
    return isinstance(token, str) and _DEVICE_TOKEN_PATTERN.fullmatch(token) is not None


def validate_device_token(token) -> str:
    """Return the token unchanged or raise ValidationError."""
    if not is_valid_device_token(token):
        raise ValidationError(
            "Invalid device token format. Must be 64-character hexadecimal string.",
            context={"length": len(token) if isinstance(token, str) else None},
        )
    return token


def token_preview(token) -> str:
    """First 8 characters for logs; tokens are never logged in full."""
    if not token:
        return "none"
    return f"{str(token)[:8]}..."
