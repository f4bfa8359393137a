"""Credential token helpers for integrations.

Client IDs, legacy client secrets and rotation-friendly secret keys are
all fixed-length alphanumeric tokens drawn from ``secrets``. Raw keys are
never logged; use ``mask_secret`` for display.
"""

import hmac
import secrets
import string
from typing import Optional

TOKEN_ALPHABET = string.ascii_letters + string.digits

# Characters kept visible at each end of a masked secret
MASK_VISIBLE_EDGE = 4


def generate_token(length: int) -> str:
    """Generate a cryptographically strong alphanumeric token.

    Args:
        length: Exact number of characters to return

    Returns:
        Random token of the requested length
    """
    if length <= 0:
        raise ValueError("Token length must be positive")
    return "".join(secrets.choice(TOKEN_ALPHABET) for _ in range(length))


def mask_secret(secret: Optional[str]) -> str:
    """Mask a secret for display, preserving its length.

    Example: ``abcd************wxyz``. Keys of eight characters or fewer
    are masked entirely.
    """
    secret = secret or ""
    visible = MASK_VISIBLE_EDGE * 2
    if len(secret) <= visible:
        return "*" * len(secret)
    return (
        secret[:MASK_VISIBLE_EDGE]
        + "*" * (len(secret) - visible)
        + secret[-MASK_VISIBLE_EDGE:]
    )


def secrets_match(expected: Optional[str], provided: Optional[str]) -> bool:
    """Constant-time comparison of two secrets; empty values never match."""
    if not expected or not provided:
        return False
    return hmac.compare_digest(expected.encode(), provided.encode())
