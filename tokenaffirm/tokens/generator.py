"""
Token Generator
===============
Default token sources drawn from ``secrets``.
"""

import secrets
from typing import Callable

# Excludes confusing characters (0, O, 1, l, I)
ALPHABET = "23456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"

TokenGenerator = Callable[[], str]


def generate_token(length: int = 6) -> str:
    """
    Generate a random alphanumeric token.

    Args:
        length: Number of characters

    Returns:
        Token string
    """
    if length <= 0:
        raise ValueError("length must be positive")
    return ''.join(secrets.choice(ALPHABET) for _ in range(length))


def generate_numeric_token(length: int = 6) -> str:
    """Generate a zero-padded numeric OTP."""
    if length <= 0:
        raise ValueError("length must be positive")
    return str(secrets.randbelow(10 ** length)).zfill(length)
