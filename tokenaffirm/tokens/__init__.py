"""
Token Generation and Hashing
============================
Unpredictable one-time tokens and their at-rest representation.
"""

from .generator import TokenGenerator, generate_token, generate_numeric_token
from .hashing import generate_salt, hash_token, verify_token_hash

__all__ = [
    # Generator
    "TokenGenerator",
    "generate_token",
    "generate_numeric_token",
    # Hashing
    "generate_salt",
    "hash_token",
    "verify_token_hash",
]
