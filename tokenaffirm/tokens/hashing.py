"""
Token Hashing
=============
Salted hashing so that stored sessions never hold a usable token.
"""

import hashlib
import hmac
import secrets


def generate_salt() -> str:
    """Generate a random salt for token hashing."""
    return secrets.token_hex(16)


def hash_token(token: str, salt: str) -> str:
    """
    Hash a token with salt using SHA-256.

    Args:
        token: Plain token
        salt: Per-session salt

    Returns:
        Hex digest
    """
    return hashlib.sha256(f"{salt}:{token}".encode()).hexdigest()


def verify_token_hash(token: str, salt: str, stored_hash: str) -> bool:
    """
    Verify a token against its stored hash.

    Uses constant-time comparison to prevent timing attacks.
    """
    computed_hash = hash_token(token, salt)
    return hmac.compare_digest(computed_hash, stored_hash)
