"""Password hashing and one-time code generation.

Hashing uses bcrypt directly (passlib has incompatibilities with bcrypt 4.1+).
"""
import secrets

import bcrypt


def _to_bytes(password: str) -> bytes:
    """Encode to UTF-8 and truncate to 72 bytes (bcrypt limit)."""
    return str(password).encode("utf-8")[:72]


def hash_password(password: str) -> str:
    return bcrypt.hashpw(_to_bytes(password), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Verify plain password against bcrypt hash. Malformed hashes never match."""
    if not hashed:
        return False
    try:
        return bcrypt.checkpw(_to_bytes(plain), hashed.encode("utf-8"))
    except ValueError:
        return False


def generate_numeric_code(length: int) -> str:
    """Random decimal string of exactly `length` digits (leading zeros allowed)."""
    return "".join(secrets.choice("0123456789") for _ in range(length))
