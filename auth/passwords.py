"""Password hashing with bcrypt."""

import bcrypt

# bcrypt only looks at the first 72 bytes
_BCRYPT_MAX_BYTES = 72
BCRYPT_ROUNDS = 10


def _truncate_for_bcrypt(password: str) -> bytes:
    """Truncate to bcrypt's 72-byte limit without splitting a UTF-8 sequence."""
    encoded = password.encode("utf-8")
    if len(encoded) <= _BCRYPT_MAX_BYTES:
        return encoded
    truncated = encoded[:_BCRYPT_MAX_BYTES]
    while truncated:
        try:
            truncated.decode("utf-8")
            return truncated
        except UnicodeDecodeError:
            truncated = truncated[:-1]
    return b""


def hash_password(password: str) -> str:
    """Hash a password. Returns an ASCII string for storage."""
    hashed = bcrypt.hashpw(_truncate_for_bcrypt(password), bcrypt.gensalt(rounds=BCRYPT_ROUNDS))
    return hashed.decode("ascii")


def verify_password(password: str, password_hash: str | None) -> bool:
    """Check a password against a stored hash.

    False for users without a password (federated-only accounts) and for
    malformed hashes.
    """
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(_truncate_for_bcrypt(password), password_hash.encode("ascii"))
    except ValueError:
        return False
