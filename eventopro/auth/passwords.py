from __future__ import annotations

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError

from eventopro.auth.exceptions import ValidationError

MIN_PASSWORD_LENGTH = 6
MAX_PASSWORD_LENGTH = 128

# Argon2id, 16-byte random salt per hash (library defaults).
_PH = PasswordHasher(salt_len=16)

# Verified when a login names an unknown user so both paths do the same work.
_DUMMY_HASH = _PH.hash("eventopro-dummy-password")


def validate_password(password: str) -> None:
    """
    Enforce the password policy.

    Raises:
        ValidationError: If password is empty or outside the allowed length
    """
    if not password:
        raise ValidationError("Password cannot be empty")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if len(password) > MAX_PASSWORD_LENGTH:
        raise ValidationError(f"Password cannot exceed {MAX_PASSWORD_LENGTH} characters")


def hash_password(password: str) -> str:
    """
    Hash password with Argon2id.

    Any plaintext is accepted; callers that take user input run
    validate_password first.

    Args:
        password: Plain text password

    Returns:
        Encoded hash string (parameters and salt embedded)
    """
    return _PH.hash(password)


def verify_password(password: str, password_hash: str | None) -> bool:
    """
    Verify password against a stored hash with constant-time comparison.

    Returns False for a missing or malformed hash instead of raising.
    """
    if not password_hash:
        return False
    try:
        return _PH.verify(password_hash, password)
    except (VerificationError, ValueError):
        # ValueError covers InvalidHashError and non-ASCII hash text (UnicodeEncodeError).
        return False


def verify_dummy(password: str) -> None:
    """Burn the same KDF cost as a real verification."""
    verify_password(password or "x", _DUMMY_HASH)


def needs_rehash(password_hash: str) -> bool:
    """True when the hash was produced with parameters other than the current ones."""
    try:
        return _PH.check_needs_rehash(password_hash)
    except (InvalidHashError, ValueError):
        return True
