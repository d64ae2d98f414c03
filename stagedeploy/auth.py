"""
Profile password gate.

A profile may carry a `password` that the operator must type before a deploy
or restore. It can be stored as a werkzeug hash (see `hash_password`) or, for
older profile files, as plain text.
"""

import hmac

from werkzeug.security import generate_password_hash, check_password_hash


HASH_METHODS = ('pbkdf2:', 'scrypt:')


def hash_password(password: str) -> str:
    """
    Hash a password using werkzeug's pbkdf2:sha256.

    Args:
        password: Plain text password

    Returns:
        Hashed password string, suitable for a profile's `password` field
    """
    return generate_password_hash(password, method='pbkdf2:sha256')


def is_password_hash(value: str) -> bool:
    return value.startswith(HASH_METHODS)


def verify_profile_password(stored: str, candidate: str) -> bool:
    """
    Check a typed password against a profile's stored password.

    Args:
        stored: Value from the profile (werkzeug hash or plain text)
        candidate: Password typed by the operator

    Returns:
        True if it matches, False otherwise
    """
    if not stored:
        return True
    if is_password_hash(stored):
        return check_password_hash(stored, candidate)
    return hmac.compare_digest(stored.encode('utf-8'), (candidate or '').encode('utf-8'))
