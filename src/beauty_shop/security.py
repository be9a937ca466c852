"""Password hashing for shop accounts.

Only bcrypt hashes are ever written to the ``Users`` sheet; the plain
password never reaches the workbook or the log.
"""

from __future__ import annotations

import bcrypt

from . import log

# bcrypt work factor; tests lower it to keep seeding fast.
PASSWORD_HASH_ROUNDS = 12


def hash_password(password: str) -> str:
    """Return the bcrypt hash stored in the ``PasswordHash`` column."""
    salt = bcrypt.gensalt(rounds=PASSWORD_HASH_ROUNDS)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Check a login attempt against a stored hash.

    A blank or corrupted ``PasswordHash`` cell never authenticates.
    """
    if not hashed_password:
        return False
    try:
        return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))
    except ValueError:
        log.warning("Stored password hash is not a valid bcrypt hash")
        return False
