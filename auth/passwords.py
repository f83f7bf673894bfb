"""
auth/passwords.py -- Password hashing and verification.

bcrypt is used directly rather than through passlib[bcrypt]: passlib's
internal wrap-bug detection creates a password longer than 72 bytes, which
bcrypt 4.x rejects with an explicit error. Direct bcrypt usage is simpler,
has no compatibility shim, and is actively maintained.

The cost factor for new hashes comes from Settings.bcrypt_rounds. Existing
hashes embed their own cost, so verification works across changes to it.

Layer rule: no imports from api/ or handlers/. Import from core/ is allowed.
"""

from __future__ import annotations

import bcrypt

from core.config import get_settings


def hash_password(plain: str, rounds: int | None = None) -> str:
    """Return a bcrypt hash of the given plaintext password.

    Passwords longer than 72 bytes are silently truncated by bcrypt (this is
    a known bcrypt limitation).
    """
    cost = rounds if rounds is not None else get_settings().bcrypt_rounds
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=cost)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    A malformed stored hash counts as a mismatch.
    """
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False
