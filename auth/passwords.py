"""
auth/passwords.py -- bcrypt password hashing.

bcrypt is used directly rather than through passlib: passlib's wrap-bug probe
hashes a password longer than 72 bytes, which current bcrypt releases reject.

bcrypt only looks at the first 72 bytes of its input and newer releases raise
on anything longer, so both functions cap the encoded password at 72 bytes.
The API layer limits passwords to 72 characters as well, which keeps ASCII
passwords intact.
"""

from __future__ import annotations

from functools import lru_cache

import bcrypt

# Cost factor for production hashes; settings may lower it for tests.
BCRYPT_ROUNDS = 12

_BCRYPT_MAX_BYTES = 72


def _encode(plain: str) -> bytes:
    return plain.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def hash_password(plain: str, rounds: int = BCRYPT_ROUNDS) -> str:
    """Return a salted bcrypt hash of plain. Never store the plaintext."""
    return bcrypt.hashpw(_encode(plain), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if plain matches hashed.

    bcrypt.checkpw compares digests in constant time. A malformed hash is
    reported as a mismatch, never as an exception.
    """
    try:
        return bcrypt.checkpw(_encode(plain), hashed.encode("utf-8"))
    except (ValueError, TypeError):
        return False


@lru_cache
def dummy_hash(rounds: int = BCRYPT_ROUNDS) -> str:
    """Hash verified against when a login identifier does not exist.

    Running bcrypt on the unknown-user path at the same cost as a real check
    keeps response time from revealing which usernames exist.
    """
    return hash_password("wanderlanka_timing_dummy", rounds=rounds)
