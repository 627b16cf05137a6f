"""One-time codes — generation and salted hashing."""

from __future__ import annotations

import hashlib
import secrets

import bcrypt

CODE_LENGTH = 6


def generate_code() -> str:
    """Return a uniformly random 6-digit code, leading zeros preserved.

    Drawn from ``secrets`` (the OS CSPRNG), never from ``random``.
    """
    return f"{secrets.randbelow(10**CODE_LENGTH):0{CODE_LENGTH}d}"


def is_well_formed(code: str) -> bool:
    return len(code) == CODE_LENGTH and code.isascii() and code.isdigit()


def hash_code(code: str, rounds: int = 10) -> str:
    """Salted bcrypt hash of *code*, suitable for storage."""
    return bcrypt.hashpw(code.encode(), bcrypt.gensalt(rounds=rounds)).decode()


def check_code(code: str, code_hash: str) -> bool:
    """Constant-time comparison of *code* against a stored bcrypt hash."""
    try:
        return bcrypt.checkpw(code.encode(), code_hash.encode())
    except ValueError:
        # Stored value is not a bcrypt hash
        return False


def credential_digest(credential: str) -> str:
    """SHA-256 hex digest used to store and look up refresh credentials.

    bcrypt only reads the first 72 bytes of its input, which for a JWT is
    little more than the header, so session credentials get a plain digest.
    """
    return hashlib.sha256(credential.encode()).hexdigest()
