"""Referral code generation and normalisation."""

import secrets

# Excludes look-alikes: 0, O, I, l, 1
CODE_ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"
CODE_LENGTH = 8

# How many fresh codes to try before giving up on a unique one
MAX_CODE_ATTEMPTS = 10


def generate_code(length: int = CODE_LENGTH) -> str:
    """Generate a readable referral code, e.g. ``ABC12XYZ``."""
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def normalize_code(code: str | None) -> str | None:
    """Trim a code taken off the wire. Empty means absent."""
    if code is None:
        return None
    code = code.strip()
    return code or None
