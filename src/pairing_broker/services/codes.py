"""Random code generation for OTPs and connection codes."""

from __future__ import annotations

import secrets
import string

CONNECTION_CODE_ALPHABET = string.digits + string.ascii_uppercase  # base-36
CONNECTION_CODE_LENGTH = 6


def generate_otp() -> str:
    """Return a 6-digit numeric OTP in the range 100000–999999."""
    return str(100000 + secrets.randbelow(900000))


def generate_connection_code(length: int = CONNECTION_CODE_LENGTH) -> str:
    """Return an upper-case base-36 code, e.g. ``"K7Q2ZD"``.

    No uniqueness is guaranteed here; callers check against live codes.
    """
    return "".join(secrets.choice(CONNECTION_CODE_ALPHABET) for _ in range(length))
