"""Verification code generation and comparison."""

import hmac
import secrets

CODE_LENGTH = 6
_CODE_SPACE = 10 ** CODE_LENGTH


def generate_code() -> str:
    """
    Six decimal digits, uniform over 000000-999999.

    randbelow rejection-samples inside the CSPRNG, so there is no modulo bias.
    """
    return f"{secrets.randbelow(_CODE_SPACE):0{CODE_LENGTH}d}"


def codes_match(expected: str, submitted: str) -> bool:
    """Constant-time comparison."""
    return hmac.compare_digest(expected.encode("ascii"), submitted.encode("ascii", "replace"))
