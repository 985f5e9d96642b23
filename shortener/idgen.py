"""Short-code generation.

Codes are drawn from a 57-symbol alphabet (digits and ASCII letters without
the visually ambiguous ``0 1 I O l``) through nanoid, which reads from the
operating system's secure random source. Uniqueness is NOT guaranteed here;
the link registry enforces it with conditional inserts.
"""

from nanoid import generate as _nanoid_generate

from shortener.config import get_settings

__all__ = ["ALPHABET", "generate"]

settings = get_settings()

ALPHABET = "23456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"


def generate(length: int = settings.SHORT_CODE_LENGTH) -> str:
    if not isinstance(length, int) or isinstance(length, bool) or length <= 0:
        raise ValueError(f"length must be a positive integer, got {length!r}")
    return _nanoid_generate(ALPHABET, length)
