"""Utility functions for the Monica proxy."""

import secrets
import string

ALPHABET = string.ascii_letters + string.digits


def rand_string(length: int) -> str:
    """Return a random alphanumeric token of the given length."""
    return "".join(secrets.choice(ALPHABET) for _ in range(length))
