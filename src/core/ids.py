"""Entity identifiers: time-based prefix plus random suffix, uppercase."""

from __future__ import annotations

import secrets
import time

_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"


def to_base36(value: int) -> str:
    if value < 0:
        raise ValueError("value must be non-negative")
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_ALPHABET[rem])
    return "".join(reversed(digits))


def generate_id(prefix: str, suffix_len: int = 6) -> str:
    timestamp = to_base36(int(time.time() * 1000))
    suffix = "".join(secrets.choice(_ALPHABET) for _ in range(suffix_len))
    return f"{prefix}_{timestamp}_{suffix}".upper()


def generate_ticket_id() -> str:
    return generate_id("SOS_VN")


def generate_rescuer_id() -> str:
    return generate_id("RSC")
