"""Short random identifiers for per-trial artifacts.

The first character is always a letter so the id can be used wherever a
leading digit is rejected (trial names, shell variables, python identifiers).
"""

from __future__ import annotations

import math
import secrets
from typing import Sequence, TypeVar

from .errors import InvalidConfiguration


_FIRST_ALPHABET = 52
_REST_ALPHABET = 62

T = TypeVar("T")


def _char_for(index: int) -> str:
    # 0-25 -> a-z, 26-51 -> A-Z, 52-61 -> 0-9
    if index < 26:
        return chr(index + 97)
    if index < 52:
        return chr(index - 26 + 65)
    return chr(index - 52 + 48)


def _byte_length(length: int) -> int:
    bits = math.log2(_FIRST_ALPHABET) + math.log2(_REST_ALPHABET) * (length - 1)
    return int(math.ceil(bits / 8))


def unique_string(length: int) -> str:
    """Return a random id of exactly ``length`` characters."""

    if length < 0:
        raise InvalidConfiguration(f"length must be >= 0, got {length}")
    if length == 0:
        return ""

    num = int.from_bytes(secrets.token_bytes(_byte_length(length)), "big")
    chars = [_char_for(num % _FIRST_ALPHABET)]
    num //= _FIRST_ALPHABET
    for _ in range(1, length):
        chars.append(_char_for(num % _REST_ALPHABET))
        num //= _REST_ALPHABET
    return "".join(chars)


def random_select(items: Sequence[T]) -> T:
    if not items:
        raise InvalidConfiguration("random_select() needs a non-empty sequence")
    return items[secrets.randbelow(len(items))]
