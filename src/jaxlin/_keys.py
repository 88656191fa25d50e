from __future__ import annotations

Key = int
"""Variables are identified by integer keys."""

_CHAR_BITS = 8
_INDEX_BITS = 64 - _CHAR_BITS
_INDEX_MASK = (1 << _INDEX_BITS) - 1


def symbol(char: str, index: int) -> Key:
    """Build a key from a character and an index, eg `symbol("x", 3)`.

    The character is stored in the top 8 bits of a 64-bit key and the index in
    the remaining 56."""
    assert len(char) == 1 and ord(char) < (1 << _CHAR_BITS), char
    assert 0 <= index <= _INDEX_MASK, index
    return (ord(char) << _INDEX_BITS) | index


def format_key(key: Key) -> str:
    """Human-readable key. Keys created with `symbol()` are printed as `x3`."""
    char_code = key >> _INDEX_BITS
    if 0 < char_code < (1 << _CHAR_BITS) and chr(char_code).isalpha():
        return f"{chr(char_code)}{key & _INDEX_MASK}"
    return str(key)
