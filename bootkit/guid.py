"""GUID values and parsing of their textual form."""

from __future__ import annotations

import struct
from dataclasses import dataclass

from bootkit.strutil import digit_to_int

_LAYOUT = struct.Struct("<IHH8s")
_DASHES = (8, 13, 18, 23)
_TEXT_LENGTH = 36


@dataclass(frozen=True)
class Guid:
    """A GUID as laid out in memory: a 32-bit, two 16-bit fields and 8 bytes."""

    a: int
    b: int
    c: int
    d: bytes

    def __post_init__(self) -> None:
        if not 0 <= self.a < 2**32:
            raise ValueError("field a must fit in 32 bits")
        if not 0 <= self.b < 2**16 or not 0 <= self.c < 2**16:
            raise ValueError("fields b and c must fit in 16 bits")
        if len(self.d) != 8:
            raise ValueError("field d must be 8 bytes")
        object.__setattr__(self, "d", bytes(self.d))

    @classmethod
    def from_bytes(cls, data: bytes) -> Guid:
        """Build a GUID from its 16-byte little-endian in-memory form."""
        if len(data) != _LAYOUT.size:
            raise ValueError("a GUID is 16 bytes long")
        return cls(*_LAYOUT.unpack(bytes(data)))

    def to_bytes(self) -> bytes:
        """Return the 16-byte little-endian in-memory form."""
        return _LAYOUT.pack(self.a, self.b, self.c, self.d)


def is_valid_guid(text: str) -> bool:
    """Check that *text* is ``xxxxxxxx-xxxx-xxxx-xxxx-xxxxxxxxxxxx`` in hex."""
    if len(text) != _TEXT_LENGTH:
        return False
    for index, ch in enumerate(text):
        if index in _DASHES:
            if ch != "-":
                return False
        elif digit_to_int(ch) is None:
            return False
    return True


def _clusters(text: str) -> list[bytes]:
    if not is_valid_guid(text):
        raise ValueError(f"invalid GUID: {text!r}")
    return [bytes.fromhex(part) for part in text.split("-")]


def string_to_guid_be(text: str) -> Guid:
    """Parse a GUID whose bytes are stored in the order they are written."""
    return Guid.from_bytes(b"".join(_clusters(text)))


def string_to_guid_mixed(text: str) -> Guid:
    """Parse a GUID in the usual mixed-endian form (first three fields reversed)."""
    first, second, third, fourth, fifth = _clusters(text)
    raw = first[::-1] + second[::-1] + third[::-1] + fourth + fifth
    return Guid.from_bytes(raw)