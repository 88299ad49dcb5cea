"""Number parsing, alignment and path helpers shared by the loader."""

from __future__ import annotations

import math

_U64_MASK = (1 << 64) - 1
_U32_MASK = (1 << 32) - 1
_U8_MASK = 0xFF


def digit_to_int(c: str) -> int | None:
    """Return the value of the hexadecimal digit *c*, or None if it is not one."""
    if len(c) != 1:
        return None
    if "a" <= c <= "f":
        return ord(c) - ord("a") + 10
    if "A" <= c <= "F":
        return ord(c) - ord("A") + 10
    if "0" <= c <= "9":
        return ord(c) - ord("0")
    return None


def strtoui(s: str, base: int) -> tuple[int, int]:
    """Parse leading digits of *s* in *base*.

    Any hexadecimal digit is accepted regardless of the base, as the loader's
    parser does. Returns the 64-bit wrapped value and the index where parsing
    stopped.
    """
    value = 0
    for index, ch in enumerate(s):
        digit = digit_to_int(ch)
        if digit is None:
            return value, index
        value = (value * base + digit) & _U64_MASK
    return value, len(s)


def parse_resolution(text: str) -> tuple[int, int, int]:
    """Parse ``WIDTHxHEIGHT[xBPP]`` into a (width, height, bpp) tuple.

    Any single character separates the fields. A missing depth defaults to 32.
    Raises ValueError if width or height is missing or zero.
    """
    fields = [0, 0, 0]
    pos = 0
    for slot in range(3):
        value, consumed = strtoui(text[pos:], 10)
        if consumed == 0:
            break
        fields[slot] = value
        pos += consumed
        if pos >= len(text):
            break
        pos += 1

    width, height, bpp = fields
    if width == 0 or height == 0:
        raise ValueError(f"invalid resolution: {text!r}")
    if bpp == 0:
        bpp = 32
    return width, height, bpp


def isqrt(value: int) -> int:
    """Return the integer square root of an unsigned 64-bit value."""
    if not 0 <= value <= _U64_MASK:
        raise ValueError("value must be an unsigned 64-bit integer")
    return math.isqrt(value)


def trailing_zeros(value: int) -> int:
    """Count trailing zero bits of a 64-bit value; 64 for zero."""
    value &= _U64_MASK
    if value == 0:
        return 64
    return (value & -value).bit_length() - 1


def _codes(data: bytes | str, count: int) -> bytes:
    raw = data.encode("latin-1") if isinstance(data, str) else bytes(data)
    if count > len(raw):
        raise ValueError("count exceeds the length of the data")
    return raw[:count]


def oct2bin(data: bytes | str, count: int) -> int:
    """Decode *count* octal digits into a 32-bit value."""
    value = 0
    for code in _codes(data, count):
        value = ((value << 3) + (code - ord("0"))) & _U32_MASK
    return value


def hex2bin(data: bytes | str, count: int) -> int:
    """Decode *count* hexadecimal digits into a 32-bit value.

    Characters that are not hexadecimal digits contribute zero.
    """
    value = 0
    for code in _codes(data, count):
        digit = digit_to_int(chr(code))
        value = ((value << 4) + (digit or 0)) & _U32_MASK
    return value


def bcd_to_int(value: int) -> int:
    """Convert a packed BCD byte to an integer."""
    value &= _U8_MASK
    return ((value & 0x0F) + ((value & 0xF0) >> 4) * 10) & _U8_MASK


def int_to_bcd(value: int) -> int:
    """Convert an integer below 100 to a packed BCD byte."""
    value &= _U8_MASK
    return ((value % 10) | ((value // 10) << 4)) & _U8_MASK


def _parent(out: str) -> str:
    slash = out.rfind("/")
    return "/" if slash <= 0 else out[:slash]


def absolute_path(path: str, pwd: str) -> str:
    """Resolve *path* against the working directory *pwd*.

    Handles ``.``, ``..`` and repeated slashes; a trailing slash is dropped.
    """
    if not path:
        return pwd

    if path.startswith("/"):
        out = "/"
        i = 1
    else:
        if not pwd.startswith("/"):
            raise ValueError("working directory must be absolute")
        out = pwd
        i = 0

    while True:
        rest = path[i:]
        if rest.startswith("/"):
            i += 1
            continue
        if rest in (".", "./"):
            break
        if rest in ("..", "../"):
            out = _parent(out)
            break
        if rest.startswith("../"):
            out = _parent(out)
            i += 3
            continue
        if rest.startswith("./"):
            i += 2
            continue

        if len(out) > 1 and not out.endswith("/"):
            out += "/"

        end = path.find("/", i)
        if end == -1:
            out += path[i:]
            break
        out += path[i:end]
        i = end + 1

    if len(out) > 1 and out.endswith("/"):
        out = out[:-1]
    return out


def inet_pton(text: str) -> bytes:
    """Parse a dotted IPv4 address into four bytes.

    Raises ValueError on a missing field or an octet above 255.
    """
    octets = []
    pos = 0
    for index in range(4):
        value, consumed = strtoui(text[pos:], 10)
        if consumed == 0:
            raise ValueError(f"invalid IPv4 address: {text!r}")
        pos += consumed
        if pos >= len(text) and index < 3:
            raise ValueError(f"invalid IPv4 address: {text!r}")
        if value > 255:
            raise ValueError(f"octet out of range in {text!r}")
        pos += 1
        octets.append(value)
    return bytes(octets)


def div_roundup(a: int, b: int) -> int:
    """Divide rounding up."""
    return (a + (b - 1)) // b


def align_up(x: int, a: int) -> int:
    """Round *x* up to a multiple of *a*."""
    return div_roundup(x, a) * a


def align_down(x: int, a: int) -> int:
    """Round *x* down to a multiple of *a*."""
    return (x // a) * a