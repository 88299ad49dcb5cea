"""Formatting of loader messages with the loader's own conversion specifiers."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from typing import Any

PRINT_BUF_MAX = 4096

_NULL_TEXT = "(null)"


def _wrap_unsigned(value: int, bits: int) -> int:
    return value & ((1 << bits) - 1)


def _wrap_signed(value: int, bits: int) -> int:
    value = _wrap_unsigned(value, bits)
    if value >= 1 << (bits - 1):
        value -= 1 << bits
    return value


def _hex(value: int) -> str:
    return f"0x{value:x}"


def _char(value: Any) -> str:
    if isinstance(value, str):
        if len(value) != 1:
            raise TypeError("%c takes a single character")
        return value
    return chr(value & 0xFF)


def _upto_last_hash(text: str) -> str:
    cut = text.rfind("#")
    return text if cut == -1 else text[:cut]


def _convert(spec: str, take: Callable[[], Any]) -> str:
    if spec == "s":
        text = take()
        return _NULL_TEXT if text is None else str(text)
    if spec == "S":
        text = take()
        length = take()
        return _NULL_TEXT if text is None else str(text)[:length]
    if spec == "d":
        return str(_wrap_signed(take(), 32))
    if spec == "u":
        return str(_wrap_unsigned(take(), 32))
    if spec == "x":
        return _hex(_wrap_unsigned(take(), 32))
    if spec == "D":
        return str(_wrap_signed(take(), 64))
    if spec == "U":
        return str(_wrap_unsigned(take(), 64))
    if spec in ("X", "p"):
        return _hex(_wrap_unsigned(take(), 64))
    if spec == "c":
        return _char(take())
    if spec == "#":
        return _upto_last_hash(take())
    return "?"


def format_message(fmt: str, *args: Any) -> str:
    """Format *fmt* with the loader's specifiers.

    Supported: ``%s``, ``%S`` (text and length), ``%d``/``%u``/``%x`` (32-bit),
    ``%D``/``%U``/``%X`` (64-bit), ``%p``, ``%c`` and ``%#`` (text up to its
    last ``#``). Unknown specifiers produce ``?``. The result is limited to
    ``PRINT_BUF_MAX - 1`` characters.
    """
    params: Iterator[Any] = iter(args)

    def take() -> Any:
        try:
            return next(params)
        except StopIteration:
            raise TypeError("not enough arguments for format string") from None

    pieces: list[str] = []
    pos = 0
    while pos < len(fmt):
        pct = fmt.find("%", pos)
        if pct == -1:
            pieces.append(fmt[pos:])
            break
        pieces.append(fmt[pos:pct])
        if pct + 1 >= len(fmt):
            pieces.append("?")
            break
        pieces.append(_convert(fmt[pct + 1], take))
        pos = pct + 2

    return "".join(pieces)[: PRINT_BUF_MAX - 1]