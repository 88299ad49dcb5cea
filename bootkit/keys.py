"""Keyboard input decoding and line editing for the loader's prompts."""

from __future__ import annotations

import enum
from collections.abc import Iterable


class Key(enum.IntEnum):
    """Special keys, with the codes the loader gives them."""

    CURSOR_LEFT = -10
    CURSOR_RIGHT = -11
    CURSOR_UP = -12
    CURSOR_DOWN = -13
    DELETE = -14
    END = -15
    HOME = -16
    PGUP = -17
    PGDOWN = -18
    F10 = -19
    ESCAPE = -20


CTRL_MASK = 0x4
"""Shift-state bit set while either Control key is held (BIOS keyboard flags)."""

_BIOS_SCANCODES = {
    0x44: Key.F10,
    0x4B: Key.CURSOR_LEFT,
    0x4D: Key.CURSOR_RIGHT,
    0x48: Key.CURSOR_UP,
    0x50: Key.CURSOR_DOWN,
    0x53: Key.DELETE,
    0x4F: Key.END,
    0x47: Key.HOME,
    0x49: Key.PGUP,
    0x51: Key.PGDOWN,
    0x01: Key.ESCAPE,
}

_CTRL_SHORTCUTS = {
    "a": Key.HOME,
    "e": Key.END,
    "p": Key.CURSOR_UP,
    "n": Key.CURSOR_DOWN,
    "b": Key.CURSOR_LEFT,
    "f": Key.CURSOR_RIGHT,
}

_CSI_LETTERS = {
    "A": Key.CURSOR_UP,
    "B": Key.CURSOR_DOWN,
    "C": Key.CURSOR_RIGHT,
    "D": Key.CURSOR_LEFT,
    "F": Key.END,
    "H": Key.HOME,
}

_CSI_NUMBERS = {
    3: Key.DELETE,
    5: Key.PGUP,
    6: Key.PGDOWN,
    21: Key.F10,
}


def _isprint(ch: str) -> bool:
    return len(ch) == 1 and " " <= ch <= "~"


def translate_bios_key(scancode: int, ascii: int, shift_state: int = 0) -> Key | str | None:
    """Translate a BIOS keystroke into a special key or a character.

    Enter gives ``"\\n"`` and backspace ``"\\b"``. Control with a, e, p, n, b
    or f gives the matching movement key. Other non-printable input gives None.
    """
    special = _BIOS_SCANCODES.get(scancode)
    if special is not None:
        return special

    ascii &= 0xFF
    ch = chr(ascii)
    if ch == "\r":
        return "\n"
    if ch == "\b":
        return "\b"

    if shift_state & CTRL_MASK and ch in _CTRL_SHORTCUTS:
        return _CTRL_SHORTCUTS[ch]

    if not _isprint(ch):
        return None
    return ch


def decode_csi_sequence(chars: Iterable[str]) -> Key | None:
    """Decode what follows ``ESC [`` in a terminal escape sequence.

    A final letter names a cursor key; a number ended by any other character
    names Delete, Page Up, Page Down or F10. Returns None if the sequence is
    unknown or the input runs out first.
    """
    value = 0
    for ch in chars:
        letter = _CSI_LETTERS.get(ch)
        if letter is not None:
            return letter
        if not ("0" <= ch <= "9"):
            return _CSI_NUMBERS.get(value)
        value = value * 10 + (ord(ch) - ord("0"))
    return None


class LineEditor:
    """An editable line of text with a cursor.

    *limit* is the size of the buffer including its terminator, so the text
    holds at most ``limit - 1`` characters.
    """

    def __init__(self, initial: str = "", limit: int = 256) -> None:
        if limit < 1:
            raise ValueError("limit must be at least 1")
        if len(initial) >= limit:
            raise ValueError("initial text does not fit within the limit")
        self.limit = limit
        self._chars = list(initial)
        self.cursor = len(initial)
        self.done = False

    @property
    def text(self) -> str:
        """The current contents of the line."""
        return "".join(self._chars)

    def _delete_at_cursor(self) -> None:
        if self.cursor < len(self._chars):
            del self._chars[self.cursor]

    def feed(self, key: Key | str) -> bool:
        """Apply one keystroke; return True once Enter has ended the line."""
        if self.done:
            raise RuntimeError("the line has already been entered")

        if key == Key.CURSOR_LEFT:
            if self.cursor:
                self.cursor -= 1
        elif key == Key.CURSOR_RIGHT:
            if self.cursor < len(self._chars):
                self.cursor += 1
        elif key == "\b":
            if self.cursor:
                self.cursor -= 1
                self._delete_at_cursor()
        elif key == Key.DELETE:
            self._delete_at_cursor()
        elif key == "\n":
            self.done = True
        elif key == Key.END:
            self.cursor = len(self._chars)
        elif key == Key.HOME:
            self.cursor = 0
        elif isinstance(key, str) and not isinstance(key, Key) and _isprint(key):
            if len(self._chars) < self.limit - 1:
                self._chars.insert(self.cursor, key)
                self.cursor += 1
        return self.done