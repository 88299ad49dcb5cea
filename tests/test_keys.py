import pytest

from bootkit.keys import (
    CTRL_MASK,
    Key,
    LineEditor,
    decode_csi_sequence,
    translate_bios_key,
)


def type_text(editor, text):
    for ch in text:
        editor.feed(ch)


def test_key_codes_match_loader_values():
    assert translate_bios_key(0x4B, 0, 0) == -10
    assert translate_bios_key(0x01, 0, 0) == -20
    assert translate_bios_key(0x44, 0, 0) == -19


@pytest.mark.parametrize(
    "scancode, expected",
    [
        (0x44, Key.F10),
        (0x4B, Key.CURSOR_LEFT),
        (0x4D, Key.CURSOR_RIGHT),
        (0x48, Key.CURSOR_UP),
        (0x50, Key.CURSOR_DOWN),
        (0x53, Key.DELETE),
        (0x4F, Key.END),
        (0x47, Key.HOME),
        (0x49, Key.PGUP),
        (0x51, Key.PGDOWN),
        (0x01, Key.ESCAPE),
    ],
)
def test_scancodes_map_to_special_keys(scancode, expected):
    assert translate_bios_key(scancode, ord("x"), 0) is expected


def test_enter_and_backspace():
    assert translate_bios_key(0x1C, ord("\r"), 0) == "\n"
    assert translate_bios_key(0x0E, ord("\b"), 0) == "\b"


@pytest.mark.parametrize(
    "letter, expected",
    [
        ("a", Key.HOME),
        ("e", Key.END),
        ("p", Key.CURSOR_UP),
        ("n", Key.CURSOR_DOWN),
        ("b", Key.CURSOR_LEFT),
        ("f", Key.CURSOR_RIGHT),
    ],
)
def test_ctrl_shortcuts(letter, expected):
    assert translate_bios_key(0, ord(letter), CTRL_MASK) is expected


def test_ctrl_with_other_letter_is_plain_character():
    assert translate_bios_key(0, ord("z"), CTRL_MASK) == "z"


def test_letters_without_ctrl_are_characters():
    assert translate_bios_key(0, ord("a"), 0) == "a"


@pytest.mark.parametrize("code", [0x00, 0x1F, 0x7F, 0x80, 0xFF])
def test_non_printable_is_ignored(code):
    assert translate_bios_key(0, code, 0) is None


@pytest.mark.parametrize(
    "seq, expected",
    [
        ("A", Key.CURSOR_UP),
        ("B", Key.CURSOR_DOWN),
        ("C", Key.CURSOR_RIGHT),
        ("D", Key.CURSOR_LEFT),
        ("F", Key.END),
        ("H", Key.HOME),
        ("3~", Key.DELETE),
        ("5~", Key.PGUP),
        ("6~", Key.PGDOWN),
        ("21~", Key.F10),
    ],
)
def test_csi_sequences(seq, expected):
    assert decode_csi_sequence(seq) is expected


def test_csi_unknown_number_and_exhaustion():
    assert decode_csi_sequence("4~") is None
    assert decode_csi_sequence("21") is None
    assert decode_csi_sequence("") is None


def test_csi_accepts_iterator():
    assert decode_csi_sequence(iter(["2", "1", "~"])) is Key.F10


def test_typing_builds_text():
    editor = LineEditor()
    type_text(editor, "hello")
    assert editor.text == "hello"
    assert editor.cursor == 5


def test_initial_text_and_cursor_at_end():
    editor = LineEditor("boot")
    assert editor.text == "boot"
    assert editor.cursor == 4


def test_insert_in_middle():
    editor = LineEditor("abc")
    editor.feed(Key.CURSOR_LEFT)
    editor.feed("X")
    assert editor.text == "abXc"
    assert editor.cursor == 3


def test_backspace_removes_before_cursor():
    editor = LineEditor("abc")
    editor.feed(Key.CURSOR_LEFT)
    editor.feed("\b")
    assert editor.text == "ac"
    assert editor.cursor == 1


def test_backspace_at_start_does_nothing():
    editor = LineEditor("abc")
    editor.feed(Key.HOME)
    editor.feed("\b")
    assert editor.text == "abc"
    assert editor.cursor == 0


def test_delete_removes_at_cursor():
    editor = LineEditor("abc")
    editor.feed(Key.HOME)
    editor.feed(Key.DELETE)
    assert editor.text == "bc"
    editor.feed(Key.END)
    editor.feed(Key.DELETE)
    assert editor.text == "bc"


def test_cursor_movement_is_bounded():
    editor = LineEditor("ab")
    editor.feed(Key.CURSOR_RIGHT)
    assert editor.cursor == 2
    for _ in range(5):
        editor.feed(Key.CURSOR_LEFT)
    assert editor.cursor == 0


def test_home_and_end():
    editor = LineEditor("kernel")
    editor.feed(Key.HOME)
    assert editor.cursor == 0
    editor.feed(Key.END)
    assert editor.cursor == len("kernel")


def test_limit_caps_length():
    editor = LineEditor(limit=4)
    type_text(editor, "abcdef")
    assert editor.text == "abc"


def test_non_printable_and_other_keys_ignored():
    editor = LineEditor("x")
    editor.feed(Key.CURSOR_UP)
    editor.feed(Key.F10)
    editor.feed("\t")
    assert editor.text == "x"
    assert editor.cursor == 1


def test_enter_finishes_line():
    editor = LineEditor()
    type_text(editor, "ok")
    assert editor.feed("\n") is True
    assert editor.done is True
    with pytest.raises(RuntimeError):
        editor.feed("z")


def test_feed_returns_false_until_enter():
    editor = LineEditor()
    assert editor.feed("a") is False


def test_initial_too_long_rejected():
    with pytest.raises(ValueError):
        LineEditor("abcd", limit=4)


def test_invalid_limit_rejected():
    with pytest.raises(ValueError):
        LineEditor(limit=0)


def test_editor_with_translated_keys():
    editor = LineEditor()
    for scancode, code, shift in [
        (0, ord("a"), 0),
        (0, ord("c"), 0),
        (0x4B, 0, 0),
        (0, ord("b"), 0),
        (0, ord("a"), CTRL_MASK),
        (0, ord(">"), 0),
    ]:
        key = translate_bios_key(scancode, code, shift)
        if key is not None:
            editor.feed(key)
    assert editor.text == ">abc"
    assert editor.feed(translate_bios_key(0x1C, ord("\r"), 0)) is True