# bootkit

Pure-Python building blocks for boot loader work: inspecting and laying out
ELF executables, reading GPT and MBR partition tables from disk images,
parsing GUID strings, decoding wallpaper images, and a set of small helpers
for numbers, paths, dates, random numbers, message formatting and keyboard
input.

## Installation

```
pip install .
```

To run the tests, install the test extra and run pytest:

```
pip install ".[test]"
pytest
```

## Modules

- `bootkit.strutil`: `digit_to_int`, `strtoui` (returns the value and the
  index where parsing stopped), `parse_resolution` for strings such as
  `1024x768x32` (depth defaults to 32), `isqrt`, `trailing_zeros`,
  `oct2bin`, `hex2bin`, `bcd_to_int`, `int_to_bcd`, `inet_pton` (returns
  four bytes), `absolute_path` for resolving `.`, `..` and repeated slashes,
  and the alignment helpers `div_roundup`, `align_up` and `align_down`.
- `bootkit.guid`: the frozen `Guid` type with `from_bytes` and `to_bytes`,
  plus `is_valid_guid`, `string_to_guid_be` and `string_to_guid_mixed`.
- `bootkit.rtc`: `julian_day_number` and `unix_epoch`, which turn clock
  fields into seconds since 1970-01-01.
- `bootkit.fmt`: `format_message`, a formatter for `%s`, `%S`, `%d`, `%u`,
  `%x`, `%D`, `%U`, `%X`, `%p`, `%c` and `%#`. Unknown specifiers give `?`
  and the result is limited to `PRINT_BUF_MAX - 1` characters.
- `bootkit.rand`: `MersenneTwister`, a 32-bit MT19937 generator with
  `seed`, `rand32` and `rand64`. Without a seed it seeds itself from
  timestamps and the system's random source.
- `bootkit.keys`: the `Key` codes, `translate_bios_key` for BIOS
  scancode/ASCII pairs (including Control shortcuts), `decode_csi_sequence`
  for what follows `ESC [`, and `LineEditor`, which is fed one key at a time
  through `feed` and exposes `text`, `cursor` and `done`.
- `bootkit.elsewhere`: `ElsewhereRange`, `ranges_overlap` and
  `elsewhere_append`, which picks a target for a range that clashes with no
  other range's target or source, optionally checked by a
  `memory_available(target, length)` callback. Failure raises
  `ElsewherePlacementError`.
- `bootkit.image`: `Image` (opened with `Image.open` from a path, bytes or a
  binary file, or built with `Image.from_pixels`), which can be tiled,
  centred with `make_centered` or stretched with `make_stretched`, and whose
  `pixel(x, y)` gives the colour shown at a screen position; `ImageLayout`;
  and `Framebuffer`, an in-memory framebuffer description whose `clear`
  zeroes the visible part of each row.
- `bootkit.part`: `Volume`, backed by the raw bytes of a whole disk, with
  `read` and `describe`; `part_get`, `gpt_get_guid`, `is_valid_mbr` and
  `mbr_get_id`; and `VolumeIndex` with `add`, `get_by_guid`,
  `get_by_fslabel`, `get_by_coord` and `iterate_parts`.
- `bootkit.elf`: `elf_bits`, `elf64_section_hdr_info`,
  `elf32_section_hdr_info`, `elf64_load_section` (section contents with
  relative relocations applied), `elf64_load` (returns a `LoadedImage` with
  optional KASLR slide and `ElfRange` entries), and `elf32_load_elsewhere`
  and `elf64_load_elsewhere` (return an `ElsewhereImage`).

## Example

```python
from bootkit.guid import string_to_guid_mixed
from bootkit.strutil import parse_resolution

guid = string_to_guid_mixed("c12a7328-f81f-11d2-ba4b-00a0c93ec93b")
print(guid.to_bytes().hex())

print(parse_resolution("1280x720"))  # (1280, 720, 32)
```

Errors are raised as exceptions: `part_get` raises `NoPartition`,
`EndOfTable` or `InvalidTable` (all subclasses of `PartitionError`), the ELF
functions raise `ElfError`, and the parsing helpers raise `ValueError`.

## What this package does not do

bootkit works on data held in memory. It does not boot anything, has no
command-line tool, and does not touch real hardware: volumes are read from
bytes you supply rather than from disks, `elf64_load` lays an image out in a
`bytearray` instead of placing it in physical memory, `Framebuffer` is a
buffer rather than a screen, and the keyboard helpers decode keys you pass
in rather than reading a keyboard. There is no terminal or menu; filesystem
GUIDs and labels on a `Volume` are only what you set on it.