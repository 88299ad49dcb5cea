"""Loading of ELF executables and sections into memory."""

from __future__ import annotations

import itertools
import struct
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import NamedTuple, Protocol

from bootkit.rand import MersenneTwister
from bootkit.strutil import align_up

FIXED_HIGHER_HALF_OFFSET_64 = 0xFFFFFFFF80000000

ELF_PF_X = 1
ELF_PF_W = 2
ELF_PF_R = 4

ARCH_X86_64 = 0x3E
ARCH_X86_32 = 0x03
ARCH_AARCH64 = 0xB7

PT_LOAD = 0x00000001
PT_DYNAMIC = 0x00000002

DT_NULL = 0x00000000
DT_RELA = 0x00000007
DT_RELASZ = 0x00000008
DT_RELAENT = 0x00000009

R_X86_64_RELATIVE = 0x00000008
R_AARCH64_RELATIVE = 0x00000403

_MAGIC = b"\x7fELF"
_EI_DATA = 5
_BITS_LE = 0x01
_U64_MASK = (1 << 64) - 1
_KASLR_LIMIT = 0x80000000
_KASLR_TRIES = 0x10000

_HDR64 = struct.Struct("<16sHHIQQQIHHHHHH")
_HDR32 = struct.Struct("<16sHHIIIIIHHHHHH")
_PHDR64 = struct.Struct("<IIQQQQQQ")
_PHDR32 = struct.Struct("<IIIIIIII")
_SHDR64 = struct.Struct("<IIQQQQIIQQ")
_RELA = struct.Struct("<QIIQ")
_DYN = struct.Struct("<QQ")
_MACHINE = struct.Struct("<H")
_MACHINE_OFFSET = 18

_RELOCATION_TYPES = {
    ARCH_X86_64: R_X86_64_RELATIVE,
    ARCH_AARCH64: R_AARCH64_RELATIVE,
}
_MACHINE_NAMES = {
    ARCH_X86_64: "x86_64",
    ARCH_X86_32: "x86_32",
    ARCH_AARCH64: "aarch64",
}


class ElfError(Exception):
    """The ELF file is malformed or cannot be loaded."""


@dataclass(frozen=True)
class ElfRange:
    """A virtual memory range of a loaded image and its access rights."""

    base: int
    length: int
    permissions: int


@dataclass(frozen=True)
class SectionHeaderInfo:
    """Where the section header table lives and how it is laid out."""

    section_entry_size: int
    str_section_idx: int
    num: int
    section_offset: int


@dataclass
class LoadedImage:
    """A 64-bit executable laid out in memory.

    *memory* holds the image as it sits at *physical_base*; its first byte
    corresponds to the lowest higher-half virtual address before the slide.
    """

    memory: bytearray
    entry_point: int
    slide: int
    physical_base: int
    virtual_base: int
    image_size: int
    is_reloc: bool
    max_align: int
    ranges: list[ElfRange] = field(default_factory=list)


@dataclass
class ElsewhereImage:
    """Segments loaded apart from their final place.

    *segments* holds (target physical address, contents) pairs; the contents
    are already zero-filled up to the segment's memory size.
    """

    entry_point: int
    segments: list[tuple[int, bytes]] = field(default_factory=list)


class _RandomSource(Protocol):
    def rand32(self) -> int: ...


class _Header(NamedTuple):
    ident: bytes
    type: int
    machine: int
    version: int
    entry: int
    phoff: int
    shoff: int
    flags: int
    hdr_size: int
    phdr_size: int
    ph_num: int
    shdr_size: int
    sh_num: int
    shstrndx: int


class _Phdr(NamedTuple):
    type: int
    flags: int
    offset: int
    vaddr: int
    paddr: int
    filesz: int
    memsz: int
    align: int


class _Shdr(NamedTuple):
    name: int
    type: int
    flags: int
    addr: int
    offset: int
    size: int
    link: int
    info: int
    addralign: int
    entsize: int


class _Rela(NamedTuple):
    addr: int
    info: int
    symbol: int
    addend: int


def _unpack(layout: struct.Struct, data: bytes, offset: int) -> tuple:
    if offset < 0 or offset + layout.size > len(data):
        raise ElfError("elf: File is truncated")
    return layout.unpack_from(data, offset)


def _slice(data: bytes, offset: int, length: int) -> bytes:
    if offset < 0 or offset + length > len(data):
        raise ElfError("elf: File is truncated")
    return data[offset : offset + length]


def _c_string(data: bytes, start: int) -> bytes:
    if not 0 <= start < len(data):
        raise ElfError("elf: Section name lies outside the file")
    end = data.find(b"\0", start)
    return data[start:] if end == -1 else data[start:end]


def _check_magic(data: bytes) -> None:
    if data[:4] != _MAGIC:
        raise ElfError("elf: Not a valid ELF file.")


def _check_le(header: _Header) -> None:
    if header.ident[_EI_DATA] != _BITS_LE:
        raise ElfError("elf: Not a Little-endian ELF file.")


def _check_machine(header: _Header, machine: int) -> None:
    if header.machine != machine:
        name = _MACHINE_NAMES.get(machine, hex(machine))
        raise ElfError(f"elf: Not an {name} ELF file.")


def _header64(data: bytes) -> _Header:
    _check_magic(data)
    return _Header._make(_unpack(_HDR64, data, 0))


def _header32(data: bytes) -> _Header:
    _check_magic(data)
    return _Header._make(_unpack(_HDR32, data, 0))


def _program_headers64(data: bytes, header: _Header) -> list[_Phdr]:
    if header.phdr_size < _PHDR64.size:
        raise ElfError("elf: phdr_size < sizeof(struct elf64_phdr)")
    return [
        _Phdr._make(_unpack(_PHDR64, data, header.phoff + i * header.phdr_size))
        for i in range(header.ph_num)
    ]


def _program_headers32(data: bytes, header: _Header) -> list[_Phdr]:
    if header.phdr_size < _PHDR32.size:
        raise ElfError("elf: phdr_size < sizeof(struct elf32_phdr)")
    phdrs = []
    for i in range(header.ph_num):
        p_type, offset, vaddr, paddr, filesz, memsz, flags, align = _unpack(
            _PHDR32, data, header.phoff + i * header.phdr_size
        )
        phdrs.append(_Phdr(p_type, flags, offset, vaddr, paddr, filesz, memsz, align))
    return phdrs


def _dynamic_entries(data: bytes, phdr: _Phdr) -> Iterator[tuple[int, int]]:
    for j in range(phdr.filesz // _DYN.size):
        yield _unpack(_DYN, data, phdr.offset + j * _DYN.size)


def _is_relocatable(data: bytes, phdrs: list[_Phdr]) -> bool:
    return any(
        tag == DT_RELA
        for phdr in phdrs
        if phdr.type == PT_DYNAMIC
        for tag, _ in _dynamic_entries(data, phdr)
    )


def _apply_relocations(
    data: bytes,
    phdrs: list[_Phdr],
    buffer: bytearray,
    base: int,
    vaddr: int,
    size: int,
    slide: int,
    machine: int,
) -> None:
    """Apply relative relocations that fall in [vaddr, vaddr + size).

    The byte at *vaddr* sits at *base* within *buffer*.
    """
    dynamic = next((p for p in phdrs if p.type == PT_DYNAMIC), None)
    if dynamic is None:
        return

    rela_offset = rela_size = rela_ent = 0
    for tag, value in _dynamic_entries(data, dynamic):
        if tag == DT_RELA:
            rela_offset = value
        elif tag == DT_RELAENT:
            rela_ent = value
        elif tag == DT_RELASZ:
            rela_size = value

    if rela_offset == 0:
        return

    if rela_ent != _RELA.size:
        raise ElfError("elf: Unknown sh_entsize for RELA section!")

    for phdr in phdrs:
        if phdr.vaddr <= rela_offset < phdr.vaddr + phdr.filesz:
            rela_offset = rela_offset - phdr.vaddr + phdr.offset
            break

    expected = _RELOCATION_TYPES[machine]
    for offset in range(0, rela_size, rela_ent):
        rela = _Rela._make(_unpack(_RELA, data, rela_offset + offset))
        if rela.info != expected:
            raise ElfError(f"elf: Unknown RELA type: {rela.info:#x}")
        if rela.addr < vaddr or vaddr + size < rela.addr + 8:
            continue
        position = base + rela.addr - vaddr
        buffer[position : position + 8] = ((slide + rela.addend) & _U64_MASK).to_bytes(
            8, "little"
        )


def _validate_machine_choice(machine: int) -> None:
    if machine not in _RELOCATION_TYPES:
        raise ValueError(f"unsupported target machine: {machine:#x}")


def elf_bits(data: bytes) -> int:
    """Return 64 or 32 according to the file's machine type."""
    data = bytes(data)
    _check_magic(data)
    (machine,) = _unpack(_MACHINE, data, _MACHINE_OFFSET)
    if machine in (ARCH_X86_64, ARCH_AARCH64):
        return 64
    if machine == ARCH_X86_32:
        return 32
    raise ElfError(f"elf: Unknown machine type {machine:#x}")


def _section_hdr_info(header: _Header) -> SectionHeaderInfo:
    return SectionHeaderInfo(
        section_entry_size=header.shdr_size,
        str_section_idx=header.shstrndx,
        num=header.sh_num,
        section_offset=header.shoff,
    )


def elf64_section_hdr_info(data: bytes) -> SectionHeaderInfo:
    """Return the section header table description of a 64-bit file."""
    return _section_hdr_info(_Header._make(_unpack(_HDR64, bytes(data), 0)))


def elf32_section_hdr_info(data: bytes) -> SectionHeaderInfo:
    """Return the section header table description of a 32-bit file."""
    return _section_hdr_info(_Header._make(_unpack(_HDR32, bytes(data), 0)))


def _section(data: bytes, header: _Header, index: int) -> _Shdr:
    return _Shdr._make(_unpack(_SHDR64, data, header.shoff + index * header.shdr_size))


def elf64_load_section(
    data: bytes,
    name: str,
    slide: int = 0,
    limit: int = 0,
    machine: int = ARCH_X86_64,
) -> bytes:
    """Return the contents of section *name* with relocations applied for *slide*.

    A *limit* of 0 means no limit; a section larger than a non-zero limit is
    an error, as is a missing section.
    """
    _validate_machine_choice(machine)
    data = bytes(data)
    header = _header64(data)
    _check_le(header)
    _check_machine(header, machine)

    if header.shdr_size < _SHDR64.size:
        raise ElfError("elf: shdr_size < sizeof(struct elf64_shdr)")

    shstrtab = _section(data, header, header.shstrndx)
    wanted = name.encode()

    for index in range(header.sh_num):
        section = _section(data, header, index)
        if _c_string(data, shstrtab.offset + section.name) != wanted:
            continue
        if limit and section.size > limit:
            raise ElfError(
                f"elf: Section {name!r} is {section.size} bytes, over the limit of {limit}"
            )
        buffer = bytearray(_slice(data, section.offset, section.size))
        phdrs = _program_headers64(data, header)
        _apply_relocations(data, phdrs, buffer, 0, section.addr, section.size, slide, machine)
        return bytes(buffer)

    raise ElfError(f"elf: Section {name!r} not found")


def _segments_overlap(outer: _Phdr, inner: _Phdr) -> bool:
    top = outer.vaddr + outer.memsz
    inner_top = inner.vaddr + inner.memsz
    return (outer.vaddr <= inner.vaddr < top) or (outer.vaddr < inner_top <= top)


def _choose_slide(
    rng: _RandomSource, virtual_base: int, image_size: int, max_align: int
) -> int:
    mask = ~(max_align - 1) & _U64_MASK
    for _ in range(_KASLR_TRIES):
        slide = rng.rand32() & mask
        reach = ((virtual_base - FIXED_HIGHER_HALF_OFFSET_64) + slide + image_size) & _U64_MASK
        if reach < _KASLR_LIMIT:
            return slide
    raise ElfError("elf: Image wants to load too high")


def _segment_range(phdr: _Phdr, slide: int) -> ElfRange:
    align = phdr.align or 1
    load_addr = phdr.vaddr + slide
    top = load_addr + phdr.memsz
    base = load_addr & ~(align - 1) & _U64_MASK
    return ElfRange(base, align_up(top - base, align), phdr.flags & 0b111)


def elf64_load(
    data: bytes,
    physical_base: int = 0,
    kaslr: bool = False,
    rng: _RandomSource | None = None,
    machine: int = ARCH_X86_64,
) -> LoadedImage:
    """Lay out the higher-half loadable segments of a 64-bit executable.

    With *kaslr* set and a relocatable file, a random slide drawn from *rng*
    is applied to the virtual addresses and relocations.
    """
    _validate_machine_choice(machine)
    data = bytes(data)
    header = _header64(data)
    _check_le(header)
    _check_machine(header, machine)

    phdrs = _program_headers64(data, header)

    max_align = max((p.align for p in phdrs if p.type == PT_LOAD), default=0)
    if max_align == 0:
        raise ElfError("elf: Executable has no loadable segments")

    higher = [
        (index, phdr)
        for index, phdr in enumerate(phdrs)
        if phdr.type == PT_LOAD and phdr.vaddr >= FIXED_HIGHER_HALF_OFFSET_64
    ]

    for (i, phdr), (j, other) in itertools.permutations(higher, 2):
        if _segments_overlap(phdr, other):
            raise ElfError(
                f"elf: Attempted to load ELF file with overlapping PHDRs ({i} and {j} overlap)"
            )

    if not higher:
        raise ElfError("elf: No higher half PHDRs exist")

    min_vaddr = min(p.vaddr for _, p in higher)
    max_vaddr = max(p.vaddr + p.memsz for _, p in higher)
    image_size = max_vaddr - min_vaddr

    is_reloc = _is_relocatable(data, phdrs)

    slide = 0
    if is_reloc and kaslr:
        slide = _choose_slide(rng or MersenneTwister(), min_vaddr, image_size, max_align)

    memory = bytearray(image_size)
    for _, phdr in higher:
        if phdr.filesz > phdr.memsz:
            raise ElfError("elf: p_filesz > p_memsz")
        offset = phdr.vaddr - min_vaddr
        memory[offset : offset + phdr.filesz] = _slice(data, phdr.offset, phdr.filesz)
        _apply_relocations(data, phdrs, memory, offset, phdr.vaddr, phdr.memsz, slide, machine)

    return LoadedImage(
        memory=memory,
        entry_point=(header.entry + slide) & _U64_MASK,
        slide=slide,
        physical_base=physical_base,
        virtual_base=(min_vaddr + slide) & _U64_MASK,
        image_size=image_size,
        is_reloc=is_reloc,
        max_align=max_align,
        ranges=[_segment_range(phdr, slide) for _, phdr in higher],
    )


def _load_elsewhere(data: bytes, entry: int, phdrs: list[_Phdr]) -> ElsewhereImage:
    segments: list[tuple[int, bytes]] = []
    adjusted = False
    for phdr in phdrs:
        if phdr.type != PT_LOAD:
            continue
        if phdr.filesz > phdr.memsz:
            raise ElfError("elf: p_filesz > p_memsz")
        contents = _slice(data, phdr.offset, phdr.filesz) + bytes(phdr.memsz - phdr.filesz)
        if not adjusted and phdr.vaddr <= entry < phdr.vaddr + phdr.memsz:
            entry = entry - phdr.vaddr + phdr.paddr
            adjusted = True
        segments.append((phdr.paddr, contents))
    return ElsewhereImage(entry, segments)


def elf32_load_elsewhere(data: bytes) -> ElsewhereImage:
    """Load every segment of a 32-bit x86 file for later copying to its physical address."""
    data = bytes(data)
    header = _header32(data)
    _check_le(header)
    _check_machine(header, ARCH_X86_32)
    return _load_elsewhere(data, header.entry, _program_headers32(data, header))


def elf64_load_elsewhere(data: bytes) -> ElsewhereImage:
    """Load every segment of a 64-bit x86 file for later copying to its physical address."""
    data = bytes(data)
    header = _header64(data)
    _check_le(header)
    _check_machine(header, ARCH_X86_64)
    return _load_elsewhere(data, header.entry, _program_headers64(data, header))