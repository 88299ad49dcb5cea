import struct

import pytest

from bootkit.elf import (
    ARCH_AARCH64,
    ARCH_X86_32,
    ARCH_X86_64,
    FIXED_HIGHER_HALF_OFFSET_64,
    PT_DYNAMIC,
    PT_LOAD,
    R_AARCH64_RELATIVE,
    R_X86_64_RELATIVE,
    ElfError,
    SectionHeaderInfo,
    elf32_load_elsewhere,
    elf32_section_hdr_info,
    elf64_load,
    elf64_load_elsewhere,
    elf64_load_section,
    elf64_section_hdr_info,
    elf_bits,
)
from bootkit.rand import MersenneTwister

HH = FIXED_HIGHER_HALF_OFFSET_64
ENTRY = HH + 4
SEG_A = b"\xaa" * 16
SEG_B = b"\xbb" * 8
ADDEND = 0x1234
PADDR_A = 0x100000
PADDR_B = 0x101000
SHSTRTAB = b"\0.data\0.shstrtab\0"
SHOFF = 0x5000


def assemble(size, parts):
    buf = bytearray(size)
    for offset, blob in parts:
        buf[offset : offset + len(blob)] = blob
    return bytes(buf)


def header64(entry, ph_num, machine, data_enc, phdr_size):
    ident = b"\x7fELF" + bytes([2, data_enc, 1]) + bytes(9)
    return struct.pack(
        "<16sHHIQQQIHHHHHH",
        ident, 2, machine, 1, entry, 64, SHOFF, 0, 64, phdr_size, ph_num, 64, 3, 2,
    )


def phdr64(ptype, flags, offset, vaddr, filesz, memsz, align, paddr=0):
    return struct.pack("<IIQQQQQQ", ptype, flags, offset, vaddr, paddr, filesz, memsz, align)


def shdr64(name, addr, offset, size):
    return struct.pack("<IIQQQQIIQQ", name, 1, 0, addr, offset, size, 0, 0, 1, 0)


def make_elf64(
    *,
    relocatable=False,
    machine=ARCH_X86_64,
    reloc_type=R_X86_64_RELATIVE,
    rela_ent=24,
    seg_a_vaddr=HH,
    seg_b_vaddr=HH + 0x1000,
    seg_a_filesz=16,
    data_enc=1,
    phdr_size=56,
):
    phdrs = [
        phdr64(PT_LOAD, 5, 0x1000, seg_a_vaddr, seg_a_filesz, 0x20, 0x1000, PADDR_A),
        phdr64(PT_LOAD, 6, 0x2000, seg_b_vaddr, 8, 8, 0x1000, PADDR_B),
    ]
    parts = [(0x1000, SEG_A), (0x2000, SEG_B), (0x4000, SHSTRTAB)]
    if relocatable:
        dyn = struct.pack("<8Q", 7, 0x3800, 8, 24, 9, rela_ent, 0, 0)
        phdrs.append(phdr64(PT_DYNAMIC, 6, 0x3000, 0, len(dyn), len(dyn), 8))
        parts.append((0x3000, dyn))
        parts.append((0x3800, struct.pack("<QIIQ", HH + 8, reloc_type, 0, ADDEND)))
    sections = (
        shdr64(0, 0, 0, 0)
        + shdr64(1, HH, 0x1000, len(SEG_A))
        + shdr64(7, 0, 0x4000, len(SHSTRTAB))
    )
    parts.append((SHOFF, sections))
    parts.append((0, header64(ENTRY, len(phdrs), machine, data_enc, phdr_size)))
    parts.append((64, b"".join(phdrs)))
    return assemble(SHOFF + len(sections), parts)


def make_elf32(machine=ARCH_X86_32):
    ident = b"\x7fELF" + bytes([1, 1, 1]) + bytes(9)
    hdr = struct.pack(
        "<16sHHIIIIIHHHHHH",
        ident, 2, machine, 1, 0xC0100002, 52, 0x300, 0, 52, 32, 1, 40, 4, 3,
    )
    ph = struct.pack("<8I", PT_LOAD, 0x1000, 0xC0100000, 0x100000, 4, 8, 5, 0x1000)
    return assemble(0x1004, [(0, hdr), (52, ph), (0x1000, b"\x01\x02\x03\x04")])


def test_elf_bits():
    assert elf_bits(make_elf64()) == 64
    assert elf_bits(make_elf64(machine=ARCH_AARCH64)) == 64
    assert elf_bits(make_elf32()) == 32


def test_elf_bits_errors():
    with pytest.raises(ElfError):
        elf_bits(b"MZ" + bytes(62))
    with pytest.raises(ElfError):
        elf_bits(make_elf64(machine=0x28))


def test_section_hdr_info():
    assert elf64_section_hdr_info(make_elf64()) == SectionHeaderInfo(
        section_entry_size=64, str_section_idx=2, num=3, section_offset=SHOFF
    )
    assert elf32_section_hdr_info(make_elf32()) == SectionHeaderInfo(
        section_entry_size=40, str_section_idx=3, num=4, section_offset=0x300
    )


def test_load_plain_image():
    image = elf64_load(make_elf64(), physical_base=0x200000)
    assert image.physical_base == 0x200000
    assert image.virtual_base == HH
    assert image.entry_point == ENTRY
    assert image.slide == 0
    assert image.is_reloc is False
    assert image.max_align == 0x1000
    assert image.image_size == (HH + 0x1000 + len(SEG_B)) - HH
    assert len(image.memory) == image.image_size
    assert image.memory[: len(SEG_A)] == SEG_A
    assert image.memory[len(SEG_A) : 0x20] == bytes(0x20 - len(SEG_A))
    assert image.memory[0x1000 : 0x1000 + len(SEG_B)] == SEG_B


def test_ranges_cover_segments():
    image = elf64_load(make_elf64())
    assert [r.permissions for r in image.ranges] == [5, 6]
    for r, (vaddr, memsz) in zip(image.ranges, [(HH, 0x20), (HH + 0x1000, 8)]):
        assert r.base % 0x1000 == 0
        assert r.length % 0x1000 == 0
        assert r.base <= vaddr and vaddr + memsz <= r.base + r.length


def test_relocation_without_kaslr():
    image = elf64_load(make_elf64(relocatable=True))
    assert image.is_reloc is True
    assert image.slide == 0
    assert image.memory[8:16] == ADDEND.to_bytes(8, "little")
    assert image.memory[:8] == SEG_A[:8]


def test_relocation_with_kaslr():
    data = make_elf64(relocatable=True)
    image = elf64_load(data, kaslr=True, rng=MersenneTwister(seed=7))
    again = elf64_load(data, kaslr=True, rng=MersenneTwister(seed=7))
    assert again.slide == image.slide
    assert image.slide % image.max_align == 0
    assert image.memory[8:16] == (image.slide + ADDEND).to_bytes(8, "little")
    assert image.entry_point == ENTRY + image.slide
    assert image.virtual_base == HH + image.slide
    assert (image.virtual_base - HH) + image.image_size < 0x80000000
    assert image.ranges[0].base == HH + image.slide


def test_kaslr_ignored_for_non_relocatable():
    image = elf64_load(make_elf64(), kaslr=True, rng=MersenneTwister(seed=3))
    assert image.slide == 0
    assert image.entry_point == ENTRY


def test_unknown_relocation_type():
    with pytest.raises(ElfError, match="RELA type"):
        elf64_load(make_elf64(relocatable=True, reloc_type=R_AARCH64_RELATIVE))


def test_bad_relocation_entry_size():
    with pytest.raises(ElfError, match="sh_entsize"):
        elf64_load(make_elf64(relocatable=True, rela_ent=16))


def test_aarch64_relocation():
    data = make_elf64(relocatable=True, machine=ARCH_AARCH64, reloc_type=R_AARCH64_RELATIVE)
    image = elf64_load(data, machine=ARCH_AARCH64)
    assert image.memory[8:16] == ADDEND.to_bytes(8, "little")
    with pytest.raises(ElfError):
        elf64_load(data)


def test_overlapping_segments():
    with pytest.raises(ElfError, match="overlap"):
        elf64_load(make_elf64(seg_b_vaddr=HH + 0x10))


def test_filesz_larger_than_memsz():
    with pytest.raises(ElfError, match="p_filesz"):
        elf64_load(make_elf64(seg_a_filesz=0x40))


def test_no_higher_half_segments():
    with pytest.raises(ElfError, match="higher half"):
        elf64_load(make_elf64(seg_a_vaddr=0x100000, seg_b_vaddr=0x200000))


def test_header_checks():
    with pytest.raises(ElfError, match="Little-endian"):
        elf64_load(make_elf64(data_enc=2))
    with pytest.raises(ElfError, match="aarch64"):
        elf64_load(make_elf64(), machine=ARCH_AARCH64)
    with pytest.raises(ElfError, match="phdr_size"):
        elf64_load(make_elf64(phdr_size=32))
    with pytest.raises(ElfError):
        elf64_load(b"\x00" * 64)


def test_load_section():
    assert elf64_load_section(make_elf64(), ".data") == SEG_A
    assert elf64_load_section(make_elf64(), ".data", limit=len(SEG_A)) == SEG_A


def test_load_section_relocated():
    section = elf64_load_section(make_elf64(relocatable=True), ".data", slide=0x10000)
    assert section[:8] == SEG_A[:8]
    assert section[8:16] == (0x10000 + ADDEND).to_bytes(8, "little")


def test_load_section_errors():
    with pytest.raises(ElfError):
        elf64_load_section(make_elf64(), ".data", limit=len(SEG_A) - 1)
    with pytest.raises(ElfError, match="not found"):
        elf64_load_section(make_elf64(), ".bss")


def test_elf64_load_elsewhere():
    loaded = elf64_load_elsewhere(make_elf64())
    assert loaded.entry_point == ENTRY - HH + PADDR_A
    assert loaded.segments == [
        (PADDR_A, SEG_A + bytes(0x20 - len(SEG_A))),
        (PADDR_B, SEG_B),
    ]


def test_elf64_load_elsewhere_wrong_machine():
    with pytest.raises(ElfError):
        elf64_load_elsewhere(make_elf64(machine=ARCH_AARCH64))
    with pytest.raises(ElfError, match="p_filesz"):
        elf64_load_elsewhere(make_elf64(seg_a_filesz=0x40))


def test_elf32_load_elsewhere():
    loaded = elf32_load_elsewhere(make_elf32())
    assert loaded.entry_point == 0xC0100002 - 0xC0100000 + 0x100000
    assert loaded.segments == [(0x100000, b"\x01\x02\x03\x04" + bytes(4))]
    with pytest.raises(ElfError):
        elf32_load_elsewhere(make_elf32(machine=ARCH_X86_64))