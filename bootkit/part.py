"""Volumes, block reads and GPT/MBR partition table parsing."""

from __future__ import annotations

import itertools
import struct
from collections.abc import Iterator
from dataclasses import dataclass, field

from bootkit.fmt import format_message
from bootkit.guid import Guid

_U64_MASK = (1 << 64) - 1

_GPT_HEADER = struct.Struct("<8s4I4Q16sQ3I")
_GPT_ENTRY = struct.Struct("<16s16sQQQ72s")
_MBR_ENTRY = struct.Struct("<B3sB3sII")

_GPT_SIGNATURE = b"EFI PART"
_GPT_REVISION = 0x00010000
_LB_GUESSES = (512, 4096)

_MBR_TABLE = 0x1BE
_MBR_SECOND_ENTRY = 0x1CE
_MBR_ID_OFFSET = 0x1B8
_EXTENDED_TYPES = (0x0F, 0x05)
_EMPTY_GUID = bytes(16)


class PartitionError(Exception):
    """A partition could not be obtained."""


class NoPartition(PartitionError):
    """The table slot exists but holds no partition."""


class EndOfTable(PartitionError):
    """The partition number is past the end of the table."""


class InvalidTable(PartitionError):
    """The volume holds no recognised partition table."""


@dataclass(eq=False)
class Volume:
    """A disk, or a partition on one, backed by the raw bytes of the whole disk.

    *first_sect* and *sect_count* are counted in 512-byte sectors;
    *partition* is 0 for a whole disk.
    """

    disk: bytes
    sector_size: int = 512
    fastest_xfer_size: int = 8
    index: int = 0
    is_optical: bool = False
    pxe: bool = False
    partition: int = 0
    first_sect: int = 0
    sect_count: int = 0
    backing_dev: Volume | None = None
    max_partition: int = -1
    guid: Guid | None = None
    part_guid: Guid | None = None
    fslabel: str | None = None
    _cache: bytearray | None = field(default=None, init=False, repr=False)
    _cached_block: int | None = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.sector_size <= 0 or self.sector_size % 512:
            raise ValueError("sector size must be a positive multiple of 512")
        if self.fastest_xfer_size < 1:
            raise ValueError("transfer size must be at least one sector")

    def _cache_block(self, block: int) -> None:
        if self._cached_block == block:
            return
        self._cached_block = None

        block_bytes = self.fastest_xfer_size * self.sector_size
        if self._cache is None:
            self._cache = bytearray(block_bytes)

        ratio = self.sector_size // 512
        if self.first_sect % ratio:
            raise OSError("volume start is not aligned to its sector size")
        first = self.first_sect // ratio
        start = (first + block * self.fastest_xfer_size) * self.sector_size

        for xfer in range(self.fastest_xfer_size, 0, -1):
            end = start + xfer * self.sector_size
            if end <= len(self.disk):
                self._cache[: end - start] = self.disk[start:end]
                self._cached_block = block
                return
        raise OSError(f"cannot read block {block} of the volume")

    def read(self, loc: int, count: int) -> bytes:
        """Read *count* bytes at byte offset *loc* from the start of the volume."""
        if self.pxe:
            raise RuntimeError("cannot read blocks from a PXE volume")
        if loc < 0 or count < 0:
            raise ValueError("offset and count must not be negative")

        block_size = self.fastest_xfer_size * self.sector_size
        out = bytearray()
        while len(out) < count:
            position = loc + len(out)
            block, offset = divmod(position, block_size)
            self._cache_block(block)
            chunk = min(count - len(out), block_size - offset)
            assert self._cache is not None
            out += self._cache[offset : offset + chunk]
        return bytes(out)

    def describe(self) -> str:
        """Return a listing of the volume's properties, one per line."""
        return "".join(
            (
                format_message("index: %u\n", self.index),
                format_message("is_optical: %u\n", int(self.is_optical)),
                format_message("partition: %u\n", self.partition),
                format_message("fslabel: %s\n", self.fslabel),
                format_message("sector_size: %u\n", self.sector_size),
                format_message("max_partition: %d\n", self.max_partition),
                format_message("first_sect: %U\n", self.first_sect),
                format_message("sect_count: %U\n", self.sect_count),
                "---\n",
            )
        )

    def _child(self, **fields: object) -> Volume:
        return Volume(
            disk=self.disk,
            sector_size=self.sector_size,
            fastest_xfer_size=self.fastest_xfer_size,
            index=self.index,
            is_optical=self.is_optical,
            **fields,  # type: ignore[arg-type]
        )


def _read_or_zero(volume: Volume, loc: int, count: int) -> bytes:
    try:
        return volume.read(loc, count)
    except OSError:
        return bytes(count)


def _gpt_header(volume: Volume) -> tuple[tuple, int] | None:
    for lb_size in _LB_GUESSES:
        raw = _read_or_zero(volume, lb_size, _GPT_HEADER.size)
        header = _GPT_HEADER.unpack(raw)
        if header[0] != _GPT_SIGNATURE:
            continue
        if header[1] != _GPT_REVISION:
            return None
        return header, lb_size
    return None


def gpt_get_guid(volume: Volume) -> Guid | None:
    """Return the disk GUID of a GPT disk, or None if it has no GPT."""
    found = _gpt_header(volume)
    if found is None:
        return None
    header, _ = found
    return Guid.from_bytes(header[9])


def _gpt_get_part(volume: Volume, partition: int) -> Volume:
    found = _gpt_header(volume)
    if found is None:
        raise InvalidTable("no GPT on the volume")
    header, lb_size = found
    entry_lba, entry_count = header[10], header[11]

    if partition >= entry_count:
        raise EndOfTable(f"GPT has {entry_count} entries")

    raw = _read_or_zero(
        volume, entry_lba * lb_size + partition * _GPT_ENTRY.size, _GPT_ENTRY.size
    )
    _, unique_guid, starting_lba, ending_lba, _, _ = _GPT_ENTRY.unpack(raw)
    if unique_guid == _EMPTY_GUID:
        raise NoPartition(f"GPT entry {partition} is unused")

    ratio = lb_size // 512
    return volume._child(
        partition=partition + 1,
        first_sect=(starting_lba * ratio) & _U64_MASK,
        sect_count=((((ending_lba - starting_lba) & _U64_MASK) + 1) * ratio) & _U64_MASK,
        backing_dev=volume,
        part_guid=Guid.from_bytes(unique_guid),
    )


def is_valid_mbr(volume: Volume) -> bool:
    """Check that the volume's first sector looks like an MBR, not a boot record."""
    for offset in (446, 462, 478, 494):
        if _read_or_zero(volume, offset, 1)[0] not in (0x00, 0x80):
            return False

    signatures = (
        (4, b"_ECH_FS_"),
        (3, b"NTFS"),
        (54, b"FAT"),
        (82, b"FAT"),
        (3, b"FAT32"),
    )
    for offset, signature in signatures:
        if _read_or_zero(volume, offset, len(signature)) == signature:
            return False

    ext_magic = int.from_bytes(_read_or_zero(volume, 1080, 2), "little")
    return ext_magic != 0xEF53


def mbr_get_id(volume: Volume) -> int:
    """Return the MBR disk signature, or 0 if the volume has no valid MBR."""
    if not is_valid_mbr(volume):
        return 0
    return int.from_bytes(_read_or_zero(volume, _MBR_ID_OFFSET, 4), "little")


def _mbr_entry(volume: Volume, offset: int) -> tuple:
    return _MBR_ENTRY.unpack(_read_or_zero(volume, offset, _MBR_ENTRY.size))


def _mbr_get_logical_part(extended: Volume, partition: int) -> Volume:
    ebr_sector = 0
    for _ in range(partition):
        _, _, kind, _, first_sect, _ = _mbr_entry(
            extended, ebr_sector * 512 + _MBR_SECOND_ENTRY
        )
        if kind not in _EXTENDED_TYPES:
            raise EndOfTable("no further logical partitions")
        ebr_sector = first_sect

    _, _, kind, _, first_sect, sect_count = _mbr_entry(extended, ebr_sector * 512 + _MBR_TABLE)
    if kind == 0:
        raise NoPartition(f"logical partition {partition} is unused")

    return extended._child(
        partition=partition + 4 + 1,
        first_sect=extended.first_sect + ebr_sector + first_sect,
        sect_count=sect_count,
        backing_dev=extended.backing_dev,
    )


def _mbr_get_part(volume: Volume, partition: int) -> Volume:
    if not is_valid_mbr(volume):
        raise InvalidTable("no MBR on the volume")

    if partition > 3:
        for slot in range(4):
            _, _, kind, _, first_sect, sect_count = _mbr_entry(
                volume, _MBR_TABLE + _MBR_ENTRY.size * slot
            )
            if kind not in _EXTENDED_TYPES:
                continue
            extended = volume._child(
                partition=slot + 1,
                first_sect=first_sect,
                sect_count=sect_count,
                backing_dev=volume,
            )
            return _mbr_get_logical_part(extended, partition - 4)
        raise EndOfTable("MBR has no extended partition")

    _, _, kind, _, first_sect, sect_count = _mbr_entry(
        volume, _MBR_TABLE + _MBR_ENTRY.size * partition
    )
    if kind == 0:
        raise NoPartition(f"MBR entry {partition} is unused")

    return volume._child(
        partition=partition + 1,
        first_sect=first_sect,
        sect_count=sect_count,
        backing_dev=volume,
    )


def part_get(volume: Volume, partition: int) -> Volume:
    """Return partition number *partition* (counted from 0) of *volume*.

    GPT is tried first, then MBR. Raises NoPartition, EndOfTable or
    InvalidTable when no partition can be returned.
    """
    if partition < 0:
        raise ValueError("partition number must not be negative")
    try:
        return _gpt_get_part(volume, partition)
    except InvalidTable:
        pass
    try:
        return _mbr_get_part(volume, partition)
    except InvalidTable:
        raise InvalidTable("no partition table on the volume") from None


class VolumeIndex:
    """The set of known volumes, searchable by identity and position."""

    def __init__(self) -> None:
        self._volumes: list[Volume] = []

    def __iter__(self) -> Iterator[Volume]:
        return iter(self._volumes)

    def __len__(self) -> int:
        return len(self._volumes)

    def add(self, volume: Volume) -> None:
        """Register a volume."""
        self._volumes.append(volume)

    def get_by_guid(self, guid: Guid) -> Volume | None:
        """Find a volume whose filesystem or partition GUID is *guid*."""
        for volume in self._volumes:
            if volume.guid is not None and volume.guid == guid:
                return volume
            if volume.part_guid is not None and volume.part_guid == guid:
                return volume
        return None

    def get_by_fslabel(self, label: str) -> Volume | None:
        """Find a volume whose filesystem label is *label*."""
        for volume in self._volumes:
            if volume.fslabel is not None and volume.fslabel == label:
                return volume
        return None

    def get_by_coord(self, optical: bool, drive: int, partition: int) -> Volume | None:
        """Find a volume by drive kind, drive index and partition number."""
        for volume in self._volumes:
            if (
                volume.index == drive
                and volume.is_optical == optical
                and volume.partition == partition
            ):
                return volume
        return None

    def iterate_parts(self, volume: Volume) -> Iterator[Volume]:
        """Yield the whole disk behind *volume* and then its partitions."""
        if volume.pxe:
            yield volume
            return

        root = volume
        while root.backing_dev is not None:
            root = root.backing_dev

        highest = max(
            (
                v.partition
                for v in self._volumes
                if v.index == root.index and v.is_optical == root.is_optical
            ),
            default=-1,
        )

        found = -1
        for partno in itertools.count():
            if found > root.max_partition or partno > highest:
                break
            part = self.get_by_coord(root.is_optical, root.index, partno)
            if part is None:
                continue
            found += 1
            yield part