"""Low-level access to .ATR disk images holding Atari DOS 2 filesystems."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from enum import Enum
from typing import BinaryIO

HEADER_SIZE = 16
ATR_MAGIC = b"\x96\x02"

SECTOR_SIZE = 128
DD_SECTOR_SIZE = 256

SECTOR_VTOC = 0x168
SECTOR_VTOC2 = 0x400
SECTOR_DIR = 0x169
DIR_SECTORS = 8
ENTRY_SIZE = 16
ENTRIES_PER_SECTOR = SECTOR_SIZE // ENTRY_SIZE

FLAG_NEVER_USED = 0x00
FLAG_DELETED = 0x80
FLAG_IN_USE = 0x40
FLAG_LOCKED = 0x20
FLAG_DOS2 = 0x02
FLAG_OPENED = 0x01
FLAG_IN_USE_ED = 0x41

VTOC_TYPE = 0
VTOC_NUM_SECTS = 1
VTOC_NUM_UNUSED = 3
VTOC_BITMAP = 10
VTOC2_NUM_UNUSED = 122

SD_BITMAP_SIZE = 90
ED_BITMAP_SIZE = 128
ED_BITMAP_START = 6

_DD_IMAGE_SIZE = 128 * 3 + 256 * 717


class DiskError(Exception):
    """Raised when a disk image cannot be read, written or understood."""


class DiskFormat(Enum):
    """The three DOS 2 disk layouts."""

    SINGLE = "dos2.0s"
    ENHANCED = "dos2.5"
    DOUBLE = "dos2.0d"

    @property
    def double_density(self) -> bool:
        return self is DiskFormat.DOUBLE

    @property
    def disk_size(self) -> int:
        """Largest sector reachable through the allocation bitmap, plus one."""
        return 1024 if self is DiskFormat.ENHANCED else 720

    @property
    def sector_size(self) -> int:
        return DD_SECTOR_SIZE if self.double_density else SECTOR_SIZE

    @property
    def data_size(self) -> int:
        """Payload bytes in a full data sector."""
        return self.sector_size - 3

    @property
    def file_num_offset(self) -> int:
        return self.data_size

    @property
    def next_high_offset(self) -> int:
        return self.data_size

    @property
    def next_low_offset(self) -> int:
        return self.data_size + 1

    @property
    def bytes_offset(self) -> int:
        return self.data_size + 2

    @property
    def image_size(self) -> int:
        """Size of the sector data of a fresh image, without the header."""
        if self is DiskFormat.SINGLE:
            return 40 * 18 * 128
        if self is DiskFormat.ENHANCED:
            return 40 * 26 * 128
        return 40 * 18 * 256 - 3 * 128

    @property
    def description(self) -> str:
        return {
            DiskFormat.SINGLE: "DOS 2.0s single density",
            DiskFormat.ENHANCED: "DOS 2.5 enhanced density",
            DiskFormat.DOUBLE: "DOS 2.0d double density",
        }[self]


def detect_format(image_size: int) -> DiskFormat:
    """Guess the layout from the total length of an .ATR file, header included."""
    data = image_size - HEADER_SIZE
    if data < 1024 * 128:
        return DiskFormat.SINGLE
    if data < _DD_IMAGE_SIZE:
        return DiskFormat.ENHANCED
    if data == _DD_IMAGE_SIZE:
        return DiskFormat.DOUBLE
    raise DiskError(
        "Unknown disk size.  Expected:\n"
        "  .ATR header is 16 bytes, so:\n"
        "  16 + 40*18*128 = 92,176 bytes for DOS 2.0s single density\n"
        "  16 + 40*26*128 = 133,136 bytes for DOS 2.5 enhanced density\n"
        "  16 + 40*18*256 - 3*128 = 183,952 bytes for DOS 2.0d double density"
    )


def count_free(bitmap: bytes | bytearray) -> int:
    """Number of set (free) bits in an allocation bitmap."""
    return sum(bin(byte).count("1") for byte in bitmap)


def _mask(sector: int) -> int:
    return 1 << (7 - (sector & 7))


def is_free(bitmap: bytes | bytearray, sector: int) -> bool:
    """True if the bitmap marks the sector as free."""
    return bool(bitmap[sector >> 3] & _mask(sector))


def mark_space(bitmap: bytearray, sector: int, alloc: bool) -> None:
    """Mark a sector allocated (alloc true) or free in the bitmap, in place."""
    if alloc:
        bitmap[sector >> 3] &= ~_mask(sector) & 0xFF
    else:
        bitmap[sector >> 3] |= _mask(sector)


def _lower(text: str) -> str:
    return "".join(chr(ord(c) + 32) if "A" <= c <= "Z" else c for c in text)


def _upper(text: str) -> str:
    return "".join(chr(ord(c) - 32) if "a" <= c <= "z" else c for c in text)


def atari_to_unix_name(name: bytes, suffix: bytes) -> str:
    """Turn an 8+3 directory name into a lower-case 'name.ext' string."""
    base = _lower(name.decode("latin-1")).rstrip(" ")
    ext = _lower(suffix.decode("latin-1")).rstrip(" ")
    return f"{base}.{ext}" if ext else base


def unix_to_atari_name(name: str) -> tuple[bytes, bytes]:
    """Turn a 'name.ext' string into space-padded 8 and 3 byte fields."""
    base, dot, rest = name.partition(".")
    base_field = _upper(base[:8]).ljust(8)
    ext_field = _upper(rest[:3]).ljust(3) if dot else " " * 3
    return base_field.encode("latin-1"), ext_field.encode("latin-1")


_ENTRY = struct.Struct("<BHH8s3s")


@dataclass
class DirEntry:
    """One 16-byte directory entry."""

    flag: int = FLAG_NEVER_USED
    count: int = 0
    start: int = 0
    name: bytes = field(default=b" " * 8)
    suffix: bytes = field(default=b" " * 3)

    @classmethod
    def from_bytes(cls, data: bytes) -> DirEntry:
        if len(data) < ENTRY_SIZE:
            raise DiskError("Directory entry is too short")
        flag, count, start, name, suffix = _ENTRY.unpack(bytes(data[:ENTRY_SIZE]))
        return cls(flag, count, start, name, suffix)

    def to_bytes(self) -> bytes:
        return _ENTRY.pack(
            self.flag & 0xFF,
            self.count & 0xFFFF,
            self.start & 0xFFFF,
            self.name,
            self.suffix,
        )

    def unix_name(self) -> str:
        return atari_to_unix_name(self.name, self.suffix)

    @property
    def in_use(self) -> bool:
        return bool(self.flag & FLAG_IN_USE_ED)

    @property
    def deleted(self) -> bool:
        return bool(self.flag & FLAG_DELETED)

    @property
    def end_of_directory(self) -> bool:
        """True for a never-used entry, which ends the directory."""
        return not self.flag & (FLAG_IN_USE_ED | FLAG_DELETED)

    @property
    def locked(self) -> bool:
        return bool(self.flag & FLAG_LOCKED)

    @property
    def opened(self) -> bool:
        return bool(self.flag & FLAG_OPENED)


class AtrDisk:
    """Sector-level access to an open .ATR image stream."""

    def __init__(self, stream: BinaryIO, disk_format: DiskFormat) -> None:
        self.stream = stream
        self.disk_format = disk_format

    @classmethod
    def open(cls, path: str) -> AtrDisk:
        """Open an existing image for reading and writing, detecting its layout."""
        try:
            stream = open(path, "r+b")
        except OSError as exc:
            raise DiskError(f"Couldn't open '{path}'") from exc
        try:
            size = stream.seek(0, 2)
            disk_format = detect_format(size)
        except (OSError, DiskError):
            stream.close()
            raise
        return cls(stream, disk_format)

    def _locate(self, sector: int) -> tuple[int, int]:
        index = sector - 1
        if self.disk_format.double_density and index >= 3:
            return SECTOR_SIZE * 3 + DD_SECTOR_SIZE * (index - 3), DD_SECTOR_SIZE
        return SECTOR_SIZE * index, SECTOR_SIZE

    def read_sector(self, sector: int) -> bytes:
        """Return the contents of a sector (numbered from 1)."""
        if sector <= 0:
            raise DiskError(f"Tried to read sector {sector}")
        offset, size = self._locate(sector)
        try:
            self.stream.seek(offset + HEADER_SIZE)
            data = self.stream.read(size)
        except OSError as exc:
            raise DiskError(f"Read error (sector {sector})") from exc
        if len(data) != size:
            raise DiskError(f"Read error (sector {sector})")
        return data

    def write_sector(self, sector: int, data: bytes) -> None:
        """Write a sector, padding with zeros or truncating to its size."""
        if sector <= 0:
            raise DiskError(f"Tried to write sector {sector}")
        offset, size = self._locate(sector)
        payload = bytes(data[:size]).ljust(size, b"\0")
        try:
            self.stream.seek(offset + HEADER_SIZE)
            written = self.stream.write(payload)
        except OSError as exc:
            raise DiskError(f"Write error (sector {sector})") from exc
        if written != size:
            raise DiskError(f"Write error (sector {sector})")

    def close(self) -> None:
        self.stream.close()

    def __enter__(self) -> AtrDisk:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()