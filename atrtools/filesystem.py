"""Atari DOS 2 filesystem operations on top of an .ATR disk image."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field

from .disk import (
    ATR_MAGIC,
    DIR_SECTORS,
    ED_BITMAP_SIZE,
    ED_BITMAP_START,
    ENTRIES_PER_SECTOR,
    ENTRY_SIZE,
    FLAG_DELETED,
    FLAG_DOS2,
    FLAG_IN_USE,
    FLAG_OPENED,
    HEADER_SIZE,
    SD_BITMAP_SIZE,
    SECTOR_DIR,
    SECTOR_SIZE,
    SECTOR_VTOC,
    SECTOR_VTOC2,
    VTOC2_NUM_UNUSED,
    VTOC_BITMAP,
    VTOC_NUM_SECTS,
    VTOC_NUM_UNUSED,
    VTOC_TYPE,
    AtrDisk,
    DirEntry,
    DiskError,
    DiskFormat,
    count_free,
    is_free,
    mark_space,
    unix_to_atari_name,
)

MAX_FILE_SECTORS = 2048
_INFO_BUFFER = 65536 * 2
_FIRST_DATA_SECTOR = 4
_ATARI_EOL = 0x9B
_SYSTEM_FILES = ("dos.sys", "dup.sys")
_RUN_VECTOR = 0x2E0
_INIT_VECTOR = 0x2E2


class AtariFileNotFound(DiskError):
    """Raised when a named file is not in the directory."""

    def __init__(self, name: str) -> None:
        super().__init__(f"File '{name}' not found")
        self.name = name


class DiskFullError(DiskError):
    """Raised when there is no room for a file or no free directory entry."""


@dataclass
class Segment:
    """One load segment of an Atari binary file."""

    start: int
    size: int
    init: int | None = None
    run: int | None = None

    @property
    def end(self) -> int:
        return self.start + self.size - 1


@dataclass
class FileInfo:
    """A directory entry, optionally with facts gathered from the file's data."""

    name: str
    locked: bool
    sector: int
    sects: int
    is_sys: bool
    executable: bool = False
    size: int | None = None
    segments: list[Segment] = field(default_factory=list)


def _vector(memory: dict[int, int], address: int) -> int | None:
    low, high = memory[address], memory[address + 1]
    if low == 0xFE and high == 0xFE:
        return None
    return low + (high << 8)


def parse_segments(data: bytes) -> list[Segment]:
    """Decode the load segments of an Atari binary (0xFFFF) file."""
    total = len(data)
    segments: list[Segment] = []
    if total < 2 or data[0] != 0xFF or data[1] != 0xFF:
        return segments
    idx = 0
    ok = True
    while ok and idx < total:
        segsize = 0
        ok = False
        if idx + 2 <= total and data[idx] == 0xFF and data[idx + 1] == 0xFF:
            idx += 2
            ok = True
        if idx + 4 <= total:
            first = data[idx] + (data[idx + 1] << 8)
            last = data[idx + 2] + (data[idx + 3] << 8)
            segsize = last - first + 1
            idx += 4
            ok = True
            if segsize < 1:
                break
            # One-byte segments are ignored, as the DUP.SYS loader does not skip them.
            if segsize > 1:
                memory = {addr: 0xFE for addr in range(_RUN_VECTOR, _INIT_VECTOR + 2)}
                for addr in memory:
                    if first <= addr < first + segsize:
                        pos = idx + addr - first
                        memory[addr] = data[pos] if pos < total else 0
                segments.append(
                    Segment(
                        start=first,
                        size=segsize,
                        init=_vector(memory, _INIT_VECTOR),
                        run=_vector(memory, _RUN_VECTOR),
                    )
                )
        idx += segsize
    return segments


class FileSystem:
    """Files, directory and allocation bitmap of a DOS 2 disk."""

    def __init__(self, disk: AtrDisk) -> None:
        self.disk = disk
        self.format = disk.disk_format

    # Allocation bitmap

    def read_bitmap(self) -> bytearray:
        """Return the allocation bitmap (a set bit means a free sector)."""
        bitmap = bytearray(ED_BITMAP_SIZE)
        vtoc = self.disk.read_sector(SECTOR_VTOC)
        bitmap[:SD_BITMAP_SIZE] = vtoc[VTOC_BITMAP:VTOC_BITMAP + SD_BITMAP_SIZE]
        if self.format is DiskFormat.ENHANCED:
            vtoc2 = self.disk.read_sector(SECTOR_VTOC2)
            start = SD_BITMAP_SIZE - ED_BITMAP_START
            bitmap[SD_BITMAP_SIZE:] = vtoc2[start:start + ED_BITMAP_SIZE - SD_BITMAP_SIZE]
        return bitmap

    def write_bitmap(self, bitmap: bytes | bytearray) -> None:
        """Store the bitmap in the VTOC (and VTOC2), updating the free counts."""
        vtoc = bytearray(self.disk.read_sector(SECTOR_VTOC))
        vtoc[VTOC_BITMAP:VTOC_BITMAP + SD_BITMAP_SIZE] = bitmap[:SD_BITMAP_SIZE]
        count = count_free(bitmap[:SD_BITMAP_SIZE])
        vtoc[VTOC_NUM_UNUSED] = count & 0xFF
        vtoc[VTOC_NUM_UNUSED + 1] = (count >> 8) & 0xFF
        self.disk.write_sector(SECTOR_VTOC, vtoc)

        if self.format is DiskFormat.ENHANCED:
            vtoc2 = bytearray(self.disk.read_sector(SECTOR_VTOC2))
            vtoc2[:ED_BITMAP_SIZE - ED_BITMAP_START] = bitmap[ED_BITMAP_START:ED_BITMAP_SIZE]
            count = count_free(bitmap[SD_BITMAP_SIZE:ED_BITMAP_SIZE])
            vtoc2[VTOC2_NUM_UNUSED] = count & 0xFF
            vtoc2[VTOC2_NUM_UNUSED + 1] = (count >> 8) & 0xFF
            self.disk.write_sector(SECTOR_VTOC2, vtoc2)

    def free_sectors(self) -> int:
        """Number of free sectors the bitmap reports."""
        bitmap = self.read_bitmap()
        return sum(1 for sector in range(self.format.disk_size) if is_free(bitmap, sector))

    # Directory

    def entries(self) -> Iterator[tuple[int, DirEntry]]:
        """Yield (file number, entry) for every slot of the directory."""
        for index in range(DIR_SECTORS):
            buf = self.disk.read_sector(SECTOR_DIR + index)
            for slot in range(ENTRIES_PER_SECTOR):
                offset = slot * ENTRY_SIZE
                yield (
                    index * ENTRIES_PER_SECTOR + slot,
                    DirEntry.from_bytes(buf[offset:offset + ENTRY_SIZE]),
                )

    def _live_entries(self) -> Iterator[tuple[int, DirEntry]]:
        for file_no, entry in self.entries():
            # Some disks put junk after the first never-used entry.
            if entry.end_of_directory:
                return
            if entry.in_use:
                yield file_no, entry

    def _lookup(self, name: str) -> tuple[int, DirEntry]:
        for file_no, entry in self._live_entries():
            if entry.unix_name() == name:
                return file_no, entry
        raise AtariFileNotFound(name)

    def _write_entry(self, file_no: int, entry: DirEntry) -> None:
        sector = SECTOR_DIR + file_no // ENTRIES_PER_SECTOR
        buf = bytearray(self.disk.read_sector(sector))
        offset = (file_no % ENTRIES_PER_SECTOR) * ENTRY_SIZE
        buf[offset:offset + ENTRY_SIZE] = entry.to_bytes()
        self.disk.write_sector(sector, buf)

    def _find_empty_entry(self) -> int:
        for file_no, entry in self.entries():
            if not entry.in_use:
                return file_no
        raise DiskFullError("Directory is full")

    def find_file(self, name: str) -> int:
        """Return the first sector of the named file."""
        return self._lookup(name)[1].start

    # Sector chains

    def _next_sector(self, buf: bytes) -> int:
        fmt = self.format
        return buf[fmt.next_low_offset] + ((buf[fmt.next_high_offset] & 0x3) << 8)

    def _chain(self, start: int) -> Iterator[tuple[int, bytes]]:
        sector = start
        count = 0
        while True:
            if count == MAX_FILE_SECTORS:
                raise DiskError("File too long")
            buf = self.disk.read_sector(sector)
            count += 1
            yield sector, buf
            sector = self._next_sector(buf)
            if not sector:
                return

    # File operations

    def read_file(self, name: str, convert_endings: bool = False) -> bytes:
        """Return the contents of a file, optionally turning 0x9B into newlines."""
        start = self.find_file(name)
        out = bytearray()
        for _, buf in self._chain(start):
            out += buf[:buf[self.format.bytes_offset]]
        if convert_endings:
            out = out.replace(bytes([_ATARI_EOL]), b"\n")
        return bytes(out)

    def delete(self, name: str) -> None:
        """Remove a file from the directory and free its sectors."""
        file_no, entry = self._lookup(name)
        entry.flag = FLAG_DELETED
        self._write_entry(file_no, entry)

        bitmap = self.read_bitmap()
        try:
            for sector, _ in self._chain(entry.start):
                mark_space(bitmap, sector, False)
        except DiskError:
            pass
        self.write_bitmap(bitmap)

    def _allocate(self, bitmap: bytearray, count: int) -> tuple[list[int], bool]:
        sectors: list[int] = []
        last_sector = _FIRST_DATA_SECTOR
        for _ in range(count):
            sector = next(
                (s for s in range(last_sector, self.format.disk_size) if is_free(bitmap, s)),
                None,
            )
            if sector is None:
                raise DiskFullError("Not enough space")
            sectors.append(sector)
            last_sector = sector + 1
            mark_space(bitmap, sector, True)
        return sectors, last_sector > 720

    def write_file(self, name: str, data: bytes, convert_endings: bool = False) -> None:
        """Store data as a file, replacing any file of the same name."""
        fmt = self.format
        payload = bytes(data)
        if convert_endings:
            payload = payload.replace(b"\n", bytes([_ATARI_EOL]))
        size = len(payload)
        num_sects = -(-size // fmt.data_size)
        payload = payload.ljust(num_sects * fmt.data_size, b"\0")

        try:
            self.delete(name)
        except AtariFileNotFound:
            pass

        bitmap = self.read_bitmap()
        file_no = self._find_empty_entry()
        sectors, beyond_720 = self._allocate(bitmap, num_sects)

        remaining = size
        for position, sector in enumerate(sectors):
            buf = bytearray(fmt.sector_size)
            buf[:fmt.data_size] = payload[position * fmt.data_size:(position + 1) * fmt.data_size]
            if position + 1 == len(sectors):
                buf[fmt.next_low_offset] = 0
                buf[fmt.next_high_offset] = 0
                buf[fmt.bytes_offset] = remaining & 0xFF
            else:
                following = sectors[position + 1]
                buf[fmt.next_low_offset] = following & 0xFF
                buf[fmt.next_high_offset] = (following >> 8) & 0xFF
                buf[fmt.bytes_offset] = fmt.data_size
            buf[fmt.file_num_offset] |= (file_no << 2) & 0xFF
            remaining -= fmt.data_size
            self.disk.write_sector(sector, buf)

        base, suffix = unix_to_atari_name(name)
        # DOS complains on some file operations if FLAG_DOS2 is not there.
        flag = (FLAG_OPENED if beyond_720 else FLAG_IN_USE) | FLAG_DOS2
        entry = DirEntry(
            flag=flag,
            count=num_sects,
            start=sectors[0] if sectors else 0,
            name=base,
            suffix=suffix,
        )
        self._write_entry(file_no, entry)
        self.write_bitmap(bitmap)

    def rename(self, old_name: str, new_name: str) -> None:
        """Give a file a new name."""
        try:
            self._lookup(new_name)
        except AtariFileNotFound:
            pass
        else:
            raise FileExistsError(f"'{new_name}' already exists")
        file_no, entry = self._lookup(old_name)
        entry.name, entry.suffix = unix_to_atari_name(new_name)
        self._write_entry(file_no, entry)

    def _measure(self, info: FileInfo) -> None:
        data = bytearray()
        sector = info.sector
        while True:
            if len(data) + 125 >= _INFO_BUFFER:
                break
            try:
                buf = self.disk.read_sector(sector)
            except DiskError:
                break
            data += buf[:buf[self.format.bytes_offset]]
            sector = self._next_sector(buf)
            if not sector:
                break
        info.size = len(data)
        info.segments = parse_segments(bytes(data))

    def list_files(self, include_system: bool = False, with_info: bool = False) -> list[FileInfo]:
        """Return the files in directory order."""
        files = []
        for _, entry in self._live_entries():
            name = entry.unix_name()
            info = FileInfo(
                name=name,
                locked=entry.locked,
                sector=entry.start,
                sects=entry.count,
                is_sys=name in _SYSTEM_FILES,
            )
            if with_info:
                self._measure(info)
            if include_system or not info.is_sys:
                files.append(info)
        return files


def mkfs(path: str, disk_format: DiskFormat, boot_sectors: bytes | None = None) -> None:
    """Create a new, empty DOS 2 image at path, optionally with boot sector data."""
    size = disk_format.image_size
    header = bytearray(HEADER_SIZE)
    header[0:2] = ATR_MAGIC
    header[2] = (size // 16) & 0xFF
    header[3] = (size // 16 // 256) & 0xFF
    header[4] = disk_format.sector_size & 0xFF
    header[5] = (disk_format.sector_size >> 8) & 0xFF

    try:
        stream = open(path, "w+b")
    except OSError as exc:
        raise DiskError(f"Couldn't open '{path}'") from exc
    with stream:
        try:
            stream.write(header)
            stream.write(bytes(size))
        except OSError as exc:
            raise DiskError(f"Couldn't write to '{path}'") from exc
        disk = AtrDisk(stream, disk_format)

        vtoc = bytearray(disk_format.sector_size)
        vtoc[VTOC_TYPE] = 2
        initial = 1010 if disk_format is DiskFormat.ENHANCED else 707
        vtoc[VTOC_NUM_SECTS] = initial & 0xFF
        vtoc[VTOC_NUM_SECTS + 1] = initial >> 8
        disk.write_sector(SECTOR_VTOC, vtoc)

        bitmap = bytearray(b"\xff" * ED_BITMAP_SIZE)
        reserved = [0, 1, 2, 3, SECTOR_VTOC, *range(SECTOR_DIR, SECTOR_DIR + DIR_SECTORS), 720]
        for sector in reserved:
            mark_space(bitmap, sector, True)
        FileSystem(disk).write_bitmap(bitmap)

        if boot_sectors is not None:
            offset = 0
            sector = 1
            while offset < len(boot_sectors):
                chunk = SECTOR_SIZE if sector < 3 else disk_format.sector_size
                disk.write_sector(sector, boot_sectors[offset:offset + chunk])
                offset += chunk
                sector += 1