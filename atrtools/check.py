"""Consistency check (and optional repair) of a DOS 2 filesystem."""

from __future__ import annotations

import sys
from collections.abc import Callable
from dataclasses import dataclass
from typing import TextIO

from .disk import (
    DIR_SECTORS,
    ED_BITMAP_SIZE,
    ENTRIES_PER_SECTOR,
    ENTRY_SIZE,
    FLAG_OPENED,
    SD_BITMAP_SIZE,
    ED_BITMAP_START,
    SECTOR_DIR,
    SECTOR_VTOC,
    SECTOR_VTOC2,
    VTOC2_NUM_UNUSED,
    VTOC_BITMAP,
    VTOC_NUM_SECTS,
    VTOC_NUM_UNUSED,
    VTOC_TYPE,
    DirEntry,
    DiskFormat,
    count_free,
    is_free,
    mark_space,
)
from .filesystem import MAX_FILE_SECTORS, FileSystem

_RESERVED = 64
_FREE = -1


@dataclass
class CheckResult:
    """Outcome of a filesystem check."""

    errors: bool
    fixes: bool
    used: int
    free: int

    @property
    def ok(self) -> bool:
        return not self.errors


class _Checker:
    def __init__(
        self,
        fs: FileSystem,
        confirm: Callable[[], bool] | None,
        out: TextIO,
        err: TextIO,
    ) -> None:
        self.fs = fs
        self.disk = fs.disk
        self.format = fs.format
        self.confirm = confirm
        self.out = out
        self.err = err
        self.errors = False
        self.fixes = False
        self.owner: dict[int, int] = {}
        self.owner_name: dict[int, str] = {}

    def say(self, text: str) -> None:
        print(text, file=self.out)

    def complain(self, text: str) -> None:
        print(text, file=self.err)

    def fixit(self) -> bool:
        return bool(self.confirm()) if self.confirm is not None else False

    def owner_of(self, sector: int) -> int:
        return self.owner.get(sector, _FREE)

    # Per-file check

    def check_file(self, entry: DirEntry, file_no: int) -> bool:
        fmt = self.format
        filename = entry.unix_name()
        update_dir = False
        sector = entry.start
        count = 0
        self.say(f"Checking {filename} (file_no {file_no})")
        if entry.flag & FLAG_OPENED:
            self.say("  ** Warning: file is marked as opened")
            if self.fixit():
                entry.flag &= ~FLAG_OPENED & 0xFF
                update_dir = True
        while True:
            count += 1
            if count == MAX_FILE_SECTORS:
                self.complain(" (file too long)")
                self.errors = True
                break
            buf = bytearray(self.disk.read_sector(sector))
            current = self.owner_of(sector)
            if current != _FREE:
                holder = self.owner_name.get(sector, "reserved")
                self.complain(
                    f"  ** Uh oh.. sector {sector} already in use by {holder} ({current})"
                )
                self.errors = True
            if current == file_no:
                self.complain("  ** Warning: Infinite linked list detected")
                self.errors = True
                break
            self.owner[sector] = file_no
            self.owner_name[sector] = filename
            following = buf[fmt.next_low_offset] + ((buf[fmt.next_high_offset] & 0x3) << 8)
            claimed = buf[fmt.file_num_offset] >> 2
            changed = False
            if claimed != file_no:
                self.complain(
                    f"  ** Warning: Sector {sector} claims to belong to file {claimed}"
                )
                self.errors = True
                if self.fixit():
                    buf[fmt.file_num_offset] = (buf[fmt.file_num_offset] & 0x3) | (
                        (file_no << 2) & 0xFF
                    )
                    changed = True
            used = buf[fmt.bytes_offset]
            if following:
                if used != fmt.data_size:
                    self.complain(f"  ** Warning: Sector {sector} is short")
            elif used == 0:
                self.complain(
                    f"  ** Warning: Sector {sector} (last sector of file) is empty"
                )
            if changed:
                self.disk.write_sector(sector, buf)
                self.fixes = True
            sector = following
            if not sector:
                break
        if count != entry.count:
            self.complain(
                f"  ** Warning: size in directory ({entry.count}) does not match "
                f"size on disk ({count}) for file {filename}"
            )
            self.errors = True
            if self.fixit():
                entry.count = count & 0xFFFF
                update_dir = True
        self.say(f"  Found {count} sectors")
        return update_dir

    # Directory walk

    def reserve(self) -> None:
        reserved = [0, 1, 2, 3, SECTOR_VTOC, *range(SECTOR_DIR, SECTOR_DIR + DIR_SECTORS)]
        if self.format is DiskFormat.ENHANCED:
            reserved.append(720)
        for sector in reserved:
            self.owner[sector] = _RESERVED

    def walk_directory(self) -> None:
        found_eod = 0
        for index in range(DIR_SECTORS):
            dir_sector = SECTOR_DIR + index
            buf = bytearray(self.disk.read_sector(dir_sector))
            update = False
            for slot in range(ENTRIES_PER_SECTOR):
                offset = slot * ENTRY_SIZE
                entry = DirEntry.from_bytes(buf[offset:offset + ENTRY_SIZE])
                if entry.end_of_directory:
                    found_eod = max(found_eod, 1)
                if entry.in_use:
                    if found_eod == 1:
                        self.complain(
                            "** Error: found in use directory entry after end of directory mark:"
                        )
                        self.errors = True
                        found_eod = 2
                    if self.check_file(entry, index * ENTRIES_PER_SECTOR + slot):
                        buf[offset:offset + ENTRY_SIZE] = entry.to_bytes()
                        update = True
            if update:
                self.say("Writing back modified directory sector...")
                self.disk.write_sector(dir_sector, buf)
                self.say("  done.")
                self.fixes = True

    # VTOC header

    def check_vtoc(self) -> None:
        vtoc = bytearray(self.disk.read_sector(SECTOR_VTOC))
        bitmap = vtoc[VTOC_BITMAP:VTOC_BITMAP + SD_BITMAP_SIZE]
        count = count_free(bitmap)
        vtoc_count = vtoc[VTOC_NUM_UNUSED] + 256 * vtoc[VTOC_NUM_UNUSED + 1]
        vtoc_total = vtoc[VTOC_NUM_SECTS] + 256 * vtoc[VTOC_NUM_SECTS + 1]
        update = False

        self.say("  Checking that VTOC current free sector count matches bitmap...")
        if count != vtoc_count:
            self.complain(
                f"    ** It doesn't match: bitmap has {count} free, but VTOC count is {vtoc_count}"
            )
            self.errors = True
            if self.fixit():
                vtoc[VTOC_NUM_UNUSED] = count & 0xFF
                vtoc[VTOC_NUM_UNUSED + 1] = (count >> 8) & 0xFF
                update = True
        else:
            self.say(f"    It's OK (count is {count})")

        # 1011 would also do for a format that does not pre-allocate sector 720.
        expected = 1010 if self.format is DiskFormat.ENHANCED else 707
        self.say(f"  Checking that VTOC initial free sector count is {expected}...")
        if vtoc_total != expected:
            self.complain(f"    ** It's wrong, we found: {vtoc_total}")
            self.errors = True
            if self.fixit():
                vtoc[VTOC_NUM_SECTS] = expected & 0xFF
                vtoc[VTOC_NUM_SECTS + 1] = (expected >> 8) & 0xFF
                update = True
        else:
            self.say("    It's OK")

        self.say("  Checking that VTOC type code is 2...")
        if vtoc[VTOC_TYPE] == 2:
            self.say("    It's OK")
        else:
            self.complain(f"    ** It's wrong, we found: {vtoc[VTOC_TYPE]}")
            self.errors = True
            if self.fixit():
                vtoc[VTOC_TYPE] = 2
                update = True

        if update:
            self.say("Saving VTOC1 fixes...")
            self.disk.write_sector(SECTOR_VTOC, vtoc)
            self.say("  done.")
            self.fixes = True

        if self.format is not DiskFormat.ENHANCED:
            return
        vtoc2 = bytearray(self.disk.read_sector(SECTOR_VTOC2))
        start = SD_BITMAP_SIZE - ED_BITMAP_START
        count = count_free(vtoc2[start:start + ED_BITMAP_SIZE - SD_BITMAP_SIZE])
        vtoc2_count = vtoc2[VTOC2_NUM_UNUSED] + 256 * vtoc2[VTOC2_NUM_UNUSED + 1]
        self.say("  Checking that VTOC2 current free sector count matches bitmap...")
        if count != vtoc2_count:
            self.complain(
                f"    ** It doesn't match: bitmap has {count} free, but VTOC2 count is {vtoc2_count}"
            )
            self.errors = True
            if self.fixit():
                vtoc2[VTOC2_NUM_UNUSED] = count & 0xFF
                vtoc2[VTOC2_NUM_UNUSED + 1] = (count >> 8) & 0xFF
                self.say("Saving VTOC2 fixes...")
                self.disk.write_sector(SECTOR_VTOC2, vtoc2)
                self.say("  done.")
                self.fixes = True
        else:
            self.say(f"    It's OK (count is {count})")

    # Bitmap comparison

    def compare_bitmap(self) -> None:
        bitmap = self.fs.read_bitmap()
        ok = True
        for sector in range(self.format.disk_size):
            allocated = not is_free(bitmap, sector)
            in_map = self.owner_of(sector) != _FREE
            if allocated and not in_map:
                self.complain(
                    f"  ** VTOC shows sector {sector} allocated, but it should be free"
                )
                self.errors = True
                ok = False
            if not allocated and in_map:
                self.complain(
                    f"  ** VTOC shows sector {sector} free, but it should be allocated"
                )
                self.errors = True
                ok = False
        if ok:
            self.say("  It's OK.")
        elif self.fixit():
            rebuilt = bytearray(b"\xff" * ED_BITMAP_SIZE)
            for sector in self.owner:
                if 0 <= sector < ED_BITMAP_SIZE * 8:
                    mark_space(rebuilt, sector, True)
            self.say("Updating allocation bitmap...")
            self.fs.write_bitmap(rebuilt)
            self.say("  done.")
            self.fixes = True

    def run(self) -> CheckResult:
        fmt = self.format
        if fmt is DiskFormat.ENHANCED:
            self.say("Checking DOS 2.5 enhanced density disk...")
        elif fmt.double_density:
            self.say("Checking DOS 2.0d double density disk...")
        else:
            self.say("Checking DOS 2.0s single density disk...")

        self.reserve()
        self.walk_directory()

        used = sum(1 for sector in range(fmt.disk_size) if self.owner_of(sector) != _FREE)
        free = fmt.disk_size - used
        self.say(f"{used} sectors in use, {free} sectors free")

        self.say("Checking VTOC header...")
        self.check_vtoc()
        self.say("Compare VTOC bitmap with reconstructed bitmap from files...")
        self.compare_bitmap()

        self.say("All done.")
        if self.errors:
            self.complain("Errors were detected")
        if self.fixes:
            self.say("Fixes were made - recommend you rerun check")
        return CheckResult(errors=self.errors, fixes=self.fixes, used=used, free=free)


def check_disk(
    fs: FileSystem,
    confirm: Callable[[], bool] | None = None,
    out: TextIO | None = None,
    err: TextIO | None = None,
) -> CheckResult:
    """Check a filesystem, rebuilding its bitmap from the files.

    Without confirm the check is read only; otherwise confirm is asked
    before each repair and the repair is made when it returns true.
    """
    return _Checker(
        fs,
        confirm,
        sys.stdout if out is None else out,
        sys.stderr if err is None else err,
    ).run()