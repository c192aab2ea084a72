"""Convert .IMD (ImageDisk) images into .ATR disk images."""

from __future__ import annotations

import io
import sys
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from .disk import ATR_MAGIC, HEADER_SIZE

_HEADER_LIMIT = 1023
_BOOT_SECTOR = 128
_INVERT = bytes(range(255, -1, -1))

MODES = (
    "0 (500 kbps FM)",
    "1 (300 kbps FM)",
    "2 (250 kbps FM)",
    "3 (500 kbps MFM)",
    "4 (300 kbps MFM)",
    "5 (250 kbps MFM)",
)

_USAGE = """Convert .IMD (ImageDisk) file format to
.ATR (ATARI) disk image file format.

       version 1.0

imd2atr [options] filename

  --dump    Show tracks

The following options control how we deal with first three sectors of a 256-byte
sector disk.  Such disks store 256 bytes on the disk for these sectors, but the
Atari makes use of only the first 128 bytes of them.

  --physical Write all 256 bytes of these first three sectors.

  --logical  Write only 128 bytes each for first three sectors.

  --sio      Write only 128 bytes each for first three sectors,
             then write 384 bytes of zeros (followed by rest of disk).

Default format is '--logical', but emulators can deal with
all three of them and '--physical' preserves all data actually read."""


class ImdFormatError(Exception):
    """Raised when an .IMD image is malformed or cannot be converted."""


class BootSectorMode(Enum):
    """How the first three sectors of a 256-byte sector disk are stored."""

    PHYSICAL = "physical"
    LOGICAL = "logical"
    SIO = "sio"


@dataclass
class Track:
    """One track of an .IMD image; data holds the sectors in map order."""

    mode: int
    cyl: int
    head: int
    sects: int
    sec_size: int
    map: bytes
    data: bytes

    def sector(self, position: int) -> bytes:
        """Data of the sector stored at a position of the sector map."""
        return self.data[position * self.sec_size:(position + 1) * self.sec_size]


@dataclass
class ImdImage:
    """A loaded .IMD image."""

    comment: str
    tracks: list[Track] = field(default_factory=list)

    def size(self) -> int:
        """Total bytes of sector data in all tracks."""
        return sum(track.sec_size * track.sects for track in self.tracks)


def _byte(stream: io.BytesIO) -> int:
    data = stream.read(1)
    return data[0] if data else -1


def _parse_track(stream: io.BytesIO, mode: int) -> Track:
    if mode > 5:
        raise ImdFormatError("Invalid mode byte?")
    cyl = _byte(stream)
    if not 0 <= cyl <= 80:
        raise ImdFormatError("Invalid cylinder number")
    head = _byte(stream)
    if not 0 <= head <= 1:
        raise ImdFormatError("Invalid head number")
    sects = _byte(stream)
    if sects < 1:
        raise ImdFormatError("Invalid number of sectors")
    size_code = _byte(stream)
    if not 0 <= size_code <= 6:
        raise ImdFormatError("Invalid sector size")
    sec_size = 128 << size_code
    sector_map = stream.read(sects)
    if len(sector_map) != sects:
        raise ImdFormatError("Couldn't read sector map")

    data = bytearray()
    for _ in range(sects):
        kind = _byte(stream)
        if not 0 <= kind <= 8:
            raise ImdFormatError("Invalid sector type")
        if kind & 1:
            chunk = stream.read(sec_size)
            if len(chunk) != sec_size:
                raise ImdFormatError("Couldn't read sectors")
            data += chunk
        elif kind == 0:
            data += bytes(sec_size)
        else:
            fill = _byte(stream)
            if fill < 0:
                raise ImdFormatError("Couldn't read compressed sector")
            data += bytes([fill]) * sec_size
    return Track(mode, cyl, head, sects, sec_size, bytes(sector_map), bytes(data))


def parse_imd(data: bytes) -> ImdImage:
    """Parse the bytes of an .IMD file."""
    end = data.find(b"\x1a")
    header = data if end < 0 else data[:end]
    if not header:
        raise ImdFormatError("No header?")
    image = ImdImage(comment=header[:_HEADER_LIMIT].decode("latin-1"))
    stream = io.BytesIO(data[end + 1:] if end >= 0 else b"")
    while (mode := _byte(stream)) >= 0:
        image.tracks.append(_parse_track(stream, mode))
    return image


def read_imd(path: str) -> ImdImage:
    """Load an .IMD file from disk."""
    try:
        data = Path(path).read_bytes()
    except OSError as exc:
        raise ImdFormatError(f"Couldn't open {path}") from exc
    return parse_imd(data)


def dump_imd(imd: ImdImage) -> str:
    """Describe the comment and tracks of an image."""
    lines = [f"Comment = {imd.comment}", f"{len(imd.tracks)} tracks"]
    for track in imd.tracks:
        lines.append(
            f"Cyl={track.cyl} Head={track.head} Sects={track.sects} "
            f"Sec_size={track.sec_size} Mode={MODES[track.mode]}"
        )
        lines.append("  Map:" + "".join(f" {number}" for number in track.map))
    return "\n".join(lines) + "\n"


def encode_atr(imd: ImdImage, mode: BootSectorMode = BootSectorMode.LOGICAL) -> bytes:
    """Return the .ATR file for an image, sectors in logical order, data un-inverted."""
    if not imd.tracks:
        raise ImdFormatError("No tracks")
    sec_size = imd.tracks[0].sec_size
    size = imd.size()
    if size % sec_size:
        raise ImdFormatError(
            f"Invalid .imd file size = {size} bytes\nIt must be multiple of {sec_size}"
        )

    short_boot = mode in (BootSectorMode.LOGICAL, BootSectorMode.SIO) and sec_size == 256
    if mode is BootSectorMode.LOGICAL and sec_size == 256 and size >= 768:
        size -= 3 * _BOOT_SECTOR

    header = bytearray(HEADER_SIZE)
    header[0:2] = ATR_MAGIC
    header[2] = (size >> 4) & 0xFF
    header[3] = (size >> 12) & 0xFF
    header[4] = sec_size & 0xFF
    header[5] = (sec_size >> 8) & 0xFF
    header[6] = (size >> 20) & 0xFF

    out = bytearray(header)
    count = 0
    for track in imd.tracks:
        for number in range(1, track.sects + 1):
            position = track.map.find(bytes([number]))
            if position < 0:
                raise ImdFormatError(f"Track {track.cyl} has no sector {number}")
            sector = track.sector(position).translate(_INVERT)
            out += sector[:_BOOT_SECTOR] if short_boot and count < 3 else sector
            count += 1
            if mode is BootSectorMode.SIO and count == 3:
                out += bytes(3 * _BOOT_SECTOR)
    return bytes(out)


def _dest_name(source: str, extension: str) -> str:
    dot = source.rfind(".")
    return (source[:dot] if dot >= 0 else source) + extension


def _confirm_overwrite(dest: str) -> bool:
    print(f"{dest} already exists.  Overwrite (y,n)?", end="", flush=True)
    answer = sys.stdin.readline()
    return answer[:1] in ("y", "Y")


def _write_atr(imd: ImdImage, dest: str, mode: BootSectorMode) -> bool:
    if not imd.tracks:
        print("No tracks", file=sys.stderr)
        return False
    sec_size = imd.tracks[0].sec_size
    print(f"Sector size is {sec_size}")
    if sec_size == 256:
        print(f"  Using {mode.value}")
    try:
        encoded = encode_atr(imd, mode)
    except ImdFormatError as exc:
        print(exc, file=sys.stderr)
        return False
    print(f"Disk size is {imd.size() // 1024}K")
    if Path(dest).exists() and not _confirm_overwrite(dest):
        print("Skipping...")
        return True
    try:
        Path(dest).write_bytes(encoded)
    except OSError:
        print(f"Couldn't open {dest}", file=sys.stderr)
        return False
    return True


def main(argv: Sequence[str] | None = None) -> int:
    """Convert each named .IMD file to an .ATR file beside it."""
    args = list(sys.argv[1:] if argv is None else argv)
    dump = False
    mode = BootSectorMode.LOGICAL
    err = False
    did = False
    for arg in args:
        if arg.startswith("-"):
            if arg == "--dump":
                dump = True
            elif arg == "--logical":
                mode = BootSectorMode.LOGICAL
            elif arg == "--sio":
                mode = BootSectorMode.SIO
            elif arg == "--physical":
                mode = BootSectorMode.PHYSICAL
            else:
                err = True
            continue
        dest = _dest_name(arg, ".atr")
        try:
            data = Path(arg).read_bytes()
        except OSError:
            print(f"Couldn't open {arg}", file=sys.stderr)
            return 1
        print(f"Converting {arg}")
        try:
            imd = parse_imd(data)
        except ImdFormatError as exc:
            print(exc, file=sys.stderr)
            return 1
        if dump:
            print(dump_imd(imd), end="")
        if not _write_atr(imd, dest, mode):
            return 1
        did = True

    if not did or err:
        print(_USAGE, file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())