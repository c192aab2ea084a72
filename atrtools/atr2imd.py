"""Convert .ATR disk images into .IMD (ImageDisk) images."""

from __future__ import annotations

import sys
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from .disk import ATR_MAGIC, HEADER_SIZE

_BOOT_SECTOR = 128

# Interleave maps: the order in which logical sectors appear on a track.
SD_MAP = (1, 3, 5, 7, 9, 11, 13, 15, 17, 2, 4, 6, 8, 10, 12, 14, 16, 18)
ED_MAP = (
    1, 3, 5, 7, 9, 11, 13, 15, 17, 19, 21, 23, 25,
    2, 4, 6, 8, 10, 12, 14, 16, 18, 20, 22, 24, 26,
)
DD_MAP = (1, 3, 5, 7, 9, 11, 13, 15, 17, 2, 4, 6, 8, 10, 12, 14, 16, 18)

_MODE_FM_250 = 2
_MODE_MFM_250 = 5

_LABELS = {0: "90K disk", 1: "130K disk", 2: "180K disk"}

_USAGE = """Convert .ATR (ATARI) disk image file format to
.IMD (ImageDisk) file format.

       version 1.0

atr2imd [options] filename

  --comment <comment>   Comment to put in .IMD file (otherwise file name
                        is used as the comment)

atr2imd creates the smallest disk image needed to fit the .atr file.
These options can be used to create a larger than necessary disk image:

  --sd                  Force single density (90K disk, 128 byte FM sectors)
  --ed                  Force medium density (130K disk, 128 byte MFM sectors)
  --dd                  Force double density (180K disk, 256 byte MFM sectors)"""


class AtrFormatError(Exception):
    """Raised when an .ATR image cannot be read or mapped onto a disk."""


@dataclass
class AtrImage:
    """A loaded .ATR image together with the physical disk chosen for it."""

    data: bytes
    sec_size: int
    cyls: int
    sects: int
    dd: int
    interleave: tuple[int, ...]
    magic_ok: bool = True

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def label(self) -> str:
        return _LABELS[self.dd]


def _expand_boot_sectors(body: bytes) -> bytes:
    """Give the three 128-byte boot sectors of a 256-byte disk full physical sectors."""
    boot = b"".join(
        body[i * _BOOT_SECTOR:(i + 1) * _BOOT_SECTOR].ljust(_BOOT_SECTOR, b"\0")
        + bytes(_BOOT_SECTOR)
        for i in range(3)
    )
    if (len(body) >> 7) & 1:
        # Odd number of 128-byte chunks: the boot sectors are stored short.
        return boot + body[3 * _BOOT_SECTOR:]
    if not any(body[3 * _BOOT_SECTOR:6 * _BOOT_SECTOR]):
        # Short boot sectors followed by 384 zero bytes, as SIO2PC writes them.
        return (boot + body[6 * _BOOT_SECTOR:])[:len(body)]
    return body


def load_atr(data: bytes, force_ed: bool = False, force_dd: bool = False) -> AtrImage:
    """Parse the bytes of an .ATR file and choose the smallest disk that holds it."""
    if len(data) < HEADER_SIZE:
        raise AtrFormatError("Header missing")
    header = data[:HEADER_SIZE]
    magic_ok = header[:2] == ATR_MAGIC
    sec_size = header[4] + (header[5] << 8)
    if sec_size not in (128, 256):
        raise AtrFormatError(f"Unknown sector size {sec_size}")

    # The size recorded in the header is not trusted; the data length is used.
    body = bytes(data[HEADER_SIZE:])
    if sec_size == 256:
        body = _expand_boot_sectors(body)
    size = len(body)

    if sec_size == 128 and size <= 128 * 18 * 40 and not force_ed and not force_dd:
        return AtrImage(body, 128, 40, 18, 0, SD_MAP, magic_ok)
    if sec_size == 128 and size <= 128 * 26 * 40 and not force_dd:
        return AtrImage(body, 128, 40, 26, 1, ED_MAP, magic_ok)
    if sec_size == 256 and size <= 256 * 18 * 40:
        return AtrImage(body, 256, 40, 18, 2, DD_MAP, magic_ok)
    raise AtrFormatError("Unknown format")


def read_atr(path: str, force_ed: bool = False, force_dd: bool = False) -> AtrImage:
    """Load an .ATR file from disk."""
    try:
        data = Path(path).read_bytes()
    except OSError as exc:
        raise AtrFormatError(f"Couldn't open {path}") from exc
    try:
        return load_atr(data, force_ed, force_dd)
    except AtrFormatError as exc:
        if str(exc) == "Header missing":
            raise AtrFormatError(f"Header missing from {path}") from exc
        raise


def encode_imd(image: AtrImage, comment: str, timestamp: datetime | None = None) -> bytes:
    """Return the .IMD file for an image; sector data is stored inverted."""
    ts = datetime.now() if timestamp is None else timestamp
    out = bytearray(
        f"ATR2IMD 1.0: {ts.day:02d}/{ts.month:02d}/{ts.year:04d} "
        f"{ts.hour:02d}:{ts.minute:02d}:{ts.second:02d}\n".encode("ascii")
    )
    out += comment.encode("utf-8") + b"\n\x1a"

    sec = image.sec_size
    for cyl in range(image.cyls):
        out.append(_MODE_MFM_250 if image.dd else _MODE_FM_250)
        out.append(cyl & 0xFF)
        out.append(0)
        out.append(image.sects & 0xFF)
        out.append(1 if sec == 256 else 0)
        out += bytes(image.interleave[:image.sects])
        for number in image.interleave[:image.sects]:
            offset = sec * (cyl * image.sects + number - 1)
            if offset >= image.size:
                out += b"\x02\xff"
                continue
            chunk = image.data[offset:offset + sec].ljust(sec, b"\0")
            if chunk == chunk[:1] * sec:
                out.append(2)
                out.append(~chunk[0] & 0xFF)
            else:
                out.append(1)
                out += bytes(~b & 0xFF for b in chunk)
    return bytes(out)


def _dest_name(source: str, extension: str) -> str:
    dot = source.rfind(".")
    return (source[:dot] if dot >= 0 else source) + extension


def _confirm_overwrite(dest: str) -> bool:
    print(f"{dest} already exists.  Overwrite (y,n)?", end="", flush=True)
    answer = sys.stdin.readline()
    return answer[:1] in ("y", "Y")


def _write_imd(image: AtrImage, dest: str, comment: str) -> bool:
    if Path(dest).exists() and not _confirm_overwrite(dest):
        print("Skipping...")
        return True
    try:
        Path(dest).write_bytes(encode_imd(image, comment))
    except OSError:
        print(f"Couldn't open {dest} for writing", file=sys.stderr)
        return False
    return True


def main(argv: Sequence[str] | None = None) -> int:
    """Convert each named .ATR file to an .IMD file beside it."""
    args = list(sys.argv[1:] if argv is None else argv)
    comment: str | None = None
    force_ed = False
    force_dd = False
    did = False
    err = False
    index = 0
    while index < len(args):
        arg = args[index]
        if arg.startswith("-"):
            if arg == "--comment" and index + 1 < len(args):
                index += 1
                comment = args[index]
            elif arg == "--sd":
                force_ed, force_dd = False, False
            elif arg == "--ed":
                force_ed, force_dd = True, False
            elif arg == "--dd":
                force_ed, force_dd = False, True
            else:
                err = True
                break
        else:
            dest = _dest_name(arg, ".imd")
            text = comment if comment is not None else f"Converted from file {arg}"
            try:
                image = read_atr(arg, force_ed, force_dd)
            except AtrFormatError as exc:
                print(exc, file=sys.stderr)
                return 1
            if not image.magic_ok:
                print("Warning.. magic number is not 0x0296", file=sys.stderr)
            print(
                f"Converting {arg} ({image.size // image.sec_size} "
                f"{image.sec_size}B sectors) => {image.label}"
            )
            if not _write_imd(image, dest, text):
                return 1
            comment = None
            did = True
        index += 1

    if not did or err:
        print(_USAGE, file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())