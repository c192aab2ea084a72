import io
import random
from datetime import datetime

import pytest

from atrtools.atr2imd import (
    DD_MAP,
    ED_MAP,
    SD_MAP,
    AtrFormatError,
    AtrImage,
    encode_imd,
    load_atr,
    main,
    read_atr,
)
from atrtools.disk import ATR_MAGIC, DiskFormat
from atrtools.imd2atr import BootSectorMode, encode_atr, parse_imd


def _atr(body: bytes, sec_size: int = 128, magic: bytes = ATR_MAGIC) -> bytes:
    header = bytearray(16)
    header[0:2] = magic
    header[4] = sec_size & 0xFF
    header[5] = sec_size >> 8
    return bytes(header) + body


def _random(size: int, seed: int = 1) -> bytes:
    return random.Random(seed).randbytes(size)


def test_single_density_geometry():
    image = load_atr(_atr(bytes(DiskFormat.SINGLE.image_size)))
    assert image.sects == 18
    assert image.sec_size == 128
    assert image.dd == 0
    assert image.interleave == SD_MAP
    assert image.label == "90K disk"
    assert image.magic_ok


def test_enhanced_density_geometry():
    image = load_atr(_atr(bytes(DiskFormat.ENHANCED.image_size)))
    assert image.sects == 26
    assert image.dd == 1
    assert image.interleave == ED_MAP
    assert image.label == "130K disk"


def test_force_ed_on_small_image():
    image = load_atr(_atr(bytes(1000)), force_ed=True)
    assert image.sects == 26
    assert image.size == 1000


def test_force_dd_rejects_128_byte_sectors():
    with pytest.raises(AtrFormatError, match="Unknown format"):
        load_atr(_atr(bytes(1000)), force_dd=True)


def test_too_large_single_density_image():
    with pytest.raises(AtrFormatError, match="Unknown format"):
        load_atr(_atr(bytes(DiskFormat.ENHANCED.image_size + 128)))


def test_unknown_sector_size():
    with pytest.raises(AtrFormatError, match="Unknown sector size"):
        load_atr(_atr(bytes(512), sec_size=512))


def test_missing_header():
    with pytest.raises(AtrFormatError, match="Header missing"):
        load_atr(b"\x96\x02\x00")


def test_bad_magic_is_reported():
    image = load_atr(_atr(bytes(128), magic=b"\x00\x00"))
    assert not image.magic_ok


def test_double_density_short_boot_sectors_are_expanded():
    body = b"\x11" * 128 + b"\x22" * 128 + b"\x33" * 128 + b"\x44" * (256 * 717)
    image = load_atr(_atr(body, sec_size=256))
    assert image.label == "180K disk"
    assert image.interleave == DD_MAP
    assert image.size == len(body) + 384
    zeros = bytes(128)
    assert image.data[:768] == b"\x11" * 128 + zeros + b"\x22" * 128 + zeros + b"\x33" * 128 + zeros
    assert image.data[768:] == body[384:]


def test_double_density_sio_layout_is_rearranged():
    body = b"\x11" * 128 + b"\x22" * 128 + b"\x33" * 128 + bytes(384) + b"\x55" * 256 * 4
    image = load_atr(_atr(body, sec_size=256))
    zeros = bytes(128)
    assert image.size == len(body)
    assert image.data[:768] == b"\x11" * 128 + zeros + b"\x22" * 128 + zeros + b"\x33" * 128 + zeros
    assert image.data[768:] == body[768:]


def test_double_density_physical_layout_is_kept():
    body = _random(256 * 720, seed=5)
    image = load_atr(_atr(body, sec_size=256))
    assert image.data == body


def test_encode_imd_header_and_comment():
    image = load_atr(_atr(bytes(DiskFormat.SINGLE.image_size)))
    encoded = encode_imd(image, "hello", datetime(2011, 3, 4, 5, 6, 7))
    assert encoded.startswith(b"ATR2IMD 1.0: 04/03/2011 05:06:07\nhello\n\x1a")


def test_encode_imd_first_track_record():
    image = load_atr(_atr(bytes(DiskFormat.SINGLE.image_size)))
    encoded = encode_imd(image, "c", datetime(2011, 1, 1))
    track = encoded[encoded.index(b"\x1a") + 1:]
    assert track[:5] == bytes([2, 0, 0, 18, 0])
    assert track[5:23] == bytes(SD_MAP)
    # An all-zero sector is stored compressed as its inverted fill byte.
    assert track[23:25] == b"\x02\xff"


def test_encode_imd_uses_mfm_for_enhanced():
    image = load_atr(_atr(bytes(DiskFormat.ENHANCED.image_size)))
    encoded = encode_imd(image, "c", datetime(2011, 1, 1))
    track = encoded[encoded.index(b"\x1a") + 1:]
    assert track[:5] == bytes([5, 0, 0, 26, 0])


@pytest.mark.parametrize("disk_format", [DiskFormat.SINGLE, DiskFormat.ENHANCED])
def test_round_trip_128_byte_sectors(disk_format):
    body = _random(disk_format.image_size)
    imd = parse_imd(encode_imd(load_atr(_atr(body)), "round trip"))
    assert encode_atr(imd, BootSectorMode.LOGICAL)[16:] == body


def test_round_trip_double_density_logical():
    body = _random(DiskFormat.DOUBLE.image_size, seed=3)
    imd = parse_imd(encode_imd(load_atr(_atr(body, sec_size=256)), "dd"))
    assert encode_atr(imd, BootSectorMode.LOGICAL)[16:] == body


def test_partial_image_pads_with_zeros():
    body = _random(1000, seed=7)
    imd = parse_imd(encode_imd(load_atr(_atr(body)), "short"))
    out = encode_atr(imd, BootSectorMode.PHYSICAL)[16:]
    assert out[:1000] == body
    assert not any(out[1000:])
    assert len(out) == DiskFormat.SINGLE.image_size


def test_read_atr_missing_file(tmp_path):
    with pytest.raises(AtrFormatError, match="Couldn't open"):
        read_atr(str(tmp_path / "absent.atr"))


def test_read_atr_from_file(tmp_path):
    path = tmp_path / "game.atr"
    body = _random(2048, seed=9)
    path.write_bytes(_atr(body))
    image = read_atr(str(path))
    assert isinstance(image, AtrImage)
    assert image.data == body


def test_main_converts_with_comment(tmp_path):
    source = tmp_path / "game.atr"
    body = _random(DiskFormat.SINGLE.image_size, seed=11)
    source.write_bytes(_atr(body))
    assert main(["--comment", "hello", str(source)]) == 0
    imd = parse_imd((tmp_path / "game.imd").read_bytes())
    assert imd.comment.startswith("ATR2IMD 1.0: ")
    assert imd.comment.endswith("\nhello\n")
    assert encode_atr(imd, BootSectorMode.LOGICAL)[16:] == body


def test_main_default_comment(tmp_path):
    source = tmp_path / "game.atr"
    source.write_bytes(_atr(bytes(256)))
    assert main([str(source)]) == 0
    imd = parse_imd((tmp_path / "game.imd").read_bytes())
    assert imd.comment.endswith(f"Converted from file {source}\n")


def test_main_without_files_fails():
    assert main([]) == 1


def test_main_unknown_option_fails(tmp_path):
    source = tmp_path / "game.atr"
    source.write_bytes(_atr(bytes(256)))
    assert main(["--bogus", str(source)]) == 1
    assert not (tmp_path / "game.imd").exists()


def test_main_declines_overwrite(tmp_path, monkeypatch):
    source = tmp_path / "game.atr"
    source.write_bytes(_atr(bytes(256)))
    dest = tmp_path / "game.imd"
    dest.write_bytes(b"keep")
    monkeypatch.setattr("sys.stdin", io.StringIO("n\n"))
    assert main([str(source)]) == 0
    assert dest.read_bytes() == b"keep"


def test_main_bad_image_fails(tmp_path):
    source = tmp_path / "bad.atr"
    source.write_bytes(b"\x96\x02")
    assert main([str(source)]) == 1