import io

import pytest

from atrtools.disk import (
    HEADER_SIZE,
    AtrDisk,
    DirEntry,
    DiskError,
    DiskFormat,
    atari_to_unix_name,
    count_free,
    detect_format,
    is_free,
    mark_space,
    unix_to_atari_name,
)


def _image(disk_format):
    return b"\x96\x02" + bytes(14) + bytes(disk_format.image_size)


@pytest.fixture
def sd_path(tmp_path):
    path = tmp_path / "sd.atr"
    path.write_bytes(_image(DiskFormat.SINGLE))
    return str(path)


@pytest.fixture
def dd_path(tmp_path):
    path = tmp_path / "dd.atr"
    path.write_bytes(_image(DiskFormat.DOUBLE))
    return str(path)


@pytest.mark.parametrize(
    "size, expected",
    [
        (92176, DiskFormat.SINGLE),
        (133136, DiskFormat.ENHANCED),
        (183952, DiskFormat.DOUBLE),
    ],
)
def test_detect_format_known_sizes(size, expected):
    assert detect_format(size) is expected


def test_detect_format_unknown_size():
    with pytest.raises(DiskError):
        detect_format(183952 + 128)


def test_detected_format_geometry():
    fmt = detect_format(183952)
    assert fmt.sector_size == 256
    assert fmt.data_size == 253
    assert detect_format(133136).disk_size == 1024


def test_count_free_full_bitmap():
    assert count_free(b"\xff" * 90) == 720
    assert count_free(bytes(90)) == 0


def test_mark_space_round_trip():
    bitmap = bytearray(b"\xff" * 128)
    before = count_free(bitmap)
    mark_space(bitmap, 360, True)
    assert not is_free(bitmap, 360)
    assert count_free(bitmap) == before - 1
    mark_space(bitmap, 360, False)
    assert is_free(bitmap, 360)
    assert count_free(bitmap) == before


def test_sector_zero_is_high_bit():
    bitmap = bytearray(b"\xff")
    mark_space(bitmap, 0, True)
    assert bitmap[0] == 0x7F


def test_atari_to_unix_name():
    assert atari_to_unix_name(b"DOS     ", b"SYS") == "dos.sys"
    assert atari_to_unix_name(b"README  ", b"   ") == "readme"


def test_unix_to_atari_name():
    assert unix_to_atari_name("dos.sys") == (b"DOS     ", b"SYS")
    assert unix_to_atari_name("readme") == (b"README  ", b"   ")


def test_unix_to_atari_name_truncates():
    name, suffix = unix_to_atari_name("verylongname.text")
    assert name == b"VERYLONG"
    assert suffix == b"TEX"


@pytest.mark.parametrize("filename", ["dup.sys", "game.com", "a", "x1.b"])
def test_name_round_trip(filename):
    assert atari_to_unix_name(*unix_to_atari_name(filename)) == filename


def test_dir_entry_round_trip():
    name, suffix = unix_to_atari_name("dos.sys")
    entry = DirEntry(flag=0x42, count=39, start=4, name=name, suffix=suffix)
    raw = entry.to_bytes()
    assert len(raw) == 16
    assert raw[0] == 0x42
    back = DirEntry.from_bytes(raw)
    assert back == entry
    assert back.unix_name() == "dos.sys"
    assert back.in_use and not back.deleted and not back.end_of_directory


def test_dir_entry_flags():
    assert DirEntry(flag=0x80).deleted
    assert DirEntry(flag=0x00).end_of_directory
    assert DirEntry(flag=0x62).locked


def test_dir_entry_too_short():
    with pytest.raises(DiskError):
        DirEntry.from_bytes(b"\x42\x00")


def test_open_detects_format(sd_path, dd_path):
    with AtrDisk.open(sd_path) as disk:
        assert disk.disk_format is DiskFormat.SINGLE
    with AtrDisk.open(dd_path) as disk:
        assert disk.disk_format is DiskFormat.DOUBLE


def test_open_missing_file(tmp_path):
    with pytest.raises(DiskError):
        AtrDisk.open(str(tmp_path / "missing.atr"))


def test_write_then_read_sector(sd_path):
    payload = bytes(range(128))
    with AtrDisk.open(sd_path) as disk:
        disk.write_sector(360, payload)
        assert disk.read_sector(360) == payload
    with open(sd_path, "rb") as f:
        f.seek(HEADER_SIZE + 359 * 128)
        assert f.read(128) == payload


def test_write_sector_pads(sd_path):
    with AtrDisk.open(sd_path) as disk:
        disk.write_sector(5, b"\x01\x02")
        data = disk.read_sector(5)
    assert data[:2] == b"\x01\x02"
    assert data[2:] == bytes(126)


def test_double_density_sector_sizes(dd_path):
    with AtrDisk.open(dd_path) as disk:
        assert len(disk.read_sector(3)) == 128
        assert len(disk.read_sector(4)) == 256
        disk.write_sector(4, b"\xaa" * 256)
    with open(dd_path, "rb") as f:
        f.seek(HEADER_SIZE + 3 * 128)
        assert f.read(256) == b"\xaa" * 256


def test_sector_zero_rejected():
    disk = AtrDisk(io.BytesIO(_image(DiskFormat.SINGLE)), DiskFormat.SINGLE)
    with pytest.raises(DiskError):
        disk.read_sector(0)
    with pytest.raises(DiskError):
        disk.write_sector(0, b"")


def test_read_past_end():
    disk = AtrDisk(io.BytesIO(_image(DiskFormat.SINGLE)), DiskFormat.SINGLE)
    with pytest.raises(DiskError):
        disk.read_sector(721)


def test_close_closes_stream():
    stream = io.BytesIO(_image(DiskFormat.SINGLE))
    with AtrDisk(stream, DiskFormat.SINGLE) as disk:
        assert len(disk.read_sector(1)) == 128
    assert stream.closed