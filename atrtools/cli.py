"""Command-line access to files on Atari DOS 2 .ATR disk images."""

from __future__ import annotations

import sys
from collections.abc import Callable, Sequence
from pathlib import Path

from .check import check_disk
from .disk import AtrDisk, DiskError, DiskFormat
from .filesystem import (
    AtariFileNotFound,
    DiskFullError,
    FileInfo,
    FileSystem,
    mkfs,
)

_LINE_LIMIT = 78
_PIECE_ROOM = 15
_COLUMNS = 80 // 13

_HELP = """
Atari DOS 2.0s, DOS 2.0d and DOS 2.5 diskette access

Syntax: atr path-to-diskette [command] [args]

  Commands: (with no command, ls is assumed)

      ls [-la1]                    Directory listing
                  -l for long
                  -a to show system files
                  -1 to show a single name per line

      cat [-l] atari-name           Type file to console
                  -l to convert line ending from 0x9b to 0x0a

      get [-l] atari-name [local-name]
                                    Copy file from diskette to local-name
                  -l to convert line ending from 0x9b to 0x0a

      x [-aol] [list]               Extract all files
                  -a to include system files
                  -o OUTDIR extract to output director
                  -l to convert line endings from 0x9b to 0x0a
                  list is a space separated list of files to extract

      put local-name [atari-name]
                                    Copy file from local-name to diskette
                  -l to convert line ending from 0x0a to 0x9b

      w names...                    Write all named files to diskette

      free                          Print amount of free space

      mv old-name new-name          Rename a file

      rm atari-name                 Delete a file

      check                         Check filesystem (read only)

      fix                           Check and fix filesystem (prompts
                                    for each fix).

      mkfs dos2.0s|dos2.0d|dos2.5 [file with boot sectors]
                                    Write a new filesystem"""


def _error(message: str) -> None:
    print(message, file=sys.stderr)


def _flush(line: str, indent: str, lines: list[str]) -> str:
    if len(line) + _PIECE_ROOM >= _LINE_LIMIT:
        lines.append(line)
        return indent
    return line


def format_long_listing(files: Sequence[FileInfo]) -> list[str]:
    """Return the lines of a long listing, one or more per file."""
    lines: list[str] = []
    for info in files:
        flags = (
            ("-" if info.locked else "w")
            + ("x" if info.executable else "-")
            + ("s" if info.is_sys else "-")
        )
        size = -1 if info.size is None else info.size
        line = f"-r{flags} {size:6d} ({info.sects:3d}) {info.name:<13s}"
        indent = " " * (len(line) + 1)
        for position, seg in enumerate(info.segments):
            line += " (" if position == 0 else " "
            line = _flush(line, indent, lines)
            line += f"load={seg.start:x}-{seg.end:x}"
            if seg.init is not None:
                line = _flush(line, indent, lines)
                line += f" init={seg.init:x}"
            if seg.run is not None:
                line = _flush(line, indent, lines)
                line += f" run={seg.run:x}"
        if info.segments:
            line += ")"
        lines.append(line)
    return lines


def format_columns(names: Sequence[str]) -> list[str]:
    """Arrange names in columns ordered top to bottom, like ls."""
    rows = -(-len(names) // _COLUMNS)
    lines = []
    for row in range(rows):
        cells = []
        for col in range(_COLUMNS):
            index = row + col * rows
            cells.append(f"{names[index]:<12s} " if index < len(names) else " " * 13)
        lines.append("".join(cells))
    return lines


def _write_stdout(data: bytes) -> None:
    sys.stdout.flush()
    buffer = getattr(sys.stdout, "buffer", None)
    if buffer is None:
        sys.stdout.write(data.decode("latin-1"))
    else:
        buffer.write(data)
        buffer.flush()


def _ask_fix() -> bool:
    while True:
        print("Fix it (y,n)? ", end="", flush=True)
        line = sys.stdin.readline()
        if not line:
            return False
        if line[0] in "yY":
            return True
        if line[0] in "nN":
            return False


def _never_fix() -> bool:
    return False


def _take_convert(args: list[str]) -> tuple[bool, list[str]]:
    if args and args[0] == "-l":
        return True, args[1:]
    return False, args


def _print_free(fs: FileSystem) -> None:
    amount = fs.free_sectors()
    print(f"{amount} free sectors, {amount * fs.format.sector_size} free bytes")


def _listing(fs: FileSystem, include_system: bool, full: bool, single: bool) -> None:
    files = sorted(
        fs.list_files(include_system=include_system, with_info=True),
        key=lambda info: info.name,
    )
    if full:
        print()
        for line in format_long_listing(files):
            print(line)
        total_sects = sum(info.sects for info in files)
        total_bytes = sum(info.size or 0 for info in files)
        print(f"\n{len(files)} entries")
        print(f"\n{total_sects} sectors, {total_bytes} bytes")
        print()
        _print_free(fs)
        print()
    elif single:
        for info in files:
            print(info.name)
    else:
        for line in format_columns([info.name for info in files]):
            print(line)


def _get_file(fs: FileSystem, atari_name: str, local_name: str, convert: bool) -> int:
    try:
        data = fs.read_file(atari_name, convert)
    except AtariFileNotFound as exc:
        _error(str(exc))
        return 1
    try:
        Path(local_name).write_bytes(data)
    except OSError:
        _error(f"Couldn't open local file '{local_name}'")
        return 1
    return 0


def _put_file(fs: FileSystem, local_name: str, atari_name: str, convert: bool) -> int:
    try:
        data = Path(local_name).read_bytes()
    except OSError:
        _error(f"Couldn't open '{local_name}'")
        return 1
    try:
        fs.write_file(atari_name, data, convert)
    except DiskFullError as exc:
        _error(str(exc))
        _error("Couldn't write file")
        return 1
    return 0


def _run_check(fs: FileSystem, confirm: Callable[[], bool]) -> int:
    """Check the file system, asking ``confirm`` before each fix."""
    sys.stdout.flush()
    result = check_disk(fs, confirm=confirm, out=sys.stdout, err=sys.stderr)
    sys.stdout.flush()
    sys.stderr.flush()
    return 1 if result.errors else 0


def _cmd_free(fs: FileSystem, args: list[str]) -> int:
    _print_free(fs)
    return 0


def _cmd_check(fs: FileSystem, args: list[str]) -> int:
    return _run_check(fs, _never_fix)


def _cmd_fix(fs: FileSystem, args: list[str]) -> int:
    return _run_check(fs, _ask_fix)


def _cmd_cat(fs: FileSystem, args: list[str]) -> int:
    convert, args = _take_convert(args)
    if not args:
        _error("Missing file name to cat")
        return 1
    try:
        data = fs.read_file(args[0], convert)
    except AtariFileNotFound as exc:
        _error(str(exc))
        return 1
    _write_stdout(data)
    return 0


def _cmd_get(fs: FileSystem, args: list[str]) -> int:
    convert, args = _take_convert(args)
    if not args:
        print("Missing file name to get")
        return 1
    atari_name = args[0]
    local_name = args[1] if len(args) > 1 else atari_name
    return _get_file(fs, atari_name, local_name, convert)


def _cmd_extract(fs: FileSystem, args: list[str]) -> int:
    include_system = False
    convert = False
    out_dir: str | None = None
    wanted: list[str] | None = None
    index = 0
    while index < len(args):
        arg = args[index]
        if not arg.startswith("-"):
            wanted = args[index:]
            break
        if arg == "-a":
            include_system = True
        elif arg == "-l":
            convert = True
        elif arg == "-o":
            index += 1
            if index < len(args):
                out_dir = args[index]
        index += 1

    status = 0
    for info in fs.list_files(include_system=include_system):
        if wanted is not None and info.name not in wanted:
            continue
        if out_dir:
            separator = "" if out_dir.endswith("/") else "/"
            out_name = f"{out_dir}{separator}{info.name}"
        else:
            out_name = info.name
        print(f"extracting {info.name}")
        status |= _get_file(fs, info.name, out_name, convert)
    return status


def _cmd_put(fs: FileSystem, args: list[str]) -> int:
    convert, args = _take_convert(args)
    if not args:
        _error("Missing file name to put")
        return 1
    local_name = args[0]
    atari_name = local_name.rsplit("/", 1)[-1]
    print(atari_name)
    if len(args) > 1:
        atari_name = args[1]
    return _put_file(fs, local_name, atari_name, convert)


def _cmd_write(fs: FileSystem, args: list[str]) -> int:
    status = 0
    for name in args:
        print(f"writing {name}")
        status |= _put_file(fs, name, name, False)
    return status


def _cmd_rename(fs: FileSystem, args: list[str]) -> int:
    if len(args) < 2:
        _error("missing name")
        return 1
    old_name, new_name = args[0], args[1]
    try:
        fs.rename(old_name, new_name)
    except FileExistsError as exc:
        _error(str(exc))
        return 1
    except AtariFileNotFound as exc:
        _error(str(exc))
        return 1
    return 0


def _cmd_remove(fs: FileSystem, args: list[str]) -> int:
    if not args:
        print("Missing name to delete")
        return 1
    try:
        fs.delete(args[0])
    except AtariFileNotFound as exc:
        _error(str(exc))
        return 1
    return 0


_COMMANDS: dict[str, Callable[[FileSystem, list[str]], int]] = {
    "free": _cmd_free,
    "check": _cmd_check,
    "fix": _cmd_fix,
    "cat": _cmd_cat,
    "get": _cmd_get,
    "x": _cmd_extract,
    "put": _cmd_put,
    "w": _cmd_write,
    "mv": _cmd_rename,
    "rm": _cmd_remove,
}


def _run(fs: FileSystem, args: list[str]) -> int:
    options = {"l": False, "a": False, "1": False}
    while True:
        while args and args[0].startswith("-"):
            for opt in args[0][1:]:
                if opt not in options:
                    print(f"Unknown option '{opt}'")
                    return 1
                options[opt] = True
            args = args[1:]
        if not args:
            _listing(fs, include_system=options["a"], full=options["l"], single=options["1"])
            return 0
        if args[0] != "ls":
            break
        args = args[1:]

    command, rest = args[0], args[1:]
    handler = _COMMANDS.get(command)
    if handler is None:
        print(f"Unknown command '{command}'")
        return 1
    return handler(fs, rest)


def _mkfs(disk_name: str, args: list[str]) -> int:
    formats = {fmt.value: fmt for fmt in DiskFormat}
    if not args or args[0] not in formats:
        _error("Unknown format")
        return 1
    disk_format = formats[args[0]]
    boot_path = args[1] if len(args) > 1 else None
    boot: bytes | None = None
    boot_failed = False
    if boot_path is not None:
        try:
            boot = Path(boot_path).read_bytes()
        except OSError:
            boot_failed = True
    try:
        mkfs(disk_name, disk_format, boot)
    except DiskError as exc:
        _error(str(exc))
        return 1
    if boot_failed:
        _error(f"Couldn't open '{boot_path}'")
        return 1
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Run the disk image command line; return the exit status."""
    args = list(sys.argv[1:] if argv is None else argv)
    if not args or args[0] in ("--help", "-h"):
        print(_HELP)
        return 1
    disk_name, rest = args[0], args[1:]
    if rest and rest[0] == "mkfs":
        return _mkfs(disk_name, rest[1:])
    try:
        disk = AtrDisk.open(disk_name)
    except DiskError as exc:
        _error(str(exc))
        return 1
    with disk:
        try:
            return _run(FileSystem(disk), rest)
        except DiskError as exc:
            _error(str(exc))
            return 1


if __name__ == "__main__":
    sys.exit(main())