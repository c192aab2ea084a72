# atrtools

Work with Atari 8-bit diskette images from the command line or from Python.

- `atr`: list, read, extract, write, rename, delete and check files on
  Atari DOS 2.0s (single density), DOS 2.5 (enhanced density) and DOS 2.0d
  (double density) `.ATR` images, and create blank images.
- `atr2imd`: convert `.ATR` images to the `.IMD` (ImageDisk) format.
- `imd2atr`: convert `.IMD` images back to `.ATR`.
- `detok`: turn Mac65 tokenized assembly source into plain text.

## Installation

```
pip install .
```

Python 3.10 or later is required. There are no runtime dependencies.

## The `atr` command

```
atr path-to-diskette [command] [args]
```

With no command, `ls` is assumed. `atr -h` or `atr --help` prints a summary.
The command exits with status 0 on success and 1 on any error.

| Command | Meaning |
| --- | --- |
| `ls [-la1]` | Directory listing, sorted by name. `-l` long form (flags, size in bytes, sector count, load segments with init/run addresses, totals and free space), `-a` include `dos.sys` and `dup.sys`, `-1` one name per line |
| `cat [-l] atari-name` | Write a file to standard output. `-l` turns Atari end-of-line (0x9B) into newlines |
| `get [-l] atari-name [local-name]` | Copy a file from the image; the local name defaults to the Atari name |
| `x [-a] [-l] [-o OUTDIR] [names...]` | Extract every file, or only the ones named |
| `put [-l] local-name [atari-name]` | Copy a file onto the image, replacing a file of the same name. The Atari name defaults to the last path component. `-l` turns newlines into 0x9B |
| `w names...` | Write several local files onto the image under their own names |
| `free` | Show free sectors and bytes |
| `mv old-name new-name` | Rename a file; refuses if the new name exists |
| `rm atari-name` | Delete a file and free its sectors |
| `check` | Check the file system without changing it |
| `fix` | Check the file system and ask `Fix it (y,n)?` before each repair |
| `mkfs dos2.0s\|dos2.0d\|dos2.5 [boot-sector-file]` | Create a new, empty image, optionally writing boot sector data from a file |

Atari names are shown in lower case with a dot before the extension, for
example `autorun.sys`. A name is cut to eight characters plus a three
character extension when written to the directory.

Examples:

```
atr game.atr mkfs dos2.5
atr game.atr put -l notes.txt notes.txt
atr game.atr ls -l
atr game.atr get -l notes.txt copy.txt
atr game.atr check
```

`mkfs` creates images of 92,176 bytes (single density), 133,136 bytes
(enhanced density) or 183,952 bytes (double density), header included. When
an image is opened its layout is taken from its size: data shorter than
1024 sectors of 128 bytes is single density, anything shorter than a double
density image is enhanced density, exactly the double density size is double
density, and any other size is rejected.

The check walks every file's sector chain, reports sectors shared between
files, loops, sectors that claim the wrong file number, short sectors and
directory sector counts that do not match, then compares the VTOC header and
allocation bitmap with a bitmap rebuilt from the files.

## Converting images

```
atr2imd [--comment TEXT] [--sd|--ed|--dd] image.atr
imd2atr [--dump] [--logical|--sio|--physical] image.imd
```

`atr2imd` writes `image.imd` next to the source, with a timestamp line and
a comment (by default `Converted from file image.atr`). It picks the
smallest disk that holds the image, a 90K, 130K or 180K disk, unless
`--ed` or `--dd` asks for a larger one.

`imd2atr` writes `image.atr`; `--dump` also prints every track. The other
options choose how the three boot sectors of a 256-byte sector disk are
stored: `--logical` (the default) keeps 128 bytes of each, `--sio` keeps
128 bytes of each followed by 384 zero bytes, and `--physical` keeps all
256 bytes.

Both commands ask before overwriting an existing file.

## Detokenizing Mac65 source

```
detok program.m65 > program.asm
```

## Using it from Python

```python
from atrtools.disk import AtrDisk
from atrtools.filesystem import FileSystem

with AtrDisk.open("game.atr") as disk:
    fs = FileSystem(disk)
    for info in fs.list_files(include_system=True, with_info=True):
        print(info.name, info.size, [seg.start for seg in info.segments])
    text = fs.read_file("notes.txt", convert_endings=True)
    fs.write_file("copy.txt", text, convert_endings=True)
    print(fs.free_sectors(), "sectors free")
```

- `atrtools.disk`: `AtrDisk` (sector reads and writes, `detect_format`),
  `DiskFormat`, `DirEntry` and the bitmap helpers `count_free`, `is_free`
  and `mark_space`.
- `atrtools.filesystem`: `FileSystem` with `find_file`, `read_file`,
  `write_file`, `delete`, `rename`, `list_files`, `free_sectors`,
  `read_bitmap` and `write_bitmap`; `mkfs` to create an image;
  `parse_segments` to decode the load segments of a binary file. Missing
  files raise `AtariFileNotFound`, a full disk or directory raises
  `DiskFullError`, and both are `DiskError`s. `rename` raises
  `FileExistsError` when the new name is taken.
- `atrtools.check`: `check_disk(fs, confirm=None, out=None, err=None)`
  returns a `CheckResult`; without `confirm` it only reports.
- `atrtools.atr2imd`: `load_atr`, `read_atr` and `encode_imd`.
- `atrtools.imd2atr`: `parse_imd`, `read_imd`, `dump_imd` and
  `encode_atr` with a `BootSectorMode`.
- `atrtools.detok`: `detokenize` and `iter_lines`.

## What it does not do

Only the three Atari DOS 2 layouts above are understood; images made by
other disk operating systems cannot be read or written as file systems.
Files cannot be locked or unlocked, and the executable flag in the long
listing is always shown as `-`.

## Running the tests

```
pip install .[test]
pytest
```