"""Turn Mac65 tokenized assembly source back into text."""

from __future__ import annotations

import sys
from collections.abc import Iterator, Sequence
from enum import Enum
from pathlib import Path

MAGIC = b"\xfe\xfe"
_HEADER_SIZE = 4
_LINE_HEADER = 3
_STRING_FLAG = 0x80

_MACRO_CALL = 7
_COMMENT_LINE = 88

STATEMENTS = {
    0: "ERROR -", 1: ".IF", 2: ".ELSE", 3: ".ENDIF", 4: ".MACRO", 5: ".ENDM",
    6: ".TITLE", 8: ".PAGE", 9: ".WORD", 10: ".ERROR", 11: ".BYTE",
    12: ".SBYTE", 13: ".DBYTE", 14: ".END", 15: ".OPT", 16: ".TAB",
    17: ".INCLUDE", 18: ".DS", 19: ".ORG", 20: ".EQU", 21: "BRA", 22: "TRB",
    23: "TSB", 24: ".FLOAT", 25: ".CBYTE", 26: ";", 27: ".LOCAL", 28: ".SET",
    29: "*=", 30: "=", 31: ".=", 32: "JSR", 33: "JMP", 34: "DEC", 35: "INC",
    36: "LDX", 37: "LDY", 38: "STX", 39: "STY", 40: "CPX", 41: "CPY",
    42: "BIT", 43: "BRK", 44: "CLC", 45: "CLD", 46: "CLI", 47: "CLV",
    48: "DEX", 49: "DEY", 50: "INX", 51: "INY", 52: "NOP", 53: "PHA",
    54: "PHP", 55: "PLA", 56: "PLP", 57: "RTI", 58: "RTS", 59: "SEC",
    60: "SED", 61: "SEI", 62: "TAX", 63: "TAY", 64: "TSX", 65: "TXA",
    66: "TXS", 67: "TYA", 68: "BCC", 69: "BCS", 70: "BEQ", 71: "BMI",
    72: "BNE", 73: "BPL", 74: "BVC", 75: "BVS", 76: "ORA", 77: "AND",
    78: "EOR", 79: "ADC", 80: "STA", 81: "LDA", 82: "CMP", 83: "SBC",
    84: "ASL", 85: "ROL", 86: "LSR", 87: "ROR", 89: "STZ", 90: "DEA",
    91: "INA", 92: "PHX", 93: "PHY", 94: "PLX", 95: "PLY",
}


class _Operand(Enum):
    TEXT = "text"
    HEX_WORD = "hex_word"
    HEX_BYTE = "hex_byte"
    DEC_WORD = "dec_word"
    DEC_BYTE = "dec_byte"
    CHAR = "char"
    COMMENT = "comment"


OPERANDS: dict[int, tuple[str, _Operand]] = {
    5: ("$", _Operand.HEX_WORD),
    6: ("$", _Operand.HEX_BYTE),
    7: ("", _Operand.DEC_WORD),
    8: ("", _Operand.DEC_BYTE),
    10: ("'", _Operand.CHAR),
    59: (";", _Operand.COMMENT),
}
OPERANDS.update(
    (code, (text, _Operand.TEXT))
    for code, text in {
        11: "%$", 12: "%", 13: "*", 18: "+", 19: "-", 20: "*", 21: "/",
        22: "&", 24: "=", 25: "<=", 26: ">=", 27: "<>", 28: ">", 29: "<",
        30: "-", 31: "[", 32: "]", 36: "!", 37: "^", 39: "\\", 47: ".REF",
        48: ".DEF", 49: ".NOT", 50: ".AND", 51: ".OR", 52: "<", 53: ">",
        54: ",X)", 55: "),Y", 56: ",Y", 57: ",X", 58: ")", 61: ",", 62: "#",
        63: "A", 64: "(", 65: '"', 69: "NO", 70: "OBJ", 71: "ERR",
        72: "EJECT", 73: "LIST", 74: "XREF", 75: "MLIST", 76: "CLIST",
        77: "NUM",
    }.items()
)


class DetokenizeError(Exception):
    """Raised when data is not valid Mac65 tokenized source."""


class _Reader:
    def __init__(self, body: bytes) -> None:
        self.body = body
        self.pos = 0

    @property
    def remaining(self) -> int:
        return len(self.body) - self.pos

    def peek(self) -> int:
        return self.body[self.pos]

    def take(self, count: int) -> bytes:
        if count > self.remaining:
            raise DetokenizeError("Truncated line")
        chunk = self.body[self.pos:self.pos + count]
        self.pos += count
        return chunk

    def byte(self) -> int:
        return self.take(1)[0]

    def word(self) -> int:
        low, high = self.take(2)
        return low + 256 * high

    def string(self) -> str:
        length = self.byte() & 0x7F
        return self.take(length).decode("latin-1")

    def rest(self) -> str:
        return self.take(self.remaining).decode("latin-1")


def _operand(reader: _Reader, code: int) -> str:
    try:
        text, kind = OPERANDS[code]
    except KeyError:
        raise DetokenizeError(f"Unknown token {code}") from None
    if kind is _Operand.HEX_WORD:
        return f"{text}{reader.word():04X}"
    if kind is _Operand.HEX_BYTE:
        return f"{text}{reader.byte():02X}"
    if kind is _Operand.DEC_WORD:
        return f"{text}{reader.word()}"
    if kind is _Operand.DEC_BYTE:
        return f"{text}{reader.byte()}"
    if kind is _Operand.CHAR:
        return text + reader.take(1).decode("latin-1")
    if kind is _Operand.COMMENT:
        return "\t" + reader.rest()
    return text


def _line(body: bytes) -> str:
    reader = _Reader(body)
    label = ""
    if reader.remaining and reader.peek() & _STRING_FLAG:
        label = reader.string()

    statement = ""
    macro = False
    if reader.remaining:
        code = reader.byte()
        if code == _COMMENT_LINE:
            prefix = f"{label} " if label else ""
            return prefix + reader.rest() + "\n"
        if code == _MACRO_CALL:
            macro = True
        elif code in STATEMENTS:
            statement = STATEMENTS[code]
        else:
            raise DetokenizeError(f"Unknown token {code}")

    parts = [f"{label}\t" if macro else f"{label}\t{statement}\t"]
    while reader.remaining:
        if reader.peek() & _STRING_FLAG:
            name = reader.string()
            parts.append(f"{name}\t" if macro else name)
            macro = False
        else:
            parts.append(_operand(reader, reader.byte()))
    parts.append("\n")
    return "".join(parts)


def _source(data: bytes) -> bytes:
    if len(data) < _HEADER_SIZE:
        raise DetokenizeError("Couldn't read header from file")
    if data[:2] != MAGIC:
        raise DetokenizeError(
            "File is not in Mac65 tokenized source format (missing 0xFEFE header)"
        )
    size = data[2] + (data[3] << 8)
    if not size:
        raise DetokenizeError("File is empty?")
    src = data[_HEADER_SIZE:_HEADER_SIZE + size]
    if len(src) != size:
        raise DetokenizeError(
            f"Couldn't read rest of file (size {size} indicated in header)"
        )
    return src


def iter_lines(data: bytes) -> Iterator[str]:
    """Yield the text lines of a tokenized file, each ending in a newline."""
    src = _source(data)
    idx = 0
    while idx < len(src):
        if idx + _LINE_HEADER > len(src):
            raise DetokenizeError("Truncated line")
        length = src[idx + 2]
        if length < _LINE_HEADER or idx + length > len(src):
            raise DetokenizeError("Truncated line")
        yield _line(src[idx + _LINE_HEADER:idx + length])
        idx += length


def detokenize(data: bytes) -> str:
    """Return the text of a Mac65 tokenized source file."""
    return "".join(iter_lines(data))


def _emit(text: str) -> None:
    buffer = getattr(sys.stdout, "buffer", None)
    if buffer is None:
        sys.stdout.write(text)
    else:
        sys.stdout.flush()
        buffer.write(text.encode("latin-1"))
        buffer.flush()


def main(argv: Sequence[str] | None = None) -> int:
    """Print the text of a tokenized Mac65 source file."""
    args = list(sys.argv[1:] if argv is None else argv)
    name: str | None = None
    for arg in args:
        if arg in ("-h", "--help"):
            print("Detokenize Mac65 assembly source")
            print("detok name")
            return 0
        if name is not None:
            print("Syntax error")
            return 1
        name = arg
    if name is None:
        print("Syntax error")
        return 1
    try:
        data = Path(name).read_bytes()
    except OSError:
        print(f"Couldn't open {name}")
        return 1
    try:
        for line in iter_lines(data):
            _emit(line)
    except DetokenizeError as exc:
        print(exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())