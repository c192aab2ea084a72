import pytest

from atrtools.detok import DetokenizeError, detokenize, iter_lines, main


def make_line(body: bytes, linum: int = 10) -> bytes:
    return bytes([linum & 0xFF, linum >> 8, len(body) + 3]) + body


def make_file(*lines: bytes) -> bytes:
    data = b"".join(lines)
    return b"\xfe\xfe" + bytes([len(data) & 0xFF, len(data) >> 8]) + data


def label(name: str) -> bytes:
    return bytes([0x80 | len(name)]) + name.encode("ascii")


def test_label_and_immediate_hex_byte():
    data = make_file(make_line(label("START") + bytes([81, 62, 6, 0x10])))
    assert detokenize(data) == "START\tLDA\t#$10\n"


def test_no_label_no_operand():
    data = make_file(make_line(bytes([58])))
    assert detokenize(data) == "\tRTS\t\n"


def test_hex_word_operand():
    data = make_file(make_line(bytes([32, 5, 0x34, 0x12])))
    out = detokenize(data)
    assert out.startswith("\tJSR\t")
    assert "$1234" in out


def test_decimal_operands():
    data = make_file(make_line(bytes([11, 7, 0x2C, 0x01, 61, 8, 7])))
    out = detokenize(data)
    assert out == "\t.BYTE\t300,7\n"


def test_char_operand():
    data = make_file(make_line(bytes([81, 62, 10]) + b"A"))
    assert detokenize(data).endswith("#'A\n")


def test_symbol_operand_with_index():
    data = make_file(make_line(bytes([80]) + label("BUF") + bytes([57])))
    assert detokenize(data) == "\tSTA\tBUF,X\n"


def test_comment_line_passes_text_through():
    text = "; just a comment"
    data = make_file(make_line(bytes([88]) + text.encode("ascii")))
    assert detokenize(data) == text + "\n"


def test_comment_line_with_label():
    text = "note"
    data = make_file(make_line(label("L1") + bytes([88]) + text.encode("ascii")))
    assert detokenize(data) == "L1 " + text + "\n"


def test_trailing_comment_operand():
    text = "trailing"
    data = make_file(make_line(bytes([52, 59]) + text.encode("ascii")))
    out = detokenize(data)
    assert out.endswith("\t" + text + "\n")
    assert "NOP" in out


def test_macro_call_name_followed_by_tab():
    data = make_file(make_line(bytes([7]) + label("MYMAC") + label("ARG")))
    assert detokenize(data) == "\tMYMAC\tARG\n"


def test_macro_call_with_label():
    data = make_file(make_line(label("HERE") + bytes([7]) + label("MAC")))
    assert detokenize(data).startswith("HERE\tMAC\t")


def test_multiple_lines_each_end_in_newline():
    data = make_file(
        make_line(bytes([44]), 10),
        make_line(bytes([58]), 20),
        make_line(bytes([88]) + b"x", 30),
    )
    lines = list(iter_lines(data))
    assert len(lines) == 3
    assert all(line.endswith("\n") for line in lines)
    assert detokenize(data) == "".join(lines)


def test_data_after_declared_size_is_ignored():
    data = make_file(make_line(bytes([58]))) + b"\x00\x01\x02"
    assert detokenize(data) == detokenize(make_file(make_line(bytes([58]))))


def test_unknown_statement_token():
    data = make_file(make_line(bytes([96])))
    with pytest.raises(DetokenizeError, match="Unknown token 96"):
        detokenize(data)


def test_unknown_operand_token():
    data = make_file(make_line(bytes([81, 99])))
    with pytest.raises(DetokenizeError, match="Unknown token 99"):
        detokenize(data)


def test_missing_magic():
    with pytest.raises(DetokenizeError, match="missing 0xFEFE header"):
        detokenize(b"\x00\x00\x04\x00" + make_line(bytes([58])))


def test_empty_file():
    with pytest.raises(DetokenizeError, match="File is empty"):
        detokenize(b"\xfe\xfe\x00\x00")


def test_short_header():
    with pytest.raises(DetokenizeError, match="Couldn't read header"):
        detokenize(b"\xfe\xfe")


def test_short_body():
    with pytest.raises(DetokenizeError, match="size 10 indicated"):
        detokenize(b"\xfe\xfe\x0a\x00\x01\x02")


def test_truncated_operand():
    data = make_file(make_line(bytes([32, 5, 0x34])))
    with pytest.raises(DetokenizeError):
        detokenize(data)


def test_main_prints_source(tmp_path, capsys):
    path = tmp_path / "prog.m65"
    path.write_bytes(make_file(make_line(label("START") + bytes([81, 62, 6, 0x10]))))
    assert main([str(path)]) == 0
    assert capsys.readouterr().out == "START\tLDA\t#$10\n"


def test_main_without_name(capsys):
    assert main([]) == 1
    assert "Syntax error" in capsys.readouterr().out


def test_main_with_two_names(capsys):
    assert main(["a", "b"]) == 1
    assert "Syntax error" in capsys.readouterr().out


def test_main_help(capsys):
    assert main(["--help"]) == 0
    assert "Detokenize Mac65 assembly source" in capsys.readouterr().out


def test_main_missing_file(tmp_path, capsys):
    missing = tmp_path / "absent.m65"
    assert main([str(missing)]) == 1
    assert "Couldn't open" in capsys.readouterr().out


def test_main_reports_bad_token(tmp_path, capsys):
    path = tmp_path / "bad.m65"
    path.write_bytes(make_file(make_line(bytes([58])), make_line(bytes([96]))))
    assert main([str(path)]) == 1
    out = capsys.readouterr().out
    assert "RTS" in out
    assert "Unknown token 96" in out