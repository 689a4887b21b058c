import pytest

from bbimager.binfile import BinFile, BinFileError, from_binary, parse_bin

WIKI_RECORD = ":10010000214601360121470136007EFE09D2190140"
WIKI_DATA = bytes.fromhex("214601360121470136007EFE09D21901")


def test_binary_without_padding_is_one_segment():
    data = bytes(range(0, 200))
    assert list(from_binary(data, 20).segments()) == [(0, data)]


def test_short_ff_run_kept():
    data = b"\x01\x02" + b"\xff" * 5 + b"\x03"
    assert list(from_binary(data, 20).segments()) == [(0, data)]


def test_long_ff_run_dropped_with_even_end():
    data = b"\x01\x02\x03" + b"\xff" * 25 + b"\x04"
    segments = list(from_binary(data, 20).segments())
    assert segments == [(0, data[:4]), (len(data) - 1, data[-1:])]
    for address, chunk in segments[:1]:
        assert (address + len(chunk)) % 2 == 0


def test_to_bytes_restores_binary():
    data = b"\x10" * 7 + b"\xff" * 40 + b"\x20" * 9 + b"\xff" * 3
    binfile = from_binary(data, 20)
    assert binfile.to_bytes(0, len(data), 0xFF) == data


def test_to_bytes_without_padding_rejects_gaps():
    data = b"\x01\x02" + b"\xff" * 30 + b"\x03\x04"
    binfile = from_binary(data, 20)
    with pytest.raises(BinFileError):
        binfile.to_bytes(0, len(data), None)


def test_threshold_must_be_positive():
    with pytest.raises(ValueError):
        from_binary(b"\x01", 0)


def test_add_bytes_merges_and_rejects_overlap():
    binfile = BinFile()
    binfile.add_bytes(b"\x03\x04", 2)
    binfile.add_bytes(b"\x01\x02", 0)
    assert list(binfile.segments()) == [(0, b"\x01\x02\x03\x04")]
    with pytest.raises(BinFileError):
        binfile.add_bytes(b"\x09", 3)


def test_intel_hex_record():
    binfile = BinFile.from_text(WIKI_RECORD + "\n:00000001FF\n")
    assert list(binfile.segments()) == [(0x0100, WIKI_DATA)]


def test_intel_hex_bad_checksum():
    with pytest.raises(BinFileError):
        BinFile.from_text(WIKI_RECORD[:-2] + "41\n:00000001FF\n")


def test_intel_hex_extended_linear_address():
    text = ":020000040001F9\n:0400000001020304F2\n:00000001FF\n"
    assert list(BinFile.from_text(text).segments()) == [(0x10000, b"\x01\x02\x03\x04")]


def test_ti_txt():
    text = "@F000\n31 40 00 2A\n@F010\nAB\nq\n"
    binfile = BinFile.from_text(text)
    assert list(binfile.segments()) == [
        (0xF000, bytes.fromhex("3140002A")),
        (0xF010, bytes.fromhex("AB")),
    ]


def test_unknown_text_format():
    with pytest.raises(BinFileError):
        BinFile.from_text("hello world")


def test_parse_bin_binary_path():
    data = b"\x80\x81\x82\x00\x01"
    assert list(parse_bin(data).segments()) == [(0, data)]


def test_parse_bin_text_path():
    data = b"@0\n01 02\nq\n"
    assert list(parse_bin(data).segments()) == [(0, b"\x01\x02")]


def test_parse_bin_ascii_binary_is_error():
    with pytest.raises(BinFileError):
        parse_bin(b"\x01\x02\x03")