"""Firmware images as address-ordered segments, read from raw, Intel HEX or TI-TXT data."""

from __future__ import annotations

import bisect
import re
from typing import Iterator, Optional, Union

_NOT_FF = re.compile(rb"[^\xff]")
_BINARY_THRESHOLD = 20


class BinFileError(ValueError):
    """The firmware data is malformed or inconsistent."""


class BinFile:
    """Non-overlapping memory segments; touching segments are merged."""

    def __init__(self) -> None:
        self._segments: list[tuple[int, bytearray]] = []

    def add_bytes(self, data: Union[bytes, bytearray, memoryview], address: int) -> None:
        """Add ``data`` at ``address``; overlapping existing data is an error."""
        data = bytes(data)
        if address < 0:
            raise BinFileError(f"negative address {address}")
        if not data:
            return
        end = address + len(data)
        starts = [start for start, _ in self._segments]
        idx = bisect.bisect_right(starts, address)

        if idx > 0:
            prev_start, prev_data = self._segments[idx - 1]
            if prev_start + len(prev_data) > address:
                raise BinFileError(f"data at {address:#x} overlaps existing segment")
        if idx < len(self._segments) and self._segments[idx][0] < end:
            raise BinFileError(f"data at {address:#x} overlaps existing segment")

        start, merged = address, bytearray(data)
        if idx > 0:
            prev_start, prev_data = self._segments[idx - 1]
            if prev_start + len(prev_data) == address:
                start, merged = prev_start, prev_data + merged
                idx -= 1
                del self._segments[idx]
        if idx < len(self._segments) and self._segments[idx][0] == end:
            merged += self._segments[idx][1]
            del self._segments[idx]
        self._segments.insert(idx, (start, merged))

    def segments(self) -> Iterator[tuple[int, bytes]]:
        """Yield ``(address, data)`` for each segment in address order."""
        for start, data in self._segments:
            yield start, bytes(data)

    def to_bytes(
        self,
        start: Optional[int] = None,
        end: Optional[int] = None,
        padding: Optional[int] = 0xFF,
    ) -> bytes:
        """Return memory in ``[start, end)``, filling gaps with ``padding``.

        With ``padding`` set to None, any gap in the range is an error.
        """
        if start is None:
            start = self._segments[0][0] if self._segments else 0
        if end is None:
            end = self._segments[-1][0] + len(self._segments[-1][1]) if self._segments else start
        if end < start:
            raise BinFileError("end address is before start address")
        if padding is not None and not 0 <= padding <= 0xFF:
            raise BinFileError("padding must be a byte value")

        out = bytearray([padding or 0]) * (end - start)
        covered = 0
        for address, data in self._segments:
            lo = max(address, start)
            hi = min(address + len(data), end)
            if lo < hi:
                out[lo - start : hi - start] = data[lo - address : hi - address]
                covered += hi - lo
        if padding is None and covered != end - start:
            raise BinFileError("range contains gaps and no padding was given")
        return bytes(out)

    @classmethod
    def from_text(cls, text: str) -> "BinFile":
        """Parse Intel HEX or TI-TXT text."""
        lines = [line.strip() for line in text.splitlines()]
        lines = [line for line in lines if line]
        if not lines:
            raise BinFileError("empty firmware text")
        if lines[0].startswith(":"):
            return cls._from_ihex(lines)
        if lines[0].startswith("@"):
            return cls._from_ti_txt(lines)
        raise BinFileError("unknown firmware text format")

    @classmethod
    def _from_ihex(cls, lines: list[str]) -> "BinFile":
        binfile = cls()
        base = 0
        for lineno, line in enumerate(lines, 1):
            if not line.startswith(":"):
                raise BinFileError(f"line {lineno}: missing record mark")
            body = line[1:]
            if not re.fullmatch(r"(?:[0-9a-fA-F]{2})+", body):
                raise BinFileError(f"line {lineno}: invalid hex")
            record = bytes.fromhex(body)
            if len(record) < 5 or len(record) != record[0] + 5:
                raise BinFileError(f"line {lineno}: bad record length")
            if sum(record) & 0xFF:
                raise BinFileError(f"line {lineno}: bad checksum")
            count, rtype = record[0], record[3]
            offset = int.from_bytes(record[1:3], "big")
            payload = record[4 : 4 + count]
            if rtype == 0x00:
                binfile.add_bytes(payload, base + offset)
            elif rtype == 0x01:
                break
            elif rtype == 0x02:
                base = int.from_bytes(payload, "big") << 4
            elif rtype == 0x04:
                base = int.from_bytes(payload, "big") << 16
            elif rtype in (0x03, 0x05):
                continue
            else:
                raise BinFileError(f"line {lineno}: unknown record type {rtype:#04x}")
        return binfile

    @classmethod
    def _from_ti_txt(cls, lines: list[str]) -> "BinFile":
        binfile = cls()
        address: Optional[int] = None
        for lineno, line in enumerate(lines, 1):
            if line.lower() == "q":
                break
            if line.startswith("@"):
                try:
                    address = int(line[1:], 16)
                except ValueError:
                    raise BinFileError(f"line {lineno}: bad address") from None
                continue
            if address is None:
                raise BinFileError(f"line {lineno}: data before address")
            try:
                data = bytes.fromhex(line)
            except ValueError:
                raise BinFileError(f"line {lineno}: invalid hex") from None
            binfile.add_bytes(data, address)
            address += len(data)
        return binfile


def _non_ff_run(data: bytes, pos: int) -> int:
    found = data.find(b"\xff", pos)
    return (len(data) if found < 0 else found) - pos


def _ff_run(data: bytes, pos: int) -> int:
    match = _NOT_FF.search(data, pos)
    return (len(data) if match is None else match.start()) - pos


def from_binary(data: Union[bytes, bytearray], threshold: int) -> BinFile:
    """Split raw firmware into segments, dropping runs of 0xFF longer than ``threshold``.

    A segment cut short by a dropped run is extended to an even end address.
    """
    if threshold <= 0:
        raise ValueError("threshold must be positive")
    data = bytes(data)
    binfile = BinFile()
    offset = 0
    while offset < len(data):
        sendable = _non_ff_run(data, offset)
        skippable = _ff_run(data, offset + sendable)
        if skippable > threshold:
            cut = offset + sendable
            end = cut + (cut & 1)
        else:
            end = offset + sendable + skippable
        binfile.add_bytes(data[offset:end], offset)
        offset += sendable + skippable
    return binfile


def parse_bin(data: Union[bytes, bytearray]) -> BinFile:
    """Read firmware: UTF-8 data is parsed as text, anything else as raw binary."""
    try:
        text = bytes(data).decode("utf-8")
    except UnicodeDecodeError:
        return from_binary(data, _BINARY_THRESHOLD)
    return BinFile.from_text(text)