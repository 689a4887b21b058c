"""Block-aligned stream wrappers and small helpers used while writing SD cards."""

from __future__ import annotations

import math
import os
from typing import Any, Optional, Union

from .sd import AbortedError

__all__ = ["BLOCK_SIZE", "DeviceWrapper", "SdCardWrapper", "check_token", "progress"]

BLOCK_SIZE = 4096

_Buffer = Union[bytes, bytearray, memoryview]


def progress(pos: int, img_size: int) -> float:
    """Fraction of ``img_size`` that ``pos`` bytes represent."""
    if img_size == 0:
        return math.nan if pos == 0 else math.inf
    return pos / img_size


def check_token(cancel: Optional[Any]) -> None:
    """Raise :class:`AbortedError` if the ``cancel`` event has been set."""
    if cancel is not None and cancel.is_set():
        raise AbortedError()


def _read_exact(f: Any, size: int) -> bytes:
    data = bytearray()
    while len(data) < size:
        chunk = f.read(size - len(data))
        if not chunk:
            raise EOFError("failed to fill whole buffer")
        data += chunk
    return bytes(data)


def _write_all(f: Any, data: _Buffer) -> None:
    view = memoryview(data)
    while view:
        written = f.write(view)
        if not written:
            raise OSError("failed to write whole buffer")
        view = view[written:]


class DeviceWrapper:
    """Byte-addressable access to a device that is only read and written in whole blocks.

    One block is cached; every write rewrites the whole cached block.
    """

    def __init__(self, f: Any) -> None:
        f.seek(0)
        self.f = f
        self._offset = 0
        self._buf = bytearray(BLOCK_SIZE)
        self._cache_offset: Optional[int] = None

    def _block_offset(self) -> int:
        return self._offset - self._offset % BLOCK_SIZE

    def _fill_cache(self) -> None:
        block = self._block_offset()
        if self._cache_offset != block:
            self.f.seek(block)
            self._buf[:] = _read_exact(self.f, BLOCK_SIZE)
            self._cache_offset = block

    def read(self, size: Optional[int] = -1) -> bytes:
        """Read ``size`` bytes, or everything up to the end when ``size`` is negative."""
        if size is None or size < 0:
            end = self.f.seek(0, os.SEEK_END)
            size = max(0, end - self._offset)
        out = bytearray()
        while len(out) < size:
            self._fill_cache()
            start = self._offset % BLOCK_SIZE
            count = min(size - len(out), BLOCK_SIZE - start)
            out += self._buf[start : start + count]
            self._offset += count
        return bytes(out)

    def readinto(self, buf: Any) -> int:
        target = memoryview(buf).cast("B")
        data = self.read(len(target))
        target[: len(data)] = data
        return len(data)

    def write(self, data: _Buffer) -> int:
        """Write all of ``data`` at the current offset."""
        view = memoryview(data).cast("B")
        total = len(view)
        while view:
            self._fill_cache()
            start = self._offset % BLOCK_SIZE
            count = min(len(view), BLOCK_SIZE - start)
            self._buf[start : start + count] = view[:count]
            self.f.seek(self._cache_offset)
            _write_all(self.f, self._buf)
            self._offset += count
            view = view[count:]
        return total

    def seek(self, offset: int, whence: int = os.SEEK_SET) -> int:
        if whence == os.SEEK_SET:
            new = offset
        elif whence == os.SEEK_CUR:
            new = self._offset + offset
        elif whence == os.SEEK_END:
            new = self.f.seek(offset, os.SEEK_END)
        else:
            raise ValueError(f"invalid whence {whence}")
        if new < 0:
            raise ValueError("negative seek position")
        self._offset = new
        return self._offset

    def tell(self) -> int:
        return self._offset

    def flush(self) -> None:
        self.f.flush()


class SdCardWrapper:
    """Hold back the first block of the card and write it only when finishing.

    Writing the first block last makes flashing reliable on some platforms.
    """

    def __init__(self, inner: Any) -> None:
        self.inner = inner
        self.buf = bytearray(BLOCK_SIZE)
        self.pos = 0

    def read(self, size: Optional[int] = -1) -> bytes:
        unbounded = size is None or size < 0
        out = bytearray()
        if self.pos < BLOCK_SIZE:
            available = BLOCK_SIZE - self.pos
            count = available if unbounded else min(available, size)
            if count:
                self.inner.seek(count, os.SEEK_CUR)
                out += self.buf[self.pos : self.pos + count]
                self.pos += count
        if unbounded:
            rest = self.inner.read() or b""
            out += rest
            self.pos += len(rest)
        else:
            while len(out) < size:
                chunk = self.inner.read(size - len(out))
                if not chunk:
                    break
                out += chunk
                self.pos += len(chunk)
        return bytes(out)

    def write(self, data: _Buffer) -> int:
        view = memoryview(data).cast("B")
        total = len(view)
        while view:
            if self.pos < BLOCK_SIZE:
                count = min(BLOCK_SIZE - self.pos, len(view))
                self.inner.seek(count, os.SEEK_CUR)
                self.buf[self.pos : self.pos + count] = view[:count]
            else:
                count = self.inner.write(view)
                if not count:
                    raise OSError("failed to write whole buffer")
            self.pos += count
            view = view[count:]
        return total

    def seek(self, offset: int, whence: int = os.SEEK_SET) -> int:
        self.pos = self.inner.seek(offset, whence)
        return self.pos

    def tell(self) -> int:
        return self.pos

    def flush(self) -> None:
        self.inner.flush()

    def finish(self) -> None:
        """Write the held-back first block to the card."""
        self.inner.seek(0)
        _write_all(self.inner, self.buf)
        self.pos = BLOCK_SIZE

    def eject(self) -> None:
        """Write the first block, then eject the card."""
        self.finish()
        self.inner.eject()