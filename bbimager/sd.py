"""SD card devices, their errors, and raw access to a card on Linux."""

from __future__ import annotations

import os
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Any, Optional, Union

__all__ = [
    "AbortedError",
    "Device",
    "FailedToFormatError",
    "FailedToOpenDestinationError",
    "InvalidBmapError",
    "LinuxDrive",
    "SdError",
    "WriterClosedError",
    "format_drive",
    "open_drive",
]

PathLike = Union[str, "os.PathLike[str]"]


class SdError(OSError):
    """Base error for SD card flashing."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


class AbortedError(SdError):
    def __init__(self) -> None:
        super().__init__("Aborted before completing")


class FailedToFormatError(SdError):
    def __init__(self, reason: str) -> None:
        super().__init__(f"Failed to format SD Card: {reason}")
        self.reason = reason


class FailedToOpenDestinationError(SdError):
    def __init__(self, destination: str) -> None:
        super().__init__(f"Failed to open {destination}")
        self.destination = destination


class InvalidBmapError(SdError):
    def __init__(self) -> None:
        super().__init__("Invalid bmap")


class WriterClosedError(SdError):
    def __init__(self) -> None:
        super().__init__("Writer thread has been closed")


@dataclass(frozen=True)
class Device:
    """An SD card."""

    name: str
    path: Path
    size: int


def _stderr_text(output: Optional[bytes]) -> str:
    return (output or b"").decode("utf-8", "replace")


class LinuxDrive:
    """A block device opened for raw reading and writing."""

    def __init__(self, file: IO[bytes], drive: PathLike) -> None:
        self._file = file
        self.drive = Path(drive)

    def __enter__(self) -> "LinuxDrive":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        return self._file.closed

    def read(self, size: int = -1) -> bytes:
        return self._file.read(size) or b""

    def readinto(self, buf: Any) -> int:
        return self._file.readinto(buf) or 0

    def write(self, data: Union[bytes, bytearray, memoryview]) -> int:
        return self._file.write(data)

    def seek(self, offset: int, whence: int = os.SEEK_SET) -> int:
        return self._file.seek(offset, whence)

    def tell(self) -> int:
        return self._file.tell()

    def flush(self) -> None:
        self._file.flush()

    def close(self) -> None:
        """Sync data to the device, ignoring sync failures, and close it."""
        if self._file.closed:
            return
        try:
            self._file.flush()
            os.fsync(self._file.fileno())
        except OSError:
            pass
        self._file.close()

    def eject(self) -> None:
        """Sync and close the device, then eject it with the ``eject`` tool."""
        self.close()
        result = subprocess.run(["eject", str(self.drive)], capture_output=True, check=False)
        if result.returncode != 0:
            raise OSError(_stderr_text(result.stderr))


def open_drive(dst: PathLike) -> LinuxDrive:
    """Open an existing device for reading and writing."""
    # Direct I/O needs aligned user buffers, which Python byte strings cannot
    # guarantee, so the device is opened with normal caching and synced on close.
    fd = os.open(dst, os.O_RDWR | getattr(os, "O_CLOEXEC", 0))
    try:
        file = os.fdopen(fd, "r+b", buffering=0)
    except BaseException:
        os.close(fd)
        raise
    return LinuxDrive(file, dst)


def format_drive(dst: PathLike) -> None:
    """Format the device as FAT with ``mkfs.vfat``."""
    result = subprocess.run(["mkfs.vfat", str(dst)], capture_output=True, check=False)
    if result.returncode != 0:
        raise FailedToFormatError(_stderr_text(result.stderr))