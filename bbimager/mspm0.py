"""Flash the MSPM0 co-processor of a PocketBeagle 2 through the kernel firmware upload API."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Union

from .progress import Flashing, Preparing, Verifying, send_status

__all__ = [
    "Device",
    "FailedToOpenError",
    "FailedToReadError",
    "FailedToSeekError",
    "FailedToWriteError",
    "FlashingError",
    "InvalidFirmwareError",
    "Mspm0Error",
    "check",
    "device",
    "flash",
    "flash_fw_api",
]

_log = logging.getLogger(__name__)

DEVICE = "mspm0l1105"
PATH = "/sys/class/firmware/mspm0l1105/"
EEPROM = "/sys/bus/i2c/devices/0-0050/eeprom"
FIRMWARE_SIZE = 32 * 1024

_FW_ENTRIES = ("loading", "status", "remaining_size")

PathLike = Union[str, "os.PathLike[str]"]


class Mspm0Error(Exception):
    """Base error for MSPM0 flashing."""

    def user_message(self) -> str:
        """A message suitable for showing to the user."""
        return str(self)


class FailedToOpenError(Mspm0Error):
    def __init__(self, entry: str) -> None:
        super().__init__(f"Failed to open {entry}")
        self.entry = entry

    def user_message(self) -> str:
        if self.entry in ("loading", "data", "status"):
            return (
                "Cannot access PocketBeagle 2 firmware interface. Please ensure:\n"
                "- Your board is properly connected via USB\n"
                "- You have the required permissions (try running with sudo)\n"
                "- The kernel driver is loaded"
            )
        if self.entry == "EEPROM":
            return (
                "Cannot access EEPROM on PocketBeagle 2. "
                "The board may not be properly detected."
            )
        return (
            f"Cannot access system resource: {self.entry}. "
            "Check permissions and connections."
        )


class _EntryIoError(Mspm0Error):
    verb = ""

    def __init__(self, entry: str) -> None:
        super().__init__(f"Failed to {self.verb} {entry}")
        self.entry = entry

    def user_message(self) -> str:
        return (
            f"Communication error with PocketBeagle 2 ({self.entry}). "
            "Try reconnecting the board."
        )


class FailedToReadError(_EntryIoError):
    verb = "read"


class FailedToWriteError(_EntryIoError):
    verb = "write to"


class FailedToSeekError(_EntryIoError):
    verb = "seek"


class FlashingError(Mspm0Error):
    def __init__(self, stage: str, code: str) -> None:
        super().__init__(f"Failed to flash at {stage} due to {code}")
        self.stage = stage
        self.code = code

    def user_message(self) -> str:
        return (
            f"Flashing failed during {self.stage} stage: {self.code}. "
            "Check the firmware file and try again."
        )


class InvalidFirmwareError(Mspm0Error):
    def __init__(self) -> None:
        super().__init__("Invalid firmware")

    def user_message(self) -> str:
        return (
            "The firmware file is invalid or corrupted. "
            "Please download a valid firmware file."
        )


@dataclass(frozen=True)
class Device:
    """PocketBeagle 2 MSPM0 information."""

    name: str
    path: str
    flash_size: int


def device() -> Device:
    """Return the PocketBeagle 2 MSPM0 device description."""
    return Device(name=DEVICE, path=PATH, flash_size=FIRMWARE_SIZE)


def _open_rw(path: Path, name: str) -> Any:
    try:
        return open(path, "r+b", buffering=0)
    except OSError as exc:
        _log.error("Failed to open %s at %s: %s", name, path, exc)
        raise FailedToOpenError(name) from exc


def _write_entry(file: Any, data: bytes, name: str) -> None:
    try:
        file.write(data)
        file.flush()
    except OSError as exc:
        _log.error("Failed to write to %s: %s", name, exc)
        raise FailedToWriteError(name) from exc


def _read_entry(path: Path, name: str) -> str:
    # sysfs entries misbehave if kept open, so each read opens afresh
    try:
        file = open(path, "rb")
    except OSError as exc:
        _log.error("Failed to open %s at %s: %s", name, path, exc)
        raise FailedToOpenError(name) from exc
    with file:
        try:
            return file.read().decode("utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            _log.error("Failed to read %s: %s", name, exc)
            raise FailedToReadError(name) from exc


def flash(
    firmware: bytes,
    chan: Optional[Any] = None,
    persist_eeprom: bool = False,
    fw_dir: PathLike = PATH,
    eeprom: PathLike = EEPROM,
) -> None:
    """Flash ``firmware`` to the MSPM0, optionally preserving the EEPROM contents.

    Status messages are put on ``chan`` without blocking.
    """
    firmware = bytes(firmware)
    if len(firmware) > FIRMWARE_SIZE:
        _log.error(
            "Firmware size %d bytes exceeds maximum %d bytes", len(firmware), FIRMWARE_SIZE
        )
        raise InvalidFirmwareError()

    eeprom_path = Path(eeprom)
    eeprom_contents = b""
    if persist_eeprom:
        _log.debug("Reading EEPROM contents for preservation")
        try:
            file = open(eeprom_path, "rb")
        except OSError as exc:
            _log.error("Failed to open EEPROM at %s: %s", eeprom_path, exc)
            raise FailedToOpenError("EEPROM") from exc
        with file:
            try:
                eeprom_contents = file.read()
            except OSError as exc:
                _log.error("Failed to read EEPROM contents: %s", exc)
                raise FailedToReadError("EEPROM") from exc
        _log.debug("Read %d bytes from EEPROM", len(eeprom_contents))

    flash_fw_api(fw_dir, firmware, chan)

    if persist_eeprom:
        _log.debug("Restoring EEPROM contents")
        with _open_rw(eeprom_path, "EEPROM") as file:
            _write_entry(file, eeprom_contents, "EEPROM")
        _log.debug("Successfully restored EEPROM contents")


def check(fw_dir: PathLike = PATH) -> None:
    """Raise :class:`FailedToOpenError` unless the firmware upload entries exist."""
    base = Path(fw_dir)
    for name in _FW_ENTRIES:
        path = base / name
        if not os.path.exists(path):
            _log.error("Sysfs entry %s does not exist at %s", name, path)
            raise FailedToOpenError(name)


def _remaining_progress(base: Path, size: int) -> Optional[float]:
    text = _read_entry(base / "remaining_size", "remaining_size").strip()
    if not (text.isascii() and text.isdigit()) or size == 0:
        return None
    return (size - int(text)) / size


def flash_fw_api(base: PathLike, firmware: bytes, chan: Optional[Any] = None) -> None:
    """Upload ``firmware`` through the firmware upload entries in ``base`` and wait for it."""
    base = Path(base)
    firmware = bytes(firmware)

    _log.info("Starting firmware upload (%d bytes)", len(firmware))
    with _open_rw(base / "loading", "loading") as loading:
        _write_entry(loading, b"1", "loading")
        with _open_rw(base / "data", "data") as data:
            _write_entry(data, firmware, "data")
            _write_entry(loading, b"0", "loading")
    _log.debug("Firmware upload initiated successfully")

    while True:
        status = _read_entry(base / "status", "status").strip()
        if status == "idle":
            _log.info("Flashing completed successfully")
            break
        if status == "preparing":
            send_status(chan, Preparing())
        elif status == "transferring":
            fraction = _remaining_progress(base, len(firmware))
            if fraction is not None:
                send_status(chan, Flashing(fraction))
        elif status == "programming":
            send_status(chan, Verifying())
        else:
            _log.debug("Unknown status: %s", status)

    error = _read_entry(base / "error", "error").strip()
    if error in ("none", ""):
        return
    if error == "preparing:firmware-invalid":
        _log.info("Firmware already up to date, skipping flash")
        return
    parts = error.split(":")
    if len(parts) != 2:
        raise Mspm0Error(f"Unexpected error entry: {error!r}")
    stage, code = parts
    _log.error("Flashing error at stage '%s': code '%s'", stage, code)
    raise FlashingError(stage, code)