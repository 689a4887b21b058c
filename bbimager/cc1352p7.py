"""Flash the CC1352P7 main processor of a BeagleConnect Freedom over its serial bootloader."""

from __future__ import annotations

import logging
import sys
import time
import zlib
from typing import Any, Optional, Union

import serial
from serial.tools import list_ports

from .binfile import BinFileError, parse_bin
from .progress import Flashing, Preparing, Verifying, send_status

__all__ = [
    "AbortedError",
    "BeagleConnectFreedom",
    "Cc1352p7Error",
    "FailedToOpenPortError",
    "FailedToStartBootloaderError",
    "FlashFailError",
    "InvalidImageError",
    "NackError",
    "UnknownResponseError",
    "flash",
    "ports",
]

_log = logging.getLogger(__name__)

ACK = 0xCC
NACK = 0x33

COMMAND_DOWNLOAD = 0x21
COMMAND_GET_STATUS = 0x23
COMMAND_SEND_DATA = 0x24
COMMAND_RESET = 0x25
COMMAND_CRC32 = 0x27
COMMAND_BANK_ERASE = 0x2C

COMMAND_MAX_SIZE = 0xFF - 3
FIRMWARE_SIZE = 704 * 1024
BAUD_RATE = 115200
PORT_TIMEOUT = 0.5

_STATUS_SUCCESS = 0x40
_STATUS_UNKNOWN_CMD = 0x41
_STATUS_INVALID_CMD = 0x42
_STATUS_INVALID_ADDR = 0x43
_STATUS_FLASH_FAIL = 0x44


class Cc1352p7Error(Exception):
    """Base error for CC1352P7 flashing."""

    default_message = "CC1352P7 flashing failed."

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.default_message)


class FlashFailError(Cc1352p7Error):
    default_message = "Status for failing flash erase or program operation."


class UnknownResponseError(Cc1352p7Error):
    default_message = "Bootloader sent unexpected response."


class NackError(Cc1352p7Error):
    default_message = "Bootloader Responded with Nack."


class FailedToStartBootloaderError(Cc1352p7Error):
    default_message = "Failed to start Bootloader."


class InvalidImageError(Cc1352p7Error):
    default_message = "Flashed image is not valid."


class FailedToOpenPortError(Cc1352p7Error):
    default_message = "Failed to open serial port."


class AbortedError(Cc1352p7Error):
    default_message = "Aborted before completing."


def _sum8(*chunks: bytes) -> int:
    return sum(byte for chunk in chunks for byte in chunk) & 0xFF


def _be32(value: int) -> bytes:
    return value.to_bytes(4, "big")


class BeagleConnectFreedom:
    """A CC1352P7 in bootloader mode, reached through a serial port.

    Creating one starts the bootloader and synchronises with it. Closing it
    resets the chip and closes the port.
    """

    def __init__(self, port: Any) -> None:
        self.port = port
        self._closed = False
        try:
            self.invoke_bootloader()
            self.send_sync()
        except BaseException:
            self.close()
            raise

    def __enter__(self) -> "BeagleConnectFreedom":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def _write(self, data: Union[bytes, bytearray]) -> None:
        self.port.write(bytes(data))

    def _read_exact(self, count: int) -> bytes:
        data = bytearray()
        while len(data) < count:
            chunk = self.port.read(count - len(data))
            if not chunk:
                raise TimeoutError("timed out reading from serial port")
            data += chunk
        return bytes(data)

    def _read_nonzero(self) -> int:
        byte = 0
        while byte == 0:
            byte = self._read_exact(1)[0]
        return byte

    def wait_for_ack(self) -> None:
        """Read the bootloader's acknowledgement, skipping zero padding."""
        byte = self._read_nonzero()
        if byte == ACK:
            return
        if byte == NACK:
            raise NackError()
        raise UnknownResponseError()

    def invoke_bootloader(self) -> None:
        """Hold a break condition on the line to enter the bootloader."""
        _log.info("Invoke Bootloader")
        try:
            self.port.break_condition = True
        except OSError as exc:
            raise FailedToStartBootloaderError() from exc
        time.sleep(2)
        try:
            self.port.break_condition = False
        except OSError as exc:
            raise FailedToStartBootloaderError() from exc
        time.sleep(0.5)

    def send_sync(self) -> None:
        _log.info("Send Sync")
        self._write(b"\x55\x55")
        self.wait_for_ack()

    def crc32(self) -> int:
        """Ask the bootloader for the CRC32 of the whole firmware area."""
        addr = _be32(0)
        size = _be32(FIRMWARE_SIZE)
        read_repeat = _be32(0)
        checksum = _sum8(size, bytes([COMMAND_CRC32]))

        self._write(bytes([15, checksum, COMMAND_CRC32]))
        self._write(addr)
        self._write(size)
        self._write(read_repeat)
        self.wait_for_ack()

        header = self._read_exact(2)
        if header[0] != 6:
            raise UnknownResponseError()
        payload = self._read_exact(4)
        if header[1] != _sum8(payload):
            raise UnknownResponseError()

        self.send_ack()
        return int.from_bytes(payload, "big")

    def send_ack(self) -> None:
        self._write(bytes([0x00, ACK]))

    def send_bank_erase(self) -> None:
        self._write(bytes([3, COMMAND_BANK_ERASE, COMMAND_BANK_ERASE]))
        self.wait_for_ack()
        self.get_status()

    def get_status(self) -> None:
        """Read the status of the last command, raising if it failed."""
        self._write(bytes([3, COMMAND_GET_STATUS, COMMAND_GET_STATUS]))
        self.wait_for_ack()

        self._read_nonzero()  # packet length
        self._read_exact(1)  # checksum
        status = self._read_exact(1)[0]
        self.send_ack()

        if status == _STATUS_SUCCESS:
            return
        if status == _STATUS_UNKNOWN_CMD:
            raise Cc1352p7Error("Unknown Command")
        if status == _STATUS_INVALID_CMD:
            raise Cc1352p7Error("Invalid Command")
        if status == _STATUS_INVALID_ADDR:
            raise Cc1352p7Error("Invalid Address")
        if status == _STATUS_FLASH_FAIL:
            raise FlashFailError()
        raise UnknownResponseError()

    def send_download(self, addr: int, size: int) -> None:
        """Announce a write of ``size`` bytes starting at ``addr``."""
        addr_bytes = _be32(addr)
        size_bytes = _be32(size)
        checksum = _sum8(addr_bytes, size_bytes, bytes([COMMAND_DOWNLOAD]))

        self._write(bytes([11, checksum, COMMAND_DOWNLOAD]))
        self._write(addr_bytes)
        self._write(size_bytes)
        self.wait_for_ack()
        self.get_status()

    def send_data(self, data: Union[bytes, bytearray, memoryview]) -> int:
        """Send as much of ``data`` as fits in one packet; return the bytes sent."""
        chunk = bytes(data[:COMMAND_MAX_SIZE])
        checksum = _sum8(chunk, bytes([COMMAND_SEND_DATA]))

        self._write(bytes([len(chunk) + 3, checksum, COMMAND_SEND_DATA]))
        self._write(chunk)
        self.wait_for_ack()
        self.get_status()
        return len(chunk)

    def send_reset(self) -> None:
        self._write(bytes([3, COMMAND_RESET, COMMAND_RESET]))
        self.wait_for_ack()

    def verify(self, crc32: int) -> bool:
        """Whether the flash contents have the given CRC32."""
        return self.crc32() == crc32

    def close(self) -> None:
        """Reset the chip, ignoring failures, and close the port."""
        if self._closed:
            return
        self._closed = True
        try:
            self.send_reset()
        except (Cc1352p7Error, OSError):
            pass
        closer = getattr(self.port, "close", None)
        if closer is not None:
            closer()


def _check_token(cancel: Optional[Any]) -> None:
    if cancel is not None and cancel.is_set():
        raise AbortedError()


def flash(
    firmware: Union[bytes, bytearray],
    port: str,
    verify: bool = True,
    chan: Optional[Any] = None,
    cancel: Optional[Any] = None,
) -> None:
    """Flash ``firmware`` (raw binary, TI-TXT or Intel HEX) to the device on ``port``.

    Status messages are put on ``chan`` without blocking. Setting the
    ``cancel`` event aborts the process with :class:`AbortedError`.
    """
    try:
        image = parse_bin(firmware)
    except (BinFileError, ValueError) as exc:
        raise InvalidImageError() from exc

    send_status(chan, Preparing())

    try:
        serial_port = serial.Serial(port, BAUD_RATE, timeout=PORT_TIMEOUT)
    except (serial.SerialException, OSError, ValueError) as exc:
        raise FailedToOpenPortError() from exc

    with BeagleConnectFreedom(serial_port) as bcf:
        _log.info("BeagleConnectFreedom Connected")

        _check_token(cancel)
        send_status(chan, Flashing(0.0))

        img_crc32 = zlib.crc32(image.to_bytes(0, FIRMWARE_SIZE, 0xFF))
        if bcf.verify(img_crc32):
            _log.warning("Skipping flashing same image")
            return

        _check_token(cancel)
        _log.info("Erase Flash")
        bcf.send_bank_erase()

        _log.info("Start Flashing")
        _check_token(cancel)
        for start, data in image.segments():
            bcf.send_download(start, len(data))
            view = memoryview(data)
            offset = 0
            while offset < len(data):
                offset += bcf.send_data(view[offset:])
                send_status(chan, Flashing((start + offset) / FIRMWARE_SIZE))
                _check_token(cancel)

        if verify:
            send_status(chan, Verifying())
            if not bcf.verify(img_crc32):
                _log.error("Invalid CRC32 in Flash. The flashed image might be corrupted")
                raise InvalidImageError()
            _log.info("Flashing Successful")


def ports() -> set[str]:
    """Return the serial ports that may have a BeagleConnect Freedom.

    On Linux only USB ports reporting the BeagleConnect product are returned;
    elsewhere every serial port is.
    """
    on_linux = sys.platform.startswith("linux")
    return {
        info.device
        for info in list_ports.comports()
        if not on_linux
        or (
            info.vid is not None
            and info.manufacturer == "BeagleBoard.org"
            and info.product == "BeagleConnect"
        )
    }