from pathlib import Path

import pytest

from bbimager.mspm0 import (
    FIRMWARE_SIZE,
    FailedToOpenError,
    FailedToReadError,
    FlashingError,
    InvalidFirmwareError,
    check,
    device,
    flash,
    flash_fw_api,
)
from bbimager.progress import Flashing, Preparing, Verifying


def _fw_dir(tmp_path: Path, status: str = "idle", error: str = "none") -> Path:
    base = tmp_path / "fw"
    base.mkdir()
    (base / "loading").write_bytes(b"")
    (base / "data").write_bytes(b"")
    (base / "status").write_text(status + "\n")
    (base / "error").write_text(error + "\n")
    (base / "remaining_size").write_text("0\n")
    return base


class _Chan:
    """Records messages and lets the device finish after the first one."""

    def __init__(self, base: Path, on_message=None) -> None:
        self.base = base
        self.messages = []
        self.on_message = on_message

    def put_nowait(self, msg) -> None:
        self.messages.append(msg)
        if self.on_message is not None:
            self.on_message()
        (self.base / "status").write_text("idle\n")


def test_flash_writes_firmware(tmp_path):
    base = _fw_dir(tmp_path)
    firmware = b"\x01\x02\x03\x04" * 8
    flash_fw_api(base, firmware)
    assert (base / "data").read_bytes() == firmware
    assert (base / "loading").read_bytes() == b"10"


def test_firmware_too_large(tmp_path):
    base = _fw_dir(tmp_path)
    with pytest.raises(InvalidFirmwareError) as info:
        flash(bytes(FIRMWARE_SIZE + 1), None, False, base, tmp_path / "eeprom")
    assert "invalid" in info.value.user_message()
    assert (base / "data").read_bytes() == b""


def test_same_firmware_is_skipped(tmp_path):
    base = _fw_dir(tmp_path, error="preparing:firmware-invalid")
    assert flash_fw_api(base, b"abc") is None
    assert (base / "data").read_bytes() == b"abc"


def test_flashing_error(tmp_path):
    base = _fw_dir(tmp_path, error="program:busy")
    with pytest.raises(FlashingError) as info:
        flash_fw_api(base, b"abc")
    assert info.value.stage == "program"
    assert info.value.code == "busy"
    assert str(info.value) == "Failed to flash at program due to busy"


def test_missing_loading_entry(tmp_path):
    base = _fw_dir(tmp_path)
    (base / "loading").unlink()
    with pytest.raises(FailedToOpenError) as info:
        flash_fw_api(base, b"abc")
    assert info.value.entry == "loading"
    assert "kernel driver" in info.value.user_message()


def test_transferring_progress(tmp_path):
    base = _fw_dir(tmp_path, status="transferring")
    (base / "remaining_size").write_text("16\n")
    chan = _Chan(base)
    flash_fw_api(base, bytes(64), chan)
    assert chan.messages == [Flashing(0.75)]


def test_preparing_status(tmp_path):
    base = _fw_dir(tmp_path, status="preparing")
    chan = _Chan(base)
    flash_fw_api(base, b"abc", chan)
    assert chan.messages == [Preparing()]


def test_programming_status(tmp_path):
    base = _fw_dir(tmp_path, status="programming")
    chan = _Chan(base)
    flash_fw_api(base, b"abc", chan)
    assert chan.messages == [Verifying()]


def test_eeprom_is_restored(tmp_path):
    base = _fw_dir(tmp_path, status="preparing")
    eeprom = tmp_path / "eeprom"
    original = b"board identity"
    eeprom.write_bytes(original)
    chan = _Chan(base, on_message=lambda: eeprom.write_bytes(b"\x00" * len(original)))
    flash(b"abc", chan, True, base, eeprom)
    assert eeprom.read_bytes() == original
    assert chan.messages == [Preparing()]


def test_missing_eeprom(tmp_path):
    base = _fw_dir(tmp_path)
    with pytest.raises(FailedToOpenError) as info:
        flash(b"abc", None, True, base, tmp_path / "missing")
    assert info.value.entry == "EEPROM"
    assert "EEPROM" in info.value.user_message()


def test_check_entries(tmp_path):
    base = _fw_dir(tmp_path)
    assert check(base) is None
    (base / "remaining_size").unlink()
    with pytest.raises(FailedToOpenError) as info:
        check(base)
    assert info.value.entry == "remaining_size"


def test_device_info():
    info = device()
    assert info.name == "mspm0l1105"
    assert info.path == "/sys/class/firmware/mspm0l1105/"
    assert info.flash_size == 32 * 1024


def test_read_error_message():
    err = FailedToReadError("status")
    assert str(err) == "Failed to read status"
    assert "(status)" in err.user_message()