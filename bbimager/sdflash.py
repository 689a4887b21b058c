"""Write OS images to SD cards, optionally only the blocks listed in a bmap."""

from __future__ import annotations

import logging
import os
import queue
import threading
import time
from typing import IO, Any, Optional, Union

from .bmap import Bmap
from .progress import send_status
from .sd import InvalidBmapError, open_drive
from .sdio import SdCardWrapper, check_token, progress

__all__ = ["BUFFER_SIZE", "flash", "read_aligned", "write_sd"]

_log = logging.getLogger(__name__)

BUFFER_SIZE = 1024 * 1024
NUM_BUFFERS = 4
ALIGNMENT = 512

PathLike = Union[str, "os.PathLike[str]"]


def read_aligned(img: Any, size: int) -> bytes:
    """Read up to ``size`` bytes, retrying short reads.

    At end of input the data is padded with zeros to a multiple of 512 bytes.
    An empty result means the input is exhausted.
    """
    buf = bytearray()
    while len(buf) < size:
        chunk = img.read(size - len(buf))
        if not chunk:
            remainder = len(buf) % ALIGNMENT
            if remainder:
                buf += bytes(ALIGNMENT - remainder)
            return bytes(buf)
        buf += chunk
    return bytes(buf)


def _write_all(sd: Any, data: bytes) -> None:
    view = memoryview(data)
    while view:
        written = sd.write(view)
        if written is None:
            return
        if not written:
            raise OSError("failed to write whole buffer")
        view = view[written:]


def _put(q: queue.Queue, item: Optional[bytes], stop: threading.Event) -> bool:
    while not stop.is_set():
        try:
            q.put(item, timeout=0.1)
            return True
        except queue.Full:
            continue
    return False


def _reader(
    img: Any,
    q: queue.Queue,
    stop: threading.Event,
    cancel: Optional[Any],
    errors: list,
) -> None:
    try:
        while not stop.is_set():
            data = read_aligned(img, BUFFER_SIZE)
            if not data or not _put(q, data, stop):
                break
            check_token(cancel)
    except BaseException as exc:
        errors.append(exc)
    finally:
        _put(q, None, stop)


def _write_plain(
    img_size: int, sd: Any, chan: Optional[Any], q: queue.Queue, cancel: Optional[Any]
) -> None:
    pos = 0
    while (data := q.get()) is not None:
        _write_all(sd, data)
        pos += len(data)
        send_status(chan, progress(pos, img_size))
        check_token(cancel)
    sd.flush()


def _write_bmap(
    bmap: Bmap, sd: Any, chan: Optional[Any], q: queue.Queue, cancel: Optional[Any]
) -> None:
    # Whole buffers are written whenever they touch a mapped range, keeping
    # writes aligned even if a little unmapped data goes along with them.
    data = q.get()
    if data is None:
        sd.flush()
        return
    pos = 0
    img_size = bmap.total_mapped_size()
    bytes_written = 0

    for block in bmap.block_map():
        end = block.offset() + block.length()
        while True:
            if pos + len(data) > block.offset() and pos < end:
                sd.seek(pos)
                _write_all(sd, data)
                bytes_written += len(data)
            elif pos >= end:
                break

            pos += len(data)
            send_status(chan, progress(bytes_written, img_size))
            check_token(cancel)

            data = q.get()
            if data is None:
                sd.flush()
                return
    sd.flush()


def write_sd(
    img: Any,
    img_size: int,
    bmap: Optional[Bmap],
    sd: Any,
    chan: Optional[Any] = None,
    cancel: Optional[Any] = None,
) -> None:
    """Copy ``img`` to ``sd``, reading in a background thread.

    With a ``bmap`` only buffers touching mapped blocks are written, each at
    its own offset; otherwise everything is written sequentially. Progress
    between 0 and 1 is put on ``chan``; setting ``cancel`` aborts.
    """
    q: queue.Queue = queue.Queue(NUM_BUFFERS)
    stop = threading.Event()
    errors: list = []
    started = time.monotonic()

    reader = threading.Thread(target=_reader, args=(img, q, stop, cancel, errors), daemon=True)
    reader.start()
    try:
        if bmap is None:
            _write_plain(img_size, sd, chan, q, cancel)
        else:
            _write_bmap(bmap, sd, chan, q, cancel)
    finally:
        stop.set()
        reader.join()

    _log.info("Total Time taken: %.3fs", time.monotonic() - started)
    if errors:
        raise errors[0]


def _load_bmap(bmap: Union[None, str, bytes, Bmap]) -> Optional[Bmap]:
    if bmap is None or isinstance(bmap, Bmap):
        return bmap
    try:
        return Bmap.from_xml(bmap)
    except ValueError as exc:
        raise InvalidBmapError() from exc


def flash(
    img: Union[PathLike, IO[bytes]],
    img_size: int,
    dst: PathLike,
    bmap: Union[None, str, bytes, Bmap] = None,
    chan: Optional[Any] = None,
    cancel: Optional[Any] = None,
) -> None:
    """Flash an image (a path or a binary file) of ``img_size`` bytes to the card at ``dst``.

    ``bmap`` may be bmap XML or a parsed :class:`Bmap`. The card is ejected
    afterwards; eject failures are ignored.
    """
    _log.info("Opening Destination")
    drive = open_drive(dst)
    try:
        parsed = _load_bmap(bmap)
        send_status(chan, 0.0)
        sd = SdCardWrapper(drive)

        _log.info("Writing to SD Card")
        if isinstance(img, (str, os.PathLike)):
            with open(img, "rb") as image:
                write_sd(image, img_size, parsed, sd, chan, cancel)
        else:
            write_sd(img, img_size, parsed, sd, chan, cancel)

        check_token(cancel)

        _log.info("Ejecting SD Card")
        try:
            sd.eject()
        except OSError as exc:
            _log.warning("Failed to eject: %s", exc)
    finally:
        drive.close()