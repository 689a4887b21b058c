# bbimager

A library for preparing and flashing BeagleBoard.org boards.

## Modules

- `bbimager.config` reads and writes the `distros.json` image list. `Config.from_json`
  and `Config.from_dict` parse it into `Config`, `Imager`, `Device`, `OsImage`,
  `OsSubList` and `OsRemoteSubList`; invalid entries in the device and OS lists are
  skipped. `Config.to_json` writes it back. `Config.extend` merges other configs in:
  remote config URLs are united, boards with a known name get their tags, flasher,
  documentation and icon updated, new boards and new OS list items are appended.
  `has_board_image(tags)` tells whether an item (or any item of a sublist) suits a
  board, and `OsRemoteSubList.resolve(subitems)` turns a remote sublist into an
  `OsSubList` once its items have been fetched.
- `bbimager.downloader.Downloader` downloads files into a cache directory.
  `download_with_sha` caches by the SHA-256 of the contents, checks the download
  against it (raising `ValueError` on mismatch) and replaces corrupt cached copies.
  `download` caches by the SHA-256 of the URL; `download_no_cache` always
  re-downloads. `download_json_no_cache` fetches and decodes JSON.
  `sha256_of_file` hashes a file.
- `bbimager.binfile` holds firmware as address-ordered segments (`BinFile`).
  `parse_bin` reads Intel HEX or TI-TXT when the data is UTF-8 text, and raw binary
  otherwise, where long runs of `0xFF` are left out (`from_binary`).
- `bbimager.cc1352p7` flashes the CC1352P7 of a BeagleConnect Freedom through its
  serial bootloader (`flash`), skipping the write when the flash already holds the
  same image and optionally verifying by CRC32. `ports()` lists candidate serial
  ports; on Linux only those reporting the BeagleConnect product.
- `bbimager.mspm0` flashes the MSPM0 co-processor of a PocketBeagle 2 through the
  Linux firmware upload entries in sysfs (`flash`, `flash_fw_api`), optionally
  preserving the EEPROM contents. `check()` tests that the entries exist,
  `device()` describes the co-processor, and every error has a `user_message()`.
- `bbimager.sd` opens a block device (`open_drive`, returning a `LinuxDrive`),
  formats one as FAT with `mkfs.vfat` (`format_drive`) and ejects with `eject`.
- `bbimager.bmap` parses bmap XML (`Bmap.from_xml`).
- `bbimager.sdflash` writes an image to an SD card (`flash`, `write_sd`), reading in
  a background thread. With a bmap only buffers touching mapped blocks are written.
  The first 4 KiB of the card are written last (`bbimager.sdio.SdCardWrapper`).
- `bbimager.sdio` has the block-aligned stream wrappers `DeviceWrapper` and
  `SdCardWrapper`.

## Progress and cancelling

Functions that take `chan` put progress on it with `put_nowait`, dropping messages
when it is full; a `queue.Queue` or `asyncio.Queue` works. The firmware flashers
send `Preparing`, `Flashing(progress)` and `Verifying` from `bbimager.progress`;
the downloader and SD flasher send floats between 0 and 1. Functions that take
`cancel` stop with an `AbortedError` once that `threading.Event` is set.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Example

```python
import queue
import threading

from bbimager.config import Config
from bbimager.downloader import Downloader
from bbimager import sdflash

with open("distros.json") as fh:
    config = Config.from_json(fh.read())

image = config.os_list[0]
downloader = Downloader("/tmp/bb-cache")
path = downloader.download_with_sha(image.url, image.image_download_sha256)

progress = queue.Queue(maxsize=20)
cancel = threading.Event()
sdflash.flash(path, path.stat().st_size, "/dev/sdX", chan=progress, cancel=cancel)
```

Images are written as they are: compressed images must be decompressed first.

## What this package does not do

- There is no command-line program or graphical interface; it is a library only.
- SD cards are not enumerated: `bbimager.sd.Device` describes a card, but nothing
  lists the cards in the system. Opening, formatting and ejecting cards is done the
  Linux way only.
- No post-install customization (hostname, users, Wi-Fi and the like) is applied to
  flashed SD card images.
- The MSP430 USB bridge of BeagleConnect Freedom and DFU devices cannot be flashed.
- Remote OS sublists are not fetched automatically; fetch them with the downloader
  and pass the parsed items to `OsRemoteSubList.resolve`.