"""Block maps describing which blocks of a disk image hold data."""

from __future__ import annotations

import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import Optional, Union

__all__ = ["BlockRange", "Bmap"]


@dataclass(frozen=True)
class BlockRange:
    """An inclusive run of mapped blocks ``first..last``."""

    first: int
    last: int
    block_size: int
    checksum: Optional[str] = None

    def offset(self) -> int:
        """Byte offset of the first block in the image."""
        return self.first * self.block_size

    def length(self) -> int:
        """Number of bytes covered by the range."""
        return (self.last - self.first + 1) * self.block_size


@dataclass
class Bmap:
    """The contents of a bmap file."""

    image_size: int
    block_size: int
    blocks_count: int
    mapped_blocks_count: int
    ranges: list[BlockRange] = field(default_factory=list)
    checksum_type: Optional[str] = None

    @classmethod
    def from_xml(cls, xml: Union[str, bytes]) -> "Bmap":
        """Parse a bmap XML document; raise ValueError if it is malformed."""
        try:
            root = ET.fromstring(xml)
        except ET.ParseError as exc:
            raise ValueError(f"invalid bmap XML: {exc}") from None
        if root.tag != "bmap":
            raise ValueError(f"unexpected root element {root.tag!r}")

        image_size = _int_field(root, "ImageSize")
        block_size = _int_field(root, "BlockSize")
        blocks_count = _int_field(root, "BlocksCount")
        mapped_blocks_count = _int_field(root, "MappedBlocksCount")
        if block_size <= 0:
            raise ValueError("BlockSize must be positive")

        checksum_el = root.find("ChecksumType")
        checksum_type = (
            checksum_el.text.strip() if checksum_el is not None and checksum_el.text else None
        )

        block_map = root.find("BlockMap")
        if block_map is None:
            raise ValueError("missing BlockMap element")

        ranges = []
        for element in block_map.findall("Range"):
            first, last = _parse_range(element.text or "")
            checksum = element.get("chksum", element.get("sha1"))
            ranges.append(BlockRange(first, last, block_size, checksum))

        return cls(
            image_size=image_size,
            block_size=block_size,
            blocks_count=blocks_count,
            mapped_blocks_count=mapped_blocks_count,
            ranges=ranges,
            checksum_type=checksum_type,
        )

    def total_mapped_size(self) -> int:
        """Number of bytes in the mapped blocks."""
        return self.mapped_blocks_count * self.block_size

    def block_map(self) -> list[BlockRange]:
        """The mapped block ranges in file order."""
        return list(self.ranges)


def _to_int(text: str, what: str) -> int:
    text = text.strip()
    if not (text.isascii() and text.isdigit()):
        raise ValueError(f"{what} is not a non-negative integer: {text!r}")
    return int(text)


def _int_field(root: ET.Element, tag: str) -> int:
    element = root.find(tag)
    if element is None or element.text is None:
        raise ValueError(f"missing {tag} element")
    return _to_int(element.text, tag)


def _parse_range(text: str) -> tuple[int, int]:
    first_text, sep, last_text = text.strip().partition("-")
    first = _to_int(first_text, "range start")
    last = _to_int(last_text, "range end") if sep else first
    if last < first:
        raise ValueError(f"range end before start: {text.strip()!r}")
    return first, last