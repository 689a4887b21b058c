"""Parse and generate the BeagleBoard.org distros.json image list.

Configs can be merged with :meth:`Config.extend`: remote config URLs are
united, boards already present (matched by name) have their tags, flasher,
documentation and icon updated, new boards are appended, and only OS list
items that are not already present are appended.
"""

from __future__ import annotations

import copy
import datetime
import enum
import json
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping, Optional, TypeVar, Union
from urllib.parse import urlsplit

_T = TypeVar("_T")
_HEX_RE = re.compile(r"[0-9a-fA-F]*")
_U64_MAX = 2**64 - 1


class Flasher(enum.Enum):
    """Kind of flasher an OS image needs."""

    SD_CARD = "SdCard"
    BEAGLE_CONNECT_FREEDOM = "BeagleConnectFreedom"
    MSP430_USB = "Msp430Usb"
    PB2_MSPM0 = "Pb2Mspm0"


class InitFormat(enum.Enum):
    """Post-install customization format of an image."""

    NONE = "none"
    SYSCONF = "sysconf"
    ARMBIAN = "armbian"


def _mapping(data: Any, what: str) -> Mapping[str, Any]:
    if not isinstance(data, Mapping):
        raise ValueError(f"{what} must be an object")
    return data


def _require(data: Mapping[str, Any], key: str) -> Any:
    try:
        return data[key]
    except KeyError:
        raise ValueError(f"missing field {key!r}") from None


def _as_str(value: Any, key: str) -> str:
    if not isinstance(value, str):
        raise ValueError(f"field {key!r} must be a string")
    return value


def _as_url(value: Any, key: str) -> str:
    text = _as_str(value, key)
    if not urlsplit(text).scheme:
        raise ValueError(f"field {key!r} is not an absolute URL: {text!r}")
    return text


def _optional(data: Mapping[str, Any], key: str, convert: Callable[[Any, str], _T]) -> Optional[_T]:
    value = data.get(key)
    return None if value is None else convert(value, key)


def _as_list(value: Any, key: str) -> list:
    if not isinstance(value, list):
        raise ValueError(f"field {key!r} must be a list")
    return value


def _str_set(value: Any, key: str) -> set[str]:
    return {_as_str(item, key) for item in _as_list(value, key)}


def _url_set(value: Any, key: str) -> set[str]:
    return {_as_url(item, key) for item in _as_list(value, key)}


def _as_enum(enum_type: type, value: Any, key: str) -> Any:
    try:
        return enum_type(value)
    except ValueError:
        raise ValueError(f"field {key!r} has unknown value {value!r}") from None


def _as_sha256(value: Any, key: str) -> bytes:
    text = _as_str(value, key)
    if text[:2] in ("0x", "0X"):
        text = text[2:]
    if len(text) != 64 or not _HEX_RE.fullmatch(text):
        raise ValueError(f"field {key!r} must be 32 hex-encoded bytes")
    return bytes.fromhex(text)


def _as_u64(value: Any, key: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= _U64_MAX:
        raise ValueError(f"field {key!r} must be an unsigned integer")
    return value


def _as_date(value: Any, key: str) -> datetime.date:
    text = _as_str(value, key)
    try:
        return datetime.date.fromisoformat(text)
    except ValueError:
        raise ValueError(f"field {key!r} is not a date: {text!r}") from None


def _skip_errors(value: Any, key: str, parse: Callable[[Any], _T]) -> list[_T]:
    """Parse every list entry, silently dropping the ones that are invalid."""
    parsed = []
    for entry in _as_list(value, key):
        try:
            parsed.append(parse(entry))
        except ValueError:
            continue
    return parsed


@dataclass
class Device:
    """A BeagleBoard.org board."""

    name: str
    tags: set[str]
    description: str
    flasher: Flasher
    icon: Optional[str] = None
    documentation: Optional[str] = None
    instructions: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Any) -> "Device":
        data = _mapping(data, "device")
        return cls(
            name=_as_str(_require(data, "name"), "name"),
            tags=_str_set(_require(data, "tags"), "tags"),
            description=_as_str(_require(data, "description"), "description"),
            flasher=_as_enum(Flasher, _require(data, "flasher"), "flasher"),
            icon=_optional(data, "icon", _as_url),
            documentation=_optional(data, "documentation", _as_url),
            instructions=_optional(data, "instructions", _as_str),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "tags": sorted(self.tags),
            "icon": self.icon,
            "description": self.description,
            "flasher": self.flasher.value,
            "documentation": self.documentation,
            "instructions": self.instructions,
        }


@dataclass
class Imager:
    """Remote config locations and the list of known boards."""

    remote_configs: set[str] = field(default_factory=set)
    devices: list[Device] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Any) -> "Imager":
        data = _mapping(data, "imager")
        remote = data["remote_configs"] if "remote_configs" in data else []
        devices = data["devices"] if "devices" in data else []
        return cls(
            remote_configs=_url_set(remote, "remote_configs"),
            devices=_skip_errors(devices, "devices", Device.from_dict),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "remote_configs": sorted(self.remote_configs),
            "devices": [device.to_dict() for device in self.devices],
        }


@dataclass
class OsImage:
    """A single OS image for one or more boards."""

    name: str
    description: str
    icon: str
    url: str
    image_download_sha256: bytes
    extract_size: int
    release_date: datetime.date
    devices: set[str]
    tags: set[str] = field(default_factory=set)
    init_format: InitFormat = InitFormat.NONE
    bmap: Optional[str] = None
    info_text: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Any) -> "OsImage":
        data = _mapping(data, "OS image")
        return cls(
            name=_as_str(_require(data, "name"), "name"),
            description=_as_str(_require(data, "description"), "description"),
            icon=_as_url(_require(data, "icon"), "icon"),
            url=_as_url(_require(data, "url"), "url"),
            image_download_sha256=_as_sha256(
                _require(data, "image_download_sha256"), "image_download_sha256"
            ),
            extract_size=_as_u64(_require(data, "extract_size"), "extract_size"),
            release_date=_as_date(_require(data, "release_date"), "release_date"),
            devices=_str_set(_require(data, "devices"), "devices"),
            tags=_str_set(data["tags"], "tags") if "tags" in data else set(),
            init_format=(
                _as_enum(InitFormat, data["init_format"], "init_format")
                if "init_format" in data
                else InitFormat.NONE
            ),
            bmap=_optional(data, "bmap", _as_url),
            info_text=_optional(data, "info_text", _as_str),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "icon": self.icon,
            "url": self.url,
            "image_download_sha256": self.image_download_sha256.hex(),
            "extract_size": self.extract_size,
            "release_date": self.release_date.isoformat(),
            "devices": sorted(self.devices),
            "tags": sorted(self.tags),
            "init_format": self.init_format.value,
            "bmap": self.bmap,
            "info_text": self.info_text,
        }

    def has_board_image(self, tags: set[str]) -> bool:
        """Whether this image suits a board with the given tags."""
        return not set(tags).isdisjoint(self.devices)


@dataclass
class OsSubList:
    """A named group of OS list items."""

    name: str
    description: str
    icon: str
    subitems: list["OsListItem"]
    flasher: Flasher = Flasher.SD_CARD

    @classmethod
    def from_dict(cls, data: Any) -> "OsSubList":
        data = _mapping(data, "OS sublist")
        return cls(
            name=_as_str(_require(data, "name"), "name"),
            description=_as_str(_require(data, "description"), "description"),
            icon=_as_url(_require(data, "icon"), "icon"),
            flasher=(
                _as_enum(Flasher, data["flasher"], "flasher")
                if "flasher" in data
                else Flasher.SD_CARD
            ),
            subitems=_skip_errors(_require(data, "subitems"), "subitems", parse_os_list_item),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "icon": self.icon,
            "flasher": self.flasher.value,
            "subitems": [item.to_dict() for item in self.subitems],
        }

    def has_board_image(self, tags: set[str]) -> bool:
        """Whether any item of the sublist, at any depth, suits the board."""
        return any(item.has_board_image(tags) for item in self.subitems)


@dataclass
class OsRemoteSubList:
    """A sublist whose items are stored at a remote URL."""

    name: str
    description: str
    icon: str
    devices: set[str]
    subitems_url: str
    flasher: Flasher = Flasher.SD_CARD

    @classmethod
    def from_dict(cls, data: Any) -> "OsRemoteSubList":
        data = _mapping(data, "OS remote sublist")
        return cls(
            name=_as_str(_require(data, "name"), "name"),
            description=_as_str(_require(data, "description"), "description"),
            icon=_as_url(_require(data, "icon"), "icon"),
            flasher=(
                _as_enum(Flasher, data["flasher"], "flasher")
                if "flasher" in data
                else Flasher.SD_CARD
            ),
            devices=_str_set(_require(data, "devices"), "devices"),
            subitems_url=_as_url(_require(data, "subitems_url"), "subitems_url"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "icon": self.icon,
            "flasher": self.flasher.value,
            "devices": sorted(self.devices),
            "subitems_url": self.subitems_url,
        }

    def has_board_image(self, tags: set[str]) -> bool:
        """Whether the remote list declares an image for the board."""
        return not set(tags).isdisjoint(self.devices)

    def resolve(self, subitems: list["OsListItem"]) -> OsSubList:
        """Build the local sublist once the remote items have been fetched."""
        return OsSubList(
            name=self.name,
            description=self.description,
            icon=self.icon,
            flasher=self.flasher,
            subitems=list(subitems),
        )


OsListItem = Union[OsImage, OsSubList, OsRemoteSubList]


def parse_os_list_item(data: Any) -> OsListItem:
    """Parse an OS list entry as an image, a sublist or a remote sublist, in that order."""
    errors = []
    for kind in (OsImage, OsSubList, OsRemoteSubList):
        try:
            return kind.from_dict(data)
        except ValueError as exc:
            errors.append(f"{kind.__name__}: {exc}")
    raise ValueError("not a valid OS list item (" + "; ".join(errors) + ")")


@dataclass
class Config:
    """The whole distros.json document."""

    os_list: list[OsListItem]
    imager: Imager = field(default_factory=Imager)

    @classmethod
    def from_dict(cls, data: Any) -> "Config":
        data = _mapping(data, "config")
        imager = Imager.from_dict(data["imager"]) if "imager" in data else Imager()
        return cls(
            imager=imager,
            os_list=_skip_errors(_require(data, "os_list"), "os_list", parse_os_list_item),
        )

    @classmethod
    def from_json(cls, text: Union[str, bytes]) -> "Config":
        return cls.from_dict(json.loads(text))

    def to_dict(self) -> dict[str, Any]:
        return {
            "imager": self.imager.to_dict(),
            "os_list": [item.to_dict() for item in self.os_list],
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    def extend(self, configs: Iterable["Config"]) -> None:
        """Merge other configs into this one."""
        for config in configs:
            self.imager.remote_configs |= config.imager.remote_configs

            for other in config.imager.devices:
                mine = next((d for d in self.imager.devices if d.name == other.name), None)
                if mine is None:
                    self.imager.devices.append(copy.deepcopy(other))
                    continue
                mine.tags |= other.tags
                mine.flasher = other.flasher
                if other.documentation is not None:
                    mine.documentation = other.documentation
                if other.icon is not None:
                    mine.icon = other.icon

            for item in config.os_list:
                if item not in self.os_list:
                    self.os_list.append(copy.deepcopy(item))