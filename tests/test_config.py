import datetime

import pytest

from bbimager.config import (
    Config,
    Device,
    Flasher,
    Imager,
    InitFormat,
    OsImage,
    OsRemoteSubList,
    OsSubList,
    parse_os_list_item,
)

SHA = "ab" * 32


def image_dict(name="Debian", devices=("beaglebone",)):
    return {
        "name": name,
        "description": "An image",
        "icon": "https://example.com/icon.png",
        "url": "https://example.com/image.img.xz",
        "image_download_sha256": SHA,
        "extract_size": 1024,
        "release_date": "2024-05-01",
        "devices": list(devices),
    }


def device_dict(name="BeagleBone Black", tags=("beaglebone",), **extra):
    data = {
        "name": name,
        "tags": list(tags),
        "description": "A board",
        "flasher": "SdCard",
    }
    data.update(extra)
    return data


def sublist_dict():
    return {
        "name": "Testing",
        "description": "Testing images",
        "icon": "https://example.com/testing.png",
        "subitems": [image_dict("Nested", ("pocketbeagle",))],
    }


def remote_dict():
    return {
        "name": "CI",
        "description": "CI images",
        "icon": "https://example.com/ci.png",
        "devices": ["beagleplay"],
        "subitems_url": "https://example.com/ci.json",
    }


def config_dict():
    return {
        "imager": {
            "remote_configs": ["https://example.com/remote.json"],
            "devices": [device_dict()],
        },
        "os_list": [image_dict(), sublist_dict(), remote_dict()],
    }


def test_parse_image_defaults():
    item = parse_os_list_item(image_dict())
    assert isinstance(item, OsImage)
    assert item.image_download_sha256 == bytes.fromhex(SHA)
    assert item.release_date == datetime.date(2024, 5, 1)
    assert item.tags == set()
    assert item.init_format is InitFormat.NONE
    assert item.bmap is None


def test_untagged_dispatch():
    config = Config.from_dict(config_dict())
    kinds = [type(item) for item in config.os_list]
    assert kinds == [OsImage, OsSubList, OsRemoteSubList]
    assert config.os_list[1].flasher is Flasher.SD_CARD
    assert config.os_list[2].flasher is Flasher.SD_CARD


def test_invalid_items_are_skipped():
    data = config_dict()
    data["os_list"].insert(0, {"name": "broken"})
    data["imager"]["devices"].append({"name": "no tags"})
    config = Config.from_dict(data)
    assert [item.name for item in config.os_list] == ["Debian", "Testing", "CI"]
    assert [d.name for d in config.imager.devices] == ["BeagleBone Black"]


def test_missing_imager_defaults():
    config = Config.from_dict({"os_list": []})
    assert config.imager == Imager()
    assert config.os_list == []


def test_missing_os_list_is_error():
    with pytest.raises(ValueError):
        Config.from_dict({"imager": {}})


def test_bad_url_is_error():
    data = image_dict()
    data["icon"] = "not a url"
    with pytest.raises(ValueError):
        OsImage.from_dict(data)


def test_bad_sha_is_error():
    data = image_dict()
    data["image_download_sha256"] = "abcd"
    with pytest.raises(ValueError):
        OsImage.from_dict(data)


def test_garbage_item_is_error():
    with pytest.raises(ValueError):
        parse_os_list_item({"name": "x"})


def test_device_requires_flasher():
    data = device_dict()
    del data["flasher"]
    with pytest.raises(ValueError):
        Device.from_dict(data)


def test_sha_prefix_and_case_normalised():
    data = image_dict()
    data["image_download_sha256"] = "0x" + SHA.upper()
    assert OsImage.from_dict(data).to_dict()["image_download_sha256"] == SHA


def test_enum_values_round_trip():
    data = image_dict()
    data["init_format"] = "sysconf"
    image = OsImage.from_dict(data)
    assert image.init_format is InitFormat.SYSCONF
    assert image.to_dict()["init_format"] == "sysconf"

    device = Device.from_dict(device_dict(flasher="BeagleConnectFreedom"))
    assert device.flasher is Flasher.BEAGLE_CONNECT_FREEDOM
    assert device.to_dict()["flasher"] == "BeagleConnectFreedom"


def test_unknown_flasher_is_error():
    with pytest.raises(ValueError):
        Device.from_dict(device_dict(flasher="Floppy"))


def test_json_round_trip():
    config = Config.from_dict(config_dict())
    assert Config.from_json(config.to_json()) == config


def test_has_board_image():
    config = Config.from_dict(config_dict())
    image, sublist, remote = config.os_list
    assert image.has_board_image({"beaglebone"})
    assert not image.has_board_image({"pocketbeagle"})
    assert sublist.has_board_image({"pocketbeagle"})
    assert not sublist.has_board_image({"beaglebone"})
    assert remote.has_board_image({"beagleplay", "other"})
    assert not remote.has_board_image(set())


def test_resolve_remote_sublist():
    remote = OsRemoteSubList.from_dict(remote_dict())
    nested = OsImage.from_dict(image_dict("Nested"))
    resolved = remote.resolve([nested])
    assert resolved == OsSubList(
        name=remote.name,
        description=remote.description,
        icon=remote.icon,
        subitems=[nested],
        flasher=remote.flasher,
    )


def test_extend_merges_devices_and_items():
    base = Config.from_dict(config_dict())
    other = Config.from_dict(
        {
            "imager": {
                "remote_configs": ["https://example.com/second.json"],
                "devices": [
                    device_dict(
                        tags=("bbb",),
                        flasher="Msp430Usb",
                        documentation="https://example.com/docs",
                        description="Changed",
                    ),
                    device_dict(name="PocketBeagle", tags=("pocketbeagle",)),
                ],
            },
            "os_list": [image_dict(), image_dict("Fresh")],
        }
    )
    base.extend([other])

    assert base.imager.remote_configs == {
        "https://example.com/remote.json",
        "https://example.com/second.json",
    }
    names = [d.name for d in base.imager.devices]
    assert names == ["BeagleBone Black", "PocketBeagle"]
    merged = base.imager.devices[0]
    assert merged.tags == {"beaglebone", "bbb"}
    assert merged.flasher is Flasher.MSP430_USB
    assert merged.documentation == "https://example.com/docs"
    assert merged.description == "A board"
    assert merged.icon is None
    assert [item.name for item in base.os_list] == ["Debian", "Testing", "CI", "Fresh"]


def test_extend_keeps_icon_when_absent():
    base = Config.from_dict(
        {
            "imager": {"devices": [device_dict(icon="https://example.com/b.png")]},
            "os_list": [],
        }
    )
    base.extend([Config.from_dict({"imager": {"devices": [device_dict()]}, "os_list": []})])
    assert base.imager.devices[0].icon == "https://example.com/b.png"