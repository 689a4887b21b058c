import asyncio
import queue

from bbimager.progress import Flashing, Preparing, Verifying, send_status


def test_send_status_delivers_message():
    chan = queue.Queue()
    send_status(chan, Preparing())
    send_status(chan, Flashing(0.5))
    send_status(chan, Verifying())
    assert [chan.get_nowait() for _ in range(3)] == [Preparing(), Flashing(0.5), Verifying()]


def test_full_queue_drops_message():
    chan = queue.Queue(maxsize=1)
    send_status(chan, Preparing())
    send_status(chan, Verifying())
    assert chan.get_nowait() == Preparing()
    assert chan.empty()


def test_full_asyncio_queue_drops_message():
    chan = asyncio.Queue(maxsize=1)
    send_status(chan, Flashing(0.25))
    send_status(chan, Flashing(0.75))
    assert chan.qsize() == 1
    assert chan.get_nowait() == Flashing(0.25)


def test_no_channel_is_ignored():
    chan = queue.Queue()
    send_status(None, Preparing())
    send_status(chan, Verifying())
    assert chan.get_nowait() == Verifying()
    assert chan.empty()


def test_status_equality():
    assert Flashing(0.5) == Flashing(0.5)
    assert Flashing(0.5).progress == 0.5
    assert Preparing() == Preparing()
    assert not (Preparing() == Verifying())