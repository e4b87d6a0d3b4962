"""Shared fixtures: a scripted fake controller and a virtual-time scheduler."""

from collections import deque
from urllib.parse import unquote_plus

import pytest

from reprap_sender.scheduler import EventLoopScheduler
from reprap_sender.session import PrinterSession
from reprap_sender.utils.config import Settings
from reprap_sender.utils.exceptions import TransportUnreachableError


def make_poll(
    state="I",
    x=0.0,
    y=0.0,
    z=0.0,
    e=0.0,
    bed=20.0,
    head=21.0,
    seq=0,
    resp="",
    buff=800,
    homed=(1, 1, 1),
    **extra,
):
    """Build an rr_poll reply the way the firmware lays it out."""
    reply = {
        "poll": [state, x, y, z, e, bed, head],
        "seq": seq,
        "resp": resp,
        "buff": buff,
        "hx": homed[0],
        "hy": homed[1],
        "hz": homed[2],
        "probe": "535",
        "reprap_name": "Ormerod",
    }
    reply.update(extra)
    return reply


class FakeTransport:
    """In-memory controller: records every request and answers from a script."""

    def __init__(self):
        self.requests = []
        self.poll_replies = deque()
        self.default_poll = make_poll()
        self.gcode_buffer = 800
        self.files = ["cube.g", "vase.g"]
        self.unreachable = False
        self.fail_next = 0
        self.closed = False

    def get(self, path, query=""):
        self.requests.append((path, query))
        if self.unreachable:
            raise TransportUnreachableError("controller down", path)
        if self.fail_next > 0:
            self.fail_next -= 1
            raise TransportUnreachableError("dropped request", path)
        if path == "rr_gcode":
            return {"buff": self.gcode_buffer}
        if path == "rr_poll":
            if self.poll_replies:
                return self.poll_replies.popleft()
            return dict(self.default_poll)
        if path == "rr_files":
            return {"files": list(self.files)}
        raise TransportUnreachableError(f"unknown endpoint {path}", path)

    def close(self):
        self.closed = True

    def gcode_batches(self):
        """Decoded rr_gcode payloads (lists of lines), empty refreshes skipped."""
        batches = []
        for path, query in self.requests:
            if path != "rr_gcode" or not query:
                continue
            assert query.startswith("gcode=")
            batches.append(unquote_plus(query[len("gcode="):]).split("\n"))
        return batches

    def gcode_commands(self):
        return ["\n".join(batch) for batch in self.gcode_batches()]

    def count(self, path):
        return sum(1 for p, _ in self.requests if p == path)


class RecordingQueue(list):
    """Event sink that keeps every event in order."""

    def put(self, item, block=True, timeout=None):
        self.append(item)

    def of_kind(self, kind):
        return [evt for evt in self if evt[0] == kind]


# Fixtures

@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def scheduler():
    return EventLoopScheduler.virtual()


@pytest.fixture
def events():
    return RecordingQueue()


@pytest.fixture
def settings(tmp_path):
    return Settings(filepath=str(tmp_path / "settings.json"))


@pytest.fixture
def session(settings, transport, scheduler, events):
    s = PrinterSession(
        settings,
        transport=transport,
        scheduler=scheduler,
        ui_q=events,
        clock=scheduler.now_ms,
    )
    yield s
    s.shutdown()


@pytest.fixture
def connected_session(session, scheduler):
    """Session after connect() and one idle status poll."""
    session.connect()
    scheduler.advance(0)
    return session
