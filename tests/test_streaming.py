"""Tests for batch packing and the streaming uploader."""

import random

import pytest

from conftest import RecordingQueue
from reprap_sender.command_channel import CommandChannel
from reprap_sender.streaming import (
    BufferEstimate,
    StreamingUploader,
    batch_cost,
    pack_batch,
)
from reprap_sender.types import ControlFlags, JobMode, PrintJob
from reprap_sender.utils.constants import MAX_UPLOAD_COMMANDS
from reprap_sender.utils.exceptions import UploadBusyError

PRINTING = ControlFlags(polling_enabled=True, web_streaming_active=True)


class Harness:
    """Uploader wired to a fake controller with switchable flags."""

    def __init__(self, transport, scheduler, flags=PRINTING):
        self.transport = transport
        self.scheduler = scheduler
        self.flags = flags
        self.events = RecordingQueue()
        self.finished = []
        self.buffer = BufferEstimate()
        self.uploader = StreamingUploader(
            CommandChannel(transport),
            scheduler,
            self.buffer,
            flags_provider=lambda: self.flags,
            on_finished=self.finished.append,
            events=self.events,
            clock=scheduler.now_ms,
        )

    def job(self, lines, mode=JobMode.DIRECT_PRINT, name="part.gcode"):
        return PrintJob.create(list(lines), name, mode, self.scheduler.now_ms())

    def sent_lines(self):
        return [line for batch in self.transport.gcode_batches() for line in batch]


@pytest.fixture
def harness(transport, scheduler):
    return Harness(transport, scheduler)


class TestPackBatch:
    """Greedy batch packing against the free-buffer estimate."""

    def test_stops_before_estimate(self):
        lines = ["G1 X10 Y1"] * 20  # 9 bytes each
        batch = pack_batch(lines, 100)
        # eight lines and seven joiners: 93 bytes; a ninth line would need 105
        assert len(batch) == 8
        assert batch_cost(batch) < 100

    def test_command_cap(self):
        batch = pack_batch(["M"] * 1000, 800)
        assert len(batch) == MAX_UPLOAD_COMMANDS

    def test_custom_command_cap(self):
        assert len(pack_batch(["G28"] * 100, 800, max_commands=10)) == 10

    def test_front_line_too_big_gives_empty_batch(self):
        assert pack_batch(["G1 X" + "1" * 200, "G28"], 150) == []

    def test_input_not_consumed(self):
        lines = ["G28", "G1 X1"]
        pack_batch(lines, 800)
        assert lines == ["G28", "G1 X1"]

    def test_random_batches_fit_and_are_prefixes(self):
        rng = random.Random(7)
        for _ in range(200):
            lines = ["G1 X" + "9" * rng.randint(0, 60) for _ in range(rng.randint(1, 400))]
            estimate = rng.randint(100, 800)
            batch = pack_batch(lines, estimate)
            assert batch == lines[: len(batch)]
            assert len(batch) <= MAX_UPLOAD_COMMANDS
            assert batch_cost(batch) < estimate


class TestBufferEstimate:
    def test_starts_unknown(self):
        assert BufferEstimate().value is None

    def test_negative_clamped(self):
        est = BufferEstimate()
        est.update(-10)
        assert est.value == 0

    def test_usable_is_capped_at_ceiling(self):
        est = BufferEstimate()
        est.update(5000)
        assert est.value == 5000
        assert est.usable() == 800

    def test_none_update_keeps_value(self):
        est = BufferEstimate()
        est.update(300)
        est.update(None)
        assert est.value == 300


class TestDirectPrint:
    """Direct printing: lines go straight to the controller."""

    def test_drains_every_line_in_order(self, harness, scheduler, transport):
        lines = [f"G1 X{i} Y{i % 7} E0.{i}" for i in range(500)]
        harness.uploader.begin(harness.job(lines))
        scheduler.run_until_idle()

        assert harness.sent_lines() == lines
        for batch in transport.gcode_batches():
            assert len(batch) <= MAX_UPLOAD_COMMANDS
            assert batch_cost(batch) < 800
        outcome = harness.finished[0]
        assert outcome.completed
        assert outcome.lines_sent == 500
        assert not harness.uploader.active

    def test_first_step_refreshes_unknown_estimate(self, harness, scheduler, transport):
        harness.uploader.begin(harness.job(["G28"]))
        scheduler.advance(0)
        assert transport.requests[0] == ("rr_poll", "")

    def test_batches_follow_small_estimate(self, harness, scheduler, transport):
        transport.gcode_buffer = 150
        transport.default_poll["buff"] = 150
        lines = ["G1 X10 Y10"] * 60
        harness.uploader.begin(harness.job(lines))
        scheduler.run_until_idle()

        assert harness.sent_lines() == lines
        assert all(batch_cost(b) < 150 for b in transport.gcode_batches())

    def test_low_buffer_waits_without_sending(self, harness, scheduler, transport):
        transport.default_poll["buff"] = 50
        harness.uploader.begin(harness.job(["G28", "G1 X1"]))
        scheduler.advance(200)

        assert transport.gcode_batches() == []
        assert transport.count("rr_poll") >= 5

        transport.default_poll["buff"] = 800
        scheduler.run_until_idle()
        assert harness.sent_lines() == ["G28", "G1 X1"]

    def test_unreachable_batch_is_resent(self, harness, scheduler, transport):
        lines = ["G28", "G1 X5", "G1 Y5"]
        harness.buffer.update(800)
        transport.fail_next = 1
        harness.uploader.begin(harness.job(lines))
        scheduler.run_until_idle()

        assert transport.gcode_batches() == [lines, lines]
        assert harness.finished[0].completed
        assert harness.finished[0].lines_sent == 3

    def test_stop_discards_remainder(self, harness, scheduler, transport):
        lines = [f"G1 X{i}" for i in range(1000)]
        harness.buffer.update(800)
        job = harness.job(lines)
        harness.uploader.begin(job)
        scheduler.advance(0)
        sent_before = len(harness.sent_lines())
        assert 0 < sent_before < 1000

        harness.flags = ControlFlags(polling_enabled=True)
        scheduler.run_until_idle()

        assert len(harness.sent_lines()) == sent_before
        assert job.remaining == 0
        outcome = harness.finished[0]
        assert outcome.cancelled
        assert not outcome.completed
        assert ("stream_state", "cancelled", "print") in harness.events

    def test_pause_holds_all_traffic(self, harness, scheduler, transport):
        harness.flags = ControlFlags(
            polling_enabled=True, web_streaming_active=True, paused_by_user=True
        )
        harness.buffer.update(800)
        harness.uploader.begin(harness.job(["G28"] * 10))
        scheduler.advance(5000)
        assert transport.requests == []

        harness.flags = PRINTING
        scheduler.run_until_idle()
        assert harness.sent_lines() == ["G28"] * 10

    def test_empty_batch_invalidates_estimate(self, harness, scheduler, transport):
        transport.default_poll["buff"] = 300
        long_line = "G1 X" + "1" * 500
        harness.uploader.begin(harness.job([long_line]))
        scheduler.advance(0)
        assert harness.buffer.value is None
        assert transport.gcode_batches() == []

        transport.default_poll["buff"] = 800
        scheduler.run_until_idle()
        assert harness.sent_lines() == [long_line]

    def test_line_longer_than_ceiling_aborts(self, harness, scheduler, transport):
        harness.buffer.update(800)
        harness.uploader.begin(harness.job(["G28", "M117 " + "x" * 900, "G1 X1"]))
        scheduler.run_until_idle()

        assert harness.sent_lines() == ["G28"]
        assert harness.events.of_kind("stream_error")
        outcome = harness.finished[0]
        assert outcome.error
        assert not outcome.completed


class TestStoreOnly:
    """SD card uploads: M28 ... M29, unaffected by pause or stop."""

    def test_upload_wraps_file_and_ignores_flags(self, transport, scheduler):
        harness = Harness(
            transport,
            scheduler,
            flags=ControlFlags(polling_enabled=True, paused_by_user=True),
        )
        lines = [f"G1 X{i}" for i in range(300)]
        harness.uploader.begin(harness.job(lines, JobMode.STORE_ONLY, name="cube.g"))
        scheduler.run_until_idle()

        commands = transport.gcode_commands()
        assert commands[0] == "M28 cube.g"
        assert commands[-1] == "M29"
        body = [line for batch in transport.gcode_batches()[1:-1] for line in batch]
        assert body == lines
        assert harness.finished[0].completed

    def test_upload_progress_events(self, transport, scheduler):
        transport.gcode_buffer = 100
        transport.default_poll["buff"] = 100
        harness = Harness(transport, scheduler, flags=ControlFlags())
        lines = ["G1 X" + "1" * 56] * 3  # one line per batch at 100 bytes free
        harness.uploader.begin(harness.job(lines, JobMode.STORE_ONLY, name="cube.g"))
        scheduler.run_until_idle()

        progress = [evt[1] for evt in harness.events.of_kind("upload_progress")]
        assert progress == [33, 66, 100]

    def test_close_is_retried_until_acknowledged(self, transport, scheduler):
        harness = Harness(transport, scheduler, flags=ControlFlags())
        harness.buffer.update(800)
        harness.uploader.begin(harness.job(["G28"], JobMode.STORE_ONLY, name="a.g"))
        scheduler.advance(5)  # opened and drained
        transport.fail_next = 1
        scheduler.run_until_idle()

        assert transport.gcode_commands()[-2:] == ["M29", "M29"]
        assert harness.finished[0].completed


class TestLifecycle:
    def test_second_begin_is_busy(self, harness):
        harness.uploader.begin(harness.job(["G28"]))
        with pytest.raises(UploadBusyError):
            harness.uploader.begin(harness.job(["G29"]))

    def test_abort_stops_immediately(self, harness, scheduler, transport):
        harness.uploader.begin(harness.job(["G28"] * 10))
        harness.uploader.abort()
        scheduler.run_until_idle()

        assert transport.requests == []
        assert not harness.uploader.active
        assert harness.finished == []
        assert ("stream_state", "stopped", "print") in harness.events

    def test_upload_percent_only_for_store_jobs(self, harness):
        harness.uploader.begin(harness.job(["G28"]))
        assert harness.uploader.upload_percent() is None
