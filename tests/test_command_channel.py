"""Unit tests for G-code escaping and the command channel."""

import pytest

from conftest import FakeTransport
from reprap_sender.command_channel import CommandChannel, escape_gcode, parse_buffer_free
from reprap_sender.types import UNREACHABLE, Ack
from reprap_sender.utils.exceptions import InvalidParameterError


@pytest.fixture
def channel(transport):
    return CommandChannel(transport)


class TestEscapeGcode:
    """Escaping for the rr_gcode query string."""

    def test_spaces_become_plus(self):
        assert escape_gcode("G1 X10 F200") == "G1+X10+F200"

    def test_minus_is_escaped(self):
        assert escape_gcode("G1 X-10") == "G1+X%2D10"

    def test_every_minus_and_plus_is_escaped(self):
        assert escape_gcode("G1 X-1 Y-2 Z+3 E+4") == "G1+X%2D1+Y%2D2+Z%2B3+E%2B4"

    def test_newlines_are_escaped_first(self):
        assert escape_gcode("M120\nG91\nG1 Z-0.5 F200\nM121") == (
            "M120%0AG91%0AG1+Z%2D0.5+F200%0AM121"
        )

    def test_literal_plus_not_confused_with_space(self):
        assert escape_gcode("M117 a+b") == "M117+a%2Bb"

    def test_tabs_are_whitespace(self):
        assert escape_gcode("G28\tX") == "G28+X"


class TestParseBufferFree:
    def test_reads_buff(self):
        assert parse_buffer_free({"buff": 512}) == 512

    def test_missing_is_none(self):
        assert parse_buffer_free({}) is None

    def test_negative_clamped_to_zero(self):
        assert parse_buffer_free({"buff": -4}) == 0

    def test_garbage_is_none(self):
        assert parse_buffer_free({"buff": "lots"}) is None


class TestCommandChannel:
    """Request routing and the Ack/UNREACHABLE contract."""

    def test_command_goes_to_rr_gcode(self, channel, transport):
        ack = channel.send("command", "M115")
        assert transport.requests == [("rr_gcode", "gcode=M115")]
        assert isinstance(ack, Ack)
        assert ack.buffer_free == 800

    def test_empty_command_is_a_bare_refresh(self, channel, transport):
        channel.send("command", "")
        assert transport.requests == [("rr_gcode", "")]

    def test_refresh_buffer_is_a_status_poll(self, channel, transport):
        ack = channel.refresh_buffer()
        assert transport.requests == [("rr_poll", "")]
        assert isinstance(ack, Ack)

    def test_poll_and_file_list_endpoints(self, channel, transport):
        channel.send("poll")
        channel.send("fileList")
        assert [p for p, _ in transport.requests] == ["rr_poll", "rr_files"]

    def test_unknown_kind_rejected(self, channel):
        with pytest.raises(InvalidParameterError):
            channel.send("reboot")

    def test_unreachable_is_returned_not_raised(self, channel, transport):
        transport.unreachable = True
        result = channel.send_command("G28")
        assert result is UNREACHABLE
        assert not result

    def test_send_command_joins_lines(self, channel, transport):
        channel.send_command(["G28", "G1 X5"])
        assert transport.gcode_batches() == [["G28", "G1 X5"]]

    def test_list_remote_files(self, channel, transport):
        assert channel.list_remote_files() == ["cube.g", "vase.g"]

    def test_list_remote_files_unreachable(self, channel, transport):
        transport.unreachable = True
        assert channel.list_remote_files() is UNREACHABLE

    def test_list_remote_files_without_files_key(self):
        class NoFiles(FakeTransport):
            def get(self, path, query=""):
                self.requests.append((path, query))
                return {"err": 1}

        assert CommandChannel(NoFiles()).list_remote_files() == []

    def test_fetch_status_raw(self, channel, transport):
        raw = channel.fetch_status_raw()
        assert raw["poll"][0] == "I"
