"""Tests for the headless command-line front end."""

import io

import pytest

import reprap_sender.__main__ as cli
from conftest import FakeTransport, make_poll
from reprap_sender.__main__ import (
    ConsolePresenter,
    _load_settings,
    _status_line,
    _WhenReady,
    build_parser,
    main,
)
from reprap_sender.session import PrinterSession
from reprap_sender.utils.exceptions import SettingsValidationError, TransportUnreachableError


def test_parser_print_command():
    args = build_parser().parse_args(["--host", "10.0.0.5", "print", "part.gcode", "--height", "12"])
    assert args.command == "print"
    assert args.path == "part.gcode"
    assert args.height == 12.0
    assert args.host == "10.0.0.5"


def test_parser_requires_command():
    with pytest.raises(SystemExit):
        build_parser().parse_args([])


def test_load_settings_applies_overrides(tmp_path):
    args = build_parser().parse_args([
        "--settings", str(tmp_path / "s.json"),
        "--host", "192.168.1.20",
        "--interval", "500",
        "monitor",
    ])
    settings = _load_settings(args)
    assert settings.get("host") == "192.168.1.20"
    assert settings.get("poll_interval_ms") == 500


def test_load_settings_rejects_bad_interval(tmp_path):
    args = build_parser().parse_args(["--settings", str(tmp_path / "s.json"), "--interval", "0", "monitor"])
    with pytest.raises(SettingsValidationError):
        _load_settings(args)


def test_status_line_while_printing(connected_session, scheduler, transport):
    connected_session.estimator.set_layer_height(0.25)
    transport.default_poll = make_poll(state="P", z=0.5, bed=60, head=200)
    connected_session.set_object_height(2.5)
    scheduler.advance(1000)
    line = _status_line(connected_session.view())
    assert line.startswith("printing | X0 Y0 Z0.5 | bed 60C head 200C | layer 2/10")


def test_presenter_prints_status_only_on_change(connected_session):
    out = io.StringIO()
    presenter = ConsolePresenter(out)
    view = connected_session.view()
    presenter(("status", view))
    presenter(("status", view))
    presenter(("message", "success", "Upload done"))
    presenter(("log", "INFO", "quiet"))
    assert out.getvalue().splitlines() == [_status_line(view), "[success] Upload done"]


def test_when_ready_runs_action_once_connected(connected_session):
    calls = []
    ready = _WhenReady(connected_session, 5, lambda: calls.append(1) or True)
    assert ready() is True
    assert calls == [1]
    assert not ready.failed


def test_when_ready_times_out(session, scheduler):
    ready = _WhenReady(session, 1, lambda: True)
    assert ready() is False
    scheduler.advance(1500)
    assert ready() is True
    assert ready.failed


class RefusingTransport(FakeTransport):
    """Controller that drops every request carrying one G-code word."""

    def __init__(self, word):
        super().__init__()
        self.word = word

    def get(self, path, query=""):
        if path == "rr_gcode" and self.word in query:
            self.requests.append((path, query))
            raise TransportUnreachableError("dropped request", path)
        return super().get(path, query)


@pytest.fixture
def run_cli(monkeypatch, tmp_path):
    """Run ``main`` against an in-memory controller instead of HTTP."""

    def run(transport, *argv):
        monkeypatch.setattr(cli, "setup_logging", lambda **kwargs: None)
        monkeypatch.setattr(
            cli,
            "PrinterSession",
            lambda settings, scheduler=None: PrinterSession(
                settings, transport=transport, scheduler=scheduler
            ),
        )
        return main([
            "--settings", str(tmp_path / "s.json"),
            "--host", "10.0.0.5",
            "--connect-timeout", "2",
            *argv,
        ])

    return run


def test_rm_succeeds_when_idle(run_cli):
    transport = FakeTransport()
    assert run_cli(transport, "rm", "cube.g") == 0
    assert "M30 cube.g" in transport.gcode_commands()


def test_rm_blocked_while_printing_exits_1(run_cli):
    transport = FakeTransport()
    transport.default_poll = make_poll(state="P")
    assert run_cli(transport, "rm", "cube.g") == 1
    assert "M30 cube.g" not in transport.gcode_commands()


def test_rm_unconfirmed_exits_1(run_cli):
    transport = RefusingTransport("M30")
    assert run_cli(transport, "rm", "cube.g") == 1


def test_run_unconfirmed_exits_1(run_cli):
    transport = RefusingTransport("M23")
    assert run_cli(transport, "run", "cube.g") == 1
