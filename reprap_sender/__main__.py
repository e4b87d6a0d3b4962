#!/usr/bin/env python3
# RepRap Sender (RepRap web control engine)
# Copyright (C) 2026 Bob Kolbasowski
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.
#
# Optional (not required by the license): If you make improvements, please consider
# contributing them back upstream (e.g., via a pull request) so others can benefit.
#
# SPDX-License-Identifier: GPL-3.0-or-later

"""Headless front end: ``python -m reprap_sender --host 192.168.1.20 monitor``."""

from __future__ import annotations

import argparse
import logging
import os
import sys
import threading
from typing import Callable

from . import __version__
from .event_queue import drain_events
from .gcode_files import read_gcode_file
from .progress import durations_text
from .scheduler import EventLoopScheduler
from .session import PrinterSession
from .types import JobMode, OperatingMode, SessionView
from .utils.config import Settings
from .utils.exceptions import RepRapSenderException
from .utils.logging_config import setup_logging

logger = logging.getLogger(__name__)

EVENT_DRAIN_INTERVAL_MS = 50
CONNECT_TIMEOUT_DEFAULT = 10.0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="reprap-sender",
        description="Control a RepRap/Duet controller over its rr_* HTTP API.",
    )
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    p.add_argument("--host", help="Controller host or URL (default: settings 'host')")
    p.add_argument("--settings", metavar="PATH", help="Settings JSON file")
    p.add_argument("--interval", type=int, metavar="MS", help="Status poll interval")
    p.add_argument("--layer-height", type=float, metavar="mm", help="Layer height for progress")
    p.add_argument("--connect-timeout", type=float, default=CONNECT_TIMEOUT_DEFAULT, metavar="S",
                   help="Seconds to wait for the first status reply")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging on the console")

    sub = p.add_subparsers(dest="command", required=True)
    sub.add_parser("monitor", help="Poll and print status until interrupted")
    sub.add_parser("ls", help="List files on the controller's SD card")
    rm = sub.add_parser("rm", help="Delete a file from the SD card")
    rm.add_argument("name")
    run = sub.add_parser("run", help="Print a file already on the SD card")
    run.add_argument("name")
    pr = sub.add_parser("print", help="Stream a local G-code file and print it")
    pr.add_argument("path")
    pr.add_argument("--height", type=float, metavar="mm", help="Object height (default: from file)")
    up = sub.add_parser("upload", help="Store a local G-code file on the SD card")
    up.add_argument("path")
    return p


def _load_settings(args: argparse.Namespace) -> Settings:
    overrides = {}
    if args.host:
        overrides["host"] = args.host
    if args.interval is not None:
        overrides["poll_interval_ms"] = args.interval
    if args.layer_height is not None:
        overrides["layer_height_mm"] = args.layer_height
    settings = Settings(filepath=args.settings)
    settings.load()
    for key, value in overrides.items():
        settings.set(key, value)
    settings.validate()
    return settings


def _status_line(view: SessionView) -> str:
    parts = [view.mode.value]
    pos = view.positions
    parts.append(f"X{pos.x:g} Y{pos.y:g} Z{pos.z:g}")
    if view.bed_temperature is not None:
        parts.append(f"bed {view.bed_temperature:g}C head {view.head_temperature:g}C")
    if view.mode is OperatingMode.PRINTING:
        total = view.estimated_total_layers or "?"
        parts.append(f"layer {view.current_layer}/{total} {view.completion_percent}%")
        parts.extend(f"{label}: {value}" for label, value in durations_text(view.timings))
    if view.upload_percent is not None:
        parts.append(f"upload {view.upload_percent}%")
    return " | ".join(parts)


class ConsolePresenter:
    """Prints session events; shows a status line only when it changes."""

    def __init__(self, out=None):
        self.out = out or sys.stdout
        self._last_status: str | None = None

    def write(self, text: str) -> None:
        print(text, file=self.out, flush=True)

    def __call__(self, evt) -> None:
        kind = evt[0]
        if kind == "status":
            line = _status_line(evt[1])
            if line != self._last_status:
                self._last_status = line
                self.write(line)
        elif kind == "message":
            self.write(f"[{evt[1]}] {evt[2]}")
        elif kind == "files":
            self.write("Files: " + (", ".join(evt[1]) or "(none)"))
        elif kind == "stream_error":
            self.write(f"[error] {evt[1]}")
        elif kind == "layer":
            self.write(f"Layer {evt[1]}")
        elif kind == "log" and evt[1] in ("WARNING", "ERROR"):
            self.write(f"[{evt[1].lower()}] {evt[2]}")


def _run_loop(
    session: PrinterSession,
    presenter: ConsolePresenter,
    on_tick: Callable[[], bool],
) -> None:
    """Run the scheduler, draining events every 50ms until ``on_tick`` returns True."""
    stop_evt = threading.Event()

    def drain() -> None:
        drain_events(
            session.ui_q,
            presenter,
            on_error=lambda evt, exc: logger.error(f"Event {evt[0]} failed: {exc}"),
        )
        if on_tick():
            stop_evt.set()
            return
        session.scheduler.after(EVENT_DRAIN_INTERVAL_MS, drain)

    session.scheduler.after(0, drain)
    try:
        session.scheduler.run_forever(stop_evt)
    except KeyboardInterrupt:
        presenter.write("Interrupted")


class _WhenReady:
    """Runs ``action`` once the first real status arrives, then tracks completion."""

    def __init__(self, session: PrinterSession, timeout_s: float, action: Callable[[], bool]):
        self.session = session
        self.deadline = session.clock() + timeout_s * 1000.0
        self.action = action
        self.started = False
        self.failed = False

    def __call__(self) -> bool:
        if not self.started:
            if self.session.mode is not OperatingMode.DISCONNECTED:
                self.started = True
                try:
                    return self.action()
                except RepRapSenderException as exc:
                    logger.error(str(exc))
                    self.failed = True
                    return True
            if self.session.clock() > self.deadline:
                logger.error("No status reply from controller")
                self.failed = True
                return True
            return False
        return not self.session.uploader.active


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(console_level=logging.DEBUG if args.verbose else logging.WARNING)
    try:
        settings = _load_settings(args)
        data = read_gcode_file(args.path) if args.command in ("print", "upload") else b""
        session = PrinterSession(settings, scheduler=EventLoopScheduler())
    except (RepRapSenderException, OSError) as exc:
        logger.error(str(exc))
        return 2
    presenter = ConsolePresenter()

    with session:
        if args.command == "ls":
            files = session.refresh_file_list()
            if files is None:
                presenter.write("Controller unreachable")
                return 1
            for name in files:
                presenter.write(name)
            return 0

        session.connect()
        if args.command == "monitor":
            _run_loop(session, presenter, lambda: False)
            return 0

        def action() -> bool:
            if args.command in ("rm", "run"):
                intent = session.delete_remote_file if args.command == "rm" else session.print_remote_file
                if not intent(args.name):
                    logger.error(f"{args.command} {args.name}: not accepted by the controller")
                    ready.failed = True
                return True
            mode = JobMode.DIRECT_PRINT if args.command == "print" else JobMode.STORE_ONLY
            session.start_upload(os.path.basename(args.path), data, mode)
            if getattr(args, "height", None) is not None:
                session.set_object_height(args.height)
            return False

        ready = _WhenReady(session, args.connect_timeout, action)
        _run_loop(session, presenter, ready)
        drain_events(session.ui_q, presenter)
        return 1 if ready.failed else 0


if __name__ == "__main__":
    sys.exit(main())
