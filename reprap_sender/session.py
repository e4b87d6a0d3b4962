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

"""Printer session: wires the poller, uploader and estimator together.

The session owns the local control flags and the read model. The presentation
layer calls intents on it and drains ``ui_q`` for events.
"""

from __future__ import annotations

import logging
import time
from dataclasses import replace
from typing import Any, Callable

from .command_channel import CommandChannel
from .event_queue import EventQueue
from .gcode_files import prepare_job
from .http_transport import HttpTransport
from .progress import LayerEstimator, find_object_height, to_duration_string
from .scheduler import EventLoopScheduler
from .session_commands import PrinterSessionCommandMixin
from .session_status import PrinterSessionStatusMixin
from .status_poller import StatusPoller
from .streaming import BufferEstimate, StreamingUploader, UploadOutcome
from .types import (
    ControlFlags,
    JobMode,
    ModeDecision,
    OperatingMode,
    PrintJob,
    SchedulerLike,
    SettingsLike,
    TransportLike,
)
from .utils.config import Settings
from .utils.constants import (
    CMD_FIRMWARE_INFO,
    HTTP_TIMEOUT_DEFAULT,
    LAYER_HEIGHT_DEFAULT,
    MAX_LAYER_LOG,
    POLL_INTERVAL_DEFAULT_MS,
)
from .utils.exceptions import InvalidParameterError, UploadBusyError

logger = logging.getLogger(__name__)

_MESSAGE_LEVELS = {
    "success": logging.INFO,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "danger": logging.ERROR,
}


def _wall_clock_ms() -> float:
    return time.time() * 1000.0


class PrinterSession(PrinterSessionCommandMixin, PrinterSessionStatusMixin):
    """Control session for one RepRap controller.

    Everything runs on the scheduler's thread: poll ticks, upload steps and
    intents must all be called from it.

    Events put on ``ui_q``:
        ("conn", reachable)
        ("mode", OperatingMode, diagnostic)
        ("message", kind, text)   kind is a reply kind (firmware, config, info,
                                  ...) or a notice level (success, warning, danger)
        ("log", level, text)
        ("files", names)
        ("stream_state", state, job_mode)
        ("stream_error", text)
        ("upload_progress", percent)
        ("progress", percent, layer, total_layers)
        ("layer", index, last_layer_ms)
        ("status", SessionView)

    Example:
        session = PrinterSession(Settings(overrides={"host": "192.168.1.20"}))
        session.connect()
        session.start_upload("part.gcode", data, JobMode.DIRECT_PRINT)
        session.scheduler.run_forever()
    """

    def __init__(
        self,
        settings: SettingsLike | None = None,
        transport: TransportLike | None = None,
        scheduler: SchedulerLike | None = None,
        ui_q: Any = None,
        clock: Callable[[], float] | None = None,
    ):
        self.settings = settings if settings is not None else Settings()
        self.ui_q = ui_q if ui_q is not None else EventQueue()
        self.scheduler = scheduler if scheduler is not None else EventLoopScheduler()
        self.clock = clock or _wall_clock_ms

        self._owns_transport = transport is None
        if transport is None:
            transport = HttpTransport(
                self.settings.get("host", ""),
                timeout=self.settings.get("http_timeout", HTTP_TIMEOUT_DEFAULT),
            )
        self.transport = transport
        self.channel = CommandChannel(transport)
        self.buffer = BufferEstimate()

        self.estimator = LayerEstimator(
            layer_height=self.settings.get("layer_height_mm", LAYER_HEIGHT_DEFAULT),
            max_layer_log=self.settings.get("max_layer_log", MAX_LAYER_LOG),
            clock=self.clock,
            on_layer_change=self._on_layer_change,
        )
        self.poller = StatusPoller(
            self.channel,
            self.scheduler,
            interval_ms=self.settings.get("poll_interval_ms", POLL_INTERVAL_DEFAULT_MS),
            on_result=self._on_poll_result,
        )
        self.uploader = StreamingUploader(
            self.channel,
            self.scheduler,
            self.buffer,
            flags_provider=lambda: self._flags,
            on_finished=self._on_upload_finished,
            events=self.ui_q,
            clock=self.clock,
        )

        self._flags = ControlFlags()
        self._snapshot = None
        self._decision = ModeDecision(OperatingMode.DISCONNECTED)
        self._reachable = None
        self._last_message = None
        self._firmware_version = None
        self._remote_files = ()
        self._suppress_plain_ack = bool(self.settings.get("suppress_plain_ack", True))
        self._half_step_jog = bool(self.settings.get("half_step_jog_enabled", False))

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown()
        return False

    @property
    def flags(self) -> ControlFlags:
        return self._flags

    @property
    def mode(self) -> OperatingMode:
        return self._decision.mode

    # ========================================================================
    # INTERNALS
    # ========================================================================

    def _emit(self, *event: Any) -> None:
        try:
            self.ui_q.put(event)
        except Exception as exc:
            logger.error(f"Failed to queue event {event[0]}: {exc}")

    def _message(self, kind: str, text: str) -> None:
        logger.log(_MESSAGE_LEVELS.get(kind, logging.INFO), text)
        self._emit("message", kind, text)

    def _set_flags(self, **changes: Any) -> ControlFlags:
        self._flags = replace(self._flags, **changes)
        return self._flags

    def _on_layer_change(self, layer: int, last_layer_ms: float | None) -> None:
        if last_layer_ms is None:
            logger.info(f"Layer {layer}")
        else:
            logger.info(f"Layer {layer} (previous took {to_duration_string(last_layer_ms)})")
        self._emit("layer", layer, last_layer_ms)

    def _on_upload_finished(self, outcome: UploadOutcome) -> None:
        job = outcome.job
        name = job.destination_name
        duration = to_duration_string(outcome.duration_ms)
        if job.mode is JobMode.STORE_ONLY:
            if outcome.completed:
                self._message("success", f"{name} Upload Complete in {duration}")
                self.refresh_file_list()
            else:
                self._message("danger", f"Upload of {name} failed: {outcome.error}")
        else:
            self._set_flags(web_streaming_active=False)
            if outcome.completed:
                self._message("success", f"Finished web printing {name} in {duration}")
            elif outcome.cancelled:
                self._message("warning", f"Web printing {name} stopped after {duration}")
            else:
                self._message("danger", f"Web printing {name} failed: {outcome.error}")
        self._refresh_mode()
        self._publish_status()

    # ========================================================================
    # CONNECTION
    # ========================================================================

    def connect(self) -> None:
        """Start talking to the controller: firmware query, file list, then polling."""
        if self._flags.polling_enabled:
            logger.debug("connect() ignored: already polling")
            return
        self._set_flags(polling_enabled=True)
        self._reachable = None
        self.poller.reset_sequence()
        logger.info("Connecting to controller")
        self._send(CMD_FIRMWARE_INFO, "Firmware query")
        self.refresh_file_list()
        self.poller.start()

    def disconnect(self) -> None:
        """Stop polling. A direct print loses its unsent remainder; uploads finish."""
        self.poller.stop()
        self._set_flags(polling_enabled=False, web_streaming_active=False, paused_by_user=False)
        self._reachable = None
        self._apply_decision(ModeDecision(OperatingMode.DISCONNECTED))
        logger.info("Disconnected")
        self._emit("conn", False)
        self._publish_status()

    def shutdown(self) -> None:
        """Stop everything unconditionally and release the transport."""
        self.uploader.abort()
        self.poller.stop()
        self._flags = ControlFlags()
        self._decision = ModeDecision(OperatingMode.DISCONNECTED)
        if self._owns_transport:
            close = getattr(self.transport, "close", None)
            if close is not None:
                close()
        logger.info("Session shut down")

    # ========================================================================
    # FILE SENDS
    # ========================================================================

    def start_upload(
        self,
        name: str,
        data: bytes | str,
        mode: JobMode | str = JobMode.DIRECT_PRINT,
    ) -> PrintJob:
        """Send a dropped G-code file: store it on the SD card or print it directly.

        Args:
            name: Original file name (its extension must be g, gco or gcode)
            data: File contents
            mode: JobMode or its value ("upload" / "print")

        Returns:
            The job now draining

        Raises:
            MalformedFileError: If the file is not G-code (nothing changes)
            NotConnectedError: If not connected
            UploadBusyError: If another job is still draining
        """
        if not isinstance(mode, JobMode):
            try:
                mode = JobMode(mode)
            except ValueError:
                raise InvalidParameterError(
                    "mode", mode, f"must be one of {', '.join(m.value for m in JobMode)}"
                )
        job = prepare_job(name, data, mode, started_at=self.clock())
        self._require_connected(f"send {name}")
        if self.uploader.active:
            raise UploadBusyError(
                f"Cannot start {job.destination_name}: "
                f"{self.uploader.job.destination_name} is still being sent"
            )

        if mode is JobMode.DIRECT_PRINT:
            self._set_flags(web_streaming_active=True, paused_by_user=False)
            self.estimator.reset()
            # None clears the previous job's height.
            self.set_object_height(find_object_height(job.lines))
            self._message("info", f"Web Printing {job.destination_name} started")
        else:
            self._message("info", f"File Upload of {job.destination_name} started")
        self.uploader.begin(job)
        self._refresh_mode()
        self._publish_status()
        return job
