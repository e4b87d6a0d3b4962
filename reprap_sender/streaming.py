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

"""Flow-controlled G-code upload and direct printing.

The uploader drains a ``PrintJob`` into the command channel in batches sized to
the controller's reported free buffer space. Each iteration is a scheduled
step; exactly one batch is in flight at a time and the next batch size is
decided from the previous acknowledgement.
"""

from __future__ import annotations

import enum
import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, Iterable

from .command_channel import CommandChannel
from .types import (
    AfterId,
    ControlFlags,
    EventQueueLike,
    JobMode,
    PrintJob,
    SchedulerLike,
    Unreachable,
)
from .utils.constants import (
    BATCH_JOINER_OVERHEAD,
    CMD_BEGIN_WRITE,
    CMD_END_WRITE,
    LOW_BUFFER_THRESHOLD,
    MAX_UPLOAD_BUFFER,
    MAX_UPLOAD_COMMANDS,
    UPLOAD_BUFFER_WAIT_MS,
    UPLOAD_PAUSE_WAIT_MS,
    UPLOAD_STEP_DELAY_MS,
)
from .utils.exceptions import GcodeLineTooLongError, UploadBusyError

logger = logging.getLogger(__name__)


class BufferEstimate:
    """Last known free space in the controller's command buffer.

    Shared by the poller and the uploader. Always overwritten with the latest
    report, never merged.
    """

    def __init__(self, ceiling: int = MAX_UPLOAD_BUFFER):
        self.ceiling = ceiling
        self.value: int | None = None

    def update(self, value: int | None) -> None:
        if value is None:
            return
        self.value = max(0, int(value))

    def invalidate(self) -> None:
        self.value = None

    def usable(self) -> int | None:
        if self.value is None:
            return None
        return min(self.value, self.ceiling)


def line_cost(line: str) -> int:
    return len(line.encode("utf-8"))


def batch_cost(batch: Iterable[str]) -> int:
    """Size of a batch once joined: line bytes plus one joiner between lines."""
    lines = list(batch)
    if not lines:
        return 0
    return sum(line_cost(line) for line in lines) + BATCH_JOINER_OVERHEAD * (len(lines) - 1)


def pack_batch(
    lines: Iterable[str],
    buffer_free: int,
    max_commands: int = MAX_UPLOAD_COMMANDS,
) -> list[str]:
    """Greedily take lines from the front while they fit the free buffer.

    A line is added only while ``size + len(line) + joiner < buffer_free`` and
    the batch holds fewer than ``max_commands`` lines. The input is not
    modified.
    """
    batch: list[str] = []
    size = 0
    for line in lines:
        if len(batch) >= max_commands:
            break
        cost = line_cost(line)
        if size + cost + BATCH_JOINER_OVERHEAD >= buffer_free:
            break
        size += cost + (BATCH_JOINER_OVERHEAD if batch else 0)
        batch.append(line)
    return batch


class UploadPhase(enum.Enum):
    OPENING = "opening"
    DRAINING = "draining"
    CLOSING = "closing"


@dataclass(frozen=True)
class UploadOutcome:
    job: PrintJob
    completed: bool
    cancelled: bool
    duration_ms: float
    lines_sent: int
    error: str | None = None


class StreamingUploader:
    """Drains one job at a time through cooperative scheduled steps.

    Store-only uploads open the remote file with M28, drain, then close it
    with M29. They ignore pause and stop: an upload always finishes. Direct
    prints honour the pause flag (no traffic while paused) and abandon the
    remainder as soon as the streaming flag drops.
    """

    def __init__(
        self,
        channel: CommandChannel,
        scheduler: SchedulerLike,
        buffer: BufferEstimate,
        flags_provider: Callable[[], ControlFlags],
        on_finished: Callable[[UploadOutcome], None] | None = None,
        events: EventQueueLike | None = None,
        clock: Callable[[], float] | None = None,
    ):
        self.channel = channel
        self.scheduler = scheduler
        self.buffer = buffer
        self._flags = flags_provider
        self.on_finished = on_finished
        self.events = events
        self.clock = clock or (lambda: time.time() * 1000.0)
        self._job: PrintJob | None = None
        self._phase: UploadPhase | None = None
        self._after_id: AfterId | None = None
        self._lines_sent = 0
        self._last_progress: int | None = None

    @property
    def active(self) -> bool:
        return self._job is not None

    @property
    def job(self) -> PrintJob | None:
        return self._job

    @property
    def phase(self) -> UploadPhase | None:
        return self._phase

    @property
    def lines_sent(self) -> int:
        return self._lines_sent

    def upload_percent(self) -> int | None:
        job = self._job
        if job is None or job.mode is not JobMode.STORE_ONLY:
            return None
        if job.total_lines <= 0:
            return 100
        return int(math.floor((1 - job.remaining / job.total_lines) * 100))

    def _emit(self, *event) -> None:
        if self.events is None:
            return
        try:
            self.events.put(event)
        except Exception as exc:
            logger.error(f"Failed to queue upload event {event[0]}: {exc}")

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    def begin(self, job: PrintJob) -> None:
        """Start draining ``job``.

        Raises:
            UploadBusyError: If another job is still draining
        """
        if self._job is not None:
            raise UploadBusyError(
                f"Cannot start {job.destination_name}: "
                f"{self._job.destination_name} is still being sent"
            )
        self._job = job
        self._lines_sent = 0
        self._last_progress = None
        if job.mode is JobMode.STORE_ONLY:
            self._phase = UploadPhase.OPENING
        else:
            self._phase = UploadPhase.DRAINING
        logger.info(
            f"Starting {job.mode.value} of {job.destination_name} ({job.total_lines} lines)"
        )
        self._emit("stream_state", "running", job.mode.value)
        self._schedule(0)

    def abort(self) -> None:
        """Stop immediately, whatever the job mode. Used on shutdown."""
        if self._after_id is not None:
            self.scheduler.after_cancel(self._after_id)
            self._after_id = None
        job = self._job
        self._job = None
        self._phase = None
        if job is not None:
            logger.warning(
                f"Aborted {job.mode.value} of {job.destination_name} "
                f"with {job.remaining} line(s) unsent"
            )
            self._emit("stream_state", "stopped", job.mode.value)

    def _schedule(self, delay_ms: int) -> None:
        self._after_id = self.scheduler.after(delay_ms, self._step)

    # ========================================================================
    # STEP FUNCTION
    # ========================================================================

    def _step(self) -> None:
        self._after_id = None
        job = self._job
        if job is None:
            return

        if self._phase is UploadPhase.OPENING:
            self._open_remote_file(job)
            return
        if self._phase is UploadPhase.CLOSING:
            self._close_remote_file(job)
            return

        flags = self._flags()
        if job.mode is JobMode.DIRECT_PRINT and not flags.web_streaming_active:
            # Stop, not pause: the remainder is abandoned.
            if job.lines:
                logger.info(f"Discarding {job.remaining} unsent line(s) of {job.destination_name}")
                job.lines.clear()
            self._finish(job, completed=False, cancelled=True)
            return

        if not job.lines:
            if job.mode is JobMode.STORE_ONLY:
                self._phase = UploadPhase.CLOSING
                self._schedule(0)
            else:
                self._finish(job, completed=True)
            return

        if self.buffer.value is None or self.buffer.value < LOW_BUFFER_THRESHOLD:
            ack = self.channel.refresh_buffer()
            if not isinstance(ack, Unreachable):
                self.buffer.update(ack.buffer_free)

        if self.buffer.value is None or self.buffer.value < LOW_BUFFER_THRESHOLD:
            self._schedule(UPLOAD_BUFFER_WAIT_MS)
            return

        if job.mode is JobMode.DIRECT_PRINT and flags.paused_by_user:
            self._schedule(UPLOAD_PAUSE_WAIT_MS)
            return

        try:
            self._send_batch(job)
        except GcodeLineTooLongError as exc:
            message = f"{job.destination_name}: {exc}"
            logger.error(f"Upload aborted: {message}")
            self._emit("stream_error", message)
            if job.mode is JobMode.STORE_ONLY:
                # Leave write mode so later commands execute again.
                self.channel.send_command(CMD_END_WRITE)
            self._finish(job, completed=False, cancelled=False, error=str(exc))
            return
        self._schedule(UPLOAD_STEP_DELAY_MS)

    def _send_batch(self, job: PrintJob) -> None:
        usable = self.buffer.usable() or 0
        batch = pack_batch(job.lines, usable)
        if not batch:
            first = job.lines[0]
            if line_cost(first) + BATCH_JOINER_OVERHEAD >= self.buffer.ceiling:
                raise GcodeLineTooLongError(
                    f"Line of {line_cost(first)} bytes can never fit the "
                    f"{self.buffer.ceiling}-byte send buffer",
                    line_content=first,
                )
            # Front line does not fit the current estimate: ask again next step.
            self.buffer.invalidate()
            return

        ack = self.channel.send_command(batch)
        if isinstance(ack, Unreachable):
            logger.debug(f"Batch of {len(batch)} line(s) unconfirmed; will resend")
            return
        for _ in batch:
            job.lines.popleft()
        self._lines_sent += len(batch)
        if ack.buffer_free is None:
            self.buffer.invalidate()
        else:
            self.buffer.update(min(ack.buffer_free, self.buffer.ceiling))

        pct = self.upload_percent()
        if pct is not None and pct != self._last_progress:
            self._last_progress = pct
            self._emit("upload_progress", pct)

    def _open_remote_file(self, job: PrintJob) -> None:
        ack = self.channel.send_command(f"{CMD_BEGIN_WRITE} {job.destination_name}")
        if isinstance(ack, Unreachable):
            # Sending lines before the file is open would execute them.
            self._schedule(UPLOAD_BUFFER_WAIT_MS)
            return
        self.buffer.update(ack.buffer_free)
        self._phase = UploadPhase.DRAINING
        self._schedule(UPLOAD_STEP_DELAY_MS)

    def _close_remote_file(self, job: PrintJob) -> None:
        ack = self.channel.send_command(CMD_END_WRITE)
        if isinstance(ack, Unreachable):
            self._schedule(UPLOAD_BUFFER_WAIT_MS)
            return
        self.buffer.update(ack.buffer_free)
        self._finish(job, completed=True)

    def _finish(
        self,
        job: PrintJob,
        *,
        completed: bool,
        cancelled: bool = False,
        error: str | None = None,
    ) -> None:
        self._job = None
        self._phase = None
        outcome = UploadOutcome(
            job=job,
            completed=completed,
            cancelled=cancelled,
            duration_ms=max(0.0, self.clock() - job.started_at),
            lines_sent=self._lines_sent,
            error=error,
        )
        if completed:
            state = "done"
        elif cancelled:
            state = "cancelled"
        else:
            state = "error"
        logger.info(
            f"{job.mode.value} of {job.destination_name} {state} "
            f"({outcome.lines_sent}/{job.total_lines} lines)"
        )
        self._emit("stream_state", state, job.mode.value)
        if self.on_finished is not None:
            self.on_finished(outcome)
