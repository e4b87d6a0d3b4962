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

"""Fixed-interval status polling with sequence-id message dedup."""

from __future__ import annotations

import logging
from typing import Any, Callable

from .command_channel import CommandChannel, parse_buffer_free
from .types import (
    UNREACHABLE,
    AfterId,
    AxisPositions,
    HomedAxes,
    MachineState,
    SchedulerLike,
    StatusSnapshot,
    Unreachable,
)
from .utils.constants import MACHINE_NAME_DEFAULT, POLL_INTERVAL_DEFAULT_MS, POLL_INTERVAL_MIN_MS
from .utils.validation import validate_interval_ms

logger = logging.getLogger(__name__)

PollResult = StatusSnapshot | Unreachable

# rr_poll "poll" array: state letter, X, Y, Z, E, bed temp, head temp
_POLL_STATE = 0
_POLL_X = 1
_POLL_Y = 2
_POLL_Z = 3
_POLL_E = 4
_POLL_BED = 5
_POLL_HEAD = 6


def _to_float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _to_flag(value: Any) -> bool:
    try:
        return int(value) != 0
    except (TypeError, ValueError):
        return False


def parse_status(data: dict[str, Any], message: str | None = None) -> StatusSnapshot:
    """Build a snapshot from an rr_poll reply.

    The firmware interleaves the bed and head temperatures into the position
    array; they come out as separate fields here.

    Raises:
        ValueError: If the reply has no usable ``poll`` array
    """
    poll = data.get("poll")
    if not isinstance(poll, list) or not poll:
        raise ValueError("rr_poll reply has no 'poll' array")
    raw_state = str(poll[_POLL_STATE])[:1]

    def field(idx: int) -> float:
        return _to_float(poll[idx]) if idx < len(poll) else 0.0

    try:
        sequence_id = int(data.get("seq", 0))
    except (TypeError, ValueError):
        sequence_id = 0
    name = data.get("reprap_name")
    return StatusSnapshot(
        sequence_id=sequence_id,
        machine_state=MachineState.from_code(raw_state),
        raw_state=raw_state,
        axis_positions=AxisPositions(
            x=field(_POLL_X),
            y=field(_POLL_Y),
            z=field(_POLL_Z),
            e=field(_POLL_E),
        ),
        bed_temperature=field(_POLL_BED),
        head_temperature=field(_POLL_HEAD),
        homed=HomedAxes(
            x=_to_flag(data.get("hx")),
            y=_to_flag(data.get("hy")),
            z=_to_flag(data.get("hz")),
        ),
        send_buffer_free=parse_buffer_free(data),
        probe_value=data.get("probe"),
        message=message,
        machine_name=str(name) if name else MACHINE_NAME_DEFAULT,
    )


class StatusPoller:
    """Polls ``rr_poll`` every ``interval_ms`` through the scheduler.

    An unreachable controller never stops or slows the loop: on a LAN device
    retrying forever at the same pace is the recovery strategy. Each result,
    including ``UNREACHABLE``, is handed to ``on_result``.
    """

    def __init__(
        self,
        channel: CommandChannel,
        scheduler: SchedulerLike,
        interval_ms: int = POLL_INTERVAL_DEFAULT_MS,
        on_result: Callable[[PollResult], None] | None = None,
    ):
        self.channel = channel
        self.scheduler = scheduler
        self.on_result = on_result
        self._interval_ms = validate_interval_ms(interval_ms, min_val=POLL_INTERVAL_MIN_MS)
        self._last_sequence_id = 0
        self._running = False
        self._after_id: AfterId | None = None
        self.consecutive_failures = 0

    @property
    def running(self) -> bool:
        return self._running

    @property
    def interval_ms(self) -> int:
        return self._interval_ms

    def set_interval(self, interval_ms: int) -> None:
        """Change the poll interval; applies from the next scheduled tick."""
        self._interval_ms = validate_interval_ms(interval_ms, min_val=POLL_INTERVAL_MIN_MS)
        logger.debug(f"Status poll interval set to {self._interval_ms}ms")

    def reset_sequence(self) -> None:
        self._last_sequence_id = 0

    def poll(self) -> PollResult:
        raw = self.channel.fetch_status_raw()
        if isinstance(raw, Unreachable):
            self.consecutive_failures += 1
            return UNREACHABLE
        seq = raw.get("seq")
        message = None
        if seq is not None and seq != self._last_sequence_id:
            self._last_sequence_id = seq
            resp = raw.get("resp")
            message = str(resp) if resp is not None else None
        try:
            snapshot = parse_status(raw, message)
        except ValueError as exc:
            logger.warning(f"Malformed status reply treated as unreachable: {exc}")
            self.consecutive_failures += 1
            return UNREACHABLE
        self.consecutive_failures = 0
        return snapshot

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        logger.info(f"Status polling started ({self._interval_ms}ms)")
        self._after_id = self.scheduler.after(0, self._tick)

    def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        if self._after_id is not None:
            self.scheduler.after_cancel(self._after_id)
            self._after_id = None
        logger.info("Status polling stopped")

    def _tick(self) -> None:
        self._after_id = None
        if not self._running:
            return
        result = self.poll()
        if self.on_result is not None:
            try:
                self.on_result(result)
            except Exception as exc:
                logger.error(f"Status listener error: {exc}", exc_info=True)
        if self._running and self._after_id is None:
            self._after_id = self.scheduler.after(self._interval_ms, self._tick)
