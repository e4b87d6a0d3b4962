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

import logging
from typing import Iterable

from .print_state import controls_for
from .types import PrinterSessionState, Unreachable
from .utils.constants import (
    CMD_BED_TEMPERATURE,
    CMD_DELETE_FILE,
    CMD_EMERGENCY_STOP,
    CMD_HEAD_TEMPERATURE,
    CMD_PANIC_RESET,
    CMD_PAUSE_PRINT,
    CMD_POP_STATE,
    CMD_PUSH_STATE,
    CMD_RELATIVE_EXTRUSION,
    CMD_RELATIVE_MOVES,
    CMD_REPORT_CONFIG,
    CMD_SELECT_FILE,
    CMD_SELECT_HEAD,
    CMD_START_PRINT,
    JOG_FEED_XY,
    JOG_FEED_Z,
    JOG_STEP_COUNT,
    JOG_STEP_MAX,
    JOG_STEP_MAX_HALF_Z,
)
from .utils.exceptions import InvalidParameterError, NotConnectedError
from .utils.validation import (
    validate_axis,
    validate_distance,
    validate_feed_rate,
    validate_temperature,
)

logger = logging.getLogger(__name__)


def _num(value: float) -> str:
    return f"{value:g}"


def jog_command(axis: str, distance: float, feedrate: float) -> str:
    """Relative move wrapped in M120/M121 so the machine's mode is restored."""
    return "\n".join((
        CMD_PUSH_STATE,
        CMD_RELATIVE_MOVES,
        f"G1 {axis}{_num(distance)} F{_num(feedrate)}",
        CMD_POP_STATE,
    ))


def extrude_command(amount: float, feedrate: float, reverse: bool = False) -> str:
    sign = "-" if reverse else ""
    return "\n".join((
        CMD_PUSH_STATE,
        CMD_RELATIVE_EXTRUSION,
        f"G1 E{sign}{_num(amount)} F{_num(feedrate)}",
        CMD_POP_STATE,
    ))


def temperature_command(target: str, value: float) -> str:
    if target == "bed":
        return f"{CMD_BED_TEMPERATURE} S{_num(value)}"
    return f"{CMD_HEAD_TEMPERATURE} S{_num(value)}\n{CMD_SELECT_HEAD}"


class PrinterSessionCommandMixin(PrinterSessionState):
    # ========================================================================
    # HELPERS
    # ========================================================================

    def _require_connected(self, action: str) -> None:
        if not self._flags.polling_enabled:
            raise NotConnectedError(f"Cannot {action} - not connected")

    def _allowed(self, control: str, action: str) -> bool:
        """True when ``control`` is enabled in the current mode; logs otherwise."""
        self._require_connected(action)
        controls = controls_for(self._decision.mode)
        if getattr(controls, control):
            return True
        mode = self._decision.mode.value
        logger.warning(f"Cannot {action} while {mode}")
        self._emit("log", "WARNING", f"[blocked] {action} ({mode})")
        return False

    def _send(self, code: str | Iterable[str], what: str) -> bool:
        ack = self.channel.send_command(code)
        if isinstance(ack, Unreachable):
            logger.warning(f"{what}: controller unreachable, command not confirmed")
            self._emit("log", "WARNING", f"{what} not confirmed (controller unreachable)")
            return False
        self.buffer.update(ack.buffer_free)
        logger.debug(f"{what} sent")
        return True

    # ========================================================================
    # MOTION & HEATERS
    # ========================================================================

    def jog_increments(self, axis: str) -> tuple[float, ...]:
        """Jog distances offered for ``axis``, largest first."""
        axis = validate_axis(axis)
        top = JOG_STEP_MAX
        if axis == "Z" and self._half_step_jog:
            top = JOG_STEP_MAX_HALF_Z
        return tuple(round(top / 10 ** i, 4) for i in range(JOG_STEP_COUNT))

    def jog(self, axis: str, distance: float, feedrate: float | None = None) -> bool:
        """Relative move on one axis.

        Args:
            axis: "X", "Y" or "Z"
            distance: Signed distance in mm
            feedrate: mm/min; defaults to 2000 for X/Y and 200 for Z

        Returns:
            True if the move was sent and acknowledged

        Raises:
            NotConnectedError: If not connected
            InvalidParameterError: If axis, distance or feed are invalid
        """
        axis = validate_axis(axis)
        distance = validate_distance(distance)
        if feedrate is None:
            feedrate = JOG_FEED_Z if axis == "Z" else JOG_FEED_XY
        feedrate = validate_feed_rate(feedrate)
        if not self._allowed("jog", "jog"):
            return False
        return self._send(jog_command(axis, distance, feedrate), f"Jog {axis}{_num(distance)}")

    def extrude(self, amount: float, feedrate: float, reverse: bool = False) -> bool:
        """Push (or with ``reverse`` retract) ``amount`` mm of filament."""
        try:
            amount = float(amount)
        except (TypeError, ValueError):
            raise InvalidParameterError("amount", amount, "must be numeric")
        if amount <= 0:
            raise InvalidParameterError("amount", amount, "must be positive")
        feedrate = validate_feed_rate(feedrate)
        if not self._allowed("jog", "extrude"):
            return False
        what = "Retract" if reverse else "Extrude"
        return self._send(extrude_command(amount, feedrate, reverse), f"{what} {_num(amount)}mm")

    def set_temperature(self, target: str, value: float) -> bool:
        target, value = validate_temperature(target, value)
        if not self._allowed("temperature", f"set {target} temperature"):
            return False
        return self._send(temperature_command(target, value), f"Set {target} to {_num(value)}C")

    def send_raw_command(self, text: str) -> bool:
        """Send console input. The firmware only understands upper-case words."""
        command = (text or "").strip().upper()
        if not command:
            return False
        if not self._allowed("send_gcode", "send G-code"):
            return False
        return self._send(command, command)

    def request_config(self) -> bool:
        """Ask for the config dump; it arrives later as a ``config`` message."""
        if not self._allowed("send_gcode", "request config"):
            return False
        return self._send(CMD_REPORT_CONFIG, CMD_REPORT_CONFIG)

    # ========================================================================
    # PRINT CONTROL
    # ========================================================================

    def pause(self) -> bool:
        self._require_connected("pause")
        self._set_flags(paused_by_user=True)
        self._message("warning", "Print paused")
        sent = self._send(CMD_PAUSE_PRINT, "Pause")
        self._refresh_mode()
        self._publish_status()
        return sent

    def resume(self) -> bool:
        self._require_connected("resume")
        self._set_flags(paused_by_user=False)
        self._message("info", "Print resumed")
        sent = self._send(CMD_START_PRINT, "Resume")
        self._refresh_mode()
        self._publish_status()
        return sent

    def reset_print(self) -> bool:
        """Abandon a paused print: drop the queued job, heaters off, then resume state.

        Reset and resume are one transition: the pause flag is cleared and the
        firmware is sent M1 in the same step.
        """
        self._require_connected("reset print")
        self._set_flags(web_streaming_active=False, paused_by_user=False)
        self._send(temperature_command("bed", 0), "Bed heater off")
        self._send(temperature_command("head", 0), "Head heater off")
        self.estimator.reset()
        self._message("warning", "Print reset")
        sent = self._send(CMD_PANIC_RESET, "Reset")
        self._refresh_mode()
        self._publish_status()
        return sent

    def emergency_stop(self) -> bool:
        """Emergency stop: halt the firmware and stop polling.

        Allowed in any mode, even without a confirmed connection.
        """
        self.poller.stop()
        self._set_flags(polling_enabled=False, web_streaming_active=False, paused_by_user=False)
        logger.critical("Emergency stop requested")
        self._message("danger", "Emergency stop")
        sent = self._send(CMD_EMERGENCY_STOP, "Emergency stop")
        self._reachable = None
        self._refresh_mode()
        self._emit("conn", False)
        self._publish_status()
        return sent

    # ========================================================================
    # REMOTE FILES
    # ========================================================================

    def refresh_file_list(self) -> list[str] | None:
        """Fetch the SD card listing; returns None (keeping the old list) if unreachable."""
        files = self.channel.list_remote_files()
        if isinstance(files, Unreachable):
            logger.warning("File list unavailable: controller unreachable")
            return None
        self._remote_files = tuple(files)
        logger.info(f"{len(files)} file(s) on controller")
        self._emit("files", list(files))
        return list(files)

    def print_remote_file(self, name: str) -> bool:
        name = (name or "").strip()
        if not name:
            raise InvalidParameterError("name", name, "must be non-empty")
        if not self._allowed("file_list", f"print {name}"):
            return False
        if not self._send(f"{CMD_SELECT_FILE} {name}\n{CMD_START_PRINT}", f"Print {name}"):
            return False
        self.estimator.reset()
        self._message("success", f"G files [{name}] sent to print")
        return True

    def delete_remote_file(self, name: str) -> bool:
        name = (name or "").strip()
        if not name:
            raise InvalidParameterError("name", name, "must be non-empty")
        if not self._allowed("file_list", f"delete {name}"):
            return False
        if not self._send(f"{CMD_DELETE_FILE} {name}", f"Delete {name}"):
            return False
        self._message("info", f"{name} deleted")
        self.refresh_file_list()
        return True

    # ========================================================================
    # PROGRESS
    # ========================================================================

    def set_object_height(self, value: object) -> float | None:
        """Set the target object height used for percentages; bad input unsets it."""
        height = self.estimator.set_object_height(value)
        if height is None:
            logger.info("Object height cleared")
        else:
            logger.info(f"Object height set to {height:g}mm")
        self._emit(
            "progress",
            self.estimator.completion_percent,
            self.estimator.current_layer,
            self.estimator.estimated_total_layers,
        )
        return height

