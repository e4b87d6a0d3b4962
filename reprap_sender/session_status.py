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

from .print_state import controls_for, derive_mode, flags_after
from .responses import classify_response, should_surface
from .types import (
    AxisPositions,
    HomedAxes,
    OperatingMode,
    PrinterSessionState,
    SessionView,
    StatusSnapshot,
    Unreachable,
)
from .utils.constants import MACHINE_NAME_DEFAULT

logger = logging.getLogger(__name__)


class PrinterSessionStatusMixin(PrinterSessionState):
    def _on_poll_result(self, result: StatusSnapshot | Unreachable) -> None:
        """Reconcile one poll result into mode, flags, messages and progress."""
        if isinstance(result, Unreachable):
            self._set_reachable(False)
            self._apply_decision(derive_mode(None, self._flags))
            self._publish_status()
            return

        self._set_reachable(True)
        self._snapshot = result
        self.buffer.update(result.send_buffer_free)
        if result.message:
            self._handle_response(result.message)

        decision = derive_mode(result, self._flags)
        new_flags = flags_after(decision, self._flags)
        if new_flags != self._flags:
            logger.warning(f"{decision.diagnostic}: clearing print state")
            self._flags = new_flags
        self._apply_decision(decision)

        if decision.mode is OperatingMode.PRINTING:
            self._track_layers(result)
        self._publish_status()

    def _refresh_mode(self) -> None:
        """Re-derive the mode after a local flag change, without a new poll."""
        snapshot = self._snapshot if self._reachable else None
        self._apply_decision(derive_mode(snapshot, self._flags))

    def _set_reachable(self, reachable: bool) -> None:
        previous = self._reachable
        if previous == reachable:
            return
        self._reachable = reachable
        if reachable:
            if previous is False:
                logger.info("Controller reachable again")
                self._emit("log", "INFO", "Controller reachable again")
        else:
            logger.warning("Controller unreachable; polling continues")
            self._emit("log", "WARNING", "Controller unreachable")
        self._emit("conn", reachable)

    def _apply_decision(self, decision) -> None:
        previous = self._decision
        self._decision = decision
        if decision.mode is previous.mode and decision.diagnostic == previous.diagnostic:
            return
        if decision.diagnostic:
            logger.error(decision.diagnostic)
            self._message("danger", decision.diagnostic)
        else:
            logger.info(f"Mode: {previous.mode.value} -> {decision.mode.value}")
        self._emit("mode", decision.mode, decision.diagnostic)

    def _handle_response(self, text: str) -> None:
        response = classify_response(text)
        if response.firmware_version:
            self._firmware_version = response.firmware_version
            logger.info(f"Firmware version {response.firmware_version}")
        if not should_surface(response, self._suppress_plain_ack):
            return
        self._last_message = response.text
        logger.info(f"[{response.title or response.kind}] {response.text}")
        self._emit("message", response.kind, response.text)

    def _track_layers(self, snapshot: StatusSnapshot) -> None:
        est = self.estimator
        before = est.current_layer
        est.which_layer(snapshot.axis_positions.z)
        if est.current_layer != before:
            self._emit(
                "progress",
                est.completion_percent,
                est.current_layer,
                est.estimated_total_layers,
            )

    def _publish_status(self) -> None:
        self._emit("status", self.view())

    def view(self) -> SessionView:
        """Read model for the presentation layer."""
        snap = self._snapshot
        est = self.estimator
        timings = est.timings
        decision = self._decision
        finish_times = []
        for label, remaining in (
            ("last_layer", timings.last_layer_remaining_ms),
            ("all_layers", timings.all_layers_remaining_ms),
            ("last5", timings.last5_remaining_ms),
        ):
            finish = est.projected_finish(remaining)
            if finish is not None:
                finish_times.append((label, finish))
        return SessionView(
            mode=decision.mode,
            diagnostic=decision.diagnostic,
            controls=controls_for(decision.mode),
            completion_percent=est.completion_percent,
            current_layer=est.current_layer,
            estimated_total_layers=est.estimated_total_layers,
            object_height=est.object_height,
            timings=timings,
            finish_times=tuple(finish_times),
            elapsed_ms=est.elapsed_ms(),
            send_buffer_free=self.buffer.value,
            last_message=self._last_message,
            homed=snap.homed if snap else HomedAxes(),
            positions=snap.axis_positions if snap else AxisPositions(),
            bed_temperature=snap.bed_temperature if snap else None,
            head_temperature=snap.head_temperature if snap else None,
            probe_value=snap.probe_value if snap else None,
            upload_percent=self.uploader.upload_percent(),
            firmware_version=self._firmware_version,
            machine_name=snap.machine_name if snap else MACHINE_NAME_DEFAULT,
            remote_files=self._remote_files,
        )
