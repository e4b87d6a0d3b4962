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

"""Operating-mode derivation.

The mode is a pure function of the latest status snapshot and the local
control flags. Nothing else carries over from one tick to the next.
"""

from __future__ import annotations

from .types import (
    ControlAvailability,
    ControlFlags,
    MachineState,
    ModeDecision,
    OperatingMode,
    StatusSnapshot,
)

_CONTROLS = {
    OperatingMode.DISCONNECTED: ControlAvailability(),
    OperatingMode.IDLE: ControlAvailability(
        jog=True, temperature=True, send_gcode=True, file_list=True, panic=True,
    ),
    OperatingMode.PRINTING: ControlAvailability(panic=True),
    OperatingMode.PAUSED: ControlAvailability(
        jog=True, temperature=True, send_gcode=True, panic=True,
    ),
    # Heaters stay reachable so they can be switched off after a fault.
    OperatingMode.ERROR: ControlAvailability(
        temperature=True, send_gcode=True, panic=True,
    ),
}


def derive_mode(snapshot: StatusSnapshot | None, flags: ControlFlags) -> ModeDecision:
    """Rules in priority order; the first match wins."""
    if snapshot is None or not flags.polling_enabled:
        return ModeDecision(OperatingMode.DISCONNECTED)
    state = snapshot.machine_state
    raw = snapshot.raw_state
    if state is MachineState.PRINTING or (
        flags.web_streaming_active and not flags.paused_by_user
    ):
        return ModeDecision(OperatingMode.PRINTING, raw)
    if state is MachineState.IDLE and not flags.paused_by_user:
        return ModeDecision(OperatingMode.IDLE, raw)
    if state is MachineState.IDLE and flags.paused_by_user:
        return ModeDecision(OperatingMode.PAUSED, raw)
    return ModeDecision(
        OperatingMode.ERROR,
        raw,
        diagnostic=f"Unknown Poll State : {raw}",
    )


def controls_for(mode: OperatingMode) -> ControlAvailability:
    return _CONTROLS[mode]


def flags_after(decision: ModeDecision, flags: ControlFlags) -> ControlFlags:
    """Flags to carry into the next tick. An error clears every print flag."""
    if decision.mode is OperatingMode.ERROR and (
        flags.web_streaming_active or flags.paused_by_user
    ):
        return ControlFlags(polling_enabled=flags.polling_enabled)
    return flags
