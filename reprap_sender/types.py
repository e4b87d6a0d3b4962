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

from __future__ import annotations

import enum
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Literal, Protocol, TypeAlias

AfterId: TypeAlias = str | int
RequestKind: TypeAlias = Literal["command", "poll", "fileList"]


class SchedulerLike(Protocol):
    """Anything with Tk's timer surface (a ``tk.Tk`` root qualifies)."""

    def after(self, ms: int, func: Callable[[], Any]) -> AfterId: ...
    def after_cancel(self, after_id: AfterId) -> None: ...


class TransportLike(Protocol):
    def get(self, path: str, query: str = "") -> dict[str, Any]: ...


class SettingsLike(Protocol):
    def get(self, key: str, default: Any = None) -> Any: ...


class EventQueueLike(Protocol):
    def put(self, item: Any, block: bool = True, timeout: float | None = None) -> None: ...


class Unreachable:
    """Sentinel returned when the controller could not be reached."""

    _instance: Unreachable | None = None

    def __new__(cls) -> Unreachable:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "UNREACHABLE"


UNREACHABLE = Unreachable()


@dataclass(frozen=True)
class Ack:
    """Controller acknowledgement. ``buffer_free`` is None when the reply carries
    no buffer report (file listings)."""

    buffer_free: int | None
    raw: dict[str, Any] = field(default_factory=dict, compare=False)


class MachineState(enum.Enum):
    IDLE = "I"
    PRINTING = "P"
    UNKNOWN = "?"

    @classmethod
    def from_code(cls, code: str) -> MachineState:
        for state in (cls.IDLE, cls.PRINTING):
            if code == state.value:
                return state
        return cls.UNKNOWN


class OperatingMode(enum.Enum):
    DISCONNECTED = "disconnected"
    IDLE = "idle"
    PRINTING = "printing"
    PAUSED = "paused"
    ERROR = "error"


class JobMode(enum.Enum):
    STORE_ONLY = "upload"
    DIRECT_PRINT = "print"


@dataclass(frozen=True)
class HomedAxes:
    x: bool = False
    y: bool = False
    z: bool = False

    @property
    def all_homed(self) -> bool:
        return self.x and self.y and self.z


@dataclass(frozen=True)
class AxisPositions:
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0
    e: float = 0.0


@dataclass(frozen=True)
class StatusSnapshot:
    """One poll result. ``message`` is only set when ``sequence_id`` is new."""

    sequence_id: int
    machine_state: MachineState
    raw_state: str
    axis_positions: AxisPositions
    bed_temperature: float
    head_temperature: float
    homed: HomedAxes
    send_buffer_free: int | None
    probe_value: Any = None
    message: str | None = None
    machine_name: str = "RepRap"


@dataclass
class PrintJob:
    lines: deque[str]
    total_lines: int
    destination_name: str
    mode: JobMode
    started_at: float

    @classmethod
    def create(
        cls,
        lines: list[str],
        destination_name: str,
        mode: JobMode,
        started_at: float,
    ) -> PrintJob:
        return cls(
            lines=deque(lines),
            total_lines=len(lines),
            destination_name=destination_name,
            mode=mode,
            started_at=started_at,
        )

    @property
    def remaining(self) -> int:
        return len(self.lines)


@dataclass(frozen=True)
class ControlFlags:
    """Local flags the mode derivation depends on. Replaced, never mutated."""

    polling_enabled: bool = False
    web_streaming_active: bool = False
    paused_by_user: bool = False


@dataclass(frozen=True)
class ControlAvailability:
    jog: bool = False
    temperature: bool = False
    send_gcode: bool = False
    file_list: bool = False
    panic: bool = False


@dataclass(frozen=True)
class ModeDecision:
    mode: OperatingMode
    raw_state: str | None = None
    diagnostic: str | None = None


@dataclass(frozen=True)
class LayerTimings:
    """Per-layer durations (ms) and remaining-time projections (ms)."""

    last_layer_ms: float | None = None
    all_layers_average_ms: float | None = None
    last5_average_ms: float | None = None
    last_layer_remaining_ms: float | None = None
    all_layers_remaining_ms: float | None = None
    last5_remaining_ms: float | None = None


@dataclass(frozen=True)
class SessionView:
    """Read model handed to the presentation layer every tick."""

    mode: OperatingMode = OperatingMode.DISCONNECTED
    diagnostic: str | None = None
    controls: ControlAvailability = ControlAvailability()
    completion_percent: int = 0
    current_layer: int = 0
    estimated_total_layers: int | None = None
    object_height: float | None = None
    timings: LayerTimings = LayerTimings()
    finish_times: tuple[tuple[str, datetime], ...] = ()
    elapsed_ms: float | None = None
    send_buffer_free: int | None = None
    last_message: str | None = None
    homed: HomedAxes = HomedAxes()
    positions: AxisPositions = AxisPositions()
    bed_temperature: float | None = None
    head_temperature: float | None = None
    probe_value: Any = None
    upload_percent: int | None = None
    firmware_version: str | None = None
    machine_name: str = "RepRap"
    remote_files: tuple[str, ...] = ()


UiEvent = (
    tuple[Literal["conn"], bool]
    | tuple[Literal["mode"], OperatingMode, str | None]
    | tuple[Literal["message"], str, str]
    | tuple[Literal["log"], str, str]
    | tuple[Literal["files"], list[str]]
    | tuple[Literal["stream_state"], str, Any | None]
    | tuple[Literal["stream_error"], str]
    | tuple[Literal["upload_progress"], int]
    | tuple[Literal["progress"], int, int, int | None]
    | tuple[Literal["layer"], int, float | None]
    | tuple[Literal["status"], SessionView]
)


class PrinterSessionState:
    """Attributes shared by the session and its mixins."""

    ui_q: Any
    settings: SettingsLike
    scheduler: SchedulerLike
    clock: Callable[[], float]

    channel: Any
    poller: Any
    uploader: Any
    estimator: Any
    buffer: Any

    _flags: ControlFlags
    _snapshot: StatusSnapshot | None
    _decision: ModeDecision
    _reachable: bool | None
    _last_message: str | None
    _firmware_version: str | None
    _remote_files: tuple[str, ...]
    _suppress_plain_ack: bool
    _half_step_jog: bool

    def _emit(self, *event: Any) -> None:
        raise NotImplementedError

    def _message(self, kind: str, text: str) -> None:
        raise NotImplementedError

    def _set_flags(self, **changes: Any) -> ControlFlags:
        raise NotImplementedError

    def _publish_status(self) -> None:
        raise NotImplementedError

    def _refresh_mode(self) -> None:
        raise NotImplementedError

    def view(self) -> SessionView:
        raise NotImplementedError

    def refresh_file_list(self) -> list[str] | None:
        raise NotImplementedError
