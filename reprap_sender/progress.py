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

"""Layer detection, progress and remaining-time estimates.

Z height is only sampled once per status poll, so the layer index derived from
it is noisy. Only forward steps of exactly one layer count as a layer change;
skips and regressions update the current index but leave the layer log alone.
"""

from __future__ import annotations

import logging
import math
import time
from collections import deque
from datetime import datetime
from typing import Callable, Iterable, Sequence

from .types import LayerTimings
from .utils.constants import LAYER_HEIGHT_DEFAULT, MAX_LAYER_LOG, RECENT_LAYER_WINDOW
from .utils.validation import (
    validate_layer_height,
    validate_layer_log_size,
    validate_object_height,
)

logger = logging.getLogger(__name__)

_MOVE_WORDS = {"G0", "G1", "G00", "G01"}
_ABSOLUTE_WORD = "G90"
_RELATIVE_WORD = "G91"


def _wall_clock_ms() -> float:
    return time.time() * 1000.0


def to_duration_string(ms: float) -> str:
    """Format milliseconds as ``45s``, ``1m 05s`` or ``1h 00m 00s``."""
    total = max(0, int(ms // 1000)) if ms and ms > 0 else 0
    hours, rem = divmod(total, 3600)
    minutes, seconds = divmod(rem, 60)
    if hours:
        return f"{hours}h {minutes:02d}m {seconds:02d}s"
    if minutes:
        return f"{minutes}m {seconds:02d}s"
    return f"{seconds}s"


def find_object_height(lines: Sequence[str]) -> float | None:
    """Height of the printed object: Z of the last absolute G0/G1 move with a Z word.

    Positioning mode is tracked through G90/G91 (absolute at the start), so a
    relative nozzle lift in the end code is not mistaken for the top layer.
    """
    absolute = True
    height = None
    for raw in lines:
        words = raw.split(";", 1)[0].upper().split()
        if words and words[0][:1] == "N":
            words = words[1:]
        if not words:
            continue
        if _ABSOLUTE_WORD in words:
            absolute = True
        elif _RELATIVE_WORD in words:
            absolute = False
        if words[0] not in _MOVE_WORDS or not absolute:
            continue
        for word in words[1:]:
            if word[:1] != "Z":
                continue
            try:
                height = float(word[1:])
            except ValueError:
                logger.debug(f"Unparsable Z word {word!r}")
            break
    return height


def layer_index(z: float, layer_height: float) -> int:
    # Half-up rounding: 0.5 layers belongs to the layer above.
    return int(math.floor(z / layer_height + 0.5))


class LayerEstimator:
    """Tracks layer changes and derives completion and timing estimates.

    Example:
        est = LayerEstimator(layer_height=0.2)
        est.set_object_height(10.0)
        est.which_layer(0.2)
        est.which_layer(0.4)
        est.completion_percent   # 4
    """

    def __init__(
        self,
        layer_height: float = LAYER_HEIGHT_DEFAULT,
        max_layer_log: int = MAX_LAYER_LOG,
        clock: Callable[[], float] | None = None,
        on_layer_change: Callable[[int, float | None], None] | None = None,
    ):
        self.layer_height = validate_layer_height(layer_height)
        self.clock = clock or _wall_clock_ms
        self.on_layer_change = on_layer_change
        self.layer_log: deque[float] = deque(maxlen=validate_layer_log_size(max_layer_log))
        self.current_layer = 0
        self.started_at: float | None = None
        self.object_height: float | None = None
        self._timings = LayerTimings()

    # ------------------------------------------------------------------
    # inputs
    # ------------------------------------------------------------------

    def set_layer_height(self, layer_height: float) -> None:
        self.layer_height = validate_layer_height(layer_height)
        self._recompute()

    def set_object_height(self, height: object) -> float | None:
        """Set the target height; anything not a positive number unsets it."""
        self.object_height = validate_object_height(height)
        self._recompute()
        return self.object_height

    def which_layer(self, z: float, now: float | None = None) -> int:
        """Update the current layer from a Z sample; returns the layer index."""
        index = layer_index(z, self.layer_height)
        if index == self.current_layer + 1:
            self.current_layer = index
            self._layer_change(self.clock() if now is None else now)
        else:
            self.current_layer = index
        return index

    def reset(self) -> None:
        self.layer_log.clear()
        self.current_layer = 0
        self.started_at = None
        self._timings = LayerTimings()

    def _layer_change(self, now: float) -> None:
        if self.layer_log and now <= self.layer_log[-1]:
            now = self.layer_log[-1] + 1
        self.layer_log.append(now)
        if self.started_at is None:
            self.started_at = now
            logger.info(f"Print started at layer {self.current_layer}")
        self._recompute()
        if self.on_layer_change is not None:
            self.on_layer_change(self.current_layer, self._timings.last_layer_ms)

    def _recompute(self) -> None:
        log = self.layer_log
        if len(log) < 2:
            self._timings = LayerTimings()
            return
        intervals = len(log) - 1
        last = log[-1] - log[-2]
        average = (log[-1] - log[0]) / intervals
        recent = None
        if intervals >= RECENT_LAYER_WINDOW:
            recent = (log[-1] - log[-1 - RECENT_LAYER_WINDOW]) / RECENT_LAYER_WINDOW
        remaining = self.layers_remaining

        def project(value: float | None) -> float | None:
            if value is None or remaining is None:
                return None
            return value * remaining

        self._timings = LayerTimings(
            last_layer_ms=last,
            all_layers_average_ms=average,
            last5_average_ms=recent,
            last_layer_remaining_ms=project(last),
            all_layers_remaining_ms=project(average),
            last5_remaining_ms=project(recent),
        )

    # ------------------------------------------------------------------
    # derived values
    # ------------------------------------------------------------------

    @property
    def timings(self) -> LayerTimings:
        return self._timings

    @property
    def estimated_total_layers(self) -> int | None:
        if self.object_height is None:
            return None
        return int(math.ceil(self.object_height / self.layer_height))

    @property
    def layers_remaining(self) -> int | None:
        total = self.estimated_total_layers
        if total is None:
            return None
        return max(0, total - self.current_layer)

    @property
    def completion_percent(self) -> int:
        total = self.estimated_total_layers
        if not total:
            return 0
        return max(0, min(100, int(math.floor(self.current_layer / total * 100))))

    def elapsed_ms(self, now: float | None = None) -> float | None:
        if self.started_at is None:
            return None
        now = self.clock() if now is None else now
        return max(0.0, now - self.started_at)

    def projected_finish(self, remaining_ms: float | None, now: float | None = None) -> datetime | None:
        """Wall-clock finish time for a remaining-time projection."""
        if remaining_ms is None:
            return None
        now = self.clock() if now is None else now
        return datetime.fromtimestamp((now + remaining_ms) / 1000.0)

    def layer_durations(self) -> list[tuple[int, int]]:
        """(n, seconds) per logged interval, oldest first; chart input."""
        log = list(self.layer_log)
        return [(i, round((log[i] - log[i - 1]) / 1000)) for i in range(1, len(log))]


def durations_text(timings: LayerTimings) -> Iterable[tuple[str, str]]:
    """Human-readable (label, value) pairs for the non-empty timing fields."""
    labels = (
        ("Last layer", timings.last_layer_ms),
        ("Average layer", timings.all_layers_average_ms),
        ("Last 5 layers", timings.last5_average_ms),
        ("Remaining (last layer)", timings.last_layer_remaining_ms),
        ("Remaining (average)", timings.all_layers_remaining_ms),
        ("Remaining (last 5)", timings.last5_remaining_ms),
    )
    for label, value in labels:
        if value is not None:
            yield label, to_duration_string(value)
