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

"""Single-threaded cooperative timer loop.

Mirrors Tk's ``after``/``after_cancel`` so the engine can run on a Tk root or
headless. Every suspension point in the engine (poll ticks, upload steps,
buffer and pause backoffs) is a callback scheduled here; nothing blocks.
"""

from __future__ import annotations

import heapq
import itertools
import logging
import threading
import time
from typing import Any, Callable

logger = logging.getLogger(__name__)

IDLE_SLEEP_S = 0.05


class EventLoopScheduler:
    """Runs scheduled callbacks in due order on the calling thread.

    With ``virtual=True`` time only moves through ``advance``/``run_until_idle``,
    which makes upload and poll sequences reproducible in tests.
    """

    def __init__(
        self,
        clock: Callable[[], float] | None = None,
        *,
        virtual: bool = False,
    ) -> None:
        self._clock = clock or time.monotonic
        self._virtual_now: float | None = 0.0 if virtual else None
        self._heap: list[tuple[float, int, int]] = []
        self._callbacks: dict[int, Callable[[], Any]] = {}
        self._ids = itertools.count(1)
        self._seq = itertools.count()

    @classmethod
    def virtual(cls) -> EventLoopScheduler:
        return cls(virtual=True)

    @property
    def is_virtual(self) -> bool:
        return self._virtual_now is not None

    def now_ms(self) -> float:
        if self._virtual_now is not None:
            return self._virtual_now
        return self._clock() * 1000.0

    def after(self, ms: int, func: Callable[[], Any]) -> int:
        after_id = next(self._ids)
        due = self.now_ms() + max(0, int(ms))
        self._callbacks[after_id] = func
        heapq.heappush(self._heap, (due, next(self._seq), after_id))
        return after_id

    def after_cancel(self, after_id: Any) -> None:
        self._callbacks.pop(after_id, None)

    def pending(self) -> int:
        return len(self._callbacks)

    def next_due_ms(self) -> float | None:
        self._discard_cancelled()
        if not self._heap:
            return None
        return self._heap[0][0]

    def _discard_cancelled(self) -> None:
        while self._heap and self._heap[0][2] not in self._callbacks:
            heapq.heappop(self._heap)

    def _run_one(self) -> None:
        _, _, after_id = heapq.heappop(self._heap)
        func = self._callbacks.pop(after_id, None)
        if func is None:
            return
        try:
            func()
        except Exception as exc:
            logger.error(f"Scheduled callback failed: {exc}", exc_info=True)

    def run_pending(self) -> int:
        """Run every callback due now. Returns the number run."""
        ran = 0
        now = self.now_ms()
        while True:
            self._discard_cancelled()
            if not self._heap or self._heap[0][0] > now:
                return ran
            self._run_one()
            ran += 1

    def advance(self, ms: float) -> int:
        """Move virtual time forward, running callbacks at their due times."""
        if self._virtual_now is None:
            raise RuntimeError("advance() requires a virtual scheduler")
        target = self._virtual_now + ms
        ran = 0
        while True:
            self._discard_cancelled()
            if not self._heap or self._heap[0][0] > target:
                break
            self._virtual_now = max(self._virtual_now, self._heap[0][0])
            self._run_one()
            ran += 1
        self._virtual_now = target
        return ran

    def run_until_idle(self, limit_ms: float = 3_600_000.0) -> int:
        """Virtual time only: jump from callback to callback until none remain."""
        if self._virtual_now is None:
            raise RuntimeError("run_until_idle() requires a virtual scheduler")
        deadline = self._virtual_now + limit_ms
        ran = 0
        while True:
            due = self.next_due_ms()
            if due is None or due > deadline:
                return ran
            ran += self.advance(due - self._virtual_now)

    def run_forever(self, stop_evt: threading.Event | None = None) -> None:
        """Real time: run callbacks until ``stop_evt`` is set or nothing is left."""
        if self._virtual_now is not None:
            raise RuntimeError("run_forever() requires a real-time scheduler")
        stop_evt = stop_evt or threading.Event()
        logger.debug("Scheduler loop started")
        try:
            while not stop_evt.is_set():
                self.run_pending()
                due = self.next_due_ms()
                if due is None:
                    break
                delay = max(0.0, (due - self.now_ms()) / 1000.0)
                if stop_evt.wait(min(delay, IDLE_SLEEP_S) if delay else 0):
                    break
        finally:
            logger.debug("Scheduler loop stopped")
