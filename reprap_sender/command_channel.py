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

"""Command channel: one request/acknowledgement exchange with the controller."""

from __future__ import annotations

import logging
import re
from typing import Any, Iterable

from .types import UNREACHABLE, Ack, RequestKind, TransportLike, Unreachable
from .utils.constants import (
    ENDPOINT_PREFIX,
    ENDPOINTS,
    GCODE_ESCAPES,
    GCODE_QUERY_PARAM,
    GCODE_WHITESPACE_ESCAPE,
    REQUEST_KIND_COMMAND,
    REQUEST_KIND_FILE_LIST,
    REQUEST_KIND_POLL,
)
from .utils.exceptions import InvalidParameterError, TransportUnreachableError

logger = logging.getLogger(__name__)

_WHITESPACE_PAT = re.compile(r"\s")


def escape_gcode(code: str) -> str:
    """Percent-escape a G-code payload for the rr_gcode query string.

    Newlines, then ``+``, then ``-``, then any remaining whitespace. Running the
    steps in another order would re-escape the output of an earlier step.
    """
    for raw, escaped in GCODE_ESCAPES:
        code = code.replace(raw, escaped)
    return _WHITESPACE_PAT.sub(GCODE_WHITESPACE_ESCAPE, code)


def parse_buffer_free(data: dict[str, Any]) -> int | None:
    raw = data.get("buff")
    if raw is None or isinstance(raw, bool):
        return None
    try:
        value = int(raw)
    except (TypeError, ValueError):
        logger.warning(f"Ignoring unparsable buffer report: {raw!r}")
        return None
    return max(0, value)


class CommandChannel:
    """Sends commands, polls and file-list requests; never raises on transport loss.

    Every call returns either an ``Ack`` or ``UNREACHABLE`` so callers can tell
    "nothing to do" apart from "could not confirm".
    """

    def __init__(self, transport: TransportLike):
        self.transport = transport

    def send(self, kind: RequestKind, payload: str = "") -> Ack | Unreachable:
        endpoint = ENDPOINTS.get(kind)
        if endpoint is None:
            raise InvalidParameterError("kind", kind, f"must be one of {', '.join(ENDPOINTS)}")
        query = ""
        if kind == REQUEST_KIND_COMMAND and payload:
            query = f"{GCODE_QUERY_PARAM}={escape_gcode(payload)}"
        try:
            data = self.transport.get(f"{ENDPOINT_PREFIX}{endpoint}", query)
        except TransportUnreachableError as exc:
            logger.debug(f"{kind} request unreachable: {exc}")
            return UNREACHABLE
        return Ack(buffer_free=parse_buffer_free(data), raw=data)

    def send_command(self, lines: str | Iterable[str]) -> Ack | Unreachable:
        """Send one line, a newline-joined block, or a sequence of lines."""
        if isinstance(lines, str):
            payload = lines
        else:
            payload = "\n".join(lines)
        if payload:
            logger.debug(f"Sending command ({payload.count(chr(10)) + 1} line(s))")
        return self.send(REQUEST_KIND_COMMAND, payload)

    def refresh_buffer(self) -> Ack | Unreachable:
        """Zero-payload request whose only purpose is a fresh buffer report."""
        return self.send(REQUEST_KIND_POLL)

    def fetch_status_raw(self) -> dict[str, Any] | Unreachable:
        ack = self.send(REQUEST_KIND_POLL)
        if isinstance(ack, Unreachable):
            return UNREACHABLE
        return ack.raw

    def list_remote_files(self) -> list[str] | Unreachable:
        ack = self.send(REQUEST_KIND_FILE_LIST)
        if isinstance(ack, Unreachable):
            return UNREACHABLE
        files = ack.raw.get("files")
        if not isinstance(files, list):
            logger.warning("File list reply carried no 'files' array")
            return []
        return [str(name) for name in files]
