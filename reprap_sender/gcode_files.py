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

"""Loading dropped G-code files into print jobs."""

from __future__ import annotations

import logging
import os
import re
import time

from .types import JobMode, PrintJob
from .utils.constants import GCODE_FILE_EXTENSIONS, STORE_FILENAME_EXT, STORE_FILENAME_MAX
from .utils.exceptions import MalformedFileError

logger = logging.getLogger(__name__)

LINE_SPLIT_PAT = re.compile(r"\r\n|\r|\n")


def file_extension(filename: str) -> str:
    base = os.path.basename(filename)
    if "." not in base:
        return ""
    return base.rsplit(".", 1)[1].lower()


def check_gcode_filename(filename: str) -> str:
    """Return the lowercased extension, or raise if it is not a G-code file.

    Raises:
        MalformedFileError: If the extension is not one of g, gco or gcode
    """
    ext = file_extension(filename)
    if ext not in GCODE_FILE_EXTENSIONS:
        allowed = ", ".join(sorted(GCODE_FILE_EXTENSIONS))
        raise MalformedFileError(
            f"{os.path.basename(filename) or filename!r} is not a G-code file "
            f"(expected one of: {allowed})",
            filename=filename,
        )
    return ext


def store_filename(filename: str) -> str:
    """Controller-side name: first dotted part, lowercased, cut to 8.3 with a .g suffix."""
    base = os.path.basename(filename)
    stem = base.split(".", 1)[0].lower()[:STORE_FILENAME_MAX]
    return f"{stem}{STORE_FILENAME_EXT}"


def split_lines(text: str) -> list[str]:
    return LINE_SPLIT_PAT.split(text)


def decode_gcode(data: bytes | str) -> str:
    if isinstance(data, str):
        return data.replace("\ufeff", "")
    return data.decode("utf-8", errors="replace").replace("\ufeff", "")


def read_gcode_file(path: str) -> bytes:
    check_gcode_filename(path)
    with open(path, "rb") as handle:
        return handle.read()


def prepare_job(
    filename: str,
    data: bytes | str,
    mode: JobMode,
    started_at: float | None = None,
) -> PrintJob:
    """Validate a dropped file and build a job for the uploader.

    Store-only jobs are written under the 8.3 controller name; direct prints
    keep the original name for reporting.

    Raises:
        MalformedFileError: If the file is not a G-code file
    """
    check_gcode_filename(filename)
    lines = split_lines(decode_gcode(data))
    if mode is JobMode.STORE_ONLY:
        destination = store_filename(filename)
    else:
        destination = os.path.basename(filename)
    if started_at is None:
        started_at = time.time() * 1000.0
    logger.info(f"Prepared {len(lines)} lines from {os.path.basename(filename)} as {destination}")
    return PrintJob.create(lines, destination, mode, started_at)
