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

"""Constants and configuration values for RepRap Sender.

This module centralizes the magic numbers of the controller's HTTP protocol,
the upload pacing algorithm and the layer estimator.
"""

# ============================================================================
# HTTP PROTOCOL
# ============================================================================

HTTP_TIMEOUT_DEFAULT = 5.0
"""Default timeout (seconds) for a single request to the controller."""

ENDPOINT_PREFIX = "rr_"
"""All controller endpoints are named rr_<kind>."""

REQUEST_KIND_COMMAND = "command"
REQUEST_KIND_POLL = "poll"
REQUEST_KIND_FILE_LIST = "fileList"

ENDPOINTS = {
    REQUEST_KIND_COMMAND: "gcode",
    REQUEST_KIND_POLL: "poll",
    REQUEST_KIND_FILE_LIST: "files",
}
"""Request kind to endpoint suffix."""

GCODE_QUERY_PARAM = "gcode"

# Escape table for rr_gcode payloads. Order matters: later substitutions
# must not touch sequences produced by earlier ones.
GCODE_ESCAPES = (
    ("\n", "%0A"),
    ("+", "%2B"),
    ("-", "%2D"),
)
GCODE_WHITESPACE_ESCAPE = "+"

# ============================================================================
# STATUS POLLING
# ============================================================================

POLL_INTERVAL_DEFAULT_MS = 1000
"""Default delay between status polls (milliseconds)."""

POLL_INTERVAL_MIN_MS = 100
"""Minimum allowed status poll interval (milliseconds)."""

MACHINE_NAME_DEFAULT = "RepRap"

# ============================================================================
# UPLOAD / STREAMING
# ============================================================================

MAX_UPLOAD_BUFFER = 800
"""Ceiling applied to the controller's reported free buffer space."""

MAX_UPLOAD_COMMANDS = 200
"""Maximum number of G-code lines packed into one request."""

LOW_BUFFER_THRESHOLD = 100
"""Below this free space the uploader refreshes the estimate and waits."""

BATCH_JOINER = "%0A"
"""Escaped newline placed between lines of a batch."""

BATCH_JOINER_OVERHEAD = len(BATCH_JOINER)

UPLOAD_STEP_DELAY_MS = 5
"""Delay between upload iterations when data is flowing."""

UPLOAD_BUFFER_WAIT_MS = 20
"""Backoff while the controller buffer is saturated."""

UPLOAD_PAUSE_WAIT_MS = 2000
"""Idle delay while a direct print is paused."""

STORE_FILENAME_MAX = 8
"""8.3 name limit of the controller's SD card."""

STORE_FILENAME_EXT = ".g"

GCODE_FILE_EXTENSIONS = frozenset({"g", "gco", "gcode"})

# ============================================================================
# G-CODE COMMANDS
# ============================================================================

CMD_FIRMWARE_INFO = "M115"
CMD_REPORT_CONFIG = "M503"
CMD_BEGIN_WRITE = "M28"
CMD_END_WRITE = "M29"
CMD_SELECT_FILE = "M23"
CMD_START_PRINT = "M24"
CMD_PAUSE_PRINT = "M25"
CMD_DELETE_FILE = "M30"
CMD_EMERGENCY_STOP = "M112"
CMD_PANIC_RESET = "M1"
CMD_BED_TEMPERATURE = "M140"
CMD_HEAD_TEMPERATURE = "G10 P1"
CMD_SELECT_HEAD = "T1"
CMD_PUSH_STATE = "M120"
CMD_POP_STATE = "M121"
CMD_RELATIVE_MOVES = "G91"
CMD_RELATIVE_EXTRUSION = "M83"

JOG_FEED_XY = 2000.0
JOG_FEED_Z = 200.0
JOG_AXES = ("X", "Y", "Z")
JOG_STEP_MAX = 100.0
JOG_STEP_MAX_HALF_Z = 50.0
JOG_STEP_COUNT = 4
"""Jog buttons per direction, each a tenth of the previous one."""

TEMPERATURE_TARGETS = ("bed", "head")
TEMPERATURE_MAX = 300.0

# ============================================================================
# LAYER ESTIMATION
# ============================================================================

LAYER_HEIGHT_DEFAULT = 0.24
"""Default layer height (mm)."""

MAX_LAYER_LOG = 100
"""Default number of layer-change timestamps retained."""

MIN_LAYER_LOG = 2
"""Smallest layer log that still yields a layer duration."""

RECENT_LAYER_WINDOW = 5
"""Intervals averaged for the short-window estimate."""

# ============================================================================
# EVENT QUEUE
# ============================================================================

UI_EVENT_QUEUE_MAXSIZE = 2000
"""Maximum queued low-priority events before dropping."""

UI_EVENT_QUEUE_DROP_NOTICE_INTERVAL = 5.0
"""Seconds between drop summaries."""

# ============================================================================
# SETTINGS FILE
# ============================================================================

SETTINGS_FILENAME = "settings.json"
"""Settings file name inside the config directory."""
