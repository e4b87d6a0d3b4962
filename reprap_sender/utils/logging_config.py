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

"""Structured logging setup for RepRap Sender."""

from __future__ import annotations

import logging
import logging.handlers
import tempfile
from pathlib import Path

from .config import get_settings_path

APP_LOGGER_NAME = "reprap_sender"
HTTP_LOGGER_NAME = f"{APP_LOGGER_NAME}.http"
LOG_DIRNAME = "logs"


def _handler_exists(logger: logging.Logger, name: str) -> bool:
    for handler in logger.handlers:
        if handler.get_name() == name:
            return True
    return False


def get_log_dir() -> Path:
    """Resolve the directory for log files (creates it if needed)."""
    base_dir = Path(get_settings_path()).parent
    log_dir = base_dir / LOG_DIRNAME
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        return log_dir
    except OSError:
        fallback = Path(tempfile.gettempdir()) / "reprap_sender_logs"
        fallback.mkdir(parents=True, exist_ok=True)
        return fallback


def setup_logging(console_level: int = logging.INFO, log_dir: Path | None = None) -> logging.Logger:
    """Initialize application logging with rotating file handlers.

    Safe to call more than once; handlers are named and only added once.
    """
    log_dir = log_dir or get_log_dir()

    root = logging.getLogger(APP_LOGGER_NAME)
    root.setLevel(logging.DEBUG)
    root.propagate = False

    if not _handler_exists(root, "reprap_sender_console"):
        console = logging.StreamHandler()
        console.setLevel(console_level)
        console.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(message)s", datefmt="%H:%M:%S")
        )
        console.set_name("reprap_sender_console")
        root.addHandler(console)

    if not _handler_exists(root, "reprap_sender_app_file"):
        app_handler = logging.handlers.RotatingFileHandler(
            log_dir / "reprap_sender.log",
            maxBytes=10_000_000,
            backupCount=5,
            encoding="utf-8",
        )
        app_handler.setLevel(logging.DEBUG)
        app_handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        )
        app_handler.set_name("reprap_sender_app_file")
        root.addHandler(app_handler)

    if not _handler_exists(root, "reprap_sender_error_file"):
        error_handler = logging.handlers.RotatingFileHandler(
            log_dir / "errors.log",
            maxBytes=2_000_000,
            backupCount=5,
            encoding="utf-8",
        )
        error_handler.setLevel(logging.WARNING)
        error_handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s:%(lineno)d\n%(message)s\n")
        )
        error_handler.set_name("reprap_sender_error_file")
        root.addHandler(error_handler)

    # Every request/response pair; too chatty for the console.
    http_logger = logging.getLogger(HTTP_LOGGER_NAME)
    http_logger.setLevel(logging.DEBUG)
    http_logger.propagate = False
    if not _handler_exists(http_logger, "reprap_sender_http_file"):
        http_handler = logging.handlers.RotatingFileHandler(
            log_dir / "http.log",
            maxBytes=5_000_000,
            backupCount=3,
            encoding="utf-8",
        )
        http_handler.setLevel(logging.DEBUG)
        http_handler.setFormatter(
            logging.Formatter(
                "%(asctime)s.%(msecs)03d [%(levelname)s] %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        http_handler.set_name("reprap_sender_http_file")
        http_logger.addHandler(http_handler)

    return root
