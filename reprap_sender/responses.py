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

"""Classification of firmware reply text surfaced through the poll's ``resp``."""

from __future__ import annotations

from dataclasses import dataclass

KIND_DEBUG = "debug"
KIND_FIRMWARE = "firmware"
KIND_CONFIG = "config"
KIND_ACK = "ack"
KIND_INFO = "info"

_FIRMWARE_VERSION_START = "SION:"
_FIRMWARE_VERSION_END = " ELEC"


@dataclass(frozen=True)
class FirmwareResponse:
    kind: str
    text: str
    title: str | None = None
    firmware_version: str | None = None

    @property
    def lines(self) -> list[str]:
        return self.text.split("\n")


def extract_firmware_version(text: str) -> str | None:
    """Pull the version out of an M115 reply (``FIRMWARE_VERSION:x.y ELECTRONICS:...``)."""
    start = text.find(_FIRMWARE_VERSION_START)
    end = text.find(_FIRMWARE_VERSION_END)
    if start < 0 or end < 0:
        return None
    start += len(_FIRMWARE_VERSION_START)
    if end <= start:
        return None
    return text[start:end].strip() or None


def classify_response(text: str) -> FirmwareResponse:
    if "Debugging enabled" in text:
        return FirmwareResponse(KIND_DEBUG, text, title="M111")
    if "Firmware" in text:
        return FirmwareResponse(
            KIND_FIRMWARE,
            text,
            title="M115",
            firmware_version=extract_firmware_version(text),
        )
    if "M550" in text:
        # M503 dumps config.g, which always names the machine with M550
        return FirmwareResponse(KIND_CONFIG, text, title="M503")
    if text.strip() == "ok":
        return FirmwareResponse(KIND_ACK, text)
    return FirmwareResponse(KIND_INFO, text)


def should_surface(response: FirmwareResponse, suppress_plain_ack: bool) -> bool:
    if not response.text.strip():
        return False
    if response.kind == KIND_ACK:
        return not suppress_plain_ack
    return True
