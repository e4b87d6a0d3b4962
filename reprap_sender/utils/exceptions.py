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

"""Custom exceptions for RepRap Sender.

This module defines specific exception types for different error conditions,
enabling better error handling and debugging throughout the application.
"""

from typing import Any, Optional


class RepRapSenderException(Exception):
    """Base exception for all RepRap Sender errors."""
    pass


# ============================================================================
# TRANSPORT EXCEPTIONS
# ============================================================================

class TransportException(RepRapSenderException):
    """Base exception for HTTP transport errors."""
    pass


class TransportUnreachableError(TransportException):
    """The controller did not answer (connection refused, timeout, bad reply)."""

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message)
        self.url = url


class NotConnectedError(TransportException):
    """Attempted operation while the session is not connected."""
    pass


# ============================================================================
# G-CODE EXCEPTIONS
# ============================================================================

class GcodeException(RepRapSenderException):
    """Base exception for G-code related errors."""
    pass


class GcodeFileError(GcodeException):
    """Error reading a G-code file."""
    pass


class MalformedFileError(GcodeFileError):
    """Dropped file is not a G-code file."""

    def __init__(self, message: str, filename: Optional[str] = None):
        super().__init__(message)
        self.filename = filename


class GcodeLineTooLongError(GcodeException):
    """A single line cannot fit into the controller's send buffer."""

    def __init__(self, message: str, line_content: Optional[str] = None):
        super().__init__(message)
        self.line_content = line_content


# ============================================================================
# UPLOAD EXCEPTIONS
# ============================================================================

class UploadException(RepRapSenderException):
    """Base exception for upload/streaming errors."""
    pass


class UploadBusyError(UploadException):
    """Attempted to start an upload while another job is draining."""
    pass


# ============================================================================
# SETTINGS EXCEPTIONS
# ============================================================================

class SettingsException(RepRapSenderException):
    """Base exception for settings errors."""
    pass


class SettingsLoadError(SettingsException):
    """Failed to load settings file."""
    pass


class SettingsValidationError(SettingsException):
    """Settings validation failed."""
    pass


# ============================================================================
# VALIDATION EXCEPTIONS
# ============================================================================

class ValidationException(RepRapSenderException):
    """Base exception for validation errors."""
    pass


class InvalidParameterError(ValidationException):
    """Invalid parameter value."""
    
    def __init__(self, parameter_name: str, value: Any, reason: Optional[str] = None):
        self.parameter_name = parameter_name
        self.value = value
        self.reason = reason
        
        message = f"Invalid value for '{parameter_name}': {value}"
        if reason:
            message += f" ({reason})"
        super().__init__(message)


class InvalidRangeError(ValidationException):
    """Value out of valid range."""
    
    def __init__(self, value, min_val, max_val):
        self.value = value
        self.min_val = min_val
        self.max_val = max_val
        
        message = f"Value {value} out of range [{min_val}, {max_val}]"
        super().__init__(message)
