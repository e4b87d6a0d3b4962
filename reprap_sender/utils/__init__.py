"""Shared utilities: constants, exceptions, validation, settings and logging setup."""

from .constants import *
from .exceptions import *
from .validation import *
from .config import DEFAULT_SETTINGS, Settings, get_settings_path
from .logging_config import HTTP_LOGGER_NAME, setup_logging

__all__ = [
    # Config
    "DEFAULT_SETTINGS",
    "Settings",
    "get_settings_path",
    # Logging
    "HTTP_LOGGER_NAME",
    "setup_logging",
]
