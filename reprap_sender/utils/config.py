"""Engine settings.

Settings come from a JSON file layered over ``DEFAULT_SETTINGS``. The engine
never writes them back: whoever owns the settings screen owns persistence.
Keys the engine does not know are ignored, so a shared settings file can carry
presentation-only entries.
"""

import copy
import json
import os
import sys
import logging
from typing import Dict, Any, Optional

from .constants import (
    HTTP_TIMEOUT_DEFAULT,
    LAYER_HEIGHT_DEFAULT,
    MAX_LAYER_LOG,
    MIN_LAYER_LOG,
    POLL_INTERVAL_DEFAULT_MS,
    POLL_INTERVAL_MIN_MS,
    SETTINGS_FILENAME,
)
from .exceptions import (
    SettingsLoadError,
    SettingsValidationError,
)

logger = logging.getLogger(__name__)

CONFIG_DIR_ENV = "REPRAP_SENDER_CONFIG_DIR"
CONFIG_DIRNAME = "RepRapSender"

DEFAULT_SETTINGS: Dict[str, Any] = {
    "host": "",
    "http_timeout": HTTP_TIMEOUT_DEFAULT,
    "poll_interval_ms": POLL_INTERVAL_DEFAULT_MS,
    "layer_height_mm": LAYER_HEIGHT_DEFAULT,
    "half_step_jog_enabled": False,
    "suppress_plain_ack": True,
    "max_layer_log": MAX_LAYER_LOG,
    "temperature_presets": {
        "bed": [120, 65, 0],
        "head": [240, 185, 0],
    },
}

_BOOL_SETTINGS = ("half_step_jog_enabled", "suppress_plain_ack")


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _layer(base: Dict[str, Any], top: Dict[str, Any], prefix: str = "") -> Dict[str, Any]:
    """Overlay ``top`` on ``base``; nested dicts merge, unknown keys are dropped."""
    result = copy.deepcopy(base)
    for key, value in top.items():
        if key not in base:
            logger.debug(f"Ignoring unknown setting '{prefix}{key}'")
            continue
        if isinstance(base[key], dict) and isinstance(value, dict):
            result[key] = _layer(base[key], value, f"{prefix}{key}.")
        else:
            result[key] = value
    return result


def get_default_settings_dir() -> str:
    """Directory holding the settings file (and the ``logs/`` folder).

    ``REPRAP_SENDER_CONFIG_DIR`` wins; otherwise LOCALAPPDATA on Windows and
    XDG_CONFIG_HOME elsewhere, falling back to the home directory.
    """
    override = os.getenv(CONFIG_DIR_ENV)
    if override:
        return override
    if sys.platform.startswith("win"):
        root = os.getenv("LOCALAPPDATA") or os.getenv("APPDATA")
    else:
        root = os.getenv("XDG_CONFIG_HOME")
    return os.path.join(root or os.path.expanduser("~"), CONFIG_DIRNAME)


def get_settings_path() -> str:
    """Full settings file path; the directory is created on demand."""
    candidates = (
        get_default_settings_dir(),
        os.path.join(os.path.expanduser("~"), ".reprap_sender"),
    )
    for directory in candidates:
        try:
            os.makedirs(directory, exist_ok=True)
        except OSError as e:
            logger.warning(f"Cannot use settings directory {directory}: {e}")
            continue
        return os.path.join(directory, SETTINGS_FILENAME)
    return os.path.join(os.getcwd(), SETTINGS_FILENAME)


class Settings:
    """Read-only view of the engine settings.

    Example:
        settings = Settings(overrides={"host": "192.168.1.14"})
        settings.load()
        settings.get("poll_interval_ms")        # 1000
        settings.get("temperature_presets.bed")  # [120, 65, 0]
    """

    def __init__(self, filepath: Optional[str] = None, overrides: Optional[Dict[str, Any]] = None):
        self.filepath = filepath or get_settings_path()
        self.data: Dict[str, Any] = copy.deepcopy(DEFAULT_SETTINGS)
        if overrides:
            self.data = _layer(self.data, overrides)
        logger.info(f"Settings file: {self.filepath}")

    def load(self) -> bool:
        """Layer the settings file over the current values.

        Returns:
            False when there is no file (defaults stay in effect)

        Raises:
            SettingsLoadError: If the file is unreadable or not a JSON object
        """
        if not os.path.exists(self.filepath):
            logger.info("No settings file, using defaults")
            return False
        try:
            with open(self.filepath, "r", encoding="utf-8") as f:
                loaded = json.load(f)
        except json.JSONDecodeError as e:
            logger.error(f"Settings file is not valid JSON: {e}")
            raise SettingsLoadError(f"Invalid JSON: {e}")
        except OSError as e:
            logger.error(f"Cannot read settings file: {e}")
            raise SettingsLoadError(f"Failed to read file: {e}")
        if not isinstance(loaded, dict):
            raise SettingsLoadError("Settings file must contain a JSON object")
        self.data = _layer(self.data, loaded)
        logger.info(f"Loaded settings from {self.filepath}")
        return True

    def get(self, key: str, default: Any = None) -> Any:
        """Look up ``key``; dots reach into nested sections."""
        node: Any = self.data
        for part in key.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node

    def set(self, key: str, value: Any) -> None:
        """Change a value for this process only; nothing is written to disk."""
        *parents, leaf = key.split(".")
        node = self.data
        for part in parents:
            child = node.get(part)
            if not isinstance(child, dict):
                child = node[part] = {}
            node = child
        node[leaf] = value

    def reset_to_defaults(self) -> None:
        self.data = copy.deepcopy(DEFAULT_SETTINGS)
        logger.info("Settings reset to defaults")

    def validate(self) -> bool:
        """Check the values the engine relies on.

        Raises:
            SettingsValidationError: On the first invalid value
        """
        interval = self.data.get("poll_interval_ms")
        if not (isinstance(interval, int) and not isinstance(interval, bool)) or interval < POLL_INTERVAL_MIN_MS:
            raise SettingsValidationError(f"Invalid poll interval: {interval}")
        layer_height = self.data.get("layer_height_mm")
        if not _is_number(layer_height) or layer_height <= 0:
            raise SettingsValidationError(f"Invalid layer height: {layer_height}")
        cap = self.data.get("max_layer_log")
        if not (isinstance(cap, int) and not isinstance(cap, bool)) or cap < MIN_LAYER_LOG:
            raise SettingsValidationError(f"Invalid layer log size: {cap}")
        timeout = self.data.get("http_timeout")
        if not _is_number(timeout) or timeout <= 0:
            raise SettingsValidationError(f"Invalid HTTP timeout: {timeout}")
        for flag in _BOOL_SETTINGS:
            if not isinstance(self.data.get(flag), bool):
                raise SettingsValidationError(f"Invalid value for {flag}: {self.data.get(flag)!r}")
        return True
