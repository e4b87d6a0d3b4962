"""Tests for settings loading, validation and logging setup."""

import json
import logging

import pytest

from reprap_sender.utils.config import (
    DEFAULT_SETTINGS,
    Settings,
    get_default_settings_dir,
    get_settings_path,
)
from reprap_sender.utils.exceptions import SettingsLoadError, SettingsValidationError
from reprap_sender.utils.logging_config import (
    APP_LOGGER_NAME,
    HTTP_LOGGER_NAME,
    setup_logging,
)


@pytest.fixture
def settings_file(tmp_path):
    return tmp_path / "settings.json"


class TestSettings:
    def test_defaults_without_file(self, settings_file):
        settings = Settings(filepath=str(settings_file))
        assert settings.load() is False
        assert settings.get("poll_interval_ms") == 1000
        assert settings.get("layer_height_mm") == 0.24
        assert settings.get("suppress_plain_ack") is True
        assert settings.get("temperature_presets.bed") == [120, 65, 0]

    def test_file_merged_over_defaults(self, settings_file):
        settings_file.write_text(json.dumps({
            "host": "192.168.1.14",
            "temperature_presets": {"head": [200]},
            "unknown_key": 1,
        }))
        settings = Settings(filepath=str(settings_file))
        assert settings.load() is True
        assert settings.get("host") == "192.168.1.14"
        assert settings.get("temperature_presets.head") == [200]
        assert settings.get("temperature_presets.bed") == [120, 65, 0]
        assert settings.get("unknown_key") is None

    def test_invalid_json(self, settings_file):
        settings_file.write_text("{not json")
        with pytest.raises(SettingsLoadError):
            Settings(filepath=str(settings_file)).load()

    def test_non_object_json(self, settings_file):
        settings_file.write_text("[1, 2]")
        with pytest.raises(SettingsLoadError):
            Settings(filepath=str(settings_file)).load()

    def test_overrides(self, settings_file):
        settings = Settings(filepath=str(settings_file), overrides={"poll_interval_ms": 250})
        assert settings.get("poll_interval_ms") == 250

    def test_get_missing_returns_default(self, settings_file):
        settings = Settings(filepath=str(settings_file))
        assert settings.get("temperature_presets.chamber", "none") == "none"

    def test_set_is_runtime_only(self, settings_file):
        settings = Settings(filepath=str(settings_file))
        settings.set("temperature_presets.bed", [100])
        assert settings.get("temperature_presets.bed") == [100]
        assert not settings_file.exists()

    def test_reset_to_defaults(self, settings_file):
        settings = Settings(filepath=str(settings_file))
        settings.set("host", "x")
        settings.reset_to_defaults()
        assert settings.get("host") == ""
        assert DEFAULT_SETTINGS["host"] == ""

    def test_defaults_validate(self, settings_file):
        assert Settings(filepath=str(settings_file)).validate() is True

    @pytest.mark.parametrize(
        "key, value",
        [
            ("poll_interval_ms", 10),
            ("poll_interval_ms", "fast"),
            ("layer_height_mm", 0),
            ("max_layer_log", 1),
            ("http_timeout", -1),
            ("suppress_plain_ack", "yes"),
        ],
    )
    def test_validation_errors(self, settings_file, key, value):
        settings = Settings(filepath=str(settings_file))
        settings.set(key, value)
        with pytest.raises(SettingsValidationError):
            settings.validate()


class TestSettingsLocation:
    def test_env_override(self, monkeypatch, tmp_path):
        monkeypatch.setenv("REPRAP_SENDER_CONFIG_DIR", str(tmp_path / "cfg"))
        assert get_default_settings_dir() == str(tmp_path / "cfg")
        path = get_settings_path()
        assert path == str(tmp_path / "cfg" / "settings.json")
        assert (tmp_path / "cfg").is_dir()


@pytest.fixture
def clean_loggers():
    loggers = [logging.getLogger(APP_LOGGER_NAME), logging.getLogger(HTTP_LOGGER_NAME)]
    saved = [(lg.handlers[:], lg.propagate, lg.level) for lg in loggers]
    for lg in loggers:
        lg.handlers = []
    yield
    for lg, (handlers, propagate, level) in zip(loggers, saved):
        for handler in lg.handlers:
            handler.close()
        lg.handlers = handlers
        lg.propagate = propagate
        lg.setLevel(level)


class TestLogging:
    def test_setup_is_idempotent(self, tmp_path, clean_loggers):
        setup_logging(log_dir=tmp_path)
        setup_logging(log_dir=tmp_path)
        app = logging.getLogger(APP_LOGGER_NAME)
        names = sorted(h.get_name() for h in app.handlers)
        assert names == [
            "reprap_sender_app_file",
            "reprap_sender_console",
            "reprap_sender_error_file",
        ]
        assert len(logging.getLogger(HTTP_LOGGER_NAME).handlers) == 1

    def test_error_log_receives_warnings(self, tmp_path, clean_loggers):
        setup_logging(log_dir=tmp_path)
        logging.getLogger("reprap_sender.session").warning("Controller unreachable")
        for handler in logging.getLogger(APP_LOGGER_NAME).handlers:
            handler.flush()
        assert "Controller unreachable" in (tmp_path / "errors.log").read_text()
