"""
Unit tests for configuration loading and validation.
"""
import json
from dataclasses import FrozenInstanceError
from pathlib import Path

import pytest

from config import Config
from pipeline.errors import ConfigError


@pytest.fixture
def settings_file(temp_dir: Path) -> Path:
    return temp_dir / "pipeline_settings.json"


@pytest.mark.unit
class TestConfigDefaults:
    """Tests for default values."""

    def test_defaults(self, settings_file, monkeypatch):
        for var in ("VARIANCE_CENTS", "DEDUPE_WINDOW_DAYS", "DRAFT_BAND_MULTIPLIER"):
            monkeypatch.delenv(var, raising=False)
        config = Config.load(settings_file=settings_file)

        assert config.variance_cents == 2500
        assert config.dedupe_window_days == 90
        assert config.draft_band_multiplier == 2
        assert config.retention_years == 3
        assert config.vendor_fuzzy_threshold == 85

    def test_environment_overrides_defaults(self, settings_file, monkeypatch):
        monkeypatch.setenv("VARIANCE_CENTS", "1000")
        assert Config.load(settings_file=settings_file).variance_cents == 1000

    def test_config_is_immutable(self, settings_file):
        config = Config.load(settings_file=settings_file)
        with pytest.raises(FrozenInstanceError):
            config.variance_cents = 1

    def test_retry_policy(self, settings_file):
        policy = Config.load(settings_file=settings_file, retry_max_attempts=2).retry_policy()
        assert policy.max_attempts == 2


@pytest.mark.unit
class TestSettingsFile:
    """Tests for pipeline_settings.json overrides."""

    def test_file_overrides_environment(self, settings_file, monkeypatch):
        monkeypatch.setenv("VARIANCE_CENTS", "1000")
        settings_file.write_text(json.dumps({"variance_cents": 5000, "_comment": "ignored"}))
        assert Config.load(settings_file=settings_file).variance_cents == 5000

    def test_keyword_overrides_file(self, settings_file):
        settings_file.write_text(json.dumps({"variance_cents": 5000}))
        assert Config.load(settings_file=settings_file, variance_cents=750).variance_cents == 750

    def test_values_are_coerced(self, settings_file):
        settings_file.write_text(json.dumps({
            "dedupe_window_days": "30",
            "ai_categorization_enabled": "yes",
            "notification_emails": "ap@example.com, ops@example.com",
        }))
        config = Config.load(settings_file=settings_file)
        assert config.dedupe_window_days == 30
        assert config.ai_categorization_enabled is True
        assert config.notification_emails == ("ap@example.com", "ops@example.com")

    def test_unknown_key_rejected(self, settings_file):
        settings_file.write_text(json.dumps({"varience_cents": 100}))
        with pytest.raises(ConfigError, match="varience_cents"):
            Config.load(settings_file=settings_file)

    def test_bad_type_rejected(self, settings_file):
        settings_file.write_text(json.dumps({"dedupe_window_days": 1.5}))
        with pytest.raises(ConfigError):
            Config.load(settings_file=settings_file)

    def test_invalid_json_rejected(self, settings_file):
        settings_file.write_text("{oops")
        with pytest.raises(ConfigError):
            Config.load(settings_file=settings_file)

    def test_non_object_rejected(self, settings_file):
        settings_file.write_text("[1, 2]")
        with pytest.raises(ConfigError):
            Config.load(settings_file=settings_file)


@pytest.mark.unit
class TestValidation:
    """Malformed configuration fails fast."""

    @pytest.mark.parametrize("overrides", [
        {"variance_cents": 0},
        {"variance_cents": -100},
        {"dedupe_window_days": 0},
        {"draft_band_multiplier": 0.5},
        {"min_extraction_confidence": 1.5},
        {"retry_max_attempts": 0},
    ])
    def test_invalid_values(self, settings_file, overrides):
        with pytest.raises(ConfigError):
            Config.load(settings_file=settings_file, **overrides)

    def test_unknown_override_rejected(self, settings_file):
        with pytest.raises(ConfigError):
            Config.load(settings_file=settings_file, no_such_key=1)

    def test_config_error_is_a_value_error(self, settings_file):
        with pytest.raises(ValueError):
            Config.load(settings_file=settings_file, variance_cents=0)

    def test_none_overrides_are_ignored(self, settings_file):
        config = Config.load(settings_file=settings_file, po_csv=None)
        assert config.po_csv.name == "purchase_orders.csv"

    def test_path_overrides_become_paths(self, settings_file, temp_dir):
        config = Config.load(settings_file=settings_file, db_path=str(temp_dir / "x.db"))
        assert isinstance(config.db_path, Path)
