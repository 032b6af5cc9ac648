"""Tests for reminder_config.yaml loading and validation."""

from __future__ import annotations

from pathlib import Path

import pytest

from src.reminders import config_loader
from src.reminders.config_loader import (
    ConfigValidationError,
    ReminderConfig,
    _validate_and_build,
    get_reminder_config,
    load_reminder_config,
    reload_reminder_config,
)
from src.reminders.models import ReminderKind


def minimal_raw(**overrides) -> dict:
    raw = {
        "version": "1.0",
        "timezone": "Asia/Kolkata",
        "jobs": {
            "menstrual_reminders": {"cron": "0 9 * * *"},
            "health_check": {"cron": "0 * * * *"},
            "cleanup": {"cron": "0 2 * * *"},
        },
        "messages": {
            kind.value: {"title": f"{kind.value} title", "body": f"{kind.value} body"}
            for kind in ReminderKind
        },
    }
    raw.update(overrides)
    return raw


class TestConfigLoading:
    """Tests for loading the bundled reminder_config.yaml."""

    def test_load_default_config(self, reminder_config: ReminderConfig) -> None:
        assert reminder_config.version == "1.0"
        assert reminder_config.timezone == "Asia/Kolkata"

    def test_default_job_schedules(self, reminder_config: ReminderConfig) -> None:
        assert reminder_config.job("menstrual_reminders").cron == "0 9 * * *"
        assert reminder_config.job("health_check").cron == "0 * * * *"
        assert reminder_config.job("cleanup").cron == "0 2 * * *"

    def test_dispatch_defaults(self, reminder_config: ReminderConfig) -> None:
        d = reminder_config.dispatch
        assert d.inter_user_delay_ms == 100
        assert d.inter_user_delay_s == pytest.approx(0.1)
        assert d.max_concurrent_users == 1
        assert d.multicast_batch_size == 500
        assert d.android_channel_id == "menstrual-reminders"

    def test_dedup_off_by_default(self, reminder_config: ReminderConfig) -> None:
        assert reminder_config.dedup.enabled is False
        assert reminder_config.dedup.retention_days == 7

    def test_every_kind_has_a_message(self, reminder_config: ReminderConfig) -> None:
        for kind in ReminderKind:
            template = reminder_config.message(kind)
            assert template.title
            assert template.body

    def test_get_reminder_config_is_cached(self) -> None:
        assert get_reminder_config() is get_reminder_config()


class TestConfigValidation:
    """Tests for config validation logic."""

    def test_valid_minimal_config(self) -> None:
        config = _validate_and_build(minimal_raw())
        assert config.dispatch.inter_user_delay_ms == 100
        assert set(config.jobs) == {"menstrual_reminders", "health_check", "cleanup"}

    def test_unknown_timezone_raises(self) -> None:
        with pytest.raises(ConfigValidationError, match="timezone"):
            _validate_and_build(minimal_raw(timezone="Mars/Olympus_Mons"))

    def test_bad_cron_raises(self) -> None:
        raw = minimal_raw()
        raw["jobs"]["cleanup"]["cron"] = "every night"
        with pytest.raises(ConfigValidationError, match="jobs.cleanup.cron"):
            _validate_and_build(raw)

    def test_missing_required_job_raises(self) -> None:
        raw = minimal_raw()
        del raw["jobs"]["health_check"]
        with pytest.raises(ConfigValidationError, match="health_check"):
            _validate_and_build(raw)

    def test_missing_message_raises(self) -> None:
        raw = minimal_raw()
        del raw["messages"]["ovulation"]
        with pytest.raises(ConfigValidationError, match="messages.ovulation"):
            _validate_and_build(raw)

    def test_batch_size_above_fcm_limit_raises(self) -> None:
        with pytest.raises(ConfigValidationError, match="multicast_batch_size"):
            _validate_and_build(minimal_raw(dispatch={"multicast_batch_size": 1000}))

    def test_errors_are_accumulated(self) -> None:
        raw = minimal_raw(
            timezone="Nowhere/City",
            dispatch={"inter_user_delay_ms": -1, "max_concurrent_users": 0},
        )
        with pytest.raises(ConfigValidationError, match="3 validation error"):
            _validate_and_build(raw)

    def test_hot_reload(self, tmp_path: Path) -> None:
        """reload_reminder_config() should replace the cached config."""
        config_content = """
version: "2.0-test"
timezone: "Europe/London"
jobs:
  menstrual_reminders:
    cron: "30 8 * * *"
  health_check:
    cron: "0 * * * *"
  cleanup:
    cron: "0 3 * * *"
messages:
  next_period: {title: "Period", body: "Starts today"}
  ovulation: {title: "Ovulation", body: "Today"}
  fertile_window: {title: "Fertile window", body: "Starts today"}
"""
        config_file = tmp_path / "reminder_config.yaml"
        config_file.write_text(config_content.strip())

        try:
            new_config = reload_reminder_config(path=config_file)
            assert new_config.version == "2.0-test"
            assert get_reminder_config() is new_config
            assert new_config.job("menstrual_reminders").cron == "30 8 * * *"
        finally:
            reload_reminder_config()

    def test_failed_reload_keeps_old_config(self, tmp_path: Path) -> None:
        before = get_reminder_config()
        config_file = tmp_path / "reminder_config.yaml"
        config_file.write_text("version: '3.0'\ntimezone: 'Not/AZone'\n")

        with pytest.raises(ConfigValidationError):
            reload_reminder_config(path=config_file)
        assert config_loader.get_reminder_config() is before

    def test_malformed_yaml_raises(self, tmp_path: Path) -> None:
        config_file = tmp_path / "reminder_config.yaml"
        config_file.write_text("jobs: [unclosed\n")
        with pytest.raises(ConfigValidationError, match="YAML parse error"):
            load_reminder_config(path=config_file)

    def test_load_nonexistent_file_raises(self) -> None:
        with pytest.raises(FileNotFoundError):
            load_reminder_config(path=Path("/nonexistent/path/config.yaml"))
