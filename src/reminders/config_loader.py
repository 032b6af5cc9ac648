"""Load, validate, and hot-reload the reminder pipeline configuration.

The config lives in ``reminder_config.yaml`` alongside this module.  It is
loaded once and cached.  Call ``reload_reminder_config()`` to re-read from
disk after an edit.

Usage::

    from src.reminders.config_loader import get_reminder_config

    config = get_reminder_config()
    config.job("menstrual_reminders").cron     # "0 9 * * *"
    config.message(ReminderKind.OVULATION)     # MessageTemplate(...)
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytz
import yaml

from src.reminders.models import ReminderKind

logger = logging.getLogger("arcular.reminders.config")

_CONFIG_PATH = Path(__file__).parent / "reminder_config.yaml"

REQUIRED_JOBS = ("menstrual_reminders", "health_check", "cleanup")


# ---------------------------------------------------------------------------
# Typed config sections
# ---------------------------------------------------------------------------


@dataclass
class JobSchedule:
    """One cron-scheduled job."""

    name: str
    cron: str
    description: str = ""


@dataclass
class DispatchConfig:
    """Throttling and delivery settings."""

    inter_user_delay_ms: int = 100
    max_concurrent_users: int = 1
    multicast_batch_size: int = 500
    gateway_ready_timeout_seconds: float = 10.0
    android_channel_id: str = "menstrual-reminders"

    @property
    def inter_user_delay_s(self) -> float:
        return self.inter_user_delay_ms / 1000.0


@dataclass
class DedupConfig:
    """Optional once-per-day-per-kind delivery guard."""

    enabled: bool = False
    retention_days: int = 7


@dataclass
class MessageTemplate:
    title: str
    body: str


@dataclass
class ReminderConfig:
    """Complete, validated reminder configuration.

    Attributes:
        version:  Config schema version string.
        timezone: IANA timezone all cron expressions are evaluated in.
        jobs:     Job name → schedule.
        dispatch: Throttling / delivery settings.
        dedup:    Dedup store settings.
        messages: Reminder kind → title/body.
    """

    version: str
    timezone: str
    jobs: dict[str, JobSchedule]
    dispatch: DispatchConfig
    dedup: DedupConfig
    messages: dict[ReminderKind, MessageTemplate]
    _raw: dict = field(default_factory=dict, repr=False)

    def job(self, name: str) -> JobSchedule:
        return self.jobs[name]

    def message(self, kind: ReminderKind) -> MessageTemplate:
        return self.messages[kind]


# ---------------------------------------------------------------------------
# Loader / validation
# ---------------------------------------------------------------------------


class ConfigValidationError(ValueError):
    """Raised when reminder_config.yaml fails validation."""


def _load_yaml(path: Path) -> dict:
    """Read and parse a YAML file.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigValidationError: If the YAML is malformed.
    """
    if not path.exists():
        raise FileNotFoundError(f"Reminder config not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            return yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigValidationError(f"YAML parse error in {path}: {exc}") from exc


def _validate_timezone(name: str, errors: list[str]) -> None:
    try:
        pytz.timezone(name)
    except pytz.UnknownTimeZoneError:
        errors.append(f"timezone '{name}' is not a known IANA timezone")


def _validate_cron(name: str, expr: Any, errors: list[str]) -> None:
    if not isinstance(expr, str) or len(expr.split()) != 5:
        errors.append(f"jobs.{name}.cron must be a 5-field crontab string, got {expr!r}")


def _validate_and_build(raw: dict) -> ReminderConfig:
    """Validate the raw YAML dict and construct a ReminderConfig.

    Raises:
        ConfigValidationError: If required fields are missing or invalid.
    """
    errors: list[str] = []

    version = str(raw.get("version", "1.0"))

    tz_name = raw.get("timezone", "Asia/Kolkata")
    _validate_timezone(tz_name, errors)

    # ── Jobs ──
    jobs_raw = raw.get("jobs") or {}
    jobs: dict[str, JobSchedule] = {}
    for name, cfg in jobs_raw.items():
        if not isinstance(cfg, dict):
            errors.append(f"jobs.{name} must be a mapping")
            continue
        _validate_cron(name, cfg.get("cron"), errors)
        jobs[name] = JobSchedule(
            name=name,
            cron=str(cfg.get("cron", "")),
            description=cfg.get("description", ""),
        )
    for name in REQUIRED_JOBS:
        if name not in jobs_raw:
            errors.append(f"Missing required job '{name}' in section 'jobs'")

    # ── Dispatch ──
    d_raw = raw.get("dispatch") or {}
    dispatch = DispatchConfig(
        inter_user_delay_ms=int(d_raw.get("inter_user_delay_ms", 100)),
        max_concurrent_users=int(d_raw.get("max_concurrent_users", 1)),
        multicast_batch_size=int(d_raw.get("multicast_batch_size", 500)),
        gateway_ready_timeout_seconds=float(d_raw.get("gateway_ready_timeout_seconds", 10)),
        android_channel_id=d_raw.get("android_channel_id", "menstrual-reminders"),
    )
    if dispatch.inter_user_delay_ms < 0:
        errors.append("dispatch.inter_user_delay_ms must be >= 0")
    if dispatch.max_concurrent_users < 1:
        errors.append("dispatch.max_concurrent_users must be >= 1")
    if not (1 <= dispatch.multicast_batch_size <= 500):
        errors.append("dispatch.multicast_batch_size must be between 1 and 500")

    # ── Dedup ──
    dd_raw = raw.get("dedup") or {}
    dedup = DedupConfig(
        enabled=bool(dd_raw.get("enabled", False)),
        retention_days=int(dd_raw.get("retention_days", 7)),
    )
    if dedup.retention_days < 1:
        errors.append("dedup.retention_days must be >= 1")

    # ── Messages ──
    m_raw = raw.get("messages") or {}
    messages: dict[ReminderKind, MessageTemplate] = {}
    for kind in ReminderKind:
        cfg = m_raw.get(kind.value)
        if not isinstance(cfg, dict) or not cfg.get("title") or not cfg.get("body"):
            errors.append(f"messages.{kind.value} must define 'title' and 'body'")
            continue
        messages[kind] = MessageTemplate(title=str(cfg["title"]), body=str(cfg["body"]))

    if errors:
        raise ConfigValidationError(
            f"reminder_config.yaml has {len(errors)} validation error(s):\n"
            + "\n".join(f"  • {e}" for e in errors)
        )

    return ReminderConfig(
        version=version,
        timezone=tz_name,
        jobs=jobs,
        dispatch=dispatch,
        dedup=dedup,
        messages=messages,
        _raw=raw,
    )


def load_reminder_config(path: Path | None = None) -> ReminderConfig:
    """Load and validate the reminder config from disk.

    Args:
        path: Override path to YAML. Uses the bundled reminder_config.yaml by default.
    """
    target = path or _CONFIG_PATH
    config = _validate_and_build(_load_yaml(target))
    logger.info("Loaded reminder config v%s from %s", config.version, target)
    return config


# ---------------------------------------------------------------------------
# Global cache with hot-reload support
# ---------------------------------------------------------------------------

_config: ReminderConfig | None = None
_config_lock = threading.Lock()


def get_reminder_config() -> ReminderConfig:
    """Return the cached ReminderConfig, loading it on first call. Thread-safe."""
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:
                _config = load_reminder_config()
    return _config


def reload_reminder_config(path: Path | None = None) -> ReminderConfig:
    """Re-read the config from disk and replace the cached instance.

    If validation fails the old config is retained and the error re-raised.

    Raises:
        ConfigValidationError: If the new config is invalid.
        FileNotFoundError:     If the config file is missing.
    """
    global _config
    new_config = load_reminder_config(path)
    with _config_lock:
        old_version = _config.version if _config else "none"
        _config = new_config
    logger.info("Reloaded reminder config: %s → %s", old_version, new_config.version)
    return new_config
