import os
import re
from dataclasses import dataclass
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


class ConfigError(Exception):
    pass


_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})$")
_WEEKDAYS = {"mon", "tue", "wed", "thu", "fri", "sat", "sun"}


@dataclass(frozen=True)
class Settings:
    channel_token: str
    channel_secret: str = ""
    port: int = 10000
    database_url: str = "sqlite:///counter.db"
    trigger_keyword: str = "💩"
    timezone: str = "UTC"
    retention_days: int = 30
    weekly_ranking_day: str = "fri"
    weekly_window_days: int = 7
    daily_ranking_time: tuple[int, int] = (0, 5)
    weekly_ranking_time: tuple[int, int] = (0, 5)
    retention_sweep_time: tuple[int, int] = (0, 10)
    http_timeout: float = 12
    log_level: str = "INFO"
    log_dir: str = ""

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @classmethod
    def from_env(cls, environ=None) -> "Settings":
        env = os.environ if environ is None else environ

        channel_token = env.get("LINE_CHANNEL_TOKEN", "").strip()
        if not channel_token:
            raise ConfigError("LINE_CHANNEL_TOKEN is required")

        database_url = env.get("DATABASE_URL", "").strip()
        if not database_url:
            database_url = f"sqlite:///{env.get('DATABASE_PATH', 'counter.db')}"

        keyword = env.get("TRIGGER_KEYWORD", "💩")
        if not keyword:
            raise ConfigError("TRIGGER_KEYWORD must not be empty")

        tz_name = env.get("BOT_TIMEZONE", "UTC").strip() or "UTC"
        try:
            ZoneInfo(tz_name)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ConfigError(f"unknown BOT_TIMEZONE {tz_name!r}") from e

        weekday = env.get("WEEKLY_RANKING_DAY", "fri").strip().lower()
        if weekday not in _WEEKDAYS:
            raise ConfigError(f"WEEKLY_RANKING_DAY must be one of {sorted(_WEEKDAYS)}, got {weekday!r}")

        log_level = env.get("LOG_LEVEL", "INFO").strip().upper()
        if log_level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ConfigError(f"invalid LOG_LEVEL {log_level!r}")

        retention_days = _int(env, "RETENTION_DAYS", 30)
        window_days = _int(env, "WEEKLY_WINDOW_DAYS", 7)
        if retention_days < 1 or window_days < 1:
            raise ConfigError("RETENTION_DAYS and WEEKLY_WINDOW_DAYS must be positive")

        return cls(
            channel_token=channel_token,
            channel_secret=env.get("LINE_CHANNEL_SECRET", "").strip(),
            port=_int(env, "PORT", 10000),
            database_url=database_url,
            trigger_keyword=keyword,
            timezone=tz_name,
            retention_days=retention_days,
            weekly_ranking_day=weekday,
            weekly_window_days=window_days,
            daily_ranking_time=_hhmm(env, "DAILY_RANKING_TIME", "00:05"),
            weekly_ranking_time=_hhmm(env, "WEEKLY_RANKING_TIME", "00:05"),
            retention_sweep_time=_hhmm(env, "RETENTION_SWEEP_TIME", "00:10"),
            http_timeout=_float(env, "HTTP_TIMEOUT", 12),
            log_level=log_level,
            log_dir=env.get("LOG_DIR", "").strip(),
        )


def _int(env, name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from e


def _float(env, name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from e
    if value <= 0:
        raise ConfigError(f"{name} must be positive")
    return value


def _hhmm(env, name: str, default: str) -> tuple[int, int]:
    raw = (env.get(name) or default).strip()
    m = _TIME_RE.match(raw)
    if not m:
        raise ConfigError(f"{name} must look like HH:MM, got {raw!r}")
    hour, minute = int(m.group(1)), int(m.group(2))
    if hour > 23 or minute > 59:
        raise ConfigError(f"{name} out of range: {raw!r}")
    return hour, minute
