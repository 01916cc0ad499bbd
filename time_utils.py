"""Timezone and calendar-day helpers for consistent record keys across modules."""

import calendar
import re
from datetime import date, datetime
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import pandas as pd

from runtime.defaults import DEFAULT_TIMEZONE_NAME


_DMY_PATTERN = re.compile(r"^\s*(\d{1,2})/(\d{1,2})/(\d{4})\s*$")


def get_timezone(timezone_name: str) -> ZoneInfo:
    """Return a valid ZoneInfo object, falling back to default timezone."""
    try:
        return ZoneInfo(timezone_name)
    except (ZoneInfoNotFoundError, TypeError, ValueError):
        return ZoneInfo(DEFAULT_TIMEZONE_NAME)


def get_config_tz(config: dict) -> ZoneInfo:
    """Return timezone configured in config, defaulting safely."""
    timezone_name = config.get("TIMEZONE_NAME", DEFAULT_TIMEZONE_NAME)
    return get_timezone(timezone_name)


def now_tz(config: dict) -> datetime:
    """Return timezone-aware current datetime in configured timezone."""
    return datetime.now(get_config_tz(config))


def today_iso(config: dict) -> str:
    return now_tz(config).date().isoformat()


def normalize_record_date(value: Any) -> str:
    """
    Normalize a calendar-day value to the `YYYY-MM-DD` key used by the store.

    Accepts `date`/`datetime` objects, ISO strings with or without a time part
    (`2026-10-17`, `2026-10-17T08:00:00Z`, `2026-10-17 00:00:00.000Z`) and the
    day-first form `17/10/2026` used by the data entry screens.

    Raises:
        ValueError: If the value cannot be read as a calendar day
    """
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if value is None:
        raise ValueError("Missing date value.")

    text = str(value).strip()
    if not text or text in {"undefined", "null"}:
        raise ValueError(f"Invalid date value '{value}'.")

    match = _DMY_PATTERN.match(text)
    if match:
        day, month, year = (int(part) for part in match.groups())
        try:
            return date(year, month, day).isoformat()
        except ValueError as exc:
            raise ValueError(f"Invalid date value '{value}'.") from exc

    # Only the calendar part matters; drop any time/zone suffix before parsing.
    day_text = re.split(r"[T ]", text, maxsplit=1)[0]
    ts = pd.Timestamp(day_text) if re.fullmatch(r"\d{4}-\d{2}-\d{2}", day_text) else pd.NaT
    if pd.isna(ts):
        raise ValueError(f"Invalid date value '{value}'. Expected YYYY-MM-DD or DD/MM/YYYY.")
    return ts.date().isoformat()


def month_bounds(month: str) -> tuple:
    """Return first and last `YYYY-MM-DD` day of a `YYYY-MM` month string."""
    match = re.fullmatch(r"(\d{4})-(\d{1,2})", str(month).strip())
    if not match:
        raise ValueError(f"Invalid month '{month}'. Expected YYYY-MM.")
    year, month_no = int(match.group(1)), int(match.group(2))
    if month_no < 1 or month_no > 12:
        raise ValueError(f"Invalid month '{month}'. Expected YYYY-MM.")
    last_day = calendar.monthrange(year, month_no)[1]
    return date(year, month_no, 1).isoformat(), date(year, month_no, last_day).isoformat()
