"""Cron expressions for schedule triggers and the minute ticker that drives them."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from ..core.logger import get_logger

logger = get_logger("automation.scheduling")


@dataclass
class CronField:
    name: str
    min_value: int
    max_value: int
    aliases: dict[str, int] = field(default_factory=dict)


_MONTHS = ["jan", "feb", "mar", "apr", "may", "jun", "jul", "aug", "sep", "oct", "nov", "dec"]

# Crontab numbers days from Sunday (0 or 7); APScheduler numbers them from Monday.
_WEEKDAY_NAMES = ["sun", "mon", "tue", "wed", "thu", "fri", "sat"]

CRON_FIELDS = [
    CronField("minute", 0, 59),
    CronField("hour", 0, 23),
    CronField("day", 1, 31),
    CronField("month", 1, 12, {name: index for index, name in enumerate(_MONTHS, start=1)}),
    CronField("day_of_week", 0, 7, {name: index for index, name in enumerate(_WEEKDAY_NAMES)}),
]


@dataclass
class CronParseResult:
    valid: bool
    minute: str = "*"
    hour: str = "*"
    day: str = "*"
    month: str = "*"
    day_of_week: str = "*"
    error: str | None = None


class CronExpressionParser:
    """Five-field crontab parsing and validation."""

    @classmethod
    def parse(cls, expression: str) -> CronParseResult:
        if not isinstance(expression, str):
            return CronParseResult(valid=False, error="Cron expression must be a string")
        parts = expression.strip().split()
        if len(parts) != 5:
            return CronParseResult(valid=False, error=f"Expected 5 fields, got {len(parts)}")
        result = CronParseResult(valid=True)
        for part, field_def in zip(parts, CRON_FIELDS, strict=True):
            error = cls._field_error(part, field_def)
            if error:
                return CronParseResult(valid=False, error=f"Invalid {field_def.name}: {error}")
            setattr(result, field_def.name, part)
        return result

    @classmethod
    def _field_error(cls, value: str, field_def: CronField) -> str | None:
        if value == "*" or value.lower() in field_def.aliases:
            return None
        if "," in value:
            for part in value.split(","):
                error = cls._field_error(part.strip(), field_def)
                if error:
                    return error
            return None
        if "/" in value:
            base, step = value.split("/", 1)
            if not step.isdigit() or int(step) < 1:
                return f"Invalid step: {step}"
            if base == "*":
                return None
            value = base
        if "-" in value and not value.startswith("-"):
            start, end = value.split("-", 1)
            start_val = field_def.aliases.get(start.lower(), int(start) if start.isdigit() else -1)
            end_val = field_def.aliases.get(end.lower(), int(end) if end.isdigit() else -1)
            if not (field_def.min_value <= start_val <= field_def.max_value):
                return f"Start {start} out of range"
            if not (field_def.min_value <= end_val <= field_def.max_value):
                return f"End {end} out of range"
            if start_val > end_val:
                return f"Range {value} is reversed"
            return None
        if not value.isdigit():
            return f"Invalid value: {value}"
        if not (field_def.min_value <= int(value) <= field_def.max_value):
            return f"Value {value} out of range"
        return None


def _weekday_number(token: str) -> int:
    token = token.strip().lower()
    return int(token) if token.isdigit() else CRON_FIELDS[4].aliases[token]


def _crontab_weekdays(value: str) -> set[int]:
    """Expand a validated crontab day-of-week field into day numbers, Sunday = 0."""
    days: set[int] = set()
    for part in value.split(","):
        step = 1
        if "/" in part:
            part, raw_step = part.split("/", 1)
            step = int(raw_step)
        if part == "*":
            start, end = 0, 6
        elif "-" in part:
            start, end = (_weekday_number(token) for token in part.split("-", 1))
        else:
            start = _weekday_number(part)
            end = 7 if step > 1 else start
        days.update(day % 7 for day in range(start, end + 1, step))
    return days


def _translate_day_of_week(value: str) -> str:
    """Rewrite a crontab weekday field as APScheduler day names."""
    if value == "*":
        return "*"
    days = _crontab_weekdays(value)
    if len(days) == 7:
        return "*"
    return ",".join(_WEEKDAY_NAMES[day] for day in sorted(days))

def build_cron_trigger(expression: str, tz: str = "UTC") -> CronTrigger:
    """Build an APScheduler trigger from a five-field crontab expression.

    Raises:
        ValueError: If the expression or the timezone is invalid.
    """
    result = CronExpressionParser.parse(expression)
    if not result.valid:
        raise ValueError(result.error or "Invalid cron expression")
    try:
        return CronTrigger(
            minute=result.minute,
            hour=result.hour,
            day=result.day,
            month=result.month,
            day_of_week=_translate_day_of_week(result.day_of_week),
            timezone=tz,
        )
    except ValueError:
        raise
    except Exception as exc:
        raise ValueError(f"Invalid schedule: {exc}") from exc


def floor_to_minute(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.replace(second=0, microsecond=0)


def cron_matches(trigger: CronTrigger, moment: datetime) -> bool:
    """Return True when ``moment`` (floored to the minute) is a fire time of ``trigger``."""
    tick = floor_to_minute(moment)
    fire_time = trigger.get_next_fire_time(None, tick)
    return fire_time is not None and fire_time == tick


TickCallback = Callable[[datetime], Awaitable[Any]]


class ScheduleTicker:
    """Calls back once a minute so schedule triggers can be matched."""

    def __init__(self, callback: TickCallback, tz: str = "UTC") -> None:
        self._callback = callback
        self._timezone = tz
        self._scheduler: AsyncIOScheduler | None = None

    def start(self) -> None:
        """Start ticking on the running event loop."""
        if self._scheduler is not None:
            return
        scheduler = AsyncIOScheduler(timezone=self._timezone)
        scheduler.add_job(
            self._tick,
            CronTrigger(minute="*", timezone=self._timezone),
            id="schedule-trigger-tick",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=30,
        )
        scheduler.start()
        self._scheduler = scheduler
        logger.info("Schedule ticker started (timezone=%s)", self._timezone)

    def stop(self) -> None:
        if self._scheduler is None:
            return
        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("Schedule ticker stopped")

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None

    async def _tick(self) -> None:
        now = floor_to_minute(datetime.now(timezone.utc))
        try:
            await self._callback(now)
        except Exception as exc:
            logger.error("Schedule tick at %s failed: %s", now.isoformat(), exc, exc_info=True)


__all__ = [
    "CRON_FIELDS",
    "CronExpressionParser",
    "CronParseResult",
    "ScheduleTicker",
    "build_cron_trigger",
    "cron_matches",
    "floor_to_minute",
]
