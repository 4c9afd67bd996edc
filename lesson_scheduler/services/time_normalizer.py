"""
Time normalization.

All instants handled by the engine are aware UTC datetimes. This module is
the single place where wall-clock input is turned into instants and where
instants are rendered back into a viewer's zone for display. Display strings
are never compared or persisted.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone

import pytz

from lesson_scheduler.core import config
from lesson_scheduler.core.errors import InvalidTime
from lesson_scheduler.core.intervals import Interval

logger = logging.getLogger(__name__)

DEFAULT_FALLBACK_ZONE = 'Etc/UTC'
DISPLAY_DATE_FORMAT = '%Y-%m-%d'
DISPLAY_TIME_FORMAT = '%H:%M'


@dataclass(frozen=True)
class Projection:
    date: str
    display_start: str
    display_end: str
    zone: str
    # Offset of display_start, e.g. '-04:00'. Tells the two readings of a DST fold apart.
    utc_offset: str = '+00:00'


def format_offset(local: datetime) -> str:
    offset = local.strftime('%z')
    return f'{offset[:3]}:{offset[3:]}'


def to_instant(value: str | datetime) -> datetime:
    """
    Parse ISO-8601 text or a datetime into an aware UTC instant.

    Naive values carry no offset and are taken to already be UTC.

    Raises:
        InvalidTime: if the value cannot be parsed.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith(('Z', 'z')):
            text = f'{text[:-1]}+00:00'
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as exc:
            raise InvalidTime(f'Unparsable time value: {value!r}.', details={'value': value}) from exc
    else:
        raise InvalidTime(f'Unsupported time value: {value!r}.')

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _fallback_zone() -> str:
    if config.FALLBACK_TIMEZONE in pytz.all_timezones_set:
        return config.FALLBACK_TIMEZONE
    return DEFAULT_FALLBACK_ZONE


def resolve_zone(candidate: str | None) -> str:
    """Return ``candidate`` if it is a known IANA zone, else the fallback zone."""
    if isinstance(candidate, str) and candidate.strip() in pytz.all_timezones_set:
        return candidate.strip()
    fallback = _fallback_zone()
    if candidate:
        logger.debug('Unknown timezone %r, using %s', candidate, fallback)
    return fallback


def project(start: datetime, zone: str | None, end: datetime | None = None) -> Projection:
    zone_name = resolve_zone(zone)
    tz = pytz.timezone(zone_name)
    local_start = to_instant(start).astimezone(tz)
    local_end = to_instant(end).astimezone(tz) if end is not None else local_start
    return Projection(
        date=local_start.strftime(DISPLAY_DATE_FORMAT),
        display_start=local_start.strftime(DISPLAY_TIME_FORMAT),
        display_end=local_end.strftime(DISPLAY_TIME_FORMAT),
        zone=zone_name,
        utc_offset=format_offset(local_start),
    )


def from_wall_clock(
    local_date: date | str,
    wall_clock: str,
    zone: str | None,
    utc_offset: str | None = None,
) -> datetime:
    """
    Turn a displayed local date and ``HH:MM`` time in ``zone`` back into an instant.

    When ``utc_offset`` (as carried by :class:`Projection`) is given it pins the
    reading exactly, including inside a DST fold. Without it, ambiguous and
    skipped local times take the zone's standard-time reading.
    """
    try:
        if isinstance(local_date, str):
            local_date = datetime.strptime(local_date, DISPLAY_DATE_FORMAT).date()
        local_time = datetime.strptime(wall_clock, DISPLAY_TIME_FORMAT).time()
        offset = datetime.strptime(utc_offset, '%z').tzinfo if utc_offset is not None else None
    except ValueError as exc:
        raise InvalidTime(f'Unparsable wall-clock time: {local_date} {wall_clock} {utc_offset or ""}.') from exc

    if offset is not None:
        return datetime.combine(local_date, local_time, tzinfo=offset).astimezone(timezone.utc)

    tz = pytz.timezone(resolve_zone(zone))
    localized = tz.localize(datetime.combine(local_date, local_time), is_dst=False)
    return localized.astimezone(timezone.utc)


def utc_day_bounds(day: date) -> Interval:
    start = datetime.combine(day, time(0, 0), tzinfo=timezone.utc)
    return Interval(start, start + timedelta(days=1))


def to_interval(start: str | datetime, end: str | datetime) -> Interval:
    return Interval(to_instant(start), to_instant(end))
