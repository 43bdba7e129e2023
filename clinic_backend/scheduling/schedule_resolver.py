"""Turn a doctor's weekly working hours into the bookable slots of one day.

A working-hours template maps lowercase weekday names to a window::

    {"monday": {"start": "09:00", "end": "11:00"}, "tuesday": None}

A weekday that is missing, null, or lacks ``start``/``end`` is a day off.
Stored templates may also use capitalized names (``"Monday"``).
"""

import logging
from collections.abc import Mapping
from datetime import date, datetime, time, timedelta

from clinic_backend.core import config
from clinic_backend.scheduling.errors import MalformedSchedule

logger = logging.getLogger(__name__)

WEEKDAY_NAMES = ('monday', 'tuesday', 'wednesday', 'thursday', 'friday', 'saturday', 'sunday')


def weekday_name(target_date: date) -> str:
    return WEEKDAY_NAMES[target_date.weekday()]


def parse_slot_time(value: str) -> time:
    """Parse a 24-hour ``HH:MM`` string. ``HH:MM:SS`` with zero seconds is accepted too."""
    if not isinstance(value, str):
        raise ValueError('Time must be an "HH:MM" string.')

    normalized = value.strip()
    for fmt in ('%H:%M', '%H:%M:%S'):
        try:
            parsed = datetime.strptime(normalized, fmt).time()
        except ValueError:
            continue
        if parsed.second:
            break
        return parsed

    raise ValueError(f'Invalid time "{value}", expected HH:MM.')


def format_slot_time(value: time) -> str:
    return value.strftime('%H:%M')


def resolve_day_window(template: Mapping | None, target_date: date) -> tuple[time, time] | None:
    if not template:
        return None
    if not isinstance(template, Mapping):
        raise MalformedSchedule('Working hours must be an object keyed by weekday.')

    day = weekday_name(target_date)
    day_entry = template[day] if day in template else template.get(day.capitalize())
    if not day_entry:
        return None

    if not isinstance(day_entry, Mapping):
        raise MalformedSchedule(f'Working hours for {day} must be an object.')

    raw_start = day_entry.get('start')
    raw_end = day_entry.get('end')
    if not raw_start or not raw_end:
        return None

    try:
        start = parse_slot_time(raw_start)
        end = parse_slot_time(raw_end)
    except ValueError as exc:
        raise MalformedSchedule(str(exc)) from exc

    if start >= end:
        raise MalformedSchedule(f'Working hours for {day} must start before they end.')

    return start, end


def resolve_slots(
    template: Mapping | None,
    target_date: date,
    interval_minutes: int | None = None,
) -> list[str]:
    """Return the ordered ``HH:MM`` slot starts for ``target_date``.

    Slots begin at the day's start and advance by ``interval_minutes`` while
    strictly before the end, so the end time itself is never a slot. A day
    off, or a stored window that is broken, yields an empty list.
    """
    if interval_minutes is None:
        interval_minutes = config.SLOT_INTERVAL_MINUTES
    if interval_minutes <= 0:
        raise ValueError('Slot interval must be a positive number of minutes.')

    try:
        window = resolve_day_window(template, target_date)
    except MalformedSchedule as exc:
        logger.warning('Ignoring malformed working hours for %s: %s', target_date.isoformat(), exc.message)
        return []

    if window is None:
        return []

    start, end = window
    current = datetime.combine(target_date, start)
    day_end = datetime.combine(target_date, end)
    step = timedelta(minutes=interval_minutes)

    slots: list[str] = []
    while current < day_end:
        slots.append(format_slot_time(current.time()))
        current += step

    return slots


def validate_template(template: Mapping) -> dict:
    """Check a template before it is stored and return it normalised.

    Keys are lowercased and must be weekday names; each present window must
    parse and start before it ends. Days off are dropped.
    """
    if not isinstance(template, Mapping):
        raise MalformedSchedule('Working hours must be an object keyed by weekday.')

    normalized: dict[str, dict[str, str]] = {}
    for raw_day, window in template.items():
        day = str(raw_day).strip().lower()
        if day not in WEEKDAY_NAMES:
            raise MalformedSchedule(f'Unknown weekday "{raw_day}".')
        if not window:
            continue
        if not isinstance(window, Mapping):
            raise MalformedSchedule(f'Working hours for {day} must be an object.')

        raw_start = window.get('start')
        raw_end = window.get('end')
        if not raw_start and not raw_end:
            continue
        if not raw_start or not raw_end:
            raise MalformedSchedule(f'Working hours for {day} need both a start and an end.')

        try:
            start = parse_slot_time(raw_start)
            end = parse_slot_time(raw_end)
        except ValueError as exc:
            raise MalformedSchedule(str(exc)) from exc

        if start >= end:
            raise MalformedSchedule(f'Working hours for {day} must start before they end.')

        normalized[day] = {'start': format_slot_time(start), 'end': format_slot_time(end)}

    return normalized
