"""Fixed business calendar: opening hours, slot grid, lunch closure and weekends."""

from datetime import date, datetime, time, timedelta

OPEN_TIME = time(8, 0)
CLOSE_TIME = time(17, 0)
SLOT_INCREMENT_MINUTES = 30
LUNCH_BREAK_START = time(12, 0)
LUNCH_BREAK_END = time(13, 0)

WEEKDAY_NAMES = ('monday', 'tuesday', 'wednesday', 'thursday', 'friday', 'saturday', 'sunday')


def weekday_name(day: date) -> str:
    return WEEKDAY_NAMES[day.weekday()]


def is_weekend(day: date) -> bool:
    return day.weekday() >= 5


def is_lunch_break_slot(slot_time: time) -> bool:
    return LUNCH_BREAK_START <= slot_time < LUNCH_BREAK_END


def is_on_slot_boundary(slot_time: time) -> bool:
    return slot_time.second == 0 and slot_time.microsecond == 0 and slot_time.minute % SLOT_INCREMENT_MINUTES == 0


def has_utc_offset(slot_time: time) -> bool:
    """Clock times are local to the clinic; an offset-aware time cannot be placed on the grid."""
    return slot_time.tzinfo is not None


def is_within_business_hours(slot_time: time) -> bool:
    return OPEN_TIME <= slot_time < CLOSE_TIME


def iterate_slot_times(start: time = OPEN_TIME, end: time = CLOSE_TIME) -> list[time]:
    """All grid times in [start, end), lunch excluded."""
    anchor = date(2000, 1, 3)
    current = datetime.combine(anchor, start)
    stop = datetime.combine(anchor, end)
    slots: list[time] = []

    while current < stop:
        if not is_lunch_break_slot(current.time()):
            slots.append(current.time())
        current += timedelta(minutes=SLOT_INCREMENT_MINUTES)

    return slots


def business_day_slots() -> list[time]:
    return iterate_slot_times(OPEN_TIME, CLOSE_TIME)


def format_slot_time(slot_time: time) -> str:
    return slot_time.strftime('%H:%M')


def slot_end_time(slot_time: time) -> time:
    return (datetime.combine(date(2000, 1, 3), slot_time) + timedelta(minutes=SLOT_INCREMENT_MINUTES)).time()
