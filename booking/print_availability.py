"""Print the open appointment slots for one day to stdout.

Usage:
    python -m booking.print_availability 2030-01-07
"""
import sys
from datetime import date

from booking.core.calendar import format_slot_time, weekday_name
from booking.core.errors import BookingError
from booking.database import SessionLocal
from booking.services.availability import get_available_slots


def format_day(day) -> list[str]:
    header = f"{day.date.isoformat()} ({weekday_name(day.date).capitalize()})"
    if not day.slots:
        return [f"{header}: closed ({day.blocked_reason or 'fully booked'})"]

    lines = [f"{header}: {len(day.slots)} open slots"]
    for slot in day.slots:
        lines.append(f"  {format_slot_time(slot.time)}  {slot.booked}/{slot.capacity} booked, {slot.remaining} left")
    return lines


def main(argv: list[str] | None = None) -> None:
    args = sys.argv[1:] if argv is None else argv
    if len(args) != 1:
        print("Usage: python -m booking.print_availability YYYY-MM-DD", file=sys.stderr)
        sys.exit(2)

    try:
        slot_date = date.fromisoformat(args[0])
    except ValueError:
        print(f"Invalid date: {args[0]}", file=sys.stderr)
        sys.exit(2)

    db = SessionLocal()
    try:
        day = get_available_slots(db, slot_date)
    except BookingError as exc:
        print(exc.message, file=sys.stderr)
        sys.exit(1)
    finally:
        db.close()

    for line in format_day(day):
        print(line)


if __name__ == "__main__":
    main()
