from datetime import date, datetime, time, timezone
from typing import Optional


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO date or datetime string into a naive UTC datetime.

    Returns None for blank or unparseable input.
    """
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    return to_naive_utc(parsed)


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def epoch_seconds(value: Optional[str]) -> float:
    parsed = parse_timestamp(value)
    if parsed is None:
        return 0.0
    return parsed.replace(tzinfo=timezone.utc).timestamp()


def start_of_day(day: date) -> datetime:
    return datetime.combine(day, time.min)


def end_of_day(day: date) -> datetime:
    return datetime.combine(day, time.max)


def add_years(day: date, years: int) -> date:
    try:
        return day.replace(year=day.year + years)
    except ValueError:
        # 29 February rolls over to 1 March
        return date(day.year + years, 3, 1)
