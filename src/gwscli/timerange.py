"""
Resolve the --from/--to/--today/--week flags into a concrete window.
Everything is done in the account's calendar zone so "today" means the
user's today, not the machine's or UTC's.
"""

from dataclasses import dataclass
from typing import Tuple
import datetime
import re
from zoneinfo import ZoneInfo

from .calendar import rfc3339

_RELATIVE = re.compile(r'^([+-])(\d+)([mhdw])$')
_UNITS = {'m': 'minutes', 'h': 'hours', 'd': 'days', 'w': 'weeks'}

@dataclass(frozen=True)
class TimeRange:
    """
    Half open [start, end) window plus the zone used to display times in it.
    """
    start: datetime.datetime
    end: datetime.datetime
    tz: ZoneInfo

    def __str__(self) -> str:
        return f"{self.start.isoformat()}-->{self.end.isoformat()}:{self.tz}"

    def rfc3339(self) -> Tuple[str, str]:
        return rfc3339(self.start.astimezone(self.tz)), rfc3339(self.end.astimezone(self.tz))

def _midnight(day: datetime.date, tz: ZoneInfo) -> datetime.datetime:
    return datetime.datetime.combine(day, datetime.time.min, tzinfo=tz)

def parse_time(value: str, tz: ZoneInfo, now: datetime.datetime, end: bool = False) -> datetime.datetime:
    """
    Parse one bound.  Accepts RFC3339/ISO datetimes, YYYY-MM-DD, now/today/tomorrow/yesterday
    and relative offsets like +2d, -3h, +1w, +30m.  A bare date as an end bound means the
    end of that day.
    """
    v = str(value).strip()
    lower = v.lower()
    today = now.astimezone(tz).date()
    if not v:
        raise ValueError("empty time value")
    if lower == "now":
        return now.astimezone(tz)
    days = {'yesterday': -1, 'today': 0, 'tomorrow': 1}
    if lower in days:
        day = today + datetime.timedelta(days=days[lower] + (1 if end else 0))
        return _midnight(day, tz)
    m = _RELATIVE.match(lower)
    if m:
        delta = datetime.timedelta(**{_UNITS[m.group(3)]: int(m.group(2))})
        return now.astimezone(tz) + delta if m.group(1) == '+' else now.astimezone(tz) - delta
    if re.fullmatch(r'\d{4}-\d{2}-\d{2}', v):
        day = datetime.date.fromisoformat(v)
        return _midnight(day + datetime.timedelta(days=1) if end else day, tz)
    try:
        dt = datetime.datetime.fromisoformat(v)
    except ValueError:
        raise ValueError(f"invalid time {value!r}; use RFC3339, YYYY-MM-DD, today/tomorrow or +Nd") from None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=tz)
    return dt

def resolve_time_range(tz: ZoneInfo|str|None = None,
                       from_: str|None = None,
                       to: str|None = None,
                       today: bool = False,
                       tomorrow: bool = False,
                       week: bool = False,
                       days: int = 0,
                       now: datetime.datetime|None = None) -> TimeRange:
    """
    Work out the window from the CLI flags.  With nothing given it is today.
    --today/--tomorrow/--week pick a whole day or Monday to Monday and can't be
    mixed with each other.  --days stretches the default window, explicit --to wins.
    """
    zone = tz if isinstance(tz, ZoneInfo) else ZoneInfo(str(tz)) if tz else ZoneInfo("UTC")
    current = now if now is not None else datetime.datetime.now(tz=zone)
    if current.tzinfo is None:
        current = current.replace(tzinfo=zone)
    if sum(bool(x) for x in (today, tomorrow, week)) > 1:
        raise ValueError("only one of --today, --tomorrow, --week may be given")
    if days < 0:
        raise ValueError("--days must not be negative")
    local_today = current.astimezone(zone).date()

    if today or tomorrow:
        if from_ or to:
            raise ValueError("--today/--tomorrow can't be combined with --from/--to")
        day = local_today + datetime.timedelta(days=1 if tomorrow else 0)
        start = _midnight(day, zone)
        return TimeRange(start, start + datetime.timedelta(days=days or 1), zone)
    if week:
        if from_ or to:
            raise ValueError("--week can't be combined with --from/--to")
        start = _midnight(local_today - datetime.timedelta(days=local_today.weekday()), zone)
        return TimeRange(start, start + datetime.timedelta(days=7), zone)

    start = parse_time(from_, zone, current) if from_ else _midnight(local_today, zone)
    if to:
        end = parse_time(to, zone, current, end=True)
    else:
        end = start + datetime.timedelta(days=days or 1)
    if end <= start:
        raise ValueError(f"end {end.isoformat()} must be after start {start.isoformat()}")
    return TimeRange(start, end, zone)
