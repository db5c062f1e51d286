"""
Calendar view across every member of a group.

Events mode reads each member's calendar on a bounded thread pool, filters each
member's events on its own, then merges, sorts and collapses the copies of a
shared meeting into one row listing everybody who has it.  Free/busy mode is a
single batched query instead.
"""

from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from dataclasses import dataclass, field, replace
from typing import Callable, Iterable, List, Tuple
import datetime
import logging
import threading
from zoneinfo import ZoneInfo

from .resources import GoogleWorkSpaceResourceBase
from .calendar import Event, EventDateTime, FreeBusy, FreeBusyCalendar
from .timerange import TimeRange
from .access import gws

log = logging.getLogger(__name__)

# upper bound on calendar reads in flight at once
MAX_CONCURRENT_FETCHES = 10
# how often the collector looks at the cancel flag while reads are in flight
CANCEL_POLL_SECONDS = 0.05
BUSY_SUMMARY = "(busy)"
MIN_SORT_KEY = datetime.datetime.min.replace(tzinfo=datetime.timezone.utc)

# (member, timeMin, timeMax, maxResults) -> raw events
ListEvents = Callable[[str, str, str, int], Iterable[Event|dict]]

class MemberFetchError(RuntimeError):
    """
    Reading one member's calendar failed.  Reported as a warning, the rest of
    the team is still shown.
    """
    def __init__(self, member: str, cause: Exception|str) -> None:
        super().__init__(f"{member}: {cause}")
        self.member = member
        self.cause = cause

class FreeBusyError(RuntimeError):
    """The batched free/busy query failed, there is nothing partial to show."""

@dataclass
class TeamEvent(GoogleWorkSpaceResourceBase):
    """
    One event as seen on one or more members' calendars.
    who grows as copies of the same event id are merged.
    """
    who: str = field(default="")
    id: str = field(default="")
    start: str = field(default="")
    end: str = field(default="")
    summary: str = field(default="")
    status: str = field(default="")
    sort_key: datetime.datetime = field(default=MIN_SORT_KEY, repr=False, compare=False)
    # (member index, position in that member's response), breaks sort ties deterministically
    order: Tuple[int, int] = field(default=(0, 0), repr=False, compare=False)

    def to_base(self) -> dict:
        b = {'who': self.who, 'id': self.id, 'start': self.start, 'end': self.end, 'summary': self.summary}
        if self.status:
            b['status'] = self.status
        return b

@dataclass
class BusyBlock(GoogleWorkSpaceResourceBase):
    """
    A member's busy intervals, formatted HH:MM-HH:MM in the range's zone.
    """
    email: str = field(default="")
    busy: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    def to_base(self) -> dict:
        b = {'email': self.email, 'busy': list(self.busy)}
        if self.errors:
            b['errors'] = list(self.errors)
        return b

def _clock(value: datetime.datetime|None, tz: ZoneInfo) -> str:
    if value is None:
        return ""
    if value.tzinfo is None:
        value = value.replace(tzinfo=tz)
    return value.astimezone(tz).strftime("%H:%M")

def _display(edt: EventDateTime|None, tz: ZoneInfo) -> str:
    if not edt:
        return ""
    if edt.dateTime:
        return _clock(edt.dateTime, tz)
    return edt.date.isoformat()

def event_sort_key(event: Event, tz: ZoneInfo) -> datetime.datetime:
    """
    Timed events sort by their start instant, all-day ones by local midnight of
    their date, no usable start sorts first.
    """
    if event.all_day():
        return datetime.datetime.combine(event.start.date, datetime.time.min, tzinfo=tz)
    if not event.start:
        return MIN_SORT_KEY
    dt = event.start.dateTime
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=tz)

def normalize_event(raw: Event|dict, tz: ZoneInfo, query_lower: str = "", member: str = "",
                    order: Tuple[int, int] = (0, 0)) -> TeamEvent|None:
    """
    Turn one raw event from member's calendar into a TeamEvent, or None if it should be dropped.
    Declined events go first, then private titles are masked, and only then is the
    query matched so a masked title can never match.
    """
    event = raw if isinstance(raw, Event) else Event.from_response(raw)
    if event.declined_by_self():
        return None
    summary = BUSY_SUMMARY if event.is_private() else (event.summary or "")
    if query_lower and query_lower not in summary.lower():
        return None
    if event.all_day():
        end = event.end.date.isoformat() if event.end and event.end.date else ""
    elif event.start:
        end = _clock(event.end.dateTime, tz) if event.end and event.end.dateTime else ""
    else:
        end = ""
    return TeamEvent(who=member,
                     id=event.id or "",
                     start=_display(event.start, tz),
                     end=end,
                     summary=summary,
                     status=event.status or "",
                     sort_key=event_sort_key(event, tz),
                     order=order)

def sort_team_events(events: Iterable[TeamEvent]) -> List[TeamEvent]:
    return sorted(events, key=lambda e: (e.sort_key, e.order))

def dedupe_team_events(events: Iterable[TeamEvent]) -> List[TeamEvent]:
    """
    Collapse events sharing an id into the first one seen, appending the other owners to who.
    Expects sorted input so the merged entry keeps the earliest position.  The input is not modified.
    """
    seen = {}
    result = []
    for ev in events:
        idx = seen.get(ev.id)
        if idx is None:
            seen[ev.id] = len(result)
            result.append(replace(ev))
            continue
        canonical = result[idx]
        owners = [w.strip() for w in canonical.who.split(",")]
        for w in ev.who.split(","):
            if w.strip() not in owners:
                owners.append(w.strip())
        canonical.who = ", ".join(owners)
    return result

def _list_member_events(member: str, time_min: str, time_max: str, max_results: int) -> List[Event]:
    # each worker gets its own transport, the shared one isn't thread safe
    return Event.list(member, max_results=max_results, http=gws.authorized_http(),
                      timeMin=time_min, timeMax=time_max, singleEvents=True, orderBy="startTime")

def aggregate_team_events(members: List[str],
                          time_range: TimeRange,
                          query: str = "",
                          max_per_member: int = 100,
                          dedup: bool = True,
                          list_events: ListEvents|None = None,
                          cancel: threading.Event|None = None,
                          max_workers: int = MAX_CONCURRENT_FETCHES) -> Tuple[List[TeamEvent], List[MemberFetchError]]:
    """
    Read every member's events in time_range and merge them into one ordered list.

    At most max_workers (never more than MAX_CONCURRENT_FETCHES) reads are in flight.  A member whose read fails is left out
    and reported in the returned errors.  Setting cancel stops waiting straight away, the
    members whose reads haven't finished are reported as cancelled, finished reads are kept.
    """
    if not members:
        return [], []
    if list_events is None:
        # build the service before fanning out so any auth prompt happens once, here
        gws.get_service("calendar", "v3")
        list_events = _list_member_events
    time_min, time_max = time_range.rfc3339()
    query_lower = (query or "").lower()
    positions = {}
    for i, m in enumerate(members):
        positions.setdefault(m, i)

    def fetch(index: int, member: str) -> List[TeamEvent]:
        if cancel is not None and cancel.is_set():
            raise MemberFetchError(member, "cancelled")
        found = []
        for pos, raw in enumerate(list_events(member, time_min, time_max, max_per_member) or []):
            if raw is None:
                continue
            ev = normalize_event(raw, time_range.tz, query_lower, member, (index, pos))
            if ev is not None:
                found.append(ev)
        return found

    def collect(future) -> None:
        try:
            events.extend(future.result())
        except MemberFetchError as e:
            errors.append(e)
        except Exception as e:
            errors.append(MemberFetchError(futures[future], e))

    events = []
    errors = []
    pool = ThreadPoolExecutor(max_workers=max(1, min(max_workers, MAX_CONCURRENT_FETCHES)),
                              thread_name_prefix="gwscli-team")
    futures = {pool.submit(fetch, positions[m], m): m for m in positions}
    pending = set(futures)
    try:
        while pending and not (cancel is not None and cancel.is_set()):
            done, pending = wait(pending, timeout=CANCEL_POLL_SECONDS, return_when=FIRST_COMPLETED)
            for future in done:
                collect(future)
    except KeyboardInterrupt:
        # don't sit through the queued reads on ctrl-c
        pool.shutdown(wait=False, cancel_futures=True)
        raise
    # cancelled with reads still in flight: stop waiting, they finish in the background
    pool.shutdown(wait=not pending, cancel_futures=True)
    for future in pending:
        if future.done() and not future.cancelled():
            collect(future)
        else:
            errors.append(MemberFetchError(futures[future], "cancelled"))

    errors.sort(key=lambda e: positions[e.member])
    for e in errors:
        log.warning("%s", e)
    events = sort_team_events(events)
    if dedup:
        events = dedupe_team_events(events)
    log.debug("%d events from %d members, %d failed", len(events), len(positions), len(errors))
    return events, errors

def _interval(start: datetime.datetime|None, end: datetime.datetime|None, tz: ZoneInfo) -> str:
    return f"{_clock(start, tz)}-{_clock(end, tz)}"

def query_team_freebusy(members: List[str],
                        time_range: TimeRange,
                        query_freebusy: Callable|None = None) -> List[BusyBlock]:
    """
    One batched free/busy query for all members.  Any failure of that call is fatal.
    Members the response doesn't mention are left out.
    """
    if not members:
        return []
    query = query_freebusy or FreeBusy.query
    try:
        calendars = query(list(members), time_range.start, time_range.end, time_range.tz)
    except Exception as e:
        raise FreeBusyError(f"freebusy query: {e}") from e
    blocks = []
    for member in members:
        cal = (calendars or {}).get(member)
        if cal is None:
            continue
        if not isinstance(cal, FreeBusyCalendar):
            cal = FreeBusyCalendar.from_response(cal)
        busy = [_interval(s, e, time_range.tz) for s, e in cal.intervals()]
        blocks.append(BusyBlock(email=member, busy=busy, errors=cal.reasons()))
    return blocks
