
from dataclasses import dataclass, field, asdict
from typing import List, Self, Tuple
import datetime
import logging
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
from functools import partial

from .resources import GoogleWorkSpaceResourceBase

from .access import gws

log = logging.getLogger(__name__)

gws.append_scopes("calendar-ro")

_get_service = partial(gws.get_service, "calendar", "v3")

def _parse_datetime(value) -> datetime.datetime|None:
    try:
        return datetime.datetime.fromisoformat(str(value)).replace(microsecond=0)
    except ValueError:
        log.debug("ignoring unparseable datetime %r", value)
        return None

def _parse_zone(value) -> ZoneInfo|None:
    try:
        return ZoneInfo(str(value))
    except (ZoneInfoNotFoundError, ValueError):
        log.debug("ignoring unknown time zone %r", value)
        return None

def rfc3339(value: datetime.datetime, tz: ZoneInfo|None = None) -> str:
    """
    timeMin/timeMax MUST carry an offset, naive values are taken in tz (or UTC).
    """
    dt = value.replace(microsecond=0)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=tz if tz is not None else datetime.timezone.utc)
    return dt.isoformat()

@dataclass
class Calendar(GoogleWorkSpaceResourceBase):
    """
    https://developers.google.com/calendar/api/v3/reference/calendars#resource-representations
    Typically you'd interact with this via ::get and an id, which is usually someone's email address
    """
    kind: str|None = field(default=None)
    etag: str|None = field(default=None)
    id: str|None = field(default=None)
    summary: str|None = field(default=None)
    description: str|None = field(default=None)
    location: str|None = field(default=None)
    timeZone: ZoneInfo|str|None = field(default=None)
    conferenceProperties: dict|None = field(default=None)

    def __post_init__(self) -> None:
        self.fixup()

    def __bool__(self) -> bool:
        return self.kind == "calendar#calendar" and bool(self.id)

    def __str__(self) -> str:
        if bool(self):
            return f"{self.summary}<{self.id}>"
        return "<empty>"

    def __repr__(self) -> str:
        return f"{str(self.__class__)}:{str(self)}"

    def to_base(self) -> dict:
        self.fixup()
        b = asdict(self)
        b['timeZone'] = str(self.timeZone) if self.timeZone is not None else None
        return b

    def fixup(self) -> None:
        if self.timeZone is not None and not isinstance(self.timeZone, ZoneInfo):
            self.timeZone = _parse_zone(self.timeZone)

    @staticmethod
    def get(id: str = "primary") -> Self:
        """
        https://developers.google.com/calendar/api/v3/reference/calendars/get
        The 'primary' default is the calendar of the authenticated account.
        """
        i = str(id)
        if i:
            response = _get_service().calendars().get(calendarId=i).execute()
            return Calendar.from_response(response)
        return Calendar()

    @staticmethod
    def primary_zone() -> ZoneInfo:
        """
        Time zone of the account's primary calendar, UTC if it doesn't say.
        """
        tz = Calendar.get("primary").timeZone
        return tz if isinstance(tz, ZoneInfo) else ZoneInfo("UTC")

@dataclass
class EventDateTime(GoogleWorkSpaceResourceBase):
    """
    Event start/end dicts use distinct fields to signal all-day ('date') vs specific
    day/time ('dateTime') so carry both here and work out at runtime what is needed.
    Values that don't parse are dropped rather than failing the whole event.
    """
    date: datetime.date|str|None = field(default=None)
    dateTime: datetime.datetime|str|None = field(default=None)
    timeZone: ZoneInfo|str|None = field(default=None)

    def __bool__(self) -> bool:
        return bool(self.date) or bool(self.dateTime)

    def __str__(self) -> str:
        s = "<empty>"
        if self.dateTime:
            s = self.dateTime.isoformat()
        elif self.date:
            s = self.date.isoformat()
        if self.timeZone:
            s = f'{s}:{str(self.timeZone)}'
        return s

    def __post_init__(self) -> None:
        self.fixup()

    def fixup(self) -> None:
        if self.date is not None and not isinstance(self.date, datetime.date):
            try:
                self.date = datetime.date.fromisoformat(str(self.date))
            except ValueError:
                log.debug("ignoring unparseable date %r", self.date)
                self.date = None
        if self.dateTime is not None and not isinstance(self.dateTime, datetime.datetime):
            self.dateTime = _parse_datetime(self.dateTime)
        if self.timeZone is not None and not isinstance(self.timeZone, ZoneInfo):
            self.timeZone = _parse_zone(self.timeZone)
        # 'date' means all-day, can't have 'date' and 'dateTime' so one has to take precedence
        if self.dateTime and self.date:
            self.date = None

    def to_base(self) -> dict|None:
        self.fixup()
        base = {'date': self.date.isoformat() if self.date else None,
                'dateTime': self.dateTime.isoformat() if self.dateTime else None,
                'timeZone': str(self.timeZone) if self.timeZone else None}
        base = {k: v for k, v in base.items() if v is not None}
        return None if not base else base

@dataclass
class Event(GoogleWorkSpaceResourceBase):
    """
    https://developers.google.com/calendar/api/v3/reference/events#resource-representations
    Only the parts of the event the CLI reads are modelled.
    """
    kind: str|None = field(default=None)
    etag: str|None = field(default=None)
    id: str|None = field(default=None)
    status: str|None = field(default=None)
    htmlLink: str|None = field(default=None)
    summary: str|None = field(default=None)
    description: str|None = field(default=None)
    location: str|None = field(default=None)
    creator: dict|None = field(default=None)
    organizer: dict|None = field(default=None)
    start: EventDateTime|dict|None = field(default=None)
    end: EventDateTime|dict|None = field(default=None)
    recurringEventId: str|None = field(default=None)
    transparency: str|None = field(default=None)
    visibility: str|None = field(default=None)
    iCalUID: str|None = field(default=None)
    attendees: List[dict]|None = field(default=None)
    hangoutLink: str|None = field(default=None)
    eventType: str|None = field(default=None)

    def __post_init__(self) -> None:
        self.fixup()

    def fixup(self) -> None:
        if self.start is not None and not isinstance(self.start, EventDateTime):
            self.start = EventDateTime.from_response(self.start)
        if self.end is not None and not isinstance(self.end, EventDateTime):
            self.end = EventDateTime.from_response(self.end)

    def __bool__(self) -> bool:
        return bool(self.id)

    def __str__(self) -> str:
        ret = "<empty>"
        if self:
            ret = f"{self.summary}<{self.id}>"
            if self.start:
                ret += f"({str(self.start)}-->{str(self.end)})"
        return ret

    def all_day(self) -> bool:
        """
        Is this an all-day event?  That is, is it just date components and not datetime?
        """
        return bool(self.start) and self.start.date is not None

    def declined_by_self(self) -> bool:
        """
        Did the owner of the calendar this was read from decline it?
        """
        for attendee in self.attendees or []:
            if attendee.get('self') and attendee.get('responseStatus') == 'declined':
                return True
        return False

    def is_private(self) -> bool:
        return self.visibility in ("private", "confidential")

    def to_base(self) -> dict:
        self.fixup()
        b = asdict(self)
        b['start'] = self.start.to_base() if self.start else None
        b['end'] = self.end.to_base() if self.end else None
        return b

    @staticmethod
    def list(calendar_id: str|Calendar = "primary", max_results: int = 0, http=None, **kwargs) -> List[Self]:
        """
        https://developers.google.com/calendar/api/v3/reference/events/list
        kwargs are the query parameters for the method, check the documentation.
        max_results caps the total across pages, 0 reads every page.
        Pass an http transport when calling from a worker thread.
        """
        method = _get_service().events().list
        page_token = None
        cid = calendar_id.id if isinstance(calendar_id, Calendar) else str(calendar_id)
        kwargs.pop('pageToken', None)
        tz = None
        if 'timeZone' in kwargs:
            kwtz = kwargs['timeZone']
            if kwtz:
                tz = kwtz if isinstance(kwtz, ZoneInfo) else ZoneInfo(str(kwtz))
                kwargs['timeZone'] = str(tz)
            else:
                del kwargs['timeZone']
        for t in ['timeMin', 'timeMax']:
            if t in kwargs:
                tm = kwargs[t]
                if tm:
                    tmdt = tm if isinstance(tm, datetime.datetime) else datetime.datetime.fromisoformat(str(tm))
                    kwargs[t] = rfc3339(tmdt, tz)
                else:
                    del kwargs[t]
        if max_results > 0:
            # 2500 is the API's page ceiling
            kwargs['maxResults'] = min(max_results, 2500)
        events = []
        while True:
            response = method(calendarId=cid, pageToken=page_token, **kwargs).execute(http=http)
            for e in response.get('items', []):
                if e:
                    events.append(Event.from_response(e))
            if max_results > 0 and len(events) >= max_results:
                return events[:max_results]
            page_token = response.get('nextPageToken', None)
            if not page_token:
                break
        return events

@dataclass
class FreeBusyCalendar(GoogleWorkSpaceResourceBase):
    """
    One calendar's entry in a freebusy response.
    https://developers.google.com/calendar/api/v3/reference/freebusy/query#response
    """
    busy: List[dict]|None = field(default=None)
    errors: List[dict]|None = field(default=None)

    def intervals(self) -> List[Tuple[datetime.datetime|None, datetime.datetime|None]]:
        return [(_parse_datetime(b.get('start')), _parse_datetime(b.get('end'))) for b in self.busy or []]

    def reasons(self) -> List[str]:
        return [str(e.get('reason', '')) for e in self.errors or []]

class FreeBusy():
    """
    https://developers.google.com/calendar/api/v3/reference/freebusy
    """

    @staticmethod
    def query(ids: List[str], time_min: datetime.datetime|str, time_max: datetime.datetime|str,
              tz: ZoneInfo|None = None) -> dict[str, FreeBusyCalendar]:
        """
        Busy intervals for every id in one request.  Returns id -> FreeBusyCalendar
        for the calendars present in the response.
        """
        tmin = time_min if isinstance(time_min, datetime.datetime) else datetime.datetime.fromisoformat(str(time_min))
        tmax = time_max if isinstance(time_max, datetime.datetime) else datetime.datetime.fromisoformat(str(time_max))
        body = {'timeMin': rfc3339(tmin, tz),
                'timeMax': rfc3339(tmax, tz),
                'items': [{'id': i} for i in ids]}
        if tz is not None:
            body['timeZone'] = str(tz)
        response = _get_service().freebusy().query(body=body).execute()
        calendars = (response or {}).get('calendars', {}) or {}
        return {k: FreeBusyCalendar.from_response(v) for k, v in calendars.items()}
