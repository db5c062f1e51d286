"""
gwscli command line.

Usage:
    gwscli calendar team GROUP_EMAIL [--today|--week|--from X --to Y] [--freebusy] [-q TEXT] [--no-dedup]
    gwscli calendar events CALENDAR_ID [--from X --to Y] [--max N]
    gwscli groups list
    gwscli groups members GROUP_EMAIL
"""

import argparse
import logging
import sys

from googleapiclient.errors import HttpError

from . import __version__
from .access import gws
from .calendar import Calendar, Event
from .groups import GroupRelation, Group, Membership, resolve_members, wrap_cloud_identity_error
from .output import truncate, write_json, write_table
from .team import aggregate_team_events, query_team_freebusy
from .timerange import resolve_time_range

log = logging.getLogger(__name__)

class UsageError(ValueError):
    """Bad invocation, exits 2."""

def _add_time_range_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--from", dest="from_", metavar="TIME",
                        help="Start (RFC3339, YYYY-MM-DD, today, tomorrow, +2d; default: start of today)")
    parser.add_argument("--to", metavar="TIME", help="End (same formats; default: start + 1 day)")
    parser.add_argument("--days", type=int, default=0, help="Window length in days when --to is not given")
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--today", action="store_true", help="Today only (calendar time zone)")
    group.add_argument("--tomorrow", action="store_true", help="Tomorrow only")
    group.add_argument("--week", action="store_true", help="This week, Monday to Sunday")

def _time_range(args: argparse.Namespace):
    tz = Calendar.primary_zone()
    try:
        return resolve_time_range(tz, from_=args.from_, to=args.to, today=args.today,
                                  tomorrow=args.tomorrow, week=args.week, days=args.days)
    except ValueError as e:
        raise UsageError(str(e)) from e

def _require_account() -> str:
    if not gws.account:
        raise UsageError("an account is required; pass --account or set GWSCLI_ACCOUNT")
    return gws.account

def cmd_calendar_team(args: argparse.Namespace) -> int:
    group_email = (args.group_email or "").strip()
    if not group_email:
        raise UsageError("group email required")
    tr = _time_range(args)
    try:
        members = resolve_members(group_email)
    except ValueError as e:
        raise UsageError(str(e)) from e
    log.debug("%s has %d user members, window %s", group_email, len(members), tr)
    if not members:
        print(f"No user members in group {group_email}", file=sys.stderr)
        return 0
    time_min, time_max = tr.rfc3339()
    header = {'group': group_email, 'timeMin': time_min, 'timeMax': time_max, 'timezone': str(tr.tz)}

    if args.freebusy:
        blocks = query_team_freebusy(members, tr)
        if args.json:
            write_json({**header, 'freebusy': blocks})
            return 0
        rows = []
        for b in blocks:
            busy = ", ".join(b.busy) or "(free)"
            if b.errors:
                busy = "error: " + ", ".join(b.errors)
            rows.append([b.email, busy])
        write_table(["WHO", "BUSY BLOCKS"], rows)
        return 0

    events, _ = aggregate_team_events(members, tr, query=args.query, max_per_member=args.max,
                                      dedup=not args.no_dedup)
    if args.json:
        write_json({**header, 'events': events})
        return 0
    if not events:
        print("No events found", file=sys.stderr)
        return 0
    write_table(["WHO", "START", "END", "SUMMARY"],
                [[e.who, e.start, e.end, truncate(e.summary, 40)] for e in events])
    return 0

def cmd_calendar_events(args: argparse.Namespace) -> int:
    calendar_id = (args.calendar_id or "").strip()
    if not calendar_id:
        raise UsageError("calendarId required")
    tr = _time_range(args)
    time_min, time_max = tr.rfc3339()
    kwargs = {'timeMin': time_min, 'timeMax': time_max, 'singleEvents': True, 'orderBy': "startTime"}
    if args.query:
        kwargs['q'] = args.query
    events = Event.list(calendar_id, max_results=args.max, **kwargs)
    if args.json:
        write_json({'calendarId': calendar_id, 'timeMin': time_min, 'timeMax': time_max,
                    'events': [e.trim() for e in events]})
        return 0
    if not events:
        print("No events found", file=sys.stderr)
        return 0
    write_table(["ID", "START", "END", "SUMMARY"],
                [[e.id, str(e.start) if e.start else "", str(e.end) if e.end else "", e.summary or ""]
                 for e in events])
    return 0

def _page_hint(token: str|None) -> None:
    if token:
        print(f"# Next page: --page {token}", file=sys.stderr)

def cmd_groups_list(args: argparse.Namespace) -> int:
    account = _require_account()
    try:
        groups, token = GroupRelation.search(account, page_size=args.max, page_token=args.page)
    except HttpError as e:
        raise wrap_cloud_identity_error(e) from e
    if args.json:
        write_json({'groups': [{'groupName': g.email, 'displayName': g.displayName or "", 'role': g.relation}
                               for g in groups],
                    'nextPageToken': token or ""})
        return 0
    if not groups:
        print("No groups found", file=sys.stderr)
        return 0
    write_table(["GROUP", "NAME", "RELATION"], [[g.email, g.displayName or "", g.relation] for g in groups])
    _page_hint(token)
    return 0

def cmd_groups_members(args: argparse.Namespace) -> int:
    group_email = (args.group_email or "").strip()
    if not group_email:
        raise UsageError("group email required")
    try:
        name = Group.lookup(group_email)
        members, token = Membership.page(name, page_size=args.max, page_token=args.page)
    except HttpError as e:
        raise wrap_cloud_identity_error(e, f"failed to find group {group_email!r}") from e
    members = [m for m in members if m]
    if args.json:
        write_json({'members': [{'email': m.email, 'role': m.role, 'type': m.type or ""} for m in members],
                    'nextPageToken': token or ""})
        return 0
    if not members:
        print(f"No members in group {group_email}", file=sys.stderr)
        return 0
    write_table(["EMAIL", "ROLE", "TYPE"], [[m.email, m.role, m.type or ""] for m in members])
    _page_hint(token)
    return 0

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="gwscli", description="Google Workspace from the command line")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--account", help="Account email (default: $GWSCLI_ACCOUNT or config)")
    parser.add_argument("--config", help="Config file (default: $GWSCLI_CONFIG or ~/.config/gwscli/config.json)")
    parser.add_argument("--json", action="store_true", help="JSON output")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="service", required=True)

    cal = sub.add_parser("calendar", help="Google Calendar")
    cal_sub = cal.add_subparsers(dest="command", required=True)

    team = cal_sub.add_parser("team", help="Show events for all members of a Google Group")
    team.add_argument("group_email", help="Group email, e.g. engineering@example.com")
    _add_time_range_args(team)
    team.add_argument("--freebusy", action="store_true", help="Only busy blocks (single API call)")
    team.add_argument("-q", "--query", default="", help="Filter events by title (case-insensitive)")
    team.add_argument("--max", type=int, default=100, help="Max events per member calendar")
    team.add_argument("--no-dedup", action="store_true", help="One row per member, don't merge shared events")
    team.set_defaults(func=cmd_calendar_team)

    events = cal_sub.add_parser("events", help="List events of a calendar")
    events.add_argument("calendar_id", help="Calendar ID, 'primary' or someone's email")
    _add_time_range_args(events)
    events.add_argument("--max", type=int, default=10, help="Max results")
    events.add_argument("-q", "--query", default="", help="Free text search")
    events.set_defaults(func=cmd_calendar_events)

    grp = sub.add_parser("groups", help="Cloud Identity groups")
    grp_sub = grp.add_subparsers(dest="command", required=True)

    glist = grp_sub.add_parser("list", help="List groups you belong to")
    glist.add_argument("--max", type=int, default=100, help="Max results")
    glist.add_argument("--page", help="Page token")
    glist.set_defaults(func=cmd_groups_list)

    members = grp_sub.add_parser("members", help="List members of a group")
    members.add_argument("group_email", help="Group email")
    members.add_argument("--max", type=int, default=100, help="Max results")
    members.add_argument("--page", help="Page token")
    members.set_defaults(func=cmd_groups_members)
    return parser

def setup_logging(verbose: bool = False) -> None:
    """
    Diagnostics and per-member warnings go to stderr, stdout is only results.
    """
    logger = logging.getLogger("gwscli")
    for h in list(logger.handlers):
        logger.removeHandler(h)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    # the google client is chatty at debug
    logging.getLogger("googleapiclient").setLevel(logging.WARNING)

def main(argv: list[str]|None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose)
    try:
        gws.load_config(args.config)
        if args.account:
            gws.account = args.account
        return args.func(args)
    except UsageError as e:
        print(f"{parser.prog}: error: {e}", file=sys.stderr)
        return 2
    except (HttpError, RuntimeError, OSError, ValueError) as e:
        print(f"{parser.prog}: error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130

if __name__ == "__main__":
    sys.exit(main())
