import json
import logging
from functools import partial
from zoneinfo import ZoneInfo

import pytest

from gwscli import cli, team
from gwscli.access import gws

STANDUP = {"id": "ev1", "summary": "Daily Standup",
           "start": {"dateTime": "2026-01-05T09:00:00Z"}, "end": {"dateTime": "2026-01-05T09:30:00Z"}}
ONE_ON_ONE = {"id": "ev2", "summary": "Bob's 1:1",
              "start": {"dateTime": "2026-01-05T14:00:00Z"}, "end": {"dateTime": "2026-01-05T15:00:00Z"}}
CALENDARS = {"alice@example.com": [STANDUP], "bob@example.com": [STANDUP, ONE_ON_ONE]}
RANGE_ARGS = ["--from", "2026-01-05T00:00:00Z", "--to", "2026-01-06T00:00:00Z"]

@pytest.fixture(autouse=True)
def offline(monkeypatch, tmp_path):
    config = tmp_path / "config.json"
    config.write_text("{}", encoding="utf-8")
    monkeypatch.setenv("GWSCLI_CONFIG", str(config))
    monkeypatch.delenv("GWSCLI_ACCOUNT", raising=False)
    monkeypatch.setattr(cli.Calendar, "primary_zone", staticmethod(lambda: ZoneInfo("UTC")))
    monkeypatch.setattr(cli, "resolve_members", lambda group: ["alice@example.com", "bob@example.com"])

    def list_events(member, time_min, time_max, max_results):
        if member not in CALENDARS:
            raise RuntimeError("notFound")
        return CALENDARS[member]
    monkeypatch.setattr(cli, "aggregate_team_events", partial(team.aggregate_team_events, list_events=list_events))
    logger = logging.getLogger("gwscli")
    handlers, level = list(logger.handlers), logger.level
    yield
    gws.account = ""
    # cli.main binds a handler to the captured stderr, which is closed after the test
    logger.handlers[:] = handlers
    logger.setLevel(level)

def test_team_json(capsys):
    assert(cli.main(["--json", "--account", "a@b.com", "calendar", "team", "engineering@example.com"] + RANGE_ARGS) == 0)
    out = json.loads(capsys.readouterr().out)
    assert(out["group"] == "engineering@example.com")
    assert(out["timeMin"] == "2026-01-05T00:00:00+00:00")
    assert(out["timeMax"] == "2026-01-06T00:00:00+00:00")
    assert(out["timezone"] == "UTC")
    assert(out["events"] == [
        {"who": "alice@example.com, bob@example.com", "id": "ev1", "start": "09:00", "end": "09:30",
         "summary": "Daily Standup"},
        {"who": "bob@example.com", "id": "ev2", "start": "14:00", "end": "15:00", "summary": "Bob's 1:1"},
    ])

def test_team_table_no_dedup(capsys):
    assert(cli.main(["calendar", "team", "engineering@example.com", "--no-dedup"] + RANGE_ARGS) == 0)
    lines = [l.split() for l in capsys.readouterr().out.strip().splitlines()]
    assert(lines[0] == ["WHO", "START", "END", "SUMMARY"])
    assert([l[0] for l in lines[1:]] == ["alice@example.com", "bob@example.com", "bob@example.com"])
    assert(lines[3][1:] == ["14:00", "15:00", "Bob's", "1:1"])

def test_team_query_no_events(capsys):
    assert(cli.main(["calendar", "team", "engineering@example.com", "-q", "retro"] + RANGE_ARGS) == 0)
    captured = capsys.readouterr()
    assert(captured.out == "")
    assert("No events found" in captured.err)

def test_team_member_failure_is_warning(monkeypatch, capsys):
    monkeypatch.setattr(cli, "resolve_members", lambda group: ["alice@example.com", "ghost@example.com"])
    assert(cli.main(["--json", "calendar", "team", "engineering@example.com"] + RANGE_ARGS) == 0)
    captured = capsys.readouterr()
    assert([e["who"] for e in json.loads(captured.out)["events"]] == ["alice@example.com"])
    assert("WARNING: ghost@example.com: notFound" in captured.err)

def test_team_freebusy(monkeypatch, capsys):
    def fake_query(ids, start, end, tz):
        return {"alice@example.com": {"busy": [{"start": "2026-01-05T09:00:00Z", "end": "2026-01-05T10:00:00Z"}]},
                "bob@example.com": {}}
    monkeypatch.setattr(cli, "query_team_freebusy", partial(team.query_team_freebusy, query_freebusy=fake_query))
    assert(cli.main(["--json", "calendar", "team", "eng@example.com", "--freebusy"] + RANGE_ARGS) == 0)
    out = json.loads(capsys.readouterr().out)
    assert(out["freebusy"] == [{"email": "alice@example.com", "busy": ["09:00-10:00"]},
                               {"email": "bob@example.com", "busy": []}])

    assert(cli.main(["calendar", "team", "eng@example.com", "--freebusy"] + RANGE_ARGS) == 0)
    out = capsys.readouterr().out
    assert("09:00-10:00" in out)
    assert("(free)" in out)

def test_team_freebusy_failure_exit_code(monkeypatch, capsys):
    def fail(ids, start, end, tz):
        raise RuntimeError("backendError")
    monkeypatch.setattr(cli, "query_team_freebusy", partial(team.query_team_freebusy, query_freebusy=fail))
    assert(cli.main(["calendar", "team", "eng@example.com", "--freebusy"] + RANGE_ARGS) == 1)
    assert("backendError" in capsys.readouterr().err)

def test_team_empty_group(monkeypatch, capsys):
    monkeypatch.setattr(cli, "resolve_members", lambda group: [])
    assert(cli.main(["calendar", "team", "empty@example.com"] + RANGE_ARGS) == 0)
    assert("No user members in group empty@example.com" in capsys.readouterr().err)

def test_usage_errors(capsys):
    assert(cli.main(["calendar", "team", "  "] + RANGE_ARGS) == 2)
    assert("group email required" in capsys.readouterr().err)
    assert(cli.main(["calendar", "team", "eng@example.com", "--from", "whenever"]) == 2)
    assert(cli.main(["groups", "list"]) == 2)
    assert("account is required" in capsys.readouterr().err)

def test_argparse_rejects_conflicting_flags():
    with pytest.raises(SystemExit) as e:
        cli.main(["calendar", "team", "eng@example.com", "--today", "--week"])
    assert(e.value.code == 2)

def test_account_from_environment(monkeypatch, capsys):
    monkeypatch.setenv("GWSCLI_ACCOUNT", "env@example.com")
    seen = []
    def fake_search(member, page_size=100, page_token=None):
        seen.append((member, page_size, page_token))
        return [], None
    monkeypatch.setattr(cli.GroupRelation, "search", staticmethod(fake_search))
    assert(cli.main(["groups", "list", "--max", "5"]) == 0)
    assert(seen == [("env@example.com", 5, None)])
    assert("No groups found" in capsys.readouterr().err)

def test_groups_members(monkeypatch, capsys):
    from gwscli.groups import Membership
    monkeypatch.setattr(cli.Group, "lookup", staticmethod(lambda email: "groups/abc"))
    page = [Membership.from_response({"preferredMemberKey": {"id": "alice@example.com"}, "type": "USER",
                                      "roles": [{"name": "MEMBER"}, {"name": "OWNER"}]}),
            Membership.from_response({"preferredMemberKey": {"id": "team@example.com"}, "type": "GROUP"})]
    monkeypatch.setattr(cli.Membership, "page", staticmethod(lambda name, page_size=200, page_token=None: (page, "more")))
    assert(cli.main(["--json", "groups", "members", "eng@example.com"]) == 0)
    out = json.loads(capsys.readouterr().out)
    assert(out["members"] == [{"email": "alice@example.com", "role": "OWNER", "type": "USER"},
                              {"email": "team@example.com", "role": "MEMBER", "type": "GROUP"}])
    assert(out["nextPageToken"] == "more")

    assert(cli.main(["groups", "members", "eng@example.com"]) == 0)
    captured = capsys.readouterr()
    assert(captured.out.splitlines()[0].split() == ["EMAIL", "ROLE", "TYPE"])
    assert("--page more" in captured.err)

def test_calendar_events(monkeypatch, capsys):
    from gwscli.calendar import Event
    seen = {}
    def fake_list(calendar_id, max_results=0, http=None, **kwargs):
        seen.update(kwargs, calendar_id=calendar_id, max_results=max_results)
        return [Event.from_response(STANDUP)]
    monkeypatch.setattr(cli.Event, "list", staticmethod(fake_list))
    assert(cli.main(["calendar", "events", "primary", "--max", "5", "-q", "standup"] + RANGE_ARGS) == 0)
    assert(seen["calendar_id"] == "primary" and seen["max_results"] == 5)
    assert(seen["q"] == "standup" and seen["singleEvents"] is True)
    lines = capsys.readouterr().out.splitlines()
    assert(lines[1].split()[0] == "ev1")
    assert("Daily Standup" in lines[1])

def test_setup_logging_replaces_handler():
    logger = logging.getLogger("gwscli")
    cli.setup_logging()
    cli.setup_logging(verbose=True)
    assert(len(logger.handlers) == 1)
    assert(logger.level == logging.DEBUG)
    cli.setup_logging()
    assert(len(logger.handlers) == 1)
    assert(logger.level == logging.WARNING)
