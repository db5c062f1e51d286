import json

import pytest

from gwscli.access import gws, CONFIG_DIR

@pytest.fixture
def fresh():
    gws.reset()
    yield gws
    gws.reset()
    gws.append_scopes("calendar-ro", "groups-ro")

def test_scopes(fresh):
    assert(gws.get_scope("calendar-ro") == "https://www.googleapis.com/auth/calendar.readonly")
    assert(gws.get_scope("https://www.googleapis.com/auth/drive") == "https://www.googleapis.com/auth/drive")
    assert(gws.get_scope("nonsense") == "")
    fresh.append_scopes("calendar-ro", ["groups-ro", "calendar-ro"])
    assert(fresh.scopes == ["https://www.googleapis.com/auth/calendar.readonly",
                            "https://www.googleapis.com/auth/cloud-identity.groups.readonly"])
    assert(not fresh.connected)

def test_cache_per_account(fresh):
    assert(fresh.cred_cache == CONFIG_DIR / "tokens.json")
    fresh.account = "me@x.com"
    assert(fresh.cred_cache == CONFIG_DIR / "tokens_me@x.com.json")
    fresh.cred_cache = "/tmp/elsewhere.json"
    assert(str(fresh.cred_cache) == "/tmp/elsewhere.json")

def test_load_config(fresh, tmp_path, monkeypatch):
    monkeypatch.delenv("GWSCLI_ACCOUNT", raising=False)
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"account": "ops@x.com", "secrets": str(tmp_path / "secrets.json"),
                                "port": 8765, "scopes": ["calendar-ro"]}), encoding="utf-8")
    fresh.load_config(path)
    assert(fresh.account == "ops@x.com")
    assert(fresh.client_secrets == tmp_path / "secrets.json")
    assert(fresh.auth_port == 8765)
    assert(fresh.config["account"] == "ops@x.com")
    assert(fresh.scopes == ["https://www.googleapis.com/auth/calendar.readonly"])

def test_load_config_env(fresh, tmp_path, monkeypatch):
    path = tmp_path / "config.json"
    path.write_text("{}", encoding="utf-8")
    monkeypatch.setenv("GWSCLI_CONFIG", str(path))
    monkeypatch.setenv("GWSCLI_ACCOUNT", "env@x.com")
    fresh.load_config()
    assert(fresh.account == "env@x.com")

def test_load_config_missing(fresh, tmp_path, monkeypatch):
    monkeypatch.delenv("GWSCLI_CONFIG", raising=False)
    with pytest.raises(FileNotFoundError):
        fresh.load_config(tmp_path / "nope.json")
    path = tmp_path / "bad.json"
    path.write_text("[1, 2]", encoding="utf-8")
    with pytest.raises(ValueError):
        fresh.load_config(path)
