
from collections.abc import Iterable
from pathlib import Path
import json
import copy
import logging
import os

import google.auth
import google.auth.exceptions
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from google_auth_httplib2 import AuthorizedHttp
from googleapiclient.discovery import build, Resource
import googleapiclient.discovery_cache as gws_discovery_cache
import httplib2

log = logging.getLogger(__name__)

CONFIG_DIR = Path.home() / ".config" / "gwscli"
CONFIG_ENV = "GWSCLI_CONFIG"
ACCOUNT_ENV = "GWSCLI_ACCOUNT"

class __GWSAccess():
    """
    Class encapsulating authenticated access to Google Workspace.
    See https://developers.google.com/workspace/guides/create-credentials#choose_the_access_credential_that_is_right_for_you
    for an overview of what you'll need.  Point it at the client secrets file and the OAuth
    confirmation screens are triggered on first use.  Sessions are cached per account and
    refreshed so confirmation does not need to happen repeatedly.
    Scopes are expected to be added by the command modules as needed and may trigger a refresh.

    One authenticated session per process makes sense for a CLI so this is a module singleton,
    services are then pulled from it with get_service().
    """

    __SCOPES = {
        "calendar": "https://www.googleapis.com/auth/calendar",
        "calendar-ro": "https://www.googleapis.com/auth/calendar.readonly",
        "events-ro": "https://www.googleapis.com/auth/calendar.events.readonly",
        "freebusy": "https://www.googleapis.com/auth/calendar.freebusy",
        "groups-ro": "https://www.googleapis.com/auth/cloud-identity.groups.readonly",
        "openid": "openid",
        "email": "email",
        "userinfo-email": "https://www.googleapis.com/auth/userinfo.email",
    }
    __SCOPE_URL_PREFIX = "https://www.googleapis.com/"

    __DEFAULT_AUTH_PROMPT_MSG = "Authorize gwscli by visiting this URL: {url}"
    __DEFAULT_AUTH_FLOW_SUCCESS_MSG = "gwscli is authorized, you may close this window."
    __DEFAULT_SECRETS = CONFIG_DIR / "client_secrets.json"
    __DEFAULT_CONFIG = CONFIG_DIR / "config.json"

    def __init__(self) -> None:
        self.reset()

    def __bool__(self) -> bool:
        """True if we are connected and authenticated"""
        return self.connected

    def __str__(self) -> str:
        who = self.__account or "<default>"
        if self.connected:
            return f"Connected:{who}:{str(self.session_scopes)}"
        return f"Disconnected:{who}:{str(self.__scopes)}"

    def __repr__(self) -> str:
        return f"{str(self.__class__)}:{str(self)}"

    @classmethod
    def get_scope(cls, scope: str) -> str:
        """
        Get a scope based on simplified label.
        A raw URL will also be accepted.
        """
        s = str(scope)
        sc = cls.__SCOPES.get(s, "")
        if not sc and s.startswith(cls.__SCOPE_URL_PREFIX):
            sc = s
        return sc

    @property
    def account(self) -> str:
        """
        Account (email) the session is for.  Empty means the single default cache.
        """
        return self.__account

    @account.setter
    def account(self, value: str|None) -> None:
        val = str(value).strip() if value else ""
        if val != self.__account:
            self.__account = val
            self.clear()

    @property
    def client_secrets(self) -> Path:
        """
        Path to client secrets file as provided by Google when generating access credentials.
        """
        return self.__secrets

    @client_secrets.setter
    def client_secrets(self, value: Path|str) -> None:
        val = value if isinstance(value, Path) else Path(str(value))
        if val != self.__secrets:
            self.__secrets = val
            if self.connected:
                self.connect()

    @property
    def cred_cache(self) -> Path:
        """
        Path to local credential cache to not have to do full authentication each time.
        Unless set explicitly this is derived from the account so accounts don't clobber each other.
        """
        if self.__cache is not None:
            return self.__cache
        if self.__account:
            return CONFIG_DIR / f"tokens_{self.__account}.json"
        return CONFIG_DIR / "tokens.json"

    @cred_cache.setter
    def cred_cache(self, value: Path|str|None) -> None:
        val = None if value is None else value if isinstance(value, Path) else Path(str(value))
        if val != self.__cache:
            self.__cache = val
            if self.connected:
                self.connect()

    def clear(self) -> None:
        """Drop the session, keep the configuration."""
        self.__creds = None
        self.__services = {}

    @property
    def connected(self) -> bool:
        """
        Are we authenticated with Google?
        """
        return bool(self.__creds) and bool(self.__creds.valid)

    @property
    def session_scopes(self) -> list[str]:
        """
        Scopes authenticated by Google for this session.
        This differs to self.scopes as that is what is requested or to be requested.
        """
        if self.connected:
            return self.__creds.scopes or []
        return []

    @property
    def scopes(self) -> list[str]:
        """
        The scopes requested or to be requested on next authentication sequence.
        """
        return self.__scopes

    @scopes.setter
    def scopes(self, value: None|list[str]|str) -> None:
        slist = []
        if value is not None:
            items = [value] if isinstance(value, str) or not isinstance(value, Iterable) else value
            for v in items:
                s = self.get_scope(str(v))
                if s and s not in slist:
                    slist.append(s)
        self.__scopes = slist
        if self.__scopes and self.connected:
            self.refresh()
        else:
            self.clear()

    def append_scopes(self, *args) -> bool:
        """
        Add to the current scope list.
        Command modules add the specific scopes they require on import.
        """
        for a in args:
            b = [a] if isinstance(a, str) or not isinstance(a, Iterable) else a
            for i in b:
                s = self.get_scope(str(i))
                if s and s not in self.__scopes:
                    self.__scopes.append(s)
        return self.refresh()

    @property
    def config(self) -> dict:
        """
        Get all configuration state as a dict, suitable for dumping back to the config file.
        """
        return {
            'account': self.__account,
            'secrets': str(self.__secrets),
            'cache': str(self.__cache) if self.__cache is not None else None,
            'scopes': self.__scopes,
            'server': self.auth_server,
            'port': self.auth_port
        }

    @config.setter
    def config(self, config: dict) -> None:
        """
        Set configuration state from a dict as read from the config file.
        """
        reconnect = False
        v = config.get('port', None)
        if v is not None:
            self.auth_port = int(v)
        v = config.get('server', None)
        if v is not None:
            self.auth_server = str(v)
        v = config.get('account', None)
        if v:
            self.account = v
        v = config.get('scopes', [])
        if v:
            self.append_scopes(v)
            reconnect = True
        v = config.get('cache', None)
        if v is not None:
            self.__cache = Path(v).expanduser()
            reconnect = True
        v = config.get('secrets', None)
        if v is not None:
            self.__secrets = Path(v).expanduser()
            reconnect = True
        v = config.get('auth_prompt_msg', None)
        if v is not None:
            self.auth_prompt_msg = str(v)
        v = config.get('flow_success_msg', None)
        if v is not None:
            self.auth_flow_success_msg = str(v)
        if reconnect and self.connected:
            self.connect()

    def load_config(self, path: Path|str|None = None) -> dict:
        """
        Read a JSON config file into the session configuration.
        Lookup order is the explicit path, $GWSCLI_CONFIG, then ~/.config/gwscli/config.json.
        A missing default file is fine, a missing explicit one is an error.
        $GWSCLI_ACCOUNT supplies the account when the file doesn't.
        """
        explicit = path or os.environ.get(CONFIG_ENV)
        p = Path(explicit).expanduser() if explicit else self.__DEFAULT_CONFIG
        config = {}
        if p.is_file():
            with open(p, 'r', encoding='utf-8') as f:
                config = json.load(f)
            if not isinstance(config, dict):
                raise ValueError(f"config file {p} must hold a JSON object")
            log.debug("loaded config from %s", p)
        elif explicit:
            raise FileNotFoundError(f"config file not found: {p}")
        if not config.get('account') and os.environ.get(ACCOUNT_ENV):
            config['account'] = os.environ[ACCOUNT_ENV]
        self.config = config
        return config

    def reset(self) -> None:
        """
        Reset all connection state to defaults.
        """
        self.__secrets = self.__DEFAULT_SECRETS
        self.__cache = None
        self.__account = ""
        self.__discovery_cache = gws_discovery_cache.autodetect()
        self.__creds = None
        self.__scopes = []
        self.__services = {}
        self.auth_server = 'localhost'
        self.auth_port = 0
        self.auth_prompt_msg = self.__DEFAULT_AUTH_PROMPT_MSG
        self.auth_flow_success_msg = self.__DEFAULT_AUTH_FLOW_SUCCESS_MSG

    def refresh(self) -> bool:
        """
        If requested scopes are missing from the current session, re-authenticate.
        """
        scopes_accounted = all(s in self.session_scopes for s in self.__scopes)
        if self.connected and not scopes_accounted:
            return self.connect()
        return True

    def _load_cached(self, requested_scopes: list[str]) -> None:
        cache = self.cred_cache
        if not cache.is_file():
            return
        # the cache doesn't carry over scopes on refresh so check them ourselves
        with open(cache, 'r', encoding='utf-8') as f:
            j = json.load(f)
        if not all(s in j.get('scopes', []) for s in requested_scopes):
            log.debug("credential cache %s lacks requested scopes, discarding", cache)
            cache.unlink()
            return
        self.__creds = Credentials.from_authorized_user_file(str(cache), requested_scopes)

    def connect(self) -> bool:
        """
        Establish a new authentication session.
        If successful will save the credentials in the cache file to reuse
        on subsequent invocations.
        """
        self.clear()
        if not self.__scopes:
            return False
        requested_scopes = copy.copy(self.__scopes)
        cache = self.cred_cache
        self._load_cached(requested_scopes)
        if not self.connected and self.__creds and self.__creds.refresh_token:
            try:
                self.__creds.refresh(Request())
            except google.auth.exceptions.RefreshError as e:
                log.warning("failed to refresh stored credentials (%s), re-authorizing", e)
            if not self.connected:
                self.__creds = None
                cache.unlink(missing_ok=True)

        if not self.connected:
            if self.__secrets.is_file():
                flow = InstalledAppFlow.from_client_secrets_file(str(self.__secrets), requested_scopes)
                kwargs = {'login_hint': self.__account} if self.__account else {}
                self.__creds = flow.run_local_server(host=self.auth_server, port=self.auth_port,
                                                     authorization_prompt_message=self.auth_prompt_msg,
                                                     success_message=self.auth_flow_success_msg,
                                                     **kwargs)
            else:
                # application default credentials, GOOGLE_APPLICATION_CREDENTIALS and friends
                try:
                    self.__creds, _ = google.auth.default(requested_scopes)
                    if not self.__creds.valid:
                        self.__creds.refresh(Request())
                except google.auth.exceptions.DefaultCredentialsError:
                    log.debug("no client secrets at %s and no default credentials", self.__secrets)
                    self.__creds = None
                return self.connected

            if self.connected and isinstance(self.__creds, Credentials):
                user_info = {'refresh_token': self.__creds.refresh_token, 'client_id': self.__creds.client_id,
                             'client_secret': self.__creds.client_secret, 'scopes': requested_scopes}
                cache.parent.mkdir(parents=True, exist_ok=True)
                with open(cache, 'w', encoding='utf-8') as f:
                    json.dump(user_info, f, ensure_ascii=False, indent=2)
        return self.connected

    def get_service(self, name: str, version: str) -> Resource:
        """
        Build the requested service if not already available, connecting if required.
        """
        if not self.connected:
            self.connect()
        if not self.connected:
            raise RuntimeError(f"not authenticated for {name}; provide client secrets at {self.__secrets} "
                               "or application default credentials")
        id = f'{name}:{version}'
        s = self.__services.get(id, None)
        if s is None:
            s = build(name, version, credentials=self.__creds, cache=self.__discovery_cache)
            self.__services[id] = s
        return s

    def authorized_http(self) -> AuthorizedHttp:
        """
        A fresh authorised transport.  httplib2 is not thread safe so anything
        executing requests from worker threads should pass one of these per request.
        """
        if not self.connected:
            self.connect()
        if not self.connected:
            raise RuntimeError("not authenticated")
        return AuthorizedHttp(self.__creds, http=httplib2.Http())

gws = __GWSAccess()
