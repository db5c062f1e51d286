"""
Cloud Identity groups.  Unlike the Admin SDK directory this works for
non-admin users, they can look up groups they can see and list the members.
https://cloud.google.com/identity/docs/reference/rest/v1/groups
"""

from dataclasses import dataclass, field
from typing import List, Self, Tuple
import logging
from functools import partial

from googleapiclient.errors import HttpError

from .resources import GoogleWorkSpaceResourceBase
from .access import gws

log = logging.getLogger(__name__)

gws.append_scopes("groups-ro")

_get_service = partial(gws.get_service, "cloudidentity", "v1")

class CloudIdentityError(RuntimeError):
    """Cloud Identity call failed, message says what the user can do about it."""

def wrap_cloud_identity_error(err: Exception, action: str = "") -> CloudIdentityError:
    """
    Turn the common Cloud Identity failures into something actionable.
    """
    text = str(err)
    if isinstance(err, HttpError):
        text = f"{text} {err.content.decode('utf-8', 'replace') if isinstance(err.content, bytes) else err.content}"
    prefix = f"{action}: " if action else ""
    if "accessNotConfigured" in text or "Cloud Identity API has not been used" in text:
        msg = (f"{prefix}Cloud Identity API is not enabled; enable it at "
               "https://console.developers.google.com/apis/api/cloudidentity.googleapis.com/overview")
    elif "insufficientPermissions" in text or "insufficient authentication scopes" in text.lower():
        msg = (f"{prefix}insufficient permissions for Cloud Identity API; re-authenticate to grant "
               "the cloud-identity.groups.readonly scope")
    else:
        msg = f"{prefix}{err}"
    return CloudIdentityError(msg)

@dataclass
class Group(GoogleWorkSpaceResourceBase):
    """
    https://cloud.google.com/identity/docs/reference/rest/v1/groups#Group
    """
    name: str|None = field(default=None)
    groupKey: dict|None = field(default=None)
    parent: str|None = field(default=None)
    displayName: str|None = field(default=None)
    description: str|None = field(default=None)
    labels: dict|None = field(default=None)
    createTime: str|None = field(default=None)
    updateTime: str|None = field(default=None)

    def __bool__(self) -> bool:
        return bool(self.name)

    def __str__(self) -> str:
        if self:
            return f"{self.displayName}<{self.name}>"
        return "<empty>"

    @staticmethod
    def lookup(email: str) -> str:
        """
        Resource name (groups/...) for the group with this email address.
        """
        response = _get_service().groups().lookup(groupKey_id=email).execute()
        name = (response or {}).get('name', '')
        if not name:
            raise CloudIdentityError(f"no group found for {email}")
        return name

@dataclass
class Membership(GoogleWorkSpaceResourceBase):
    """
    https://cloud.google.com/identity/docs/reference/rest/v1/groups.memberships#Membership
    """
    name: str|None = field(default=None)
    preferredMemberKey: dict|None = field(default=None)
    roles: List[dict]|None = field(default=None)
    type: str|None = field(default=None)
    deliverySetting: str|None = field(default=None)
    createTime: str|None = field(default=None)
    updateTime: str|None = field(default=None)

    def __bool__(self) -> bool:
        return bool(self.email)

    def __str__(self) -> str:
        return f"{self.email}:{self.role}" if self else "<empty>"

    @property
    def email(self) -> str:
        return str((self.preferredMemberKey or {}).get('id', '') or '')

    @property
    def role(self) -> str:
        """Highest role held, OWNER > MANAGER > MEMBER."""
        names = {str(r.get('name', '')) for r in self.roles or []}
        for r in ("OWNER", "MANAGER"):
            if r in names:
                return r
        return "MEMBER"

    def is_user(self) -> bool:
        return str(self.type or '').upper() == "USER" and "@" in self.email

    @staticmethod
    def page(group_name: str, page_size: int = 200, page_token: str|None = None) -> Tuple[List[Self], str|None]:
        """
        A single page of groups.memberships.list, returns the memberships and the next page token.
        """
        response = _get_service().groups().memberships().list(parent=group_name, pageSize=page_size,
                                                              pageToken=page_token).execute()
        response = response or {}
        members = [Membership.from_response(m) for m in response.get('memberships', []) if m]
        return members, response.get('nextPageToken') or None

    @staticmethod
    def list(group_name: str, page_size: int = 200) -> List[Self]:
        """
        https://cloud.google.com/identity/docs/reference/rest/v1/groups.memberships/list
        Every membership of the group, reading all pages.
        """
        members = []
        page_token = None
        while True:
            page, page_token = Membership.page(group_name, page_size, page_token)
            members.extend(page)
            if not page_token:
                break
        return members

@dataclass
class GroupRelation(GoogleWorkSpaceResourceBase):
    """
    Result entry of memberships.searchTransitiveGroups, a group the member belongs to.
    """
    group: str|None = field(default=None)
    groupKey: dict|None = field(default=None)
    displayName: str|None = field(default=None)
    labels: dict|None = field(default=None)
    relationType: str|None = field(default=None)
    roles: List[dict]|None = field(default=None)

    @property
    def email(self) -> str:
        return str((self.groupKey or {}).get('id', '') or '')

    @property
    def relation(self) -> str:
        return {"DIRECT": "direct", "INDIRECT": "indirect"}.get(self.relationType or "", self.relationType or "")

    @staticmethod
    def search(member_email: str, page_size: int = 100, page_token: str|None = None) -> Tuple[List[Self], str|None]:
        """
        https://cloud.google.com/identity/docs/reference/rest/v1/groups.memberships/searchTransitiveGroups
        Groups member_email belongs to, directly or through nesting.
        """
        request = {'parent': "groups/-",
                   'query': f"member_key_id == '{member_email}' && "
                            "'cloudidentity.googleapis.com/groups.discussion_forum' in labels",
                   'pageSize': page_size}
        if page_token:
            request['pageToken'] = page_token
        response = _get_service().groups().memberships().searchTransitiveGroups(**request).execute() or {}
        groups = [GroupRelation.from_response(m) for m in response.get('memberships', []) if m]
        return groups, response.get('nextPageToken') or None

def resolve_members(group_email: str) -> List[str]:
    """
    Flat list of user email addresses in the group, in API order.
    Nested groups and service identities without an address are skipped.
    """
    email = str(group_email or '').strip()
    if not email:
        raise ValueError("group email required")
    try:
        name = Group.lookup(email)
    except HttpError as e:
        raise wrap_cloud_identity_error(e, f"failed to find group {email!r}") from e
    try:
        memberships = Membership.list(name)
    except HttpError as e:
        raise wrap_cloud_identity_error(e, "failed to list group members") from e
    members = []
    for m in memberships:
        if m.is_user() and m.email not in members:
            members.append(m.email)
        elif not m.is_user():
            log.debug("skipping non-user member %s (%s)", m.email, m.type)
    return members
