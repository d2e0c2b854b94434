"""Client for the Keybase user lookup APIs, used to find validator avatars."""

from __future__ import annotations

import json
import urllib.parse
import urllib.request
from dataclasses import dataclass, field
from typing import Any, Mapping

API_BASE_URL = "https://keybase.io/_/api/1.0"
_TIMEOUT_SECONDS = 30

# Identities shorter than this cannot be a key suffix and are never looked up.
_MIN_IDENTITY_LENGTH = 16


class KeybaseError(Exception):
    """Raised when the Keybase APIs cannot be queried or report an error."""


@dataclass(frozen=True)
class QueryStatus:
    """The status of a Keybase request."""

    code: int = 0
    name: str = ""
    err_desc: str = ""


@dataclass(frozen=True)
class Picture:
    """A single picture of an account."""

    url: str = ""


@dataclass(frozen=True)
class AccountDetails:
    """The details of a single account; ``primary_picture`` is None when missing."""

    id: str = ""
    primary_picture: Picture | None = None


@dataclass(frozen=True)
class IdentityQueryResponse:
    """The response to an identity lookup."""

    status: QueryStatus = field(default_factory=QueryStatus)
    objects: list[AccountDetails] = field(default_factory=list)

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> IdentityQueryResponse:
        """Build from the decoded JSON body of a lookup response."""
        status = data.get("status") or {}
        return cls(
            status=QueryStatus(
                code=int(status.get("code") or 0),
                name=status.get("name") or "",
                err_desc=status.get("desc") or "",
            ),
            objects=[_account_details(entry) for entry in data.get("them") or []],
        )


def _account_details(entry: Mapping[str, Any] | None) -> AccountDetails:
    if not entry:
        return AccountDetails()
    pictures = entry.get("pictures") or {}
    primary = pictures.get("primary")
    return AccountDetails(
        id=entry.get("id") or "",
        primary_picture=Picture(url=primary.get("url") or "") if primary is not None else None,
    )


def _query_keybase(endpoint: str) -> Any:
    try:
        with urllib.request.urlopen(API_BASE_URL + endpoint, timeout=_TIMEOUT_SECONDS) as response:
            body = response.read()
    except OSError as err:
        raise KeybaseError(f"error while querying keybase APIs: {err}") from err
    try:
        return json.loads(body)
    except ValueError as err:
        raise KeybaseError(f"error while unmarshaling response body: {err}") from err


def get_avatar_url(identity: str) -> str:
    """Return the avatar URL of the given identity, or an empty string if there is none."""
    if len(identity.encode()) < _MIN_IDENTITY_LENGTH:
        return ""

    suffix = urllib.parse.quote(identity, safe="")
    endpoint = f"/user/lookup.json?key_suffix={suffix}&fields=basics&fields=pictures"
    try:
        data = _query_keybase(endpoint)
    except KeybaseError as err:
        raise KeybaseError(f"error while querying keybase: {err}") from err
    if not isinstance(data, Mapping):
        raise KeybaseError("error while querying keybase: response is not a JSON object")

    response = IdentityQueryResponse.from_json(data)
    if response.status.code != 0:
        raise KeybaseError(f"response code not valid: {response.status.err_desc}")

    if not response.objects:
        return ""

    picture = response.objects[0].primary_picture
    if picture is None or not picture.url:
        return ""
    return picture.url