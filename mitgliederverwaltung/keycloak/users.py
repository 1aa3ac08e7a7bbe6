"""
Keycloak User Client

Create, read, update and delete Keycloak accounts via the admin API.
Every operation fails closed: upstream and transport problems come back as
``None``/``False`` or as an error inside the result object, never as an
exception.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable
from urllib.parse import quote

from mitgliederverwaltung.core.exceptions import (
    InvalidInput,
    MitgliederError,
    NotFound,
    UpstreamConflict,
    UpstreamRejected,
    UpstreamUnavailable,
)
from mitgliederverwaltung.keycloak.context import KeycloakContext

logger = logging.getLogger(__name__)

_LOCATION_ID_RE = re.compile(r"/users/([^/]+)$")


@dataclass
class KeycloakUser:
    """A Keycloak account as returned by the admin API."""

    id: str
    email: str | None = None
    username: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    enabled: bool | None = None
    email_verified: bool | None = None
    attributes: dict[str, list[str]] = field(default_factory=dict)

    @classmethod
    def from_representation(cls, data: dict[str, Any]) -> "KeycloakUser":
        return cls(
            id=data["id"],
            email=data.get("email"),
            username=data.get("username"),
            first_name=data.get("firstName"),
            last_name=data.get("lastName"),
            enabled=data.get("enabled"),
            email_verified=data.get("emailVerified"),
            attributes=dict(data.get("attributes") or {}),
        )


@dataclass
class CreateUserResult:
    """Result of a create call. ``created`` is False for a resolved 409."""

    id: str | None = None
    created: bool = False
    error: MitgliederError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.id is not None


@dataclass
class UpdateResult:
    """Result of a read-modify-write update."""

    ok: bool
    status: int | None = None
    error: MitgliederError | None = None


def merge_attributes(
    existing: dict[str, list[str]] | None,
    changes: dict[str, Any],
) -> dict[str, list[str]]:
    """
    Merge attribute changes into an attribute map.

    None and empty-string values delete the key; everything else is stored
    as a single-element string list.
    """
    merged = dict(existing or {})
    for key, value in changes.items():
        if value is None or value == "":
            merged.pop(key, None)
        else:
            merged[key] = [str(value)]
    return merged


class KeycloakUserClient:
    """Account operations against one realm."""

    def __init__(self, ctx: KeycloakContext) -> None:
        self.ctx = ctx

    @staticmethod
    def _user_path(user_id: str) -> str:
        return f"/users/{quote(user_id, safe='')}"

    async def search_user_by_email(self, email: str, token: str) -> KeycloakUser | None:
        """Exact email search; the comparison on the result list ignores case."""
        resp = await self.ctx.admin_request(
            "GET",
            "/users",
            token,
            params={"email": email, "exact": "true"},
        )
        if resp is None or not resp.is_success:
            return None
        try:
            users = resp.json()
        except ValueError:
            return None
        for data in users:
            if (data.get("email") or "").lower() == email.lower():
                return KeycloakUser.from_representation(data)
        return None

    async def create_user(
        self,
        email: str,
        first_name: str | None = None,
        last_name: str | None = None,
    ) -> CreateUserResult:
        """Create an account with ``username = email``."""
        if not email:
            return CreateUserResult(error=InvalidInput("Email fehlt"))
        token = await self.ctx.get_admin_token()
        if not token:
            return CreateUserResult(error=self.ctx.unavailable_error())

        payload = {
            "email": email,
            "username": email,
            "enabled": True,
            "emailVerified": False,
            "firstName": first_name,
            "lastName": last_name,
        }
        resp = await self.ctx.admin_request("POST", "/users", token, json=payload)
        if resp is None:
            return CreateUserResult(error=UpstreamUnavailable("Keycloak nicht erreichbar"))

        if resp.status_code == 201:
            match = _LOCATION_ID_RE.search(resp.headers.get("Location", ""))
            if match:
                logger.info(f"Keycloak user created: {match.group(1)}")
                return CreateUserResult(id=match.group(1), created=True)
            found = await self.search_user_by_email(email, token)
            if found:
                return CreateUserResult(id=found.id, created=True)
            return CreateUserResult(error=UpstreamRejected("Erstellung ohne ID", upstream_status=201))

        if resp.status_code == 409:
            existing = await self.search_user_by_email(email, token)
            if existing:
                logger.info(f"Keycloak user already exists for {email}: {existing.id}")
                return CreateUserResult(id=existing.id, created=False)
            return CreateUserResult(
                error=UpstreamConflict("Konflikt (409) ohne ID", upstream_status=409)
            )

        return CreateUserResult(
            error=UpstreamRejected(
                f"Keycloak Fehler {resp.status_code}", upstream_status=resp.status_code
            )
        )

    async def _fetch_representation(self, user_id: str, token: str) -> tuple[dict[str, Any] | None, int | None]:
        resp = await self.ctx.admin_request("GET", self._user_path(user_id), token)
        if resp is None:
            return None, None
        if not resp.is_success:
            return None, resp.status_code
        try:
            return resp.json(), resp.status_code
        except ValueError:
            return None, resp.status_code

    async def fetch_user(self, user_id: str) -> KeycloakUser | None:
        """Get one account, None on any failure."""
        token = await self.ctx.get_admin_token()
        if not token:
            return None
        data, _ = await self._fetch_representation(user_id, token)
        if data is None:
            return None
        return KeycloakUser.from_representation(data)

    async def delete_user(self, user_id: str) -> bool:
        """Best-effort delete."""
        token = await self.ctx.get_admin_token()
        if not token:
            return False
        resp = await self.ctx.admin_request("DELETE", self._user_path(user_id), token)
        deleted = resp is not None and resp.is_success
        if deleted:
            logger.info(f"Keycloak user deleted: {user_id}")
        else:
            logger.warning(f"Keycloak user could not be deleted: {user_id}")
        return deleted

    async def fetch_users_batch(self, user_ids: list[str]) -> dict[str, KeycloakUser | None]:
        """Fetch accounts one after another."""
        result: dict[str, KeycloakUser | None] = {}
        for user_id in user_ids:
            result[user_id] = await self.fetch_user(user_id)
        return result

    async def _read_modify_write(
        self,
        user_id: str,
        mutate: Callable[[dict[str, Any]], None],
    ) -> UpdateResult:
        token = await self.ctx.get_admin_token()
        if not token:
            return UpdateResult(ok=False, error=self.ctx.unavailable_error())

        current, status = await self._fetch_representation(user_id, token)
        if current is None:
            if status == 404:
                return UpdateResult(ok=False, status=404, error=NotFound("Keycloak User nicht gefunden", 404))
            if status is None:
                return UpdateResult(ok=False, error=UpstreamUnavailable("Keycloak nicht erreichbar"))
            return UpdateResult(
                ok=False,
                status=status,
                error=UpstreamRejected(f"Keycloak Lesen fehlgeschlagen ({status})", status),
            )

        mutate(current)
        resp = await self.ctx.admin_request("PUT", self._user_path(user_id), token, json=current)
        if resp is None:
            return UpdateResult(ok=False, error=UpstreamUnavailable("Keycloak nicht erreichbar"))
        if resp.is_success:
            return UpdateResult(ok=True, status=resp.status_code)
        if resp.status_code == 409:
            return UpdateResult(
                ok=False,
                status=409,
                error=UpstreamConflict("Keycloak Konflikt (409)", 409),
            )
        return UpdateResult(
            ok=False,
            status=resp.status_code,
            error=UpstreamRejected(
                f"Keycloak Update fehlgeschlagen ({resp.status_code})", resp.status_code
            ),
        )

    async def update_user_attributes(self, user_id: str, attrs: dict[str, Any]) -> UpdateResult:
        """
        Merge profile attributes into an account.

        The full representation is read and written back so that email,
        username, names and flags survive the round trip unchanged.
        """

        def apply(representation: dict[str, Any]) -> None:
            representation["attributes"] = merge_attributes(
                representation.get("attributes"), attrs
            )

        return await self._read_modify_write(user_id, apply)

    async def update_user_email(
        self,
        user_id: str,
        email: str,
        first_name: str | None = None,
        last_name: str | None = None,
    ) -> UpdateResult:
        """Set email and username (and optionally names) of an account."""
        changes: dict[str, Any] = {"email": email, "username": email}
        if first_name is not None:
            changes["firstName"] = first_name
        if last_name is not None:
            changes["lastName"] = last_name
        return await self._read_modify_write(user_id, lambda rep: rep.update(changes))
