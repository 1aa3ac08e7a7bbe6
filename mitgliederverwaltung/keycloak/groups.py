"""
Keycloak Group Resolution & Sync

A local group row (``BaseGruppe.beschreibung``) holds either the Keycloak
group UUID or the group name. Names are resolved through the group search
endpoint and cached on the context for the lifetime of the process; a
renamed Keycloak group is only seen again after a restart.

Moving a user between groups is a remove call plus an add call. Keycloak
offers no transaction around the pair, so a user can briefly end up in no
group or in both. Each side is reported separately.
"""

import logging
import re
from dataclasses import dataclass
from enum import StrEnum
from urllib.parse import quote

from mitgliederverwaltung.keycloak.context import KeycloakContext

logger = logging.getLogger(__name__)

UUID_RE = re.compile(r"^[0-9a-fA-F-]{32,}$")


class GroupSource(StrEnum):
    """How a group reference was resolved."""

    UUID = "uuid"
    NAME = "name"
    NONE = "none"


class SkipReason(StrEnum):
    """Why a group sync did not touch Keycloak."""

    NO_ACCOUNT = "no_account"
    NO_CHANGE = "no_change"
    CONFIG_INCOMPLETE = "config_incomplete"
    NO_GROUP_IDS = "no_group_ids"


@dataclass(frozen=True)
class ResolvedGroup:
    """A group reference and the Keycloak id it resolved to."""

    id: str | None
    source: GroupSource
    raw: str | None


@dataclass
class GroupSyncResult:
    """Outcome of moving a user from one group to another."""

    added: bool | None = None
    removed: bool | None = None
    skipped_reason: SkipReason | None = None
    config_incomplete: bool = False
    old_resolved: ResolvedGroup | None = None
    new_resolved: ResolvedGroup | None = None

    @property
    def partial(self) -> bool:
        """True when exactly one of the attempted calls failed."""
        attempted = [r for r in (self.removed, self.added) if r is not None]
        return len(attempted) == 2 and attempted[0] != attempted[1]

    @property
    def ok(self) -> bool:
        return self.skipped_reason is None and self.removed is not False and self.added is not False


class KeycloakGroupClient:
    """Group membership operations against one realm."""

    def __init__(self, ctx: KeycloakContext) -> None:
        self.ctx = ctx

    @staticmethod
    def _membership_path(user_id: str, group_id: str) -> str:
        return f"/users/{quote(user_id, safe='')}/groups/{quote(group_id, safe='')}"

    async def add_user_to_group(self, user_id: str, group_id: str) -> bool:
        token = await self.ctx.get_admin_token()
        if not token:
            return False
        resp = await self.ctx.admin_request("PUT", self._membership_path(user_id, group_id), token)
        return resp is not None and resp.is_success

    async def remove_user_from_group(self, user_id: str, group_id: str) -> bool:
        token = await self.ctx.get_admin_token()
        if not token:
            return False
        resp = await self.ctx.admin_request("DELETE", self._membership_path(user_id, group_id), token)
        return resp is not None and resp.is_success

    async def fetch_group_id_by_name(self, name: str) -> str | None:
        """Resolve a group name, exact match first, then case-insensitive."""
        if not name:
            return None
        cached = self.ctx.group_cache.get(name)
        if cached:
            return cached

        token = await self.ctx.get_admin_token()
        if not token:
            return None
        resp = await self.ctx.admin_request("GET", "/groups", token, params={"search": name})
        if resp is None or not resp.is_success:
            logger.debug(f"Gruppen-Suche fehlgeschlagen für '{name}'")
            return None
        try:
            groups = resp.json()
        except ValueError:
            return None

        match = next((g for g in groups if g.get("name") == name), None)
        if match is None:
            lowered = name.lower()
            match = next((g for g in groups if (g.get("name") or "").lower() == lowered), None)
        if match is None:
            logger.debug(f"Keine Gruppe gefunden für Name '{name}'")
            return None

        self.ctx.group_cache[name] = match["id"]
        return match["id"]

    async def normalize_group_identifier(self, raw: str | None) -> ResolvedGroup:
        if not raw:
            return ResolvedGroup(id=None, source=GroupSource.NONE, raw=raw)
        if UUID_RE.match(raw):
            return ResolvedGroup(id=raw, source=GroupSource.UUID, raw=raw)
        resolved = await self.fetch_group_id_by_name(raw)
        return ResolvedGroup(id=resolved, source=GroupSource.NAME, raw=raw)

    async def sync_user_group_change(
        self,
        account_id: str | None,
        old_group_ref: str | None,
        new_group_ref: str | None,
    ) -> GroupSyncResult:
        """
        Move an account from the old group to the new one.

        Removal and addition are attempted independently; a failed removal
        does not prevent the addition.
        """
        if not account_id:
            return GroupSyncResult(skipped_reason=SkipReason.NO_ACCOUNT)
        if old_group_ref == new_group_ref:
            return GroupSyncResult(skipped_reason=SkipReason.NO_CHANGE)
        if not self.ctx.config.complete:
            return GroupSyncResult(
                skipped_reason=SkipReason.CONFIG_INCOMPLETE,
                config_incomplete=True,
            )

        old_res = await self.normalize_group_identifier(old_group_ref)
        new_res = await self.normalize_group_identifier(new_group_ref)
        result = GroupSyncResult(old_resolved=old_res, new_resolved=new_res)

        if not old_res.id and not new_res.id:
            result.skipped_reason = SkipReason.NO_GROUP_IDS
            return result

        if old_res.id:
            result.removed = await self.remove_user_from_group(account_id, old_res.id)
        if new_res.id:
            result.added = await self.add_user_to_group(account_id, new_res.id)

        if result.partial:
            logger.warning(
                f"Group sync for {account_id} only partially applied: "
                f"removed={result.removed} added={result.added}"
            )
        logger.debug(
            f"Group sync result for {account_id}: {old_group_ref!r} -> {new_group_ref!r}, "
            f"removed={result.removed} added={result.added}"
        )
        return result
