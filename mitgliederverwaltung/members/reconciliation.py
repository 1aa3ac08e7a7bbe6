"""
Reconciliation Engine

Keeps member records and their Keycloak accounts consistent.

Entry points:
- ``create_member``: insert a member and link a new (or existing) account.
  Runs as a saga so that every exit leaves either no record at all or a
  record with a linked account.
- ``update_member``: apply a local update and move the account to the new
  Keycloak group when ``gruppe`` changed. The local update stands even if
  the group move fails.
- ``sync_all``: best-effort batch over all members, one at a time.

Identity linkage only moves ``Unlinked -> Linked``. Deleting a record or
an account happens only as compensation for a failed link.
"""

import logging
from dataclasses import dataclass
from typing import Any

from mitgliederverwaltung.core.exceptions import (
    InvalidInput,
    LocalConflict,
    MitgliederError,
    UpstreamRejected,
)
from mitgliederverwaltung.keycloak.groups import GroupSyncResult, KeycloakGroupClient
from mitgliederverwaltung.keycloak.users import CreateUserResult, KeycloakUser, KeycloakUserClient
from mitgliederverwaltung.members.models import BasePerson
from mitgliederverwaltung.members.placeholder import make_placeholder_email
from mitgliederverwaltung.members.saga import Saga
from mitgliederverwaltung.members.schemas import MemberChange, SyncSummary
from mitgliederverwaltung.members.store import MemberStore

logger = logging.getLogger(__name__)

ACCOUNT_NOT_FOUND = "account not found"


@dataclass(frozen=True)
class MemberSnapshot:
    """
    Plain copy of the columns the engine needs.

    ORM instances expire when a failed write rolls the session back; the
    snapshot stays readable.
    """

    id: int
    email: str | None
    vorname: str | None
    name: str | None
    keycloak_id: str | None = None
    strasse1: str | None = None
    plz1: str | None = None
    ort1: str | None = None
    status: str | None = None
    hausvereinsmitglied: bool | None = None

    @classmethod
    def from_person(cls, person: BasePerson) -> "MemberSnapshot":
        return cls(
            id=person.id,
            email=person.email,
            vorname=person.vorname,
            name=person.name,
            keycloak_id=person.keycloak_id,
            strasse1=person.strasse1,
            plz1=person.plz1,
            ort1=person.ort1,
            status=person.status,
            hausvereinsmitglied=person.hausvereinsmitglied,
        )


@dataclass
class MemberUpdateResult:
    member: BasePerson
    group_sync: GroupSyncResult | None = None


def _trim_or_none(value: Any) -> str | None:
    s = str(value if value is not None else "").strip()
    return s or None


def profile_attributes(member: MemberSnapshot) -> dict[str, Any]:
    """Local fields mirrored to Keycloak profile attributes."""
    if member.hausvereinsmitglied is None:
        hv = None
    else:
        hv = 1 if member.hausvereinsmitglied else 0
    return {
        "strasse": _trim_or_none(member.strasse1),
        "plz": _trim_or_none(member.plz1),
        "ort": _trim_or_none(member.ort1),
        "status": _trim_or_none(member.status),
        "hv-mitglied": hv,
    }


class ReconciliationEngine:
    """Member/account synchronization on top of the store and the Keycloak clients."""

    def __init__(
        self,
        store: MemberStore,
        users: KeycloakUserClient,
        groups: KeycloakGroupClient,
        placeholder_domain: str | None = None,
    ):
        self.store = store
        self.users = users
        self.groups = groups
        self.placeholder_domain = placeholder_domain

    def placeholder_for(self, member: MemberSnapshot) -> str:
        return make_placeholder_email(
            vorname=member.vorname,
            nachname=member.name,
            id=member.id,
            domain=self.placeholder_domain,
        )

    # -------------------------------------------------------------------------
    # Saga steps
    # -------------------------------------------------------------------------

    async def _create_account(
        self,
        email: str,
        first_name: str | None,
        last_name: str | None,
    ) -> CreateUserResult:
        result = await self.users.create_user(email, first_name=first_name, last_name=last_name)
        if result.error is not None:
            raise result.error
        if result.id is None:
            raise UpstreamRejected("Keycloak lieferte keine ID")
        return result

    async def _delete_created_account(self, result: CreateUserResult) -> bool:
        # Accounts that existed before this request are never removed
        if not result.created or not result.id:
            return True
        return await self.users.delete_user(result.id)

    async def _delete_local(self, member: MemberSnapshot) -> bool:
        return await self.store.delete(member.id)

    # -------------------------------------------------------------------------
    # Create
    # -------------------------------------------------------------------------

    async def create_member(self, data: dict[str, Any]) -> BasePerson:
        """
        Create a member together with its Keycloak account.

        With an email the account is created first and the row is inserted
        with the account id. Without one the row is inserted first so that
        its id can go into the placeholder email, then the account is
        created and linked.

        Raises:
            MitgliederError: the failing step's error, after compensation
        """
        data = {k: v for k, v in data.items() if k != "keycloak_id"}
        email = (data.get("email") or "").strip()
        vorname = data.get("vorname")
        name = data.get("name")

        if email:
            data["email"] = email
            saga = Saga("create_member")
            saga.step(
                "keycloak_account",
                lambda r: self._create_account(email, vorname, name),
                self._delete_created_account,
            )
            saga.step(
                "local_insert",
                lambda r: self.store.insert({**data, "keycloak_id": r["keycloak_account"].id}),
            )
            results = await saga.run()
            return results["local_insert"]

        data["email"] = None

        async def insert_local(r: dict[str, Any]) -> MemberSnapshot:
            return MemberSnapshot.from_person(await self.store.insert(data))

        async def create_placeholder_account(r: dict[str, Any]) -> CreateUserResult:
            member: MemberSnapshot = r["local_insert"]
            return await self._create_account(self.placeholder_for(member), member.vorname, member.name)

        saga = Saga("create_member_placeholder")
        saga.step("local_insert", insert_local, self._delete_local)
        saga.step("keycloak_account", create_placeholder_account, self._delete_created_account)
        saga.step(
            "link",
            lambda r: self.store.set_keycloak_id(r["local_insert"].id, r["keycloak_account"].id),
        )
        results = await saga.run()
        return results["link"]

    # -------------------------------------------------------------------------
    # Update
    # -------------------------------------------------------------------------

    async def update_member(self, member_id: int, data: dict[str, Any]) -> MemberUpdateResult:
        """
        Apply a partial update, then sync the Keycloak group if ``gruppe`` changed.

        The old group and account id are read before the update without a
        lock; a concurrent update of the same member can race.
        """
        if not data:
            raise InvalidInput("Keine gültigen Felder")

        current = await self.store.get_or_404(member_id)
        old_gruppe = current.gruppe
        keycloak_id = current.keycloak_id

        updated = await self.store.update(member_id, data)

        group_sync = None
        new_gruppe = data.get("gruppe")
        if "gruppe" in data and new_gruppe != old_gruppe:
            old_ref = await self.store.get_group_ref(old_gruppe)
            new_ref = await self.store.get_group_ref(new_gruppe)
            if old_ref and new_ref:
                group_sync = await self.groups.sync_user_group_change(keycloak_id, old_ref, new_ref)
                if not group_sync.ok:
                    logger.warning(
                        f"Group sync for member {member_id} incomplete: "
                        f"skipped={group_sync.skipped_reason} "
                        f"removed={group_sync.removed} added={group_sync.added}"
                    )
        return MemberUpdateResult(member=updated, group_sync=group_sync)

    # -------------------------------------------------------------------------
    # Bulk sync
    # -------------------------------------------------------------------------

    async def sync_all(self) -> SyncSummary:
        """
        Reconcile every member with Keycloak, one member at a time.

        Per-member failures are recorded in the summary; the batch never
        stops early.
        """
        linked = [MemberSnapshot.from_person(p) for p in await self.store.list_linked()]
        account_ids = [m.keycloak_id for m in linked if m.keycloak_id]
        accounts = await self.users.fetch_users_batch(account_ids)

        summary = SyncSummary(attempted=len(account_ids))
        for member in linked:
            try:
                await self._sync_linked(member, accounts.get(member.keycloak_id), summary)
            except MitgliederError as e:
                logger.warning(f"Sync of member {member.id} failed: {e!r}")
                summary.record(MemberChange(id=member.id, old_email=member.email, skipped=e.message))

        unlinked = [MemberSnapshot.from_person(p) for p in await self.store.list_unlinked()]
        for member in unlinked:
            try:
                await self._link_unlinked(member, summary)
            except MitgliederError as e:
                logger.warning(f"Linking member {member.id} failed: {e!r}")
                summary.record(MemberChange(id=member.id, old_email=member.email, skipped=e.message))

        summary.total = len(linked) + len(unlinked)
        logger.info(
            f"Sync finished: total={summary.total} created={summary.users_created} "
            f"updated={summary.updated} dummy={summary.dummy_emails_set} "
            f"attributes={summary.attributes_updated} skipped={summary.skipped}"
        )
        return summary

    async def _sync_linked(
        self,
        member: MemberSnapshot,
        account: KeycloakUser | None,
        summary: SyncSummary,
    ) -> None:
        if account is None:
            summary.record(
                MemberChange(id=member.id, old_email=member.email, skipped=ACCOUNT_NOT_FOUND)
            )
            return

        try:
            await self._reconcile_email(member, account, summary)
        except MitgliederError as e:
            logger.warning(f"Email sync of member {member.id} failed: {e!r}")
            summary.record(MemberChange(id=member.id, old_email=member.email, skipped=e.message))

        # Attributes are written whatever happened to the email
        attr_result = await self.users.update_user_attributes(account.id, profile_attributes(member))
        if attr_result.ok:
            summary.attributes_updated += 1
        else:
            logger.debug(f"Attributes for member {member.id} not written: {attr_result.error!r}")

    async def _reconcile_email(
        self,
        member: MemberSnapshot,
        account: KeycloakUser,
        summary: SyncSummary,
    ) -> None:
        kc_email = (account.email or "").strip()
        if not kc_email:
            placeholder = self.placeholder_for(member)
            result = await self.users.update_user_email(
                account.id, placeholder, first_name=member.vorname, last_name=member.name
            )
            if result.ok:
                summary.dummy_emails_set += 1
                summary.record(MemberChange(id=member.id, old_email=member.email, new_email=placeholder))
            else:
                reason = (
                    "Keycloak Konflikt (409)"
                    if result.status == 409
                    else (result.error.message if result.error else "Keycloak Update fehlgeschlagen")
                )
                summary.record(
                    MemberChange(
                        id=member.id, old_email=member.email, new_email=placeholder, skipped=reason
                    )
                )
        elif member.email != kc_email:
            try:
                await self.store.set_email(member.id, kc_email)
            except LocalConflict:
                summary.record(
                    MemberChange(
                        id=member.id, old_email=member.email, new_email=kc_email, skipped="Unique Konflikt"
                    )
                )
            else:
                summary.updated += 1
                summary.record(MemberChange(id=member.id, old_email=member.email, new_email=kc_email))

    async def _link_unlinked(self, member: MemberSnapshot, summary: SyncSummary) -> None:
        own_email = (member.email or "").strip()
        email = own_email or self.placeholder_for(member)

        created = await self.users.create_user(email, first_name=member.vorname, last_name=member.name)
        if created.error is not None or not created.id:
            reason = created.error.message if created.error else "unbekannt"
            summary.record(
                MemberChange(
                    id=member.id,
                    old_email=member.email,
                    new_email=email,
                    skipped=f"Keycloak Create fehlgeschlagen: {reason}",
                )
            )
            return

        try:
            await self.store.set_keycloak_id(member.id, created.id)
        except MitgliederError as e:
            await self._delete_created_account(created)
            summary.record(
                MemberChange(id=member.id, old_email=member.email, new_email=email, skipped=e.message)
            )
            return

        summary.users_created += 1
        if not own_email:
            summary.dummy_emails_set += 1
        summary.record(MemberChange(id=member.id, old_email=member.email, new_email=email))
