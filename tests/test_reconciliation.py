"""
Tests for the reconciliation engine (create saga, group sync on update, bulk sync).
"""

import pytest
import pytest_asyncio
from sqlalchemy import select

from mitgliederverwaltung.core.config import settings
from mitgliederverwaltung.core.exceptions import (
    ConfigIncomplete,
    InvalidInput,
    LocalConflict,
    LocalFailure,
    NotFound,
    UpstreamRejected,
)
from mitgliederverwaltung.keycloak.groups import KeycloakGroupClient
from mitgliederverwaltung.keycloak.users import KeycloakUserClient
from mitgliederverwaltung.members.models import BaseGruppe, BasePerson
from mitgliederverwaltung.members.placeholder import make_placeholder_email
from mitgliederverwaltung.members.reconciliation import (
    ACCOUNT_NOT_FOUND,
    MemberSnapshot,
    ReconciliationEngine,
    profile_attributes,
)


async def add_member(store, **data) -> BasePerson:
    return await store.insert(data)


class TestCreateWithEmail:
    """Tests for create_member with a supplied email."""

    @pytest.mark.asyncio
    async def test_creates_account_then_row(self, engine, fake_keycloak) -> None:
        """Test the row references the new account."""
        person = await engine.create_member({"vorname": "Anna", "name": "Schmidt", "email": "anna@example.org"})

        assert person.keycloak_id in fake_keycloak.users
        assert fake_keycloak.users[person.keycloak_id]["email"] == "anna@example.org"
        assert person.email == "anna@example.org"

    @pytest.mark.asyncio
    async def test_account_failure_leaves_no_row(self, engine, fake_keycloak, member_count) -> None:
        """Test a failing account creation leaves no local row."""
        fake_keycloak.fail_on("POST", "/users", 500)

        with pytest.raises(UpstreamRejected) as exc_info:
            await engine.create_member({"vorname": "Anna", "email": "anna@example.org"})

        assert exc_info.value.status_code == 502
        assert await member_count() == 0

    @pytest.mark.asyncio
    async def test_incomplete_config_leaves_no_row(self, store, incomplete_ctx, member_count) -> None:
        """Test missing Keycloak configuration aborts before the insert."""
        engine = ReconciliationEngine(
            store,
            KeycloakUserClient(incomplete_ctx),
            KeycloakGroupClient(incomplete_ctx),
            placeholder_domain="verein.example",
        )

        with pytest.raises(ConfigIncomplete):
            await engine.create_member({"email": "anna@example.org"})

        assert await member_count() == 0

    @pytest.mark.asyncio
    async def test_local_failure_deletes_new_account(self, engine, store, fake_keycloak, member_count) -> None:
        """Test the account created in this request is removed when the insert fails."""
        await add_member(store, vorname="Anna", email="anna@example.org")

        with pytest.raises(LocalConflict):
            await engine.create_member({"vorname": "Anna", "email": "anna@example.org"})

        assert fake_keycloak.users == {}
        assert fake_keycloak.count("DELETE", "/users/u-1") == 1
        assert await member_count() == 1

    @pytest.mark.asyncio
    async def test_local_failure_keeps_preexisting_account(self, engine, store, fake_keycloak) -> None:
        """Test an account resolved through a 409 is never deleted."""
        existing = fake_keycloak.add_user("anna@example.org")
        await add_member(store, vorname="Anna", email="anna@example.org")

        with pytest.raises(LocalConflict):
            await engine.create_member({"vorname": "Anna", "email": "anna@example.org"})

        assert existing in fake_keycloak.users
        assert fake_keycloak.admin_calls("DELETE") == []

    @pytest.mark.asyncio
    async def test_keycloak_id_in_payload_is_ignored(self, engine) -> None:
        """Test a caller cannot choose the linked account."""
        person = await engine.create_member({"email": "anna@example.org", "keycloak_id": "evil"})

        assert person.keycloak_id != "evil"


class TestCreateWithoutEmail:
    """Tests for create_member with a placeholder email."""

    @pytest.mark.asyncio
    async def test_account_gets_placeholder_from_persisted_row(self, engine, store, fake_keycloak) -> None:
        """Test the account email equals the placeholder of the stored id and names."""
        person = await engine.create_member({"vorname": "Anna", "name": "Schmidt"})

        stored = await store.get(person.id)
        expected = make_placeholder_email(
            vorname=stored.vorname, nachname=stored.name, id=stored.id, domain="verein.example"
        )
        account = fake_keycloak.users[stored.keycloak_id]
        assert account["email"] == expected
        assert account["username"] == expected
        assert stored.email is None

    @pytest.mark.asyncio
    async def test_account_failure_deletes_row(self, engine, fake_keycloak, member_count) -> None:
        """Test the local row is removed when account creation fails."""
        fake_keycloak.fail_on("POST", "/users", 500)

        with pytest.raises(UpstreamRejected):
            await engine.create_member({"vorname": "Anna", "name": "Schmidt"})

        assert await member_count() == 0

    @pytest.mark.asyncio
    async def test_missing_domain_deletes_row(
        self, store, users, groups, fake_keycloak, member_count, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test a missing placeholder domain unwinds the insert."""
        monkeypatch.setattr(settings, "mail_placeholder_domain", "")
        engine = ReconciliationEngine(store, users, groups)

        with pytest.raises(ConfigIncomplete):
            await engine.create_member({"vorname": "Anna"})

        assert await member_count() == 0
        assert fake_keycloak.admin_calls("POST") == []

    @pytest.mark.asyncio
    async def test_link_failure_unwinds_both(self, engine, store, fake_keycloak, member_count) -> None:
        """Test a failing link removes the new account and the new row."""
        # The fake hands out u-1 next; another member already holds that id
        await add_member(store, vorname="Bernd", keycloak_id="u-1")

        with pytest.raises(LocalConflict):
            await engine.create_member({"vorname": "Anna", "name": "Schmidt"})

        assert "u-1" not in fake_keycloak.users
        assert fake_keycloak.count("DELETE", "/users/u-1") == 1
        assert await member_count() == 1

    @pytest.mark.asyncio
    async def test_existing_placeholder_account_is_linked(self, engine, fake_keycloak) -> None:
        """Test a 409 on the placeholder address links the existing account."""
        existing = fake_keycloak.add_user("anna.schmidt.1@verein.example")

        person = await engine.create_member({"vorname": "Anna", "name": "Schmidt"})

        assert person.id == 1
        assert person.keycloak_id == existing


class TestUpdateMember:
    """Tests for update_member."""

    @pytest_asyncio.fixture
    async def linked_member(self, store, fake_keycloak, db_session) -> BasePerson:
        db_session.add_all([
            BaseGruppe(bezeichnung="B", beschreibung="Burschen"),
            BaseGruppe(bezeichnung="F", beschreibung="Fuchsen"),
            BaseGruppe(bezeichnung="X", beschreibung=None),
        ])
        await db_session.commit()
        fake_keycloak.add_group("g-old", "Burschen")
        fake_keycloak.add_group("g-new", "Fuchsen")
        account = fake_keycloak.add_user("anna@example.org")
        fake_keycloak.memberships[account] = {"g-old"}
        return await add_member(store, vorname="Anna", email="anna@example.org", gruppe="B", keycloak_id=account)

    @pytest.mark.asyncio
    async def test_group_change_moves_account(self, engine, store, fake_keycloak, linked_member) -> None:
        """Test B -> F removes g-old, adds g-new and stores F."""
        result = await engine.update_member(linked_member.id, {"gruppe": "F"})

        account = linked_member.keycloak_id
        assert fake_keycloak.count("DELETE", f"/users/{account}/groups/g-old") == 1
        assert fake_keycloak.count("PUT", f"/users/{account}/groups/g-new") == 1
        assert result.group_sync.removed is True
        assert result.group_sync.added is True
        assert (await store.get(linked_member.id)).gruppe == "F"

    @pytest.mark.asyncio
    async def test_group_sync_failure_keeps_local_update(self, engine, store, fake_keycloak, linked_member) -> None:
        """Test a failing add is reported and the row still says F."""
        account = linked_member.keycloak_id
        fake_keycloak.fail_on("PUT", f"/users/{account}/groups/g-new", 500)

        result = await engine.update_member(linked_member.id, {"gruppe": "F"})

        assert result.group_sync.removed is True
        assert result.group_sync.added is False
        assert result.group_sync.partial is True
        assert result.member.gruppe == "F"
        assert (await store.get(linked_member.id)).gruppe == "F"

    @pytest.mark.asyncio
    async def test_keycloak_down_keeps_local_update(self, engine, store, fake_keycloak, linked_member) -> None:
        """Test an unreachable Keycloak does not roll back the update."""
        fake_keycloak.fail_on("POST", "token", 503)

        result = await engine.update_member(linked_member.id, {"gruppe": "F", "ort1": "Bonn"})

        assert result.group_sync.ok is False
        stored = await store.get(linked_member.id)
        assert stored.gruppe == "F"
        assert stored.ort1 == "Bonn"

    @pytest.mark.asyncio
    async def test_no_group_in_update(self, engine, fake_keycloak, linked_member) -> None:
        """Test updates without gruppe do not touch Keycloak."""
        result = await engine.update_member(linked_member.id, {"ort1": "Bonn"})

        assert result.group_sync is None
        assert fake_keycloak.requests == []

    @pytest.mark.asyncio
    async def test_same_group(self, engine, fake_keycloak, linked_member) -> None:
        """Test an unchanged gruppe does not sync."""
        result = await engine.update_member(linked_member.id, {"gruppe": "B"})

        assert result.group_sync is None
        assert fake_keycloak.requests == []

    @pytest.mark.asyncio
    async def test_group_without_reference(self, engine, store, fake_keycloak, linked_member) -> None:
        """Test a target group without Keycloak reference skips the sync."""
        result = await engine.update_member(linked_member.id, {"gruppe": "X"})

        assert result.group_sync is None
        assert fake_keycloak.requests == []
        assert (await store.get(linked_member.id)).gruppe == "X"

    @pytest.mark.asyncio
    async def test_unlinked_member_reports_no_account(self, engine, store, linked_member) -> None:
        """Test a member without account reports the skip reason."""
        other = await add_member(store, vorname="Bernd", gruppe="B")

        result = await engine.update_member(other.id, {"gruppe": "F"})

        assert result.group_sync.skipped_reason == "no_account"

    @pytest.mark.asyncio
    async def test_empty_update(self, engine, linked_member) -> None:
        """Test an update without fields is rejected."""
        with pytest.raises(InvalidInput):
            await engine.update_member(linked_member.id, {})

    @pytest.mark.asyncio
    async def test_missing_member(self, engine) -> None:
        """Test updating an unknown id raises NotFound."""
        with pytest.raises(NotFound):
            await engine.update_member(999, {"ort1": "Bonn"})


class TestProfileAttributes:
    """Tests for the attribute payload."""

    def test_payload(self) -> None:
        """Test fields are trimmed and the flag is encoded as 1/0."""
        member = MemberSnapshot(
            id=1, email=None, vorname="Anna", name="Schmidt",
            strasse1=" Hauptstr. 1 ", plz1="53111", ort1="", status="Aktiv",
            hausvereinsmitglied=True,
        )

        assert profile_attributes(member) == {
            "strasse": "Hauptstr. 1",
            "plz": "53111",
            "ort": None,
            "status": "Aktiv",
            "hv-mitglied": 1,
        }

    def test_flag_values(self) -> None:
        """Test False maps to 0 and None stays None."""
        base = dict(id=1, email=None, vorname=None, name=None)

        assert profile_attributes(MemberSnapshot(**base, hausvereinsmitglied=False))["hv-mitglied"] == 0
        assert profile_attributes(MemberSnapshot(**base))["hv-mitglied"] is None


class TestSyncAll:
    """Tests for the bulk reconciliation."""

    @pytest.mark.asyncio
    async def test_missing_account_is_skipped_and_batch_continues(self, engine, store, fake_keycloak) -> None:
        """Test a deleted account is reported and later members are processed."""
        gone = await add_member(store, vorname="Anna", email="anna@example.org", keycloak_id="deleted")
        kept_account = fake_keycloak.add_user("bernd@example.org")
        kept = await add_member(store, vorname="Bernd", email="bernd@example.org", keycloak_id=kept_account)
        unlinked = await add_member(store, vorname="Clara", email="clara@example.org")

        summary = await engine.sync_all()

        by_id = {c.id: c for c in summary.changes}
        assert by_id[gone.id].skipped == ACCOUNT_NOT_FOUND
        assert summary.attributes_updated == 1
        assert summary.users_created == 1
        assert (await store.get(unlinked.id)).keycloak_id is not None
        assert kept.id not in by_id
        assert summary.total == 3
        assert summary.attempted == 2
        assert summary.skipped == 1

    @pytest.mark.asyncio
    async def test_account_without_email_gets_placeholder(self, engine, store, fake_keycloak) -> None:
        """Test a placeholder is pushed to an account without email."""
        account = fake_keycloak.add_user(None)
        person = await add_member(store, vorname="Anna", name="Schmidt", keycloak_id=account)

        summary = await engine.sync_all()

        expected = f"anna.schmidt.{person.id}@verein.example"
        assert fake_keycloak.users[account]["email"] == expected
        assert fake_keycloak.users[account]["username"] == expected
        assert summary.dummy_emails_set == 1
        assert summary.changes[0].new_email == expected
        assert (await store.get(person.id)).email is None

    @pytest.mark.asyncio
    async def test_placeholder_conflict_is_reported(self, engine, store, fake_keycloak) -> None:
        """Test a 409 while pushing the placeholder is recorded as skipped."""
        account = fake_keycloak.add_user(None)
        person = await add_member(store, vorname="Anna", keycloak_id=account)
        fake_keycloak.fail_on("PUT", f"/users/{account}", 409)

        summary = await engine.sync_all()

        assert summary.changes[0].id == person.id
        assert summary.changes[0].skipped == "Keycloak Konflikt (409)"
        assert summary.dummy_emails_set == 0

    @pytest.mark.asyncio
    async def test_keycloak_email_wins(self, engine, store, fake_keycloak) -> None:
        """Test the Keycloak email overwrites a different local one."""
        account = fake_keycloak.add_user("new@example.org")
        person = await add_member(store, vorname="Anna", email="old@example.org", keycloak_id=account)

        summary = await engine.sync_all()

        assert (await store.get(person.id)).email == "new@example.org"
        assert summary.updated == 1
        assert summary.changes[0].old_email == "old@example.org"
        assert summary.changes[0].new_email == "new@example.org"

    @pytest.mark.asyncio
    async def test_local_email_conflict_is_skipped(self, engine, store, fake_keycloak) -> None:
        """Test a local unique conflict is reported and the batch goes on."""
        first_account = fake_keycloak.add_user("bernd@example.org")
        second_account = fake_keycloak.add_user("bernd@example.org ")
        first = await add_member(store, vorname="Anna", email="anna@example.org", keycloak_id=first_account)
        second = await add_member(store, vorname="Bernd", email="bernd@example.org", keycloak_id=second_account)

        summary = await engine.sync_all()

        by_id = {c.id: c for c in summary.changes}
        assert by_id[first.id].skipped == "Unique Konflikt"
        assert second.id not in by_id
        assert summary.updated == 0
        assert summary.attributes_updated == 2
        assert (await store.get(first.id)).email == "anna@example.org"

    @pytest.mark.asyncio
    async def test_attributes_are_pushed(self, engine, store, fake_keycloak) -> None:
        """Test local address, status and flag end up as attributes."""
        account = fake_keycloak.add_user("anna@example.org", attributes={"status": ["Fux"], "extra": ["x"]})
        await add_member(
            store,
            vorname="Anna",
            email="anna@example.org",
            keycloak_id=account,
            strasse1="Hauptstr. 1",
            plz1="53111",
            ort1="Bonn",
            status=None,
            hausvereinsmitglied=True,
        )

        summary = await engine.sync_all()

        assert summary.attributes_updated == 1
        assert fake_keycloak.users[account]["attributes"] == {
            "strasse": ["Hauptstr. 1"],
            "plz": ["53111"],
            "ort": ["Bonn"],
            "hv-mitglied": ["1"],
            "extra": ["x"],
        }

    @pytest.mark.asyncio
    async def test_attributes_pushed_without_placeholder_domain(
        self, store, users, groups, fake_keycloak, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test a missing placeholder domain skips the email but still writes attributes."""
        monkeypatch.setattr(settings, "mail_placeholder_domain", "")
        engine = ReconciliationEngine(store, users, groups, placeholder_domain=None)
        account = fake_keycloak.add_user(None, attributes={"plz": ["11111"]})
        person = await add_member(store, vorname="Anna", keycloak_id=account, plz1="12345")

        summary = await engine.sync_all()

        assert summary.attributes_updated == 1
        assert summary.skipped == 1
        assert summary.changes[0].id == person.id
        assert summary.changes[0].skipped == "MAIL_PLACEHOLDER_DOMAIN ist nicht gesetzt"
        assert fake_keycloak.users[account]["attributes"]["plz"] == ["12345"]

    @pytest.mark.asyncio
    async def test_attributes_pushed_after_local_failure(
        self, engine, store, fake_keycloak, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test a failed local email write still writes attributes."""
        account = fake_keycloak.add_user("neu@example.org")
        await add_member(store, vorname="Anna", email="alt@example.org", keycloak_id=account, ort1="Bonn")

        async def failing_set_email(member_id: int, email: str):
            raise LocalFailure("DB Fehler")

        monkeypatch.setattr(store, "set_email", failing_set_email)

        summary = await engine.sync_all()

        assert summary.updated == 0
        assert summary.attributes_updated == 1
        assert [c.skipped for c in summary.changes] == ["DB Fehler"]
        assert fake_keycloak.users[account]["attributes"]["ort"] == ["Bonn"]

    @pytest.mark.asyncio
    async def test_unlinked_without_email_uses_placeholder(self, engine, store, fake_keycloak) -> None:
        """Test an account with a placeholder is created for members without email."""
        person = await add_member(store, vorname="Anna", name="Schmidt")

        summary = await engine.sync_all()

        stored = await store.get(person.id)
        assert fake_keycloak.users[stored.keycloak_id]["email"] == f"anna.schmidt.{person.id}@verein.example"
        assert summary.users_created == 1
        assert summary.dummy_emails_set == 1

    @pytest.mark.asyncio
    async def test_unlinked_link_failure_deletes_account(self, engine, store, fake_keycloak) -> None:
        """Test a failed link removes the account created by the run."""
        await add_member(store, vorname="Bernd", keycloak_id="u-1")
        fake_keycloak.add_user("bernd@example.org", user_id="u-1")
        fake_keycloak._next_id = 1
        person = await add_member(store, vorname="Anna", email="anna@example.org")
        # Next created account is u-2; make the link collide on it
        await add_member(store, vorname="Clara", keycloak_id="u-2")

        summary = await engine.sync_all()

        by_id = {c.id: c for c in summary.changes}
        assert by_id[person.id].skipped == "Unique Konflikt"
        assert "u-2" not in fake_keycloak.users
        assert (await store.get(person.id)).keycloak_id is None
        assert summary.users_created == 0

    @pytest.mark.asyncio
    async def test_keycloak_unreachable(self, store, incomplete_ctx, db_session) -> None:
        """Test the batch finishes with skips when Keycloak is not configured."""
        engine = ReconciliationEngine(
            store,
            KeycloakUserClient(incomplete_ctx),
            KeycloakGroupClient(incomplete_ctx),
            placeholder_domain="verein.example",
        )
        await add_member(store, vorname="Anna", keycloak_id="u-1")
        await add_member(store, vorname="Bernd", email="bernd@example.org")

        summary = await engine.sync_all()

        assert summary.total == 2
        assert summary.skipped == 2
        assert summary.changes[0].skipped == ACCOUNT_NOT_FOUND
        assert summary.changes[1].skipped.startswith("Keycloak Create fehlgeschlagen")
        rows = (await db_session.execute(select(BasePerson).order_by(BasePerson.id))).scalars().all()
        assert rows[1].keycloak_id is None
