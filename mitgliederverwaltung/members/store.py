"""
Member Store

Database access for member records. Every write commits on its own so that
the reconciliation engine sees durable state between Keycloak calls, and
uniqueness violations are reported as ``LocalConflict`` separately from
other failures.
"""

import logging
from typing import Any, Sequence

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from mitgliederverwaltung.core.exceptions import LocalConflict, LocalFailure, NotFound
from mitgliederverwaltung.members.models import BaseGruppe, BasePerson, BaseStatus

logger = logging.getLogger(__name__)


class MemberStore:
    """Point lookups, filtered listings and committed writes on ``base_person``."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _commit(self) -> None:
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            logger.info(f"Unique constraint violated: {e.orig}")
            raise LocalConflict("Unique Konflikt") from e
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Database write failed: {e}")
            raise LocalFailure("DB Fehler") from e

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get(self, member_id: int) -> BasePerson | None:
        return await self.db.get(BasePerson, member_id)

    async def get_or_404(self, member_id: int) -> BasePerson:
        person = await self.get(member_id)
        if person is None:
            raise NotFound("Nicht gefunden")
        return person

    async def get_by_email(self, email: str) -> BasePerson | None:
        result = await self.db.execute(select(BasePerson).where(BasePerson.email == email))
        return result.scalar_one_or_none()

    async def get_group_ref(self, gruppe: str | None) -> str | None:
        """Keycloak group reference for a group code; first row wins on duplicates."""
        if not gruppe:
            return None
        result = await self.db.execute(
            select(BaseGruppe.beschreibung)
            .where(BaseGruppe.bezeichnung == gruppe)
            .order_by(BaseGruppe.bezeichnung)
        )
        ref = result.scalars().first()
        return ref or None

    async def list_members(
        self,
        fields: Sequence[str],
        gruppe: list[str] | None = None,
        status: list[str] | None = None,
        hvm: str | None = None,
    ) -> list[dict[str, Any]]:
        """Selected columns of all members matching the filters, ordered by id."""
        columns = [getattr(BasePerson, f) for f in fields]
        query = select(*columns).order_by(BasePerson.id)
        if gruppe:
            query = query.where(BasePerson.gruppe.in_([g[:1] for g in gruppe]))
        if status:
            query = query.where(BasePerson.status.in_(status))
        if hvm == "yes":
            query = query.where(BasePerson.hausvereinsmitglied.is_(True))
        elif hvm == "no":
            query = query.where(BasePerson.hausvereinsmitglied.is_(False))
        result = await self.db.execute(query)
        return [dict(row._mapping) for row in result]

    async def list_linked(self) -> list[BasePerson]:
        result = await self.db.execute(
            select(BasePerson).where(BasePerson.keycloak_id.is_not(None)).order_by(BasePerson.id)
        )
        return list(result.scalars().all())

    async def list_unlinked(self) -> list[BasePerson]:
        result = await self.db.execute(
            select(BasePerson).where(BasePerson.keycloak_id.is_(None)).order_by(BasePerson.id)
        )
        return list(result.scalars().all())

    async def status_options(self) -> list[BaseStatus]:
        result = await self.db.execute(select(BaseStatus).order_by(BaseStatus.bezeichnung))
        return list(result.scalars().all())

    async def group_options(self) -> list[BaseGruppe]:
        result = await self.db.execute(select(BaseGruppe).order_by(BaseGruppe.bezeichnung))
        return list(result.scalars().all())

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def insert(self, data: dict[str, Any]) -> BasePerson:
        person = BasePerson(**data)
        self.db.add(person)
        await self._commit()
        await self.db.refresh(person)
        logger.info(f"Member created: {person.id}")
        return person

    async def update(self, member_id: int, data: dict[str, Any]) -> BasePerson:
        person = await self.get_or_404(member_id)
        for key, value in data.items():
            setattr(person, key, value)
        await self._commit()
        await self.db.refresh(person)
        return person

    async def set_keycloak_id(self, member_id: int, keycloak_id: str) -> BasePerson:
        return await self.update(member_id, {"keycloak_id": keycloak_id})

    async def set_email(self, member_id: int, email: str) -> BasePerson:
        return await self.update(member_id, {"email": email})

    async def delete(self, member_id: int) -> bool:
        result = await self.db.execute(
            delete(BasePerson)
            .where(BasePerson.id == member_id)
            .execution_options(synchronize_session="fetch")
        )
        await self._commit()
        deleted = result.rowcount > 0
        if deleted:
            logger.info(f"Member deleted: {member_id}")
        return deleted
