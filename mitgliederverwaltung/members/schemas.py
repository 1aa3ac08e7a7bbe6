"""
Member Pydantic Schemas

API request/response schemas for the member module.
"""

from datetime import date
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, model_validator
from pydantic.alias_generators import to_camel

from mitgliederverwaltung.keycloak.groups import GroupSyncResult
from mitgliederverwaltung.members.fields import coerce_edit_payload

ShortStr = Annotated[str, StringConstraints(max_length=255)]
GroupCode = Annotated[str, StringConstraints(min_length=1, max_length=1)]


class CamelModel(BaseModel):
    """Response schema serialized with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# Member Schemas
# =============================================================================


class MemberFields(BaseModel):
    """All editable member columns."""

    anrede: ShortStr | None = None
    titel: ShortStr | None = None
    rang: ShortStr | None = None
    vorname: ShortStr | None = None
    praefix: ShortStr | None = None
    name: ShortStr | None = None
    suffix: ShortStr | None = None
    geburtsname: ShortStr | None = None
    spitzname: ShortStr | None = None

    zusatz1: ShortStr | None = None
    strasse1: ShortStr | None = None
    ort1: ShortStr | None = None
    plz1: ShortStr | None = None
    land1: ShortStr | None = None
    telefon1: ShortStr | None = None
    datum_adresse1_stand: date | None = None
    region1: int | None = None

    zusatz2: ShortStr | None = None
    strasse2: ShortStr | None = None
    ort2: ShortStr | None = None
    plz2: ShortStr | None = None
    land2: ShortStr | None = None
    telefon2: ShortStr | None = None
    datum_adresse2_stand: date | None = None
    region2: int | None = None

    mobiltelefon: ShortStr | None = None
    email: ShortStr | None = None
    skype: ShortStr | None = None
    webseite: ShortStr | None = None

    datum_geburtstag: date | None = None
    beruf: ShortStr | None = None
    heirat_partner: int | None = None
    heirat_datum: date | None = None
    tod_datum: date | None = None
    tod_ort: ShortStr | None = None

    gruppe: GroupCode | None = None
    datum_gruppe_stand: date | None = None
    status: ShortStr | None = None
    semester_reception: ShortStr | None = None
    semester_promotion: ShortStr | None = None
    semester_philistrierung: ShortStr | None = None
    semester_aufnahme: ShortStr | None = None
    semester_fusion: ShortStr | None = None
    austritt_datum: date | None = None

    anschreiben_zusenden: bool | None = None
    spendenquittung_zusenden: bool | None = None
    hausvereinsmitglied: bool | None = None

    vita: str | None = None
    bemerkung: str | None = None

    password_hash: ShortStr | None = None
    validationkey: ShortStr | None = None


class MemberUpdate(MemberFields):
    """
    Partial update of a member.

    Raw form values are coerced by field category before validation;
    unknown and read-only keys are dropped. Use
    ``model_dump(exclude_unset=True)`` to get the columns to write.
    """

    model_config = ConfigDict(extra="ignore")

    @model_validator(mode="before")
    @classmethod
    def coerce_raw_values(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return coerce_edit_payload(data)
        return data


class MemberCreate(MemberUpdate):
    """Schema for creating a member."""

    pass


class MemberResponse(MemberFields):
    """Schema for member response."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    leibmitglied: int | None = None
    keycloak_id: str | None = None
    # Stored rows may carry an empty code
    gruppe: str | None = None


class ReferenceOption(BaseModel):
    """A row of the Gruppe or Status reference table."""

    model_config = ConfigDict(from_attributes=True)

    bezeichnung: str
    beschreibung: str | None = None


class MemberListResponse(CamelModel):
    """Selected columns of the matching members."""

    fields: list[str]
    data: list[dict[str, Any]]
    status_options: list[ReferenceOption] | None = None
    group_options: list[ReferenceOption] | None = None


class MemberDetailResponse(CamelModel):
    """One member with the data the edit view needs."""

    data: MemberResponse
    editable: list[str]
    status_options: list[ReferenceOption] = []
    group_options: list[ReferenceOption] = []


# =============================================================================
# Group Sync Schemas
# =============================================================================


class ResolvedGroupResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str | None
    source: str
    raw: str | None


class GroupSyncResponse(CamelModel):
    """Outcome of the Keycloak group move after a member update."""

    added: bool | None = None
    removed: bool | None = None
    skipped_reason: str | None = None
    config_incomplete: bool = False
    partial: bool = False
    old_resolved: ResolvedGroupResponse | None = None
    new_resolved: ResolvedGroupResponse | None = None

    @classmethod
    def from_result(cls, result: GroupSyncResult) -> "GroupSyncResponse":
        return cls(
            added=result.added,
            removed=result.removed,
            skipped_reason=result.skipped_reason,
            config_incomplete=result.config_incomplete,
            partial=result.partial,
            old_resolved=ResolvedGroupResponse.model_validate(result.old_resolved)
            if result.old_resolved
            else None,
            new_resolved=ResolvedGroupResponse.model_validate(result.new_resolved)
            if result.new_resolved
            else None,
        )


class MemberUpdateResponse(CamelModel):
    """Updated member plus the group sync outcome, if any."""

    data: MemberResponse
    group_sync: GroupSyncResponse | None = None


# =============================================================================
# Bulk Sync Schemas
# =============================================================================


class MemberChange(CamelModel):
    """One entry of the bulk sync change log."""

    id: int
    old_email: str | None = None
    new_email: str = ""
    skipped: str | None = None


class SyncSummary(CamelModel):
    """Result of a bulk reconciliation run."""

    total: int = 0
    attempted: int = 0
    users_created: int = 0
    updated: int = 0
    dummy_emails_set: int = 0
    attributes_updated: int = 0
    skipped: int = 0
    changes: list[MemberChange] = Field(default_factory=list)

    def record(self, change: MemberChange) -> None:
        self.changes.append(change)
        if change.skipped:
            self.skipped += 1


# =============================================================================
# Import Schemas
# =============================================================================


class ImportRequest(BaseModel):
    """CSV text sent as JSON instead of a raw ``text/csv`` body."""

    csv: str


class ImportMessage(BaseModel):
    row: int
    level: Literal["info", "warn", "error"]
    message: str


class ImportSummary(BaseModel):
    """Result of a CSV import; ``row`` numbers count the header as row 1."""

    total: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0
    messages: list[ImportMessage] = Field(default_factory=list)

    def error(self, row: int, message: str) -> None:
        self.errors += 1
        self.messages.append(ImportMessage(row=row, level="error", message=message))
