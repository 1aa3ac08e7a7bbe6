"""
CSV import of member lists.

Rows are matched to existing members by ``id``, then by ``email``; a match
is updated with the supplied columns only, otherwise a new member is
inserted. Keycloak is not touched; new members are linked by the next
bulk sync.

Columns are mapped by field name or field label (case and surrounding
whitespace ignored). The delimiter is given by the caller.
"""

import csv
import io
import logging
import re
from datetime import date
from typing import Any

from mitgliederverwaltung.core.exceptions import InvalidInput, LocalConflict, MitgliederError
from mitgliederverwaltung.members.export import BOM
from mitgliederverwaltung.members.fields import (
    ALL_FIELDS,
    BOOLEAN_FIELDS,
    DATE_FIELDS,
    EDITABLE_FIELDS,
    INT_FIELDS,
    TEXT_FIELDS,
    UNSET,
    coerce_date,
    coerce_field_value,
    coerce_int,
    field_label,
)
from mitgliederverwaltung.members.schemas import ImportMessage, ImportSummary
from mitgliederverwaltung.members.store import MemberStore

logger = logging.getLogger(__name__)

TRUE_VALUES = frozenset({"1", "true", "ja", "yes", "y", "x"})
FALSE_VALUES = frozenset({"0", "false", "nein", "no", "n"})

_GERMAN_DATE_RE = re.compile(r"^([0-3]?\d)\.([01]?\d)\.(\d{4})$")


def normalize_header(value: str) -> str:
    return " ".join(value.strip().strip('"').split()).lower()


HEADER_FIELDS: dict[str, str] = {}
for _field in ALL_FIELDS:
    HEADER_FIELDS[normalize_header(field_label(_field))] = _field
    HEADER_FIELDS[normalize_header(_field)] = _field


def parse_import_bool(value: str) -> bool | None:
    s = value.strip().lower()
    if s in TRUE_VALUES:
        return True
    if s in FALSE_VALUES:
        return False
    return None


def parse_import_date(value: str) -> date | None:
    """ISO dates and ``dd.mm.yyyy``."""
    s = value.strip()
    m = _GERMAN_DATE_RE.match(s)
    if m:
        try:
            return date(int(m.group(3)), int(m.group(2)), int(m.group(1)))
        except ValueError:
            return None
    result = coerce_date(s)
    return None if result is UNSET else result


def coerce_import_value(field: str, raw: str) -> Any:
    """Coerce one cell; UNSET means the column is left untouched."""
    if field in DATE_FIELDS:
        return parse_import_date(raw)
    if field in BOOLEAN_FIELDS:
        return parse_import_bool(raw)
    if field in INT_FIELDS:
        return coerce_int(raw)
    return coerce_field_value(field, raw if field in TEXT_FIELDS else raw.strip())


def read_csv(text: str, delimiter: str = ";") -> tuple[list[str], list[list[str]]]:
    """Header and data rows; blank lines dropped, short rows padded."""
    reader = csv.reader(io.StringIO(text.removeprefix(BOM)), delimiter=delimiter)
    lines = [row for row in reader if any(cell.strip() for cell in row)]
    if not lines:
        return [], []
    header = lines[0]
    rows = [row + [""] * (len(header) - len(row)) for row in lines[1:]]
    return header, rows


class MemberImporter:
    """Upsert members from CSV text."""

    def __init__(self, store: MemberStore):
        self.store = store

    async def run(self, text: str, delimiter: str = ";") -> ImportSummary:
        """
        Import all rows.

        Raises:
            InvalidInput: bad delimiter, empty input or no known column
        """
        if len(delimiter) != 1:
            raise InvalidInput("Ungültiges Trennzeichen")
        if not text.strip():
            raise InvalidInput("CSV ist leer")
        header, rows = read_csv(text, delimiter)
        if not header:
            raise InvalidInput("CSV ohne Kopfzeile")

        mapped = [HEADER_FIELDS.get(normalize_header(h)) for h in header]
        if not any(mapped):
            raise InvalidInput("Keine bekannten Spalten im CSV")

        summary = ImportSummary(total=len(rows))
        unknown = [h for h, f in zip(header, mapped) if f is None]
        if unknown:
            summary.messages.append(
                ImportMessage(row=1, level="warn", message=f"Ignorierte Spalten: {', '.join(unknown)}")
            )

        for index, row in enumerate(rows):
            row_number = index + 2
            try:
                await self._import_row(mapped, row, row_number, summary)
            except MitgliederError as e:
                summary.error(row_number, e.message)

        logger.info(
            f"Import finished: total={summary.total} created={summary.created} "
            f"updated={summary.updated} skipped={summary.skipped} errors={summary.errors}"
        )
        return summary

    async def _import_row(
        self,
        mapped: list[str | None],
        row: list[str],
        row_number: int,
        summary: ImportSummary,
    ) -> None:
        data: dict[str, Any] = {}
        member_id: int | None = None
        email = ""
        for field, raw in zip(mapped, row):
            if field == "id":
                member_id = coerce_int(raw)
                continue
            if field == "email":
                email = raw.strip()
            if field not in EDITABLE_FIELDS:
                continue
            value = coerce_import_value(field, raw)
            if value is UNSET:
                continue
            data[field] = value

        if not any(raw.strip() for field, raw in zip(mapped, row) if field):
            summary.skipped += 1
            summary.messages.append(
                ImportMessage(row=row_number, level="info", message="Keine Werte, übersprungen")
            )
            return

        existing = None
        if member_id and member_id > 0:
            existing = await self.store.get(member_id)
        if existing is None and email:
            existing = await self.store.get_by_email(email)

        if existing is not None:
            await self.store.update(existing.id, data)
            summary.updated += 1
            return

        data.setdefault("hausvereinsmitglied", False)
        try:
            await self.store.insert(data)
        except LocalConflict:
            # Email taken since the lookup
            found = await self.store.get_by_email(email) if email else None
            if found is None:
                summary.error(row_number, f"Unique-Fehler bei Email {email}" if email else "Unique Konflikt")
                return
            await self.store.update(found.id, data)
            summary.updated += 1
            return
        summary.created += 1
