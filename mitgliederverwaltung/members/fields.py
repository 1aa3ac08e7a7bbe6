"""
Member field catalogue.

Every column of ``BasePerson`` belongs to exactly one category, and the
category decides how incoming edit values are coerced.
"""

from datetime import date, datetime
from typing import Any, Final

ALL_FIELDS: Final[tuple[str, ...]] = (
    "id", "anrede", "titel", "rang", "vorname", "praefix", "name", "suffix", "geburtsname",
    "zusatz1", "strasse1", "ort1", "plz1", "land1", "telefon1", "datum_adresse1_stand",
    "zusatz2", "strasse2", "ort2", "plz2", "land2", "telefon2", "datum_adresse2_stand",
    "region1", "region2", "mobiltelefon", "email", "skype", "webseite", "datum_geburtstag",
    "beruf", "heirat_partner", "heirat_datum", "tod_datum", "tod_ort", "gruppe",
    "datum_gruppe_stand", "status", "semester_reception", "semester_promotion",
    "semester_philistrierung", "semester_aufnahme", "semester_fusion", "austritt_datum",
    "spitzname", "leibmitglied", "anschreiben_zusenden", "spendenquittung_zusenden", "vita",
    "bemerkung", "password_hash", "validationkey", "keycloak_id", "hausvereinsmitglied",
)

# keycloak_id is written by the reconciliation engine only
READ_ONLY_FIELDS: Final[frozenset[str]] = frozenset({"id", "leibmitglied", "keycloak_id"})

EDITABLE_FIELDS: Final[tuple[str, ...]] = tuple(f for f in ALL_FIELDS if f not in READ_ONLY_FIELDS)

DATE_FIELDS: Final[frozenset[str]] = frozenset({
    "datum_adresse1_stand", "datum_adresse2_stand", "datum_geburtstag", "heirat_datum",
    "tod_datum", "datum_gruppe_stand", "austritt_datum",
})

BOOLEAN_FIELDS: Final[frozenset[str]] = frozenset({
    "anschreiben_zusenden", "spendenquittung_zusenden", "hausvereinsmitglied",
})

INT_FIELDS: Final[frozenset[str]] = frozenset({"region1", "region2", "heirat_partner", "leibmitglied"})

TEXT_FIELDS: Final[frozenset[str]] = frozenset({"vita", "bemerkung"})

DEFAULT_LIST_FIELDS: Final[tuple[str, ...]] = (
    "id", "vorname", "name", "strasse1", "plz1", "ort1", "datum_geburtstag", "email",
)

DEFAULT_EDIT_FIELDS: Final[tuple[str, ...]] = (
    "vorname", "name", "email", "strasse1", "plz1", "ort1", "telefon1", "mobiltelefon",
    "datum_geburtstag", "gruppe", "status", "hausvereinsmitglied", "semester_reception",
    "semester_promotion", "semester_philistrierung", "semester_aufnahme",
)

# Only labels that differ from the field name
FIELD_LABELS: Final[dict[str, str]] = {
    "name": "Name (Nachname)",
    "vorname": "Vorname",
    "zusatz1": "Adresszusatz",
    "datum_geburtstag": "Geburtstag",
    "datum_adresse1_stand": "Adr1 Stand",
    "datum_adresse2_stand": "Adr2 Stand",
    "datum_gruppe_stand": "Gruppe Stand",
    "anschreiben_zusenden": "Anschreiben",
    "spendenquittung_zusenden": "Spendenquittung",
    "hausvereinsmitglied": "Hausverein",
}

EXPORT_PRESETS: Final[dict[str, tuple[str, ...]]] = {
    "adressliste": (
        "vorname", "name", "strasse1", "plz1", "ort1", "land1", "telefon1", "mobiltelefon", "email",
    ),
    "geburtstage": (
        "vorname", "name", "datum_geburtstag", "strasse1", "plz1", "ort1", "land1", "email",
        "telefon1", "mobiltelefon",
    ),
    "mailliste": ("vorname", "name", "email"),
}


def field_label(field: str) -> str:
    return FIELD_LABELS.get(field) or field.replace("_", " ")


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"


UNSET: Final = _Unset()


def _blank(value: Any) -> bool:
    return value is None or value == ""


def coerce_date(value: Any) -> date | None | _Unset:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
        except ValueError:
            return None
    if _blank(value):
        return None
    return UNSET


def coerce_bool(value: Any) -> bool | _Unset:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value == "true"
    return UNSET


def coerce_int(value: Any) -> int | None:
    if _blank(value) or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    try:
        return int(str(value).strip(), 10)
    except ValueError:
        return None


def coerce_field_value(field: str, value: Any) -> Any:
    """Coerce one incoming value; UNSET means leave the column untouched."""
    if field in DATE_FIELDS:
        return coerce_date(value)
    if field in BOOLEAN_FIELDS:
        return coerce_bool(value)
    if field in INT_FIELDS:
        return coerce_int(value)
    if field == "gruppe":
        return UNSET if _blank(value) else str(value)[:1]
    return None if _blank(value) else str(value)


def coerce_edit_payload(incoming: dict[str, Any]) -> dict[str, Any]:
    """Keep editable keys only and coerce their values by category."""
    data: dict[str, Any] = {}
    for key, value in incoming.items():
        if key not in EDITABLE_FIELDS:
            continue
        coerced = coerce_field_value(key, value)
        if coerced is UNSET:
            continue
        data[key] = coerced
    return data


def parse_fields_param(param: str | None) -> list[str]:
    """Column selection for the list view; id and vorname are always included."""
    if not param:
        return list(DEFAULT_LIST_FIELDS)
    requested = [p.strip() for p in param.split(",") if p.strip()]
    valid = [f for f in requested if f in ALL_FIELDS]
    if "id" not in valid:
        valid.insert(0, "id")
    if "vorname" not in valid:
        valid.append("vorname")
    return valid


def parse_multi(param: str | None) -> list[str] | None:
    if not param:
        return None
    values = [s.strip() for s in param.split(",") if s.strip()]
    return values or None
