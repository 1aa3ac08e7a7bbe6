"""
Member Database Models

SQLAlchemy models for member records and their reference tables
(Gruppen, Status).
"""

from datetime import date

from sqlalchemy import Boolean, Date, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from mitgliederverwaltung.core.database import Base


class BaseGruppe(Base):
    """
    Group reference row.

    ``beschreibung`` holds the Keycloak group id (UUID) or group name the
    one-letter code maps to.
    """

    __tablename__ = "base_gruppe"

    bezeichnung: Mapped[str] = mapped_column(String(1), primary_key=True)
    beschreibung: Mapped[str | None] = mapped_column(String(255))


class BaseStatus(Base):
    """Status reference row (Aktiver, Philister, ...)."""

    __tablename__ = "base_status"

    bezeichnung: Mapped[str] = mapped_column(String(255), primary_key=True)
    beschreibung: Mapped[str | None] = mapped_column(String(255))


class BasePerson(Base):
    """A member record."""

    __tablename__ = "base_person"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Name
    anrede: Mapped[str | None] = mapped_column(String(255))
    titel: Mapped[str | None] = mapped_column(String(255))
    rang: Mapped[str | None] = mapped_column(String(255))
    vorname: Mapped[str | None] = mapped_column(String(255))
    praefix: Mapped[str | None] = mapped_column(String(255))
    name: Mapped[str | None] = mapped_column(String(255))
    suffix: Mapped[str | None] = mapped_column(String(255))
    geburtsname: Mapped[str | None] = mapped_column(String(255))
    spitzname: Mapped[str | None] = mapped_column(String(255))

    # Address 1
    zusatz1: Mapped[str | None] = mapped_column(String(255))
    strasse1: Mapped[str | None] = mapped_column(String(255))
    ort1: Mapped[str | None] = mapped_column(String(255))
    plz1: Mapped[str | None] = mapped_column(String(255))
    land1: Mapped[str | None] = mapped_column(String(255))
    telefon1: Mapped[str | None] = mapped_column(String(255))
    datum_adresse1_stand: Mapped[date | None] = mapped_column(Date)
    region1: Mapped[int | None] = mapped_column(Integer)

    # Address 2
    zusatz2: Mapped[str | None] = mapped_column(String(255))
    strasse2: Mapped[str | None] = mapped_column(String(255))
    ort2: Mapped[str | None] = mapped_column(String(255))
    plz2: Mapped[str | None] = mapped_column(String(255))
    land2: Mapped[str | None] = mapped_column(String(255))
    telefon2: Mapped[str | None] = mapped_column(String(255))
    datum_adresse2_stand: Mapped[date | None] = mapped_column(Date)
    region2: Mapped[int | None] = mapped_column(Integer)

    # Contact
    mobiltelefon: Mapped[str | None] = mapped_column(String(255))
    email: Mapped[str | None] = mapped_column(String(255), unique=True)
    skype: Mapped[str | None] = mapped_column(String(255))
    webseite: Mapped[str | None] = mapped_column(String(255))

    # Biography
    datum_geburtstag: Mapped[date | None] = mapped_column(Date)
    beruf: Mapped[str | None] = mapped_column(String(255))
    heirat_partner: Mapped[int | None] = mapped_column(Integer)
    heirat_datum: Mapped[date | None] = mapped_column(Date)
    tod_datum: Mapped[date | None] = mapped_column(Date)
    tod_ort: Mapped[str | None] = mapped_column(String(255))

    # Lifecycle
    gruppe: Mapped[str | None] = mapped_column(String(1), index=True)
    datum_gruppe_stand: Mapped[date | None] = mapped_column(Date)
    status: Mapped[str | None] = mapped_column(String(255), index=True)
    semester_reception: Mapped[str | None] = mapped_column(String(255))
    semester_promotion: Mapped[str | None] = mapped_column(String(255))
    semester_philistrierung: Mapped[str | None] = mapped_column(String(255))
    semester_aufnahme: Mapped[str | None] = mapped_column(String(255))
    semester_fusion: Mapped[str | None] = mapped_column(String(255))
    austritt_datum: Mapped[date | None] = mapped_column(Date)
    leibmitglied: Mapped[int | None] = mapped_column(Integer)

    # Flags
    anschreiben_zusenden: Mapped[bool | None] = mapped_column(Boolean)
    spendenquittung_zusenden: Mapped[bool | None] = mapped_column(Boolean)
    hausvereinsmitglied: Mapped[bool | None] = mapped_column(Boolean, default=False)

    # Free text
    vita: Mapped[str | None] = mapped_column(Text)
    bemerkung: Mapped[str | None] = mapped_column(Text)

    # Legacy login
    password_hash: Mapped[str | None] = mapped_column(String(255))
    validationkey: Mapped[str | None] = mapped_column(String(255))

    # Linked Keycloak account
    keycloak_id: Mapped[str | None] = mapped_column(String(64), unique=True)

    def __repr__(self) -> str:
        return f"<BasePerson {self.id} {self.vorname} {self.name}>"
