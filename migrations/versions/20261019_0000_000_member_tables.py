"""Create member tables.

Revision ID: 000
Revises:
Create Date: 2026-10-19

This migration creates the member administration tables:
- base_gruppe (group codes and their Keycloak group reference)
- base_status (status labels)
- base_person (member records, linked to Keycloak via keycloak_id)
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "000"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _short(name: str) -> sa.Column:
    return sa.Column(name, sa.String(255), nullable=True)


def upgrade() -> None:
    # Create base_gruppe table
    op.create_table(
        "base_gruppe",
        sa.Column("bezeichnung", sa.String(1), primary_key=True),
        sa.Column("beschreibung", sa.String(255), nullable=True),
    )

    # Create base_status table
    op.create_table(
        "base_status",
        sa.Column("bezeichnung", sa.String(255), primary_key=True),
        sa.Column("beschreibung", sa.String(255), nullable=True),
    )

    # Create base_person table
    op.create_table(
        "base_person",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        # Name
        *[_short(c) for c in (
            "anrede", "titel", "rang", "vorname", "praefix", "name", "suffix",
            "geburtsname", "spitzname",
        )],
        # Addresses
        *[_short(c) for c in ("zusatz1", "strasse1", "ort1", "plz1", "land1", "telefon1")],
        sa.Column("datum_adresse1_stand", sa.Date(), nullable=True),
        sa.Column("region1", sa.Integer(), nullable=True),
        *[_short(c) for c in ("zusatz2", "strasse2", "ort2", "plz2", "land2", "telefon2")],
        sa.Column("datum_adresse2_stand", sa.Date(), nullable=True),
        sa.Column("region2", sa.Integer(), nullable=True),
        # Contact
        _short("mobiltelefon"),
        sa.Column("email", sa.String(255), nullable=True, unique=True),
        _short("skype"),
        _short("webseite"),
        # Biography
        sa.Column("datum_geburtstag", sa.Date(), nullable=True),
        _short("beruf"),
        sa.Column("heirat_partner", sa.Integer(), nullable=True),
        sa.Column("heirat_datum", sa.Date(), nullable=True),
        sa.Column("tod_datum", sa.Date(), nullable=True),
        _short("tod_ort"),
        # Lifecycle
        sa.Column("gruppe", sa.String(1), nullable=True),
        sa.Column("datum_gruppe_stand", sa.Date(), nullable=True),
        _short("status"),
        *[_short(c) for c in (
            "semester_reception", "semester_promotion", "semester_philistrierung",
            "semester_aufnahme", "semester_fusion",
        )],
        sa.Column("austritt_datum", sa.Date(), nullable=True),
        sa.Column("leibmitglied", sa.Integer(), nullable=True),
        # Flags
        sa.Column("anschreiben_zusenden", sa.Boolean(), nullable=True),
        sa.Column("spendenquittung_zusenden", sa.Boolean(), nullable=True),
        sa.Column("hausvereinsmitglied", sa.Boolean(), nullable=True, server_default=sa.false()),
        # Free text
        sa.Column("vita", sa.Text(), nullable=True),
        sa.Column("bemerkung", sa.Text(), nullable=True),
        # Legacy login
        _short("password_hash"),
        _short("validationkey"),
        # Linked Keycloak account
        sa.Column("keycloak_id", sa.String(64), nullable=True, unique=True),
    )

    # Create indexes
    op.create_index("ix_base_person_gruppe", "base_person", ["gruppe"])
    op.create_index("ix_base_person_status", "base_person", ["status"])


def downgrade() -> None:
    # Drop indexes
    op.drop_index("ix_base_person_status", "base_person")
    op.drop_index("ix_base_person_gruppe", "base_person")

    # Drop tables in reverse order
    op.drop_table("base_person")
    op.drop_table("base_status")
    op.drop_table("base_gruppe")
