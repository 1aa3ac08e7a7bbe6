"""
Placeholder emails for members without an address.

Keycloak requires an email/username per account. Members without one get a
synthetic address built from their name and id, e.g.
``anna.schmidt.42@verein.example``. The id suffix keeps addresses of
namesakes apart and makes the result reproducible.
"""

import re

from mitgliederverwaltung.core.config import settings
from mitgliederverwaltung.core.exceptions import ConfigIncomplete

_UMLAUTS = (("ä", "ae"), ("ö", "oe"), ("ü", "ue"), ("ß", "ss"))
_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")


def normalize_for_email_local_part(value: str | None) -> str:
    """Lowercase ASCII slug with single hyphens between words."""
    s = (value or "").strip().lower()
    if not s:
        return ""
    for umlaut, replacement in _UMLAUTS:
        s = s.replace(umlaut, replacement)
    return _NON_ALNUM_RE.sub("-", s).strip("-")


def make_placeholder_email(
    vorname: str | None = None,
    nachname: str | None = None,
    id: int | str | None = None,
    domain: str | None = None,
) -> str:
    """
    Build ``vorname.nachname[.id]@domain``.

    Raises:
        ConfigIncomplete: no domain given and MAIL_PLACEHOLDER_DOMAIN unset
    """
    domain = (domain or settings.mail_placeholder_domain or "").strip()
    if not domain:
        raise ConfigIncomplete("MAIL_PLACEHOLDER_DOMAIN ist nicht gesetzt")

    parts = [normalize_for_email_local_part(vorname), normalize_for_email_local_part(nachname)]
    base = ".".join(p for p in parts if p) or "user"

    id_part = ""
    if id is not None and str(id).strip():
        id_part = "." + (normalize_for_email_local_part(str(id)) or str(id))

    return f"{base}{id_part}@{domain}"
