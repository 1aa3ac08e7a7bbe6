"""Auth module - Keycloak bearer-token verification and role checks."""

from mitgliederverwaltung.auth.dependencies import get_current_user, require_member_admin

__all__ = [
    "get_current_user",
    "require_member_admin",
]
