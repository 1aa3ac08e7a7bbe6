"""Keycloak module - admin API clients for accounts and group membership."""

from mitgliederverwaltung.keycloak.context import KeycloakConfig, KeycloakContext, get_keycloak
from mitgliederverwaltung.keycloak.groups import (
    GroupSource,
    GroupSyncResult,
    KeycloakGroupClient,
    ResolvedGroup,
    SkipReason,
)
from mitgliederverwaltung.keycloak.users import (
    CreateUserResult,
    KeycloakUser,
    KeycloakUserClient,
    UpdateResult,
)

__all__ = [
    "CreateUserResult",
    "GroupSource",
    "GroupSyncResult",
    "KeycloakConfig",
    "KeycloakContext",
    "KeycloakGroupClient",
    "KeycloakUser",
    "KeycloakUserClient",
    "ResolvedGroup",
    "SkipReason",
    "UpdateResult",
    "get_keycloak",
]
