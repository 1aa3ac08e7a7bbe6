"""
Auth Dependencies

FastAPI dependencies for authentication. Bearer tokens are Keycloak access
tokens, verified against the realm's published signing keys.
"""

import logging

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from mitgliederverwaltung.core.config import Settings, get_settings
from mitgliederverwaltung.keycloak.context import KeycloakContext, get_keycloak

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)

ALGORITHMS = ["RS256"]


def _unauthorized() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Nicht eingeloggt",
        headers={"WWW-Authenticate": "Bearer"},
    )


def extract_roles(claims: dict) -> list[str]:
    """Realm roles from a Keycloak access token."""
    realm_access = claims.get("realm_access") or {}
    roles = realm_access.get("roles") or []
    return [r for r in roles if isinstance(r, str)]


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    keycloak: KeycloakContext = Depends(get_keycloak),
    settings: Settings = Depends(get_settings),
) -> dict:
    """
    Get current authenticated user.

    The token signature is checked with the realm JWKS and the issuer must
    match the configured realm. The audience is not checked; Keycloak puts
    ``account`` there for most clients.
    """
    if credentials is None:
        raise _unauthorized()

    jwks = await keycloak.get_jwks()
    if not jwks:
        logger.warning("No JWKS available, rejecting bearer token")
        raise _unauthorized()

    issuer = settings.keycloak_issuer or keycloak.config.realm_url
    try:
        claims = jwt.decode(
            credentials.credentials,
            jwks,
            algorithms=ALGORITHMS,
            issuer=issuer,
            options={"verify_aud": False},
        )
    except JWTError as e:
        logger.info(f"Invalid bearer token: {e}")
        raise _unauthorized() from e

    return {
        "id": claims.get("sub"),
        "email": claims.get("email"),
        "name": claims.get("name") or claims.get("preferred_username"),
        "roles": extract_roles(claims),
    }


async def require_member_admin(
    user: dict = Depends(get_current_user),
    settings: Settings = Depends(get_settings),
) -> dict:
    """Require the configured member administration role."""
    role = settings.mitglieder_verwaltung_role
    if not role:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Rollen-Variable fehlt",
        )
    if role not in user["roles"]:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Fehlende Rolle",
        )
    return user
