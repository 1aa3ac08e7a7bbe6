"""
Pytest configuration and fixtures.

Keycloak is replaced by ``FakeKeycloak``, an in-memory admin API served
through ``httpx.MockTransport``, so the real clients run unchanged. The
member store runs on in-memory SQLite.
"""

import json
from collections.abc import AsyncGenerator
from urllib.parse import unquote

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from mitgliederverwaltung.core.database import Base
from mitgliederverwaltung.keycloak.context import KeycloakConfig, KeycloakContext
from mitgliederverwaltung.keycloak.groups import KeycloakGroupClient
from mitgliederverwaltung.keycloak.users import KeycloakUserClient
from mitgliederverwaltung.members.models import BasePerson
from mitgliederverwaltung.members.reconciliation import ReconciliationEngine
from mitgliederverwaltung.members.store import MemberStore

KC_BASE_URL = "https://kc.test"
KC_REALM = "test"
ADMIN_PREFIX = f"/admin/realms/{KC_REALM}"
PLACEHOLDER_DOMAIN = "verein.example"

COMPLETE_CONFIG = KeycloakConfig(
    base_url=KC_BASE_URL,
    realm=KC_REALM,
    client_id="mitglieder-admin",
    client_secret="secret",
    timeout=5.0,
)


class FakeKeycloak:
    """
    Minimal in-memory Keycloak admin API.

    ``fail_on(method, path, status)`` makes one admin path answer with an
    error status; ``raise_on`` makes it raise a transport error instead.
    """

    def __init__(self) -> None:
        self.users: dict[str, dict] = {}
        self.groups: dict[str, str] = {}  # id -> name
        self.memberships: dict[str, set[str]] = {}
        self.requests: list[tuple[str, str]] = []
        self.failures: dict[tuple[str, str], int] = {}
        self.errors: dict[tuple[str, str], Exception] = {}
        self.omit_location = False
        self.jwks: dict = {"keys": []}
        self.raw_jwks: bytes | None = None
        self.token_requests = 0
        self._next_id = 0

    # -- setup helpers -------------------------------------------------------

    def add_user(self, email: str | None, user_id: str | None = None, **extra) -> str:
        if user_id is None:
            self._next_id += 1
            user_id = f"u-{self._next_id}"
        self.users[user_id] = {
            "id": user_id,
            "username": email or user_id,
            "email": email,
            "firstName": extra.pop("firstName", None),
            "lastName": extra.pop("lastName", None),
            "enabled": True,
            "emailVerified": False,
            "attributes": extra.pop("attributes", {}),
            **extra,
        }
        return user_id

    def add_group(self, group_id: str, name: str) -> None:
        self.groups[group_id] = name

    def fail_on(self, method: str, path: str, status: int) -> None:
        self.failures[(method, path)] = status

    def raise_on(self, method: str, path: str, error: Exception) -> None:
        self.errors[(method, path)] = error

    def count(self, method: str, path: str) -> int:
        return sum(1 for m, p in self.requests if m == method and p == path)

    def admin_calls(self, method: str | None = None) -> list[tuple[str, str]]:
        return [(m, p) for m, p in self.requests if method is None or m == method]

    # -- transport -----------------------------------------------------------

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = unquote(request.url.path)
        method = request.method

        if path.endswith("/protocol/openid-connect/token"):
            self.token_requests += 1
            if ("POST", "token") in self.failures:
                return httpx.Response(self.failures[("POST", "token")])
            return httpx.Response(200, json={"access_token": "admin-token", "expires_in": 300})
        if path.endswith("/protocol/openid-connect/certs"):
            if self.raw_jwks is not None:
                return httpx.Response(200, content=self.raw_jwks)
            return httpx.Response(200, json=self.jwks)
        if not path.startswith(ADMIN_PREFIX):
            return httpx.Response(404)

        rel = path[len(ADMIN_PREFIX):]
        self.requests.append((method, rel))
        if (method, rel) in self.errors:
            raise self.errors[(method, rel)]
        if (method, rel) in self.failures:
            return httpx.Response(self.failures[(method, rel)])
        if request.headers.get("Authorization") != "Bearer admin-token":
            return httpx.Response(401)

        parts = rel.strip("/").split("/")
        if parts == ["users"]:
            if method == "POST":
                return self._create_user(json.loads(request.content))
            email = (request.url.params.get("email") or "").lower()
            found = [u for u in self.users.values() if (u.get("email") or "").lower() == email]
            return httpx.Response(200, json=found)
        if parts[0] == "users" and len(parts) == 2:
            return self._user(method, parts[1], request)
        if parts[0] == "users" and len(parts) == 4 and parts[2] == "groups":
            return self._membership(method, parts[1], parts[3])
        if parts == ["groups"]:
            search = (request.url.params.get("search") or "").lower()
            found = [{"id": gid, "name": name} for gid, name in self.groups.items() if search in name.lower()]
            return httpx.Response(200, json=found)
        return httpx.Response(404)

    def _create_user(self, payload: dict) -> httpx.Response:
        email = (payload.get("email") or "").lower()
        if any((u.get("email") or "").lower() == email for u in self.users.values()):
            return httpx.Response(409, json={"errorMessage": "User exists with same email"})
        user_id = self.add_user(
            payload.get("email"),
            firstName=payload.get("firstName"),
            lastName=payload.get("lastName"),
        )
        self.users[user_id]["username"] = payload.get("username")
        self.users[user_id]["enabled"] = payload.get("enabled")
        self.users[user_id]["emailVerified"] = payload.get("emailVerified")
        headers = {} if self.omit_location else {"Location": f"{KC_BASE_URL}{ADMIN_PREFIX}/users/{user_id}"}
        return httpx.Response(201, headers=headers)

    def _user(self, method: str, user_id: str, request: httpx.Request) -> httpx.Response:
        if user_id not in self.users:
            return httpx.Response(404)
        if method == "GET":
            return httpx.Response(200, json=self.users[user_id])
        if method == "PUT":
            self.users[user_id] = json.loads(request.content)
            return httpx.Response(204)
        if method == "DELETE":
            del self.users[user_id]
            self.memberships.pop(user_id, None)
            return httpx.Response(204)
        return httpx.Response(405)

    def _membership(self, method: str, user_id: str, group_id: str) -> httpx.Response:
        if user_id not in self.users or group_id not in self.groups:
            return httpx.Response(404)
        groups = self.memberships.setdefault(user_id, set())
        if method == "PUT":
            groups.add(group_id)
        elif method == "DELETE":
            groups.discard(group_id)
        return httpx.Response(204)


@pytest.fixture
def fake_keycloak() -> FakeKeycloak:
    """Return an empty fake Keycloak."""
    return FakeKeycloak()


@pytest_asyncio.fixture
async def keycloak_ctx(fake_keycloak: FakeKeycloak) -> AsyncGenerator[KeycloakContext, None]:
    """Keycloak context wired to the fake admin API."""
    client = httpx.AsyncClient(transport=httpx.MockTransport(fake_keycloak.handler))
    async with KeycloakContext(COMPLETE_CONFIG, client=client) as ctx:
        yield ctx


@pytest_asyncio.fixture
async def incomplete_ctx(fake_keycloak: FakeKeycloak) -> AsyncGenerator[KeycloakContext, None]:
    """Keycloak context without client secret."""
    client = httpx.AsyncClient(transport=httpx.MockTransport(fake_keycloak.handler))
    config = KeycloakConfig(base_url=KC_BASE_URL, realm=KC_REALM, client_id="mitglieder-admin")
    async with KeycloakContext(config, client=client) as ctx:
        yield ctx


@pytest.fixture
def users(keycloak_ctx: KeycloakContext) -> KeycloakUserClient:
    return KeycloakUserClient(keycloak_ctx)


@pytest.fixture
def groups(keycloak_ctx: KeycloakContext) -> KeycloakGroupClient:
    return KeycloakGroupClient(keycloak_ctx)


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Session on a fresh in-memory SQLite database."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_maker() as session:
        yield session
    await engine.dispose()


@pytest.fixture
def store(db_session: AsyncSession) -> MemberStore:
    return MemberStore(db_session)


@pytest.fixture
def engine(store: MemberStore, users: KeycloakUserClient, groups: KeycloakGroupClient) -> ReconciliationEngine:
    """Reconciliation engine on SQLite and the fake Keycloak."""
    return ReconciliationEngine(store, users, groups, placeholder_domain=PLACEHOLDER_DOMAIN)


@pytest.fixture
def member_count(db_session: AsyncSession):
    """Return a coroutine function counting the rows in base_person."""

    async def count() -> int:
        result = await db_session.execute(select(func.count()).select_from(BasePerson))
        return result.scalar_one()

    return count


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
