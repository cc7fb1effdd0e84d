"""
Pytest configuration: in-memory SQLite in place of PostgreSQL and an
in-memory fake of the LDAP directory.
"""
import re

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from ldap3.utils.conv import escape_filter_chars
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from dirauth.database import get_db
from dirauth.main import app
from dirauth.models.base import Base
from dirauth.services.auth import hash_password
from dirauth.services.directory import (
    DirectoryConnection,
    DirectoryEntry,
    DirectoryStatus,
    SearchResult,
)
from dirauth.services.ldap_auth import get_directory_client
from dirauth.services.users import UserStore

# In-memory SQLite in place of PostgreSQL
TEST_DB_URL = "sqlite+aiosqlite:///:memory:"

PEOPLE_BASE = "ou=people,dc=example,dc=com"
SERVICE_DN = "cn=reader,dc=example,dc=com"
SERVICE_PASSWORD = "reader-secret"

_FILTER_TERM = re.compile(r"\(([^()=&|!]+)=([^()]*)\)")


class FakeDirectory:
    """In-memory `DirectoryClient`.

    Searches understand plain ``(attr=value)`` terms and an ``&`` of them,
    which covers every filter the authenticator builds.
    """

    def __init__(self):
        self.entries: list[tuple[str, DirectoryEntry]] = []
        self.passwords: dict[str, str] = {SERVICE_DN: SERVICE_PASSWORD}
        self.reachable = True
        self.allow_anonymous = True
        self.search_error = False
        self.options = []
        self.binds = []
        self.searches = []
        self.closed = 0

    def add_user(
        self,
        uid: str,
        password: str,
        name: str | None = None,
        email: str | None = None,
        include_uid: bool = True,
    ) -> DirectoryEntry:
        attributes = {}
        if include_uid:
            attributes["uid"] = [uid]
        if name is not None:
            attributes["displayName"] = [name]
        if email is not None:
            attributes["mail"] = [email]
        entry = DirectoryEntry(dn=f"uid={uid},{PEOPLE_BASE}", attributes=attributes)
        # Entries always match on uid even when the attribute is not returned
        self.entries.append((uid, entry))
        self.passwords[entry.dn] = password
        return entry

    def connect(self, options):
        self.options.append(options)
        if not self.reachable:
            return None
        return DirectoryConnection(connection=object(), time_limit=options.time_limit)

    def bind(self, handle, dn, password):
        self.binds.append((dn, password))
        if dn is None:
            return DirectoryStatus.SUCCESS if self.allow_anonymous else DirectoryStatus.NOT_FOUND
        if password and self.passwords.get(dn) == password:
            return DirectoryStatus.SUCCESS
        return DirectoryStatus.NOT_FOUND

    def search(self, handle, base, search_filter, attributes):
        self.searches.append((base, search_filter, list(attributes)))
        if self.search_error:
            return SearchResult(DirectoryStatus.ERROR)
        terms = _FILTER_TERM.findall(search_filter)
        wanted = {a.lower() for a in attributes}
        found = []
        for uid, entry in self.entries:
            if base != PEOPLE_BASE or not all(self._matches(uid, entry, a, v) for a, v in terms):
                continue
            found.append(DirectoryEntry(
                dn=entry.dn,
                attributes={k: v for k, v in entry.attributes.items() if k in wanted},
            ))
        if not found:
            return SearchResult(DirectoryStatus.NOT_FOUND)
        return SearchResult(DirectoryStatus.SUCCESS, found)

    def close(self, handle):
        self.closed += 1

    @staticmethod
    def _matches(uid: str, entry: DirectoryEntry, attr: str, value: str) -> bool:
        if attr.lower() == "uid":
            values = [uid]
        else:
            values = entry.attributes.get(attr.lower(), [])
        return any(escape_filter_chars(str(v)) == value for v in values)

    def entry_binds(self):
        """Binds made as a found entry (the password checks)."""
        return [(dn, pw) for dn, pw in self.binds if dn and dn.endswith(PEOPLE_BASE)]


@pytest.fixture
def fake_directory():
    return FakeDirectory()


@pytest.fixture
def ldap_settings(monkeypatch):
    """Enable LDAP with an anonymous bind against the fake directory."""
    values = {
        "ldap_enabled": True,
        "ldap_server": "ldap.example.com",
        "ldap_port": 389,
        "ldap_ssl_verify": True,
        "ldap_start_tls": False,
        "ldap_username_case_sensitive": False,
        "ldap_bind_type": "anonymous",
        "ldap_username": "",
        "ldap_password": "",
        "ldap_account_creation": True,
        "ldap_account_base": PEOPLE_BASE,
        "ldap_user_pattern": "(uid={username})",
        "ldap_account_fullname": "displayName",
        "ldap_account_email": "mail",
        "ldap_account_id": "uid",
    }
    for name, value in values.items():
        monkeypatch.setattr(f"dirauth.config.settings.{name}", value)
    from dirauth.config import settings

    return settings


@pytest_asyncio.fixture
async def db_engine():
    engine = create_async_engine(TEST_DB_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine):
    session_maker = async_sessionmaker(
        db_engine, class_=AsyncSession, expire_on_commit=False
    )
    async with session_maker() as session:
        yield session


@pytest_asyncio.fixture
async def client(db_engine, fake_directory):
    """AsyncClient for the FastAPI app with the DB and directory overridden."""
    session_maker = async_sessionmaker(
        db_engine, class_=AsyncSession, expire_on_commit=False
    )

    async def override_get_db():
        async with session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_directory_client] = lambda: fake_directory
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


async def create_local_user(
    db_engine,
    username: str = "localuser",
    password: str = "Test1234!",
    name: str = "Local User",
    email: str = "local@example.com",
    is_admin: bool = False,
) -> None:
    """Helper: stores a local (non-directory) account."""
    session_maker = async_sessionmaker(
        db_engine, class_=AsyncSession, expire_on_commit=False
    )
    async with session_maker() as session:
        created = await UserStore(session).create({
            "username": username,
            "name": name,
            "email": email,
            "password_hash": hash_password(password),
            "is_admin": is_admin,
            "is_ldap_user": False,
        })
        assert created, f"Could not create local user {username}"
        await session.commit()


async def login(client: AsyncClient, username: str, password: str):
    return await client.post(
        "/api/auth/login",
        json={"username": username, "password": password},
    )


def auth_headers(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}
