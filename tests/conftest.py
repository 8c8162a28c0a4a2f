import time
import uuid
from datetime import datetime, timezone
from types import SimpleNamespace

import jwt
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app.core.database.engine import get_db, init_db
from app.features.organizations.models import MembershipStatus, Organization, OrganizationMember
from app.features.permissions.dependencies import get_role_resolver
from app.features.permissions.providers import DatabaseAccessProvider
from app.features.permissions.resolver import RoleResolver
from app.features.users.models import User
from app.main import app


def make_token(appwrite_id: str, expires_in: int = 3600) -> str:
    """Appwrite-shaped JWT. Only the expiry is verified, so any key will do."""
    payload = {"userId": appwrite_id, "exp": int(time.time()) + expires_in, "jti": uuid.uuid4().hex}
    return jwt.encode(payload, "test-secret", algorithm="HS256")


def auth_headers(user: User, **extra: str) -> dict:
    headers = {"Authorization": f"Bearer {make_token(user.appwrite_id)}"}
    headers.update(extra)
    return headers


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", poolclass=NullPool)
    await init_db(bind=engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def seeded(session_factory) -> SimpleNamespace:
    """
    Users and organizations:
        acme   (starter): owner, admin, analyst, viewer, member
        globex (pro):     owner, admin, analyst, viewer
    plus `outsider` (no memberships) and `root` (system admin, no memberships).
    """
    now = datetime.now(timezone.utc)
    async with session_factory() as db:
        users = {
            name: User(
                appwrite_id=f"aw-{name}",
                email=f"{name}@acme.io",
                name=name.title(),
                is_system_admin=name == "root",
            )
            for name in ("owner", "admin", "analyst", "viewer", "member", "outsider", "root")
        }
        orgs = {
            "acme": Organization(name="Acme", slug="acme", plan_type="starter"),
            "globex": Organization(name="Globex", slug="globex", plan_type="pro"),
        }
        db.add_all(list(users.values()) + list(orgs.values()))
        await db.flush()

        roster = {
            "acme": ("owner", "admin", "analyst", "viewer", "member"),
            "globex": ("owner", "admin", "analyst", "viewer"),
        }
        for org_key, names in roster.items():
            for name in names:
                db.add(OrganizationMember(
                    organization_id=orgs[org_key].id,
                    user_id=users[name].id,
                    email=users[name].email,
                    role=name,
                    status=MembershipStatus.ACTIVE,
                    invited_at=now,
                    accepted_at=now,
                ))
        await db.commit()

    return SimpleNamespace(users=users, orgs=orgs)


@pytest.fixture
def resolver(session_factory):
    return RoleResolver(DatabaseAccessProvider(session_factory))


@pytest_asyncio.fixture
async def client(session_factory, resolver, seeded):
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_role_resolver] = lambda: resolver
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
