import hashlib
import hmac
import json
import os
import time

# settings are read at import time, so configure them before anything imports faceoff
os.environ["ENV"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_dummy"
os.environ["ADMIN_API_TOKEN"] = "test-admin-token"
os.environ["TOTALS_FEED_BACKEND"] = "memory"
os.environ["SEED_TEAMS_ON_STARTUP"] = "false"

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlalchemy.pool import NullPool
from faceoff.app import create_app
from faceoff.crud.team import team_crud_service
from faceoff.db.base import Base
from faceoff.db.core import build_engine, get_db_session, get_session_factory
from faceoff.models import DonationRecord, ProcessedNotification, Team

WEBHOOK_SECRET = "whsec_test_secret"
ADMIN_TOKEN = "test-admin-token"

TEST_TEAMS = [
    {"id": "teamX", "name": "Team X", "charity_name": "Team X Foundation", "donation_total": 25750},
    {"id": "teamY", "name": "Team Y", "charity_name": "Team Y Charities", "donation_total": 100},
    {"id": "teamB", "name": "Team B", "charity_name": "Team B Trust", "donation_total": 5000},
]


@pytest.fixture
async def db_engine(tmp_path):
    """A throwaway SQLite ledger per test.

    NullPool gives every session its own connection, so concurrent sessions
    really do contend for the write lock like separate requests would.
    """
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def db_session_factory(db_engine):
    """Factory to create multiple sessions for concurrent tests."""
    return async_sessionmaker(bind=db_engine, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db_session(db_session_factory):
    async with db_session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
async def seeded_teams(db_session_factory):
    async with db_session_factory() as session:
        await team_crud_service.seed_teams(session, TEST_TEAMS)
    return {team["id"]: team["donation_total"] for team in TEST_TEAMS}


@pytest.fixture
def ledger(db_session_factory):
    """Read helpers for asserting on the ledger state."""
    class Ledger:
        async def total(self, team_id):
            async with db_session_factory() as session:
                result = await session.execute(select(Team.donation_total).where(Team.id == team_id))
                return result.scalar_one()

        async def records(self, key=None):
            async with db_session_factory() as session:
                query = select(DonationRecord)
                if key is not None:
                    query = query.where(DonationRecord.notification_key == key)
                result = await session.execute(query)
                return list(result.scalars().all())

        async def marker_count(self, key=None):
            async with db_session_factory() as session:
                query = select(func.count()).select_from(ProcessedNotification)
                if key is not None:
                    query = query.where(ProcessedNotification.key == key)
                result = await session.execute(query)
                return result.scalar_one()

    return Ledger()


@pytest.fixture
def app(db_session_factory):
    application = create_app()

    async def override_db_session():
        async with db_session_factory() as session:
            yield session
            await session.rollback()

    application.dependency_overrides[get_db_session] = override_db_session
    application.dependency_overrides[get_session_factory] = lambda: db_session_factory
    return application


@pytest.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
def admin_headers():
    return {"X-Admin-Token": ADMIN_TOKEN}


@pytest.fixture
def make_event():
    """Build a Stripe event wrapping a Checkout Session."""
    def _make_event(session_id="cs_test_1", team_id="teamX", amount=25,
                    event_type="checkout.session.completed", payment_status="paid",
                    currency="usd", amount_total=None, event_id=None):
        metadata = {"charityName": "Team X Foundation", "selectedAmount": str(amount)}
        if team_id is not None:
            metadata["teamId"] = team_id
        return {
            "id": event_id or f"evt_{session_id}_{event_type.rsplit('.', 1)[-1]}",
            "object": "event",
            "type": event_type,
            "livemode": False,
            "created": int(time.time()),
            "data": {
                "object": {
                    "id": session_id,
                    "object": "checkout.session",
                    "amount_total": amount * 100 if amount_total is None else amount_total,
                    "currency": currency,
                    "payment_status": payment_status,
                    "metadata": metadata,
                    "customer_details": {"email": "fan@example.com"},
                }
            },
        }
    return _make_event


@pytest.fixture
def sign():
    """Sign a payload the way Stripe does: HMAC-SHA256 over "{t}.{body}"."""
    def _sign(payload, secret=WEBHOOK_SECRET, timestamp=None):
        if isinstance(payload, dict):
            payload = json.dumps(payload)
        timestamp = int(time.time()) if timestamp is None else timestamp
        signature = hmac.new(secret.encode(), f"{timestamp}.{payload}".encode(), hashlib.sha256).hexdigest()
        return payload, f"t={timestamp},v1={signature}"
    return _sign
