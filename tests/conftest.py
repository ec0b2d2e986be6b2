from types import SimpleNamespace

import httpx
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from pumpwatch.main import app
from pumpwatch.models import Base, get_session
from pumpwatch.services.incident_publisher import IncidentPublisher
from pumpwatch.services.incident_store import SqlIncidentStore
from pumpwatch.services.incident_tracker import IncidentTracker

from tests.fakes import FakeRedis


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def api(session_factory):
    store = SqlIncidentStore(session_factory)
    tracker = IncidentTracker(store)
    redis = FakeRedis()

    app.state.store = store
    app.state.tracker = tracker
    app.state.redis = redis
    app.state.publisher = IncidentPublisher(redis, "incidents:updates")

    async def _session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = _session

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield SimpleNamespace(client=client, redis=redis, store=store, tracker=tracker)

    app.dependency_overrides.clear()
    for name in ("store", "tracker", "redis", "publisher"):
        delattr(app.state, name)
