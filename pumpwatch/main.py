import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from redis.asyncio import Redis

from pumpwatch import __version__
from pumpwatch.config import settings
from pumpwatch.models import async_session, engine
from pumpwatch.api.error_handlers import register_error_handlers
from pumpwatch.api.events import router as events_router
from pumpwatch.api.health import router as health_router
from pumpwatch.api.sensors import router as sensors_router
from pumpwatch.core.websocket import router as ws_router, incidents_to_ws_bridge
from pumpwatch.services.incident_publisher import IncidentPublisher
from pumpwatch.services.incident_store import SqlIncidentStore
from pumpwatch.services.incident_tracker import IncidentTracker
from pumpwatch.services.missing_data_watchdog import MissingDataWatchdog

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)
logger = logging.getLogger("pumpwatch.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("PumpWatch backend starting... DEBUG=%s", settings.DEBUG)

    # Redis
    redis = Redis.from_url(settings.REDIS_URL, decode_responses=False)
    app.state.redis = redis
    logger.info("Redis connected: %s", settings.REDIS_URL)

    # Incident tracker (storage injected, no module-level singleton inside)
    store = SqlIncidentStore(async_session)
    tracker = IncidentTracker(store)
    publisher = IncidentPublisher(redis, settings.INCIDENTS_CHANNEL)
    app.state.store = store
    app.state.tracker = tracker
    app.state.publisher = publisher

    # Incidents → WebSocket bridge
    ws_bridge_task = asyncio.create_task(
        incidents_to_ws_bridge(redis, settings.INCIDENTS_CHANNEL)
    )
    tasks = [ws_bridge_task]

    # Missing-data watchdog: second report source feeding the same tracker
    watchdog = None
    if settings.MISSING_DATA_ENABLED:
        watchdog = MissingDataWatchdog(
            redis, tracker, store,
            publisher=publisher,
            check_interval=settings.MISSING_DATA_CHECK_INTERVAL,
            threshold_minutes=settings.MISSING_DATA_THRESHOLD_MINUTES,
        )
        app.state.missing_data_watchdog = watchdog
        tasks.append(asyncio.create_task(watchdog.start()))
    else:
        logger.info("MissingDataWatchdog DISABLED (MISSING_DATA_ENABLED=false)")

    yield

    # Shutdown
    logger.info("PumpWatch backend shutting down...")
    if watchdog:
        await watchdog.stop()

    for t in tasks:
        t.cancel()
    for t in tasks:
        try:
            await t
        except asyncio.CancelledError:
            pass

    await redis.close()
    await engine.dispose()
    logger.info("Shutdown complete")


app = FastAPI(
    title="PumpWatch API",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)

app.include_router(events_router)
app.include_router(sensors_router)
app.include_router(health_router)
app.include_router(ws_router)
