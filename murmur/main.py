"""
Murmur API — entry point.

Startup sequence:
  1. Configure OTel tracing (→ Jaeger via OTLP)
  2. Create tables if configured (otherwise Alembic owns the schema)
  3. Connect to Redis (introspection cache)
  4. Discover the OIDC introspection endpoint
  5. Initialise the object storage client & bucket
  6. Expose Prometheus /metrics and /healthz
"""
import logging

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import make_asgi_app

from murmur.config import settings
from murmur.database import init_db
from murmur.errors import install_error_handlers
from murmur.telemetry import setup_tracing, instrument_app
from murmur.clients.oidc_client import oidc_client
from murmur.clients.redis_client import init_redis, stop_redis
from murmur.clients.storage_client import init_storage
from murmur.routers import posts, users
from murmur.services.post_updates import PostUpdates

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)

# Set up tracing before the app is created so all imports are instrumented
setup_tracing()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage startup and shutdown of all external connections."""
    logger.info("Starting Murmur API (env=%s)", settings.environment)

    if settings.db_auto_create:
        await init_db()
    await init_redis()
    await oidc_client.start()
    init_storage()                  # sync, boto3 is not async

    logger.info("All services connected. API ready.")
    yield

    logger.info("Shutting down...")
    await oidc_client.stop()
    await stop_redis()


app = FastAPI(
    title="Murmur API",
    description=(
        "A simple messaging API: posts, replies, likes, follows and "
        "live post updates over server-sent events."
    ),
    version="1.0.0",
    lifespan=lifespan,
)

# Single broadcaster shared by all requests of this process
app.state.post_updates = PostUpdates()

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
    max_age=3600,
)

install_error_handlers(app)

# ── Routers ────────────────────────────────────────────────────────────────
app.include_router(posts.router, prefix="/posts", tags=["Posts"])
app.include_router(users.router, prefix="/users", tags=["Users"])

# ── Prometheus metrics endpoint ────────────────────────────────────────────
metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)

# ── OTel FastAPI instrumentation ──────────────────────────────────────────
instrument_app(app)


@app.get("/healthz", tags=["Health"])
async def health():
    return {"status": "ok", "service": settings.service_name}
