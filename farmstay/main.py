# Application entrypoint: configures middleware, error envelopes, background sweepers, and API routers.
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import os
import threading

from .db import Base, engine, is_sqlite
from .errors import register_exception_handlers
from .routes.bookings import router as bookings_router
from .routes.farmhouses import router as farmhouses_router
from .sweepers import start_sweepers, sweeps_enabled

# Set on shutdown; sweeper threads stop between bookings
_sweeper_stop = threading.Event()


# Parse CORS origins from a comma-separated env var.
# Note: '*' cannot be used with allow_credentials=True; we fall back to explicit localhost origins for dev.
def _parse_cors_origins(env_value: str | None) -> list[str]:
    default_dev_origins = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    if not env_value:
        return default_dev_origins

    origins = [o.strip() for o in env_value.split(",") if o.strip()]
    if "*" in origins:
        return default_dev_origins

    return origins


app = FastAPI(title="FarmStay Booking API", version="0.1.0")
allow_list = _parse_cors_origins(os.getenv("CORS_ORIGINS"))

app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
register_exception_handlers(app)


@app.on_event("startup")
def on_startup() -> None:
    # For local SQLite, auto-create tables; production DBs rely on Alembic migrations.
    if is_sqlite():
        Base.metadata.create_all(bind=engine)
    # Lifecycle sweeps: due checks every 5 minutes, hourly hard expiry, daily full pass
    if sweeps_enabled():
        _sweeper_stop.clear()
        start_sweepers(_sweeper_stop)


@app.on_event("shutdown")
def on_shutdown() -> None:
    _sweeper_stop.set()


# Simple liveness endpoint for container orchestrators and uptime checks
@app.get("/healthz")
def healthz() -> dict:
    return {"status": "ok"}


app.include_router(farmhouses_router, prefix="/api/v1", tags=["farmhouses"])
app.include_router(bookings_router, prefix="/api/v1", tags=["bookings"])
