# trafficwatch/main.py
from __future__ import annotations

import logging
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.gzip import GZipMiddleware

# Load ./.env next to the package (main.py is trafficwatch/main.py)
BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(BASE_DIR / ".env")

from trafficwatch.core.contracts import ByDate, ByLocation
from trafficwatch.core.settings import settings
from trafficwatch.api import api_router
from trafficwatch.api import incidents as incidents_api
from trafficwatch.api import location as location_api

from trafficwatch.services.controller import IncidentController
from trafficwatch.services.events import EventLog
from trafficwatch.services.feed import FeedFetcher
from trafficwatch.services.images import HttpImageTransport, ImageCache
from trafficwatch.services.location import DeviceLocationProvider, LocationService

logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
logger = logging.getLogger(__name__)

app = FastAPI(title="TrafficWatch", version="1.0.0")

# ── Compression (must be added before CORS) ──
app.add_middleware(GZipMiddleware, minimum_size=1000)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ──────────────────────────────────────────────────────────────
# Collaborators + controller
# ──────────────────────────────────────────────────────────────

_feed = FeedFetcher()
_image_transport = HttpImageTransport()
_location_provider = DeviceLocationProvider.from_settings()
_event_log = EventLog()

_controller = IncidentController(
    fetcher=_feed,
    images=ImageCache(_image_transport),
    location=LocationService(_location_provider),
    policy=ByLocation() if settings.default_sorting == "location" else ByDate(),
)
_controller.subscribe(_event_log)

# ──────────────────────────────────────────────────────────────
# Dependency providers
# ──────────────────────────────────────────────────────────────


def provide_controller() -> IncidentController:
    return _controller


def provide_event_log() -> EventLog:
    return _event_log


def provide_location_provider() -> DeviceLocationProvider:
    return _location_provider


app.dependency_overrides[incidents_api.get_controller] = provide_controller
app.dependency_overrides[incidents_api.get_event_log] = provide_event_log
app.dependency_overrides[location_api.get_location_provider] = provide_location_provider

# Routes
app.include_router(api_router)

# ──────────────────────────────────────────────────────────────
# Startup / shutdown
# ──────────────────────────────────────────────────────────────


@app.on_event("startup")
async def startup():
    if settings.autoload_on_startup:
        logger.info("[app] Initial incident load from %s", settings.feed_url)
        _controller.start_initial_load()


@app.on_event("shutdown")
async def shutdown():
    logger.info("[app] Shutting down, closing connections")
    await _controller.close()
    try:
        await _feed.aclose()
        await _image_transport.aclose()
    except Exception as e:
        logger.warning(f"[app] Error closing HTTP clients: {e}")
