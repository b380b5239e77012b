"""
Tests for the HTTP surface over the controller.
"""

from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from trafficwatch.api import api_router
from trafficwatch.api import incidents as incidents_api
from trafficwatch.api import location as location_api
from trafficwatch.core.contracts import ByDate
from trafficwatch.services.controller import IncidentController
from trafficwatch.services.events import EventLog
from trafficwatch.services.feed import FeedSuccess
from trafficwatch.services.images import ImageCache
from trafficwatch.services.location import DeviceLocationProvider, LocationService

from conftest import ImmediateFetcher, make_incident, png_bytes


FEED = [
    make_incident("old", minutes=1, lat=52.52, lng=13.40, image_url="http://img/old.png"),
    make_incident("new", minutes=9, lat=48.14, lng=11.58, image_url="http://img/new.png"),
    make_incident("mid", minutes=5),
]


@pytest.fixture
def api():
    provider = DeviceLocationProvider(status="not_determined")
    log = EventLog(maxlen=50)
    ctl = IncidentController(
        fetcher=ImmediateFetcher(FeedSuccess(incidents=list(FEED))),
        images=ImageCache(AsyncMock(return_value=png_bytes())),
        location=LocationService(provider, timeout_s=1),
        policy=ByDate(),
    )
    ctl.subscribe(log)

    app = FastAPI()
    app.include_router(api_router)
    app.dependency_overrides[incidents_api.get_controller] = lambda: ctl
    app.dependency_overrides[incidents_api.get_event_log] = lambda: log
    app.dependency_overrides[location_api.get_location_provider] = lambda: provider

    with TestClient(app) as client:
        yield client


def _ids(body):
    return [it["id"] for it in body["items"]]


def test_health(api):
    r = api.get("/health")
    assert r.status_code == 200
    assert r.json() == {"ok": True}


def test_load_and_list(api):
    r = api.post("/incidents/load?wait=true")
    assert r.status_code == 200
    state = r.json()
    assert state["phase"] == "idle"
    assert state["last_outcome"] == "success"
    assert state["incident_count"] == 3

    body = api.get("/incidents").json()
    assert body["policy"] == {"kind": "date"}
    assert _ids(body) == ["new", "mid", "old"]
    assert body["items"][0]["has_image"] is False
    assert "cached_image" not in body["items"][0]


def test_sorting_with_pinned_reference(api):
    api.post("/incidents/load?wait=true")
    r = api.put(
        "/incidents/sorting",
        json={"kind": "location", "reference": {"lat": 52.52, "lng": 13.40}},
    )
    assert r.status_code == 200
    assert _ids(r.json()) == ["old", "new", "mid"]


def test_sorting_with_device_location(api):
    api.post("/incidents/load?wait=true")

    r = api.put("/location", json={"status": "authorized", "position": {"lat": 48.137, "lng": 11.575}})
    assert r.status_code == 200
    assert r.json()["status"] == "authorized"

    body = api.put("/incidents/sorting?wait=true", json={"kind": "location"}).json()
    assert body["policy"]["kind"] == "location"
    assert _ids(body) == ["new", "old", "mid"]


def test_sorting_without_permission_falls_back(api):
    api.post("/incidents/load?wait=true")
    body = api.put("/incidents/sorting?wait=true", json={"kind": "location"}).json()

    assert body["policy"] == {"kind": "date"}
    assert _ids(body) == ["new", "mid", "old"]

    events = api.get("/incidents/events").json()["items"]
    unavailable = [e["data"] for e in events if e["data"]["event"] == "location_unavailable"]
    assert len(unavailable) == 1
    assert unavailable[0]["status"] == "not_determined"


def test_location_report_rejects_position_without_permission(api):
    r = api.put("/location", json={"status": "denied", "position": {"lat": 1.0, "lng": 2.0}})
    assert r.status_code == 400
    assert r.json()["detail"]["code"] == "bad_location_report"


def test_images_and_image_bytes(api):
    api.post("/incidents/load?wait=true")

    r = api.post("/incidents/images?wait=true", json={"ids": ["new", "mid", "nope"]})
    assert r.status_code == 200
    assert r.json() == {"accepted": 2, "delivered": ["new"]}

    img = api.get("/incidents/new/image")
    assert img.status_code == 200
    assert img.headers["content-type"] == "image/png"
    assert img.content == png_bytes()

    assert api.get("/incidents/new").json()["has_image"] is True
    assert api.get("/incidents/mid/image").json()["detail"]["code"] == "image_missing"


def test_unknown_incident_404(api):
    r = api.get("/incidents/does-not-exist")
    assert r.status_code == 404
    assert r.json()["detail"]["code"] == "incident_missing"


def test_events_after_cursor(api):
    api.post("/incidents/load?wait=true")
    first = api.get("/incidents/events").json()
    assert [e["data"]["event"] for e in first["items"]] == [
        "fetch_started",
        "fetch_succeeded",
        "incidents_reordered",
    ]

    api.post("/incidents/refresh?wait=true")
    later = api.get(f"/incidents/events?after={first['last_seq']}").json()
    assert [e["data"]["event"] for e in later["items"]] == [
        "fetch_started",
        "fetch_succeeded",
        "incidents_reordered",
    ]


def test_app_module_wires_routes():
    from trafficwatch import main

    paths = {getattr(r, "path", None) for r in main.app.routes}
    assert {"/health", "/incidents", "/incidents/refresh", "/location"} <= paths
