"""
Shared fixtures and fakes for the trafficwatch tests.
"""

import asyncio
import io
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pytest
from PIL import Image

from trafficwatch.core.contracts import Coordinate, Incident
from trafficwatch.services.feed import FeedResult, FeedSuccess


BASE_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

# Munich city centre, used as the device position in most tests
MUNICH = Coordinate(lat=48.137, lng=11.575)


def make_incident(
    iid: str,
    *,
    minutes: int = 0,
    summary: Optional[str] = None,
    lat: Optional[float] = None,
    lng: Optional[float] = None,
    image_url: Optional[str] = None,
) -> Incident:
    location = Coordinate(lat=lat, lng=lng) if lat is not None and lng is not None else None
    return Incident(
        id=iid,
        time=BASE_TIME + timedelta(minutes=minutes),
        summary=summary or f"Incident {iid}",
        location=location,
        image_url=image_url,
    )


def png_bytes(width: int = 4, height: int = 3) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), (200, 30, 30)).save(buf, format="PNG")
    return buf.getvalue()


class ScriptedFetcher:
    """Every fetch() call parks on its own future until the test resolves it."""

    def __init__(self) -> None:
        self.calls = 0
        self.pending: List[asyncio.Future] = []

    async def fetch(self) -> FeedResult:
        self.calls += 1
        fut = asyncio.get_running_loop().create_future()
        self.pending.append(fut)
        return await fut


class ImmediateFetcher:
    """Returns the queued results in order; repeats the last one."""

    def __init__(self, *results: FeedResult) -> None:
        self.results = list(results) or [FeedSuccess(incidents=[])]
        self.calls = 0

    async def fetch(self) -> FeedResult:
        self.calls += 1
        idx = min(self.calls - 1, len(self.results) - 1)
        res = self.results[idx]
        if isinstance(res, FeedSuccess):
            # fresh objects per fetch, like a real parse
            return FeedSuccess(incidents=[it.model_copy() for it in res.incidents])
        return res


class GatedTransport:
    """Image transport that blocks until the gate opens."""

    def __init__(self, data: bytes) -> None:
        self.data = data
        self.calls: List[str] = []
        self.gate = asyncio.Event()
        self.active = 0
        self.max_active = 0

    async def __call__(self, url: str) -> bytes:
        self.calls.append(url)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await self.gate.wait()
        finally:
            self.active -= 1
        return self.data


@pytest.fixture
def png():
    return png_bytes()


@pytest.fixture
def events():
    return []
