# trafficwatch/services/images.py
"""
Per-incident sign image cache.

- Images are memoized by incident id, not by URL: two incidents sharing a
  sign URL are tracked (and fetched) independently.
- At most one fetch per incident id is outstanding; concurrent callers attach
  to the same task.
- Fetches run through a bounded pool (asyncio.Semaphore).
- Images for ids that left the feed are released by retain().
- A failed fetch yields no image and is not retried by that call; a later
  call for the same incident starts a new fetch.
"""
from __future__ import annotations

import asyncio
import io
import logging
from typing import Awaitable, Callable, Dict, Iterable, Optional

import httpx
from PIL import Image

from trafficwatch.core.contracts import Incident, SignImage
from trafficwatch.core.errors import TransportError
from trafficwatch.core.settings import settings

logger = logging.getLogger(__name__)

ImageTransport = Callable[[str], Awaitable[bytes]]


def decode_image(data: bytes) -> SignImage:
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            fmt = img.format or "UNKNOWN"
            width, height = img.size
    except Exception as e:
        # UnidentifiedImageError, DecompressionBombError, truncated data
        raise TransportError(f"image decode failed: {e.__class__.__name__}: {e}") from e

    return SignImage(
        format=fmt,
        media_type=Image.MIME.get(fmt, "application/octet-stream"),
        width=int(width),
        height=int(height),
        content=data,
    )


class HttpImageTransport:
    def __init__(self, *, timeout_s: float | None = None, client: httpx.AsyncClient | None = None) -> None:
        timeout = float(timeout_s or settings.image_timeout_s)
        self._client = client or httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
            transport=httpx.AsyncHTTPTransport(retries=1),
        )

    async def __call__(self, url: str) -> bytes:
        try:
            r = await self._client.get(url, headers={"User-Agent": settings.http_user_agent})
            r.raise_for_status()
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise TransportError(f"image fetch failed for {url}: {e}") from e
        return r.content

    async def aclose(self) -> None:
        await self._client.aclose()


class ImageCache:
    def __init__(
        self,
        transport: ImageTransport,
        *,
        max_concurrency: int | None = None,
        decode: Callable[[bytes], SignImage] = decode_image,
    ) -> None:
        self._transport = transport
        self._decode = decode
        self._pool = asyncio.Semaphore(max(1, int(max_concurrency or settings.image_max_concurrency)))
        self._images: Dict[str, SignImage] = {}
        self._inflight: Dict[str, asyncio.Task] = {}

    def get(self, incident_id: str) -> Optional[SignImage]:
        return self._images.get(incident_id)

    def is_fetching(self, incident_id: str) -> bool:
        return incident_id in self._inflight

    async def ensure_image(self, incident: Incident) -> Optional[SignImage]:
        if incident.cached_image is not None:
            return incident.cached_image

        cached = self._images.get(incident.id)
        if cached is not None:
            return cached

        task = self._inflight.get(incident.id)
        if task is None:
            if not incident.image_url:
                return None
            task = asyncio.get_running_loop().create_task(self._fetch(incident.id, incident.image_url))
            self._inflight[incident.id] = task

        # shield: one caller being cancelled must not cancel the shared fetch
        return await asyncio.shield(task)

    async def _fetch(self, incident_id: str, url: str) -> Optional[SignImage]:
        try:
            async with self._pool:
                data = await self._transport(url)
            image = self._decode(data)
        except TransportError as e:
            logger.debug("sign image unavailable id=%s: %s", incident_id, e)
            return None
        except Exception:
            logger.exception("sign image fetch crashed id=%s", incident_id)
            return None
        finally:
            self._inflight.pop(incident_id, None)

        self._images.setdefault(incident_id, image)
        return self._images[incident_id]

    def retain(self, incident_ids: Iterable[str]) -> int:
        """Drop cached images for ids not in incident_ids. Returns how many were dropped."""
        keep = set(incident_ids)
        dropped = [iid for iid in self._images if iid not in keep]
        for iid in dropped:
            del self._images[iid]
        if dropped:
            logger.debug("sign image cache pruned dropped=%d kept=%d", len(dropped), len(self._images))
        return len(dropped)

    async def close(self) -> None:
        tasks = list(self._inflight.values())
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._inflight.clear()
