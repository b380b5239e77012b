# trafficwatch/services/feed.py
from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import Callable, List, Union

import httpx

from trafficwatch.core.contracts import Incident
from trafficwatch.core.errors import TransportError
from trafficwatch.core.settings import settings
from trafficwatch.services.feed_parser import parse_incident_feed

logger = logging.getLogger(__name__)

FeedParser = Callable[[str], List[Incident]]


@dataclass
class FeedSuccess:
    incidents: List[Incident] = field(default_factory=list)


@dataclass
class FeedFailure:
    error: TransportError


FeedResult = Union[FeedSuccess, FeedFailure]


class FeedFetcher:
    """One download + parse cycle of the incident feed per fetch() call."""

    def __init__(
        self,
        *,
        url: str | None = None,
        parse: FeedParser = parse_incident_feed,
        timeout_s: float | None = None,
        retries: int | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.url = url or settings.feed_url
        self._parse = parse
        timeout = float(timeout_s or settings.feed_timeout_s)
        n_retries = int(settings.feed_retries if retries is None else retries)
        self._client = client or httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
            transport=httpx.AsyncHTTPTransport(retries=n_retries),
        )

    async def fetch(self) -> FeedResult:
        logger.info("feed_fetch url=%s", self.url)
        try:
            r = await self._client.get(self.url, headers={"User-Agent": settings.http_user_agent})
            r.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("feed_fetch_failed url=%s: %s", self.url, e)
            return FeedFailure(error=TransportError(f"feed download failed: {e}"))

        try:
            incidents = self._parse(r.text)
        except (ET.ParseError, ValueError) as e:
            logger.error("feed_parse_failed url=%s: %s", self.url, e)
            return FeedFailure(error=TransportError(f"feed could not be read: {e}"))

        logger.info("feed_fetch incidents=%d", len(incidents))
        return FeedSuccess(incidents=list(incidents))

    async def aclose(self) -> None:
        await self._client.aclose()
