# trafficwatch/services/controller.py
"""
Incident lifecycle controller.

Owns the incident collection, the sorting policy and the fetch state, and
coordinates the feed fetcher, location service and image cache.

Concurrency model
─────────────────
  All commands run on the asyncio event loop (the control thread). Feed
  fetches, location readings and image fetches are background tasks; their
  completions come back to the loop and mutate state in synchronous
  sections, so readers never see a half-replaced or half-sorted collection.

  Feed fetch is single-flight: every fetch gets a generation number and a
  completion is applied only if its generation is still the active one.
  refresh() cancels the running fetch and starts a new generation.

  Image results are routed by incident id. A result for an id that is no
  longer in the collection is dropped; the image stays in the ImageCache until
  the next successful fetch, which keeps images only for listed ids.

Events
──────
  fetch_started / fetch_succeeded / fetch_failed
  incidents_reordered
  image_available       (once per incident, when its image is first attached)
  location_unavailable  (before falling back to date sorting)
"""
from __future__ import annotations

import asyncio
import logging
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from trafficwatch.core.contracts import (
    ByDate,
    ByLocation,
    ControllerEvent,
    Coordinate,
    FetchFailed,
    FetchStarted,
    FetchState,
    FetchSucceeded,
    ImageAvailable,
    Incident,
    IncidentsReordered,
    LocationUnavailable,
)
from trafficwatch.core.errors import StaleResultDiscarded, TrafficWatchError, TransportError
from trafficwatch.core.time import utc_now_iso
from trafficwatch.services.feed import FeedFailure, FeedFetcher, FeedResult, FeedSuccess
from trafficwatch.services.images import ImageCache
from trafficwatch.services.location import LocationFailed, LocationResolved, LocationResult, LocationService
from trafficwatch.services.sorting import sort_by_date, sort_by_location, sort_incidents

logger = logging.getLogger(__name__)

Listener = Callable[[ControllerEvent], None]
Policy = ByDate | ByLocation


class IncidentController:
    def __init__(
        self,
        *,
        fetcher: FeedFetcher,
        images: ImageCache,
        location: LocationService,
        policy: Optional[Policy] = None,
    ) -> None:
        self._fetcher = fetcher
        self._images = images
        self._location = location
        self._policy: Policy = policy or ByDate()

        self._incidents: Tuple[Incident, ...] = ()
        self._by_id: Dict[str, Incident] = {}
        self._state = FetchState()
        self._generation = 0
        self._position: Optional[Coordinate] = None

        self._fetch_task: Optional[asyncio.Task] = None
        self._location_task: Optional[asyncio.Task] = None
        self._image_tasks: Set[asyncio.Task] = set()
        self._listeners: List[Listener] = []

    # ──────────────────────────────────────────────────────────
    # Read side
    # ──────────────────────────────────────────────────────────

    @property
    def incidents(self) -> Tuple[Incident, ...]:
        return self._incidents

    @property
    def state(self) -> FetchState:
        return self._state.model_copy()

    @property
    def policy(self) -> Policy:
        return self._policy

    @property
    def last_position(self) -> Optional[Coordinate]:
        return self._position

    def get(self, incident_id: str) -> Optional[Incident]:
        return self._by_id.get(incident_id)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event: ControllerEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("listener failed on %s", event.event)

    # ──────────────────────────────────────────────────────────
    # Feed fetch (single-flight)
    # ──────────────────────────────────────────────────────────

    def start_initial_load(self) -> bool:
        """Start a fetch unless one is already running. Returns True if started."""
        if self._state.phase == "fetching":
            logger.debug("feed fetch gen=%d already running", self._generation)
            return False

        self._generation += 1
        gen = self._generation
        self._state = self._state.model_copy(
            update={"phase": "fetching", "generation": gen, "updated_at": utc_now_iso()}
        )
        self._fetch_task = asyncio.get_running_loop().create_task(self._run_fetch(gen))
        logger.info("feed fetch gen=%d started", gen)
        self._emit(FetchStarted(at=utc_now_iso(), generation=gen))
        return True

    def refresh(self) -> bool:
        if self._state.phase == "fetching":
            task, self._fetch_task = self._fetch_task, None
            if task is not None and not task.done():
                task.cancel()
            logger.info("feed fetch gen=%d superseded by refresh", self._generation)
            self._state = self._state.model_copy(update={"phase": "idle"})
        return self.start_initial_load()

    async def _run_fetch(self, generation: int) -> None:
        try:
            result = await self._fetcher.fetch()
        except asyncio.CancelledError:
            logger.debug("feed fetch gen=%d cancelled", generation)
            raise
        except Exception as e:
            logger.exception("feed fetch gen=%d crashed", generation)
            result = FeedFailure(error=TransportError(str(e) or e.__class__.__name__))
        self.on_fetch_completed(result, generation=generation)

    def _check_active(self, generation: int) -> None:
        if generation != self._generation or self._state.phase != "fetching":
            raise StaleResultDiscarded(
                f"fetch gen={generation} completed after gen={self._generation} took over"
            )

    def on_fetch_completed(self, result: FeedResult, *, generation: int) -> bool:
        """Apply a fetch result if it belongs to the active fetch. Returns True if applied."""
        try:
            self._check_active(generation)
        except StaleResultDiscarded as e:
            logger.debug("stale feed result discarded: %s", e)
            return False

        self._fetch_task = None

        if isinstance(result, FeedSuccess):
            self._images.retain(it.id for it in result.incidents)
            incidents = [self._attach_cached_image(it) for it in result.incidents]
            self._replace(incidents)
            self._state = FetchState(
                phase="idle",
                generation=generation,
                last_outcome="success",
                last_error=None,
                incident_count=len(self._incidents),
                updated_at=utc_now_iso(),
            )
            logger.info("feed fetch gen=%d applied incidents=%d", generation, len(self._incidents))
            self._emit(FetchSucceeded(at=utc_now_iso(), generation=generation, count=len(self._incidents)))
        else:
            message = str(result.error)
            self._replace([])
            self._state = FetchState(
                phase="idle",
                generation=generation,
                last_outcome="failure",
                last_error=message,
                incident_count=0,
                updated_at=utc_now_iso(),
            )
            logger.warning("feed fetch gen=%d failed: %s", generation, message)
            self._emit(FetchFailed(at=utc_now_iso(), generation=generation, message=message))

        self._resort()
        return True

    def _attach_cached_image(self, it: Incident) -> Incident:
        if it.cached_image is None:
            img = self._images.get(it.id)
            if img is not None:
                it.cached_image = img
        return it

    def _replace(self, incidents: Iterable[Incident]) -> None:
        # date order until the active policy has been applied
        ordered = tuple(sort_by_date(incidents))
        self._incidents = ordered
        self._by_id = {it.id: it for it in ordered}

    # ──────────────────────────────────────────────────────────
    # Sorting
    # ──────────────────────────────────────────────────────────

    def set_sorting_policy(self, policy: Policy) -> None:
        logger.info("sorting policy -> %s", policy.kind)
        self._policy = policy
        self._resort()

    def _resort(self) -> None:
        policy = self._policy
        if isinstance(policy, ByLocation) and policy.reference is None:
            self._resolve_location()
            return
        self._apply_order(sort_incidents(self._incidents, policy), policy)

    def _apply_order(self, ordered: List[Incident], policy: Policy) -> None:
        self._incidents = tuple(ordered)
        self._emit(
            IncidentsReordered(at=utc_now_iso(), policy=policy, ids=[it.id for it in self._incidents])
        )

    def _resolve_location(self) -> None:
        if self._location_task is not None and not self._location_task.done():
            return
        self._location_task = asyncio.get_running_loop().create_task(self._run_location())

    async def _run_location(self) -> None:
        try:
            result = await self._location.resolve_current_position()
        except Exception as e:
            logger.exception("location resolution crashed")
            result = LocationFailed(error=e, status="restricted")
        self._on_location_result(result)

    def _on_location_result(self, result: LocationResult) -> None:
        self._location_task = None

        policy = self._policy
        if not (isinstance(policy, ByLocation) and policy.reference is None):
            logger.debug("location result ignored, policy is now %s", policy.kind)
            return

        if isinstance(result, LocationResolved):
            self._position = result.position
            self._apply_order(
                sort_by_location(self._incidents, result.position),
                ByLocation(reference=result.position),
            )
            return

        logger.info("location unavailable status=%s, sorting by date", result.status)
        self._emit(LocationUnavailable(at=utc_now_iso(), status=result.status, message=str(result.error) or None))
        self.set_sorting_policy(ByDate())

    # ──────────────────────────────────────────────────────────
    # Images
    # ──────────────────────────────────────────────────────────

    def request_images(self, incident_ids: Iterable[str]) -> List[asyncio.Task]:
        """
        Start (or attach to) image loads for the given ids. Each returned task
        resolves to the incident id once its image was delivered, else None.
        """
        loop = asyncio.get_running_loop()
        tasks: List[asyncio.Task] = []
        for iid in dict.fromkeys(incident_ids):
            it = self._by_id.get(iid)
            if it is None:
                logger.debug("image request for unknown id=%s", iid)
                continue
            t = loop.create_task(self._load_image(it))
            self._image_tasks.add(t)
            t.add_done_callback(self._image_tasks.discard)
            tasks.append(t)
        return tasks

    async def _load_image(self, incident: Incident) -> Optional[str]:
        try:
            image = await self._images.ensure_image(incident)
        except TrafficWatchError as e:
            logger.debug("sign image failed id=%s: %s", incident.id, e)
            return None
        if image is None:
            return None

        current = self._by_id.get(incident.id)
        if current is None:
            logger.debug("sign image id=%s arrived after the incident left the list", incident.id)
            return None
        if current.cached_image is None:
            current.cached_image = image
            self._emit(ImageAvailable(at=utc_now_iso(), incident_id=incident.id))
        return incident.id

    # ──────────────────────────────────────────────────────────
    # Lifecycle
    # ──────────────────────────────────────────────────────────

    async def wait_until_idle(self) -> None:
        """Wait for the active fetch and any location sort it triggers."""
        while True:
            pending = [t for t in (self._fetch_task, self._location_task) if t is not None and not t.done()]
            if not pending:
                return
            await asyncio.wait(pending)

    async def close(self) -> None:
        tasks = [t for t in (self._fetch_task, self._location_task) if t is not None]
        tasks.extend(self._image_tasks)
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._fetch_task = None
        self._location_task = None
        self._image_tasks.clear()
        await self._images.close()
        self._listeners.clear()
