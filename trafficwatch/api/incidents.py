from __future__ import annotations

import asyncio

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response

from trafficwatch.core.contracts import (
    EventsResponse,
    FetchState,
    ImagesRequest,
    ImagesResponse,
    IncidentsResponse,
    IncidentView,
    SortingPolicy,
)
from trafficwatch.core.errors import bad_request, not_found
from trafficwatch.services.controller import IncidentController
from trafficwatch.services.events import EventLog

router = APIRouter(prefix="/incidents")

_MAX_IMAGE_IDS = 200


def get_controller() -> IncidentController:
    raise RuntimeError("IncidentController must be provided by app dependency override")


def get_event_log() -> EventLog:
    raise RuntimeError("EventLog must be provided by app dependency override")


def _snapshot(ctl: IncidentController) -> IncidentsResponse:
    return IncidentsResponse(
        state=ctl.state,
        policy=ctl.policy,
        items=[IncidentView.of(it) for it in ctl.incidents],
    )


@router.get("", response_model=IncidentsResponse)
async def incidents_list(ctl: IncidentController = Depends(get_controller)) -> IncidentsResponse:
    return _snapshot(ctl)


@router.get("/events", response_model=EventsResponse)
async def incidents_events(
    after: int = Query(default=0, ge=0),
    log: EventLog = Depends(get_event_log),
) -> EventsResponse:
    return log.since(after)


@router.post("/load", response_model=FetchState)
async def incidents_load(
    wait: bool = False,
    ctl: IncidentController = Depends(get_controller),
) -> FetchState:
    ctl.start_initial_load()
    if wait:
        await ctl.wait_until_idle()
    return ctl.state


@router.post("/refresh", response_model=FetchState)
async def incidents_refresh(
    wait: bool = False,
    ctl: IncidentController = Depends(get_controller),
) -> FetchState:
    ctl.refresh()
    if wait:
        await ctl.wait_until_idle()
    return ctl.state


@router.put("/sorting", response_model=IncidentsResponse)
async def incidents_sorting(
    policy: SortingPolicy,
    wait: bool = False,
    ctl: IncidentController = Depends(get_controller),
) -> IncidentsResponse:
    ctl.set_sorting_policy(policy)
    if wait:
        await ctl.wait_until_idle()
    return _snapshot(ctl)


@router.post("/images", response_model=ImagesResponse)
async def incidents_images(
    req: ImagesRequest,
    wait: bool = False,
    ctl: IncidentController = Depends(get_controller),
) -> ImagesResponse:
    if len(req.ids) > _MAX_IMAGE_IDS:
        bad_request("bad_images_request", f"at most {_MAX_IMAGE_IDS} ids per request")

    tasks = ctl.request_images(req.ids)
    if not wait:
        return ImagesResponse(accepted=len(tasks))

    done = await asyncio.gather(*tasks)
    return ImagesResponse(accepted=len(tasks), delivered=[iid for iid in done if iid])


@router.get("/{incident_id}", response_model=IncidentView)
async def incidents_get(incident_id: str, ctl: IncidentController = Depends(get_controller)) -> IncidentView:
    it = ctl.get(incident_id)
    if it is None:
        not_found("incident_missing", f"no incident {incident_id}")
    return IncidentView.of(it)


@router.get("/{incident_id}/image")
async def incidents_image(incident_id: str, ctl: IncidentController = Depends(get_controller)) -> Response:
    it = ctl.get(incident_id)
    if it is None:
        not_found("incident_missing", f"no incident {incident_id}")
    if it.cached_image is None:
        not_found("image_missing", f"no sign image loaded for {incident_id}")
    img = it.cached_image
    return Response(content=img.content, media_type=img.media_type)
