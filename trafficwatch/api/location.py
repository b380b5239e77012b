from __future__ import annotations

from fastapi import APIRouter, Depends

from trafficwatch.core.contracts import LocationReport, LocationStatus
from trafficwatch.core.errors import bad_request
from trafficwatch.services.location import DeviceLocationProvider

router = APIRouter(prefix="/location")


def get_location_provider() -> DeviceLocationProvider:
    raise RuntimeError("location provider must be provided by app dependency override")


@router.get("", response_model=LocationStatus)
async def location_get(provider: DeviceLocationProvider = Depends(get_location_provider)) -> LocationStatus:
    return LocationStatus(status=provider.authorization_status(), position=provider.position)


@router.put("", response_model=LocationStatus)
async def location_report(
    req: LocationReport,
    provider: DeviceLocationProvider = Depends(get_location_provider),
) -> LocationStatus:
    if req.status != "authorized" and req.position is not None:
        bad_request("bad_location_report", "position reported without authorization")
    provider.report(status=req.status, position=req.position)
    return LocationStatus(status=provider.authorization_status(), position=provider.position)
