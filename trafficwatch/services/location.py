# trafficwatch/services/location.py
"""
Current-position resolution for location sorting.

The platform side (permission prompt, sensor) sits behind LocationProvider.
LocationService asks it for exactly one reading per call and always stops
the provider afterwards, whether the reading arrived, failed or timed out.
"""
from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Union

from trafficwatch.core.contracts import AuthorizationStatus, Coordinate
from trafficwatch.core.errors import AuthorizationError
from trafficwatch.core.settings import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LocationResolved:
    position: Coordinate


@dataclass(frozen=True)
class LocationUnavailable:
    status: AuthorizationStatus
    error: AuthorizationError


@dataclass(frozen=True)
class LocationFailed:
    error: Exception
    status: AuthorizationStatus


LocationResult = Union[LocationResolved, LocationUnavailable, LocationFailed]


class LocationProvider(ABC):
    @abstractmethod
    def authorization_status(self) -> AuthorizationStatus:
        ...

    @abstractmethod
    def request_authorization(self) -> None:
        """Ask for permission. Must not wait for the answer."""

    @abstractmethod
    def start_updating(self) -> None:
        ...

    @abstractmethod
    def stop_updating(self) -> None:
        ...

    @abstractmethod
    async def next_reading(self) -> Coordinate:
        """Wait for the next position reading while updating."""


class DeviceLocationProvider(LocationProvider):
    """
    Provider fed by the presentation layer: the client device reports its
    authorization state and position, and pending readers are woken up.
    """

    def __init__(
        self,
        *,
        status: AuthorizationStatus = "not_determined",
        position: Optional[Coordinate] = None,
    ) -> None:
        self._status: AuthorizationStatus = status
        self._position = position
        self._updating = False
        self._changed = asyncio.Event()
        self.authorization_requests = 0

    @classmethod
    def from_settings(cls) -> "DeviceLocationProvider":
        if not settings.location_enabled:
            return cls(status="denied")
        if settings.location_lat is not None and settings.location_lng is not None:
            return cls(
                status="authorized",
                position=Coordinate(lat=settings.location_lat, lng=settings.location_lng),
            )
        return cls(status="not_determined")

    @property
    def position(self) -> Optional[Coordinate]:
        return self._position

    @property
    def updating(self) -> bool:
        return self._updating

    def authorization_status(self) -> AuthorizationStatus:
        return self._status

    def request_authorization(self) -> None:
        self.authorization_requests += 1
        logger.info("location authorization requested status=%s", self._status)

    def start_updating(self) -> None:
        self._updating = True

    def stop_updating(self) -> None:
        self._updating = False

    def report(self, *, status: AuthorizationStatus, position: Optional[Coordinate] = None) -> None:
        self._status = status
        if position is not None:
            self._position = position
        self._changed.set()

    async def next_reading(self) -> Coordinate:
        while True:
            if self._status != "authorized":
                raise AuthorizationError(self._status)
            if self._position is not None:
                return self._position
            self._changed.clear()
            await self._changed.wait()


class LocationService:
    def __init__(self, provider: LocationProvider, *, timeout_s: float | None = None) -> None:
        self.provider = provider
        self.timeout_s = float(timeout_s or settings.location_timeout_s)

    async def resolve_current_position(self) -> LocationResult:
        status = self.provider.authorization_status()

        if status == "not_determined":
            self.provider.request_authorization()
            return LocationUnavailable(status=status, error=AuthorizationError(status))

        if status != "authorized":
            return LocationUnavailable(status=status, error=AuthorizationError(status))

        self.provider.start_updating()
        try:
            position = await asyncio.wait_for(self.provider.next_reading(), timeout=self.timeout_s)
        except asyncio.TimeoutError as e:
            logger.info("location reading timed out after %.1fs", self.timeout_s)
            return LocationFailed(error=e, status=self.provider.authorization_status())
        except AuthorizationError as e:
            return LocationUnavailable(status=e.status, error=e)  # type: ignore[arg-type]
        except Exception as e:
            logger.warning("location reading failed: %s", e)
            return LocationFailed(error=e, status=self.provider.authorization_status())
        finally:
            self.provider.stop_updating()

        return LocationResolved(position=position)
