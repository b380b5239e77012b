from __future__ import annotations

from fastapi import HTTPException


class TrafficWatchError(Exception):
    """Base class for every failure raised inside the incident core."""


class TransportError(TrafficWatchError):
    """A feed or image fetch failed (network, HTTP status or decoding)."""


class AuthorizationError(TrafficWatchError):
    """Location permission is missing.

    ``status`` keeps the distinction between "not yet asked"
    (``not_determined``) and an explicit refusal (``denied`` / ``restricted``).
    """

    def __init__(self, status: str, message: str | None = None):
        self.status = status
        super().__init__(message or f"location authorization {status}")


class StaleResultDiscarded(TrafficWatchError):
    """A completion arrived for a fetch that is no longer the active one."""


def bad_request(code: str, message: str):
    raise HTTPException(status_code=400, detail={"code": code, "message": message})


def not_found(code: str, message: str):
    raise HTTPException(status_code=404, detail={"code": code, "message": message})
