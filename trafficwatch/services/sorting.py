# trafficwatch/services/sorting.py
"""
Incident ordering.

Two policies:
  - by date:      newest first; equal times fall back to descending summary,
                  then descending id, so repeated fetches of the same feed
                  always produce the same order.
  - by location:  ascending great-circle distance from a reference position.
                  Incidents without a location go after every located one.
                  Equal distances, and the unlocated tail, use the date rule.

Both are plain key sorts, so the result is a strict weak ordering no matter
which incidents lack coordinates.
"""
from __future__ import annotations

from typing import Iterable, List, Tuple

from trafficwatch.core.contracts import ByDate, ByLocation, Coordinate, Incident
from trafficwatch.core.geo import distance_m


def _date_key(it: Incident) -> Tuple:
    return (it.time, it.summary, it.id)


def sort_by_date(incidents: Iterable[Incident]) -> List[Incident]:
    return sorted(incidents, key=_date_key, reverse=True)


def sort_by_location(incidents: Iterable[Incident], reference: Coordinate) -> List[Incident]:
    located: List[Incident] = []
    unlocated: List[Incident] = []
    for it in incidents:
        (located if it.location is not None else unlocated).append(it)

    # date order first; the stable distance sort keeps it for equal distances
    located = sort_by_date(located)
    located.sort(key=lambda it: distance_m(reference, it.location))  # type: ignore[arg-type]

    return located + sort_by_date(unlocated)


def sort_incidents(incidents: Iterable[Incident], policy: ByDate | ByLocation) -> List[Incident]:
    if isinstance(policy, ByLocation):
        if policy.reference is None:
            raise ValueError("location sorting needs a reference position")
        return sort_by_location(incidents, policy.reference)
    return sort_by_date(incidents)
