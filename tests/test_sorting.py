"""
Tests for incident ordering (date + location policies).
"""

import random

import pytest

from trafficwatch.core.contracts import ByDate, ByLocation, Coordinate
from trafficwatch.core.geo import distance_m, haversine_m
from trafficwatch.services.sorting import sort_by_date, sort_by_location, sort_incidents

from conftest import MUNICH, make_incident


# ============================================================
# BY DATE
# ============================================================

class TestSortByDate:
    def test_newest_first(self):
        a = make_incident("a", minutes=1)
        b = make_incident("b", minutes=5)
        c = make_incident("c", minutes=3)
        assert [it.id for it in sort_by_date([a, b, c])] == ["b", "c", "a"]

    def test_equal_time_breaks_tie_by_descending_summary(self):
        a = make_incident("A", minutes=100, summary="Bravo")
        b = make_incident("B", minutes=100, summary="Alpha")
        assert [it.id for it in sort_by_date([b, a])] == ["A", "B"]
        assert [it.id for it in sort_by_date([a, b])] == ["A", "B"]

    def test_idempotent_and_independent_of_input_order(self):
        items = [
            make_incident(f"i{n}", minutes=n % 4, summary=f"S{n % 3}")
            for n in range(20)
        ]
        once = sort_by_date(items)
        assert sort_by_date(once) == once

        shuffled = list(items)
        random.Random(7).shuffle(shuffled)
        assert [it.id for it in sort_by_date(shuffled)] == [it.id for it in once]

    def test_strictly_descending_keys(self):
        items = [make_incident(f"i{n}", minutes=n % 5, summary=f"S{n % 2}") for n in range(12)]
        out = sort_by_date(items)
        for prev, cur in zip(out, out[1:]):
            assert (prev.time, prev.summary) >= (cur.time, cur.summary)

    def test_empty(self):
        assert sort_by_date([]) == []


# ============================================================
# BY LOCATION
# ============================================================

class TestSortByLocation:
    def test_nearest_first(self):
        near = make_incident("near", lat=48.14, lng=11.58)
        mid = make_incident("mid", lat=48.40, lng=11.70)
        far = make_incident("far", lat=52.52, lng=13.40)
        out = sort_by_location([far, near, mid], MUNICH)
        assert [it.id for it in out] == ["near", "mid", "far"]

    def test_unlocated_go_last_in_date_order(self):
        located = make_incident("loc", minutes=0, lat=50.0, lng=8.0)
        old = make_incident("old", minutes=1)
        new = make_incident("new", minutes=9)
        out = sort_by_location([old, located, new], MUNICH)
        assert [it.id for it in out] == ["loc", "new", "old"]

    def test_equal_distance_uses_date_rule(self):
        a = make_incident("a", minutes=1, lat=48.2, lng=11.6)
        b = make_incident("b", minutes=7, lat=48.2, lng=11.6)
        out = sort_by_location([a, b], MUNICH)
        assert [it.id for it in out] == ["b", "a"]

    def test_distance_non_decreasing_and_located_prefix(self):
        rnd = random.Random(3)
        items = []
        for n in range(30):
            if n % 4 == 0:
                items.append(make_incident(f"n{n}", minutes=n))
            else:
                items.append(
                    make_incident(f"n{n}", minutes=n, lat=rnd.uniform(47, 54), lng=rnd.uniform(6, 15))
                )
        out = sort_by_location(items, MUNICH)

        flags = [it.location is not None for it in out]
        assert flags == sorted(flags, reverse=True)

        dists = [distance_m(MUNICH, it.location) for it in out if it.location is not None]
        assert dists == sorted(dists)

    def test_repeatable(self):
        items = [make_incident(f"x{n}", minutes=n % 3, lat=48.0 + (n % 2), lng=11.0) for n in range(10)]
        items += [make_incident("none1"), make_incident("none2")]
        first = sort_by_location(items, MUNICH)
        rev = sort_by_location(list(reversed(items)), MUNICH)
        assert [it.id for it in first] == [it.id for it in rev]


# ============================================================
# POLICY DISPATCH + GEO
# ============================================================

def test_sort_incidents_dispatches_on_policy():
    near = make_incident("near", minutes=0, lat=48.14, lng=11.58)
    far = make_incident("far", minutes=5, lat=52.52, lng=13.40)

    assert [it.id for it in sort_incidents([near, far], ByDate())] == ["far", "near"]
    assert [it.id for it in sort_incidents([near, far], ByLocation(reference=MUNICH))] == ["near", "far"]


def test_sort_incidents_requires_reference_for_location():
    with pytest.raises(ValueError):
        sort_incidents([make_incident("a")], ByLocation())


def test_haversine_known_distance():
    # Munich -> Berlin is roughly 504 km
    d = haversine_m(48.137, 11.575, 52.520, 13.405)
    assert 495_000 < d < 515_000
    assert distance_m(MUNICH, Coordinate(lat=48.137, lng=11.575)) == pytest.approx(0.0)
