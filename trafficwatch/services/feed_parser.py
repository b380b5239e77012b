# trafficwatch/services/feed_parser.py
"""
Lenient incident feed parser.

Accepts:
  - XML feeds (RSS items, traffic <message>/<incident>/<entry> records).
    Namespaced tags are matched by local name.
  - JSON / GeoJSON FeatureCollections (or a bare list of records).

No validation beyond what is needed to build an Incident: records with no
usable time or no summary are dropped. Records without an id get a stable
content-derived id.
"""
from __future__ import annotations

import json
import logging
import math
import xml.etree.ElementTree as ET
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Dict, Iterable, List, Optional

from trafficwatch.core.contracts import Coordinate, Incident
from trafficwatch.core.keying import incident_key

logger = logging.getLogger(__name__)

_RECORD_TAGS = ("item", "message", "incident", "entry", "event")
_ID_TAGS = ("id", "guid", "identifier", "messageid")
_TIME_TAGS = ("time", "timestamp", "pubdate", "updated", "published", "starttime", "start", "date")
_SUMMARY_TAGS = ("summary", "title", "headline", "text", "description")
_LAT_TAGS = ("lat", "latitude")
_LNG_TAGS = ("lon", "lng", "long", "longitude")
_IMAGE_TAGS = ("image", "sign", "signimage", "icon", "imageurl")


# ══════════════════════════════════════════════════════════════
# Value helpers
# ══════════════════════════════════════════════════════════════

def _safe_float(x: Any) -> Optional[float]:
    try:
        f = float(x)
        if math.isfinite(f):
            return f
    except Exception:
        return None
    return None


def _parse_time(raw: Any) -> Optional[datetime]:
    if raw is None:
        return None
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        # epoch seconds, or milliseconds when clearly too large
        ts = float(raw) / 1000.0 if float(raw) > 1e11 else float(raw)
        try:
            return datetime.fromtimestamp(ts, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None

    t = str(raw).strip()
    if not t:
        return None
    if t.isdigit():
        return _parse_time(int(t))

    iso = t[:-1] + "+00:00" if t.endswith("Z") else t
    try:
        dt = datetime.fromisoformat(iso)
    except ValueError:
        try:
            dt = parsedate_to_datetime(t)  # RFC 822 (RSS pubDate)
        except (TypeError, ValueError):
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _coordinate(lat: Any, lng: Any) -> Optional[Coordinate]:
    la = _safe_float(lat)
    ln = _safe_float(lng)
    if la is None or ln is None:
        return None
    if not (-90.0 <= la <= 90.0 and -180.0 <= ln <= 180.0):
        return None
    return Coordinate(lat=la, lng=ln)


def _build(rec: Dict[str, Any], *, source: str) -> Optional[Incident]:
    summary = " ".join(str(rec.get("summary") or "").split())
    when = _parse_time(rec.get("time"))
    if not summary or when is None:
        return None

    iid = str(rec.get("id") or "").strip() or incident_key(rec, source)
    image_url = str(rec.get("image_url") or "").strip() or None

    return Incident(
        id=iid,
        time=when,
        summary=summary,
        location=_coordinate(rec.get("lat"), rec.get("lng")),
        image_url=image_url,
    )


def _dedup(items: Iterable[Incident]) -> List[Incident]:
    by_id: Dict[str, Incident] = {}
    for it in items:
        by_id[it.id] = it
    return list(by_id.values())


# ══════════════════════════════════════════════════════════════
# XML
# ══════════════════════════════════════════════════════════════

def _localname(tag: str) -> str:
    if "}" in tag:
        tag = tag.split("}", 1)[1]
    if ":" in tag:
        tag = tag.split(":", 1)[1]
    return tag.lower()


def _first_text(el: ET.Element, names: Iterable[str]) -> Optional[str]:
    wanted = tuple(names)
    for name in wanted:
        # attributes first (<message id="..." time="...">)
        for k, v in el.attrib.items():
            if _localname(k) == name and v.strip():
                return v.strip()
        for child in el:
            if _localname(child.tag) == name:
                txt = (child.text or "").strip()
                if txt:
                    return txt
    return None


def _xml_point(el: ET.Element) -> tuple[Optional[str], Optional[str]]:
    lat = _first_text(el, _LAT_TAGS)
    lng = _first_text(el, _LNG_TAGS)
    if lat is not None and lng is not None:
        return lat, lng

    for child in el.iter():
        name = _localname(child.tag)
        if name == "point":
            # georss:point "lat lon"
            bits = (child.text or "").replace(",", " ").split()
            if len(bits) >= 2:
                return bits[0], bits[1]
        if name in ("location", "position", "coordinates") and child is not el:
            lat = _first_text(child, _LAT_TAGS)
            lng = _first_text(child, _LNG_TAGS)
            if lat is not None and lng is not None:
                return lat, lng
    return None, None


def _xml_image(el: ET.Element) -> Optional[str]:
    url = _first_text(el, _IMAGE_TAGS)
    if url:
        return url
    for child in el:
        if _localname(child.tag) == "enclosure":
            typ = (child.attrib.get("type") or "").lower()
            href = (child.attrib.get("url") or "").strip()
            if href and (not typ or typ.startswith("image/")):
                return href
    return None


def parse_incident_xml(xml_text: str, *, source: str = "feed") -> List[Incident]:
    root = ET.fromstring(xml_text)

    records = [el for el in root.iter() if _localname(el.tag) in _RECORD_TAGS]
    out: List[Incident] = []
    skipped = 0
    for el in records:
        lat, lng = _xml_point(el)
        rec = {
            "id": _first_text(el, _ID_TAGS),
            "time": _first_text(el, _TIME_TAGS),
            "summary": _first_text(el, _SUMMARY_TAGS),
            "lat": lat,
            "lng": lng,
            "image_url": _xml_image(el),
        }
        it = _build(rec, source=source)
        if it is None:
            skipped += 1
            continue
        out.append(it)

    if skipped:
        logger.debug("feed xml: skipped %d records without time/summary", skipped)
    return _dedup(out)


# ══════════════════════════════════════════════════════════════
# JSON / GeoJSON
# ══════════════════════════════════════════════════════════════

def _pick(d: Dict[str, Any], names: Iterable[str]) -> Any:
    lowered = {str(k).lower(): v for k, v in d.items()}
    for n in names:
        v = lowered.get(n)
        if v not in (None, ""):
            return v
    return None


def _json_record(obj: Dict[str, Any]) -> Dict[str, Any]:
    props = obj.get("properties") if isinstance(obj.get("properties"), dict) else obj
    lat = _pick(props, _LAT_TAGS)
    lng = _pick(props, _LNG_TAGS)

    geom = obj.get("geometry")
    if (lat is None or lng is None) and isinstance(geom, dict) and geom.get("type") == "Point":
        coords = geom.get("coordinates") or []
        if isinstance(coords, list) and len(coords) >= 2:
            lng, lat = coords[0], coords[1]

    return {
        "id": obj.get("id") if obj.get("id") not in (None, "") else _pick(props, _ID_TAGS),
        "time": _pick(props, _TIME_TAGS),
        "summary": _pick(props, _SUMMARY_TAGS),
        "lat": lat,
        "lng": lng,
        "image_url": _pick(props, _IMAGE_TAGS),
    }


def parse_incident_json(json_text: str, *, source: str = "feed") -> List[Incident]:
    data = json.loads(json_text)
    if isinstance(data, dict):
        rows = data.get("features") or data.get("incidents") or data.get("items") or []
    elif isinstance(data, list):
        rows = data
    else:
        rows = []

    out: List[Incident] = []
    for obj in rows:
        if not isinstance(obj, dict):
            continue
        it = _build(_json_record(obj), source=source)
        if it is not None:
            out.append(it)
    return _dedup(out)


def parse_incident_feed(text: str, *, source: str = "feed") -> List[Incident]:
    """Parse a feed body. Raises ValueError / ET.ParseError on unreadable input."""
    head = text.lstrip()[:1]
    if head in ("{", "["):
        return parse_incident_json(text, source=source)
    return parse_incident_xml(text, source=source)
