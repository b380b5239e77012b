from __future__ import annotations

import base64
import hashlib
from typing import Any, Dict, Optional

import orjson


def _orjson_dumps(obj: Any) -> bytes:
    return orjson.dumps(
        obj,
        option=orjson.OPT_SORT_KEYS | orjson.OPT_NON_STR_KEYS,
    )


def sha256_b64(data: bytes) -> str:
    h = hashlib.sha256(data).digest()
    return base64.urlsafe_b64encode(h).decode("ascii").rstrip("=")


def _num(x: Any) -> Optional[float]:
    try:
        return float(x)
    except (TypeError, ValueError):
        return None


def normalize_incident_record(rec: Dict[str, Any]) -> Dict[str, Any]:
    """
    Canonicalize the identity-relevant part of a raw feed record:
    - summary whitespace collapsed
    - coordinates rounded to 6 decimals
    - time kept as the source string
    """
    summary = " ".join(str(rec.get("summary") or "").split())
    lat = _num(rec.get("lat"))
    lng = _num(rec.get("lng"))
    return {
        "summary": summary,
        "time": str(rec.get("time") or ""),
        "lat": round(lat, 6) if lat is not None else None,
        "lng": round(lng, 6) if lng is not None else None,
    }


def incident_key(rec: Dict[str, Any], source: str) -> str:
    """Stable id for feed records that carry none of their own."""
    payload = {"source": source, "rec": normalize_incident_record(rec)}
    return sha256_b64(_orjson_dumps(payload))[:24]
