"""Shared data structures for the chat pipeline.

Itineraries arrive as loosely-typed JSON written by the model, so the
``from_dict`` constructors here are lenient: they coerce what they can and
fall back to defaults instead of raising. Points are never dropped, which
keeps the enriched itinerary aligned one-to-one with what the model wrote.
"""

from __future__ import annotations

import secrets
import time
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional

ROLE_USER = "user"
ROLE_MODEL = "model"

CATEGORIES = ("sightseeing", "food", "hotel", "other")

# Sessions keep one of these names until a title has been generated.
PLACEHOLDER_SESSION_NAMES = ("新行程", "新旅行计划")
DEFAULT_SESSION_NAME = PLACEHOLDER_SESSION_NAMES[0]

# Below this magnitude on both axes a coordinate counts as unresolved.
SENTINEL_EPSILON = 0.1


def is_sentinel(lat: float, lng: float) -> bool:
    """Return True when (lat, lng) is the "not yet resolved" marker."""
    return abs(lat) < SENTINEL_EPSILON and abs(lng) < SENTINEL_EPSILON


def new_message_id() -> str:
    return f"msg_{secrets.token_urlsafe(8)}"


def now_ms() -> int:
    return int(time.time() * 1000)


def _as_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _as_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _as_day(value: Any) -> int:
    day = _as_int(value, 1)
    return day if day >= 1 else 1


def _as_optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


@dataclass
class ItineraryPoint:
    """A single visitable location on the itinerary."""

    name: str  # e.g. "雷峰塔"
    description: str = ""
    lat: float = 0.0
    lng: float = 0.0
    day: int = 1  # 1-based day index within the trip
    city: Optional[str] = None  # geocoding scope hint, e.g. "杭州市"
    address: Optional[str] = None
    category: Optional[str] = None

    @property
    def is_resolved(self) -> bool:
        return not is_sentinel(self.lat, self.lng)

    @classmethod
    def from_dict(cls, data: Any) -> "ItineraryPoint":
        if not isinstance(data, dict):
            return cls(name="")

        category = data.get("category")
        if category is not None and category not in CATEGORIES:
            category = "other"

        return cls(
            name=str(data.get("name") or "").strip(),
            description=str(data.get("description") or ""),
            lat=_as_float(data.get("lat")),
            lng=_as_float(data.get("lng")),
            day=_as_day(data.get("day")),
            city=_as_optional_str(data.get("city")),
            address=_as_optional_str(data.get("address")),
            category=category,
        )

    def to_dict(self) -> dict:
        data = {
            "name": self.name,
            "description": self.description,
            "lat": self.lat,
            "lng": self.lng,
            "day": self.day,
        }
        for key in ("city", "address", "category"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        return data


@dataclass
class Itinerary:
    """Ordered list of points; list order is the narrative's chronological order."""

    points: List[ItineraryPoint] = field(default_factory=list)
    center: Optional[tuple[float, float]] = None
    zoom: Optional[float] = None

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "Itinerary":
        center = payload.get("center")
        if isinstance(center, (list, tuple)) and len(center) == 2:
            center = (_as_float(center[0]), _as_float(center[1]))
        else:
            center = None

        zoom = payload.get("zoom")
        zoom = _as_float(zoom) if zoom is not None else None

        return cls(
            points=[ItineraryPoint.from_dict(p) for p in payload.get("points") or []],
            center=center,
            zoom=zoom,
        )

    def to_dict(self) -> dict:
        data: Dict[str, Any] = {"points": [p.to_dict() for p in self.points]}
        if self.center is not None:
            data["center"] = list(self.center)
        if self.zoom is not None:
            data["zoom"] = self.zoom
        return data

    def days(self) -> Dict[int, List[ItineraryPoint]]:
        """Group points into per-day legs, preserving order within each day."""
        legs: Dict[int, List[ItineraryPoint]] = {}
        for point in self.points:
            legs.setdefault(point.day, []).append(point)
        return legs


@dataclass(frozen=True)
class StreamChunk:
    """One text fragment yielded by the chat transport."""

    text: str


@dataclass
class SessionMessage:
    id: str
    role: str  # ROLE_USER | ROLE_MODEL
    text: str
    timestamp: int
    itinerary: Optional[Itinerary] = None

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "role": self.role,
            "text": self.text,
            "timestamp": self.timestamp,
        }
        if self.itinerary is not None:
            data["itinerary"] = self.itinerary.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SessionMessage":
        itinerary = data.get("itinerary")
        return cls(
            id=str(data.get("id") or new_message_id()),
            role=ROLE_MODEL if data.get("role") == ROLE_MODEL else ROLE_USER,
            text=str(data.get("text") or ""),
            timestamp=_as_int(data.get("timestamp")) or now_ms(),
            itinerary=Itinerary.from_dict(itinerary) if isinstance(itinerary, dict) else None,
        )


@dataclass
class ChatSession:
    id: str
    name: str = DEFAULT_SESSION_NAME
    messages: List[SessionMessage] = field(default_factory=list)
    updated_at: int = field(default_factory=now_ms)

    @property
    def has_placeholder_name(self) -> bool:
        return self.name in PLACEHOLDER_SESSION_NAMES

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "messages": [m.to_dict() for m in self.messages],
            "updated_at": self.updated_at,
        }


@dataclass
class UserPreferences:
    """Trip preferences collected by the form and attached to each user turn."""

    destination: str = ""
    origin: str = ""
    start_date: str = field(default_factory=lambda: date.today().isoformat())
    duration: int = 3
    travelers: int = 1
    budget: str = "Medium"
    interests: List[str] = field(default_factory=list)
    additional_info: str = ""

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "UserPreferences":
        if not data:
            return cls()
        defaults = cls()
        interests = data.get("interests") or []
        return cls(
            destination=str(data.get("destination") or ""),
            origin=str(data.get("origin") or ""),
            start_date=str(data.get("start_date") or defaults.start_date),
            duration=_as_int(data.get("duration"), defaults.duration),
            travelers=_as_int(data.get("travelers"), defaults.travelers),
            budget=str(data.get("budget") or defaults.budget),
            interests=[str(i) for i in interests] if isinstance(interests, list) else [],
            additional_info=str(data.get("additional_info") or ""),
        )

    def format_context(self) -> str:
        """Render the preferences as a context block for the model, or ""."""
        parts = []
        if self.destination:
            parts.append(f"目的地: {self.destination}")
        if self.origin:
            parts.append(f"出发地: {self.origin}")
        if self.start_date:
            parts.append(f"出发日期: {self.start_date}")
        if self.duration:
            parts.append(f"行程天数: {self.duration} 天")
        if self.travelers:
            parts.append(f"出行人数: {self.travelers} 人")
        if self.budget:
            parts.append(f"预算等级: {self.budget}")
        if self.interests:
            parts.append(f"兴趣爱好: {', '.join(self.interests)}")
        if self.additional_info:
            parts.append(f"额外备注: {self.additional_info}")

        if not parts:
            return ""

        return (
            "\n\n[用户旅行偏好上下文]:\n"
            + "\n".join(parts)
            + "\n(请参考此上下文生成行程，如果用户有新指令则优先满足新指令)"
        )
