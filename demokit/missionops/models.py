"""Mission records and their status markers."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone

MISSION_PREFIX = "mission_"
MISSIONS_LIST_KEY = "missions_list"
VALID_STATUSES = ("stalled", "in-air", "completed", "cancelled")

_STATUS_EMOJI = {
    "stalled": "🔴",
    "in-air": "✈️",
    "completed": "✅",
    "cancelled": "❌",
}

_ZERO_TIME = "0001-01-01T00:00:00Z"
_FRACTION = re.compile(r"\.(\d+)")


def status_emoji(status):
    """The emoji shown for a mission status."""
    return _STATUS_EMOJI.get(status, "❓")


def _format_time(value):
    if value is None:
        return _ZERO_TIME
    if value.tzinfo is None:
        value = value.astimezone()
    return value.isoformat()


def _parse_time(text):
    if not text:
        return None
    normalised = text[:-1] + "+00:00" if text.endswith("Z") else text
    normalised = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), normalised, count=1)
    parsed = datetime.fromisoformat(normalised)
    if parsed.year == 1:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class Mission:
    """A planned flight mission and the channel that tracks it."""

    id: str = ""
    name: str = ""
    callsign: str = ""
    departure_airport: str = ""
    arrival_airport: str = ""
    created_by: str = ""
    created_at: datetime | None = None
    crew: list[str] = field(default_factory=list)
    channel_id: str = ""
    team_id: str = ""
    channel_name: str = ""
    status: str = ""
    completed_at: datetime | None = None

    def to_dict(self):
        """The stored JSON form."""
        return {
            "id": self.id,
            "name": self.name,
            "callsign": self.callsign,
            "departureAirport": self.departure_airport,
            "arrivalAirport": self.arrival_airport,
            "createdBy": self.created_by,
            "createdAt": _format_time(self.created_at),
            "crew": list(self.crew),
            "channelId": self.channel_id,
            "teamId": self.team_id,
            "channelName": self.channel_name,
            "status": self.status,
            "completedAt": _format_time(self.completed_at),
        }

    @classmethod
    def from_dict(cls, data):
        """Build a mission from its stored JSON form."""
        return cls(
            id=data.get("id") or "",
            name=data.get("name") or "",
            callsign=data.get("callsign") or "",
            departure_airport=data.get("departureAirport") or "",
            arrival_airport=data.get("arrivalAirport") or "",
            created_by=data.get("createdBy") or "",
            created_at=_parse_time(data.get("createdAt")),
            crew=list(data.get("crew") or []),
            channel_id=data.get("channelId") or "",
            team_id=data.get("teamId") or "",
            channel_name=data.get("channelName") or "",
            status=data.get("status") or "",
            completed_at=_parse_time(data.get("completedAt")),
        )


@dataclass
class MissionInfo:
    """Validated arguments for starting a mission; crew holds user records."""

    name: str
    callsign: str
    departure_airport: str
    arrival_airport: str
    crew: list = field(default_factory=list)