"""Value types shared across ag: tickets, statuses, members and teams."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


@dataclass(frozen=True)
class TicketData:
    """One Story or Defect as fetched from Agility. Replaced wholesale on refresh."""

    label: str
    number: str
    asset_id: str
    status: str
    project: str
    url: str
    asset_type: str = "Story"


@dataclass(frozen=True)
class StatusInfo:
    """A workflow status of a team, as reported by the server."""

    id: str
    name: str
    order: int
    color_name: str | None = None


@dataclass(frozen=True)
class StatusConfig:
    """The user-customisable record kept for one status."""

    id: str
    name: str
    color: str
    order: int
    is_dev_in_progress: bool = False
    hidden: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "color": self.color,
            "order": self.order,
            "isDevInProgress": self.is_dev_in_progress,
            "hidden": self.hidden,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "StatusConfig":
        return cls(
            id=str(raw["id"]),
            name=str(raw.get("name", "")),
            color=str(raw.get("color", "")),
            order=int(raw.get("order", 0)),
            is_dev_in_progress=bool(raw.get("isDevInProgress", False)),
            hidden=bool(raw.get("hidden", False)),
        )


# status id → config
StatusConfigMap = dict[str, StatusConfig]


@dataclass(frozen=True)
class StatusGroup:
    status: str
    color: str
    tickets: tuple[TicketData, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class MemberInfo:
    id: str
    name: str
    username: str = "—"

    @property
    def detail(self) -> str:
        return self.username


@dataclass(frozen=True)
class TeamInfo:
    id: str
    name: str

    @property
    def detail(self) -> str:
        return ""


# Anything that can be offered in a member/team picker.
DirectoryEntry = MemberInfo | TeamInfo


class ViewMode(str, Enum):
    """Which presentation a view belongs to."""

    MY_TICKETS = "my-tickets"
    TEAM_TICKETS = "team-tickets"
