"""
Task board data model.

Scope:
  personal → cards/columns owned by one user, no team
  team     → cards/columns shared by everyone in the team

Cards point at columns through `status`. A status that names no live
column (deleted column, or never set) is treated as "unassigned".
"""
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any


class ValidationError(Exception):
    """Raised when user input is rejected before any I/O."""
    pass


def utc_now() -> str:
    """ISO-8601 UTC timestamp with microseconds (sortable)."""
    return datetime.now(timezone.utc).isoformat()


def make_id(prefix: str) -> str:
    """Generate a sortable unique id (ms-precision timestamp + random hex)."""
    ts = int(time.time() * 1000)
    rand = uuid.uuid4().hex[:8]
    return f"{prefix}-{ts}-{rand}"


# Seeded into a scope whenever its column list comes back empty
DEFAULT_COLUMNS = [
    {"name": "To Do", "order": 0, "color": "#e2e8f0"},
    {"name": "In Progress", "order": 1, "color": "#fef3c7"},
    {"name": "Done", "order": 2, "color": "#d1fae5"},
]

DEFAULT_COLUMN_COLOR = "#e2e8f0"


@dataclass(frozen=True)
class Scope:
    """Which board a read or write applies to."""
    user_id: str
    team_id: Optional[str] = None

    @classmethod
    def personal(cls, user_id: str) -> "Scope":
        return cls(user_id=user_id)

    @classmethod
    def team(cls, team_id: str, user_id: str) -> "Scope":
        return cls(user_id=user_id, team_id=team_id)

    @property
    def is_team(self) -> bool:
        return self.team_id is not None


@dataclass
class Card:
    """One to-do item. Shown in the checklist and on the board."""

    card_id: str
    title: str
    user_id: str                    # creator
    completed: bool = False         # checklist view only
    status: Optional[str] = None    # column id, None = unassigned
    team_id: Optional[str] = None   # immutable after creation
    assignee: Optional[str] = None  # member id
    created_at: str = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.card_id,
            "title": self.title,
            "completed": self.completed,
            "status": self.status,
            "user_id": self.user_id,
            "team_id": self.team_id,
            "assignee": self.assignee,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Card":
        return cls(
            card_id=data.get("id") or data.get("card_id", ""),
            title=data.get("title", ""),
            user_id=data.get("user_id", ""),
            completed=bool(data.get("completed", False)),
            status=data.get("status") or None,
            team_id=data.get("team_id") or None,
            assignee=data.get("assignee") or None,
            created_at=data.get("created_at") or utc_now(),
        )


@dataclass
class Column:
    """A kanban column. `order` is its left-to-right rank."""

    column_id: str
    name: str
    order: int
    user_id: str
    color: str = DEFAULT_COLUMN_COLOR
    team_id: Optional[str] = None
    created_at: str = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.column_id,
            "name": self.name,
            "order": self.order,
            "color": self.color,
            "user_id": self.user_id,
            "team_id": self.team_id,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Column":
        return cls(
            column_id=data.get("id") or data.get("column_id", ""),
            name=data.get("name", ""),
            order=int(data.get("order", 0)),
            user_id=data.get("user_id", ""),
            color=data.get("color") or DEFAULT_COLUMN_COLOR,
            team_id=data.get("team_id") or None,
            created_at=data.get("created_at") or utc_now(),
        )


@dataclass
class Team:
    """A shared board. `admins` is always a subset of `members`."""

    team_id: str
    name: str
    created_by: str
    invite_code: str
    members: List[str] = field(default_factory=list)
    admins: List[str] = field(default_factory=list)
    created_at: str = field(default_factory=utc_now)

    def is_admin(self, user_id: str) -> bool:
        return user_id in self.admins

    def is_member(self, user_id: str) -> bool:
        return user_id in self.members

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.team_id,
            "name": self.name,
            "created_by": self.created_by,
            "invite_code": self.invite_code,
            "members": list(self.members),
            "admins": list(self.admins),
            "created_at": self.created_at,
        }


@dataclass(frozen=True)
class MemberProfile:
    """Display data for a user. Used for rendering and name matching only."""

    member_id: str
    display_name: str
    email: str = ""
    avatar: Optional[str] = None

    @property
    def first_name(self) -> str:
        parts = self.display_name.split()
        return parts[0] if parts else ""

    @property
    def email_local_part(self) -> str:
        return self.email.split("@")[0]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.member_id,
            "display_name": self.display_name,
            "email": self.email,
            "avatar": self.avatar,
        }
