"""
Team membership and member profiles.

Invariants enforced here (callers do not pre-check):
  - the creator starts in both members and admins
  - admins ⊆ members after every mutation
  - the creator stays a member until the team is deleted

Deleting a team leaves its cards and columns in place (orphaned).
"""
import json
import logging
import random
import sqlite3
import string
from pathlib import Path
from typing import List, Optional

from .schema import Team, MemberProfile, ValidationError, make_id, utc_now
from .store import StoreError, transaction

logger = logging.getLogger(__name__)

INVITE_CODE_LENGTH = 6
INVITE_CODE_RETRIES = 5
_INVITE_ALPHABET = string.ascii_uppercase + string.digits


class TeamError(Exception):
    """Raised when a team operation is rejected."""
    pass


class TeamNotFound(TeamError):
    pass


class DuplicateMember(TeamError):
    """Raised when a user joins a team they already belong to."""
    pass


class PermissionDenied(TeamError):
    """Raised when the requester lacks the rights for a team operation."""
    pass


def generate_invite_code() -> str:
    """Short upper-case base-36 token."""
    return "".join(random.choice(_INVITE_ALPHABET) for _ in range(INVITE_CODE_LENGTH))


class TeamStore:
    """SQLite-backed store for teams and member profiles."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _db(self, action: str):
        return transaction(self.db_path, action)

    def _init_schema(self):
        with self._db("init team schema") as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS teams (
                    team_id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    created_by TEXT NOT NULL,
                    members TEXT NOT NULL,  -- JSON list, join order
                    admins TEXT NOT NULL,   -- JSON list
                    invite_code TEXT NOT NULL UNIQUE,
                    created_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS profiles (
                    user_id TEXT PRIMARY KEY,
                    display_name TEXT NOT NULL,
                    email TEXT NOT NULL DEFAULT '',
                    avatar TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

    # ── Teams ────────────────────────────────────────────────────────────────

    def get_team(self, team_id: str) -> Optional[Team]:
        with self._db("get team") as conn:
            row = conn.execute("SELECT * FROM teams WHERE team_id = ?", (team_id,)).fetchone()
        return self._row_to_team(row) if row else None

    def _require_team(self, team_id: str) -> Team:
        team = self.get_team(team_id)
        if not team:
            raise TeamNotFound(f"Team {team_id} not found")
        return team

    def create_team(self, name: str, creator: str) -> Team:
        """Create a team with the creator as its first member and admin."""
        name = (name or "").strip()
        if not name:
            raise ValidationError("Team name is required")

        with self._db("create team") as conn:
            invite_code = self._unique_invite_code(conn)
            team = Team(
                team_id=make_id("team"),
                name=name,
                created_by=creator,
                invite_code=invite_code,
                members=[creator],
                admins=[creator],
            )
            conn.execute("""
                INSERT INTO teams (team_id, name, created_by, members, admins, invite_code, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (
                team.team_id,
                team.name,
                team.created_by,
                json.dumps(team.members),
                json.dumps(team.admins),
                team.invite_code,
                team.created_at,
            ))
        logger.info(f"Created team {team.team_id} ({name!r}) for {creator}")
        return team

    def _unique_invite_code(self, conn: sqlite3.Connection) -> str:
        code = generate_invite_code()
        retries = 0
        while self._code_taken(conn, code) and retries < INVITE_CODE_RETRIES:
            code = generate_invite_code()
            retries += 1
        if self._code_taken(conn, code):
            raise TeamError("Failed to generate unique invite code")
        return code

    @staticmethod
    def _code_taken(conn: sqlite3.Connection, code: str) -> bool:
        return conn.execute(
            "SELECT 1 FROM teams WHERE invite_code = ?", (code,)
        ).fetchone() is not None

    def join_team(self, invite_code: str, user_id: str) -> Team:
        """Add a user to the team owning `invite_code`."""
        code = (invite_code or "").strip().upper()
        if not code:
            raise ValidationError("Invite code is required")

        with self._db("join team") as conn:
            row = conn.execute("SELECT * FROM teams WHERE invite_code = ?", (code,)).fetchone()
            if not row:
                raise TeamError("Invalid invite code")
            team = self._row_to_team(row)
            if team.is_member(user_id):
                raise DuplicateMember("You are already a member of this team")
            team.members.append(user_id)
            self._write_membership(conn, team)
        logger.info(f"{user_id} joined team {team.team_id}")
        return team

    def remove_member(self, team_id: str, requester: str, member: str) -> Team:
        """
        Remove `member` from the team. Admins may remove anyone, members
        may remove themselves. Admin rights go with membership.
        """
        with self._db("remove member") as conn:
            team = self._load_team(conn, team_id)
            if not team.is_admin(requester) and requester != member:
                raise PermissionDenied("You don't have permission to remove this member")
            if member == team.created_by:
                raise PermissionDenied("The team creator cannot be removed; delete the team instead")
            if not team.is_member(member):
                raise TeamError(f"{member} is not a member of this team")
            team.members = [m for m in team.members if m != member]
            team.admins = [a for a in team.admins if a != member]
            self._write_membership(conn, team)
        logger.info(f"{requester} removed {member} from team {team_id}")
        return team

    def leave_team(self, team_id: str, user_id: str) -> Team:
        return self.remove_member(team_id, user_id, user_id)

    def rename_team(self, team_id: str, requester: str, name: str) -> Team:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Team name is required")
        with self._db("rename team") as conn:
            team = self._load_team(conn, team_id)
            if not team.is_admin(requester):
                raise PermissionDenied("Only admins can rename the team")
            conn.execute("UPDATE teams SET name = ? WHERE team_id = ?", (name, team_id))
            team.name = name
        logger.info(f"Team {team_id} renamed to {name!r}")
        return team

    def delete_team(self, team_id: str, requester: str) -> None:
        """Delete the team record. Cards and columns are left orphaned."""
        with self._db("delete team") as conn:
            team = self._load_team(conn, team_id)
            if not team.is_admin(requester):
                raise PermissionDenied("Only admins can delete the team")
            conn.execute("DELETE FROM teams WHERE team_id = ?", (team_id,))
        logger.info(f"Team {team_id} deleted by {requester}")

    def user_teams(self, user_id: str) -> List[Team]:
        """Teams the user belongs to, oldest first."""
        with self._db("list teams") as conn:
            rows = conn.execute("SELECT * FROM teams ORDER BY created_at, rowid").fetchall()
        teams = [self._row_to_team(row) for row in rows]
        return [t for t in teams if t.is_member(user_id)]

    # ── Profiles ─────────────────────────────────────────────────────────────

    def save_profile(self, user_id: str, email: str = "", display_name: str = "",
                     avatar: Optional[str] = None) -> MemberProfile:
        """Create or update a profile. Display name falls back to the email local part."""
        email = email or ""
        display_name = (display_name or "").strip() or email.split("@")[0] or "Anonymous"
        now = utc_now()
        with self._db("save profile") as conn:
            conn.execute("""
                INSERT INTO profiles (user_id, display_name, email, avatar, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    display_name=excluded.display_name,
                    email=excluded.email,
                    avatar=excluded.avatar,
                    updated_at=excluded.updated_at
            """, (user_id, display_name, email, avatar, now, now))
        return MemberProfile(member_id=user_id, display_name=display_name, email=email, avatar=avatar)

    def get_profile(self, user_id: str) -> Optional[MemberProfile]:
        with self._db("get profile") as conn:
            row = conn.execute("SELECT * FROM profiles WHERE user_id = ?", (user_id,)).fetchone()
        return self._row_to_profile(row) if row else None

    def roster(self, team_id: str) -> List[MemberProfile]:
        """Profiles of the team's members, in join order. Unknown users are skipped."""
        team = self._require_team(team_id)
        if not team.members:
            return []
        placeholders = ", ".join("?" for _ in team.members)
        with self._db("load roster") as conn:
            rows = conn.execute(
                f"SELECT * FROM profiles WHERE user_id IN ({placeholders})",
                tuple(team.members),
            ).fetchall()
        by_id = {row["user_id"]: self._row_to_profile(row) for row in rows}
        return [by_id[m] for m in team.members if m in by_id]

    # ── Internals ────────────────────────────────────────────────────────────

    def _load_team(self, conn: sqlite3.Connection, team_id: str) -> Team:
        row = conn.execute("SELECT * FROM teams WHERE team_id = ?", (team_id,)).fetchone()
        if not row:
            raise TeamNotFound(f"Team {team_id} not found")
        return self._row_to_team(row)

    @staticmethod
    def _write_membership(conn: sqlite3.Connection, team: Team) -> None:
        # admins ⊆ members
        team.admins = [a for a in team.admins if a in team.members]
        conn.execute(
            "UPDATE teams SET members = ?, admins = ? WHERE team_id = ?",
            (json.dumps(team.members), json.dumps(team.admins), team.team_id),
        )

    @staticmethod
    def _row_to_team(row: sqlite3.Row) -> Team:
        data = dict(row)
        try:
            members = json.loads(data.get("members") or "[]")
            admins = json.loads(data.get("admins") or "[]")
        except (json.JSONDecodeError, TypeError) as e:
            raise StoreError(f"Corrupt membership for team {data.get('team_id')}: {e}") from e
        return Team(
            team_id=data["team_id"],
            name=data["name"],
            created_by=data["created_by"],
            invite_code=data["invite_code"],
            members=members,
            admins=admins,
            created_at=data["created_at"],
        )

    @staticmethod
    def _row_to_profile(row: sqlite3.Row) -> MemberProfile:
        return MemberProfile(
            member_id=row["user_id"],
            display_name=row["display_name"],
            email=row["email"] or "",
            avatar=row["avatar"],
        )
