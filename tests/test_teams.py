"""
Tests for teams: membership invariants, invite codes, profiles, rosters.
"""
from unittest.mock import patch

import pytest

from pkg.taskboard.schema import ValidationError
from pkg.taskboard.store import BoardStore
from pkg.taskboard.teams import (
    DuplicateMember,
    PermissionDenied,
    TeamError,
    TeamNotFound,
    generate_invite_code,
)


def assert_admins_subset(team):
    assert set(team.admins) <= set(team.members)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Create / Join
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_invite_code_shape():
    code = generate_invite_code()
    assert len(code) == 6
    assert code == code.upper()
    assert code.isalnum()


def test_create_team_puts_creator_in_members_and_admins(teams):
    team = teams.create_team("  Launch  ", "alice")
    assert team.name == "Launch"
    assert team.members == ["alice"]
    assert team.admins == ["alice"]
    assert team.created_by == "alice"

    stored = teams.get_team(team.team_id)
    assert stored.invite_code == team.invite_code
    assert stored.members == ["alice"]


def test_create_team_requires_name(teams):
    with pytest.raises(ValidationError):
        teams.create_team("   ", "alice")


def test_join_team_is_case_insensitive(teams):
    team = teams.create_team("Launch", "alice")
    joined = teams.join_team(f"  {team.invite_code.lower()} ", "bob")
    assert joined.members == ["alice", "bob"]
    assert joined.admins == ["alice"]


def test_join_twice_is_a_duplicate(teams):
    """Joining again fails and leaves membership untouched"""
    team = teams.create_team("Launch", "alice")
    teams.join_team(team.invite_code, "bob")
    with pytest.raises(DuplicateMember):
        teams.join_team(team.invite_code, "bob")
    assert teams.get_team(team.team_id).members == ["alice", "bob"]


def test_join_with_bad_code(teams):
    with pytest.raises(ValidationError):
        teams.join_team("", "bob")
    with pytest.raises(TeamError, match="Invalid invite code"):
        teams.join_team("ZZZZZZ", "bob")


def test_invite_code_collision_gives_up(teams):
    first = teams.create_team("One", "alice")
    with patch("pkg.taskboard.teams.generate_invite_code", return_value=first.invite_code):
        with pytest.raises(TeamError, match="unique invite code"):
            teams.create_team("Two", "alice")


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Membership changes
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestMembership:

    @pytest.fixture(autouse=True)
    def _team(self, teams):
        self.teams = teams
        self.team = teams.create_team("Launch", "alice")
        teams.join_team(self.team.invite_code, "bob")
        teams.join_team(self.team.invite_code, "carol")

    def test_admin_removes_member(self):
        team = self.teams.remove_member(self.team.team_id, "alice", "bob")
        assert team.members == ["alice", "carol"]
        assert_admins_subset(team)

    def test_member_cannot_remove_other(self):
        with pytest.raises(PermissionDenied):
            self.teams.remove_member(self.team.team_id, "bob", "carol")
        assert "carol" in self.teams.get_team(self.team.team_id).members

    def test_member_leaves(self):
        team = self.teams.leave_team(self.team.team_id, "carol")
        assert team.members == ["alice", "bob"]

    def test_creator_cannot_be_removed(self):
        with pytest.raises(PermissionDenied):
            self.teams.remove_member(self.team.team_id, "alice", "alice")
        assert "alice" in self.teams.get_team(self.team.team_id).members

    def test_removing_an_admin_revokes_admin(self, teams):
        # Promote bob directly in storage, then remove him
        with teams._db("promote") as conn:
            team = teams._load_team(conn, self.team.team_id)
            team.admins.append("bob")
            teams._write_membership(conn, team)

        team = self.teams.remove_member(self.team.team_id, "alice", "bob")
        assert "bob" not in team.admins
        assert_admins_subset(self.teams.get_team(self.team.team_id))

    def test_remove_non_member(self):
        with pytest.raises(TeamError):
            self.teams.remove_member(self.team.team_id, "alice", "mallory")

    def test_rename_admin_only(self):
        with pytest.raises(PermissionDenied):
            self.teams.rename_team(self.team.team_id, "bob", "Hijacked")
        team = self.teams.rename_team(self.team.team_id, "alice", "Relaunch")
        assert team.name == "Relaunch"
        assert self.teams.get_team(self.team.team_id).name == "Relaunch"

    def test_rename_requires_name(self):
        with pytest.raises(ValidationError):
            self.teams.rename_team(self.team.team_id, "alice", "")

    def test_delete_admin_only(self):
        with pytest.raises(PermissionDenied):
            self.teams.delete_team(self.team.team_id, "bob")
        self.teams.delete_team(self.team.team_id, "alice")
        assert self.teams.get_team(self.team.team_id) is None

    def test_unknown_team(self):
        with pytest.raises(TeamNotFound):
            self.teams.rename_team("team-missing", "alice", "x")
        with pytest.raises(TeamNotFound):
            self.teams.roster("team-missing")

    def test_user_teams(self):
        other = self.teams.create_team("Other", "carol")
        assert [t.team_id for t in self.teams.user_teams("carol")] == [self.team.team_id, other.team_id]
        assert self.teams.user_teams("mallory") == []


def test_delete_team_orphans_cards(db_path, teams):
    """Team cards outlive the team record"""
    from pkg.taskboard.schema import Scope

    team = teams.create_team("Launch", "alice")
    board = BoardStore(db_path)
    card_id = board.create_card(Scope.team(team.team_id, "alice"), "Leftover")

    teams.delete_team(team.team_id, "alice")

    assert board.get_card(card_id).team_id == team.team_id


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Profiles / roster
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_profile_display_name_fallbacks(teams):
    assert teams.save_profile("u1", email="jo@x.com").display_name == "jo"
    assert teams.save_profile("u2").display_name == "Anonymous"
    assert teams.save_profile("u3", email="x@y.z", display_name=" Jo Lee ").display_name == "Jo Lee"


def test_save_profile_updates(teams):
    teams.save_profile("u1", email="jo@x.com", display_name="Jo")
    teams.save_profile("u1", email="jo@x.com", display_name="Joanna", avatar="a.png")
    profile = teams.get_profile("u1")
    assert profile.display_name == "Joanna"
    assert profile.avatar == "a.png"
    assert teams.get_profile("nobody") is None


def test_roster_follows_join_order(teams):
    teams.save_profile("carol", display_name="Carol")
    teams.save_profile("alice", display_name="Alice")
    team = teams.create_team("Launch", "alice")
    teams.join_team(team.invite_code, "carol")
    teams.join_team(team.invite_code, "ghost")  # no profile

    roster = teams.roster(team.team_id)
    assert [m.display_name for m in roster] == ["Alice", "Carol"]
