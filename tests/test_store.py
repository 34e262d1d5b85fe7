"""
Tests for the board store: seeding, scoping, column/card CRUD, batches.
"""
import sqlite3
from unittest.mock import patch

import pytest

from pkg.taskboard.schema import Card, Column, Scope, ValidationError, DEFAULT_COLUMNS
from pkg.taskboard.store import BoardStore, NotFound, StoreError


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Schema Tests
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_card_serialization():
    """Cards serialize with an `id` key and restore from it"""
    card = Card(card_id="card-1", title="Write docs", user_id="alice",
                status="col-1", team_id="team-1", assignee="bob")
    data = card.to_dict()
    assert data["id"] == "card-1"
    assert data["completed"] is False

    restored = Card.from_dict(data)
    assert restored.card_id == "card-1"
    assert restored.team_id == "team-1"
    assert restored.assignee == "bob"


def test_column_from_dict_defaults():
    column = Column.from_dict({"id": "col-1", "name": "Later", "order": "3", "user_id": "alice"})
    assert column.order == 3
    assert column.color == "#e2e8f0"
    assert column.team_id is None


def test_scope_constructors():
    assert not Scope.personal("alice").is_team
    team = Scope.team("team-1", "alice")
    assert team.is_team
    assert team.user_id == "alice"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Column Tests
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_first_read_seeds_default_columns(store, personal):
    """An empty board gets To Do / In Progress / Done"""
    columns = store.list_columns(personal)
    assert [c.name for c in columns] == ["To Do", "In Progress", "Done"]
    assert [c.order for c in columns] == [0, 1, 2]
    assert [c.color for c in columns] == [d["color"] for d in DEFAULT_COLUMNS]

    # Second read returns the same columns, no reseeding
    again = store.list_columns(personal)
    assert [c.column_id for c in again] == [c.column_id for c in columns]


def test_scopes_are_isolated(store):
    alice = Scope.personal("alice")
    bob = Scope.personal("bob")
    team = Scope.team("team-1", "alice")

    alice_cols = store.list_columns(alice)
    bob_cols = store.list_columns(bob)
    team_cols = store.list_columns(team)
    ids = {c.column_id for c in alice_cols} | {c.column_id for c in bob_cols} | {c.column_id for c in team_cols}
    assert len(ids) == 9

    store.create_card(alice, "Alice's")
    store.create_card(team, "Team's")
    assert [c.title for c in store.list_cards(alice)] == ["Alice's"]
    assert [c.title for c in store.list_cards(bob)] == []
    assert [c.title for c in store.list_cards(team)] == ["Team's"]


def test_team_scope_sees_cards_from_every_member(store):
    store.create_card(Scope.team("team-1", "alice"), "From Alice")
    store.create_card(Scope.team("team-1", "bob"), "From Bob")
    titles = [c.title for c in store.list_cards(Scope.team("team-1", "carol"))]
    assert titles == ["From Alice", "From Bob"]


def test_columns_sorted_by_order(store, personal):
    store.list_columns(personal)
    col_id = store.create_column(personal, "Backlog", -1)
    columns = store.list_columns(personal)
    assert columns[0].column_id == col_id
    assert columns[0].color == "#e2e8f0"


def test_update_column(store, personal):
    column = store.list_columns(personal)[0]
    store.update_column(column.column_id, {"name": "Next", "order": 5, "color": "#000000"})
    updated = store.get_column(column.column_id)
    assert updated.name == "Next"
    assert updated.order == 5
    assert updated.color == "#000000"


def test_update_column_rejects_unknown_fields(store, personal):
    column = store.list_columns(personal)[0]
    with pytest.raises(ValidationError):
        store.update_column(column.column_id, {"team_id": "team-9"})


def test_missing_ids_raise_not_found(store):
    with pytest.raises(NotFound):
        store.update_column("col-missing", {"name": "x"})
    with pytest.raises(NotFound):
        store.delete_column("col-missing")
    with pytest.raises(NotFound):
        store.update_card("card-missing", {"title": "x"})
    with pytest.raises(NotFound):
        store.delete_card("card-missing")


def test_delete_column_keeps_cards(store, personal):
    """Deleting a column leaves its cards with a dangling status"""
    column = store.list_columns(personal)[0]
    card_id = store.create_card(personal, "Survivor", status=column.column_id)

    store.delete_column(column.column_id)

    card = store.get_card(card_id)
    assert card is not None
    assert card.status == column.column_id


def test_deleting_every_column_reseeds(store, personal):
    for column in store.list_columns(personal):
        store.delete_column(column.column_id)
    assert [c.name for c in store.list_columns(personal)] == ["To Do", "In Progress", "Done"]


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Card Tests
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_create_and_get_card(store, personal):
    card_id = store.create_card(personal, "Buy milk")
    card = store.get_card(card_id)
    assert card.title == "Buy milk"
    assert card.user_id == "alice"
    assert card.status is None
    assert card.completed is False
    assert card.team_id is None


def test_personal_cards_drop_assignee(store, personal):
    card_id = store.create_card(personal, "Solo", assignee="bob")
    assert store.get_card(card_id).assignee is None


def test_update_card_fields(store, personal):
    card_id = store.create_card(personal, "Draft")
    store.update_card(card_id, {"title": "Final", "completed": True, "status": "col-x"})
    card = store.get_card(card_id)
    assert card.title == "Final"
    assert card.completed is True
    assert card.status == "col-x"


def test_update_card_rejects_immutable_fields(store):
    card_id = store.create_card(Scope.team("team-1", "alice"), "Shared")
    for field_name in ("team_id", "user_id", "created_at"):
        with pytest.raises(ValidationError):
            store.update_card(card_id, {field_name: "changed"})
    assert store.get_card(card_id).team_id == "team-1"


def test_delete_card(store, personal):
    card_id = store.create_card(personal, "Temp")
    store.delete_card(card_id)
    assert store.get_card(card_id) is None


def test_create_card_batch(store):
    """Batch creates every card in the given column, in input order"""
    scope = Scope.team("team-1", "alice")
    column = store.list_columns(scope)[0]

    ids = store.create_card_batch(scope, [{"title": "A"}, {"title": "B", "assignee": "u2"}],
                                  column.column_id)

    assert len(ids) == 2
    cards = store.list_cards(scope)
    assert [c.card_id for c in cards] == ids
    assert [c.title for c in cards] == ["A", "B"]
    assert all(c.status == column.column_id for c in cards)
    assert all(c.completed is False for c in cards)
    assert cards[0].assignee is None
    assert cards[1].assignee == "u2"


def test_sqlite_errors_become_store_errors(store, personal):
    with patch("pkg.taskboard.store._connect", side_effect=sqlite3.OperationalError("disk I/O error")):
        with pytest.raises(StoreError):
            store.list_cards(personal)


def test_default_db_path(tmp_path, monkeypatch):
    monkeypatch.setenv("HOME", str(tmp_path))
    store = BoardStore()
    assert store.db_path.startswith(str(tmp_path))
