"""
Task board storage backend (SQLite).

Document-store style CRUD for columns and cards, keyed by scope.
Deletes never cascade: removing a column leaves its cards pointing at
a dead status, which readers treat as "unassigned".
"""
import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import List, Optional, Dict, Any, Iterable

from .schema import (
    Card,
    Column,
    Scope,
    ValidationError,
    DEFAULT_COLUMNS,
    DEFAULT_COLUMN_COLOR,
    make_id,
    utc_now,
)

logger = logging.getLogger(__name__)

CARD_FIELDS = {"title", "completed", "status", "assignee"}
CARD_IMMUTABLE = {"team_id", "user_id", "created_at", "id", "card_id"}
COLUMN_FIELDS = {"name", "order", "color"}


class StoreError(Exception):
    """Raised when a storage call fails (transient I/O)."""
    pass


class NotFound(StoreError):
    """Raised when an update/delete targets an id that does not exist."""
    pass


def _connect(db_path: str) -> sqlite3.Connection:
    """Open a connection with FK enforcement and WAL mode."""
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    conn.execute("PRAGMA journal_mode = WAL")
    return conn


@contextmanager
def transaction(db_path: str, action: str):
    """Yield a connection inside one transaction; sqlite errors surface as StoreError."""
    try:
        conn = _connect(db_path)
    except sqlite3.Error as e:
        logger.error(f"Cannot open {db_path} for {action}: {e}")
        raise StoreError(f"{action} failed: {e}") from e
    try:
        with conn:
            yield conn
    except sqlite3.Error as e:
        logger.error(f"Store error during {action}: {e}")
        raise StoreError(f"{action} failed: {e}") from e
    finally:
        conn.close()


def _scope_clause(scope: Scope) -> tuple:
    """WHERE fragment + params selecting rows that belong to a scope."""
    if scope.is_team:
        return "team_id = ?", (scope.team_id,)
    return "user_id = ? AND team_id IS NULL", (scope.user_id,)


class BoardStore:
    """SQLite-backed store for board columns and cards."""

    def __init__(self, db_path: str = None):
        """Initialize store and create tables if needed."""
        if db_path is None:
            db_path = str(Path.home() / ".local" / "share" / "taskboard" / "taskboard.db")
        self.db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _db(self, action: str):
        return transaction(self.db_path, action)

    def _init_schema(self):
        """Create tables if they don't exist."""
        with self._db("init schema") as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS board_columns (
                    column_id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    sort_order INTEGER NOT NULL DEFAULT 0,
                    color TEXT,
                    user_id TEXT NOT NULL,
                    team_id TEXT,
                    created_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS cards (
                    card_id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    completed INTEGER NOT NULL DEFAULT 0,
                    status TEXT,       -- column id, not a FK: column deletes don't cascade
                    user_id TEXT NOT NULL,
                    team_id TEXT,
                    assignee TEXT,
                    created_at TEXT NOT NULL
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_columns_team ON board_columns(team_id)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_columns_user ON board_columns(user_id)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_cards_team ON cards(team_id)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_cards_user ON cards(user_id)")

    # ── Columns ──────────────────────────────────────────────────────────────

    def list_columns(self, scope: Scope) -> List[Column]:
        """List a scope's columns by rank. An empty scope gets the defaults."""
        where, params = _scope_clause(scope)
        with self._db("list columns") as conn:
            rows = conn.execute(
                f"SELECT * FROM board_columns WHERE {where} ORDER BY sort_order, created_at, rowid",
                params,
            ).fetchall()
            if not rows:
                return self._seed_default_columns(conn, scope)
        return [self._row_to_column(row) for row in rows]

    def _seed_default_columns(self, conn: sqlite3.Connection, scope: Scope) -> List[Column]:
        columns = []
        for default in DEFAULT_COLUMNS:
            column = Column(
                column_id=make_id("col"),
                name=default["name"],
                order=default["order"],
                color=default["color"],
                user_id=scope.user_id,
                team_id=scope.team_id,
            )
            self._insert_column(conn, column)
            columns.append(column)
        logger.info(f"Seeded default columns for {scope}")
        return columns

    def get_column(self, column_id: str) -> Optional[Column]:
        with self._db("get column") as conn:
            row = conn.execute(
                "SELECT * FROM board_columns WHERE column_id = ?", (column_id,)
            ).fetchone()
        return self._row_to_column(row) if row else None

    def create_column(self, scope: Scope, name: str, order: int,
                      color: Optional[str] = None) -> str:
        """Create a column and return its id."""
        column = Column(
            column_id=make_id("col"),
            name=name,
            order=order,
            color=color or DEFAULT_COLUMN_COLOR,
            user_id=scope.user_id,
            team_id=scope.team_id,
        )
        with self._db("create column") as conn:
            self._insert_column(conn, column)
        logger.info(f"Created column {column.column_id} ({name!r})")
        return column.column_id

    def update_column(self, column_id: str, fields: Dict[str, Any]) -> None:
        """Apply a partial update (name, order, color)."""
        unknown = set(fields) - COLUMN_FIELDS
        if unknown:
            raise ValidationError(f"Cannot update column fields: {', '.join(sorted(unknown))}")
        if not fields:
            return
        # "order" is a reserved word in SQL
        assignments = {("sort_order" if k == "order" else k): v for k, v in fields.items()}
        self._update("board_columns", "column_id", column_id, assignments)

    def delete_column(self, column_id: str) -> None:
        """Delete a column. Its cards keep their (now dangling) status."""
        with self._db("delete column") as conn:
            cur = conn.execute("DELETE FROM board_columns WHERE column_id = ?", (column_id,))
            if cur.rowcount == 0:
                raise NotFound(f"Column {column_id} not found")
        logger.info(f"Deleted column {column_id}")

    # ── Cards ────────────────────────────────────────────────────────────────

    def list_cards(self, scope: Scope) -> List[Card]:
        """List a scope's cards in creation order."""
        where, params = _scope_clause(scope)
        with self._db("list cards") as conn:
            rows = conn.execute(
                f"SELECT * FROM cards WHERE {where} ORDER BY created_at, rowid",
                params,
            ).fetchall()
        return [self._row_to_card(row) for row in rows]

    def get_card(self, card_id: str) -> Optional[Card]:
        with self._db("get card") as conn:
            row = conn.execute("SELECT * FROM cards WHERE card_id = ?", (card_id,)).fetchone()
        return self._row_to_card(row) if row else None

    def create_card(self, scope: Scope, title: str, status: Optional[str] = None,
                    assignee: Optional[str] = None) -> str:
        """Create a card and return its id."""
        card = Card(
            card_id=make_id("card"),
            title=title,
            user_id=scope.user_id,
            status=status,
            team_id=scope.team_id,
            assignee=assignee if scope.is_team else None,
        )
        with self._db("create card") as conn:
            self._insert_card(conn, card)
        logger.info(f"Created card {card.card_id} in {status or 'no column'}")
        return card.card_id

    def create_card_batch(self, scope: Scope, items: Iterable[Dict[str, Any]],
                          default_status: str) -> List[str]:
        """
        Create one card per item, all in `default_status`, in input order.

        Each item is {"title": str, "assignee": Optional[str]}.
        Runs in a single transaction: either every card is created or none.
        """
        cards = [
            Card(
                card_id=make_id("card"),
                title=item["title"],
                user_id=scope.user_id,
                status=default_status,
                team_id=scope.team_id,
                assignee=item.get("assignee") or None,
            )
            for item in items
        ]
        with self._db("create card batch") as conn:
            for card in cards:
                self._insert_card(conn, card)
        logger.info(f"Created {len(cards)} cards in {default_status}")
        return [c.card_id for c in cards]

    def update_card(self, card_id: str, fields: Dict[str, Any]) -> None:
        """Apply a partial update (title, completed, status, assignee)."""
        immutable = set(fields) & CARD_IMMUTABLE
        if immutable:
            raise ValidationError(f"Card fields are immutable: {', '.join(sorted(immutable))}")
        unknown = set(fields) - CARD_FIELDS
        if unknown:
            raise ValidationError(f"Cannot update card fields: {', '.join(sorted(unknown))}")
        if not fields:
            return
        assignments = dict(fields)
        if "completed" in assignments:
            assignments["completed"] = 1 if assignments["completed"] else 0
        self._update("cards", "card_id", card_id, assignments)

    def delete_card(self, card_id: str) -> None:
        with self._db("delete card") as conn:
            cur = conn.execute("DELETE FROM cards WHERE card_id = ?", (card_id,))
            if cur.rowcount == 0:
                raise NotFound(f"Card {card_id} not found")
        logger.info(f"Deleted card {card_id}")

    # ── Internals ────────────────────────────────────────────────────────────

    def _update(self, table: str, key: str, row_id: str, assignments: Dict[str, Any]) -> None:
        # Column names come from the allow-lists above, never from callers
        setters = ", ".join(f"{col} = ?" for col in assignments)
        with self._db(f"update {table}") as conn:
            cur = conn.execute(
                f"UPDATE {table} SET {setters} WHERE {key} = ?",
                (*assignments.values(), row_id),
            )
            if cur.rowcount == 0:
                raise NotFound(f"{table} row {row_id} not found")
        logger.debug(f"Updated {table} {row_id}: {sorted(assignments)}")

    @staticmethod
    def _insert_column(conn: sqlite3.Connection, column: Column) -> None:
        conn.execute("""
            INSERT INTO board_columns
            (column_id, name, sort_order, color, user_id, team_id, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """, (
            column.column_id,
            column.name,
            column.order,
            column.color,
            column.user_id,
            column.team_id,
            column.created_at or utc_now(),
        ))

    @staticmethod
    def _insert_card(conn: sqlite3.Connection, card: Card) -> None:
        conn.execute("""
            INSERT INTO cards
            (card_id, title, completed, status, user_id, team_id, assignee, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            card.card_id,
            card.title,
            1 if card.completed else 0,
            card.status,
            card.user_id,
            card.team_id,
            card.assignee,
            card.created_at or utc_now(),
        ))

    @staticmethod
    def _row_to_column(row: sqlite3.Row) -> Column:
        data = dict(row)
        return Column(
            column_id=data["column_id"],
            name=data["name"],
            order=int(data["sort_order"]),
            user_id=data["user_id"],
            color=data.get("color") or DEFAULT_COLUMN_COLOR,
            team_id=data.get("team_id"),
            created_at=data["created_at"],
        )

    @staticmethod
    def _row_to_card(row: sqlite3.Row) -> Card:
        data = dict(row)
        return Card(
            card_id=data["card_id"],
            title=data["title"],
            user_id=data["user_id"],
            completed=bool(data.get("completed", 0)),
            status=data.get("status"),
            team_id=data.get("team_id"),
            assignee=data.get("assignee"),
            created_at=data["created_at"],
        )
