#!/usr/bin/env python3
"""
Task Board Server
-----------------
JSON API over the task board: personal and team boards, drag gestures,
teams, @-mentions and meeting transcript import.

Usage:
    python board_server.py --port 3000 --db ~/.local/share/taskboard/taskboard.db

Auth:
    Write routes need X-API-Key (matched against $TASKBOARD_API_SECRET).
    Every /api route needs X-User-Id naming the acting user.

API:
    GET    /health
    GET    /api/board[?team=]                 → { columns: [...with cards], unassigned }
    POST   /api/board/gesture                 → body { team?, active, hover: [...], over }
    POST   /api/columns                       → body { name, team? }
    PUT    /api/columns/<id>                  → body { name?, order?, color? }
    DELETE /api/columns/<id>?confirm=true
    GET    /api/cards[?team=]                 → checklist, newest first
    POST   /api/cards                         → body { title, team?, status?, assignee? }
    PUT    /api/cards/<id>                    → body { title?, status?, assignee?, completed? }
    DELETE /api/cards/<id>
    POST   /api/cards/<id>/toggle
    PUT    /api/profile                       → body { email?, display_name?, avatar? }
    GET    /api/teams
    POST   /api/teams                         → body { name }
    POST   /api/teams/join                    → body { code }
    PUT    /api/teams/<id>                    → body { name }
    DELETE /api/teams/<id>
    GET    /api/teams/<id>/members
    DELETE /api/teams/<id>/members/<member>
    GET    /api/teams/<id>/mentions?q=        (or ?text=&cursor=)
    POST   /api/teams/<id>/transcript         → body { transcript }
    POST   /api/teams/<id>/transcript/import  → body { tasks: [{ title, assignee? }] }
"""

import hmac
import logging
import os
from functools import wraps

from flask import Flask, jsonify, request

from pkg.taskboard.checklist import Checklist
from pkg.taskboard.config import Config, setup_logging
from pkg.taskboard.extraction import (
    ExtractionError,
    ExtractionParseError,
    ProposedTask,
    TranscriptExtractor,
    TranscriptReview,
)
from pkg.taskboard.reconciler import BoardReconciler, DragError
from pkg.taskboard.resolver import mention_candidates, mention_fragment
from pkg.taskboard.schema import Scope, ValidationError
from pkg.taskboard.store import BoardStore, NotFound, StoreError
from pkg.taskboard.teams import (
    DuplicateMember,
    PermissionDenied,
    TeamError,
    TeamNotFound,
    TeamStore,
)

logger = logging.getLogger(__name__)

app = Flask(__name__)


# ── Wiring ───────────────────────────────────────────────────────────────────

def configure(config: Config = None) -> Flask:
    """Bind stores and the extraction client to the app."""
    config = config or Config.load()
    app.config["TASKBOARD"] = config
    app.config["BOARD_STORE"] = BoardStore(config.db_path)
    app.config["TEAM_STORE"] = TeamStore(config.db_path)
    app.config["EXTRACTOR"] = TranscriptExtractor(config)
    return app


def _component(key: str):
    if key not in app.config:
        configure()
    return app.config[key]


def get_config() -> Config:
    return _component("TASKBOARD")


def get_store() -> BoardStore:
    return _component("BOARD_STORE")


def get_teams() -> TeamStore:
    return _component("TEAM_STORE")


def get_extractor() -> TranscriptExtractor:
    return _component("EXTRACTOR")


# ── Auth ─────────────────────────────────────────────────────────────────────

def require_api_key(f):
    """Decorator: reject requests without a valid X-API-Key header."""
    @wraps(f)
    def decorated(*args, **kwargs):
        secret = get_config().api_secret
        if not secret:
            return jsonify({"error": "API secret not set"}), 503
        provided = request.headers.get("X-API-Key", "").strip()
        if not hmac.compare_digest(provided, secret):
            code = 401 if not provided else 403
            return jsonify({"error": "Unauthorized"}), code
        return f(*args, **kwargs)
    return decorated


def current_user() -> str:
    user_id = request.headers.get("X-User-Id", "").strip()
    if not user_id:
        raise ValidationError("X-User-Id header is required")
    return user_id


def body() -> dict:
    data = request.get_json(force=True, silent=True)
    return data if isinstance(data, dict) else {}


def scope_for(user_id: str, team_id: str = None) -> Scope:
    """Personal scope, or a team scope the user belongs to."""
    if not team_id:
        return Scope.personal(user_id)
    team = get_teams().get_team(team_id)
    if not team:
        raise TeamNotFound(f"Team {team_id} not found")
    if not team.is_member(user_id):
        raise PermissionDenied("You are not a member of this team")
    return Scope.team(team_id, user_id)


def _owned_scope(user_id: str, owner: str, team_id: str) -> Scope:
    if team_id:
        return scope_for(user_id, team_id)
    if owner != user_id:
        raise PermissionDenied("This item belongs to another user")
    return Scope.personal(user_id)


def card_scope(card_id: str, user_id: str):
    card = get_store().get_card(card_id)
    if not card:
        raise NotFound(f"Card {card_id} not found")
    return card, _owned_scope(user_id, card.user_id, card.team_id)


def column_scope(column_id: str, user_id: str):
    column = get_store().get_column(column_id)
    if not column:
        raise NotFound(f"Column {column_id} not found")
    return column, _owned_scope(user_id, column.user_id, column.team_id)


def check_assignee(scope: Scope, assignee):
    if assignee and not (scope.is_team and get_teams().get_team(scope.team_id).is_member(assignee)):
        raise ValidationError(f"{assignee} is not a member of this team")


# ── Errors ───────────────────────────────────────────────────────────────────

def _error(e: Exception, code: int):
    return jsonify({"error": str(e)}), code


@app.errorhandler(ValidationError)
@app.errorhandler(DragError)
@app.errorhandler(ExtractionParseError)
def handle_bad_request(e):
    return _error(e, 400)


@app.errorhandler(TeamError)
def handle_team_error(e):
    return _error(e, 400)


@app.errorhandler(PermissionDenied)
def handle_forbidden(e):
    return _error(e, 403)


@app.errorhandler(NotFound)
@app.errorhandler(TeamNotFound)
def handle_not_found(e):
    return _error(e, 404)


@app.errorhandler(DuplicateMember)
def handle_conflict(e):
    return _error(e, 409)


@app.errorhandler(ExtractionError)
def handle_upstream(e):
    return _error(e, 502)


@app.errorhandler(StoreError)
def handle_store_error(e):
    return _error(e, 503)


# ── Board ────────────────────────────────────────────────────────────────────

def load_board(scope: Scope) -> BoardReconciler:
    reconciler = BoardReconciler(get_store(), scope)
    if not reconciler.load():
        raise StoreError("Failed to load board")
    return reconciler


@app.route("/health")
def health():
    return jsonify({"status": "ok", "db": get_config().db_path})


@app.route("/api/board")
def api_board():
    scope = scope_for(current_user(), request.args.get("team"))
    reconciler = load_board(scope)
    return jsonify(dict(reconciler.board.to_dict(), team=scope.team_id))


@app.route("/api/board/gesture", methods=["POST"])
@require_api_key
def api_gesture():
    """Replay one drag gesture: begin on `active`, hover each id, release over `over`."""
    data = body()
    active = data.get("active")
    if not isinstance(active, str) or not active.strip():
        raise ValidationError("active is required")
    active = active.strip()
    hovers = data.get("hover") or []
    if not isinstance(hovers, list) or not all(h is None or isinstance(h, str) for h in hovers):
        raise ValidationError("hover must be a list of ids")
    over = data.get("over")
    if over is not None and not isinstance(over, str):
        raise ValidationError("over must be an id or null")

    scope = scope_for(current_user(), data.get("team"))
    reconciler = load_board(scope)
    reconciler.begin_drag(active)
    for over_id in hovers:
        reconciler.hover(over_id)
    persisted = reconciler.end_drag(over)

    result = dict(reconciler.board.to_dict(), persisted=persisted)
    if not persisted:
        result["error"] = "Failed to save the move"
        return jsonify(result), 503
    return jsonify(result)


# ── Columns ──────────────────────────────────────────────────────────────────

@app.route("/api/columns", methods=["POST"])
@require_api_key
def api_create_column():
    data = body()
    scope = scope_for(current_user(), data.get("team"))
    reconciler = load_board(scope)
    column_id = reconciler.add_column(data.get("name", ""))
    if column_id is None:
        return jsonify({"error": "Failed to create column"}), 503
    column = reconciler.board.find_column(column_id) or get_store().get_column(column_id)
    return jsonify({"id": column_id, "column": column.to_dict()}), 201


@app.route("/api/columns/<column_id>", methods=["PUT"])
@require_api_key
def api_update_column(column_id):
    data = body()
    column_scope(column_id, current_user())
    fields = dict(data)
    if "name" in fields:
        fields["name"] = (fields["name"] or "").strip()
        if not fields["name"]:
            raise ValidationError("Column name is required")
    if "order" in fields and (isinstance(fields["order"], bool) or not isinstance(fields["order"], int)):
        raise ValidationError("order must be an integer")
    get_store().update_column(column_id, fields)
    return jsonify({"column": get_store().get_column(column_id).to_dict()})


@app.route("/api/columns/<column_id>", methods=["DELETE"])
@require_api_key
def api_delete_column(column_id):
    """Delete a column. Its cards stay, unassigned. Needs ?confirm=true."""
    _, scope = column_scope(column_id, current_user())
    confirmed = request.args.get("confirm", "").lower() in ("1", "true", "yes")
    prompts = []

    def confirm(prompt: str) -> bool:
        prompts.append(prompt)
        return confirmed

    reconciler = BoardReconciler(get_store(), scope, confirm=confirm)
    if reconciler.delete_column(column_id):
        return jsonify({"deleted": column_id})
    if not confirmed:
        return jsonify({"error": prompts[0] if prompts else "Confirmation required"}), 409
    return jsonify({"error": "Failed to delete column"}), 503


# ── Cards ────────────────────────────────────────────────────────────────────

@app.route("/api/cards", methods=["GET"])
def api_cards():
    scope = scope_for(current_user(), request.args.get("team"))
    checklist = Checklist(get_store(), scope)
    if not checklist.reload():
        raise StoreError("Failed to load to-dos")
    cards = [c.to_dict() for c in checklist.cards]
    return jsonify({"cards": cards, "count": len(cards)})


@app.route("/api/cards", methods=["POST"])
@require_api_key
def api_create_card():
    data = body()
    scope = scope_for(current_user(), data.get("team"))
    status = data.get("status") or None
    assignee = data.get("assignee") or None
    check_assignee(scope, assignee)

    if status is None and assignee is None:
        card_id = Checklist(get_store(), scope).add(data.get("title", ""))
    else:
        reconciler = load_board(scope)
        if status is not None and not reconciler.board.find_column(status):
            raise ValidationError(f"Unknown column: {status}")
        card_id = reconciler.add_card(status, data.get("title", ""), assignee=assignee)
    if card_id is None:
        return jsonify({"error": "Failed to create card"}), 503
    return jsonify({"id": card_id, "card": get_store().get_card(card_id).to_dict()}), 201


@app.route("/api/cards/<card_id>", methods=["PUT"])
@require_api_key
def api_update_card(card_id):
    data = body()
    _, scope = card_scope(card_id, current_user())
    fields = dict(data)
    if "title" in fields:
        fields["title"] = (fields["title"] or "").strip()
        if not fields["title"]:
            raise ValidationError("Card title is required")
    if "assignee" in fields:
        fields["assignee"] = fields["assignee"] or None
        check_assignee(scope, fields["assignee"])
    if "status" in fields:
        fields["status"] = fields["status"] or None
        if fields["status"] is not None and not load_board(scope).board.find_column(fields["status"]):
            raise ValidationError(f"Unknown column: {fields['status']}")
    get_store().update_card(card_id, fields)
    return jsonify({"card": get_store().get_card(card_id).to_dict()})


@app.route("/api/cards/<card_id>", methods=["DELETE"])
@require_api_key
def api_delete_card(card_id):
    card_scope(card_id, current_user())
    get_store().delete_card(card_id)
    return jsonify({"deleted": card_id})


@app.route("/api/cards/<card_id>/toggle", methods=["POST"])
@require_api_key
def api_toggle_card(card_id):
    _, scope = card_scope(card_id, current_user())
    completed = Checklist(get_store(), scope).toggle(card_id)
    if completed is None:
        return jsonify({"error": "Failed to update to-do"}), 503
    return jsonify({"id": card_id, "completed": completed})


# ── Teams ────────────────────────────────────────────────────────────────────

@app.route("/api/profile", methods=["PUT"])
@require_api_key
def api_save_profile():
    data = body()
    profile = get_teams().save_profile(
        current_user(),
        email=data.get("email", ""),
        display_name=data.get("display_name", ""),
        avatar=data.get("avatar"),
    )
    return jsonify({"profile": profile.to_dict()})


@app.route("/api/teams", methods=["GET"])
def api_teams():
    teams = get_teams().user_teams(current_user())
    return jsonify({"teams": [t.to_dict() for t in teams], "count": len(teams)})


@app.route("/api/teams", methods=["POST"])
@require_api_key
def api_create_team():
    team = get_teams().create_team(body().get("name", ""), current_user())
    return jsonify({"team": team.to_dict()}), 201


@app.route("/api/teams/join", methods=["POST"])
@require_api_key
def api_join_team():
    team = get_teams().join_team(body().get("code", ""), current_user())
    return jsonify({"team": team.to_dict()})


@app.route("/api/teams/<team_id>", methods=["PUT"])
@require_api_key
def api_rename_team(team_id):
    team = get_teams().rename_team(team_id, current_user(), body().get("name", ""))
    return jsonify({"team": team.to_dict()})


@app.route("/api/teams/<team_id>", methods=["DELETE"])
@require_api_key
def api_delete_team(team_id):
    get_teams().delete_team(team_id, current_user())
    return jsonify({"deleted": team_id})


@app.route("/api/teams/<team_id>/members")
def api_roster(team_id):
    scope_for(current_user(), team_id)
    roster = get_teams().roster(team_id)
    return jsonify({"members": [m.to_dict() for m in roster]})


@app.route("/api/teams/<team_id>/members/<member_id>", methods=["DELETE"])
@require_api_key
def api_remove_member(team_id, member_id):
    team = get_teams().remove_member(team_id, current_user(), member_id)
    return jsonify({"team": team.to_dict()})


@app.route("/api/teams/<team_id>/mentions")
def api_mentions(team_id):
    """Autocomplete candidates for an @-mention fragment."""
    scope_for(current_user(), team_id)
    fragment = request.args.get("q")
    if fragment is None and "text" in request.args:
        text = request.args["text"]
        cursor = request.args.get("cursor", type=int)
        found = mention_fragment(text, cursor)
        if found is None:
            return jsonify({"members": [], "fragment": None})
        _, fragment = found
    roster = get_teams().roster(team_id)
    candidates = mention_candidates(fragment or "", roster)
    return jsonify({"members": [m.to_dict() for m in candidates], "fragment": fragment or ""})


# ── Transcript import ────────────────────────────────────────────────────────

@app.route("/api/teams/<team_id>/transcript", methods=["POST"])
@require_api_key
def api_extract_transcript(team_id):
    """Extract action items and propose assignees. Nothing is created yet."""
    scope_for(current_user(), team_id)
    roster = get_teams().roster(team_id)
    proposals = get_extractor().propose(body().get("transcript", ""), roster)
    result = {"tasks": [p.to_dict() for p in proposals], "count": len(proposals)}
    if not proposals:
        result["message"] = "No action items found in the transcript"
    return jsonify(result)


@app.route("/api/teams/<team_id>/transcript/import", methods=["POST"])
@require_api_key
def api_import_transcript(team_id):
    """Create the reviewed tasks in the team's "To Do" column."""
    scope = scope_for(current_user(), team_id)
    tasks = body().get("tasks")
    if not isinstance(tasks, list):
        raise ValidationError("tasks must be a list")

    roster = get_teams().roster(team_id)
    review = TranscriptReview([], roster)
    for task in tasks:
        if not isinstance(task, dict):
            raise ValidationError("Each task must be an object")
        review.proposals.append(ProposedTask(
            title=str(task.get("title") or ""),
            assignee_id=None,
            assignee_name=None,
            raw_name=task.get("raw_name"),
            confidence=task.get("confidence", 0.5),
        ))
        review.set_assignee(len(review.proposals) - 1, task.get("assignee") or None)

    ids = review.commit(get_store(), scope, get_store().list_columns(scope))
    return jsonify({"ids": ids, "count": len(ids)}), 201


# ── Main ─────────────────────────────────────────────────────────────────────

if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Task Board Server")
    parser.add_argument("--host", default="127.0.0.1",
                        help="Bind address (use 0.0.0.0 to expose on network)")
    parser.add_argument("--port", type=int, default=3000)
    parser.add_argument("--db", help="Path to the board database (overrides TASKBOARD_DB)")
    parser.add_argument("--config", help="Path to taskboard.yaml (overrides TASKBOARD_CONFIG)")
    args = parser.parse_args()

    if args.db:
        os.environ["TASKBOARD_DB"] = args.db

    config = Config.load(args.config)
    setup_logging(config.log_level)
    configure(config)
    if not config.api_secret:
        logger.warning(f"{config.api_secret_env} not set: write routes will answer 503")
    logger.info(f"Task board server on http://{args.host}:{args.port} (db: {config.db_path})")

    app.run(host=args.host, port=args.port, debug=False, threaded=True)
