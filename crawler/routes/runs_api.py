"""Run and character API endpoints.

JSON in, JSON out. There is no authentication here: the chat front-end that
owns player identity calls these endpoints on the player's behalf. Service
errors (``UserError`` / ``RunStateError``) are turned into 400/409 responses by
the app-level error handlers.
"""

from flask import Blueprint, jsonify, request

from crawler.errors import UserError
from crawler.services import character_service, persistence, run_service

bp_runs = Blueprint("runs", __name__)


def _payload() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


@bp_runs.route("/api/characters", methods=["POST"])
def create_character():
    player = character_service.create_character(_payload().get("name", ""))
    return jsonify(character_service.describe_character(player.id)), 201


@bp_runs.route("/api/characters/<int:player_id>")
def get_character(player_id: int):
    return jsonify(character_service.describe_character(player_id))


@bp_runs.route("/api/characters/<int:player_id>/equip", methods=["POST"])
def equip(player_id: int):
    return jsonify(character_service.equip_item(player_id, _payload().get("item", "")))


@bp_runs.route("/api/dungeons")
def list_dungeons():
    return jsonify({"dungeons": [d.to_dict() for d in persistence.list_dungeons()]})


@bp_runs.route("/api/characters/<int:player_id>/runs", methods=["POST"])
def start_run(player_id: int):
    dungeon_id = _payload().get("dungeon_id")
    if not isinstance(dungeon_id, int):
        raise UserError("dungeon_id is required.", code="invalid_request")
    return jsonify(run_service.start_run(player_id, dungeon_id)), 201


@bp_runs.route("/api/characters/<int:player_id>/actions", methods=["POST"])
def take_action(player_id: int):
    text = (_payload().get("text") or "").strip()
    if not text:
        raise UserError("Say what you want to do.", code="invalid_request")
    outcome = run_service.process_action(player_id, text)
    return jsonify(outcome.to_dict())


@bp_runs.route("/api/characters/<int:player_id>/abandon", methods=["POST"])
def abandon(player_id: int):
    return jsonify(run_service.abandon_run(player_id))


@bp_runs.route("/api/characters/<int:player_id>/run")
def run_status(player_id: int):
    return jsonify(run_service.get_run_status(player_id))
