"""Run tables.

``active_runs`` rows hold JSON blobs (room state, narration context, run stats)
that are only ever read and written through ``crawler.engine.records``.
``status`` doubles as the per-run turn lock: a turn may only start from
``active`` and flips the row to ``processing`` until it finishes.
"""

from datetime import datetime, timezone

from crawler import db

RUN_STATUSES = ("active", "processing", "completed", "dead", "abandoned")
OPEN_STATUSES = ("active", "processing")


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class ActiveRun(db.Model):
    __tablename__ = "active_runs"

    id = db.Column(db.Integer, primary_key=True)
    player_id = db.Column(db.Integer, db.ForeignKey("players.id", ondelete="CASCADE"), nullable=False, index=True)
    dungeon_id = db.Column(db.Integer, db.ForeignKey("dungeons.id"), nullable=False)
    status = db.Column(db.String(20), nullable=False, default="active")
    current_floor = db.Column(db.Integer, nullable=False, default=1)
    current_room = db.Column(db.Integer, nullable=False, default=1)
    room_state = db.Column(db.Text, nullable=False, default="{}")
    ai_context = db.Column(db.Text, nullable=False, default="[]")
    run_stats = db.Column(db.Text, nullable=False, default="{}")
    generation_seed = db.Column(db.String(120), nullable=False)
    state_version = db.Column(db.Integer, nullable=False, default=1)
    pending_action_text = db.Column(db.Text, nullable=True)
    pending_since = db.Column(db.DateTime, nullable=True)
    started_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    last_action_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    ended_at = db.Column(db.DateTime, nullable=True)

    dungeon = db.relationship("Dungeon", lazy="joined")


class RunFloorMap(db.Model):
    __tablename__ = "run_floor_maps"
    __table_args__ = (db.UniqueConstraint("run_id", "floor_number", name="uq_run_floor"),)

    id = db.Column(db.Integer, primary_key=True)
    run_id = db.Column(db.Integer, db.ForeignKey("active_runs.id", ondelete="CASCADE"), nullable=False)
    floor_number = db.Column(db.Integer, nullable=False)
    floor_map = db.Column(db.Text, nullable=False)
    generated_at = db.Column(db.DateTime, nullable=False, default=utcnow)


class RunActionLog(db.Model):
    __tablename__ = "run_action_log"
    __table_args__ = (db.UniqueConstraint("run_id", "sequence", name="uq_run_sequence"),)

    id = db.Column(db.Integer, primary_key=True)
    run_id = db.Column(db.Integer, db.ForeignKey("active_runs.id"), nullable=False)
    player_id = db.Column(db.Integer, db.ForeignKey("players.id"), nullable=False)
    sequence = db.Column(db.Integer, nullable=False)
    floor_number = db.Column(db.Integer, nullable=False)
    room_number = db.Column(db.Integer, nullable=False)
    # player_action | death | run_complete
    action_type = db.Column(db.String(20), nullable=False, default="player_action")
    player_action = db.Column(db.Text, nullable=False, default="")
    intent = db.Column(db.String(20), nullable=True)
    checks_rolled = db.Column(db.Text, nullable=False, default="[]")
    outcome = db.Column(db.String(20), nullable=False, default="success")
    mechanics = db.Column(db.Text, nullable=False, default="{}")
    xp_gained = db.Column(db.Text, nullable=False, default="[]")
    items_found = db.Column(db.Text, nullable=False, default="[]")
    items_lost = db.Column(db.Text, nullable=False, default="[]")
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
