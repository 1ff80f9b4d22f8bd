"""
project: Dungeon Crawler
module: __init__.py
License: MIT

Flask application and core extensions setup.

This module wires together the Flask app and SQLAlchemy. Configuration is
sourced from environment variables (optionally via a local `.env`) with
defaults suitable for development. A local `instance/` directory holds the
SQLite database and runtime logs.
"""

import os
import sqlite3
from pathlib import Path

from dotenv import load_dotenv
from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import event, text
from sqlalchemy.engine import Engine

from crawler.errors import RunStateError, UserError
from crawler.logging_utils import get_logger

# Load .env if present so `DATABASE_URL`, `CRAWLER_*` tunables etc. can be
# supplied without exporting shell variables during development.
load_dotenv()

log = get_logger("crawler.app")

app = Flask(__name__, instance_relative_config=True)

try:
    os.makedirs(app.instance_path, exist_ok=True)
except OSError:
    # read-only checkouts; DATABASE_URL must then point elsewhere
    log.warn(event="instance_dir_unavailable", path=app.instance_path)

secret_key = os.getenv("SECRET_KEY", "dev-secret-change-me")
database_url = os.getenv("DATABASE_URL")

# During pytest runs, isolate to a separate test database
if not database_url:
    is_pytest = bool(os.getenv("PYTEST_CURRENT_TEST"))
    db_filename = "crawler_test.db" if is_pytest else "crawler.db"
    db_path = Path(app.instance_path) / db_filename
    database_url = f"sqlite:///{db_path.as_posix()}"


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    return int(raw) if raw not in (None, "") else default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    return float(raw) if raw not in (None, "") else default


app.config.update(
    SECRET_KEY=secret_key,
    SQLALCHEMY_DATABASE_URI=database_url,
    SQLALCHEMY_TRACK_MODIFICATIONS=False,
    JSON_SORT_KEYS=False,
    # Game tunables, read through game_setting()
    CRAWLER_START_GOLD=_env_int("CRAWLER_START_GOLD", 100),
    CRAWLER_START_HP=_env_int("CRAWLER_START_HP", 50),
    CRAWLER_INVENTORY_SLOTS=_env_int("CRAWLER_INVENTORY_SLOTS", 20),
    CRAWLER_AI_CONTEXT_WINDOW=_env_int("CRAWLER_AI_CONTEXT_WINDOW", 12),
    CRAWLER_DEATH_GOLD_PENALTY=_env_float("CRAWLER_DEATH_GOLD_PENALTY", 0.25),
    CRAWLER_STALE_RUN_SECONDS=_env_int("CRAWLER_STALE_RUN_SECONDS", 300),
)

GAME_SETTINGS = {
    "start_gold": "CRAWLER_START_GOLD",
    "start_hp": "CRAWLER_START_HP",
    "inventory_slots": "CRAWLER_INVENTORY_SLOTS",
    "ai_context_window": "CRAWLER_AI_CONTEXT_WINDOW",
    "death_gold_penalty": "CRAWLER_DEATH_GOLD_PENALTY",
    "stale_run_seconds": "CRAWLER_STALE_RUN_SECONDS",
}


def game_setting(key: str):
    """Return a game tunable by short name (``start_gold``, ``ai_context_window`` ...)."""
    return app.config[GAME_SETTINGS[key]]


engine_opts = {}
if database_url.startswith("sqlite:///"):
    engine_opts["connect_args"] = {
        "timeout": 10,  # busy timeout (seconds) for sqlite
        "check_same_thread": False,  # test client and CLI share connections across threads
    }
db = SQLAlchemy(app, session_options={"expire_on_commit": False}, engine_options=engine_opts)


@event.listens_for(Engine, "connect")
def _set_sqlite_pragma(dbapi_connection, connection_record):  # noqa: D401
    if not isinstance(dbapi_connection, sqlite3.Connection):
        return
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.execute("PRAGMA busy_timeout=10000")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


# --- Lightweight schema version tracking ------------------------------------
SCHEMA_VERSION = 1


def _ensure_schema_version_table():
    db.session.execute(
        text("CREATE TABLE IF NOT EXISTS schema_version (id INTEGER PRIMARY KEY CHECK (id=1), version INTEGER NOT NULL)")
    )
    row = db.session.execute(text("SELECT version FROM schema_version WHERE id=1")).fetchone()
    if not row:
        db.session.execute(text("INSERT INTO schema_version (id, version) VALUES (1, :v)"), {"v": SCHEMA_VERSION})
    elif row[0] < SCHEMA_VERSION:
        db.session.execute(text("UPDATE schema_version SET version=:v WHERE id=1"), {"v": SCHEMA_VERSION})
    db.session.commit()


def create_app(seed: bool = True):
    """Return the Flask app with tables created and content seeded.

    Idempotent: safe to call from the CLI, the server entry point and tests.
    """
    from crawler import models  # noqa: F401  (register tables)
    from crawler.seed_content import seed_all

    with app.app_context():
        db.create_all()
        _ensure_schema_version_table()
        if seed:
            seed_all()
    return app


@app.errorhandler(UserError)
def _user_error(e: UserError):
    return jsonify(e.to_dict()), 400


@app.errorhandler(RunStateError)
def _run_state_error(e: RunStateError):
    return jsonify(e.to_dict()), 409


# Register HTTP blueprints (import after app/db created)
from crawler.routes.runs_api import bp_runs  # noqa: E402

app.register_blueprint(bp_runs)
