"""Server bootstrap and the interactive play loop.

Exposes helpers to start the Flask development server and a plain text loop
that drives a character through a dungeon from the terminal, printing each
turn's mechanical summary.
"""

import json
import logging
import os
import sys
from logging.handlers import RotatingFileHandler

from crawler import app, create_app
from crawler.errors import CrawlerError
from crawler.logging_utils import get_logger

log = get_logger("crawler.server")

QUIT_WORDS = ("quit", "exit", ":q")


def start_server(host="0.0.0.0", port=5000, debug: bool = False):  # pragma: no cover (runtime only)
    """Create tables, seed content, configure logging and run the Flask server."""
    create_app()
    with app.app_context():
        _configure_logging()
    try:
        print(f"[INFO] Starting server on {host}:{port}")
        app.run(host=host, port=port, debug=debug)
    except KeyboardInterrupt:
        print("\n[INFO] Server stopped by user (Ctrl+C)")
        sys.exit(0)


def _configure_logging():
    """Configure stdlib logging to the console and a rotating file in instance/.

    The file path will be instance/app.log. Retains a few backups to avoid growth.
    """
    log_dir = app.instance_path
    try:
        os.makedirs(log_dir, exist_ok=True)
    except OSError:
        log.warn(event="log_dir_unavailable", path=log_dir)
    log_path = os.path.join(log_dir, "app.log")

    root = logging.getLogger()
    root.setLevel(logging.INFO)

    formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    file_handler = RotatingFileHandler(log_path, maxBytes=1_000_000, backupCount=3)
    file_handler.setLevel(logging.INFO)
    file_handler.setFormatter(formatter)

    console = logging.StreamHandler()
    console.setLevel(logging.INFO)
    console.setFormatter(formatter)

    # Avoid duplicate handlers if reconfigured
    for h in list(root.handlers):
        root.removeHandler(h)

    root.addHandler(file_handler)
    root.addHandler(console)


def play_loop(player_id: int, dungeon_id: int, read=input, write=print) -> int:  # pragma: no cover (interactive)
    """Start (or resume) a run and feed typed actions to the engine until it ends."""
    from crawler.services import persistence, run_service

    create_app()
    with app.app_context():
        if persistence.get_active_run(player_id) is None:
            started = run_service.start_run(player_id, dungeon_id)
            write(f"Entered {started['dungeon']['name']} (paid {started['entry_cost']}g).")
        while True:
            try:
                text = read("> ").strip()
            except EOFError:
                return 0
            if not text:
                continue
            if text.lower() in QUIT_WORDS:
                return 0
            try:
                outcome = run_service.process_action(player_id, text)
            except CrawlerError as e:
                write(f"[{e.code}] {e.message}")
                continue
            write(json.dumps(outcome.to_dict()["mechanics"], indent=2))
            if outcome.player_died:
                write("You have died.")
                return 0
            if outcome.run_complete:
                write("Dungeon complete!")
                return 0
