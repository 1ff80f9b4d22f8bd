"""
project: Dungeon Crawler
module: run.py
License: MIT

Dungeon Crawler CLI entry point.

Provides subcommands for running the HTTP server, seeding content, recovering
runs stranded mid-turn and playing a run from the terminal. Accepts
configuration via flags and environment variables, with optional .env loading.

Run `python run.py --help` for details.
"""

import argparse
import os
import signal
import sys
from textwrap import dedent

from dotenv import load_dotenv


def _load_version() -> str:
    path = os.path.join(os.path.dirname(os.path.abspath(__file__)), "VERSION")
    try:
        with open(path, "r", encoding="utf-8") as f:
            return f.read().strip()
    except OSError:
        return "0.1.0"


__version__ = _load_version()


def parse_args(argv: list[str]) -> argparse.Namespace:
    description = """
    Dungeon Crawler Rules Engine

    Run the JSON API server, seed the content catalog, recover stuck runs or
    play a dungeon run from the terminal. Configuration can be provided via CLI
    flags or environment variables. If both are present, CLI flags take
    precedence.
    """

    epilog = dedent(
        """
        Environment variables:
          HOST                        Bind address for the web server (default: 0.0.0.0)
          PORT                        Port for the web server (default: 5000)
          DATABASE_URL                SQLAlchemy database URI (default: sqlite:///instance/crawler.db)
          CRAWLER_STALE_RUN_SECONDS   Age after which a processing run counts as stuck (default: 300)

        Examples:
          # Run the server on the default host and port
          python run.py serve

          # Bind to localhost only and use a different database
          python run.py serve --host 127.0.0.1 --db sqlite:///instance/dev.db

          # Seed (or top up) the content catalog
          python run.py seed

          # Put runs stuck in 'processing' for over a minute back to 'active'
          python run.py recover-stale --max-age 60

          # Create a character and play the first dungeon
          python run.py play --name Aria
        """
    )

    parser = argparse.ArgumentParser(
        prog="crawler",
        description=dedent(description),
        epilog=epilog,
        formatter_class=argparse.RawTextHelpFormatter,
    )

    parser.add_argument(
        "--env-file",
        dest="env_file",
        help="Path to a .env file to load before processing flags",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"Dungeon Crawler {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command")

    # serve subcommand
    serve_parser = subparsers.add_parser(
        "serve",
        help="Run the JSON API server",
        formatter_class=argparse.RawTextHelpFormatter,
        description="Run the Flask server exposing the character and run endpoints",
    )
    serve_parser.add_argument(
        "--host",
        default=None,
        help="Host interface to bind (default: env HOST or 0.0.0.0)",
    )
    serve_parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port to listen on (default: env PORT or 5000)",
    )
    serve_parser.add_argument(
        "--db",
        dest="db_uri",
        default=None,
        help="Database URI (default: env DATABASE_URL or sqlite:///instance/crawler.db)",
    )
    serve_parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable Flask debug mode with verbose error pages",
    )
    serve_parser.set_defaults(command="serve")

    # seed subcommand
    seed_parser = subparsers.add_parser(
        "seed",
        help="Create tables and insert any missing built-in content",
        description="Idempotently seed damage types, status effects, items, enemies and dungeons.",
    )
    seed_parser.set_defaults(command="seed")

    # recover-stale subcommand
    recover_parser = subparsers.add_parser(
        "recover-stale",
        help="Restore runs stuck in 'processing' to 'active'",
        description="Restore runs whose pending action is older than --max-age seconds.",
    )
    recover_parser.add_argument(
        "--max-age",
        dest="max_age",
        type=int,
        default=None,
        help="Age threshold in seconds (default: env CRAWLER_STALE_RUN_SECONDS or 300)",
    )
    recover_parser.set_defaults(command="recover-stale")

    # play subcommand
    play_parser = subparsers.add_parser(
        "play",
        help="Play a dungeon run from the terminal",
        description="Type actions at the prompt; each turn's mechanics are printed. 'quit' leaves the loop.",
    )
    who = play_parser.add_mutually_exclusive_group(required=True)
    who.add_argument("--character", dest="character_id", type=int, help="Existing character id")
    who.add_argument("--name", help="Create a new character with this name")
    play_parser.add_argument(
        "--dungeon",
        dest="dungeon_id",
        type=int,
        default=None,
        help="Dungeon id (default: the first listed dungeon)",
    )
    play_parser.set_defaults(command="play")

    if not argv:
        argv = ["serve"]

    args = parser.parse_args(argv)
    return args


def main(argv: list[str]) -> int:
    args = parse_args(argv)
    if getattr(args, "env_file", None):
        load_dotenv(args.env_file)
    else:
        # Load default .env if present (no error if missing)
        load_dotenv()

    host = getattr(args, "host", None) or os.getenv("HOST", "0.0.0.0")
    port = int(getattr(args, "port", None) or os.getenv("PORT", "5000"))
    db_uri_cli = getattr(args, "db_uri", None)

    # Make DATABASE_URL available to the Flask app BEFORE importing it
    if db_uri_cli:
        os.environ["DATABASE_URL"] = db_uri_cli
    db_banner = db_uri_cli or os.getenv("DATABASE_URL") or "auto (instance/crawler.db)"

    def handle_sigint(sig, frame):
        print("\n[INFO] Shutting down...")
        sys.exit(0)

    signal.signal(signal.SIGINT, handle_sigint)

    mode = (getattr(args, "command", None) or "serve").lower()

    # Import the app only after environment is ready
    from crawler import server
    from crawler.logging_utils import log

    log.info(event="startup", mode=mode, version=__version__, db=db_banner)

    if mode == "seed":
        from crawler import app, create_app
        from crawler.seed_content import seed_all

        create_app(seed=False)
        with app.app_context():
            counts = seed_all()
        print("Seeded: " + ", ".join(f"{k}={v}" for k, v in counts.items()))
        return 0
    elif mode == "recover-stale":
        from crawler import app, create_app
        from crawler.services.run_service import recover_stale_runs

        create_app(seed=False)
        with app.app_context():
            recovered = recover_stale_runs(args.max_age)
        print(f"Recovered {len(recovered)} run(s)" + (f": {', '.join(map(str, recovered))}" if recovered else ""))
        return 0
    elif mode == "play":
        from crawler import app, create_app
        from crawler.services import character_service, persistence

        create_app()
        with app.app_context():
            player_id = args.character_id
            if player_id is None:
                player_id = character_service.create_character(args.name).id
                print(f"Created character #{player_id} ({args.name}).")
            dungeon_id = args.dungeon_id
            if dungeon_id is None:
                dungeons = persistence.list_dungeons()
                if not dungeons:
                    print("[ERROR] No dungeons seeded. Run `python run.py seed` first.")
                    return 1
                dungeon_id = dungeons[0].id
        return server.play_loop(player_id, dungeon_id)
    else:
        print("=" * 40)
        print("  Dungeon Crawler Server")
        print("=" * 40)
        print(f"  {'Host:':12} {host}")
        print(f"  {'Port:':12} {port}")
        print(f"  {'Database:':12} {db_banner}")
        print("=" * 40)
        debug = bool(getattr(args, "debug", False) or os.getenv("FLASK_DEBUG") == "1")
        log.info(event="listen", host=host, port=port, debug=debug)
        server.start_server(host=host, port=port, debug=debug)
        return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
