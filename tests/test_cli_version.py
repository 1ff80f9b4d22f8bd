import importlib
import sys

import pytest

from tests.factories import create_player, make_room, start_run_with
from crawler import db
from crawler.engine.records import FloorMap

# run.py is imported as a module; start_server is patched so no socket is opened.


@pytest.fixture()
def run_module(monkeypatch):
    # Fresh import each time (run.py reads VERSION once)
    if "run" in sys.modules:
        del sys.modules["run"]
    mod = importlib.import_module("run")
    return mod


def test_version_flag_outputs_version(run_module, capsys):
    ver = run_module.__version__
    with pytest.raises(SystemExit) as exc:
        run_module.parse_args(["--version"])
    assert exc.value.code == 0
    captured = capsys.readouterr().out
    assert ver in captured
    assert "Dungeon Crawler" in captured


def test_default_command_is_serve(run_module):
    ns = run_module.parse_args([])
    assert ns.command == "serve"


def test_serve_invokes_start_server(monkeypatch, run_module):
    calls = {}

    def fake_start_server(host, port, debug):
        calls.update(host=host, port=port, debug=debug)

    monkeypatch.setenv("PORT", "5555")
    monkeypatch.setenv("HOST", "127.0.0.1")
    import crawler.server as server_mod

    monkeypatch.setattr(server_mod, "start_server", fake_start_server)

    assert run_module.main(["serve"]) == 0
    assert calls == {"host": "127.0.0.1", "port": 5555, "debug": False}


def test_serve_flags_override_env(monkeypatch, run_module):
    calls = {}

    def fake_start_server(host, port, debug):
        calls.update(host=host, port=port, debug=debug)

    monkeypatch.setenv("PORT", "5555")
    import crawler.server as server_mod

    monkeypatch.setattr(server_mod, "start_server", fake_start_server)
    run_module.main(["serve", "--host", "localhost", "--port", "6001", "--debug"])
    assert calls == {"host": "localhost", "port": 6001, "debug": True}


def test_seed_command(run_module, capsys, seeded):
    assert run_module.main(["seed"]) == 0
    out = capsys.readouterr().out
    assert "Seeded: " in out
    assert "items=0" in out


def test_recover_stale_command(run_module, capsys, seeded):
    p = create_player()
    run = start_run_with(p, FloorMap(1, [make_room(1, accessible=True)]))
    run.status = "processing"
    run.pending_since = None
    db.session.commit()

    assert run_module.main(["recover-stale", "--max-age", "60"]) == 0
    assert f"Recovered 1 run(s): {run.id}" in capsys.readouterr().out
