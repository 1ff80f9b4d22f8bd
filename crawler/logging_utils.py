"""Minimal structured logging helper.

Wraps print() to emit key=value pairs (or one JSON object per line) with a
timestamp and level, so turn mechanics can be grepped out of server output.

Usage:
    from crawler.logging_utils import get_logger
    log = get_logger("crawler.runs")
    log.info(event="run_started", run_id=3, dungeon="The Sunken Crypt")

Environment:
    CRAWLER_LOG_LEVEL  debug | info | warn | error (default info)
    CRAWLER_LOG_JSON   1/true/yes/on for JSON lines

Non-numeric values are str()'d with spaces replaced. Reserved keys: level, ts.
"""

from __future__ import annotations

import json
import os
import sys
import time

LEVELS = {"debug": 10, "info": 20, "warn": 30, "error": 40}
CURRENT_LEVEL = LEVELS.get(os.getenv("CRAWLER_LOG_LEVEL", "info").lower(), 20)
JSON_MODE = os.getenv("CRAWLER_LOG_JSON", "0").lower() in ("1", "true", "yes", "on")


def _format(level: str, **fields) -> str:
    if JSON_MODE:
        rec = {k: v for k, v in fields.items() if v is not None}
        rec["level"] = level
        rec["ts"] = int(time.time())
        return json.dumps(rec, separators=(",", ":"), default=str)
    parts = [f"level={level}", f"ts={int(time.time())}"]
    for k, v in fields.items():
        if v is None:
            continue
        if isinstance(v, (int, float)):
            parts.append(f"{k}={v}")
        else:
            parts.append(f"{k}={str(v).replace(' ', '_')}")
    return " ".join(parts)


class _Logger:
    def __init__(self, name: str | None = None):
        self.name = name or "crawler"

    def _log(self, lvl: str, **fields):
        if LEVELS[lvl] < CURRENT_LEVEL:
            return
        fields.setdefault("logger", self.name)
        print(_format(lvl, **fields), file=sys.stderr if lvl == "error" else sys.stdout)

    def debug(self, **fields):
        self._log("debug", **fields)

    def info(self, **fields):
        self._log("info", **fields)

    def warn(self, **fields):
        self._log("warn", **fields)

    def error(self, **fields):
        self._log("error", **fields)


_LOGGER_CACHE: dict = {}


def get_logger(name: str) -> _Logger:
    if name not in _LOGGER_CACHE:
        _LOGGER_CACHE[name] = _Logger(name)
    return _LOGGER_CACHE[name]


log = get_logger("crawler")
