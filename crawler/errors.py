"""Exceptions surfaced to callers of the run services.

UserError      the request cannot be honoured as asked (no character, no run,
               not enough gold, unknown dungeon or item). Not retryable.
RunStateError  the run exists but is busy or already finished; the caller
               should wait and try again.

Anything else raised while a turn is applied (database errors included) is
propagated unchanged after the run has been put back to ``active``.
"""

from __future__ import annotations


class CrawlerError(Exception):
    code = "crawler_error"

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code

    def to_dict(self):
        return {"ok": False, "error": self.code, "message": self.message}


class UserError(CrawlerError):
    code = "user_error"


class RunStateError(CrawlerError):
    code = "run_not_active"


__all__ = ["CrawlerError", "UserError", "RunStateError"]
