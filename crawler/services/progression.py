"""Skill XP awards and death penalties.

Both functions only stage changes on the session; the caller's turn
transaction commits them together with everything else.
"""

from __future__ import annotations

import math
import random
from typing import Any, Dict, List

from crawler.engine.dice import round_half_up
from crawler.logging_utils import get_logger
from crawler.models.xp import xp_multiplier

from . import persistence

log = get_logger("crawler.progression")


def distribute_xp(player_id: int, skill_name: str, base_xp: int, outcome: str | None = None) -> List[Dict[str, Any]]:
    """Award ``base_xp`` scaled by the check outcome to one skill.

    Returns one record: ``leveled_up`` with old/new levels when the skill
    crossed a level boundary. Unknown skills award nothing.
    """
    xp = max(1, round_half_up(base_xp * xp_multiplier(outcome)))
    change = persistence.award_skill_xp(player_id, skill_name, xp)
    if change is None:
        return []
    if change["new_level"] > change["old_level"]:
        log.info(event="skill_level_up", player_id=player_id, skill=skill_name, level=change["new_level"])
        return [
            {
                "skill": skill_name,
                "xp_gained": xp,
                "leveled_up": True,
                "old_level": change["old_level"],
                "new_level": change["new_level"],
            }
        ]
    return [{"skill": skill_name, "xp_gained": xp, "leveled_up": False}]


def handle_player_death(player_id: int, run_id: int, rng=None) -> Dict[str, Any]:
    """Drop half (rounded up) of this run's non-quest pickups at random, and every quest item."""
    rng = rng or random
    run_items = [e for e in persistence.get_inventory(player_id) if e.acquired_in_run_id == run_id]
    regular = [e for e in run_items if not e.item.is_quest_item]
    quest = [e for e in run_items if e.item.is_quest_item]

    items_lost: List[Dict[str, Any]] = []
    if regular:
        shuffled = list(regular)
        rng.shuffle(shuffled)
        for entry in shuffled[: math.ceil(len(regular) / 2)]:
            items_lost.append({"item_id": entry.item_id, "name": entry.item.name, "quantity": entry.quantity})
            persistence.remove_item(entry.id, entry.quantity)
    for entry in quest:
        items_lost.append(
            {"item_id": entry.item_id, "name": entry.item.name, "quantity": entry.quantity, "was_quest_item": True}
        )
        persistence.remove_item(entry.id, entry.quantity)
    log.info(event="death_items_lost", player_id=player_id, run_id=run_id, count=len(items_lost))
    return {"items_lost": items_lost}


__all__ = ["distribute_xp", "handle_player_death"]
