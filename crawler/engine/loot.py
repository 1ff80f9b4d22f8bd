"""Loot resolution against declarative loot rules.

A rule is a dict (``persistence.loot_rules_for_source`` builds them from the
``loot_rules`` table joined with ``items``):

  {
    "item_id": 7, "item_name": "Health Potion", "item_type": "consumable",
    "rarity": "common", "base_value": 10,
    "drop_type": "guaranteed" | "weighted",
    "base_weight": 40,
    "condition_type": "none" | "min_skill" | "min_completions" | "has_item" | "has_not_item",
    "condition_skill_name": ..., "condition_skill_min": ...,
    "condition_min_completions": ..., "condition_requires_item_id": ...,
    "requires_perception": False, "perception_dc": None,
  }

Guaranteed rules drop whenever their condition and perception gate pass.
Eligible weighted rules form one pool; chests and bosses draw from it twice,
everything else once. A single call never returns the same item twice.

Perception here is passive (``level >= dc - 5``), not a d20 roll.

Resolution has no side effects; granting drops is up to the caller.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .dice import weighted_random

DOUBLE_DRAW_SOURCES = ("chest", "boss")


@dataclass
class LootContext:
    perception_level: int = 1
    player_skills: Dict[str, int] = field(default_factory=dict)
    dungeon_completions: int = 0
    player_item_ids: List[int] = field(default_factory=list)


def check_condition(rule: Mapping[str, Any], ctx: LootContext) -> bool:
    kind = rule.get("condition_type") or "none"
    if kind == "none":
        return True
    if kind == "min_skill":
        skill_name = rule.get("condition_skill_name")
        if not skill_name or skill_name not in ctx.player_skills:
            return False
        return ctx.player_skills[skill_name] >= (rule.get("condition_skill_min") or 0)
    if kind == "min_completions":
        return ctx.dungeon_completions >= (rule.get("condition_min_completions") or 0)
    if kind == "has_item":
        return rule.get("condition_requires_item_id") in ctx.player_item_ids
    if kind == "has_not_item":
        return rule.get("condition_requires_item_id") not in ctx.player_item_ids
    return True


def check_perception(rule: Mapping[str, Any], ctx: LootContext) -> bool:
    if not rule.get("requires_perception"):
        return True
    required = rule.get("perception_dc") or 10
    return (ctx.perception_level or 1) >= required - 5


def make_drop(rule: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        "item_id": rule.get("item_id"),
        "item_name": rule.get("item_name"),
        "item_type": rule.get("item_type"),
        "rarity": rule.get("rarity") or "common",
        "base_value": rule.get("base_value") or 0,
        "quantity": 1,
        "was_hidden": bool(rule.get("requires_perception")),
    }


def resolve_loot(
    source_type: str,
    rules: Optional[Iterable[Mapping[str, Any]]],
    context: Optional[LootContext] = None,
    rng=None,
) -> List[Dict[str, Any]]:
    """Return the drops for one loot source from its rules.

    ``source_type`` only decides how many weighted draws are made.
    """
    rng = rng or random
    ctx = context or LootContext()
    rules = list(rules or ())
    if not rules:
        return []

    drops: List[Dict[str, Any]] = []
    for rule in rules:
        if rule.get("drop_type") != "guaranteed":
            continue
        if check_condition(rule, ctx) and check_perception(rule, ctx):
            drops.append(make_drop(rule))

    eligible = [
        r
        for r in rules
        if r.get("drop_type") == "weighted" and check_condition(r, ctx) and check_perception(r, ctx)
    ]
    if eligible:
        draws = 2 if source_type in DOUBLE_DRAW_SOURCES else 1
        pool = [(r.get("base_weight") or 0, r) for r in eligible]
        for _ in range(draws):
            picked = weighted_random(pool, rng)
            if picked and not any(d["item_id"] == picked.get("item_id") for d in drops):
                drops.append(make_drop(picked))
    return drops


def roll_gold_drop(minimum: int, maximum: int, rng=None) -> int:
    rng = rng or random
    if maximum <= minimum:
        return minimum
    return rng.randint(minimum, maximum)


__all__ = [
    "LootContext",
    "check_condition",
    "check_perception",
    "make_drop",
    "resolve_loot",
    "roll_gold_drop",
]
