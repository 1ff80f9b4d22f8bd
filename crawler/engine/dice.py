"""Dice rolls, stat modifiers and d20 skill checks.

Every function takes an optional ``rng`` (anything exposing ``random()``,
``randint()``, ``choice()`` and ``shuffle()``) and falls back to the module level
``random`` functions. Tests pass a seeded ``random.Random`` or a scripted source
to pin outcomes without patching call sites.

Outcome bands for a skill check, checked in order:

  natural roll >= crit range   critical_success
  natural roll == 1            critical_failure
  total >= dc                  success
  total >= dc - 2              partial
  otherwise                    failure

``passed`` is true for success, critical_success and partial.
"""

from __future__ import annotations

import math
import random
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

STAT_NAMES = ("strength", "dexterity", "constitution", "intelligence", "wisdom", "charisma")

SKILL_STAT_MAP = {
    "melee": "strength",
    "ranged": "dexterity",
    "magic": "intelligence",
    "stealth": "dexterity",
    "perception": "wisdom",
    "persuasion": "charisma",
    "lockpicking": "dexterity",
    "survival": "wisdom",
    "crafting": "intelligence",
    "alchemy": "intelligence",
}

SKILL_NAMES = tuple(SKILL_STAT_MAP.keys())

PASSING_OUTCOMES = ("success", "critical_success", "partial")


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positives (2.5 -> 3), unlike ``round``."""
    return int(math.floor(value + 0.5))


def roll(sides: int = 20, rng=None) -> int:
    rng = rng or random
    return rng.randint(1, sides)


def roll_multiple(count: int, sides: int = 6, rng=None) -> Dict[str, Any]:
    rolls = [roll(sides, rng) for _ in range(count)]
    return {"rolls": rolls, "total": sum(rolls)}


def roll_stat(rng=None) -> int:
    """3d6, range 3-18."""
    return roll_multiple(3, 6, rng)["total"]


def roll_base_stats(rng=None) -> Dict[str, int]:
    return {name: roll_stat(rng) for name in STAT_NAMES}


def stat_modifier(value: int) -> int:
    return (int(value) - 10) // 2


def governing_stat(skill_name: str) -> Optional[str]:
    return SKILL_STAT_MAP.get(skill_name)


def _skill_level(skills: Mapping[str, Any] | None, skill_name: str) -> int:
    if not skills:
        return 1
    entry = skills.get(skill_name)
    if entry is None:
        return 1
    level = entry if isinstance(entry, int) else getattr(entry, "level", None)
    if level is None and isinstance(entry, Mapping):
        level = entry.get("level")
    return int(level) if level else 1


@dataclass(frozen=True)
class PerkBonus:
    name: str
    effect: int


@dataclass(frozen=True)
class SkillCheckResult:
    """Immutable record of one resolved d20 check."""

    skill: str
    base_roll: int
    roll_details: Dict[str, Any]
    stat_modifier: int
    governing_stat: Optional[str]
    stat_value: int
    skill_level: int
    skill_bonus: int
    perk_bonuses: List[Dict[str, Any]]
    perk_total: int
    final_total: int
    dc: int
    dc_source: str
    dc_origin_id: Optional[int]
    passed: bool
    outcome: str
    is_critical: bool
    is_fumble: bool
    target: Optional[str] = field(default=None)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _d20(advantage: bool, disadvantage: bool, rng) -> tuple[int, Dict[str, Any]]:
    if advantage and not disadvantage:
        r1, r2 = roll(20, rng), roll(20, rng)
        used = max(r1, r2)
        return used, {"type": "advantage", "rolls": [r1, r2], "used": used}
    if disadvantage and not advantage:
        r1, r2 = roll(20, rng), roll(20, rng)
        used = min(r1, r2)
        return used, {"type": "disadvantage", "rolls": [r1, r2], "used": used}
    r = roll(20, rng)
    return r, {"type": "normal", "rolls": [r], "used": r}


def classify(base_roll: int, total: int, dc: int, crit_range: int = 20) -> str:
    if base_roll >= crit_range:
        return "critical_success"
    if base_roll == 1:
        return "critical_failure"
    if total >= dc:
        return "success"
    if total >= dc - 2:
        return "partial"
    return "failure"


def skill_check(
    skill_name: str,
    dc: int,
    base_stats: Mapping[str, int] | None = None,
    skills: Mapping[str, Any] | None = None,
    crit_range: int = 20,
    perk_bonuses: Sequence[PerkBonus | Mapping[str, Any]] = (),
    advantage: bool = False,
    disadvantage: bool = False,
    dc_source: str = "skill_check",
    dc_origin_id: Optional[int] = None,
    target: Optional[str] = None,
    rng=None,
) -> SkillCheckResult:
    """Roll one d20 check for ``skill_name`` against ``dc``.

    ``skills`` maps skill name to a level (int, mapping with ``level`` or an
    object with a ``level`` attribute). Missing stats count as 10 and missing
    skills as level 1. Advantage and disadvantage together cancel out.
    """
    base_roll, details = _d20(advantage, disadvantage, rng)

    stat_name = governing_stat(skill_name)
    stat_value = 10
    if stat_name and base_stats:
        stat_value = int(base_stats.get(stat_name) or 10)
    mod = stat_modifier(stat_value)
    level = _skill_level(skills, skill_name)
    skill_bonus = level // 10

    perks = []
    for p in perk_bonuses or ():
        if isinstance(p, PerkBonus):
            perks.append({"name": p.name, "effect": p.effect})
        else:
            perks.append({"name": p.get("name", ""), "effect": int(p.get("effect") or 0)})
    perk_total = sum(p["effect"] for p in perks)

    total = base_roll + mod + skill_bonus + perk_total
    outcome = classify(base_roll, total, dc, crit_range)
    return SkillCheckResult(
        skill=skill_name,
        base_roll=base_roll,
        roll_details=details,
        stat_modifier=mod,
        governing_stat=stat_name,
        stat_value=stat_value,
        skill_level=level,
        skill_bonus=skill_bonus,
        perk_bonuses=perks,
        perk_total=perk_total,
        final_total=total,
        dc=dc,
        dc_source=dc_source,
        dc_origin_id=dc_origin_id,
        passed=outcome in PASSING_OUTCOMES,
        outcome=outcome,
        is_critical=base_roll >= crit_range,
        is_fumble=base_roll == 1,
        target=target,
    )


@dataclass(frozen=True)
class DamageRoll:
    raw_damage: int
    mitigated_damage: int
    armor_reduced: int
    resistance_multiplier: float
    resistance_applied: bool
    is_critical: bool


def roll_damage(
    base_damage: float,
    weapon_bonus: int = 0,
    is_critical: bool = False,
    target_armor: int = 0,
    resistance_multiplier: float = 1.0,
    rng=None,
) -> DamageRoll:
    """Roll damage with +/-20% variance, crit doubling, resistance then armor.

    At least 1 damage always gets through.
    """
    rng = rng or random
    variance = 0.8 + rng.random() * 0.4
    raw = round_half_up((base_damage + weapon_bonus) * variance)
    if is_critical:
        raw *= 2
    after_resistance = round_half_up(raw * resistance_multiplier)
    mitigated = max(1, after_resistance - target_armor)
    return DamageRoll(
        raw_damage=raw,
        mitigated_damage=mitigated,
        armor_reduced=max(0, min(target_armor, after_resistance - 1)),
        resistance_multiplier=resistance_multiplier,
        resistance_applied=raw != after_resistance,
        is_critical=is_critical,
    )


def random_dc(dc_range: Mapping[str, int], rng=None) -> int:
    rng = rng or random
    lo = int(dc_range.get("min", 10))
    hi = int(dc_range.get("max", lo))
    if hi < lo:
        hi = lo
    return rng.randint(lo, hi)


def weighted_random(pool: Sequence[tuple[float, Any]], rng=None) -> Any:
    """Pick one item from ``[(weight, item), ...]``; None when total weight <= 0."""
    rng = rng or random
    total = sum(max(0.0, float(w)) for w, _ in pool)
    if total <= 0:
        return None
    pivot = rng.random() * total
    acc = 0.0
    chosen = None
    for weight, item in pool:
        if float(weight) <= 0:
            continue
        chosen = item
        acc += float(weight)
        if pivot <= acc:
            return item
    return chosen


_OUTCOME_LABELS = {
    "critical_success": "CRITICAL SUCCESS",
    "success": "Success",
    "partial": "Partial Success",
    "failure": "Failure",
    "critical_failure": "CRITICAL FAILURE",
}


def format_check(result: SkillCheckResult) -> str:
    """Render a check as a single line, e.g. ``d20 15 (strength +2, skill +2) = 19 vs DC 12: Success``."""
    kind = result.roll_details.get("type")
    if kind in ("advantage", "disadvantage"):
        rolls = ", ".join(str(r) for r in result.roll_details.get("rolls", []))
        head = f"d20 ({kind}) [{rolls}] -> {result.base_roll}"
    else:
        head = f"d20 {result.base_roll}"
    mods = []
    if result.stat_modifier:
        sign = "+" if result.stat_modifier > 0 else ""
        mods.append(f"{result.governing_stat} {sign}{result.stat_modifier}")
    if result.skill_bonus > 0:
        mods.append(f"skill +{result.skill_bonus}")
    if result.perk_total > 0:
        mods.append(f"perks +{result.perk_total}")
    if mods:
        head += f" ({', '.join(mods)})"
    return f"{head} = {result.final_total} vs DC {result.dc}: {_OUTCOME_LABELS.get(result.outcome, result.outcome)}"


__all__ = [
    "SKILL_STAT_MAP",
    "SKILL_NAMES",
    "STAT_NAMES",
    "PerkBonus",
    "SkillCheckResult",
    "DamageRoll",
    "round_half_up",
    "roll",
    "roll_multiple",
    "roll_stat",
    "roll_base_stats",
    "stat_modifier",
    "governing_stat",
    "classify",
    "skill_check",
    "roll_damage",
    "random_dc",
    "weighted_random",
    "format_check",
]
