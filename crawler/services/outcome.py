"""The per-turn outcome record and its compact narration summary.

``TurnOutcome`` is the only thing a turn hands to front-ends and the narration
layer. It is filled in by the action handlers and ``run_service`` and is never
recomputed downstream.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from crawler.engine.combat import DamageResult, EnemyTurnResult
from crawler.engine.dice import SkillCheckResult
from crawler.engine.intent import Intent


@dataclass
class TurnOutcome:
    action_text: str
    intent: Intent
    starting_hp: int
    checks: List[SkillCheckResult] = field(default_factory=list)
    combat_results: List[Dict[str, Any]] = field(default_factory=list)
    enemy_turns: List[EnemyTurnResult] = field(default_factory=list)
    loot_drops: List[Dict[str, Any]] = field(default_factory=list)
    gold_gained: int = 0
    xp_gained: Dict[str, int] = field(default_factory=dict)
    level_ups: List[Dict[str, Any]] = field(default_factory=list)
    hp_change: int = 0
    updated_player_hp: int = 0
    player_died: bool = False
    room_cleared: bool = False
    run_complete: bool = False
    moved_to_room: Optional[int] = None
    moved_to_floor: Optional[int] = None
    previous_floor: Optional[int] = None
    floor_transition: bool = False
    boss_room_entered: bool = False
    newly_accessible_rooms: List[int] = field(default_factory=list)
    status_effects_applied: List[Dict[str, Any]] = field(default_factory=list)
    status_effects_removed: List[Dict[str, Any]] = field(default_factory=list)
    poison_tick: Optional[Dict[str, Any]] = None
    item_used: Optional[Dict[str, Any]] = None
    items_lost_on_death: List[Dict[str, Any]] = field(default_factory=list)
    flags: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.updated_player_hp = self.starting_hp

    # ── mutation helpers used by the handlers ──

    def change_hp(self, amount: int) -> None:
        self.hp_change += amount
        self.updated_player_hp = self.starting_hp + self.hp_change

    @property
    def hp_depleted(self) -> bool:
        return self.starting_hp + self.hp_change <= 0

    def mark_dead(self) -> None:
        self.player_died = True
        self.updated_player_hp = 0

    def add_check(self, check: SkillCheckResult) -> None:
        self.checks.append(check)

    def add_combat(self, result: DamageResult | None, check: SkillCheckResult, target: str) -> None:
        if result is None:
            self.combat_results.append({"target": target, "missed": True, "attack_check": check.to_dict()})
        else:
            row = result.to_dict()
            row["attack_check"] = check.to_dict()
            row["missed"] = False
            self.combat_results.append(row)

    def add_xp(self, records: List[Dict[str, Any]]) -> None:
        for rec in records:
            self.xp_gained[rec["skill"]] = self.xp_gained.get(rec["skill"], 0) + int(rec.get("xp_gained") or 0)
            if rec.get("leveled_up"):
                self.level_ups.append(rec)

    @property
    def primary_outcome(self) -> str:
        return self.checks[0].outcome if self.checks else "success"

    @property
    def action_type(self) -> str:
        if self.player_died:
            return "death"
        if self.run_complete:
            return "run_complete"
        return "player_action"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action_text,
            "intent": self.intent.type,
            "intent_rule": self.intent.rule,
            "skill": self.intent.skill,
            "checks": [c.to_dict() for c in self.checks],
            "combat_results": list(self.combat_results),
            "enemy_turns": [t.to_dict() for t in self.enemy_turns],
            "loot_drops": list(self.loot_drops),
            "gold_gained": self.gold_gained,
            "xp_gained": dict(self.xp_gained),
            "level_ups": list(self.level_ups),
            "hp_change": self.hp_change,
            "updated_player_hp": self.updated_player_hp,
            "player_died": self.player_died,
            "room_cleared": self.room_cleared,
            "run_complete": self.run_complete,
            "moved_to_room": self.moved_to_room,
            "moved_to_floor": self.moved_to_floor,
            "floor_transition": self.floor_transition,
            "boss_room_entered": self.boss_room_entered,
            "newly_accessible_rooms": list(self.newly_accessible_rooms),
            "status_effects_applied": list(self.status_effects_applied),
            "status_effects_removed": list(self.status_effects_removed),
            "poison_tick": self.poison_tick,
            "item_used": self.item_used,
            "items_lost_on_death": list(self.items_lost_on_death),
            "flags": dict(self.flags),
            "mechanics": summarize_mechanics(self),
        }


# flags copied verbatim into the narration summary when set
SUMMARY_FLAGS = (
    "poison_cured",
    "torch_lit",
    "fungus_lit",
    "lockpick_consumed",
    "no_lockpick",
    "chest_looted",
    "chest_locked",
    "room_already_searched",
    "rest_failed",
    "rested",
    "flee_success",
    "move_blocked",
    "trap_detected",
    "trap_triggered",
    "unequipped_item",
    "completion_gold",
)


def summarize_mechanics(outcome: TurnOutcome) -> Dict[str, Any]:
    """Compact machine-readable turn summary for the narration context window."""
    summary: Dict[str, Any] = {}
    if outcome.checks:
        summary["checks"] = [
            {
                "skill": c.skill,
                "stat": c.governing_stat,
                "roll": c.base_roll,
                "total": c.final_total,
                "dc": c.dc,
                "outcome": c.outcome,
            }
            for c in outcome.checks
        ]
    if outcome.combat_results:
        summary["combat"] = [
            {
                "target": c.get("target"),
                "damage": c.get("damage_dealt", 0),
                "killed": c.get("enemy_died", False),
                "missed": c.get("missed", False),
            }
            for c in outcome.combat_results
        ]
    acted = [t for t in outcome.enemy_turns if t.action != "skip"]
    if acted:
        summary["enemy_actions"] = [{"enemy": t.enemy, "action": t.action, "damage": t.damage} for t in acted]
    if outcome.loot_drops:
        summary["loot"] = [d["item_name"] for d in outcome.loot_drops]
    if outcome.gold_gained > 0:
        summary["gold_gained"] = outcome.gold_gained
    if outcome.hp_change:
        summary["hp_change"] = outcome.hp_change
    if outcome.player_died:
        summary["player_died"] = True
    if outcome.run_complete:
        summary["dungeon_completed"] = True
    if outcome.moved_to_room:
        summary["moved_to_room"] = outcome.moved_to_room
    if outcome.moved_to_floor:
        summary["moved_to_floor"] = outcome.moved_to_floor
    if outcome.poison_tick:
        summary["poison_tick"] = outcome.poison_tick
    if outcome.status_effects_applied:
        summary["status_effects_applied"] = [e.get("type") for e in outcome.status_effects_applied]
    for key in SUMMARY_FLAGS:
        value = outcome.flags.get(key)
        if value:
            summary[key] = value
    return summary


__all__ = ["TurnOutcome", "summarize_mechanics"]
