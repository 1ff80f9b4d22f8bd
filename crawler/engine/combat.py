"""Enemy turns, damage against enemies and the equipped-gear helpers combat needs.

Equipped items are the dicts returned by ``persistence.equipped_items``; their
``stat_modifiers`` may still be a JSON string when they come straight from a
row, so every helper goes through ``item_modifiers``.

Enemy abilities are content data:

  {"name": "Venomous Bite", "base_dc": 11, "damage_multiplier": 0.8,
   "check_type": "melee", "damage_type": "poison",
   "effect_chance": 0.4, "effect_value": {"status": "poison", "duration_actions": 5},
   "cooldown_rounds": 0, "max_charges": None,
   "trigger_condition": {"type": "hp_threshold_below", "value": 0.5}}
"""

from __future__ import annotations

import json
import math
import random
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional

from crawler.logging_utils import get_logger

from .dice import DamageRoll, SkillCheckResult, roll_damage, round_half_up, skill_check
from .loot import LootContext, resolve_loot, roll_gold_drop
from .records import EnemyInstance, RoomState

log = get_logger("crawler.combat")

DEFAULT_ABILITY_DC = 12
DEFAULT_EFFECT_DURATION = 3
DEFAULT_CRIT_RANGE = 20
UNARMED_DAMAGE_TYPE = "blunt"


def item_modifiers(item: Mapping[str, Any]) -> Dict[str, Any]:
    mods = item.get("stat_modifiers")
    if isinstance(mods, str):
        try:
            mods = json.loads(mods)
        except ValueError:
            return {}
    return mods if isinstance(mods, dict) else {}


def _equipped_weapon(equipped: Iterable[Mapping[str, Any]]) -> Optional[Mapping[str, Any]]:
    for item in equipped:
        if item.get("item_type") == "weapon":
            return item
    return None


def calculate_player_armor(equipped: Iterable[Mapping[str, Any]]) -> int:
    return sum(int(item_modifiers(i).get("armor") or 0) for i in equipped)


def _multiplier(table: Any, damage_type: Optional[str]) -> float:
    """Damage multiplier for ``damage_type``; 1.0 when absent or not a number."""
    if not damage_type or not isinstance(table, Mapping):
        return 1.0
    value = table.get(damage_type)
    if value is None:
        return 1.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 1.0


def calculate_player_resistance(equipped: Iterable[Mapping[str, Any]], damage_type: Optional[str]) -> float:
    if not damage_type:
        return 1.0
    multiplier = 1.0
    for item in equipped:
        resist = item_modifiers(item).get("resistance") or {}
        if isinstance(resist, dict) and resist.get(damage_type):
            multiplier *= _multiplier(resist, damage_type)
    return multiplier


def weapon_damage_bonus(equipped: Iterable[Mapping[str, Any]]) -> int:
    weapon = _equipped_weapon(equipped)
    return int(item_modifiers(weapon).get("damage_bonus") or 0) if weapon else 0


def weapon_crit_range(equipped: Iterable[Mapping[str, Any]]) -> int:
    weapon = _equipped_weapon(equipped)
    return int(weapon.get("base_crit_range") or DEFAULT_CRIT_RANGE) if weapon else DEFAULT_CRIT_RANGE


def weapon_damage_type(equipped: Iterable[Mapping[str, Any]]) -> str:
    weapon = _equipped_weapon(equipped)
    return (weapon.get("damage_type") or UNARMED_DAMAGE_TYPE) if weapon else UNARMED_DAMAGE_TYPE


def is_ranged_weapon_equipped(equipped: Iterable[Mapping[str, Any]]) -> bool:
    weapon = _equipped_weapon(equipped)
    return bool(weapon) and weapon.get("item_subtype") == "ranged"


@dataclass
class EnemyTurnResult:
    enemy: str
    instance_id: str
    action: str
    damage: int = 0
    effects: List[Dict[str, Any]] = field(default_factory=list)
    dodge_check: Optional[SkillCheckResult] = None
    damage_roll: Optional[DamageRoll] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enemy": self.enemy,
            "instance_id": self.instance_id,
            "action": self.action,
            "damage": self.damage,
            "effects": list(self.effects),
            "dodge_check": self.dodge_check.to_dict() if self.dodge_check else None,
        }


def _ability_ready(enemy: EnemyInstance, ability: Mapping[str, Any]) -> bool:
    name = ability.get("name")
    if ability.get("cooldown_rounds") and enemy.ability_cooldowns.get(name, 0) > 0:
        return False
    max_charges = ability.get("max_charges")
    if max_charges is not None and enemy.ability_charges.get(name, max_charges) <= 0:
        return False
    trigger = ability.get("trigger_condition")
    if isinstance(trigger, dict) and enemy.hp_max:
        ratio = enemy.hp_current / enemy.hp_max
        value = float(trigger.get("value") or 0)
        if trigger.get("type") == "hp_threshold_below" and ratio > value:
            return False
        if trigger.get("type") == "hp_threshold_above" and ratio < value:
            return False
    return True


def pick_enemy_ability(enemy: EnemyInstance, rng=None) -> Optional[Dict[str, Any]]:
    rng = rng or random
    available = [a for a in enemy.abilities if isinstance(a, dict) and _ability_ready(enemy, a)]
    if not available:
        return None
    return rng.choice(available)


def _dodge_skill(check_type: Optional[str]) -> str:
    if check_type in ("melee", "ranged"):
        return check_type
    return "survival"


def _effect_value(ability: Mapping[str, Any]) -> Dict[str, Any]:
    value = ability.get("effect_value")
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            return {}
    return value if isinstance(value, dict) else {}


def process_enemy_turn(
    enemy: EnemyInstance,
    base_stats: Mapping[str, int],
    skills: Mapping[str, Any],
    equipped: List[Mapping[str, Any]],
    rng=None,
) -> EnemyTurnResult:
    """Resolve one enemy's action against the player.

    The player makes a defensive check against the ability DC: a partial
    success halves the hit, a full success avoids it, anything else (or a
    natural 1) takes the full hit and may pick up the ability's effect.
    """
    rng = rng or random
    if enemy.is_dead or enemy.skip_next_action:
        enemy.skip_next_action = False
        return EnemyTurnResult(enemy=enemy.name, instance_id=enemy.instance_id, action="skip")

    ability = pick_enemy_ability(enemy, rng)
    if ability is None:
        return EnemyTurnResult(enemy=enemy.name, instance_id=enemy.instance_id, action="idle")

    name = ability.get("name") or "Attack"
    if ability.get("cooldown_rounds"):
        enemy.ability_cooldowns[name] = int(ability["cooldown_rounds"])
    if ability.get("max_charges") is not None:
        enemy.ability_charges[name] = enemy.ability_charges.get(name, ability["max_charges"]) - 1

    armor = calculate_player_armor(equipped)
    resistance = calculate_player_resistance(equipped, ability.get("damage_type"))
    dodge = skill_check(
        _dodge_skill(ability.get("check_type")),
        int(ability.get("base_dc") or DEFAULT_ABILITY_DC),
        base_stats=base_stats,
        skills=skills,
        dc_source="enemy_ability",
        target=enemy.name,
        rng=rng,
    )
    result = EnemyTurnResult(enemy=enemy.name, instance_id=enemy.instance_id, action=name, dodge_check=dodge)

    if dodge.passed and not dodge.is_fumble:
        if dodge.outcome == "partial":
            dmg = roll_damage(enemy.damage, target_armor=armor, resistance_multiplier=resistance, rng=rng)
            result.damage = dmg.mitigated_damage // 2
            result.damage_roll = dmg
        return result

    multiplier = float(ability.get("damage_multiplier") or 1.0)
    dmg = roll_damage(enemy.damage * multiplier, target_armor=armor, resistance_multiplier=resistance, rng=rng)
    result.damage = dmg.mitigated_damage
    result.damage_roll = dmg

    chance = ability.get("effect_chance")
    value = _effect_value(ability)
    if chance and value and rng.random() < float(chance):
        result.effects.append(
            {
                "type": value.get("status") or ability.get("effect_category"),
                "duration": int(value.get("duration_actions") or DEFAULT_EFFECT_DURATION),
                "source": enemy.name,
            }
        )
    return result


@dataclass
class DamageResult:
    target: str
    instance_id: str
    damage_dealt: int
    raw_damage: int
    damage_type: str
    resistance_multiplier: float
    armor_reduced: int
    enemy_died: bool = False
    loot: List[Dict[str, Any]] = field(default_factory=list)
    gold_drop: int = 0
    xp_reward: int = 0
    enemy_hp_remaining: int = 0

    @property
    def resistance_applied(self) -> bool:
        return self.resistance_multiplier != 1.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target": self.target,
            "damage_dealt": self.damage_dealt,
            "damage_type": self.damage_type,
            "resistance_applied": self.resistance_applied,
            "enemy_died": self.enemy_died,
            "enemy_hp_remaining": self.enemy_hp_remaining,
            "loot": [d["item_name"] for d in self.loot],
            "gold_drop": self.gold_drop,
        }


def damage_enemy(
    enemy: EnemyInstance,
    damage: int,
    damage_type: str,
    room_state: RoomState,
    loot_context: Optional[LootContext] = None,
    rng=None,
    loot_rules: Optional[List[Mapping[str, Any]]] = None,
) -> DamageResult:
    """Apply resistance then armor (at least 1 gets through) and handle death.

    On death the enemy's loot source (``boss`` or ``enemy_kill``) is resolved and
    a gold reward rolled; combat ends once every enemy in the room is down.
    """
    resistance = _multiplier(enemy.resistances, damage_type)
    after_resistance = round_half_up(damage * resistance)
    net = max(1, after_resistance - enemy.armor)
    enemy.hp_current -= net

    result = DamageResult(
        target=enemy.name,
        instance_id=enemy.instance_id,
        damage_dealt=net,
        raw_damage=damage,
        damage_type=damage_type,
        resistance_multiplier=resistance,
        armor_reduced=max(0, after_resistance - net),
    )

    if enemy.hp_current <= 0:
        enemy.hp_current = 0
        enemy.is_dead = True
        result.enemy_died = True
        source = "boss" if enemy.is_boss else "enemy_kill"
        result.loot = resolve_loot(source, loot_rules, loot_context, rng)
        result.gold_drop = roll_gold_drop(enemy.gold_reward_min, enemy.gold_reward_max, rng)
        result.xp_reward = enemy.xp_reward
        if all(e.is_dead for e in room_state.enemies):
            room_state.is_combat_active = False
        log.info(event="enemy_killed", enemy=enemy.name, boss=enemy.is_boss, loot=len(result.loot))
    result.enemy_hp_remaining = enemy.hp_current
    return result


def tick_cooldowns(room_state: RoomState) -> None:
    for enemy in room_state.enemies:
        if enemy.is_dead:
            continue
        for name, left in enemy.ability_cooldowns.items():
            if left > 0:
                enemy.ability_cooldowns[name] = left - 1
    room_state.round_number = (room_state.round_number or 0) + 1


FLEE_DAMAGE_MULTIPLIERS = {"critical_success": 0.0, "success": 0.25, "partial": 0.5}


def flee_damage(enemy: EnemyInstance, outcome: str) -> int:
    """Opportunity hit a fleeing player takes from one living enemy."""
    mult = FLEE_DAMAGE_MULTIPLIERS.get(outcome, 1.0)
    return round_half_up(enemy.damage * mult)


def attack_damage(stat_value: int, weapon_bonus: int) -> int:
    """Base hit: 5 + a third of the governing stat, plus the weapon's bonus."""
    return round_half_up(5 + stat_value / 3) + weapon_bonus


def attack_dc(enemy: EnemyInstance) -> int:
    return 10 + math.floor(enemy.armor / 2) + enemy.dc_modifier


__all__ = [
    "EnemyTurnResult",
    "DamageResult",
    "FLEE_DAMAGE_MULTIPLIERS",
    "item_modifiers",
    "calculate_player_armor",
    "calculate_player_resistance",
    "weapon_damage_bonus",
    "weapon_crit_range",
    "weapon_damage_type",
    "is_ranged_weapon_equipped",
    "pick_enemy_ability",
    "process_enemy_turn",
    "damage_enemy",
    "tick_cooldowns",
    "flee_damage",
    "attack_damage",
    "attack_dc",
]
