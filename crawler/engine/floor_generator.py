"""Procedural floor generation.

A floor is a small undirected room graph:

  * room count = 4 + floor // 2, plus a roll of 0..2 (d3 - 1)
  * room 1 is a plain entrance and the only room accessible at the start
  * interior rooms draw a type from ROOM_TYPE_WEIGHTS (trap/locked favoured from floor 2)
  * room 2 is never locked since it is the sole way out of the entrance
  * the last room is the boss room on the final floor, otherwise an exit
  * rooms are chained 1-2-3-...-N; each interior room has a 20% chance of a
    branch edge 2-3 rooms ahead, so the graph stays connected but may loop

Rooms only become accessible when a neighbour is cleared (``clear_room``);
locked rooms additionally need ``unlock_room``.

Enemy spawn entries are plain dicts (see ``persistence.enemy_rules_for_dungeon``)
so this module never touches the database.
"""

from __future__ import annotations

import json
import random
from collections import deque
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set

from .dice import random_dc, roll, round_half_up, weighted_random
from .records import Chest, EnemyInstance, FloorMap, Lock, RestSpot, Room, Trap

ROOM_TYPE_WEIGHTS = {
    "standard": 45,
    "treasure": 15,
    "trap": 15,
    "rest": 10,
    "locked": 10,
}

DEFAULT_SCALING = {"hp_per_tier": 1.3, "damage_per_tier": 1.15, "armor_per_tier": 1.1}

STANDARD_ENEMY_CHANCE = 0.6
TRAP_ENEMY_CHANCE = 0.3
BOSS_ADDS_CHANCE = 0.5
TREASURE_LOCK_CHANCE = 0.4
STANDARD_CHEST_CHANCE = 0.15
BRANCH_CHANCE = 0.2

TRAP_DEFINITIONS = (
    {
        "name": "Poison Dart Trap",
        "damage_type": "piercing",
        "damage": 8,
        "effect": "poison",
        "check": "perception",
        "description": "Thin wires stretch across the corridor at ankle height.",
    },
    {
        "name": "Flame Jet",
        "damage_type": "fire",
        "damage": 12,
        "effect": None,
        "check": "dexterity",
        "description": "Scorch marks blacken the walls. The air smells of oil.",
    },
    {
        "name": "Collapsing Floor",
        "damage_type": "blunt",
        "damage": 10,
        "effect": "stun",
        "check": "perception",
        "description": "The flagstones here seem uneven, slightly loose.",
    },
    {
        "name": "Necrotic Rune",
        "damage_type": "necrotic",
        "damage": 15,
        "effect": None,
        "check": "magic",
        "description": "A faintly glowing sigil is carved into the floor.",
    },
    {
        "name": "Spider Web Ambush",
        "damage_type": "piercing",
        "damage": 6,
        "effect": "stun",
        "check": "perception",
        "description": "Thick webbing covers the doorway ahead.",
    },
)


def _json_field(raw: Any, fallback: Any) -> Any:
    if raw is None:
        return fallback
    if not isinstance(raw, str):
        return raw
    try:
        return json.loads(raw)
    except ValueError:
        return fallback


def room_type_weights(floor_number: int) -> Dict[str, int]:
    weights = dict(ROOM_TYPE_WEIGHTS)
    if floor_number >= 2:
        weights["trap"] += 5
        weights["locked"] += 5
        weights["standard"] -= 10
    return weights


def pick_room_type(floor_number: int, rng=None) -> str:
    pool = [(w, name) for name, w in room_type_weights(floor_number).items()]
    return weighted_random(pool, rng) or "standard"


def create_enemy_instance(rule: Mapping[str, Any], difficulty_tier: int, is_boss: bool, instance_id: str) -> EnemyInstance:
    """Build a runtime enemy from a spawn entry, scaled by tier.

    ``scaled = round(base * factor ** (tier - 1))``. Unparsable JSON content
    falls back to default scaling, no abilities and no resistances.
    """
    scaling = _json_field(rule.get("stat_scaling"), DEFAULT_SCALING)
    if not isinstance(scaling, dict):
        scaling = DEFAULT_SCALING
    abilities = _json_field(rule.get("abilities"), [])
    resistances = _json_field(rule.get("resistances"), {})
    weaknesses = _json_field(rule.get("weaknesses"), {})
    immunities = _json_field(rule.get("effect_immunities"), [])

    exponent = max(0, int(difficulty_tier or 1) - 1)

    def _scaled(base_key: str, factor_key: str) -> int:
        factor = scaling.get(factor_key) or DEFAULT_SCALING[factor_key]
        return round_half_up(float(rule.get(base_key) or 0) * float(factor) ** exponent)

    hp = max(1, _scaled("base_hp", "hp_per_tier"))
    return EnemyInstance(
        enemy_id=int(rule.get("enemy_id") or 0),
        instance_id=instance_id,
        name=rule.get("enemy_name") or rule.get("name") or "Unknown",
        hp_current=hp,
        hp_max=hp,
        damage=_scaled("base_damage", "damage_per_tier"),
        armor=_scaled("base_armor", "armor_per_tier"),
        abilities=abilities if isinstance(abilities, list) else [],
        resistances=resistances if isinstance(resistances, dict) else {},
        weaknesses=weaknesses if isinstance(weaknesses, dict) else {},
        effect_immunities=immunities if isinstance(immunities, list) else [],
        is_boss=is_boss,
        xp_reward=int(rule.get("xp_reward") or 0),
        gold_reward_min=int(rule.get("gold_reward_min") or 0),
        gold_reward_max=int(rule.get("gold_reward_max") or 0),
        ai_descriptor=rule.get("ai_descriptor") or "",
    )


def spawn_enemies(
    enemy_rules: Iterable[Mapping[str, Any]],
    floor_number: int,
    difficulty_tier: int,
    boss_room: bool,
    id_prefix: str,
    rng=None,
) -> List[EnemyInstance]:
    rng = rng or random
    rules = list(enemy_rules)
    regular = [r for r in rules if not r.get("is_boss") and (r.get("spawn_weight") or 0) > 0]
    pool = [(r.get("spawn_weight") or 0, r) for r in regular]
    enemies: List[EnemyInstance] = []

    def _add(rule, boss=False):
        enemies.append(create_enemy_instance(rule, difficulty_tier, boss, f"{id_prefix}-e{len(enemies) + 1}"))

    if boss_room:
        bosses = [r for r in rules if r.get("is_boss")]
        if bosses:
            _add(bosses[0], boss=True)
        if rng.random() < BOSS_ADDS_CHANCE:
            for _ in range(roll(2, rng)):
                rule = weighted_random(pool, rng)
                if rule:
                    _add(rule)
        return enemies

    if not regular:
        return enemies
    # 1 on floor 1, 1-2 deeper
    count = 1 + int(rng.random() * min(2, floor_number))
    for _ in range(count):
        rule = weighted_random(pool, rng)
        if rule:
            _add(rule)
    return enemies


def generate_trap(dc_range: Mapping[str, int], rng=None) -> Trap:
    rng = rng or random
    trap = rng.choice(TRAP_DEFINITIONS)
    return Trap(dc=random_dc(dc_range, rng), **trap)


def _create_room(
    room_number: int,
    room_type: str,
    floor_number: int,
    dc_range: Mapping[str, int],
    difficulty_tier: int,
    enemy_rules: List[Mapping[str, Any]],
    rng,
    entrance: bool = False,
    exit_room: bool = False,
) -> Room:
    room = Room(room_number=room_number, type=room_type, is_accessible=room_number == 1)
    prefix = f"f{floor_number}-r{room_number}"

    if room_type == "standard" and not entrance:
        if rng.random() < STANDARD_ENEMY_CHANCE:
            room.enemies = spawn_enemies(enemy_rules, floor_number, difficulty_tier, False, prefix, rng)
    elif room_type == "trap":
        if rng.random() < TRAP_ENEMY_CHANCE:
            room.enemies = spawn_enemies(enemy_rules, floor_number, difficulty_tier, False, prefix, rng)
        room.trap = generate_trap(dc_range, rng)
    elif room_type == "boss":
        room.enemies = spawn_enemies(enemy_rules, floor_number, difficulty_tier, True, prefix, rng)
        room.is_boss_room = True

    if room_type == "treasure":
        room.chest = Chest(is_locked=rng.random() < TREASURE_LOCK_CHANCE)
        if room.chest.is_locked:
            room.chest.lock_dc = random_dc(dc_range, rng)
    elif room_type == "standard" and not entrance and rng.random() < STANDARD_CHEST_CHANCE:
        room.chest = Chest()

    if room_type == "locked":
        harder = {"min": int(dc_range["min"]) + 2, "max": int(dc_range["max"]) + 2}
        room.lock = Lock(lock_dc=random_dc(harder, rng))
        room.is_accessible = False

    if room_type == "rest":
        room.rest = RestSpot(heal_percent=0.2 + rng.random() * 0.15)

    room.is_exit = exit_room
    return room


def _link(a: Room, b: Room) -> None:
    if b.room_number not in a.connections:
        a.connections.append(b.room_number)
    if a.room_number not in b.connections:
        b.connections.append(a.room_number)


def generate_connections(rooms: List[Room], rng=None) -> None:
    rng = rng or random
    for i in range(len(rooms) - 1):
        _link(rooms[i], rooms[i + 1])
    for i in range(1, len(rooms) - 2):
        if rng.random() < BRANCH_CHANCE:
            target = i + 2 + int(rng.random() * min(2, len(rooms) - i - 2))
            if target < len(rooms):
                _link(rooms[i], rooms[target])
    if rooms:
        rooms[0].is_accessible = True


def generate_floor(
    floor_number: int,
    is_final_floor: bool,
    enemy_rules: Iterable[Mapping[str, Any]],
    dc_range: Mapping[str, int],
    difficulty_tier: int = 1,
    rng=None,
) -> FloorMap:
    rng = rng or random
    rules = list(enemy_rules)
    room_count = 4 + floor_number // 2 + roll(3, rng) - 1

    rooms = [_create_room(1, "standard", floor_number, dc_range, difficulty_tier, rules, rng, entrance=True)]
    for number in range(2, room_count):
        room_type = pick_room_type(floor_number, rng)
        if number == 2 and room_type == "locked":
            room_type = "standard"
        rooms.append(_create_room(number, room_type, floor_number, dc_range, difficulty_tier, rules, rng))

    if is_final_floor:
        rooms.append(_create_room(room_count, "boss", floor_number, dc_range, difficulty_tier, rules, rng))
    else:
        rooms.append(
            _create_room(room_count, "standard", floor_number, dc_range, difficulty_tier, rules, rng, exit_room=True)
        )

    generate_connections(rooms, rng)
    return FloorMap(floor_number=floor_number, rooms=rooms)


def get_room(floor_map: FloorMap, room_number: Optional[int]) -> Optional[Room]:
    return floor_map.room(room_number)


def clear_room(floor_map: FloorMap, room_number: int) -> List[int]:
    """Mark a room cleared and open its non-locked neighbours.

    Returns the room numbers that became accessible by this call.
    """
    room = floor_map.room(room_number)
    if room is None:
        return []
    room.is_cleared = True
    opened = []
    for number in room.connections:
        neighbour = floor_map.room(number)
        if neighbour and not neighbour.is_accessible and neighbour.type != "locked":
            neighbour.is_accessible = True
            opened.append(number)
    return opened


def unlock_room(floor_map: FloorMap, room_number: int) -> bool:
    room = floor_map.room(room_number)
    if room is None:
        return False
    room.is_accessible = True
    if room.lock:
        room.lock.is_picked = True
    return True


def reachable_rooms(floor_map: FloorMap, start: int = 1) -> Set[int]:
    """Room numbers reachable from ``start`` over connections, ignoring access flags."""
    if floor_map.room(start) is None:
        return set()
    seen = {start}
    q = deque([start])
    while q:
        current = floor_map.room(q.popleft())
        for number in current.connections if current else []:
            if number not in seen and floor_map.room(number) is not None:
                seen.add(number)
                q.append(number)
    return seen


def is_connected(floor_map: FloorMap) -> bool:
    return reachable_rooms(floor_map) == {r.room_number for r in floor_map.rooms}


__all__ = [
    "ROOM_TYPE_WEIGHTS",
    "TRAP_DEFINITIONS",
    "room_type_weights",
    "pick_room_type",
    "create_enemy_instance",
    "spawn_enemies",
    "generate_trap",
    "generate_connections",
    "generate_floor",
    "get_room",
    "clear_room",
    "unlock_room",
    "reachable_rooms",
    "is_connected",
]
