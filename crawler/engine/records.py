"""Typed run/floor records and their JSON codec.

Run state lives in a handful of JSON columns (room state, run statistics, floor
maps). Those blobs are decoded into the dataclasses below exactly once when a run
is loaded and encoded once when it is saved; engine code only ever touches the
typed objects.

Every encoded blob carries ``"v": STATE_VERSION``. Decoding is forgiving: missing
keys take their dataclass defaults, unknown keys are ignored, and a blob that is
not valid JSON decodes to an empty record instead of raising.

Enemy instances are owned by the room they were generated into. ``RoomState``
holds a runtime-only ``enemies`` view bound to the current room's list, so damage
applied during a turn lands on the floor map that is saved afterwards.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, List, Optional

STATE_VERSION = 1

ROOM_TYPES = ("standard", "treasure", "trap", "rest", "locked", "boss")


def _plain(cls, data: Dict[str, Any] | None, skip: tuple = ()) -> Dict[str, Any]:
    """Pick the scalar fields of ``cls`` that are present in ``data``."""
    if not isinstance(data, dict):
        return {}
    out = {}
    for f in fields(cls):
        if f.name in skip or f.name not in data:
            continue
        out[f.name] = data[f.name]
    return out


def _load_json(raw: Any, fallback: Any) -> Any:
    if raw is None or raw == "":
        return fallback
    if isinstance(raw, (dict, list)):
        return raw
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        return fallback


@dataclass
class StatusEffect:
    type: str
    duration: int
    damage_per_tick: int = 0
    source: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StatusEffect":
        base = _plain(cls, data)
        base.setdefault("type", "unknown")
        base.setdefault("duration", 0)
        return cls(**base)


@dataclass
class RunStats:
    damage_taken: int = 0
    damage_dealt: int = 0
    enemies_killed: int = 0
    rooms_cleared: int = 0
    torch_lit: bool = False
    fungus_lit: bool = False
    status_effects: List[StatusEffect] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any] | None) -> "RunStats":
        base = _plain(cls, data, skip=("status_effects",))
        effects = (data.get("status_effects") or []) if isinstance(data, dict) else []
        return cls(**base, status_effects=[StatusEffect.from_dict(e) for e in effects if isinstance(e, dict)])

    def has_effect(self, effect_type: str) -> bool:
        return any(e.type == effect_type for e in self.status_effects)


@dataclass
class EnemyInstance:
    enemy_id: int
    instance_id: str
    name: str
    hp_current: int
    hp_max: int
    damage: int
    armor: int
    abilities: List[Dict[str, Any]] = field(default_factory=list)
    resistances: Dict[str, float] = field(default_factory=dict)
    weaknesses: Dict[str, float] = field(default_factory=dict)
    effect_immunities: List[str] = field(default_factory=list)
    is_boss: bool = False
    is_dead: bool = False
    xp_reward: int = 0
    gold_reward_min: int = 0
    gold_reward_max: int = 0
    ai_descriptor: str = ""
    awareness: str = "idle"  # idle | alert | hostile
    position: str = "guarding"
    position_zone: str = "open"
    dc_modifier: int = 0
    skip_next_action: bool = False
    status_effects: List[Dict[str, Any]] = field(default_factory=list)
    ability_cooldowns: Dict[str, int] = field(default_factory=dict)
    ability_charges: Dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EnemyInstance":
        base = _plain(cls, data)
        base.setdefault("enemy_id", 0)
        base.setdefault("instance_id", "")
        base.setdefault("name", "Unknown")
        base.setdefault("hp_current", 1)
        base.setdefault("hp_max", base["hp_current"])
        base.setdefault("damage", 0)
        base.setdefault("armor", 0)
        base["is_boss"] = bool(base.get("is_boss", False))
        return cls(**base)

    @property
    def is_alive(self) -> bool:
        return not self.is_dead


@dataclass
class Chest:
    is_opened: bool = False
    is_locked: bool = False
    lock_dc: Optional[int] = None
    is_looted: bool = False


@dataclass
class Trap:
    name: str
    damage_type: str
    damage: int
    effect: Optional[str]
    check: str
    description: str
    dc: int
    is_triggered: bool = False
    is_disarmed: bool = False

    @property
    def is_armed(self) -> bool:
        return not self.is_disarmed and not self.is_triggered


@dataclass
class Lock:
    lock_dc: int
    requires_key: bool = False
    is_picked: bool = False


@dataclass
class RestSpot:
    heal_percent: float


@dataclass
class Room:
    room_number: int
    type: str
    is_cleared: bool = False
    is_accessible: bool = False
    connections: List[int] = field(default_factory=list)
    actions_in_room_count: int = 0
    geometry_tags: List[str] = field(default_factory=list)
    enemies: List[EnemyInstance] = field(default_factory=list)
    chest: Optional[Chest] = None
    trap: Optional[Trap] = None
    lock: Optional[Lock] = None
    rest: Optional[RestSpot] = None
    is_exit: bool = False
    is_boss_room: bool = False
    search_count: int = 0
    is_searched: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Room":
        nested = ("enemies", "chest", "trap", "lock", "rest")
        base = _plain(cls, data, skip=nested)
        base.setdefault("room_number", 0)
        base.setdefault("type", "standard")
        room = cls(**base)
        room.enemies = [EnemyInstance.from_dict(e) for e in data.get("enemies") or [] if isinstance(e, dict)]
        if isinstance(data.get("chest"), dict):
            room.chest = Chest(**_plain(Chest, data["chest"]))
        if isinstance(data.get("trap"), dict):
            trap = _plain(Trap, data["trap"])
            trap.setdefault("name", "Trap")
            trap.setdefault("damage_type", "blunt")
            trap.setdefault("damage", 0)
            trap.setdefault("effect", None)
            trap.setdefault("check", "perception")
            trap.setdefault("description", "")
            trap.setdefault("dc", 10)
            room.trap = Trap(**trap)
        if isinstance(data.get("lock"), dict):
            lock = _plain(Lock, data["lock"])
            lock.setdefault("lock_dc", 10)
            room.lock = Lock(**lock)
        if isinstance(data.get("rest"), dict):
            room.rest = RestSpot(heal_percent=float(data["rest"].get("heal_percent", 0.2)))
        return room

    def living_enemies(self) -> List[EnemyInstance]:
        return [e for e in self.enemies if not e.is_dead]


@dataclass
class FloorMap:
    floor_number: int = 1
    rooms: List[Room] = field(default_factory=list)

    def room(self, room_number: int | None) -> Optional[Room]:
        for r in self.rooms:
            if r.room_number == room_number:
                return r
        return None

    def to_json(self) -> str:
        payload = asdict(self)
        payload["v"] = STATE_VERSION
        return json.dumps(payload)

    @classmethod
    def from_json(cls, raw: Any) -> "FloorMap":
        data = _load_json(raw, {})
        if not isinstance(data, dict):
            return cls()
        rooms = [Room.from_dict(r) for r in data.get("rooms") or [] if isinstance(r, dict)]
        try:
            floor_number = int(data.get("floor_number") or 1)
        except (TypeError, ValueError):
            floor_number = 1
        return cls(floor_number=floor_number, rooms=rooms)


@dataclass
class RoomState:
    """Combat/ambient snapshot for the room the player occupies."""

    room_number: int = 1
    is_combat_active: bool = False
    round_number: int = 0
    extra_actions_this_round: int = 0
    # runtime only: bound to the owning room's enemy list, never encoded
    enemies: List[EnemyInstance] = field(default_factory=list, repr=False, compare=False)

    def bind(self, room: Optional[Room]) -> "RoomState":
        self.enemies = room.enemies if room is not None else []
        return self

    def living_enemies(self) -> List[EnemyInstance]:
        return [e for e in self.enemies if not e.is_dead]

    def to_json(self) -> str:
        return json.dumps(
            {
                "v": STATE_VERSION,
                "room_number": self.room_number,
                "is_combat_active": self.is_combat_active,
                "round_number": self.round_number,
                "extra_actions_this_round": self.extra_actions_this_round,
            }
        )

    @classmethod
    def from_json(cls, raw: Any) -> "RoomState":
        data = _load_json(raw, {})
        return cls(**_plain(cls, data, skip=("enemies",)))

    @classmethod
    def for_room(cls, room: Room) -> "RoomState":
        return cls(room_number=room.room_number).bind(room)


def encode_run_stats(stats: RunStats) -> str:
    payload = asdict(stats)
    payload["v"] = STATE_VERSION
    return json.dumps(payload)


def decode_run_stats(raw: Any) -> RunStats:
    return RunStats.from_dict(_load_json(raw, {}))


def encode_context(entries: List[Dict[str, Any]]) -> str:
    return json.dumps({"v": STATE_VERSION, "entries": entries})


def decode_context(raw: Any) -> List[Dict[str, Any]]:
    data = _load_json(raw, [])
    # bare list form (no version envelope)
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        return list(data.get("entries") or [])
    return []


__all__ = [
    "STATE_VERSION",
    "ROOM_TYPES",
    "StatusEffect",
    "RunStats",
    "EnemyInstance",
    "Chest",
    "Trap",
    "Lock",
    "RestSpot",
    "Room",
    "FloorMap",
    "RoomState",
    "encode_run_stats",
    "decode_run_stats",
    "encode_context",
    "decode_context",
]
