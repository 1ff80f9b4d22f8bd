"""Per-intent action handlers.

Each handler takes the shared ``TurnContext`` and records what happened on
``ctx.outcome``. Handlers mutate the decoded run records (floor map, room
state, run stats) in place and stage inventory/XP changes on the session;
``run_service.process_action`` persists everything in one transaction.

Registry: HANDLERS maps intent type -> handler. ``general`` has none.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from crawler.engine import combat
from crawler.engine.dice import PerkBonus, random_dc, round_half_up, skill_check
from crawler.engine.floor_generator import clear_room, generate_floor, unlock_room
from crawler.engine.intent import Intent
from crawler.engine.loot import LootContext, resolve_loot, roll_gold_drop
from crawler.engine.records import FloorMap, Room, RoomState, RunStats
from crawler.engine.status_effects import cleanse
from crawler.logging_utils import get_logger
from crawler.models import ActiveRun, Dungeon, Player

from . import persistence
from .outcome import TurnOutcome
from .progression import distribute_xp

log = get_logger("crawler.actions")

LOCKPICK_ITEM = "Thieves' Pick"
TORCH_ITEM = "Torch"
FUNGUS_ITEM = "Glowing Fungus"
TORCH_PERCEPTION = 3
FUNGUS_PERCEPTION = 1
CHEST_GOLD = (15, 40)
FLEE_DC = 12

ATTACK_MISS_XP = 3
SKILL_CHECK_XP = 10
SEARCH_XP = 5
TRAP_DETECTION_XP = 5


@dataclass
class TurnContext:
    run: ActiveRun
    player: Player
    dungeon: Dungeon
    base_stats: Dict[str, int]
    skills: Dict[str, int]
    equipped: List[Dict[str, Any]]
    floor_map: FloorMap
    room: Room
    room_state: RoomState
    stats: RunStats
    loot_context: LootContext
    outcome: TurnOutcome
    rng: Any = None
    next_floor_map: Optional[FloorMap] = None
    reset_context: bool = False
    enemy_rules: Optional[List[Dict[str, Any]]] = field(default=None, repr=False)

    @property
    def dc_range(self) -> Dict[str, int]:
        return self.dungeon.dc_bounds()

    def perception_perks(self) -> List[PerkBonus]:
        perks = []
        if self.stats.torch_lit:
            perks.append(PerkBonus(TORCH_ITEM, TORCH_PERCEPTION))
        if self.stats.fungus_lit:
            perks.append(PerkBonus(FUNGUS_ITEM, FUNGUS_PERCEPTION))
        return perks

    def loot(self, source_type: str) -> List[Dict[str, Any]]:
        rules = persistence.loot_rules_for_source(source_type, self.dungeon.id)
        return resolve_loot(source_type, rules, self.loot_context, self.rng)

    def award_xp(self, skill_name: str, base_xp: int, outcome: str) -> None:
        self.outcome.add_xp(distribute_xp(self.player.id, skill_name, base_xp, outcome))


def _inventory_row(ctx: TurnContext, item_name: str) -> Optional[Dict[str, Any]]:
    for row in persistence.get_inventory_dicts(ctx.player.id):
        if row["item_name"] == item_name and row["quantity"] > 0:
            return row
    return None


def _name_mentioned(text: str, name: str) -> bool:
    name = name.lower()
    return name in text or any(len(w) >= 3 and w in text for w in name.split())


# ── unequip ──

_UNEQUIP_KEYWORDS = (
    (re.compile(r"\b(bow|ranged|arrows?|crossbow)\b"), lambda i: i.get("item_subtype") == "ranged"),
    (
        re.compile(r"\b(sword|blade|dagger|knife|axe|mace|club|staff|wand|weapon|melee)\b"),
        lambda i: i.get("item_type") == "weapon",
    ),
    (re.compile(r"\b(shield|buckler)\b"), lambda i: i.get("item_subtype") == "shield"),
    (
        re.compile(r"\b(armor|vest|chainmail|chest)\b"),
        lambda i: i.get("item_type") == "armor" and i.get("item_subtype") != "shield",
    ),
)


def handle_unequip(ctx: TurnContext, intent: Intent) -> None:
    text = intent.raw
    target = next((i for i in ctx.equipped if _name_mentioned(text, i["item_name"])), None)
    if target is None:
        for pattern, wanted in _UNEQUIP_KEYWORDS:
            if pattern.search(text):
                target = next((i for i in ctx.equipped if wanted(i)), None)
                break
    if target is None:
        target = next((i for i in ctx.equipped if i.get("item_type") == "weapon"), None)
    if target is None:
        ctx.outcome.flags["nothing_to_unequip"] = True
        return
    persistence.set_equipped(target["id"], False)
    ctx.equipped = [i for i in ctx.equipped if i["id"] != target["id"]]
    ctx.outcome.flags["unequipped_item"] = target["item_name"]
    log.info(event="item_unequipped", player_id=ctx.player.id, item=target["item_name"])


# ── attack ──


def handle_attack(ctx: TurnContext, intent: Intent) -> None:
    state = ctx.room_state
    target = intent.target if intent.target is not None and not intent.target.is_dead else None
    if target is None:
        living = state.living_enemies()
        target = living[0] if living else None
    if target is None:
        intent.type = "general"
        return

    if not state.is_combat_active:
        state.is_combat_active = True
        state.round_number = 1

    if intent.unequip_first:
        handle_unequip(ctx, intent)

    ranged = combat.is_ranged_weapon_equipped(ctx.equipped)
    attack_skill = "ranged" if ranged else "melee"
    check = skill_check(
        attack_skill,
        combat.attack_dc(target),
        base_stats=ctx.base_stats,
        skills=ctx.skills,
        crit_range=combat.weapon_crit_range(ctx.equipped),
        dc_source="enemy_armor",
        dc_origin_id=target.enemy_id,
        target=target.name,
        rng=ctx.rng,
    )
    ctx.outcome.add_check(check)

    if not check.passed:
        ctx.outcome.add_combat(None, check, target.name)
        ctx.award_xp(attack_skill, ATTACK_MISS_XP, check.outcome)
        return

    stat_value = ctx.base_stats.get("dexterity" if ranged else "strength") or 10
    raw = combat.attack_damage(stat_value, combat.weapon_damage_bonus(ctx.equipped))
    rules = persistence.loot_rules_for_source("boss" if target.is_boss else "enemy_kill", target.enemy_id)
    result = combat.damage_enemy(
        target,
        raw,
        combat.weapon_damage_type(ctx.equipped),
        state,
        loot_context=ctx.loot_context,
        rng=ctx.rng,
        loot_rules=rules,
    )
    ctx.outcome.add_combat(result, check, target.name)
    ctx.stats.damage_dealt += result.damage_dealt
    if result.enemy_died:
        ctx.stats.enemies_killed += 1
        ctx.outcome.loot_drops.extend(result.loot)
        ctx.outcome.gold_gained += result.gold_drop
        ctx.award_xp(attack_skill, result.xp_reward, check.outcome)


# ── skill checks ──


def _lockpick_target(ctx: TurnContext):
    room = ctx.room
    if room.type == "locked" and room.lock:
        return "current_room", room.lock.lock_dc
    if room.chest and room.chest.is_locked:
        return "chest", room.chest.lock_dc or random_dc(ctx.dc_range, ctx.rng)
    for number in room.connections:
        neighbour = ctx.floor_map.room(number)
        if neighbour and neighbour.type == "locked" and not neighbour.is_accessible and neighbour.lock:
            return number, neighbour.lock.lock_dc
    return None, random_dc(ctx.dc_range, ctx.rng)


def handle_skill_check(ctx: TurnContext, intent: Intent) -> None:
    skill_name = intent.skill or "perception"
    room = ctx.room
    target = None
    if skill_name == "lockpicking":
        target, dc = _lockpick_target(ctx)
    elif skill_name == "perception" and room.trap and not room.trap.is_disarmed:
        dc = room.trap.dc
    else:
        dc = random_dc(ctx.dc_range, ctx.rng)

    if skill_name == "lockpicking" and target is not None:
        pick = _inventory_row(ctx, LOCKPICK_ITEM)
        if pick is None:
            ctx.outcome.flags["no_lockpick"] = True
            return
        persistence.remove_item(pick["id"], 1)
        ctx.outcome.flags["lockpick_consumed"] = True

    check = skill_check(
        skill_name,
        dc,
        base_stats=ctx.base_stats,
        skills=ctx.skills,
        perk_bonuses=ctx.perception_perks() if skill_name == "perception" else (),
        dc_source="room_feature",
        rng=ctx.rng,
    )
    ctx.outcome.add_check(check)

    if check.passed:
        if skill_name == "lockpicking":
            if target == "current_room":
                unlock_room(ctx.floor_map, room.room_number)
            elif target == "chest":
                room.chest.is_locked = False
                loot_chest(ctx)
            elif isinstance(target, int):
                unlock_room(ctx.floor_map, target)
                ctx.outcome.flags["unlocked_room"] = target
                log.info(event="room_unlocked", run_id=ctx.run.id, room=target)
        elif skill_name == "stealth":
            for enemy in ctx.room_state.living_enemies():
                enemy.awareness = "idle"

    trap = room.trap
    if trap is not None and trap.is_armed:
        if skill_name == "perception" and check.passed:
            trap.is_disarmed = True
        elif not check.passed:
            _spring_trap(ctx, room)

    ctx.award_xp(skill_name, SKILL_CHECK_XP, check.outcome)


def _spring_trap(ctx: TurnContext, room: Room) -> None:
    trap = room.trap
    trap.is_triggered = True
    ctx.outcome.change_hp(-trap.damage)
    ctx.outcome.flags["trap_triggered"] = {"name": trap.name, "damage": trap.damage, "room": room.room_number}
    log.info(event="trap_triggered", run_id=ctx.run.id, room=room.room_number, trap=trap.name, damage=trap.damage)
    if ctx.outcome.hp_depleted:
        ctx.outcome.mark_dead()


# ── chests & searching ──


def loot_chest(ctx: TurnContext) -> None:
    chest = ctx.room.chest
    flags = ctx.outcome.flags
    if chest is None:
        flags["no_chest"] = True
        return
    if chest.is_locked:
        flags["chest_locked"] = True
        return
    if chest.is_looted:
        flags["chest_already_looted"] = True
        return
    chest.is_opened = True
    chest.is_looted = True
    flags["chest_looted"] = True
    drops = ctx.loot("chest")
    ctx.outcome.loot_drops.extend(drops)
    gold = roll_gold_drop(*CHEST_GOLD, rng=ctx.rng)
    ctx.outcome.gold_gained += gold
    log.info(event="chest_looted", run_id=ctx.run.id, room=ctx.room.room_number, items=len(drops), gold=gold)


def handle_open_chest(ctx: TurnContext, intent: Intent) -> None:
    loot_chest(ctx)


def handle_search(ctx: TurnContext, intent: Intent) -> None:
    room = ctx.room
    if room.chest and not room.chest.is_locked and not room.chest.is_looted:
        loot_chest(ctx)

    if room.search_count > 0:
        if not ctx.outcome.flags.get("chest_looted"):
            ctx.outcome.flags["room_already_searched"] = True
        return

    room.search_count = 1
    check = skill_check(
        "perception",
        random_dc(ctx.dc_range, ctx.rng),
        base_stats=ctx.base_stats,
        skills=ctx.skills,
        perk_bonuses=ctx.perception_perks(),
        dc_source="room_search",
        rng=ctx.rng,
    )
    ctx.outcome.add_check(check)
    if check.passed:
        ctx.outcome.loot_drops.extend(ctx.loot("room_drop"))
        room.is_searched = True
    ctx.award_xp("perception", SEARCH_XP, check.outcome)


# ── items ──

_TORCH_LIGHT = re.compile(r"\b(light|ignite|kindle)\b")
_TORCH_WORDS = re.compile(r"\b(torch|lantern)\b")
_FUNGUS_VERBS = re.compile(r"\b(hold|use|light|raise|lift)\b")
_FUNGUS_WORDS = re.compile(r"\b(fungus|mushroom|shroom|glow)\b")
_USE_OR_LIGHT = re.compile(r"\b(use|light)\b")
_USE_LIGHT_HOLD = re.compile(r"\b(use|light|hold)\b")

_CATEGORY_ITEMS = (
    (re.compile(r"\b(potion|heal|health)\b"), "Health Potion"),
    (re.compile(r"\b(antidote|cure|cleanse|poison)\b"), "Antidote"),
    (re.compile(r"\b(torch|light|fire|flame)\b"), TORCH_ITEM),
    (re.compile(r"\b(pick|lockpick|tool)\b"), LOCKPICK_ITEM),
)


def _pick_item(ctx: TurnContext, text: str, torch_light: bool, fungus_light: bool) -> Optional[Dict[str, Any]]:
    if torch_light:
        row = _inventory_row(ctx, TORCH_ITEM)
        if row:
            return row
    if fungus_light:
        row = _inventory_row(ctx, FUNGUS_ITEM)
        if row:
            return row
    for row in persistence.get_inventory_dicts(ctx.player.id):
        if row["quantity"] > 0 and row["item_type"] == "consumable" and _name_mentioned(text, row["item_name"]):
            return row
    for pattern, item_name in _CATEGORY_ITEMS:
        if pattern.search(text):
            return _inventory_row(ctx, item_name)
    return None


def handle_use_item(ctx: TurnContext, intent: Intent) -> None:
    text = intent.raw
    outcome = ctx.outcome
    torch_light = bool(_TORCH_LIGHT.search(text) and _TORCH_WORDS.search(text))
    fungus_light = bool(_FUNGUS_VERBS.search(text) and _FUNGUS_WORDS.search(text))

    item = _pick_item(ctx, text, torch_light, fungus_light)
    if item is None:
        outcome.flags["no_item_to_use"] = True
        return
    name = item["item_name"]

    if name == TORCH_ITEM and (torch_light or _USE_OR_LIGHT.search(text)):
        if ctx.stats.torch_lit:
            outcome.flags["torch_already_lit"] = True
            return
        # torches are not consumed
        ctx.stats.torch_lit = True
        outcome.flags["torch_lit"] = True
        outcome.item_used = {"name": name, "effects": [{"type": "buff", "stat": "perception", "value": TORCH_PERCEPTION}]}
        return

    if name == FUNGUS_ITEM and (fungus_light or _USE_LIGHT_HOLD.search(text)):
        if ctx.stats.fungus_lit:
            outcome.flags["fungus_already_lit"] = True
            return
        ctx.stats.fungus_lit = True
        outcome.flags["fungus_lit"] = True
        outcome.item_used = {"name": name, "effects": [{"type": "buff", "stat": "perception", "value": FUNGUS_PERCEPTION}]}
        persistence.remove_item(item["id"], 1)
        return

    effects = item.get("use_effect") or []
    outcome.item_used = {"name": name, "effects": []}
    if not effects:
        outcome.flags["no_item_effect"] = True
        return

    for effect in effects:
        kind = effect.get("effect_type")
        if kind == "heal":
            high = int(effect.get("value") or 0)
            low = int(effect.get("min_value") or high)
            heal = ctx.rng.randint(low, high) if low < high else high
            heal = max(0, min(heal, ctx.player.hp_max - outcome.updated_player_hp))
            outcome.change_hp(heal)
            outcome.item_used["effects"].append({"type": "heal", "value": heal})
        elif kind == "cleanse":
            names = effect.get("value") or []
            kept, removed = cleanse(ctx.stats.status_effects, names)
            ctx.stats.status_effects = kept
            if removed:
                outcome.flags["poison_cured"] = True
            outcome.item_used["effects"].append({"type": "cleanse", "targets": names})
        elif kind == "perception_bonus":
            outcome.item_used["effects"].append(
                {"type": "buff", "stat": "perception", "value": effect.get("value"), "duration": effect.get("duration_actions")}
            )
        else:
            log.warn(event="unknown_item_effect", item=name, effect_type=kind)

    persistence.remove_item(item["id"], 1)
    outcome.flags["item_used"] = name


# ── movement ──


def _auto_target(ctx: TurnContext) -> Optional[int]:
    room = ctx.room
    rooms = [(n, ctx.floor_map.room(n)) for n in room.connections]
    fresh = [n for n, r in rooms if r and r.is_accessible and not r.is_cleared]
    if fresh:
        return fresh[0]
    accessible = sorted((n for n, r in rooms if r and r.is_accessible), reverse=True)
    if accessible:
        return accessible[0]
    return room.connections[-1] if room.connections else None


def _enter_next_floor(ctx: TurnContext, next_floor: int) -> None:
    dungeon = ctx.dungeon
    rules = ctx.enemy_rules if ctx.enemy_rules is not None else persistence.enemy_rules_for_dungeon(dungeon.id)
    new_map = generate_floor(
        next_floor,
        next_floor == dungeon.floor_count,
        rules,
        dungeon.dc_bounds(),
        dungeon.difficulty_tier,
        ctx.rng,
    )
    outcome = ctx.outcome
    outcome.previous_floor = ctx.run.current_floor
    outcome.moved_to_floor = next_floor
    outcome.moved_to_room = 1
    outcome.floor_transition = True
    outcome.flags["total_floors"] = dungeon.floor_count

    ctx.run.current_floor = next_floor
    ctx.run.current_room = 1
    ctx.next_floor_map = new_map
    ctx.room = new_map.room(1)
    ctx.room_state = RoomState.for_room(ctx.room)
    ctx.reset_context = True
    log.info(event="floor_transition", run_id=ctx.run.id, floor=next_floor, rooms=len(new_map.rooms))


def handle_move(ctx: TurnContext, intent: Intent) -> None:
    outcome = ctx.outcome
    current = ctx.room
    if not current.is_cleared:
        opened = clear_room(ctx.floor_map, current.room_number)
        outcome.newly_accessible_rooms.extend(opened)
        outcome.room_cleared = True
        ctx.stats.rooms_cleared += 1

    target_number = intent.target_room or _auto_target(ctx)
    target = ctx.floor_map.room(target_number) if target_number else None
    if target is None:
        intent.type = "general"
        return

    if not target.is_accessible:
        blocked = {"room": target_number, "reason": "inaccessible"}
        if target.type == "locked" and target.lock:
            blocked = {"room": target_number, "reason": "locked", "dc": target.lock.lock_dc}
        outcome.flags["move_blocked"] = blocked
        return

    if target.is_exit and ctx.run.current_floor + 1 <= ctx.dungeon.floor_count:
        _enter_next_floor(ctx, ctx.run.current_floor + 1)
        return

    ctx.run.current_room = target_number
    outcome.moved_to_room = target_number
    ctx.room = target
    ctx.room_state = RoomState.for_room(target)
    if target.living_enemies():
        ctx.room_state.is_combat_active = True
        ctx.room_state.round_number = 1
    if target.is_boss_room:
        outcome.boss_room_entered = True

    trap = target.trap
    if trap is not None and trap.is_armed:
        check = skill_check(
            "perception",
            trap.dc,
            base_stats=ctx.base_stats,
            skills=ctx.skills,
            perk_bonuses=ctx.perception_perks(),
            dc_source="trap_detection",
            rng=ctx.rng,
        )
        outcome.add_check(check)
        if check.passed:
            outcome.flags["trap_detected"] = {"name": trap.name, "room": target_number}
        else:
            _spring_trap(ctx, target)
        ctx.award_xp("perception", TRAP_DETECTION_XP, check.outcome)


# ── rest & flee ──


def handle_rest(ctx: TurnContext, intent: Intent) -> None:
    room = ctx.room
    if room.type != "rest" or room.rest is None:
        return
    heal = round_half_up(ctx.player.hp_max * room.rest.heal_percent)
    ctx.outcome.change_hp(heal)
    ctx.outcome.flags["rested"] = True
    ctx.outcome.flags["rest_heal_amount"] = heal


def handle_rest_failed(ctx: TurnContext, intent: Intent) -> None:
    ctx.outcome.flags["rest_failed"] = True


def handle_flee(ctx: TurnContext, intent: Intent) -> None:
    check = skill_check(
        "stealth", FLEE_DC, base_stats=ctx.base_stats, skills=ctx.skills, dc_source="flee", rng=ctx.rng
    )
    ctx.outcome.add_check(check)
    if not check.passed:
        return
    ctx.room_state.is_combat_active = False
    for enemy in ctx.room_state.living_enemies():
        hit = combat.flee_damage(enemy, check.outcome)
        if hit:
            ctx.outcome.change_hp(-hit)
    ctx.outcome.flags["flee_success"] = True
    ctx.outcome.flags["flee_outcome"] = check.outcome


HANDLERS: Dict[str, Callable[[TurnContext, Intent], None]] = {
    "attack": handle_attack,
    "skill_check": handle_skill_check,
    "use_item": handle_use_item,
    "move": handle_move,
    "search": handle_search,
    "open_chest": handle_open_chest,
    "rest": handle_rest,
    "rest_failed": handle_rest_failed,
    "flee": handle_flee,
    "unequip": handle_unequip,
}


__all__ = ["TurnContext", "HANDLERS", "loot_chest"]
