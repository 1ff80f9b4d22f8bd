"""Character creation, starter items, equipment slots and the character sheet."""

from __future__ import annotations

import random
from typing import Any, Dict

from crawler import db, game_setting
from crawler.engine.dice import SKILL_NAMES, roll_base_stats, stat_modifier
from crawler.errors import UserError
from crawler.logging_utils import get_logger
from crawler.models import InventoryEntry, Player, PlayerBaseStats, PlayerSkill

from . import persistence

log = get_logger("crawler.characters")

EQUIPPABLE_TYPES = ("weapon", "armor")
HP_PER_CON_MODIFIER = 5


def create_character(name: str, rng=None) -> Player:
    """Roll a new character: 3d6 per stat, config gold, HP adjusted by constitution."""
    rng = rng or random
    name = (name or "").strip()
    if not name:
        raise UserError("A character needs a name.", code="invalid_name")

    stats = roll_base_stats(rng)
    hp_max = max(1, game_setting("start_hp") + HP_PER_CON_MODIFIER * stat_modifier(stats["constitution"]))
    with persistence.transaction():
        player = Player(
            name=name,
            gold=game_setting("start_gold"),
            hp_current=hp_max,
            hp_max=hp_max,
            max_inventory_slots=game_setting("inventory_slots"),
        )
        db.session.add(player)
        db.session.flush()
        db.session.add(PlayerBaseStats(player_id=player.id, **stats))
        for skill_name in SKILL_NAMES:
            db.session.add(PlayerSkill(player_id=player.id, skill_name=skill_name, xp=0, level=1, true_level=1))
    log.info(event="character_created", player_id=player.id, name=name, hp_max=hp_max)
    return player


def grant_item(player_id: int, item_name: str, quantity: int = 1) -> Dict[str, Any]:
    if persistence.get_player(player_id) is None:
        raise UserError("No character found.", code="no_character")
    item = persistence.find_item(item_name)
    if item is None:
        raise UserError(f"No item called {item_name!r}.", code="unknown_item")
    with persistence.transaction():
        entry = persistence.add_item(player_id, item.id, quantity)
    return entry.to_dict()


def _find_owned(player_id: int, item_name: str) -> InventoryEntry:
    wanted = (item_name or "").strip().lower()
    if not wanted:
        raise UserError("Name an item to equip.", code="item_not_found")
    entries = persistence.get_inventory(player_id)
    for entry in entries:
        if entry.item.name.lower() == wanted:
            return entry
    for entry in entries:
        if wanted in entry.item.name.lower():
            return entry
    raise UserError(f"You don't have an item matching {item_name!r}.", code="item_not_found")


def equip_item(player_id: int, item_name: str) -> Dict[str, Any]:
    """Equip (or, when already equipped, unequip) an owned weapon or armor piece.

    Slot rules: a two-handed weapon clears every weapon and off-hand item; an
    off-hand item cannot join a two-handed weapon; a one-handed weapon replaces
    the current main-hand weapon; armor is one piece per subtype.
    """
    if persistence.get_player(player_id) is None:
        raise UserError("No character found.", code="no_character")
    match = _find_owned(player_id, item_name)
    item = match.item
    if item.type not in EQUIPPABLE_TYPES:
        raise UserError(f"{item.name} can't be equipped (it's a {item.type}).", code="not_equippable")

    with persistence.transaction():
        if match.is_equipped:
            match.is_equipped = False
            log.info(event="item_unequipped", player_id=player_id, item=item.name)
            return {"item": item.name, "equipped": False, "unequipped": []}

        equipped = [e for e in persistence.get_inventory(player_id) if e.is_equipped]
        weapons = [e for e in equipped if e.item.type == "weapon"]
        two_handed = next((e for e in weapons if e.item.hand_requirement == "two_handed"), None)
        off_hand = [e for e in equipped if e.item.hand_requirement == "off_hand"]
        displaced = []

        if item.hand_requirement == "off_hand":
            if two_handed is not None:
                raise UserError(
                    f"Can't equip {item.name}: you're wielding a two-handed weapon.", code="slot_conflict"
                )
        elif item.type == "weapon" and item.hand_requirement == "two_handed":
            displaced.extend(weapons + [e for e in off_hand if e not in weapons])
        elif item.type == "weapon":
            displaced.extend(e for e in weapons if e.item.hand_requirement != "off_hand")

        if item.type == "armor":
            displaced.extend(
                e for e in equipped if e.item.type == "armor" and e.item.subtype == item.subtype and e not in displaced
            )

        for entry in displaced:
            entry.is_equipped = False
        match.is_equipped = True

    log.info(event="item_equipped", player_id=player_id, item=item.name, displaced=len(displaced))
    return {"item": item.name, "equipped": True, "unequipped": [e.item.name for e in displaced]}


def describe_character(player_id: int) -> Dict[str, Any]:
    player = persistence.get_player(player_id)
    if player is None:
        raise UserError("No character found.", code="no_character")
    skills = PlayerSkill.query.filter_by(player_id=player.id).order_by(PlayerSkill.skill_name).all()
    run = persistence.get_active_run(player.id)
    return {
        "id": player.id,
        "name": player.name,
        "gold": player.gold,
        "hp_current": player.hp_current,
        "hp_max": player.hp_max,
        "max_inventory_slots": player.max_inventory_slots,
        "base_stats": persistence.get_base_stats(player.id),
        "skills": {s.skill_name: {"level": s.level, "xp": s.xp, "true_level": s.true_level} for s in skills},
        "inventory": persistence.get_inventory_dicts(player.id),
        "active_run_id": run.id if run else None,
    }


__all__ = ["create_character", "grant_item", "equip_item", "describe_character"]
