"""Seed the built-in content: damage types, status effects, items, enemies and
the introductory dungeon "The Sunken Crypt" with its spawn and loot rules.

Usage (programmatic):
    from crawler.seed_content import seed_all
    seed_all()

CLI:
    python run.py seed

Notes:
 - Idempotent: rows are matched by name (rules by their natural key) and
   only missing ones are inserted, so re-running never duplicates content.
 - Runs in one transaction; a failure leaves the catalog untouched.
 - Nested fields (modifiers, abilities, resistances) are authored as Python
   data and stored as JSON text.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Iterable

from crawler import db
from crawler.logging_utils import get_logger
from crawler.models import DamageType, Dungeon, Enemy, EnemyRule, Item, LootRule, StatusEffectDefinition

log = get_logger("crawler.seed")

DUNGEON_NAME = "The Sunken Crypt"
BOSS_NAME = "The Hollow Warden"

DAMAGE_TYPES = [
    ("slashing", "Slashing", "Cutting damage from bladed weapons."),
    ("piercing", "Piercing", "Puncture damage from pointed weapons and arrows."),
    ("blunt", "Blunt", "Crushing damage from hammers and impacts."),
    ("fire", "Fire", "Flames and heat."),
    ("ice", "Ice", "Frost and cold."),
    ("arcane", "Arcane", "Raw magical energy."),
    ("poison", "Poison", "Toxic substances and venoms."),
    ("radiant", "Radiant", "Holy light and divine energy."),
    ("necrotic", "Necrotic", "Death energy and life drain."),
    ("psychic", "Psychic", "Mental damage and hallucinations."),
    ("thunder", "Thunder", "Sonic force and shockwaves."),
]

STATUS_EFFECTS = [
    {
        "name": "burn",
        "effect_category": "damage",
        "damage_type": "fire",
        "damage_formula": {"mode": "flat", "value": 3},
        "max_stacks": 3,
        "description": "Taking fire damage each action.",
    },
    {
        "name": "bleed",
        "effect_category": "damage",
        "damage_type": "slashing",
        "damage_formula": {"mode": "flat", "value": 2},
        "max_stacks": 3,
        "description": "Bleeding from open wounds.",
    },
    {
        "name": "poison",
        "effect_category": "damage",
        "damage_type": "poison",
        "damage_formula": {"mode": "flat", "value": 2},
        "max_stacks": 1,
        "clears_on_combat_end": False,
        "description": "Poison coursing through your veins.",
    },
    {"name": "stun", "effect_category": "control", "max_stacks": 1, "description": "Unable to act."},
    {
        "name": "silence",
        "effect_category": "control",
        "max_stacks": 1,
        "blocks_speech": True,
        "description": "Unable to speak or cast verbal spells.",
    },
    {"name": "fortify", "effect_category": "buff", "max_stacks": 1, "description": "Armor increased temporarily."},
]

ITEMS = [
    # weapons
    {
        "name": "Rusty Shortsword",
        "type": "weapon",
        "subtype": "melee",
        "base_value": 15,
        "stat_modifiers": {"damage_bonus": 3},
        "damage_type": "slashing",
        "hand_requirement": "one_handed",
        "description": "A dull blade with spots of rust. Better than bare fists.",
    },
    {
        "name": "Crypt Warden's Mace",
        "type": "weapon",
        "subtype": "melee",
        "rarity": "uncommon",
        "base_value": 45,
        "stat_modifiers": {"damage_bonus": 6},
        "damage_type": "blunt",
        "base_crit_range": 19,
        "hand_requirement": "one_handed",
        "description": "A heavy flanged mace, once wielded by the wardens of this crypt.",
    },
    {
        "name": "Bone Longbow",
        "type": "weapon",
        "subtype": "ranged",
        "rarity": "uncommon",
        "base_value": 40,
        "stat_modifiers": {"damage_bonus": 5, "hit_chance": 0.05},
        "damage_type": "piercing",
        "base_crit_range": 19,
        "hand_requirement": "two_handed",
        "description": "A longbow carved from a giant's rib. Disturbingly flexible.",
    },
    # armor
    {
        "name": "Tattered Leather Vest",
        "type": "armor",
        "subtype": "light_armor",
        "base_value": 20,
        "stat_modifiers": {"armor": 2},
        "description": "Barely holds together. The smell alone provides some defense.",
    },
    {
        "name": "Chainmail of the Fallen",
        "type": "armor",
        "subtype": "medium_armor",
        "rarity": "uncommon",
        "base_value": 60,
        "stat_modifiers": {"armor": 5, "resistance": {"slashing": 0.8}},
        "description": "Chainmail stripped from one of the crypt's less fortunate visitors.",
    },
    {
        "name": "Bone Shield",
        "type": "armor",
        "subtype": "shield",
        "base_value": 25,
        "stat_modifiers": {"armor": 3},
        "hand_requirement": "off_hand",
        "description": "A crude shield fashioned from interlocking bones. Surprisingly sturdy.",
    },
    # consumables
    {
        "name": "Health Potion",
        "type": "consumable",
        "subtype": "potion",
        "base_value": 10,
        "is_stackable": True,
        "use_effect": [{"effect_type": "heal", "value": 20, "min_value": 10, "mode": "range"}],
        "description": "A murky red liquid. Tastes terrible, works wonders.",
    },
    {
        "name": "Antidote",
        "type": "consumable",
        "subtype": "potion",
        "base_value": 12,
        "is_stackable": True,
        "use_effect": [{"effect_type": "cleanse", "value": ["poison"], "mode": "remove_by_name"}],
        "description": "A chalky green paste dissolved in water. Neutralizes most toxins.",
    },
    {
        "name": "Torch",
        "type": "consumable",
        "subtype": "light",
        "base_value": 3,
        "is_stackable": True,
        "use_effect": [{"effect_type": "perception_bonus", "value": 3, "mode": "flat", "duration_actions": 10}],
        "description": "Illuminates dark corridors, revealing hidden details.",
    },
    {
        "name": "Iron Arrow",
        "type": "consumable",
        "subtype": "ammo",
        "base_value": 1,
        "is_stackable": True,
        "damage_type": "piercing",
        "description": "Standard iron-tipped arrows. Nothing fancy.",
    },
    # valuables
    {
        "name": "Crypt Dust",
        "type": "valuable",
        "subtype": "material",
        "base_value": 5,
        "is_stackable": True,
        "description": "Fine powder from ancient bones. Alchemists might want this.",
    },
    {
        "name": "Glowing Fungus",
        "type": "valuable",
        "subtype": "material",
        "base_value": 8,
        "is_stackable": True,
        "description": "Bioluminescent mushroom from the crypt walls. Pulsates softly.",
    },
    {
        "name": "Warden's Sigil",
        "type": "valuable",
        "subtype": "trophy",
        "rarity": "uncommon",
        "base_value": 30,
        "is_quest_item": True,
        "description": "A tarnished bronze medallion bearing the crypt warden's mark.",
    },
    {
        "name": "Skeleton Key Fragment",
        "type": "valuable",
        "subtype": "trophy",
        "rarity": "rare",
        "base_value": 50,
        "is_quest_item": True,
        "description": "Part of a key forged from bone. Something about it feels important.",
    },
    {
        "name": "Thieves' Pick",
        "type": "consumable",
        "subtype": "lockpick",
        "base_value": 8,
        "is_stackable": True,
        "description": "A thin metal pick. Breaks easily in inexperienced hands.",
    },
]

ALWAYS = {"type": "always"}

ENEMIES = [
    {
        "name": "Crypt Rat",
        "description": "A bloated rat with glowing eyes.",
        "base_hp": 12,
        "base_damage": 4,
        "base_armor": 0,
        "stat_scaling": {"hp_per_tier": 1.3, "damage_per_tier": 1.15, "armor_per_tier": 1.0},
        "abilities": [
            {
                "name": "Bite",
                "damage_type": "piercing",
                "check_type": "melee",
                "base_dc": 8,
                "damage_multiplier": 1.0,
                "trigger_condition": ALWAYS,
            }
        ],
        "weaknesses": {"fire": 1.5},
        "xp_reward": 8,
        "gold_reward_min": 1,
        "gold_reward_max": 3,
        "ai_descriptor": "Skittish vermin. Bites and retreats. Flees when alone and below half health.",
    },
    {
        "name": "Shambling Skeleton",
        "description": "A reanimated skeleton wielding a rusted blade.",
        "base_hp": 25,
        "base_damage": 7,
        "base_armor": 2,
        "stat_scaling": {"hp_per_tier": 1.3, "damage_per_tier": 1.15, "armor_per_tier": 1.1},
        "abilities": [
            {
                "name": "Rusty Slash",
                "damage_type": "slashing",
                "check_type": "melee",
                "base_dc": 10,
                "damage_multiplier": 1.0,
                "trigger_condition": ALWAYS,
            },
            {
                "name": "Bone Throw",
                "damage_type": "blunt",
                "check_type": "ranged",
                "base_dc": 12,
                "damage_multiplier": 0.6,
                "trigger_condition": ALWAYS,
            },
        ],
        "resistances": {"piercing": 0.5, "necrotic": 0.0},
        "weaknesses": {"blunt": 1.5, "radiant": 2.0},
        "effect_immunities": ["poison", "bleed"],
        "xp_reward": 15,
        "gold_reward_min": 3,
        "gold_reward_max": 8,
        "ai_descriptor": "Mindless undead. Approaches slowly, attacks predictably. Vulnerable to being smashed.",
    },
    {
        "name": "Venomous Spider",
        "description": "A dog-sized spider lurking in the shadows.",
        "base_hp": 18,
        "base_damage": 6,
        "base_armor": 1,
        "stat_scaling": {"hp_per_tier": 1.2, "damage_per_tier": 1.2, "armor_per_tier": 1.0},
        "abilities": [
            {
                "name": "Venomous Bite",
                "damage_type": "piercing",
                "check_type": "melee",
                "base_dc": 11,
                "damage_multiplier": 0.8,
                "effect_category": "poison",
                "effect_chance": 0.4,
                "effect_value": {"type": "apply_status", "status": "poison", "duration_actions": 5},
                "trigger_condition": ALWAYS,
            },
            {
                "name": "Web Spit",
                "damage_type": None,
                "check_type": "ranged",
                "base_dc": 13,
                "effect_category": "stun",
                "effect_chance": 0.6,
                "effect_value": {"type": "apply_status", "status": "stun", "duration_actions": 1},
                "trigger_condition": ALWAYS,
                "cooldown_rounds": 3,
            },
        ],
        "resistances": {"poison": 0.0},
        "weaknesses": {"fire": 2.0},
        "effect_immunities": ["poison"],
        "xp_reward": 18,
        "gold_reward_min": 2,
        "gold_reward_max": 6,
        "ai_descriptor": "Ambush predator. Leads with web spit to immobilize, then bites for poison. Terrified of fire.",
    },
    {
        "name": BOSS_NAME,
        "description": "A towering armored revenant bound to guard the crypt.",
        "base_hp": 80,
        "base_damage": 14,
        "base_armor": 8,
        "stat_scaling": {"hp_per_tier": 1.4, "damage_per_tier": 1.2, "armor_per_tier": 1.15},
        "abilities": [
            {
                "name": "Warden's Cleave",
                "damage_type": "slashing",
                "check_type": "melee",
                "base_dc": 14,
                "damage_multiplier": 1.5,
                "trigger_condition": ALWAYS,
            },
            {
                "name": "Shield Bash",
                "damage_type": "blunt",
                "check_type": "melee",
                "base_dc": 12,
                "damage_multiplier": 0.8,
                "effect_category": "stun",
                "effect_chance": 0.5,
                "effect_value": {"type": "apply_status", "status": "stun", "duration_actions": 1},
                "trigger_condition": ALWAYS,
                "cooldown_rounds": 2,
            },
            {
                "name": "Deathly Roar",
                "damage_type": "necrotic",
                "check_type": "wisdom_save",
                "base_dc": 15,
                "effect_category": "silence",
                "effect_chance": 1.0,
                "effect_value": {"type": "apply_status", "status": "silence", "duration_actions": 2},
                "trigger_condition": {"type": "hp_threshold_below", "value": 0.5},
                "max_charges": 1,
            },
        ],
        "resistances": {"slashing": 0.7, "piercing": 0.5, "necrotic": 0.0},
        "weaknesses": {"radiant": 2.0, "blunt": 1.3},
        "effect_immunities": ["poison", "bleed", "stun"],
        "is_boss": True,
        "xp_reward": 75,
        "gold_reward_min": 25,
        "gold_reward_max": 50,
        "ai_descriptor": "Imposing and deliberate. Opens with Cleave, punishes aggression with Shield Bash, roars once below half health.",
    },
]

DUNGEON = {
    "name": DUNGEON_NAME,
    "difficulty_tier": 1,
    "floor_count": 3,
    "entry_cost": 10,
    "dc_range": {"min": 8, "max": 16},
    "theme": (
        "Flooded ancient catacombs with bioluminescent fungi, dripping ceilings, and crumbling stone. "
        "The air is damp and heavy. Water pools in low corridors."
    ),
    "ai_context_seed": (
        "You are the narrator of The Sunken Crypt, an ancient catacomb beneath a forgotten temple. "
        "Narrate in second person present tense, two or three short paragraphs per turn. "
        "Never invent items, enemies or exits that are not in the provided game state."
    ),
}

# (enemy name, spawn weight); the boss spawns only in boss rooms
ENEMY_SPAWNS = [
    ("Crypt Rat", 40),
    ("Venomous Spider", 25),
    ("Shambling Skeleton", 30),
    (BOSS_NAME, 0),
]

# (source type, source enemy or None for the dungeon, item, drop type, weight, extra)
LOOT_TABLE = [
    ("enemy_kill", "Crypt Rat", "Crypt Dust", "weighted", 60, {}),
    ("enemy_kill", "Shambling Skeleton", "Rusty Shortsword", "weighted", 15, {}),
    ("enemy_kill", "Shambling Skeleton", "Bone Shield", "weighted", 10, {}),
    ("enemy_kill", "Shambling Skeleton", "Crypt Dust", "weighted", 40, {}),
    ("enemy_kill", "Venomous Spider", "Glowing Fungus", "weighted", 50, {}),
    ("enemy_kill", "Venomous Spider", "Antidote", "weighted", 20, {}),
    ("boss", BOSS_NAME, "Crypt Warden's Mace", "guaranteed", 0, {}),
    ("boss", BOSS_NAME, "Warden's Sigil", "guaranteed", 0, {}),
    ("boss", BOSS_NAME, "Chainmail of the Fallen", "weighted", 30, {}),
    ("boss", BOSS_NAME, "Skeleton Key Fragment", "weighted", 10, {}),
    ("chest", None, "Health Potion", "weighted", 40, {}),
    ("chest", None, "Antidote", "weighted", 20, {}),
    ("chest", None, "Torch", "weighted", 25, {}),
    ("chest", None, "Iron Arrow", "weighted", 30, {}),
    ("chest", None, "Thieves' Pick", "weighted", 20, {}),
    ("chest", None, "Tattered Leather Vest", "weighted", 10, {}),
    ("chest", None, "Bone Longbow", "weighted", 5, {}),
    ("chest", None, "Crypt Warden's Mace", "weighted", 3, {"requires_perception": True, "perception_dc": 16}),
    ("room_drop", None, "Crypt Dust", "weighted", 30, {}),
    ("room_drop", None, "Glowing Fungus", "weighted", 20, {}),
]


def _jsonify(row: Dict[str, Any], keys: Iterable[str]) -> Dict[str, Any]:
    out = dict(row)
    for key in keys:
        if key in out and not isinstance(out[key], str) and out[key] is not None:
            out[key] = json.dumps(out[key])
    return out


def _get_or_create(model, name: str, **values):
    row = model.query.filter_by(name=name).first()
    if row is not None:
        return row, False
    row = model(name=name, **values)
    db.session.add(row)
    db.session.flush()
    return row, True


def seed_damage_types() -> int:
    created = 0
    for name, display, description in DAMAGE_TYPES:
        created += _get_or_create(DamageType, name, display_name=display, description=description)[1]
    return created


def seed_status_effects() -> int:
    created = 0
    for data in STATUS_EFFECTS:
        row = _jsonify(data, ("damage_formula",))
        created += _get_or_create(StatusEffectDefinition, row.pop("name"), **row)[1]
    return created


def seed_items() -> Dict[str, Item]:
    items = {}
    for data in ITEMS:
        row = _jsonify(data, ("stat_modifiers", "use_effect"))
        items[data["name"]] = _get_or_create(Item, row.pop("name"), **row)[0]
    return items


def seed_enemies() -> Dict[str, Enemy]:
    enemies = {}
    for data in ENEMIES:
        row = _jsonify(data, ("stat_scaling", "abilities", "resistances", "weaknesses", "effect_immunities"))
        enemies[data["name"]] = _get_or_create(Enemy, row.pop("name"), **row)[0]
    return enemies


def seed_dungeon(enemies: Dict[str, Enemy]) -> Dungeon:
    row = _jsonify(DUNGEON, ("dc_range",))
    dungeon, _ = _get_or_create(Dungeon, row.pop("name"), **row)
    dungeon.completion_condition = json.dumps({"type": "boss_killed", "enemy_id": enemies[BOSS_NAME].id})
    return dungeon


def seed_enemy_rules(dungeon: Dungeon, enemies: Dict[str, Enemy]) -> int:
    created = 0
    for enemy_name, weight in ENEMY_SPAWNS:
        enemy_id = enemies[enemy_name].id
        exists = EnemyRule.query.filter_by(source_type="dungeon", source_id=dungeon.id, enemy_id=enemy_id).first()
        if exists:
            continue
        db.session.add(EnemyRule(source_type="dungeon", source_id=dungeon.id, enemy_id=enemy_id, spawn_weight=weight))
        created += 1
    return created


def seed_loot_rules(dungeon: Dungeon, items: Dict[str, Item], enemies: Dict[str, Enemy]) -> int:
    created = 0
    for source_type, source_enemy, item_name, drop_type, weight, extra in LOOT_TABLE:
        source_id = enemies[source_enemy].id if source_enemy else dungeon.id
        item_id = items[item_name].id
        exists = LootRule.query.filter_by(source_type=source_type, source_id=source_id, item_id=item_id).first()
        if exists:
            continue
        db.session.add(
            LootRule(
                source_type=source_type,
                source_id=source_id,
                item_id=item_id,
                drop_type=drop_type,
                base_weight=weight,
                **extra,
            )
        )
        created += 1
    return created


def seed_all() -> Dict[str, int]:
    """Insert any missing built-in content. Returns per-table insert counts."""
    try:
        counts = {
            "damage_types": seed_damage_types(),
            "status_effects": seed_status_effects(),
        }
        before = Item.query.count()
        items = seed_items()
        counts["items"] = Item.query.count() - before
        before = Enemy.query.count()
        enemies = seed_enemies()
        counts["enemies"] = Enemy.query.count() - before
        dungeon = seed_dungeon(enemies)
        counts["enemy_rules"] = seed_enemy_rules(dungeon, enemies)
        counts["loot_rules"] = seed_loot_rules(dungeon, items, enemies)
        db.session.commit()
    except Exception:
        db.session.rollback()
        log.error(event="seed_failed")
        raise
    log.info(event="seed_complete", **counts)
    return counts


__all__ = ["seed_all", "DUNGEON_NAME", "BOSS_NAME"]
