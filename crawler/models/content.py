"""Declarative content tables: items, enemies, dungeons and their rules.

Rows are authored as data (see ``crawler.seed_content``). Nested structures
(stat modifiers, abilities, resistances, DC ranges, completion predicates) are
stored as JSON text; the accessors below decode them and fall back to empty
defaults when the stored text is malformed, so bad content never halts a turn.
"""

import json

from crawler import db


def parse_json(raw, fallback):
    if raw is None or raw == "":
        return fallback
    if isinstance(raw, (dict, list)):
        return raw
    try:
        value = json.loads(raw)
    except (TypeError, ValueError):
        return fallback
    return value if isinstance(value, type(fallback)) else fallback


class DamageType(db.Model):
    __tablename__ = "damage_types"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(40), unique=True, nullable=False)
    display_name = db.Column(db.String(60), nullable=False)
    description = db.Column(db.Text, nullable=False, default="")


class StatusEffectDefinition(db.Model):
    __tablename__ = "status_effect_definitions"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(40), unique=True, nullable=False)
    # damage | control | meta | buff | debuff
    effect_category = db.Column(db.String(20), nullable=False)
    damage_type = db.Column(db.String(40), nullable=True)
    damage_formula = db.Column(db.Text, nullable=True)
    tick_timing = db.Column(db.String(30), nullable=False, default="start_of_action")
    max_stacks = db.Column(db.Integer, nullable=True)
    blocks_speech = db.Column(db.Boolean, nullable=False, default=False)
    clears_on_combat_end = db.Column(db.Boolean, nullable=False, default=True)
    description = db.Column(db.Text, nullable=False, default="")


class Item(db.Model):
    """Item template. Inventory rows point here."""

    __tablename__ = "items"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(80), nullable=False, unique=True)
    # weapon | armor | consumable | scroll | valuable | quest
    type = db.Column(db.String(20), nullable=False)
    # melee | ranged | potion | ammo | lockpick | light_armor | medium_armor | heavy_armor | shield ...
    subtype = db.Column(db.String(20), nullable=False)
    rarity = db.Column(db.String(20), nullable=False, default="common")
    base_value = db.Column(db.Integer, nullable=False, default=0)
    # JSON: {"armor": 2, "damage_bonus": 3, "resistance": {"slashing": 0.8}}
    stat_modifiers = db.Column(db.Text, nullable=False, default="{}")
    damage_type = db.Column(db.String(40), nullable=True)
    # JSON list: [{"effect_type": "heal", "value": 20, "min": 10}]
    use_effect = db.Column(db.Text, nullable=True)
    base_crit_range = db.Column(db.Integer, nullable=False, default=20)
    # one_handed | two_handed | off_hand
    hand_requirement = db.Column(db.String(20), nullable=True)
    is_stackable = db.Column(db.Boolean, nullable=False, default=False)
    is_quest_item = db.Column(db.Boolean, nullable=False, default=False)
    description = db.Column(db.Text, nullable=False, default="")

    def modifiers(self) -> dict:
        return parse_json(self.stat_modifiers, {})

    def effects(self) -> list:
        return parse_json(self.use_effect, [])


class Enemy(db.Model):
    __tablename__ = "enemies"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(80), nullable=False, unique=True)
    description = db.Column(db.Text, nullable=False, default="")
    base_hp = db.Column(db.Integer, nullable=False)
    base_damage = db.Column(db.Integer, nullable=False)
    base_armor = db.Column(db.Integer, nullable=False, default=0)
    stat_scaling = db.Column(
        db.Text, nullable=False, default='{"hp_per_tier":1.3,"damage_per_tier":1.15,"armor_per_tier":1.1}'
    )
    abilities = db.Column(db.Text, nullable=False, default="[]")
    resistances = db.Column(db.Text, nullable=False, default="{}")
    weaknesses = db.Column(db.Text, nullable=False, default="{}")
    effect_immunities = db.Column(db.Text, nullable=False, default="[]")
    is_boss = db.Column(db.Boolean, nullable=False, default=False)
    xp_reward = db.Column(db.Integer, nullable=False, default=0)
    gold_reward_min = db.Column(db.Integer, nullable=False, default=0)
    gold_reward_max = db.Column(db.Integer, nullable=False, default=0)
    ai_descriptor = db.Column(db.Text, nullable=False, default="")


class Dungeon(db.Model):
    __tablename__ = "dungeons"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False, unique=True)
    difficulty_tier = db.Column(db.Integer, nullable=False, default=1)
    floor_count = db.Column(db.Integer, nullable=False, default=1)
    entry_cost = db.Column(db.Integer, nullable=False, default=0)
    dc_range = db.Column(db.Text, nullable=False, default='{"min":8,"max":18}')
    theme = db.Column(db.Text, nullable=False, default="")
    ai_context_seed = db.Column(db.Text, nullable=False, default="")
    is_secret = db.Column(db.Boolean, nullable=False, default=False)
    # JSON: {"type": "boss_killed", "enemy_id": 4}
    completion_condition = db.Column(db.Text, nullable=False, default='{"type":"boss_killed"}')

    def dc_bounds(self) -> dict:
        bounds = parse_json(self.dc_range, {})
        lo = int(bounds.get("min", 8))
        return {"min": lo, "max": max(lo, int(bounds.get("max", 18)))}

    def completion(self) -> dict:
        return parse_json(self.completion_condition, {"type": "boss_killed"})

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "difficulty_tier": self.difficulty_tier,
            "floor_count": self.floor_count,
            "entry_cost": self.entry_cost,
            "dc_range": self.dc_bounds(),
            "theme": self.theme,
        }


class EnemyRule(db.Model):
    """Which enemies spawn in a dungeon, and how often."""

    __tablename__ = "enemy_rules"

    id = db.Column(db.Integer, primary_key=True)
    # dungeon | floor | room_type
    source_type = db.Column(db.String(20), nullable=False, default="dungeon")
    source_id = db.Column(db.Integer, nullable=False, index=True)
    enemy_id = db.Column(db.Integer, db.ForeignKey("enemies.id"), nullable=False)
    spawn_weight = db.Column(db.Integer, nullable=False, default=1)

    enemy = db.relationship("Enemy", lazy="joined")

    def to_spawn_entry(self) -> dict:
        e = self.enemy
        return {
            "enemy_id": e.id,
            "enemy_name": e.name,
            "base_hp": e.base_hp,
            "base_damage": e.base_damage,
            "base_armor": e.base_armor,
            "stat_scaling": e.stat_scaling,
            "abilities": e.abilities,
            "resistances": e.resistances,
            "weaknesses": e.weaknesses,
            "effect_immunities": e.effect_immunities,
            "is_boss": bool(e.is_boss),
            "xp_reward": e.xp_reward,
            "gold_reward_min": e.gold_reward_min,
            "gold_reward_max": e.gold_reward_max,
            "ai_descriptor": e.ai_descriptor,
            "spawn_weight": self.spawn_weight,
        }


class LootRule(db.Model):
    __tablename__ = "loot_rules"
    __table_args__ = (db.Index("idx_loot_rules_source", "source_type", "source_id"),)

    id = db.Column(db.Integer, primary_key=True)
    # dungeon_completion | chest | room_drop | boss | enemy_kill
    source_type = db.Column(db.String(20), nullable=False)
    source_id = db.Column(db.Integer, nullable=False)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False)
    # guaranteed | weighted
    drop_type = db.Column(db.String(20), nullable=False)
    base_weight = db.Column(db.Integer, nullable=False, default=0)
    # none | min_skill | min_completions | has_item | has_not_item
    condition_type = db.Column(db.String(20), nullable=False, default="none")
    condition_skill_name = db.Column(db.String(20), nullable=True)
    condition_skill_min = db.Column(db.Integer, nullable=True)
    condition_min_completions = db.Column(db.Integer, nullable=True)
    condition_requires_item_id = db.Column(db.Integer, nullable=True)
    requires_perception = db.Column(db.Boolean, nullable=False, default=False)
    perception_dc = db.Column(db.Integer, nullable=True)

    item = db.relationship("Item", lazy="joined")

    def to_rule(self) -> dict:
        return {
            "item_id": self.item_id,
            "item_name": self.item.name,
            "item_type": self.item.type,
            "rarity": self.item.rarity,
            "base_value": self.item.base_value,
            "drop_type": self.drop_type,
            "base_weight": self.base_weight,
            "condition_type": self.condition_type,
            "condition_skill_name": self.condition_skill_name,
            "condition_skill_min": self.condition_skill_min,
            "condition_min_completions": self.condition_min_completions,
            "condition_requires_item_id": self.condition_requires_item_id,
            "requires_perception": bool(self.requires_perception),
            "perception_dc": self.perception_dc,
        }
