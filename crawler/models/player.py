"""Character tables: the player row, rolled stats, skills, inventory and history."""

from crawler import db

from .run import utcnow


class Player(db.Model):
    __tablename__ = "players"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(80), nullable=False)
    gold = db.Column(db.Integer, nullable=False, default=100)
    hp_current = db.Column(db.Integer, nullable=False, default=50)
    hp_max = db.Column(db.Integer, nullable=False, default=50)
    max_inventory_slots = db.Column(db.Integer, nullable=False, default=20)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    base_stats = db.relationship(
        "PlayerBaseStats", uselist=False, backref="player", cascade="all, delete-orphan", lazy="joined"
    )
    skills = db.relationship("PlayerSkill", backref="player", cascade="all, delete-orphan")
    inventory = db.relationship("InventoryEntry", backref="player", cascade="all, delete-orphan")


class PlayerBaseStats(db.Model):
    __tablename__ = "player_base_stats"

    id = db.Column(db.Integer, primary_key=True)
    player_id = db.Column(db.Integer, db.ForeignKey("players.id", ondelete="CASCADE"), unique=True, nullable=False)
    strength = db.Column(db.Integer, nullable=False)
    dexterity = db.Column(db.Integer, nullable=False)
    constitution = db.Column(db.Integer, nullable=False)
    intelligence = db.Column(db.Integer, nullable=False)
    wisdom = db.Column(db.Integer, nullable=False)
    charisma = db.Column(db.Integer, nullable=False)

    def as_dict(self) -> dict:
        return {
            "strength": self.strength,
            "dexterity": self.dexterity,
            "constitution": self.constitution,
            "intelligence": self.intelligence,
            "wisdom": self.wisdom,
            "charisma": self.charisma,
        }


class PlayerSkill(db.Model):
    __tablename__ = "player_skills"
    __table_args__ = (db.UniqueConstraint("player_id", "skill_name", name="uq_player_skill"),)

    id = db.Column(db.Integer, primary_key=True)
    player_id = db.Column(db.Integer, db.ForeignKey("players.id", ondelete="CASCADE"), nullable=False)
    skill_name = db.Column(db.String(20), nullable=False)
    xp = db.Column(db.Integer, nullable=False, default=0)
    level = db.Column(db.Integer, nullable=False, default=1)
    # lifetime level gains; never reduced
    true_level = db.Column(db.Integer, nullable=False, default=1)


class InventoryEntry(db.Model):
    __tablename__ = "player_inventory"

    id = db.Column(db.Integer, primary_key=True)
    player_id = db.Column(db.Integer, db.ForeignKey("players.id", ondelete="CASCADE"), nullable=False, index=True)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    is_equipped = db.Column(db.Boolean, nullable=False, default=False)
    # set for drops picked up during a run; death and abandonment look at it
    acquired_in_run_id = db.Column(db.Integer, nullable=True)
    acquired_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    item = db.relationship("Item", lazy="joined")

    def to_dict(self) -> dict:
        item = self.item
        return {
            "id": self.id,
            "item_id": self.item_id,
            "item_name": item.name,
            "item_type": item.type,
            "item_subtype": item.subtype,
            "rarity": item.rarity,
            "stat_modifiers": item.modifiers(),
            "use_effect": item.effects(),
            "damage_type": item.damage_type,
            "base_crit_range": item.base_crit_range,
            "hand_requirement": item.hand_requirement,
            "is_stackable": bool(item.is_stackable),
            "is_quest_item": bool(item.is_quest_item),
            "quantity": self.quantity,
            "is_equipped": bool(self.is_equipped),
            "acquired_in_run_id": self.acquired_in_run_id,
        }


class DungeonHistory(db.Model):
    __tablename__ = "player_dungeon_history"
    __table_args__ = (db.UniqueConstraint("player_id", "dungeon_id", name="uq_player_dungeon"),)

    id = db.Column(db.Integer, primary_key=True)
    player_id = db.Column(db.Integer, db.ForeignKey("players.id", ondelete="CASCADE"), nullable=False)
    dungeon_id = db.Column(db.Integer, db.ForeignKey("dungeons.id"), nullable=False)
    times_attempted = db.Column(db.Integer, nullable=False, default=0)
    times_completed = db.Column(db.Integer, nullable=False, default=0)
    times_died = db.Column(db.Integer, nullable=False, default=0)
    first_completed_at = db.Column(db.DateTime, nullable=True)
