# Model package init
from .content import (  # noqa: F401 re-export
    DamageType,
    Dungeon,
    Enemy,
    EnemyRule,
    Item,
    LootRule,
    StatusEffectDefinition,
)
from .player import DungeonHistory, InventoryEntry, Player, PlayerBaseStats, PlayerSkill  # noqa: F401
from .run import ActiveRun, RunActionLog, RunFloorMap  # noqa: F401 re-export

__all__ = [
    "ActiveRun",
    "DamageType",
    "Dungeon",
    "DungeonHistory",
    "Enemy",
    "EnemyRule",
    "InventoryEntry",
    "Item",
    "LootRule",
    "Player",
    "PlayerBaseStats",
    "PlayerSkill",
    "RunActionLog",
    "RunFloorMap",
    "StatusEffectDefinition",
]
