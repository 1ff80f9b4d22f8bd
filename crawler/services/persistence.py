"""Narrow query interface used by the run services.

Everything the orchestrator needs from storage goes through these functions so
the turn logic never builds queries itself. Writes only stage changes on the
shared ``db.session``; callers wrap a turn in ``transaction()`` to commit it as
one unit. The turn lock (``acquire_turn_lock`` / ``restore_active``) is the one
exception: it commits immediately so other requests can see it.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy import func, update

from crawler import db
from crawler.engine.records import FloorMap
from crawler.logging_utils import get_logger
from crawler.models import (
    ActiveRun,
    Dungeon,
    DungeonHistory,
    EnemyRule,
    InventoryEntry,
    Item,
    LootRule,
    Player,
    PlayerSkill,
    RunActionLog,
    RunFloorMap,
)
from crawler.models.run import OPEN_STATUSES, utcnow
from crawler.models.xp import level_for_xp

log = get_logger("crawler.persistence")

HISTORY_FIELDS = ("times_attempted", "times_completed", "times_died")


@contextmanager
def transaction() -> Iterator[Any]:
    """Commit everything staged inside the block, or roll all of it back."""
    try:
        yield db.session
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


# ── Players ──


def get_player(player_id: int) -> Optional[Player]:
    return db.session.get(Player, player_id)


def get_base_stats(player_id: int) -> Dict[str, int]:
    player = get_player(player_id)
    if player is None or player.base_stats is None:
        return {}
    return player.base_stats.as_dict()


def get_skill(player_id: int, skill_name: str) -> Optional[PlayerSkill]:
    return PlayerSkill.query.filter_by(player_id=player_id, skill_name=skill_name).first()


def get_skills_map(player_id: int) -> Dict[str, int]:
    rows = PlayerSkill.query.filter_by(player_id=player_id).all()
    return {r.skill_name: r.level for r in rows}


def award_skill_xp(player_id: int, skill_name: str, xp: int) -> Optional[Dict[str, int]]:
    """Add XP to a skill and recompute its level. Returns old/new level, or None for unknown skills."""
    skill = get_skill(player_id, skill_name)
    if skill is None:
        return None
    old_level = skill.level
    skill.xp = (skill.xp or 0) + xp
    new_level = level_for_xp(skill.xp)
    if new_level > old_level:
        skill.level = new_level
        skill.true_level = (skill.true_level or 0) + (new_level - old_level)
    return {"old_level": old_level, "new_level": max(old_level, new_level), "xp": skill.xp}


# ── Dungeons & content ──


def get_dungeon(dungeon_id: int) -> Optional[Dungeon]:
    return db.session.get(Dungeon, dungeon_id)


def list_dungeons(include_secret: bool = False) -> List[Dungeon]:
    q = Dungeon.query
    if not include_secret:
        q = q.filter_by(is_secret=False)
    return q.order_by(Dungeon.difficulty_tier, Dungeon.id).all()


def find_item(name: str) -> Optional[Item]:
    return Item.query.filter(func.lower(Item.name) == name.strip().lower()).first()


def enemy_rules_for_dungeon(dungeon_id: int) -> List[Dict[str, Any]]:
    rows = EnemyRule.query.filter_by(source_type="dungeon", source_id=dungeon_id).all()
    return [r.to_spawn_entry() for r in rows]


def loot_rules_for_source(source_type: str, source_id: int) -> List[Dict[str, Any]]:
    rows = LootRule.query.filter_by(source_type=source_type, source_id=source_id).order_by(LootRule.id).all()
    return [r.to_rule() for r in rows]


# ── Dungeon history ──


def get_history(player_id: int, dungeon_id: int) -> Optional[DungeonHistory]:
    return DungeonHistory.query.filter_by(player_id=player_id, dungeon_id=dungeon_id).first()


def bump_history(player_id: int, dungeon_id: int, field: str) -> DungeonHistory:
    if field not in HISTORY_FIELDS:
        raise ValueError(f"unknown history field: {field}")
    row = get_history(player_id, dungeon_id)
    if row is None:
        row = DungeonHistory(player_id=player_id, dungeon_id=dungeon_id, times_attempted=0, times_completed=0, times_died=0)
        db.session.add(row)
    setattr(row, field, (getattr(row, field) or 0) + 1)
    if field == "times_completed" and row.first_completed_at is None:
        row.first_completed_at = utcnow()
    return row


def completions_for(player_id: int, dungeon_id: int) -> int:
    row = get_history(player_id, dungeon_id)
    return row.times_completed if row else 0


# ── Inventory ──


def get_inventory(player_id: int) -> List[InventoryEntry]:
    return InventoryEntry.query.filter_by(player_id=player_id).order_by(InventoryEntry.id).all()


def get_inventory_dicts(player_id: int) -> List[Dict[str, Any]]:
    return [row.to_dict() for row in get_inventory(player_id)]


def equipped_items(player_id: int) -> List[Dict[str, Any]]:
    rows = InventoryEntry.query.filter_by(player_id=player_id, is_equipped=True).order_by(InventoryEntry.id).all()
    return [row.to_dict() for row in rows]


def add_item(player_id: int, item_id: int, quantity: int = 1, run_id: Optional[int] = None) -> InventoryEntry:
    """Add to inventory; stackable items merge into an existing row."""
    item = db.session.get(Item, item_id)
    if item is not None and item.is_stackable:
        existing = InventoryEntry.query.filter_by(player_id=player_id, item_id=item_id).first()
        if existing is not None:
            existing.quantity += quantity
            return existing
    entry = InventoryEntry(player_id=player_id, item_id=item_id, quantity=quantity, acquired_in_run_id=run_id)
    db.session.add(entry)
    db.session.flush()
    return entry


def remove_item(entry_id: int, quantity: int = 1) -> None:
    entry = db.session.get(InventoryEntry, entry_id)
    if entry is None:
        return
    if entry.quantity <= quantity:
        db.session.delete(entry)
    else:
        entry.quantity -= quantity
    db.session.flush()


def set_equipped(entry_id: int, equipped: bool) -> None:
    entry = db.session.get(InventoryEntry, entry_id)
    if entry is not None:
        entry.is_equipped = equipped


# ── Runs ──


def get_run(run_id: int) -> Optional[ActiveRun]:
    return db.session.get(ActiveRun, run_id)


def get_active_run(player_id: int) -> Optional[ActiveRun]:
    """The player's open run (``active`` or ``processing``), if any."""
    return (
        ActiveRun.query.filter(ActiveRun.player_id == player_id, ActiveRun.status.in_(OPEN_STATUSES))
        .order_by(ActiveRun.id.desc())
        .first()
    )


def create_run(player_id: int, dungeon_id: int, seed: str, room_state: str, run_stats: str, ai_context: str) -> ActiveRun:
    run = ActiveRun(
        player_id=player_id,
        dungeon_id=dungeon_id,
        status="active",
        current_floor=1,
        current_room=1,
        room_state=room_state,
        run_stats=run_stats,
        ai_context=ai_context,
        generation_seed=seed,
    )
    db.session.add(run)
    db.session.flush()
    return run


def acquire_turn_lock(run: ActiveRun, action_text: str) -> bool:
    """Flip ``active -> processing`` atomically. False when the run was not active.

    ``run`` is refreshed afterwards so later writes diff against the locked row.
    """
    now = utcnow()
    result = db.session.execute(
        update(ActiveRun)
        .where(ActiveRun.id == run.id, ActiveRun.status == "active")
        .values(status="processing", pending_action_text=action_text, pending_since=now)
        .execution_options(synchronize_session=False)
    )
    db.session.commit()
    db.session.refresh(run)
    return result.rowcount == 1


def restore_active(run_id: int) -> None:
    """Put a run stuck in ``processing`` back to ``active`` and clear the pending marker."""
    log.warn(event="run_restored_active", run_id=run_id)
    db.session.execute(
        update(ActiveRun)
        .where(ActiveRun.id == run_id, ActiveRun.status == "processing")
        .values(status="active", pending_action_text=None, pending_since=None)
        .execution_options(synchronize_session=False)
    )
    db.session.commit()


def stale_processing_runs(cutoff: datetime) -> List[ActiveRun]:
    return ActiveRun.query.filter(
        ActiveRun.status == "processing",
        db.or_(ActiveRun.pending_since.is_(None), ActiveRun.pending_since < cutoff),
    ).all()


def end_run(run: ActiveRun, status: str) -> None:
    run.status = status
    run.pending_action_text = None
    run.pending_since = None
    run.ended_at = utcnow()


# ── Floor maps ──


def get_floor_map(run_id: int, floor_number: int) -> Optional[FloorMap]:
    row = RunFloorMap.query.filter_by(run_id=run_id, floor_number=floor_number).first()
    return FloorMap.from_json(row.floor_map) if row else None


def save_floor_map(run_id: int, floor_map: FloorMap) -> None:
    row = RunFloorMap.query.filter_by(run_id=run_id, floor_number=floor_map.floor_number).first()
    if row is None:
        db.session.add(RunFloorMap(run_id=run_id, floor_number=floor_map.floor_number, floor_map=floor_map.to_json()))
    else:
        row.floor_map = floor_map.to_json()


# ── Action log ──


def next_action_sequence(run_id: int) -> int:
    current = db.session.query(func.max(RunActionLog.sequence)).filter(RunActionLog.run_id == run_id).scalar()
    return (current or 0) + 1


def log_action(**fields) -> RunActionLog:
    entry = RunActionLog(**fields)
    db.session.add(entry)
    return entry


__all__ = [
    "transaction",
    "get_player",
    "get_base_stats",
    "get_skill",
    "get_skills_map",
    "award_skill_xp",
    "get_dungeon",
    "list_dungeons",
    "find_item",
    "enemy_rules_for_dungeon",
    "loot_rules_for_source",
    "get_history",
    "bump_history",
    "completions_for",
    "get_inventory",
    "get_inventory_dicts",
    "equipped_items",
    "add_item",
    "remove_item",
    "set_equipped",
    "get_run",
    "get_active_run",
    "create_run",
    "acquire_turn_lock",
    "restore_active",
    "stale_processing_runs",
    "end_run",
    "get_floor_map",
    "save_floor_map",
    "next_action_sequence",
    "log_action",
]
