"""Run lifecycle and the per-turn action loop.

Responsibilities:
    * Start, abandon and report on a player's dungeon run.
    * Resolve one player action end to end (``process_action``): tick status
      effects, classify intent, dispatch to a handler, run enemy turns, apply
      death/completion and persist everything in one transaction.
    * Recover runs stranded in ``processing`` by a crashed process.

Design notes:
    - The ``active``/``processing`` status column is the per-run turn lock. It
      is taken with a compare-and-set update before any work starts and is
      released by the same transaction that stores the turn's results.
    - Any exception after the lock rolls the turn back and puts the run back
      to ``active`` so the player can retry.
    - The narration context is a rolling window of per-turn summaries; a floor
      transition starts a fresh window.
"""

from __future__ import annotations

import json
import math
import random
import time
from dataclasses import asdict
from datetime import timedelta
from typing import Any, Dict, List, Optional

from crawler import game_setting
from crawler.engine import combat
from crawler.engine.floor_generator import generate_floor
from crawler.engine.intent import classify_intent
from crawler.engine.loot import LootContext
from crawler.engine.records import (
    FloorMap,
    Room,
    RoomState,
    RunStats,
    decode_context,
    decode_run_stats,
    encode_context,
    encode_run_stats,
)
from crawler.engine.status_effects import apply_enemy_effect, tick_status_effects
from crawler.errors import RunStateError, UserError
from crawler.logging_utils import get_logger
from crawler.models import ActiveRun
from crawler.models.run import utcnow

from . import persistence
from .actions import HANDLERS, TurnContext
from .outcome import TurnOutcome, summarize_mechanics
from .progression import handle_player_death

log = get_logger("crawler.runs")

COMPLETION_GOLD_BASE = 50
COMPLETION_GOLD_PER_TIER = 25


def _require_player(player_id: int):
    player = persistence.get_player(player_id)
    if player is None:
        raise UserError("No character found. Create one first.", code="no_character")
    return player


def describe_room(room: Optional[Room]) -> Optional[Dict[str, Any]]:
    if room is None:
        return None
    data = asdict(room)
    data["enemies"] = [
        {
            "instance_id": e.instance_id,
            "name": e.name,
            "hp_current": e.hp_current,
            "hp_max": e.hp_max,
            "is_boss": e.is_boss,
            "is_dead": e.is_dead,
        }
        for e in room.enemies
    ]
    return data


# ── lifecycle ──


def start_run(player_id: int, dungeon_id: int, rng=None) -> Dict[str, Any]:
    """Pay the entry cost, create the run and generate floor 1."""
    rng = rng or random
    player = _require_player(player_id)
    dungeon = persistence.get_dungeon(dungeon_id)
    if dungeon is None:
        raise UserError(f"Dungeon {dungeon_id} not found.", code="unknown_dungeon")
    if persistence.get_active_run(player_id) is not None:
        raise RunStateError(
            "You already have an active dungeon run! Finish or abandon it first.", code="run_already_active"
        )
    if player.gold < dungeon.entry_cost:
        raise UserError(
            f"Not enough gold. Entry costs {dungeon.entry_cost}g (you have {player.gold}g).",
            code="insufficient_gold",
        )

    seed = f"{dungeon.id}-{player.id}-{int(time.time() * 1000)}"
    with persistence.transaction():
        player.gold -= dungeon.entry_cost
        floor_map = generate_floor(
            1,
            dungeon.floor_count == 1,
            persistence.enemy_rules_for_dungeon(dungeon.id),
            dungeon.dc_bounds(),
            dungeon.difficulty_tier,
            rng,
        )
        first_room = floor_map.room(1)
        run = persistence.create_run(
            player.id,
            dungeon.id,
            seed,
            room_state=RoomState.for_room(first_room).to_json(),
            run_stats=encode_run_stats(RunStats()),
            ai_context=encode_context([]),
        )
        persistence.save_floor_map(run.id, floor_map)
        persistence.bump_history(player.id, dungeon.id, "times_attempted")

    log.info(event="run_started", run_id=run.id, player_id=player.id, dungeon=dungeon.name, rooms=len(floor_map.rooms))
    return {
        "run_id": run.id,
        "dungeon": dungeon.to_dict(),
        "first_room": describe_room(first_room),
        "entry_cost": dungeon.entry_cost,
    }


def abandon_run(player_id: int) -> Dict[str, Any]:
    run = persistence.get_active_run(player_id)
    if run is None:
        raise UserError("No active run to abandon.", code="no_active_run")
    with persistence.transaction():
        for entry in persistence.get_inventory(player_id):
            if entry.acquired_in_run_id == run.id and entry.item.is_quest_item:
                persistence.remove_item(entry.id, entry.quantity)
        persistence.end_run(run, "abandoned")
    log.info(event="run_abandoned", run_id=run.id, player_id=player_id)
    return {"run_id": run.id, "dungeon_id": run.dungeon_id}


def recover_stale_runs(max_age_seconds: Optional[int] = None) -> List[int]:
    """Put runs stuck in ``processing`` longer than ``max_age_seconds`` back to ``active``."""
    if max_age_seconds is None:
        max_age_seconds = game_setting("stale_run_seconds")
    cutoff = utcnow() - timedelta(seconds=max_age_seconds)
    recovered = []
    for run in persistence.stale_processing_runs(cutoff):
        persistence.restore_active(run.id)
        recovered.append(run.id)
        log.info(event="run_recovered", run_id=run.id, pending_since=run.pending_since)
    return recovered


def get_run_status(player_id: int) -> Dict[str, Any]:
    run = persistence.get_active_run(player_id)
    if run is None:
        raise UserError("No active run.", code="no_active_run")
    floor_map = persistence.get_floor_map(run.id, run.current_floor) or FloorMap(floor_number=run.current_floor)
    room = floor_map.room(run.current_room)
    state = RoomState.from_json(run.room_state).bind(room)
    stats = decode_run_stats(run.run_stats)
    return {
        "run_id": run.id,
        "status": run.status,
        "dungeon": run.dungeon.name if run.dungeon else None,
        "floor": run.current_floor,
        "floor_count": run.dungeon.floor_count if run.dungeon else None,
        "room": describe_room(room),
        "room_state": {
            "is_combat_active": state.is_combat_active,
            "round_number": state.round_number,
            "living_enemies": [e.name for e in state.living_enemies()],
        },
        "run_stats": asdict(stats),
    }


# ── the turn ──


def process_action(player_id: int, action_text: str, rng=None) -> TurnOutcome:
    """Resolve one player action against their active run.

    Raises
    ------
    UserError
        No character or no open run.
    RunStateError
        The run is already processing another action.
    """
    rng = rng or random
    _require_player(player_id)
    run = persistence.get_active_run(player_id)
    if run is None:
        raise UserError("No active run.", code="no_active_run")
    if run.status != "active" or not persistence.acquire_turn_lock(run, action_text):
        raise RunStateError("Run is not active.")

    try:
        with persistence.transaction():
            return _resolve_turn(run, action_text, rng)
    except Exception:
        persistence.restore_active(run.id)
        raise


def _load_context(run: ActiveRun, action_text: str, rng) -> TurnContext:
    player = persistence.get_player(run.player_id)
    dungeon = persistence.get_dungeon(run.dungeon_id)
    skills = persistence.get_skills_map(player.id)
    floor_map = persistence.get_floor_map(run.id, run.current_floor)
    if floor_map is None:
        raise RuntimeError(f"floor {run.current_floor} missing for run {run.id}")
    room = floor_map.room(run.current_room)
    if room is None:
        raise RuntimeError(f"room {run.current_room} missing on floor {run.current_floor} of run {run.id}")
    room_state = RoomState.from_json(run.room_state).bind(room)
    stats = decode_run_stats(run.run_stats)

    intent = classify_intent(action_text, room, room_state)
    loot_context = LootContext(
        perception_level=skills.get("perception", 1),
        player_skills=dict(skills),
        dungeon_completions=persistence.completions_for(player.id, dungeon.id),
        player_item_ids=[e.item_id for e in persistence.get_inventory(player.id)],
    )
    return TurnContext(
        run=run,
        player=player,
        dungeon=dungeon,
        base_stats=persistence.get_base_stats(player.id),
        skills=skills,
        equipped=persistence.equipped_items(player.id),
        floor_map=floor_map,
        room=room,
        room_state=room_state,
        stats=stats,
        loot_context=loot_context,
        outcome=TurnOutcome(action_text=action_text, intent=intent, starting_hp=player.hp_current),
        rng=rng,
    )


def _tick_effects(ctx: TurnContext) -> None:
    report = tick_status_effects(ctx.stats.status_effects)
    ctx.stats.status_effects = report.remaining
    outcome = ctx.outcome
    if report.damage:
        outcome.change_hp(-report.damage)
        outcome.poison_tick = report.poison_summary()
        log.info(event="poison_tick", run_id=ctx.run.id, damage=report.damage)
    for eff in report.expired:
        outcome.status_effects_removed.append(asdict(eff))


def _enemy_turns(ctx: TurnContext) -> None:
    outcome = ctx.outcome
    state = ctx.room_state
    for enemy in state.living_enemies():
        turn = combat.process_enemy_turn(enemy, ctx.base_stats, ctx.skills, ctx.equipped, ctx.rng)
        outcome.enemy_turns.append(turn)
        if turn.damage <= 0:
            continue
        outcome.change_hp(-turn.damage)
        for effect in turn.effects:
            outcome.status_effects_applied.append(effect)
            if apply_enemy_effect(ctx.stats.status_effects, effect) is not None:
                log.info(event="status_applied", run_id=ctx.run.id, effect=effect.get("type"), source=effect.get("source"))
    combat.tick_cooldowns(state)
    if outcome.hp_depleted:
        outcome.mark_dead()


def _boss_defeated(ctx: TurnContext) -> bool:
    condition = ctx.dungeon.completion()
    if condition.get("type") != "boss_killed":
        return False
    wanted = condition.get("enemy_id")
    return any(
        e.is_boss and e.is_dead and (wanted is None or e.enemy_id == wanted) for e in ctx.room_state.enemies
    )


def _apply_results(ctx: TurnContext, starting_gold: int) -> None:
    outcome = ctx.outcome
    player = ctx.player
    run = ctx.run
    dungeon = ctx.dungeon

    if outcome.hp_change:
        new_hp = max(0, min(player.hp_max, player.hp_current + outcome.hp_change))
        player.hp_current = new_hp
        if not outcome.player_died:
            outcome.updated_player_hp = new_hp
        if outcome.hp_change < 0:
            ctx.stats.damage_taken += abs(outcome.hp_change)

    if outcome.gold_gained > 0:
        player.gold += outcome.gold_gained

    for drop in outcome.loot_drops:
        persistence.add_item(player.id, drop["item_id"], drop.get("quantity") or 1, run_id=run.id)

    if outcome.player_died:
        outcome.items_lost_on_death = handle_player_death(player.id, run.id, ctx.rng)["items_lost"]
        penalty = math.floor(starting_gold * game_setting("death_gold_penalty"))
        player.gold = max(0, player.gold - penalty)
        player.hp_current = 1
        outcome.flags["gold_lost"] = penalty
        persistence.bump_history(player.id, dungeon.id, "times_died")
        persistence.end_run(run, "dead")
        log.info(event="player_died", run_id=run.id, player_id=player.id, items_lost=len(outcome.items_lost_on_death))
    elif _boss_defeated(ctx):
        outcome.run_complete = True
        bonus = COMPLETION_GOLD_BASE + (dungeon.difficulty_tier or 1) * COMPLETION_GOLD_PER_TIER
        outcome.flags["completion_gold"] = bonus
        outcome.gold_gained += bonus
        player.gold += bonus
        player.hp_current = player.hp_max
        outcome.updated_player_hp = player.hp_max
        persistence.bump_history(player.id, dungeon.id, "times_completed")
        persistence.end_run(run, "completed")
        log.info(event="run_completed", run_id=run.id, dungeon=dungeon.name, completion_gold=bonus)


def _update_context(ctx: TurnContext) -> None:
    outcome = ctx.outcome
    entries = [] if ctx.reset_context else decode_context(ctx.run.ai_context)
    entries.append(
        {
            "role": "user",
            "action": outcome.action_text,
            "intent": outcome.intent.type,
            "mechanical_results": summarize_mechanics(outcome),
        }
    )
    window = game_setting("ai_context_window")
    ctx.run.ai_context = encode_context(entries[-window:])


def _resolve_turn(run: ActiveRun, action_text: str, rng) -> TurnOutcome:
    ctx = _load_context(run, action_text, rng)
    outcome = ctx.outcome
    starting_gold = ctx.player.gold

    _tick_effects(ctx)

    handler = HANDLERS.get(outcome.intent.type)
    if handler is None:
        outcome.intent.type = "general"
    else:
        handler(ctx, outcome.intent)

    if (
        ctx.room_state.is_combat_active
        and not outcome.player_died
        and outcome.intent.type != "flee"
        and not outcome.boss_room_entered
    ):
        _enemy_turns(ctx)

    if outcome.hp_depleted and not outcome.player_died:
        outcome.mark_dead()

    _apply_results(ctx, starting_gold)

    persistence.save_floor_map(run.id, ctx.floor_map)
    if ctx.next_floor_map is not None:
        persistence.save_floor_map(run.id, ctx.next_floor_map)

    _update_context(ctx)
    run.room_state = ctx.room_state.to_json()
    run.run_stats = encode_run_stats(ctx.stats)
    if run.status == "processing":
        run.status = "active"
        run.pending_action_text = None
        run.pending_since = None
    run.last_action_at = utcnow()

    persistence.log_action(
        run_id=run.id,
        player_id=ctx.player.id,
        sequence=persistence.next_action_sequence(run.id),
        floor_number=run.current_floor,
        room_number=run.current_room,
        action_type=outcome.action_type,
        player_action=action_text,
        intent=outcome.intent.type,
        checks_rolled=json.dumps([c.to_dict() for c in outcome.checks]),
        outcome=outcome.primary_outcome,
        mechanics=json.dumps(summarize_mechanics(outcome)),
        xp_gained=json.dumps(outcome.xp_gained),
        items_found=json.dumps(outcome.loot_drops),
        items_lost=json.dumps(outcome.items_lost_on_death),
    )
    log.info(
        event="action_processed",
        run_id=run.id,
        intent=outcome.intent.type,
        outcome=outcome.primary_outcome,
        hp=outcome.updated_player_hp,
        status=run.status,
    )
    return outcome


__all__ = [
    "start_run",
    "abandon_run",
    "recover_stale_runs",
    "get_run_status",
    "process_action",
    "describe_room",
]
