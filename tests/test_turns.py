"""End-to-end turns through run_service.process_action.

Every scenario builds its floor by hand and scripts the dice, so the numbers in
the assertions follow directly from the rules:

    attack     d20 + str mod (+2 for the test character) vs 10 + armor // 2
    damage     round(5 + str / 3) + weapon bonus, resistance then armor
    flee       stealth (dex +1) vs 12
"""
import json
import random

import pytest

from crawler import db
from crawler.engine.records import (
    Chest,
    FloorMap,
    Lock,
    RestSpot,
    RoomState,
    RunStats,
    StatusEffect,
    Trap,
    decode_context,
    decode_run_stats,
)
from crawler.errors import RunStateError, UserError
from crawler.models import ActiveRun, Enemy, RunActionLog
from crawler.seed_content import BOSS_NAME
from crawler.services import persistence, run_service
from tests.factories import (
    ScriptedRandom,
    bite,
    create_player,
    crypt,
    give_item,
    inventory_names,
    make_enemy,
    make_room,
    start_run_with,
)


def _one_room(*enemies, **extra):
    return FloorMap(1, [make_room(1, accessible=True, connections=[2], enemies=list(enemies), **extra), make_room(2, connections=[1])])


def _log_rows(run):
    return RunActionLog.query.filter_by(run_id=run.id).order_by(RunActionLog.sequence).all()


# ── combat ──


def test_attack_kills_enemy_and_grants_rewards(seeded):
    p = create_player()
    rat = make_enemy("Crypt Rat", hp=5, xp_reward=8, gold_reward_min=2, gold_reward_max=2)
    run = start_run_with(p, _one_room(rat), combat=True)

    out = run_service.process_action(p.id, "attack the rat", ScriptedRandom(rolls=[15]))

    assert out.intent.type == "attack"
    hit = out.combat_results[0]
    assert hit["enemy_died"] and hit["damage_dealt"] == 10 and not hit["missed"]
    assert out.checks[0].final_total == 17 and out.checks[0].dc == 10
    assert out.checks[0].dc_source == "enemy_armor"
    assert [d["item_name"] for d in out.loot_drops] == ["Crypt Dust"]
    assert out.gold_gained == 2
    assert out.xp_gained == {"melee": 8}
    assert out.enemy_turns == []

    assert p.gold == 102
    dust = [e for e in persistence.get_inventory(p.id) if e.item.name == "Crypt Dust"]
    assert dust and dust[0].acquired_in_run_id == run.id
    assert run.status == "active" and run.pending_since is None
    assert not RoomState.from_json(run.room_state).is_combat_active
    saved = persistence.get_floor_map(run.id, 1)
    assert saved.room(1).enemies[0].is_dead
    stats = decode_run_stats(run.run_stats)
    assert (stats.enemies_killed, stats.damage_dealt) == (1, 10)

    rows = _log_rows(run)
    assert [(r.sequence, r.intent, r.action_type, r.outcome) for r in rows] == [(1, "attack", "player_action", "success")]
    assert json.loads(rows[0].mechanics)["combat"][0]["killed"] is True


def test_miss_then_enemy_hits_back(seeded):
    p = create_player()
    rat = make_enemy("Crypt Rat", hp=12, damage=4, abilities=[bite(base_dc=8)])
    run = start_run_with(p, _one_room(rat), combat=True)

    # attack roll 2, dodge roll 1 (fumble), damage variance x1.0
    out = run_service.process_action(p.id, "attack the rat", ScriptedRandom(rolls=[2, 1], floats=[0.5]))

    assert out.combat_results[0]["missed"]
    assert out.xp_gained == {"melee": 2}
    turn = out.enemy_turns[0]
    assert (turn.action, turn.damage) == ("Bite", 4)
    assert turn.dodge_check.is_fumble
    assert out.hp_change == -4 and out.updated_player_hp == 46
    assert p.hp_current == 46
    assert decode_run_stats(run.run_stats).damage_taken == 4
    state = RoomState.from_json(run.room_state)
    assert state.is_combat_active and state.round_number == 2


def test_unequip_in_combat(seeded):
    p = create_player()
    sword = give_item(p, "Rusty Shortsword", equipped=True)
    start_run_with(p, _one_room(make_enemy("Crypt Rat", hp=9)), combat=True)

    out = run_service.process_action(p.id, "sheathe my sword", ScriptedRandom())

    assert out.intent.type == "unequip"
    assert out.flags["unequipped_item"] == "Rusty Shortsword"
    assert not sword.is_equipped
    # the rat has no abilities and just idles
    assert [t.action for t in out.enemy_turns] == ["idle"]


def test_flee_success_takes_quarter_damage(seeded):
    p = create_player()
    skeleton = make_enemy("Shambling Skeleton", hp=20, damage=8, abilities=[bite(base_dc=20)])
    run = start_run_with(p, _one_room(skeleton), combat=True)

    out = run_service.process_action(p.id, "flee!", ScriptedRandom(rolls=[15]))

    assert out.intent.type == "flee"
    assert out.checks[0].skill == "stealth" and out.checks[0].outcome == "success"
    assert out.flags["flee_success"] and out.flags["flee_outcome"] == "success"
    assert out.hp_change == -2
    assert out.enemy_turns == []
    assert p.hp_current == 48
    assert not RoomState.from_json(run.room_state).is_combat_active


def test_failed_flee_skips_enemy_turns(seeded):
    p = create_player()
    skeleton = make_enemy("Shambling Skeleton", hp=20, damage=8, abilities=[bite(base_dc=20)])
    run = start_run_with(p, _one_room(skeleton), combat=True)

    out = run_service.process_action(p.id, "run away", ScriptedRandom(rolls=[3]))

    assert out.checks[0].outcome == "failure"
    assert "flee_success" not in out.flags
    assert out.enemy_turns == [] and out.hp_change == 0
    assert RoomState.from_json(run.room_state).is_combat_active


# ── death & completion ──


def test_death_loses_items_and_gold(seeded):
    p = create_player(hp=3, gold=100)
    rat = make_enemy("Crypt Rat", hp=12, damage=10, abilities=[bite(base_dc=8)])
    run = start_run_with(p, _one_room(rat), combat=True)
    give_item(p, "Rusty Shortsword")
    give_item(p, "Health Potion", quantity=2, run_id=run.id)
    give_item(p, "Torch", run_id=run.id)
    give_item(p, "Warden's Sigil", run_id=run.id)

    out = run_service.process_action(p.id, "attack the rat", ScriptedRandom(rolls=[2, 1], floats=[0.5]))

    assert out.player_died
    assert out.updated_player_hp == 0
    assert out.flags["gold_lost"] == 25
    assert len(out.items_lost_on_death) == 2
    assert any(i.get("was_quest_item") and i["name"] == "Warden's Sigil" for i in out.items_lost_on_death)

    assert run.status == "dead" and run.ended_at is not None
    assert p.hp_current == 1
    assert p.gold == 75
    names = inventory_names(p)
    assert "Rusty Shortsword" in names and "Warden's Sigil" not in names
    assert len([n for n in names if n in ("Health Potion", "Torch")]) == 1
    assert persistence.get_history(p.id, run.dungeon_id).times_died == 1
    assert persistence.get_active_run(p.id) is None
    assert _log_rows(run)[0].action_type == "death"

    with pytest.raises(UserError) as exc:
        run_service.process_action(p.id, "look around", ScriptedRandom())
    assert exc.value.code == "no_active_run"


def test_killing_the_boss_completes_the_run(seeded):
    p = create_player(hp=30, gold=100)
    warden_id = Enemy.query.filter_by(name=BOSS_NAME).first().id
    boss = make_enemy(BOSS_NAME, hp=5, damage=14, is_boss=True, xp_reward=75, gold_reward_min=5, gold_reward_max=5)
    assert boss.enemy_id == warden_id
    floor = FloorMap(3, [make_room(1, type="boss", accessible=True, is_boss_room=True, enemies=[boss])])
    run = start_run_with(p, floor, combat=True)

    out = run_service.process_action(p.id, "strike the warden", ScriptedRandom(rolls=[15]))

    dungeon = crypt()
    bonus = 50 + dungeon.difficulty_tier * 25
    assert out.run_complete
    assert out.flags["completion_gold"] == bonus
    assert out.gold_gained == 5 + bonus
    assert p.gold == 100 + 5 + bonus
    assert p.hp_current == p.hp_max == 50
    assert out.updated_player_hp == 50
    assert run.status == "completed"
    names = inventory_names(p)
    assert "Crypt Warden's Mace" in names and "Warden's Sigil" in names
    assert out.level_ups and out.level_ups[0]["skill"] == "melee"
    assert persistence.get_history(p.id, dungeon.id).times_completed == 1
    assert _log_rows(run)[0].action_type == "run_complete"


# ── movement ──


def test_exit_leads_to_next_floor_and_resets_context(seeded):
    p = create_player()
    floor = FloorMap(2, [make_room(1, accessible=True, connections=[2]), make_room(2, connections=[1], is_exit=True)])
    history = [{"role": "user", "action": f"step {i}"} for i in range(5)]
    run = start_run_with(p, floor, context=history)

    out = run_service.process_action(p.id, "go to the exit", random.Random(5))

    assert out.intent.type == "move"
    assert out.room_cleared and out.newly_accessible_rooms == [2]
    assert out.floor_transition
    assert (out.previous_floor, out.moved_to_floor, out.moved_to_room) == (2, 3, 1)
    assert out.flags["total_floors"] == 3
    assert (run.current_floor, run.current_room) == (3, 1)

    entries = decode_context(run.ai_context)
    assert len(entries) == 1
    assert entries[0]["action"] == "go to the exit"
    assert entries[0]["mechanical_results"]["moved_to_floor"] == 3

    assert persistence.get_floor_map(run.id, 2).room(1).is_cleared
    final = persistence.get_floor_map(run.id, 3)
    assert final.rooms[-1].is_boss_room
    assert RoomState.from_json(run.room_state).room_number == 1


def test_move_into_boss_room_gives_a_free_turn(seeded):
    p = create_player()
    boss = make_enemy(BOSS_NAME, hp=80, damage=14, is_boss=True, abilities=[bite(base_dc=30)])
    floor = FloorMap(
        3,
        [
            make_room(1, accessible=True, connections=[2]),
            make_room(2, type="boss", connections=[1], is_boss_room=True, enemies=[boss]),
        ],
    )
    run = start_run_with(p, floor)

    out = run_service.process_action(p.id, "go to room 2", ScriptedRandom())

    assert out.moved_to_room == 2 and out.boss_room_entered
    assert out.enemy_turns == [] and out.hp_change == 0
    assert run.current_room == 2
    assert RoomState.from_json(run.room_state).is_combat_active


def test_walking_into_a_cleared_room_stays_out_of_combat(seeded):
    p = create_player()
    corpse = make_enemy("Crypt Rat", hp=0, is_dead=True)
    floor = FloorMap(
        1,
        [
            make_room(1, accessible=True, connections=[2]),
            make_room(2, accessible=True, connections=[1], is_cleared=True, enemies=[corpse]),
        ],
    )
    run = start_run_with(p, floor)

    out = run_service.process_action(p.id, "go to room 2", ScriptedRandom())
    assert out.moved_to_room == 2
    state = RoomState.from_json(run.room_state)
    assert not state.is_combat_active and state.round_number == 0

    again = run_service.process_action(p.id, "look around", ScriptedRandom(rolls=[10, 1]))
    assert again.enemy_turns == []
    state = RoomState.from_json(run.room_state)
    assert not state.is_combat_active and state.round_number == 0


def test_locked_room_blocks_movement(seeded):
    p = create_player()
    floor = FloorMap(
        1,
        [make_room(1, accessible=True, connections=[2]), make_room(2, type="locked", connections=[1], lock=Lock(lock_dc=14))],
    )
    run = start_run_with(p, floor)

    out = run_service.process_action(p.id, "go to room 2", ScriptedRandom())

    assert out.flags["move_blocked"] == {"room": 2, "reason": "locked", "dc": 14}
    assert run.current_room == 1
    assert out.moved_to_room is None


def test_walking_into_a_trap(seeded):
    p = create_player()
    trap = Trap(name="Flame Jet", damage_type="fire", damage=12, effect=None, check="dexterity", description="", dc=14)
    floor = FloorMap(1, [make_room(1, accessible=True, connections=[2]), make_room(2, type="trap", connections=[1], trap=trap)])
    run = start_run_with(p, floor)

    out = run_service.process_action(p.id, "go to room 2", ScriptedRandom(rolls=[5]))

    assert out.checks[0].dc_source == "trap_detection"
    assert out.flags["trap_triggered"] == {"name": "Flame Jet", "damage": 12, "room": 2}
    assert p.hp_current == 38
    assert out.xp_gained == {"perception": 3}
    saved = persistence.get_floor_map(run.id, 1).room(2).trap
    assert saved.is_triggered and not saved.is_armed


def test_spotting_a_trap(seeded):
    p = create_player()
    trap = Trap(name="Flame Jet", damage_type="fire", damage=12, effect=None, check="dexterity", description="", dc=14)
    floor = FloorMap(1, [make_room(1, accessible=True, connections=[2]), make_room(2, type="trap", connections=[1], trap=trap)])
    start_run_with(p, floor)

    out = run_service.process_action(p.id, "go to room 2", ScriptedRandom(rolls=[18]))

    assert out.flags["trap_detected"] == {"name": "Flame Jet", "room": 2}
    assert out.hp_change == 0


# ── skill checks, chests, searching ──


def test_lockpicking_consumes_a_pick_and_opens_the_door(seeded):
    p = create_player()
    pick = give_item(p, "Thieves' Pick", quantity=2)
    floor = FloorMap(
        1,
        [make_room(1, accessible=True, connections=[2]), make_room(2, type="locked", connections=[1], lock=Lock(lock_dc=12))],
    )
    run = start_run_with(p, floor)

    out = run_service.process_action(p.id, "pick the lock", ScriptedRandom(rolls=[14]))

    assert out.intent.skill == "lockpicking"
    assert out.flags["lockpick_consumed"] is True
    assert out.flags["unlocked_room"] == 2
    assert out.checks[0].dc == 12 and out.checks[0].passed
    assert pick.quantity == 1
    door = persistence.get_floor_map(run.id, 1).room(2)
    assert door.is_accessible and door.lock.is_picked
    assert out.xp_gained == {"lockpicking": 10}


def test_lockpicking_without_a_pick(seeded):
    p = create_player()
    floor = FloorMap(
        1,
        [make_room(1, accessible=True, connections=[2]), make_room(2, type="locked", connections=[1], lock=Lock(lock_dc=12))],
    )
    start_run_with(p, floor)

    out = run_service.process_action(p.id, "pick the lock", ScriptedRandom())

    assert out.flags["no_lockpick"] is True
    assert out.checks == []
    assert out.to_dict()["mechanics"]["no_lockpick"] is True


def test_chest_locked_then_looted(seeded):
    p = create_player()
    run = start_run_with(p, _one_room(chest=Chest(is_locked=True, lock_dc=12)))

    out = run_service.process_action(p.id, "open the chest", ScriptedRandom())
    assert out.flags["chest_locked"] is True
    assert out.loot_drops == []

    floor = persistence.get_floor_map(run.id, 1)
    floor.room(1).chest.is_locked = False
    persistence.save_floor_map(run.id, floor)
    db.session.commit()

    out = run_service.process_action(p.id, "open the chest", ScriptedRandom(rolls=[20]))
    assert out.flags["chest_looted"] is True
    assert out.gold_gained == 20
    assert 1 <= len(out.loot_drops) <= 2
    assert p.gold == 120

    out = run_service.process_action(p.id, "loot the chest", ScriptedRandom())
    assert out.flags["chest_already_looted"] is True
    assert [r.sequence for r in _log_rows(run)] == [1, 2, 3]


def test_search_once_per_room(seeded):
    p = create_player()
    run = start_run_with(p, _one_room())

    # DC roll 10, check roll 15 (+1 wisdom), first weighted pick lands on Crypt Dust
    out = run_service.process_action(p.id, "search the room", ScriptedRandom(rolls=[10, 15], floats=[0.1]))
    assert out.checks[0].dc_source == "room_search" and out.checks[0].passed
    assert [d["item_name"] for d in out.loot_drops] == ["Crypt Dust"]
    assert out.xp_gained == {"perception": 5}
    assert persistence.get_floor_map(run.id, 1).room(1).is_searched

    again = run_service.process_action(p.id, "look around", ScriptedRandom())
    assert again.flags["room_already_searched"] is True
    assert again.checks == []


def test_lit_torch_helps_perception(seeded):
    p = create_player()
    torch = give_item(p, "Torch")
    run = start_run_with(p, _one_room())

    out = run_service.process_action(p.id, "light the torch", ScriptedRandom())
    assert out.flags["torch_lit"] is True
    assert torch.quantity == 1
    assert decode_run_stats(run.run_stats).torch_lit

    again = run_service.process_action(p.id, "light my torch", ScriptedRandom())
    assert again.flags["torch_already_lit"] is True

    search = run_service.process_action(p.id, "search", ScriptedRandom(rolls=[16, 10]))
    assert search.checks[0].perk_total == 3
    assert search.checks[0].perk_bonuses == [{"name": "Torch", "effect": 3}]


# ── items, rest, status effects ──


def test_health_potion_heal_is_capped(seeded):
    p = create_player(hp=45)
    potion = give_item(p, "Health Potion", quantity=2)
    start_run_with(p, _one_room())

    out = run_service.process_action(p.id, "drink the health potion", ScriptedRandom(rolls=[15]))

    assert out.flags["item_used"] == "Health Potion"
    assert out.item_used["effects"] == [{"type": "heal", "value": 5}]
    assert p.hp_current == 50
    assert potion.quantity == 1


def test_antidote_cures_poison(seeded):
    p = create_player()
    give_item(p, "Antidote")
    stats = RunStats(status_effects=[StatusEffect("poison", 4, 2, "Venomous Spider")])
    run = start_run_with(p, _one_room(), stats=stats)

    out = run_service.process_action(p.id, "drink the antidote", ScriptedRandom())

    # the poison still ticks once before the antidote goes down
    assert out.poison_tick == {"damage": 2, "remaining": True, "turns_left": 3}
    assert out.flags["poison_cured"] is True
    assert decode_run_stats(run.run_stats).status_effects == []
    assert "Antidote" not in inventory_names(p)


def test_using_nothing(seeded):
    p = create_player()
    start_run_with(p, _one_room())
    out = run_service.process_action(p.id, "drink a potion", ScriptedRandom())
    assert out.flags["no_item_to_use"] is True


def test_rest_room_heals(seeded):
    p = create_player(hp=30)
    start_run_with(p, FloorMap(1, [make_room(1, type="rest", accessible=True, rest=RestSpot(heal_percent=0.2))]))

    out = run_service.process_action(p.id, "rest by the fire", ScriptedRandom())

    assert out.intent.type == "rest"
    assert out.flags["rest_heal_amount"] == 10
    assert p.hp_current == 40


def test_rest_outside_rest_room(seeded):
    p = create_player(hp=30)
    start_run_with(p, _one_room())
    out = run_service.process_action(p.id, "take a nap and rest", ScriptedRandom())
    assert out.intent.type == "rest_failed"
    assert out.flags["rest_failed"] is True
    assert p.hp_current == 30


def test_poison_ticks_before_the_action(seeded):
    p = create_player()
    stats = RunStats(status_effects=[StatusEffect("poison", 1, 2, "Venomous Spider")])
    run = start_run_with(p, _one_room(), stats=stats)

    out = run_service.process_action(p.id, "hum a tune", ScriptedRandom())

    assert out.intent.type == "general"
    assert out.poison_tick == {"damage": 2, "remaining": False, "turns_left": 0}
    assert [e["type"] for e in out.status_effects_removed] == ["poison"]
    assert p.hp_current == 48
    assert decode_run_stats(run.run_stats).status_effects == []


# ── context window, locking, failure handling ──


def test_context_window_is_trimmed(seeded):
    p = create_player()
    history = [{"role": "user", "action": f"a{i}"} for i in range(12)]
    run = start_run_with(p, _one_room(), context=history)

    run_service.process_action(p.id, "hum a tune", ScriptedRandom())

    entries = decode_context(run.ai_context)
    assert len(entries) == 12
    assert entries[0]["action"] == "a1"
    assert entries[-1]["action"] == "hum a tune"
    assert entries[-1]["intent"] == "general"


def test_busy_run_rejects_actions(seeded):
    p = create_player()
    run = start_run_with(p, _one_room())
    run.status = "processing"
    db.session.commit()

    with pytest.raises(RunStateError) as exc:
        run_service.process_action(p.id, "search", ScriptedRandom())
    assert exc.value.code == "run_not_active"
    assert _log_rows(run) == []


def test_failure_mid_turn_restores_the_run(seeded, monkeypatch):
    p = create_player(gold=100)
    run = start_run_with(p, _one_room())
    run_id = run.id

    def boom(ctx, starting_gold):
        ctx.player.gold = 0
        raise RuntimeError("disk on fire")

    monkeypatch.setattr(run_service, "_apply_results", boom)
    with pytest.raises(RuntimeError):
        run_service.process_action(p.id, "hum a tune", ScriptedRandom())

    db.session.expire_all()
    run = db.session.get(ActiveRun, run_id)
    assert run.status == "active"
    assert run.pending_action_text is None
    assert persistence.get_player(p.id).gold == 100
    assert _log_rows(run) == []

    monkeypatch.undo()
    out = run_service.process_action(p.id, "hum a tune", ScriptedRandom())
    assert out.intent.type == "general"
    assert [r.sequence for r in _log_rows(run)] == [1]
