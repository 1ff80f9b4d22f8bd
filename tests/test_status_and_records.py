import json

from crawler.engine.records import (
    STATE_VERSION,
    EnemyInstance,
    FloorMap,
    Room,
    RoomState,
    RunStats,
    StatusEffect,
    decode_context,
    decode_run_stats,
    encode_context,
    encode_run_stats,
)
from crawler.engine.status_effects import apply_enemy_effect, cleanse, tick_status_effects


def test_poison_ticks_then_expires():
    effects = [StatusEffect(type="poison", duration=2, damage_per_tick=2, source="Venomous Spider")]
    first = tick_status_effects(effects)
    assert first.damage == 2
    assert first.poison_summary() == {"damage": 2, "remaining": True, "turns_left": 1}
    second = tick_status_effects(first.remaining)
    assert second.damage == 2
    assert second.remaining == []
    assert [e.type for e in second.expired] == ["poison"]
    assert second.poison_summary() == {"damage": 2, "remaining": False, "turns_left": 0}


def test_untracked_effects_only_lose_duration():
    report = tick_status_effects([StatusEffect(type="stun", duration=1)])
    assert report.damage == 0
    assert report.poison_summary() is None
    assert len(report.expired) == 1


def test_poison_refreshes_per_source_instead_of_stacking():
    effects = []
    apply_enemy_effect(effects, {"type": "poison", "duration": 3, "source": "Spider A"})
    apply_enemy_effect(effects, {"type": "poison", "duration": 5, "source": "Spider A"})
    apply_enemy_effect(effects, {"type": "poison", "duration": 2, "source": "Spider B"})
    assert [(e.source, e.duration) for e in effects] == [("Spider A", 5), ("Spider B", 2)]
    assert apply_enemy_effect(effects, {"type": "silence", "duration": 2, "source": "Warden"}) is None
    assert len(effects) == 2


def test_cleanse_by_name():
    effects = [StatusEffect("poison", 3), StatusEffect("burn", 2)]
    kept, removed = cleanse(effects, ["poison"])
    assert removed == 1
    assert [e.type for e in kept] == ["burn"]


def test_malformed_blobs_decode_to_empty_records():
    assert FloorMap.from_json("{not json").rooms == []
    assert FloorMap.from_json(None).floor_number == 1
    assert decode_run_stats("garbage") == RunStats()
    assert RoomState.from_json("") == RoomState()
    assert decode_context("[oops") == []


def test_non_numeric_floor_number_falls_back_to_first_floor():
    raw = json.dumps({"floor_number": "abc", "rooms": [{"room_number": 1, "type": "entrance"}]})
    floor = FloorMap.from_json(raw)
    assert floor.floor_number == 1
    assert floor.room(1).type == "entrance"
    assert FloorMap.from_json('{"floor_number": [3], "rooms": []}').floor_number == 1


def test_missing_keys_take_defaults_and_unknown_keys_are_ignored():
    raw = json.dumps({"floor_number": 2, "rooms": [{"room_number": 3, "mystery": 1, "trap": {"name": "Flame Jet"}}]})
    room = FloorMap.from_json(raw).room(3)
    assert room.type == "standard"
    assert room.connections == []
    assert room.trap.dc == 10 and room.trap.is_armed


def test_encoded_blobs_carry_version():
    assert json.loads(encode_run_stats(RunStats()))["v"] == STATE_VERSION
    assert json.loads(FloorMap().to_json())["v"] == STATE_VERSION
    assert json.loads(encode_context([]))["v"] == STATE_VERSION
    # legacy bare-list context is still readable
    assert decode_context(json.dumps([{"action": "look"}])) == [{"action": "look"}]


def test_room_state_is_bound_to_room_enemies():
    rat = EnemyInstance(enemy_id=1, instance_id="e1", name="Crypt Rat", hp_current=5, hp_max=5, damage=4, armor=0)
    room = Room(room_number=1, type="standard", enemies=[rat])
    state = RoomState.for_room(room)
    assert state.enemies is room.enemies
    # enemies stay on the floor map, not in the room state blob
    assert "enemies" not in json.loads(state.to_json())


def test_run_stats_keep_status_effects():
    stats = RunStats(damage_taken=4, torch_lit=True, status_effects=[StatusEffect("poison", 3, 2, "Spider")])
    back = decode_run_stats(encode_run_stats(stats))
    assert back.torch_lit
    assert back.has_effect("poison")
    assert back.status_effects[0].source == "Spider"
