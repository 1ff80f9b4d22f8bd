"""Floor shape, room features and scaling over a spread of seeds."""
import json
import random

import pytest

from crawler.engine.floor_generator import (
    clear_room,
    create_enemy_instance,
    generate_floor,
    is_connected,
    room_type_weights,
    unlock_room,
)
from crawler.engine.records import FloorMap, Lock
from tests.factories import make_room

RULES = [
    {"enemy_id": 1, "enemy_name": "Crypt Rat", "base_hp": 12, "base_damage": 4, "base_armor": 0, "spawn_weight": 40},
    {"enemy_id": 2, "enemy_name": "Shambling Skeleton", "base_hp": 25, "base_damage": 7, "base_armor": 2, "spawn_weight": 30},
    {"enemy_id": 9, "enemy_name": "The Hollow Warden", "base_hp": 80, "base_damage": 14, "base_armor": 8, "is_boss": True, "spawn_weight": 0},
]
DC = {"min": 8, "max": 16}


@pytest.mark.parametrize("seed", range(25))
def test_floor_shape(seed):
    floor = generate_floor(1, False, RULES, DC, 1, random.Random(seed))
    numbers = [r.room_number for r in floor.rooms]
    assert 4 <= len(numbers) <= 6
    assert numbers == list(range(1, len(numbers) + 1))
    assert is_connected(floor)
    assert [r.room_number for r in floor.rooms if r.is_accessible] == [1]
    entrance = floor.room(1)
    assert entrance.enemies == [] and entrance.chest is None
    assert floor.room(2).type != "locked"
    last = floor.rooms[-1]
    assert last.is_exit and not last.is_boss_room


@pytest.mark.parametrize("seed", range(25))
def test_final_floor_ends_in_boss_room(seed):
    floor = generate_floor(3, True, RULES, DC, 1, random.Random(seed))
    assert 5 <= len(floor.rooms) <= 7
    boss_room = floor.rooms[-1]
    assert boss_room.is_boss_room and boss_room.type == "boss"
    assert not boss_room.is_exit
    bosses = [e for e in boss_room.enemies if e.is_boss]
    assert len(bosses) == 1 and bosses[0].name == "The Hollow Warden"
    # bosses never spawn outside the boss room
    for room in floor.rooms[:-1]:
        assert not any(e.is_boss for e in room.enemies)


def test_room_features_match_type():
    for seed in range(40):
        floor = generate_floor(2, False, RULES, DC, 1, random.Random(seed))
        for room in floor.rooms:
            if room.type == "trap":
                assert room.trap is not None and 8 <= room.trap.dc <= 16
            if room.type == "locked":
                assert room.lock is not None and 10 <= room.lock.lock_dc <= 18
                assert not room.is_accessible
            if room.type == "rest":
                assert 0.2 <= room.rest.heal_percent <= 0.35
            if room.type == "treasure":
                assert room.chest is not None
                if room.chest.is_locked:
                    assert room.chest.lock_dc is not None


def test_deeper_floors_favour_traps_and_locks():
    assert room_type_weights(1)["trap"] == 15
    assert room_type_weights(2)["trap"] == 20
    assert room_type_weights(2)["locked"] == 15
    assert room_type_weights(2)["standard"] == 35


def test_enemy_scaling_by_tier():
    enemy = create_enemy_instance(RULES[0], 3, False, "x-e1")
    # 12 * 1.3^2 = 20.28, 4 * 1.15^2 = 5.29
    assert enemy.hp_max == 20 and enemy.hp_current == 20
    assert enemy.damage == 5
    assert enemy.armor == 0
    assert enemy.instance_id == "x-e1"


def test_enemy_with_unparsable_content_falls_back():
    rule = dict(RULES[1], stat_scaling="{oops", abilities="not json", resistances=json.dumps({"blunt": 1.3}))
    enemy = create_enemy_instance(rule, 1, False, "x-e2")
    assert enemy.abilities == []
    assert enemy.resistances == {"blunt": 1.3}
    assert enemy.hp_max == 25


def test_clear_room_opens_neighbours_but_not_locks():
    floor = FloorMap(
        1,
        [
            make_room(1, accessible=True, connections=[2, 3]),
            make_room(2, connections=[1]),
            make_room(3, type="locked", connections=[1], lock=Lock(lock_dc=14)),
        ],
    )
    assert clear_room(floor, 1) == [2]
    assert floor.room(1).is_cleared
    assert not floor.room(3).is_accessible
    assert unlock_room(floor, 3)
    assert floor.room(3).is_accessible and floor.room(3).lock.is_picked
    assert clear_room(floor, 99) == []
