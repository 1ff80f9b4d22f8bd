from crawler.engine.combat import (
    attack_damage,
    attack_dc,
    calculate_player_armor,
    calculate_player_resistance,
    damage_enemy,
    flee_damage,
    pick_enemy_ability,
    process_enemy_turn,
    tick_cooldowns,
    weapon_crit_range,
    weapon_damage_type,
)
from crawler.engine.records import EnemyInstance, RoomState
from tests.factories import ScriptedRandom, bite

SWORD = {"item_type": "weapon", "item_subtype": "melee", "damage_type": "slashing", "base_crit_range": 19, "stat_modifiers": '{"damage_bonus": 3}'}
MAIL = {"item_type": "armor", "item_subtype": "medium_armor", "stat_modifiers": {"armor": 5, "resistance": {"slashing": 0.8}}}


def _enemy(**kw):
    base = dict(enemy_id=1, instance_id="e1", name="Shambling Skeleton", hp_current=20, hp_max=20, damage=8, armor=2)
    base.update(kw)
    return EnemyInstance(**base)


def test_equipment_helpers():
    assert calculate_player_armor([SWORD, MAIL]) == 5
    assert calculate_player_resistance([MAIL], "slashing") == 0.8
    assert calculate_player_resistance([MAIL], "fire") == 1.0
    assert weapon_crit_range([MAIL, SWORD]) == 19
    assert weapon_crit_range([]) == 20
    assert weapon_damage_type([]) == "blunt"


def test_attack_formulas():
    # 5 + 14/3 = 9.67 -> 10
    assert attack_damage(14, 0) == 10
    assert attack_damage(10, 3) == 11
    assert attack_dc(_enemy(armor=5)) == 12
    assert attack_dc(_enemy(armor=5, dc_modifier=2)) == 14


def test_damage_enemy_resistance_then_armor():
    enemy = _enemy(resistances={"slashing": 0.5})
    state = RoomState(is_combat_active=True).bind(None)
    state.enemies = [enemy]
    res = damage_enemy(enemy, 10, "slashing", state, loot_rules=[])
    # 10 * 0.5 = 5, minus 2 armor
    assert res.damage_dealt == 3
    assert res.resistance_applied
    assert enemy.hp_current == 17
    assert not res.enemy_died
    assert state.is_combat_active


def test_malformed_resistance_counts_as_none():
    enemy = _enemy(resistances={"slashing": "lots", "blunt": None})
    state = RoomState(is_combat_active=True)
    state.enemies = [enemy]
    res = damage_enemy(enemy, 10, "slashing", state, loot_rules=[])
    assert res.damage_dealt == 8
    assert not res.resistance_applied
    assert damage_enemy(enemy, 5, "blunt", state, loot_rules=[]).damage_dealt == 3

    cloak = {"item_type": "armor", "stat_modifiers": {"resistance": {"slashing": [0.5]}}}
    assert calculate_player_resistance([cloak, MAIL], "slashing") == 0.8


def test_damage_enemy_always_at_least_one():
    enemy = _enemy(armor=30)
    state = RoomState(is_combat_active=True)
    state.enemies = [enemy]
    assert damage_enemy(enemy, 4, "blunt", state, loot_rules=[]).damage_dealt == 1


def test_killing_last_enemy_ends_combat_and_rolls_rewards():
    enemy = _enemy(hp_current=3, xp_reward=12, gold_reward_min=4, gold_reward_max=4)
    other = _enemy(instance_id="e2", is_dead=True, hp_current=0)
    state = RoomState(is_combat_active=True)
    state.enemies = [other, enemy]
    res = damage_enemy(enemy, 10, "blunt", state, loot_rules=[])
    assert res.enemy_died and enemy.is_dead and enemy.hp_current == 0
    assert res.xp_reward == 12
    assert res.gold_drop == 4
    assert not state.is_combat_active


def test_flee_damage_by_outcome():
    enemy = _enemy(damage=8)
    assert flee_damage(enemy, "critical_success") == 0
    assert flee_damage(enemy, "success") == 2
    assert flee_damage(enemy, "partial") == 4
    assert flee_damage(enemy, "failure") == 8


def test_enemy_turn_full_hit_on_failed_dodge():
    enemy = _enemy(abilities=[bite(base_dc=12)])
    turn = process_enemy_turn(enemy, {}, {}, [], ScriptedRandom(rolls=[3], floats=[0.5]))
    assert turn.action == "Bite"
    assert turn.dodge_check.outcome == "failure"
    assert turn.damage == 8


def test_enemy_turn_partial_dodge_halves():
    enemy = _enemy(abilities=[bite(base_dc=12)])
    turn = process_enemy_turn(enemy, {}, {}, [], ScriptedRandom(rolls=[10], floats=[0.5]))
    assert turn.dodge_check.outcome == "partial"
    assert turn.damage == 4


def test_enemy_turn_clean_dodge_takes_nothing():
    enemy = _enemy(abilities=[bite(base_dc=12)])
    turn = process_enemy_turn(enemy, {}, {}, [], ScriptedRandom(rolls=[15]))
    assert turn.dodge_check.outcome == "success"
    assert turn.damage == 0


def test_enemy_turn_armor_reduces_hit():
    enemy = _enemy(abilities=[bite(base_dc=12)])
    turn = process_enemy_turn(enemy, {}, {}, [MAIL], ScriptedRandom(rolls=[3], floats=[0.5]))
    assert turn.damage == 3


def test_enemy_turn_effect_roll():
    ability = bite(base_dc=12, effect_chance=0.4, effect_value={"status": "poison", "duration_actions": 5})
    enemy = _enemy(name="Venomous Spider", abilities=[ability])
    turn = process_enemy_turn(enemy, {}, {}, [], ScriptedRandom(rolls=[3], floats=[0.5, 0.1]))
    assert turn.effects == [{"type": "poison", "duration": 5, "source": "Venomous Spider"}]


def test_stunned_and_idle_enemies():
    stunned = _enemy(abilities=[bite()], skip_next_action=True)
    assert process_enemy_turn(stunned, {}, {}, []).action == "skip"
    assert not stunned.skip_next_action
    assert process_enemy_turn(_enemy(), {}, {}, []).action == "idle"


def test_ability_gating_and_cooldowns():
    roar = {"name": "Roar", "trigger_condition": {"type": "hp_threshold_below", "value": 0.5}, "max_charges": 1}
    slam = {"name": "Slam", "cooldown_rounds": 2}
    enemy = _enemy(abilities=[roar, slam])
    assert pick_enemy_ability(enemy, ScriptedRandom())["name"] == "Slam"
    enemy.ability_cooldowns["Slam"] = 2
    assert pick_enemy_ability(enemy, ScriptedRandom()) is None
    enemy.hp_current = 5
    assert pick_enemy_ability(enemy, ScriptedRandom())["name"] == "Roar"
    enemy.ability_charges["Roar"] = 0
    assert pick_enemy_ability(enemy, ScriptedRandom()) is None

    state = RoomState(round_number=1)
    state.enemies = [enemy]
    tick_cooldowns(state)
    assert enemy.ability_cooldowns["Slam"] == 1
    assert state.round_number == 2
