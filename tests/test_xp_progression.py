from crawler import db
from crawler.models.xp import level_for_xp, xp_for_level, xp_multiplier
from crawler.services import persistence
from crawler.services.progression import distribute_xp, handle_player_death
from tests.factories import ScriptedRandom, create_player, give_item, inventory_names


def test_level_curve():
    assert level_for_xp(0) == 1
    assert level_for_xp(9) == 1
    assert level_for_xp(10) == 2
    assert level_for_xp(160) == 5
    assert level_for_xp(1000) == 11
    assert level_for_xp(10**9) == 100


def test_xp_for_level_inverts_curve():
    assert xp_for_level(1) == 0
    assert xp_for_level(-3) == 0
    for level in (2, 5, 11, 40):
        assert level_for_xp(xp_for_level(level)) == level
        assert level_for_xp(xp_for_level(level) - 1) == level - 1


def test_outcome_multipliers():
    assert xp_multiplier("critical_success") == 2.0
    assert xp_multiplier("success") == 1.0
    assert xp_multiplier("partial") == 1.0
    assert xp_multiplier("failure") == 0.5
    assert xp_multiplier("critical_failure") == 0.25
    assert xp_multiplier(None) == 1.0


def test_distribute_xp_levels_up(seeded):
    p = create_player()
    records = distribute_xp(p.id, "lockpicking", 10, "success")
    db.session.commit()
    assert records == [{"skill": "lockpicking", "xp_gained": 10, "leveled_up": True, "old_level": 1, "new_level": 2}]
    skill = persistence.get_skill(p.id, "lockpicking")
    assert skill.level == 2 and skill.true_level == 2 and skill.xp == 10


def test_distribute_xp_scales_and_floors_at_one(seeded):
    p = create_player()
    assert distribute_xp(p.id, "melee", 3, "critical_failure") == [{"skill": "melee", "xp_gained": 1, "leveled_up": False}]
    assert distribute_xp(p.id, "melee", 8, "critical_success")[0]["xp_gained"] == 16
    assert distribute_xp(p.id, "juggling", 10, "success") == []


def test_death_drops_half_of_run_items_and_all_quest_items(seeded):
    p = create_player()
    give_item(p, "Rusty Shortsword")
    give_item(p, "Health Potion", quantity=2, run_id=7)
    give_item(p, "Torch", run_id=7)
    give_item(p, "Crypt Dust", quantity=3, run_id=7)
    give_item(p, "Warden's Sigil", run_id=7)

    lost = handle_player_death(p.id, 7, ScriptedRandom())["items_lost"]
    db.session.commit()

    regular = [i for i in lost if not i.get("was_quest_item")]
    quest = [i for i in lost if i.get("was_quest_item")]
    # ceil(3 / 2) of the three regular pickups
    assert len(regular) == 2
    assert [i["name"] for i in quest] == ["Warden's Sigil"]
    names = inventory_names(p)
    assert "Rusty Shortsword" in names
    assert "Warden's Sigil" not in names
    assert len(names) == 2
