"""Skill experience curve.

Each skill levels independently from its own XP total:

    level = min(100, floor(sqrt(xp / 10)) + 1)

so level 2 needs 10 XP, level 5 needs 160 and level 11 needs 1000. Import
`level_for_xp` anywhere skill levels are derived (progression, character
sheets, tests).
"""

import math

MAX_SKILL_LEVEL = 100

# Multipliers applied to an action's base XP by check outcome
OUTCOME_XP_MULTIPLIERS = {
    "critical_success": 2.0,
    "failure": 0.5,
    "critical_failure": 0.25,
}


def level_for_xp(xp: int) -> int:
    """Return the skill level reached with ``xp`` total experience."""
    if xp <= 0:
        return 1
    return min(MAX_SKILL_LEVEL, int(math.floor(math.sqrt(xp / 10))) + 1)


def xp_for_level(level: int) -> int:
    """Return the minimum total XP needed for ``level`` (inverse of `level_for_xp`)."""
    if level <= 1:
        return 0
    level = min(level, MAX_SKILL_LEVEL)
    return (level - 1) ** 2 * 10


def xp_multiplier(outcome: str | None) -> float:
    return OUTCOME_XP_MULTIPLIERS.get(outcome or "", 1.0)
