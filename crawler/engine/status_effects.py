"""In-run status effects on the player.

Effects live in ``RunStats.status_effects`` as ``StatusEffect`` records:

  StatusEffect(type="poison", duration=5, damage_per_tick=2, source="Venomous Spider")

They tick once per processed action, before the action is resolved: tick
handlers registered in EFFECT_TICK contribute damage, then every effect loses
one point of duration and anything at zero is dropped.

Only effects with a tick handler are tracked mechanically. Other effects an
enemy lands (stun, silence) are reported in the turn outcome but not stored.

Extension point: add handlers to EFFECT_TICK.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from .records import StatusEffect

POISON_DAMAGE_PER_TICK = 2
POISON_DEFAULT_DURATION = 5


def _poison_tick(effect: StatusEffect) -> int:
    return int(effect.damage_per_tick or POISON_DAMAGE_PER_TICK)


EFFECT_TICK: Dict[str, Callable[[StatusEffect], int]] = {
    "poison": _poison_tick,
}


@dataclass
class TickReport:
    damage: int = 0
    expired: List[StatusEffect] = field(default_factory=list)
    remaining: List[StatusEffect] = field(default_factory=list)

    def poison_summary(self) -> Optional[Dict[str, Any]]:
        if self.damage <= 0:
            return None
        left = [e.duration for e in self.remaining if e.type == "poison"]
        return {"damage": self.damage, "remaining": bool(left), "turns_left": max(left) if left else 0}


def tick_status_effects(effects: List[StatusEffect]) -> TickReport:
    report = TickReport()
    for eff in effects:
        handler = EFFECT_TICK.get(eff.type)
        if handler:
            report.damage += handler(eff)
        eff.duration -= 1
        if eff.duration <= 0:
            report.expired.append(eff)
        else:
            report.remaining.append(eff)
    return report


def apply_enemy_effect(effects: List[StatusEffect], applied: Mapping[str, Any]) -> Optional[StatusEffect]:
    """Track an effect landed by an enemy; poison refreshes per source instead of stacking."""
    kind = applied.get("type")
    if kind not in EFFECT_TICK:
        return None
    duration = int(applied.get("duration") or POISON_DEFAULT_DURATION)
    source = applied.get("source") or ""
    for eff in effects:
        if eff.type == kind and eff.source == source:
            eff.duration = max(eff.duration, duration)
            return eff
    eff = StatusEffect(type=kind, duration=duration, damage_per_tick=POISON_DAMAGE_PER_TICK, source=source)
    effects.append(eff)
    return eff


def cleanse(effects: List[StatusEffect], names) -> Tuple[List[StatusEffect], int]:
    names = set(names or ())
    kept = [e for e in effects if e.type not in names]
    return kept, len(effects) - len(kept)


__all__ = [
    "EFFECT_TICK",
    "TickReport",
    "tick_status_effects",
    "apply_enemy_effect",
    "cleanse",
]
