"""Free-text action -> typed intent.

Classification is a priority-ordered rule table rather than a chain of ifs.
Each ``IntentRule`` carries its own match conditions as data:

  * ``all_of``   every pattern must match the lowercased text
  * ``none_of``  no pattern may match
  * ``combat_only`` the rule is only considered while combat is active
  * ``when``     an extra predicate over (room, room_state)

Rules are tried in ascending ``priority``; the first match wins and anything
unmatched is ``general`` (pure narration, no mechanics). The broad ordering is:
combat verbs, movement, chests, searching, item use, skill checks, rest, the
in-combat attack default.

Movement sits before search so "look around" never reads as a move, and the
chest patterns keep words close together so "check for traps before the chest"
is not an attempt to open it.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Optional, Pattern, Sequence, Tuple

from crawler.logging_utils import get_logger

from .records import EnemyInstance, Room, RoomState

log = get_logger("crawler.intent")

INTENT_TYPES = (
    "attack",
    "use_item",
    "move",
    "search",
    "open_chest",
    "rest",
    "rest_failed",
    "flee",
    "unequip",
    "skill_check",
    "general",
)


def _re(pattern: str) -> Pattern:
    return re.compile(pattern, re.IGNORECASE)


UNEQUIP_WORDS = _re(r"\b(unequip|remove|put away|set aside|sheathe|holster|drop)\b")
ATTACK_WORDS = _re(
    r"\b(attack|strike|hit|slash|stab|swing|shoot|fire|cast|smash|bash|punch|kick|charge|rush|lunge|leap|thrust|drive)\b"
)
FLEE_WORDS = _re(r"\b(flee|run|escape|retreat)\b")
CONSUME_WORDS = _re(r"\b(use|drink|consume|eat|apply|chug|down|swallow|quaff)\b")
COMBAT_ITEM_WORDS = _re(r"\b(potion|health|antidote|torch|pick|lockpick|fungus|mushroom|scroll|item|cure|heal)\b")

MOVE_TO_PLACE = _re(r"\b(go|move|walk|proceed|enter|head|travel)\b.*\b(room|door|corridor|exit|passage)\s*(\d+)?")
ROOM_NUMBER = _re(r"\broom\s*(\d+)\b")
VAGUE_MOTION = _re(r"\b(go|move|head|press|push|let'?s|we|proceed|on|to|into|forward|time|next|will|gonna|going)\b")
ONWARD_PHRASES = _re(
    r"\b(next room|go forward|go forwards|go ahead|go on|continue|proceed|advance|press on|keep going|move on"
    r"|move forward|move forwards|move ahead|head forward|head forwards|head ahead|head on|head out|head deeper"
    r"|onwards|onward|deeper|go deeper|push on|push forward|push forwards|carry on|lets go|let's go|lets move"
    r"|let's move|head to the next|move to the next|go to the next|move along|push ahead|keep moving|march on"
    r"|forge ahead|venture forward|venture on|venture ahead|venture deeper)\b"
)
PASS_THROUGH = _re(r"\b(pass|step|walk|go|move|head)\b.{0,15}\b(through|into|past|beyond|across)\b")
CONTAINER_WORDS = _re(r"\b(chest|box|crate|coffer)\b")

CHEST_VERB_FIRST = _re(r"\b(open|loot|take|grab|reach|pull|empty)\s+.{0,15}\b(chest|box|crate|coffer)\b")
CHEST_NOUN_FIRST = _re(r"\b(chest|box|crate|coffer)\b.{0,15}\b(open|loot|take|grab|contents)\b")
CHEST_QUESTION = _re(r"\bwhat('?s| is) in the chest\b")
CHEST_PEEK = _re(r"\b(check out|look in|peek in|dig into)\s+.{0,10}\b(chest|box|crate|coffer)\b")

SEARCH_WORDS = _re(r"\b(search|examine|inspect|investigate|scan|scour)\b")
LOOK_SEARCH = _re(r"\blook\s+(around|for|at|closer|carefully)\b")

LIGHT_WORDS = _re(r"\b(light|ignite|kindle)\b")
LIGHTABLE_WORDS = _re(r"\b(torch|lantern|fire|flame|fungus|mushroom)\b")
HOLD_WORDS = _re(r"\b(hold|raise|lift)\b")
HOLDABLE_WORDS = _re(r"\b(fungus|mushroom|shroom|torch|aloft)\b")

LOCKPICK_WORDS = _re(r"\b(lockpick|pick\s+(?:the\s+)?lock|unlock|disarm)\b")
RETRY_WORDS = _re(r"\b(try again|another attempt|one more try|give it another|have another go)\b")
STEALTH_WORDS = _re(r"\b(sneak|stealth|hide|creep)\b")
PERSUADE_WORDS = _re(r"\b(persuade|convince|talk|negotiate|bribe)\b")
REST_WORDS = _re(r"\b(rest|sleep|camp|heal|meditate)\b")

RoomPredicate = Callable[[Optional[Room], RoomState], bool]


def _chest_locked(room: Optional[Room], _state: RoomState) -> bool:
    return bool(room and room.chest and room.chest.is_locked)


def _is_rest_room(room: Optional[Room], _state: RoomState) -> bool:
    return bool(room and room.type == "rest")


@dataclass(frozen=True)
class IntentRule:
    name: str
    intent: str
    priority: int
    all_of: Tuple[Pattern, ...] = ()
    none_of: Tuple[Pattern, ...] = ()
    combat_only: bool = False
    skill: Optional[str] = None
    extract_room: Optional[str] = None  # "room" | "room_or_number"
    targets_enemy: bool = False
    unequip_first: bool = False
    when: Optional[RoomPredicate] = None

    def matches(self, text: str, room: Optional[Room], room_state: RoomState) -> bool:
        if self.combat_only and not room_state.is_combat_active:
            return False
        if not all(p.search(text) for p in self.all_of):
            return False
        if any(p.search(text) for p in self.none_of):
            return False
        if self.when is not None and not self.when(room, room_state):
            return False
        return True


RULES: Tuple[IntentRule, ...] = tuple(
    sorted(
        (
            IntentRule("unequip_and_attack", "attack", 10, (UNEQUIP_WORDS, ATTACK_WORDS),
                       combat_only=True, targets_enemy=True, unequip_first=True),
            IntentRule("unequip", "unequip", 11, (UNEQUIP_WORDS,), combat_only=True),
            IntentRule("attack", "attack", 12, (ATTACK_WORDS,), combat_only=True, targets_enemy=True),
            IntentRule("flee", "flee", 13, (FLEE_WORDS,), combat_only=True),
            IntentRule("combat_item", "use_item", 14, (CONSUME_WORDS, COMBAT_ITEM_WORDS), combat_only=True),
            IntentRule("move_to_place", "move", 20, (MOVE_TO_PLACE,), extract_room="room_or_number"),
            IntentRule("move_room_number", "move", 21, (ROOM_NUMBER, VAGUE_MOTION), extract_room="room"),
            IntentRule("move_onward", "move", 22, (ONWARD_PHRASES,)),
            IntentRule("move_through", "move", 23, (PASS_THROUGH,), none_of=(CONTAINER_WORDS,)),
            IntentRule("chest_verb_first", "open_chest", 30, (CHEST_VERB_FIRST,)),
            IntentRule("chest_noun_first", "open_chest", 31, (CHEST_NOUN_FIRST,)),
            IntentRule("chest_question", "open_chest", 32, (CHEST_QUESTION,)),
            IntentRule("chest_peek", "open_chest", 33, (CHEST_PEEK,)),
            IntentRule("search", "search", 40, (SEARCH_WORDS,)),
            IntentRule("look_search", "search", 41, (LOOK_SEARCH,)),
            IntentRule("light_source", "use_item", 50, (LIGHT_WORDS, LIGHTABLE_WORDS)),
            IntentRule("hold_aloft", "use_item", 51, (HOLD_WORDS, HOLDABLE_WORDS)),
            IntentRule("consume", "use_item", 52, (CONSUME_WORDS,)),
            IntentRule("lockpick", "skill_check", 60, (LOCKPICK_WORDS,), skill="lockpicking"),
            IntentRule("lockpick_retry", "skill_check", 61, (RETRY_WORDS,), skill="lockpicking", when=_chest_locked),
            IntentRule("stealth", "skill_check", 62, (STEALTH_WORDS,), skill="stealth"),
            IntentRule("persuasion", "skill_check", 63, (PERSUADE_WORDS,), skill="persuasion"),
            IntentRule("rest", "rest", 70, (REST_WORDS,), when=_is_rest_room),
            IntentRule("rest_failed", "rest_failed", 71, (REST_WORDS,)),
            IntentRule("combat_default", "attack", 90, combat_only=True, targets_enemy=True),
        ),
        key=lambda r: r.priority,
    )
)


@dataclass
class Intent:
    type: str
    raw: str
    rule: Optional[str] = None
    skill: Optional[str] = None
    target_room: Optional[int] = None
    target: Optional[EnemyInstance] = None
    unequip_first: bool = False


def find_target_enemy(text: str, enemies: Sequence[EnemyInstance]) -> Optional[EnemyInstance]:
    """Full name first, then any name word of 3+ letters, then the first living enemy."""
    living = [e for e in enemies if not e.is_dead]
    if not living:
        return None
    if len(living) == 1:
        return living[0]
    lower = text.lower()
    for enemy in living:
        if enemy.name.lower() in lower:
            return enemy
    for enemy in living:
        for word in enemy.name.lower().split():
            if len(word) >= 3 and word in lower:
                return enemy
    return living[0]


def _extract_room(text: str, mode: Optional[str]) -> Optional[int]:
    if not mode:
        return None
    m = re.search(r"room\s*(\d+)", text)
    if m is None and mode == "room_or_number":
        m = re.search(r"(\d+)", text)
    return int(m.group(1)) if m else None


def classify_intent(
    action_text: str,
    room: Optional[Room],
    room_state: RoomState,
    rules: Sequence[IntentRule] = RULES,
) -> Intent:
    text = (action_text or "").lower().strip()
    for rule in rules:
        if not rule.matches(text, room, room_state):
            continue
        intent = Intent(
            type=rule.intent,
            raw=text,
            rule=rule.name,
            skill=rule.skill,
            target_room=_extract_room(text, rule.extract_room),
            unequip_first=rule.unequip_first,
        )
        if rule.targets_enemy:
            intent.target = find_target_enemy(text, room_state.enemies)
        log.debug(event="intent_classified", intent=intent.type, rule=rule.name, skill=rule.skill)
        return intent
    log.debug(event="intent_classified", intent="general", rule=None)
    return Intent(type="general", raw=text)


__all__ = [
    "INTENT_TYPES",
    "IntentRule",
    "Intent",
    "RULES",
    "classify_intent",
    "find_target_enemy",
]
