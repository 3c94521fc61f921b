"""
roster.py -- idempotent seeding of monsters and players.

The service keeps one record per monster id and one per participant; a
record that reads back as all zeros does not exist yet.  Both helpers only
write when that is the case, so calling them twice is free apart from the
reads.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass

from service_client import ServiceError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MonsterSpec:
    name: str
    ac: int
    hp: int
    str_mod: int
    atk: int
    dmg: int


# Ascending difficulty; tier n is monster id n.
DEFAULT_ROSTER: tuple[MonsterSpec, ...] = (
    MonsterSpec("goblin", 12, 12, 0, 4, 0),
    MonsterSpec("skeleton", 14, 15, 1, 4, 1),
    MonsterSpec("orc", 15, 17, 1, 6, 1),
    MonsterSpec("troll", 17, 25, 2, 8, 2),
    MonsterSpec("mind flayer", 18, 45, 3, 10, 3),
    MonsterSpec("beholder", 19, 50, 4, 10, 4),
    MonsterSpec("lich", 23, 80, 6, 10, 8),
    MonsterSpec("demi god", 25, 100, 10, 12, 10),
    MonsterSpec("deity", 30, 150, 12, 12, 12),
)


def load_roster(raw: str) -> tuple[MonsterSpec, ...]:
    """
    Parse a JSON roster override.  Empty or unparseable input falls back to
    DEFAULT_ROSTER.
    """
    if not raw:
        return DEFAULT_ROSTER
    try:
        items = json.loads(raw)
        roster = tuple(
            MonsterSpec(
                name=str(item["name"]),
                ac=int(item["ac"]),
                hp=int(item["hp"]),
                str_mod=int(item.get("str", 0)),
                atk=int(item.get("atk", 0)),
                dmg=int(item.get("dmg", 0)),
            )
            for item in items
        )
    except (ValueError, TypeError, KeyError, AttributeError) as e:
        logger.warning("Failed to parse MONSTER_ROSTER: %s -- using built-in roster", e)
        return DEFAULT_ROSTER
    if not roster:
        return DEFAULT_ROSTER
    bad = [m.name for m in roster if m.ac <= 0 or m.hp <= 0]
    if bad:
        logger.warning("MONSTER_ROSTER entries need positive ac/hp (%s) -- using built-in roster", ", ".join(bad))
        return DEFAULT_ROSTER
    return roster


def ensure_monsters(client, owner: str, roster: tuple[MonsterSpec, ...] = DEFAULT_ROSTER) -> int:
    """
    Seed *roster* unless monster 1 already exists.  Returns the highest
    seeded monster id.
    """
    first = client.read_monster(1)
    if first.exists:
        logger.debug("monster roster already seeded (tier 1 = %s)", first.name)
    else:
        logger.info("add monsters (%d tiers)", len(roster))
        for monster in roster:
            client.seed_monster(owner, monster.name, monster.ac, monster.hp, monster.str_mod, monster.atk, monster.dmg)

    highest = client.next_monster_id() - 1
    if highest < 1:
        raise ServiceError("service reports no monsters after seeding")
    return highest


def ensure_player(client, participant: str, name: str) -> bool:
    """Create a player for *participant* unless one already exists.  True if created."""
    player = client.read_player(participant)
    if player.exists:
        return False
    logger.info("create player %s for %s", name, participant)
    client.create_player(participant, name)
    return True
