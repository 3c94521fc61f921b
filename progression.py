"""
progression.py -- between-encounter player progression and monster selection.

ProgressionMemory is process-local bookkeeping: whether each participant won
its last recorded encounter, the highest monster tier it has beaten and how
many healing potions it drank.  The service does not store any of it, so a
restarted harness starts every player from tier 1 again.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)


# Upgrade order is fixed: armour first, damage last.
STATS: tuple[str, ...] = ("ac", "hp", "str", "atk", "dmg")

_PLAYER_FIELD = {"ac": "ac", "hp": "hp", "str": "str_mod", "atk": "atk", "dmg": "dmg"}
_CAP_FIELD = {"ac": "max_ac", "hp": "max_hp", "str": "max_str", "atk": "max_atk", "dmg": "max_dmg"}
_UPGRADE_CALL = {
    "ac": "increase_armour_class",
    "hp": "increase_hit_points",
    "str": "increase_strength_modifier",
    "atk": "increase_attack_dice",
    "dmg": "increase_damage_modifier",
}


@dataclass
class ParticipantRecord:
    won_last: bool = False
    highest_defeated: int = 0
    potions_drunk: int = 0
    encounters: int = 0


class ProgressionMemory:
    """In-memory store keyed by participant identity."""

    def __init__(self) -> None:
        self._records: dict[str, ParticipantRecord] = {}

    def get(self, participant: str) -> ParticipantRecord:
        rec = self._records.get(participant)
        if rec is None:
            rec = ParticipantRecord()
            self._records[participant] = rec
        return rec

    def won_last(self, participant: str) -> bool:
        return self.get(participant).won_last

    def highest_defeated(self, participant: str) -> int:
        return self.get(participant).highest_defeated

    def potions_drunk(self, participant: str) -> int:
        return self.get(participant).potions_drunk

    def add_potions_drunk(self, participant: str, count: int) -> None:
        if count > 0:
            self.get(participant).potions_drunk += int(count)

    def record_outcome(self, participant: str, monster_id: int, player_won: bool) -> None:
        rec = self.get(participant)
        rec.won_last = bool(player_won)
        rec.encounters += 1
        if player_won:
            # Tiers only ever go up, even if a lower tier is replayed.
            rec.highest_defeated = max(rec.highest_defeated, int(monster_id))

    def participants(self) -> list[str]:
        return list(self._records)


def should_progress(memory: ProgressionMemory, participant: str, sim_round: int) -> bool:
    """No upgrades on the first round or right after a lost encounter."""
    if sim_round <= 1:
        return False
    return memory.won_last(participant)


def next_monster_id(memory: ProgressionMemory, participant: str, highest_monster_id: int) -> int:
    return max(1, min(memory.highest_defeated(participant) + 1, int(highest_monster_id)))


def upgradable_stats(player, constants) -> list[str]:
    """Stats of *player* still below their caps, in upgrade order."""
    return [
        stat for stat in STATS
        if getattr(player, _PLAYER_FIELD[stat]) < getattr(constants, _CAP_FIELD[stat])
    ]


def upgrade_player(client, gate, player, constants) -> list[str]:
    """
    One upgrade per below-cap stat, each funded separately.  Stats already
    at their cap are never attempted.  Returns the upgraded stat names.
    """
    upgraded: list[str] = []
    for stat in upgradable_stats(player, constants):
        gate.ensure_funded(player.participant, constants.stat_fee)
        getattr(client, _UPGRADE_CALL[stat])(player.participant)
        upgraded.append(stat)
    if upgraded:
        logger.info("%s upgraded %s", player.name, ", ".join(upgraded))
    else:
        logger.debug("%s already at every stat cap", player.name)
    return upgraded
