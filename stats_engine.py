"""
stats_engine.py -- Event reconciliation and simulation statistics.

Each combat round the service resolves produces one player-side and (unless
the monster died) one monster-side result event.  After an encounter ends the
two streams are fetched separately and have to be paired back up:

  1. Pair by the per-round sequence number when every event carries one
  2. Otherwise pair by position in the two streams (index i with index i)

Each pair counts as two rolls, an unpaired player event as one.  Every
reconstructed round is logged with both sides' roll, modified roll, damage
and remaining HP.  Rolls feed the per-encounter tally and the run-wide d20
histogram (numpy array indexed by raw die face); a roll outside 1..20 is
logged and left out of both.

Length mismatches, unpaired events and a missing EncounterOver are logged as
data-consistency warnings and contribute nothing for the missing side.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field

import numpy as np

logger = logging.getLogger(__name__)

D20_FACES = 20


@dataclass
class EncounterStats:
    encounter_id: int = 0
    rolls: int = 0
    player_hits: int = 0
    player_crits: int = 0
    player_misses: int = 0
    player_nat1: int = 0
    monster_hits: int = 0
    monster_crits: int = 0
    monster_misses: int = 0
    monster_nat1: int = 0

    def fold(self, result) -> None:
        prefix = "player" if result.side == "player" else "monster"
        if result.hit:
            setattr(self, f"{prefix}_hits", getattr(self, f"{prefix}_hits") + 1)
        else:
            setattr(self, f"{prefix}_misses", getattr(self, f"{prefix}_misses") + 1)
        if result.is_crit:
            setattr(self, f"{prefix}_crits", getattr(self, f"{prefix}_crits") + 1)
        if result.roll == 1:
            setattr(self, f"{prefix}_nat1", getattr(self, f"{prefix}_nat1") + 1)
        self.rolls += 1

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class Reconciliation:
    encounter: EncounterStats
    rounds: int
    faces: tuple[int, ...]
    pairs: int = 0
    unmatched_player: int = 0
    unmatched_monster: int = 0
    rejected_rolls: int = 0
    player_won: bool | None = None
    warnings: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class PlayerSummary:
    name: str
    won: int
    lost: int
    potions_drunk: int
    highest_monster: str


class SimulationStats:
    """Run-wide round counter and d20 face histogram."""

    def __init__(self) -> None:
        self.num_rounds = 0
        self.encounters = 0
        self.warnings = 0
        self.histogram = np.zeros(D20_FACES + 1, dtype=np.int64)

    def _add_faces(self, faces) -> None:
        arr = np.asarray(faces, dtype=np.int64)
        arr = arr[(arr >= 1) & (arr <= D20_FACES)]
        if not arr.size:
            return
        self.histogram += np.bincount(arr, minlength=D20_FACES + 1)

    def fold(self, rec: Reconciliation) -> None:
        self.num_rounds += rec.rounds
        self.encounters += 1
        self.warnings += len(rec.warnings)
        self._add_faces(rec.faces)

    def face_count(self, face: int) -> int:
        if face < 0 or face >= len(self.histogram):
            return 0
        return int(self.histogram[face])

    def distribution(self) -> list[tuple[int, int, float]]:
        """(face, occurrences, percent of all rolls) for every face seen."""
        if self.num_rounds <= 0:
            return []
        pct = np.round(self.histogram / float(self.num_rounds) * 100.0, 2)
        return [
            (int(face), int(self.histogram[face]), float(pct[face]))
            for face in np.flatnonzero(self.histogram)
        ]


def _correlate(player_events: list, monster_events: list) -> tuple[list[tuple], list]:
    """
    Returns ([(player_event, monster_event_or_None), ...], unmatched_monster_events).
    """
    events = list(player_events) + list(monster_events)
    if events and all(e.round_number is not None for e in events):
        by_round = {}
        for m in monster_events:
            by_round.setdefault(m.round_number, m)
        pairs = [(p, by_round.pop(p.round_number, None)) for p in player_events]
        matched = {id(m) for _, m in pairs if m is not None}
        leftover = [m for m in monster_events if id(m) not in matched]
        return pairs, leftover

    pairs = [
        (p, monster_events[i] if i < len(monster_events) else None)
        for i, p in enumerate(player_events)
    ]
    return pairs, list(monster_events[len(player_events):])


def _describe(result) -> str:
    """One side of a reconstructed round, e.g. 'rolled 15 (mod 17) crit dmg 8, monster HP 4'."""
    outcome = "crit" if result.is_crit else ("hit" if result.hit else "miss")
    opponent = "monster" if result.side == "player" else "player"
    return (
        f"rolled {result.roll} (mod {result.modified}) {outcome} "
        f"dmg {result.damage}, {opponent} HP {result.opponent_hp}"
    )


def reconcile(player_events: list, monster_events: list, over_events: list,
              encounter_id: int | None = None) -> Reconciliation:
    warnings: list[str] = []

    def _warn(msg: str, *args) -> None:
        text = msg % args
        warnings.append(text)
        logger.warning("encounter %s: %s", encounter_id, text)

    if encounter_id is not None:
        stray = [e for e in list(player_events) + list(monster_events) + list(over_events)
                 if e.encounter_id != encounter_id]
        if stray:
            _warn("dropped %d events belonging to other encounters", len(stray))
            player_events = [e for e in player_events if e.encounter_id == encounter_id]
            monster_events = [e for e in monster_events if e.encounter_id == encounter_id]
            over_events = [e for e in over_events if e.encounter_id == encounter_id]

    stats = EncounterStats(encounter_id=encounter_id or 0)
    faces: list[int] = []
    bad_rolls: list[int] = []
    pair_count = 0
    unmatched_player = 0

    def _take(result) -> None:
        # Out-of-range rolls stay out of the tally and the histogram.
        if 1 <= result.roll <= D20_FACES:
            stats.fold(result)
            faces.append(result.roll)
        else:
            bad_rolls.append(result.roll)

    pairs, leftover = _correlate(player_events, monster_events)
    for idx, (p, m) in enumerate(pairs):
        number = p.round_number if p.round_number is not None else idx + 1
        logger.info(
            "encounter %s round %d: player %s | monster %s",
            encounter_id, number, _describe(p), _describe(m) if m is not None else "-",
        )
        _take(p)
        if m is not None:
            _take(m)
            pair_count += 1
            continue
        unmatched_player += 1
        killing_blow = idx == len(pairs) - 1 and p.opponent_hp <= 0
        if killing_blow:
            # A dead monster does not answer.
            logger.debug("encounter %s: final player result has no monster response", encounter_id)
        else:
            _warn("player result #%d has no monster response", idx + 1)

    if leftover:
        _warn("%d monster results have no player result", len(leftover))

    if bad_rolls:
        _warn("ignored rolls outside 1..%d: %s", D20_FACES, bad_rolls)
    rounds = len(faces)

    player_won = None
    if not over_events:
        _warn("resolved without an EncounterOver event")
    else:
        if len(over_events) > 1:
            _warn("%d EncounterOver events, using the last", len(over_events))
        player_won = over_events[-1].player_won

    return Reconciliation(
        encounter=stats,
        rounds=rounds,
        faces=tuple(faces),
        pairs=pair_count,
        unmatched_player=unmatched_player,
        unmatched_monster=len(leftover),
        rejected_rolls=len(bad_rolls),
        player_won=player_won,
        warnings=tuple(warnings),
    )


def format_summary(stats: SimulationStats, players: list[PlayerSummary]) -> str:
    lines = ["d20 stats", f"total rolls {stats.num_rounds}"]
    for face, count, pct in stats.distribution():
        lines.append(f"{face} = {count} ({pct:.2f}%)")
    lines.append("Player stats")
    for p in players:
        lines += [
            p.name,
            f"Won: {p.won}",
            f"Lost: {p.lost}",
            f"Healing Potions Consumed: {p.potions_drunk}",
            f"Highest Monster Defeated: {p.highest_monster}",
        ]
    return "\n".join(lines)
