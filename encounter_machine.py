"""
encounter_machine.py

Per-encounter combat loop as a state machine.

Design goals:
- Pure reducer transitions: (state, event) -> (next_state, actions)
- Created -> RoundPending -> RoundInFlight -> (RoundPending | Resolved)
- At most one round in flight, enforced here rather than trusted to the service
- Low-health healing decision before the next round request
- Bounded wait for a round (TimedOut) instead of an endless poll
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Literal


Phase = Literal["Created", "RoundPending", "RoundInFlight", "Resolved", "TimedOut"]

TERMINAL_PHASES: tuple[str, ...] = ("Resolved", "TimedOut")


@dataclass(frozen=True)
class MachineConfig:
    low_health_threshold: int = 10
    round_timeout_sec: float = 120.0


@dataclass(frozen=True)
class EncounterState:
    encounter_id: int
    position: int
    now: float
    phase: Phase = "Created"
    player_hp: int | None = None
    monster_hp: int | None = None
    rounds_requested: int = 0
    round_submitted_at: float | None = None
    in_flight_polls: int = 0
    # Set while the potion count is being read for a low-health decision.
    awaiting_player: bool = False
    # Set when the first poll found a round already rolling that this
    # runner never requested.
    adopted_round: bool = False
    potions_drunk: int = 0
    player_won: bool | None = None


# --------------------------- Events ---------------------------


@dataclass(frozen=True)
class EncounterPolled:
    is_rolling: bool
    player_hp: int
    monster_hp: int
    timestamp: float
    rounds: int | None = None


@dataclass(frozen=True)
class PlayerRead:
    healing_potions: int
    timestamp: float


@dataclass(frozen=True)
class TimerTick:
    timestamp: float


Event = EncounterPolled | PlayerRead | TimerTick


# --------------------------- Actions ---------------------------


@dataclass(frozen=True)
class BeginRoundAction:
    round_number: int


@dataclass(frozen=True)
class ReadPlayerAction:
    player_hp: int


@dataclass(frozen=True)
class DrinkPotionAction:
    player_hp: int


@dataclass(frozen=True)
class ProgressAction:
    polls: int


Action = BeginRoundAction | ReadPlayerAction | DrinkPotionAction | ProgressAction


# --------------------------- Helpers ---------------------------


def new_encounter(encounter_id: int, position: int, now: float) -> EncounterState:
    return EncounterState(encounter_id=int(encounter_id), position=int(position), now=float(now))


def is_terminal(state: EncounterState) -> bool:
    return state.phase in TERMINAL_PHASES


def _round_in_flight(state: EncounterState, event: EncounterPolled) -> bool:
    if event.is_rolling:
        return True
    # A service that counts completed rounds can also tell us it has not
    # picked up our request yet.
    return event.rounds is not None and event.rounds < state.rounds_requested


def _begin_round(state: EncounterState) -> tuple[EncounterState, list[Action]]:
    number = state.rounds_requested + 1
    st = replace(
        state,
        phase="RoundInFlight",
        rounds_requested=number,
        round_submitted_at=state.now,
        in_flight_polls=0,
        awaiting_player=False,
    )
    return st, [BeginRoundAction(round_number=number)]


def check_invariants(state: EncounterState) -> list[str]:
    violations: list[str] = []

    if state.rounds_requested < 0 or state.in_flight_polls < 0 or state.potions_drunk < 0:
        violations.append("counters must be >= 0")

    if state.phase == "RoundInFlight":
        if state.rounds_requested < 1 and not state.adopted_round:
            violations.append("RoundInFlight without a requested round")
        if state.round_submitted_at is None:
            violations.append("RoundInFlight must carry round_submitted_at")
    elif state.round_submitted_at is not None and state.phase != "TimedOut":
        violations.append("round_submitted_at must be null outside RoundInFlight")

    if state.phase == "Resolved":
        if state.player_hp is None or state.monster_hp is None:
            violations.append("Resolved without HP readings")
        elif state.player_hp > 0 and state.monster_hp > 0:
            violations.append("Resolved with both sides alive")
        if state.player_won is None:
            violations.append("Resolved without an outcome")
    elif state.player_won is not None:
        violations.append("outcome set before Resolved")

    if state.awaiting_player and state.phase != "RoundPending":
        violations.append("potion decision pending outside RoundPending")

    # Every potion is followed by a round request.
    if state.potions_drunk > state.rounds_requested:
        violations.append("more potions drunk than rounds requested")

    return violations


def to_dict(state: EncounterState) -> dict:
    return dict(state.__dict__)


# --------------------------- Reducer ---------------------------


def transition(state: EncounterState, event: Event, cfg: MachineConfig) -> tuple[EncounterState, list[Action]]:
    """
    Pure reducer for one event.
    """
    actions: list[Action] = []
    st = state

    if is_terminal(st):
        return st, actions

    if isinstance(event, EncounterPolled):
        st = replace(st, now=event.timestamp, player_hp=event.player_hp, monster_hp=event.monster_hp)

        if event.player_hp <= 0 or event.monster_hp <= 0:
            # Both at zero in the same round counts as a player loss.
            won = event.monster_hp <= 0 and event.player_hp > 0
            st = replace(
                st,
                phase="Resolved",
                player_won=won,
                round_submitted_at=None,
                in_flight_polls=0,
                awaiting_player=False,
            )
            return st, actions

        if st.awaiting_player:
            return st, actions

        if _round_in_flight(st, event):
            adopted = st.adopted_round
            if st.phase == "RoundInFlight":
                polls = st.in_flight_polls + 1
                submitted = st.round_submitted_at
            else:
                # Service reports a round we did not see start (e.g. a
                # restarted harness); wait it out from now.
                polls = 1
                submitted = event.timestamp
                adopted = adopted or st.rounds_requested == 0
            st = replace(
                st,
                phase="RoundInFlight",
                in_flight_polls=polls,
                round_submitted_at=submitted,
                adopted_round=adopted,
            )
            actions.append(ProgressAction(polls=polls))
            return st, actions

        st = replace(st, phase="RoundPending", in_flight_polls=0, round_submitted_at=None)
        if event.player_hp <= cfg.low_health_threshold:
            st = replace(st, awaiting_player=True)
            actions.append(ReadPlayerAction(player_hp=event.player_hp))
            return st, actions
        return _begin_round(st)

    if isinstance(event, PlayerRead):
        if not st.awaiting_player:
            return st, actions
        st = replace(st, now=event.timestamp, awaiting_player=False)
        if event.healing_potions > 0:
            st = replace(st, potions_drunk=st.potions_drunk + 1)
            actions.append(DrinkPotionAction(player_hp=st.player_hp or 0))
        st, begin = _begin_round(st)
        actions.extend(begin)
        return st, actions

    if isinstance(event, TimerTick):
        st = replace(st, now=event.timestamp)
        if (
            st.phase == "RoundInFlight"
            and cfg.round_timeout_sec > 0
            and st.round_submitted_at is not None
            and st.now - st.round_submitted_at >= cfg.round_timeout_sec
        ):
            st = replace(st, phase="TimedOut")
        return st, actions

    return st, actions
