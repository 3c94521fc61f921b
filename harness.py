"""
Dungeon encounter harness runtime.

Drives the remote encounter service through repeated simulation rounds:
- one encounter per player per round, players strictly in registration order
- reducer-driven encounter loop (encounter_machine) polled at a fixed interval
- fund + authorize before every paid action
- stat progression between encounters, potion restock after a loss
- d20 distribution and per-player summary once every round has run
"""

from __future__ import annotations

import logging
import sys
import time

import config
import encounter_machine as em
import progression
import roster
import stats_engine
from balance_gate import BalanceGate
from service_client import ServiceClient, ServiceError, make_seed


logger = logging.getLogger(__name__)


def setup_logging() -> None:
    level = getattr(logging, config.LOG_LEVEL.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
    )


def _now() -> float:
    return time.time()


def _progress(text: str) -> None:
    sys.stdout.write(text)
    sys.stdout.flush()


class RoundTimeoutError(Exception):
    """A round stayed in flight past ROUND_TIMEOUT_SEC.  Skips one player turn."""

    def __init__(self, state: em.EncounterState) -> None:
        self.state = state
        waited = state.now - (state.round_submitted_at or state.now)
        super().__init__(
            f"encounter {state.encounter_id} round #{state.rounds_requested} unresolved after {waited:.1f}s"
        )


class EncounterRunner:
    """Executes encounter_machine actions against the service for one encounter."""

    def __init__(self, client, gate: BalanceGate, participant: str, round_fee: int,
                 cfg: em.MachineConfig, provider_key: str | None = None, label: str = "") -> None:
        self.client = client
        self.gate = gate
        self.participant = participant
        self.round_fee = int(round_fee)
        self.cfg = cfg
        self.provider_key = config.PROVIDER_KEY if provider_key is None else provider_key
        self.label = label or participant

    def run(self, ticket) -> em.EncounterState:
        state = em.new_encounter(ticket.encounter_id, ticket.position, _now())
        poll = max(0.0, config.POLL_INTERVAL_MS / 1000.0)

        while True:
            view = self.client.read_encounter(ticket.encounter_id)
            polled = em.EncounterPolled(
                is_rolling=view.is_rolling,
                player_hp=view.player_hp,
                monster_hp=view.monster_hp,
                timestamp=_now(),
                rounds=view.rounds,
            )
            state = self._apply(state, polled)
            if not em.is_terminal(state):
                state = self._apply(state, em.TimerTick(timestamp=_now()))
            if em.is_terminal(state):
                break
            time.sleep(poll)

        _progress("\n")
        if state.phase == "TimedOut":
            raise RoundTimeoutError(state)
        logger.info(
            "%s: encounter %d over after %d rounds (player HP %s, monster HP %s)",
            self.label, state.encounter_id, state.rounds_requested, state.player_hp, state.monster_hp,
        )
        return state

    def _apply(self, state: em.EncounterState, event: em.Event) -> em.EncounterState:
        new_state, actions = em.transition(state, event, self.cfg)
        if new_state.phase != state.phase:
            logger.debug(
                "encounter %d %s -> %s on %s",
                state.encounter_id, state.phase, new_state.phase, type(event).__name__,
            )

        for action in actions:
            new_state = self._execute(new_state, action)

        violations = em.check_invariants(new_state)
        if violations:
            logger.error("encounter %d invariant violations: %s | %s",
                         new_state.encounter_id, violations, em.to_dict(new_state))
            raise RuntimeError(f"encounter {new_state.encounter_id} invariant violations: {violations}")
        return new_state

    def _execute(self, state: em.EncounterState, action: em.Action) -> em.EncounterState:
        if isinstance(action, em.BeginRoundAction):
            _progress("\n")
            logger.info("%s request #%d", self.label, action.round_number)
            self.gate.ensure_funded(self.participant, self.round_fee)
            self.client.begin_combat_round(
                self.participant, state.encounter_id, make_seed(), self.provider_key, self.round_fee,
            )

        elif isinstance(action, em.ReadPlayerAction):
            player = self.client.read_player(self.participant)
            return self._apply(state, em.PlayerRead(healing_potions=player.healing_potions, timestamp=_now()))

        elif isinstance(action, em.DrinkPotionAction):
            logger.info("%s drink healing potion at %d HP", self.label, action.player_hp)
            self.client.drink_healing_potion(self.participant, state.encounter_id)

        elif isinstance(action, em.ProgressAction):
            _progress(".")

        return state


class Simulation:
    def __init__(self, client) -> None:
        self.client = client
        self.memory = progression.ProgressionMemory()
        self.stats = stats_engine.SimulationStats()
        self.players: list[tuple[str, str]] = []
        self.funder = ""
        self.gate: BalanceGate | None = None
        self.constants = None
        self.round_fee = 0
        self.highest_monster_id = 0
        self.timeouts = 0
        self.machine_cfg = em.MachineConfig(
            low_health_threshold=int(config.LOW_HEALTH_THRESHOLD),
            round_timeout_sec=float(config.ROUND_TIMEOUT_SEC),
        )
        self._roster = roster.load_roster(config.MONSTER_ROSTER)

    # ------------------ Setup ------------------

    def initialize(self) -> None:
        accounts = self.client.accounts()
        needed = max(config.FUNDER_INDEX + 1, config.FIRST_PLAYER_INDEX + config.NUM_PLAYERS)
        if len(accounts) < needed:
            raise ServiceError(f"service exposes {len(accounts)} accounts, {needed} required")

        self.funder = accounts[config.FUNDER_INDEX]
        spender = self.client.service_address()
        self.gate = BalanceGate(self.client, self.funder, spender)
        self.constants = self.client.game_constants()
        self.round_fee = self.client.provider_fee(config.PROVIDER_KEY)

        logger.info("funder %s", self.funder)
        logger.info("encounters %s", spender)
        logger.info("round fee %d, stat fee %d, potion fee %d",
                    self.round_fee, self.constants.stat_fee, self.constants.healing_potion_fee)

        self.client.authorize_oracle(self.funder, config.ORACLE_ALLOWANCE)
        self.highest_monster_id = roster.ensure_monsters(self.client, self.funder, self._roster)

        self.players = []
        for n in range(1, config.NUM_PLAYERS + 1):
            participant = accounts[config.FIRST_PLAYER_INDEX + n - 1]
            name = f"p_{n}"
            roster.ensure_player(self.client, participant, name)
            self.players.append((participant, name))

    # ------------------ Main loop ------------------

    def run(self) -> None:
        for sim_round in range(1, config.NUM_SIMULATIONS + 1):
            logger.info("Simulation %d", sim_round)
            for number, (participant, name) in enumerate(self.players, start=1):
                self.play_turn(sim_round, number, participant, name)

    def play_turn(self, sim_round: int, number: int, participant: str, name: str):
        label = f"sim {sim_round}/{config.NUM_SIMULATIONS} player {number}/{len(self.players)}"

        roster.ensure_player(self.client, participant, name)
        if progression.should_progress(self.memory, participant, sim_round):
            logger.info("%s: increase player stats", label)
            player = self.client.read_player(participant)
            progression.upgrade_player(self.client, self.gate, player, self.constants)

        monster_id = progression.next_monster_id(self.memory, participant, self.highest_monster_id)
        monster = self.client.read_monster(monster_id)
        if not monster.exists:
            self.highest_monster_id = roster.ensure_monsters(self.client, self.funder, self._roster)
            monster_id = progression.next_monster_id(self.memory, participant, self.highest_monster_id)
            monster = self.client.read_monster(monster_id)

        ticket = self.client.new_encounter(participant, monster_id)
        player = self.client.read_player(participant)
        logger.info(
            "%s: encounter %d -- %s (AC %d HP %d STR %d ATK %d DMG %d) vs %s (AC %d HP %d STR %d ATK %d DMG %d)",
            label, ticket.encounter_id,
            player.name, player.ac, player.hp, player.str_mod, player.atk, player.dmg,
            monster.name, monster.ac, monster.hp, monster.str_mod, monster.atk, monster.dmg,
        )

        runner = EncounterRunner(self.client, self.gate, participant, self.round_fee, self.machine_cfg, label=label)
        try:
            final = runner.run(ticket)
        except RoundTimeoutError as e:
            self.timeouts += 1
            self.memory.add_potions_drunk(participant, e.state.potions_drunk)
            logger.warning("%s: %s -- skipping player this round", label, e)
            return None
        self.memory.add_potions_drunk(participant, final.potions_drunk)

        if config.EVENT_SETTLE_SEC > 0:
            time.sleep(config.EVENT_SETTLE_SEC)
        rec = self._reconcile(ticket)
        self.stats.fold(rec)
        logger.info("%s: %s", label, rec.encounter.to_dict())

        if rec.player_won is None:
            return rec
        if rec.player_won != final.player_won:
            logger.warning(
                "encounter %d: EncounterOver player_won=%s disagrees with final HP (player %s, monster %s)",
                ticket.encounter_id, rec.player_won, final.player_hp, final.monster_hp,
            )
        logger.info("%s: winner %s", label, "Player" if rec.player_won else "Monster")
        self.memory.record_outcome(participant, monster_id, rec.player_won)
        if not rec.player_won:
            self._restock_potion(participant)
        return rec

    def _reconcile(self, ticket) -> stats_engine.Reconciliation:
        player_events = self.client.fetch_round_results("player", ticket.encounter_id, ticket.position)
        monster_events = self.client.fetch_round_results("monster", ticket.encounter_id, ticket.position)
        over_events = self.client.fetch_encounter_over(ticket.encounter_id, ticket.position)
        return stats_engine.reconcile(player_events, monster_events, over_events, encounter_id=ticket.encounter_id)

    def _restock_potion(self, participant: str) -> bool:
        player = self.client.read_player(participant)
        if player.healing_potions >= self.constants.max_healing_potions:
            return False
        logger.info("%s buy healing potion (%d/%d)", player.name,
                    player.healing_potions, self.constants.max_healing_potions)
        self.gate.ensure_funded(participant, self.constants.healing_potion_fee)
        self.client.buy_healing_potion(participant)
        return True

    # ------------------ Report ------------------

    def summary(self) -> str:
        rows = []
        for participant, name in self.players:
            player = self.client.read_player(participant)
            highest = self.memory.highest_defeated(participant)
            monster_name = self.client.read_monster(highest).name if highest > 0 else "none"
            rows.append(stats_engine.PlayerSummary(
                name=player.name or name,
                won=player.won,
                lost=player.lost,
                potions_drunk=self.memory.potions_drunk(participant),
                highest_monster=monster_name,
            ))
        return stats_engine.format_summary(self.stats, rows)


def run() -> None:
    setup_logging()
    config.print_banner()

    sim = Simulation(ServiceClient())
    try:
        sim.initialize()
        sim.run()
        report = sim.summary()
    except Exception as e:
        # Fatal: no partial summary.
        logger.exception("Simulation aborted: %s", e)
        raise SystemExit(1)

    print(report)
    if sim.timeouts:
        logger.warning("%d encounters abandoned after round timeouts", sim.timeouts)


if __name__ == "__main__":
    run()
