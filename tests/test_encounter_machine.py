import unittest
from dataclasses import replace

import encounter_machine as em


def _polled(player_hp, monster_hp, ts, is_rolling=False, rounds=None):
    return em.EncounterPolled(
        is_rolling=is_rolling, player_hp=player_hp, monster_hp=monster_hp, timestamp=ts, rounds=rounds,
    )


class EncounterMachineTests(unittest.TestCase):
    def setUp(self):
        self.cfg = em.MachineConfig(low_health_threshold=10, round_timeout_sec=30.0)
        self.state = em.new_encounter(7, 100, 1000.0)

    def _step(self, state, event):
        st, actions = em.transition(state, event, self.cfg)
        self.assertEqual(em.check_invariants(st), [], em.to_dict(st))
        return st, actions

    def _in_flight(self):
        st, _ = self._step(self.state, _polled(20, 12, 1001.0))
        return st

    def test_first_poll_requests_a_round(self):
        st, actions = self._step(self.state, _polled(20, 12, 1001.0))
        self.assertEqual(actions, [em.BeginRoundAction(round_number=1)])
        self.assertEqual(st.phase, "RoundInFlight")
        self.assertEqual(st.round_submitted_at, 1001.0)
        self.assertEqual(st.rounds_requested, 1)

    def test_rolling_poll_only_reports_progress(self):
        st = self._in_flight()
        st, actions = self._step(st, _polled(20, 12, 1002.0, is_rolling=True))
        self.assertEqual(actions, [em.ProgressAction(polls=1)])
        st, actions = self._step(st, _polled(20, 12, 1003.0, is_rolling=True))
        self.assertEqual(actions, [em.ProgressAction(polls=2)])
        self.assertEqual(st.phase, "RoundInFlight")
        self.assertEqual(st.rounds_requested, 1)
        self.assertEqual(st.round_submitted_at, 1001.0)

    def test_round_completion_requests_next_round(self):
        st = self._in_flight()
        st, actions = self._step(st, _polled(17, 8, 1004.0))
        self.assertEqual(actions, [em.BeginRoundAction(round_number=2)])
        self.assertEqual(st.round_submitted_at, 1004.0)

    def test_rounds_counter_keeps_round_in_flight(self):
        # Service has not picked up request #1 yet although isRolling is false.
        st = self._in_flight()
        st, actions = self._step(st, _polled(20, 12, 1002.0, rounds=0))
        self.assertEqual(actions, [em.ProgressAction(polls=1)])
        st, actions = self._step(st, _polled(17, 8, 1003.0, rounds=1))
        self.assertEqual(actions, [em.BeginRoundAction(round_number=2)])

    def test_monster_death_resolves_as_win(self):
        st = self._in_flight()
        st, actions = self._step(st, _polled(14, 0, 1005.0))
        self.assertEqual(actions, [])
        self.assertEqual(st.phase, "Resolved")
        self.assertIs(st.player_won, True)
        self.assertIsNone(st.round_submitted_at)
        self.assertTrue(em.is_terminal(st))

    def test_player_death_resolves_as_loss(self):
        st = self._in_flight()
        st, _ = self._step(st, _polled(0, 5, 1005.0))
        self.assertEqual(st.phase, "Resolved")
        self.assertIs(st.player_won, False)

    def test_both_dead_counts_as_loss(self):
        st = self._in_flight()
        st, _ = self._step(st, _polled(0, 0, 1005.0))
        self.assertIs(st.player_won, False)

    def test_low_health_reads_player_before_next_round(self):
        st = self._in_flight()
        st, actions = self._step(st, _polled(9, 8, 1004.0))
        self.assertEqual(actions, [em.ReadPlayerAction(player_hp=9)])
        self.assertEqual(st.phase, "RoundPending")
        self.assertTrue(st.awaiting_player)

        st, actions = self._step(st, em.PlayerRead(healing_potions=2, timestamp=1005.0))
        self.assertEqual(actions, [em.DrinkPotionAction(player_hp=9), em.BeginRoundAction(round_number=2)])
        self.assertEqual(st.potions_drunk, 1)
        self.assertFalse(st.awaiting_player)
        self.assertEqual(st.phase, "RoundInFlight")

    def test_low_health_without_potions_just_continues(self):
        st = self._in_flight()
        st, _ = self._step(st, _polled(10, 8, 1004.0))
        st, actions = self._step(st, em.PlayerRead(healing_potions=0, timestamp=1005.0))
        self.assertEqual(actions, [em.BeginRoundAction(round_number=2)])
        self.assertEqual(st.potions_drunk, 0)

    def test_polls_ignored_while_awaiting_player(self):
        st = self._in_flight()
        st, _ = self._step(st, _polled(9, 8, 1004.0))
        st, actions = self._step(st, _polled(9, 8, 1005.0))
        self.assertEqual(actions, [])
        self.assertTrue(st.awaiting_player)
        self.assertEqual(st.rounds_requested, 1)

    def test_stray_player_read_is_ignored(self):
        st = self._in_flight()
        st2, actions = self._step(st, em.PlayerRead(healing_potions=3, timestamp=1002.0))
        self.assertEqual(actions, [])
        self.assertEqual(st2, st)

    def test_round_times_out(self):
        st = self._in_flight()
        st, _ = self._step(st, em.TimerTick(timestamp=1030.0))
        self.assertEqual(st.phase, "RoundInFlight")
        st, actions = self._step(st, em.TimerTick(timestamp=1031.0))
        self.assertEqual(actions, [])
        self.assertEqual(st.phase, "TimedOut")
        self.assertTrue(em.is_terminal(st))

    def test_zero_timeout_disables_deadline(self):
        cfg = em.MachineConfig(low_health_threshold=10, round_timeout_sec=0.0)
        st, _ = em.transition(self.state, _polled(20, 12, 1001.0), cfg)
        st, _ = em.transition(st, em.TimerTick(timestamp=10 ** 6), cfg)
        self.assertEqual(st.phase, "RoundInFlight")

    def test_timer_outside_round_does_nothing(self):
        st, actions = self._step(self.state, em.TimerTick(timestamp=5000.0))
        self.assertEqual(actions, [])
        self.assertEqual(st.phase, "Created")

    def test_terminal_phases_ignore_events(self):
        st = self._in_flight()
        done, _ = self._step(st, _polled(14, 0, 1005.0))
        for event in (_polled(20, 12, 1006.0), em.PlayerRead(1, 1006.0), em.TimerTick(9999.0)):
            again, actions = em.transition(done, event, self.cfg)
            self.assertEqual(again, done)
            self.assertEqual(actions, [])

    def test_unseen_rolling_round_starts_clock_at_poll(self):
        st, actions = self._step(self.state, _polled(20, 12, 1001.0, is_rolling=True))
        self.assertEqual(actions, [em.ProgressAction(polls=1)])
        self.assertEqual(st.round_submitted_at, 1001.0)
        self.assertTrue(st.adopted_round)
        self.assertEqual(st.rounds_requested, 0)

        st, actions = self._step(st, _polled(20, 12, 1002.0, is_rolling=True))
        self.assertEqual(actions, [em.ProgressAction(polls=2)])
        st, actions = self._step(st, _polled(17, 8, 1003.0))
        self.assertEqual(actions, [em.BeginRoundAction(round_number=1)])
        self.assertEqual(st.round_submitted_at, 1003.0)

    def test_invariants_catch_bad_states(self):
        self.assertIn(
            "RoundInFlight without a requested round",
            em.check_invariants(replace(self.state, phase="RoundInFlight", round_submitted_at=1.0)),
        )
        self.assertIn(
            "Resolved with both sides alive",
            em.check_invariants(replace(self.state, phase="Resolved", player_hp=3, monster_hp=3, player_won=True)),
        )
        self.assertIn(
            "outcome set before Resolved",
            em.check_invariants(replace(self.state, player_won=False)),
        )
        self.assertIn(
            "more potions drunk than rounds requested",
            em.check_invariants(replace(self.state, potions_drunk=1)),
        )

    def test_to_dict_is_plain(self):
        d = em.to_dict(self.state)
        self.assertEqual(d["encounter_id"], 7)
        self.assertEqual(d["phase"], "Created")


if __name__ == "__main__":
    unittest.main()
