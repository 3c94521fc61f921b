import json
import unittest

import roster
from service_client import ServiceError
from stub_service import StubService


class RosterTests(unittest.TestCase):
    def test_seeds_roster_once(self):
        svc = StubService()
        highest = roster.ensure_monsters(svc, "funder")
        self.assertEqual(highest, len(roster.DEFAULT_ROSTER))
        self.assertEqual(svc.read_monster(1).name, "goblin")
        self.assertEqual(svc.read_monster(9).name, "deity")

        again = roster.ensure_monsters(svc, "funder")
        self.assertEqual(again, highest)
        self.assertEqual(svc.count("seed_monster"), len(roster.DEFAULT_ROSTER))

    def test_roster_is_in_ascending_difficulty(self):
        hps = [m.hp for m in roster.DEFAULT_ROSTER]
        acs = [m.ac for m in roster.DEFAULT_ROSTER]
        self.assertEqual(hps, sorted(hps))
        self.assertEqual(acs, sorted(acs))

    def test_empty_roster_after_seeding_is_an_error(self):
        svc = StubService()
        with self.assertRaises(ServiceError):
            roster.ensure_monsters(svc, "funder", roster=())

    def test_ensure_player_is_idempotent(self):
        svc = StubService()
        self.assertTrue(roster.ensure_player(svc, "player-1", "p_1"))
        self.assertFalse(roster.ensure_player(svc, "player-1", "p_1"))
        self.assertEqual(svc.count("create_player"), 1)
        player = svc.read_player("player-1")
        self.assertEqual((player.won, player.lost, player.healing_potions), (0, 0, 0))
        # No paid action is involved in either call.
        self.assertEqual(svc.count("transfer"), 0)
        self.assertEqual(svc.count("increase_allowance"), 0)

    def test_load_roster_override(self):
        raw = json.dumps([{"name": "rat", "ac": 8, "hp": 4}, {"name": "ogre", "ac": 13, "hp": 30, "atk": 6}])
        parsed = roster.load_roster(raw)
        self.assertEqual([m.name for m in parsed], ["rat", "ogre"])
        self.assertEqual(parsed[0].str_mod, 0)
        self.assertEqual(parsed[1].atk, 6)

    def test_load_roster_falls_back_on_bad_input(self):
        self.assertIs(roster.load_roster(""), roster.DEFAULT_ROSTER)
        self.assertIs(roster.load_roster("not json"), roster.DEFAULT_ROSTER)
        self.assertIs(roster.load_roster("[]"), roster.DEFAULT_ROSTER)
        self.assertIs(roster.load_roster('[{"name": "ghost", "ac": 0, "hp": 5}]'), roster.DEFAULT_ROSTER)


if __name__ == "__main__":
    unittest.main()
