import unittest
from collections import Counter

from fee_lottery.draw import build_ranges, draw_audit, select_winner, trader_weight
from fee_lottery.errors import NoTraders
from fee_lottery.models import TraderVolume
from fee_lottery.verify import verify_draw


def tv(address, volume):
    return TraderVolume(address, volume)


class WinnerSelectionTests(unittest.TestCase):
    def test_weighted_scenario_picks_second_range(self):
        traders = [tv("A", 100), tv("B", 300)]

        out = select_winner(traders, 250)

        self.assertEqual(out.total_weight, 400)
        self.assertEqual(out.selection, 250)
        self.assertEqual(out.winner, "B")
        self.assertEqual(out.index, 1)

    def test_range_boundaries_are_exclusive_at_the_end(self):
        traders = [tv("A", 100), tv("B", 300)]

        self.assertEqual(select_winner(traders, 99).winner, "A")
        self.assertEqual(select_winner(traders, 100).winner, "B")
        self.assertEqual(select_winner(traders, 399).winner, "B")
        # wraps around the total weight
        self.assertEqual(select_winner(traders, 400).winner, "A")

    def test_sub_dollar_volume_clamps_to_one_ticket(self):
        traders = [tv("A", 0.4)]

        for value in (0, 1, 7, 2**64 - 1):
            out = select_winner(traders, value)
            self.assertEqual(out.winner, "A")
            self.assertEqual(out.total_weight, 1)

    def test_weight_floors_and_never_drops_below_one(self):
        self.assertEqual(trader_weight(0), 1)
        self.assertEqual(trader_weight(0.99), 1)
        self.assertEqual(trader_weight(1.99), 1)
        self.assertEqual(trader_weight(2.5), 2)
        self.assertEqual(trader_weight(-50), 1)

    def test_empty_list_raises(self):
        with self.assertRaises(NoTraders):
            select_winner([], 5)

    def test_index_always_in_bounds(self):
        traders = [tv("A", 3.7), tv("B", 0), tv("C", 12), tv("D", 1.2)]
        for value in list(range(0, 200)) + [2**63, 2**64 - 1, 123456789012345]:
            out = select_winner(traders, value)
            self.assertTrue(0 <= out.index < len(traders))
            self.assertEqual(traders[out.index].wallet_address, out.winner)

    def test_probability_mass_matches_weights(self):
        traders = [tv("A", 5.9), tv("B", 0.1), tv("C", 10), tv("D", 3)]
        _ranges, total = build_ranges(traders)

        counts = Counter(select_winner(traders, v).winner for v in range(total))

        self.assertEqual(total, 5 + 1 + 10 + 3)
        self.assertEqual(counts, {"A": 5, "B": 1, "C": 10, "D": 3})

    def test_same_inputs_same_output(self):
        traders = [tv("A", 10), tv("B", 20), tv("C", 30)]
        self.assertEqual(select_winner(traders, 987654321), select_winner(traders, 987654321))

    def test_order_moves_ranges_but_not_odds(self):
        forward = [tv("A", 2), tv("B", 6)]
        backward = list(reversed(forward))

        fwd = Counter(select_winner(forward, v).winner for v in range(8))
        bwd = Counter(select_winner(backward, v).winner for v in range(8))

        self.assertEqual(fwd, bwd)
        self.assertNotEqual(select_winner(forward, 0).winner, select_winner(backward, 0).winner)


class DrawAuditTests(unittest.TestCase):
    def setUp(self):
        self.traders = [tv("A", 100), tv("B", 300), tv("C", 0.2)]
        self.value = 2**63 + 17
        self.selection = select_winner(self.traders, self.value)
        self.audit = draw_audit(self.traders, self.value, self.selection, "RandAcct111")

    def test_audit_records_ranges_and_value(self):
        self.assertEqual(self.audit["random_value"], str(self.value))
        self.assertEqual(self.audit["randomness_account"], "RandAcct111")
        self.assertEqual(
            [(e["address"], e["start"], e["end"]) for e in self.audit["entrants"]],
            [("A", 0, 100), ("B", 100, 400), ("C", 400, 401)],
        )

    def test_verify_accepts_untouched_audit(self):
        result = verify_draw(self.audit)
        self.assertTrue(result["ok"])
        self.assertEqual(result["winner"], self.selection.winner)

    def test_verify_rejects_tampered_winner(self):
        tampered = dict(self.audit, winner="Z")
        with self.assertRaises(RuntimeError):
            verify_draw(tampered)

    def test_verify_rejects_tampered_volume(self):
        entrants = [dict(e) for e in self.audit["entrants"]]
        entrants[0]["volume_usd"] = 5000
        with self.assertRaises(RuntimeError):
            verify_draw(dict(self.audit, entrants=entrants))


if __name__ == "__main__":
    unittest.main()
