import unittest
from datetime import datetime, timezone

import httpx

from fakes import MINT, Recorder
from fee_lottery.traders import MoralisTraderSource, aggregate_volumes, rank_traders

NOW = datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


class AggregateTests(unittest.TestCase):
    def test_sums_per_wallet_and_skips_bad_values(self):
        swaps = [
            {"walletAddress": "A", "totalValueUsd": 10.5},
            {"walletAddress": "B", "totalValueUsd": 3},
            {"walletAddress": "A", "totalValueUsd": 4.5},
            {"walletAddress": "C", "totalValueUsd": "12"},
            {"walletAddress": "D", "totalValueUsd": None},
            {"walletAddress": "E", "totalValueUsd": True},
            {"totalValueUsd": 99},
        ]

        self.assertEqual(aggregate_volumes(swaps), {"A": 15.0, "B": 3.0})

    def test_rank_keeps_top_n_by_volume(self):
        ranked = rank_traders({"A": 1.0, "B": 30.0, "C": 7.0}, top_n=2)
        self.assertEqual([(t.wallet_address, t.volume_usd) for t in ranked], [("B", 30.0), ("C", 7.0)])


class MoralisTraderSourceTests(unittest.TestCase):
    def make(self, handler, **kwargs):
        self.requests = []
        self.sleep = Recorder()

        def record(request):
            self.requests.append(request)
            return handler(request)

        client = httpx.Client(transport=httpx.MockTransport(record))
        return MoralisTraderSource(
            "moralis-key",
            client=client,
            sleep=self.sleep,
            now=lambda: NOW,
            **kwargs,
        )

    def test_follows_cursor_across_pages(self):
        pages = {
            None: {"result": [{"walletAddress": "A", "totalValueUsd": 5}], "cursor": "p2"},
            "p2": {"result": [{"walletAddress": "B", "totalValueUsd": 8}, {"walletAddress": "A", "totalValueUsd": 5}]},
        }

        def handler(request):
            return httpx.Response(200, json=pages[request.url.params.get("cursor")])

        source = self.make(handler)
        traders = source.get_traders(MINT)

        self.assertEqual([(t.wallet_address, t.volume_usd) for t in traders], [("A", 10.0), ("B", 8.0)])
        self.assertEqual(len(self.requests), 2)
        first = self.requests[0]
        self.assertIn(f"/token/mainnet/{MINT}/swaps", first.url.path)
        self.assertEqual(first.url.params["fromDate"], "2025-05-31T12:00:00Z")
        self.assertEqual(first.url.params["toDate"], "2025-06-01T12:00:00Z")
        self.assertEqual(first.headers["X-API-Key"], "moralis-key")

    def test_retries_a_failed_page(self):
        calls = {"n": 0}

        def handler(request):
            calls["n"] += 1
            if calls["n"] == 1:
                return httpx.Response(502, text="bad gateway")
            return httpx.Response(200, json={"result": [{"walletAddress": "A", "totalValueUsd": 1}]})

        source = self.make(handler, retries=2, retry_delay_s=0.5)
        traders = source.get_traders(MINT)

        self.assertEqual([t.wallet_address for t in traders], ["A"])
        self.assertEqual(self.sleep.calls, [0.5])

    def test_keeps_partial_results_when_later_page_fails(self):
        def handler(request):
            if request.url.params.get("cursor") == "p2":
                return httpx.Response(500, text="boom")
            return httpx.Response(200, json={"result": [{"walletAddress": "A", "totalValueUsd": 2}], "cursor": "p2"})

        source = self.make(handler, retries=2, retry_delay_s=1.0)
        traders = source.get_traders(MINT)

        self.assertEqual([t.wallet_address for t in traders], ["A"])
        self.assertEqual(len(self.requests), 3)

    def test_malformed_payload_counts_as_failure(self):
        def handler(request):
            return httpx.Response(200, json={"result": "nope"})

        source = self.make(handler, retries=1)
        self.assertEqual(source.get_traders(MINT), [])

    def test_repeated_cursor_stops_paging(self):
        def handler(request):
            return httpx.Response(
                200,
                json={"result": [{"walletAddress": "A", "totalValueUsd": 2}], "cursor": "same"},
            )

        source = self.make(handler)
        traders = source.get_traders(MINT)

        self.assertEqual(len(self.requests), 2)
        self.assertEqual([(t.wallet_address, t.volume_usd) for t in traders], [("A", 4.0)])

    def test_page_cap_bounds_endless_cursors(self):
        def handler(request):
            n = len(self.requests)
            return httpx.Response(
                200,
                json={"result": [{"walletAddress": f"W{n}", "totalValueUsd": n}], "cursor": f"c{n}"},
            )

        source = self.make(handler, max_pages=3)
        traders = source.get_traders(MINT)

        self.assertEqual(len(self.requests), 3)
        self.assertEqual([t.wallet_address for t in traders], ["W3", "W2", "W1"])

    def test_missing_api_key_returns_nothing(self):
        def handler(request):
            raise AssertionError("should not be called")

        source = self.make(handler)
        source.api_key = ""
        self.assertEqual(source.get_traders(MINT), [])
        self.assertEqual(self.requests, [])


if __name__ == "__main__":
    unittest.main()
