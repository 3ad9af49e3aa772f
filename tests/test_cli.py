import io
import json
import os
import tempfile
import unittest
from contextlib import redirect_stdout
from datetime import datetime, timedelta, timezone
from unittest import mock

from fee_lottery.cli import build_parser, build_scheduler
from fee_lottery.config import Settings
from fee_lottery.models import LotteryReceipt
from fee_lottery.store import MemoryStore


def run(argv):
    args = build_parser().parse_args(argv)
    out = io.StringIO()
    with redirect_stdout(out):
        code = args.func(args)
    return code, out.getvalue()


class SelectVerifyTests(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.traders = os.path.join(self.tmp.name, "traders.json")
        self.audit = os.path.join(self.tmp.name, "draw.json")
        with open(self.traders, "w", encoding="utf-8") as f:
            json.dump(
                [
                    {"walletAddress": "A", "volumeUsd": 100},
                    {"walletAddress": "B", "volumeUsd": 300},
                ],
                f,
            )

    def tearDown(self):
        self.tmp.cleanup()

    def test_select_writes_audit(self):
        code, out = run(["select", "--traders", self.traders, "--random-value", "0xfa", "--out", self.audit])

        self.assertEqual(code, 0)
        self.assertIn("Winner        : B", out)
        with open(self.audit, encoding="utf-8") as f:
            audit = json.load(f)
        self.assertEqual(audit["random_value"], "250")
        self.assertEqual(audit["winner"], "B")

    def test_verify_audit_and_receipt(self):
        run(["select", "--traders", self.traders, "--random-value", "99", "--out", self.audit])

        code, out = run(["verify", "--audit", self.audit])
        self.assertEqual(code, 0)
        self.assertIn("DRAW VERIFIED", out)

        receipt_path = os.path.join(self.tmp.name, "receipt.json")
        with open(self.audit, encoding="utf-8") as f:
            receipt = {"winner": "A", "draw": json.load(f)}
        with open(receipt_path, "w", encoding="utf-8") as f:
            json.dump(receipt, f)
        code, _ = run(["verify", "--audit", receipt_path])
        self.assertEqual(code, 0)

    def test_verify_detects_tampering(self):
        run(["select", "--traders", self.traders, "--random-value", "99", "--out", self.audit])
        with open(self.audit, encoding="utf-8") as f:
            audit = json.load(f)
        audit["selection"] = 150
        with open(self.audit, "w", encoding="utf-8") as f:
            json.dump(audit, f)

        with self.assertRaises(RuntimeError):
            run(["verify", "--audit", self.audit])


class WiringTests(unittest.TestCase):
    def settings(self, **overrides):
        values = dict(
            rpc_url="http://localhost:8899",
            private_key="not-loaded",
            market_mint="Mint111",
            sb_oracle="Oracle111",
            sb_gateway_url="https://gateway.test",
            bags_api_key="bags-key",
        )
        values.update(overrides)
        return Settings(**values)

    def test_missing_fee_api_key_is_rejected_before_anything_opens(self):
        with mock.patch("fee_lottery.cli.load_keypair") as load:
            with self.assertRaisesRegex(RuntimeError, "BAGS_API_KEY"):
                build_scheduler(self.settings(bags_api_key=""), 5.0)
        load.assert_not_called()

    def test_missing_oracle_is_rejected(self):
        with self.assertRaisesRegex(RuntimeError, "SB_ORACLE"):
            build_scheduler(self.settings(sb_oracle=""), 5.0)


class ReceiptsCommandTests(unittest.TestCase):
    def setUp(self):
        self.t0 = datetime(2025, 3, 1, tzinfo=timezone.utc)
        self.store = MemoryStore()
        for i, winner in enumerate(["A", "B", "A", "C"]):
            self.store.insert_receipt(
                LotteryReceipt(
                    pot_size_lamports=1_000_000_000,
                    winner_address=winner,
                    payout_tx_id=f"payout{i}",
                    swap_tx_id=f"swap{i}",
                    burn_amount_raw=10,
                    burn_decimals=0,
                    timestamp=self.t0 + timedelta(days=i),
                )
            )
        patcher = mock.patch("fee_lottery.cli._read_store", return_value=self.store)
        patcher.start()
        self.addCleanup(patcher.stop)

    def test_filters_by_winner(self):
        code, out = run(["receipts", "--winner", "A"])

        self.assertEqual(code, 0)
        self.assertIn("(2 total)", out)
        self.assertIn("payout2", out)
        self.assertNotIn("payout1", out)

    def test_filters_by_date_range(self):
        code, out = run(["receipts", "--from", "2025-03-02", "--to", "2025-03-03T00:00:00+00:00"])

        self.assertEqual(code, 0)
        self.assertIn("(2 total)", out)
        self.assertIn("payout1", out)
        self.assertIn("payout2", out)
        self.assertNotIn("payout0", out)
        self.assertNotIn("payout3", out)

    def test_bad_date_is_a_usage_error(self):
        with mock.patch("sys.stderr", io.StringIO()), self.assertRaises(SystemExit):
            build_parser().parse_args(["receipts", "--from", "last tuesday"])


if __name__ == "__main__":
    unittest.main()
