from __future__ import annotations

import itertools
from types import SimpleNamespace
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from solders.keypair import Keypair
from solders.pubkey import Pubkey

from fee_lottery.models import ClaimablePosition, TraderVolume
from fee_lottery.rpc import TransactionFailed
from fee_lottery.swap import Quote
from fee_lottery.token_accounts import associated_token_address

MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
OTHER_MINT = "So11111111111111111111111111111111111111112"


def wallet() -> str:
    return str(Keypair().pubkey())


class Recorder:
    """Stands in for time.sleep."""

    def __init__(self) -> None:
        self.calls: List[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class FixedClock:
    def __init__(self, start: Optional[datetime] = None) -> None:
        self.now = start or datetime(2025, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.now = self.now + timedelta(seconds=1)
        return self.now


class FakeRpc:
    rpc_url = "http://localhost:8899"

    def get_minimum_balance_for_rent_exemption(self, size: int) -> int:
        return 8_000_000


class FakeChain:
    """
    Records every transaction instead of sending it. `fail` decides per call:
    it gets (kind, payload) and returns True to make that call raise.
    """

    def __init__(
        self,
        token_balance: Tuple[int, int] = (0, 6),
        fail: Optional[Callable[[str, object], bool]] = None,
    ) -> None:
        self.keypair = Keypair()
        self.rpc = FakeRpc()
        self.balance = token_balance
        self._fail = fail or (lambda kind, payload: False)
        self._sigs = itertools.count(1)
        self.sent: List[Tuple[str, object]] = []

    @property
    def pubkey(self) -> Pubkey:
        return self.keypair.pubkey()

    def _send(self, kind: str, payload: object) -> str:
        sig = f"{kind}-sig-{next(self._sigs)}"
        if self._fail(kind, payload):
            raise TransactionFailed(sig, f"{kind} rejected")
        self.sent.append((kind, payload))
        return sig

    def send_instructions(self, instructions: Sequence[object], extra_signers: Sequence[Keypair] = ()) -> str:
        return self._send("instructions", list(instructions))

    def send_serialized(self, tx_bytes: bytes) -> str:
        return self._send("serialized", tx_bytes)

    def transfer(self, to: Pubkey, lamports: int) -> str:
        return self._send("transfer", (str(to), lamports))

    def associated_token_address(self, mint: Pubkey) -> Pubkey:
        return associated_token_address(self.pubkey, mint)

    def token_balance(self, account: Pubkey) -> Tuple[int, int]:
        return self.balance

    def burn(self, account: Pubkey, mint: Pubkey, owner: Pubkey, amount: int) -> str:
        return self._send("burn", (str(account), str(mint), amount))

    def kinds(self) -> List[str]:
        return [kind for kind, _ in self.sent]


class FakeOracle:
    """
    `results` maps a randomness account to the buffers successive load_result
    calls return; the last buffer repeats. Unknown accounts use `default`.
    """

    def __init__(self, default: Sequence[bytes] = (bytes(32),)) -> None:
        self.default = list(default)
        self.results: Dict[str, List[bytes]] = {}
        self.loads: Dict[str, int] = {}
        self.created: List[str] = []
        self.committed: List[str] = []
        self.revealed: List[str] = []
        self.load_errors = 0
        # queued exceptions raised by the next commit / reveal instruction builds
        self.commit_errors: List[Exception] = []
        self.reveal_errors: List[Exception] = []

    def create_instructions(self, randomness: Pubkey, payer: Pubkey) -> list:
        self.created.append(str(randomness))
        return [("create", str(randomness))]

    def commit_instruction(self, randomness: Pubkey, authority: Pubkey) -> object:
        if self.commit_errors:
            raise self.commit_errors.pop(0)
        self.committed.append(str(randomness))
        return ("commit", str(randomness))

    def reveal_instruction(self, randomness: Pubkey, authority: Pubkey) -> object:
        if self.reveal_errors:
            raise self.reveal_errors.pop(0)
        self.revealed.append(str(randomness))
        return ("reveal", str(randomness))

    def load_result(self, randomness: Pubkey) -> bytes:
        key = str(randomness)
        n = self.loads.get(key, 0)
        self.loads[key] = n + 1
        if self.load_errors:
            self.load_errors -= 1
            raise RuntimeError("rpc hiccup")
        buffers = self.results.get(key, self.default)
        return buffers[min(n, len(buffers) - 1)]


def result_buffer(value: int) -> bytes:
    return value.to_bytes(8, "big") + bytes(range(1, 25))


class FakeRandomness:
    """Replaces RandomnessClient in scheduler tests."""

    def __init__(self, value: int = 250, error: Optional[Exception] = None) -> None:
        self.value = value
        self.error = error
        self.calls = 0

    def run_workflow(self, max_attempts: int = 3):
        self.calls += 1
        if self.error is not None:
            raise self.error

        return SimpleNamespace(randomness_account=wallet(), result_int=self.value)


class FakeTraders:
    def __init__(self, traders: Sequence[TraderVolume]) -> None:
        self.traders = list(traders)
        self.calls = 0

    def get_traders(self, market_id: str) -> List[TraderVolume]:
        self.calls += 1
        return list(self.traders)


class FakeFeeSource:
    def __init__(self, positions: Sequence[ClaimablePosition], txs_per_position: int = 1) -> None:
        self.positions = list(positions)
        self.txs_per_position = txs_per_position
        self.claim_requests: List[ClaimablePosition] = []

    def list_claimable_positions(self, owner: str) -> List[ClaimablePosition]:
        return list(self.positions)

    def build_claim_txs(self, owner: str, position: ClaimablePosition) -> List[bytes]:
        self.claim_requests.append(position)
        n = len(self.claim_requests)
        return [f"claim-{n}-{i}".encode() for i in range(self.txs_per_position)]


class FakeSwapper:
    def __init__(self, out_amount: int = 1_000_000, quote_error: Optional[Exception] = None) -> None:
        self.out_amount = out_amount
        self.quote_error = quote_error
        self.quotes: List[Tuple[str, str, int, int]] = []
        self.built: List[Tuple[Quote, str, str]] = []

    def get_quote(self, input_mint: str, output_mint: str, amount: int, max_slippage_bps: int) -> Quote:
        self.quotes.append((input_mint, output_mint, amount, max_slippage_bps))
        if self.quote_error is not None:
            raise self.quote_error
        return Quote(input_mint, output_mint, amount, self.out_amount)

    def build_swap_tx(self, quote: Quote, user: str, destination_account: str) -> bytes:
        self.built.append((quote, user, destination_account))
        return b"swap-tx"
