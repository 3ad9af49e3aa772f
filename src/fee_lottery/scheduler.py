from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Callable, Optional

from .draw import draw_audit, select_winner
from .fees import FeeClaimMonitor
from .models import LotteryReceipt, LotteryStatus, now_utc, to_sol
from .payout import PayoutPipeline
from .state import RoundState
from .store import LotteryStore
from .traders import TraderVolumeSource
from .vrf import RandomnessClient

log = logging.getLogger("scheduler")


class RoundScheduler:
    """
    Fixed-interval loop around one round type:
    fee check -> traders -> VRF -> winner -> payout & burn.
    Ticks run strictly one after another; is_running guards the round itself.
    """

    def __init__(
        self,
        state: RoundState,
        monitor: FeeClaimMonitor,
        traders: TraderVolumeSource,
        randomness: RandomnessClient,
        pipeline: PayoutPipeline,
        store: LotteryStore,
        market_mint: str,
        vrf_max_attempts: int = 3,
        tick_interval_s: float = 10.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = now_utc,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self.state = state
        self.monitor = monitor
        self.traders = traders
        self.randomness = randomness
        self.pipeline = pipeline
        self.store = store
        self.market_mint = market_mint
        self.vrf_max_attempts = vrf_max_attempts
        self.tick_interval_s = tick_interval_s
        self.last_error: Optional[str] = None
        self._sleep = sleep
        self._clock = clock
        self._monotonic = monotonic

    def _mirror_status(self) -> None:
        self.store.upsert_status(
            LotteryStatus(
                pot_size_lamports=self.state.pot_size_lamports,
                is_running=self.state.is_running,
                market_mint=self.market_mint,
                last_updated=self._clock(),
                last_error=self.last_error,
            )
        )

    def tick(self) -> Optional[LotteryReceipt]:
        if self.state.is_running:
            log.info("Lottery is currently running, skipping this check.")
            return None

        try:
            log.info("Monitoring claimable fees for market: %s", self.market_mint)
            triggered = self.monitor.check_and_claim(self.market_mint)
            if not triggered:
                self.last_error = None
                self._mirror_status()
                return None
            self._mirror_status()

            log.info(
                "Threshold reached for %s (pot %.6f SOL)! Initiating lottery round.",
                self.market_mint,
                to_sol(self.state.pot_size_lamports),
            )
            receipt = self._run_round()
            self.last_error = None
            self._mirror_status()
            return receipt
        except Exception as e:
            # Tick boundary: log, remember, and let the next tick retry.
            log.exception("Error in main loop for market %s", self.market_mint)
            self.last_error = f"{type(e).__name__}: {e}"
            self._mirror_after_failure()
            return None

    def _mirror_after_failure(self) -> None:
        try:
            self._mirror_status()
        except Exception:
            log.exception("Could not mirror status after a failed tick")

    def _run_round(self) -> Optional[LotteryReceipt]:
        token = self.state.begin()
        try:
            traders = self.traders.get_traders(self.market_mint)
            if not traders:
                log.warning(
                    "No traders in the last 24 hours. Resetting pot and waiting for next round."
                )
                return None
            log.info("Found %d traders for the lottery.", len(traders))

            rnd = self.randomness.run_workflow(self.vrf_max_attempts)
            log.info(
                "VRF result consumed from randomness account %s: %d",
                rnd.randomness_account,
                rnd.result_int,
            )

            selection = select_winner(traders, rnd.result_int)
            audit = draw_audit(traders, rnd.result_int, selection, rnd.randomness_account)

            return self.pipeline.run_payout(
                selection.winner,
                self.state.pot_size_lamports,
                self.state,
                token,
                draw=audit,
            )
        finally:
            # No-op when the pipeline already finished the round.
            self.state.finish(token)

    def run_forever(self, max_ticks: Optional[int] = None) -> None:
        log.info(
            "Lottery worker started (market %s, every %.1fs).",
            self.market_mint,
            self.tick_interval_s,
        )
        ticks = 0
        while max_ticks is None or ticks < max_ticks:
            started = self._monotonic()
            self.tick()
            ticks += 1
            if max_ticks is not None and ticks >= max_ticks:
                break
            elapsed = self._monotonic() - started
            self._sleep(max(0.0, self.tick_interval_s - elapsed))
