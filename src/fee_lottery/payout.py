from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from solders.pubkey import Pubkey

from .chain import Chain
from .errors import LotteryError, PayoutTxFailure, SwapTxFailure
from .models import LotteryReceipt, now_utc, to_sol
from .project_constants import SOL_MINT
from .state import RoundState, RoundToken
from .store import LotteryStore
from .swap import SwapClient

log = logging.getLogger("payout")


def split_pot(pot_size_lamports: int, payout_percentage: float) -> tuple[int, int]:
    """(payout to winner, budget for buy & burn)"""
    payout = math.floor(pot_size_lamports * payout_percentage)
    return payout, pot_size_lamports - payout


class PayoutPipeline:
    def __init__(
        self,
        chain: Chain,
        swapper: SwapClient,
        store: LotteryStore,
        market_mint: str,
        payout_percentage: float = 0.25,
        slippage_bps: int = 50,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        if not 0.0 <= payout_percentage <= 1.0:
            raise ValueError(f"payout_percentage must be within [0, 1], got {payout_percentage}")
        self.chain = chain
        self.swapper = swapper
        self.store = store
        self.market_mint = market_mint
        self.payout_percentage = payout_percentage
        self.slippage_bps = slippage_bps
        self._clock = clock

    def run_payout(
        self,
        winner: str,
        pot_size_lamports: int,
        state: RoundState,
        token: RoundToken,
        draw: Optional[Dict[str, Any]] = None,
    ) -> LotteryReceipt:
        """
        Payout -> swap -> burn -> receipt. Any failure propagates, but the round
        state is always finished (run flag cleared, pot zeroed).
        """
        if not state.holds(token):
            raise LotteryError(f"Round {token.round_id} is not running; refusing to pay out.")
        try:
            return self._run(winner, pot_size_lamports, draw)
        finally:
            state.finish(token)

    def _run(
        self, winner: str, pot_size_lamports: int, draw: Optional[Dict[str, Any]]
    ) -> LotteryReceipt:
        log.info("Processing lottery for pot size: %.6f SOL", to_sol(pot_size_lamports))
        payout_amount, burn_budget = split_pot(pot_size_lamports, self.payout_percentage)

        # 1. Payout
        log.info("Sending %.6f SOL to winner: %s", to_sol(payout_amount), winner)
        try:
            payout_sig = self.chain.transfer(Pubkey.from_string(winner), payout_amount)
        except Exception as e:
            raise PayoutTxFailure(f"Payout to {winner} failed: {e}") from e
        log.info("Payout transaction confirmed: %s", payout_sig)

        # 2. Buy
        log.info("Using %.6f SOL to buy and burn %s.", to_sol(burn_budget), self.market_mint)
        quote = self.swapper.get_quote(SOL_MINT, self.market_mint, burn_budget, self.slippage_bps)
        log.info("Quote: %d lamports -> %d raw tokens", quote.in_amount, quote.out_amount)

        mint = Pubkey.from_string(self.market_mint)
        token_account = self.chain.associated_token_address(mint)
        try:
            swap_tx = self.swapper.build_swap_tx(quote, str(self.chain.pubkey), str(token_account))
            swap_sig = self.chain.send_serialized(swap_tx)
        except Exception as e:
            raise SwapTxFailure(f"Swap for {burn_budget} lamports failed: {e}") from e
        log.info("Swap transaction confirmed: %s", swap_sig)

        # 3. Burn whatever the account holds now, not what the quote promised
        to_burn, decimals = self.chain.token_balance(token_account)
        burn_sig: Optional[str] = None
        if to_burn > 0:
            log.info(
                "Burning %d raw tokens (%s with %d decimals).",
                to_burn,
                to_burn / (10**decimals),
                decimals,
            )
            burn_sig = self.chain.burn(token_account, mint, self.chain.pubkey, to_burn)
            log.info("Burn transaction confirmed: %s", burn_sig)
        else:
            log.warning("No tokens acquired to burn. Check swap success and token balance.")

        # 4. Receipt
        receipt = LotteryReceipt(
            pot_size_lamports=pot_size_lamports,
            winner_address=winner,
            payout_tx_id=payout_sig,
            swap_tx_id=swap_sig,
            burn_amount_raw=to_burn,
            burn_decimals=decimals,
            timestamp=self._clock(),
            burn_tx_id=burn_sig,
            draw=draw,
        )
        self.store.insert_receipt(receipt)
        log.info("Lottery receipt stored.")
        return receipt
