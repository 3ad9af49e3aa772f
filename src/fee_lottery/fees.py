from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Protocol

import base58
import httpx

from .chain import Chain
from .errors import (
    NoClaimablePositions,
    NoMatchingPositions,
    NoPositions,
    PartialClaimFailure,
)
from .models import ClaimablePosition, ClaimOutcome, PoolKind, to_sol
from .state import RoundState

log = logging.getLogger("fees")

BAGS_API = "https://public-api-v2.bags.fm/api/v1"


class FeePositionSource(Protocol):
    def list_claimable_positions(self, owner: str) -> List[ClaimablePosition]: ...

    def build_claim_txs(self, owner: str, position: ClaimablePosition) -> List[bytes]: ...


def _lamports(value: Any) -> int:
    if value is None or value == "":
        return 0
    return int(value)


def parse_positions(item: Dict[str, Any]) -> List[ClaimablePosition]:
    """
    One API position can carry several claimable amounts (virtual pool, DAMM pool,
    custom fee vault share). Each non-zero amount becomes its own ClaimablePosition;
    all of them share the same raw payload.
    """
    mint = item.get("baseMint", "")
    out: List[ClaimablePosition] = []

    virtual = _lamports(item.get("virtualPoolClaimableAmount"))
    if virtual:
        out.append(ClaimablePosition(mint, PoolKind.VIRTUAL, virtual, raw=item))

    damm = _lamports(item.get("dammPoolClaimableAmount"))
    if damm:
        out.append(ClaimablePosition(mint, PoolKind.DAMM, damm, raw=item))

    if item.get("isCustomFeeVault"):
        balance = _lamports(item.get("customFeeVaultBalance"))
        bps = int(item.get("customFeeVaultBps") or 0)
        out.append(
            ClaimablePosition(
                mint,
                PoolKind.CUSTOM_FEE_VAULT,
                balance * bps // 10_000,
                fee_share_bps=bps,
                raw=item,
            )
        )
    return out


class BagsFeeSource:
    def __init__(
        self,
        api_key: str,
        base_url: str = BAGS_API,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.Client(timeout=30.0, headers={"x-api-key": api_key})

    def close(self) -> None:
        self.client.close()

    def _unwrap(self, resp: httpx.Response) -> Any:
        resp.raise_for_status()
        data = resp.json()
        if not data.get("success", False):
            raise RuntimeError(f"Fee API error: {data.get('error') or data}")
        return data.get("response")

    def list_claimable_positions(self, owner: str) -> List[ClaimablePosition]:
        resp = self.client.get(
            f"{self.base_url}/token-launch/claimable-positions",
            params={"wallet": owner},
        )
        items = self._unwrap(resp) or []
        out: List[ClaimablePosition] = []
        for item in items:
            out.extend(parse_positions(item))
        return out

    def build_claim_txs(self, owner: str, position: ClaimablePosition) -> List[bytes]:
        raw = position.raw
        body = {
            "feeClaimer": owner,
            "tokenMint": position.token_mint,
            "virtualPoolAddress": raw.get("virtualPoolAddress"),
            "dammV2Position": raw.get("dammPositionInfo", {}).get("position")
            if isinstance(raw.get("dammPositionInfo"), dict)
            else None,
            "claimVirtualPoolFees": bool(_lamports(raw.get("virtualPoolClaimableAmount"))),
            "claimDammV2Fees": bool(_lamports(raw.get("dammPoolClaimableAmount"))),
            "isCustomFeeVault": bool(raw.get("isCustomFeeVault")),
            "customFeeVaultClaimerSide": raw.get("customFeeVaultClaimerSide"),
        }
        resp = self.client.post(f"{self.base_url}/token-launch/claim-txs/v2", json=body)
        txs = self._unwrap(resp) or []
        # Transactions come back base58 encoded
        return [base58.b58decode(t["tx"]) for t in txs]


def _claim_groups(positions: List[ClaimablePosition]) -> List[ClaimablePosition]:
    """Claims are requested once per source position, not once per pool kind."""
    seen: set[int] = set()
    out: List[ClaimablePosition] = []
    for p in positions:
        key = id(p.raw)
        if key in seen:
            continue
        seen.add(key)
        out.append(p)
    return out


class FeeClaimMonitor:
    def __init__(
        self,
        source: FeePositionSource,
        chain: Chain,
        state: RoundState,
        threshold_lamports: int,
    ) -> None:
        self.source = source
        self.chain = chain
        self.state = state
        self.threshold_lamports = threshold_lamports

    def _matching_positions(self, owner: str, market_id: str) -> List[ClaimablePosition]:
        log.info("Fetching all claimable positions for %s...", owner)
        positions = self.source.list_claimable_positions(owner)
        if not positions:
            raise NoPositions("No claimable positions found for this wallet.")

        log.info("Found %d claimable position(s)", len(positions))
        matching = [p for p in positions if p.token_mint == market_id]
        if not matching:
            mints = sorted({p.token_mint for p in positions})
            raise NoMatchingPositions(
                f"No claimable positions for mint {market_id}; available: {', '.join(mints)}"
            )
        return matching

    def evaluate(self, market_id: str) -> ClaimOutcome:
        owner = str(self.chain.pubkey)
        try:
            matching = self._matching_positions(owner, market_id)
        except NoClaimablePositions as e:
            log.info("%s", e)
            # A stale position set must not leave a pot lying around.
            self.state.pot_size_lamports = 0
            return ClaimOutcome(triggered=False, pot_size_lamports=0, reason=str(e))

        pot = 0
        for p in matching:
            log.info(
                "  %s %s: %d lamports (%.6f SOL)",
                p.token_mint,
                p.pool_kind.value,
                p.claimable_amount_lamports,
                to_sol(p.claimable_amount_lamports),
            )
            pot += p.claimable_amount_lamports

        # The pre-claim sum is the pot, even if some claims below fail.
        self.state.pot_size_lamports = pot
        log.info("Total claimable pot size: %.6f SOL", to_sol(pot))

        if pot < self.threshold_lamports:
            log.info(
                "Pot %.6f SOL is below threshold %.6f SOL. Skipping claim.",
                to_sol(pot),
                to_sol(self.threshold_lamports),
            )
            return ClaimOutcome(
                triggered=False,
                pot_size_lamports=pot,
                positions=matching,
                reason="below threshold",
            )

        outcome = ClaimOutcome(triggered=True, pot_size_lamports=pot, positions=matching)
        groups = _claim_groups(matching)
        for i, position in enumerate(groups, start=1):
            log.info("Processing position %d/%d...", i, len(groups))
            self._claim_position(owner, position, outcome)

        if outcome.partial:
            log.warning(
                "Fee claim finished with %d failed transaction(s), %d confirmed.",
                len(outcome.failed),
                len(outcome.confirmed),
            )
        else:
            log.info("Fee claim finished: %d transaction(s) confirmed.", len(outcome.confirmed))
        return outcome

    def _claim_position(self, owner: str, position: ClaimablePosition, outcome: ClaimOutcome) -> None:
        try:
            txs = self.source.build_claim_txs(owner, position)
        except Exception as e:
            log.error("Could not build claim transactions for %s: %s", position.token_mint, e)
            outcome.failed.append(PartialClaimFailure(position.token_mint, str(e)))
            return

        if not txs:
            log.warning("No claim transactions generated for this position.")
            return

        for j, tx_bytes in enumerate(txs, start=1):
            try:
                sig = self.chain.send_serialized(tx_bytes)
            except Exception as e:
                log.error("Claim transaction %d/%d failed: %s", j, len(txs), e)
                outcome.failed.append(PartialClaimFailure(position.token_mint, str(e)))
                continue
            log.info("Claim transaction %d/%d confirmed: %s", j, len(txs), sig)
            outcome.confirmed.append(sig)

    def check_and_claim(self, market_id: str) -> bool:
        return self.evaluate(market_id).triggered
