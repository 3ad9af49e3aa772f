from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from .errors import PartialClaimFailure
from .project_constants import LAMPORTS_PER_SOL


def to_sol(lamports: int | float) -> float:
    return round(lamports / LAMPORTS_PER_SOL, 6)


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


class PoolKind(str, Enum):
    VIRTUAL = "virtual"
    DAMM = "damm"
    CUSTOM_FEE_VAULT = "custom_fee_vault"


@dataclass(frozen=True)
class ClaimablePosition:
    token_mint: str
    pool_kind: PoolKind
    claimable_amount_lamports: int
    fee_share_bps: Optional[int] = None
    # Source payload, needed to ask for claim transactions
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


@dataclass(frozen=True)
class TraderVolume:
    wallet_address: str
    volume_usd: float


@dataclass
class ClaimOutcome:
    triggered: bool
    pot_size_lamports: int
    positions: List[ClaimablePosition] = field(default_factory=list)
    confirmed: List[str] = field(default_factory=list)
    failed: List[PartialClaimFailure] = field(default_factory=list)
    reason: Optional[str] = None

    @property
    def partial(self) -> bool:
        return bool(self.failed)


@dataclass(frozen=True)
class LotteryStatus:
    pot_size_lamports: int
    is_running: bool
    market_mint: str
    last_updated: datetime
    last_error: Optional[str] = None

    def to_doc(self) -> Dict[str, Any]:
        return {
            "currentPotSize": self.pot_size_lamports,
            "isLotteryRunning": self.is_running,
            "marketMint": self.market_mint,
            "lastUpdated": self.last_updated,
            "lastError": self.last_error,
        }

    @staticmethod
    def from_doc(doc: Dict[str, Any]) -> "LotteryStatus":
        return LotteryStatus(
            pot_size_lamports=int(doc["currentPotSize"]),
            is_running=bool(doc["isLotteryRunning"]),
            market_mint=doc.get("marketMint", ""),
            last_updated=doc["lastUpdated"],
            last_error=doc.get("lastError"),
        )


@dataclass(frozen=True)
class LotteryReceipt:
    pot_size_lamports: int
    winner_address: str
    payout_tx_id: str
    swap_tx_id: str
    burn_amount_raw: int
    burn_decimals: int
    timestamp: datetime
    burn_tx_id: Optional[str] = None
    # Selection audit, see verify.verify_draw
    draw: Optional[Dict[str, Any]] = None

    def to_doc(self) -> Dict[str, Any]:
        doc: Dict[str, Any] = {
            "potSize": self.pot_size_lamports,
            "winner": self.winner_address,
            "payoutTxSig": self.payout_tx_id,
            "buyTxSig": self.swap_tx_id,
            # raw token amounts overflow float precision; store as string
            "burnAmount": str(self.burn_amount_raw),
            "burnDecimals": self.burn_decimals,
            "timestamp": self.timestamp,
        }
        if self.burn_tx_id is not None:
            doc["burnTxSig"] = self.burn_tx_id
        if self.draw is not None:
            doc["draw"] = self.draw
        return doc

    @staticmethod
    def from_doc(doc: Dict[str, Any]) -> "LotteryReceipt":
        return LotteryReceipt(
            pot_size_lamports=int(doc["potSize"]),
            winner_address=doc["winner"],
            payout_tx_id=doc["payoutTxSig"],
            swap_tx_id=doc["buyTxSig"],
            burn_amount_raw=int(doc["burnAmount"]),
            burn_decimals=int(doc.get("burnDecimals", 0)),
            timestamp=doc["timestamp"],
            burn_tx_id=doc.get("burnTxSig"),
            draw=doc.get("draw"),
        )

    @property
    def burn_amount_tokens(self) -> float:
        return self.burn_amount_raw / (10**self.burn_decimals)
