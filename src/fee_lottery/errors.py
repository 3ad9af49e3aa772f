from __future__ import annotations


class LotteryError(RuntimeError):
    """Base class for every failure the round engine knows how to handle."""


# --- fee claim ---


class NoClaimablePositions(LotteryError):
    pass


class NoPositions(NoClaimablePositions):
    pass


class NoMatchingPositions(NoClaimablePositions):
    pass


class PartialClaimFailure(LotteryError):
    """One claim transaction failed; recorded on the ClaimOutcome, never raised past the monitor."""

    def __init__(self, token_mint: str, cause: str) -> None:
        super().__init__(f"Claim for {token_mint} failed: {cause}")
        self.token_mint = token_mint
        self.cause = cause


# --- round ---


class RoundInProgress(LotteryError):
    pass


class NoTraders(LotteryError):
    pass


# --- randomness ---


class RandomnessError(LotteryError):
    """Fails a single VRF attempt; the outer workflow retries."""


class CommitFailure(RandomnessError):
    pass


class OracleTimeout(RandomnessError):
    pass


class RevealFailure(RandomnessError):
    pass


class EmptyResult(RandomnessError):
    pass


class VrfWorkflowFailed(LotteryError):
    pass


# --- payout / burn ---


class QuoteFailed(LotteryError):
    pass


class PayoutTxFailure(LotteryError):
    pass


class SwapTxFailure(LotteryError):
    pass
