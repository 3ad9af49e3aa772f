from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, FrozenSet, Optional

from solders.keypair import Keypair
from solders.system_program import TransferParams, transfer

from .chain import Chain
from .errors import (
    CommitFailure,
    EmptyResult,
    OracleTimeout,
    RandomnessError,
    RevealFailure,
    VrfWorkflowFailed,
)
from .project_constants import RANDOMNESS_ACCOUNT_SIZE
from .switchboard import RandomnessOracle

log = logging.getLogger("vrf")


class RandomnessPhase(str, Enum):
    IDLE = "idle"
    COMMITTING = "committing"
    AWAITING_FULFILLMENT = "awaiting_fulfillment"
    REVEALING = "revealing"
    CONSUMED = "consumed"
    FAILED = "failed"


_TRANSITIONS: Dict[RandomnessPhase, FrozenSet[RandomnessPhase]] = {
    RandomnessPhase.IDLE: frozenset({RandomnessPhase.COMMITTING}),
    RandomnessPhase.COMMITTING: frozenset({RandomnessPhase.AWAITING_FULFILLMENT}),
    RandomnessPhase.AWAITING_FULFILLMENT: frozenset({RandomnessPhase.REVEALING}),
    RandomnessPhase.REVEALING: frozenset({RandomnessPhase.CONSUMED}),
    RandomnessPhase.CONSUMED: frozenset(),
    RandomnessPhase.FAILED: frozenset(),
}

TERMINAL_PHASES = frozenset({RandomnessPhase.CONSUMED, RandomnessPhase.FAILED})


class InvalidTransition(RuntimeError):
    pass


def next_phase(current: RandomnessPhase, target: RandomnessPhase) -> RandomnessPhase:
    """FAILED is reachable from every non-terminal phase; everything else follows the table."""
    if target is RandomnessPhase.FAILED and current not in TERMINAL_PHASES:
        return target
    if target not in _TRANSITIONS[current]:
        raise InvalidTransition(f"{current.value} -> {target.value}")
    return target


def is_empty(buffer: bytes) -> bool:
    return not any(buffer)


def decode_result(buffer: bytes) -> int:
    """Only the first 8 bytes decide the winner (big-endian unsigned)."""
    if is_empty(buffer):
        raise EmptyResult("Randomness result is empty.")
    return int.from_bytes(bytes(buffer[:8]), "big")


@dataclass
class RandomnessRound:
    keypair: Keypair
    phase: RandomnessPhase = RandomnessPhase.IDLE
    committed: bool = False
    fulfilled: bool = False
    revealed: bool = False
    create_signature: Optional[str] = None
    commit_signature: Optional[str] = None
    reveal_signature: Optional[str] = None
    error: Optional[RandomnessError] = None
    _result_int: Optional[int] = field(default=None, repr=False)

    @property
    def randomness_account(self) -> str:
        return str(self.keypair.pubkey())

    @property
    def result_int(self) -> int:
        if not self.fulfilled or self._result_int is None:
            raise EmptyResult(f"Randomness {self.randomness_account} has no result yet.")
        return self._result_int

    def advance(self, target: RandomnessPhase) -> None:
        self.phase = next_phase(self.phase, target)

    def fail(self, error: RandomnessError) -> RandomnessError:
        self.error = error
        self.advance(RandomnessPhase.FAILED)
        return error


class RandomnessClient:
    def __init__(
        self,
        chain: Chain,
        oracle: RandomnessOracle,
        max_attempts: int = 30,
        delay_s: float = 5.0,
        sleep: Callable[[float], None] = time.sleep,
        new_keypair: Callable[[], Keypair] = Keypair,
    ) -> None:
        self.chain = chain
        self.oracle = oracle
        self.max_attempts = max_attempts
        self.delay_s = delay_s
        self._sleep = sleep
        self._new_keypair = new_keypair

    def new_round(self) -> RandomnessRound:
        rnd = RandomnessRound(self._new_keypair())
        log.info("Generated randomness account: %s", rnd.randomness_account)
        return rnd

    def commit(self, rnd: RandomnessRound) -> None:
        rnd.advance(RandomnessPhase.COMMITTING)
        handle = rnd.keypair.pubkey()
        try:
            rent = self.chain.rpc.get_minimum_balance_for_rent_exemption(RANDOMNESS_ACCOUNT_SIZE)
            fund_ix = transfer(
                TransferParams(from_pubkey=self.chain.pubkey, to_pubkey=handle, lamports=rent)
            )
            create_ixs = self.oracle.create_instructions(handle, self.chain.pubkey)
            rnd.create_signature = self.chain.send_instructions(
                [fund_ix, *create_ixs], extra_signers=[rnd.keypair]
            )
            log.info("Randomness account created on-chain: %s", rnd.create_signature)

            commit_ix = self.oracle.commit_instruction(handle, self.chain.pubkey)
            rnd.commit_signature = self.chain.send_instructions([commit_ix])
        except Exception as e:
            raise rnd.fail(CommitFailure(f"Commit failed for {handle}: {e}")) from e

        rnd.committed = True
        log.info("VRF requested: commit %s, randomness %s", rnd.commit_signature, handle)
        rnd.advance(RandomnessPhase.AWAITING_FULFILLMENT)

    def await_fulfillment(self, rnd: RandomnessRound) -> None:
        if rnd.phase is not RandomnessPhase.AWAITING_FULFILLMENT:
            raise InvalidTransition(f"cannot await fulfillment from {rnd.phase.value}")
        handle = rnd.keypair.pubkey()

        for attempt in range(1, self.max_attempts + 1):
            try:
                buffer = self.oracle.load_result(handle)
            except Exception as e:
                log.warning("Attempt %d: error checking fulfillment: %s", attempt, e)
            else:
                if not is_empty(buffer):
                    log.info("Randomness fulfilled on attempt %d", attempt)
                    rnd.fulfilled = True
                    rnd.advance(RandomnessPhase.REVEALING)
                    return
                log.debug(
                    "Attempt %d/%d: randomness not fulfilled, waiting %.1fs...",
                    attempt,
                    self.max_attempts,
                    self.delay_s,
                )
            if attempt < self.max_attempts:
                self._sleep(self.delay_s)

        raise rnd.fail(
            OracleTimeout(f"Randomness not fulfilled after {self.max_attempts} attempts")
        )

    def reveal(self, rnd: RandomnessRound) -> None:
        if rnd.phase is not RandomnessPhase.REVEALING or rnd.revealed:
            raise InvalidTransition(f"cannot reveal from {rnd.phase.value}")
        handle = rnd.keypair.pubkey()
        try:
            reveal_ix = self.oracle.reveal_instruction(handle, self.chain.pubkey)
            rnd.reveal_signature = self.chain.send_instructions([reveal_ix])
        except Exception as e:
            raise rnd.fail(RevealFailure(f"Reveal failed for {handle}: {e}")) from e
        rnd.revealed = True
        log.info("Randomness revealed: %s", rnd.reveal_signature)

    def consume(self, rnd: RandomnessRound) -> int:
        if not rnd.revealed:
            raise InvalidTransition(f"cannot consume from {rnd.phase.value} before reveal")
        handle = rnd.keypair.pubkey()
        try:
            buffer = self.oracle.load_result(handle)
            value = decode_result(buffer)
        except EmptyResult as e:
            raise rnd.fail(e)
        except Exception as e:
            raise rnd.fail(EmptyResult(f"Could not read randomness {handle}: {e}")) from e

        rnd._result_int = value
        rnd.advance(RandomnessPhase.CONSUMED)
        log.info("Consumed randomness value: %d", value)
        return value

    def run_once(self) -> RandomnessRound:
        rnd = self.new_round()
        self.commit(rnd)
        self.await_fulfillment(rnd)
        self.reveal(rnd)
        self.consume(rnd)
        return rnd

    def run_workflow(self, max_attempts: int = 3) -> RandomnessRound:
        """
        Commit -> await -> reveal -> consume as one unit. A failed attempt abandons
        its randomness account; the next one starts from a fresh keypair after
        2**attempt seconds.
        """
        log.info("Starting VRF workflow...")
        for attempt in range(1, max_attempts + 1):
            try:
                rnd = self.run_once()
            except RandomnessError as e:
                log.error("VRF attempt %d/%d failed: %s", attempt, max_attempts, e)
                if attempt == max_attempts:
                    raise VrfWorkflowFailed(f"VRF workflow failed: {e}") from e
                self._sleep(2**attempt)
                continue
            log.info("VRF workflow completed: random value=%d", rnd.result_int)
            return rnd
        raise VrfWorkflowFailed("VRF workflow failed: no attempts allowed")

    def execute_workflow(self, max_attempts: int = 3) -> int:
        return self.run_workflow(max_attempts).result_int
