from __future__ import annotations

import logging
from typing import Sequence, Tuple

from solders.hash import Hash
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer
from solders.transaction import Transaction, VersionedTransaction

from .project_constants import TOKEN_PROGRAM_ID
from .rpc import RpcClient
from .token_accounts import associated_token_address, burn_instruction

log = logging.getLogger("chain")


class Chain:
    """
    Worker-key view of the chain: everything that signs goes through here,
    one transaction at a time, and returns only once confirmed.
    """

    def __init__(
        self,
        rpc: RpcClient,
        keypair: Keypair,
        token_program_id: str = TOKEN_PROGRAM_ID,
    ) -> None:
        self.rpc = rpc
        self.keypair = keypair
        self.token_program_id = token_program_id

    @property
    def pubkey(self) -> Pubkey:
        return self.keypair.pubkey()

    def send_instructions(
        self,
        instructions: Sequence[Instruction],
        extra_signers: Sequence[Keypair] = (),
    ) -> str:
        blockhash, last_valid = self.rpc.get_latest_blockhash()
        msg = Message(list(instructions), self.pubkey)
        tx = Transaction([self.keypair, *extra_signers], msg, Hash.from_string(blockhash))
        sig = self.rpc.send_raw_transaction(bytes(tx))
        log.debug("Sent %s, confirming...", sig)
        self.rpc.confirm_transaction(sig, last_valid)
        return sig

    def send_serialized(self, tx_bytes: bytes) -> str:
        """Signs a transaction built by an external API with the worker key."""
        tx = VersionedTransaction.from_bytes(tx_bytes)
        signed = VersionedTransaction(tx.message, [self.keypair])
        # The API picked the blockhash; bound the wait by the current one's lifetime.
        _blockhash, last_valid = self.rpc.get_latest_blockhash()
        sig = self.rpc.send_raw_transaction(bytes(signed), skip_preflight=True)
        log.debug("Sent %s, confirming...", sig)
        self.rpc.confirm_transaction(sig, last_valid)
        return sig

    def transfer(self, to: Pubkey, lamports: int) -> str:
        ix = transfer(
            TransferParams(from_pubkey=self.pubkey, to_pubkey=to, lamports=lamports)
        )
        return self.send_instructions([ix])

    def associated_token_address(self, mint: Pubkey) -> Pubkey:
        return associated_token_address(self.pubkey, mint, self.token_program_id)

    def token_balance(self, account: Pubkey) -> Tuple[int, int]:
        return self.rpc.get_token_account_balance(str(account))

    def burn(self, account: Pubkey, mint: Pubkey, owner: Pubkey, amount: int) -> str:
        if owner != self.pubkey:
            raise ValueError("Only the worker key can burn from its own account.")
        ix = burn_instruction(account, mint, owner, amount, self.token_program_id)
        return self.send_instructions([ix])
