from __future__ import annotations

import struct

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey

from .project_constants import (
    ASSOCIATED_TOKEN_PROGRAM_ID,
    TOKEN_2022_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
)

# SPL Token instruction index (same in Token-2022)
BURN_INSTRUCTION = 8


def associated_token_address(
    owner: Pubkey,
    mint: Pubkey,
    token_program_id: str = TOKEN_PROGRAM_ID,
) -> Pubkey:
    """
    ATA = PDA(owner | token program | mint) under the associated token program.
    Off-curve owners are fine; the derivation does not care.
    """
    if token_program_id not in (TOKEN_PROGRAM_ID, TOKEN_2022_PROGRAM_ID):
        raise ValueError(f"Unknown token program: {token_program_id}")

    address, _bump = Pubkey.find_program_address(
        [bytes(owner), bytes(Pubkey.from_string(token_program_id)), bytes(mint)],
        Pubkey.from_string(ASSOCIATED_TOKEN_PROGRAM_ID),
    )
    return address


def burn_instruction(
    account: Pubkey,
    mint: Pubkey,
    owner: Pubkey,
    amount: int,
    token_program_id: str = TOKEN_PROGRAM_ID,
) -> Instruction:
    """
    Burn layout: u8 instruction | u64 amount (LE)
    Accounts: token account (w) | mint (w) | owner (signer)
    """
    if amount <= 0:
        raise ValueError("Burn amount must be positive.")

    data = struct.pack("<BQ", BURN_INSTRUCTION, amount)
    return Instruction(
        Pubkey.from_string(token_program_id),
        data,
        [
            AccountMeta(account, is_signer=False, is_writable=True),
            AccountMeta(mint, is_signer=False, is_writable=True),
            AccountMeta(owner, is_signer=True, is_writable=False),
        ],
    )
