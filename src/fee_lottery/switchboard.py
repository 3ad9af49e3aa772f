"""
Switchboard on-demand randomness accounts.

Account layout (after the 8 byte anchor discriminator):
authority(32) | queue(32) | seed_slothash(32) | seed_slot(u64) | oracle(32) |
reveal_slot(u64) | value(32) | ...
"""

from __future__ import annotations

import base64
import hashlib
import struct
from typing import List, Optional, Protocol, Tuple

import httpx
from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey

from .project_constants import (
    ADDRESS_LOOKUP_TABLE_PROGRAM_ID,
    ASSOCIATED_TOKEN_PROGRAM_ID,
    SLOT_HASHES_SYSVAR_ID,
    SOL_MINT,
    SYSTEM_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
)
from .rpc import RpcClient
from .token_accounts import associated_token_address

SEED_SLOTHASH_OFFSET = 8 + 32 + 32
SEED_SLOT_OFFSET = SEED_SLOTHASH_OFFSET + 32
ORACLE_OFFSET = SEED_SLOT_OFFSET + 8
VALUE_OFFSET = ORACLE_OFFSET + 32 + 8
VALUE_LEN = 32


class RandomnessOracle(Protocol):
    def create_instructions(self, randomness: Pubkey, payer: Pubkey) -> List[Instruction]: ...

    def commit_instruction(self, randomness: Pubkey, authority: Pubkey) -> Instruction: ...

    def reveal_instruction(self, randomness: Pubkey, authority: Pubkey) -> Instruction: ...

    def load_result(self, randomness: Pubkey) -> bytes: ...


def anchor_discriminator(name: str) -> bytes:
    return hashlib.sha256(f"global:{name}".encode("utf-8")).digest()[:8]


def _meta(pubkey: Pubkey, signer: bool = False, writable: bool = False) -> AccountMeta:
    return AccountMeta(pubkey, is_signer=signer, is_writable=writable)


def parse_randomness_account(data: bytes) -> Tuple[bytes, int, Pubkey, bytes]:
    """Returns (seed_slothash, seed_slot, oracle, value)."""
    if len(data) < VALUE_OFFSET + VALUE_LEN:
        raise ValueError(f"Randomness account too short: {len(data)} bytes")

    slothash = data[SEED_SLOTHASH_OFFSET:SEED_SLOT_OFFSET]
    seed_slot = struct.unpack("<Q", data[SEED_SLOT_OFFSET:ORACLE_OFFSET])[0]
    oracle = Pubkey.from_bytes(data[ORACLE_OFFSET : ORACLE_OFFSET + 32])
    value = data[VALUE_OFFSET : VALUE_OFFSET + VALUE_LEN]
    return slothash, seed_slot, oracle, value


class SwitchboardOracle:
    def __init__(
        self,
        rpc: RpcClient,
        program_id: str,
        queue: str,
        oracle: str,
        gateway_url: str,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.rpc = rpc
        self.program_id = Pubkey.from_string(program_id)
        self.queue = Pubkey.from_string(queue)
        self.oracle = Pubkey.from_string(oracle)
        self.gateway_url = gateway_url.rstrip("/")
        self.client = client or httpx.Client(timeout=30.0)

    def close(self) -> None:
        self.client.close()

    def _pda(self, *seeds: bytes) -> Pubkey:
        address, _bump = Pubkey.find_program_address(list(seeds), self.program_id)
        return address

    def _reward_escrow(self, randomness: Pubkey) -> Pubkey:
        return associated_token_address(randomness, Pubkey.from_string(SOL_MINT))

    def _shared_tail(self) -> List[AccountMeta]:
        return [
            _meta(Pubkey.from_string(SYSTEM_PROGRAM_ID)),
            _meta(Pubkey.from_string(TOKEN_PROGRAM_ID)),
            _meta(Pubkey.from_string(ASSOCIATED_TOKEN_PROGRAM_ID)),
            _meta(Pubkey.from_string(SOL_MINT)),
            _meta(self._pda(b"STATE")),
        ]

    def create_instructions(self, randomness: Pubkey, payer: Pubkey) -> List[Instruction]:
        recent_slot = self.rpc.get_slot(commitment="confirmed")
        lut_signer = self._pda(b"LutSigner", bytes(randomness))
        lut, _bump = Pubkey.find_program_address(
            [bytes(lut_signer), struct.pack("<Q", recent_slot)],
            Pubkey.from_string(ADDRESS_LOOKUP_TABLE_PROGRAM_ID),
        )
        accounts = [
            _meta(randomness, signer=True, writable=True),
            _meta(self._reward_escrow(randomness), writable=True),
            _meta(payer, signer=True),
            _meta(self.queue, writable=True),
            _meta(payer, signer=True, writable=True),
            *self._shared_tail(),
            _meta(lut_signer),
            _meta(lut, writable=True),
            _meta(Pubkey.from_string(ADDRESS_LOOKUP_TABLE_PROGRAM_ID)),
        ]
        data = anchor_discriminator("randomness_init") + struct.pack("<Q", recent_slot)
        return [Instruction(self.program_id, data, accounts)]

    def commit_instruction(self, randomness: Pubkey, authority: Pubkey) -> Instruction:
        accounts = [
            _meta(randomness, writable=True),
            _meta(self.queue),
            _meta(self.oracle, writable=True),
            _meta(Pubkey.from_string(SLOT_HASHES_SYSVAR_ID)),
            _meta(authority, signer=True),
        ]
        return Instruction(self.program_id, anchor_discriminator("randomness_commit"), accounts)

    def _fetch_reveal(self, randomness: Pubkey) -> Tuple[bytes, int, bytes, Pubkey]:
        data = self.rpc.get_account_data(str(randomness))
        if data is None:
            raise RuntimeError(f"Randomness account {randomness} not found")
        slothash, seed_slot, oracle, _value = parse_randomness_account(data)

        resp = self.client.post(
            f"{self.gateway_url}/gateway/api/v1/randomness_reveal",
            json={
                "slothash": list(slothash),
                "randomness_key": bytes(randomness).hex(),
                "slot": seed_slot,
                "rpc": self.rpc.rpc_url,
            },
        )
        resp.raise_for_status()
        body = resp.json()
        signature = base64.b64decode(body["signature"])
        value = bytes(body["value"])
        if len(signature) != 64 or len(value) != VALUE_LEN:
            raise RuntimeError("Malformed reveal response from oracle gateway")
        return signature, int(body["recovery_id"]), value, oracle

    def reveal_instruction(self, randomness: Pubkey, authority: Pubkey) -> Instruction:
        signature, recovery_id, value, oracle = self._fetch_reveal(randomness)
        accounts = [
            _meta(randomness, writable=True),
            _meta(oracle),
            _meta(self.queue),
            _meta(self._pda(b"OracleRandomnessStats", bytes(oracle)), writable=True),
            _meta(authority, signer=True),
            _meta(authority, signer=True, writable=True),
            _meta(Pubkey.from_string(SLOT_HASHES_SYSVAR_ID)),
            _meta(Pubkey.from_string(SYSTEM_PROGRAM_ID)),
            _meta(self._reward_escrow(randomness), writable=True),
            *self._shared_tail()[1:],
        ]
        data = (
            anchor_discriminator("randomness_reveal")
            + signature
            + struct.pack("<B", recovery_id)
            + value
        )
        return Instruction(self.program_id, data, accounts)

    def load_result(self, randomness: Pubkey) -> bytes:
        """The 32 byte result buffer; all zeros until the oracle has answered."""
        data = self.rpc.get_account_data(str(randomness))
        if data is None:
            return bytes(VALUE_LEN)
        return parse_randomness_account(data)[3]
