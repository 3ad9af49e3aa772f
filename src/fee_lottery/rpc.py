from __future__ import annotations

import base64
import itertools
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx

log = logging.getLogger("rpc")


class RpcError(RuntimeError):
    pass


class TransactionFailed(RuntimeError):
    def __init__(self, signature: str, reason: Any) -> None:
        super().__init__(f"Transaction {signature} failed: {reason}")
        self.signature = signature
        self.reason = reason


class RpcClient:
    def __init__(
        self,
        rpc_url: str,
        timeout_s: float = 60.0,
        commitment: str = "confirmed",
        client: Optional[httpx.Client] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.rpc_url = rpc_url
        self.commitment = commitment
        self.client = client or httpx.Client(timeout=timeout_s)
        self._ids = itertools.count(1)
        self._sleep = sleep

    def close(self) -> None:
        self.client.close()

    def _post(self, method: str, params: List[Any]) -> Dict[str, Any]:
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }
        resp = self.client.post(self.rpc_url, json=payload)
        resp.raise_for_status()
        data = resp.json()
        if "error" in data:
            raise RpcError(f"RPC error ({method}): {data['error']}")
        return data

    def get_slot(self, commitment: str = "finalized") -> int:
        """Returns the current slot."""
        data = self._post("getSlot", [{"commitment": commitment}])
        return int(data["result"])

    def get_block_height(self) -> int:
        data = self._post("getBlockHeight", [{"commitment": self.commitment}])
        return int(data["result"])

    def get_latest_blockhash(self) -> Tuple[str, int]:
        """Returns (blockhash, lastValidBlockHeight)."""
        data = self._post("getLatestBlockhash", [{"commitment": self.commitment}])
        value = data["result"]["value"]
        return value["blockhash"], int(value["lastValidBlockHeight"])

    def get_minimum_balance_for_rent_exemption(self, size: int) -> int:
        data = self._post("getMinimumBalanceForRentExemption", [size])
        return int(data["result"])

    def get_account_data(self, pubkey: str) -> Optional[bytes]:
        """Raw account data, or None if the account does not exist."""
        data = self._post(
            "getAccountInfo",
            [pubkey, {"encoding": "base64", "commitment": self.commitment}],
        )
        value = data["result"]["value"]
        if value is None:
            return None
        # value['data'] is [base64_str, "base64"]
        return base64.b64decode(value["data"][0])

    def get_token_account_balance(self, pubkey: str) -> Tuple[int, int]:
        """Returns (raw amount, decimals) for an SPL token account."""
        data = self._post(
            "getTokenAccountBalance", [pubkey, {"commitment": self.commitment}]
        )
        value = data["result"]["value"]
        return int(value["amount"]), int(value["decimals"])

    def send_raw_transaction(self, tx_bytes: bytes, skip_preflight: bool = False) -> str:
        encoded = base64.b64encode(tx_bytes).decode("ascii")
        data = self._post(
            "sendTransaction",
            [
                encoded,
                {
                    "encoding": "base64",
                    "skipPreflight": skip_preflight,
                    "preflightCommitment": self.commitment,
                },
            ],
        )
        return str(data["result"])

    def get_signature_status(self, signature: str) -> Optional[Dict[str, Any]]:
        data = self._post(
            "getSignatureStatuses",
            [[signature], {"searchTransactionHistory": False}],
        )
        statuses = data["result"]["value"]
        return statuses[0] if statuses else None

    def confirm_transaction(
        self,
        signature: str,
        last_valid_block_height: int,
        poll_s: float = 1.0,
    ) -> None:
        """
        Blocks until the signature reaches the client's commitment.
        Raises TransactionFailed if the transaction errored or its blockhash expired.
        """
        wanted = ("confirmed", "finalized") if self.commitment == "confirmed" else ("finalized",)
        while True:
            status = self.get_signature_status(signature)
            if status is not None:
                if status.get("err") is not None:
                    raise TransactionFailed(signature, status["err"])
                if status.get("confirmationStatus") in wanted:
                    return
            if self.get_block_height() > last_valid_block_height:
                raise TransactionFailed(signature, "blockhash expired before confirmation")
            log.debug("Waiting for %s ...", signature)
            self._sleep(poll_s)
