from __future__ import annotations

import base64
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol

import httpx

from .errors import QuoteFailed

log = logging.getLogger("swap")


@dataclass(frozen=True)
class Quote:
    input_mint: str
    output_mint: str
    in_amount: int
    out_amount: int
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


class SwapClient(Protocol):
    def get_quote(
        self, input_mint: str, output_mint: str, amount: int, max_slippage_bps: int
    ) -> Quote: ...

    def build_swap_tx(self, quote: Quote, user: str, destination_account: str) -> bytes: ...


class JupiterSwapClient:
    def __init__(
        self,
        api_url: str = "https://lite-api.jup.ag",
        prioritization_fee_lamports: int = 10_000,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.prioritization_fee_lamports = prioritization_fee_lamports
        self.client = client or httpx.Client(timeout=30.0)

    def close(self) -> None:
        self.client.close()

    def get_quote(
        self, input_mint: str, output_mint: str, amount: int, max_slippage_bps: int
    ) -> Quote:
        try:
            resp = self.client.get(
                f"{self.api_url}/swap/v1/quote",
                params={
                    "inputMint": input_mint,
                    "outputMint": output_mint,
                    "amount": str(amount),
                    "slippageBps": str(max_slippage_bps),
                },
            )
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise QuoteFailed(f"Swap quote request failed: {e}") from e

        out_amount = data.get("outAmount") if isinstance(data, dict) else None
        if not out_amount:
            raise QuoteFailed(f"Swap quote returned no output amount: {data}")

        log.debug("Quote: %s", data)
        return Quote(
            input_mint=input_mint,
            output_mint=output_mint,
            in_amount=int(data.get("inAmount", amount)),
            out_amount=int(out_amount),
            raw=data,
        )

    def build_swap_tx(self, quote: Quote, user: str, destination_account: str) -> bytes:
        resp = self.client.post(
            f"{self.api_url}/swap/v1/swap",
            json={
                "quoteResponse": quote.raw,
                "userPublicKey": user,
                "wrapAndUnwrapSol": True,
                "prioritizationFeeLamports": self.prioritization_fee_lamports,
                "destinationTokenAccount": destination_account,
            },
        )
        resp.raise_for_status()
        data = resp.json()
        swap_tx = data.get("swapTransaction")
        if not swap_tx:
            raise RuntimeError(f"Swap API returned no transaction: {data}")
        return base64.b64decode(swap_tx)
