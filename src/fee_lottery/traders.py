from __future__ import annotations

import logging
import time
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, Set, Tuple

import httpx

from .project_constants import TRADER_WINDOW_HOURS
from .models import TraderVolume

log = logging.getLogger("traders")

MORALIS_GATEWAY = "https://solana-gateway.moralis.io"


class TraderVolumeSource(Protocol):
    def get_traders(self, market_id: str) -> List[TraderVolume]: ...


def aggregate_volumes(swaps: Iterable[Dict[str, Any]]) -> Dict[str, float]:
    volumes: Dict[str, float] = defaultdict(float)
    for swap in swaps:
        wallet = swap.get("walletAddress")
        value = swap.get("totalValueUsd")
        # bool is an int; skip it along with strings and nulls
        if not wallet or isinstance(value, bool) or not isinstance(value, (int, float)):
            continue
        volumes[wallet] += float(value)
    return dict(volumes)


def rank_traders(volumes: Dict[str, float], top_n: int) -> List[TraderVolume]:
    ranked = sorted(volumes.items(), key=lambda kv: kv[1], reverse=True)
    return [TraderVolume(wallet, vol) for wallet, vol in ranked[:top_n]]


class MoralisTraderSource:
    """
    Wallets that swapped the token over the trailing window, ranked by USD volume.
    Never raises for upstream trouble: a failed page ends paging and whatever was
    aggregated so far is returned.
    """

    def __init__(
        self,
        api_key: str,
        top_n: int = 10,
        network: str = "mainnet",
        page_limit: int = 100,
        retries: int = 2,
        retry_delay_s: float = 1.0,
        max_pages: int = 100,
        window_hours: int = TRADER_WINDOW_HOURS,
        client: Optional[httpx.Client] = None,
        sleep: Callable[[float], None] = time.sleep,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.api_key = api_key.strip()
        self.top_n = top_n
        self.network = network
        self.page_limit = page_limit
        self.retries = retries
        self.retry_delay_s = retry_delay_s
        self.max_pages = max_pages
        self.window_hours = window_hours
        self.client = client or httpx.Client(timeout=30.0)
        self._sleep = sleep
        self._now = now

    def close(self) -> None:
        self.client.close()

    def _fetch_page(
        self, mint: str, from_date: str, to_date: str, cursor: Optional[str]
    ) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        url = f"{MORALIS_GATEWAY}/token/{self.network}/{mint}/swaps"
        params = {
            "fromDate": from_date,
            "toDate": to_date,
            "order": "DESC",
            "limit": str(self.page_limit),
        }
        if cursor:
            params["cursor"] = cursor
        headers = {"accept": "application/json", "X-API-Key": self.api_key}

        for attempt in range(1, self.retries + 1):
            try:
                resp = self.client.get(url, params=params, headers=headers)
                resp.raise_for_status()
                data = resp.json()
                result = data.get("result") if isinstance(data, dict) else None
                next_cursor = data.get("cursor") if isinstance(data, dict) else None
                if not isinstance(result, list):
                    raise ValueError(f"Invalid swaps response: result={result!r}")
                if next_cursor is not None and not isinstance(next_cursor, str):
                    raise ValueError(f"Invalid swaps response: cursor={next_cursor!r}")
                return result, next_cursor or None
            except (httpx.HTTPError, ValueError) as e:
                if attempt == self.retries:
                    log.error("Fetching swaps failed after %d attempts: %s", attempt, e)
                    return [], None
                log.warning("Swaps attempt %d failed (%s), retrying...", attempt, e)
                self._sleep(self.retry_delay_s)
        return [], None

    def get_traders(self, market_id: str) -> List[TraderVolume]:
        if not self.api_key:
            log.error("MORALIS_API_KEY is not set; no traders.")
            return []

        to_dt = self._now()
        from_dt = to_dt - timedelta(hours=self.window_hours)
        to_date = to_dt.strftime("%Y-%m-%dT%H:%M:%SZ")
        from_date = from_dt.strftime("%Y-%m-%dT%H:%M:%SZ")

        swaps: List[Dict[str, Any]] = []
        cursor: Optional[str] = None
        seen: Set[str] = set()
        for _ in range(self.max_pages):
            page, cursor = self._fetch_page(market_id, from_date, to_date, cursor)
            swaps.extend(page)
            if not cursor:
                break
            if cursor in seen:
                log.warning("Swaps cursor %s repeated; stopping pagination.", cursor)
                break
            seen.add(cursor)
        else:
            log.warning("Stopped swaps pagination after %d pages.", self.max_pages)

        volumes = aggregate_volumes(swaps)
        traders = rank_traders(volumes, self.top_n)
        log.info(
            "Found %d unique wallets trading %s in the last %dh, returning top %d.",
            len(volumes),
            market_id,
            self.window_hours,
            len(traders),
        )
        return traders
