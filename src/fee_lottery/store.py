from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from pymongo import MongoClient

from .models import LotteryReceipt, LotteryStatus, to_sol
from .project_constants import STATUS_DOC_ID

log = logging.getLogger("store")

Listener = Callable[[str, Dict[str, Any]], None]

STATUS_EVENT = "status-update"
WINNER_EVENT = "new-winner"


class LotteryStore(ABC):
    """
    Status mirror + receipt log. Subscribers get a small payload after every
    write; the round engine itself never reads them.
    """

    def __init__(self) -> None:
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _publish(self, event: str, payload: Dict[str, Any]) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, payload)
            except Exception:
                log.exception("Subscriber failed on %s", event)

    def upsert_status(self, status: LotteryStatus) -> None:
        self._write_status(status)
        self._publish(
            STATUS_EVENT,
            {
                "currentPotSize": to_sol(status.pot_size_lamports),
                "isLotteryRunning": status.is_running,
                "lastUpdated": status.last_updated,
            },
        )

    def insert_receipt(self, receipt: LotteryReceipt) -> None:
        self._write_receipt(receipt)
        self._publish(
            WINNER_EVENT,
            {
                "winner": receipt.winner_address,
                "potSize": to_sol(receipt.pot_size_lamports),
                "timestamp": receipt.timestamp,
            },
        )

    @abstractmethod
    def _write_status(self, status: LotteryStatus) -> None: ...

    @abstractmethod
    def _write_receipt(self, receipt: LotteryReceipt) -> None: ...

    @abstractmethod
    def get_status(self) -> Optional[LotteryStatus]: ...

    @abstractmethod
    def list_receipts(
        self,
        page: int = 1,
        limit: int = 10,
        winner: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> Tuple[List[LotteryReceipt], int]:
        """
        Newest first. Returns (receipts on page, total matching count).
        `winner` matches exactly; `since`/`until` bound the timestamp, inclusive.
        """

    @abstractmethod
    def stats(self) -> Dict[str, Any]: ...

    def close(self) -> None:
        pass


class MemoryStore(LotteryStore):
    def __init__(self) -> None:
        super().__init__()
        self.status: Optional[LotteryStatus] = None
        self.receipts: List[LotteryReceipt] = []

    def _write_status(self, status: LotteryStatus) -> None:
        self.status = status

    def _write_receipt(self, receipt: LotteryReceipt) -> None:
        self.receipts.append(receipt)

    def get_status(self) -> Optional[LotteryStatus]:
        return self.status

    def list_receipts(
        self,
        page: int = 1,
        limit: int = 10,
        winner: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> Tuple[List[LotteryReceipt], int]:
        matching = [
            r
            for r in self.receipts
            if (not winner or r.winner_address == winner)
            and (since is None or r.timestamp >= since)
            and (until is None or r.timestamp <= until)
        ]
        ordered = sorted(matching, key=lambda r: r.timestamp, reverse=True)
        skip = (max(page, 1) - 1) * limit
        return ordered[skip : skip + limit], len(ordered)

    def stats(self) -> Dict[str, Any]:
        return {
            "totalLotteries": len(self.receipts),
            "totalBurned": float(sum(r.burn_amount_raw for r in self.receipts)),
        }


def receipt_query(
    winner: Optional[str] = None,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
) -> Dict[str, Any]:
    query: Dict[str, Any] = {}
    if winner:
        query["winner"] = winner
    bounds: Dict[str, datetime] = {}
    if since is not None:
        bounds["$gte"] = since
    if until is not None:
        bounds["$lte"] = until
    if bounds:
        query["timestamp"] = bounds
    return query


class MongoStore(LotteryStore):
    def __init__(self, uri: str, db_name: str = "fee_lottery", client: Any = None) -> None:
        super().__init__()
        if client is None:
            client = MongoClient(uri)
        self.client = client
        self.db = client[db_name]
        self.status_col = self.db["lotteryStatus"]
        self.receipts_col = self.db["lotteryReceipts"]
        log.info("Connected to MongoDB database %s", db_name)

    def close(self) -> None:
        self.client.close()

    def _write_status(self, status: LotteryStatus) -> None:
        self.status_col.update_one(
            {"_id": STATUS_DOC_ID},
            {"$set": status.to_doc()},
            upsert=True,
        )

    def _write_receipt(self, receipt: LotteryReceipt) -> None:
        self.receipts_col.insert_one(receipt.to_doc())

    def get_status(self) -> Optional[LotteryStatus]:
        doc = self.status_col.find_one({"_id": STATUS_DOC_ID})
        return LotteryStatus.from_doc(doc) if doc else None

    def list_receipts(
        self,
        page: int = 1,
        limit: int = 10,
        winner: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> Tuple[List[LotteryReceipt], int]:
        query = receipt_query(winner, since, until)
        skip = (max(page, 1) - 1) * limit
        cursor = self.receipts_col.find(query).sort("timestamp", -1).skip(skip).limit(limit)
        receipts = [LotteryReceipt.from_doc(doc) for doc in cursor]
        return receipts, self.receipts_col.count_documents(query)

    def stats(self) -> Dict[str, Any]:
        burned = list(
            self.receipts_col.aggregate(
                [{"$group": {"_id": None, "total": {"$sum": {"$toDouble": "$burnAmount"}}}}]
            )
        )
        return {
            "totalLotteries": self.receipts_col.count_documents({}),
            "totalBurned": burned[0]["total"] if burned else 0,
        }
