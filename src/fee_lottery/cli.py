from __future__ import annotations

import argparse
import json
import logging
import os
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Tuple

from dotenv import load_dotenv

from .chain import Chain
from .config import Settings, load_keypair
from .draw import draw_audit, select_winner
from .fees import BagsFeeSource, FeeClaimMonitor
from .models import TraderVolume, to_sol
from .payout import PayoutPipeline
from .rpc import RpcClient
from .scheduler import RoundScheduler
from .state import RoundState
from .store import LotteryStore, MemoryStore, MongoStore
from .swap import JupiterSwapClient
from .switchboard import SwitchboardOracle
from .traders import MoralisTraderSource
from .verify import verify_audit
from .vrf import RandomnessClient


def setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)


def open_store(settings: Settings) -> LotteryStore:
    if settings.mongo_uri:
        return MongoStore(settings.mongo_uri, settings.mongo_db_name)
    logging.getLogger("store").warning("MONGO_URI not set; status and receipts stay in memory.")
    return MemoryStore()


def build_scheduler(
    settings: Settings, timeout_s: float
) -> Tuple[RoundScheduler, List[Callable[[], None]]]:
    if not settings.sb_oracle or not settings.sb_gateway_url:
        raise RuntimeError("Missing SB_ORACLE / SB_GATEWAY_URL. Put them in .env or export them.")
    if not settings.bags_api_key:
        raise RuntimeError("Missing BAGS_API_KEY. Put it in .env or export it.")

    keypair = load_keypair(settings.private_key)
    rpc = RpcClient(settings.rpc_url, timeout_s=timeout_s)
    chain = Chain(rpc, keypair, settings.token_program_id)
    store = open_store(settings)
    state = RoundState()

    fee_source = BagsFeeSource(settings.bags_api_key)
    traders = MoralisTraderSource(settings.moralis_api_key, top_n=settings.top_traders)
    oracle = SwitchboardOracle(
        rpc,
        program_id=settings.sb_program_id,
        queue=settings.sb_queue,
        oracle=settings.sb_oracle,
        gateway_url=settings.sb_gateway_url,
    )
    swapper = JupiterSwapClient(settings.jupiter_api_url)

    scheduler = RoundScheduler(
        state=state,
        monitor=FeeClaimMonitor(fee_source, chain, state, settings.pot_threshold_lamports),
        traders=traders,
        randomness=RandomnessClient(
            chain,
            oracle,
            max_attempts=settings.oracle_max_attempts,
            delay_s=settings.oracle_delay_ms / 1000,
        ),
        pipeline=PayoutPipeline(
            chain,
            swapper,
            store,
            settings.market_mint,
            payout_percentage=settings.payout_percentage,
            slippage_bps=settings.swap_slippage_bps,
        ),
        store=store,
        market_mint=settings.market_mint,
        vrf_max_attempts=settings.vrf_max_attempts,
        tick_interval_s=settings.tick_interval_ms / 1000,
    )
    closers = [rpc.close, fee_source.close, traders.close, oracle.close, swapper.close, store.close]
    return scheduler, closers


def _close_all(closers: List[Callable[[], None]]) -> None:
    for close in closers:
        close()


def cmd_run(args: argparse.Namespace) -> int:
    settings = Settings.from_env(rpc_url_override=args.rpc_url)
    scheduler, closers = build_scheduler(settings, args.timeout)
    try:
        scheduler.run_forever()
    except KeyboardInterrupt:
        logging.getLogger("scheduler").info("Shutting down...")
    finally:
        _close_all(closers)
    return 0


def cmd_tick(args: argparse.Namespace) -> int:
    settings = Settings.from_env(rpc_url_override=args.rpc_url)
    scheduler, closers = build_scheduler(settings, args.timeout)
    try:
        receipt = scheduler.tick()
    finally:
        _close_all(closers)

    if receipt is None:
        print(f"No round completed (pot {to_sol(scheduler.state.pot_size_lamports)} SOL).")
        if scheduler.last_error:
            print(f"Last error: {scheduler.last_error}")
            return 1
        return 0
    print(f"🏆 Winner {receipt.winner_address} | pot {to_sol(receipt.pot_size_lamports)} SOL")
    return 0


def cmd_traders(args: argparse.Namespace) -> int:
    load_dotenv()
    mint = args.mint or os.getenv("PROJECT_TOKEN_MINT_ADDRESS", "").strip()
    if not mint:
        raise SystemExit("Pass --mint or set PROJECT_TOKEN_MINT_ADDRESS.")

    source = MoralisTraderSource(os.getenv("MORALIS_API_KEY", ""), top_n=args.top)
    try:
        traders = source.get_traders(mint)
    finally:
        source.close()

    print("========================================")
    print(f"📈 TOP TRADERS (24h) : {mint}")
    print("========================================")
    for i, t in enumerate(traders, start=1):
        print(f"{i:>3}. {t.wallet_address}  ${t.volume_usd:,.2f}")
    if not traders:
        print("(no traders)")
    return 0


def _load_traders(path: str) -> List[TraderVolume]:
    with open(path, "r", encoding="utf-8") as f:
        items = json.load(f)
    traders: List[TraderVolume] = []
    for item in items:
        address = item.get("walletAddress") or item["address"]
        volume = item.get("volumeUsd", item.get("volume_usd", 0))
        traders.append(TraderVolume(address, float(volume)))
    return traders


def cmd_select(args: argparse.Namespace) -> int:
    traders = _load_traders(args.traders)
    random_value = int(args.random_value, 0)
    selection = select_winner(traders, random_value)
    audit = draw_audit(traders, random_value, selection)

    with open(args.out, "w", encoding="utf-8") as f:
        json.dump(audit, f, indent=2)

    print("========================================")
    print("🎲 WEIGHTED DRAW")
    print("========================================")
    print(f"Random value  : {random_value}")
    print(f"Total weight  : {selection.total_weight}")
    print(f"Selection     : {selection.selection}")
    print("----------------------------------------")
    print(f"Winner        : {selection.winner} (index {selection.index})")
    print("----------------------------------------")
    print(f"🧾 Wrote audit: {args.out}")
    return 0


def cmd_verify(args: argparse.Namespace) -> int:
    result = verify_audit(args.audit)
    print("✅ DRAW VERIFIED")
    print(f"Winner        : {result['winner']}")
    print(f"Selection     : {result['selection']} / {result['total_weight']}")
    return 0


def _read_store() -> LotteryStore:
    load_dotenv()
    uri = os.getenv("MONGO_URI", "").strip()
    if not uri:
        raise SystemExit("MONGO_URI is not set; nothing to read.")
    return MongoStore(uri, os.getenv("MONGO_DB_NAME", "fee_lottery").strip() or "fee_lottery")


def cmd_status(args: argparse.Namespace) -> int:
    store = _read_store()
    try:
        status = store.get_status()
    finally:
        store.close()
    if status is None:
        print("Status not found.")
        return 1
    out: Dict[str, Any] = {
        "currentPotSize": to_sol(status.pot_size_lamports),
        "isLotteryRunning": status.is_running,
        "marketMint": status.market_mint,
        "lastUpdated": status.last_updated.isoformat(),
        "lastError": status.last_error,
    }
    print(json.dumps(out, indent=2))
    return 0


def iso_date(value: str) -> datetime:
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"Not an ISO date: {value!r}") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def cmd_receipts(args: argparse.Namespace) -> int:
    store = _read_store()
    try:
        receipts, total = store.list_receipts(
            page=args.page,
            limit=args.limit,
            winner=args.winner,
            since=args.since,
            until=args.until,
        )
    finally:
        store.close()
    pages = -(-total // args.limit) if args.limit else 0
    print(f"Receipts page {args.page}/{pages} ({total} total)")
    for r in receipts:
        print(
            f"{r.timestamp.isoformat()}  {r.winner_address}  pot {to_sol(r.pot_size_lamports)} SOL"
            f"  burned {r.burn_amount_tokens}  payout {r.payout_tx_id}"
        )
    return 0


def cmd_stats(args: argparse.Namespace) -> int:
    store = _read_store()
    try:
        stats = store.stats()
    finally:
        store.close()
    print(json.dumps(stats, indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="fee-lottery",
        description="Fee-funded trader lottery with buy & burn.",
    )
    p.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    p.add_argument("--rpc-url", default=None, help="Override RPC URL (else use env).")
    p.add_argument("--timeout", type=float, default=60.0, help="RPC timeout seconds.")

    sub = p.add_subparsers(dest="cmd", required=True)

    r = sub.add_parser("run", help="Run the worker loop.")
    r.set_defaults(func=cmd_run)

    t = sub.add_parser("tick", help="Run a single scheduler tick and exit.")
    t.set_defaults(func=cmd_tick)

    tr = sub.add_parser("traders", help="Show the 24h trader leaderboard.")
    tr.add_argument("--mint", default=None, help="Token mint (else use env).")
    tr.add_argument("--top", type=int, default=10, help="How many traders to show.")
    tr.set_defaults(func=cmd_traders)

    s = sub.add_parser("select", help="Run the weighted draw offline and write an audit JSON.")
    s.add_argument(
        "--traders",
        required=True,
        help="JSON list of {walletAddress, volumeUsd}.",
    )
    s.add_argument(
        "--random-value",
        required=True,
        help="Random integer (decimal or 0x hex).",
    )
    s.add_argument("--out", default="draw.json", help="Audit output JSON path.")
    s.set_defaults(func=cmd_select)

    v = sub.add_parser("verify", help="Verify a draw audit (or a receipt with one).")
    v.add_argument("--audit", required=True, help="Path to the audit JSON.")
    v.set_defaults(func=cmd_verify)

    st = sub.add_parser("status", help="Show the mirrored lottery status.")
    st.set_defaults(func=cmd_status)

    rc = sub.add_parser("receipts", help="List lottery receipts, newest first.")
    rc.add_argument("--page", type=int, default=1)
    rc.add_argument("--limit", type=int, default=10)
    rc.add_argument("--winner", default=None, help="Only receipts won by this wallet.")
    rc.add_argument(
        "--from",
        dest="since",
        type=iso_date,
        default=None,
        help="Earliest timestamp, ISO format (UTC if no offset).",
    )
    rc.add_argument(
        "--to",
        dest="until",
        type=iso_date,
        default=None,
        help="Latest timestamp, ISO format (UTC if no offset).",
    )
    rc.set_defaults(func=cmd_receipts)

    sa = sub.add_parser("stats", help="Total lotteries and tokens burned.")
    sa.set_defaults(func=cmd_stats)

    return p


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()
    setup_logging(args.verbose)
    raise SystemExit(args.func(args))
