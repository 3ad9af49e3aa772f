from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Optional

import base58
from dotenv import load_dotenv
from solders.keypair import Keypair

from .project_constants import (
    LAMPORTS_PER_SOL,
    SB_DEVNET_PROGRAM_ID,
    SB_DEVNET_QUEUE,
    TOKEN_2022_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
)


def _env(name: str, default: str = "") -> str:
    return os.getenv(name, default).strip()


def _require(name: str) -> str:
    value = _env(name)
    if not value:
        raise RuntimeError(f"Missing {name}. Put it in .env or export it.")
    return value


@dataclass(frozen=True)
class Settings:
    rpc_url: str
    private_key: str
    market_mint: str

    pot_threshold_lamports: int = LAMPORTS_PER_SOL
    payout_percentage: float = 0.25
    tick_interval_ms: int = 10_000
    oracle_max_attempts: int = 30
    oracle_delay_ms: int = 5_000
    vrf_max_attempts: int = 3
    swap_slippage_bps: int = 50
    top_traders: int = 10

    moralis_api_key: str = ""
    bags_api_key: str = ""
    jupiter_api_url: str = "https://lite-api.jup.ag"

    sb_program_id: str = SB_DEVNET_PROGRAM_ID
    sb_queue: str = SB_DEVNET_QUEUE
    sb_oracle: str = ""
    sb_gateway_url: str = ""

    mongo_uri: str = ""
    mongo_db_name: str = "fee_lottery"
    token_program_id: str = TOKEN_PROGRAM_ID

    @staticmethod
    def resolve_rpc_url(rpc_url_override: str | None = None) -> str:
        # If user provides --rpc-url, trust it.
        if rpc_url_override:
            return rpc_url_override

        # Otherwise, use RPC_URL from env if present, else build helius url from key.
        env_rpc = _env("RPC_URL")
        if env_rpc:
            return env_rpc

        helius_key = _env("HELIUS_API_KEY")
        if not helius_key:
            raise RuntimeError(
                "Missing HELIUS_API_KEY (or RPC_URL). Put it in .env or export it."
            )
        return f"https://mainnet.helius-rpc.com/?api-key={helius_key}"

    @staticmethod
    def from_env(rpc_url_override: str | None = None) -> "Settings":
        load_dotenv()

        threshold_sol = float(_env("LOTTERY_POT_THRESHOLD_SOL", "1.0"))
        program = _env("TOKEN_PROGRAM", "spl").lower()
        if program not in ("spl", "token-2022"):
            raise RuntimeError(f"TOKEN_PROGRAM must be 'spl' or 'token-2022', got {program!r}")

        return Settings(
            rpc_url=Settings.resolve_rpc_url(rpc_url_override),
            private_key=_require("PRIVATE_KEY"),
            market_mint=_require("PROJECT_TOKEN_MINT_ADDRESS"),
            pot_threshold_lamports=int(threshold_sol * LAMPORTS_PER_SOL),
            payout_percentage=float(_env("PAYOUT_PERCENTAGE", "0.25")),
            tick_interval_ms=int(_env("TICK_INTERVAL_MS", "10000")),
            oracle_max_attempts=int(_env("ORACLE_MAX_ATTEMPTS", "30")),
            oracle_delay_ms=int(_env("ORACLE_DELAY_MS", "5000")),
            vrf_max_attempts=int(_env("VRF_MAX_ATTEMPTS", "3")),
            swap_slippage_bps=int(_env("SWAP_SLIPPAGE_BPS", "50")),
            top_traders=int(_env("TOP_TRADERS", "10")),
            moralis_api_key=_env("MORALIS_API_KEY"),
            bags_api_key=_env("BAGS_API_KEY"),
            jupiter_api_url=_env("JUPITER_API_URL", "https://lite-api.jup.ag").rstrip("/"),
            sb_program_id=_env("SB_PROGRAM_ID", SB_DEVNET_PROGRAM_ID),
            sb_queue=_env("SB_QUEUE", SB_DEVNET_QUEUE),
            sb_oracle=_env("SB_ORACLE"),
            sb_gateway_url=_env("SB_GATEWAY_URL").rstrip("/"),
            mongo_uri=_env("MONGO_URI"),
            mongo_db_name=_env("MONGO_DB_NAME", "fee_lottery"),
            token_program_id=TOKEN_2022_PROGRAM_ID if program == "token-2022" else TOKEN_PROGRAM_ID,
        )


def load_keypair(secret: str, base_dir: Optional[str] = None) -> Keypair:
    """
    Accepts:
    1) JSON byte array: "[12, 34, ...]"
    2) Path to a JSON keypair file (solana-keygen format)
    3) Base58 encoded secret key
    """
    secret = secret.strip()

    if secret.endswith(".json") or secret.startswith("./"):
        path = secret if base_dir is None else os.path.join(base_dir, secret)
        with open(path, "r", encoding="utf-8") as f:
            secret = f.read().strip()

    try:
        if secret.startswith("["):
            raw = bytes(json.loads(secret))
        else:
            raw = base58.b58decode(secret)
    except ValueError as e:
        raise RuntimeError(f"Could not parse PRIVATE_KEY: {e}") from e

    if len(raw) != 64:
        raise RuntimeError(f"Invalid private key: expected 64 bytes, got {len(raw)}")
    return Keypair.from_bytes(raw)
