"""
Chain-level constants for the fee lottery worker.

Anything an operator may reasonably tune lives in config.Settings instead.
"""

LAMPORTS_PER_SOL = 1_000_000_000

# Wrapped SOL, used as the swap input mint
SOL_MINT = "So11111111111111111111111111111111111111112"

SYSTEM_PROGRAM_ID = "11111111111111111111111111111111"
TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
TOKEN_2022_PROGRAM_ID = "TokenzQdBNbLqP5VEhdkAS6EPFLC1PHnBqCXEpPxuEb"
ASSOCIATED_TOKEN_PROGRAM_ID = "ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL"
ADDRESS_LOOKUP_TABLE_PROGRAM_ID = "AddressLookupTab1e1111111111111111111111111"
SLOT_HASHES_SYSVAR_ID = "SysvarS1otHashes111111111111111111111111111"

# Switchboard on-demand (devnet defaults, override through env)
SB_DEVNET_PROGRAM_ID = "Aio4gaXjXzJNVLtzwtNVmSqGKpANtXhybbkhtAC94ji2"
SB_DEVNET_QUEUE = "EYiAmGSdsQTuCw413V5BzaruWuCCSDgTPtBGvLkXHbe7"

# Randomness accounts are funded with the rent-exempt minimum for this size
RANDOMNESS_ACCOUNT_SIZE = 1024

# Trailing window for trader volume
TRADER_WINDOW_HOURS = 24

# Single status document id in the store
STATUS_DOC_ID = "current"
