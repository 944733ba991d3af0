"""
Project-wide immutable parameters for entry verification and winner selection.

These values define the public rules of an event.
Changing them changes eligibility and MUST be publicly announced.
"""

# Discord snowflakes count milliseconds from 2015-01-01T00:00:00Z
DISCORD_EPOCH_MS = 1420070400000
SNOWFLAKE_TIMESTAMP_SHIFT = 22

MS_PER_DAY = 24 * 60 * 60 * 1000

# Winner.picked_by for first-come-first-served auto assignment
SYSTEM_FCFS = "SYSTEM_FCFS"

# Solana public keys are 32 bytes, base58 encoded
PUBKEY_LENGTH = 32

# SPL mint layout: COption<Pubkey>(36) | supply u64 (36-44) | decimals u8 (44)
MINT_DECIMALS_OFFSET = 44

DEFAULT_DISCORD_API_BASE = "https://discord.com/api/v10"
DEFAULT_BOT_API_URL = "http://localhost:3001"

# One bounded timeout per domain fetch, a couple of retries on transport errors
DEFAULT_FACTS_TIMEOUT_S = 10.0
DEFAULT_FACTS_MAX_RETRIES = 2

# Duplicate detection heuristics (overridable through DuplicatePolicy)
DISCORD_REUSE_POINTS = 40
TIMING_PATTERN_POINTS = 20
MULTI_EVENT_POINTS = 10
WALLET_REUSE_POINTS = 30
TIMING_WINDOW_SECONDS = 60
TIMING_MIN_NEIGHBOURS = 5
MULTI_EVENT_MIN_ENTRIES = 5
MAX_RISK_SCORE = 100

INELIGIBILITY_REASON_MAX_LENGTH = 500
