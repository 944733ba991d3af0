from __future__ import annotations

import os
from dataclasses import dataclass, field
from dotenv import load_dotenv

from .duplicates import DuplicatePolicy
from .errors import ValidationError
from .project_constants import (
    DEFAULT_BOT_API_URL,
    DEFAULT_DISCORD_API_BASE,
    DEFAULT_FACTS_MAX_RETRIES,
    DEFAULT_FACTS_TIMEOUT_S,
)


def _env_number(name: str, default: float, cast=float):
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = cast(raw)
    except ValueError:
        raise ValidationError(f"{name} must be a number (got {raw!r}).", code="INVALID_SETTING")
    if value < 0:
        raise ValidationError(f"{name} must be non-negative (got {raw!r}).", code="INVALID_SETTING")
    return value


@dataclass(frozen=True)
class Settings:
    rpc_url: str | None = None
    discord_bot_token: str | None = None
    discord_api_base: str = DEFAULT_DISCORD_API_BASE
    bot_api_url: str = DEFAULT_BOT_API_URL
    winner_channel_id: str | None = None
    facts_timeout_s: float = DEFAULT_FACTS_TIMEOUT_S
    facts_max_retries: int = DEFAULT_FACTS_MAX_RETRIES
    duplicate_policy: DuplicatePolicy = field(default_factory=DuplicatePolicy)

    @staticmethod
    def from_env(
        rpc_url_override: str | None = None,
        timeout_override: float | None = None,
    ) -> "Settings":
        load_dotenv()

        # If user provides --rpc-url, trust it.
        # Otherwise, use RPC_URL from env if present, else build helius url from key.
        rpc_url = rpc_url_override or os.getenv("RPC_URL", "").strip() or None
        if not rpc_url:
            helius_key = os.getenv("HELIUS_API_KEY", "").strip()
            if helius_key:
                rpc_url = f"https://mainnet.helius-rpc.com/?api-key={helius_key}"
        # No RPC at all is allowed: Solana requirements then fail closed.

        defaults = DuplicatePolicy()
        policy = DuplicatePolicy(
            discord_reuse_points=_env_number("DUPLICATE_DISCORD_REUSE_POINTS", defaults.discord_reuse_points, int),
            timing_pattern_points=_env_number("DUPLICATE_TIMING_POINTS", defaults.timing_pattern_points, int),
            multi_event_points=_env_number("DUPLICATE_MULTI_EVENT_POINTS", defaults.multi_event_points, int),
            wallet_reuse_points=_env_number("DUPLICATE_WALLET_REUSE_POINTS", defaults.wallet_reuse_points, int),
            timing_window_s=_env_number("DUPLICATE_TIMING_WINDOW_S", defaults.timing_window_s, int),
            timing_min_neighbours=_env_number("DUPLICATE_TIMING_MIN_ENTRIES", defaults.timing_min_neighbours, int),
            multi_event_min_entries=_env_number(
                "DUPLICATE_MULTI_EVENT_MIN_ENTRIES", defaults.multi_event_min_entries, int
            ),
        )

        timeout = timeout_override
        if timeout is None:
            timeout = _env_number("FACTS_TIMEOUT_S", DEFAULT_FACTS_TIMEOUT_S)

        return Settings(
            rpc_url=rpc_url,
            discord_bot_token=os.getenv("DISCORD_BOT_TOKEN", "").strip() or None,
            discord_api_base=os.getenv("DISCORD_API_BASE", "").strip() or DEFAULT_DISCORD_API_BASE,
            bot_api_url=os.getenv("DISCORD_BOT_API_URL", "").strip() or DEFAULT_BOT_API_URL,
            winner_channel_id=os.getenv("DISCORD_WINNER_CHANNEL_ID", "").strip() or None,
            facts_timeout_s=timeout,
            facts_max_retries=_env_number("FACTS_MAX_RETRIES", DEFAULT_FACTS_MAX_RETRIES, int),
            duplicate_policy=policy,
        )
