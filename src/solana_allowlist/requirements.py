from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, Optional, Type, Union

from .facts import DiscordFacts, SolanaFacts
from .models import (
    DiscordAccountAge,
    DiscordMemberRequired,
    DiscordRoleRequired,
    DiscordServerJoinAge,
    Requirement,
    SolanaNftOwnership,
    SolanaTokenBalance,
)
from .project_constants import DISCORD_EPOCH_MS, MS_PER_DAY, SNOWFLAKE_TIMESTAMP_SHIFT

log = logging.getLogger(__name__)

Facts = Union[DiscordFacts, SolanaFacts]


@dataclass(frozen=True)
class EvaluationResult:
    valid: bool
    reason: Optional[str] = None


def passed() -> EvaluationResult:
    return EvaluationResult(True)


def failed(reason: str) -> EvaluationResult:
    return EvaluationResult(False, reason)


# -----------------------------------------------------------------------------
# Time helpers
# -----------------------------------------------------------------------------


def snowflake_created_at(snowflake: Union[str, int]) -> datetime:
    """Creation time encoded in a Discord snowflake: (id >> 22) + Discord epoch."""
    value = int(str(snowflake).strip())
    if value <= 0:
        raise ValueError(f"Not a Discord snowflake: {snowflake!r}")
    ms = (value >> SNOWFLAKE_TIMESTAMP_SHIFT) + DISCORD_EPOCH_MS
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)


def days_since(ts: datetime, now: datetime) -> int:
    """Whole days elapsed, floored."""
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    elapsed_ms = (now - ts).total_seconds() * 1000
    return int(elapsed_ms // MS_PER_DAY)


def discord_account_age_days(snowflake: Union[str, int], now: datetime) -> int:
    return days_since(snowflake_created_at(snowflake), now)


def _min_days_problem(min_days: Optional[int]) -> Optional[str]:
    if min_days is None:
        return "minDays is not configured"
    if min_days < 0:
        return f"minDays must be non-negative (got {min_days})"
    return None


# -----------------------------------------------------------------------------
# Discord evaluators
# -----------------------------------------------------------------------------


def evaluate_member(facts: DiscordFacts, req: DiscordMemberRequired, now: datetime) -> EvaluationResult:
    if facts.is_member is True:
        return passed()
    return failed("Not a member of the required Discord server")


def evaluate_role(facts: DiscordFacts, req: DiscordRoleRequired, now: datetime) -> EvaluationResult:
    if not req.role_ids:
        return failed("Discord role requirement is misconfigured: no role ids")
    if not facts.is_member:
        return failed("Not a member of the required Discord server, so roles cannot be checked")
    if set(req.role_ids) & set(facts.roles):
        return passed()
    return failed(f"Missing required Discord role (one of: {', '.join(req.role_ids)})")


def evaluate_account_age(facts: DiscordFacts, req: DiscordAccountAge, now: datetime) -> EvaluationResult:
    problem = _min_days_problem(req.min_days)
    if problem:
        return failed(f"Discord account age requirement is misconfigured: {problem}")
    try:
        age = discord_account_age_days(facts.user_id, now)
    except (TypeError, ValueError):
        return failed(f"Invalid Discord user id: {facts.user_id!r}")
    if age >= req.min_days:
        return passed()
    return failed(f"Discord account is {age} days old; {req.min_days} days required")


def evaluate_server_join_age(facts: DiscordFacts, req: DiscordServerJoinAge, now: datetime) -> EvaluationResult:
    problem = _min_days_problem(req.min_days)
    if problem:
        return failed(f"Server join age requirement is misconfigured: {problem}")
    if not facts.is_member or facts.joined_at is None:
        return failed("Not a member of the required Discord server")
    days = days_since(facts.joined_at, now)
    if days >= req.min_days:
        return passed()
    return failed(f"Joined the server {days} days ago; {req.min_days} days required")


# -----------------------------------------------------------------------------
# Solana evaluators
# -----------------------------------------------------------------------------


def evaluate_token_balance(facts: SolanaFacts, req: SolanaTokenBalance, now: datetime) -> EvaluationResult:
    if not req.mint:
        return failed("Token requirement is misconfigured: no mint address")
    if req.min_amount is None or req.min_amount < 0:
        return failed("Token requirement is misconfigured: minAmount must be a non-negative number")
    if req.mint in facts.failures:
        return failed(facts.failures[req.mint].reason)
    balance = facts.token_balances.get(req.mint)
    if balance is None:
        return failed(f"Token balance for mint {req.mint} is unavailable")
    if balance >= req.min_amount:
        return passed()
    return failed(
        f"Insufficient token balance for {req.mint}. Required: {req.min_amount:g}, current: {balance:g}"
    )


def evaluate_nft_ownership(facts: SolanaFacts, req: SolanaNftOwnership, now: datetime) -> EvaluationResult:
    if not req.collection_mint:
        return failed("NFT requirement is misconfigured: no collection address")
    if req.min_count is None or req.min_count < 1:
        return failed("NFT requirement is misconfigured: minCount must be at least 1")
    if req.collection_mint in facts.failures:
        return failed(facts.failures[req.collection_mint].reason)
    owned = facts.nft_counts.get(req.collection_mint)
    if owned is None:
        return failed(f"NFT ownership for collection {req.collection_mint} is unavailable")
    if owned >= req.min_count:
        return passed()
    return failed(
        f"Insufficient NFTs from {req.collection_mint}. Required: {req.min_count}, owned: {owned}"
    )


Evaluator = Callable[..., EvaluationResult]

EVALUATORS: Dict[Type, Evaluator] = {
    DiscordMemberRequired: evaluate_member,
    DiscordRoleRequired: evaluate_role,
    DiscordAccountAge: evaluate_account_age,
    DiscordServerJoinAge: evaluate_server_join_age,
    SolanaTokenBalance: evaluate_token_balance,
    SolanaNftOwnership: evaluate_nft_ownership,
}


def evaluator_for(req: Requirement) -> Optional[Evaluator]:
    return EVALUATORS.get(type(req))


def evaluate(facts: Facts, req: Requirement, now: Optional[datetime] = None) -> Optional[EvaluationResult]:
    """
    Runs the evaluator for one requirement.

    Returns None for requirement types without an evaluator (they are skipped
    with a warning, not failed).
    """
    fn = evaluator_for(req)
    if fn is None:
        log.warning("No evaluator for requirement type %s (id=%s); skipping", req.type, req.id)
        return None
    return fn(facts, req, now or datetime.now(timezone.utc))
