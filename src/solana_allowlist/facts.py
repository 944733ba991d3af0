from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Protocol, Tuple, Union


@dataclass(frozen=True)
class FactsFailure:
    """A provider could not produce facts. Returned, never raised."""

    source: str
    reason: str
    retryable: bool = False


@dataclass(frozen=True)
class GuildMembership:
    is_member: bool
    roles: Tuple[str, ...] = ()
    joined_at: Optional[datetime] = None


@dataclass(frozen=True)
class GuildRole:
    id: str
    name: str


@dataclass(frozen=True)
class DiscordFacts:
    user_id: str
    is_member: bool = False
    roles: Tuple[str, ...] = ()
    joined_at: Optional[datetime] = None


@dataclass(frozen=True)
class SolanaFacts:
    wallet: str
    token_balances: Dict[str, float] = field(default_factory=dict)
    nft_counts: Dict[str, int] = field(default_factory=dict)
    # mint/collection -> why it could not be fetched
    failures: Dict[str, FactsFailure] = field(default_factory=dict)


class DiscordFactsProvider(Protocol):
    def get_guild_membership(
        self,
        guild_id: str,
        user_id: str,
        access_token: Optional[str],
    ) -> Union[GuildMembership, FactsFailure]:
        ...

    def get_guild_roles(
        self,
        guild_id: str,
        bot_token: Optional[str] = None,
    ) -> Union[List[GuildRole], FactsFailure]:
        ...


class SolanaFactsProvider(Protocol):
    def get_token_balance(self, wallet: str, mint: str) -> Union[float, FactsFailure]:
        ...

    def get_nft_ownership_count(
        self, wallet: str, collection_mint: str
    ) -> Union[int, FactsFailure]:
        ...
