from __future__ import annotations

import itertools
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

import base58
import pytest

from solana_allowlist.facts import FactsFailure, GuildMembership
from solana_allowlist.models import Entry, EntryStatus, Event, EventStatus, SelectionMode
from solana_allowlist.project_constants import DISCORD_EPOCH_MS
from solana_allowlist.repository import InMemoryRepository

NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)
GUILD = "900000000000000001"

_ids = itertools.count(1)


def wallet(n: int) -> str:
    return base58.b58encode(bytes([n % 256]) * 31 + bytes([n // 256])).decode("ascii")


def snowflake_for(created: datetime) -> str:
    ms = int(created.timestamp()) * 1000
    return str((ms - DISCORD_EPOCH_MS) << 22)


class FakeDiscord:
    def __init__(
        self,
        membership: Optional[GuildMembership] = None,
        failure: Optional[FactsFailure] = None,
        raises: Optional[Exception] = None,
    ) -> None:
        self.membership = membership or GuildMembership(is_member=True, roles=(), joined_at=NOW - timedelta(days=90))
        self.failure = failure
        self.raises = raises
        self.calls = 0

    def get_guild_membership(self, guild_id, user_id, access_token=None):
        self.calls += 1
        if self.raises is not None:
            raise self.raises
        if self.failure is not None:
            return self.failure
        return self.membership

    def get_guild_roles(self, guild_id, bot_token=None):
        return []


class FakeSolana:
    def __init__(
        self,
        balances: Optional[Dict[str, float]] = None,
        counts: Optional[Dict[str, int]] = None,
        failure: Optional[FactsFailure] = None,
    ) -> None:
        self.balances = balances or {}
        self.counts = counts or {}
        self.failure = failure
        self.calls = 0

    def get_token_balance(self, wallet, mint):
        self.calls += 1
        if self.failure is not None:
            return self.failure
        return self.balances.get(mint, 0.0)

    def get_nft_ownership_count(self, wallet, collection_mint):
        self.calls += 1
        if self.failure is not None:
            return self.failure
        return self.counts.get(collection_mint, 0)


class FakeAnnouncer:
    def __init__(self, raises: Optional[Exception] = None) -> None:
        self.raises = raises
        self.calls = []

    def announce_winners(self, event, winners, entries):
        self.calls.append((event.id, [w.entry_id for w in winners]))
        if self.raises is not None:
            raise self.raises
        from solana_allowlist.announce import Announcement

        return Announcement(message_id="m1", url="https://discord.com/channels/1/2/m1")


@pytest.fixture
def repo() -> InMemoryRepository:
    return InMemoryRepository()


@pytest.fixture
def make_event(repo):
    def _make(**kw) -> Event:
        kw.setdefault("id", f"evt{next(_ids)}")
        kw.setdefault("status", EventStatus.ACTIVE)
        kw.setdefault("selection_mode", SelectionMode.RANDOM)
        kw.setdefault("community_id", "community-1")
        kw.setdefault("guild_id", GUILD)
        return repo.add_event(Event(**kw))

    return _make


@pytest.fixture
def make_entry(repo):
    def _make(event: Event, n: int, **kw) -> Entry:
        kw.setdefault("id", f"entry{next(_ids):05d}")
        kw.setdefault("status", EntryStatus.VALID)
        kw.setdefault("created_at", NOW)
        return repo.add_entry(Entry(event_id=event.id, wallet_address=wallet(n), **kw))

    return _make
