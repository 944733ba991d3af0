from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Dict, List, Set

from .errors import NotFoundError
from .models import Entry
from .project_constants import (
    DISCORD_REUSE_POINTS,
    MAX_RISK_SCORE,
    MULTI_EVENT_MIN_ENTRIES,
    MULTI_EVENT_POINTS,
    TIMING_MIN_NEIGHBOURS,
    TIMING_PATTERN_POINTS,
    TIMING_WINDOW_SECONDS,
    WALLET_REUSE_POINTS,
)
from .repository import Repository

log = logging.getLogger(__name__)


class SignalType(str, Enum):
    WALLET_REUSE = "WALLET_REUSE"
    DISCORD_REUSE = "DISCORD_REUSE"
    TIMING_PATTERN = "TIMING_PATTERN"
    MULTI_EVENT = "MULTI_EVENT"


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


@dataclass(frozen=True)
class DuplicatePolicy:
    """Heuristic weights and thresholds; tune per community."""

    discord_reuse_points: int = DISCORD_REUSE_POINTS
    timing_pattern_points: int = TIMING_PATTERN_POINTS
    multi_event_points: int = MULTI_EVENT_POINTS
    wallet_reuse_points: int = WALLET_REUSE_POINTS
    timing_window_s: int = TIMING_WINDOW_SECONDS
    timing_min_neighbours: int = TIMING_MIN_NEIGHBOURS
    multi_event_min_entries: int = MULTI_EVENT_MIN_ENTRIES
    max_score: int = MAX_RISK_SCORE


@dataclass(frozen=True)
class DuplicateSignal:
    type: SignalType
    severity: Severity
    description: str
    related_entry_ids: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class DuplicateAnalysis:
    entry_id: str
    signals: List[DuplicateSignal]
    risk_score: int

    @property
    def is_potential_duplicate(self) -> bool:
        return bool(self.signals)

    def to_dict(self) -> Dict[str, object]:
        return {
            "entryId": self.entry_id,
            "isPotentialDuplicate": self.is_potential_duplicate,
            "riskScore": self.risk_score,
            "signals": [
                {
                    "type": s.type.value,
                    "severity": s.severity.value,
                    "description": s.description,
                    "relatedEntryIds": list(s.related_entry_ids),
                }
                for s in self.signals
            ],
        }


@dataclass(frozen=True)
class DuplicateReport:
    """Admin view: discord ids used with more than one wallet, and their entries."""

    event_id: str
    discord_duplicates: Dict[str, int]
    duplicate_entries: List[Entry]

    @property
    def total_duplicates(self) -> int:
        return len(self.duplicate_entries)


class DuplicateDetector:
    """Advisory reuse analysis. Never blocks verification or selection."""

    def __init__(self, repository: Repository, policy: DuplicatePolicy = DuplicatePolicy()) -> None:
        self.repository = repository
        self.policy = policy

    def analyze(self, event_id: str) -> List[DuplicateAnalysis]:
        event = self.repository.get_event(event_id)
        entries = self.repository.find_entries_by_event(event_id)
        analyses = [self._analyze(e, entries, event.community_id) for e in entries]
        analyses.sort(key=lambda a: a.risk_score, reverse=True)
        flagged = sum(1 for a in analyses if a.is_potential_duplicate)
        log.info("Event %s: %d/%d entries carry duplicate signals", event_id, flagged, len(analyses))
        return analyses

    def analyze_entry(self, entry_id: str) -> DuplicateAnalysis:
        entry = self.repository.get_entry(entry_id)
        event = self.repository.get_event(entry.event_id)
        entries = self.repository.find_entries_by_event(entry.event_id)
        return self._analyze(entry, entries, event.community_id)

    def report(self, event_id: str) -> DuplicateReport:
        self.repository.get_event(event_id)
        entries = self.repository.find_entries_by_event(event_id)
        wallets_by_discord: Dict[str, Set[str]] = defaultdict(set)
        for e in entries:
            if e.discord_user_id:
                wallets_by_discord[e.discord_user_id].add(e.wallet_address)
        dupes = {d: len(w) for d, w in wallets_by_discord.items() if len(w) > 1}
        dup_entries = [e for e in entries if e.discord_user_id in dupes]
        dup_entries.sort(key=lambda e: (e.discord_user_id or "", e.created_at))
        return DuplicateReport(event_id=event_id, discord_duplicates=dupes, duplicate_entries=dup_entries)

    # -------------------------------------------------------------------------

    def _analyze(self, entry: Entry, event_entries: List[Entry], community_id: str) -> DuplicateAnalysis:
        p = self.policy
        signals: List[DuplicateSignal] = []
        score = 0

        # Only stores without the unique (event, wallet) constraint can hold these,
        # e.g. rows imported from before it existed.
        same_wallet = [
            e for e in event_entries if e.id != entry.id and e.wallet_address == entry.wallet_address
        ]
        if same_wallet:
            signals.append(
                DuplicateSignal(
                    SignalType.WALLET_REUSE,
                    Severity.HIGH,
                    f"Wallet entered this event {len(same_wallet) + 1} times",
                    [e.id for e in same_wallet],
                )
            )
            score += p.wallet_reuse_points

        if entry.discord_user_id:
            other_wallets = [
                e
                for e in event_entries
                if e.id != entry.id
                and e.discord_user_id == entry.discord_user_id
                and e.wallet_address != entry.wallet_address
            ]
            if other_wallets:
                distinct = {e.wallet_address for e in other_wallets} | {entry.wallet_address}
                signals.append(
                    DuplicateSignal(
                        SignalType.DISCORD_REUSE,
                        Severity.HIGH,
                        f"Discord account used with {len(distinct)} different wallets in this event",
                        [e.id for e in other_wallets],
                    )
                )
                score += p.discord_reuse_points

        window = timedelta(seconds=p.timing_window_s)
        neighbours = [
            e
            for e in event_entries
            if e.id != entry.id and abs(e.created_at - entry.created_at) <= window
        ]
        if len(neighbours) >= p.timing_min_neighbours:
            signals.append(
                DuplicateSignal(
                    SignalType.TIMING_PATTERN,
                    Severity.MEDIUM,
                    f"{len(neighbours)} other entries submitted within {p.timing_window_s}s",
                    [e.id for e in neighbours],
                )
            )
            score += p.timing_pattern_points

        elsewhere = self._other_event_entries(entry, community_id)
        if len(elsewhere) >= p.multi_event_min_entries:
            signals.append(
                DuplicateSignal(
                    SignalType.MULTI_EVENT,
                    Severity.LOW,
                    f"Wallet participated in {len(elsewhere)} other events from this community",
                    [e.id for e in elsewhere],
                )
            )
            score += p.multi_event_points

        return DuplicateAnalysis(entry_id=entry.id, signals=signals, risk_score=min(score, p.max_score))

    def _other_event_entries(self, entry: Entry, community_id: str) -> List[Entry]:
        out: List[Entry] = []
        community_of: Dict[str, str] = {}
        for e in self.repository.find_entries_by_wallet(entry.wallet_address):
            if e.event_id == entry.event_id:
                continue
            if e.event_id not in community_of:
                try:
                    community_of[e.event_id] = self.repository.get_event(e.event_id).community_id
                except NotFoundError:
                    community_of[e.event_id] = ""
            if community_of[e.event_id] == community_id:
                out.append(e)
        return out
