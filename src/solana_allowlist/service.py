from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence

from .duplicates import DuplicateAnalysis, DuplicateDetector, DuplicateReport
from .errors import ValidationError
from .models import Entry, EntryStatus, EventStatus, SelectionMode, VerificationOutcome, Winner
from .project_constants import INELIGIBILITY_REASON_MAX_LENGTH
from .ratelimit import RateLimiter
from .repository import Repository
from .selection import DrawOptions, DrawResult, WinnerSelector
from .verifier import EntryVerifier
from .wallets import validate_wallet_address

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubmissionResult:
    entry: Entry
    outcome: VerificationOutcome
    winner: Optional[Winner] = None

    @property
    def fcfs_assigned(self) -> bool:
        return self.winner is not None


class EntryService:
    """
    Entry and winner workflows behind the web handlers:
    submit, re-verify, eligibility override, draw, manual pick, duplicates.
    """

    def __init__(
        self,
        repository: Repository,
        verifier: EntryVerifier,
        selector: WinnerSelector,
        detector: Optional[DuplicateDetector] = None,
        rate_limiter: Optional[RateLimiter] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.repository = repository
        self.verifier = verifier
        self.selector = selector
        self.detector = detector or DuplicateDetector(repository)
        self.rate_limiter = rate_limiter
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def submit_entry(
        self,
        event_id: str,
        wallet_address: str,
        discord_user_id: Optional[str] = None,
        access_token: Optional[str] = None,
        client_key: Optional[str] = None,
    ) -> SubmissionResult:
        if self.rate_limiter is not None and client_key:
            self.rate_limiter.check(client_key)

        wallet = validate_wallet_address(wallet_address)
        event = self.repository.get_event(event_id)
        if event.status is not EventStatus.ACTIVE:
            raise ValidationError("Event is not currently accepting entries", code="EVENT_INACTIVE")
        if event.end_at is not None and self.clock() > event.end_at:
            raise ValidationError("Event has ended", code="EVENT_INACTIVE")

        entry = self.repository.create_entry(event.id, wallet, (discord_user_id or "").strip() or None)
        log.info("Entry %s created for event %s", entry.id, event.id)

        outcome = self.verifier.verify(entry, event.requirements, event.guild_id, access_token)
        winner = None
        if event.selection_mode is SelectionMode.FCFS and outcome.status is EntryStatus.VALID:
            winner = self.selector.assign_fcfs(event, entry)
        return SubmissionResult(entry=self.repository.get_entry(entry.id), outcome=outcome, winner=winner)

    def reverify_entry(self, entry_id: str, access_token: Optional[str] = None) -> SubmissionResult:
        entry = self.repository.get_entry(entry_id)
        event = self.repository.get_event(entry.event_id)
        outcome = self.verifier.verify(entry, event.requirements, event.guild_id, access_token)
        winner = None
        if event.selection_mode is SelectionMode.FCFS and outcome.status is EntryStatus.VALID:
            winner = self.selector.assign_fcfs(event, entry)
        return SubmissionResult(entry=self.repository.get_entry(entry.id), outcome=outcome, winner=winner)

    def set_ineligible(self, entry_id: str, is_ineligible: bool, reason: Optional[str] = None) -> Entry:
        """
        Admin override. Marking an entry eligible again removes any Winner rows
        it holds; this is the only path that deletes winners.
        """
        reason = (reason or "").strip() or None
        if is_ineligible and not reason:
            raise ValidationError("A reason is required to mark an entry ineligible", code="REASON_REQUIRED")
        if reason and len(reason) > INELIGIBILITY_REASON_MAX_LENGTH:
            raise ValidationError(
                f"Reason must be at most {INELIGIBILITY_REASON_MAX_LENGTH} characters",
                code="REASON_TOO_LONG",
            )

        entry = self.repository.get_entry(entry_id)
        with self.repository.transaction(entry.event_id):
            if not is_ineligible:
                removed = self.repository.delete_winners_for_entry(entry_id)
                if removed:
                    log.info("Entry %s marked eligible; %d winner record(s) removed", entry_id, removed)
            updated = self.repository.set_entry_ineligibility(entry_id, is_ineligible, reason)
        return updated

    def draw_winners(
        self,
        event_id: str,
        picked_by: str,
        count: Optional[int] = None,
        exclude_entry_ids: Sequence[str] = (),
        seed: Optional[str] = None,
    ) -> DrawResult:
        event = self.repository.get_event(event_id)
        options = DrawOptions(
            picked_by=picked_by,
            count=count,
            exclude_entry_ids=tuple(exclude_entry_ids),
            seed=seed,
        )
        return self.selector.draw_for_event(event, options)

    def pick_winners(self, event_id: str, picked_by: str, entry_ids: Sequence[str]) -> DrawResult:
        if not entry_ids:
            raise ValidationError("entryIds must not be empty", code="ENTRY_IDS_REQUIRED")
        event = self.repository.get_event(event_id)
        return self.selector.draw_for_event(event, DrawOptions(picked_by=picked_by, entry_ids=tuple(entry_ids)))

    def winners(self, event_id: str) -> List[Winner]:
        self.repository.get_event(event_id)
        return self.repository.find_winners_by_event(event_id)

    def duplicates(self, event_id: str) -> List[DuplicateAnalysis]:
        return self.detector.analyze(event_id)

    def duplicate_report(self, event_id: str) -> DuplicateReport:
        return self.detector.report(event_id)
