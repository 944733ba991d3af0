from __future__ import annotations

import hashlib
import logging
import random
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, TypeVar

from .announce import AnnouncementSink
from .errors import CapacityError, EligibilityError, NotFoundError, ValidationError
from .models import Entry, EntryStatus, Event, SelectionMode, Winner
from .project_constants import SYSTEM_FCFS
from .repository import Repository

log = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class DrawOptions:
    picked_by: str
    count: Optional[int] = None
    entry_ids: Tuple[str, ...] = ()
    exclude_entry_ids: Tuple[str, ...] = ()
    # Optional public seed (e.g. a finalized blockhash) for an auditable draw
    seed: Optional[str] = None


@dataclass(frozen=True)
class DrawResult:
    winners: List[Winner]
    pool_size: int
    available_spots: int
    pool_entry_ids: List[str] = field(default_factory=list)
    seed_hash_hex: Optional[str] = None

    @property
    def remaining_spots(self) -> int:
        return self.available_spots - len(self.winners)


def seeded_rng(seed: str) -> Tuple[random.Random, str]:
    seed_hash_hex = hashlib.sha256(seed.encode("utf-8")).hexdigest()
    return random.Random(int(seed_hash_hex, 16)), seed_hash_hex


def fisher_yates(items: Sequence[T], rng: random.Random) -> List[T]:
    """Unbiased in-place-style shuffle on a copy: every permutation equally likely."""
    out = list(items)
    for i in range(len(out) - 1, 0, -1):
        j = rng.randrange(i + 1)
        out[i], out[j] = out[j], out[i]
    return out


def pick_random(
    pool_ids: Sequence[str], take: int, seed: Optional[str] = None, rng: Optional[random.Random] = None
) -> Tuple[List[str], Optional[str]]:
    """
    Shuffles the pool (sorted by id first so seeded draws are reproducible)
    and returns the first `take` ids plus the seed hash when seeded.
    """
    ordered = sorted(pool_ids)
    seed_hash_hex = None
    if seed is not None:
        rng, seed_hash_hex = seeded_rng(seed)
    elif rng is None:
        rng = random.SystemRandom()
    return fisher_yates(ordered, rng)[:take], seed_hash_hex


def capacity_details(event: Event, existing: int, requested: Optional[int] = None) -> Dict[str, int]:
    details = {
        "maxWinners": event.max_winners,
        "reservedSpots": event.reserved_spots,
        "existingWinners": existing,
        "availableSpots": event.capacity - existing,
    }
    if requested is not None:
        details["requested"] = requested
    return details


class WinnerSelector:
    def __init__(
        self,
        repository: Repository,
        announcer: Optional[AnnouncementSink] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.repository = repository
        self.announcer = announcer
        self.rng = rng

    def available_spots(self, event: Event) -> int:
        return event.capacity - self.repository.count_winners(event.id)

    # --- RANDOM / MANUAL ------------------------------------------------------

    def draw_for_event(self, event: Event, options: DrawOptions) -> DrawResult:
        """Draws from the event's entries as they stand once the event lock is held."""
        return self._draw(event, None, [], options)

    def draw(
        self,
        event: Event,
        eligible_entries: Iterable[Entry],
        already_picked_entry_ids: Iterable[str],
        options: DrawOptions,
    ) -> List[Winner]:
        return self._draw(event, list(eligible_entries), list(already_picked_entry_ids), options).winners

    def _draw(
        self,
        event: Event,
        entries: Optional[List[Entry]],
        already_picked: List[str],
        options: DrawOptions,
    ) -> DrawResult:
        if event.selection_mode is SelectionMode.FCFS:
            raise ValidationError(
                "Cannot draw winners for FCFS events (winners are auto-assigned)",
                code="INVALID_SELECTION_MODE",
            )
        if options.count is not None and options.count < 1:
            raise ValidationError("count must be at least 1", code="INVALID_COUNT")
        manual = bool(options.entry_ids)
        if event.selection_mode is SelectionMode.MANUAL and not manual:
            raise ValidationError(
                "Manual selection requires explicit entry ids",
                code="ENTRY_IDS_REQUIRED",
            )

        with self.repository.transaction(event.id):
            existing = self.repository.find_winners_by_event(event.id)
            available = event.capacity - len(existing)
            if available <= 0:
                raise CapacityError(
                    "No winner spots available",
                    code="NO_SPOTS_AVAILABLE",
                    details=capacity_details(event, len(existing)),
                )
            taken = set(already_picked) | {w.entry_id for w in existing}

            pool_ids: List[str] = []
            seed_hash: Optional[str] = None
            if manual:
                chosen = self._manual_pick(event, options, taken, len(existing))
            else:
                # Pool membership is decided on rows read under the lock, not on
                # copies the caller loaded earlier.
                current = self.repository.find_entries_by_event(event.id)
                if entries is not None:
                    wanted = {e.id for e in entries}
                    current = [e for e in current if e.id in wanted]
                excluded = taken | set(options.exclude_entry_ids)
                pool_ids = [e.id for e in current if e.is_selectable and e.id not in excluded]
                if not pool_ids:
                    raise EligibilityError(
                        "No eligible entries available to draw from",
                        code="NO_ELIGIBLE_ENTRIES",
                        details=capacity_details(event, len(existing), options.count),
                    )
                take = min(options.count or available, available, len(pool_ids))
                chosen, seed_hash = pick_random(pool_ids, take, seed=options.seed, rng=self.rng)

            winners = [self.repository.create_winner(event.id, eid, options.picked_by) for eid in chosen]

        log.info(
            "Event %s: %d winner(s) picked by %s (%s)",
            event.id,
            len(winners),
            options.picked_by,
            "manual" if manual else "random",
        )
        self._announce(event, winners)
        return DrawResult(
            winners=winners,
            pool_size=len(chosen) if manual else len(pool_ids),
            available_spots=available,
            pool_entry_ids=sorted(pool_ids),
            seed_hash_hex=seed_hash,
        )

    def _manual_pick(self, event: Event, options: DrawOptions, taken: set, existing: int) -> List[str]:
        ids = list(dict.fromkeys(options.entry_ids))
        found: List[Entry] = []
        missing: List[str] = []
        for eid in ids:
            try:
                entry = self.repository.get_entry(eid)
            except NotFoundError:
                missing.append(eid)
                continue
            if entry.event_id != event.id:
                missing.append(eid)
                continue
            found.append(entry)
        if missing:
            raise EligibilityError(
                "Some entries are invalid or not found",
                code="INVALID_ENTRIES",
                details={"entryIds": missing},
            )

        ineligible = [e.id for e in found if e.is_ineligible]
        if ineligible:
            raise EligibilityError(
                f"Cannot select {len(ineligible)} ineligible entries as winners",
                code="INELIGIBLE_ENTRIES",
                details={"entryIds": ineligible},
            )
        not_valid = [e.id for e in found if e.status is not EntryStatus.VALID]
        if not_valid:
            raise EligibilityError(
                f"{len(not_valid)} entries have not passed verification (status must be VALID)",
                code="INVALID_ENTRY_STATUS",
                details={"entryIds": not_valid},
            )
        already = [e.id for e in found if e.id in taken]
        if already:
            raise EligibilityError(
                f"{len(already)} entries are already winners",
                code="ALREADY_WINNER",
                details={"entryIds": already},
            )

        available = event.capacity - existing
        if len(ids) > available:
            raise CapacityError(
                f"Cannot select {len(ids)} winners. Only {available} slots available "
                f"({event.max_winners} max - {event.reserved_spots} reserved - "
                f"{existing} already selected)",
                code="TOO_MANY_WINNERS",
                details=capacity_details(event, existing, len(ids)),
            )
        return ids

    # --- FCFS -----------------------------------------------------------------

    def assign_fcfs(self, event: Event, entry: Entry) -> Optional[Winner]:
        """
        Auto-assigns a spot to a freshly VALID entry if one remains.

        Count and insert run inside the event transaction, so concurrent
        submissions at the boundary cannot overbook.
        """
        if event.selection_mode is not SelectionMode.FCFS:
            return None
        with self.repository.transaction(event.id):
            current = self.repository.get_entry(entry.id)
            if not current.is_selectable:
                return None
            existing = self.repository.find_winners_by_event(event.id)
            for w in existing:
                if w.entry_id == current.id:
                    return w
            if event.capacity - len(existing) <= 0:
                log.info("Event %s: FCFS spots exhausted; entry %s stays VALID", event.id, entry.id)
                return None
            winner = self.repository.create_winner(event.id, current.id, SYSTEM_FCFS)
        log.info("Event %s: FCFS spot assigned to entry %s", event.id, entry.id)
        return winner

    # --- announcement ---------------------------------------------------------

    def _announce(self, event: Event, winners: List[Winner]) -> None:
        if self.announcer is None or not winners:
            return
        try:
            entries = [self.repository.get_entry(w.entry_id) for w in winners]
            ann = self.announcer.announce_winners(event, winners, entries)
            log.info("Event %s: winners announced (message %s)", event.id, ann.message_id)
        except Exception:
            log.exception("Event %s: failed to announce winners; draw is kept", event.id)
