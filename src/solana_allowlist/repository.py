from __future__ import annotations

import json
import threading
import uuid
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import replace
from typing import Any, Dict, Iterator, List, Optional, Protocol

from .errors import NotFoundError, ValidationError
from .models import Entry, EntryStatus, Event, Winner, utcnow


class Repository(Protocol):
    """Persistence seam. The core never embeds SQL; it calls these."""

    def get_event(self, event_id: str) -> Event: ...

    def get_entry(self, entry_id: str) -> Entry: ...

    def find_entries_by_event(self, event_id: str) -> List[Entry]: ...

    def find_entries_by_wallet(self, wallet_address: str) -> List[Entry]: ...

    def create_entry(
        self,
        event_id: str,
        wallet_address: str,
        discord_user_id: Optional[str] = None,
    ) -> Entry: ...

    def update_entry_status(self, entry_id: str, status: EntryStatus) -> Entry: ...

    def set_entry_ineligibility(
        self, entry_id: str, is_ineligible: bool, reason: Optional[str]
    ) -> Entry: ...

    def find_winners_by_event(self, event_id: str) -> List[Winner]: ...

    def count_winners(self, event_id: str) -> int: ...

    def create_winner(self, event_id: str, entry_id: str, picked_by: str) -> Winner: ...

    def delete_winners_for_entry(self, entry_id: str) -> int: ...

    def transaction(self, event_id: str) -> Any:
        """Context manager: check-then-write for one event runs as one unit."""
        ...


def _new_id() -> str:
    return uuid.uuid4().hex


class InMemoryRepository:
    """
    Process-local repository.

    Uniqueness mirrors the database constraints: one entry per
    (event_id, wallet_address) and one winner per (event_id, entry_id).
    transaction(event_id) holds a per-event re-entrant lock.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._event_locks: Dict[str, threading.RLock] = defaultdict(threading.RLock)
        self.events: Dict[str, Event] = {}
        self.entries: Dict[str, Entry] = {}
        self.winners: Dict[str, Winner] = {}

    # --- events -------------------------------------------------------------

    def add_event(self, event: Event) -> Event:
        with self._lock:
            self.events[event.id] = event
        return event

    def get_event(self, event_id: str) -> Event:
        with self._lock:
            event = self.events.get(event_id)
        if event is None:
            raise NotFoundError("Event not found", code="EVENT_NOT_FOUND", details={"eventId": event_id})
        return event

    # --- entries ------------------------------------------------------------

    def add_entry(self, entry: Entry) -> Entry:
        with self._lock:
            self._assert_unique_wallet(entry.event_id, entry.wallet_address)
            self.entries[entry.id] = entry
        return entry

    def get_entry(self, entry_id: str) -> Entry:
        with self._lock:
            entry = self.entries.get(entry_id)
        if entry is None:
            raise NotFoundError("Entry not found", code="ENTRY_NOT_FOUND", details={"entryId": entry_id})
        return entry

    def find_entries_by_event(self, event_id: str) -> List[Entry]:
        with self._lock:
            found = [e for e in self.entries.values() if e.event_id == event_id]
        return sorted(found, key=lambda e: (e.created_at, e.id))

    def find_entries_by_wallet(self, wallet_address: str) -> List[Entry]:
        with self._lock:
            return [e for e in self.entries.values() if e.wallet_address == wallet_address]

    def _assert_unique_wallet(self, event_id: str, wallet_address: str) -> None:
        for e in self.entries.values():
            if e.event_id == event_id and e.wallet_address == wallet_address:
                raise ValidationError(
                    "This wallet has already entered this event",
                    code="DUPLICATE_ENTRY",
                    details={"eventId": event_id, "walletAddress": wallet_address},
                )

    def create_entry(
        self,
        event_id: str,
        wallet_address: str,
        discord_user_id: Optional[str] = None,
    ) -> Entry:
        with self._lock:
            self._assert_unique_wallet(event_id, wallet_address)
            entry = Entry(
                id=_new_id(),
                event_id=event_id,
                wallet_address=wallet_address,
                discord_user_id=discord_user_id,
            )
            self.entries[entry.id] = entry
        return entry

    def update_entry_status(self, entry_id: str, status: EntryStatus) -> Entry:
        with self._lock:
            entry = replace(self.get_entry(entry_id), status=status, updated_at=utcnow())
            self.entries[entry_id] = entry
        return entry

    def set_entry_ineligibility(
        self, entry_id: str, is_ineligible: bool, reason: Optional[str]
    ) -> Entry:
        with self._lock:
            entry = replace(
                self.get_entry(entry_id),
                is_ineligible=is_ineligible,
                ineligibility_reason=reason if is_ineligible else None,
                updated_at=utcnow(),
            )
            self.entries[entry_id] = entry
        return entry

    # --- winners ------------------------------------------------------------

    def find_winners_by_event(self, event_id: str) -> List[Winner]:
        with self._lock:
            found = [w for w in self.winners.values() if w.event_id == event_id]
        return sorted(found, key=lambda w: (w.picked_at, w.id))

    def count_winners(self, event_id: str) -> int:
        with self._lock:
            return sum(1 for w in self.winners.values() if w.event_id == event_id)

    def create_winner(self, event_id: str, entry_id: str, picked_by: str) -> Winner:
        with self._lock:
            for w in self.winners.values():
                if w.event_id == event_id and w.entry_id == entry_id:
                    raise ValidationError(
                        "Entry is already a winner of this event",
                        code="DUPLICATE_WINNER",
                        details={"eventId": event_id, "entryId": entry_id},
                    )
            winner = Winner(id=_new_id(), event_id=event_id, entry_id=entry_id, picked_by=picked_by)
            self.winners[winner.id] = winner
        return winner

    def delete_winners_for_entry(self, entry_id: str) -> int:
        with self._lock:
            doomed = [wid for wid, w in self.winners.items() if w.entry_id == entry_id]
            for wid in doomed:
                del self.winners[wid]
        return len(doomed)

    @contextmanager
    def transaction(self, event_id: str) -> Iterator[None]:
        with self._lock:
            event_lock = self._event_locks[event_id]
        with event_lock:
            yield

    # --- snapshots ----------------------------------------------------------

    def to_snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "entries": [e.to_dict() for e in self.entries.values()],
                "winners": [w.to_dict() for w in self.winners.values()],
            }


def repository_from_snapshot(data: Dict[str, Any]) -> InMemoryRepository:
    """
    Builds a repository from a JSON export:
      {"events": [...], "entries": [...], "winners": [...]}
    using the camelCase field names of the web API.
    """
    if not isinstance(data, dict):
        raise ValidationError("Snapshot must be a JSON object.", code="INVALID_SNAPSHOT")

    repo = InMemoryRepository()
    for raw in data.get("events", []):
        repo.add_event(Event.from_dict(raw))
    for raw in data.get("entries", []):
        repo.add_entry(Entry.from_dict(raw))
    for raw in data.get("winners", []):
        w = Winner.from_dict(raw)
        repo.winners[w.id] = w
    return repo


def read_snapshot(path: str) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def load_snapshot(path: str) -> InMemoryRepository:
    return repository_from_snapshot(read_snapshot(path))


def save_snapshot(path: str, repo: InMemoryRepository, events: List[Dict[str, Any]]) -> None:
    """Writes entries and winners back; events are kept as they were exported."""
    data = {"events": events, **repo.to_snapshot()}
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
