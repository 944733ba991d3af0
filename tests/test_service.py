from datetime import timedelta

import pytest

from conftest import NOW, FakeSolana, wallet
from solana_allowlist.errors import NotFoundError, RateLimitedError, ValidationError
from solana_allowlist.models import EntryStatus, EventStatus, SelectionMode, SolanaTokenBalance
from solana_allowlist.project_constants import SYSTEM_FCFS
from solana_allowlist.ratelimit import InMemoryRateLimitStore, RateLimiter
from solana_allowlist.selection import WinnerSelector
from solana_allowlist.service import EntryService
from solana_allowlist.verifier import EntryVerifier


@pytest.fixture
def service(repo):
    def _make(solana=None, rate_limiter=None):
        verifier = EntryVerifier(repo, solana=solana, clock=lambda: NOW)
        return EntryService(repo, verifier, WinnerSelector(repo), rate_limiter=rate_limiter, clock=lambda: NOW)

    return _make


def test_submit_creates_and_verifies(service, repo, make_event):
    event = make_event(requirements=(SolanaTokenBalance(mint="MINT", min_amount=5),))
    svc = service(solana=FakeSolana(balances={"MINT": 10}))

    result = svc.submit_entry(event.id, wallet(1), discord_user_id="  ")

    assert result.entry.status is EntryStatus.VALID
    assert result.entry.discord_user_id is None
    assert not result.fcfs_assigned


def test_second_entry_for_same_wallet_is_rejected(service, repo, make_event):
    event = make_event()
    svc = service()
    svc.submit_entry(event.id, wallet(1))

    with pytest.raises(ValidationError) as exc:
        svc.submit_entry(event.id, wallet(1))

    assert exc.value.code == "DUPLICATE_ENTRY"
    assert len(repo.find_entries_by_event(event.id)) == 1


def test_submit_rejects_bad_input_before_side_effects(service, repo, make_event):
    svc = service()
    closed = make_event(status=EventStatus.CLOSED)
    ended = make_event(end_at=NOW - timedelta(minutes=1))

    with pytest.raises(ValidationError) as exc:
        svc.submit_entry(closed.id, "not-a-wallet")
    assert exc.value.code == "INVALID_WALLET"
    with pytest.raises(NotFoundError):
        svc.submit_entry("nope", wallet(1))
    for event in (closed, ended):
        with pytest.raises(ValidationError) as exc:
            svc.submit_entry(event.id, wallet(1))
        assert exc.value.code == "EVENT_INACTIVE"
    assert repo.entries == {}


def test_fcfs_submission_assigns_winner_while_spots_last(service, repo, make_event):
    event = make_event(max_winners=2, reserved_spots=1, selection_mode=SelectionMode.FCFS)
    svc = service()

    first = svc.submit_entry(event.id, wallet(1))
    second = svc.submit_entry(event.id, wallet(2))

    assert first.fcfs_assigned and first.winner.picked_by == SYSTEM_FCFS
    assert not second.fcfs_assigned
    assert second.entry.status is EntryStatus.VALID
    assert repo.count_winners(event.id) == 1


def test_invalid_fcfs_entry_gets_no_spot(service, repo, make_event):
    event = make_event(
        selection_mode=SelectionMode.FCFS,
        requirements=(SolanaTokenBalance(mint="MINT", min_amount=5),),
    )
    svc = service(solana=FakeSolana(balances={"MINT": 1}))

    result = svc.submit_entry(event.id, wallet(1))

    assert result.entry.status is EntryStatus.INVALID
    assert result.winner is None


def test_marking_eligible_again_deletes_winner(service, repo, make_event, make_entry):
    event = make_event(max_winners=3)
    entry = make_entry(event, 1)
    svc = service()
    svc.pick_winners(event.id, "admin-1", [entry.id])

    svc.set_ineligible(entry.id, True, "same person as entry 2")
    assert repo.count_winners(event.id) == 1
    updated = svc.set_ineligible(entry.id, False)

    assert not updated.is_ineligible
    assert updated.ineligibility_reason is None
    assert repo.count_winners(event.id) == 0


def test_ineligible_entries_are_not_drawn(service, repo, make_event, make_entry):
    event = make_event(max_winners=3)
    flagged = make_entry(event, 1)
    clean = make_entry(event, 2)
    svc = service()
    svc.set_ineligible(flagged.id, True, "sybil")

    result = svc.draw_winners(event.id, "admin-1")

    assert [w.entry_id for w in result.winners] == [clean.id]


def test_ineligible_needs_a_reason(service, make_event, make_entry):
    entry = make_entry(make_event(), 1)
    svc = service()

    with pytest.raises(ValidationError):
        svc.set_ineligible(entry.id, True)
    with pytest.raises(ValidationError):
        svc.set_ineligible(entry.id, True, "x" * 501)


def test_submissions_are_rate_limited(service, make_event):
    event = make_event()
    limiter = RateLimiter(InMemoryRateLimitStore(), max_attempts=2, window_s=60, clock=lambda: 1000.0)
    svc = service(rate_limiter=limiter)

    svc.submit_entry(event.id, wallet(1), client_key="1.2.3.4")
    svc.submit_entry(event.id, wallet(2), client_key="1.2.3.4")
    with pytest.raises(RateLimitedError) as exc:
        svc.submit_entry(event.id, wallet(3), client_key="1.2.3.4")

    assert exc.value.details["retryAfter"] == 60
    svc.submit_entry(event.id, wallet(4), client_key="5.6.7.8")
