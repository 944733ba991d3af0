import pytest

from conftest import wallet
from solana_allowlist.errors import RateLimitedError, ValidationError
from solana_allowlist.ratelimit import InMemoryRateLimitStore, RateLimiter
from solana_allowlist.wallets import is_valid_wallet_address, validate_wallet_address


class Clock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


def test_window_resets_after_expiry():
    clock = Clock(100.0)
    limiter = RateLimiter(InMemoryRateLimitStore(), max_attempts=3, window_s=10, clock=clock)

    assert [limiter.check("k") for _ in range(3)] == [2, 1, 0]
    clock.now = 104.2
    with pytest.raises(RateLimitedError) as exc:
        limiter.check("k")
    assert exc.value.details["retryAfter"] == 6
    assert exc.value.to_payload()["error"] == "ValidationError"

    clock.now = 110.0
    assert limiter.remaining("k") == 3
    assert limiter.check("k") == 2


def test_reset_clears_a_key():
    store = InMemoryRateLimitStore()
    limiter = RateLimiter(store, max_attempts=1, window_s=60, clock=Clock())
    limiter.check("k")
    store.reset("k")

    assert limiter.check("k") == 0


def test_wallet_validation():
    assert is_valid_wallet_address(wallet(3))
    assert not is_valid_wallet_address("0OIl")
    assert not is_valid_wallet_address("1111")
    assert validate_wallet_address(f"  {wallet(3)} ") == wallet(3)
    with pytest.raises(ValidationError):
        validate_wallet_address("")
