import pytest

from solana_allowlist.config import Settings
from solana_allowlist.errors import ValidationError

ENV_VARS = [
    "RPC_URL",
    "HELIUS_API_KEY",
    "DISCORD_BOT_TOKEN",
    "DISCORD_API_BASE",
    "DISCORD_BOT_API_URL",
    "DISCORD_WINNER_CHANNEL_ID",
    "FACTS_TIMEOUT_S",
    "FACTS_MAX_RETRIES",
    "DUPLICATE_DISCORD_REUSE_POINTS",
    "DUPLICATE_TIMING_WINDOW_S",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults_without_environment():
    s = Settings.from_env()

    assert s.rpc_url is None
    assert s.discord_bot_token is None
    assert s.facts_timeout_s == 10.0
    assert s.duplicate_policy.discord_reuse_points == 40


def test_helius_key_builds_rpc_url(monkeypatch):
    monkeypatch.setenv("HELIUS_API_KEY", "abc123")
    assert Settings.from_env().rpc_url == "https://mainnet.helius-rpc.com/?api-key=abc123"

    monkeypatch.setenv("RPC_URL", "https://rpc.example")
    assert Settings.from_env().rpc_url == "https://rpc.example"
    assert Settings.from_env(rpc_url_override="https://cli.example").rpc_url == "https://cli.example"


def test_numeric_overrides(monkeypatch):
    monkeypatch.setenv("FACTS_TIMEOUT_S", "2.5")
    monkeypatch.setenv("FACTS_MAX_RETRIES", "0")
    monkeypatch.setenv("DUPLICATE_DISCORD_REUSE_POINTS", "55")
    monkeypatch.setenv("DUPLICATE_TIMING_WINDOW_S", "120")

    s = Settings.from_env()

    assert s.facts_timeout_s == 2.5
    assert s.facts_max_retries == 0
    assert s.duplicate_policy.discord_reuse_points == 55
    assert s.duplicate_policy.timing_window_s == 120
    assert Settings.from_env(timeout_override=1.0).facts_timeout_s == 1.0


@pytest.mark.parametrize("value", ["soon", "-1"])
def test_bad_numbers_are_rejected(monkeypatch, value):
    monkeypatch.setenv("FACTS_TIMEOUT_S", value)

    with pytest.raises(ValidationError) as exc:
        Settings.from_env()
    assert exc.value.code == "INVALID_SETTING"
