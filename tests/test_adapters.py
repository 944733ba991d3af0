import base64
import json
import struct

import base58
import httpx
import pytest

from conftest import GUILD, wallet
from solana_allowlist.announce import BotApiAnnouncer, build_winner_embed, short_wallet
from solana_allowlist.discord import DiscordClient
from solana_allowlist.errors import ExternalDependencyError, ValidationError
from solana_allowlist.facts import FactsFailure, GuildMembership
from solana_allowlist.models import Entry, Event, Winner
from solana_allowlist.rpc import RpcClient

OWNER = wallet(1)
MINT = wallet(200)
OTHER_MINT = wallet(201)


def token_account(mint: str, owner: str, amount: int) -> str:
    raw = base58.b58decode(mint) + base58.b58decode(owner) + struct.pack("<Q", amount) + bytes(93)
    return base64.b64encode(raw).decode("ascii")


def mint_account(decimals: int) -> str:
    raw = bytearray(82)
    raw[44] = decimals
    return base64.b64encode(bytes(raw)).decode("ascii")


def rpc_handler(results, seen=None):
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        if seen is not None:
            seen.append(body)
        result = results[body["method"]]
        if callable(result):
            result = result(body)
        if isinstance(result, httpx.Response):
            return result
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, **result})

    return handler


def rpc_client(results, seen=None, **kw):
    return RpcClient("https://rpc.test", max_retries=kw.pop("max_retries", 0),
                     transport=httpx.MockTransport(rpc_handler(results, seen)), **kw)


def test_token_balance_sums_matching_accounts():
    accounts = [
        token_account(MINT, OWNER, 2_000_000),
        token_account(MINT, OWNER, 500_000),
        token_account(OTHER_MINT, OWNER, 9_000_000),
    ]
    client = rpc_client({
        "getTokenAccountsByOwner": {"result": {"value": [{"account": {"data": [a, "base64"]}} for a in accounts]}},
        "getAccountInfo": {"result": {"value": {"data": [mint_account(6), "base64"]}}},
    })

    assert client.get_token_balance(OWNER, MINT) == 2.5


def test_token_balance_zero_skips_mint_lookup():
    seen = []
    client = rpc_client({"getTokenAccountsByOwner": {"result": {"value": []}}}, seen)

    assert client.get_token_balance(OWNER, MINT) == 0.0
    assert [b["method"] for b in seen] == ["getTokenAccountsByOwner"]


def test_rpc_error_becomes_facts_failure():
    client = rpc_client({"getTokenAccountsByOwner": {"error": {"code": -32602, "message": "Invalid param"}}})

    res = client.get_token_balance(OWNER, MINT)

    assert isinstance(res, FactsFailure)
    assert res.source == "Solana"
    assert "Invalid param" in res.reason


def test_missing_rpc_url_fails_closed():
    res = RpcClient(None).get_nft_ownership_count(OWNER, MINT)
    assert isinstance(res, FactsFailure)


def test_retries_server_errors(monkeypatch):
    monkeypatch.setattr("solana_allowlist.rpc.time.sleep", lambda s: None)
    calls = []

    def flaky(body):
        calls.append(body)
        if len(calls) == 1:
            return httpx.Response(503)
        return {"result": {"items": [{"id": "a"}, {"id": "b"}]}}

    client = rpc_client({"searchAssets": flaky}, max_retries=1)

    assert client.get_nft_ownership_count(OWNER, MINT) == 2
    assert len(calls) == 2


def test_nft_count_uses_collection_grouping():
    seen = []
    client = rpc_client({"searchAssets": {"result": {"items": [{"id": "a"}]}}}, seen)

    assert client.get_nft_ownership_count(OWNER, MINT) == 1
    assert seen[0]["params"]["grouping"] == ["collection", MINT]
    assert seen[0]["params"]["ownerAddress"] == OWNER


def discord_client(handler, bot_token="bot-secret"):
    return DiscordClient(bot_token, api_base="https://discord.test/api", max_retries=0,
                         transport=httpx.MockTransport(handler))


def test_guild_member_found():
    def handler(request):
        assert request.headers["Authorization"] == "Bot bot-secret"
        assert request.url.path == f"/api/guilds/{GUILD}/members/42"
        return httpx.Response(200, json={"roles": ["1", "2"], "joined_at": "2025-12-01T10:00:00.000000+00:00"})

    res = discord_client(handler).get_guild_membership(GUILD, "42")

    assert isinstance(res, GuildMembership)
    assert res.is_member
    assert res.roles == ("1", "2")
    assert res.joined_at.year == 2025


def test_guild_member_unknown_is_not_a_failure():
    res = discord_client(lambda r: httpx.Response(404, json={"code": 10007})).get_guild_membership(GUILD, "42")
    assert res == GuildMembership(is_member=False)


def test_access_token_fallback_and_missing_credentials():
    def handler(request):
        assert request.headers["Authorization"] == "Bearer user-token"
        assert request.url.path == f"/api/users/@me/guilds/{GUILD}/member"
        return httpx.Response(200, json={"roles": []})

    client = discord_client(handler, bot_token=None)

    assert client.get_guild_membership(GUILD, "42", access_token="user-token").is_member
    assert isinstance(client.get_guild_membership(GUILD, "42"), FactsFailure)


@pytest.mark.parametrize("status", [401, 403, 500])
def test_discord_errors_fail_closed(status):
    res = discord_client(lambda r: httpx.Response(status)).get_guild_membership(GUILD, "42")
    assert isinstance(res, FactsFailure)


def test_guild_roles_skip_everyone():
    roles = [{"id": GUILD, "name": "@everyone"}, {"id": "7", "name": "OG"}]
    res = discord_client(lambda r: httpx.Response(200, json=roles)).get_guild_roles(GUILD)
    assert [(r.id, r.name) for r in res] == [("7", "OG")]


def sample_event(**kw):
    kw.setdefault("guild_id", GUILD)
    return Event(id="evt1", title="Mint Pass", max_winners=2, **kw)


def sample_winners():
    entries = [
        Entry(id="e1", event_id="evt1", wallet_address=wallet(1), discord_user_id="42"),
        Entry(id="e2", event_id="evt1", wallet_address=wallet(2)),
    ]
    winners = [Winner(id=f"w{i}", event_id="evt1", entry_id=e.id, picked_by="admin") for i, e in enumerate(entries)]
    return winners, entries


def test_embed_lists_mentions_and_short_wallets():
    _, entries = sample_winners()

    embed = build_winner_embed(sample_event(), entries)

    assert embed["title"] == "Winners: Mint Pass"
    assert "1. <@42>" in embed["description"]
    assert short_wallet(wallet(2)) in embed["description"]


def test_announcer_posts_to_bot_api():
    seen = []

    def handler(request):
        seen.append(json.loads(request.content))
        return httpx.Response(200, json={"messageId": "m9", "url": "https://discord.com/channels/x/y/m9"})

    announcer = BotApiAnnouncer("https://bot.test/", "chan-1", transport=httpx.MockTransport(handler))
    winners, entries = sample_winners()

    res = announcer.announce_winners(sample_event(), winners, entries)

    assert res.message_id == "m9"
    assert seen[0]["channelId"] == "chan-1"
    assert seen[0]["guildId"] == GUILD


def test_announcer_validation_and_failures():
    winners, entries = sample_winners()
    ok = httpx.MockTransport(lambda r: httpx.Response(200, json={}))

    with pytest.raises(ValidationError):
        BotApiAnnouncer("https://bot.test", "c", transport=ok).announce_winners(sample_event(), [], [])
    with pytest.raises(ValidationError):
        BotApiAnnouncer("https://bot.test", None, transport=ok).announce_winners(sample_event(), winners, entries)
    with pytest.raises(ValidationError):
        BotApiAnnouncer("https://bot.test", "c", transport=ok).announce_winners(
            sample_event(guild_id=None), winners, entries
        )

    down = httpx.MockTransport(lambda r: httpx.Response(502, json={"error": "Bot is not ready"}))
    with pytest.raises(ExternalDependencyError) as exc:
        BotApiAnnouncer("https://bot.test", "c", transport=down).announce_winners(sample_event(), winners, entries)
    assert "Bot is not ready" in exc.value.message
