from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional, Union

import httpx

from .facts import FactsFailure, GuildMembership, GuildRole
from .models import parse_timestamp
from .project_constants import (
    DEFAULT_DISCORD_API_BASE,
    DEFAULT_FACTS_MAX_RETRIES,
    DEFAULT_FACTS_TIMEOUT_S,
)

log = logging.getLogger(__name__)

CREDENTIAL_UNAVAILABLE = "token/credential unavailable"


class DiscordClient:
    """
    Discord REST facts provider.

    Guild member lookups use the bot token (Authorization: Bot ...). A user's
    OAuth access token is accepted as a fallback credential and sent as
    Bearer to the member endpoint of the current user.
    """

    def __init__(
        self,
        bot_token: Optional[str],
        api_base: str = DEFAULT_DISCORD_API_BASE,
        timeout_s: float = DEFAULT_FACTS_TIMEOUT_S,
        max_retries: int = DEFAULT_FACTS_MAX_RETRIES,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.bot_token = bot_token
        self.api_base = api_base.rstrip("/")
        self.max_retries = max_retries
        self.client = httpx.Client(timeout=timeout_s, transport=transport)

    def close(self) -> None:
        self.client.close()

    def _get(self, path: str, auth: str) -> httpx.Response:
        attempt = 0
        while True:
            try:
                resp = self.client.get(f"{self.api_base}{path}", headers={"Authorization": auth})
            except httpx.TransportError:
                if attempt >= self.max_retries:
                    raise
                attempt += 1
                time.sleep(0.25 * attempt)
                continue
            if resp.status_code == 429 and attempt < self.max_retries:
                attempt += 1
                retry_after = float(resp.headers.get("Retry-After", "1") or 1)
                time.sleep(min(retry_after, 5.0))
                continue
            return resp

    def get_guild_membership(
        self,
        guild_id: str,
        user_id: str,
        access_token: Optional[str] = None,
    ) -> Union[GuildMembership, FactsFailure]:
        if self.bot_token:
            path, auth = f"/guilds/{guild_id}/members/{user_id}", f"Bot {self.bot_token}"
        elif access_token:
            path, auth = f"/users/@me/guilds/{guild_id}/member", f"Bearer {access_token}"
        else:
            return FactsFailure("Discord", CREDENTIAL_UNAVAILABLE)

        try:
            resp = self._get(path, auth)
        except httpx.HTTPError as e:
            log.warning("Discord member lookup failed for guild %s: %s", guild_id, e)
            return FactsFailure("Discord", f"Discord verification error: {e}", retryable=True)

        # Unknown Member: the user simply is not in the guild
        if resp.status_code == 404:
            return GuildMembership(is_member=False)
        if resp.status_code in (401, 403):
            return FactsFailure("Discord", CREDENTIAL_UNAVAILABLE)
        if resp.status_code >= 400:
            return FactsFailure(
                "Discord", f"Discord API returned {resp.status_code}", retryable=resp.status_code >= 500
            )

        member: Dict[str, Any] = resp.json()
        return GuildMembership(
            is_member=True,
            roles=tuple(str(r) for r in member.get("roles", [])),
            joined_at=parse_timestamp(member.get("joined_at")),
        )

    def get_guild_roles(
        self,
        guild_id: str,
        bot_token: Optional[str] = None,
    ) -> Union[List[GuildRole], FactsFailure]:
        token = bot_token or self.bot_token
        if not token:
            return FactsFailure("Discord", CREDENTIAL_UNAVAILABLE)
        try:
            resp = self._get(f"/guilds/{guild_id}/roles", f"Bot {token}")
        except httpx.HTTPError as e:
            return FactsFailure("Discord", f"Discord verification error: {e}", retryable=True)
        if resp.status_code >= 400:
            return FactsFailure("Discord", f"Discord API returned {resp.status_code}")
        return [
            GuildRole(id=str(r["id"]), name=str(r.get("name", "")))
            for r in resp.json()
            if r.get("name") != "@everyone"
        ]
