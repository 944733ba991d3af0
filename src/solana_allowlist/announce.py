from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Sequence

import httpx

from .errors import ExternalDependencyError, ValidationError
from .models import Entry, Event, Winner

log = logging.getLogger(__name__)

EMBED_COLOR = 0x14F195
MAX_LISTED_WINNERS = 25


@dataclass(frozen=True)
class Announcement:
    message_id: str
    url: str


class AnnouncementSink(Protocol):
    def announce_winners(
        self, event: Event, winners: Sequence[Winner], entries: Sequence[Entry]
    ) -> Announcement:
        ...


def short_wallet(address: str) -> str:
    if len(address) <= 10:
        return address
    return f"{address[:4]}...{address[-4:]}"


def build_winner_embed(event: Event, entries: Sequence[Entry], prize: Optional[str] = None) -> Dict[str, Any]:
    lines: List[str] = []
    for i, e in enumerate(entries[:MAX_LISTED_WINNERS], start=1):
        who = f"<@{e.discord_user_id}>" if e.discord_user_id else "`" + short_wallet(e.wallet_address) + "`"
        lines.append(f"{i}. {who}")
    if len(entries) > MAX_LISTED_WINNERS:
        lines.append(f"...and {len(entries) - MAX_LISTED_WINNERS} more")

    fields = [
        {"name": "Type", "value": event.type.value.title(), "inline": True},
        {"name": "Selection", "value": event.selection_mode.value.title(), "inline": True},
    ]
    if prize:
        fields.append({"name": "Prize", "value": prize, "inline": False})
    return {
        "title": f"Winners: {event.title or 'Event'}",
        "description": "\n".join(lines),
        "color": EMBED_COLOR,
        "fields": fields,
    }


class BotApiAnnouncer:
    """Posts winner embeds through the Discord bot's HTTP API."""

    def __init__(
        self,
        bot_api_url: str,
        channel_id: Optional[str],
        timeout_s: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.bot_api_url = bot_api_url.rstrip("/")
        self.channel_id = channel_id
        self.client = httpx.Client(timeout=timeout_s, transport=transport)

    def close(self) -> None:
        self.client.close()

    def announce_winners(
        self, event: Event, winners: Sequence[Winner], entries: Sequence[Entry]
    ) -> Announcement:
        if not winners:
            raise ValidationError("No winners to announce", code="NO_WINNERS")
        if not event.guild_id:
            raise ValidationError("Discord guild ID not provided", code="GUILD_NOT_CONFIGURED")
        if not self.channel_id:
            raise ValidationError("Discord channel ID not provided", code="CHANNEL_NOT_CONFIGURED")

        payload = {
            "guildId": event.guild_id,
            "channelId": self.channel_id,
            "embed": build_winner_embed(event, entries),
        }
        log.info("Announcing %d winner(s) for event %s", len(winners), event.id)
        try:
            resp = self.client.post(f"{self.bot_api_url}/announce-winners", json=payload)
        except httpx.HTTPError as e:
            raise ExternalDependencyError(
                f"Failed to announce winners to Discord: {e}", code="ANNOUNCE_FAILED"
            ) from e
        if resp.status_code >= 400:
            try:
                body = resp.json()
            except ValueError:
                body = {}
            reason = body.get("error") or body.get("message") or f"Bot API returned {resp.status_code}"
            raise ExternalDependencyError(
                f"Failed to announce winners to Discord: {reason}", code="ANNOUNCE_FAILED"
            )
        data = resp.json()
        return Announcement(message_id=str(data.get("messageId", "")), url=str(data.get("url", "")))
