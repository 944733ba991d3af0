from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from .errors import ValidationError

log = logging.getLogger(__name__)


class EventType(str, Enum):
    WHITELIST = "WHITELIST"
    PRESALE = "PRESALE"
    COLLABORATION = "COLLABORATION"
    GIVEAWAY = "GIVEAWAY"


class EventStatus(str, Enum):
    DRAFT = "DRAFT"
    ACTIVE = "ACTIVE"
    CLOSED = "CLOSED"


class SelectionMode(str, Enum):
    RANDOM = "RANDOM"
    MANUAL = "MANUAL"
    FCFS = "FCFS"


class EntryStatus(str, Enum):
    PENDING = "PENDING"
    VALID = "VALID"
    INVALID = "INVALID"


class Domain(str, Enum):
    DISCORD = "DISCORD"
    SOLANA = "SOLANA"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Union[str, datetime, None]) -> Optional[datetime]:
    """ISO-8601 (with or without trailing Z) to an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


# -----------------------------------------------------------------------------
# Requirements: one variant per type, each with its own config shape
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class DiscordMemberRequired:
    id: str = ""
    event_id: str = ""
    type = "DISCORD_MEMBER_REQUIRED"
    domain = Domain.DISCORD


@dataclass(frozen=True)
class DiscordRoleRequired:
    role_ids: Tuple[str, ...] = ()
    id: str = ""
    event_id: str = ""
    type = "DISCORD_ROLE_REQUIRED"
    domain = Domain.DISCORD


@dataclass(frozen=True)
class DiscordAccountAge:
    min_days: Optional[int] = None
    id: str = ""
    event_id: str = ""
    type = "DISCORD_ACCOUNT_AGE"
    domain = Domain.DISCORD


@dataclass(frozen=True)
class DiscordServerJoinAge:
    min_days: Optional[int] = None
    id: str = ""
    event_id: str = ""
    type = "DISCORD_SERVER_JOIN_AGE"
    domain = Domain.DISCORD


@dataclass(frozen=True)
class SolanaTokenBalance:
    mint: str = ""
    min_amount: Optional[float] = None
    id: str = ""
    event_id: str = ""
    type = "SOLANA_TOKEN_BALANCE"
    domain = Domain.SOLANA


@dataclass(frozen=True)
class SolanaNftOwnership:
    collection_mint: str = ""
    min_count: Optional[int] = 1
    id: str = ""
    event_id: str = ""
    type = "SOLANA_NFT_OWNERSHIP"
    domain = Domain.SOLANA


@dataclass(frozen=True)
class UnknownRequirement:
    """A requirement tag this version does not understand; skipped, never failed."""

    raw_type: str = ""
    raw_config: Dict[str, Any] = field(default_factory=dict)
    id: str = ""
    event_id: str = ""
    domain = None

    @property
    def type(self) -> str:
        return self.raw_type


Requirement = Union[
    DiscordMemberRequired,
    DiscordRoleRequired,
    DiscordAccountAge,
    DiscordServerJoinAge,
    SolanaTokenBalance,
    SolanaNftOwnership,
    UnknownRequirement,
]

# Older stored rows use these tags
_TYPE_ALIASES = {
    "DISCORD_ACCOUNT_AGE_DAYS": "DISCORD_ACCOUNT_AGE",
    "DISCORD_ACCOUNT_AGE_REQUIRED": "DISCORD_ACCOUNT_AGE",
    "DISCORD_SERVER_JOIN_AGE_DAYS": "DISCORD_SERVER_JOIN_AGE",
    "DISCORD_SERVER_JOIN_AGE_REQUIRED": "DISCORD_SERVER_JOIN_AGE",
    "SOLANA_TOKEN_HOLDING": "SOLANA_TOKEN_BALANCE",
    "SOLANA_TOKEN_HOLDING_REQUIRED": "SOLANA_TOKEN_BALANCE",
    "SOLANA_NFT_HOLDING_REQUIRED": "SOLANA_NFT_OWNERSHIP",
}


def _opt_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _opt_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _role_ids(config: Dict[str, Any]) -> Tuple[str, ...]:
    raw = config.get("roleIds")
    if raw is None and config.get("roleId"):
        raw = [config["roleId"]]
    if not isinstance(raw, (list, tuple)):
        return ()
    return tuple(str(r).strip() for r in raw if str(r).strip())


def parse_requirement(raw: Dict[str, Any]) -> Requirement:
    """
    Converts a stored {id, eventId, type, config} row into its variant.

    Bad config is kept (e.g. role_ids=() or min_days=None) so the evaluator
    can fail it closed with a reason; nothing here raises for bad config.
    """
    req_type = str(raw.get("type", "")).strip()
    req_type = _TYPE_ALIASES.get(req_type, req_type)
    config = raw.get("config") or {}
    if not isinstance(config, dict):
        config = {}
    ident = dict(id=str(raw.get("id", "")), event_id=str(raw.get("eventId", "")))

    if req_type == "DISCORD_MEMBER_REQUIRED":
        return DiscordMemberRequired(**ident)
    if req_type == "DISCORD_ROLE_REQUIRED":
        return DiscordRoleRequired(role_ids=_role_ids(config), **ident)
    if req_type == "DISCORD_ACCOUNT_AGE":
        return DiscordAccountAge(min_days=_opt_int(config.get("minDays")), **ident)
    if req_type == "DISCORD_SERVER_JOIN_AGE":
        return DiscordServerJoinAge(min_days=_opt_int(config.get("minDays")), **ident)
    if req_type == "SOLANA_TOKEN_BALANCE":
        return SolanaTokenBalance(
            mint=str(config.get("mint") or "").strip(),
            min_amount=_opt_float(config.get("minAmount")),
            **ident,
        )
    if req_type == "SOLANA_NFT_OWNERSHIP":
        collection = config.get("collectionMint") or config.get("collection") or ""
        min_count = config.get("minCount", 1)
        return SolanaNftOwnership(
            collection_mint=str(collection).strip(),
            min_count=_opt_int(min_count),
            **ident,
        )

    log.warning("Unknown requirement type %r (id=%s); it will be ignored", req_type, ident["id"])
    return UnknownRequirement(raw_type=req_type, raw_config=dict(config), **ident)


# -----------------------------------------------------------------------------
# Events, entries, winners
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class Event:
    id: str
    type: EventType = EventType.GIVEAWAY
    status: EventStatus = EventStatus.ACTIVE
    selection_mode: SelectionMode = SelectionMode.RANDOM
    max_winners: int = 1
    reserved_spots: int = 0
    end_at: Optional[datetime] = None
    community_id: str = ""
    guild_id: Optional[str] = None
    title: str = ""
    requirements: Tuple[Requirement, ...] = ()

    def __post_init__(self) -> None:
        if self.max_winners < 1:
            raise ValidationError(
                f"Event {self.id}: maxWinners must be at least 1 (got {self.max_winners}).",
                code="INVALID_EVENT",
            )
        if self.reserved_spots < 0:
            raise ValidationError(
                f"Event {self.id}: reservedSpots cannot be negative.",
                code="INVALID_EVENT",
            )
        if self.reserved_spots > self.max_winners:
            raise ValidationError(
                f"Event {self.id}: reservedSpots ({self.reserved_spots}) exceeds "
                f"maxWinners ({self.max_winners}).",
                code="INVALID_EVENT",
            )

    @property
    def capacity(self) -> int:
        """Winner spots open to the draw pool."""
        return self.max_winners - self.reserved_spots

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "Event":
        return Event(
            id=str(data["id"]),
            type=EventType(data.get("type", "GIVEAWAY")),
            status=EventStatus(data.get("status", "ACTIVE")),
            selection_mode=SelectionMode(data.get("selectionMode", "RANDOM")),
            max_winners=int(data.get("maxWinners") or 1),
            reserved_spots=int(data.get("reservedSpots") or 0),
            end_at=parse_timestamp(data.get("endAt")),
            community_id=str(data.get("communityId", "")),
            guild_id=data.get("guildId") or None,
            title=str(data.get("title", "")),
            requirements=tuple(
                parse_requirement({"eventId": data["id"], **r})
                for r in data.get("requirements", [])
            ),
        )


@dataclass(frozen=True)
class Entry:
    id: str
    event_id: str
    wallet_address: str
    discord_user_id: Optional[str] = None
    status: EntryStatus = EntryStatus.PENDING
    is_ineligible: bool = False
    ineligibility_reason: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def is_selectable(self) -> bool:
        return self.status is EntryStatus.VALID and not self.is_ineligible

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "Entry":
        created = parse_timestamp(data.get("createdAt")) or utcnow()
        return Entry(
            id=str(data["id"]),
            event_id=str(data["eventId"]),
            wallet_address=str(data["walletAddress"]),
            discord_user_id=data.get("discordUserId") or None,
            status=EntryStatus(data.get("status", "PENDING")),
            is_ineligible=bool(data.get("isIneligible", False)),
            ineligibility_reason=data.get("ineligibilityReason") or None,
            created_at=created,
            updated_at=parse_timestamp(data.get("updatedAt")) or created,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "eventId": self.event_id,
            "walletAddress": self.wallet_address,
            "discordUserId": self.discord_user_id,
            "status": self.status.value,
            "isIneligible": self.is_ineligible,
            "ineligibilityReason": self.ineligibility_reason,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }


@dataclass(frozen=True)
class Winner:
    id: str
    event_id: str
    entry_id: str
    picked_by: str
    picked_at: datetime = field(default_factory=utcnow)

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "Winner":
        return Winner(
            id=str(data["id"]),
            event_id=str(data["eventId"]),
            entry_id=str(data["entryId"]),
            picked_by=str(data.get("pickedBy", "")),
            picked_at=parse_timestamp(data.get("pickedAt")) or utcnow(),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "eventId": self.event_id,
            "entryId": self.entry_id,
            "pickedBy": self.picked_by,
            "pickedAt": self.picked_at.isoformat(),
        }


# -----------------------------------------------------------------------------
# Verification results
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class RequirementResult:
    requirement_id: str
    type: str
    valid: bool
    reason: Optional[str] = None


@dataclass(frozen=True)
class VerificationOutcome:
    entry_id: str
    valid: bool
    status: EntryStatus
    results: List[RequirementResult] = field(default_factory=list)

    @property
    def reasons(self) -> List[str]:
        return [r.reason for r in self.results if not r.valid and r.reason]
