from __future__ import annotations

import argparse
import json
import logging
from datetime import datetime, timezone

from .announce import BotApiAnnouncer
from .audit import build_audit, verify_audit, write_audit
from .config import Settings
from .discord import DiscordClient
from .duplicates import DuplicateDetector
from .errors import AllowlistError, ValidationError, error_payload
from .models import EntryStatus
from .repository import read_snapshot, repository_from_snapshot, save_snapshot
from .requirements import discord_account_age_days, snowflake_created_at
from .rpc import RpcClient
from .selection import WinnerSelector
from .service import EntryService
from .verifier import EntryVerifier


def setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")


def _settings(args: argparse.Namespace) -> Settings:
    return Settings.from_env(rpc_url_override=args.rpc_url, timeout_override=args.timeout)


def cmd_verify(args: argparse.Namespace) -> int:
    settings = _settings(args)
    log = logging.getLogger("verify")
    raw = read_snapshot(args.state)
    repo = repository_from_snapshot(raw)

    discord = DiscordClient(
        settings.discord_bot_token,
        api_base=settings.discord_api_base,
        timeout_s=settings.facts_timeout_s,
        max_retries=settings.facts_max_retries,
    )
    rpc = RpcClient(settings.rpc_url, timeout_s=settings.facts_timeout_s, max_retries=settings.facts_max_retries)
    try:
        verifier = EntryVerifier(repo, discord=discord, solana=rpc, timeout_s=settings.facts_timeout_s)
        service = EntryService(repo, verifier, WinnerSelector(repo))
        event = repo.get_event(args.event)
        targets = [
            e
            for e in repo.find_entries_by_event(event.id)
            if args.all or e.status is EntryStatus.PENDING
        ]
        log.info("Verifying %d entries of event %s", len(targets), event.id)
        counts = {s: 0 for s in EntryStatus}
        for entry in targets:
            try:
                result = service.reverify_entry(entry.id)
            except AllowlistError as e:
                log.warning("Entry %s left PENDING: %s", entry.id, e)
                counts[EntryStatus.PENDING] += 1
                continue
            counts[result.outcome.status] += 1
            for r in result.outcome.results:
                if not r.valid:
                    log.debug("  %s %s: %s", entry.id, r.type, r.reason)
    finally:
        discord.close()
        rpc.close()

    save_snapshot(args.state, repo, raw.get("events", []))
    print(f"VALID   : {counts[EntryStatus.VALID]}")
    print(f"INVALID : {counts[EntryStatus.INVALID]}")
    print(f"PENDING : {counts[EntryStatus.PENDING]}")
    return 0


def cmd_draw(args: argparse.Namespace) -> int:
    settings = _settings(args)
    raw = read_snapshot(args.state)
    repo = repository_from_snapshot(raw)

    announcer = None
    if args.announce:
        announcer = BotApiAnnouncer(settings.bot_api_url, settings.winner_channel_id, settings.facts_timeout_s)
    try:
        selector = WinnerSelector(repo, announcer=announcer)
        service = EntryService(repo, EntryVerifier(repo), selector)
        if args.entry:
            result = service.pick_winners(args.event, args.picked_by, args.entry)
        else:
            result = service.draw_winners(
                args.event,
                args.picked_by,
                count=args.count,
                exclude_entry_ids=args.exclude or (),
                seed=args.seed,
            )
    finally:
        if announcer is not None:
            announcer.close()

    save_snapshot(args.state, repo, raw.get("events", []))

    print("========================================")
    print("WINNER DRAW")
    print("========================================")
    print(f"Event         : {args.event}")
    print(f"Eligible pool : {result.pool_size}")
    print(f"Winners       : {len(result.winners)}")
    print(f"Spots left    : {result.remaining_spots}")
    for w in result.winners:
        entry = repo.get_entry(w.entry_id)
        print(f"  {entry.wallet_address}  (entry {entry.id})")

    if args.seed is not None and not args.entry:
        audit = build_audit(repo.get_event(args.event), result, args.seed)
        write_audit(args.out, audit)
        print("----------------------------------------")
        print(f"Seed SHA-256  : {result.seed_hash_hex}")
        print(f"Wrote audit   : {args.out}")
    return 0


def cmd_audit(args: argparse.Namespace) -> int:
    result = verify_audit(args.audit)
    print("AUDIT VERIFIED")
    print(f"Event         : {result['event_id']}")
    print(f"Pool size     : {result['pool_size']}")
    print(f"Seed SHA-256  : {result['seed_hash_hex']}")
    for entry_id in result["winners"]:
        print(f"  winner entry {entry_id}")
    return 0


def cmd_duplicates(args: argparse.Namespace) -> int:
    settings = _settings(args)
    repo = repository_from_snapshot(read_snapshot(args.state))
    analyses = DuplicateDetector(repo, settings.duplicate_policy).analyze(args.event)
    if args.json:
        print(json.dumps([a.to_dict() for a in analyses], indent=2))
        return 0
    flagged = [a for a in analyses if a.is_potential_duplicate]
    print(f"Entries analysed : {len(analyses)}")
    print(f"Flagged          : {len(flagged)}")
    for a in flagged:
        kinds = ", ".join(s.type.value for s in a.signals)
        print(f"  {a.entry_id}  risk={a.risk_score:3d}  {kinds}")
    return 0


def cmd_account_age(args: argparse.Namespace) -> int:
    try:
        created = snowflake_created_at(args.id)
    except ValueError:
        raise ValidationError(f"Not a Discord user id: {args.id!r}", code="INVALID_SNOWFLAKE")
    age = discord_account_age_days(args.id, datetime.now(timezone.utc))
    print(f"Created (UTC) : {created.strftime('%Y-%m-%d %H:%M:%S')}")
    print(f"Age (days)    : {age}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="solana-allowlist",
        description="Entry verification and winner selection for Solana community events.",
    )
    p.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    p.add_argument("--rpc-url", default=None, help="Override RPC URL (else use env).")
    p.add_argument("--timeout", type=float, default=None, help="Per-lookup timeout seconds.")

    sub = p.add_subparsers(dest="cmd", required=True)

    v = sub.add_parser("verify", help="Verify entries of an event and store their status.")
    v.add_argument("--state", required=True, help="Path to a JSON snapshot (events/entries/winners).")
    v.add_argument("--event", required=True, help="Event id.")
    v.add_argument("--all", action="store_true", help="Re-verify every entry, not only PENDING ones.")
    v.set_defaults(func=cmd_verify)

    d = sub.add_parser("draw", help="Draw (or hand-pick) winners for an event.")
    d.add_argument("--state", required=True, help="Path to a JSON snapshot.")
    d.add_argument("--event", required=True, help="Event id.")
    d.add_argument("--picked-by", required=True, help="Admin user id recorded on the winners.")
    d.add_argument("--count", type=int, default=None, help="Winners to draw (default: all open spots).")
    d.add_argument("--exclude", action="append", help="Entry id to leave out of the pool (repeatable).")
    d.add_argument("--entry", action="append", help="Pick this entry id manually (repeatable).")
    d.add_argument(
        "--seed",
        default=None,
        help="Public seed (e.g. a finalized blockhash) for a reproducible draw.",
    )
    d.add_argument("--out", default="audit.json", help="Audit output JSON path (seeded draws).")
    d.add_argument("--announce", action="store_true", help="Announce winners through the bot API.")
    d.set_defaults(func=cmd_draw)

    a = sub.add_parser("audit", help="Re-run a seeded draw from its audit JSON.")
    a.add_argument("--audit", required=True, help="Path to audit.json.")
    a.set_defaults(func=cmd_audit)

    dup = sub.add_parser("duplicates", help="Show duplicate-entry risk signals for an event.")
    dup.add_argument("--state", required=True, help="Path to a JSON snapshot.")
    dup.add_argument("--event", required=True, help="Event id.")
    dup.add_argument("--json", action="store_true", help="Print the full analysis as JSON.")
    dup.set_defaults(func=cmd_duplicates)

    age = sub.add_parser("account-age", help="Decode a Discord snowflake's creation date.")
    age.add_argument("--id", required=True, help="Discord user id.")
    age.set_defaults(func=cmd_account_age)

    return p


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()
    setup_logging(args.verbose)
    try:
        code = args.func(args)
    except AllowlistError as e:
        print(json.dumps(error_payload(e), indent=2))
        code = 1
    raise SystemExit(code)
