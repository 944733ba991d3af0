from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

from .errors import ExternalDependencyError
from .facts import (
    DiscordFacts,
    DiscordFactsProvider,
    FactsFailure,
    GuildMembership,
    SolanaFacts,
    SolanaFactsProvider,
)
from .models import (
    DiscordAccountAge,
    Domain,
    Entry,
    EntryStatus,
    Requirement,
    RequirementResult,
    SolanaNftOwnership,
    SolanaTokenBalance,
    UnknownRequirement,
    VerificationOutcome,
)
from .project_constants import DEFAULT_FACTS_TIMEOUT_S
from .repository import Repository
from .requirements import Facts, evaluate

log = logging.getLogger(__name__)

CREDENTIAL_UNAVAILABLE = "token/credential unavailable"
INTERNAL_ERROR = "internal error"


@dataclass(frozen=True)
class _DomainFailure:
    reason: str
    # external => Discord/Solana could not be asked; user-caused gaps are not external
    external: bool = True


class EntryVerifier:
    """
    Runs every requirement of an event against one entry and persists the verdict.

    Facts are fetched once per domain through the injected providers; the
    evaluators themselves never do I/O.
    """

    def __init__(
        self,
        repository: Repository,
        discord: Optional[DiscordFactsProvider] = None,
        solana: Optional[SolanaFactsProvider] = None,
        timeout_s: float = DEFAULT_FACTS_TIMEOUT_S,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.repository = repository
        self.discord = discord
        self.solana = solana
        self.timeout_s = timeout_s
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def verify(
        self,
        entry: Entry,
        requirements: Sequence[Requirement],
        guild_id: Optional[str] = None,
        access_token: Optional[str] = None,
    ) -> VerificationOutcome:
        now = self.clock()
        by_domain: Dict[Domain, List[Requirement]] = {Domain.DISCORD: [], Domain.SOLANA: []}
        for req in requirements:
            if isinstance(req, UnknownRequirement) or req.domain is None:
                log.warning(
                    "Entry %s: ignoring unknown requirement type %s (id=%s)",
                    entry.id,
                    req.type,
                    req.id,
                )
                continue
            by_domain[req.domain].append(req)

        results: List[RequirementResult] = []
        external_failures = 0
        domains_used = 0

        for domain, reqs in by_domain.items():
            if not reqs:
                continue
            domains_used += 1
            if domain is Domain.DISCORD:
                facts = self._discord_facts(entry, reqs, guild_id, access_token)
            else:
                facts = self._solana_facts(entry, reqs)

            if isinstance(facts, _DomainFailure):
                if facts.external:
                    external_failures += 1
                log.warning("Entry %s: %s requirements fail closed: %s", entry.id, domain.value, facts.reason)
                results.extend(
                    RequirementResult(r.id, r.type, False, facts.reason) for r in reqs
                )
                continue

            for req in reqs:
                results.append(self._run_one(entry, facts, req, now))

        if domains_used and external_failures == domains_used:
            # Nothing could be evaluated at all: keep PENDING, let the caller retry.
            raise ExternalDependencyError(
                "Entry requirements could not be verified: external services unavailable.",
                code="VERIFICATION_UNAVAILABLE",
                details={
                    "entryId": entry.id,
                    "reasons": [r.reason for r in results if r.reason],
                },
            )

        valid = all(r.valid for r in results)
        status = EntryStatus.VALID if valid else EntryStatus.INVALID
        self.repository.update_entry_status(entry.id, status)
        log.info("Entry %s verified: %s (%d requirements)", entry.id, status.value, len(results))
        return VerificationOutcome(entry_id=entry.id, valid=valid, status=status, results=results)

    def _run_one(self, entry: Entry, facts: Facts, req: Requirement, now: datetime) -> RequirementResult:
        try:
            res = evaluate(facts, req, now)
        except Exception:
            log.exception("Entry %s: evaluator for %s (id=%s) crashed", entry.id, req.type, req.id)
            return RequirementResult(req.id, req.type, False, INTERNAL_ERROR)
        if res is None:
            # Registered domain but no evaluator: treat like an unknown type.
            return RequirementResult(req.id, req.type, True, "skipped: no evaluator")
        return RequirementResult(req.id, req.type, res.valid, res.reason)

    # --- facts ----------------------------------------------------------------

    def _fetch(self, source: str, calls: List[Tuple[str, Callable[[], object]]]) -> Dict[str, object]:
        """
        Runs one domain's lookups concurrently under a single deadline of
        timeout_s. Lookups still running at the deadline become FactsFailures;
        their threads are left to finish in the background.
        """
        out: Dict[str, object] = {}
        pool = ThreadPoolExecutor(max_workers=max(1, len(calls)), thread_name_prefix=f"{source.lower()}-facts")
        try:
            futures = [(key, pool.submit(fn)) for key, fn in calls]
            deadline = time.monotonic() + self.timeout_s
            for key, future in futures:
                try:
                    out[key] = future.result(timeout=max(0.0, deadline - time.monotonic()))
                except FuturesTimeoutError:
                    future.cancel()
                    out[key] = FactsFailure(
                        source, f"{source} lookup timed out after {self.timeout_s:g}s", retryable=True
                    )
                except Exception as e:
                    log.exception("%s facts provider raised", source)
                    out[key] = FactsFailure(source, f"{source} lookup failed: {e}")
        finally:
            pool.shutdown(wait=False)
        return out

    def _discord_facts(
        self,
        entry: Entry,
        reqs: List[Requirement],
        guild_id: Optional[str],
        access_token: Optional[str],
    ) -> Union[DiscordFacts, _DomainFailure]:
        if not entry.discord_user_id:
            return _DomainFailure("Discord account not linked to this entry", external=False)

        needs_membership = any(not isinstance(r, DiscordAccountAge) for r in reqs)
        if not needs_membership:
            return DiscordFacts(user_id=entry.discord_user_id)

        if not guild_id:
            return _DomainFailure("Community has no Discord server configured", external=False)
        if self.discord is None:
            return _DomainFailure(CREDENTIAL_UNAVAILABLE)

        user_id = entry.discord_user_id
        membership = self._fetch(
            "Discord",
            [("member", lambda: self.discord.get_guild_membership(guild_id, user_id, access_token))],
        )["member"]
        if isinstance(membership, FactsFailure):
            return _DomainFailure(membership.reason)
        if not isinstance(membership, GuildMembership):
            log.error("Discord provider returned %r instead of a guild membership", type(membership).__name__)
            return _DomainFailure(INTERNAL_ERROR, external=False)
        return DiscordFacts(
            user_id=user_id,
            is_member=membership.is_member,
            roles=tuple(membership.roles),
            joined_at=membership.joined_at,
        )

    def _solana_facts(self, entry: Entry, reqs: List[Requirement]) -> Union[SolanaFacts, _DomainFailure]:
        if self.solana is None:
            return _DomainFailure(CREDENTIAL_UNAVAILABLE)

        wallet = entry.wallet_address
        facts = SolanaFacts(wallet=wallet)
        mints = sorted({r.mint for r in reqs if isinstance(r, SolanaTokenBalance) and r.mint})
        collections = sorted(
            {r.collection_mint for r in reqs if isinstance(r, SolanaNftOwnership) and r.collection_mint}
        )
        calls: List[Tuple[str, Callable[[], object]]] = []
        targets: Dict[str, Dict] = {}
        for mint in mints:
            calls.append((f"token:{mint}", lambda m=mint: self.solana.get_token_balance(wallet, m)))
            targets[f"token:{mint}"] = facts.token_balances
        for coll in collections:
            calls.append((f"nft:{coll}", lambda c=coll: self.solana.get_nft_ownership_count(wallet, c)))
            targets[f"nft:{coll}"] = facts.nft_counts

        for key, value in self._fetch("Solana", calls).items():
            name = key.split(":", 1)[1]
            if isinstance(value, FactsFailure):
                facts.failures[name] = value
            else:
                targets[key][name] = value

        if calls and len(facts.failures) == len(calls):
            reasons = sorted({f.reason for f in facts.failures.values()})
            return _DomainFailure("; ".join(reasons))
        return facts
