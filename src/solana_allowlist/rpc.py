from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, List, Optional, TypeVar, Union

import httpx

from .facts import FactsFailure
from .project_constants import DEFAULT_FACTS_MAX_RETRIES, DEFAULT_FACTS_TIMEOUT_S
from .token_accounts import decode_b64, parse_mint_decimals, sum_raw_balance, to_ui_amount

log = logging.getLogger(__name__)

T = TypeVar("T")

RETRY_STATUS = {429, 500, 502, 503, 504}
DAS_PAGE_LIMIT = 1000


class RpcError(RuntimeError):
    pass


class RpcClient:
    """
    Solana JSON-RPC client and the Solana facts provider used by the verifier.

    Low-level methods raise RpcError; the facts methods (get_token_balance,
    get_nft_ownership_count) return a FactsFailure instead.
    """

    def __init__(
        self,
        rpc_url: Optional[str],
        timeout_s: float = DEFAULT_FACTS_TIMEOUT_S,
        max_retries: int = DEFAULT_FACTS_MAX_RETRIES,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.rpc_url = rpc_url
        self.max_retries = max_retries
        self.client = httpx.Client(timeout=timeout_s, transport=transport)

    def close(self) -> None:
        self.client.close()

    def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        if not self.rpc_url:
            raise RpcError("Solana RPC URL is not configured")
        attempt = 0
        while True:
            try:
                resp = self.client.post(self.rpc_url, json=payload)
                if resp.status_code in RETRY_STATUS and attempt < self.max_retries:
                    raise httpx.HTTPStatusError("retryable status", request=resp.request, response=resp)
                resp.raise_for_status()
                break
            except (httpx.TransportError, httpx.HTTPStatusError) as e:
                retryable = isinstance(e, httpx.TransportError) or (
                    e.response is not None and e.response.status_code in RETRY_STATUS
                )
                if not retryable or attempt >= self.max_retries:
                    raise RpcError(f"RPC request {payload.get('method')} failed: {e}") from e
                attempt += 1
                log.debug("Retrying %s (attempt %d): %s", payload.get("method"), attempt, e)
                time.sleep(0.25 * attempt)

        data = resp.json()
        if "error" in data:
            raise RpcError(f"RPC error: {data['error']}")
        return data

    def get_token_accounts_by_owner_base64(self, owner: str, mint: str) -> List[str]:
        payload = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "getTokenAccountsByOwner",
            "params": [owner, {"mint": mint}, {"encoding": "base64"}],
        }
        data = self._post(payload)
        result = data.get("result") or {}
        out: List[str] = []
        for item in result.get("value", []):
            # item['account']['data'] is [base64_str, "base64"]
            out.append(item["account"]["data"][0])
        return out

    def get_mint_decimals(self, mint: str) -> int:
        payload = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "getAccountInfo",
            "params": [mint, {"encoding": "base64"}],
        }
        data = self._post(payload)
        value = (data.get("result") or {}).get("value")
        if not value:
            raise RpcError(f"Mint {mint} not found")
        raw = decode_b64(value["data"][0])
        decimals = parse_mint_decimals(raw) if raw is not None else None
        if decimals is None:
            raise RpcError(f"Account {mint} is not a token mint")
        return decimals

    def search_assets_by_collection(self, owner: str, collection_mint: str) -> int:
        """Counts assets of a collection held by owner (Helius DAS searchAssets)."""
        total = 0
        page = 1
        while True:
            payload = {
                "jsonrpc": "2.0",
                "id": 1,
                "method": "searchAssets",
                "params": {
                    "ownerAddress": owner,
                    "grouping": ["collection", collection_mint],
                    "page": page,
                    "limit": DAS_PAGE_LIMIT,
                },
            }
            result = self._post(payload).get("result") or {}
            items = result.get("items", [])
            total += len(items)
            if len(items) < DAS_PAGE_LIMIT:
                return total
            page += 1

    # --- SolanaFactsProvider -------------------------------------------------

    def get_token_balance(self, wallet: str, mint: str) -> Union[float, FactsFailure]:
        def fetch() -> float:
            accounts = self.get_token_accounts_by_owner_base64(wallet, mint)
            raw_total = sum_raw_balance(accounts, mint=mint, owner=wallet)
            if raw_total == 0:
                return 0.0
            return to_ui_amount(raw_total, self.get_mint_decimals(mint))

        return self._facts(f"token balance ({mint})", fetch)

    def get_nft_ownership_count(self, wallet: str, collection_mint: str) -> Union[int, FactsFailure]:
        return self._facts(
            f"NFT ownership ({collection_mint})",
            lambda: self.search_assets_by_collection(wallet, collection_mint),
        )

    def _facts(self, what: str, fn: Callable[[], T]) -> Union[T, FactsFailure]:
        try:
            return fn()
        except RpcError as e:
            log.warning("Solana %s lookup failed: %s", what, e)
            return FactsFailure("Solana", f"Failed to verify {what}: {e}", retryable=True)
