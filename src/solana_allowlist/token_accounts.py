from __future__ import annotations

import base64
import binascii
import struct
from typing import Iterable, Optional, Tuple

import base58

from .project_constants import MINT_DECIMALS_OFFSET


def parse_token_account(account_data: bytes) -> Tuple[str, str, int] | None:
    """
    Standard token account layout (works for classic; Token-2022 keeps these offsets too).
    Mint(0-32) | Owner(32-64) | Amount(64-72)
    """
    if len(account_data) < 72:
        return None

    mint = base58.b58encode(account_data[0:32]).decode("ascii")
    owner = base58.b58encode(account_data[32:64]).decode("ascii")
    amount = struct.unpack("<Q", account_data[64:72])[0]
    return mint, owner, amount


def parse_mint_decimals(mint_data: bytes) -> Optional[int]:
    if len(mint_data) <= MINT_DECIMALS_OFFSET:
        return None
    return mint_data[MINT_DECIMALS_OFFSET]


def decode_b64(b64_str: str) -> Optional[bytes]:
    try:
        return base64.b64decode(b64_str, validate=True)
    except (binascii.Error, ValueError):
        return None


def sum_raw_balance(b64_items: Iterable[str], mint: str, owner: str) -> int:
    """Total raw amount the owner holds of `mint` across all of its token accounts."""
    total = 0
    for b64_str in b64_items:
        raw = decode_b64(b64_str)
        if raw is None:
            continue

        parsed = parse_token_account(raw)
        if not parsed:
            continue

        acc_mint, acc_owner, amount = parsed
        if acc_mint == mint and acc_owner == owner and amount > 0:
            total += int(amount)
    return total


def to_ui_amount(raw_amount: int, decimals: int) -> float:
    return raw_amount / (10**decimals)
