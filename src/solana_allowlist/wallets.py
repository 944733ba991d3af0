from __future__ import annotations

import base58

from .errors import ValidationError
from .project_constants import PUBKEY_LENGTH


def is_valid_wallet_address(address: str) -> bool:
    if not address or not isinstance(address, str):
        return False
    try:
        raw = base58.b58decode(address.strip())
    except ValueError:
        return False
    return len(raw) == PUBKEY_LENGTH


def validate_wallet_address(address: str) -> str:
    if not is_valid_wallet_address(address):
        raise ValidationError(
            "Invalid Solana wallet address",
            code="INVALID_WALLET",
            details={"walletAddress": address},
        )
    return address.strip()
