"""Correlation id (txid) generation."""
import secrets
import string
from typing import Iterable

TXID_ALPHABET = string.ascii_letters + string.digits


def generate_txid(length: int = 26, reserved_prefixes: Iterable[str] = ()) -> str:
    """
    Generate a random alphanumeric txid.

    Ids that would start with a prefix owned by another flow are discarded
    and drawn again, so correlation never crosses subsystems.

    Args:
        length: Number of characters (BACEN accepts 26 to 35)
        reserved_prefixes: Prefixes other flows use for their own ids

    Returns:
        str: txid of exactly ``length`` characters
    """
    prefixes = tuple(p.upper() for p in reserved_prefixes if p)
    while True:
        txid = "".join(secrets.choice(TXID_ALPHABET) for _ in range(length))
        if not txid.upper().startswith(prefixes):
            return txid


def is_valid_txid(value: str, length: int = 26) -> bool:
    """Whether a string has the shape of a txid generated here."""
    return len(value) == length and all(c in TXID_ALPHABET for c in value)
