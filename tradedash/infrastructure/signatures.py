import hashlib
from typing import Iterable


def membership_signature(symbols: Iterable[str]) -> str:
    """Order-independent digest of a queue's symbol set."""
    base = "|".join(sorted(set(symbols))).encode()
    return hashlib.sha256(base).hexdigest()


def standalone_group_key(fill_id: str) -> str:
    """Synthetic correlation key for a fill submitted outside any bracket."""
    return f"standalone-{fill_id}"
