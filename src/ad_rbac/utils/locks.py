"""Advisory lock keys."""

import hashlib


def advisory_lock_key(*parts: object) -> int:
    """Stable signed 64-bit key for ``pg_advisory_xact_lock``.

    >>> advisory_lock_key("catalog", "group_tree") == advisory_lock_key("catalog", "group_tree")
    True
    """
    raw = ":".join(str(p) for p in parts).encode()
    return int.from_bytes(hashlib.blake2b(raw, digest_size=8).digest(), "big", signed=True)
