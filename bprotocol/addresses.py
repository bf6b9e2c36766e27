"""Address helpers — every account, avatar and contract is a hex string."""
from __future__ import annotations

import hashlib

ZERO_ADDRESS = "0x" + "0" * 40


def derive_address(*parts: str) -> str:
    """Derive a deterministic 20-byte address from its creation inputs.

    The same inputs always yield the same address, so an avatar created for
    a user by a given registry has a stable, predictable address.
    """
    digest = hashlib.sha256(":".join(parts).encode()).hexdigest()
    return "0x" + digest[-40:]


def short(address: str) -> str:
    """Shorten an address for log lines."""
    if len(address) > 14:
        return f"{address[:8]}...{address[-4:]}"
    return address
