"""Token generation in the ``PREFIX-XXXX-XXXX-XXXX`` format."""
from __future__ import annotations

import secrets

DEFAULT_PREFIX = "AIZEN"

_RANDOM_BYTES = 8
_GROUP_WIDTH = 4
_GROUPS = 3


def generate_token(prefix: str = DEFAULT_PREFIX) -> str:
    """Return a new token such as ``AIZEN-9F2C-01AB-77E0``.

    Eight random bytes give sixteen hex digits; only the first twelve are
    used, which keeps the format identical to keys issued earlier.
    """
    random_part = secrets.token_hex(_RANDOM_BYTES).upper()
    groups = [random_part[i * _GROUP_WIDTH:(i + 1) * _GROUP_WIDTH] for i in range(_GROUPS)]
    return "-".join([prefix, *groups])


def mask_token(token: str) -> str:
    """Hide all but the prefix and first group, for logs."""
    parts = token.split("-")
    if len(parts) < 2:
        return "****"
    return "-".join(parts[:2] + ["****"] * (len(parts) - 2))


__all__ = ["DEFAULT_PREFIX", "generate_token", "mask_token"]
