"""Short random identifiers for client-side records.

Tokens are 9-character lowercase alphanumeric strings, generated with a
cryptographic random source.
"""

from __future__ import annotations

import secrets
import string

TOKEN_CHARSET = string.ascii_lowercase + string.digits
TOKEN_LENGTH = 9


def generate_token(length: int = TOKEN_LENGTH) -> str:
    """Generate a random token for notifications, requests and pitches."""
    return "".join(secrets.choice(TOKEN_CHARSET) for _ in range(length))
