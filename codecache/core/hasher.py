"""Content hashing for raw code.

The code hash is the key shared by the pristine code store and the
instrumented code cache.
"""

from __future__ import annotations

import hashlib


def code_hash(data: bytes) -> str:
    """Return the SHA-256 hex digest of raw code bytes."""
    return hashlib.sha256(data).hexdigest()
