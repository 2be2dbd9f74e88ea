from __future__ import annotations

import secrets
import threading
import time
import uuid as _uuid
from datetime import datetime, timezone

# Monotonic state for same-millisecond IDs (RFC 9562 Method 2)
_state_lock = threading.Lock()
_last_ms = 0
_sequence = 0


def uuid7() -> str:
    """Time-ordered UUID v7. Sorting ids sorts by creation time."""
    global _last_ms, _sequence

    with _state_lock:
        now_ms = int(time.time() * 1000)
        if now_ms <= _last_ms:
            now_ms = _last_ms
            _sequence = (_sequence + 1) & 0xFFF
            if _sequence == 0:
                now_ms += 1
        else:
            _sequence = secrets.randbits(11)
        _last_ms = now_ms

        value = (now_ms & 0xFFFFFFFFFFFF) << 80
        value |= 0x7 << 76
        value |= _sequence << 64
        value |= 0b10 << 62
        value |= secrets.randbits(62)
        return str(_uuid.UUID(int=value))


def short_id(full_id: str) -> str:
    """Last 8 chars. The uuid7 tail is random, the head is timestamp."""
    return full_id[-8:]


def now_iso() -> str:
    """UTC timestamp with microseconds; lexical order matches time order."""
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


__all__ = ["uuid7", "short_id", "now_iso"]
