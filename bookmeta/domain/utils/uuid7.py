"""
UUIDv7 generator following RFC 9562.

Layout (128 bits):
- 48 bits: Unix timestamp in milliseconds
- 4 bits: version (0111)
- 12 bits: rand_a, used here as a per-millisecond counter
- 2 bits: variant (10)
- 62 bits: random

Canonical book ids are minted with this so that rows inserted together
stay adjacent in the primary key index.

RFC 9562: https://www.rfc-editor.org/rfc/rfc9562.html
"""

import os
import threading
import time
from uuid import UUID

_lock = threading.Lock()
_last_timestamp_ms = 0
_counter = 0

_COUNTER_MAX = 0x0FFF


def uuid7() -> UUID:
    """
    Generate a UUIDv7 (time-ordered).

    Ids generated by one process are strictly increasing: within the same
    millisecond a 12-bit counter in rand_a is incremented, and if it
    overflows the timestamp is advanced by one millisecond.

    Returns:
        A uuid.UUID instance with version 7.

    Example:
        >>> from bookmeta.domain.utils.uuid7 import uuid7
        >>> uuid7().version
        7
    """
    global _last_timestamp_ms, _counter

    with _lock:
        timestamp_ms = int(time.time() * 1000)
        if timestamp_ms > _last_timestamp_ms:
            _last_timestamp_ms = timestamp_ms
            _counter = int.from_bytes(os.urandom(2), "big") & 0x01FF
        else:
            _counter += 1
            if _counter > _COUNTER_MAX:
                _last_timestamp_ms += 1
                _counter = 0
        timestamp_ms = _last_timestamp_ms
        counter = _counter

    random_bytes = os.urandom(8)

    ts_bytes = timestamp_ms.to_bytes(6, byteorder="big")

    # version nibble + high 4 bits of the counter
    byte_6 = 0x70 | ((counter >> 8) & 0x0F)
    byte_7 = counter & 0xFF

    # variant 10 + 6 random bits
    byte_8 = 0x80 | (random_bytes[0] & 0x3F)

    uuid_bytes = ts_bytes + bytes([byte_6, byte_7, byte_8]) + random_bytes[1:8]

    return UUID(bytes=uuid_bytes)
