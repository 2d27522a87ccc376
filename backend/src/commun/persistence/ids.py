"""Record identity generation.

Identities are 24-character lowercase hex strings built from a 4-byte
timestamp, a 5-byte process-unique value and a 3-byte counter, so ids
generated by one process sort in creation order.
"""

import os
import re
import threading
import time

_ID_PATTERN = re.compile(r"^[0-9a-f]{24}$")

_PROCESS_UNIQUE = os.urandom(5)
_counter = int.from_bytes(os.urandom(3), "big")
_lock = threading.Lock()


def new_id() -> str:
    """Generate a new time-ordered identity."""
    global _counter
    with _lock:
        _counter = (_counter + 1) % 0x1000000
        count = _counter
    raw = (
        int(time.time()).to_bytes(4, "big")
        + _PROCESS_UNIQUE
        + count.to_bytes(3, "big")
    )
    return raw.hex()


def is_valid_id(value) -> bool:
    """Check that a value is a well-formed identity (any case accepted)."""
    if not isinstance(value, str):
        return False
    return bool(_ID_PATTERN.match(value.lower()))


def to_id(value) -> str:
    """Convert a value to the canonical identity representation.

    Raises:
        ValueError: If the value is not a well-formed identity
    """
    text = str(value).strip()
    if not is_valid_id(text):
        raise ValueError(f"Invalid id: {value!r}")
    return text.lower()
