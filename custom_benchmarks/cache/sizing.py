from __future__ import annotations

import pickle
from typing import Any


def measure_size(value: Any) -> int | None:
    """Best-effort payload size in bytes.

    Raw bytes and strings are measured directly, anything else by its pickled
    form. ``None`` (nothing stored or returned) is not measured. A value that
    cannot be encoded or pickled counts as zero bytes.
    """

    if value is None:
        return None
    try:
        if isinstance(value, (bytes, bytearray)):
            return len(value)
        if isinstance(value, str):
            return len(value.encode("utf-8"))
        return len(pickle.dumps(value))
    except Exception:
        return 0
