from __future__ import annotations

"""Strict integer parsing for base-unit amounts and block numbers.

Only ints (not bools) and decimal-integer strings are accepted. Floats are
refused outright, even integral ones: above 2**53 they no longer hold the
value the client meant.
"""

import re
from typing import Any, Optional

_DECIMAL_INT = re.compile(r"^[+-]?[0-9]+$")


def strict_int(v: Any) -> Optional[int]:
    """Return `v` as an int, or None when it is not an exact integer."""
    if isinstance(v, bool):
        return None
    if isinstance(v, int):
        return int(v)
    if isinstance(v, str):
        s = v.strip()
        if _DECIMAL_INT.match(s):
            return int(s)
    return None


__all__ = ["strict_int"]
