"""Free-text numeric field parsing for the language and population tables.

The source tables carry counts as text: '1,234', '1000-2000', '<500',
'12,000 (estimate)', 'N/A'.  Nothing here raises; text without digits
parses to None.
"""

from __future__ import annotations

import math
import re

_PARENTHETICAL = re.compile(r"\(.*?\)")
_NUMBER = re.compile(r"[0-9]+(?:\.[0-9]+)?")


def parse_numeric_field(raw: object) -> float | None:
    """Parse a speaker / margin-of-error field into a number or None.

    '1,234' → 1234.0, '1000 - 2000' → 1500.0 (range midpoint),
    '<500' → 500.0, '12 (approx.)' → 12.0, 'N/A' / '' / None → None.
    """
    if raw is None:
        return None
    # openpyxl hands numeric cells over as int/float already
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        return float(raw) if math.isfinite(raw) else None

    text = str(raw).strip()
    if not text:
        return None

    text = _PARENTHETICAL.sub("", text).replace(",", "").strip()
    candidates = [float(m) for m in _NUMBER.findall(text)]
    if not candidates:
        return None

    if "-" in text and len(candidates) >= 2:
        return (candidates[0] + candidates[-1]) / 2
    # '<N' and plain values both resolve to the first number
    return candidates[0]


def parse_population(raw: object) -> int | None:
    """Parse a population cell ('37,253,956') into a non-negative int or None."""
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        value = float(raw)
    else:
        text = str(raw).replace(",", "").strip()
        if not text:
            return None
        try:
            value = float(text)
        except ValueError:
            return None

    if not math.isfinite(value) or value < 0:
        return None
    return int(value)
