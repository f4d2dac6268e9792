from __future__ import annotations

import math
import re
from datetime import datetime, timezone
from typing import List

PLACEHOLDER = "—"

_TICKER_RE = re.compile(r"^[A-Z][A-Z0-9]*(?:[.\-][A-Z0-9]+)*(?::[A-Z][A-Z0-9]*(?:[.\-][A-Z0-9]+)*)?$")
_ANSI_RE = re.compile(r"\x1b\[[0-9;]*m")
_PCT_RE = re.compile(r"^(-?\d+(?:\.\d+)?)%$")


def _finite(n) -> bool:
    return isinstance(n, (int, float)) and math.isfinite(n)


def fmt_money(n: float) -> str:
    if not _finite(n):
        return PLACEHOLDER
    return f"${n:.2f}"


def fmt_int(n: float) -> str:
    if not _finite(n):
        return PLACEHOLDER
    return f"{round(n):,}"


def fmt_percent(n: float, decimals: int = 2) -> str:
    """Format a decimal fraction as a signed percentage (0.0123 -> +1.23%)."""
    if not _finite(n):
        return PLACEHOLDER
    pct = n * 100
    sign = "+" if pct >= 0 else ""
    return f"{sign}{pct:.{decimals}f}%"


def parse_change_percent(s: str | None) -> float:
    """'1.23%' -> 0.0123; anything else -> NaN."""
    if not s:
        return float("nan")
    m = _PCT_RE.match(s.strip())
    if not m:
        return float("nan")
    return float(m.group(1)) / 100


def validate_ticker(s: str) -> bool:
    # letters first, then letters/digits with . or - separators, optional EXCHANGE: prefix
    return bool(_TICKER_RE.match(s))


def normalize_ticker(s: str) -> str:
    return s.strip().upper()


def parse_tickers(s: str) -> List[str]:
    return [t for t in (normalize_ticker(p) for p in s.split(",")) if validate_ticker(t)]


def fmt_date(d: datetime) -> str:
    if d.tzinfo is None:
        d = d.replace(tzinfo=timezone.utc)
    return d.astimezone(timezone.utc).replace(microsecond=0).strftime("%Y-%m-%dT%H:%M:%SZ")


def truncate(s: str, max_len: int) -> str:
    if len(s) <= max_len:
        return s
    return s[: max_len - 1] + "…"


def strip_ansi(s: str) -> str:
    return _ANSI_RE.sub("", s)
