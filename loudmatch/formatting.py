"""Display helpers for loudness results."""

import math
from typing import Optional


def format_db(value: Optional[float], suffix: str = "dB") -> str:
    """One-decimal dB string, ``"--"`` when the value is missing."""
    if value is None or math.isnan(value):
        return "--"
    return f"{value:.1f} {suffix}"


def format_time(seconds: Optional[float]) -> str:
    """MM:SS, ``"--:--"`` when the value is missing."""
    if seconds is None or math.isnan(seconds):
        return "--:--"
    total = max(0, int(math.floor(seconds)))
    return f"{total // 60:02d}:{total % 60:02d}"
