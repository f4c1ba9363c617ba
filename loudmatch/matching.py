"""
Loudness Offset Calculator

Matches tracks by attenuating the louder ones down to the quietest. The
quietest valid track is the reference: it gets 0 dB and is never boosted.
Every other track is attenuated by its distance to the reference, capped
at ``cap_db``. Tracks without a valid loudness are left untouched.
"""

import math
from typing import Dict, Mapping, Optional

from .utils import DEFAULT_CAP_DB, db_to_linear


def _is_valid(value: Optional[float]) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def compute_loudness_offsets(
    lufs_by_track: Mapping[str, Optional[float]],
    cap_db: float = DEFAULT_CAP_DB,
) -> Dict[str, float]:
    """
    Per-track attenuation in dB.

    Args:
        lufs_by_track: Track key -> integrated loudness (None if unmeasured)
        cap_db: Maximum attenuation

    Returns:
        Track key -> offset in [0, cap_db]

    Example:
        >>> compute_loudness_offsets({"A": -14.0, "B": -20.0})
        {'A': 6.0, 'B': 0.0}
    """
    valid = [value for value in lufs_by_track.values() if _is_valid(value)]
    if not valid:
        return {key: 0.0 for key in lufs_by_track}

    target = min(valid)

    offsets: Dict[str, float] = {}
    for key, value in lufs_by_track.items():
        if not _is_valid(value):
            offsets[key] = 0.0
            continue
        offset = min(max(value - target, 0.0), cap_db)
        offsets[key] = float(offset) if math.isfinite(offset) else 0.0
    return offsets


def offset_to_gain(offset_db: float) -> float:
    """Linear gain multiplier for an attenuation of ``offset_db``."""
    return db_to_linear(-offset_db)


def compute_loudness_gains(
    lufs_by_track: Mapping[str, Optional[float]],
    cap_db: float = DEFAULT_CAP_DB,
) -> Dict[str, float]:
    """Track key -> linear gain for the playback transport."""
    return {
        key: offset_to_gain(offset)
        for key, offset in compute_loudness_offsets(lufs_by_track, cap_db).items()
    }
