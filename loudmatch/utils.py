"""
Shared constants and helpers for loudness measurement.

ITU-R BS.1770 numeric constants, decibel conversions and the default
channel-weighting rule live here so every stage of the analysis (filter,
integrator, true-peak, matcher) agrees on the same values.
"""

import math
from typing import List, Optional

import numpy as np


# =============================================================================
# ITU-R BS.1770 CONSTANTS
# =============================================================================

REFERENCE_SAMPLE_RATE = 48000   # K-weighting coefficients are defined at 48 kHz

BLOCK_DURATION_SECONDS = 0.4    # Gating block (400 ms)
STEP_DURATION_SECONDS = 0.1     # Block hop (75% overlap)

ABSOLUTE_GATE_LUFS = -70.0      # Absolute threshold (silence gate)
RELATIVE_GATE_OFFSET = 10.0     # Relative threshold, LU below preliminary loudness
LUFS_OFFSET = -0.691            # LUFS = -0.691 + 10 * log10(mean square)

LFE_CHANNEL_INDEX = 3           # L, R, C, LFE, Ls, Rs
SURROUND_CHANNEL_COUNT = 6

TRUE_PEAK_OVERSAMPLE = 4
MAX_OVERSAMPLE_RATE = 192000

PEAK_CEILING_DB = 0.0

DEFAULT_CAP_DB = 12.0


# =============================================================================
# CONVERSIONS
# =============================================================================

def linear_to_db(linear: float) -> float:
    """Convert linear amplitude to decibels."""
    if linear <= 0:
        return -np.inf
    return 20.0 * math.log10(linear)


def db_to_linear(db: float) -> float:
    """Convert decibels to linear amplitude."""
    return 10.0 ** (db / 20.0)


def mean_square_to_lufs(mean_square: float, lufs_offset: float = LUFS_OFFSET) -> float:
    """
    Convert a (weighted) mean square to LUFS.

    Non-positive energy maps to negative infinity so that silent blocks
    always fall below the absolute gate.
    """
    if mean_square <= 0:
        return -math.inf
    return lufs_offset + 10.0 * math.log10(mean_square)


def peak_to_db(peak: float, ceiling_db: float = PEAK_CEILING_DB) -> Optional[float]:
    """
    Convert a linear peak amplitude to a ceiling-clipped dB value.

    Returns None for a zero peak (all samples silent).
    """
    if not peak > 0:
        return None
    return min(linear_to_db(peak), ceiling_db)


def default_channel_weights(channel_count: int) -> List[float]:
    """
    Per-channel loudness weights.

    Every channel contributes fully; for 5.1 layouts the LFE channel is
    excluded from the measurement.
    """
    weights = [1.0] * channel_count
    if channel_count >= SURROUND_CHANNEL_COUNT:
        weights[LFE_CHANNEL_INDEX] = 0.0
    return weights


def seconds_to_samples(seconds: float, sample_rate: int) -> int:
    """Duration to a sample count, never below one sample."""
    return max(1, int(round(seconds * sample_rate)))
