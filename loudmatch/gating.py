"""
Block Energy Integrator + Two-Stage Gate

Integrated loudness per ITU-R BS.1770:

1. Slide a 400 ms block over the K-weighted signal in 100 ms steps
2. Per block: weighted sum of per-channel mean squares -> block loudness
3. Absolute gate: keep blocks louder than -70 LUFS
4. Preliminary loudness from the kept blocks
5. Relative gate: keep blocks no quieter than preliminary - 10 LU
6. Integrated loudness from the relative-gated blocks

If the relative gate removes every block, the absolute-gated average is
reported instead of None.

Everything needed for the computation travels in an AnalysisPayload so
the same function runs in-process or inside the offload worker and yields
bit-identical results.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from .audio_types import LoudnessMetrics
from .buffers import TransferableBuffer, transfer_all
from .utils import (
    ABSOLUTE_GATE_LUFS,
    LUFS_OFFSET,
    RELATIVE_GATE_OFFSET,
    mean_square_to_lufs,
    peak_to_db,
    seconds_to_samples,
)

logger = logging.getLogger(__name__)


# =============================================================================
# PAYLOAD
# =============================================================================

@dataclass
class AnalysisPayload:
    """
    Inputs of one integration run.

    Buffers are TransferableBuffers: ``to_wire`` moves them into the
    outgoing message and the payload can no longer be read afterwards.
    """
    weighted_buffers: List[TransferableBuffer]
    original_buffers: List[TransferableBuffer]
    channel_weights: List[float]
    block_size: int
    step_size: int
    total_samples: int
    original_length: int
    absolute_gate: float = ABSOLUTE_GATE_LUFS
    relative_gate_offset: float = RELATIVE_GATE_OFFSET
    lufs_offset: float = LUFS_OFFSET

    def __post_init__(self):
        if self.block_size < 1 or self.step_size < 1:
            raise ValueError("block_size and step_size must be at least one sample")
        if self.step_size > self.block_size:
            raise ValueError(
                f"step_size ({self.step_size}) must not exceed block_size ({self.block_size})"
            )

    def to_wire(self) -> Dict[str, Any]:
        """Transfer the buffers into a wire-format payload dict."""
        return {
            "weightedBuffers": transfer_all(self.weighted_buffers),
            "originalBuffers": transfer_all(self.original_buffers),
            "channelWeights": list(self.channel_weights),
            "blockSize": self.block_size,
            "stepSize": self.step_size,
            "totalSamples": self.total_samples,
            "originalLength": self.original_length,
            "absoluteGate": self.absolute_gate,
            "relativeGateOffset": self.relative_gate_offset,
            "lufsOffset": self.lufs_offset,
        }

    @classmethod
    def from_wire(cls, data: Dict[str, Any]) -> "AnalysisPayload":
        return cls(
            weighted_buffers=[TransferableBuffer(buf) for buf in data["weightedBuffers"]],
            original_buffers=[TransferableBuffer(buf) for buf in data["originalBuffers"]],
            channel_weights=[float(w) for w in data["channelWeights"]],
            block_size=int(data["blockSize"]),
            step_size=int(data["stepSize"]),
            total_samples=int(data["totalSamples"]),
            original_length=int(data["originalLength"]),
            absolute_gate=float(data["absoluteGate"]),
            relative_gate_offset=float(data["relativeGateOffset"]),
            lufs_offset=float(data["lufsOffset"]),
        )


@dataclass(frozen=True)
class BlockEnergy:
    """One gating block: weighted mean square and its loudness."""
    mean_square: float
    loudness: float


# =============================================================================
# BLOCKS
# =============================================================================

def _padded(data: np.ndarray, length: int) -> np.ndarray:
    """Channel as float64, zero-padded or truncated to ``length``."""
    out = np.zeros(length, dtype=np.float64)
    n = min(length, len(data))
    out[:n] = data[:n]
    return out


def compute_block_energies(
    channels: Sequence[np.ndarray],
    channel_weights: Sequence[float],
    block_size: int,
    step_size: int,
    total_samples: int,
    lufs_offset: float = LUFS_OFFSET,
) -> List[BlockEnergy]:
    """
    Measure every gating block.

    Blocks start at multiples of ``step_size``; a block near the end covers
    only the remaining samples and is normalised by its actual length.
    Missing channel weights default to 1.0.
    """
    if total_samples <= 0 or not channels:
        return []

    prepared = [_padded(np.asarray(ch), total_samples) for ch in channels]
    weights = [
        float(channel_weights[i]) if i < len(channel_weights) else 1.0
        for i in range(len(prepared))
    ]

    blocks: List[BlockEnergy] = []
    for start in range(0, total_samples, step_size):
        actual = min(block_size, total_samples - start)
        if actual <= 0:
            continue

        energy = 0.0
        for data, weight in zip(prepared, weights):
            segment = data[start:start + actual]
            energy += weight * (float(np.dot(segment, segment)) / actual)

        blocks.append(BlockEnergy(mean_square=energy, loudness=mean_square_to_lufs(energy, lufs_offset)))

    return blocks


def integrate_blocks(mean_squares: Sequence[float], lufs_offset: float = LUFS_OFFSET) -> Optional[float]:
    """Loudness of the average energy of ``mean_squares``; None if undefined."""
    if len(mean_squares) == 0:
        return None
    energy = math.fsum(mean_squares) / len(mean_squares)
    if not energy > 0:
        return None
    return lufs_offset + 10.0 * math.log10(energy)


# =============================================================================
# GATING
# =============================================================================

def apply_two_stage_gate(
    blocks: Sequence[BlockEnergy],
    lufs_offset: float = LUFS_OFFSET,
    absolute_gate: float = ABSOLUTE_GATE_LUFS,
    relative_gate_offset: float = RELATIVE_GATE_OFFSET,
) -> Optional[float]:
    """
    Gate ``blocks`` and return the integrated loudness.

    Args:
        blocks: Measured gating blocks
        lufs_offset: Loudness offset constant (-0.691)
        absolute_gate: Absolute threshold in LUFS (strictly above is kept)
        relative_gate_offset: LU below the preliminary loudness (at or above is kept)

    Returns:
        Integrated loudness, or None when nothing passes the absolute gate
    """
    above_absolute = [block for block in blocks if block.loudness > absolute_gate]
    if not above_absolute:
        return None

    preliminary = integrate_blocks([block.mean_square for block in above_absolute], lufs_offset)
    if preliminary is None or not math.isfinite(preliminary):
        return None

    threshold = preliminary - relative_gate_offset
    above_relative = [block for block in above_absolute if block.loudness >= threshold]

    if not above_relative:
        logger.debug(
            "Relative gate (%.2f LUFS) removed all %d blocks; using absolute-gated average",
            threshold, len(above_absolute),
        )
        above_relative = above_absolute

    return integrate_blocks([block.mean_square for block in above_relative], lufs_offset)


# =============================================================================
# ENTRY POINT
# =============================================================================

def compute_sample_peak(channels: Sequence[np.ndarray], length: int) -> float:
    """Largest absolute sample over the first ``length`` samples of every channel."""
    peak = 0.0
    for data in channels:
        segment = np.asarray(data)[:length]
        if len(segment):
            peak = max(peak, float(np.max(np.abs(segment))))
    return peak


def compute_loudness_metrics(payload: AnalysisPayload) -> LoudnessMetrics:
    """
    Integrated loudness and sample peak for ``payload``.

    Reads the payload buffers without transferring them. This is the single
    computation shared by the offload worker and the synchronous fallback.
    """
    weighted = [buffer.data for buffer in payload.weighted_buffers]
    original = [buffer.data for buffer in payload.original_buffers]

    if not weighted or not original:
        return LoudnessMetrics(lufs_integrated=None, peak_db=None)

    peak_db = peak_to_db(compute_sample_peak(original, payload.original_length))

    blocks = compute_block_energies(
        weighted,
        payload.channel_weights,
        payload.block_size,
        payload.step_size,
        payload.total_samples,
        payload.lufs_offset,
    )
    if not blocks:
        return LoudnessMetrics(lufs_integrated=None, peak_db=peak_db)

    lufs = apply_two_stage_gate(
        blocks,
        lufs_offset=payload.lufs_offset,
        absolute_gate=payload.absolute_gate,
        relative_gate_offset=payload.relative_gate_offset,
    )
    return LoudnessMetrics(lufs_integrated=lufs, peak_db=peak_db)


def block_and_step_sizes(sample_rate: int, block_seconds: float, step_seconds: float) -> Tuple[int, int]:
    """Block/step durations converted to sample counts at ``sample_rate``."""
    return seconds_to_samples(block_seconds, sample_rate), seconds_to_samples(step_seconds, sample_rate)
