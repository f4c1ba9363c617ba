"""
Audio data model.

DecodedAudio is what an external decoder hands to the engine; the engine
never mutates it. WeightedAudio is the K-weighted derivative, possibly at
a different sample rate. LoudnessMetrics is the per-track result.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence, Tuple

import numpy as np


def _freeze_channels(channels: Sequence[np.ndarray]) -> Tuple[np.ndarray, ...]:
    frozen = []
    for data in channels:
        array = np.array(data, dtype=np.float32, copy=True).reshape(-1)
        array.setflags(write=False)
        frozen.append(array)
    return tuple(frozen)


@dataclass(frozen=True, eq=False)
class DecodedAudio:
    """
    Immutable decoded track.

    Attributes:
        sample_rate: Native sample rate in Hz
        channels: One float32 array per channel, all of equal length
    """
    sample_rate: int
    channels: Tuple[np.ndarray, ...]

    def __post_init__(self):
        if self.sample_rate <= 0:
            raise ValueError(f"sample_rate must be positive, got {self.sample_rate}")
        channels = _freeze_channels(self.channels)
        lengths = {len(ch) for ch in channels}
        if len(lengths) > 1:
            raise ValueError(f"channel lengths differ: {sorted(lengths)}")
        object.__setattr__(self, "channels", channels)

    @classmethod
    def from_array(cls, audio: np.ndarray, sample_rate: int) -> "DecodedAudio":
        """
        Build from an interleaved-by-column array.

        Args:
            audio: Shape (samples,) for mono or (samples, channels)
            sample_rate: Sample rate in Hz
        """
        audio = np.asarray(audio)
        if audio.ndim == 1:
            return cls(sample_rate=sample_rate, channels=(audio,))
        return cls(sample_rate=sample_rate, channels=tuple(audio[:, ch] for ch in range(audio.shape[1])))

    @property
    def channel_count(self) -> int:
        return len(self.channels)

    @property
    def length(self) -> int:
        """Sample count per channel."""
        return len(self.channels[0]) if self.channels else 0

    @property
    def duration(self) -> float:
        return self.length / float(self.sample_rate)

    def get_channel_data(self, index: int) -> np.ndarray:
        return self.channels[index]


@dataclass(frozen=True, eq=False)
class WeightedAudio:
    """K-weighted signal; same channel count, its own rate and length."""
    sample_rate: int
    channels: Tuple[np.ndarray, ...]
    strategy: str = ""

    def __post_init__(self):
        object.__setattr__(self, "channels", _freeze_channels(self.channels))

    @property
    def channel_count(self) -> int:
        return len(self.channels)

    @property
    def length(self) -> int:
        return len(self.channels[0]) if self.channels else 0


@dataclass(frozen=True)
class LoudnessMetrics:
    """
    Result of one analysis call.

    Attributes:
        lufs_integrated: Gated integrated loudness, None below the gates
        peak_db: Peak level in dB, clipped to 0 dB; None for digital silence
    """
    lufs_integrated: Optional[float] = None
    peak_db: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        """Wire representation used across the worker boundary."""
        return {"lufsIntegrated": self.lufs_integrated, "peakDb": self.peak_db}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LoudnessMetrics":
        return cls(
            lufs_integrated=data.get("lufsIntegrated"),
            peak_db=data.get("peakDb"),
        )


EMPTY_METRICS = LoudnessMetrics()
