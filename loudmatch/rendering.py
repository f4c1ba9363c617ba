"""
Offline Rendering

The filter stage and the true-peak oversampler both describe their work as
a render request: "give me ``frame_count`` frames of this source, at this
sample rate, through these filter sections". The renderer is an external
capability; ``ScipyOfflineRenderer`` is the in-process implementation built
on scipy's polyphase resampler and direct-form IIR filter.

Filter sections come in two flavours:
- IIRSection: exact feedforward/feedback coefficients, used verbatim
- BiquadSection: a parametric filter (type, frequency, Q, gain) designed
  for whatever sample rate the render runs at (RBJ audio-EQ cookbook)
"""

from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Tuple, Union

import numpy as np
from scipy import signal

from .audio_types import DecodedAudio
from .errors import RenderError

logger = logging.getLogger(__name__)


# =============================================================================
# FILTER SECTIONS
# =============================================================================

@dataclass(frozen=True)
class IIRSection:
    """Second-order section with fixed coefficients."""
    b: Tuple[float, float, float]
    a: Tuple[float, float, float]
    name: str = ""

    def coefficients(self, sample_rate: int) -> Tuple[np.ndarray, np.ndarray]:
        return np.asarray(self.b, dtype=np.float64), np.asarray(self.a, dtype=np.float64)


@dataclass(frozen=True)
class BiquadSection:
    """
    Parametric biquad designed at render time.

    Attributes:
        kind: "highpass" or "highshelf"
        frequency: Corner / shelf frequency in Hz
        q: Quality factor
        gain_db: Shelf gain (ignored for highpass)
    """
    kind: str
    frequency: float
    q: float = math.sqrt(0.5)
    gain_db: float = 0.0

    def coefficients(self, sample_rate: int) -> Tuple[np.ndarray, np.ndarray]:
        w0 = 2.0 * math.pi * self.frequency / sample_rate
        cos_w0 = math.cos(w0)
        alpha = math.sin(w0) / (2.0 * self.q)

        if self.kind == "highpass":
            b = [(1.0 + cos_w0) / 2.0, -(1.0 + cos_w0), (1.0 + cos_w0) / 2.0]
            a = [1.0 + alpha, -2.0 * cos_w0, 1.0 - alpha]
        elif self.kind == "highshelf":
            A = 10.0 ** (self.gain_db / 40.0)
            sqrt_a = math.sqrt(A)
            b = [
                A * ((A + 1) + (A - 1) * cos_w0 + 2 * sqrt_a * alpha),
                -2 * A * ((A - 1) + (A + 1) * cos_w0),
                A * ((A + 1) + (A - 1) * cos_w0 - 2 * sqrt_a * alpha),
            ]
            a = [
                (A + 1) - (A - 1) * cos_w0 + 2 * sqrt_a * alpha,
                2 * ((A - 1) - (A + 1) * cos_w0),
                (A + 1) - (A - 1) * cos_w0 - 2 * sqrt_a * alpha,
            ]
        else:
            raise ValueError(f"Unsupported biquad type: {self.kind}")

        a0 = a[0]
        return np.array(b) / a0, np.array(a) / a0


FilterSection = Union[IIRSection, BiquadSection]


@dataclass
class RenderSource:
    """A sample-accurate source: decoded audio routed through filter sections."""
    audio: DecodedAudio
    filters: List[FilterSection] = field(default_factory=list)


# =============================================================================
# RENDERERS
# =============================================================================

def resample_ratio(source_rate: int, target_rate: int) -> Tuple[int, int]:
    """Reduced (up, down) factors for polyphase resampling."""
    g = math.gcd(int(target_rate), int(source_rate))
    return int(target_rate) // g, int(source_rate) // g


class OfflineRenderer(ABC):
    """
    Offline rendering capability.

    Subclasses advertise what they can do; callers check the flags before
    building a render request and fall back when a capability is missing.
    """

    supports_iir: bool = False
    supports_oversampling: bool = False

    @abstractmethod
    def render(
        self,
        channel_count: int,
        frame_count: int,
        sample_rate: int,
        source: RenderSource,
    ) -> np.ndarray:
        """
        Render ``source``.

        Returns:
            float32 array shaped (channel_count, frame_count)

        Raises:
            RenderError: If rendering fails
        """


class ScipyOfflineRenderer(OfflineRenderer):
    """In-process renderer: polyphase resampling followed by IIR filtering."""

    supports_iir = True
    supports_oversampling = True

    def render(
        self,
        channel_count: int,
        frame_count: int,
        sample_rate: int,
        source: RenderSource,
    ) -> np.ndarray:
        audio = source.audio
        if channel_count <= 0 or audio.channel_count == 0:
            raise RenderError("Nothing to render: no channels")
        if frame_count < 0 or sample_rate <= 0:
            raise RenderError(f"Invalid render shape: {frame_count} frames @ {sample_rate} Hz")

        up, down = resample_ratio(audio.sample_rate, sample_rate)

        try:
            rendered = np.zeros((channel_count, frame_count), dtype=np.float32)
            sections = [section.coefficients(sample_rate) for section in source.filters]
            for ch in range(channel_count):
                data = audio.get_channel_data(min(ch, audio.channel_count - 1)).astype(np.float64)
                if len(data) == 0:
                    continue
                if up != down:
                    data = signal.resample_poly(data, up, down)
                for b, a in sections:
                    data = signal.lfilter(b, a, data)
                n = min(frame_count, len(data))
                rendered[ch, :n] = data[:n]
        except (ValueError, FloatingPointError, MemoryError) as e:
            raise RenderError(f"Offline render failed: {e}") from e

        if not np.all(np.isfinite(rendered)):
            raise RenderError("Offline render produced non-finite samples")

        logger.debug(
            "Rendered %d ch x %d frames @ %d Hz through %d section(s)",
            channel_count, frame_count, sample_rate, len(sections),
        )
        return rendered


class NullRenderer(OfflineRenderer):
    """Renderer with no capabilities; forces every stage onto its fallback."""

    def render(self, channel_count, frame_count, sample_rate, source):
        raise RenderError("Offline rendering is not available")
