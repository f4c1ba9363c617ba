"""
True-Peak Estimator

Estimates the peak level of the unweighted signal, including intersample
peaks revealed by oversampling (ITU-R BS.1770-4 Annex 2 recommends 4x).

Strategies, tried in order:
1. oversampled   render at min(192 kHz, 4x native rate) and scan
2. sample-peak   scan the native-rate samples

Both convert the linear peak with 20*log10 and clip to 0 dB. Reporting
intersample overs above 0 dBFS is deliberately suppressed.
"""

import logging
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

import numpy as np

from .audio_types import DecodedAudio
from .errors import OversampleFailure
from .rendering import OfflineRenderer, RenderSource
from .utils import MAX_OVERSAMPLE_RATE, TRUE_PEAK_OVERSAMPLE, peak_to_db

logger = logging.getLogger(__name__)


def measure_sample_peak(audio: DecodedAudio) -> float:
    """Linear sample peak across all channels."""
    peak = 0.0
    for data in audio.channels:
        if len(data):
            peak = max(peak, float(np.max(np.abs(data))))
    return peak


class PeakStrategy(ABC):
    name: str = ""

    def is_supported(self, renderer: OfflineRenderer) -> bool:
        return True

    @abstractmethod
    def measure(self, audio: DecodedAudio, renderer: OfflineRenderer) -> float:
        """Linear peak amplitude; raise OversampleFailure on failure."""


class OversampledPeak(PeakStrategy):
    """Peak of the signal rendered at an oversampled rate."""

    name = "oversampled"

    def __init__(self, factor: int = TRUE_PEAK_OVERSAMPLE, max_rate: int = MAX_OVERSAMPLE_RATE):
        self.factor = factor
        self.max_rate = max_rate

    def target_rate(self, sample_rate: int) -> int:
        return min(self.max_rate, self.factor * sample_rate)

    def is_supported(self, renderer: OfflineRenderer) -> bool:
        return renderer.supports_oversampling

    def measure(self, audio: DecodedAudio, renderer: OfflineRenderer) -> float:
        rate = self.target_rate(audio.sample_rate)
        frame_count = int(round(audio.length * rate / audio.sample_rate))
        try:
            rendered = np.asarray(renderer.render(audio.channel_count, frame_count, rate, RenderSource(audio=audio)))
            peak = float(np.max(np.abs(rendered))) if rendered.size else 0.0
        except Exception as e:
            raise OversampleFailure(f"oversampled render at {rate} Hz failed: {e}") from e

        if not np.isfinite(peak):
            raise OversampleFailure(f"oversampled render at {rate} Hz produced non-finite samples")
        if peak == 0.0 and measure_sample_peak(audio) > 0.0:
            raise OversampleFailure(f"oversampled render at {rate} Hz lost a non-silent signal")
        return peak


class NativeSamplePeak(PeakStrategy):
    """Plain sample-peak scan at the native rate."""

    name = "sample-peak"

    def measure(self, audio: DecodedAudio, renderer: OfflineRenderer) -> float:
        return measure_sample_peak(audio)


def default_strategies(
    factor: int = TRUE_PEAK_OVERSAMPLE,
    max_rate: int = MAX_OVERSAMPLE_RATE,
) -> List[PeakStrategy]:
    return [OversampledPeak(factor, max_rate), NativeSamplePeak()]


def estimate_true_peak(
    audio: DecodedAudio,
    renderer: OfflineRenderer,
    strategies: Optional[Sequence[PeakStrategy]] = None,
) -> Optional[float]:
    """
    Estimate the true-peak level of ``audio`` in dB.

    Returns:
        Peak in dB (never above 0), or None if every sample is zero
    """
    if strategies is None:
        strategies = default_strategies()

    for strategy in strategies:
        if not strategy.is_supported(renderer):
            logger.debug("Peak strategy %s not supported; skipping", strategy.name)
            continue
        try:
            peak = strategy.measure(audio, renderer)
        except OversampleFailure as e:
            logger.warning("True-peak oversampling failed, using native-rate peak: %s", e)
            continue
        return peak_to_db(peak)

    logger.warning("No peak strategy succeeded; scanning native-rate samples")
    return peak_to_db(measure_sample_peak(audio))
