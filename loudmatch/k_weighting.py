"""
K-Weighting Filter Stage

Applies the ITU-R BS.1770 frequency weighting to a decoded track. The
weighting is attempted through an ordered list of strategies:

1. exact-iir           canonical 48 kHz two-stage cascade, coefficients used verbatim
2. approximate-biquad  60 Hz high-pass + 4 kHz +4 dB high-shelf (degraded accuracy)
3. unweighted          the original signal, unchanged

A strategy the renderer cannot run is skipped; one that fails is logged
and the next is tried. The last strategy cannot fail, so the stage never
raises for a rendering problem.

References:
- ITU-R BS.1770-4, Annex 1, Tables 1 and 2
"""

import logging
import math
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from .audio_types import DecodedAudio, WeightedAudio
from .errors import FilterRenderFailure
from .rendering import BiquadSection, IIRSection, OfflineRenderer, RenderSource
from .utils import REFERENCE_SAMPLE_RATE

logger = logging.getLogger(__name__)


# =============================================================================
# COEFFICIENTS
# =============================================================================

# Stage 1: pre-filter (high shelf, acoustic effect of the head)
STAGE1_SHELF = IIRSection(
    b=(1.53512485958697, -2.69169618940638, 1.19839281085285),
    a=(1.0, -1.69065929318241, 0.73248077421585),
    name="head-shelf",
)

# Stage 2: RLB high-pass
STAGE2_HIGHPASS = IIRSection(
    b=(1.0, -2.0, 1.0),
    a=(1.0, -1.99004745483398, 0.99007225036621),
    name="rlb-highpass",
)

APPROX_HIGHPASS = BiquadSection(kind="highpass", frequency=60.0, q=math.sqrt(0.5))
APPROX_HIGHSHELF = BiquadSection(kind="highshelf", frequency=4000.0, q=math.sqrt(0.5), gain_db=4.0)


# =============================================================================
# STRATEGIES
# =============================================================================

class WeightingStrategy(ABC):
    """One way of producing a weighted signal."""

    name: str = ""

    def is_supported(self, renderer: OfflineRenderer) -> bool:
        return True

    @abstractmethod
    def apply(self, audio: DecodedAudio, renderer: OfflineRenderer) -> WeightedAudio:
        """Weight ``audio``; raise FilterRenderFailure on failure."""


class _RenderedWeighting(WeightingStrategy):
    """Shared render path for the filtering strategies."""

    def __init__(self, reference_rate: int = REFERENCE_SAMPLE_RATE):
        self.reference_rate = reference_rate

    def sections(self):
        raise NotImplementedError

    def is_supported(self, renderer: OfflineRenderer) -> bool:
        return renderer.supports_iir

    def apply(self, audio: DecodedAudio, renderer: OfflineRenderer) -> WeightedAudio:
        frame_count = int(round(audio.length * self.reference_rate / audio.sample_rate))
        source = RenderSource(audio=audio, filters=list(self.sections()))
        try:
            rendered = renderer.render(audio.channel_count, frame_count, self.reference_rate, source)
            channels = tuple(rendered[ch] for ch in range(audio.channel_count))
        except Exception as e:
            # Renderers are pluggable; any exception counts as a render failure.
            raise FilterRenderFailure(f"{self.name} render failed: {e}") from e
        return WeightedAudio(sample_rate=self.reference_rate, channels=channels, strategy=self.name)


class ExactKWeighting(_RenderedWeighting):
    """Canonical BS.1770 cascade at the 48 kHz reference rate."""

    name = "exact-iir"

    def sections(self):
        return (STAGE1_SHELF, STAGE2_HIGHPASS)


class ApproximateKWeighting(_RenderedWeighting):
    """Parametric approximation for renderers without exact IIR support."""

    name = "approximate-biquad"

    def is_supported(self, renderer: OfflineRenderer) -> bool:
        # Parametric biquads only need a working renderer, not raw IIR access.
        return True

    def sections(self):
        return (APPROX_HIGHPASS, APPROX_HIGHSHELF)

    def apply(self, audio: DecodedAudio, renderer: OfflineRenderer) -> WeightedAudio:
        weighted = super().apply(audio, renderer)
        logger.warning(
            "K-weighting degraded: using approximate biquad filters (60 Hz HPF + 4 kHz shelf)"
        )
        return weighted


class Unweighted(WeightingStrategy):
    """Pass the original signal through unchanged."""

    name = "unweighted"

    def apply(self, audio: DecodedAudio, renderer: OfflineRenderer) -> WeightedAudio:
        logger.warning("K-weighting unavailable, falling back to unweighted audio")
        return WeightedAudio(sample_rate=audio.sample_rate, channels=audio.channels, strategy=self.name)


def default_strategies(reference_rate: int = REFERENCE_SAMPLE_RATE) -> List[WeightingStrategy]:
    return [ExactKWeighting(reference_rate), ApproximateKWeighting(reference_rate), Unweighted()]


# =============================================================================
# STAGE
# =============================================================================

def apply_k_weighting(
    audio: DecodedAudio,
    renderer: OfflineRenderer,
    strategies: Optional[Sequence[WeightingStrategy]] = None,
) -> WeightedAudio:
    """
    Apply K-weighting to ``audio``.

    Args:
        audio: Decoded track
        renderer: Offline renderer used by the filtering strategies
        strategies: Ordered strategies to try (default: exact, approximate, unweighted)

    Returns:
        WeightedAudio; ``strategy`` records which strategy produced it
    """
    if strategies is None:
        strategies = default_strategies()

    for strategy in strategies:
        if not strategy.is_supported(renderer):
            logger.debug("K-weighting strategy %s not supported by %s", strategy.name, type(renderer).__name__)
            continue
        try:
            return strategy.apply(audio, renderer)
        except FilterRenderFailure as e:
            logger.warning("K-weighting strategy %s failed: %s", strategy.name, e)

    return Unweighted().apply(audio, renderer)
