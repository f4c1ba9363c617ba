"""
Track Loudness Analysis

Orchestrates one analysis per decoded track:

    decoded --> K-weighting --> weighted --> [offload: integrator + gate] --> integrated loudness
    decoded --> true-peak estimator ------------------------------------> peak

K-weighting and true-peak estimation are independent and run concurrently;
integration waits for the weighted signal. Integration is offloaded to the
worker when one exists, and computed in-process otherwise or on any worker
failure. Both paths run the same computation on the same payload.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Dict, Mapping, Optional

from .audio_types import DecodedAudio, LoudnessMetrics, WeightedAudio
from .buffers import TransferableBuffer
from .config import AnalyzerConfig
from .errors import WorkerCallError, WorkerRuntimeError
from .gating import AnalysisPayload, block_and_step_sizes, compute_loudness_metrics
from .k_weighting import apply_k_weighting
from .k_weighting import default_strategies as default_weighting_strategies
from .matching import compute_loudness_offsets, offset_to_gain
from .rendering import OfflineRenderer, ScipyOfflineRenderer
from .true_peak import default_strategies as default_peak_strategies
from .true_peak import estimate_true_peak
from .utils import default_channel_weights
from .worker import NO_OFFLOAD, OffloadManager, get_offload_manager

logger = logging.getLogger(__name__)


def combine_peaks(*peaks: Optional[float]) -> Optional[float]:
    """Largest non-null peak, or None."""
    valid = [peak for peak in peaks if peak is not None]
    return max(valid) if valid else None


@dataclass(frozen=True)
class TrackAnalysis:
    """Loudness of one track plus the level match applied to it."""
    metrics: LoudnessMetrics
    offset_db: float = 0.0
    duration: float = 0.0
    sample_rate: int = 0

    @property
    def gain(self) -> float:
        return offset_to_gain(self.offset_db)


class LoudnessAnalyzer:
    """
    Integrated loudness and true peak for decoded tracks.

    Usage:
        >>> with LoudnessAnalyzer() as analyzer:
        ...     metrics = analyzer.analyze(DecodedAudio.from_array(audio, 44100))
        ...     print(metrics.lufs_integrated, metrics.peak_db)
    """

    def __init__(
        self,
        config: Optional[AnalyzerConfig] = None,
        renderer: Optional[OfflineRenderer] = None,
        offload: Optional[OffloadManager] = None,
    ):
        """
        Args:
            config: Analyzer configuration (defaults if None)
            renderer: Offline renderer for filtering and oversampling
            offload: Offload manager; None uses the process-wide one for
                     ``config.offload_mode`` (or none at all for "off")
        """
        self.config = config or AnalyzerConfig()
        self.renderer = renderer or ScipyOfflineRenderer()
        self._offload = offload

        self.weighting_strategies = default_weighting_strategies(self.config.reference_sample_rate)
        self.peak_strategies = default_peak_strategies(
            self.config.oversample_factor, self.config.max_oversample_rate
        )
        self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="Loudness-")

    def __enter__(self) -> "LoudnessAnalyzer":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self._executor.shutdown(wait=True)

    @property
    def offload(self) -> Optional[OffloadManager]:
        if self._offload is not None:
            return self._offload
        if self.config.offload_mode == "off":
            return None
        # Looked up per call so the shared manager always matches our mode.
        return get_offload_manager(self.config.offload_mode)

    # -------------------------------------------------------------------------

    def build_payload(self, weighted: WeightedAudio, audio: DecodedAudio) -> AnalysisPayload:
        """Fresh payload with private copies of both signals, ready for transfer."""
        block_size, step_size = block_and_step_sizes(
            weighted.sample_rate, self.config.block_seconds, self.config.step_seconds
        )
        return AnalysisPayload(
            weighted_buffers=[TransferableBuffer.copy_of(ch) for ch in weighted.channels],
            original_buffers=[TransferableBuffer.copy_of(ch) for ch in audio.channels],
            channel_weights=default_channel_weights(audio.channel_count),
            block_size=block_size,
            step_size=step_size,
            total_samples=weighted.length,
            original_length=audio.length,
            absolute_gate=self.config.absolute_gate_lufs,
            relative_gate_offset=self.config.relative_gate_lu,
            lufs_offset=self.config.lufs_offset,
        )

    def integrate(self, weighted: WeightedAudio, audio: DecodedAudio) -> LoudnessMetrics:
        """Run the integrator, offloaded when possible."""
        def payload_factory() -> AnalysisPayload:
            return self.build_payload(weighted, audio)

        manager = self.offload
        future = manager.submit(payload_factory) if manager is not None else NO_OFFLOAD

        if future is not NO_OFFLOAD:
            try:
                return future.result(timeout=self.config.worker_timeout)
            except FutureTimeoutError:
                future.cancel()
                logger.warning(
                    "Offloaded analysis timed out after %ss, computing in-process",
                    self.config.worker_timeout,
                )
            except (WorkerCallError, WorkerRuntimeError) as e:
                logger.warning("Offloaded analysis failed, computing in-process: %s", e)

        return compute_loudness_metrics(payload_factory())

    def analyze(self, audio: DecodedAudio) -> LoudnessMetrics:
        """
        Analyze one decoded track.

        Never raises for signal content or rendering problems; each field of
        the result is independently None when it cannot be measured.
        """
        if audio.channel_count == 0:
            return LoudnessMetrics(lufs_integrated=None, peak_db=None)

        weighting = self._executor.submit(apply_k_weighting, audio, self.renderer, self.weighting_strategies)
        peak = self._executor.submit(estimate_true_peak, audio, self.renderer, self.peak_strategies)

        weighted = weighting.result()
        integrated = self.integrate(weighted, audio)
        true_peak_db = peak.result()

        metrics = LoudnessMetrics(
            lufs_integrated=integrated.lufs_integrated,
            peak_db=combine_peaks(true_peak_db, integrated.peak_db),
        )
        logger.debug(
            "Analyzed %d ch @ %d Hz (%s): %s LUFS, %s dB peak",
            audio.channel_count, audio.sample_rate, weighted.strategy,
            metrics.lufs_integrated, metrics.peak_db,
        )
        return metrics

    def analyze_tracks(self, tracks: Mapping[str, DecodedAudio]) -> Dict[str, TrackAnalysis]:
        """
        Analyze several tracks concurrently and level-match them.

        Returns:
            Track key -> TrackAnalysis with the attenuation for that track
        """
        with ThreadPoolExecutor(max_workers=max(1, len(tracks)), thread_name_prefix="Track-") as pool:
            futures = {key: pool.submit(self.analyze, audio) for key, audio in tracks.items()}
            metrics = {key: future.result() for key, future in futures.items()}

        offsets = compute_loudness_offsets(
            {key: m.lufs_integrated for key, m in metrics.items()}, self.config.cap_db
        )
        return {
            key: TrackAnalysis(
                metrics=metrics[key],
                offset_db=offsets[key],
                duration=tracks[key].duration,
                sample_rate=tracks[key].sample_rate,
            )
            for key in tracks
        }


def analyze_loudness(
    audio: DecodedAudio,
    config: Optional[AnalyzerConfig] = None,
    renderer: Optional[OfflineRenderer] = None,
    offload: Optional[OffloadManager] = None,
) -> LoudnessMetrics:
    """Convenience wrapper: analyze one track with a throwaway analyzer."""
    with LoudnessAnalyzer(config=config, renderer=renderer, offload=offload) as analyzer:
        return analyzer.analyze(audio)
