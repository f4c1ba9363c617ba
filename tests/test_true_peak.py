"""
Unit tests for the true-peak estimator.
"""

import logging
import sys
from pathlib import Path

import numpy as np
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from loudmatch.audio_types import DecodedAudio
from loudmatch.errors import RenderError
from loudmatch.rendering import ScipyOfflineRenderer
from loudmatch.true_peak import OversampledPeak, estimate_true_peak, measure_sample_peak


class NoOversamplingRenderer(ScipyOfflineRenderer):
    supports_oversampling = False


class BrokenRenderer(ScipyOfflineRenderer):
    def render(self, channel_count, frame_count, sample_rate, source):
        raise RenderError("out of memory")


class CrashingRenderer(ScipyOfflineRenderer):
    def render(self, channel_count, frame_count, sample_rate, source):
        raise RuntimeError("audio device lost")


class UnderflowRenderer(ScipyOfflineRenderer):
    """Returns digital silence whatever the input."""

    def render(self, channel_count, frame_count, sample_rate, source):
        return np.zeros((channel_count, frame_count), dtype=np.float32)


def quarter_rate_tone(sample_rate, amplitude=0.5, seconds=1.0):
    """fs/4 sine whose samples all land at +/-0.707 of the true peak."""
    n = np.arange(int(seconds * sample_rate))
    tone = amplitude * np.sin(np.pi * n / 2 + np.pi / 4)
    return DecodedAudio(sample_rate=sample_rate, channels=(tone.astype(np.float32),))


class TestTruePeak:

    def test_oversampled_rate(self):
        strategy = OversampledPeak()
        assert strategy.target_rate(44100) == 176400
        assert strategy.target_rate(48000) == 192000
        assert strategy.target_rate(96000) == 192000

    def test_silence_is_none(self, silent_audio):
        assert estimate_true_peak(silent_audio, ScipyOfflineRenderer()) is None

    def test_full_scale_is_clipped_to_zero(self, full_scale_audio):
        assert estimate_true_peak(full_scale_audio, ScipyOfflineRenderer()) == 0.0

    def test_intersample_peak_detected(self, sample_rate):
        audio = quarter_rate_tone(sample_rate)

        native = estimate_true_peak(audio, NoOversamplingRenderer())
        true_peak = estimate_true_peak(audio, ScipyOfflineRenderer())

        assert native == pytest.approx(-9.03, abs=0.05)
        assert true_peak > native + 2.0
        assert true_peak == pytest.approx(-6.02, abs=0.3)

    def test_never_above_zero(self, sample_rate):
        audio = quarter_rate_tone(sample_rate, amplitude=1.0)
        assert estimate_true_peak(audio, ScipyOfflineRenderer()) <= 0.0

    def test_failure_falls_back_to_sample_peak(self, sample_rate, caplog):
        audio = quarter_rate_tone(sample_rate)

        with caplog.at_level(logging.WARNING, logger="loudmatch.true_peak"):
            peak = estimate_true_peak(audio, BrokenRenderer())

        assert peak == pytest.approx(20 * np.log10(measure_sample_peak(audio)))
        assert "native-rate peak" in caplog.text

    def test_unexpected_renderer_exception_falls_back(self, sample_rate, caplog):
        audio = quarter_rate_tone(sample_rate)

        with caplog.at_level(logging.WARNING, logger="loudmatch.true_peak"):
            peak = estimate_true_peak(audio, CrashingRenderer())

        assert peak == pytest.approx(20 * np.log10(measure_sample_peak(audio)))
        assert "audio device lost" in caplog.text

    def test_silent_render_of_audible_input_falls_back(self, sample_rate):
        tiny = np.full(sample_rate // 10, 1e-30, dtype=np.float32)
        audio = DecodedAudio(sample_rate=sample_rate, channels=(tiny,))

        peak = estimate_true_peak(audio, UnderflowRenderer())

        assert peak is not None
        assert peak == pytest.approx(20 * np.log10(measure_sample_peak(audio)))

    def test_sample_peak_across_channels(self, sample_rate):
        quiet = np.full(100, 0.1, dtype=np.float32)
        loud = np.full(100, -0.8, dtype=np.float32)
        audio = DecodedAudio(sample_rate=sample_rate, channels=(quiet, loud))
        assert measure_sample_peak(audio) == pytest.approx(0.8)
