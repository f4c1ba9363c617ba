"""
Unit tests for the K-weighting filter stage.
"""

import logging
import sys
from pathlib import Path

import numpy as np
import pytest
from scipy import signal

sys.path.insert(0, str(Path(__file__).parent.parent))

from loudmatch.audio_types import DecodedAudio
from loudmatch.errors import RenderError
from loudmatch.k_weighting import (
    STAGE1_SHELF,
    STAGE2_HIGHPASS,
    ApproximateKWeighting,
    apply_k_weighting,
)
from loudmatch.rendering import BiquadSection, NullRenderer, ScipyOfflineRenderer


class NoIIRRenderer(ScipyOfflineRenderer):
    """Renderer that can only run parametric filters."""
    supports_iir = False


class BrokenRenderer(ScipyOfflineRenderer):
    def render(self, channel_count, frame_count, sample_rate, source):
        raise RenderError("device lost")


class CrashingRenderer(ScipyOfflineRenderer):
    """Fails with something other than a RenderError."""

    def render(self, channel_count, frame_count, sample_rate, source):
        raise RuntimeError("audio device lost")


def noise(sample_rate, seconds=1.0, channels=2, seed=0):
    rng = np.random.default_rng(seed)
    data = rng.uniform(-0.5, 0.5, size=(int(seconds * sample_rate), channels)).astype(np.float32)
    return DecodedAudio.from_array(data, sample_rate)


class TestCoefficients:

    def test_canonical_stage1(self):
        assert STAGE1_SHELF.b == (1.53512485958697, -2.69169618940638, 1.19839281085285)
        assert STAGE1_SHELF.a == (1.0, -1.69065929318241, 0.73248077421585)

    def test_canonical_stage2(self):
        assert STAGE2_HIGHPASS.b == (1.0, -2.0, 1.0)
        assert STAGE2_HIGHPASS.a == (1.0, -1.99004745483398, 0.99007225036621)

    def test_biquad_highpass_blocks_dc(self):
        b, a = BiquadSection(kind="highpass", frequency=60.0).coefficients(48000)
        w, h = signal.freqz(b, a, worN=[0.0, np.pi / 2])
        assert abs(h[0]) == pytest.approx(0.0, abs=1e-9)
        assert abs(h[1]) == pytest.approx(1.0, abs=1e-3)

    def test_biquad_highshelf_gain(self):
        b, a = BiquadSection(kind="highshelf", frequency=4000.0, gain_db=4.0).coefficients(48000)
        _, h = signal.freqz(b, a, worN=[0.0, np.pi])
        assert 20 * np.log10(abs(h[0])) == pytest.approx(0.0, abs=1e-6)
        assert 20 * np.log10(abs(h[1])) == pytest.approx(4.0, abs=1e-6)

    def test_unknown_biquad_type(self):
        with pytest.raises(ValueError):
            BiquadSection(kind="bandpass", frequency=1000.0).coefficients(48000)


class TestApplyKWeighting:

    def test_exact_cascade_at_reference_rate(self, sample_rate):
        audio = noise(sample_rate)

        weighted = apply_k_weighting(audio, ScipyOfflineRenderer())

        assert weighted.strategy == "exact-iir"
        assert weighted.sample_rate == 48000
        assert weighted.channel_count == 2
        assert weighted.length == audio.length

        x = audio.get_channel_data(0).astype(np.float64)
        expected = signal.lfilter(STAGE2_HIGHPASS.b, STAGE2_HIGHPASS.a, signal.lfilter(STAGE1_SHELF.b, STAGE1_SHELF.a, x))
        np.testing.assert_allclose(weighted.channels[0], expected.astype(np.float32), rtol=1e-5, atol=1e-6)

    def test_other_rates_render_at_reference_rate(self):
        audio = noise(44100)

        weighted = apply_k_weighting(audio, ScipyOfflineRenderer())

        assert weighted.sample_rate == 48000
        assert weighted.length == 48000

    def test_approximation_when_exact_unsupported(self, sample_rate, caplog):
        audio = noise(sample_rate)

        with caplog.at_level(logging.WARNING, logger="loudmatch.k_weighting"):
            weighted = apply_k_weighting(audio, NoIIRRenderer())

        assert weighted.strategy == ApproximateKWeighting.name
        assert weighted.sample_rate == 48000
        assert "degraded" in caplog.text

    def test_render_failure_returns_original(self, sample_rate, caplog):
        audio = noise(sample_rate, seconds=0.5)

        with caplog.at_level(logging.WARNING, logger="loudmatch.k_weighting"):
            weighted = apply_k_weighting(audio, BrokenRenderer())

        assert weighted.strategy == "unweighted"
        assert weighted.sample_rate == audio.sample_rate
        for original, passed in zip(audio.channels, weighted.channels):
            np.testing.assert_array_equal(original, passed)
        assert "falling back to unweighted" in caplog.text

    def test_unexpected_renderer_exception_falls_back(self, sample_rate, caplog):
        audio = noise(sample_rate, seconds=0.25, channels=1)

        with caplog.at_level(logging.WARNING, logger="loudmatch.k_weighting"):
            weighted = apply_k_weighting(audio, CrashingRenderer())

        assert weighted.strategy == "unweighted"
        assert "audio device lost" in caplog.text

    def test_no_renderer_capabilities(self, sample_rate):
        audio = noise(sample_rate, seconds=0.25, channels=1)
        weighted = apply_k_weighting(audio, NullRenderer())
        assert weighted.strategy == "unweighted"

    def test_empty_audio(self, sample_rate):
        audio = DecodedAudio(sample_rate=sample_rate, channels=(np.zeros(0, dtype=np.float32),))
        weighted = apply_k_weighting(audio, ScipyOfflineRenderer())
        assert weighted.length == 0
