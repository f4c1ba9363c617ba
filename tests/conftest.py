"""
Pytest fixtures for loudmatch tests.
"""
import pytest
import sys
from pathlib import Path

import numpy as np

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from loudmatch.audio_types import DecodedAudio
from loudmatch.config import AnalyzerConfig
from loudmatch.worker import InlineWorkerBoundary, OffloadManager, shutdown_offload_manager


@pytest.fixture
def sample_rate():
    """Standard sample rate for tests."""
    return 48000


def make_sine(amplitude: float, frequency: float, seconds: float, sample_rate: int, channels: int = 1) -> DecodedAudio:
    t = np.arange(int(seconds * sample_rate)) / sample_rate
    tone = (amplitude * np.sin(2 * np.pi * frequency * t)).astype(np.float32)
    return DecodedAudio(sample_rate=sample_rate, channels=tuple(tone for _ in range(channels)))


@pytest.fixture
def sine_audio(sample_rate):
    """Mono 997 Hz tone at -20 dBFS, 5 seconds."""
    return make_sine(0.1, 997.0, 5.0, sample_rate)


@pytest.fixture
def silent_audio(sample_rate):
    """Two seconds of stereo digital silence."""
    silence = np.zeros(2 * sample_rate, dtype=np.float32)
    return DecodedAudio(sample_rate=sample_rate, channels=(silence, silence))


@pytest.fixture
def full_scale_audio(sample_rate):
    """Stereo full-scale DC, one second (well over one gating block)."""
    ones = np.ones(sample_rate, dtype=np.float32)
    return DecodedAudio(sample_rate=sample_rate, channels=(ones, ones))


@pytest.fixture
def inline_manager():
    """Offload manager backed by the synchronous in-process boundary."""
    manager = OffloadManager(InlineWorkerBoundary)
    yield manager
    manager.shutdown()


@pytest.fixture
def inline_config():
    return AnalyzerConfig(offload_mode="inline")


@pytest.fixture
def local_config():
    return AnalyzerConfig(offload_mode="off")


@pytest.fixture(autouse=True)
def _reset_shared_manager():
    yield
    shutdown_offload_manager()
