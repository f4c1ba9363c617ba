"""
loudmatch

ITU-R BS.1770 loudness measurement and two-track loudness matching:
K-weighting, gated integrated loudness, true-peak estimation, background
offload of the block integration, and per-track attenuation offsets.
"""

__version__ = "0.1.0"

from .audio_types import DecodedAudio, WeightedAudio, LoudnessMetrics
from .buffers import TransferableBuffer
from .config import AnalyzerConfig, DEFAULT_CONFIG
from .errors import (
    LoudnessError,
    RenderError,
    FilterRenderFailure,
    OversampleFailure,
    WorkerUnavailable,
    WorkerRuntimeError,
    WorkerCallError,
    BufferDetachedError,
    ConfigLoadError,
)
from .rendering import (
    OfflineRenderer,
    ScipyOfflineRenderer,
    NullRenderer,
    RenderSource,
    IIRSection,
    BiquadSection,
)
from .k_weighting import apply_k_weighting
from .true_peak import estimate_true_peak
from .gating import (
    AnalysisPayload,
    BlockEnergy,
    apply_two_stage_gate,
    compute_block_energies,
    compute_loudness_metrics,
)
from .worker import (
    NO_OFFLOAD,
    OffloadManager,
    InlineWorkerBoundary,
    ProcessWorkerBoundary,
    get_offload_manager,
    set_offload_manager,
    shutdown_offload_manager,
)
from .matching import compute_loudness_offsets, compute_loudness_gains, offset_to_gain
from .analysis import LoudnessAnalyzer, TrackAnalysis, analyze_loudness
from .formatting import format_db, format_time

__all__ = [
    # Data model
    "DecodedAudio",
    "WeightedAudio",
    "LoudnessMetrics",
    "TransferableBuffer",
    "AnalysisPayload",
    "BlockEnergy",

    # Configuration & errors
    "AnalyzerConfig",
    "DEFAULT_CONFIG",
    "LoudnessError",
    "RenderError",
    "FilterRenderFailure",
    "OversampleFailure",
    "WorkerUnavailable",
    "WorkerRuntimeError",
    "WorkerCallError",
    "BufferDetachedError",
    "ConfigLoadError",

    # Rendering
    "OfflineRenderer",
    "ScipyOfflineRenderer",
    "NullRenderer",
    "RenderSource",
    "IIRSection",
    "BiquadSection",

    # Stages
    "apply_k_weighting",
    "estimate_true_peak",
    "apply_two_stage_gate",
    "compute_block_energies",
    "compute_loudness_metrics",

    # Offload
    "NO_OFFLOAD",
    "OffloadManager",
    "InlineWorkerBoundary",
    "ProcessWorkerBoundary",
    "get_offload_manager",
    "set_offload_manager",
    "shutdown_offload_manager",

    # Matching & analysis
    "compute_loudness_offsets",
    "compute_loudness_gains",
    "offset_to_gain",
    "LoudnessAnalyzer",
    "TrackAnalysis",
    "analyze_loudness",

    # Formatting
    "format_db",
    "format_time",
]
