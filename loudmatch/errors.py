"""
Exception hierarchy for loudness analysis.

Most of these never escape the public analysis entry points: filter and
oversampling failures degrade to a fallback strategy, worker failures
degrade to synchronous computation. Only misuse (bad configuration,
reading a buffer after it was transferred) reaches the caller.
"""


class LoudnessError(Exception):
    """Base class for all loudmatch errors."""
    pass


class RenderError(LoudnessError):
    """Raised by an offline renderer when a render pass fails."""
    pass


class FilterRenderFailure(RenderError):
    """K-weighting render failed; the filter stage falls back."""
    pass


class OversampleFailure(RenderError):
    """Oversampled render failed; the true-peak stage falls back."""
    pass


class WorkerUnavailable(LoudnessError):
    """No offload worker could be created."""
    pass


class WorkerRuntimeError(LoudnessError):
    """
    Boundary-level worker failure.

    Every request pending at the time of the failure is rejected with
    this error and the worker handle is discarded.
    """
    pass


class WorkerCallError(LoudnessError):
    """A single analysis request failed inside the worker."""
    pass


class BufferDetachedError(LoudnessError):
    """A sample buffer was read after its ownership was transferred."""
    pass


class ConfigLoadError(LoudnessError):
    """Raised when configuration loading or validation fails."""
    pass
