"""
Analyzer Configuration

All tunables of the loudness engine in one dataclass. Defaults are the
BS.1770 values; overrides come from environment variables or a YAML file.
"""

from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union
import logging
import os

import yaml

from .errors import ConfigLoadError
from .utils import (
    ABSOLUTE_GATE_LUFS,
    BLOCK_DURATION_SECONDS,
    DEFAULT_CAP_DB,
    LUFS_OFFSET,
    MAX_OVERSAMPLE_RATE,
    REFERENCE_SAMPLE_RATE,
    RELATIVE_GATE_OFFSET,
    STEP_DURATION_SECONDS,
    TRUE_PEAK_OVERSAMPLE,
)

logger = logging.getLogger(__name__)


@dataclass
class AnalyzerConfig:
    """
    Configuration for loudness analysis and matching.

    Attributes:
        reference_sample_rate: Rate the K-weighting stage renders at
        block_seconds: Gating block duration
        step_seconds: Gating block hop (must not exceed block_seconds)
        absolute_gate_lufs: Absolute gate threshold
        relative_gate_lu: Relative gate distance below preliminary loudness
        lufs_offset: Loudness offset constant
        oversample_factor: True-peak oversampling factor
        max_oversample_rate: Upper bound for the oversampled rate
        cap_db: Maximum attenuation applied when matching tracks
        offload_mode: "process", "inline" or "off"
        worker_timeout: Seconds to wait for an offloaded result (None = forever)
        verbose: Enable debug logging in the CLI
    """
    # K-weighting
    reference_sample_rate: int = REFERENCE_SAMPLE_RATE

    # Gating
    block_seconds: float = BLOCK_DURATION_SECONDS
    step_seconds: float = STEP_DURATION_SECONDS
    absolute_gate_lufs: float = ABSOLUTE_GATE_LUFS
    relative_gate_lu: float = RELATIVE_GATE_OFFSET
    lufs_offset: float = LUFS_OFFSET

    # True peak
    oversample_factor: int = TRUE_PEAK_OVERSAMPLE
    max_oversample_rate: int = MAX_OVERSAMPLE_RATE

    # Matching
    cap_db: float = DEFAULT_CAP_DB

    # Offload
    offload_mode: str = "process"
    worker_timeout: Optional[float] = 60.0

    verbose: bool = False

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """Raise ConfigLoadError for inconsistent settings."""
        if self.reference_sample_rate <= 0:
            raise ConfigLoadError("reference_sample_rate must be positive")
        if self.block_seconds <= 0 or self.step_seconds <= 0:
            raise ConfigLoadError("block_seconds and step_seconds must be positive")
        if self.step_seconds > self.block_seconds:
            raise ConfigLoadError("step_seconds must not exceed block_seconds")
        if self.oversample_factor < 1 or self.max_oversample_rate <= 0:
            raise ConfigLoadError("oversample_factor and max_oversample_rate must be positive")
        if self.cap_db < 0:
            raise ConfigLoadError("cap_db must not be negative")
        if self.offload_mode not in ("process", "inline", "off"):
            raise ConfigLoadError(f"Unknown offload_mode: {self.offload_mode!r}")
        if self.worker_timeout is not None and self.worker_timeout <= 0:
            raise ConfigLoadError("worker_timeout must be positive")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AnalyzerConfig":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigLoadError(f"Unknown configuration keys: {', '.join(unknown)}")
        try:
            return cls(**data)
        except TypeError as e:
            raise ConfigLoadError(f"Invalid configuration: {e}")

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "AnalyzerConfig":
        """
        Load configuration from a YAML mapping.

        Raises:
            ConfigLoadError: If the file is missing, unparsable or invalid
        """
        path = Path(path)
        if not path.exists():
            raise ConfigLoadError(f"Configuration file not found: {path}")

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigLoadError(f"Failed to parse YAML file {path}: {e}")
        except OSError as e:
            raise ConfigLoadError(f"Failed to read configuration file {path}: {e}")

        if not isinstance(data, dict):
            raise ConfigLoadError(f"Configuration file {path} must contain a mapping")

        config = cls.from_dict(data)
        logger.debug(f"Loaded analyzer config from {path}")
        return config

    @classmethod
    def from_env(cls, base: Optional["AnalyzerConfig"] = None) -> "AnalyzerConfig":
        """
        Apply environment overrides on top of ``base`` (or defaults).

        Environment Variables:
            LOUDMATCH_CAP_DB: Maximum attenuation in dB
            LOUDMATCH_OFFLOAD: Offload mode (process/inline/off)
            LOUDMATCH_WORKER_TIMEOUT: Seconds to wait for the worker (0 = forever)
            LOUDMATCH_OVERSAMPLE: True-peak oversampling factor
            LOUDMATCH_VERBOSE: Enable verbose mode (1/true/yes)
        """
        base = base or cls()
        values = {f.name: getattr(base, f.name) for f in fields(cls)}

        try:
            if "LOUDMATCH_CAP_DB" in os.environ:
                values["cap_db"] = float(os.environ["LOUDMATCH_CAP_DB"])
            if "LOUDMATCH_OFFLOAD" in os.environ:
                values["offload_mode"] = os.environ["LOUDMATCH_OFFLOAD"].strip().lower()
            if "LOUDMATCH_WORKER_TIMEOUT" in os.environ:
                timeout = float(os.environ["LOUDMATCH_WORKER_TIMEOUT"])
                values["worker_timeout"] = timeout if timeout > 0 else None
            if "LOUDMATCH_OVERSAMPLE" in os.environ:
                values["oversample_factor"] = int(os.environ["LOUDMATCH_OVERSAMPLE"])
        except ValueError as e:
            raise ConfigLoadError(f"Invalid environment override: {e}")

        if "LOUDMATCH_VERBOSE" in os.environ:
            values["verbose"] = os.environ["LOUDMATCH_VERBOSE"].lower() in ("1", "true", "yes")

        return cls(**values)


DEFAULT_CONFIG = AnalyzerConfig()
