"""
Audio file decoding.

Thin adapter from soundfile to DecodedAudio for command-line use. The
analysis engine itself only ever sees DecodedAudio.
"""

import logging
from pathlib import Path
from typing import Union

import numpy as np
import soundfile as sf

from .audio_types import DecodedAudio

logger = logging.getLogger(__name__)


def load_audio(path: Union[str, Path]) -> DecodedAudio:
    """
    Decode an audio file to float32 channels.

    Raises:
        FileNotFoundError: If ``path`` does not exist
        RuntimeError: If the file cannot be decoded
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Audio file not found: {path}")

    try:
        audio, sr = sf.read(str(path), dtype="float32", always_2d=True)
    except RuntimeError as e:
        raise RuntimeError(f"Unable to decode {path}: {e}") from e

    logger.debug(f"Decoded {path.name}: {audio.shape[1]} ch, {sr} Hz, {audio.shape[0]} frames")
    return DecodedAudio.from_array(np.asarray(audio), int(sr))
