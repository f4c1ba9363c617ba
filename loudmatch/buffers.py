"""
Move-only sample buffers.

Sample data crossing the worker boundary is transferred, not shared:
after ``transfer()`` the sender's handle is detached and any further read
raises BufferDetachedError. Callers that still need the data afterwards
must ``clone()`` before transferring.
"""

from __future__ import annotations

from typing import Iterable, List, Optional

import numpy as np

from .errors import BufferDetachedError


class TransferableBuffer:
    """Unique-ownership handle around a float32 sample array."""

    __slots__ = ("_data",)

    def __init__(self, data: np.ndarray):
        self._data: Optional[np.ndarray] = np.ascontiguousarray(data, dtype=np.float32)

    @classmethod
    def copy_of(cls, data: np.ndarray) -> "TransferableBuffer":
        """New buffer owning a private copy of ``data``."""
        return cls(np.array(data, dtype=np.float32, copy=True))

    @property
    def detached(self) -> bool:
        return self._data is None

    @property
    def data(self) -> np.ndarray:
        if self._data is None:
            raise BufferDetachedError("buffer was transferred and can no longer be read")
        return self._data

    def __len__(self) -> int:
        return len(self.data)

    def clone(self) -> "TransferableBuffer":
        return TransferableBuffer.copy_of(self.data)

    def transfer(self) -> np.ndarray:
        """Hand the underlying array to the receiver and detach this handle."""
        data = self.data
        self._data = None
        return data


def transfer_all(buffers: Iterable[TransferableBuffer]) -> List[np.ndarray]:
    return [buffer.transfer() for buffer in buffers]
