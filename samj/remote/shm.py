# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.

# This source code is licensed under the license found in the
# LICENSE file in the root directory of this source tree.

"""
Bulk array hand-off between the session and the inference process.

The session creates a SharedArray, writes the pixels, sends only the
picklable SharedArrayRef with the command and closes its own handle when the
call returns. The inference side attaches by name, copies the data, and
closes and unlinks the segment at the end of the task.
"""

from dataclasses import dataclass
from multiprocessing import shared_memory
from typing import Optional, Tuple

import numpy as np


@dataclass(frozen=True)
class SharedArrayRef:
    name: str
    shape: Tuple[int, ...]
    dtype: str

    @property
    def nbytes(self) -> int:
        return int(np.prod(self.shape)) * np.dtype(self.dtype).itemsize


class SharedArray:
    """A numpy array backed by a named shared memory segment."""

    def __init__(self, shm: shared_memory.SharedMemory, shape, dtype):
        self._shm = shm
        self.shape = tuple(int(s) for s in shape)
        self.dtype = np.dtype(dtype)
        self._array: Optional[np.ndarray] = None

    @classmethod
    def create(cls, shape, dtype) -> "SharedArray":
        nbytes = int(np.prod(shape)) * np.dtype(dtype).itemsize
        # a zero-sized segment cannot be created
        shm = shared_memory.SharedMemory(create=True, size=max(1, nbytes))
        return cls(shm, shape, dtype)

    @classmethod
    def from_array(cls, array: np.ndarray) -> "SharedArray":
        array = np.ascontiguousarray(array)
        shared = cls.create(array.shape, array.dtype)
        try:
            shared.array[...] = array
        except BaseException:
            shared.close()
            shared.unlink()
            raise
        return shared

    @classmethod
    def attach(cls, ref: SharedArrayRef) -> "SharedArray":
        return cls(shared_memory.SharedMemory(name=ref.name), ref.shape, ref.dtype)

    @property
    def name(self) -> str:
        return self._shm.name

    @property
    def array(self) -> np.ndarray:
        if self._array is None:
            self._array = np.ndarray(self.shape, dtype=self.dtype, buffer=self._shm.buf)
        return self._array

    def ref(self) -> SharedArrayRef:
        return SharedArrayRef(self.name, self.shape, self.dtype.str)

    def read(self) -> np.ndarray:
        """Copy of the content, independent from the segment."""
        return self.array.copy()

    def close(self):
        self._array = None
        self._shm.close()

    def unlink(self):
        self._shm.unlink()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
