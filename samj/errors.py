# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.

# This source code is licensed under the license found in the
# LICENSE file in the root directory of this source tree.

"""
Exceptions raised by SAMJ sessions.

Prompt validation problems are detected locally, before anything is sent to
the inference process, and raise InvalidArgumentError. Everything that goes
wrong on the other side of the task channel surfaces as a RemoteTaskError
subclass carrying the remote message. Shared memory setup failures are left
as the OSError raised by the standard library.
"""


class InvalidArgumentError(ValueError):
    """A prompt, image, mask or encoding id that cannot be processed."""


class RemoteTaskError(RuntimeError):
    """Base class for failures reported by the remote inference task."""

    def __init__(self, message: str = "", status=None):
        super().__init__(message)
        self.status = status


class TaskCanceledError(RemoteTaskError):
    pass


class TaskFailedError(RemoteTaskError):
    pass


class TaskCrashedError(RemoteTaskError):
    pass


class MissingOutputError(RemoteTaskError):
    """The task completed but did not produce an expected named output."""
