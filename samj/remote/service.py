# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.

# This source code is licensed under the license found in the
# LICENSE file in the root directory of this source tree.

"""
Task channel to the inference process.

A Service turns a command into a Task. Starting a task hands the serialized
request to the transport; the transport answers with a stream of responses
(LAUNCH, any number of UPDATE, then one terminal COMPLETION, CANCELATION,
FAILURE or CRASH) which the Task folds into its status and outputs while
forwarding every response to its listeners.
"""

import logging
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from samj.commands import CommandSerializer
from samj.errors import (
    RemoteTaskError,
    TaskCanceledError,
    TaskCrashedError,
    TaskFailedError,
)


class TaskStatus(Enum):
    INITIAL = "initial"
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETE = "complete"
    CANCELED = "canceled"
    FAILED = "failed"
    CRASHED = "crashed"

    def is_finished(self) -> bool:
        return self in (
            TaskStatus.COMPLETE,
            TaskStatus.CANCELED,
            TaskStatus.FAILED,
            TaskStatus.CRASHED,
        )


class ResponseType(Enum):
    LAUNCH = "launch"
    UPDATE = "update"
    COMPLETION = "completion"
    CANCELATION = "cancelation"
    FAILURE = "failure"
    CRASH = "crash"


_TERMINAL = {
    ResponseType.COMPLETION: TaskStatus.COMPLETE,
    ResponseType.CANCELATION: TaskStatus.CANCELED,
    ResponseType.FAILURE: TaskStatus.FAILED,
    ResponseType.CRASH: TaskStatus.CRASHED,
}


def response(response_type: ResponseType, message=None, outputs=None, error=None) -> dict:
    """Build a picklable response dict."""
    return {
        "type": response_type.name,
        "message": message,
        "outputs": outputs,
        "error": error,
    }


@dataclass
class TaskEvent:
    task: "Task"
    response_type: ResponseType
    message: Optional[str] = None
    outputs: Dict[str, Any] = field(default_factory=dict)


class Task:
    """One request in flight. Created by Service.task, never reused."""

    def __init__(self, service: "Service", command):
        self.uuid = uuid.uuid4().hex
        self.service = service
        self.command = command
        self.request = CommandSerializer.to_request(command)
        self.status = TaskStatus.INITIAL
        self.outputs: Dict[str, Any] = {}
        self.message: Optional[str] = None
        self.error: Optional[str] = None
        self.listener_error: Optional[Exception] = None
        self._listeners: List[Callable[[TaskEvent], None]] = []
        self._done = threading.Event()

    def listen(self, listener: Callable[[TaskEvent], None]) -> "Task":
        self._listeners.append(listener)
        return self

    def start(self) -> "Task":
        if self.status != TaskStatus.INITIAL:
            raise RuntimeError(f"Task {self.uuid} was already started")
        self.status = TaskStatus.QUEUED
        logging.debug(
            f"Starting task {self.uuid} op={self.request['op']} "
            f"inputs={sorted(self.request['inputs'])}"
        )
        self.service._submit(self)
        return self

    def wait_for(self, timeout: Optional[float] = None) -> bool:
        """Block until the task finished; returns False on timeout."""
        return self._done.wait(timeout)

    def cancel(self):
        """Request cancellation. The task still ends with a terminal response."""
        if not self.status.is_finished():
            self.service._cancel(self)

    def is_finished(self) -> bool:
        return self.status.is_finished()

    def handle(self, resp: dict):
        """Fold one transport response into the task state and notify listeners."""
        response_type = ResponseType[resp["type"]]
        if self.status.is_finished():
            logging.debug(f"Ignoring {response_type.name} for finished task {self.uuid}")
            return
        message = resp.get("message")
        outputs = resp.get("outputs") or {}
        if response_type == ResponseType.LAUNCH:
            self.status = TaskStatus.RUNNING
        elif response_type == ResponseType.UPDATE:
            self.message = message
        elif response_type == ResponseType.COMPLETION:
            self.outputs.update(outputs)
        elif response_type in (ResponseType.FAILURE, ResponseType.CRASH):
            self.error = resp.get("error")
        event = TaskEvent(self, response_type, message, outputs)
        for listener in self._listeners:
            try:
                listener(event)
            except Exception as e:
                # re-raised by raise_for_status in the waiting thread
                logging.error(f"Listener of task {self.uuid} failed on {response_type.name}: {e}")
                if self.listener_error is None:
                    self.listener_error = e
        if response_type in _TERMINAL:
            self.status = _TERMINAL[response_type]
            self._done.set()

    def raise_for_status(self):
        """Raise the exception matching a non-successful terminal status."""
        if self.listener_error is not None:
            raise self.listener_error
        if self.status == TaskStatus.COMPLETE:
            return
        if self.status == TaskStatus.CANCELED:
            raise TaskCanceledError(f"Task {self.uuid} was canceled", self.status)
        if self.status == TaskStatus.FAILED:
            raise TaskFailedError(self.error or "Remote task failed", self.status)
        if self.status == TaskStatus.CRASHED:
            raise TaskCrashedError(self.error or "Inference process crashed", self.status)
        raise RemoteTaskError(f"Task {self.uuid} has not finished ({self.status.value})", self.status)


class Service(ABC):
    """A channel able to run commands on an InferenceServer."""

    def task(self, command) -> Task:
        return Task(self, command)

    @abstractmethod
    def _submit(self, task: Task):
        pass

    @abstractmethod
    def _cancel(self, task: Task):
        pass

    @abstractmethod
    def close(self):
        pass

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
