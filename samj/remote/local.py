# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.

# This source code is licensed under the license found in the
# LICENSE file in the root directory of this source tree.

import logging
import queue
import threading
from typing import Dict

from samj.remote.server import InferenceServer
from samj.remote.service import Service, Task


class LocalService(Service):
    """
    Runs an InferenceServer inside the calling process.

    Tasks are executed one at a time on a worker thread, in submission order,
    so the caller sees the same blocking/streaming behaviour as with
    SubprocessService. Responses are delivered to tasks under a lock, one at
    a time.
    """

    def __init__(self, server: InferenceServer):
        self.server = server
        self._queue: "queue.Queue" = queue.Queue()
        self._cancel_events: Dict[str, threading.Event] = {}
        self._deliver_lock = threading.Lock()
        self._closed = False
        self._worker = threading.Thread(target=self._run, name="samj-local-service", daemon=True)
        self._worker.start()

    def _submit(self, task: Task):
        if self._closed:
            raise RuntimeError("Service is closed")
        self._cancel_events[task.uuid] = threading.Event()
        self._queue.put(task)

    def _cancel(self, task: Task):
        event = self._cancel_events.get(task.uuid)
        if event is not None:
            event.set()

    def _deliver(self, task: Task, resp: dict):
        with self._deliver_lock:
            task.handle(resp)

    def _run(self):
        while True:
            task = self._queue.get()
            if task is None:
                break
            cancel_event = self._cancel_events[task.uuid]
            try:
                self.server.serve(task.request, lambda resp, t=task: self._deliver(t, resp), cancel_event)
            finally:
                self._cancel_events.pop(task.uuid, None)

    def close(self):
        if self._closed:
            return
        self._closed = True
        self._queue.put(None)
        self._worker.join(timeout=5)
        if self._worker.is_alive():
            logging.error("Local inference worker did not stop")
