# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.

# This source code is licensed under the license found in the
# LICENSE file in the root directory of this source tree.

"""
Out-of-process inference.

The model lives in a child process started with multiprocessing. Requests go
down one queue as ("run", task_id, request) or ("cancel", task_id, None);
responses come back on another queue as (task_id, response). A reader thread
in the parent dispatches them to their tasks. If the child dies, every task
still pending is finished with a CRASH response.
"""

import logging
import multiprocessing as mp
import queue
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Optional

from samj.commands import UPDATE_ID_CONTOUR, UPDATE_ID_N_CONTOURS
from samj.encoding.region import EncodingThresholds
from samj.models.base import ModelAdapter
from samj.remote.server import InferenceServer
from samj.remote.service import ResponseType, Service, Task, response


def _serve_forever(server_args, requests, responses):
    """Entry point of the inference process."""
    server = InferenceServer(*server_args)
    cancel_events: Dict[str, threading.Event] = {}

    def run(task_id, request, cancel_event):
        try:
            server.serve(request, lambda resp: responses.put((task_id, resp)), cancel_event)
        finally:
            cancel_events.pop(task_id, None)

    # one request at a time; the main loop stays free to receive cancel requests
    with ThreadPoolExecutor(max_workers=1) as executor:
        while True:
            message = requests.get()
            if message is None:
                break
            kind, task_id, request = message
            if kind == "run":
                cancel_events[task_id] = threading.Event()
                executor.submit(run, task_id, request, cancel_events[task_id])
            elif kind == "cancel" and task_id in cancel_events:
                cancel_events[task_id].set()


class SubprocessService(Service):
    def __init__(
        self,
        adapter: ModelAdapter,
        thresholds: Optional[EncodingThresholds] = None,
        start_method: str = "spawn",
    ):
        context = mp.get_context(start_method)
        self._requests = context.Queue()
        self._responses = context.Queue()
        server_args = (adapter, thresholds, UPDATE_ID_N_CONTOURS, UPDATE_ID_CONTOUR)
        self._process = context.Process(
            target=_serve_forever,
            args=(server_args, self._requests, self._responses),
            name="samj-inference",
            daemon=True,
        )
        self._process.start()
        logging.info(f"Started inference process pid={self._process.pid}")

        self._tasks: Dict[str, Task] = {}
        self._lock = threading.Lock()
        self._closed = False
        self._reader = threading.Thread(target=self._read_responses, name="samj-responses", daemon=True)
        self._reader.start()

    def _submit(self, task: Task):
        if self._closed:
            raise RuntimeError("Service is closed")
        if not self._process.is_alive():
            task.handle(response(ResponseType.CRASH, error="Inference process is not running"))
            return
        with self._lock:
            self._tasks[task.uuid] = task
        self._requests.put(("run", task.uuid, task.request))

    def _cancel(self, task: Task):
        self._requests.put(("cancel", task.uuid, None))

    def _read_responses(self):
        while True:
            try:
                item = self._responses.get(timeout=0.5)
            except queue.Empty:
                if not self._process.is_alive():
                    self._crash_pending(f"Inference process exited with code {self._process.exitcode}")
                    return
                continue
            if item is None:
                return
            task_id, resp = item
            with self._lock:
                task = self._tasks.get(task_id)
            if task is None:
                logging.debug(f"Response for unknown task {task_id}")
                continue
            task.handle(resp)
            if task.is_finished():
                with self._lock:
                    self._tasks.pop(task_id, None)

    def _crash_pending(self, error: str):
        with self._lock:
            pending = list(self._tasks.values())
            self._tasks.clear()
        if pending:
            logging.error(f"{error}; {len(pending)} task(s) crashed")
        for task in pending:
            task.handle(response(ResponseType.CRASH, error=error))

    def close(self):
        if self._closed:
            return
        self._closed = True
        self._requests.put(None)
        self._process.join(timeout=10)
        if self._process.is_alive():
            logging.error("Inference process did not stop, terminating it")
            self._process.terminate()
            self._process.join()
        self._responses.put(None)
        self._reader.join(timeout=5)
