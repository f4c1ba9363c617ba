"""
Concurrency Offload Manager

Moves the O(samples x channels) integration work off the calling thread.

Protocol (dict messages across the worker boundary):

    dispatch:  {"type": "analyze", "id": <int>, "payload": {...}}
    response:  {"type": "result", "id": <int>, "result": {"lufsIntegrated": ..., "peakDb": ...}}
               {"type": "error",  "id": <int>, "error": "<message>"}

Buffers in the payload are transferred: the caller's AnalysisPayload is
detached on dispatch. Responses are correlated to pending futures by id;
unknown ids are ignored.

Failure handling:
- worker cannot be created      -> submit() returns NO_OFFLOAD, caller computes in-process
- per-call error response       -> only that future fails (WorkerCallError)
- boundary runtime error        -> every pending future fails (WorkerRuntimeError),
                                   the boundary is torn down and rebuilt lazily

Boundaries:
- ProcessWorkerBoundary: multiprocessing child process + listener thread
- InlineWorkerBoundary: synchronous in-process stub
"""

from __future__ import annotations

import logging
import multiprocessing
import queue
import threading
from abc import ABC, abstractmethod
from concurrent.futures import Future, InvalidStateError
from typing import Any, Callable, Dict, Optional

from .audio_types import LoudnessMetrics
from .errors import WorkerCallError, WorkerRuntimeError, WorkerUnavailable
from .gating import AnalysisPayload, compute_loudness_metrics

logger = logging.getLogger(__name__)


NO_OFFLOAD = None

MAX_REQUEST_ID = 2 ** 31 - 1

PayloadFactory = Callable[[], AnalysisPayload]
MessageHandler = Callable[[Dict[str, Any]], None]
ErrorHandler = Callable[[BaseException], None]


class MessageType:
    """Message ``type`` values on the worker boundary."""
    ANALYZE = "analyze"
    RESULT = "result"
    ERROR = "error"
    # Worker loop died; boundary-level, never tied to one request
    FATAL = "fatal"


# =============================================================================
# WORKER SIDE
# =============================================================================

def build_analyze_message(request_id: int, payload: AnalysisPayload) -> Dict[str, Any]:
    """Dispatch message for ``payload``; transfers its buffers."""
    return {"type": MessageType.ANALYZE, "id": request_id, "payload": payload.to_wire()}


def handle_worker_message(message: Any) -> Optional[Dict[str, Any]]:
    """
    Process one inbound message inside the worker.

    Non-analyze messages are ignored (None). Any failure while analysing
    becomes an error response for that id.
    """
    if not isinstance(message, dict) or message.get("type") != MessageType.ANALYZE:
        return None

    request_id = message.get("id")
    try:
        payload = AnalysisPayload.from_wire(message["payload"])
        result = compute_loudness_metrics(payload)
    except Exception as e:
        return {"type": MessageType.ERROR, "id": request_id, "error": str(e) or "Unknown error"}

    return {"type": MessageType.RESULT, "id": request_id, "result": result.to_dict()}


def worker_main(requests, responses) -> None:
    """Child-process loop: read dispatches until a None sentinel arrives."""
    try:
        while True:
            message = requests.get()
            if message is None:
                break
            response = handle_worker_message(message)
            if response is not None:
                responses.put(response)
    except Exception as e:
        responses.put({"type": MessageType.FATAL, "error": f"{type(e).__name__}: {e}"})


# =============================================================================
# BOUNDARIES
# =============================================================================

class WorkerBoundary(ABC):
    """
    Transport to a worker execution context.

    The manager installs ``on_message`` and ``on_error`` before the first
    dispatch. ``on_error`` signals a boundary-level failure.
    """

    def __init__(self):
        self.on_message: Optional[MessageHandler] = None
        self.on_error: Optional[ErrorHandler] = None

    @abstractmethod
    def post_message(self, message: Dict[str, Any]) -> None:
        """Send ``message`` to the worker; raise WorkerRuntimeError if the boundary is broken."""

    @abstractmethod
    def terminate(self) -> None:
        """Stop the worker and release its resources. Idempotent."""

    def _emit_message(self, message: Dict[str, Any]) -> None:
        if self.on_message is not None:
            self.on_message(message)

    def _emit_error(self, error: BaseException) -> None:
        if self.on_error is not None:
            self.on_error(error)


class InlineWorkerBoundary(WorkerBoundary):
    """
    Synchronous stand-in for a worker.

    ``post_message`` runs ``handler`` immediately and delivers its response
    before returning. A handler that raises is treated as a boundary
    runtime error.
    """

    def __init__(self, handler: Callable[[Dict[str, Any]], Optional[Dict[str, Any]]] = handle_worker_message):
        super().__init__()
        self.handler = handler
        self.terminated = False
        self.posted = 0

    def post_message(self, message: Dict[str, Any]) -> None:
        if self.terminated:
            raise WorkerRuntimeError("inline worker was terminated")
        self.posted += 1
        try:
            response = self.handler(message)
        except Exception as e:
            self._emit_error(WorkerRuntimeError(str(e)))
            return
        if response is not None:
            self._emit_message(response)

    def fail(self, error: BaseException) -> None:
        """Raise a boundary-level error event."""
        self._emit_error(error)

    def terminate(self) -> None:
        self.terminated = True


class ProcessWorkerBoundary(WorkerBoundary):
    """
    Worker running in a child process.

    Dispatches go through a request queue; a daemon listener thread reads
    the response queue and watches the process for unexpected exits.
    """

    def __init__(self, start_method: str = "spawn", poll_interval: float = 0.2, join_timeout: float = 5.0):
        super().__init__()
        self.poll_interval = poll_interval
        self.join_timeout = join_timeout

        ctx = multiprocessing.get_context(start_method)
        self._requests = ctx.Queue()
        self._responses = ctx.Queue()
        self._stopping = threading.Event()
        self._process = ctx.Process(
            target=worker_main,
            args=(self._requests, self._responses),
            name="loudmatch-worker",
            daemon=True,
        )
        try:
            self._process.start()
        except (OSError, RuntimeError) as e:
            raise WorkerUnavailable(f"could not start worker process: {e}") from e

        self._listener = threading.Thread(target=self._listen, name="loudmatch-worker-listener", daemon=True)
        self._listener.start()
        logger.info("Started loudness worker process (pid %s)", self._process.pid)

    @property
    def is_alive(self) -> bool:
        return self._process.is_alive() and not self._stopping.is_set()

    def post_message(self, message: Dict[str, Any]) -> None:
        if not self.is_alive:
            raise WorkerRuntimeError("worker process is not running")
        try:
            self._requests.put(message)
        except (ValueError, OSError) as e:
            raise WorkerRuntimeError(f"could not dispatch to worker: {e}") from e

    def _listen(self) -> None:
        while not self._stopping.is_set():
            try:
                message = self._responses.get(timeout=self.poll_interval)
            except queue.Empty:
                if not self._process.is_alive() and not self._stopping.is_set():
                    self._emit_error(
                        WorkerRuntimeError(f"worker process exited with code {self._process.exitcode}")
                    )
                    return
                continue
            except (EOFError, OSError, ValueError) as e:
                if not self._stopping.is_set():
                    self._emit_error(WorkerRuntimeError(f"worker channel broken: {e}"))
                return

            if isinstance(message, dict) and message.get("type") == MessageType.FATAL:
                self._emit_error(WorkerRuntimeError(message.get("error", "worker crashed")))
                return
            self._emit_message(message)

    def terminate(self) -> None:
        if self._stopping.is_set():
            return
        self._stopping.set()

        try:
            self._requests.put_nowait(None)
        except (ValueError, OSError, queue.Full) as e:
            logger.debug("Could not send stop sentinel to worker: %s", e)

        self._process.join(timeout=self.join_timeout)
        if self._process.is_alive():
            logger.warning("Worker process did not stop; terminating")
            self._process.terminate()
            self._process.join(timeout=self.join_timeout)

        if self._listener is not threading.current_thread():
            self._listener.join(timeout=self.join_timeout)

        self._requests.close()
        self._responses.close()
        logger.info("Stopped loudness worker process")


BoundaryFactory = Callable[[], WorkerBoundary]


# =============================================================================
# MANAGER
# =============================================================================

class OffloadManager:
    """
    Correlates analysis requests with worker responses.

    The boundary is created lazily on the first ``submit`` and recreated
    after any boundary-level error; a broken boundary is never reused.

    Example:
        ```python
        manager = OffloadManager(ProcessWorkerBoundary)
        future = manager.submit(lambda: build_payload(weighted, audio))
        if future is NO_OFFLOAD:
            metrics = compute_loudness_metrics(build_payload(weighted, audio))
        else:
            metrics = future.result()
        ```
    """

    def __init__(self, boundary_factory: Optional[BoundaryFactory] = None, mode: Optional[str] = None):
        self._boundary_factory = boundary_factory
        self.mode = mode
        self._boundary: Optional[WorkerBoundary] = None
        self._pending: Dict[int, Future] = {}
        self._lock = threading.Lock()
        self._last_id = 0

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    @property
    def boundary(self) -> Optional[WorkerBoundary]:
        return self._boundary

    def _ensure_boundary(self) -> Optional[WorkerBoundary]:
        """Current boundary, creating one if needed. Caller holds the lock."""
        if self._boundary is not None:
            return self._boundary
        if self._boundary_factory is None:
            return None

        try:
            boundary = self._boundary_factory()
        except Exception as e:
            logger.warning("Offload worker unavailable, computing in-process: %s", e)
            return None

        boundary.on_message = self._handle_message
        boundary.on_error = lambda error, owner=boundary: self._handle_runtime_error(error, owner)
        self._boundary = boundary
        return boundary

    def _allocate_id(self) -> int:
        """Next correlation id; skips ids still pending after wrap-around. Caller holds the lock."""
        candidate = self._last_id
        while True:
            candidate = candidate + 1 if candidate < MAX_REQUEST_ID else 1
            if candidate not in self._pending:
                self._last_id = candidate
                return candidate

    def submit(self, payload_factory: PayloadFactory) -> Optional[Future]:
        """
        Dispatch an analysis to the worker.

        Args:
            payload_factory: Builds the payload; only called if dispatch proceeds

        Returns:
            Future resolving to LoudnessMetrics, or NO_OFFLOAD when no worker exists
        """
        with self._lock:
            boundary = self._ensure_boundary()
            if boundary is None:
                return NO_OFFLOAD
            request_id = self._allocate_id()
            future: Future = Future()
            self._pending[request_id] = future

        try:
            message = build_analyze_message(request_id, payload_factory())
        except Exception:
            with self._lock:
                self._pending.pop(request_id, None)
            raise

        try:
            boundary.post_message(message)
        except WorkerRuntimeError as e:
            self._handle_runtime_error(e, boundary)

        logger.debug("Dispatched analysis request %d", request_id)
        return future

    def _handle_message(self, message: Dict[str, Any]) -> None:
        if not isinstance(message, dict):
            return
        request_id = message.get("id")
        with self._lock:
            future = self._pending.pop(request_id, None)
        if future is None:
            logger.debug("Ignoring response for unknown request id %r", request_id)
            return

        try:
            if message.get("type") == MessageType.RESULT:
                future.set_result(LoudnessMetrics.from_dict(message.get("result") or {}))
            elif message.get("type") == MessageType.ERROR:
                future.set_exception(WorkerCallError(message.get("error", "Unknown error")))
            else:
                future.set_exception(WorkerCallError(f"unexpected response type {message.get('type')!r}"))
        except InvalidStateError:
            logger.debug("Request %r was abandoned; dropping its response", request_id)

    def _handle_runtime_error(self, error: BaseException, boundary: WorkerBoundary) -> None:
        with self._lock:
            if self._boundary is not boundary:
                # Stale boundary; its requests were already rejected.
                return
            self._boundary = None
            pending, self._pending = self._pending, {}

        logger.warning("Offload worker failed (%s); rejecting %d pending request(s)", error, len(pending))
        self._reject(pending, WorkerRuntimeError(str(error)))
        boundary.terminate()

    @staticmethod
    def _reject(pending: Dict[int, Future], error: BaseException) -> None:
        for request_id, future in pending.items():
            try:
                future.set_exception(error)
            except InvalidStateError:
                logger.debug("Request %d already settled", request_id)

    def shutdown(self) -> None:
        """Reject everything in flight and tear down the boundary."""
        with self._lock:
            boundary, self._boundary = self._boundary, None
            pending, self._pending = self._pending, {}

        self._reject(pending, WorkerRuntimeError("offload manager shut down"))
        if boundary is not None:
            boundary.terminate()


# =============================================================================
# PROCESS-WIDE SERVICE
# =============================================================================

OFFLOAD_MODES = ("process", "inline", "off")

_manager: Optional[OffloadManager] = None
_manager_lock = threading.Lock()


def boundary_factory_for(mode: str) -> Optional[BoundaryFactory]:
    """Boundary factory for an offload mode name."""
    if mode == "process":
        return ProcessWorkerBoundary
    if mode == "inline":
        return InlineWorkerBoundary
    if mode == "off":
        return None
    raise ValueError(f"Unknown offload mode: {mode!r} (expected one of {OFFLOAD_MODES})")


def get_offload_manager(mode: str = "process") -> OffloadManager:
    """
    The shared manager for ``mode``, created on first use.

    A shared manager built for another mode is shut down and replaced. A
    manager installed through ``set_offload_manager`` without a mode is
    returned as is.
    """
    global _manager
    factory = boundary_factory_for(mode)
    previous = None
    with _manager_lock:
        if _manager is not None and _manager.mode not in (None, mode):
            previous, _manager = _manager, None
        if _manager is None:
            _manager = OffloadManager(factory, mode=mode)
        manager = _manager

    if previous is not None:
        logger.info("Replacing %s offload manager with a %s one", previous.mode, mode)
        previous.shutdown()
    return manager


def set_offload_manager(manager: Optional[OffloadManager]) -> Optional[OffloadManager]:
    """Install ``manager`` as the shared one; returns the previous manager (not shut down)."""
    global _manager
    with _manager_lock:
        previous, _manager = _manager, manager
        return previous


def shutdown_offload_manager() -> None:
    previous = set_offload_manager(None)
    if previous is not None:
        previous.shutdown()
