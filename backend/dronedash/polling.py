"""Polling loop that turns source fetches into the published telemetry state.

The controller owns the single "current telemetry" cell. Each cycle calls the
source, fuses fragments when needed and publishes the result. Empty results
keep the last snapshot and count as a healthy link; errors keep the last
snapshot and mark the link as lost. Nothing is published after `stop()`.
"""
import logging
import threading
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, List, Optional, Sequence

from dronedash.fusion import fuse
from dronedash.schemas import ConnectionStatus, Telemetry, TelemetryFragment
from dronedash.sources.base import FetchResult


class ConnectionState(str, Enum):
    IDLE = "idle"
    POLLING = "polling"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


TelemetryListener = Callable[[Telemetry], None]
StatusListener = Callable[[ConnectionStatus], None]


class PollingController:
    """Periodically fetch, fuse and publish telemetry."""

    def __init__(self, source, interval: float = 2.0,
                 fuse_fn: Callable[[Sequence[TelemetryFragment]], Telemetry] = fuse,
                 on_first_data: Optional[Callable[[FetchResult, Telemetry], None]] = None,
                 clock: Callable[[], float] = time.time, stale_after: float = 10.0):
        """Create controller.

        Args:
            source: object implementing ``fetch() -> FetchResult`` and ``name``.
            interval: seconds between the start of consecutive cycles.
            fuse_fn: fusion function applied to fragment results.
            on_first_data: called once with the first non-empty result.
            clock: epoch-seconds clock, used for staleness.
            stale_after: snapshot age in seconds after which it is reported stale.
        """
        self.source = source
        self.interval = interval
        self.fuse_fn = fuse_fn
        self.on_first_data = on_first_data or self._log_first_data
        self.clock = clock
        self.stale_after = stale_after
        self.logger = logging.getLogger(__name__)

        # Guards state, sequence numbers and listener calls.
        self._lock = threading.RLock()
        self._cycle_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._closed = False

        self._state = ConnectionState.IDLE
        self._telemetry: Optional[Telemetry] = None
        self._last_error: Optional[str] = None
        self._started_seq = 0
        self._applied_seq = 0
        self._first_data_seen = False

        self._telemetry_listeners: List[TelemetryListener] = []
        self._status_listeners: List[StatusListener] = []

    # -- listeners -------------------------------------------------------

    def add_telemetry_listener(self, fn: TelemetryListener):
        self._telemetry_listeners.append(fn)

    def add_status_listener(self, fn: StatusListener):
        self._status_listeners.append(fn)

    # -- read side -------------------------------------------------------

    @property
    def telemetry(self) -> Optional[Telemetry]:
        with self._lock:
            return self._telemetry

    @property
    def state(self) -> ConnectionState:
        with self._lock:
            return self._state

    @property
    def is_connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED

    @property
    def last_error(self) -> Optional[str]:
        with self._lock:
            return self._last_error

    def status(self) -> ConnectionStatus:
        with self._lock:
            telemetry, state, error = self._telemetry, self._state, self._last_error
        now_ms = int(self.clock() * 1000)
        return ConnectionStatus(
            status=state.value,
            source=self.source.name,
            server_time=datetime.now(timezone.utc).isoformat(),
            error=error,
            last_update=telemetry.timestamp if telemetry else None,
            stale=telemetry is not None and telemetry.age_ms(now_ms) > self.stale_after * 1000,
        )

    # -- lifecycle -------------------------------------------------------

    def start(self):
        """Run one cycle immediately, then one every `interval` seconds."""
        with self._lock:
            if self._thread is not None or self._closed:
                return
            self._state = ConnectionState.POLLING
            self._thread = threading.Thread(target=self._loop, name="telemetry-poller", daemon=True)
            self._notify_status()
        self._thread.start()

    def stop(self, timeout: float = 2.0):
        """Stop the loop; results of any in-flight cycle are dropped."""
        with self._lock:
            self._closed = True
            self._state = ConnectionState.IDLE
        self._stop_event.set()
        thread = self._thread
        if thread and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout=timeout)

    @property
    def closed(self) -> bool:
        return self._closed

    def _loop(self):
        self.logger.info("Polling %s every %.1fs", self.source.name, self.interval)
        while not self._stop_event.is_set():
            try:
                self.run_cycle()
            except Exception:
                self.logger.exception("Error in telemetry poll cycle")
            # Event.wait so shutdown interrupts the sleep promptly
            self._stop_event.wait(self.interval)

    # -- cycles ----------------------------------------------------------

    def run_cycle(self) -> bool:
        """Fetch, fuse and publish once.

        Returns False when the cycle was skipped (previous cycle still in
        flight or controller stopped) or its result was discarded.
        """
        if not self._cycle_lock.acquire(blocking=False):
            self.logger.debug("Previous poll still in flight; skipping cycle")
            return False
        try:
            seq = self.begin_cycle()
            if seq is None:
                return False
            return self.complete_cycle(seq, self._fetch())
        finally:
            self._cycle_lock.release()

    def begin_cycle(self) -> Optional[int]:
        """Allocate the sequence number of a new cycle, or None after stop."""
        with self._lock:
            if self._closed:
                return None
            self._started_seq += 1
            return self._started_seq

    def _fetch(self) -> FetchResult:
        try:
            result = self.source.fetch()
        except Exception as e:
            # Sources must not raise; treat it as a lost link anyway.
            self.logger.exception("Source %s raised during fetch", self.source.name)
            return FetchResult.failed(str(e))
        if not isinstance(result, FetchResult):
            self.logger.warning("Source %s returned %r; treating as empty", self.source.name, type(result).__name__)
            return FetchResult.empty()
        return result

    def complete_cycle(self, seq: int, result: FetchResult) -> bool:
        """Apply the result of cycle `seq`. Results older than the last applied cycle are dropped."""
        telemetry: Optional[Telemetry] = None
        if not result.is_error:
            if result.telemetry is not None:
                telemetry = result.telemetry
            elif result.fragments:
                telemetry = self.fuse_fn(result.fragments)

        with self._lock:
            if self._closed:
                self.logger.debug("Dropping result of cycle %d after stop", seq)
                return False
            if seq <= self._applied_seq:
                self.logger.debug("Dropping stale result of cycle %d (applied %d)", seq, self._applied_seq)
                return False
            self._applied_seq = seq

            previous = (self._state, self._last_error)
            if result.is_error:
                if self._state != ConnectionState.DISCONNECTED:
                    self.logger.warning("Telemetry link lost: %s", result.error)
                self._state = ConnectionState.DISCONNECTED
                self._last_error = result.error
            else:
                self._state = ConnectionState.CONNECTED
                self._last_error = None
                if telemetry is not None:
                    self._telemetry = telemetry

            if telemetry is not None and not self._first_data_seen:
                self._first_data_seen = True
                self._call(self.on_first_data, result, telemetry)
            if telemetry is not None:
                for fn in list(self._telemetry_listeners):
                    self._call(fn, telemetry)
            if previous != (self._state, self._last_error):
                self._notify_status()
        return True

    def _notify_status(self):
        status = self.status()
        for fn in list(self._status_listeners):
            self._call(fn, status)

    def _call(self, fn, *args):
        try:
            fn(*args)
        except Exception:
            self.logger.exception("Error in listener %r", fn)

    def _log_first_data(self, result: FetchResult, telemetry: Telemetry):
        if result.fragments:
            self.logger.info("First telemetry from %s; kinds: %s",
                             self.source.name, ", ".join(result.kinds))
        else:
            self.logger.info("First telemetry from %s for %s", self.source.name, telemetry.drone_id)
