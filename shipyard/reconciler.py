"""Reconciliation loop driven by stack state changes and periodic sweeps."""

from __future__ import annotations

import json
import logging
import threading
from datetime import timedelta
from typing import Callable, Optional, Union

from shipyard.kv import EventType, WatchEvent, WatchStream
from shipyard.stacks import StackState, StackStore, has_state_suffix
from shipyard.store import StoreError

log = logging.getLogger(__name__)

DEFAULT_INTERVAL = 30.0  # seconds between full sweeps

ReconcileFunc = Callable[[StackState], None]


class Watcher:
    """Watches stack states and calls a reconcile function on every change and sweep."""

    def __init__(
        self,
        stacks: StackStore,
        reconcile: ReconcileFunc,
        interval: Union[float, timedelta, None] = 0,
    ) -> None:
        if isinstance(interval, timedelta):
            interval = interval.total_seconds()
        self.stacks = stacks
        self.reconcile = reconcile
        self.interval = float(interval) if interval else DEFAULT_INTERVAL
        self._stopped = threading.Event()
        self._stream: Optional[WatchStream] = None
        self._threads: list[threading.Thread] = []

    def __enter__(self) -> "Watcher":
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

    @property
    def running(self) -> bool:
        return bool(self._threads) and not self._stopped.is_set()

    def start(self) -> Callable[[], None]:
        """Start the watch loop and periodic sweep in the background; return stop."""
        if self._threads:
            raise RuntimeError("reconciler already started")
        self._stopped.clear()
        self._stream = self.stacks.watch()
        self._threads = [
            threading.Thread(target=self._watch_loop, name="reconcile-watch", daemon=True),
            threading.Thread(target=self._sweep_loop, name="reconcile-sweep", daemon=True),
        ]
        for thread in self._threads:
            thread.start()
        log.info("store: reconciler started (sweep every %ss)", self.interval)
        return self.stop

    def stop(self) -> None:
        """Stop both loops and wait for them to finish."""
        self._stopped.set()
        if self._stream is not None:
            self._stream.cancel()
        current = threading.current_thread()
        for thread in self._threads:
            if thread is not current:
                thread.join()
        self._threads = []
        self._stream = None

    def sweep(self) -> list[StackState]:
        """Reconcile every non-terminal stack once; return the stacks attempted."""
        try:
            states = self.stacks.list_states()
        except StoreError as exc:
            log.warning("store: periodic sweep list error: %s", exc)
            return []
        attempted = []
        for state in states:
            if state.state.is_terminal():
                continue
            attempted.append(state)
            try:
                self.reconcile(state)
            except Exception as exc:
                log.warning("store: periodic reconcile error for %r: %s", state.name, exc)
        return attempted

    def handle_event(self, event: WatchEvent) -> Optional[StackState]:
        """Reconcile the stack named by a watch event; return it, or None if skipped."""
        if event.type is not EventType.PUT:
            return None
        key = event.kv.key
        if not has_state_suffix(key):
            return None  # ledger entries
        try:
            state = StackState.from_dict(json.loads(event.kv.value))
        except (TypeError, ValueError) as exc:
            log.warning("store: watcher: malformed state at %r: %s", key, exc)
            return None
        if state.state.is_terminal():
            return None
        try:
            self.reconcile(state)
        except Exception as exc:
            log.warning("store: reconcile error for %r: %s", state.name, exc)
        return state

    def _watch_loop(self) -> None:
        stream = self._stream
        if stream is None:
            return
        for event in stream:
            if self._stopped.is_set():
                break
            threading.Thread(target=self.handle_event, args=(event,), daemon=True).start()

    def _sweep_loop(self) -> None:
        while not self._stopped.wait(self.interval):
            self.sweep()