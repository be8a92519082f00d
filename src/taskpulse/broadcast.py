"""
Refresh broadcast channel.

Decouples "something changed" from "who needs to recompute". ``emit`` carries
no payload: listeners re-derive what they need from the entity store, so
several mutations may collapse into a single notification.
"""
import threading
from contextlib import contextmanager
from typing import Callable, Dict, List

from taskpulse.logs import get_logger

log = get_logger("broadcast")

Handler = Callable[[], None]
Unsubscribe = Callable[[], None]

DEFAULT_CHANNEL = "analytics:refresh"


class RefreshChannel:
    """Observer list with coalescing emits. Never raises to the emitter."""

    def __init__(self, name: str = DEFAULT_CHANNEL):
        self.name = name
        self._handlers: List[Handler] = []
        self._lock = threading.RLock()
        self._batch_depth = 0
        self._pending = False

    @property
    def listener_count(self) -> int:
        with self._lock:
            return len(self._handlers)

    def subscribe(self, handler: Handler) -> Unsubscribe:
        """Register a handler; the returned callable removes it again."""
        with self._lock:
            self._handlers.append(handler)

        def unsubscribe():
            with self._lock:
                if handler in self._handlers:
                    self._handlers.remove(handler)

        return unsubscribe

    def emit(self):
        """Notify every listener, or defer to the end of the current batch."""
        with self._lock:
            if self._batch_depth > 0:
                self._pending = True
                return
            handlers = list(self._handlers)
        self._deliver(handlers)

    @contextmanager
    def batch(self):
        """Coalesce every emit inside the block into one notification per listener."""
        with self._lock:
            self._batch_depth += 1
        try:
            yield self
        finally:
            with self._lock:
                self._batch_depth -= 1
                flush = self._batch_depth == 0 and self._pending
                if flush:
                    self._pending = False
                handlers = list(self._handlers)
            if flush:
                self._deliver(handlers)

    def _deliver(self, handlers: List[Handler]):
        log.debug(f"Emitting {self.name} to {len(handlers)} listener(s)")
        for handler in handlers:
            try:
                handler()
            except Exception:
                # One broken view must not starve the others
                log.exception(f"Refresh listener {handler!r} failed on {self.name}")


_channels: Dict[str, RefreshChannel] = {}
_registry_lock = threading.Lock()

def get_channel(name: str = DEFAULT_CHANNEL) -> RefreshChannel:
    """Process-wide channel registry; one channel per name."""
    with _registry_lock:
        channel = _channels.get(name)
        if channel is None:
            channel = RefreshChannel(name)
            _channels[name] = channel
        return channel

def reset_channels():
    """Forget every registered channel (listeners included)."""
    with _registry_lock:
        _channels.clear()
