"""
Workspace - wires store, backend, channel and coordinator together for one session.
"""
from pathlib import Path
from typing import Optional, Union

from taskpulse.backend import Backend, YAMLFileBackend
from taskpulse.broadcast import get_channel
from taskpulse.config import Settings, get_settings
from taskpulse.coordinator import Coordinator
from taskpulse.logs import get_logger
from taskpulse.notify import Notifier
from taskpulse.store import EntityStore

log = get_logger("workspace")


class Workspace:
    """Main context object providing the coordinator and read access for one session."""

    def __init__(self, settings: Optional[Settings] = None, backend: Optional[Backend] = None,
                 notifier: Optional[Notifier] = None, data_file: Union[Path, str, None] = None):
        self.settings = settings or get_settings()
        self.data_file = Path(data_file or self.settings.data_file)
        self.backend = backend if backend is not None else YAMLFileBackend(self.data_file)
        self.store = EntityStore()
        self.channel = get_channel(self.settings.channel_name)
        self.coordinator = Coordinator(self.store, self.backend, self.channel, notifier)
        self._views = []

    def __enter__(self):
        """Context manager entry - hydrate the store from the backend."""
        counts = self.coordinator.reload()
        log.debug("Workspace opened: " + ", ".join(f"{t.value}={n}" for t, n in counts.items()))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit - detach every view opened through this workspace."""
        self.close()

    def open_view(self, view_cls, *args, **kwargs):
        view = view_cls(self.store, *args, channel=self.channel, settings=self.settings, **kwargs)
        self._views.append(view)
        return view

    def close(self):
        for view in self._views:
            view.close()
        self._views.clear()
