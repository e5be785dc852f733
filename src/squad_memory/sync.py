"""Background sync manager for automatic index updates.

Runs a daemon thread that periodically re-indexes every registered project
so the memory index picks up documents written by agents in the meantime.
"""

import logging
import threading

from squad_memory.tools import ProjectRegistry

logger = logging.getLogger(__name__)


class SyncManager:
    """Manages periodic background sync of project indexes with their files.

    The sync thread is a daemon, so it automatically terminates when the
    main process exits.
    """

    def __init__(self, registry: ProjectRegistry, interval: int):
        """Initialize the sync manager.

        Args:
            registry: Projects to keep in sync.
            interval: Sync interval in seconds. Must be > 0.
        """
        if interval <= 0:
            raise ValueError(f"Sync interval must be positive, got {interval}")

        self._registry = registry
        self._interval = interval
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the background sync thread."""
        if self.running:
            logger.warning("Sync thread already running")
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._sync_loop,
            name="squad-memory-sync",
            daemon=True,
        )
        self._thread.start()
        logger.info("Sync manager started (interval: %ds)", self._interval)

    def stop(self) -> None:
        """Stop the background sync thread.

        Blocks until the current pass finishes or one interval elapses.
        """
        if not self.running:
            return

        self._stop_event.set()
        self._thread.join(timeout=self._interval + 1)
        if self._thread.is_alive():
            logger.warning("Sync thread did not stop cleanly")
        else:
            logger.info("Sync manager stopped")
        self._thread = None

    def sync_once(self) -> None:
        """Re-index every registered project once."""
        for name in self._registry.names():
            if self._stop_event.is_set():
                break
            try:
                result = self._registry.get(name).index()
            except Exception:
                # One broken project must not stop the others or the loop
                logger.exception("Error during auto-sync of %s", name)
                continue

            stats = result.stats
            if stats.files_changed or stats.files_removed:
                logger.info(
                    "Auto-sync %s: %d changed, %d removed",
                    name,
                    stats.files_changed,
                    stats.files_removed,
                )
            else:
                logger.debug("Auto-sync %s: no changes detected", name)

    def _sync_loop(self) -> None:
        """Main sync loop - runs in background thread."""
        logger.debug("Sync loop started")

        while not self._stop_event.is_set():
            # Sleep first, then sync (allows immediate shutdown on start)
            if self._stop_event.wait(timeout=self._interval):
                break

            self.sync_once()

        logger.debug("Sync loop stopped")
