import sys
import time
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime
from PySide6.QtCore import QCoreApplication, QObject, Qt, QTimer, Signal, Slot
from hj.common.logger import log
from hj.core.errors import RemoteStoreError
from hj.runtime.remote import load_remote, save_remote

SYNC_DEBOUNCE_MS = 2000
SYNC_SOURCES = ("init", "visibility", "manual")

# Keeps a JournalStore and one remote copy in step.
#
# Everything that touches the store runs on the Qt thread that owns this object. Remote I/O runs on a single worker
# thread and reports back through queued signals, so a fetch that resolves after local edits reconciles against the
# store as it is at that moment. At most one remote operation is in flight; overlapping sync() calls share its Future.
class CloudSync(QObject):

    statusChanged = Signal(str)
    synced = Signal(object)

    _fetched = Signal(object, object)
    _written = Signal(object, object)
    _failed = Signal(object, object)

    def __init__(self, store, remote, debounce_ms=None, parent=None):
        super().__init__(parent)
        self.store = store
        self.remote = remote
        self.status = "idle"
        self.last_error = None
        self.last_sync_time = None

        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="hj-sync")
        self._in_flight = None
        self._pending = None

        if debounce_ms is None:
            debounce_ms = store.settings.get("sync_debounce_ms", SYNC_DEBOUNCE_MS)
        self._save_timer = QTimer(self)
        self._save_timer.setSingleShot(True)
        self._save_timer.setInterval(debounce_ms)
        self._save_timer.timeout.connect(self._flush)

        self._fetched.connect(self._on_fetched, Qt.QueuedConnection)
        self._written.connect(self._on_written, Qt.QueuedConnection)
        self._failed.connect(self._on_failed, Qt.QueuedConnection)

    #region === Public API ===

    @property
    def busy(self):
        return self._in_flight is not None and not self._in_flight.done()

    @property
    def has_pending_save(self):
        return self._pending is not None

    # Every local change schedules a debounced write-back from here on.
    def attach(self):
        self.store.subscribe(self.schedule_save)

    def detach(self):
        self.store.unsubscribe(self.schedule_save)

    # Debounced write-back: each call restarts the countdown, so a burst of edits becomes one write. Only a dirty flag
    # is kept; the store is read when the countdown fires, never the copy handed to the listener.
    def schedule_save(self, dataset=None):
        self._pending = True
        self._set_status("syncing")
        self._save_timer.start()

    # Fetch the remote copy, reconcile it into the store and write back if the remote needs it. Resolves with the
    # Reconciliation, or None when there was no remote copy; fails with RemoteStoreError.
    def sync(self, source="manual"):
        if source not in SYNC_SOURCES:
            raise ValueError(f"Unknown sync source '{source}', expected one of {SYNC_SOURCES}")
        if self.busy:
            log.debug(f"Sync ({source}) requested while another remote operation is in flight, sharing it")
            return self._in_flight
        future = self._begin()
        log.info(f"Sync started ({source})")
        self._executor.submit(self._fetch_job, future)
        return future

    # Upload the store's current dataset as-is, skipping the fetch.
    def push(self):
        if self.busy:
            return self._in_flight
        self._save_timer.stop()
        self._pending = None
        future = self._begin()
        self._executor.submit(self._write_job, future, self.store.snapshot(), None)
        return future

    # Stops the debounce timer, drains the worker and writes the store synchronously if a save was pending.
    def shutdown(self, flush=True):
        self._save_timer.stop()
        self.detach()
        pending, self._pending = self._pending, None
        self._executor.shutdown(wait=True)
        if flush and pending is not None:
            try:
                save_remote(self.remote, self.store.snapshot())
            except RemoteStoreError as e:
                log.warning(f"Final write-back failed on shutdown: {e}")

    #endregion === Public API ===

    #region === Worker side ===

    def _fetch_job(self, future):
        try:
            remote = load_remote(self.remote)
        except Exception as e:
            self._failed.emit(future, e)
        else:
            self._fetched.emit(future, remote)

    def _write_job(self, future, dataset, result):
        try:
            save_remote(self.remote, dataset)
        except Exception as e:
            self._failed.emit(future, e)
        else:
            self._written.emit(future, result)

    #endregion === Worker side ===

    #region === Qt thread side ===

    def _begin(self):
        future = Future()
        future.set_running_or_notify_cancel()
        self._in_flight = future
        self._set_status("syncing")
        return future

    @Slot()
    def _flush(self):
        if self._pending is None:
            return
        if self.busy:
            self._save_timer.start()
            return
        self._pending = None
        future = self._begin()
        self._executor.submit(self._write_job, future, self.store.snapshot(), None)

    @Slot(object, object)
    def _on_fetched(self, future, remote):
        if remote is None:
            local = self.store.snapshot()
            if local.is_empty():
                log.info("Nothing to sync, both copies are empty")
                self._finish(future, None)
            else:
                log.info("No remote copy yet, uploading local journal")
                self._cancel_pending_save()
                self._executor.submit(self._write_job, future, local, None)
            return

        result = self.store.apply_remote(remote)
        if result.changed_remote:
            self._cancel_pending_save()
            self._executor.submit(self._write_job, future, result.dataset, result)
        else:
            self._finish(future, result)

    # The write about to go out carries every local edit made so far, so a queued debounced save has nothing left to add.
    def _cancel_pending_save(self):
        if self._pending is not None:
            log.debug("Pending write-back folded into the sync write")
        self._save_timer.stop()
        self._pending = None

    @Slot(object, object)
    def _on_written(self, future, result):
        self._finish(future, result)

    @Slot(object, object)
    def _on_failed(self, future, error):
        self._in_flight = None
        self.last_error = str(error)
        self._set_status("error")
        if isinstance(error, RemoteStoreError):
            log.warning(f"Remote sync failed: {error}")
        else:
            log.error("Unexpected error during remote sync", exc_info=error)
        future.set_exception(error)

    def _finish(self, future, result):
        self._in_flight = None
        self.last_error = None
        self.last_sync_time = datetime.now().astimezone()
        self._set_status("synced" if self._pending is None else "syncing")
        future.set_result(result)
        self.synced.emit(result)

    def _set_status(self, status):
        if status != self.status:
            self.status = status
            self.statusChanged.emit(status)

    #endregion === Qt thread side ===


_app = None

# Command-line use and tests have no application of their own. Queued signals and timers need one, so it is created
# on first use and held here for the life of the process.
def ensure_app():
    global _app
    if QCoreApplication.instance() is None:
        _app = QCoreApplication(sys.argv[:1])
    return QCoreApplication.instance()

# Runs the Qt event loop until `future` resolves (or `timeout_s` passes).
def wait_for(future, timeout_s=30.0):
    app = ensure_app()
    deadline = time.monotonic() + timeout_s
    while not future.done() and time.monotonic() < deadline:
        app.processEvents()
        time.sleep(0.005)
    return future.done()
