from PySide6.QtCore import QObject, QTimer, Signal
from hj.core.model import now_ms

# Drives elapsed-time displays: ticks every second while any timer runs and once a minute otherwise (the current-slot
# highlight only moves every 15 minutes). Each tick emits {timer_id: elapsed_seconds}; it never writes to the store.
class ElapsedTicker(QObject):

    ticked = Signal(object)

    def __init__(self, store, running_ms=None, idle_ms=None, parent=None):
        super().__init__(parent)
        self.store = store
        self.running_ms = running_ms or store.settings.get("tick_running_ms", 1000)
        self.idle_ms = idle_ms or store.settings.get("tick_idle_ms", 60000)
        self._timer = QTimer(self)
        self._timer.timeout.connect(self._tick)

    @property
    def active(self):
        return self._timer.isActive()

    def interval(self):
        return self.running_ms if self.store.dataset.active_timers else self.idle_ms

    def start(self):
        self.store.subscribe(self._retime)
        self._timer.start(self.interval())

    def stop(self):
        self.store.unsubscribe(self._retime)
        self._timer.stop()

    def readout(self, now=None):
        return self.store.elapsed(now_ms() if now is None else now)

    # Starting the first timer or stopping the last one switches cadence right away.
    def _retime(self, _dataset=None):
        wanted = self.interval()
        if self._timer.isActive() and self._timer.interval() != wanted:
            self._timer.setInterval(wanted)

    def _tick(self):
        self._retime()
        self.ticked.emit(self.readout())
