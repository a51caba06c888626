"""
Qt thread that runs a batch pass off the GUI thread.

The registry is lock-protected, so the GUI may keep reading
``session.items()`` while the pass runs; the signals only tell it when to
refresh.
"""

from PyQt6.QtCore import QThread, pyqtSignal

from image_batch_resizer.session import ResizeSession


class BatchProcessThread(QThread):
    """Background thread for one processAll pass."""
    progress = pyqtSignal(float)
    item_finished = pyqtSignal(str, str)  # item id, status value ("skipped" if untouched)
    finished_report = pyqtSignal(object)  # processor.BatchReport
    error = pyqtSignal(str)

    def __init__(self, session: ResizeSession, parent=None, skip_completed: bool = False):
        super().__init__(parent)
        self._session = session
        self._skip_completed = skip_completed

    def cancel(self):
        self._session.processor.cancel()

    def _on_progress(self, event):
        if event.item_id is not None:
            self.item_finished.emit(event.item_id, event.status.value if event.status else "skipped")
        self.progress.emit(event.percent)

    def run(self):
        try:
            report = self._session.process_all(on_progress=self._on_progress, skip_completed=self._skip_completed)
            self.finished_report.emit(report)
        except Exception as e:
            self.error.emit(str(e))
