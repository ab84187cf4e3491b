"""Progress narration with strictly increasing order values."""

from streamforge.chat.models import ProgressEvent, ProgressStatus


class ProgressTracker:
    """
    Issues ProgressEvents for one request.

    Every event gets the next order value, so the sequence stays monotonic
    no matter which pipeline phases are skipped.
    """

    def __init__(self, first_order: int = 1):
        self._next_order = first_order

    def emit(self, label: str, status: ProgressStatus, message: str) -> ProgressEvent:
        event = ProgressEvent(label=label, status=status, order=self._next_order, message=message)
        self._next_order += 1
        return event

    def start(self, label: str, message: str) -> ProgressEvent:
        return self.emit(label, ProgressStatus.IN_PROGRESS, message)

    def complete(self, label: str, message: str) -> ProgressEvent:
        return self.emit(label, ProgressStatus.COMPLETE, message)
