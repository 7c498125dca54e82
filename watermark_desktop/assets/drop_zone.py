"""Drag-and-drop import for any widget."""

from __future__ import annotations

from PySide6.QtCore import QEvent, QObject
from PySide6.QtGui import QCursor, QDragEnterEvent, QDragLeaveEvent, QDragMoveEvent, QDropEvent
from PySide6.QtWidgets import QApplication, QWidget

from watermark_desktop.logger import get_logger

from .store import ImageAssetStore

_logger = get_logger("drop_zone")


class DropZone(QObject):
    """Event filter that turns file drops on ``target`` into ``store.add_files``."""

    def __init__(self, target: QWidget, store: ImageAssetStore, parent: QObject | None = None):
        super().__init__(parent or target)
        self._target = target
        self._store = store
        target.setAcceptDrops(True)
        target.installEventFilter(self)

    @property
    def target(self) -> QWidget:
        return self._target

    def eventFilter(self, obj: QObject, event: QEvent) -> bool:  # noqa: N802
        if obj is not self._target:
            return False
        t = event.type()
        if t == QEvent.Type.DragEnter:
            self.handle_drag_enter(event)  # type: ignore[arg-type]
            return True
        if t == QEvent.Type.DragMove:
            self.handle_drag_over(event)  # type: ignore[arg-type]
            return True
        if t == QEvent.Type.DragLeave:
            self.handle_drag_leave(event)  # type: ignore[arg-type]
            return True
        if t == QEvent.Type.Drop:
            self.handle_drop(event)  # type: ignore[arg-type]
            return True
        return False

    def handle_drag_enter(self, event: QDragEnterEvent) -> None:
        event.acceptProposedAction()
        self._store.set_dragging(True)

    def handle_drag_over(self, event: QDragMoveEvent) -> None:
        event.acceptProposedAction()

    def handle_drag_leave(self, event: QDragLeaveEvent, related: QWidget | None = None) -> None:
        """Clear the dragging indicator once the pointer really left the target.

        Qt also sends DragLeave when the pointer moves onto a child widget; the
        widget now under the cursor (or ``related`` when given) tells the two
        apart.
        """
        event.accept()
        if related is None:
            related = QApplication.widgetAt(QCursor.pos())
        if related is not None and (related is self._target or self._target.isAncestorOf(related)):
            return
        self._store.set_dragging(False)

    def handle_drop(self, event: QDropEvent) -> None:
        event.acceptProposedAction()
        self._store.set_dragging(False)
        mime = event.mimeData()
        if mime is None or not mime.hasUrls():
            return
        paths = [u.toLocalFile() for u in mime.urls() if u.isLocalFile()]
        if not paths:
            return
        _logger.debug("drop: %d path(s)", len(paths))
        self._store.add_files(paths)
