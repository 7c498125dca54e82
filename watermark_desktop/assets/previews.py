"""In-memory preview handles for imported images.

A handle pins a file's bytes in memory under an ``image://preview/<n>`` key until
it is revoked. Handles are never reused, so a revoked handle stays dead.
"""

from __future__ import annotations

import threading
from pathlib import Path

from PySide6.QtCore import QBuffer, QByteArray, QIODevice, QSize, Qt
from PySide6.QtGui import QImage, QImageReader, QPixmap

from watermark_desktop.logger import get_logger

_logger = get_logger("previews")

PREVIEW_SCHEME = "image://preview/"


class PreviewRegistry:
    def __init__(self) -> None:
        self._data: dict[str, bytes] = {}
        self._next_id = 1
        self._lock = threading.Lock()
        self.created = 0
        self.revoked = 0

    def create(self, path: str | Path) -> str:
        """Read ``path`` into memory and return a new handle.

        Raises:
            OSError: the file could not be read.
        """
        data = Path(path).read_bytes()
        with self._lock:
            handle = f"{PREVIEW_SCHEME}{self._next_id}"
            self._next_id += 1
            self._data[handle] = data
            self.created += 1
        _logger.debug("preview created: %s (%d bytes) <- %s", handle, len(data), path)
        return handle

    def revoke(self, handle: str) -> bool:
        with self._lock:
            data = self._data.pop(handle, None)
            if data is not None:
                self.revoked += 1
        if data is None:
            _logger.warning("revoke of unknown preview handle: %s", handle)
            return False
        _logger.debug("preview revoked: %s", handle)
        return True

    def is_live(self, handle: str) -> bool:
        with self._lock:
            return handle in self._data

    def data(self, handle: str) -> bytes | None:
        with self._lock:
            return self._data.get(handle)

    def outstanding(self) -> int:
        with self._lock:
            return len(self._data)

    def pixmap(self, handle: str, size: QSize | None = None) -> QPixmap:
        """Decode a handle into a pixmap (GUI thread only). Empty pixmap if dead."""
        data = self.data(handle)
        pix = QPixmap()
        if data is None or not pix.loadFromData(data):
            return QPixmap()
        if size is not None and size.isValid():
            return pix.scaled(size, Qt.AspectRatioMode.KeepAspectRatio, Qt.TransformationMode.SmoothTransformation)
        return pix


def probe_dimensions(data: bytes) -> tuple[int, int] | None:
    """Return (width, height) of encoded image bytes, or None if unreadable.

    Safe to call from worker threads.
    """
    try:
        ba = QByteArray(data)
        buf = QBuffer(ba)
        buf.open(QIODevice.OpenModeFlag.ReadOnly)
        try:
            size = QImageReader(buf).size()
        finally:
            buf.close()
        if size.width() > 0 and size.height() > 0:
            return size.width(), size.height()
        img = QImage()
        if img.loadFromData(data) and not img.isNull():
            return img.width(), img.height()
    except Exception as e:
        _logger.debug("dimension probe failed: %s", e)
    return None
