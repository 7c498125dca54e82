from __future__ import annotations

from pathlib import Path

import pytest

pytest.importorskip("PySide6")

from PySide6.QtCore import QMimeData, QPoint, QPointF, Qt, QUrl
from PySide6.QtGui import QColor, QDragEnterEvent, QDragLeaveEvent, QDropEvent, QImage
from PySide6.QtWidgets import QLabel, QWidget

from watermark_desktop.assets.drop_zone import DropZone
from watermark_desktop.assets.store import ImageAssetStore

from tests.helpers.fakes import ImmediateExecutor


@pytest.fixture
def zone():
    target = QWidget()
    child = QLabel("drop images here", target)
    store = ImageAssetStore(executor=ImmediateExecutor())
    dz = DropZone(target, store)
    yield dz, target, child, store
    store.dispose()
    target.deleteLater()


def _mime(*paths: Path) -> QMimeData:
    mime = QMimeData()
    mime.setUrls([QUrl.fromLocalFile(str(p)) for p in paths])
    return mime


def test_target_accepts_drops(zone) -> None:
    dz, target, _, _ = zone
    assert target.acceptDrops()
    assert dz.target is target


def test_enter_sets_dragging(zone) -> None:
    dz, _, _, store = zone
    mime = _mime()
    event = QDragEnterEvent(QPoint(1, 1), Qt.DropAction.CopyAction, mime, Qt.MouseButton.LeftButton, Qt.KeyboardModifier.NoModifier)

    dz.handle_drag_enter(event)

    assert store.is_dragging_over


def test_leave_onto_child_keeps_dragging(zone) -> None:
    dz, _, child, store = zone
    store.set_dragging(True)

    dz.handle_drag_leave(QDragLeaveEvent(), related=child)

    assert store.is_dragging_over


def test_leave_to_outside_clears_dragging(zone) -> None:
    dz, _, _, store = zone
    outside = QWidget()
    store.set_dragging(True)

    dz.handle_drag_leave(QDragLeaveEvent(), related=outside)

    assert not store.is_dragging_over
    outside.deleteLater()


def test_drop_imports_local_files(zone, tmp_path: Path) -> None:
    dz, _, _, store = zone
    img = QImage(8, 8, QImage.Format.Format_RGB32)
    img.fill(QColor("blue"))
    png = tmp_path / "dropped.png"
    img.save(str(png), "PNG")
    store.set_dragging(True)
    mime = _mime(png)
    event = QDropEvent(QPointF(1, 1), Qt.DropAction.CopyAction, mime, Qt.MouseButton.LeftButton, Qt.KeyboardModifier.NoModifier)

    dz.handle_drop(event)

    assert not store.is_dragging_over
    assert [a.name for a in store.items] == ["dropped.png"]


def test_drop_without_urls_adds_nothing(zone) -> None:
    dz, _, _, store = zone
    mime = QMimeData()
    mime.setText("hello")
    event = QDropEvent(QPointF(1, 1), Qt.DropAction.CopyAction, mime, Qt.MouseButton.LeftButton, Qt.KeyboardModifier.NoModifier)

    dz.handle_drop(event)

    assert store.items == []
