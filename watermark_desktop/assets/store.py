"""Imported images and their preview handles.

The store owns every preview handle it creates and revokes each one exactly
once: on removal, on clear, or on dispose.
"""

from __future__ import annotations

from collections.abc import Iterable
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path

from PySide6.QtCore import QMimeDatabase, QObject, Signal, Slot

from watermark_desktop.logger import get_logger

from .previews import PreviewRegistry, probe_dimensions

_logger = get_logger("assets")


@dataclass(frozen=True)
class SelectedFile:
    """A file the user picked or dropped."""

    path: str
    name: str
    size: int
    last_modified: int  # ms since epoch
    mime_type: str

    @property
    def id(self) -> str:
        return f"{self.name}-{self.size}-{self.last_modified}"

    @property
    def is_image(self) -> bool:
        return self.mime_type.startswith("image/")

    @classmethod
    def from_path(cls, path: str | Path) -> SelectedFile:
        """Describe a file on disk.

        Raises:
            OSError: the file cannot be stat'ed.
        """
        p = Path(path)
        st = p.stat()
        mime = QMimeDatabase().mimeTypeForFile(str(p), QMimeDatabase.MatchMode.MatchExtension).name()
        return cls(
            path=str(p),
            name=p.name,
            size=int(st.st_size),
            last_modified=int(st.st_mtime * 1000),
            mime_type=mime,
        )


@dataclass
class ImageAsset:
    id: str
    file: SelectedFile
    preview_handle: str
    width: int | None = None
    height: int | None = None

    @property
    def name(self) -> str:
        return self.file.name

    @property
    def dimensions(self) -> tuple[int, int] | None:
        if self.width is None or self.height is None:
            return None
        return self.width, self.height


class ImageAssetStore(QObject):
    items_changed = Signal(list)
    active_changed = Signal(str)
    dragging_changed = Signal(bool)
    dimensions_ready = Signal(str, int, int)

    # worker thread -> GUI thread: asset_id, handle, (w, h) | None
    _probe_done = Signal(str, str, object)

    def __init__(
        self,
        previews: PreviewRegistry | None = None,
        executor: Executor | None = None,
        parent: QObject | None = None,
    ):
        super().__init__(parent)
        self.previews = previews or PreviewRegistry()
        self._owns_executor = executor is None
        self._executor: Executor = executor or ThreadPoolExecutor(max_workers=2, thread_name_prefix="image-probe")
        self._items: list[ImageAsset] = []
        self._active_id: str | None = None
        self._dragging = False
        self._disposed = False
        self._probe_done.connect(self._on_probe_done)

    # ---- state ----

    @property
    def items(self) -> list[ImageAsset]:
        return list(self._items)

    def get(self, asset_id: str) -> ImageAsset | None:
        return next((a for a in self._items if a.id == asset_id), None)

    @property
    def active_image_id(self) -> str | None:
        return self._active_id

    @property
    def active_image(self) -> ImageAsset | None:
        return self.get(self._active_id) if self._active_id else None

    @property
    def is_dragging_over(self) -> bool:
        return self._dragging

    def paths(self) -> list[str]:
        return [a.file.path for a in self._items]

    # ---- operations ----

    def add_files(self, selection: Iterable[str | Path | SelectedFile], *, replace: bool = False) -> list[ImageAsset]:
        """Import image files, skipping non-images and files already present.

        Returns:
            The assets that were actually added.
        """
        if self._disposed:
            return []
        files: list[SelectedFile] = []
        for entry in selection:
            if isinstance(entry, SelectedFile):
                files.append(entry)
                continue
            try:
                files.append(SelectedFile.from_path(entry))
            except OSError as e:
                _logger.warning("skipping unreadable file %s: %s", entry, e)

        images = [f for f in files if f.is_image]
        if len(images) != len(files):
            _logger.debug("ignored %d non-image file(s)", len(files) - len(images))
        if not images:
            return []

        if replace:
            self.clear()

        known = {a.id for a in self._items}
        added: list[ImageAsset] = []
        for f in images:
            if f.id in known:
                continue
            try:
                handle = self.previews.create(f.path)
            except OSError as e:
                _logger.warning("cannot read %s: %s", f.path, e)
                continue
            known.add(f.id)
            added.append(ImageAsset(id=f.id, file=f, preview_handle=handle))

        self._items = sorted([*self._items, *added], key=lambda a: (a.name.casefold(), a.name))
        if self._active_id is None and self._items:
            self._set_active_id(self._items[0].id)
        if added:
            _logger.debug("added %d image(s), total=%d", len(added), len(self._items))
            self.items_changed.emit(self.items)
        for asset in added:
            self._schedule_probe(asset)
        return added

    def remove_image(self, asset_id: str) -> None:
        asset = self.get(asset_id)
        if asset is None:
            return
        self.previews.revoke(asset.preview_handle)
        self._items = [a for a in self._items if a.id != asset_id]
        if self._active_id == asset_id:
            self._set_active_id(self._items[0].id if self._items else None)
        self.items_changed.emit(self.items)

    def clear(self) -> None:
        had_items = bool(self._items)
        for asset in self._items:
            self.previews.revoke(asset.preview_handle)
        self._items = []
        self._set_active_id(None)
        if had_items:
            self.items_changed.emit([])

    def set_active(self, asset_id: str) -> None:
        if self.get(asset_id) is None:
            return
        self._set_active_id(asset_id)

    def set_dragging(self, dragging: bool) -> None:
        if dragging == self._dragging:
            return
        self._dragging = dragging
        self.dragging_changed.emit(dragging)

    def dispose(self) -> None:
        """Revoke every outstanding handle. Safe to call more than once."""
        if self._disposed:
            return
        self.clear()
        self._disposed = True
        if self._owns_executor:
            self._executor.shutdown(wait=False, cancel_futures=True)

    # ---- internals ----

    def _set_active_id(self, asset_id: str | None) -> None:
        if asset_id == self._active_id:
            return
        self._active_id = asset_id
        self.active_changed.emit(asset_id or "")

    def _schedule_probe(self, asset: ImageAsset) -> None:
        data = self.previews.data(asset.preview_handle)
        if data is None:
            return
        self._executor.submit(self._run_probe, asset.id, asset.preview_handle, data)

    def _run_probe(self, asset_id: str, handle: str, data: bytes) -> None:
        self._probe_done.emit(asset_id, handle, probe_dimensions(data))

    @Slot(str, str, object)
    def _on_probe_done(self, asset_id: str, handle: str, dims: tuple[int, int] | None) -> None:
        asset = self.get(asset_id)
        if asset is None or asset.preview_handle != handle or not self.previews.is_live(handle):
            _logger.debug("dimension probe discarded (asset gone): %s", asset_id)
            return
        if dims is None:
            _logger.debug("no dimensions for %s", asset.name)
            return
        asset.width, asset.height = dims
        self.dimensions_ready.emit(asset_id, dims[0], dims[1])
