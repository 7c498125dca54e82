from __future__ import annotations

from concurrent.futures import Executor, ThreadPoolExecutor

from PySide6.QtCore import QSize, Qt, QTimer, Signal, Slot
from PySide6.QtGui import QAction, QIcon
from PySide6.QtWidgets import (
    QFileDialog,
    QLabel,
    QListWidget,
    QListWidgetItem,
    QMainWindow,
    QMessageBox,
    QProgressBar,
    QSplitter,
    QVBoxLayout,
    QWidget,
)

from watermark_desktop.api.client import ApiClient
from watermark_desktop.api.models import ExportJob
from watermark_desktop.assets.drop_zone import DropZone
from watermark_desktop.assets.store import ImageAssetStore
from watermark_desktop.config import AppConfig
from watermark_desktop.jobs.tracker import ExportJobTracker
from watermark_desktop.logger import get_logger
from watermark_desktop.settings_manager import SettingsManager

from .export_dialog import ExportDialog

_logger = get_logger("main_window")

_THUMB_SIZE = QSize(96, 96)
_IMAGE_FILTER = "Images (*.png *.jpg *.jpeg *.bmp *.gif *.webp *.tif *.tiff)"


class MainWindow(QMainWindow):
    # worker -> GUI thread: fonts | None, error | None
    _content_done = Signal(object, object)

    def __init__(
        self,
        config: AppConfig,
        client: ApiClient,
        tracker: ExportJobTracker,
        store: ImageAssetStore,
        settings: SettingsManager,
        executor: Executor | None = None,
    ):
        super().__init__()
        self.setWindowTitle("Watermark Desktop")
        self.resize(1280, 800)

        self.config = config
        self.client = client
        self.tracker = tracker
        self.store = store
        self.settings = settings
        self.fonts: list[str] = []
        self.content_loaded = False
        self.load_attempts = 0
        self._closed = False
        self._owns_executor = executor is None
        self._executor: Executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="content")

        self._retry_timer = QTimer(self)
        self._retry_timer.setSingleShot(True)
        self._retry_timer.setInterval(config.content_retry_ms)
        self._retry_timer.timeout.connect(self.load_content)
        self._content_done.connect(self._on_content_done)

        self._build_ui()
        self._build_actions()

        store.items_changed.connect(self._render_images)
        store.active_changed.connect(self._on_active_image_changed)
        store.dimensions_ready.connect(self._on_dimensions_ready)
        store.dragging_changed.connect(self._on_dragging_changed)
        tracker.job_updated.connect(self._render_job)
        tracker.job_removed.connect(self._remove_job_item)
        tracker.jobs_reset.connect(self._render_jobs)
        tracker.submission_failed.connect(self._on_submission_failed)
        tracker.error_changed.connect(self._on_tracker_error)
        tracker.active_job_changed.connect(self._select_job)

    # ---- layout ----

    def _build_ui(self) -> None:
        self.drop_hint = QLabel("Drop images here or use Add Images")
        self.drop_hint.setAlignment(Qt.AlignmentFlag.AlignCenter)
        self.image_list = QListWidget()
        self.image_list.setViewMode(QListWidget.ViewMode.IconMode)
        self.image_list.setIconSize(_THUMB_SIZE)
        self.image_list.setResizeMode(QListWidget.ResizeMode.Adjust)
        self.image_list.currentItemChanged.connect(self._on_image_selected)
        self.drop_zone = DropZone(self.image_list, self.store, self)

        left = QWidget()
        left_layout = QVBoxLayout(left)
        left_layout.addWidget(self.drop_hint)
        left_layout.addWidget(self.image_list)

        self.job_list = QListWidget()
        self.job_progress = QProgressBar()
        self.job_progress.setRange(0, 100)
        self.job_detail = QLabel("")
        self.job_detail.setWordWrap(True)
        self.job_list.currentItemChanged.connect(self._on_job_selected)

        right = QWidget()
        right_layout = QVBoxLayout(right)
        right_layout.addWidget(QLabel("Export jobs"))
        right_layout.addWidget(self.job_list)
        right_layout.addWidget(self.job_progress)
        right_layout.addWidget(self.job_detail)

        splitter = QSplitter()
        splitter.addWidget(left)
        splitter.addWidget(right)
        splitter.setStretchFactor(0, 3)
        splitter.setStretchFactor(1, 2)
        self.setCentralWidget(splitter)
        self.statusBar().showMessage("Connecting to backend...")

    def _build_actions(self) -> None:
        toolbar = self.addToolBar("Main")
        specs = [
            ("Add Images...", self.add_images),
            ("Remove", self.remove_selected_image),
            ("Clear", self.store.clear),
            ("Export...", self.open_export_dialog),
            ("Cancel Job", self.cancel_selected_job),
            ("Refresh Jobs", self.tracker.refresh),
        ]
        for text, slot in specs:
            action = QAction(text, self)
            action.triggered.connect(slot)
            toolbar.addAction(action)

    # ---- remote content (retried until the backend answers) ----

    def load_content(self) -> None:
        if self._closed:
            return
        self._retry_timer.stop()
        self.load_attempts += 1
        self._executor.submit(self._fetch_content)

    def _fetch_content(self) -> None:
        try:
            self.client.health()
            fonts = self.client.list_fonts()
        except Exception as e:
            self._content_done.emit(None, e)
            return
        self._content_done.emit(fonts, None)

    @Slot(object, object)
    def _on_content_done(self, fonts: list[str] | None, error: Exception | None) -> None:
        if self._closed:
            return
        if error is not None:
            _logger.warning(
                "content load failed (attempt %d): %s; retrying in %dms",
                self.load_attempts,
                error,
                self.config.content_retry_ms,
            )
            self.statusBar().showMessage("Waiting for backend...")
            self._retry_timer.start()
            return
        self._retry_timer.stop()
        self.fonts = list(fonts or [])
        self.content_loaded = True
        self.statusBar().showMessage(f"Connected to {self.config.base_url}", 5000)
        self.tracker.refresh()

    @property
    def retry_pending(self) -> bool:
        return self._retry_timer.isActive()

    # ---- images ----

    def add_images(self) -> None:
        paths, _ = QFileDialog.getOpenFileNames(self, "Add images", self.settings.last_import_dir or "", _IMAGE_FILTER)
        if not paths:
            return
        self.settings.set("last_import_dir", paths[0])
        self.store.add_files(paths)

    def remove_selected_image(self) -> None:
        item = self.image_list.currentItem()
        if item is not None:
            self.store.remove_image(item.data(Qt.ItemDataRole.UserRole))

    @Slot(list)
    def _render_images(self, assets: list) -> None:
        self.image_list.blockSignals(True)
        self.image_list.clear()
        for asset in assets:
            item = QListWidgetItem(QIcon(self.store.previews.pixmap(asset.preview_handle, _THUMB_SIZE)), asset.name)
            item.setData(Qt.ItemDataRole.UserRole, asset.id)
            item.setToolTip(self._image_tooltip(asset))
            self.image_list.addItem(item)
            if asset.id == self.store.active_image_id:
                self.image_list.setCurrentItem(item)
        self.image_list.blockSignals(False)
        self.drop_hint.setVisible(not assets)

    @staticmethod
    def _image_tooltip(asset) -> str:
        dims = asset.dimensions
        size_kb = asset.file.size / 1024
        if dims is None:
            return f"{asset.name}\n{size_kb:.0f} KB"
        return f"{asset.name}\n{dims[0]} x {dims[1]}, {size_kb:.0f} KB"

    def _on_image_selected(self, current: QListWidgetItem | None, _previous) -> None:
        if current is not None:
            self.store.set_active(current.data(Qt.ItemDataRole.UserRole))

    def _on_active_image_changed(self, asset_id: str) -> None:
        for row in range(self.image_list.count()):
            item = self.image_list.item(row)
            if item.data(Qt.ItemDataRole.UserRole) == asset_id:
                self.image_list.setCurrentItem(item)
                return

    def _on_dimensions_ready(self, asset_id: str, _width: int, _height: int) -> None:
        asset = self.store.get(asset_id)
        if asset is None:
            return
        for row in range(self.image_list.count()):
            item = self.image_list.item(row)
            if item.data(Qt.ItemDataRole.UserRole) == asset_id:
                item.setToolTip(self._image_tooltip(asset))
                return

    def _on_dragging_changed(self, dragging: bool) -> None:
        self.image_list.setStyleSheet("QListWidget { border: 2px dashed #4a90d9; }" if dragging else "")

    # ---- jobs ----

    def open_export_dialog(self) -> None:
        paths = self.store.paths()
        if not paths:
            QMessageBox.information(self, "Export", "Add some images first.")
            return
        dialog = ExportDialog(self.settings, self.fonts, self)
        if dialog.exec() != ExportDialog.DialogCode.Accepted or dialog.request is None:
            return
        self.tracker.submit(paths, dialog.request)
        self.statusBar().showMessage(f"Uploading {len(paths)} image(s)...")

    def cancel_selected_job(self) -> None:
        item = self.job_list.currentItem()
        if item is not None:
            self.tracker.cancel(item.data(Qt.ItemDataRole.UserRole))

    @staticmethod
    def _job_text(job: ExportJob) -> str:
        text = f"{job.status.value}  {job.processed_files}/{job.total_files}  ({job.percent}%)"
        if job.failure_count:
            text += f"  {job.failure_count} failed"
        return f"{text}\n{job.created_at:%Y-%m-%d %H:%M:%S}  {job.id}"

    def _find_job_item(self, job_id: str) -> QListWidgetItem | None:
        for row in range(self.job_list.count()):
            item = self.job_list.item(row)
            if item.data(Qt.ItemDataRole.UserRole) == job_id:
                return item
        return None

    @Slot(object)
    def _render_job(self, job: ExportJob) -> None:
        item = self._find_job_item(job.id)
        if item is None:
            item = QListWidgetItem()
            item.setData(Qt.ItemDataRole.UserRole, job.id)
            self.job_list.insertItem(0, item)
        item.setText(self._job_text(job))
        current = self.job_list.currentItem()
        if current is not None and current.data(Qt.ItemDataRole.UserRole) == job.id:
            self._show_job_detail(job)

    @Slot(list)
    def _render_jobs(self, jobs: list) -> None:
        self.job_list.clear()
        for job in jobs:
            item = QListWidgetItem(self._job_text(job))
            item.setData(Qt.ItemDataRole.UserRole, job.id)
            self.job_list.addItem(item)

    def _remove_job_item(self, job_id: str) -> None:
        item = self._find_job_item(job_id)
        if item is not None:
            self.job_list.takeItem(self.job_list.row(item))

    def _select_job(self, job_id: str) -> None:
        item = self._find_job_item(job_id) if job_id else None
        if item is not None:
            self.job_list.setCurrentItem(item)

    def _on_job_selected(self, current: QListWidgetItem | None, _previous) -> None:
        job = self.tracker.get(current.data(Qt.ItemDataRole.UserRole)) if current is not None else None
        self._show_job_detail(job)

    def _show_job_detail(self, job: ExportJob | None) -> None:
        if job is None:
            self.job_progress.setValue(0)
            self.job_detail.setText("")
            return
        self.job_progress.setValue(job.percent)
        lines = [job.message or job.status.value.title()]
        if job.current_file:
            lines.append(f"Current: {job.current_file}")
        if job.output_directory:
            lines.append(f"Output: {job.output_directory}")
        failed = [r for r in job.results if not r.success]
        lines.extend(f"{r.source_name}: {r.message or 'failed'}" for r in failed[:10])
        self.job_detail.setText("\n".join(lines))

    def _on_submission_failed(self, message: str) -> None:
        QMessageBox.warning(self, "Export failed", message or "The export could not be started.")

    def _on_tracker_error(self, message: str) -> None:
        if message:
            self.statusBar().showMessage(message, 8000)

    # ---- lifecycle ----

    def closeEvent(self, event):  # noqa: N802
        self._closed = True
        self._retry_timer.stop()
        self.tracker.dispose()
        self.store.dispose()
        if self._owns_executor:
            self._executor.shutdown(wait=False, cancel_futures=True)
        super().closeEvent(event)
