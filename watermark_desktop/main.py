import os
import sys

from PySide6.QtCore import QObject, Slot
from PySide6.QtWidgets import QApplication, QMessageBox

from watermark_desktop.api.client import ApiClient
from watermark_desktop.assets.store import ImageAssetStore
from watermark_desktop.backend.supervisor import BackendSupervisor, StartupWorker
from watermark_desktop.config import DEFAULT_SETTINGS_PATH, AppConfig
from watermark_desktop.errors import BackendCrashed
from watermark_desktop.jobs.tracker import ExportJobTracker
from watermark_desktop.logger import get_logger
from watermark_desktop.settings_manager import SettingsManager

# --- CLI logging options -----------------------------------------------------
# Qt rejects unknown options, so our own options are parsed first, mirrored into
# environment variables (WATERMARK_LOG_LEVEL, WATERMARK_LOG_CATS) and removed
# from sys.argv.


def _apply_cli_logging_options(argv: list[str]) -> list[str]:
    import argparse

    parser = argparse.ArgumentParser(description="Watermark Desktop", add_help=False)
    parser.add_argument("--log-level", help="Set log level")
    parser.add_argument("--log-cats", help="Set log categories")
    args, remaining = parser.parse_known_args(argv[1:])
    if args.log_level:
        os.environ["WATERMARK_LOG_LEVEL"] = args.log_level
    if args.log_cats:
        os.environ["WATERMARK_LOG_CATS"] = args.log_cats
    return [argv[0], *remaining]


logger = get_logger("main")


class DesktopShell(QObject):
    """Wires startup, the main window and crash notifications together."""

    def __init__(self, app: QApplication, config: AppConfig, settings: SettingsManager, supervisor: BackendSupervisor):
        super().__init__()
        self.app = app
        self.config = config
        self.settings = settings
        self.supervisor = supervisor
        self.window = None
        self.exit_code = 0
        self._crash_box: QMessageBox | None = None
        supervisor.crashed.connect(self.on_backend_crashed)

    @Slot(str)
    def open_window(self, state: str) -> None:
        from watermark_desktop.ui.main_window import MainWindow

        logger.info("backend usable (%s); opening window", state)
        client = ApiClient(self.config.base_url, timeout=self.config.request_timeout)
        tracker = ExportJobTracker(client, poll_interval_ms=self.config.poll_interval_ms)
        store = ImageAssetStore()
        self.window = MainWindow(self.config, client, tracker, store, self.settings)
        self.window.show()
        self.window.load_content()

    @Slot(str, str)
    def on_startup_failed(self, title: str, message: str) -> None:
        if self.supervisor.shutdown_requested:
            logger.info("startup stopped by shutdown: %s", message)
            return
        logger.error("startup aborted: %s", message)
        QMessageBox.critical(None, title, message)
        self.exit_code = 1
        self.app.exit(1)

    @Slot(int, str)
    def on_backend_crashed(self, code: int, message: str) -> None:
        if self.window is None:
            return
        logger.error("backend crashed: code=%s", code)
        box = QMessageBox(QMessageBox.Icon.Critical, BackendCrashed.title, message, parent=self.window)
        box.setModal(False)
        box.show()
        self._crash_box = box


def run(argv: list[str] | None = None) -> int:
    """Application entrypoint (packaging-friendly)."""
    if argv is None:
        argv = sys.argv
    argv = _apply_cli_logging_options(list(argv))

    app = QApplication(argv)
    app.setApplicationName("Watermark Desktop")

    settings = SettingsManager(DEFAULT_SETTINGS_PATH)
    config = AppConfig.load(settings=settings)
    supervisor = BackendSupervisor(config)
    supervisor.install_shutdown_hooks(app)

    shell = DesktopShell(app, config, settings, supervisor)
    worker = StartupWorker(supervisor)
    worker.ready.connect(shell.open_window)
    worker.failed.connect(shell.on_startup_failed)
    worker.start()

    code = app.exec()
    worker.wait()
    supervisor.stop_backend()
    return code or shell.exit_code


if __name__ == "__main__":
    sys.exit(run())
