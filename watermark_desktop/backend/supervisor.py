"""Lifecycle of the local export service process.

``BackendSupervisor`` makes sure exactly one service is reachable: it reuses a
service that is already listening, otherwise it spawns the newest built
artifact and waits for it to accept connections. Only a process spawned by
this supervisor is ever terminated by it.
"""

from __future__ import annotations

import atexit
import enum
import os
import signal
import subprocess
import threading
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from PySide6.QtCore import QCoreApplication, QObject, QThread, QTimer, Signal, Slot

from watermark_desktop.config import AppConfig
from watermark_desktop.errors import BackendError, BackendNotBuilt, BackendStartupCancelled
from watermark_desktop.logger import get_logger

from .locator import find_backend_artifact
from .probe import is_port_in_use, wait_for_port

_logger = get_logger("supervisor")

_KILL_GRACE_SECONDS = 5.0
_SIGNAL_PUMP_MS = 250


class SupervisorState(str, enum.Enum):
    ABSENT = "absent"
    PROBING = "probing"
    ALREADY_RUNNING = "already_running"
    SPAWNING = "spawning"
    AWAITING_READY = "awaiting_ready"
    READY = "ready"
    TERMINATING = "terminating"

    @property
    def usable(self) -> bool:
        return self in (SupervisorState.ALREADY_RUNNING, SupervisorState.READY)


@dataclass
class BackendProcessHandle:
    pid: int | None
    spawned_by_us: bool
    process: Any = None  # subprocess.Popen


def kill_process_tree(pid: int, sig: int = signal.SIGTERM) -> None:
    """Signal ``pid`` and every process in its group (whole tree on Windows)."""
    if os.name == "nt":
        subprocess.run(["taskkill", "/PID", str(pid), "/T", "/F"], check=False, capture_output=True)
        return
    pgid = os.getpgid(pid)
    if pgid == os.getpgrp():
        # Child shares our group; never signal ourselves.
        os.kill(pid, sig)
        return
    os.killpg(pgid, sig)


class BackendSupervisor(QObject):
    """Owns the backend process handle for one application run.

    Signals:
        state_changed: new SupervisorState value
        crashed: the spawned service stopped unexpectedly (exit code, message)
        exited: the spawned service exited (exit code)
    """

    state_changed = Signal(str)
    crashed = Signal(int, str)
    exited = Signal(int)

    # watcher thread -> GUI thread: pid, exit code
    _child_exited = Signal(int, int)

    def __init__(
        self,
        config: AppConfig,
        *,
        popen: Callable[..., Any] = subprocess.Popen,
        probe: Callable[[str, int, float], bool] = is_port_in_use,
        locate: Callable[[Path], Path | None] = find_backend_artifact,
        kill_tree: Callable[[int, int], None] = kill_process_tree,
        kill_grace: float = _KILL_GRACE_SECONDS,
        parent: QObject | None = None,
    ):
        super().__init__(parent)
        self.config = config
        self._popen = popen
        self._probe = probe
        self._locate = locate
        self._kill_tree = kill_tree
        self._kill_grace = kill_grace
        self._lock = threading.RLock()
        self._state = SupervisorState.ABSENT
        self._handle: BackendProcessHandle | None = None
        self._stopping = False
        self._shutdown_requested = False
        self._hooks_installed = False
        self._signal_pump: QTimer | None = None
        self._child_exited.connect(self._on_child_exited)

    @property
    def state(self) -> SupervisorState:
        return self._state

    @property
    def handle(self) -> BackendProcessHandle | None:
        return self._handle

    @property
    def shutdown_requested(self) -> bool:
        return self._shutdown_requested

    @property
    def spawned_by_us(self) -> bool:
        handle = self._handle
        return bool(handle and handle.spawned_by_us)

    # ═══════════════════════════════════════════════════════════════════════
    # Startup
    # ═══════════════════════════════════════════════════════════════════════

    def ensure_backend(self) -> SupervisorState:
        """Make the service reachable, spawning it if needed. Blocks.

        Returns:
            ALREADY_RUNNING or READY.

        Raises:
            BackendNotBuilt: nothing listens and no artifact was found.
            BackendUnreachableTimeout: the spawned service never became reachable.
            BackendCrashed: the spawned service exited during startup.
            BackendStartupCancelled: stop_backend() was called before the service was ready.
            BackendError: spawning failed or startup is already in progress.
        """
        cfg = self.config
        with self._lock:
            if self._state.usable:
                return self._state
            if self._state is not SupervisorState.ABSENT:
                raise BackendError(f"Backend startup already in progress ({self._state.value}).")
            self._check_shutdown()
            self._set_state(SupervisorState.PROBING)

        reachable = self._probe(cfg.host, cfg.port, cfg.probe_timeout)
        with self._lock:
            self._check_shutdown()
            if reachable:
                _logger.info("backend already running at %s:%d; not spawning", cfg.host, cfg.port)
                self._handle = BackendProcessHandle(pid=None, spawned_by_us=False)
                self._set_state(SupervisorState.ALREADY_RUNNING)
                return SupervisorState.ALREADY_RUNNING

        artifact = self._locate(Path(cfg.backend_target_dir))
        if artifact is None:
            self._set_state(SupervisorState.ABSENT)
            raise BackendNotBuilt(
                f"Backend executable jar not found in {cfg.backend_target_dir}. "
                f"Please run ./mvnw clean package -DskipTests inside {cfg.backend_dir} first."
            )

        process = self._spawn(artifact)
        try:
            with self._lock:
                # a stop that raced the spawn found no handle to terminate
                if self._shutdown_requested:
                    raise BackendStartupCancelled("Shutdown requested while the backend was starting.")
            wait_for_port(
                cfg.host,
                cfg.port,
                timeout=cfg.ready_timeout,
                interval=cfg.ready_interval,
                exit_code=process.poll,
                probe=self._probe,
            )
        except BackendError as e:
            self._terminate()
            with self._lock:
                self._handle = None
                self._set_state(SupervisorState.ABSENT)
                if self._shutdown_requested:
                    raise BackendStartupCancelled("Shutdown requested while the backend was starting.") from e
            _logger.error("backend failed to become ready: %s", e)
            raise

        with self._lock:
            if not self._shutdown_requested:
                self._set_state(SupervisorState.READY)
                return SupervisorState.READY
        self._terminate()
        with self._lock:
            self._handle = None
            self._set_state(SupervisorState.ABSENT)
        raise BackendStartupCancelled("Shutdown requested while the backend was starting.")

    def _check_shutdown(self) -> None:
        # caller holds the lock
        if self._shutdown_requested:
            self._set_state(SupervisorState.ABSENT)
            raise BackendStartupCancelled("Shutdown requested before the backend was started.")

    def _spawn(self, artifact: Path) -> Any:
        cfg = self.config
        cmd = [cfg.java_cmd, "-jar", str(artifact), f"--server.port={cfg.port}"]
        kwargs: dict[str, Any] = {}
        if Path(cfg.backend_dir).is_dir():
            kwargs["cwd"] = cfg.backend_dir
        if os.name == "nt":
            kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
        else:
            kwargs["start_new_session"] = True

        with self._lock:
            self._check_shutdown()
            self._set_state(SupervisorState.SPAWNING)
            self._stopping = False
        _logger.info("starting backend: %s", " ".join(cmd))
        try:
            # stdio is inherited so the service's own logs stay visible
            process = self._popen(cmd, **kwargs)
        except OSError as e:
            self._set_state(SupervisorState.ABSENT)
            raise BackendError(f"Failed to start backend with '{cfg.java_cmd}': {e}") from e

        with self._lock:
            self._handle = BackendProcessHandle(pid=process.pid, spawned_by_us=True, process=process)
            self._set_state(SupervisorState.AWAITING_READY)
        threading.Thread(
            target=self._watch, args=(process,), name=f"backend-watch-{process.pid}", daemon=True
        ).start()
        return process

    def _watch(self, process: Any) -> None:
        code = process.wait()
        self._child_exited.emit(int(process.pid), int(code if code is not None else -1))

    # ═══════════════════════════════════════════════════════════════════════
    # Shutdown
    # ═══════════════════════════════════════════════════════════════════════

    def stop_backend(self) -> bool:
        """Terminate the service tree if this run spawned it.

        Safe to call repeatedly and from several shutdown paths. The request is
        remembered, so a startup still in progress will not spawn or keep a
        service afterwards.

        Returns:
            True if a termination was performed by this call.
        """
        with self._lock:
            self._shutdown_requested = True
        return self._terminate()

    def _terminate(self) -> bool:
        with self._lock:
            handle = self._handle
            if handle is None or not handle.spawned_by_us or handle.process is None or self._stopping:
                return False
            self._stopping = True
            self._set_state(SupervisorState.TERMINATING)

        process = handle.process
        if process.poll() is None:
            _logger.info("stopping backend pid=%s", handle.pid)
            self._signal_tree(handle.pid, signal.SIGTERM)
            try:
                process.wait(timeout=self._kill_grace)
            except subprocess.TimeoutExpired:
                _logger.warning("backend pid=%s ignored SIGTERM; killing", handle.pid)
                self._signal_tree(handle.pid, getattr(signal, "SIGKILL", signal.SIGTERM))

        with self._lock:
            if self._handle is handle:
                self._handle = None
            self._set_state(SupervisorState.ABSENT)
        return True

    def _signal_tree(self, pid: int | None, sig: int) -> None:
        if pid is None:
            return
        try:
            self._kill_tree(pid, sig)
        except ProcessLookupError:
            _logger.debug("backend pid=%s already gone", pid)
        except OSError as e:
            _logger.warning("failed to signal backend pid=%s: %s", pid, e)

    def install_shutdown_hooks(self, app: QCoreApplication) -> None:
        """Stop the backend on quit, interpreter exit, SIGINT and SIGTERM."""
        if self._hooks_installed:
            return
        self._hooks_installed = True
        app.aboutToQuit.connect(self.stop_backend)
        atexit.register(self.stop_backend)
        for name in ("SIGINT", "SIGTERM"):
            sig = getattr(signal, name, None)
            if sig is not None:
                signal.signal(sig, self._on_signal)
        # Python signal handlers only run when the interpreter gets control;
        # wake it up periodically while Qt owns the loop.
        self._signal_pump = QTimer(self)
        self._signal_pump.timeout.connect(lambda: None)
        self._signal_pump.start(_SIGNAL_PUMP_MS)

    def _on_signal(self, signum: int, _frame: Any) -> None:
        _logger.info("received signal %s; shutting down", signum)
        self.stop_backend()
        app = QCoreApplication.instance()
        if app is not None:
            app.quit()
        else:
            raise SystemExit(0)

    # ═══════════════════════════════════════════════════════════════════════
    # Child exit
    # ═══════════════════════════════════════════════════════════════════════

    @Slot(int, int)
    def _on_child_exited(self, pid: int, code: int) -> None:
        with self._lock:
            handle = self._handle
            if handle is None or handle.pid != pid:
                _logger.debug("exit of untracked backend pid=%s code=%s", pid, code)
                return
            if self._stopping or self._state is SupervisorState.TERMINATING:
                _logger.info("backend pid=%s exited with %s after stop request", pid, code)
                self.exited.emit(code)
                return
            was_ready = self._state is SupervisorState.READY
            self._handle = None
            if was_ready:
                self._set_state(SupervisorState.ABSENT)

        self.exited.emit(code)
        if not was_ready:
            # ensure_backend() sees the exit through process.poll() and fails startup
            _logger.warning("backend pid=%s exited with %s during startup", pid, code)
            return

        if code != 0:
            _logger.error("backend pid=%s exited with status %s", pid, code)
            self.crashed.emit(code, f"Backend process exited with status {code}.")
            return

        cfg = self.config
        if self._probe(cfg.host, cfg.port, cfg.probe_timeout):
            _logger.warning("backend pid=%s exited cleanly; another service still answers on port %d", pid, cfg.port)
            with self._lock:
                self._handle = BackendProcessHandle(pid=None, spawned_by_us=False)
                self._set_state(SupervisorState.ALREADY_RUNNING)
            return
        _logger.error("backend pid=%s exited cleanly but port %d is no longer reachable", pid, cfg.port)
        self.crashed.emit(0, "Backend process exited and is no longer reachable.")

    def _set_state(self, state: SupervisorState) -> None:
        if state is self._state:
            return
        _logger.debug("supervisor: %s -> %s", self._state.value, state.value)
        self._state = state
        self.state_changed.emit(state.value)


class StartupWorker(QThread):
    """Runs ``ensure_backend()`` off the GUI thread."""

    ready = Signal(str)  # SupervisorState value
    failed = Signal(str, str)  # title, message

    def __init__(self, supervisor: BackendSupervisor, parent: QObject | None = None):
        super().__init__(parent)
        self._supervisor = supervisor

    def run(self) -> None:
        try:
            state = self._supervisor.ensure_backend()
        except BackendError as e:
            _logger.error("backend startup failed: %s", e)
            self.failed.emit(e.title, str(e))
            return
        except Exception as e:
            _logger.exception("backend startup failed unexpectedly")
            self.failed.emit(BackendError.title, str(e))
            return
        self.ready.emit(state.value)
