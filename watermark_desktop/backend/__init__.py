"""Supervision of the local export service process."""

from watermark_desktop.backend.locator import find_backend_artifact
from watermark_desktop.backend.probe import is_port_in_use, wait_for_port
from watermark_desktop.backend.supervisor import (
    BackendProcessHandle,
    BackendSupervisor,
    StartupWorker,
    SupervisorState,
    kill_process_tree,
)

__all__ = [
    "BackendProcessHandle",
    "BackendSupervisor",
    "StartupWorker",
    "SupervisorState",
    "find_backend_artifact",
    "is_port_in_use",
    "kill_process_tree",
    "wait_for_port",
]
