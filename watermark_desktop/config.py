"""Runtime configuration for the desktop shell.

Values are resolved in this order: process environment, the JSON settings file,
then the defaults declared on :class:`AppConfig`.
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

from .logger import get_logger
from .settings_manager import SettingsManager

_logger = get_logger("config")

_BASE_DIR = Path(getattr(sys, "_MEIPASS", Path(__file__).resolve().parents[1]))
DEFAULT_SETTINGS_PATH = str(_BASE_DIR / "settings.json")

# field name -> environment variable
ENV_VARS: dict[str, str] = {
    "host": "BACKEND_HOST",
    "port": "BACKEND_PORT",
    "poll_interval_ms": "WATERMARK_POLL_INTERVAL_MS",
    "probe_timeout": "WATERMARK_PROBE_TIMEOUT",
    "ready_timeout": "WATERMARK_READY_TIMEOUT",
    "ready_interval": "WATERMARK_READY_INTERVAL",
    "content_retry_ms": "WATERMARK_CONTENT_RETRY_MS",
    "backend_dir": "WATERMARK_BACKEND_DIR",
    "backend_target_dir": "WATERMARK_BACKEND_TARGET_DIR",
    "java_cmd": "WATERMARK_JAVA",
    "request_timeout": "WATERMARK_REQUEST_TIMEOUT",
}


@dataclass
class AppConfig:
    host: str = "127.0.0.1"
    port: int = 8080
    poll_interval_ms: int = 2000
    probe_timeout: float = 1.0
    ready_timeout: float = 60.0
    ready_interval: float = 0.5
    content_retry_ms: int = 1000
    backend_dir: str = str(_BASE_DIR / "backend")
    backend_target_dir: str = ""
    java_cmd: str = "java"
    request_timeout: float = 30.0
    settings_path: str = DEFAULT_SETTINGS_PATH

    def __post_init__(self) -> None:
        if not self.backend_target_dir:
            self.backend_target_dir = str(Path(self.backend_dir) / "target")

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"

    @classmethod
    def load(
        cls,
        environ: dict[str, str] | None = None,
        settings: SettingsManager | None = None,
    ) -> AppConfig:
        """Build a config from defaults, the settings file and the environment."""
        env = os.environ if environ is None else environ
        defaults = cls()
        values: dict[str, Any] = {}
        for f in fields(cls):
            if f.name == "settings_path":
                continue
            raw: Any = None
            if settings is not None and settings.has(f.name):
                raw = settings.get(f.name)
            env_name = ENV_VARS.get(f.name)
            if env_name and env.get(env_name, "").strip():
                raw = env[env_name].strip()
            if raw is None:
                continue
            coerced = _coerce(raw, type(getattr(defaults, f.name)))
            if coerced is None:
                _logger.warning("ignoring invalid value for %s: %r", f.name, raw)
                continue
            values[f.name] = coerced

        # backend_target_dir follows backend_dir unless it was set explicitly
        values.setdefault("backend_target_dir", "")
        if settings is not None:
            values["settings_path"] = settings.settings_path
        cfg = cls(**values)
        _logger.debug("config: %s", cfg)
        return cfg


def _coerce(raw: Any, target: type) -> Any:
    try:
        if target is int:
            value = int(raw)
            return value if value > 0 else None
        if target is float:
            value = float(raw)
            return value if value > 0 else None
        return str(raw)
    except (TypeError, ValueError):
        return None
