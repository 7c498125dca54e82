from __future__ import annotations

from pathlib import Path

from watermark_desktop.logger import get_logger

_logger = get_logger("locator")


def find_backend_artifact(
    target_dir: str | Path,
    suffix: str = ".jar",
    exclude_suffixes: tuple[str, ...] = (".original", "-sources.jar", "-javadoc.jar"),
) -> Path | None:
    """Newest runnable artifact in ``target_dir``, or None if there is none."""
    folder = Path(target_dir)
    if not folder.is_dir():
        _logger.debug("artifact dir missing: %s", folder)
        return None

    candidates: list[tuple[float, Path]] = []
    for child in folder.iterdir():
        name = child.name.lower()
        if not name.endswith(suffix) or any(name.endswith(ex) for ex in exclude_suffixes):
            continue
        try:
            if not child.is_file():
                continue
            candidates.append((child.stat().st_mtime, child))
        except OSError:
            continue

    if not candidates:
        return None
    candidates.sort(key=lambda c: c[0], reverse=True)
    _logger.debug("artifact candidates: %s", [c[1].name for c in candidates])
    return candidates[0][1]
