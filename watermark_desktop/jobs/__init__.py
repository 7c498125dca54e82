"""Export job tracking (submission, polling, cancellation)."""

from watermark_desktop.jobs.tracker import ExportJobTracker

__all__ = ["ExportJobTracker"]
