"""Client side of the export service HTTP API.

Models describe the JSON payloads; ``ApiClient`` performs the blocking calls.
"""

from watermark_desktop.api.client import ApiClient
from watermark_desktop.api.models import ExportJob, ExportRequest, JobStatus

__all__ = ["ApiClient", "ExportJob", "ExportRequest", "JobStatus"]
