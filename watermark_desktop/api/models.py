"""Typed payloads exchanged with the export service.

Field names are snake_case in Python and camelCase on the wire. Dumps drop
``None`` values, mirroring the service's NON_NULL JSON.
"""

from __future__ import annotations

import base64
import enum
import mimetypes
from datetime import datetime
from pathlib import Path
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class JobStatus(str, enum.Enum):
    QUEUED = "QUEUED"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})


class ExportFileResult(WireModel):
    source_name: str
    output_name: str | None = None
    success: bool
    message: str | None = None


class ExportJob(WireModel):
    """Point-in-time snapshot of a server-side export job."""

    id: str
    status: JobStatus
    message: str | None = None
    current_file: str | None = None
    output_directory: str | None = None
    total_files: int = 0
    processed_files: int = 0
    success_count: int = 0
    failure_count: int = 0
    progress: float = 0.0
    created_at: datetime
    updated_at: datetime
    results: list[ExportFileResult] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _derive_progress(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("progress") is None:
            total = data.get("totalFiles", data.get("total_files")) or 0
            processed = data.get("processedFiles", data.get("processed_files")) or 0
            data = {**data, "progress": (processed / total) if total else 0.0}
        return data

    @model_validator(mode="after")
    def _clamp_updated_at(self) -> ExportJob:
        if self.updated_at < self.created_at:
            self.updated_at = self.created_at
        return self

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def percent(self) -> int:
        return int(max(0.0, min(1.0, self.progress)) * 100)


# ---- watermark configuration -------------------------------------------------

LayoutPreset = Literal[
    "top-left",
    "top-center",
    "top-right",
    "center-left",
    "center",
    "center-right",
    "bottom-left",
    "bottom-center",
    "bottom-right",
    "custom",
]


class StrokeStyle(WireModel):
    color: str = "#000000"
    width: float = Field(default=1.0, ge=0)


class ShadowStyle(WireModel):
    color: str = "#000000"
    offset_x: float = 2.0
    offset_y: float = 2.0
    blur: float = Field(default=4.0, ge=0)


class LayoutConfig(WireModel):
    preset: LayoutPreset = "bottom-right"
    x: float | None = None
    y: float | None = None
    rotation_deg: float = 0.0
    scale: float = Field(default=1.0, gt=0)


class TextStyle(WireModel):
    content: str = Field(min_length=1)
    font_family: str | None = None
    font_size: int = Field(default=32, gt=0)
    bold: bool = False
    italic: bool = False
    color: str = "#FFFFFF"
    opacity: float = Field(default=0.8, ge=0, le=1)
    stroke: StrokeStyle | None = None
    shadow: ShadowStyle | None = None


class ImageStyle(WireModel):
    name: str
    mime: str
    data: str  # base64, no data: prefix
    cache_key: str | None = None
    scale: float = Field(default=1.0, gt=0)
    opacity: float = Field(default=1.0, ge=0, le=1)

    @classmethod
    def from_file(cls, path: str | Path, **kwargs: Any) -> ImageStyle:
        p = Path(path)
        mime = mimetypes.guess_type(p.name)[0] or "application/octet-stream"
        data = base64.b64encode(p.read_bytes()).decode("ascii")
        return cls(name=p.name, mime=mime, data=data, **kwargs)


class TextWatermark(WireModel):
    type: Literal["text"] = "text"
    text: TextStyle
    layout: LayoutConfig | None = None


class ImageWatermark(WireModel):
    type: Literal["image"] = "image"
    image: ImageStyle
    layout: LayoutConfig | None = None


WatermarkConfig = Annotated[Union[TextWatermark, ImageWatermark], Field(discriminator="type")]


# ---- export configuration ----------------------------------------------------


class WidthResize(WireModel):
    mode: Literal["w"] = "w"
    width: int = Field(gt=0)


class HeightResize(WireModel):
    mode: Literal["h"] = "h"
    height: int = Field(gt=0)


class PercentResize(WireModel):
    mode: Literal["pct"] = "pct"
    percent: float = Field(gt=0)


ResizeConfig = Annotated[Union[WidthResize, HeightResize, PercentResize], Field(discriminator="mode")]


class NamingRule(WireModel):
    keep_original: bool = False
    prefix: str = ""
    suffix: str = "_watermarked"


class ExportConfig(WireModel):
    output_dir: str = Field(min_length=1)
    format: Literal["jpeg", "png"] = "jpeg"
    jpeg_quality: int = Field(default=90, ge=1, le=100)
    resize: ResizeConfig | None = None
    naming: NamingRule | None = None


class ExportRequest(WireModel):
    watermark_config: WatermarkConfig
    export_config: ExportConfig

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


# ---- boundary-only payloads --------------------------------------------------


class HealthResponse(WireModel):
    status: str
    timestamp: str | None = None


class Template(WireModel):
    id: str
    name: str
    watermark_config: WatermarkConfig | None = None
    export_config: ExportConfig | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class LastSettings(WireModel):
    watermark_config: WatermarkConfig | None = None
    export_config: ExportConfig | None = None
    updated_at: datetime | None = None
