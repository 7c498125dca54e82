"""Imported images: identity, preview handles and drag-and-drop."""

from watermark_desktop.assets.drop_zone import DropZone
from watermark_desktop.assets.previews import PreviewRegistry, probe_dimensions
from watermark_desktop.assets.store import ImageAsset, ImageAssetStore, SelectedFile

__all__ = [
    "DropZone",
    "ImageAsset",
    "ImageAssetStore",
    "PreviewRegistry",
    "SelectedFile",
    "probe_dimensions",
]
