"""Export settings dialog producing an ExportRequest."""

from __future__ import annotations

from pydantic import ValidationError
from PySide6.QtWidgets import (
    QCheckBox,
    QComboBox,
    QDialog,
    QDoubleSpinBox,
    QFileDialog,
    QFormLayout,
    QHBoxLayout,
    QLineEdit,
    QMessageBox,
    QPushButton,
    QSpinBox,
    QVBoxLayout,
)

from watermark_desktop.api.models import (
    ExportConfig,
    ExportRequest,
    HeightResize,
    LayoutConfig,
    NamingRule,
    PercentResize,
    TextStyle,
    TextWatermark,
    WidthResize,
)
from watermark_desktop.logger import get_logger
from watermark_desktop.settings_manager import SettingsManager

_logger = get_logger("export_dialog")

_PRESETS = [
    "top-left",
    "top-center",
    "top-right",
    "center-left",
    "center",
    "center-right",
    "bottom-left",
    "bottom-center",
    "bottom-right",
]
_RESIZE_MODES = [("Keep size", ""), ("Width (px)", "w"), ("Height (px)", "h"), ("Percent", "pct")]


class ExportDialog(QDialog):
    def __init__(self, settings: SettingsManager, fonts: list[str] | None = None, parent=None):
        super().__init__(parent)
        self.setWindowTitle("Export")
        self.setModal(True)
        self.resize(480, 420)
        self._settings = settings
        self._request: ExportRequest | None = None

        self.output_edit = QLineEdit(settings.last_output_dir or "")
        browse_btn = QPushButton("Browse...")
        browse_btn.clicked.connect(self._choose_output_dir)

        self.format_combo = QComboBox()
        self.format_combo.addItems(["jpeg", "png"])
        self.format_combo.setCurrentText(str(settings.get("output_format")))
        self.quality_spin = QSpinBox()
        self.quality_spin.setRange(1, 100)
        self.quality_spin.setValue(int(settings.get("jpeg_quality")))

        self.resize_combo = QComboBox()
        for label, mode in _RESIZE_MODES:
            self.resize_combo.addItem(label, mode)
        self.resize_value = QDoubleSpinBox()
        self.resize_value.setRange(1, 20000)
        self.resize_value.setValue(1920)

        self.prefix_edit = QLineEdit("")
        self.suffix_edit = QLineEdit(str(settings.get("naming_suffix")))
        self.keep_name_cb = QCheckBox("Keep original file name")

        self.text_edit = QLineEdit(str(settings.get("watermark_text")))
        self.text_edit.setPlaceholderText("Watermark text")
        self.font_combo = QComboBox()
        self.font_combo.addItem("(default)", None)
        for name in fonts or []:
            self.font_combo.addItem(name, name)
        self.size_spin = QSpinBox()
        self.size_spin.setRange(6, 512)
        self.size_spin.setValue(32)
        self.color_edit = QLineEdit("#FFFFFF")
        self.opacity_spin = QDoubleSpinBox()
        self.opacity_spin.setRange(0.0, 1.0)
        self.opacity_spin.setSingleStep(0.05)
        self.opacity_spin.setValue(0.8)
        self.preset_combo = QComboBox()
        self.preset_combo.addItems(_PRESETS)
        self.preset_combo.setCurrentText(str(settings.get("watermark_preset")))

        form = QFormLayout()
        out_row = QHBoxLayout()
        out_row.addWidget(self.output_edit)
        out_row.addWidget(browse_btn)
        form.addRow("Output folder", out_row)
        form.addRow("Format", self.format_combo)
        form.addRow("JPEG quality", self.quality_spin)
        resize_row = QHBoxLayout()
        resize_row.addWidget(self.resize_combo)
        resize_row.addWidget(self.resize_value)
        form.addRow("Resize", resize_row)
        form.addRow("Prefix", self.prefix_edit)
        form.addRow("Suffix", self.suffix_edit)
        form.addRow("", self.keep_name_cb)
        form.addRow("Text", self.text_edit)
        form.addRow("Font", self.font_combo)
        form.addRow("Font size", self.size_spin)
        form.addRow("Color", self.color_edit)
        form.addRow("Opacity", self.opacity_spin)
        form.addRow("Position", self.preset_combo)

        self.export_btn = QPushButton("Export")
        self.export_btn.setDefault(True)
        cancel_btn = QPushButton("Cancel")
        self.export_btn.clicked.connect(self._accept)
        cancel_btn.clicked.connect(self.reject)

        btns = QHBoxLayout()
        btns.addStretch()
        btns.addWidget(self.export_btn)
        btns.addWidget(cancel_btn)

        layout = QVBoxLayout()
        layout.addLayout(form)
        layout.addLayout(btns)
        self.setLayout(layout)

    @property
    def request(self) -> ExportRequest | None:
        return self._request

    def build_request(self) -> ExportRequest:
        """Build the request from the form.

        Raises:
            pydantic.ValidationError: a field is out of range or missing.
        """
        mode = self.resize_combo.currentData()
        value = float(self.resize_value.value())
        resize = None
        if mode == "w":
            resize = WidthResize(width=int(value))
        elif mode == "h":
            resize = HeightResize(height=int(value))
        elif mode == "pct":
            resize = PercentResize(percent=value)

        export = ExportConfig(
            output_dir=self.output_edit.text().strip(),
            format=self.format_combo.currentText(),
            jpeg_quality=int(self.quality_spin.value()),
            resize=resize,
            naming=NamingRule(
                keep_original=self.keep_name_cb.isChecked(),
                prefix=self.prefix_edit.text(),
                suffix=self.suffix_edit.text(),
            ),
        )
        watermark = TextWatermark(
            text=TextStyle(
                content=self.text_edit.text().strip(),
                font_family=self.font_combo.currentData(),
                font_size=int(self.size_spin.value()),
                color=self.color_edit.text().strip() or "#FFFFFF",
                opacity=float(self.opacity_spin.value()),
            ),
            layout=LayoutConfig(preset=self.preset_combo.currentText()),
        )
        return ExportRequest(watermark_config=watermark, export_config=export)

    def _choose_output_dir(self):
        path = QFileDialog.getExistingDirectory(self, "Select output folder", self.output_edit.text() or "")
        if path:
            self.output_edit.setText(path)

    def _accept(self):
        try:
            request = self.build_request()
        except ValidationError as e:
            fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
            QMessageBox.warning(self, "Invalid export settings", f"Please check: {fields}")
            return
        self._remember(request)
        self._request = request
        self.accept()

    def _remember(self, request: ExportRequest) -> None:
        cfg = request.export_config
        self._settings.set("last_output_dir", cfg.output_dir)
        self._settings.set("output_format", cfg.format)
        self._settings.set("jpeg_quality", cfg.jpeg_quality)
        self._settings.set("watermark_text", self.text_edit.text().strip())
        self._settings.set("watermark_preset", self.preset_combo.currentText())
        self._settings.set("naming_suffix", self.suffix_edit.text())
        _logger.debug("export settings remembered")
