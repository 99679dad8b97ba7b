from __future__ import annotations
import logging
from pathlib import Path
from typing import Dict, Optional

from PySide6.QtCore import QUrl, Signal
from PySide6.QtGui import QDesktopServices
from PySide6.QtWidgets import (QCheckBox, QComboBox, QDialog, QDoubleSpinBox, QFileDialog, QFormLayout,
                               QHBoxLayout, QLabel, QLineEdit, QMessageBox, QPushButton, QSpinBox,
                               QVBoxLayout, QWidget)

from ..client.algos import AlgorithmClient
from ..client.schema import ParameterDescriptor, ParameterKind, ParameterSet
from ..errors import ServerKitError, UnsupportedOperation

RUN_LABEL = "Run"
BUSY_LABEL = "Please wait..."

# QSpinBox 범위 (서버 스키마에 범위 정보 없음)
INT_RANGE = (-2**31, 2**31 - 1)
FLOAT_RANGE = (-1e12, 1e12)
FLOAT_DECIMALS = 4


def format_algorithm_info(info: dict) -> str:
    """서버가 보낸 알고리즘 정보 → 표시용 텍스트"""
    if not info:
        return "No information available."
    lines = []
    for key, value in info.items():
        if isinstance(value, (list, tuple)):
            value = ", ".join(str(v) for v in value)
        elif isinstance(value, dict):
            value = ", ".join(f"{k}={v}" for k, v in value.items())
        lines.append(f"{key}: {value}")
    return "\n".join(lines)


class ParametersDialog(QDialog):
    """알고리즘 파라미터 입력 폼

    ParameterSet 하나를 편집하고, Run 버튼을 누르면 ``run_requested``로
    현재 값이 반영된 ParameterSet을 내보냄.
    """

    run_requested = Signal(object)  # ParameterSet

    def __init__(self, algorithm: str, parameters: ParameterSet,
                 client: Optional[AlgorithmClient] = None, parent: QWidget | None = None):
        super().__init__(parent)
        self.setWindowTitle(algorithm)
        self.algorithm = algorithm
        self.parameters = parameters
        self.client = client
        self.editors: Dict[str, QWidget] = {}
        self.logger = logging.getLogger(__name__)

        layout = QVBoxLayout(self)
        form = QFormLayout()
        if len(parameters) == 0:
            form.addRow(QLabel("This algorithm has no parameters."))
        for desc in parameters:
            editor = self._create_editor(desc)
            self.editors[desc.key] = editor
            label = desc.label if not desc.unit else f"{desc.label} ({desc.unit})"
            form.addRow(label, editor)
        layout.addLayout(form)

        buttons = QHBoxLayout()
        self.btn_docs = QPushButton("Documentation")
        self.btn_docs.clicked.connect(self.open_documentation)
        self.btn_info = QPushButton("Info")
        self.btn_info.clicked.connect(self.show_algorithm_info)
        self.btn_samples = QPushButton("Sample image(s)")
        self.btn_samples.clicked.connect(self.save_sample_images)
        self.btn_run = QPushButton(RUN_LABEL)
        self.btn_run.setDefault(True)
        self.btn_run.clicked.connect(self._on_run_clicked)

        routes = client.routes if client else None
        self.btn_docs.setVisible(bool(routes and routes.documentation))
        self.btn_samples.setVisible(bool(routes and routes.sample_images))
        self.btn_info.setVisible(bool(routes and routes.info))

        buttons.addWidget(self.btn_docs)
        buttons.addWidget(self.btn_info)
        buttons.addWidget(self.btn_samples)
        buttons.addStretch()
        buttons.addWidget(self.btn_run)
        layout.addLayout(buttons)

    # -------------------- 편집기 --------------------
    def _create_editor(self, desc: ParameterDescriptor) -> QWidget:
        value = self.parameters.get_value(desc.key)
        if desc.kind == ParameterKind.BOOLEAN:
            editor = QCheckBox()
            editor.setChecked(bool(value))
        elif desc.kind == ParameterKind.INTEGER:
            editor = QSpinBox()
            editor.setRange(*INT_RANGE)
            editor.setValue(int(value))
        elif desc.kind == ParameterKind.FLOAT:
            editor = QDoubleSpinBox()
            editor.setDecimals(FLOAT_DECIMALS)
            editor.setRange(*FLOAT_RANGE)
            editor.setValue(float(value))
        elif desc.kind == ParameterKind.CHOICE:
            editor = QComboBox()
            editor.addItems(list(desc.choices))
            editor.setCurrentText(str(value))
        else:
            editor = QLineEdit(str(value))
        if desc.description:
            editor.setToolTip(desc.description)
        return editor

    def collect_values(self) -> ParameterSet:
        """편집기 값 → ParameterSet"""
        for desc in self.parameters:
            editor = self.editors[desc.key]
            if isinstance(editor, QCheckBox):
                value = editor.isChecked()
            elif isinstance(editor, (QSpinBox, QDoubleSpinBox)):
                value = editor.value()
            elif isinstance(editor, QComboBox):
                value = editor.currentText()
            else:
                value = editor.text()
            self.parameters.set_value(desc.key, value)
        return self.parameters

    # -------------------- 실행 상태 --------------------
    def set_running(self, running: bool) -> None:
        self.btn_run.setEnabled(not running)
        self.btn_run.setText(BUSY_LABEL if running else RUN_LABEL)

    def _on_run_clicked(self) -> None:
        try:
            params = self.collect_values()
        except ValueError as e:
            QMessageBox.warning(self, "Invalid parameter", str(e))
            return
        self.run_requested.emit(params)

    # -------------------- 부가 기능 --------------------
    def open_documentation(self) -> None:
        try:
            url = self.client.documentation_url(self.algorithm)
        except UnsupportedOperation as e:
            QMessageBox.information(self, "Documentation", str(e))
            return
        QDesktopServices.openUrl(QUrl(url))

    def show_algorithm_info(self) -> None:
        try:
            info = self.client.get_algorithm_info(self.algorithm)
        except ServerKitError as e:
            QMessageBox.critical(self, "Algorithm info", f"Could not retrieve algorithm info:\n{e}")
            return
        QMessageBox.information(self, self.algorithm, format_algorithm_info(info))

    def save_sample_images(self) -> None:
        folder = QFileDialog.getExistingDirectory(self, "Save sample images to")
        if not folder:
            return
        try:
            images = self.client.get_sample_images(self.algorithm)
        except ServerKitError as e:
            QMessageBox.critical(self, "Sample images", f"Could not retrieve sample images:\n{e}")
            return
        saved = []
        for idx, image in enumerate(images):
            path = Path(folder) / f"{self.algorithm}_sample_{idx}.tif"
            image.save(path, format="TIFF")
            saved.append(path)
        self.logger.info(f"Saved {len(saved)} sample image(s) to {folder}")
        QMessageBox.information(self, "Sample images", f"Saved {len(saved)} image(s) to\n{folder}")
