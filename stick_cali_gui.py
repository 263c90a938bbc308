#!/usr/bin/env python3
"""Stick calibration studio GUI: guided calibration and circularity test."""

from __future__ import annotations

import datetime as dt
import sys
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

import cali_backend as backend
import stick_cali as core
from cali_session import CalibrationSessionController, ControllerSnapshot, LiveInput
from trajectory import QtFrameScheduler, TrajectoryRenderer

try:
    from PySide6 import QtCore, QtGui, QtWidgets
except ImportError as exc:  # pragma: no cover - runtime dependency
    raise SystemExit(
        "Missing dependency: PySide6. Install with `pip install -r requirements.txt`."
    ) from exc


ACCENT = QtGui.QColor("#D4DF3A")
MUTED = QtGui.QColor("#8D96B3")
TEXT = QtGui.QColor("#E9EDF7")
STICK_DOT = QtGui.QColor("#F0AD52")
INPUT_POLL_MS = 16


def format_vec(value: Tuple[float, float]) -> str:
    return f"({value[0]:+0.3f}, {value[1]:+0.3f})"


class QtTicker:
    """Periodic QTimer exposed through the session controller's ticker interface."""

    def __init__(self, parent: Optional[QtCore.QObject] = None) -> None:
        self.timer = QtCore.QTimer(parent)
        self._callback: Optional[Callable[[], None]] = None
        self.timer.timeout.connect(self._fire)

    @property
    def active(self) -> bool:
        return self.timer.isActive()

    def start(self, interval_ms: int, callback: Callable[[], None]) -> None:
        self._callback = callback
        self.timer.setInterval(interval_ms)
        self.timer.start()

    def stop(self) -> None:
        self.timer.stop()
        self._callback = None

    def _fire(self) -> None:
        if self._callback is not None:
            self._callback()


class TrajectoryScope(QtWidgets.QWidget):
    """Stick area showing the composited trajectory surface and the live position."""

    def __init__(self, title: str, parent: Optional[QtWidgets.QWidget] = None) -> None:
        super().__init__(parent)
        self.title = title
        self.position = (0.0, 0.0)
        self.renderer: Optional[TrajectoryRenderer] = None
        self.round_area = False
        self.setMinimumSize(260, 260)

    def set_position(self, position: Tuple[float, float]) -> None:
        self.position = position
        self.update()

    def area(self) -> QtCore.QRectF:
        inner = QtCore.QRectF(self.rect()).adjusted(16, 34, -16, -14)
        size = min(inner.width(), inner.height())
        return QtCore.QRectF(
            inner.center().x() - size / 2,
            inner.center().y() - size / 2,
            size,
            size,
        )

    def surface_size(self) -> Tuple[int, int]:
        area = self.area()
        return int(area.width()), int(area.height())

    def paintEvent(self, event: QtGui.QPaintEvent) -> None:  # noqa: N802
        del event
        painter = QtGui.QPainter(self)
        painter.setRenderHint(QtGui.QPainter.Antialiasing)

        rect = self.rect().adjusted(6, 6, -6, -6)
        painter.setPen(QtGui.QPen(QtGui.QColor("#2A3044"), 1))
        painter.setBrush(QtGui.QBrush(QtGui.QColor("#0E111A")))
        painter.drawRoundedRect(rect, 12, 12)

        painter.setPen(TEXT)
        title_font = painter.font()
        title_font.setPointSize(10)
        title_font.setWeight(QtGui.QFont.DemiBold)
        painter.setFont(title_font)
        painter.drawText(rect.adjusted(12, 8, -8, -8), QtCore.Qt.AlignTop | QtCore.Qt.AlignLeft, self.title)

        square = self.area()
        center = square.center()
        radius = square.width() / 2

        painter.setPen(QtGui.QPen(QtGui.QColor("#495371"), 1.5))
        painter.setBrush(QtGui.QColor("#141827"))
        if self.round_area:
            painter.drawEllipse(center, radius, radius)
        else:
            painter.drawRoundedRect(square, 15, 15)

        painter.setPen(QtGui.QPen(QtGui.QColor("#3A425D"), 1))
        painter.drawLine(
            QtCore.QPointF(center.x() - radius, center.y()),
            QtCore.QPointF(center.x() + radius, center.y()),
        )
        painter.drawLine(
            QtCore.QPointF(center.x(), center.y() - radius),
            QtCore.QPointF(center.x(), center.y() + radius),
        )
        painter.setBrush(QtCore.Qt.NoBrush)
        painter.setPen(QtGui.QPen(ACCENT, 1.2, QtCore.Qt.DashLine))
        painter.drawEllipse(center, radius, radius)

        if self.renderer is not None and self.renderer.surface is not None:
            painter.drawImage(square.topLeft(), self.renderer.surface)

        x = max(-1.0, min(1.0, self.position[0]))
        y = max(-1.0, min(1.0, self.position[1]))
        handle = QtCore.QPointF(center.x() + x * radius, center.y() - y * radius)
        painter.setPen(QtGui.QPen(MUTED, 1))
        painter.drawLine(center, handle)
        painter.setPen(QtCore.Qt.NoPen)
        painter.setBrush(STICK_DOT)
        painter.drawEllipse(handle, 6.0, 6.0)


@dataclass
class SidePanelRefs:
    side: str
    container: QtWidgets.QFrame
    scope: TrajectoryScope
    start_button: QtWidgets.QPushButton
    position_label: QtWidgets.QLabel
    calibrated_label: QtWidgets.QLabel
    calibration_label: QtWidgets.QLabel
    circularity_label: QtWidgets.QLabel


class CalibrationWindow(QtWidgets.QMainWindow):
    def __init__(self) -> None:
        super().__init__()
        self.setWindowTitle("Stick Calibration Studio")
        self.resize(1200, 760)

        self.joystick: Optional[core.pygame.joystick.Joystick] = None
        self.controller_info: Optional[core.ControllerInfo] = None
        self.left_axes = core.DEFAULT_LEFT_AXES
        self.right_axes = core.DEFAULT_RIGHT_AXES

        core.init_input_system()
        self._build_ui()

        self.service = backend.LocalCalibrationService(report=self._log)
        self.live_input = LiveInput()
        self.live_input.subscribe(lambda snap: self.service.feed(snap.left, snap.right))

        self.frames = QtFrameScheduler(self)
        renderers = {
            side: TrajectoryRenderer(side, self.frames, lambda s=side: self.live_input.sample(s), on_frame=panel.scope.update)
            for side, panel in ((backend.SIDE_LEFT, self.left_panel), (backend.SIDE_RIGHT, self.right_panel))
        }
        self.left_panel.scope.renderer = renderers[backend.SIDE_LEFT]
        self.right_panel.scope.renderer = renderers[backend.SIDE_RIGHT]

        self.controller = CalibrationSessionController(
            self.service,
            self.live_input,
            QtTicker(self),
            QtTicker(self),
            status=self._on_status,
            renderers=renderers,
            measures={
                backend.SIDE_LEFT: self.left_panel.scope.surface_size,
                backend.SIDE_RIGHT: self.right_panel.scope.surface_size,
            },
        )
        self.controller.on_change = self._refresh_view

        self.refresh_controllers(select_first=True)
        self.controller.open()

        self.timer = QtCore.QTimer(self)
        self.timer.setInterval(INPUT_POLL_MS)
        self.timer.timeout.connect(self._poll_input)
        self.timer.start()

    def closeEvent(self, event: QtGui.QCloseEvent) -> None:  # noqa: N802
        self.timer.stop()
        self.controller.close()
        if self.joystick is not None:
            try:
                self.joystick.quit()
            except core.pygame.error:
                pass
            self.joystick = None
        core.shutdown_input_system()
        super().closeEvent(event)

    def _build_ui(self) -> None:
        self.setStyleSheet(
            """
            QMainWindow {
                background: #090B12;
            }
            QWidget {
                color: #E9EDF7;
                font-family: 'Avenir Next', 'SF Pro Display', 'Helvetica Neue', sans-serif;
                font-size: 12px;
            }
            QFrame#topBar, QFrame#panelCard, QFrame#centerCard, QFrame#logCard {
                background: #131727;
                border: 1px solid #2A3047;
                border-radius: 14px;
            }
            QLabel#brand {
                font-size: 20px;
                font-weight: 700;
                color: #D4DF3A;
                letter-spacing: 1px;
            }
            QLabel#statusBadge {
                background: #1D2538;
                border: 1px solid #374361;
                border-radius: 12px;
                padding: 5px 10px;
                color: #C9D3EE;
                font-weight: 600;
            }
            QLabel#hint {
                font-size: 14px;
                color: #D4DF3A;
            }
            QPushButton {
                background: #1E263A;
                border: 1px solid #3B4663;
                border-radius: 10px;
                padding: 8px 12px;
                font-weight: 600;
            }
            QPushButton:hover {
                background: #25304A;
                border: 1px solid #4A587B;
            }
            QPushButton:disabled {
                color: #5A6380;
                border: 1px solid #262D42;
            }
            QPushButton#primary {
                background: #D4DF3A;
                color: #171A24;
                border: none;
                font-weight: 700;
            }
            QPushButton#danger {
                background: #D85F5F;
                color: #FFFFFF;
                border: none;
                font-weight: 700;
            }
            QComboBox {
                background: #1C2235;
                border: 1px solid #3B4460;
                border-radius: 8px;
                padding: 7px 10px;
                min-width: 120px;
            }
            QPlainTextEdit {
                background: #0D111A;
                border: 1px solid #28324C;
                border-radius: 10px;
                color: #C6D0EA;
            }
            """
        )

        root = QtWidgets.QWidget()
        self.setCentralWidget(root)
        outer = QtWidgets.QVBoxLayout(root)
        outer.setContentsMargins(18, 16, 18, 16)
        outer.setSpacing(14)

        top = QtWidgets.QFrame(objectName="topBar")
        top_layout = QtWidgets.QHBoxLayout(top)
        top_layout.setContentsMargins(14, 10, 14, 10)
        top_layout.setSpacing(10)

        top_layout.addWidget(QtWidgets.QLabel("STICK CALIBRATION", objectName="brand"))
        top_layout.addSpacing(12)

        self.controller_combo = QtWidgets.QComboBox()
        self.controller_combo.setMinimumWidth(340)
        top_layout.addWidget(self.controller_combo)

        refresh_btn = QtWidgets.QPushButton("Refresh")
        refresh_btn.clicked.connect(self.refresh_controllers)
        top_layout.addWidget(refresh_btn)

        connect_btn = QtWidgets.QPushButton("Connect")
        connect_btn.clicked.connect(self.connect_selected)
        top_layout.addWidget(connect_btn)

        top_layout.addStretch(1)

        self.status_badge = QtWidgets.QLabel("Idle", objectName="statusBadge")
        top_layout.addWidget(self.status_badge)
        outer.addWidget(top)

        center_split = QtWidgets.QHBoxLayout()
        center_split.setSpacing(14)

        self.left_panel = self._build_side_panel(backend.SIDE_LEFT, "Left Stick")
        center_split.addWidget(self.left_panel.container, 4)

        center_card = QtWidgets.QFrame(objectName="centerCard")
        center_layout = QtWidgets.QVBoxLayout(center_card)
        center_layout.setContentsMargins(14, 14, 14, 14)
        center_layout.setSpacing(10)

        self.step_label = QtWidgets.QLabel("Step: Idle")
        center_layout.addWidget(self.step_label)

        self.hint_label = QtWidgets.QLabel("", objectName="hint")
        self.hint_label.setWordWrap(True)
        center_layout.addWidget(self.hint_label)

        self.next_btn = QtWidgets.QPushButton("Next")
        self.next_btn.setObjectName("primary")
        self.next_btn.clicked.connect(lambda: self.controller.advance())
        center_layout.addWidget(self.next_btn)

        self.save_btn = QtWidgets.QPushButton("Save")
        self.save_btn.clicked.connect(lambda: self.controller.save())
        center_layout.addWidget(self.save_btn)

        self.cancel_btn = QtWidgets.QPushButton("Cancel")
        self.cancel_btn.setObjectName("danger")
        self.cancel_btn.clicked.connect(lambda: self.controller.cancel())
        center_layout.addWidget(self.cancel_btn)

        reset_btn = QtWidgets.QPushButton("Restore Defaults")
        reset_btn.clicked.connect(self.reset_to_default)
        center_layout.addWidget(reset_btn)

        mode_row = QtWidgets.QHBoxLayout()
        mode_row.addWidget(QtWidgets.QLabel("Deadzone shape"))
        self.mode_combo = QtWidgets.QComboBox()
        self.mode_combo.addItem("Square", backend.MODE_SQUARE)
        self.mode_combo.addItem("Circle", backend.MODE_CIRCLE)
        self.mode_combo.currentIndexChanged.connect(self._mode_changed)
        mode_row.addWidget(self.mode_combo, 1)
        center_layout.addLayout(mode_row)

        self.circularity_check = QtWidgets.QCheckBox("Circularity test")
        self.circularity_check.toggled.connect(lambda checked: self.controller.set_circularity_test(checked))
        center_layout.addWidget(self.circularity_check)

        center_layout.addStretch(1)
        center_split.addWidget(center_card, 3)

        self.right_panel = self._build_side_panel(backend.SIDE_RIGHT, "Right Stick")
        center_split.addWidget(self.right_panel.container, 4)

        outer.addLayout(center_split, 10)

        log_card = QtWidgets.QFrame(objectName="logCard")
        log_layout = QtWidgets.QVBoxLayout(log_card)
        log_layout.setContentsMargins(10, 10, 10, 10)
        log_layout.setSpacing(6)
        log_layout.addWidget(QtWidgets.QLabel("Session Log"))
        self.log_box = QtWidgets.QPlainTextEdit()
        self.log_box.setReadOnly(True)
        self.log_box.setMaximumHeight(130)
        log_layout.addWidget(self.log_box)
        outer.addWidget(log_card)

        self._set_status("Ready")

    def _build_side_panel(self, side: str, title: str) -> SidePanelRefs:
        card = QtWidgets.QFrame(objectName="panelCard")
        layout = QtWidgets.QVBoxLayout(card)
        layout.setContentsMargins(12, 12, 12, 12)
        layout.setSpacing(10)

        heading = QtWidgets.QLabel(title)
        heading_font = heading.font()
        heading_font.setPointSize(14)
        heading_font.setWeight(QtGui.QFont.DemiBold)
        heading.setFont(heading_font)
        layout.addWidget(heading)

        scope = TrajectoryScope(f"{title} Trajectory")
        layout.addWidget(scope, 5)

        position_label = QtWidgets.QLabel("Position: (+0.000, +0.000)")
        calibrated_label = QtWidgets.QLabel("Calibrated: (+0.000, +0.000)")
        calibration_label = QtWidgets.QLabel("Calibration: n/a")
        circularity_label = QtWidgets.QLabel("Circularity error: --%")
        for widget in (position_label, calibrated_label, calibration_label, circularity_label):
            layout.addWidget(widget)

        start_button = QtWidgets.QPushButton(f"Calibrate {title}")
        start_button.clicked.connect(lambda _checked=False, s=side: self.controller.start(s))
        layout.addWidget(start_button)

        return SidePanelRefs(
            side=side,
            container=card,
            scope=scope,
            start_button=start_button,
            position_label=position_label,
            calibrated_label=calibrated_label,
            calibration_label=calibration_label,
            circularity_label=circularity_label,
        )

    def _log(self, message: str) -> None:
        timestamp = dt.datetime.now().strftime("%H:%M:%S")
        self.log_box.appendPlainText(f"[{timestamp}] {message}")
        self.log_box.verticalScrollBar().setValue(self.log_box.verticalScrollBar().maximum())

    def _set_status(self, message: str) -> None:
        self.status_badge.setText(message)

    def _on_status(self, message: str, is_error: bool) -> None:
        self._log(f"ERROR: {message}" if is_error else message)
        self._set_status("Error" if is_error else message)

    def refresh_controllers(self, select_first: bool = False) -> None:
        self.controller_combo.clear()
        controllers = core.list_controllers()
        for controller in controllers:
            text = (
                f"[{controller.index}] {controller.name} "
                f"(axes={controller.axis_count}, buttons={controller.button_count})"
            )
            self.controller_combo.addItem(text, controller.index)

        if controllers and select_first:
            self.controller_combo.setCurrentIndex(0)

        self._set_status("Controllers found" if controllers else "No controller")

    def connect_selected(self) -> None:
        if self.controller_combo.count() == 0:
            self.refresh_controllers(select_first=True)
            if self.controller_combo.count() == 0:
                QtWidgets.QMessageBox.warning(self, "No controller", "Connect a controller and try again.")
                return

        index = self.controller_combo.currentData()
        if index is None:
            QtWidgets.QMessageBox.warning(self, "Selection error", "Could not read selected controller index.")
            return

        self.controller.close()
        if self.joystick is not None:
            try:
                self.joystick.quit()
            except core.pygame.error:
                pass
            self.joystick = None

        try:
            joystick, info = core.init_controller(int(index), wait_seconds=1)
            core.validate_axes(self.left_axes, info.axis_count, "Left")
            core.validate_axes(self.right_axes, info.axis_count, "Right")
        except RuntimeError as exc:
            QtWidgets.QMessageBox.warning(self, "Connect", str(exc))
            return

        self.joystick = joystick
        self.controller_info = info
        self._log(f"Connected {info.name} (guid={info.guid})")

        self.service.device = info.device()
        self.service.load()
        self.controller.open()
        self.mode_combo.blockSignals(True)
        self.mode_combo.setCurrentIndex(max(0, self.mode_combo.findData(self.controller.mode)))
        self.mode_combo.blockSignals(False)
        self.circularity_check.setChecked(False)
        self._set_status("Connected")

    def reset_to_default(self) -> None:
        answer = QtWidgets.QMessageBox.question(
            self,
            "Restore defaults",
            "Delete the saved calibration for this controller and restore defaults?",
        )
        if answer == QtWidgets.QMessageBox.Yes:
            self.controller.reset_to_default()

    def _mode_changed(self, index: int) -> None:
        mode = self.mode_combo.itemData(index)
        if mode:
            self.controller.set_mode(mode)

    def _refresh_view(self) -> None:
        controller = self.controller
        idle = controller.active_stick == backend.SIDE_NONE
        step = controller.step

        self.step_label.setText(f"Step: {step}")
        self.hint_label.setText(controller.hint)
        self.next_btn.setEnabled(step in (backend.STEP_CENTER_CHECK, backend.STEP_RANGE_DETECTION))
        self.next_btn.setText("Finish" if step == backend.STEP_RANGE_DETECTION else "Next")
        self.save_btn.setEnabled(step == backend.STEP_COMPLETE)
        self.cancel_btn.setEnabled(not idle)

        snapshot = controller.proxy.snapshot
        round_area = controller.mode == backend.MODE_CIRCLE
        for panel in (self.left_panel, self.right_panel):
            panel.start_button.setEnabled(idle)
            panel.circularity_label.setText(controller.circularity_text(panel.side))
            panel.scope.round_area = round_area
            data = snapshot.side(panel.side)
            panel.calibration_label.setText(core.format_stick("", data).strip())
            panel.scope.update()

        if self.circularity_check.isChecked() != controller.circularity_enabled:
            self.circularity_check.blockSignals(True)
            self.circularity_check.setChecked(controller.circularity_enabled)
            self.circularity_check.blockSignals(False)

    def _poll_input(self) -> None:
        if self.joystick is None:
            return

        try:
            core.pygame.event.pump()
            snapshot = core.read_snapshot(self.joystick, self.left_axes, self.right_axes)
        except core.pygame.error:
            self.controller.close()
            self.joystick = None
            self._set_status("Disconnected")
            self._log("Controller disconnected")
            return

        self.live_input.push(snapshot)
        self._show_snapshot(snapshot)

    def _show_snapshot(self, snapshot: ControllerSnapshot) -> None:
        for panel in (self.left_panel, self.right_panel):
            position = snapshot.stick(panel.side)
            panel.scope.set_position(position)
            panel.position_label.setText(f"Position: {format_vec(position)}")
            shaped = backend.apply_calibration(
                position[0],
                position[1],
                backend.DEFAULT_DEADZONE_PERCENT,
                self.controller.proxy.snapshot.side(panel.side),
            )
            panel.calibrated_label.setText(f"Calibrated: {format_vec(shaped)}")


def main() -> int:
    app = QtWidgets.QApplication(sys.argv)
    window = CalibrationWindow()
    window.show()
    return app.exec()


if __name__ == "__main__":
    raise SystemExit(main())
