#!/usr/bin/env python3
"""Incremental stick trajectory rendering.

Each stick side owns two off-screen accumulation images. Every frame the wedge
between the previous and current stick position is painted into the trail
image (and into the overshoot image when the stick leaves the tolerance band),
then both are composited onto the visible image. Accumulation images live for
the whole test so the trail covers every excursion, not just the last frame.
"""

from __future__ import annotations

import math
from typing import Callable, Dict, List, Optional, Protocol, Tuple

from circularity import MIN_ERROR_THRESHOLD, THEORETICAL_RADIUS

try:
    from PySide6 import QtCore, QtGui
except ImportError as exc:  # pragma: no cover - runtime dependency
    raise SystemExit(
        "Missing dependency: PySide6. Install with `pip install -r requirements.txt`."
    ) from exc


FRAME_INTERVAL_MS = 16
COMPOSITE_OPACITY = 0.3
OVERSHOOT_COLOR_SCALE = 0.4
TRAIL_RGB = (76, 139, 245)

Point = Tuple[float, float]


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def overshoot_rgb(radius: float) -> Optional[Tuple[int, int, int]]:
    """Pale pink for a slight overshoot, solid red from 0.4 past the band."""
    limit = THEORETICAL_RADIUS + MIN_ERROR_THRESHOLD
    if radius <= limit:
        return None
    ratio = clamp((radius - limit) / OVERSHOOT_COLOR_SCALE, 0.0, 1.0)
    green_blue = int(math.floor(200 * (1.0 - ratio * ratio)))
    return 255, green_blue, green_blue


def to_pixel(sample: Point, width: int, height: int) -> Point:
    center_x = width / 2.0
    center_y = height / 2.0
    return center_x + sample[0] * center_x, center_y - sample[1] * center_y


def wedge(last: Point, current: Point, width: int, height: int) -> List[Point]:
    return [
        (width / 2.0, height / 2.0),
        to_pixel(last, width, height),
        to_pixel(current, width, height),
    ]


def blank_image(width: int, height: int) -> QtGui.QImage:
    image = QtGui.QImage(max(1, int(width)), max(1, int(height)), QtGui.QImage.Format_ARGB32_Premultiplied)
    image.fill(QtCore.Qt.transparent)
    return image


class FrameScheduler(Protocol):
    def request(self, callback: Callable[[], None]) -> int: ...

    def cancel(self, handle: int) -> None: ...


class QtFrameScheduler:
    """Single-shot QTimer per requested frame, paced at roughly 60 Hz."""

    def __init__(self, parent: Optional[QtCore.QObject] = None, interval_ms: int = FRAME_INTERVAL_MS) -> None:
        self.parent = parent
        self.interval_ms = interval_ms
        self._next_handle = 1
        self._timers: Dict[int, QtCore.QTimer] = {}

    @property
    def pending(self) -> int:
        return len(self._timers)

    def request(self, callback: Callable[[], None]) -> int:
        handle = self._next_handle
        self._next_handle += 1

        timer = QtCore.QTimer(self.parent)
        timer.setSingleShot(True)
        timer.setInterval(self.interval_ms)
        timer.timeout.connect(lambda h=handle, cb=callback: self._fire(h, cb))
        self._timers[handle] = timer
        timer.start()
        return handle

    def cancel(self, handle: int) -> None:
        timer = self._timers.pop(handle, None)
        if timer is not None:
            timer.stop()
            timer.deleteLater()

    def _fire(self, handle: int, callback: Callable[[], None]) -> None:
        timer = self._timers.pop(handle, None)
        if timer is None:
            return
        timer.deleteLater()
        callback()


class TrajectoryRenderer:
    def __init__(
        self,
        side: str,
        scheduler: FrameScheduler,
        sample_source: Callable[[], Point],
        on_frame: Optional[Callable[[], None]] = None,
    ) -> None:
        self.side = side
        self.scheduler = scheduler
        self.sample_source = sample_source
        self.on_frame = on_frame

        self.surface: Optional[QtGui.QImage] = None
        self.trail_buffer: Optional[QtGui.QImage] = None
        self.overshoot_buffer: Optional[QtGui.QImage] = None
        self.last_pos: Optional[Point] = None
        self.frame_id: Optional[int] = None

    @property
    def active(self) -> bool:
        return self.surface is not None and self.trail_buffer is not None and self.overshoot_buffer is not None

    def setup(self, width: int, height: int) -> None:
        if self.active:
            return

        self.surface = blank_image(width, height)
        self.trail_buffer = blank_image(width, height)
        self.overshoot_buffer = blank_image(width, height)
        self.last_pos = None

        if self.frame_id is None:
            self.render_frame()

    def teardown(self) -> None:
        if self.frame_id is not None:
            self.scheduler.cancel(self.frame_id)
            self.frame_id = None
        if self.surface is not None:
            self.surface.fill(QtCore.Qt.transparent)
            if self.on_frame is not None:
                self.on_frame()
        self.surface = None
        self.trail_buffer = None
        self.overshoot_buffer = None
        self.last_pos = None

    def render_frame(self) -> None:
        self.frame_id = None
        if not self.active:
            return

        width = self.surface.width()
        height = self.surface.height()
        sample = self.sample_source()
        current = (float(sample[0]), float(sample[1]))
        last = self.last_pos

        if last is not None and current != last:
            points = wedge(last, current, width, height)
            self._fill(self.trail_buffer, points, QtGui.QColor(*TRAIL_RGB))

            rgb = overshoot_rgb(math.hypot(current[0], current[1]))
            if rgb is not None:
                self._fill(self.overshoot_buffer, points, QtGui.QColor(*rgb))

        self.surface.fill(QtCore.Qt.transparent)
        painter = QtGui.QPainter(self.surface)
        painter.setOpacity(COMPOSITE_OPACITY)
        painter.drawImage(0, 0, self.trail_buffer)
        painter.drawImage(0, 0, self.overshoot_buffer)
        painter.end()

        self.last_pos = current
        if self.on_frame is not None:
            self.on_frame()
        if self.active:
            self.frame_id = self.scheduler.request(self.render_frame)

    def _fill(self, image: QtGui.QImage, points: List[Point], color: QtGui.QColor) -> None:
        painter = QtGui.QPainter(image)
        painter.setRenderHint(QtGui.QPainter.Antialiasing)
        painter.setPen(QtCore.Qt.NoPen)
        painter.setBrush(color)
        painter.drawPolygon(QtGui.QPolygonF([QtCore.QPointF(x, y) for x, y in points]))
        painter.end()
