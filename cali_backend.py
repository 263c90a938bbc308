#!/usr/bin/env python3
"""Stick calibration service.

Owns the calibration data for both sticks, runs the per-stick step machine
(Idle -> CenterCheck -> RangeDetection -> Complete), records center and range
from the live samples it is fed, and persists results per controller as JSON.
"""

from __future__ import annotations

import copy
import datetime as dt
import json
import math
import pathlib
import string
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Protocol, Tuple


CALIBRATIONS_DIR = pathlib.Path("calibrations")
DEFAULT_DEADZONE_PERCENT = 10.0

STEP_IDLE = "Idle"
STEP_CENTER_CHECK = "CenterCheck"
STEP_RANGE_DETECTION = "RangeDetection"
STEP_COMPLETE = "Complete"

SIDE_LEFT = "left"
SIDE_RIGHT = "right"
SIDE_NONE = "none"
SIDES = (SIDE_LEFT, SIDE_RIGHT)

MODE_CIRCLE = "circle"
MODE_SQUARE = "square"
MODES = (MODE_CIRCLE, MODE_SQUARE)

NEXT_STEP = {
    STEP_CENTER_CHECK: STEP_RANGE_DETECTION,
    STEP_RANGE_DETECTION: STEP_COMPLETE,
}


class CalibrationError(RuntimeError):
    """Raised when the calibration service cannot carry out a request."""


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def slugify(value: str) -> str:
    allowed = string.ascii_lowercase + string.digits
    cleaned = [ch.lower() if ch.lower() in allowed else "-" for ch in value.strip()]
    text = "".join(cleaned)
    while "--" in text:
        text = text.replace("--", "-")
    return text.strip("-") or "controller"


def validate_side(stick: str) -> str:
    if stick not in SIDES:
        raise CalibrationError(f"Unknown stick side {stick!r}; expected 'left' or 'right'.")
    return stick


@dataclass
class StickRange:
    x_min: float = math.inf
    x_max: float = -math.inf
    y_min: float = math.inf
    y_max: float = -math.inf

    def is_set(self) -> bool:
        return self.x_min != math.inf and self.x_max != -math.inf

    def update(self, x: float, y: float) -> None:
        self.x_min = min(self.x_min, x)
        self.x_max = max(self.x_max, x)
        self.y_min = min(self.y_min, y)
        self.y_max = max(self.y_max, y)

    def to_dict(self) -> Optional[Dict[str, float]]:
        if not self.is_set():
            return None
        return {
            "x_min": round(float(self.x_min), 6),
            "x_max": round(float(self.x_max), 6),
            "y_min": round(float(self.y_min), 6),
            "y_max": round(float(self.y_max), 6),
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, float]]) -> "StickRange":
        if data is None:
            return cls()
        return cls(
            x_min=float(data["x_min"]),
            x_max=float(data["x_max"]),
            y_min=float(data["y_min"]),
            y_max=float(data["y_max"]),
        )


@dataclass
class StickCalibration:
    step: str = STEP_IDLE
    mode: str = MODE_SQUARE
    center: Tuple[float, float] = (0.0, 0.0)
    stick_range: StickRange = field(default_factory=StickRange)

    def reset(self) -> None:
        self.step = STEP_IDLE
        self.center = (0.0, 0.0)
        self.stick_range = StickRange()

    def record_center(self, x: float, y: float) -> None:
        self.center = (float(x), float(y))

    def to_dict(self) -> Dict[str, object]:
        return {
            "mode": self.mode,
            "center": [round(self.center[0], 6), round(self.center[1], 6)],
            "range": self.stick_range.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, object]) -> "StickCalibration":
        center = data.get("center") or [0.0, 0.0]
        mode = str(data.get("mode", MODE_SQUARE))
        return cls(
            step=STEP_IDLE,
            mode=mode if mode in MODES else MODE_SQUARE,
            center=(float(center[0]), float(center[1])),
            stick_range=StickRange.from_dict(data.get("range")),
        )


@dataclass
class ControllerCalibration:
    left_stick: StickCalibration = field(default_factory=StickCalibration)
    right_stick: StickCalibration = field(default_factory=StickCalibration)

    def side(self, stick: str) -> StickCalibration:
        return self.left_stick if validate_side(stick) == SIDE_LEFT else self.right_stick

    def step_for(self, stick: str) -> str:
        return self.side(stick).step


@dataclass
class DeviceInfo:
    name: str = "Unknown Controller"
    guid: str = "unknown"


class CalibrationBackend(Protocol):
    def start_session(self, stick: str) -> None: ...

    def advance(self, stick: str) -> None: ...

    def cancel(self, stick: str) -> None: ...

    def save(self) -> None: ...

    def reset_to_default(self) -> None: ...

    def set_mode(self, mode: str) -> None: ...

    def get_state(self) -> ControllerCalibration: ...


def calibration_path_for(device: DeviceInfo, directory: pathlib.Path = CALIBRATIONS_DIR) -> pathlib.Path:
    slug_name = slugify(device.name)
    guid_suffix = slugify(device.guid)[:12] if device.guid != "unknown" else "unknown"
    return directory / f"cali_{slug_name}_{guid_suffix}.json"


def write_calibration_file(path: pathlib.Path, device: DeviceInfo, data: ControllerCalibration) -> None:
    payload = {
        "controller_name": device.name,
        "controller_guid": device.guid,
        "saved_at": dt.datetime.now().astimezone().isoformat(),
        "left_stick": data.left_stick.to_dict(),
        "right_stick": data.right_stick.to_dict(),
    }
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")


def read_calibration_file(path: pathlib.Path) -> ControllerCalibration:
    raw = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError("Calibration file is not a valid JSON object.")
    if not isinstance(raw.get("left_stick"), dict) or not isinstance(raw.get("right_stick"), dict):
        raise ValueError("Invalid calibration format: stick sections missing or malformed.")
    return ControllerCalibration(
        left_stick=StickCalibration.from_dict(raw["left_stick"]),
        right_stick=StickCalibration.from_dict(raw["right_stick"]),
    )


class LocalCalibrationService:
    """In-process calibration backend fed by the host's input poll."""

    def __init__(
        self,
        device: Optional[DeviceInfo] = None,
        directory: pathlib.Path = CALIBRATIONS_DIR,
        report: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.device = device or DeviceInfo()
        self.directory = pathlib.Path(directory)
        self.report = report or (lambda message: None)
        self.state = ControllerCalibration()
        self.mode = MODE_SQUARE
        self.active_side: Optional[str] = None
        self._before_session: Optional[StickCalibration] = None

    @property
    def path(self) -> pathlib.Path:
        return calibration_path_for(self.device, self.directory)

    @property
    def calibrating(self) -> bool:
        return self.active_side is not None

    def load(self) -> ControllerCalibration:
        path = self.path
        if not path.exists():
            self.report(f"No calibration file for {self.device.name}; using defaults.")
            self._reset_all()
            return self.get_state()

        try:
            loaded = read_calibration_file(path)
        except (OSError, ValueError, KeyError, TypeError, IndexError) as exc:
            self.report(f"Calibration file unreadable ({exc}); using defaults.")
            self._reset_all()
            return self.get_state()

        self.state = loaded
        self.mode = loaded.left_stick.mode
        self.state.right_stick.mode = self.mode
        self.active_side = None
        self._before_session = None
        self.report(f"Loaded calibration {path}")
        return self.get_state()

    def start_session(self, stick: str) -> None:
        validate_side(stick)
        if self.calibrating:
            raise CalibrationError(
                f"Calibration of the {self.active_side} stick is already running; finish it first."
            )

        target = self.state.side(stick)
        self._before_session = copy.deepcopy(target)
        target.reset()
        target.mode = self.mode
        target.step = STEP_CENTER_CHECK
        self.active_side = stick

    def advance(self, stick: str) -> None:
        validate_side(stick)
        if self.active_side != stick:
            return

        target = self.state.side(stick)
        target.step = NEXT_STEP.get(target.step, target.step)
        if target.step == STEP_COMPLETE:
            self.active_side = None

    def cancel(self, stick: str) -> None:
        validate_side(stick)
        try:
            if self.state.side(stick).step != STEP_IDLE:
                self._restore(stick)
        finally:
            # A cancelled session is over even when restoring fails.
            if self.active_side == stick:
                self.active_side = None
                self._before_session = None

    def _restore(self, stick: str) -> None:
        if self._before_session is None:
            self.state.side(stick).reset()
            return

        restored = self._before_session
        restored.step = STEP_IDLE
        if stick == SIDE_LEFT:
            self.state.left_stick = restored
        else:
            self.state.right_stick = restored
        self._before_session = None

    def feed(self, left: Tuple[float, float], right: Tuple[float, float]) -> None:
        for stick, sample in ((self.state.left_stick, left), (self.state.right_stick, right)):
            if stick.step == STEP_CENTER_CHECK:
                stick.record_center(sample[0], sample[1])
            elif stick.step == STEP_RANGE_DETECTION:
                stick.stick_range.update(float(sample[0]), float(sample[1]))

    def save(self) -> None:
        path = self.path
        try:
            write_calibration_file(path, self.device, self.state)
        except OSError as exc:
            raise CalibrationError(f"Writing calibration file failed: {exc}") from exc

        self.state.left_stick.step = STEP_IDLE
        self.state.right_stick.step = STEP_IDLE
        self.active_side = None
        self._before_session = None
        self.report(f"Saved calibration {path}")

    def reset_to_default(self) -> None:
        path = self.path
        if path.exists():
            try:
                path.unlink()
            except OSError as exc:
                raise CalibrationError(f"Deleting calibration file failed: {exc}") from exc
        self._reset_all()

    def set_mode(self, mode: str) -> None:
        if mode not in MODES:
            raise CalibrationError(f"Unknown calibration mode {mode!r}; expected 'circle' or 'square'.")
        self.mode = mode
        self.state.left_stick.mode = mode
        self.state.right_stick.mode = mode

    def get_state(self) -> ControllerCalibration:
        return copy.deepcopy(self.state)

    def _reset_all(self) -> None:
        self.state = ControllerCalibration()
        self.state.left_stick.mode = self.mode
        self.state.right_stick.mode = self.mode
        self.active_side = None
        self._before_session = None


def _scale_axis(value: float, center: float, low: float, high: float) -> float:
    shifted = value - center
    if shifted > 0.0:
        span = high - center
    elif shifted < 0.0:
        span = center - low
    else:
        return 0.0
    return shifted / span if span > 0.0 else 0.0


def _axial_deadzone(value: float, deadzone: float) -> float:
    if abs(value) < deadzone:
        return 0.0
    return math.copysign((abs(value) - deadzone) / (1.0 - deadzone), value)


def apply_calibration(
    x: float,
    y: float,
    deadzone_percent: float,
    calibration: StickCalibration,
) -> Tuple[float, float]:
    """Map a normalized but imperfect stick reading onto the calibrated [-1, 1] square.

    Uncalibrated sticks pass through untouched. Otherwise the recorded center is
    removed, each half-axis is rescaled by its own measured span, and the
    deadzone is applied radially (circle mode) or per axis (square mode).
    """
    if not calibration.stick_range.is_set():
        return x, y

    rng = calibration.stick_range
    cx, cy = calibration.center
    scaled_x = _scale_axis(x, cx, rng.x_min, rng.x_max)
    scaled_y = _scale_axis(y, cy, rng.y_min, rng.y_max)

    deadzone = clamp(deadzone_percent / 100.0, 0.0, 0.99)

    if calibration.mode == MODE_CIRCLE:
        distance = math.hypot(scaled_x, scaled_y)
        if distance < deadzone or distance <= 0.0:
            return 0.0, 0.0
        rescale = (distance - deadzone) / (1.0 - deadzone)
        out_x = scaled_x / distance * rescale
        out_y = scaled_y / distance * rescale
    else:
        out_x = _axial_deadzone(scaled_x, deadzone)
        out_y = _axial_deadzone(scaled_y, deadzone)

    return clamp(out_x, -1.0, 1.0), clamp(out_y, -1.0, 1.0)
