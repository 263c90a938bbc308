#!/usr/bin/env python3
"""Interactive stick calibration session control.

The session controller is the single entry point for calibrating a stick. It
keeps at most one stick under calibration, mirrors the backend's step through
a polling proxy, and owns the circularity test: one sampler and one trajectory
renderer per stick, fed from the shared live input stream.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Dict, List, Optional, Protocol, Tuple

from cali_backend import (
    MODE_SQUARE,
    SIDE_LEFT,
    SIDE_NONE,
    SIDE_RIGHT,
    SIDES,
    STEP_CENTER_CHECK,
    STEP_COMPLETE,
    STEP_IDLE,
    STEP_RANGE_DETECTION,
    CalibrationBackend,
    ControllerCalibration,
    StickRange,
)
from circularity import ERROR_UPDATE_INTERVAL_MS, CircularitySampler

if TYPE_CHECKING:
    from trajectory import TrajectoryRenderer


POLL_INTERVAL_MS = 100

STEP_HINTS = {
    STEP_IDLE: "Pick a stick to start calibrating.",
    STEP_CENTER_CHECK: "Step 1: let go of the stick completely, do not touch it, then press Next.",
    STEP_RANGE_DETECTION: "Step 2: push the stick to its edge and trace a few full circles, then press Finish.",
    STEP_COMPLETE: "Calibration complete! Press Save to keep the result or Cancel to discard it.",
}

Sample = Tuple[float, float]
StatusSink = Callable[[str, bool], None]


def hint_for_step(step: object) -> str:
    if not isinstance(step, str):
        return ""
    return STEP_HINTS.get(step, "")


@dataclass
class ControllerSnapshot:
    left: Sample = (0.0, 0.0)
    right: Sample = (0.0, 0.0)

    def stick(self, side: str) -> Sample:
        return self.left if side == SIDE_LEFT else self.right


class LiveInput:
    """Push-based feed of controller snapshots; consumers only read."""

    def __init__(self) -> None:
        self.latest = ControllerSnapshot()
        self._subscribers: List[Callable[[ControllerSnapshot], None]] = []

    def subscribe(self, callback: Callable[[ControllerSnapshot], None]) -> None:
        self._subscribers.append(callback)

    def push(self, snapshot: ControllerSnapshot) -> None:
        self.latest = snapshot
        for callback in list(self._subscribers):
            callback(snapshot)

    def sample(self, side: str) -> Sample:
        return self.latest.stick(side)


class Ticker(Protocol):
    @property
    def active(self) -> bool: ...

    def start(self, interval_ms: int, callback: Callable[[], None]) -> None: ...

    def stop(self) -> None: ...


@dataclass
class CalibrationSession:
    stick: str = SIDE_NONE
    step: str = STEP_IDLE
    stick_center: Sample = (0.0, 0.0)
    stick_range: StickRange = field(default_factory=StickRange)


class CalibrationStateProxy:
    """Reflects the backend's step for the stick being calibrated.

    The proxy never advances the step itself; `refresh` copies whatever the
    backend reports. Hint text is derived from the step alone.
    """

    def __init__(self, backend: CalibrationBackend) -> None:
        self.backend = backend
        self.snapshot = ControllerCalibration()
        self.step = STEP_IDLE
        self.hint = hint_for_step(STEP_IDLE)

    def refresh(self, stick: str) -> None:
        self.snapshot = self.backend.get_state()
        if stick in SIDES:
            self.step = self.snapshot.step_for(stick)
            self.hint = hint_for_step(self.step)

    def reset(self) -> None:
        self.step = STEP_IDLE
        self.hint = hint_for_step(STEP_IDLE)

    def session(self, stick: str) -> CalibrationSession:
        if stick not in SIDES:
            return CalibrationSession()
        data = self.snapshot.side(stick)
        return CalibrationSession(
            stick=stick,
            step=self.step,
            stick_center=data.center,
            stick_range=data.stick_range,
        )


@dataclass
class StickLab:
    """Per-side circularity test state owned by the session controller."""

    side: str
    sampler: CircularitySampler = field(default_factory=CircularitySampler)
    renderer: Optional["TrajectoryRenderer"] = None
    measure: Optional[Callable[[], Tuple[int, int]]] = None


class CalibrationSessionController:
    def __init__(
        self,
        backend: CalibrationBackend,
        live_input: LiveInput,
        poll_ticker: Ticker,
        error_ticker: Ticker,
        status: Optional[StatusSink] = None,
        renderers: Optional[Dict[str, "TrajectoryRenderer"]] = None,
        measures: Optional[Dict[str, Callable[[], Tuple[int, int]]]] = None,
    ) -> None:
        self.backend = backend
        self.live_input = live_input
        self.poll_ticker = poll_ticker
        self.error_ticker = error_ticker
        self.status = status or (lambda message, is_error: None)
        self.on_change: Optional[Callable[[], None]] = None

        renderers = renderers or {}
        measures = measures or {}
        self.labs: Dict[str, StickLab] = {
            side: StickLab(side=side, renderer=renderers.get(side), measure=measures.get(side))
            for side in SIDES
        }

        self.proxy = CalibrationStateProxy(backend)
        self.active_stick = SIDE_NONE
        self.mode = MODE_SQUARE
        self.surface_open = False
        self.circularity_enabled = False

        live_input.subscribe(self.on_snapshot)

    @property
    def step(self) -> str:
        return self.proxy.step

    @property
    def hint(self) -> str:
        return self.proxy.hint

    @property
    def session(self) -> CalibrationSession:
        return self.proxy.session(self.active_stick)

    def circularity_text(self, side: str) -> str:
        return self.labs[side].sampler.text

    # Calibration workflow

    def start(self, stick: str) -> None:
        if self.active_stick != SIDE_NONE or stick not in SIDES:
            return

        self.active_stick = stick
        if not self._call(lambda: self.backend.start_session(stick), "Starting calibration failed"):
            self.active_stick = SIDE_NONE
            self._changed()
            return

        self._report(f"Calibrating {stick} stick")
        if not self.poll_ticker.active:
            self.poll_ticker.start(POLL_INTERVAL_MS, self.poll)
        self.poll()

    def advance(self) -> None:
        if self.active_stick == SIDE_NONE:
            return
        stick = self.active_stick
        if not self._call(lambda: self.backend.advance(stick), "Next calibration step failed"):
            return
        self.poll()

    def cancel(self) -> None:
        if self.active_stick == SIDE_NONE:
            return
        stick = self.active_stick
        if not self._call(lambda: self.backend.cancel(stick), "Cancelling calibration failed"):
            return
        self._end_session()
        self._report(f"Calibration of {stick} stick cancelled")

    def save(self) -> None:
        if self.proxy.step != STEP_COMPLETE:
            return
        if not self._call(self.backend.save, "Saving calibration failed"):
            return
        self._end_session()
        self._report("Calibration saved")

    def reset_to_default(self) -> None:
        if not self._call(self.backend.reset_to_default, "Restoring default calibration failed"):
            return
        self._report("Calibration restored to defaults")
        self._refresh()

    def set_mode(self, mode: str) -> None:
        if not self._call(lambda: self.backend.set_mode(mode), "Changing calibration mode failed"):
            return
        self.mode = mode
        self._report(f"Calibration mode set to {mode}")
        self._refresh()

    def poll(self) -> None:
        if self.active_stick == SIDE_NONE:
            return
        self._refresh()

    # Calibration surface

    def open(self) -> None:
        self.surface_open = True
        self.set_circularity_test(False)
        self._refresh()
        self.mode = self.proxy.snapshot.left_stick.mode

    def close(self) -> None:
        if self.active_stick != SIDE_NONE:
            stick = self.active_stick
            self._call(lambda: self.backend.cancel(stick), "Cancelling calibration failed")
            self._end_session()
        self.poll_ticker.stop()
        self.set_circularity_test(False)
        self.surface_open = False
        self._changed()

    # Circularity test

    def set_circularity_test(self, enabled: bool) -> None:
        if enabled == self.circularity_enabled:
            return

        self.circularity_enabled = enabled
        if enabled:
            for lab in self.labs.values():
                lab.sampler.enable()
                if lab.renderer is not None:
                    width, height = lab.measure() if lab.measure is not None else (1, 1)
                    lab.renderer.setup(width, height)
            self.error_ticker.stop()
            self.error_ticker.start(ERROR_UPDATE_INTERVAL_MS, self.update_circularity)
            self._report("Circularity test started: trace full circles with both sticks")
        else:
            for lab in self.labs.values():
                if lab.renderer is not None:
                    lab.renderer.teardown()
            self.error_ticker.stop()
            for lab in self.labs.values():
                lab.sampler.disable()
            self._report(
                f"Circularity test stopped: left {self.circularity_text(SIDE_LEFT)}, "
                f"right {self.circularity_text(SIDE_RIGHT)}"
            )
        self._changed()

    def update_circularity(self) -> None:
        for lab in self.labs.values():
            lab.sampler.compute()
        self._changed()

    def on_snapshot(self, snapshot: ControllerSnapshot) -> None:
        if not self.circularity_enabled:
            return
        for lab in self.labs.values():
            x, y = snapshot.stick(lab.side)
            lab.sampler.add_sample(x, y)

    # Internals

    def _end_session(self) -> None:
        self.active_stick = SIDE_NONE
        self.proxy.reset()
        self.poll_ticker.stop()
        self._changed()

    def _refresh(self) -> None:
        try:
            self.proxy.refresh(self.active_stick)
        except Exception as exc:
            self._report(f"Reading calibration state failed: {exc}", is_error=True)
            return
        self._changed()

    def _call(self, action: Callable[[], None], failure: str) -> bool:
        try:
            action()
        except Exception as exc:
            self._report(f"{failure}: {exc}", is_error=True)
            return False
        return True

    def _report(self, message: str, is_error: bool = False) -> None:
        self.status(message, is_error)

    def _changed(self) -> None:
        if self.on_change is not None:
            self.on_change()
