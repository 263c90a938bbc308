#!/usr/bin/env python3
"""Terminal stick calibration and circularity test for Xbox/PlayStation pads.

Walks one stick through center and range calibration against the local
calibration service, and runs the circularity test headless, printing the
roundness error for both sticks as you trace circles.
"""

from __future__ import annotations

import argparse
import pathlib
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

import cali_backend as backend
from cali_session import CalibrationSessionController, ControllerSnapshot, LiveInput

try:
    import pygame
except ImportError as exc:  # pragma: no cover - runtime dependency
    raise SystemExit(
        "Missing dependency: pygame. Install with `pip install -r requirements.txt`."
    ) from exc


DEFAULT_LEFT_AXES = (0, 1)
DEFAULT_RIGHT_AXES = (2, 3)
SAMPLE_RATE_HZ = 250


@dataclass
class ControllerInfo:
    index: int
    name: str
    guid: str
    axis_count: int
    button_count: int
    hat_count: int

    def device(self) -> backend.DeviceInfo:
        return backend.DeviceInfo(name=self.name, guid=self.guid)


class MonotonicTicker:
    """Fixed-period callback driven by an explicit pump from a polling loop."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self.clock = clock
        self.interval = 0.0
        self.callback: Optional[Callable[[], None]] = None
        self.next_due = 0.0

    @property
    def active(self) -> bool:
        return self.callback is not None

    def start(self, interval_ms: int, callback: Callable[[], None]) -> None:
        self.interval = interval_ms / 1000.0
        self.callback = callback
        self.next_due = self.clock() + self.interval

    def stop(self) -> None:
        self.callback = None

    def pump(self) -> None:
        now = self.clock()
        if self.callback is None or now < self.next_due:
            return
        self.next_due = now + self.interval
        self.callback()


def prompt_yes_no(prompt: str, default: bool = True) -> bool:
    default_token = "Y/n" if default else "y/N"
    try:
        raw = input(f"{prompt} ({default_token}): ").strip().lower()
    except EOFError:
        return default

    if not raw:
        return default
    if raw in {"y", "yes"}:
        return True
    if raw in {"n", "no"}:
        return False
    return default


def wait_for_enter(message: str) -> None:
    print(message)
    try:
        input("Press Enter when ready... ")
    except EOFError:
        pass


def print_status(message: str, is_error: bool = False) -> None:
    print(f"Error: {message}" if is_error else message)


def init_input_system() -> None:
    pygame.init()
    pygame.joystick.init()


def shutdown_input_system() -> None:
    pygame.joystick.quit()
    pygame.quit()


def get_joystick_guid(joystick: pygame.joystick.Joystick) -> str:
    if hasattr(joystick, "get_guid"):
        try:
            guid = joystick.get_guid()
        except pygame.error:
            guid = "unknown"
    else:
        guid = "unknown"
    return str(guid or "unknown")


def describe_joystick(index: int, joystick: pygame.joystick.Joystick) -> ControllerInfo:
    return ControllerInfo(
        index=index,
        name=str(joystick.get_name()),
        guid=get_joystick_guid(joystick),
        axis_count=joystick.get_numaxes(),
        button_count=joystick.get_numbuttons(),
        hat_count=joystick.get_numhats(),
    )


def list_controllers() -> List[ControllerInfo]:
    controllers: List[ControllerInfo] = []
    for index in range(pygame.joystick.get_count()):
        joystick = pygame.joystick.Joystick(index)
        joystick.init()
        controllers.append(describe_joystick(index, joystick))
        joystick.quit()
    return controllers


def wait_for_controller(wait_seconds: float) -> None:
    if pygame.joystick.get_count() > 0:
        return

    timeout = max(1.0, float(wait_seconds))
    deadline = time.monotonic() + timeout
    print(f"No controller detected. Waiting up to {int(timeout)} seconds...")

    while time.monotonic() < deadline:
        pygame.joystick.quit()
        pygame.joystick.init()
        if pygame.joystick.get_count() > 0:
            return
        remaining = max(0, int(deadline - time.monotonic()))
        print(f"Connect controller now... {remaining:02d}s", end="\r", flush=True)
        time.sleep(1)

    print(" " * 40, end="\r")


def init_controller(index: Optional[int], wait_seconds: float) -> Tuple[pygame.joystick.Joystick, ControllerInfo]:
    wait_for_controller(wait_seconds)
    count = pygame.joystick.get_count()
    if count == 0:
        raise RuntimeError("No controller detected. Connect your controller and retry.")

    chosen = 0 if index is None else index
    if chosen < 0 or chosen >= count:
        raise RuntimeError(
            f"Controller index {chosen} is unavailable. Connected indexes: {list(range(count))}"
        )

    joystick = pygame.joystick.Joystick(chosen)
    joystick.init()
    return joystick, describe_joystick(chosen, joystick)


def read_stick(joystick: pygame.joystick.Joystick, axes: Tuple[int, int]) -> Tuple[float, float]:
    # pygame reports Y growing downwards; samples use Y up.
    return float(joystick.get_axis(axes[0])), -float(joystick.get_axis(axes[1]))


def read_snapshot(
    joystick: pygame.joystick.Joystick,
    left_axes: Tuple[int, int],
    right_axes: Tuple[int, int],
) -> ControllerSnapshot:
    return ControllerSnapshot(
        left=read_stick(joystick, left_axes),
        right=read_stick(joystick, right_axes),
    )


def parse_axis_pair(value: str) -> Tuple[int, int]:
    parts = [part.strip() for part in value.split(",") if part.strip()]
    if len(parts) != 2:
        raise argparse.ArgumentTypeError("Axis pair must look like: 0,1")

    try:
        first, second = int(parts[0]), int(parts[1])
    except ValueError as exc:
        raise argparse.ArgumentTypeError("Axis values must be integers.") from exc

    if first == second:
        raise argparse.ArgumentTypeError("Axis values must be different.")

    return first, second


def validate_axes(axis_pair: Tuple[int, int], axis_count: int, label: str) -> None:
    first, second = axis_pair
    if first < 0 or second < 0 or first >= axis_count or second >= axis_count:
        raise RuntimeError(
            f"{label} axes {axis_pair} out of range for controller with {axis_count} axes."
        )


def format_stick(label: str, data: backend.StickCalibration) -> str:
    rng = data.stick_range
    if rng.is_set():
        range_text = f"x [{rng.x_min:+.3f}, {rng.x_max:+.3f}] y [{rng.y_min:+.3f}, {rng.y_max:+.3f}]"
    else:
        range_text = "not calibrated"
    return (
        f"{label:5s} center ({data.center[0]:+.4f}, {data.center[1]:+.4f}) "
        f"range {range_text} mode {data.mode}"
    )


def format_calibrated(
    label: str,
    raw: Tuple[float, float],
    data: backend.StickCalibration,
    deadzone_percent: float,
) -> str:
    shaped = backend.apply_calibration(raw[0], raw[1], deadzone_percent, data)
    return f"{label:5s} raw ({raw[0]:+.3f}, {raw[1]:+.3f}) -> calibrated ({shaped[0]:+.3f}, {shaped[1]:+.3f})"


def print_calibration_summary(state: backend.ControllerCalibration) -> None:
    print("\nCalibration summary")
    print("-------------------")
    print(format_stick("Left", state.left_stick))
    print(format_stick("Right", state.right_stick))


class StickSession:
    """Wires pygame polling, the local service and the session controller together."""

    def __init__(
        self,
        joystick: pygame.joystick.Joystick,
        info: ControllerInfo,
        left_axes: Tuple[int, int],
        right_axes: Tuple[int, int],
        directory: pathlib.Path,
    ) -> None:
        self.joystick = joystick
        self.left_axes = left_axes
        self.right_axes = right_axes

        self.service = backend.LocalCalibrationService(info.device(), directory, report=print_status)
        self.service.load()

        self.live_input = LiveInput()
        self.live_input.subscribe(lambda snap: self.service.feed(snap.left, snap.right))

        self.poll_ticker = MonotonicTicker()
        self.error_ticker = MonotonicTicker()
        self.controller = CalibrationSessionController(
            self.service,
            self.live_input,
            self.poll_ticker,
            self.error_ticker,
            status=print_status,
        )

    def run_for(self, seconds: float, on_tick: Optional[Callable[[], None]] = None) -> None:
        end_time = time.monotonic() + seconds
        while time.monotonic() < end_time:
            pygame.event.pump()
            self.live_input.push(read_snapshot(self.joystick, self.left_axes, self.right_axes))
            self.poll_ticker.pump()
            self.error_ticker.pump()
            if on_tick is not None:
                on_tick()
            time.sleep(1 / SAMPLE_RATE_HZ)


def run_calibrate(session: StickSession, stick: str, center_seconds: float, range_seconds: float) -> int:
    controller = session.controller
    controller.open()
    controller.start(stick)
    if controller.active_stick == backend.SIDE_NONE:
        return 1

    wait_for_enter(controller.hint)
    session.run_for(center_seconds)
    controller.advance()

    wait_for_enter(controller.hint)

    def show_range() -> None:
        data = controller.session
        rng = data.stick_range
        if rng.is_set():
            print(
                f"\rx [{rng.x_min:+.3f}, {rng.x_max:+.3f}]  y [{rng.y_min:+.3f}, {rng.y_max:+.3f}]",
                end="",
                flush=True,
            )

    session.run_for(range_seconds, on_tick=show_range)
    print()
    controller.advance()

    if controller.step != backend.STEP_COMPLETE:
        raise RuntimeError(f"Calibration did not complete (step {controller.step}).")

    print(controller.hint)
    print_calibration_summary(controller.proxy.snapshot)

    if prompt_yes_no("Save calibration?", default=True):
        controller.save()
    else:
        controller.cancel()
    return 0


def run_circularity(session: StickSession, duration: float) -> int:
    controller = session.controller
    controller.open()
    controller.set_circularity_test(True)
    print("Trace slow full circles along the edge with both sticks (Ctrl+C to stop early).")

    def show_progress() -> None:
        print(
            f"\rL {controller.circularity_text(backend.SIDE_LEFT):28s} | "
            f"R {controller.circularity_text(backend.SIDE_RIGHT):28s}",
            end="",
            flush=True,
        )

    try:
        session.run_for(duration, on_tick=show_progress)
    except KeyboardInterrupt:
        pass
    print()
    controller.close()

    print(f"Left stick:  {controller.circularity_text(backend.SIDE_LEFT)}")
    print(f"Right stick: {controller.circularity_text(backend.SIDE_RIGHT)}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Analog stick calibration and circularity test tool."
    )
    parser.add_argument(
        "command",
        nargs="?",
        default="circularity",
        choices=["circularity", "calibrate", "show", "reset", "list"],
        help=(
            "circularity (default): measure stick roundness; "
            "calibrate: run center/range calibration for one stick; "
            "show: print saved calibration; reset: restore defaults; list: list controllers"
        ),
    )
    parser.add_argument(
        "--stick",
        choices=list(backend.SIDES),
        default=backend.SIDE_LEFT,
        help="Stick to calibrate (default: left).",
    )
    parser.add_argument(
        "--mode",
        choices=list(backend.MODES),
        default=None,
        help="Deadzone shaping mode stored with the calibration.",
    )
    parser.add_argument(
        "--deadzone",
        type=float,
        default=backend.DEFAULT_DEADZONE_PERCENT,
        help="Deadzone percent used for the calibrated readout (default: 10).",
    )
    parser.add_argument(
        "--controller-index",
        type=int,
        default=None,
        help="Controller index (default: first connected).",
    )
    parser.add_argument(
        "--left-axes",
        type=parse_axis_pair,
        default=DEFAULT_LEFT_AXES,
        help="Left stick axes, e.g. --left-axes 0,1",
    )
    parser.add_argument(
        "--right-axes",
        type=parse_axis_pair,
        default=DEFAULT_RIGHT_AXES,
        help="Right stick axes, e.g. --right-axes 2,3",
    )
    parser.add_argument(
        "--duration",
        type=float,
        default=15.0,
        help="Circularity test duration in seconds (default: 15).",
    )
    parser.add_argument(
        "--center-seconds",
        type=float,
        default=2.0,
        help="Seconds to sample the released stick for its center.",
    )
    parser.add_argument(
        "--range-seconds",
        type=float,
        default=8.0,
        help="Seconds to sample stick edge circles for its range.",
    )
    parser.add_argument(
        "--calibrations-dir",
        type=pathlib.Path,
        default=backend.CALIBRATIONS_DIR,
        help="Directory holding per-controller calibration files.",
    )
    parser.add_argument(
        "--wait-seconds",
        type=float,
        default=30,
        help="How long to wait for a controller to connect (default: 30).",
    )
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    init_input_system()
    joystick: Optional[pygame.joystick.Joystick] = None

    try:
        if args.command == "list":
            wait_for_controller(args.wait_seconds)
            controllers = list_controllers()
            if not controllers:
                print("No controllers detected.")
                return 1
            for info in controllers:
                print(
                    f"[{info.index}] {info.name} | guid={info.guid} | "
                    f"axes={info.axis_count} buttons={info.button_count} hats={info.hat_count}"
                )
                print(f"    Calibration file: {backend.calibration_path_for(info.device(), args.calibrations_dir)}")
            return 0

        joystick, info = init_controller(args.controller_index, args.wait_seconds)
        print(f"Using controller #{info.index}: {info.name}")
        validate_axes(args.left_axes, info.axis_count, "Left")
        validate_axes(args.right_axes, info.axis_count, "Right")

        session = StickSession(joystick, info, args.left_axes, args.right_axes, args.calibrations_dir)
        if args.mode is not None:
            session.controller.set_mode(args.mode)

        if args.command == "show":
            state = session.service.get_state()
            print_calibration_summary(state)
            pygame.event.pump()
            snapshot = read_snapshot(joystick, args.left_axes, args.right_axes)
            print("\nLive reading")
            print(format_calibrated("Left", snapshot.left, state.left_stick, args.deadzone))
            print(format_calibrated("Right", snapshot.right, state.right_stick, args.deadzone))
            print(f"\nCalibration file: {session.service.path}")
            return 0

        if args.command == "reset":
            session.controller.reset_to_default()
            print_calibration_summary(session.service.get_state())
            return 0

        if args.command == "calibrate":
            try:
                return run_calibrate(session, args.stick, args.center_seconds, args.range_seconds)
            finally:
                session.controller.close()

        return run_circularity(session, args.duration)

    except RuntimeError as exc:
        print(f"Error: {exc}")
        return 1
    except KeyboardInterrupt:
        print("\nStopped.")
        return 0
    finally:
        if joystick is not None:
            try:
                joystick.quit()
            except pygame.error:
                pass
        shutdown_input_system()


if __name__ == "__main__":
    raise SystemExit(main())
