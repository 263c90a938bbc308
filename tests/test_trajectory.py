from __future__ import annotations

import os
import pathlib
import tempfile
import unittest
from typing import Callable, Dict, List

os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

from PySide6 import QtGui  # noqa: E402

import cali_backend as backend  # noqa: E402
import cali_session as session  # noqa: E402
import trajectory  # noqa: E402


class FakeFrameScheduler:
    def __init__(self) -> None:
        self.pending: Dict[int, Callable[[], None]] = {}
        self.requests = 0
        self._next = 1

    def request(self, callback: Callable[[], None]) -> int:
        handle = self._next
        self._next += 1
        self.requests += 1
        self.pending[handle] = callback
        return handle

    def cancel(self, handle: int) -> None:
        self.pending.pop(handle, None)

    def run_next(self) -> None:
        handle = min(self.pending)
        callback = self.pending.pop(handle)
        callback()


class TrajectoryRendererTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls) -> None:
        cls.app = QtGui.QGuiApplication.instance() or QtGui.QGuiApplication([])

    def setUp(self) -> None:
        self.scheduler = FakeFrameScheduler()
        self.position: List[float] = [0.0, 0.0]
        self.frames = 0
        self.renderer = trajectory.TrajectoryRenderer(
            "left",
            self.scheduler,
            lambda: (self.position[0], self.position[1]),
            on_frame=self.count_frame,
        )

    def count_frame(self) -> None:
        self.frames += 1

    def move_to(self, x: float, y: float) -> None:
        self.position[:] = [x, y]
        self.scheduler.run_next()

    def test_setup_renders_immediately_and_schedules_one_frame(self) -> None:
        self.renderer.setup(100, 100)

        self.assertTrue(self.renderer.active)
        self.assertEqual(self.frames, 1)
        self.assertEqual(len(self.scheduler.pending), 1)
        self.assertEqual(self.renderer.last_pos, (0.0, 0.0))

    def test_repeated_setup_is_ignored(self) -> None:
        self.renderer.setup(100, 100)
        self.renderer.setup(100, 100)

        self.assertEqual(self.scheduler.requests, 1)
        self.assertEqual(len(self.scheduler.pending), 1)

    def test_teardown_cancels_frame_and_releases_buffers(self) -> None:
        self.renderer.setup(100, 100)
        self.renderer.teardown()

        self.assertEqual(self.scheduler.pending, {})
        self.assertFalse(self.renderer.active)
        self.assertIsNone(self.renderer.trail_buffer)
        self.assertIsNone(self.renderer.overshoot_buffer)
        self.assertIsNone(self.renderer.frame_id)

    def test_stale_frame_after_teardown_does_nothing(self) -> None:
        self.renderer.setup(100, 100)
        stale = next(iter(self.scheduler.pending.values()))
        self.renderer.teardown()

        stale()
        self.assertEqual(self.scheduler.pending, {})
        self.assertFalse(self.renderer.active)

    def test_movement_paints_trail_only_inside_band(self) -> None:
        self.renderer.setup(100, 100)
        self.move_to(1.0, 0.0)
        self.move_to(0.0, 1.0)

        trail = self.renderer.trail_buffer.pixelColor(60, 30)
        self.assertEqual((trail.red(), trail.green(), trail.blue()), trajectory.TRAIL_RGB)
        self.assertEqual(trail.alpha(), 255)
        self.assertEqual(self.renderer.overshoot_buffer.pixelColor(60, 30).alpha(), 0)

        composite = self.renderer.surface.pixelColor(60, 30)
        self.assertGreaterEqual(composite.alpha(), 70)
        self.assertLessEqual(composite.alpha(), 83)

    def test_overshoot_is_painted_in_its_own_buffer(self) -> None:
        self.position[:] = [1.0, 0.0]
        self.renderer.setup(100, 100)
        self.move_to(0.0, 1.3)

        color = self.renderer.overshoot_buffer.pixelColor(60, 30)
        self.assertEqual((color.red(), color.green(), color.blue()), (255, 121, 121))
        self.assertEqual(color.alpha(), 255)

    def test_trail_accumulates_for_the_whole_test(self) -> None:
        self.position[:] = [1.0, 0.0]
        self.renderer.setup(100, 100)
        trail = self.renderer.trail_buffer
        for x, y in [(0.0, 1.0), (-1.0, 0.0), (0.0, -1.0)]:
            self.move_to(x, y)

        self.assertIs(self.renderer.trail_buffer, trail)
        for px, py in [(60, 30), (40, 30), (40, 70)]:
            self.assertEqual(self.renderer.trail_buffer.pixelColor(px, py).alpha(), 255)
            self.assertGreater(self.renderer.surface.pixelColor(px, py).alpha(), 0)

    def test_still_stick_draws_nothing(self) -> None:
        self.position[:] = [0.5, 0.5]
        self.renderer.setup(100, 100)
        self.move_to(0.5, 0.5)

        self.assertEqual(self.renderer.trail_buffer.pixelColor(60, 40).alpha(), 0)
        self.assertEqual(self.renderer.surface.pixelColor(60, 40).alpha(), 0)
        self.assertEqual(len(self.scheduler.pending), 1)


class TrajectoryMathTests(unittest.TestCase):
    def test_overshoot_color_ramp(self) -> None:
        self.assertIsNone(trajectory.overshoot_rgb(1.0))
        self.assertIsNone(trajectory.overshoot_rgb(1.04))
        self.assertEqual(trajectory.overshoot_rgb(1.06), (255, 199, 199))
        self.assertEqual(trajectory.overshoot_rgb(2.0), (255, 0, 0))

    def test_pixel_mapping_puts_up_at_the_top(self) -> None:
        self.assertEqual(trajectory.to_pixel((1.0, 1.0), 200, 100), (200.0, 0.0))
        self.assertEqual(trajectory.to_pixel((-1.0, -1.0), 200, 100), (0.0, 100.0))
        self.assertEqual(trajectory.to_pixel((0.0, 0.0), 200, 100), (100.0, 50.0))


class ControllerRenderingTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls) -> None:
        cls.app = QtGui.QGuiApplication.instance() or QtGui.QGuiApplication([])

    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.scheduler = FakeFrameScheduler()
        live_input = session.LiveInput()
        renderers = {
            side: trajectory.TrajectoryRenderer(side, self.scheduler, lambda s=side: live_input.sample(s))
            for side in backend.SIDES
        }
        self.controller = session.CalibrationSessionController(
            backend.LocalCalibrationService(directory=pathlib.Path(self._tmp.name)),
            live_input,
            _IdleTicker(),
            _IdleTicker(),
            renderers=renderers,
            measures={side: (lambda: (100, 100)) for side in backend.SIDES},
        )

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_toggle_leaves_no_scheduled_frames(self) -> None:
        self.controller.set_circularity_test(True)
        self.assertEqual(len(self.scheduler.pending), 2)
        for lab in self.controller.labs.values():
            self.assertTrue(lab.renderer.active)

        self.controller.set_circularity_test(False)
        self.assertEqual(self.scheduler.pending, {})
        for lab in self.controller.labs.values():
            self.assertFalse(lab.renderer.active)

    def test_close_stops_rendering(self) -> None:
        self.controller.open()
        self.controller.set_circularity_test(True)
        self.controller.close()
        self.assertEqual(self.scheduler.pending, {})


class _IdleTicker:
    def __init__(self) -> None:
        self.active = False

    def start(self, interval_ms: int, callback: Callable[[], None]) -> None:
        self.active = True

    def stop(self) -> None:
        self.active = False


if __name__ == "__main__":
    unittest.main()
