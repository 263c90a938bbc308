from __future__ import annotations

import json
import pathlib
import tempfile
import unittest
from unittest import mock

import cali_backend as backend


class CalibrationServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.directory = pathlib.Path(self._tmp.name)
        self.messages: list[str] = []
        self.service = backend.LocalCalibrationService(
            backend.DeviceInfo(name="Wireless Controller", guid="030000004c050000"),
            self.directory,
            report=self.messages.append,
        )

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def run_left_calibration(self) -> None:
        self.service.start_session("left")
        self.service.feed((0.02, -0.01), (0.0, 0.0))
        self.service.advance("left")
        for sample in [(0.98, 0.0), (-0.97, 0.0), (0.0, 1.01), (0.0, -0.99)]:
            self.service.feed(sample, (0.5, 0.5))
        self.service.advance("left")

    def test_steps_advance_linearly(self) -> None:
        self.service.start_session("left")
        self.assertEqual(self.service.get_state().left_stick.step, backend.STEP_CENTER_CHECK)
        self.service.advance("left")
        self.assertEqual(self.service.get_state().left_stick.step, backend.STEP_RANGE_DETECTION)
        self.service.advance("left")
        self.assertEqual(self.service.get_state().left_stick.step, backend.STEP_COMPLETE)
        self.assertFalse(self.service.calibrating)

        self.service.advance("left")
        self.assertEqual(self.service.get_state().left_stick.step, backend.STEP_COMPLETE)

    def test_feed_records_center_and_range_for_active_stick_only(self) -> None:
        self.run_left_calibration()
        state = self.service.get_state()

        self.assertEqual(state.left_stick.center, (0.02, -0.01))
        self.assertEqual(state.left_stick.stick_range.x_max, 0.98)
        self.assertEqual(state.left_stick.stick_range.x_min, -0.97)
        self.assertEqual(state.left_stick.stick_range.y_max, 1.01)
        self.assertFalse(state.right_stick.stick_range.is_set())

    def test_second_session_is_refused(self) -> None:
        self.service.start_session("left")
        with self.assertRaises(backend.CalibrationError):
            self.service.start_session("right")

    def test_unknown_side_is_refused(self) -> None:
        with self.assertRaises(backend.CalibrationError):
            self.service.start_session("middle")

    def test_cancel_restores_previous_values(self) -> None:
        self.run_left_calibration()
        self.service.save()
        saved = self.service.get_state().left_stick

        self.service.start_session("left")
        self.service.feed((0.3, 0.3), (0.0, 0.0))
        self.service.cancel("left")

        restored = self.service.get_state().left_stick
        self.assertEqual(restored.step, backend.STEP_IDLE)
        self.assertEqual(restored.center, saved.center)
        self.assertEqual(restored.stick_range, saved.stick_range)
        self.assertFalse(self.service.calibrating)

    def test_failed_cancel_still_releases_session(self) -> None:
        self.service.start_session("left")
        with mock.patch.object(self.service, "_restore", side_effect=backend.CalibrationError("restore failed")):
            with self.assertRaises(backend.CalibrationError):
                self.service.cancel("left")

        self.assertFalse(self.service.calibrating)
        self.service.start_session("right")
        self.assertEqual(self.service.active_side, "right")

    def test_save_mid_session_releases_session(self) -> None:
        self.service.start_session("left")
        self.service.save()

        self.assertFalse(self.service.calibrating)
        self.service.start_session("left")
        self.assertEqual(self.service.get_state().left_stick.step, backend.STEP_CENTER_CHECK)

    def test_save_then_load_round_trips_file(self) -> None:
        self.run_left_calibration()
        self.service.save()

        self.assertTrue(self.service.path.exists())
        payload = json.loads(self.service.path.read_text(encoding="utf-8"))
        self.assertEqual(payload["controller_name"], "Wireless Controller")
        self.assertIsNone(payload["right_stick"]["range"])

        fresh = backend.LocalCalibrationService(self.service.device, self.directory)
        state = fresh.load()
        self.assertEqual(state.left_stick.step, backend.STEP_IDLE)
        self.assertAlmostEqual(state.left_stick.center[0], 0.02)
        self.assertAlmostEqual(state.left_stick.stick_range.y_min, -0.99)

    def test_unreadable_file_falls_back_to_defaults(self) -> None:
        self.service.path.parent.mkdir(parents=True, exist_ok=True)
        self.service.path.write_text("{not json", encoding="utf-8")

        state = self.service.load()
        self.assertFalse(state.left_stick.stick_range.is_set())
        self.assertTrue(any("unreadable" in message for message in self.messages))

    def test_reset_to_default_removes_file(self) -> None:
        self.run_left_calibration()
        self.service.save()

        self.service.reset_to_default()
        self.assertFalse(self.service.path.exists())
        self.assertFalse(self.service.get_state().left_stick.stick_range.is_set())

    def test_mode_applies_to_both_sticks(self) -> None:
        self.service.set_mode(backend.MODE_CIRCLE)
        state = self.service.get_state()
        self.assertEqual(state.left_stick.mode, backend.MODE_CIRCLE)
        self.assertEqual(state.right_stick.mode, backend.MODE_CIRCLE)

        with self.assertRaises(backend.CalibrationError):
            self.service.set_mode("hexagon")

    def test_path_is_per_controller(self) -> None:
        path = backend.calibration_path_for(backend.DeviceInfo(name="Xbox Series X Controller", guid="unknown"))
        self.assertEqual(path.name, "cali_xbox-series-x-controller_unknown.json")


class ApplyCalibrationTests(unittest.TestCase):
    def build_calibration(self, mode: str) -> backend.StickCalibration:
        return backend.StickCalibration(
            mode=mode,
            center=(0.1, 0.0),
            stick_range=backend.StickRange(x_min=-0.9, x_max=1.1, y_min=-1.0, y_max=1.0),
        )

    def test_uncalibrated_input_passes_through(self) -> None:
        result = backend.apply_calibration(0.4, -0.2, 10, backend.StickCalibration())
        self.assertEqual(result, (0.4, -0.2))

    def test_square_mode_recenters_and_rescales_each_half_axis(self) -> None:
        cal = self.build_calibration(backend.MODE_SQUARE)
        x, y = backend.apply_calibration(1.1, 0.0, 0, cal)
        self.assertAlmostEqual(x, 1.0)
        self.assertAlmostEqual(y, 0.0)

        x, _ = backend.apply_calibration(-0.9, 0.0, 0, cal)
        self.assertAlmostEqual(x, -1.0)

    def test_square_mode_deadzone_is_per_axis(self) -> None:
        cal = self.build_calibration(backend.MODE_SQUARE)
        x, y = backend.apply_calibration(1.1, 0.05, 10, cal)
        self.assertAlmostEqual(x, 1.0)
        self.assertEqual(y, 0.0)

    def test_circle_mode_deadzone_is_radial(self) -> None:
        cal = self.build_calibration(backend.MODE_CIRCLE)
        self.assertEqual(backend.apply_calibration(0.15, 0.0, 10, cal), (0.0, 0.0))

        x, y = backend.apply_calibration(1.1, 0.0, 10, cal)
        self.assertAlmostEqual(x, 1.0)
        self.assertAlmostEqual(y, 0.0)


if __name__ == "__main__":
    unittest.main()
