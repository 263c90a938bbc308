from __future__ import annotations

import argparse
import unittest

import cali_backend as backend
import stick_cali as cli


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


class MonotonicTickerTests(unittest.TestCase):
    def test_fires_once_per_interval(self) -> None:
        clock = FakeClock()
        ticker = cli.MonotonicTicker(clock)
        fired: list[float] = []
        ticker.start(100, lambda: fired.append(clock.now))

        ticker.pump()
        clock.now += 0.05
        ticker.pump()
        self.assertEqual(fired, [])

        clock.now += 0.06
        ticker.pump()
        ticker.pump()
        self.assertEqual(len(fired), 1)

    def test_stopped_ticker_never_fires(self) -> None:
        clock = FakeClock()
        ticker = cli.MonotonicTicker(clock)
        fired: list[int] = []
        ticker.start(10, lambda: fired.append(1))
        ticker.stop()

        clock.now += 1.0
        ticker.pump()
        self.assertFalse(ticker.active)
        self.assertEqual(fired, [])


class CliParsingTests(unittest.TestCase):
    def test_axis_pair_parsing(self) -> None:
        self.assertEqual(cli.parse_axis_pair("2, 3"), (2, 3))
        with self.assertRaises(argparse.ArgumentTypeError):
            cli.parse_axis_pair("1")
        with self.assertRaises(argparse.ArgumentTypeError):
            cli.parse_axis_pair("1,1")
        with self.assertRaises(argparse.ArgumentTypeError):
            cli.parse_axis_pair("a,b")

    def test_default_command_is_circularity(self) -> None:
        args = cli.build_parser().parse_args([])
        self.assertEqual(args.command, "circularity")
        self.assertEqual(args.stick, backend.SIDE_LEFT)
        self.assertEqual(args.left_axes, cli.DEFAULT_LEFT_AXES)

    def test_axes_outside_controller_are_rejected(self) -> None:
        with self.assertRaises(RuntimeError):
            cli.validate_axes((0, 4), 4, "Right")

    def test_stick_summary_mentions_missing_range(self) -> None:
        text = cli.format_stick("Left", backend.StickCalibration())
        self.assertIn("not calibrated", text)
        self.assertIn("mode square", text)

    def test_calibrated_readout_applies_saved_range(self) -> None:
        raw = cli.format_calibrated("Left", (0.4, -0.2), backend.StickCalibration(), 10)
        self.assertIn("calibrated (+0.400, -0.200)", raw)

        data = backend.StickCalibration(
            center=(0.1, 0.0),
            stick_range=backend.StickRange(x_min=-0.9, x_max=1.1, y_min=-1.0, y_max=1.0),
        )
        shaped = cli.format_calibrated("Left", (1.1, 0.0), data, 0)
        self.assertIn("calibrated (+1.000, +0.000)", shaped)


if __name__ == "__main__":
    unittest.main()
