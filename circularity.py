#!/usr/bin/env python3
"""Stick circularity analysis.

The sampler keeps one representative point per angular bucket (the farthest
one seen) and turns the retained outline into a roundness error:
- only excursions past the detection radius are bucketed
- deviation from the unit circle is averaged over out-of-tolerance points only
- results are delivered as display text, including "not enough data yet"
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, Iterable, Optional


THEORETICAL_RADIUS = 1.0
MIN_DETECTION_RADIUS = 0.85
MIN_ERROR_THRESHOLD = 0.05
MIN_DATA_POINTS = 24
ANGLE_PRECISION = 3
ERROR_UPDATE_INTERVAL_MS = 300

PLACEHOLDER_TEXT = "Circularity error: --%"
INSUFFICIENT_DATA_TEXT = "Insufficient data"
INSUFFICIENT_OUTER_DATA_TEXT = "Insufficient outer data"


def round_half_up(value: float) -> int:
    # round() is half-to-even; bucket keys round ties towards +inf.
    return int(math.floor(value + 0.5))


def bucket_key(x: float, y: float) -> int:
    angle_deg = math.degrees(math.atan2(y, x))
    return round_half_up(angle_deg / ANGLE_PRECISION)


@dataclass
class BucketPoint:
    x: float
    y: float
    radius_sq: float

    @property
    def radius(self) -> float:
        return math.sqrt(self.radius_sq)


@dataclass
class CircularityResult:
    status: str
    error_percent: Optional[float] = None
    point_count: int = 0
    contributing_count: int = 0

    @property
    def text(self) -> str:
        if self.status == "insufficient":
            return INSUFFICIENT_DATA_TEXT
        if self.status == "insufficient_outer":
            return INSUFFICIENT_OUTER_DATA_TEXT
        return f"Circularity error: {self.error_percent:.2f}%"


def compute_circularity_error(points: Iterable[BucketPoint]) -> CircularityResult:
    retained = list(points)
    if len(retained) < MIN_DATA_POINTS:
        return CircularityResult(status="insufficient", point_count=len(retained))

    outer = [point for point in retained if point.radius > MIN_DETECTION_RADIUS]
    if len(outer) < MIN_DATA_POINTS:
        return CircularityResult(status="insufficient_outer", point_count=len(retained))

    total_deviation = 0.0
    contributing = 0
    for point in outer:
        deviation = abs(point.radius - THEORETICAL_RADIUS)
        if deviation > MIN_ERROR_THRESHOLD:
            total_deviation += deviation
            contributing += 1

    average = total_deviation / contributing if contributing else 0.0
    return CircularityResult(
        status="ok",
        error_percent=round(average * 100.0, 2),
        point_count=len(retained),
        contributing_count=contributing,
    )


class CircularitySampler:
    """Farthest-point-per-direction histogram for one stick."""

    def __init__(self) -> None:
        self.buckets: Dict[int, BucketPoint] = {}
        self.enabled = False
        self.result: Optional[CircularityResult] = None
        self.text = PLACEHOLDER_TEXT

    def enable(self) -> None:
        self.buckets.clear()
        self.result = None
        self.enabled = True

    def disable(self) -> str:
        """Stop accepting samples and freeze the final result text."""
        if self.enabled:
            self.enabled = False
            self.compute()
        return self.text

    def add_sample(self, x: float, y: float) -> bool:
        if not self.enabled:
            return False

        radius_sq = x * x + y * y
        if radius_sq <= MIN_DETECTION_RADIUS * MIN_DETECTION_RADIUS:
            return False

        key = bucket_key(x, y)
        existing = self.buckets.get(key)
        if existing is not None and radius_sq <= existing.radius_sq:
            return False

        self.buckets[key] = BucketPoint(x=float(x), y=float(y), radius_sq=radius_sq)
        return True

    def compute(self) -> CircularityResult:
        self.result = compute_circularity_error(self.buckets.values())
        self.text = self.result.text
        return self.result

