"""
Measurement records for the lidar/radar fusion pipeline.

A measurement package is a tagged record carrying the sensor type, the raw
measurement vector and a timestamp in microseconds:

    Lidar:  z = [px, py]ᵀ                 (meters)
    Radar:  z = [ρ, φ, ρ̇]ᵀ               (meters, radians, m/s)

Records are usually read from the common tab-separated text format, one
record per line:

    L  px   py   timestamp  [gt_px gt_py gt_vx gt_vy]
    R  rho  phi  rho_dot    timestamp  [gt_px gt_py gt_vx gt_vy]

The optional trailing ground-truth columns are kept on the record for
evaluation and never reach the filter.
"""

import logging
import os
from dataclasses import dataclass
from enum import Enum
from typing import Iterator, Optional, Union

import numpy as np

logger = logging.getLogger(__name__)


class SensorType(Enum):
    """Enumeration of supported sensor types."""
    LIDAR = "L"
    RADAR = "R"


# Number of raw values carried by each sensor type
MEASUREMENT_SIZE = {
    SensorType.LIDAR: 2,
    SensorType.RADAR: 3,
}

GROUND_TRUTH_SIZE = 4


class MeasurementParseError(ValueError):
    """Raised when an input line cannot be turned into a measurement record."""

    def __init__(self, message: str, line_number: Optional[int] = None):
        if line_number is not None:
            message = f"line {line_number}: {message}"
        super().__init__(message)
        self.line_number = line_number


@dataclass
class MeasurementPackage:
    """
    Single sensor measurement delivered to the fusion controller.

    Attributes:
        sensor_type: Sensor that produced the measurement
        raw_measurements: 2 values for lidar, 3 values for radar
        timestamp: Measurement time in microseconds
        ground_truth: Optional true state [px, py, vx, vy] for evaluation
    """
    sensor_type: SensorType
    raw_measurements: np.ndarray
    timestamp: int
    ground_truth: Optional[np.ndarray] = None

    def __post_init__(self):
        self.raw_measurements = np.asarray(self.raw_measurements, dtype=float)
        expected = MEASUREMENT_SIZE[self.sensor_type]
        if self.raw_measurements.shape != (expected,):
            raise ValueError(
                f"{self.sensor_type.name} measurement must have {expected} elements, "
                f"got shape {self.raw_measurements.shape}"
            )
        if self.ground_truth is not None:
            self.ground_truth = np.asarray(self.ground_truth, dtype=float)
            if self.ground_truth.shape != (GROUND_TRUTH_SIZE,):
                raise ValueError(
                    f"Ground truth must have {GROUND_TRUTH_SIZE} elements, "
                    f"got shape {self.ground_truth.shape}"
                )
        self.timestamp = int(self.timestamp)

    @classmethod
    def lidar(cls, px: float, py: float, timestamp: int,
              ground_truth: Optional[np.ndarray] = None) -> 'MeasurementPackage':
        """Build a lidar record from a Cartesian position."""
        return cls(SensorType.LIDAR, np.array([px, py]), timestamp, ground_truth)

    @classmethod
    def radar(cls, rho: float, phi: float, rho_dot: float, timestamp: int,
              ground_truth: Optional[np.ndarray] = None) -> 'MeasurementPackage':
        """Build a radar record from range, bearing and range rate."""
        return cls(SensorType.RADAR, np.array([rho, phi, rho_dot]), timestamp, ground_truth)

    @property
    def is_radar(self) -> bool:
        return self.sensor_type is SensorType.RADAR


def parse_measurement_line(line: str, line_number: Optional[int] = None) -> MeasurementPackage:
    """
    Parse a single line of the tab-separated measurement format.

    Args:
        line: Text line starting with the sensor tag 'L' or 'R'
        line_number: Optional line number used in error messages

    Returns:
        MeasurementPackage for the line

    Raises:
        MeasurementParseError: If the tag is unknown or fields are malformed
    """
    fields = line.split()
    if not fields:
        raise MeasurementParseError("empty line", line_number)

    try:
        sensor_type = SensorType(fields[0])
    except ValueError:
        raise MeasurementParseError(f"unknown sensor tag {fields[0]!r}", line_number) from None

    n_values = MEASUREMENT_SIZE[sensor_type]
    rest = fields[1:]
    if len(rest) not in (n_values + 1, n_values + 1 + GROUND_TRUTH_SIZE):
        raise MeasurementParseError(
            f"expected {n_values + 1} or {n_values + 1 + GROUND_TRUTH_SIZE} fields "
            f"after tag {fields[0]!r}, got {len(rest)}",
            line_number,
        )

    try:
        values = [float(v) for v in rest[:n_values]]
        timestamp = int(rest[n_values])
        ground_truth = [float(v) for v in rest[n_values + 1:]] or None
    except ValueError as exc:
        raise MeasurementParseError(str(exc), line_number) from exc

    return MeasurementPackage(sensor_type, np.array(values), timestamp,
                              None if ground_truth is None else np.array(ground_truth))


def read_measurement_file(path: Union[str, os.PathLike]) -> Iterator[MeasurementPackage]:
    """
    Iterate over the measurement records stored in a text file.

    Blank lines and lines starting with '#' are ignored.

    Args:
        path: Path to the measurement file

    Yields:
        MeasurementPackage instances in file order

    Raises:
        MeasurementParseError: On the first malformed line
    """
    with open(path, encoding='utf-8') as f:
        for line_number, line in enumerate(f, start=1):
            stripped = line.strip()
            if not stripped or stripped.startswith('#'):
                continue
            yield parse_measurement_line(stripped, line_number)
    logger.debug(f"Finished reading measurements from {path}")
