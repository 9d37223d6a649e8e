"""
Sensor-side records for fusion_ekf.

This module contains the measurement record definitions, the reader for the
tab-separated measurement format, and per-sensor update health tracking.
"""

from .measurement import (
    SensorType,
    MeasurementPackage,
    MeasurementParseError,
    parse_measurement_line,
    read_measurement_file,
)
from .health import SensorHealth

__all__ = [
    "SensorType",
    "MeasurementPackage",
    "MeasurementParseError",
    "parse_measurement_line",
    "read_measurement_file",
    "SensorHealth"
]
