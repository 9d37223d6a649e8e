"""
Fusion EKF: Lidar and Radar Fusion with an Extended Kalman Filter

Estimates the 2D position and velocity of a single moving object from an
interleaved stream of lidar (position) and radar (range, bearing, range rate)
measurements.

This package implements:
- Kalman filter with linear (lidar) and nonlinear (radar) measurement models
- Radar Jacobian with degenerate-geometry detection
- Fusion controller with time-varying process noise
- Measurement file reader, RMSE evaluation and a command-line runner
"""

from .fusion import (
    FusionEKF,
    FusionConfig,
    KalmanFilter,
    UpdateResult,
    UpdateStatus,
    DegenerateStateError,
    calculate_jacobian,
)
from .sensors import MeasurementPackage, SensorType, read_measurement_file
from .tools import calculate_rmse

__version__ = "1.0.0"
__author__ = "Fusion EKF Team"

__all__ = [
    "FusionEKF",
    "FusionConfig",
    "KalmanFilter",
    "UpdateResult",
    "UpdateStatus",
    "DegenerateStateError",
    "calculate_jacobian",
    "MeasurementPackage",
    "SensorType",
    "read_measurement_file",
    "calculate_rmse"
]
