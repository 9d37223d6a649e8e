"""
Estimation core for fusion_ekf.

This module implements the Kalman filter shared by the lidar and radar
measurement models, the radar Jacobian, and the controller that runs the
predict/update cycle over a measurement stream.
"""

from .jacobian import DegenerateStateError, calculate_jacobian, radar_observation
from .kalman import (
    KalmanFilter,
    MeasurementModel,
    LinearMeasurementModel,
    RadarMeasurementModel,
    UpdateResult,
    UpdateStatus,
    normalize_angle,
)
from .controller import FusionEKF, FusionConfig, process_noise_matrix, transition_matrix

__all__ = [
    "DegenerateStateError",
    "calculate_jacobian",
    "radar_observation",
    "KalmanFilter",
    "MeasurementModel",
    "LinearMeasurementModel",
    "RadarMeasurementModel",
    "UpdateResult",
    "UpdateStatus",
    "normalize_angle",
    "FusionEKF",
    "FusionConfig",
    "process_noise_matrix",
    "transition_matrix"
]
