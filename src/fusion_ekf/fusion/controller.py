"""
Fusion controller driving the Kalman filter over an interleaved lidar/radar
measurement stream.

For every measurement package the controller:

1. Initializes the state from the first package (polar to Cartesian for
   radar, direct position for lidar) and returns.
2. Computes Δt = (t - t_prev) / 10⁶ seconds.
3. Writes Δt into the constant-velocity transition matrix

       F = [1  0  Δt 0 ]
           [0  1  0  Δt]
           [0  0  1  0 ]
           [0  0  0  1 ]

4. Rebuilds the discretized white-noise-acceleration process noise

       Q = [Δt⁴/4·σax²  0           Δt³/2·σax²  0         ]
           [0           Δt⁴/4·σay²  0           Δt³/2·σay²]
           [Δt³/2·σax²  0           Δt²·σax²    0         ]
           [0           Δt³/2·σay²  0           Δt²·σay²  ]

5. Predicts, then updates through the lidar (linear) or radar (nonlinear)
   measurement model.

The controller is not thread-safe. Callers with several producers must
serialize delivery.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import numpy as np

from ..sensors.health import SensorHealth
from ..sensors.measurement import MeasurementPackage, SensorType
from .jacobian import DEFAULT_EPSILON
from .kalman import (
    STATE_SIZE,
    KalmanFilter,
    LinearMeasurementModel,
    RadarMeasurementModel,
    UpdateResult,
    UpdateStatus,
)

logger = logging.getLogger(__name__)

US_PER_SECOND = 1_000_000.0


def _default_lidar_noise() -> np.ndarray:
    return np.diag([0.0225, 0.0225])


def _default_radar_noise() -> np.ndarray:
    return np.diag([0.09, 0.0009, 0.09])


@dataclass
class FusionConfig:
    """
    Tuning parameters for the fusion controller.

    Attributes:
        lidar_noise: 2x2 lidar measurement noise covariance (m²)
        radar_noise: 3x3 radar measurement noise covariance (m², rad², m²/s²)
        noise_ax: Acceleration noise variance along x (m²/s⁴)
        noise_ay: Acceleration noise variance along y (m²/s⁴)
        initial_position_variance: Prior variance of px and py
        initial_velocity_variance: Prior variance of vx and vy
        epsilon: Degeneracy threshold for the radar observation function
        max_condition_number: Limit above which S is treated as singular
        skip_threshold: Consecutive skipped updates before a sensor is
            reported non-operational
    """
    lidar_noise: np.ndarray = field(default_factory=_default_lidar_noise)
    radar_noise: np.ndarray = field(default_factory=_default_radar_noise)
    noise_ax: float = 9.0
    noise_ay: float = 9.0
    initial_position_variance: float = 1.0
    initial_velocity_variance: float = 1000.0
    epsilon: float = DEFAULT_EPSILON
    max_condition_number: float = 1e12
    skip_threshold: int = 5

    def __post_init__(self):
        self.lidar_noise = np.array(self.lidar_noise, dtype=float)
        self.radar_noise = np.array(self.radar_noise, dtype=float)
        self._validate()

    def _validate(self) -> None:
        """Validate configuration parameters."""
        if self.lidar_noise.shape != (2, 2):
            raise ValueError(f"Lidar noise must be 2x2, got shape {self.lidar_noise.shape}")
        if self.radar_noise.shape != (3, 3):
            raise ValueError(f"Radar noise must be 3x3, got shape {self.radar_noise.shape}")
        for name in ('lidar_noise', 'radar_noise'):
            matrix = getattr(self, name)
            if not np.allclose(matrix, matrix.T):
                raise ValueError(f"{name} must be symmetric")
            if np.any(np.diag(matrix) < 0):
                raise ValueError(f"{name} must have non-negative variances")
        if self.noise_ax < 0 or self.noise_ay < 0:
            raise ValueError(
                f"Acceleration noise must be non-negative, got ({self.noise_ax}, {self.noise_ay})"
            )
        if self.initial_position_variance < 0 or self.initial_velocity_variance < 0:
            raise ValueError("Initial variances must be non-negative")
        if self.epsilon <= 0:
            raise ValueError(f"Epsilon must be positive, got {self.epsilon}")
        if self.skip_threshold <= 0:
            raise ValueError(f"Skip threshold must be positive, got {self.skip_threshold}")

    def initial_covariance(self) -> np.ndarray:
        return np.diag([
            self.initial_position_variance,
            self.initial_position_variance,
            self.initial_velocity_variance,
            self.initial_velocity_variance,
        ])


def transition_matrix(dt: float) -> np.ndarray:
    """Constant-velocity transition matrix for a time step of dt seconds."""
    F = np.eye(STATE_SIZE)
    F[0, 2] = dt
    F[1, 3] = dt
    return F


def process_noise_matrix(dt: float, noise_ax: float, noise_ay: float) -> np.ndarray:
    """
    Discretized white-noise-acceleration process noise.

    Args:
        dt: Time step (seconds)
        noise_ax: Acceleration noise variance along x
        noise_ay: Acceleration noise variance along y

    Returns:
        4x4 process noise covariance Q
    """
    dt_2 = dt * dt
    dt_3 = dt_2 * dt
    dt_4 = dt_3 * dt

    return np.array([
        [dt_4 / 4 * noise_ax, 0.0, dt_3 / 2 * noise_ax, 0.0],
        [0.0, dt_4 / 4 * noise_ay, 0.0, dt_3 / 2 * noise_ay],
        [dt_3 / 2 * noise_ax, 0.0, dt_2 * noise_ax, 0.0],
        [0.0, dt_3 / 2 * noise_ay, 0.0, dt_2 * noise_ay],
    ])


class FusionEKF:
    """
    Sequential lidar/radar fusion for a single tracked object.

    One instance lives for the whole measurement stream. It moves from
    uninitialized to initialized on the first package and never back.

    Attributes:
        ekf: Underlying KalmanFilter holding x and P
        config: Tuning parameters
        is_initialized: True once the first package has been processed
        previous_timestamp: Timestamp (µs) of the last processed package
        health: SensorHealth per sensor type
    """

    def __init__(self, config: Optional[FusionConfig] = None):
        """
        Initialize the fusion controller.

        Args:
            config: Optional tuning parameters, defaults to FusionConfig()
        """
        self.config = config or FusionConfig()
        self.ekf = KalmanFilter(max_condition_number=self.config.max_condition_number)

        self.is_initialized = False
        self.previous_timestamp = 0

        # Measurement models never change, so they are built once
        self.H_laser = np.array([
            [1.0, 0.0, 0.0, 0.0],
            [0.0, 1.0, 0.0, 0.0],
        ])
        self._lidar_model = LinearMeasurementModel(self.H_laser, self.config.lidar_noise)
        self._radar_model = RadarMeasurementModel(self.config.radar_noise, self.config.epsilon)

        self.health = {
            sensor_type: SensorHealth(skip_threshold=self.config.skip_threshold)
            for sensor_type in SensorType
        }

    def process_measurement(self, measurement_pack: MeasurementPackage) -> UpdateResult:
        """
        Run one predict/update cycle for a measurement package.

        Args:
            measurement_pack: Lidar or radar measurement record

        Returns:
            UpdateResult of the update, or an INITIALIZED result for the
            first package
        """
        if not self.is_initialized:
            self._initialize(measurement_pack)
            return UpdateResult(UpdateStatus.INITIALIZED)

        dt = (measurement_pack.timestamp - self.previous_timestamp) / US_PER_SECOND
        if dt <= 0:
            logger.warning(
                f"Non-increasing timestamp {measurement_pack.timestamp} "
                f"(previous {self.previous_timestamp}), dt={dt:.6f}s"
            )
        self.previous_timestamp = measurement_pack.timestamp

        # Modify the F matrix so that the time is integrated
        self.ekf.F[0, 2] = dt
        self.ekf.F[1, 3] = dt
        self.ekf.Q = process_noise_matrix(dt, self.config.noise_ax, self.config.noise_ay)

        self.ekf.predict()

        if measurement_pack.sensor_type is SensorType.RADAR:
            result = self.ekf.update(measurement_pack.raw_measurements, self._radar_model)
        else:
            result = self.ekf.update(measurement_pack.raw_measurements, self._lidar_model)

        health = self.health[measurement_pack.sensor_type]
        if result.applied:
            health.record_applied(measurement_pack.timestamp)
        else:
            health.record_skip()
            logger.warning(
                f"{measurement_pack.sensor_type.name} measurement at t={measurement_pack.timestamp} "
                f"skipped: {result.status.value}"
            )
        return result

    def _initialize(self, measurement_pack: MeasurementPackage) -> None:
        """Set the first state estimate from a single package."""
        z = measurement_pack.raw_measurements

        if measurement_pack.sensor_type is SensorType.RADAR:
            # Convert radar from polar to cartesian coordinates
            rho, phi, rho_dot = z
            x = np.array([
                rho * np.cos(phi),
                rho * np.sin(phi),
                rho_dot * np.cos(phi),
                rho_dot * np.sin(phi),
            ])
        else:
            x = np.array([z[0], z[1], 0.0, 0.0])

        self.ekf.init(x, self.config.initial_covariance(), F_in=transition_matrix(0.0))
        self.previous_timestamp = measurement_pack.timestamp

        # done initializing, no need to predict or update
        self.is_initialized = True
        logger.info(
            f"Fusion initialized from {measurement_pack.sensor_type.name} at "
            f"t={measurement_pack.timestamp}: x={np.array2string(x, precision=3)}"
        )

    @property
    def estimate(self) -> Optional[np.ndarray]:
        """Copy of the current state [px, py, vx, vy], None before initialization."""
        return None if self.ekf.x is None else self.ekf.x.copy()

    def get_health_summary(self) -> Dict[str, Dict[str, Any]]:
        """Per-sensor applied/skipped update statistics."""
        return {
            sensor_type.name.lower(): health.get_health_summary()
            for sensor_type, health in self.health.items()
        }
