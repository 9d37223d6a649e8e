"""
Kalman Filter Core for Lidar/Radar Fusion

This module provides the state estimator shared by the linear (lidar) and the
nonlinear (radar) measurement models.

Mathematical Foundation:

State Evolution (constant velocity):
    x(k+1) = F(Δt) x(k) + w(k),        w(k) ~ N(0, Q(Δt))
    z(k)   = h(x(k)) + v(k),           v(k) ~ N(0, R)

Recursion:
    Prediction:
        x̂(k|k-1) = F x̂(k-1|k-1)
        P(k|k-1) = F P(k-1|k-1) Fᵀ + Q

    Update:
        y    = z - h(x̂(k|k-1))           (bearing wrapped to (-π, π] for radar)
        S    = H P Hᵀ + R
        K    = P Hᵀ S⁻¹
        x̂(k|k) = x̂(k|k-1) + K y
        P(k|k) = (I - K H) P(k|k-1)

    For lidar h(x) = H x with a constant H. For radar h is nonlinear and H is
    its Jacobian evaluated at x̂(k|k-1).

State Vector Definition:
    x = [px, py, vx, vy]ᵀ

Measurement models are passed to update() per call instead of being stored
on the filter, so one update implementation serves both sensors.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

import numpy as np
import scipy.linalg

from .jacobian import DEFAULT_EPSILON, DegenerateStateError, calculate_jacobian, radar_observation

logger = logging.getLogger(__name__)

STATE_SIZE = 4


class UpdateStatus(Enum):
    """Outcome of a single measurement update."""
    APPLIED = "applied"
    INITIALIZED = "initialized"
    DEGENERATE_STATE = "degenerate_state"
    SINGULAR_INNOVATION = "singular_innovation"


@dataclass
class UpdateResult:
    """
    Container for the outcome of a measurement update.

    Attributes:
        status: What happened to the measurement
        innovation: Measurement residual y (None if the update was skipped early)
        nis: Normalized innovation squared yᵀS⁻¹y (None unless applied)
        message: Human-readable reason for skipped updates
    """
    status: UpdateStatus
    innovation: Optional[np.ndarray] = None
    nis: Optional[float] = None
    message: str = ""

    @property
    def applied(self) -> bool:
        return self.status is UpdateStatus.APPLIED

    @property
    def skipped(self) -> bool:
        return self.status in (UpdateStatus.DEGENERATE_STATE, UpdateStatus.SINGULAR_INNOVATION)


def normalize_angle(angle: float) -> float:
    """
    Wrap an angle into (-π, π].

    Large angles are first reduced modulo 2π; the final wrap into the
    half-open interval is done by addition or subtraction of 2π.

    Args:
        angle: Angle in radians

    Returns:
        Equivalent angle in (-π, π]; non-finite input is returned unchanged
    """
    angle = float(angle)
    if not np.isfinite(angle):
        return angle
    if abs(angle) > 4.0 * np.pi:
        angle = float(np.remainder(angle + np.pi, 2.0 * np.pi) - np.pi)
    while angle > np.pi:
        angle -= 2.0 * np.pi
    while angle <= -np.pi:
        angle += 2.0 * np.pi
    return angle


def _as_noise_matrix(noise: np.ndarray, size: int, name: str) -> np.ndarray:
    R = np.array(noise, dtype=float)
    if R.shape != (size, size):
        raise ValueError(f"{name} noise must be {size}x{size}, got shape {R.shape}")
    if np.any(np.diag(R) < 0):
        raise ValueError(f"{name} noise must have non-negative variances")
    return R


class MeasurementModel:
    """
    Observation model consumed by KalmanFilter.update().

    Subclasses provide the predicted measurement h(x), the observation matrix
    H evaluated at x, and the residual between an actual and a predicted
    measurement.
    """

    name = "measurement"

    def __init__(self, noise: np.ndarray):
        self.noise = noise

    @property
    def dim(self) -> int:
        return self.noise.shape[0]

    def observe(self, state: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def jacobian(self, state: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def residual(self, measurement: np.ndarray, predicted: np.ndarray) -> np.ndarray:
        return measurement - predicted


class LinearMeasurementModel(MeasurementModel):
    """Linear model z = H x + v with a constant observation matrix."""

    name = "linear"

    def __init__(self, observation_matrix: np.ndarray, noise: np.ndarray):
        H = np.array(observation_matrix, dtype=float)
        if H.ndim != 2 or H.shape[1] != STATE_SIZE:
            raise ValueError(f"Observation matrix must be (m, {STATE_SIZE}), got shape {H.shape}")
        super().__init__(_as_noise_matrix(noise, H.shape[0], "Measurement"))
        self.observation_matrix = H

    def observe(self, state: np.ndarray) -> np.ndarray:
        return self.observation_matrix @ state

    def jacobian(self, state: np.ndarray) -> np.ndarray:
        return self.observation_matrix


class RadarMeasurementModel(MeasurementModel):
    """
    Nonlinear radar model z = h(x) + v with z = [ρ, φ, ρ̇].

    The observation matrix is the Jacobian of h at the current estimate. Both
    h and its Jacobian raise DegenerateStateError near the sensor origin.
    """

    name = "radar"

    def __init__(self, noise: np.ndarray, epsilon: float = DEFAULT_EPSILON):
        super().__init__(_as_noise_matrix(noise, 3, "Radar"))
        self.epsilon = epsilon

    def observe(self, state: np.ndarray) -> np.ndarray:
        return radar_observation(state, self.epsilon)

    def jacobian(self, state: np.ndarray) -> np.ndarray:
        return calculate_jacobian(state, self.epsilon)

    def residual(self, measurement: np.ndarray, predicted: np.ndarray) -> np.ndarray:
        y = measurement - predicted
        y[1] = normalize_angle(y[1])
        return y


class KalmanFilter:
    """
    Kalman filter over the 4D constant-velocity state.

    The filter owns the state x, the covariance P, the transition matrix F
    and the process noise Q. The controller rewrites F and Q before every
    predict(); measurement models are supplied per update() call.

    Attributes:
        x: State vector [px, py, vx, vy], None until init()
        P: 4x4 state covariance, None until init()
        F: 4x4 transition matrix
        Q: 4x4 process noise covariance
    """

    def __init__(self, max_condition_number: float = 1e12):
        """
        Create an uninitialized filter.

        Args:
            max_condition_number: Innovation covariances with a larger
                condition number are treated as singular
        """
        if max_condition_number <= 1.0:
            raise ValueError(f"Condition number limit must exceed 1, got {max_condition_number}")

        self.x: Optional[np.ndarray] = None
        self.P: Optional[np.ndarray] = None
        self.F = np.eye(STATE_SIZE)
        self.Q = np.zeros((STATE_SIZE, STATE_SIZE))
        self.max_condition_number = max_condition_number

        self._prediction_count = 0
        self._update_count = 0
        self._skipped_count = 0

    def init(self, x_in: np.ndarray, P_in: np.ndarray,
             F_in: Optional[np.ndarray] = None, Q_in: Optional[np.ndarray] = None) -> None:
        """
        Set the initial state and covariance.

        Args:
            x_in: Initial state vector (4 elements)
            P_in: Initial covariance (4x4)
            F_in: Optional transition matrix (identity if omitted)
            Q_in: Optional process noise (zero if omitted)

        Raises:
            ValueError: If any argument has the wrong shape or non-finite values
        """
        x = np.array(x_in, dtype=float)
        P = np.array(P_in, dtype=float)
        if x.shape != (STATE_SIZE,):
            raise ValueError(f"State vector must have {STATE_SIZE} elements, got shape {x.shape}")
        if P.shape != (STATE_SIZE, STATE_SIZE):
            raise ValueError(f"Covariance must be {STATE_SIZE}x{STATE_SIZE}, got shape {P.shape}")
        if not (np.all(np.isfinite(x)) and np.all(np.isfinite(P))):
            raise ValueError("Initial state or covariance contains NaN or infinite values")

        self.x = x
        self.P = P
        if F_in is not None:
            self.F = np.array(F_in, dtype=float)
        if Q_in is not None:
            self.Q = np.array(Q_in, dtype=float)

    def _require_initialized(self) -> None:
        if self.x is None or self.P is None:
            raise RuntimeError("Kalman filter used before init()")

    def predict(self) -> None:
        """
        Propagate state and covariance through the motion model.

        Implements:
            x⁻ = F x⁺
            P⁻ = F P⁺ Fᵀ + Q
        """
        self._require_initialized()

        self.x = self.F @ self.x
        self.P = self.F @ self.P @ self.F.T + self.Q

        self._prediction_count += 1
        logger.debug(f"Prediction step completed, dt={self.F[0, 2]:.3f}s")

    def update(self, z: np.ndarray, model: MeasurementModel) -> UpdateResult:
        """
        Incorporate a measurement through the given measurement model.

        A degenerate radar geometry or a singular innovation covariance skips
        the update and leaves x and P untouched.

        Args:
            z: Measurement vector matching model.dim
            model: Linear or nonlinear measurement model

        Returns:
            UpdateResult describing whether the update was applied

        Raises:
            ValueError: If the measurement has the wrong size
        """
        self._require_initialized()

        z = np.asarray(z, dtype=float)
        if z.shape != (model.dim,):
            raise ValueError(
                f"{model.name} measurement must have {model.dim} elements, got shape {z.shape}"
            )

        try:
            z_pred = model.observe(self.x)
            H = model.jacobian(self.x)
        except DegenerateStateError as exc:
            logger.warning(f"{model.name} update skipped: {exc}")
            self._skipped_count += 1
            return UpdateResult(UpdateStatus.DEGENERATE_STATE, message=str(exc))

        y = model.residual(z, z_pred)
        Ht = H.T
        S = H @ self.P @ Ht + model.noise

        Si = self._invert_innovation_covariance(S)
        if Si is None:
            message = "innovation covariance is singular or ill-conditioned"
            logger.warning(f"{model.name} update skipped: {message}")
            self._skipped_count += 1
            return UpdateResult(UpdateStatus.SINGULAR_INNOVATION, innovation=y, message=message)

        PHt = self.P @ Ht
        K = PHt @ Si

        # new estimate
        self.x = self.x + K @ y
        I = np.eye(STATE_SIZE)
        self.P = (I - K @ H) @ self.P
        self.P = (self.P + self.P.T) * 0.5

        nis = float(y @ Si @ y)
        self._update_count += 1
        logger.debug(f"{model.name} update applied: |y|={np.linalg.norm(y):.3f}, NIS={nis:.3f}")
        return UpdateResult(UpdateStatus.APPLIED, innovation=y, nis=nis)

    def _invert_innovation_covariance(self, S: np.ndarray) -> Optional[np.ndarray]:
        if not np.all(np.isfinite(S)):
            return None
        with np.errstate(divide='ignore', invalid='ignore'):
            condition_number = np.linalg.cond(S)
        if not np.isfinite(condition_number) or condition_number > self.max_condition_number:
            logger.debug(f"Innovation covariance condition number {condition_number:.2e}")
            return None
        try:
            return scipy.linalg.inv(S)
        except (scipy.linalg.LinAlgError, ValueError):
            return None

    def update_linear(self, z: np.ndarray, H: np.ndarray, R: np.ndarray) -> UpdateResult:
        """Standard Kalman update with a linear observation matrix H."""
        return self.update(z, LinearMeasurementModel(H, R))

    def update_ekf(self, z: np.ndarray, R: np.ndarray,
                   epsilon: float = DEFAULT_EPSILON) -> UpdateResult:
        """Extended Kalman update for a radar measurement [ρ, φ, ρ̇]."""
        return self.update(z, RadarMeasurementModel(R, epsilon))

    def get_position_uncertainty(self) -> np.ndarray:
        """Get position uncertainty (standard deviations) in meters."""
        self._require_initialized()
        return np.sqrt(np.diag(self.P)[0:2])

    def get_velocity_uncertainty(self) -> np.ndarray:
        """Get velocity uncertainty (standard deviations) in m/s."""
        self._require_initialized()
        return np.sqrt(np.diag(self.P)[2:4])

    def get_state_dict(self) -> Dict[str, Any]:
        """
        Get state and bookkeeping information as a dictionary.

        Returns:
            Dictionary with position, velocity, their uncertainties and counters
        """
        self._require_initialized()
        return {
            'position': self.x[0:2].tolist(),
            'velocity': self.x[2:4].tolist(),
            'position_uncertainty': self.get_position_uncertainty().tolist(),
            'velocity_uncertainty': self.get_velocity_uncertainty().tolist(),
            'prediction_count': self._prediction_count,
            'update_count': self._update_count,
            'skipped_count': self._skipped_count,
            'covariance_trace': float(np.trace(self.P)),
        }
