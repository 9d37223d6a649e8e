"""
Radar observation function and its Jacobian.

The radar measures the target in polar coordinates relative to the sensor:

    h(x) = [ρ, φ, ρ̇]ᵀ
    ρ  = √(px² + py²)
    φ  = atan2(py, px)
    ρ̇  = (px·vx + py·vy) / ρ

Linearizing h around the current estimate gives Hj = ∂h/∂x:

    [ px/ρ                    py/ρ                    0     0    ]
    [ -py/ρ²                  px/ρ²                   0     0    ]
    [ py(vx·py - vy·px)/ρ³    px(vy·px - vx·py)/ρ³    px/ρ  py/ρ ]

Both h and Hj are undefined at the sensor origin. Callers get a
DegenerateStateError there instead of a division by zero.
"""

from typing import Optional

import numpy as np

# Threshold on ρ² (and |px| for the observation guard) below which the
# radar geometry is treated as degenerate
DEFAULT_EPSILON = 1e-5


class DegenerateStateError(ValueError):
    """Raised when the state is too close to the sensor origin to linearize."""

    def __init__(self, message: str, state: Optional[np.ndarray] = None):
        super().__init__(message)
        self.state = None if state is None else np.array(state, dtype=float)


def _unpack_state(state: np.ndarray):
    state = np.asarray(state, dtype=float)
    if state.shape != (4,):
        raise ValueError(f"State vector must have 4 elements, got shape {state.shape}")
    return state[0], state[1], state[2], state[3]


def radar_observation(state: np.ndarray, epsilon: float = DEFAULT_EPSILON) -> np.ndarray:
    """
    Map a Cartesian state to the radar measurement space.

    Args:
        state: State vector [px, py, vx, vy]
        epsilon: Degeneracy threshold on ρ² and |px|

    Returns:
        Predicted measurement [ρ, φ, ρ̇]

    Raises:
        DegenerateStateError: If ρ² < epsilon or |px| < epsilon
    """
    px, py, vx, vy = _unpack_state(state)

    c1 = px * px + py * py
    if abs(c1) < epsilon or abs(px) < epsilon:
        raise DegenerateStateError(
            f"Radar observation undefined near origin (px={px:.3g}, py={py:.3g})", state
        )

    rho = np.sqrt(c1)
    return np.array([
        rho,
        np.arctan2(py, px),
        (px * vx + py * vy) / rho,
    ])


def calculate_jacobian(state: np.ndarray, epsilon: float = DEFAULT_EPSILON) -> np.ndarray:
    """
    Compute the 3x4 Jacobian of the radar observation function.

    Args:
        state: State vector [px, py, vx, vy] at which to linearize
        epsilon: Degeneracy threshold on ρ²

    Returns:
        3x4 Jacobian matrix Hj

    Raises:
        DegenerateStateError: If ρ² < epsilon
    """
    px, py, vx, vy = _unpack_state(state)

    # pre-compute a set of terms to avoid repeated calculation
    c1 = px * px + py * py
    if abs(c1) < epsilon:
        raise DegenerateStateError(
            f"Jacobian undefined near origin (px={px:.3g}, py={py:.3g})", state
        )
    c2 = np.sqrt(c1)
    c3 = c1 * c2

    return np.array([
        [px / c2, py / c2, 0.0, 0.0],
        [-py / c1, px / c1, 0.0, 0.0],
        [py * (vx * py - vy * px) / c3, px * (vy * px - vx * py) / c3, px / c2, py / c2],
    ])
