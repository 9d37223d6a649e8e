"""
Evaluation helpers for comparing estimates against ground truth.

RMSE per state component:

    RMSE_j = √( (1/N) Σ_k (x̂_k,j - x_k,j)² )
"""

from typing import Sequence

import numpy as np


def calculate_rmse(estimations: Sequence[np.ndarray],
                   ground_truth: Sequence[np.ndarray]) -> np.ndarray:
    """
    Compute the root mean squared error per state component.

    Args:
        estimations: Sequence of estimated state vectors
        ground_truth: Sequence of true state vectors, same length and size

    Returns:
        RMSE vector with one entry per state component

    Raises:
        ValueError: If the inputs are empty or their shapes differ
    """
    estimations = np.asarray(estimations, dtype=float)
    ground_truth = np.asarray(ground_truth, dtype=float)

    if estimations.size == 0:
        raise ValueError("Cannot compute RMSE of an empty estimation sequence")
    if estimations.shape != ground_truth.shape:
        raise ValueError(
            f"Estimations {estimations.shape} and ground truth {ground_truth.shape} differ in shape"
        )
    if estimations.ndim != 2:
        raise ValueError(f"Expected a sequence of state vectors, got shape {estimations.shape}")

    residual = estimations - ground_truth
    return np.sqrt(np.mean(residual ** 2, axis=0))
