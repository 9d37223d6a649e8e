#!/usr/bin/env python3
"""
Lidar/Radar Fusion Runner

Runs the fusion controller over a measurement file in the tab-separated
L/R format and writes one row of estimates per measurement. When the input
carries ground truth, the RMSE of the estimates is printed at the end.

Run with: fusion-ekf data/sample-laser-radar-measurement-data-1.txt -o out.csv
"""

import argparse
import csv
import logging
import sys
from typing import List, Optional

import numpy as np

from .fusion import FusionConfig, FusionEKF
from .sensors import read_measurement_file
from .tools import calculate_rmse

logger = logging.getLogger(__name__)

OUTPUT_COLUMNS = [
    'timestamp', 'sensor', 'px', 'py', 'vx', 'vy', 'status', 'nis',
    'gt_px', 'gt_py', 'gt_vx', 'gt_vy',
]


def run_fusion(input_path: str, output_path: Optional[str] = None,
               config: Optional[FusionConfig] = None) -> Optional[np.ndarray]:
    """
    Process every measurement in a file through a fresh fusion controller.

    Args:
        input_path: Measurement file to read
        output_path: Optional CSV file receiving one row per measurement
        config: Optional tuning parameters

    Returns:
        RMSE per state component if every record carried ground truth,
        otherwise None
    """
    fusion = FusionEKF(config)
    estimations: List[np.ndarray] = []
    ground_truth: List[np.ndarray] = []
    rows = []

    for measurement_pack in read_measurement_file(input_path):
        result = fusion.process_measurement(measurement_pack)
        estimate = fusion.estimate

        estimations.append(estimate)
        if measurement_pack.ground_truth is not None:
            ground_truth.append(measurement_pack.ground_truth)

        gt = measurement_pack.ground_truth
        rows.append([
            measurement_pack.timestamp,
            measurement_pack.sensor_type.value,
            *estimate.tolist(),
            result.status.value,
            '' if result.nis is None else f"{result.nis:.6f}",
            *(gt.tolist() if gt is not None else [''] * 4),
        ])

    if output_path is not None:
        with open(output_path, 'w', newline='', encoding='utf-8') as f:
            writer = csv.writer(f)
            writer.writerow(OUTPUT_COLUMNS)
            writer.writerows(rows)
        logger.info(f"Wrote {len(rows)} estimates to {output_path}")

    for sensor, summary in fusion.get_health_summary().items():
        logger.info(
            f"{sensor}: {summary['applied_count']} applied, {summary['skipped_count']} skipped"
        )

    if estimations and len(ground_truth) == len(estimations):
        return calculate_rmse(estimations, ground_truth)
    return None


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point"""
    parser = argparse.ArgumentParser(description='Lidar/Radar Extended Kalman Filter fusion')
    parser.add_argument('input', help='Measurement file in L/R tab-separated format')
    parser.add_argument('-o', '--output', default=None,
                        help='CSV file for per-measurement estimates')
    parser.add_argument('--noise-ax', type=float, default=9.0,
                        help='Acceleration noise variance along x (default: 9)')
    parser.add_argument('--noise-ay', type=float, default=9.0,
                        help='Acceleration noise variance along y (default: 9)')
    parser.add_argument('--log-level', default='INFO',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        help='Logging level (default: INFO)')

    args = parser.parse_args(argv)

    # Configure logging for filter diagnostics
    logging.basicConfig(level=getattr(logging, args.log_level),
                        format='%(asctime)s %(levelname)s %(name)s: %(message)s')

    try:
        config = FusionConfig(noise_ax=args.noise_ax, noise_ay=args.noise_ay)
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        return 1

    # MeasurementParseError is a ValueError
    try:
        rmse = run_fusion(args.input, args.output, config)
    except (OSError, ValueError) as e:
        logger.error(f"Cannot process {args.input}: {e}")
        return 1

    if rmse is not None:
        print("RMSE: " + " ".join(f"{name}={value:.4f}"
                                  for name, value in zip(('px', 'py', 'vx', 'vy'), rmse)))
    return 0


if __name__ == "__main__":
    sys.exit(main())
