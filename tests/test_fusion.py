import pytest
import numpy as np
import sys
import os

# Add the src directory to Python path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from fusion_ekf.fusion import FusionConfig, FusionEKF, UpdateStatus, process_noise_matrix
from fusion_ekf.sensors import MeasurementPackage


class TestFusionConfig:
    """Test fusion configuration defaults and validation"""

    def test_default_values(self):
        config = FusionConfig()

        np.testing.assert_allclose(config.lidar_noise, np.diag([0.0225, 0.0225]))
        np.testing.assert_allclose(config.radar_noise, np.diag([0.09, 0.0009, 0.09]))
        assert config.noise_ax == 9.0
        assert config.noise_ay == 9.0
        np.testing.assert_allclose(config.initial_covariance(), np.diag([1.0, 1.0, 1000.0, 1000.0]))

    def test_invalid_noise_shape_raises(self):
        with pytest.raises(ValueError):
            FusionConfig(lidar_noise=np.eye(3))
        with pytest.raises(ValueError):
            FusionConfig(radar_noise=np.eye(2))

    def test_negative_acceleration_noise_raises(self):
        with pytest.raises(ValueError):
            FusionConfig(noise_ax=-1.0)

    def test_asymmetric_noise_raises(self):
        with pytest.raises(ValueError):
            FusionConfig(lidar_noise=np.array([[1.0, 0.5], [0.0, 1.0]]))

    def test_default_matrices_are_not_shared(self):
        a = FusionConfig()
        b = FusionConfig()
        a.lidar_noise[0, 0] = 5.0
        assert b.lidar_noise[0, 0] == pytest.approx(0.0225)


class TestFusionInitialization:
    """Test first-measurement initialization"""

    def test_uninitialized_controller(self):
        fusion = FusionEKF()

        assert not fusion.is_initialized
        assert fusion.estimate is None

    def test_radar_initialization(self):
        fusion = FusionEKF()

        result = fusion.process_measurement(MeasurementPackage.radar(5.0, 0.0, 0.0, 0))

        assert result.status == UpdateStatus.INITIALIZED
        assert fusion.is_initialized
        np.testing.assert_allclose(fusion.estimate, [5.0, 0.0, 0.0, 0.0])

    def test_radar_initialization_polar_to_cartesian(self):
        fusion = FusionEKF()
        phi = np.pi / 6

        fusion.process_measurement(MeasurementPackage.radar(2.0, phi, 1.0, 0))

        np.testing.assert_allclose(
            fusion.estimate,
            [2.0 * np.cos(phi), 2.0 * np.sin(phi), np.cos(phi), np.sin(phi)],
        )

    def test_lidar_initialization(self):
        fusion = FusionEKF()

        fusion.process_measurement(MeasurementPackage.lidar(1.0, 1.0, 0))

        np.testing.assert_allclose(fusion.estimate, [1.0, 1.0, 0.0, 0.0])
        np.testing.assert_allclose(fusion.ekf.P, np.diag([1.0, 1.0, 1000.0, 1000.0]))
        assert fusion.previous_timestamp == 0

    def test_initialization_uses_configured_prior(self):
        config = FusionConfig(initial_position_variance=0.5, initial_velocity_variance=50.0)
        fusion = FusionEKF(config)

        fusion.process_measurement(MeasurementPackage.lidar(1.0, 1.0, 0))

        np.testing.assert_allclose(fusion.ekf.P, np.diag([0.5, 0.5, 50.0, 50.0]))

    def test_initialization_does_not_predict_or_update(self):
        fusion = FusionEKF()

        fusion.process_measurement(MeasurementPackage.lidar(1.0, 1.0, 1000))

        state = fusion.ekf.get_state_dict()
        assert state['prediction_count'] == 0
        assert state['update_count'] == 0


class TestFusionProcessing:
    """Test the predict/update cycle driven by the controller"""

    def test_lidar_velocity_estimate(self):
        fusion = FusionEKF()
        fusion.process_measurement(MeasurementPackage.lidar(1.0, 1.0, 0))

        result = fusion.process_measurement(MeasurementPackage.lidar(1.1, 1.0, 100000))

        assert result.status == UpdateStatus.APPLIED
        px, py, vx, vy = fusion.estimate
        assert 0.5 < vx < 1.5
        assert abs(vy) < 1e-9
        assert 1.0 < px < 1.1
        assert py == pytest.approx(1.0)

    def test_transition_and_process_noise_follow_dt(self):
        fusion = FusionEKF()
        fusion.process_measurement(MeasurementPackage.lidar(1.0, 1.0, 0))

        fusion.process_measurement(MeasurementPackage.lidar(1.0, 1.0, 250000))

        assert fusion.ekf.F[0, 2] == pytest.approx(0.25)
        assert fusion.ekf.F[1, 3] == pytest.approx(0.25)
        np.testing.assert_allclose(fusion.ekf.Q, process_noise_matrix(0.25, 9.0, 9.0))
        assert fusion.previous_timestamp == 250000

    def test_radar_update_applied(self):
        fusion = FusionEKF()
        fusion.process_measurement(MeasurementPackage.lidar(5.0, 0.0, 0))

        result = fusion.process_measurement(MeasurementPackage.radar(5.2, 0.01, 2.0, 100000))

        assert result.status == UpdateStatus.APPLIED
        assert result.innovation.shape == (3,)
        assert fusion.estimate[2] > 0.0

    def test_radar_degenerate_state_skips_update(self):
        fusion = FusionEKF()
        fusion.process_measurement(MeasurementPackage.lidar(0.0, 0.0, 0))

        result = fusion.process_measurement(MeasurementPackage.radar(1.0, 0.5, 0.0, 100000))

        assert result.status == UpdateStatus.DEGENERATE_STATE
        # State and covariance are exactly the predicted ones
        F = np.eye(4)
        F[0, 2] = F[1, 3] = 0.1
        P0 = np.diag([1.0, 1.0, 1000.0, 1000.0])
        expected_P = F @ P0 @ F.T + process_noise_matrix(0.1, 9.0, 9.0)
        np.testing.assert_allclose(fusion.estimate, np.zeros(4))
        np.testing.assert_allclose(fusion.ekf.P, expected_P)

    def test_processing_continues_after_skip(self):
        fusion = FusionEKF()
        fusion.process_measurement(MeasurementPackage.lidar(0.0, 0.0, 0))
        fusion.process_measurement(MeasurementPackage.radar(1.0, 0.5, 0.0, 100000))

        result = fusion.process_measurement(MeasurementPackage.lidar(0.5, 0.5, 200000))

        assert result.applied
        assert fusion.estimate[0] > 0.0

    def test_health_tracks_applied_and_skipped(self):
        fusion = FusionEKF()
        fusion.process_measurement(MeasurementPackage.lidar(0.0, 0.0, 0))
        fusion.process_measurement(MeasurementPackage.radar(1.0, 0.5, 0.0, 100000))
        fusion.process_measurement(MeasurementPackage.lidar(0.5, 0.5, 200000))

        summary = fusion.get_health_summary()

        assert summary['radar']['skipped_count'] == 1
        assert summary['radar']['applied_count'] == 0
        assert summary['lidar']['applied_count'] == 1
        assert summary['lidar']['last_applied_timestamp'] == 200000

    def test_interleaved_stream_tracks_constant_velocity(self):
        np.random.seed(42)
        fusion = FusionEKF()
        true_velocity = np.array([2.0, 1.0])
        start = np.array([5.0, 3.0])

        for k in range(60):
            t_us = k * 50000
            position = start + true_velocity * t_us / 1e6
            if k % 2 == 0:
                z = position + np.random.normal(0, 0.15, 2)
                pack = MeasurementPackage.lidar(z[0], z[1], t_us)
            else:
                rho = np.hypot(*position)
                phi = np.arctan2(position[1], position[0])
                rho_dot = position @ true_velocity / rho
                pack = MeasurementPackage.radar(
                    rho + np.random.normal(0, 0.3),
                    phi + np.random.normal(0, 0.03),
                    rho_dot + np.random.normal(0, 0.3),
                    t_us,
                )
            fusion.process_measurement(pack)

        final_position = start + true_velocity * 59 * 0.05
        np.testing.assert_allclose(fusion.estimate[:2], final_position, atol=0.5)
        np.testing.assert_allclose(fusion.estimate[2:], true_velocity, atol=1.0)
        np.testing.assert_allclose(fusion.ekf.P, fusion.ekf.P.T, atol=1e-9)

    def test_non_increasing_timestamp_still_processed(self, caplog):
        fusion = FusionEKF()
        fusion.process_measurement(MeasurementPackage.lidar(1.0, 1.0, 100000))

        with caplog.at_level("WARNING"):
            result = fusion.process_measurement(MeasurementPackage.lidar(1.0, 1.0, 100000))

        assert result.applied
        assert "Non-increasing timestamp" in caplog.text


if __name__ == "__main__":
    pytest.main([__file__])
