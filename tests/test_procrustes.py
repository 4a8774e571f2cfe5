"""
Tests for the Procrustes landmark registration.

These tests cover correctness of the recovered rigid transform (exact
recovery, least-squares optimality, proper rotations), reflection handling,
and the failure modes for too few or degenerate landmarks.
"""

import warnings

import numpy as np
import pytest

from landmark_registration.alignment.errors import (
    DegenerateConfiguration,
    InsufficientLandmarks,
    NumericFailure,
)
from landmark_registration.alignment.landmarks import FiducialMark, PointSet
from landmark_registration.alignment.procrustes import (
    ProcrustesRegistration,
    align,
    check_rotation,
    compute_residuals,
    classify_layout,
    cross_covariance,
    demean_pairs,
    detect_degeneracy,
    rotation_from_svd,
    solve_translation,
)
from landmark_registration.alignment.rigid_transform import RigidTransform
from landmark_registration.alignment.svd_backends import svd3
from landmark_registration.utils.config import AlignmentConfig

from helpers import make_landmarks, random_rotation, rotation_about_axis


def _marks(points: np.ndarray, prefix: str = "P") -> list:
    return [FiducialMark(f"{prefix}{i}", p) for i, p in enumerate(points)]


def _sse(R: np.ndarray, t: np.ndarray, moving: np.ndarray, fixed: np.ndarray) -> float:
    diff = moving @ R.T + t - fixed
    return float(np.sum(diff * diff))


class TestPipelineStages:
    """Stage-level behaviour of the pipeline functions."""

    def test_demean_preserves_pair_order(self):
        ps = PointSet.from_arrays(
            np.array([[0.0, 0.0, 0.0], [2.0, 0.0, 0.0], [0.0, 4.0, 0.0]]),
            np.array([[1.0, 1.0, 1.0], [1.0, 1.0, 4.0], [1.0, 7.0, 1.0]]),
        )
        d = demean_pairs(ps)

        np.testing.assert_allclose(d.moving_centroid, [2.0 / 3.0, 4.0 / 3.0, 0.0])
        np.testing.assert_allclose(d.fixed_centroid, [1.0, 3.0, 2.0])
        np.testing.assert_allclose(d.moving.sum(axis=0), 0.0, atol=1e-12)
        np.testing.assert_allclose(d.fixed.sum(axis=0), 0.0, atol=1e-12)
        np.testing.assert_allclose(d.moving[1], [2.0 - 2.0 / 3.0, -4.0 / 3.0, 0.0])
        np.testing.assert_allclose(d.fixed[2], [0.0, 4.0, -1.0])

    def test_demean_empty_raises(self):
        with pytest.raises(ValueError, match="empty"):
            demean_pairs(PointSet())

    def test_cross_covariance_is_sum_of_outer_products(self, rng):
        Xm = rng.normal(size=(7, 3))
        Xf = rng.normal(size=(7, 3))
        expected = sum(np.outer(m, f) for m, f in zip(Xm, Xf))

        np.testing.assert_allclose(cross_covariance(Xm, Xf), expected, atol=1e-12)

    def test_cross_covariance_shape_mismatch(self):
        with pytest.raises(ValueError, match="equal shape"):
            cross_covariance(np.zeros((3, 3)), np.zeros((4, 3)))

    def test_solve_translation(self):
        R = rotation_about_axis([0, 0, 1], np.pi / 2)
        t = solve_translation(R, np.array([1.0, 0.0, 0.0]), np.array([5.0, 5.0, 5.0]))
        np.testing.assert_allclose(t, [5.0, 4.0, 5.0], atol=1e-12)

    def test_check_rotation_rejects_reflection(self):
        with pytest.raises(NumericFailure, match="proper"):
            check_rotation(np.diag([1.0, 1.0, -1.0]))

    def test_check_rotation_rejects_scaling(self):
        with pytest.raises(NumericFailure, match="orthonormal"):
            check_rotation(2.0 * np.eye(3))

    def test_detect_degeneracy(self):
        planar = np.array([[0.0, 0.0, 0.0], [3.0, 0.0, 0.0], [0.0, 2.0, 0.0]])
        line = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [2.0, 0.0, 0.0]])
        point = np.tile([1.0, 2.0, 3.0], (3, 1))

        assert detect_degeneracy(demean_pairs(PointSet.from_arrays(planar, planar + 1.0))) is None

        found = detect_degeneracy(demean_pairs(PointSet.from_arrays(planar, line)))
        assert (found.reason, found.side) == ("collinear", "fixed")

        found = detect_degeneracy(demean_pairs(PointSet.from_arrays(point, line)))
        assert (found.reason, found.side) == ("coincident", "moving")
        np.testing.assert_allclose(found.singular_values, 0.0, atol=1e-12)

    def test_classify_layout_ignores_units(self):
        spread = make_landmarks(n=5, seed=4) - make_landmarks(n=5, seed=4).mean(axis=0)
        for scale in (1e-7, 1.0, 1e5):
            assert classify_layout(spread * scale, np.zeros(3)) is None

    def test_classify_layout_relative_to_magnitude(self):
        tiny_spread = np.array([[1e-7, 0.0, 0.0], [0.0, 1e-7, 0.0], [0.0, 0.0, 1e-7], [-1e-7, -1e-7, -1e-7]])
        assert classify_layout(tiny_spread, np.array([12.0, 34.0, 56.0])) == "coincident"
        assert classify_layout(tiny_spread, np.zeros(3)) is None


class TestConcreteScenario:
    def test_quarter_turn_about_z(self, scenario_points):
        """A, B, C rotated 90 degrees about Z and shifted by (5, 5, 5)."""
        moving, fixed = scenario_points
        result = align(
            [FiducialMark(n, p) for n, p in moving.items()],
            [FiducialMark(n, p) for n, p in fixed.items()],
        )

        expected_R = np.array([[0.0, -1.0, 0.0], [1.0, 0.0, 0.0], [0.0, 0.0, 1.0]])
        np.testing.assert_allclose(result.transform.rotation, expected_R, atol=1e-9)
        np.testing.assert_allclose(result.transform.translation, [5.0, 5.0, 5.0], atol=1e-9)
        assert not result.low_confidence
        assert result.fre == pytest.approx(0.0, abs=1e-9)
        assert result.point_set.names == ("A", "B", "C")


class TestRecovery:
    @pytest.mark.parametrize("seed", [0, 1, 2, 3])
    def test_exact_recovery_of_random_motion(self, seed):
        rng = np.random.default_rng(seed)
        moving = make_landmarks(n=4 + seed, seed=seed)
        R0 = random_rotation(rng)
        t0 = rng.uniform(-100.0, 100.0, size=3)
        fixed = moving @ R0.T + t0

        result = ProcrustesRegistration().align(_marks(moving), _marks(fixed))

        np.testing.assert_allclose(result.transform.rotation, R0, atol=1e-9)
        np.testing.assert_allclose(result.transform.translation, t0, atol=1e-7)
        assert result.rmse < 1e-8

    @pytest.mark.parametrize("seed", [10, 11, 12])
    def test_rotation_is_orthonormal_and_proper(self, seed):
        rng = np.random.default_rng(seed)
        moving = make_landmarks(n=8, seed=seed)
        fixed = moving @ random_rotation(rng).T + rng.normal(size=3) * 10.0
        fixed += rng.normal(scale=0.5, size=fixed.shape)  # localisation noise

        R = ProcrustesRegistration().align(_marks(moving), _marks(fixed)).transform.rotation

        np.testing.assert_allclose(R @ R.T, np.eye(3), atol=1e-9)
        assert np.linalg.det(R) == pytest.approx(1.0, abs=1e-9)

    def test_least_squares_optimality_against_perturbations(self, rng):
        """No nearby proper rigid motion should beat the closed-form estimate."""
        moving = make_landmarks(n=10, seed=5)
        fixed = moving @ random_rotation(rng).T + np.array([3.0, -2.0, 7.0])
        fixed += rng.normal(scale=1.0, size=fixed.shape)

        result = ProcrustesRegistration().align(_marks(moving), _marks(fixed))
        R, t = result.transform.rotation, result.transform.translation
        best = _sse(R, t, moving, fixed)

        for scale in (1e-1, 1e-2, 1e-3):
            for _ in range(100):
                dR = rotation_about_axis(rng.normal(size=3), rng.normal(scale=scale))
                candidate_R = dR @ R
                candidate_t = t + rng.normal(scale=scale, size=3)
                assert _sse(candidate_R, candidate_t, moving, fixed) >= best - 1e-9

    def test_order_invariance(self, rng):
        moving = make_landmarks(n=7, seed=8)
        fixed = moving @ random_rotation(rng).T + np.array([1.0, 2.0, 3.0])
        fixed += rng.normal(scale=0.3, size=fixed.shape)
        perm = rng.permutation(len(moving))

        reg = ProcrustesRegistration()
        base = reg.estimate_transformation(PointSet.from_arrays(moving, fixed))
        shuffled = reg.estimate_transformation(PointSet.from_arrays(moving[perm], fixed[perm]))

        assert base.transform.allclose(shuffled.transform, atol=1e-9)

    def test_extra_unmatched_landmark_is_ignored(self, rng):
        moving = make_landmarks(n=5, seed=9)
        fixed = moving @ random_rotation(rng).T + rng.normal(scale=0.2, size=moving.shape)

        reg = ProcrustesRegistration()
        base = reg.align(_marks(moving), _marks(fixed))
        with_extra = reg.align(
            _marks(moving) + [FiducialMark("only-moving", [1000.0, 0.0, 0.0])],
            _marks(fixed) + [FiducialMark("only-fixed", [-1000.0, 5.0, 0.0])],
        )

        assert with_extra.point_set.names == base.point_set.names
        assert base.transform.allclose(with_extra.transform, atol=1e-12)


class TestReflectionHandling:
    def _mirrored(self):
        moving = make_landmarks(n=6, seed=3)
        # Mirror image: the best orthogonal fit is a reflection
        fixed = moving * np.array([-1.0, 1.0, 1.0]) + np.array([10.0, 0.0, 0.0])
        return moving, fixed

    def test_naive_solution_is_a_reflection(self):
        moving, fixed = self._mirrored()
        d = demean_pairs(PointSet.from_arrays(moving, fixed))
        U, _, V = svd3(cross_covariance(d.moving, d.fixed))

        naive, sign = rotation_from_svd(U, V, correct_reflection=False)

        assert sign == -1.0
        assert np.linalg.det(naive) == pytest.approx(-1.0, abs=1e-9)

    def test_corrected_rotation_flips_only_third_axis(self):
        moving, fixed = self._mirrored()
        d = demean_pairs(PointSet.from_arrays(moving, fixed))
        U, _, V = svd3(cross_covariance(d.moving, d.fixed))

        naive, _ = rotation_from_svd(U, V, correct_reflection=False)
        R, sign = rotation_from_svd(U, V)

        assert sign == -1.0
        assert np.linalg.det(R) == pytest.approx(1.0, abs=1e-9)
        np.testing.assert_allclose(R @ R.T, np.eye(3), atol=1e-9)
        # Same action on the first two principal axes, opposite on the third
        np.testing.assert_allclose(R @ U[:, :2], naive @ U[:, :2], atol=1e-9)
        np.testing.assert_allclose(R @ U[:, 2], -(naive @ U[:, 2]), atol=1e-9)
        assert np.linalg.matrix_rank(R - naive, tol=1e-9) == 1

    def test_registration_reports_reflection_correction(self):
        moving, fixed = self._mirrored()
        result = ProcrustesRegistration().align(_marks(moving), _marks(fixed))

        assert result.reflection_corrected
        assert np.linalg.det(result.transform.rotation) == pytest.approx(1.0, abs=1e-9)

    def test_planar_scenario_yields_proper_rotation(self, scenario_points):
        moving, fixed = scenario_points
        result = align(
            [FiducialMark(n, p) for n, p in moving.items()],
            [FiducialMark(n, p) for n, p in fixed.items()],
        )
        # Three points are planar; the solver may still need the flip, but
        # the output must be the exact proper rotation either way.
        assert np.linalg.det(result.transform.rotation) == pytest.approx(1.0, abs=1e-9)


class TestFailures:
    def test_two_pairs_raise_insufficient(self):
        moving = [FiducialMark("A", [0, 0, 0]), FiducialMark("B", [1, 0, 0])]
        fixed = [FiducialMark("A", [0, 0, 0]), FiducialMark("B", [1, 0, 0])]

        with pytest.raises(InsufficientLandmarks) as excinfo:
            align(moving, fixed)
        assert excinfo.value.found == 2
        assert excinfo.value.required == 3

    def test_estimate_rejects_short_point_set(self):
        ps = PointSet.from_arrays(np.zeros((2, 3)), np.zeros((2, 3)))
        with pytest.raises(InsufficientLandmarks):
            ProcrustesRegistration().estimate_transformation(ps)

    def test_min_pairs_from_config(self):
        moving = make_landmarks(n=3, seed=1)
        config = AlignmentConfig(min_pairs=4)
        with pytest.raises(InsufficientLandmarks, match="need at least 4"):
            align(_marks(moving), _marks(moving + 1.0), config=config)

    def test_min_pairs_below_three_rejected(self):
        with pytest.raises(ValueError, match="at least 3"):
            ProcrustesRegistration(min_pairs=2)

    def test_backend_non_convergence_is_numeric_failure(self):
        def failing_backend(A):
            raise np.linalg.LinAlgError("SVD did not converge")

        moving = make_landmarks(n=4, seed=2)
        with pytest.raises(NumericFailure, match="converge"):
            ProcrustesRegistration(svd_backend=failing_backend).align(_marks(moving), _marks(moving))

    def test_backend_invalid_vectors_fail_sanity_check(self):
        def scaled_backend(A):
            U, S, Vt = np.linalg.svd(A)
            return 2.0 * U, S, Vt.T

        moving = make_landmarks(n=4, seed=2)
        with pytest.raises(NumericFailure, match="orthonormal"):
            ProcrustesRegistration(svd_backend=scaled_backend).align(_marks(moving), _marks(moving))


class TestDegenerateConfiguration:
    def _collinear(self):
        moving = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [2.0, 0.0, 0.0], [3.0, 0.0, 0.0]])
        R0 = rotation_about_axis([0.0, 0.0, 1.0], np.pi / 3)
        fixed = moving @ R0.T + np.array([1.0, 2.0, 3.0])
        return moving, fixed

    def test_collinear_result_is_low_confidence(self):
        moving, fixed = self._collinear()

        with pytest.warns(DegenerateConfiguration, match="collinear"):
            result = ProcrustesRegistration().align(_marks(moving), _marks(fixed))

        R = result.transform.rotation
        assert result.low_confidence
        np.testing.assert_allclose(R @ R.T, np.eye(3), atol=1e-9)
        assert np.linalg.det(R) == pytest.approx(1.0, abs=1e-9)
        # The line itself is still mapped exactly
        assert result.rmse < 1e-9

    def test_collinear_strict_raises(self):
        moving, fixed = self._collinear()

        with pytest.raises(DegenerateConfiguration) as excinfo:
            ProcrustesRegistration(strict=True).align(_marks(moving), _marks(fixed))
        assert excinfo.value.reason == "collinear"

    def test_coincident_points(self):
        moving = np.tile([1.0, 2.0, 3.0], (3, 1))
        fixed = np.tile([4.0, 5.0, 6.0], (3, 1))

        with pytest.warns(DegenerateConfiguration, match="coincident"):
            result = ProcrustesRegistration().align(_marks(moving), _marks(fixed))

        assert result.low_confidence
        np.testing.assert_allclose(result.transform.apply(moving[0]), fixed[0], atol=1e-9)

    def test_collapsed_moving_set_against_spread_fixed_set(self):
        rng = np.random.default_rng(5)
        moving = np.array([12.0, 34.0, 56.0]) + rng.uniform(-1e-7, 1e-7, size=(4, 3))
        fixed = np.array([[0.0, 0.0, 0.0], [50.0, 0.0, 0.0], [0.0, 50.0, 0.0], [0.0, 0.0, 50.0]])

        with pytest.warns(DegenerateConfiguration, match="coincident in the moving set"):
            result = ProcrustesRegistration().align(_marks(moving), _marks(fixed))

        assert result.low_confidence

    def test_collapsed_moving_set_strict_raises(self):
        moving = np.array([12.0, 34.0, 56.0]) + 1e-8 * np.eye(4, 3)
        fixed = np.array([[0.0, 0.0, 0.0], [50.0, 0.0, 0.0], [0.0, 50.0, 0.0], [0.0, 0.0, 50.0]])

        with pytest.raises(DegenerateConfiguration) as excinfo:
            ProcrustesRegistration(strict=True).align(_marks(moving), _marks(fixed))
        assert (excinfo.value.reason, excinfo.value.side) == ("coincident", "moving")

    def test_small_units_are_not_degenerate(self):
        moving = make_landmarks(n=5, seed=6) * 5e-9
        fixed = moving + 1e-6

        with warnings.catch_warnings():
            warnings.simplefilter("error", DegenerateConfiguration)
            result = ProcrustesRegistration().align(_marks(moving), _marks(fixed))

        assert not result.low_confidence
        np.testing.assert_allclose(result.transform.rotation, np.eye(3), atol=1e-6)

    def test_warning_points_at_caller(self):
        moving, fixed = self._collinear()

        with pytest.warns(DegenerateConfiguration) as record:
            align(_marks(moving), _marks(fixed))
        with pytest.warns(DegenerateConfiguration) as record_direct:
            ProcrustesRegistration().align(_marks(moving), _marks(fixed))

        assert record[0].filename == __file__
        assert record_direct[0].filename == __file__

    def test_well_conditioned_layout_emits_no_warning(self, scenario_points):
        moving, fixed = scenario_points
        with warnings.catch_warnings():
            warnings.simplefilter("error", DegenerateConfiguration)
            result = align(
                [FiducialMark(n, p) for n, p in moving.items()],
                [FiducialMark(n, p) for n, p in fixed.items()],
            )
        assert not result.low_confidence


class TestRegistrationError:
    def test_residuals_and_fre(self):
        moving = np.array([[0.0, 0.0, 0.0], [4.0, 0.0, 0.0], [0.0, 4.0, 0.0], [0.0, 0.0, 4.0]])
        fixed = moving.copy()
        fixed[3, 2] += 1.0  # one misplaced mark

        result = ProcrustesRegistration().align(_marks(moving), _marks(fixed))

        moved = result.transform.apply(moving)
        distances = np.linalg.norm(moved - fixed, axis=1)
        assert set(result.residuals) == {"P0", "P1", "P2", "P3"}
        assert result.fre == pytest.approx(float(np.mean(distances)))
        assert result.rmse == pytest.approx(float(np.sqrt(np.mean(distances ** 2))))
        assert result.fre > 0.0

    def test_compute_residuals_identity(self):
        ps = PointSet.from_arrays(np.zeros((3, 3)), np.array([[3.0, 4.0, 0.0]] * 3), names=["a", "b", "c"])
        residuals = compute_residuals(RigidTransform.identity(), ps)
        assert residuals == {"a": 5.0, "b": 5.0, "c": 5.0}
